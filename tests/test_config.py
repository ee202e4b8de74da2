"""
Unit tests for configuration loading and validation.

Tests strict validation and error handling for gateway configs.
"""

import os
import shutil
import tempfile

import pytest
import yaml

from ai_gateway.config.loader import (
    ENV_DB_PATH,
    ENV_MASTER_SECRET,
    ENV_MAX_RETRIES,
    ENV_TIMEOUT,
    DefaultsConfig,
    DispatchConfig,
    GatewayConfig,
    load_gateway_config,
)


class TestConfigLoading:
    """Test configuration loading and validation."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data: dict, filename: str = "config.yaml") -> str:
        """Write configuration data to temporary file."""
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def test_valid_full_config(self):
        """Test loading a complete configuration."""
        path = self._write_config({
            "vault": {"master_secret": "file-secret", "kdf_iterations": 200000, "allow_degraded": False},
            "dispatch": {"timeout_seconds": 30, "max_retries": 2},
            "defaults": {"temperature": 0.2, "max_tokens": 1000},
            "storage": {"db_path": "/tmp/gateway.db"},
        })

        config = load_gateway_config(path, environ={})

        assert config.vault.master_secret == "file-secret"
        assert config.vault.kdf_iterations == 200000
        assert config.vault.allow_degraded is False
        assert config.dispatch.timeout_seconds == 30.0
        assert config.dispatch.max_retries == 2
        assert config.defaults.temperature == 0.2
        assert config.defaults.max_tokens == 1000
        assert config.db_path == "/tmp/gateway.db"

    def test_minimal_config_uses_defaults(self):
        """Test that omitted sections fall back to defaults."""
        path = self._write_config({"vault": {"master_secret": "file-secret"}})

        config = load_gateway_config(path, environ={})

        assert config.dispatch == DispatchConfig()
        assert config.defaults == DefaultsConfig()
        assert config.vault.allow_degraded is True
        assert config.db_path is None

    def test_master_secret_from_environment(self):
        """Test the environment fallback for the master secret."""
        path = self._write_config({"dispatch": {"timeout_seconds": 10}})
        config = load_gateway_config(path, environ={ENV_MASTER_SECRET: "env-secret"})
        assert config.vault.master_secret == "env-secret"

    def test_file_secret_wins_over_environment(self):
        path = self._write_config({"vault": {"master_secret": "file-secret"}})
        config = load_gateway_config(path, environ={ENV_MASTER_SECRET: "env-secret"})
        assert config.vault.master_secret == "file-secret"

    def test_missing_master_secret(self):
        path = self._write_config({"dispatch": {"timeout_seconds": 10}})
        with pytest.raises(ValueError, match="master_secret"):
            load_gateway_config(path, environ={})

    def test_unknown_top_level_key(self):
        """Test strict validation rejects unknown keys."""
        path = self._write_config({"vault": {"master_secret": "s"}, "providers": {}})
        with pytest.raises(ValueError, match="Unknown keys in configuration"):
            load_gateway_config(path, environ={})

    def test_unknown_section_key(self):
        path = self._write_config({"vault": {"master_secret": "s"}, "dispatch": {"timeout": 5}})
        with pytest.raises(ValueError, match="Unknown keys in dispatch"):
            load_gateway_config(path, environ={})

    def test_low_kdf_iterations(self):
        path = self._write_config({"vault": {"master_secret": "s", "kdf_iterations": 10}})
        with pytest.raises(ValueError, match="kdf_iterations"):
            load_gateway_config(path, environ={})

    def test_non_numeric_timeout(self):
        path = self._write_config({"vault": {"master_secret": "s"}, "dispatch": {"timeout_seconds": "soon"}})
        with pytest.raises(ValueError, match="dispatch.timeout_seconds"):
            load_gateway_config(path, environ={})

    def test_negative_retries(self):
        path = self._write_config({"vault": {"master_secret": "s"}, "dispatch": {"max_retries": -1}})
        with pytest.raises(ValueError, match="max_retries"):
            load_gateway_config(path, environ={})

    def test_temperature_out_of_range(self):
        path = self._write_config({"vault": {"master_secret": "s"}, "defaults": {"temperature": 3.5}})
        with pytest.raises(ValueError, match="temperature"):
            load_gateway_config(path, environ={})

    def test_non_boolean_allow_degraded(self):
        path = self._write_config({"vault": {"master_secret": "s", "allow_degraded": "yes"}})
        with pytest.raises(ValueError, match="allow_degraded"):
            load_gateway_config(path, environ={})

    def test_section_must_be_mapping(self):
        path = self._write_config({"vault": ["master_secret"]})
        with pytest.raises(ValueError, match="'vault' must be a dictionary"):
            load_gateway_config(path, environ={})

    def test_missing_file(self):
        with pytest.raises(FileNotFoundError):
            load_gateway_config(os.path.join(self.temp_dir, "missing.yaml"))

    def test_empty_file(self):
        path = os.path.join(self.temp_dir, "empty.yaml")
        open(path, "w").close()
        with pytest.raises(ValueError, match="empty"):
            load_gateway_config(path)

    def test_invalid_yaml(self):
        path = os.path.join(self.temp_dir, "broken.yaml")
        with open(path, "w", encoding="utf-8") as f:
            f.write("vault: [unclosed\n")
        with pytest.raises(yaml.YAMLError):
            load_gateway_config(path)


class TestConfigFromEnv:
    """Test environment-based configuration."""

    def test_from_env(self):
        config = GatewayConfig.from_env({
            ENV_MASTER_SECRET: "env-secret",
            ENV_TIMEOUT: "15",
            ENV_MAX_RETRIES: "1",
            ENV_DB_PATH: "/data/gateway.db",
        })
        assert config.vault.master_secret == "env-secret"
        assert config.dispatch.timeout_seconds == 15.0
        assert config.dispatch.max_retries == 1
        assert config.db_path == "/data/gateway.db"

    def test_from_env_defaults(self):
        config = GatewayConfig.from_env({ENV_MASTER_SECRET: "env-secret"})
        assert config.dispatch.timeout_seconds == 60.0
        assert config.dispatch.max_retries == 0
        assert config.db_path is None

    def test_from_env_requires_secret(self):
        with pytest.raises(ValueError, match=ENV_MASTER_SECRET):
            GatewayConfig.from_env({})

    def test_from_env_invalid_number(self):
        with pytest.raises(ValueError, match=ENV_MAX_RETRIES):
            GatewayConfig.from_env({ENV_MASTER_SECRET: "s", ENV_MAX_RETRIES: "many"})
