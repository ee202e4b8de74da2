"""
Configuration management and loading.

Handles gateway settings from YAML files and environment variables.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ai_gateway.core.types import DEFAULT_MAX_TOKENS, DEFAULT_TEMPERATURE

MIN_KDF_ITERATIONS = 100_000

ENV_MASTER_SECRET = "AI_GATEWAY_MASTER_SECRET"
ENV_TIMEOUT = "AI_GATEWAY_TIMEOUT_SECONDS"
ENV_MAX_RETRIES = "AI_GATEWAY_MAX_RETRIES"
ENV_DB_PATH = "AI_GATEWAY_DB_PATH"


@dataclass(frozen=True)
class VaultConfig:
    """Credential vault settings.

    Rotating the master secret invalidates every stored credential.
    """
    master_secret: str = field(repr=False)
    kdf_iterations: int = MIN_KDF_ITERATIONS
    allow_degraded: bool = True

    def __post_init__(self):
        """Validate vault settings."""
        if not self.master_secret or not self.master_secret.strip():
            raise ValueError("master_secret is required and cannot be empty")
        if self.kdf_iterations < MIN_KDF_ITERATIONS:
            raise ValueError(f"kdf_iterations must be >= {MIN_KDF_ITERATIONS}")


@dataclass(frozen=True)
class DispatchConfig:
    """Per-dispatch network policy."""
    timeout_seconds: float = 60.0
    max_retries: int = 0

    def __post_init__(self):
        """Validate dispatch values."""
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")


@dataclass(frozen=True)
class DefaultsConfig:
    """Generation defaults applied when a user saves no explicit values."""
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS

    def __post_init__(self):
        """Validate default generation parameters."""
        if not 0.0 <= self.temperature <= 2.0:
            raise ValueError("temperature must be between 0.0 and 2.0")
        if self.max_tokens <= 0:
            raise ValueError("max_tokens must be > 0")


@dataclass(frozen=True)
class GatewayConfig:
    """Complete gateway configuration."""
    vault: VaultConfig
    dispatch: DispatchConfig = field(default_factory=DispatchConfig)
    defaults: DefaultsConfig = field(default_factory=DefaultsConfig)
    db_path: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "GatewayConfig":
        """Build configuration from environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Raises:
            ValueError: If the master secret is missing or a value is invalid
        """
        env = os.environ if environ is None else environ
        secret = env.get(ENV_MASTER_SECRET)
        if not secret:
            raise ValueError(f"Missing master secret. Set the {ENV_MASTER_SECRET} environment variable.")

        dispatch_kwargs: Dict[str, Any] = {}
        if env.get(ENV_TIMEOUT):
            dispatch_kwargs["timeout_seconds"] = _parse_number(env[ENV_TIMEOUT], float, ENV_TIMEOUT)
        if env.get(ENV_MAX_RETRIES):
            dispatch_kwargs["max_retries"] = _parse_number(env[ENV_MAX_RETRIES], int, ENV_MAX_RETRIES)

        return cls(
            vault=VaultConfig(master_secret=secret),
            dispatch=DispatchConfig(**dispatch_kwargs),
            db_path=env.get(ENV_DB_PATH) or None,
        )


def _parse_number(raw: Any, kind: type, path: str):
    if isinstance(raw, bool):
        raise ValueError(f"'{path}' must be a number")
    try:
        return kind(raw)
    except (TypeError, ValueError):
        raise ValueError(f"'{path}' must be a number")


def _check_keys(data: Dict, allowed: set, path: str) -> None:
    unknown_keys = set(data.keys()) - allowed
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")


def _section(raw_config: Dict, name: str) -> Dict:
    data = raw_config.get(name) or {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    return data


def load_gateway_config(path: str, environ: Optional[Dict[str, str]] = None) -> GatewayConfig:
    """Load and validate gateway configuration from a YAML file.

    Strict validation rejects unknown keys so a typo cannot silently fall
    back to a default. The master secret may be left out of the file and
    supplied through AI_GATEWAY_MASTER_SECRET instead; the file wins when
    both are present.

    Args:
        path: Path to YAML configuration file
        environ: Mapping used for the master secret fallback

    Returns:
        Validated GatewayConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Gateway config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    _check_keys(raw_config, {'vault', 'dispatch', 'defaults', 'storage'}, "configuration")

    # Vault
    vault_data = _section(raw_config, 'vault')
    _check_keys(vault_data, {'master_secret', 'kdf_iterations', 'allow_degraded'}, "vault")

    env = os.environ if environ is None else environ
    secret = vault_data.get('master_secret') or env.get(ENV_MASTER_SECRET)
    if not secret:
        raise ValueError(f"Missing 'vault.master_secret' (or {ENV_MASTER_SECRET})")

    allow_degraded = vault_data.get('allow_degraded', True)
    if not isinstance(allow_degraded, bool):
        raise ValueError("'vault.allow_degraded' must be a boolean")

    vault = VaultConfig(
        master_secret=str(secret),
        kdf_iterations=_parse_number(vault_data.get('kdf_iterations', MIN_KDF_ITERATIONS), int, "vault.kdf_iterations"),
        allow_degraded=allow_degraded,
    )

    # Dispatch
    dispatch_data = _section(raw_config, 'dispatch')
    _check_keys(dispatch_data, {'timeout_seconds', 'max_retries'}, "dispatch")
    dispatch = DispatchConfig(
        timeout_seconds=_parse_number(dispatch_data.get('timeout_seconds', 60.0), float, "dispatch.timeout_seconds"),
        max_retries=_parse_number(dispatch_data.get('max_retries', 0), int, "dispatch.max_retries"),
    )

    # Defaults
    defaults_data = _section(raw_config, 'defaults')
    _check_keys(defaults_data, {'temperature', 'max_tokens'}, "defaults")
    defaults = DefaultsConfig(
        temperature=_parse_number(defaults_data.get('temperature', DEFAULT_TEMPERATURE), float, "defaults.temperature"),
        max_tokens=_parse_number(defaults_data.get('max_tokens', DEFAULT_MAX_TOKENS), int, "defaults.max_tokens"),
    )

    # Storage
    storage_data = _section(raw_config, 'storage')
    _check_keys(storage_data, {'db_path'}, "storage")
    db_path = storage_data.get('db_path')
    if db_path is not None and not isinstance(db_path, str):
        raise ValueError("'storage.db_path' must be a string")

    return GatewayConfig(
        vault=vault,
        dispatch=dispatch,
        defaults=defaults,
        db_path=db_path,
    )
