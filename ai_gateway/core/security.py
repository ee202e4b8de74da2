"""
Security auditing.

Validates credential formats, flags risky provider configuration, redacts
secrets from error text and records security events.

Recording an event never fails the operation that triggered it: sink
errors are reported on the module logger and dropped.
"""

import ipaddress
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from ai_gateway.storage.models import SecurityEvent, SecurityEventType, Severity
from ai_gateway.storage.repository import SecurityEventSink

from .types import ProviderConfig, ProviderIdentity

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("ai_gateway.security")

MIN_KEY_LENGTH = 10

# Applied in order; earlier patterns may leave "***" that later ones accept
_SECRET_PATTERNS = [
    (re.compile(r"\bsk-[A-Za-z0-9_\-]+"), "sk-***"),
    (re.compile(r"Bearer\s+[A-Za-z0-9._\-*~+/]+=*", re.IGNORECASE), "Bearer ***"),
    (re.compile(r"api[_-]?key\s*[=:]\s*[^\s&,;\"']+", re.IGNORECASE), "api_key=***"),
    (re.compile(r"token\s*[=:]\s*[^\s&,;\"']+", re.IGNORECASE), "token=***"),
    (re.compile(r"([?&]key=)[^\s&\"']+", re.IGNORECASE), r"\1***"),
]

_PLACEHOLDER_MARKERS = ("your_api_key", "your-api-key", "placeholder", "xxxxxxxx")

_LOOPBACK_HOSTS = {"localhost", "localhost.localdomain"}


def sanitize_error(text: Optional[str]) -> str:
    """Redact common secret patterns from text before it is logged or shown.

    Args:
        text: Error message that may echo an upstream payload

    Returns:
        Text with API keys, bearer tokens and token parameters masked
    """
    if not text:
        return ""
    sanitized = str(text)
    for pattern, replacement in _SECRET_PATTERNS:
        sanitized = pattern.sub(replacement, sanitized)
    return sanitized


@dataclass(frozen=True)
class KeyValidation:
    """Outcome of an API key format check."""
    valid: bool
    warnings: List[str] = field(default_factory=list)


def validate_key_format(provider: ProviderIdentity, api_key: str) -> KeyValidation:
    """Check an API key's shape for the given provider.

    Obviously wrong keys (too short, whitespace, placeholder text) are
    invalid. Provider-specific prefix and length mismatches only warn,
    since vendors change key formats.
    """
    provider = ProviderIdentity.parse(provider)
    warnings: List[str] = []
    valid = True
    key = api_key or ""

    if len(key) < MIN_KEY_LENGTH:
        valid = False
        warnings.append("API key appears to be too short")

    if provider == ProviderIdentity.OPENAI:
        if not key.startswith("sk-"):
            warnings.append('OpenAI API keys typically start with "sk-"')
        if len(key) < 40:
            warnings.append("OpenAI API keys are typically longer")
    elif provider == ProviderIdentity.CLAUDE:
        if not key.startswith("sk-ant-"):
            warnings.append('Claude API keys typically start with "sk-ant-"')
    elif provider == ProviderIdentity.GEMINI:
        if len(key) < 30:
            warnings.append("Gemini API keys are typically longer")
    elif provider == ProviderIdentity.DEEPSEEK:
        if len(key) < 30:
            warnings.append("DeepSeek API keys are typically longer")
    elif provider == ProviderIdentity.MISTRAL:
        if len(key) < 32:
            warnings.append("Mistral API keys are typically longer")

    if any(ch.isspace() for ch in key):
        valid = False
        warnings.append("API key contains whitespace")

    lowered = key.lower()
    if any(marker in lowered for marker in _PLACEHOLDER_MARKERS):
        valid = False
        warnings.append("API key appears to be a placeholder")

    return KeyValidation(valid=valid, warnings=warnings)


def _is_loopback_host(host: str) -> bool:
    if host in _LOOPBACK_HOSTS:
        return True
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    return address.is_loopback or address.is_unspecified


def audit_endpoint(endpoint: str) -> List[str]:
    """Flag an insecure or loopback custom endpoint URL."""
    issues: List[str] = []
    parsed = urlparse(endpoint)
    if parsed.scheme.lower() != "https":
        issues.append("Custom endpoint should use HTTPS")
    host = (parsed.hostname or "").lower()
    if host and _is_loopback_host(host):
        issues.append("Custom endpoint points to localhost - ensure this is intentional")
    return issues


def audit_provider_config(config: ProviderConfig) -> List[str]:
    """Check a provider configuration for risky settings.

    Args:
        config: Configuration about to be stored or used

    Returns:
        Human-readable issues (empty if none)
    """
    issues: List[str] = []

    if config.custom_endpoint:
        issues.extend(audit_endpoint(config.custom_endpoint))

    settings = config.provider_settings or {}
    if settings.get("debug") is True:
        issues.append("Debug mode is enabled - disable in production")
    if settings.get("logRequests") is True or settings.get("log_requests") is True:
        issues.append("Request logging is enabled - may expose sensitive data")

    return issues


class SecurityAuditor:
    """Records security events to an optional sink and the audit logger."""

    def __init__(self, sink: Optional[SecurityEventSink] = None):
        self.sink = sink

    def log_security_event(
        self,
        user_id: str,
        event_type: SecurityEventType,
        description: str,
        severity: Severity,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[SecurityEvent]:
        """Record a security event without ever raising.

        Returns:
            The recorded event, or None if it could not be built
        """
        try:
            event = SecurityEvent(
                user_id=user_id,
                event_type=event_type,
                description=description,
                severity=severity,
                metadata=dict(metadata or {}),
            )
            audit_logger.info(
                "[SECURITY AUDIT] %s: %s (user=%s, type=%s)",
                severity.value.upper(),
                description,
                user_id,
                event_type.value,
            )
        except Exception:
            logger.exception("Failed to build security event %s", getattr(event_type, "value", event_type))
            return None

        if self.sink is not None:
            try:
                self.sink.append(event)
            except Exception:
                logger.exception("Failed to persist security event %s", event_type.value)
        return event

    def log_api_key_created(self, user_id: str, provider: ProviderIdentity) -> None:
        self.log_security_event(
            user_id,
            SecurityEventType.API_KEY_CREATED,
            f"API key created for provider: {provider.value}",
            Severity.MEDIUM,
            {"provider": provider.value},
        )

    def log_api_key_updated(self, user_id: str, provider: ProviderIdentity) -> None:
        self.log_security_event(
            user_id,
            SecurityEventType.API_KEY_UPDATED,
            f"API key updated for provider: {provider.value}",
            Severity.MEDIUM,
            {"provider": provider.value},
        )

    def log_api_key_deleted(self, user_id: str, provider: ProviderIdentity) -> None:
        self.log_security_event(
            user_id,
            SecurityEventType.API_KEY_DELETED,
            f"API key deleted for provider: {provider.value}",
            Severity.LOW,
            {"provider": provider.value},
        )

    def log_connection_test_succeeded(self, user_id: str, provider: ProviderIdentity) -> None:
        self.log_security_event(
            user_id,
            SecurityEventType.CONNECTION_TEST_SUCCEEDED,
            f"Connection test succeeded for provider: {provider.value}",
            Severity.LOW,
            {"provider": provider.value},
        )

    def log_connection_test_failed(self, user_id: str, provider: ProviderIdentity, error: str) -> None:
        self.log_security_event(
            user_id,
            SecurityEventType.CONNECTION_TEST_FAILED,
            f"Connection test failed for provider: {provider.value}",
            Severity.LOW,
            {"provider": provider.value, "error": sanitize_error(error)},
        )

    def log_encryption_failed(self, user_id: str, error: str) -> None:
        self.log_security_event(
            user_id,
            SecurityEventType.ENCRYPTION_FAILED,
            "API key encryption failed",
            Severity.HIGH,
            {"error": sanitize_error(error)},
        )

    def log_decryption_failed(self, user_id: str, error: str) -> None:
        self.log_security_event(
            user_id,
            SecurityEventType.DECRYPTION_FAILED,
            "API key decryption failed",
            Severity.HIGH,
            {"error": sanitize_error(error)},
        )

    def log_degraded_encryption(self, user_id: str, reason: str) -> None:
        self.log_security_event(
            user_id,
            SecurityEventType.DEGRADED_ENCRYPTION,
            "API key stored with degraded base64 encoding",
            Severity.HIGH,
            {"reason": sanitize_error(reason)},
        )

    def log_invalid_provider_config(self, user_id: str, provider: ProviderIdentity, issues: List[str]) -> None:
        self.log_security_event(
            user_id,
            SecurityEventType.INVALID_PROVIDER_CONFIG,
            f"Provider configuration issues for provider: {provider.value}",
            Severity.MEDIUM,
            {"provider": provider.value, "issues": [sanitize_error(issue) for issue in issues]},
        )

    def log_rate_limit_exceeded(self, user_id: str, provider: ProviderIdentity, error: str) -> None:
        self.log_security_event(
            user_id,
            SecurityEventType.RATE_LIMIT_EXCEEDED,
            f"Rate limit or quota exceeded for provider: {provider.value}",
            Severity.MEDIUM,
            {"provider": provider.value, "error": sanitize_error(error)},
        )

    def log_suspicious_activity(self, user_id: str, description: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        self.log_security_event(
            user_id,
            SecurityEventType.SUSPICIOUS_ACTIVITY,
            description,
            Severity.CRITICAL,
            metadata,
        )
