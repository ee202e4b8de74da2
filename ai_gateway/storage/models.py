"""
Data models for storage layer.

Defines the persisted preference record and the security audit event.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from ai_gateway.core.types import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
    ConnectionStatus,
    ProviderIdentity,
)


@dataclass(frozen=True)
class UserPreferenceRecord:
    """Durable provider selection for a single user.

    Usage counters only ever move forward through the store's atomic
    increment; upserting a record never rewrites them.
    """
    user_id: str
    provider: ProviderIdentity
    api_key_encrypted: Optional[str] = None
    model_name: Optional[str] = None
    custom_endpoint: Optional[str] = None
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS
    provider_settings: Dict[str, Any] = field(default_factory=dict)
    total_requests: int = 0
    total_tokens_used: int = 0
    last_used_at: Optional[datetime] = None
    connection_status: ConnectionStatus = ConnectionStatus.UNTESTED
    last_error: Optional[str] = None
    last_test_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    @property
    def has_credential(self) -> bool:
        return bool(self.api_key_encrypted)

    def with_changes(self, **changes: Any) -> "UserPreferenceRecord":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)


class SecurityEventType(Enum):
    """Security-relevant events recorded by the auditor."""
    API_KEY_CREATED = "api_key_created"
    API_KEY_UPDATED = "api_key_updated"
    API_KEY_DELETED = "api_key_deleted"
    CONNECTION_TEST_SUCCEEDED = "connection_test_succeeded"
    CONNECTION_TEST_FAILED = "connection_test_failed"
    ENCRYPTION_FAILED = "encryption_failed"
    DECRYPTION_FAILED = "decryption_failed"
    DEGRADED_ENCRYPTION = "degraded_encryption"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    INVALID_PROVIDER_CONFIG = "invalid_provider_config"


class Severity(Enum):
    """Severity of a security event."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class SecurityEvent:
    """Immutable security audit record.

    Append-only: once written, these records must never be modified.
    """
    user_id: str
    event_type: SecurityEventType
    description: str
    severity: Severity
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)
