"""
Gateway error taxonomy.

Every failure a caller can observe from the gateway is a GatewayError that
names the offending provider and says whether a retry is safe.
"""

from enum import Enum
from typing import Any, Dict, Optional

from .types import ProviderIdentity


class ErrorKind(Enum):
    """Kind of failure, independent of the provider-specific code."""
    NO_CREDENTIAL = "no_credential"
    PROVIDER_UNSUPPORTED = "provider_unsupported"
    DECRYPTION_FAILED = "decryption_failed"
    ENCRYPTION_FAILED = "encryption_failed"
    UPSTREAM_HTTP = "upstream_http"
    UPSTREAM_MALFORMED = "upstream_malformed"
    REQUEST_FAILED = "request_failed"
    INVALID_CONFIG = "invalid_config"


class GatewayError(Exception):
    """Typed failure raised by adapters, the vault and the gateway."""

    def __init__(
        self,
        code: str,
        message: str,
        provider: ProviderIdentity = ProviderIdentity.NONE,
        retryable: bool = False,
        kind: ErrorKind = ErrorKind.REQUEST_FAILED,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.provider = provider
        self.retryable = retryable
        self.kind = kind
        self.details = details or {}

    @classmethod
    def from_status(
        cls,
        provider: ProviderIdentity,
        status: int,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> "GatewayError":
        """Map a non-2xx upstream response; 429 and 5xx are retryable."""
        return cls(
            code=f"{provider.error_prefix}_{status}",
            message=message,
            provider=provider,
            retryable=status >= 500 or status == 429,
            kind=ErrorKind.UPSTREAM_HTTP,
            details={"status": status, **(details or {})},
        )

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "provider": self.provider.value,
            "retryable": self.retryable,
            "kind": self.kind.value,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(code={self.code!r}, provider={self.provider.value!r}, "
            f"retryable={self.retryable})"
        )


class DecryptionFailed(GatewayError):
    """Stored credential could not be read: corrupt, tampered or wrong user."""

    def __init__(self, message: str = "Failed to decrypt API key", provider: ProviderIdentity = ProviderIdentity.NONE):
        super().__init__(
            code="DECRYPTION_FAILED",
            message=message,
            provider=provider,
            retryable=False,
            kind=ErrorKind.DECRYPTION_FAILED,
        )


class EncryptionFailed(GatewayError):
    """A new credential could not be sealed."""

    def __init__(self, message: str = "Failed to encrypt API key", provider: ProviderIdentity = ProviderIdentity.NONE):
        super().__init__(
            code="ENCRYPTION_FAILED",
            message=message,
            provider=provider,
            retryable=False,
            kind=ErrorKind.ENCRYPTION_FAILED,
        )
