"""
Gateway orchestration.

Resolves a user's stored provider configuration, decrypts the credential,
dispatches through the matching adapter and keeps connection status and
usage counters current.

Status and usage writes happen after the adapter call completes and
before control returns to the caller. A cancelled dispatch writes nothing.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, List, Optional

from ai_gateway.config.loader import GatewayConfig
from ai_gateway.providers import ProviderAdapter, default_adapters
from ai_gateway.storage.models import UserPreferenceRecord
from ai_gateway.storage.repository import PreferenceStore

from .errors import DecryptionFailed, EncryptionFailed, ErrorKind, GatewayError
from .pricing import estimate_cost
from .security import (
    KeyValidation,
    SecurityAuditor,
    audit_provider_config,
    sanitize_error,
    validate_key_format,
)
from .types import (
    CapabilityDescriptor,
    ConnectionStatus,
    ProviderConfig,
    ProviderIdentity,
    Request,
    Response,
)
from .vault import CredentialVault

logger = logging.getLogger(__name__)

TEST_PROMPT = 'Hello! Please respond with just "OK" to confirm the connection.'
TEST_MAX_TOKENS = 10
NO_API_KEY_MESSAGE = "No AI provider configured. Please set up your AI provider in settings."


@dataclass(frozen=True)
class ConnectionTestResult:
    """Outcome of an explicit connection test."""
    success: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class UsageStats:
    """Cumulative usage of a user's provider configuration."""
    total_requests: int
    total_tokens_used: int
    last_used_at: Optional[datetime]
    connection_status: ConnectionStatus


@dataclass(frozen=True)
class SaveResult:
    """Outcome of saving a provider configuration."""
    record: UserPreferenceRecord
    key_validation: KeyValidation
    issues: List[str]


def _classify_failure(error: GatewayError) -> ConnectionStatus:
    if "quota" in (error.message or "").lower():
        return ConnectionStatus.QUOTA_EXCEEDED
    return ConnectionStatus.ERROR


class Gateway:
    """Routes normalized requests to the provider each user has configured.

    Adapters and the vault are stateless; the only shared mutable state is
    the per-user record, which is changed exclusively through the store's
    atomic primitives.
    """

    def __init__(
        self,
        config: GatewayConfig,
        store: PreferenceStore,
        auditor: Optional[SecurityAuditor] = None,
        adapters: Optional[Dict[ProviderIdentity, ProviderAdapter]] = None,
        vault: Optional[CredentialVault] = None,
    ):
        """Initialize gateway.

        Args:
            config: Gateway configuration (vault, dispatch policy, defaults)
            store: Persistence for user preference records
            auditor: Security event recorder (defaults to log-only)
            adapters: Adapter registry (defaults to all built-in adapters)
            vault: Credential vault (defaults to one built from config.vault)
        """
        self.config = config
        self.store = store
        self.auditor = auditor or SecurityAuditor()
        self.adapters = adapters if adapters is not None else default_adapters()
        self.vault = vault or CredentialVault(config.vault, auditor=self.auditor)

    # Dispatch

    async def generate_response(self, user_id: str, request: Request) -> Response:
        """Generate a response with the user's configured provider.

        Args:
            user_id: User whose configuration is used
            request: Normalized request

        Returns:
            Normalized response; metadata includes estimated_cost when the
            model has published pricing

        Raises:
            GatewayError: NO_API_KEY, DECRYPTION_FAILED, INVALID_CONFIG,
                PROVIDER_NOT_SUPPORTED, or the adapter's own error unchanged
        """
        record = await asyncio.to_thread(self.store.get, user_id)
        if record is None or not record.has_credential:
            raise GatewayError(
                code="NO_API_KEY",
                message=NO_API_KEY_MESSAGE,
                kind=ErrorKind.NO_CREDENTIAL,
            )

        provider_config = await self._resolve_config(user_id, record, request)
        adapter = self._resolve_adapter(provider_config.provider)

        try:
            response = await self._dispatch(adapter, request, provider_config)
        except GatewayError as e:
            await self._record_failure(user_id, e)
            raise

        await self._record_success(user_id, response)
        return self._with_cost(adapter, response)

    async def test_connection(self, user_id: str, config: Optional[ProviderConfig] = None) -> ConnectionTestResult:
        """Send a canned prompt to check that a credential works.

        Only connection status, last error and last test time are written;
        usage counters are untouched.

        Args:
            user_id: User whose record receives the outcome
            config: Configuration to test instead of the stored one
        """
        if config is None:
            record = await asyncio.to_thread(self.store.get, user_id)
            if record is None or not record.has_credential:
                return ConnectionTestResult(success=False, error="No API key configured")
            try:
                config = await self._decrypt_config(user_id, record)
            except DecryptionFailed as e:
                return await self._fail_test(user_id, record.provider, e)
        else:
            config = self._with_defaults(config)

        request = Request(prompt=TEST_PROMPT, max_tokens=TEST_MAX_TOKENS)
        try:
            adapter = self._resolve_adapter(config.provider)
            await self._dispatch(adapter, request, config)
        except GatewayError as e:
            return await self._fail_test(user_id, config.provider, e)

        await self._write_status(user_id, ConnectionStatus.CONNECTED, None, tested=True)
        self.auditor.log_connection_test_succeeded(user_id, config.provider)
        return ConnectionTestResult(success=True)

    def get_available_providers(self) -> List[CapabilityDescriptor]:
        """Return capability descriptors of every registered adapter."""
        return [
            adapter.get_capabilities()
            for identity, adapter in self.adapters.items()
            if identity != ProviderIdentity.NONE
        ]

    # Preference management

    async def save_preferences(self, user_id: str, config: ProviderConfig) -> SaveResult:
        """Validate, encrypt and store a provider configuration.

        The connection status is reset to untested; usage counters are kept.
        Unset temperature and max_tokens take the configured defaults.

        Raises:
            GatewayError: INVALID_API_KEY if the key is unusable,
                ENCRYPTION_FAILED if it cannot be sealed
        """
        config = self._with_defaults(config)
        validation = validate_key_format(config.provider, config.api_key) if config.api_key else KeyValidation(True)
        if config.provider != ProviderIdentity.CUSTOM and not config.api_key:
            raise GatewayError(
                code="INVALID_API_KEY",
                message="An API key is required for this provider",
                provider=config.provider,
                kind=ErrorKind.INVALID_CONFIG,
            )
        if not validation.valid:
            raise GatewayError(
                code="INVALID_API_KEY",
                message="; ".join(validation.warnings),
                provider=config.provider,
                kind=ErrorKind.INVALID_CONFIG,
            )

        issues = audit_provider_config(config)
        if issues:
            self.auditor.log_invalid_provider_config(user_id, config.provider, issues)

        encrypted = None
        if config.api_key:
            try:
                encrypted = await asyncio.to_thread(self.vault.encrypt, config.api_key, user_id)
            except EncryptionFailed as e:
                self.auditor.log_encryption_failed(user_id, e.message)
                e.provider = config.provider
                raise

        existing = await asyncio.to_thread(self.store.get, user_id)
        now = datetime.now()
        record = UserPreferenceRecord(
            user_id=user_id,
            provider=config.provider,
            api_key_encrypted=encrypted,
            model_name=config.model_name,
            custom_endpoint=config.custom_endpoint,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            provider_settings=dict(config.provider_settings or {}),
            connection_status=ConnectionStatus.UNTESTED,
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        await asyncio.to_thread(self.store.upsert, user_id, record)

        if existing is not None and existing.has_credential:
            self.auditor.log_api_key_updated(user_id, config.provider)
        elif encrypted:
            self.auditor.log_api_key_created(user_id, config.provider)

        logger.info("Saved %s configuration for user %s", config.provider.value, user_id)
        stored = await asyncio.to_thread(self.store.get, user_id)
        return SaveResult(record=stored or record, key_validation=validation, issues=issues)

    async def remove_credential(self, user_id: str) -> bool:
        """Clear the stored API key; the record and its counters are kept.

        Returns:
            False if the user had no credential
        """
        existing = await asyncio.to_thread(self.store.get, user_id)
        if existing is None or not existing.has_credential:
            return False

        record = existing.with_changes(
            api_key_encrypted=None,
            connection_status=ConnectionStatus.UNTESTED,
            last_error=None,
            updated_at=datetime.now(),
        )
        await asyncio.to_thread(self.store.upsert, user_id, record)
        self.auditor.log_api_key_deleted(user_id, existing.provider)
        return True

    async def get_usage_stats(self, user_id: str) -> Optional[UsageStats]:
        """Return cumulative usage for the user, or None if no record exists."""
        record = await asyncio.to_thread(self.store.get, user_id)
        if record is None:
            return None
        return UsageStats(
            total_requests=record.total_requests,
            total_tokens_used=record.total_tokens_used,
            last_used_at=record.last_used_at,
            connection_status=record.connection_status,
        )

    async def has_provider_configured(self, user_id: str) -> bool:
        record = await asyncio.to_thread(self.store.get, user_id)
        return record is not None and record.has_credential and record.provider != ProviderIdentity.NONE

    # Internals

    def _with_defaults(self, config: ProviderConfig) -> ProviderConfig:
        defaults = self.config.defaults
        return replace(
            config,
            temperature=defaults.temperature if config.temperature is None else config.temperature,
            max_tokens=defaults.max_tokens if config.max_tokens is None else config.max_tokens,
        )

    async def _decrypt_config(self, user_id: str, record: UserPreferenceRecord) -> ProviderConfig:
        try:
            api_key = await asyncio.to_thread(self.vault.decrypt, record.api_key_encrypted, user_id)
        except DecryptionFailed as e:
            e.provider = record.provider
            self.auditor.log_decryption_failed(user_id, e.message)
            logger.error("Could not decrypt %s credential for user %s", record.provider.value, user_id)
            raise

        return ProviderConfig(
            provider=record.provider,
            api_key=api_key,
            model_name=record.model_name,
            custom_endpoint=record.custom_endpoint,
            temperature=record.temperature,
            max_tokens=record.max_tokens,
            provider_settings=dict(record.provider_settings or {}),
        )

    async def _resolve_config(self, user_id: str, record: UserPreferenceRecord, request: Request) -> ProviderConfig:
        """Decrypt the stored credential and apply per-request overrides."""
        stored = await self._decrypt_config(user_id, record)
        try:
            return ProviderConfig(
                provider=stored.provider,
                api_key=stored.api_key,
                model_name=stored.model_name,
                custom_endpoint=stored.custom_endpoint,
                temperature=request.temperature if request.temperature is not None else stored.temperature,
                max_tokens=request.max_tokens if request.max_tokens is not None else stored.max_tokens,
                provider_settings=stored.provider_settings,
            )
        except ValueError as e:
            self.auditor.log_invalid_provider_config(user_id, record.provider, [str(e)])
            raise GatewayError(
                code="INVALID_CONFIG",
                message=str(e),
                provider=record.provider,
                kind=ErrorKind.INVALID_CONFIG,
            )

    def _resolve_adapter(self, provider: ProviderIdentity) -> ProviderAdapter:
        adapter = self.adapters.get(provider)
        if adapter is None:
            raise GatewayError(
                code="PROVIDER_NOT_SUPPORTED",
                message=f"Provider {provider.value} is not supported",
                provider=provider,
                kind=ErrorKind.PROVIDER_UNSUPPORTED,
            )
        return adapter

    async def _dispatch(self, adapter: ProviderAdapter, request: Request, config: ProviderConfig) -> Response:
        """Call the adapter under the configured timeout and retry policy."""
        dispatch = self.config.dispatch
        attempt = 0
        while True:
            try:
                return await asyncio.wait_for(
                    adapter.generate_response(request, config),
                    timeout=dispatch.timeout_seconds,
                )
            except asyncio.TimeoutError:
                error = adapter.timed_out()
            except GatewayError as e:
                error = e

            if not error.retryable or attempt >= dispatch.max_retries:
                raise error
            attempt += 1
            logger.info(
                "Retrying %s after %s (attempt %d of %d)",
                adapter.provider.value, error.code, attempt, dispatch.max_retries,
            )

    async def _record_success(self, user_id: str, response: Response) -> None:
        try:
            updated = await asyncio.to_thread(
                self.store.increment_usage, user_id, response.tokens_used.total_tokens, datetime.now()
            )
        except Exception:
            logger.exception("Failed to record usage for user %s", user_id)
            return
        if not updated:
            logger.warning("Usage not recorded: no preference record for user %s", user_id)

    async def _record_failure(self, user_id: str, error: GatewayError) -> None:
        self._audit_rate_limit(user_id, error)
        await self._write_status(user_id, _classify_failure(error), sanitize_error(error.message))

    async def _fail_test(self, user_id: str, provider: ProviderIdentity, error: GatewayError) -> ConnectionTestResult:
        message = sanitize_error(error.message)
        await self._write_status(user_id, _classify_failure(error), message, tested=True)
        self._audit_rate_limit(user_id, error)
        self.auditor.log_connection_test_failed(user_id, provider, message)
        return ConnectionTestResult(success=False, error=message)

    def _audit_rate_limit(self, user_id: str, error: GatewayError) -> None:
        if error.details.get("status") == 429 or _classify_failure(error) == ConnectionStatus.QUOTA_EXCEEDED:
            self.auditor.log_rate_limit_exceeded(user_id, error.provider, error.message)

    async def _write_status(
        self,
        user_id: str,
        status: ConnectionStatus,
        error: Optional[str],
        tested: bool = False,
    ) -> None:
        try:
            await asyncio.to_thread(self.store.update_status, user_id, status, error, datetime.now(), tested)
        except Exception:
            logger.exception("Failed to update connection status for user %s", user_id)

    def _with_cost(self, adapter: ProviderAdapter, response: Response) -> Response:
        cost = estimate_cost(adapter.get_capabilities(), response.model, response.tokens_used)
        if cost is None:
            return response
        return Response(
            content=response.content,
            tokens_used=response.tokens_used,
            model=response.model,
            provider=response.provider,
            finish_reason=response.finish_reason,
            metadata={**response.metadata, "estimated_cost": cost},
        )
