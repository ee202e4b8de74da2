"""
Provider adapter contract.

Adapters translate the normalized Request into one vendor's wire format,
issue the call and normalize the result. Every failure leaves an adapter
as a GatewayError tagged with that adapter's own provider.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

import httpx

from ai_gateway.core.errors import ErrorKind, GatewayError
from ai_gateway.core.security import sanitize_error
from ai_gateway.core.types import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
    CapabilityDescriptor,
    ProviderConfig,
    ProviderIdentity,
    Request,
    Response,
)

logger = logging.getLogger(__name__)

# Upper bound for clients the adapters own; the gateway's own timeout is
# normally the tighter one.
DEFAULT_HTTP_TIMEOUT = httpx.Timeout(120.0, connect=10.0)


def extract_error_message(body: Any) -> Optional[str]:
    """Pull a human-readable message out of an upstream error body.

    Understands ``{"error": {"message": ...}}``, ``{"error": "..."}`` and
    ``{"message": ...}``.
    """
    if not isinstance(body, dict):
        return None
    error = body.get("error")
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]
    if isinstance(error, str) and error:
        return error
    if isinstance(body.get("message"), str):
        return body["message"]
    return None


class ProviderAdapter(ABC):
    """Abstract base class for provider adapters.

    Adapters hold no per-request state, so one instance may serve
    concurrent calls. An optional shared httpx.AsyncClient is used for
    every call when given; otherwise each call opens its own client.
    """

    provider: ProviderIdentity = ProviderIdentity.NONE
    display_name: str = ""
    default_model: str = ""

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None):
        self.http_client = http_client

    @abstractmethod
    async def generate_response(self, request: Request, config: ProviderConfig) -> Response:
        """Send a normalized request to the provider.

        Args:
            request: Normalized generation request
            config: Decrypted configuration for this dispatch only

        Returns:
            Normalized response

        Raises:
            GatewayError: Tagged with this adapter's provider
        """

    @abstractmethod
    def get_capabilities(self) -> CapabilityDescriptor:
        """Return static provider metadata for discovery."""

    def resolve_model(self, request: Request, config: ProviderConfig) -> str:
        return request.model or config.model_name or self.default_model

    @staticmethod
    def resolve_params(request: Request, config: ProviderConfig) -> Tuple[float, int]:
        """Return (temperature, max_tokens); request values win, then config, then defaults."""
        temperature = next(v for v in (request.temperature, config.temperature, DEFAULT_TEMPERATURE) if v is not None)
        max_tokens = next(v for v in (request.max_tokens, config.max_tokens, DEFAULT_MAX_TOKENS) if v is not None)
        return temperature, max_tokens

    @staticmethod
    def build_messages(request: Request) -> List[Dict[str, str]]:
        messages = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.append({"role": "user", "content": request.prompt})
        return messages

    def error(
        self,
        suffix: str,
        message: str,
        retryable: bool = False,
        kind: ErrorKind = ErrorKind.REQUEST_FAILED,
        details: Optional[Dict[str, Any]] = None,
    ) -> GatewayError:
        """Build a GatewayError coded ``<PROVIDER>_<suffix>`` for this adapter."""
        return GatewayError(
            code=f"{self.provider.error_prefix}_{suffix}",
            message=sanitize_error(message),
            provider=self.provider,
            retryable=retryable,
            kind=kind,
            details=details,
        )

    def status_error(self, status: int, body: Any) -> GatewayError:
        """Map a non-2xx upstream response."""
        message = extract_error_message(body) or f"{self.display_name} API error: {status}"
        return GatewayError.from_status(
            self.provider,
            status,
            sanitize_error(message),
            details={"body": body},
        )

    def malformed(self, reason: str) -> GatewayError:
        return self.error(
            "MALFORMED_RESPONSE",
            f"{self.display_name} returned an unexpected response: {reason}",
            kind=ErrorKind.UPSTREAM_MALFORMED,
        )

    def timed_out(self) -> GatewayError:
        return self.error("TIMEOUT", f"{self.display_name} request timed out", retryable=True)

    def request_failed(self, exc: BaseException) -> GatewayError:
        return self.error(
            "REQUEST_FAILED",
            str(exc) or f"{self.display_name} request failed",
            details={"exception": type(exc).__name__},
        )


class HttpAdapter(ProviderAdapter):
    """Adapter speaking JSON over HTTPS through httpx."""

    async def post_json(self, url: str, headers: Dict[str, str], body: Dict[str, Any]) -> Any:
        """POST a JSON body and return the decoded 2xx payload.

        Raises:
            GatewayError: On transport failure, timeout, non-2xx status or
                an undecodable body
        """
        try:
            if self.http_client is not None:
                response = await self.http_client.post(url, headers=headers, json=body)
            else:
                async with httpx.AsyncClient(timeout=DEFAULT_HTTP_TIMEOUT) as client:
                    response = await client.post(url, headers=headers, json=body)
        except httpx.TimeoutException:
            logger.warning("%s request timed out", self.display_name)
            raise self.timed_out()
        except httpx.HTTPError as e:
            logger.warning("%s request failed: %s", self.display_name, sanitize_error(str(e)))
            raise self.request_failed(e)

        if not response.is_success:
            try:
                error_body = response.json()
            except ValueError:
                error_body = {}
            logger.warning("%s returned HTTP %d", self.display_name, response.status_code)
            raise self.status_error(response.status_code, error_body)

        try:
            return response.json()
        except ValueError:
            raise self.malformed("body is not valid JSON")
