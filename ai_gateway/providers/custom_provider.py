"""
Custom endpoint adapter.

Talks to user-hosted endpoints without per-endpoint configuration. The
decoded JSON body is offered to an ordered list of response shapes; the
first shape that matches produces the content:

    OpenAIShape       choices[0].message.content or choices[0].text
    PlainStringShape  the body is a bare JSON string
    KeyedFieldShape   first non-empty string among content/text/response/output
    RawFallbackShape  the whole payload, serialized
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from ai_gateway.core.errors import ErrorKind
from ai_gateway.core.token_counter import TokenUsage, estimate_usage
from ai_gateway.core.types import (
    CapabilityDescriptor,
    FeatureSupport,
    ModelInfo,
    PricingInfo,
    ProviderConfig,
    ProviderIdentity,
    Request,
    Response,
    UsageLimits,
)

from .base import HttpAdapter

DEFAULT_CUSTOM_MODEL = "custom-model"
REQUEST_FORMATS = ("openai", "custom")

# Settings consumed by the adapter itself, never forwarded in a custom body
_RESERVED_SETTINGS = {"headers", "request_format", "requestFormat"}


@dataclass(frozen=True)
class ShapeMatch:
    """Content extracted by a response shape."""
    content: str
    finish_reason: str = "stop"
    usage: Optional[TokenUsage] = None


class ResponseShape(ABC):
    """One way an arbitrary endpoint may lay out its reply."""

    name: str = ""

    @abstractmethod
    def match(self, payload: Any) -> Optional[ShapeMatch]:
        """Return the extracted content, or None if the payload doesn't fit."""


class OpenAIShape(ResponseShape):
    name = "openai"

    def match(self, payload: Any) -> Optional[ShapeMatch]:
        if not isinstance(payload, dict):
            return None
        choices = payload.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            return None

        choice = choices[0]
        message = choice.get("message")
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str):
            content = choice.get("text") if isinstance(choice.get("text"), str) else ""

        usage = None
        raw_usage = payload.get("usage")
        if isinstance(raw_usage, dict):
            prompt_tokens = raw_usage.get("prompt_tokens")
            completion_tokens = raw_usage.get("completion_tokens")
            if isinstance(prompt_tokens, int) and isinstance(completion_tokens, int):
                usage = TokenUsage(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens)

        return ShapeMatch(
            content=content,
            finish_reason=choice.get("finish_reason") or "stop",
            usage=usage,
        )


class PlainStringShape(ResponseShape):
    name = "plain_string"

    def match(self, payload: Any) -> Optional[ShapeMatch]:
        if isinstance(payload, str):
            return ShapeMatch(content=payload)
        return None


class KeyedFieldShape(ResponseShape):
    name = "keyed_field"
    keys = ("content", "text", "response", "output")

    def match(self, payload: Any) -> Optional[ShapeMatch]:
        if not isinstance(payload, dict):
            return None
        for key in self.keys:
            value = payload.get(key)
            if isinstance(value, str) and value:
                return ShapeMatch(content=value)
        return None


class RawFallbackShape(ResponseShape):
    name = "raw"

    def match(self, payload: Any) -> Optional[ShapeMatch]:
        return ShapeMatch(content=json.dumps(payload, ensure_ascii=False, default=str))


RESPONSE_SHAPES: Tuple[ResponseShape, ...] = (
    OpenAIShape(),
    PlainStringShape(),
    KeyedFieldShape(),
    RawFallbackShape(),
)


def parse_custom_payload(payload: Any, shapes: Tuple[ResponseShape, ...] = RESPONSE_SHAPES) -> Tuple[str, ShapeMatch]:
    """Run the shapes in order and return (shape name, match) of the first hit."""
    for shape in shapes:
        matched = shape.match(payload)
        if matched is not None:
            return shape.name, matched
    raise ValueError("no response shape matched")


class CustomAdapter(HttpAdapter):
    """User-hosted endpoint, OpenAI-style or free-form."""

    provider = ProviderIdentity.CUSTOM
    display_name = "Custom"
    default_model = DEFAULT_CUSTOM_MODEL

    def build_body(self, request: Request, config: ProviderConfig, request_format: str) -> Dict[str, Any]:
        model = self.resolve_model(request, config)
        temperature, max_tokens = self.resolve_params(request, config)

        if request_format == "openai":
            return {
                "model": model,
                "messages": self.build_messages(request),
                "temperature": temperature,
                "max_tokens": max_tokens,
                "stream": False,
            }

        body: Dict[str, Any] = {
            "prompt": request.prompt,
            "system_prompt": request.system_prompt,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "model": model,
        }
        settings = config.provider_settings or {}
        body.update({k: v for k, v in settings.items() if k not in _RESERVED_SETTINGS})
        return body

    async def generate_response(self, request: Request, config: ProviderConfig) -> Response:
        if not config.custom_endpoint:
            raise self.error(
                "NO_ENDPOINT",
                "Custom endpoint is required for custom provider",
                kind=ErrorKind.INVALID_CONFIG,
            )

        settings = config.provider_settings or {}
        request_format = settings.get("request_format") or settings.get("requestFormat") or "openai"
        if request_format not in REQUEST_FORMATS:
            raise self.error(
                "INVALID_REQUEST_FORMAT",
                f"Unknown request format '{request_format}', must be one of: {list(REQUEST_FORMATS)}",
                kind=ErrorKind.INVALID_CONFIG,
            )

        headers = {"Content-Type": "application/json"}
        extra_headers = settings.get("headers") or {}
        if isinstance(extra_headers, dict):
            headers.update({str(k): str(v) for k, v in extra_headers.items()})
        if config.api_key:
            headers["Authorization"] = f"Bearer {config.api_key}"

        body = self.build_body(request, config, request_format)
        payload = await self.post_json(config.custom_endpoint, headers, body)

        shape_name, matched = parse_custom_payload(payload)

        tokens = matched.usage
        if tokens is None:
            prompt_text = f"{request.system_prompt or ''}{request.prompt}"
            tokens = estimate_usage(prompt_text, matched.content)

        model = self.resolve_model(request, config)
        if isinstance(payload, dict) and isinstance(payload.get("model"), str) and payload["model"]:
            model = payload["model"]

        metadata: Dict[str, Any] = {
            "response_shape": shape_name,
            "token_count_source": tokens.source,
        }
        if isinstance(payload, dict):
            for key in ("id", "created"):
                if key in payload:
                    metadata[key] = payload[key]

        return Response(
            content=matched.content,
            tokens_used=tokens,
            model=model,
            provider=self.provider,
            finish_reason=matched.finish_reason,
            metadata=metadata,
        )

    def get_capabilities(self) -> CapabilityDescriptor:
        return CapabilityDescriptor(
            provider=self.provider,
            name="Custom Provider",
            description="Connect to your own AI endpoint or local model",
            models=[
                ModelInfo(
                    id=DEFAULT_CUSTOM_MODEL,
                    name="Custom Model",
                    description="Your custom AI model",
                    context_length=0,
                    input_cost_per_1k=0.0,
                    output_cost_per_1k=0.0,
                    is_default=True,
                ),
            ],
            features=[
                FeatureSupport("Text Generation", True),
                FeatureSupport("Code Generation", True, "Depends on your model"),
                FeatureSupport("Function Calling", False, "Depends on your implementation"),
                FeatureSupport("JSON Mode", True, "Depends on your model"),
                FeatureSupport("Vision", False, "Depends on your model"),
                FeatureSupport("Custom Format", True, "Full control over request/response format"),
            ],
            pricing=PricingInfo(type="free", free_quota="Depends on your setup"),
            limits=UsageLimits(requests_per_minute=0, tokens_per_minute=0),
            setup_instructions="Provide your custom endpoint URL and configure request format",
            website_url="#",
        )
