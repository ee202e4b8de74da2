"""
OpenAI adapter.

Uses the official openai SDK. DeepSeek and Mistral speak the same chat
completions protocol and reuse OpenAICompatibleAdapter with their own base
URLs.
"""

import logging
from typing import Any, Dict, Optional

from openai import (
    APIConnectionError,
    APIResponseValidationError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
)

from ai_gateway.core.security import sanitize_error
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

from .base import ProviderAdapter

logger = logging.getLogger(__name__)


class OpenAICompatibleAdapter(ProviderAdapter):
    """Adapter for any chat completions endpoint the openai SDK can reach."""

    base_url: Optional[str] = None

    def client_options(self, config: ProviderConfig) -> Dict[str, Any]:
        """Extra AsyncOpenAI constructor arguments for this provider."""
        return {"base_url": self.base_url} if self.base_url else {}

    def _client(self, config: ProviderConfig) -> AsyncOpenAI:
        return AsyncOpenAI(
            api_key=config.api_key,
            max_retries=0,
            http_client=self.http_client,
            **self.client_options(config),
        )

    async def generate_response(self, request: Request, config: ProviderConfig) -> Response:
        model = self.resolve_model(request, config)
        temperature, max_tokens = self.resolve_params(request, config)
        messages = self.build_messages(request)

        client = self._client(config)
        try:
            completion = await client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                stream=False,
            )
        # APITimeoutError subclasses APIConnectionError
        except APITimeoutError:
            logger.warning("%s request timed out", self.display_name)
            raise self.timed_out()
        except APIConnectionError as e:
            logger.warning("%s request failed: %s", self.display_name, sanitize_error(str(e)))
            raise self.request_failed(e)
        except APIStatusError as e:
            logger.warning("%s returned HTTP %d", self.display_name, e.status_code)
            body = e.body if isinstance(e.body, dict) else {}
            if "message" in body and "error" not in body:
                body = {"error": body}
            raise self.status_error(e.status_code, body)
        except APIResponseValidationError:
            raise self.malformed("response failed validation")
        finally:
            # An injected client is shared and owned by the caller
            if self.http_client is None:
                await client.close()

        try:
            choice = completion.choices[0]
            content = choice.message.content or ""
            finish_reason = choice.finish_reason or "stop"
        except (AttributeError, IndexError, TypeError):
            raise self.malformed("missing choices[0].message")

        usage = getattr(completion, "usage", None)
        if usage is not None and usage.prompt_tokens is not None and usage.completion_tokens is not None:
            tokens = TokenUsage(prompt_tokens=usage.prompt_tokens, completion_tokens=usage.completion_tokens)
        else:
            prompt_text = "\n".join(m["content"] for m in messages)
            tokens = estimate_usage(prompt_text, content)

        return Response(
            content=content,
            tokens_used=tokens,
            model=getattr(completion, "model", None) or model,
            provider=self.provider,
            finish_reason=finish_reason,
            metadata={
                "id": getattr(completion, "id", None),
                "created": getattr(completion, "created", None),
                "token_count_source": tokens.source,
            },
        )


class OpenAIAdapter(OpenAICompatibleAdapter):
    """OpenAI chat completions."""

    provider = ProviderIdentity.OPENAI
    display_name = "OpenAI"
    default_model = "gpt-4"

    def client_options(self, config: ProviderConfig) -> Dict[str, Any]:
        settings = config.provider_settings or {}
        options: Dict[str, Any] = {}
        if settings.get("organization"):
            options["organization"] = settings["organization"]
        if settings.get("base_url"):
            options["base_url"] = settings["base_url"]
        return options

    def get_capabilities(self) -> CapabilityDescriptor:
        return CapabilityDescriptor(
            provider=self.provider,
            name="OpenAI",
            description="Advanced AI models including GPT-4 and GPT-3.5",
            models=[
                ModelInfo(
                    id="gpt-4",
                    name="GPT-4",
                    description="Most capable model, best for complex tasks",
                    context_length=8192,
                    input_cost_per_1k=0.03,
                    output_cost_per_1k=0.06,
                    is_default=True,
                ),
                ModelInfo(
                    id="gpt-4-turbo",
                    name="GPT-4 Turbo",
                    description="Faster and more cost-effective than GPT-4",
                    context_length=128000,
                    input_cost_per_1k=0.01,
                    output_cost_per_1k=0.03,
                ),
                ModelInfo(
                    id="gpt-3.5-turbo",
                    name="GPT-3.5 Turbo",
                    description="Fast and cost-effective for simpler tasks",
                    context_length=16385,
                    input_cost_per_1k=0.001,
                    output_cost_per_1k=0.002,
                ),
            ],
            features=[
                FeatureSupport("Text Generation", True),
                FeatureSupport("Code Generation", True),
                FeatureSupport("Function Calling", True),
                FeatureSupport("JSON Mode", True),
                FeatureSupport("Vision", True, "GPT-4 Vision models only"),
                FeatureSupport("Streaming", True),
            ],
            pricing=PricingInfo(type="paid", paid_plans=["Pay-per-use", "ChatGPT Plus ($20/month)"]),
            limits=UsageLimits(requests_per_minute=3500, tokens_per_minute=90000),
            setup_instructions="Get your API key from https://platform.openai.com/api-keys",
            website_url="https://openai.com",
        )
