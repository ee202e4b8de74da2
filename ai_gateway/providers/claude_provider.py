"""Anthropic Claude adapter (Messages API over httpx)."""

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

CLAUDE_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"


class ClaudeAdapter(HttpAdapter):
    """Claude Messages API.

    The system prompt travels as a top-level field rather than a message.
    """

    provider = ProviderIdentity.CLAUDE
    display_name = "Claude"
    default_model = "claude-3-sonnet-20240229"

    async def generate_response(self, request: Request, config: ProviderConfig) -> Response:
        model = self.resolve_model(request, config)
        temperature, max_tokens = self.resolve_params(request, config)
        settings = config.provider_settings or {}

        headers = {
            "Content-Type": "application/json",
            "x-api-key": config.api_key,
            "anthropic-version": settings.get("version") or ANTHROPIC_VERSION,
        }
        body = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": request.prompt}],
        }
        if request.system_prompt:
            body["system"] = request.system_prompt

        data = await self.post_json(CLAUDE_MESSAGES_URL, headers, body)
        if not isinstance(data, dict) or not isinstance(data.get("content"), list):
            raise self.malformed("missing content blocks")

        content = "".join(
            block.get("text", "")
            for block in data["content"]
            if isinstance(block, dict) and block.get("type", "text") == "text"
        )

        usage = data.get("usage") or {}
        if isinstance(usage.get("input_tokens"), int) and isinstance(usage.get("output_tokens"), int):
            tokens = TokenUsage(prompt_tokens=usage["input_tokens"], completion_tokens=usage["output_tokens"])
        else:
            tokens = estimate_usage(f"{request.system_prompt or ''}{request.prompt}", content)

        return Response(
            content=content,
            tokens_used=tokens,
            model=data.get("model") or model,
            provider=self.provider,
            finish_reason=data.get("stop_reason") or "stop",
            metadata={
                "id": data.get("id"),
                "type": data.get("type"),
                "role": data.get("role"),
                "token_count_source": tokens.source,
            },
        )

    def get_capabilities(self) -> CapabilityDescriptor:
        return CapabilityDescriptor(
            provider=self.provider,
            name="Anthropic Claude",
            description="Advanced AI assistant with strong reasoning and safety features",
            models=[
                ModelInfo(
                    id="claude-3-opus-20240229",
                    name="Claude 3 Opus",
                    description="Most powerful model for complex tasks",
                    context_length=200000,
                    input_cost_per_1k=0.015,
                    output_cost_per_1k=0.075,
                ),
                ModelInfo(
                    id="claude-3-sonnet-20240229",
                    name="Claude 3 Sonnet",
                    description="Balanced performance and speed",
                    context_length=200000,
                    input_cost_per_1k=0.003,
                    output_cost_per_1k=0.015,
                    is_default=True,
                ),
                ModelInfo(
                    id="claude-3-haiku-20240307",
                    name="Claude 3 Haiku",
                    description="Fastest and most cost-effective",
                    context_length=200000,
                    input_cost_per_1k=0.00025,
                    output_cost_per_1k=0.00125,
                ),
            ],
            features=[
                FeatureSupport("Text Generation", True),
                FeatureSupport("Code Generation", True),
                FeatureSupport("Function Calling", False),
                FeatureSupport("JSON Mode", True),
                FeatureSupport("Vision", True, "Claude 3 models only"),
                FeatureSupport("Long Context", True, "Up to 200K tokens"),
                FeatureSupport("Safety Features", True, "Built-in safety measures"),
            ],
            pricing=PricingInfo(type="paid", paid_plans=["Pay-per-use", "Claude Pro ($20/month)"]),
            limits=UsageLimits(requests_per_minute=50, tokens_per_minute=40000),
            setup_instructions="Get your API key from https://console.anthropic.com/",
            website_url="https://anthropic.com",
        )
