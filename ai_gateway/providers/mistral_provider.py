"""Mistral adapter (OpenAI-compatible protocol)."""

from typing import Any, Dict

from ai_gateway.core.types import (
    CapabilityDescriptor,
    FeatureSupport,
    ModelInfo,
    PricingInfo,
    ProviderConfig,
    ProviderIdentity,
    UsageLimits,
)

from .openai_provider import OpenAICompatibleAdapter

MISTRAL_BASE_URL = "https://api.mistral.ai/v1"


class MistralAdapter(OpenAICompatibleAdapter):
    """Mistral chat completions; ``endpoint`` in provider settings overrides the base URL."""

    provider = ProviderIdentity.MISTRAL
    display_name = "Mistral"
    default_model = "mistral-large-latest"
    base_url = MISTRAL_BASE_URL

    def client_options(self, config: ProviderConfig) -> Dict[str, Any]:
        endpoint = (config.provider_settings or {}).get("endpoint")
        return {"base_url": endpoint or self.base_url}

    def get_capabilities(self) -> CapabilityDescriptor:
        return CapabilityDescriptor(
            provider=self.provider,
            name="Mistral AI",
            description="European AI models with strong multilingual capabilities",
            models=[
                ModelInfo(
                    id="mistral-large-latest",
                    name="Mistral Large",
                    description="Most capable model for complex reasoning",
                    context_length=32768,
                    input_cost_per_1k=0.004,
                    output_cost_per_1k=0.012,
                    is_default=True,
                ),
                ModelInfo(
                    id="mistral-medium-latest",
                    name="Mistral Medium",
                    description="Balanced performance for most tasks",
                    context_length=32768,
                    input_cost_per_1k=0.0025,
                    output_cost_per_1k=0.0075,
                ),
                ModelInfo(
                    id="mistral-small-latest",
                    name="Mistral Small",
                    description="Fast and cost-effective for simple tasks",
                    context_length=32768,
                    input_cost_per_1k=0.001,
                    output_cost_per_1k=0.003,
                ),
            ],
            features=[
                FeatureSupport("Text Generation", True),
                FeatureSupport("Code Generation", True),
                FeatureSupport("Function Calling", True),
                FeatureSupport("JSON Mode", True),
                FeatureSupport("Vision", False),
                FeatureSupport("Multilingual", True, "Strong support for European languages"),
                FeatureSupport("Streaming", True),
            ],
            pricing=PricingInfo(type="paid", paid_plans=["Pay-per-use"]),
            limits=UsageLimits(requests_per_minute=100, tokens_per_minute=1000000),
            setup_instructions="Get your API key from https://console.mistral.ai/",
            website_url="https://mistral.ai",
        )
