"""DeepSeek adapter (OpenAI-compatible protocol)."""

from ai_gateway.core.types import (
    CapabilityDescriptor,
    FeatureSupport,
    ModelInfo,
    PricingInfo,
    ProviderIdentity,
    UsageLimits,
)

from .openai_provider import OpenAICompatibleAdapter

DEEPSEEK_BASE_URL = "https://api.deepseek.com/v1"


class DeepSeekAdapter(OpenAICompatibleAdapter):
    """DeepSeek chat completions."""

    provider = ProviderIdentity.DEEPSEEK
    display_name = "DeepSeek"
    default_model = "deepseek-chat"
    base_url = DEEPSEEK_BASE_URL

    def get_capabilities(self) -> CapabilityDescriptor:
        return CapabilityDescriptor(
            provider=self.provider,
            name="DeepSeek",
            description="Cost-effective AI models with strong coding capabilities",
            models=[
                ModelInfo(
                    id="deepseek-chat",
                    name="DeepSeek Chat",
                    description="General purpose conversational model",
                    context_length=32768,
                    input_cost_per_1k=0.00014,
                    output_cost_per_1k=0.00028,
                    is_default=True,
                ),
                ModelInfo(
                    id="deepseek-coder",
                    name="DeepSeek Coder",
                    description="Specialized model for coding tasks",
                    context_length=16384,
                    input_cost_per_1k=0.00014,
                    output_cost_per_1k=0.00028,
                ),
            ],
            features=[
                FeatureSupport("Text Generation", True),
                FeatureSupport("Code Generation", True, "Excellent coding capabilities"),
                FeatureSupport("Function Calling", False),
                FeatureSupport("JSON Mode", True),
                FeatureSupport("Vision", False),
                FeatureSupport("Streaming", True),
            ],
            pricing=PricingInfo(type="paid", paid_plans=["Pay-per-use (very cost-effective)"]),
            limits=UsageLimits(requests_per_minute=60, tokens_per_minute=1000000),
            setup_instructions="Get your API key from https://platform.deepseek.com/api_keys",
            website_url="https://deepseek.com",
        )
