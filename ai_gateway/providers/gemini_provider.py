"""
Google Gemini adapter (generateContent REST API over httpx).

Gemini reports no usage in its common tier, so token counts are always
estimated and flagged as such in the response metadata.
"""

from ai_gateway.core.token_counter import estimate_usage
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

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta"


class GeminiAdapter(HttpAdapter):
    """Gemini generateContent."""

    provider = ProviderIdentity.GEMINI
    display_name = "Gemini"
    default_model = "gemini-2.0-flash"

    @staticmethod
    def build_prompt(request: Request) -> str:
        """Fold the system prompt into the user turn."""
        if request.system_prompt:
            return f"{request.system_prompt}\n\nUser: {request.prompt}"
        return request.prompt

    async def generate_response(self, request: Request, config: ProviderConfig) -> Response:
        model = self.resolve_model(request, config)
        temperature, max_tokens = self.resolve_params(request, config)
        settings = config.provider_settings or {}
        full_prompt = self.build_prompt(request)

        body = {
            "contents": [{"role": "user", "parts": [{"text": full_prompt}]}],
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": max_tokens,
            },
        }
        safety_settings = settings.get("safety_settings") or settings.get("safetySettings")
        if safety_settings:
            body["safetySettings"] = safety_settings

        headers = {
            "Content-Type": "application/json",
            "x-goog-api-key": config.api_key,
        }
        url = f"{GEMINI_API_BASE}/models/{model}:generateContent"

        data = await self.post_json(url, headers, body)
        try:
            candidate = data["candidates"][0]
            parts = candidate["content"]["parts"]
            content = "".join(part.get("text", "") for part in parts)
        except (KeyError, IndexError, TypeError, AttributeError):
            raise self.malformed("missing candidates[0].content.parts")

        tokens = estimate_usage(full_prompt, content)

        return Response(
            content=content,
            tokens_used=tokens,
            model=model,
            provider=self.provider,
            finish_reason=candidate.get("finishReason") or "stop",
            metadata={
                "safety_ratings": candidate.get("safetyRatings"),
                "citation_metadata": candidate.get("citationMetadata"),
                "token_count_source": tokens.source,
            },
        )

    def get_capabilities(self) -> CapabilityDescriptor:
        return CapabilityDescriptor(
            provider=self.provider,
            name="Google Gemini",
            description="Google's advanced AI model with multimodal capabilities",
            models=[
                ModelInfo(
                    id="gemini-2.0-flash",
                    name="Gemini 2.0 Flash",
                    description="Latest and fastest Gemini model",
                    context_length=1000000,
                    input_cost_per_1k=0.00015,
                    output_cost_per_1k=0.0006,
                    is_default=True,
                ),
                ModelInfo(
                    id="gemini-1.5-pro",
                    name="Gemini 1.5 Pro",
                    description="Most capable model with large context window",
                    context_length=2000000,
                    input_cost_per_1k=0.00125,
                    output_cost_per_1k=0.005,
                ),
                ModelInfo(
                    id="gemini-1.5-flash",
                    name="Gemini 1.5 Flash",
                    description="Fast and efficient for high-frequency tasks",
                    context_length=1000000,
                    input_cost_per_1k=0.000075,
                    output_cost_per_1k=0.0003,
                ),
            ],
            features=[
                FeatureSupport("Text Generation", True),
                FeatureSupport("Code Generation", True),
                FeatureSupport("Function Calling", True),
                FeatureSupport("JSON Mode", True),
                FeatureSupport("Vision", True),
                FeatureSupport("Audio Processing", True),
                FeatureSupport("Long Context", True, "Up to 2M tokens"),
            ],
            pricing=PricingInfo(type="freemium", free_quota="15 requests per minute", paid_plans=["Pay-per-use"]),
            limits=UsageLimits(requests_per_minute=15, requests_per_day=1500),
            setup_instructions="Get your API key from https://aistudio.google.com/app/apikey",
            website_url="https://gemini.google.com",
        )
