"""
Shared gateway types.

Normalized request/response contract and provider capability metadata
used by every adapter and by the gateway itself.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional

from .token_counter import TokenUsage


class ProviderIdentity(Enum):
    """Dispatch key for a provider adapter."""
    OPENAI = "openai"
    GEMINI = "gemini"
    CLAUDE = "claude"
    DEEPSEEK = "deepseek"
    MISTRAL = "mistral"
    CUSTOM = "custom"
    NONE = "none"

    @classmethod
    def parse(cls, value: str) -> "ProviderIdentity":
        """Parse a stored provider tag, accepting legacy vendor aliases.

        Args:
            value: Provider tag as stored (e.g. "openai", "google")

        Returns:
            Matching ProviderIdentity

        Raises:
            ValueError: If the tag is unknown
        """
        if isinstance(value, cls):
            return value
        normalized = (value or "").strip().lower()
        normalized = _PROVIDER_ALIASES.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError:
            valid = [p.value for p in cls]
            raise ValueError(f"Unknown provider '{value}', must be one of: {valid}")

    @property
    def error_prefix(self) -> str:
        """Prefix used in provider error codes, e.g. OPENAI_429."""
        return self.value.upper()


_PROVIDER_ALIASES = {
    "google": "gemini",
    "anthropic": "claude",
}


class ConnectionStatus(Enum):
    """Cached judgment of whether a user's credential currently works."""
    UNTESTED = "untested"
    CONNECTED = "connected"
    ERROR = "error"
    QUOTA_EXCEEDED = "quota_exceeded"


DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 2000


def _check_temperature(value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError("temperature must be a number")
    if not 0.0 <= value <= 2.0:
        raise ValueError("temperature must be between 0.0 and 2.0")


def _check_max_tokens(value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError("max_tokens must be a positive integer")


@dataclass
class ProviderConfig:
    """Decrypted, per-dispatch provider configuration.

    Lives only for the duration of a single request and is never persisted.
    The API key is excluded from repr so it cannot leak through logging.
    A temperature or max_tokens of None means "use the gateway defaults".
    """
    provider: ProviderIdentity
    api_key: str = field(repr=False)
    model_name: Optional[str] = None
    custom_endpoint: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    provider_settings: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """Validate sampling parameters."""
        self.provider = ProviderIdentity.parse(self.provider)
        if self.temperature is not None:
            _check_temperature(self.temperature)
        if self.max_tokens is not None:
            _check_max_tokens(self.max_tokens)
        if self.provider_settings is None:
            self.provider_settings = {}


@dataclass(frozen=True)
class Request:
    """Normalized generation request.

    Override ranges are checked against the stored configuration by the
    gateway; only their types are checked here.
    """
    prompt: str
    system_prompt: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    model: Optional[str] = None

    def __post_init__(self):
        """Validate prompt and override types."""
        if not isinstance(self.prompt, str) or not self.prompt.strip():
            raise ValueError("prompt is required and cannot be empty")
        if self.temperature is not None and (
            isinstance(self.temperature, bool) or not isinstance(self.temperature, (int, float))
        ):
            raise ValueError("temperature must be a number")
        if self.max_tokens is not None and (isinstance(self.max_tokens, bool) or not isinstance(self.max_tokens, int)):
            raise ValueError("max_tokens must be an integer")


@dataclass(frozen=True)
class Response:
    """Normalized generation response."""
    content: str
    tokens_used: TokenUsage
    model: str
    provider: ProviderIdentity
    finish_reason: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "content": self.content,
            "tokens_used": {
                "input": self.tokens_used.prompt_tokens,
                "output": self.tokens_used.completion_tokens,
                "total": self.tokens_used.total_tokens,
            },
            "model": self.model,
            "provider": self.provider.value,
            "finish_reason": self.finish_reason,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class ModelInfo:
    """A model offered by a provider."""
    id: str
    name: str
    description: str
    context_length: int
    input_cost_per_1k: float
    output_cost_per_1k: float
    is_default: bool = False


@dataclass(frozen=True)
class FeatureSupport:
    """Whether a provider supports a feature."""
    name: str
    supported: bool
    description: Optional[str] = None


@dataclass(frozen=True)
class PricingInfo:
    """Pricing tier of a provider."""
    type: str  # "free", "freemium" or "paid"
    free_quota: Optional[str] = None
    paid_plans: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class UsageLimits:
    """Published rate limits of a provider."""
    requests_per_minute: Optional[int] = None
    requests_per_day: Optional[int] = None
    tokens_per_minute: Optional[int] = None
    tokens_per_day: Optional[int] = None


@dataclass(frozen=True)
class CapabilityDescriptor:
    """Static provider metadata used for discovery, not for dispatch."""
    provider: ProviderIdentity
    name: str
    description: str
    models: List[ModelInfo]
    features: List[FeatureSupport]
    pricing: PricingInfo
    limits: UsageLimits
    setup_instructions: str
    website_url: str

    @property
    def default_model(self) -> Optional[ModelInfo]:
        for model in self.models:
            if model.is_default:
                return model
        return self.models[0] if self.models else None

    def get_model(self, model_id: str) -> Optional[ModelInfo]:
        for model in self.models:
            if model.id == model_id:
                return model
        return None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["provider"] = self.provider.value
        return data
