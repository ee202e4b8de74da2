"""
Token counting and usage tracking.

Normalizes token counts across providers, including the deterministic
estimate used when a provider reports no usage.
"""

import math
from dataclasses import dataclass

CHARS_PER_TOKEN = 4


@dataclass(frozen=True)
class TokenUsage:
    """Token usage for a single response.

    The total is always derived from its parts, so input + output == total
    holds for every response regardless of what the provider reported.
    """
    prompt_tokens: int
    completion_tokens: int
    estimated: bool = False

    def __post_init__(self):
        """Validate token counts are non-negative."""
        if self.prompt_tokens < 0 or self.completion_tokens < 0:
            raise ValueError("token counts must be >= 0")

    @property
    def total_tokens(self) -> int:
        """Total tokens used (prompt + completion)."""
        return self.prompt_tokens + self.completion_tokens

    @property
    def source(self) -> str:
        """Either "exact" or "estimated", recorded in response metadata."""
        return "estimated" if self.estimated else "exact"


def estimate_tokens(text: str) -> int:
    """Estimate tokens for a string as characters / 4, rounded up."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_usage(prompt_text: str, completion_text: str) -> TokenUsage:
    """Build an estimated TokenUsage for providers that report no counts.

    Args:
        prompt_text: Full text sent to the provider
        completion_text: Text returned by the provider

    Returns:
        TokenUsage flagged as estimated
    """
    return TokenUsage(
        prompt_tokens=estimate_tokens(prompt_text),
        completion_tokens=estimate_tokens(completion_text),
        estimated=True,
    )
