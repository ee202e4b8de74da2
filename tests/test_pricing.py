"""
Unit tests for token counting and pricing calculations.

Tests token estimation, cost accuracy and rounding behavior.
"""

import pytest

from ai_gateway.core.pricing import estimate_cost
from ai_gateway.core.token_counter import TokenUsage, estimate_tokens, estimate_usage
from ai_gateway.providers import ClaudeAdapter, CustomAdapter, OpenAIAdapter


class TestTokenUsage:
    """Test TokenUsage dataclass."""

    def test_total_tokens_calculation(self):
        """Verify total_tokens is computed correctly."""
        usage = TokenUsage(prompt_tokens=100, completion_tokens=50)
        assert usage.total_tokens == 150
        assert usage.source == "exact"

    def test_zero_tokens(self):
        usage = TokenUsage(prompt_tokens=0, completion_tokens=0)
        assert usage.total_tokens == 0

    def test_negative_tokens_rejected(self):
        with pytest.raises(ValueError):
            TokenUsage(prompt_tokens=-1, completion_tokens=0)


class TestTokenEstimation:
    """Test the characters / 4 estimate."""

    @pytest.mark.parametrize("text,expected", [("", 0), ("a", 1), ("abcd", 1), ("abcde", 2), ("x" * 400, 100)])
    def test_estimate_tokens_rounds_up(self, text, expected):
        assert estimate_tokens(text) == expected

    def test_estimate_usage_is_flagged(self):
        usage = estimate_usage("Hello world!", "OK")
        assert usage.prompt_tokens == 3
        assert usage.completion_tokens == 1
        assert usage.total_tokens == 4
        assert usage.estimated is True
        assert usage.source == "estimated"


class TestCostCalculation:
    """Test cost calculation accuracy and rounding."""

    def test_exact_cost_gpt4(self):
        """Verify exact cost calculation for GPT-4."""
        usage = TokenUsage(prompt_tokens=1000, completion_tokens=500)
        cost = estimate_cost(OpenAIAdapter().get_capabilities(), "gpt-4", usage)
        # Prompt: 1000/1000 * $0.03 = $0.03
        # Completion: 500/1000 * $0.06 = $0.03
        assert cost == 0.06

    def test_exact_cost_claude_haiku(self):
        usage = TokenUsage(prompt_tokens=4000, completion_tokens=2000)
        cost = estimate_cost(ClaudeAdapter().get_capabilities(), "claude-3-haiku-20240307", usage)
        # 4 * 0.00025 + 2 * 0.00125
        assert cost == 0.0035

    def test_rounding_is_upward(self):
        """A fraction of a micro-dollar rounds up, never down."""
        usage = TokenUsage(prompt_tokens=1, completion_tokens=0)
        cost = estimate_cost(ClaudeAdapter().get_capabilities(), "claude-3-haiku-20240307", usage)
        # 1/1000 * 0.00025 = 0.00000025 -> 0.000001
        assert cost == 0.000001

    def test_unknown_model_returns_none(self):
        usage = TokenUsage(prompt_tokens=10, completion_tokens=10)
        assert estimate_cost(OpenAIAdapter().get_capabilities(), "unknown-model", usage) is None

    def test_free_custom_model(self):
        usage = TokenUsage(prompt_tokens=10000, completion_tokens=10000)
        assert estimate_cost(CustomAdapter().get_capabilities(), "custom-model", usage) == 0.0
