"""
Pricing calculations.

Estimates request cost from the per-1k-token prices published in a
provider's capability descriptor.
"""

from decimal import Decimal, ROUND_UP
from typing import Optional

from .token_counter import TokenUsage
from .types import CapabilityDescriptor

COST_PRECISION = Decimal("0.000001")


def estimate_cost(
    capabilities: CapabilityDescriptor,
    model_id: str,
    usage: TokenUsage,
) -> Optional[float]:
    """Estimate the cost of a response with conservative rounding.

    Args:
        capabilities: Descriptor of the provider that served the request
        model_id: Model identifier reported in the response
        usage: Token usage of the response

    Returns:
        Cost rounded UP to 6 decimal places, or None if the model has no
        published pricing
    """
    model = capabilities.get_model(model_id)
    if model is None:
        return None

    # Float prices go through str() so Decimal keeps the published digits
    input_cost = (Decimal(usage.prompt_tokens) / Decimal("1000")) * Decimal(str(model.input_cost_per_1k))
    output_cost = (Decimal(usage.completion_tokens) / Decimal("1000")) * Decimal(str(model.output_cost_per_1k))

    total_cost = input_cost + output_cost
    return float(total_cost.quantize(COST_PRECISION, rounding=ROUND_UP))
