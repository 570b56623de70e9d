"""Model pricing and cost calculation.

Prices are USD per 1,000,000 tokens, from https://openai.com/api/pricing/.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

_MICRO = 1_000_000


@dataclass(frozen=True)
class TokenPricing:
    """USD per 1M input/output tokens."""

    input: float
    output: float


@dataclass(frozen=True)
class CostBreakdown:
    """Cost of one operation, each field rounded to micro-dollars."""

    input_cost: float = 0.0
    output_cost: float = 0.0
    total_cost: float = 0.0
    estimated: bool = False
    currency: Literal["USD"] = "USD"

    def to_dict(self) -> dict[str, float | bool | str]:
        return {
            "input_cost": self.input_cost,
            "output_cost": self.output_cost,
            "total_cost": self.total_cost,
            "currency": self.currency,
            "estimated": self.estimated,
        }


PRICING: dict[str, TokenPricing] = {
    # GPT-5.2 family
    "gpt-5.2": TokenPricing(input=1.75, output=14.0),
    "gpt-5.2-pro": TokenPricing(input=21.0, output=168.0),
    "gpt-5.2-chat-latest": TokenPricing(input=1.75, output=14.0),
    # Deep research
    "o3-deep-research": TokenPricing(input=10.0, output=40.0),
    "o4-mini-deep-research": TokenPricing(input=2.0, output=8.0),
}

#: Unknown models are priced at the most expensive tier so we never under-estimate.
FALLBACK_PRICING: TokenPricing = max(
    PRICING.values(), key=lambda p: (p.output, p.input)
)


def round_micro(value: float) -> float:
    """Round to 6 decimal places (micro-dollar precision)."""
    return round(value * _MICRO) / _MICRO


def get_pricing(model: str) -> tuple[TokenPricing, bool]:
    """Return ``(pricing, estimated)`` for *model*."""
    pricing = PRICING.get(model)
    if pricing is None:
        return FALLBACK_PRICING, True
    return pricing, False


def calculate_cost(
    model: str,
    input_tokens: int | None = 0,
    output_tokens: int | None = 0,
) -> CostBreakdown:
    """Calculate the cost of a call from its token counts.

    Args:
        model: The model id the call was billed against.
        input_tokens: Prompt tokens; ``None`` counts as zero.
        output_tokens: Completion tokens (reasoning included); ``None`` counts as zero.

    Returns:
        Cost breakdown; ``estimated`` is True when the model has no price entry.
    """
    pricing, estimated = get_pricing(model)
    input_cost = (input_tokens or 0) / _MICRO * pricing.input
    output_cost = (output_tokens or 0) / _MICRO * pricing.output
    return CostBreakdown(
        input_cost=round_micro(input_cost),
        output_cost=round_micro(output_cost),
        total_cost=round_micro(input_cost + output_cost),
        estimated=estimated,
    )
