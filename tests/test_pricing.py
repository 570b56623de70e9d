from __future__ import annotations

from hypothesis import given, settings
from hypothesis import strategies as st
import pytest

from castor.pricing import (
    FALLBACK_PRICING,
    PRICING,
    calculate_cost,
    get_pricing,
    round_micro,
)

pytestmark = pytest.mark.unit


def test_known_model_cost() -> None:
    cost = calculate_cost("gpt-5.2", input_tokens=1_000_000, output_tokens=500_000)

    assert cost.input_cost == 1.75
    assert cost.output_cost == 7.0
    assert cost.total_cost == 8.75
    assert cost.estimated is False
    assert cost.currency == "USD"


def test_deep_research_cost() -> None:
    cost = calculate_cost("o4-mini-deep-research", input_tokens=2_000, output_tokens=3_000)

    assert cost.input_cost == 0.004
    assert cost.output_cost == 0.024
    assert cost.total_cost == 0.028


def test_unknown_model_uses_highest_tier_and_is_estimated() -> None:
    pricing, estimated = get_pricing("gpt-9-imaginary")

    assert estimated is True
    assert pricing == PRICING["gpt-5.2-pro"]
    assert pricing == FALLBACK_PRICING
    assert all(p.output <= FALLBACK_PRICING.output for p in PRICING.values())


def test_unknown_model_cost_is_flagged() -> None:
    cost = calculate_cost("mystery", input_tokens=100, output_tokens=100)
    assert cost.estimated is True
    assert cost.total_cost == round_micro(100 / 1e6 * 21.0 + 100 / 1e6 * 168.0)


def test_missing_counts_cost_nothing() -> None:
    cost = calculate_cost("o3-deep-research", None, None)
    assert cost.total_cost == 0.0
    assert cost.estimated is False


def test_to_dict_shape() -> None:
    assert set(calculate_cost("gpt-5.2").to_dict()) == {
        "input_cost",
        "output_cost",
        "total_cost",
        "currency",
        "estimated",
    }


@given(value=st.floats(min_value=0, max_value=1e6, allow_nan=False, allow_infinity=False))
@settings(max_examples=50, deadline=None, derandomize=True)
def test_round_micro_is_idempotent(value: float) -> None:
    """Property: rounding twice changes nothing."""
    once = round_micro(value)
    assert round_micro(once) == once


@given(
    model=st.sampled_from(sorted(PRICING)),
    input_tokens=st.integers(min_value=0, max_value=10_000_000),
    output_tokens=st.integers(min_value=0, max_value=10_000_000),
)
@settings(max_examples=50, deadline=None, derandomize=True)
def test_cost_fields_are_micro_rounded_and_non_negative(
    model: str, input_tokens: int, output_tokens: int
) -> None:
    """Property: every field is already at micro-dollar precision."""
    cost = calculate_cost(model, input_tokens, output_tokens)
    for value in (cost.input_cost, cost.output_cost, cost.total_cost):
        assert value >= 0
        assert round_micro(value) == value
    assert abs(cost.total_cost - (cost.input_cost + cost.output_cost)) <= 2e-6
