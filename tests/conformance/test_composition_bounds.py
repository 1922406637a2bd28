"""
Composition Bounds Conformance Tests

INVARIANT: Swaps keep every tier inside its representable state.

    ∀ sequence of swaps S, ∀ tier t, ∀ strike s:
        0 ≤ composition[t] ≤ 1
        liquidity[s][t] ≥ liquidity_borrowed[s][t]

The swap walk may move tiers between strikes and exhaust them, but it can
never drive a composition out of range or lend out more than a tier holds.
An exact output is filled in full or rejected.
"""

from datetime import datetime
from decimal import Decimal
import copy

from hypothesis import given, settings
from hypothesis import strategies as st

from strikebook import (
    PairKey, PairStore, NUM_SPREADS,
    swap, provision_liquidity, borrow_liquidity,
    InvalidAmountDesired,
)


E18 = Decimal(10) ** 18
NOW = datetime(2025, 1, 1)


def build_book():
    """Pair at strike 0 with liquidity in every tier on both sides, some of it lent out."""
    store = PairStore()
    key = PairKey("A", "B")
    pair = store.initialize(key, 0)
    for strike in range(-20, 21, 5):
        for tier in range(NUM_SPREADS):
            provision_liquidity(pair, strike, tier, E18, NOW)
    borrow_liquidity(pair, 10, E18, NOW)
    borrow_liquidity(pair, -10, E18 / 2, NOW)
    return pair


swap_step = st.tuples(
    st.booleans(),
    st.integers(min_value=1, max_value=10 ** 19),
    st.booleans(),
)


def apply_swap(pair, is_token0, amount):
    """Swap on a copy; a rejected swap leaves `pair` as it was, the way a batch rolls back."""
    trial = copy.deepcopy(pair)
    try:
        result = swap(trial, is_token0, amount)
    except InvalidAmountDesired:
        return pair, None
    return trial, result


def assert_bounded(pair):
    for t in range(NUM_SPREADS):
        assert Decimal(0) <= pair.composition[t] <= Decimal(1)
    for record in pair.strikes.values():
        for t in range(NUM_SPREADS):
            assert record.liquidity[t] >= record.liquidity_borrowed[t]
            assert record.liquidity_borrowed[t] >= 0


class TestCompositionBounds:
    """Property-based bounds under arbitrary swap sequences."""

    @given(st.lists(swap_step, min_size=1, max_size=8))
    @settings(max_examples=50, deadline=None)
    def test_swaps_keep_state_bounded(self, steps):
        """
        PROPERTY: After any sequence of swaps every composition is in [0, 1]
        and no tier has lent out more than it holds.
        """
        pair = build_book()
        for is_token0, magnitude, exact_input in steps:
            amount = Decimal(magnitude) if exact_input else -Decimal(magnitude)
            pair, _ = apply_swap(pair, is_token0, amount)
            assert_bounded(pair)

    @given(st.lists(swap_step, min_size=1, max_size=8))
    @settings(max_examples=50, deadline=None)
    def test_swap_amounts_have_opposite_signs(self, steps):
        """
        PROPERTY: Every swap takes one token in and pays the other out.
        """
        pair = build_book()
        for is_token0, magnitude, exact_input in steps:
            amount = Decimal(magnitude) if exact_input else -Decimal(magnitude)
            pair, result = apply_swap(pair, is_token0, amount)
            if result is not None:
                assert result.amount0 * result.amount1 <= 0

    @given(st.lists(swap_step, min_size=1, max_size=8))
    @settings(max_examples=50, deadline=None)
    def test_exact_amount_never_exceeded(self, steps):
        """
        PROPERTY: The specified side of a swap never exceeds the requested amount,
        and an accepted exact output pays exactly what was asked.
        """
        pair = build_book()
        for is_token0, magnitude, exact_input in steps:
            amount = Decimal(magnitude) if exact_input else -Decimal(magnitude)
            pair, result = apply_swap(pair, is_token0, amount)
            if result is None:
                assert not exact_input
                continue
            specified = result.amount0 if is_token0 else result.amount1
            assert abs(specified) <= magnitude
            if not exact_input:
                assert abs(specified) == magnitude
