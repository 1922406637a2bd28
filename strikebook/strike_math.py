"""
strike_math.py - Strike Ladder and Liquidity Conversions

Pure numeric primitives for the discretized price ladder.

Price ladder:
    ratio(strike) = 1.0001 ** strike     (token1 per token0)

Liquidity is denominated in token1 units at a strike's ratio. A quantity of
liquidity L resting at a strike with composition c (fraction held as token0)
is made of:

    amount0 = L * c / ratio
    amount1 = L * (1 - c)

Every function that produces a token amount takes an explicit rounding mode.
The engine rounds amounts it receives up and amounts it pays out down.
"""

from decimal import Decimal
from functools import lru_cache
from typing import Tuple, Union

import numpy as np

from .core import (
    STRIKE_BASE, MIN_STRIKE, MAX_STRIKE, ZERO, ONE,
    InvalidStrike, round_amount,
)


# Type alias for scalar or array inputs
StrikeArray = Union[int, np.ndarray]


# ============================================================================
# STRIKE -> RATIO
# ============================================================================

@lru_cache(maxsize=4096)
def get_ratio_at_strike(strike: int) -> Decimal:
    """
    Price of token0 denominated in token1 at a strike.

    Raises:
        InvalidStrike: If strike is outside [MIN_STRIKE, MAX_STRIKE]
    """
    if not isinstance(strike, int) or isinstance(strike, bool):
        raise InvalidStrike(f"Strike must be an int, got {type(strike).__name__}")
    if not MIN_STRIKE <= strike <= MAX_STRIKE:
        raise InvalidStrike(f"Strike {strike} outside [{MIN_STRIKE}, {MAX_STRIKE}]")
    return STRIKE_BASE ** strike


def get_ratios_at_strikes(strikes: StrikeArray) -> np.ndarray:
    """
    Vectorized float approximation of get_ratio_at_strike.

    For analytics and read paths only; settlement math always goes through
    the Decimal version.
    """
    arr = np.asarray(strikes, dtype=np.int64)
    if np.any(arr < MIN_STRIKE) or np.any(arr > MAX_STRIKE):
        raise InvalidStrike("strike outside representable domain")
    return np.power(float(STRIKE_BASE), arr.astype(np.float64))


# ============================================================================
# LIQUIDITY <-> SINGLE TOKEN
# ============================================================================

def get_amount0_for_liquidity(liquidity: Decimal, ratio: Decimal, rounding: str) -> Decimal:
    """Token0 needed to make up `liquidity` at `ratio`."""
    return round_amount(liquidity / ratio, rounding)


def get_amount1_for_liquidity(liquidity: Decimal, rounding: str) -> Decimal:
    """Token1 needed to make up `liquidity`."""
    return round_amount(liquidity, rounding)


def get_liquidity_for_amount0(amount0: Decimal, ratio: Decimal, rounding: str) -> Decimal:
    """Liquidity represented by `amount0` of token0 at `ratio`."""
    return round_amount(amount0 * ratio, rounding)


def get_liquidity_for_amount1(amount1: Decimal, rounding: str) -> Decimal:
    """Liquidity represented by `amount1` of token1."""
    return round_amount(amount1, rounding)


# ============================================================================
# LIQUIDITY <-> COMPOSED AMOUNTS
# ============================================================================

def get_amounts_for_liquidity(
    liquidity: Decimal,
    composition: Decimal,
    ratio: Decimal,
    rounding: str,
) -> Tuple[Decimal, Decimal]:
    """
    Split liquidity into token amounts at a composition.

    Args:
        liquidity: Liquidity units (non-negative)
        composition: Fraction held as token0, in [0, 1]
        ratio: Strike ratio
        rounding: Rounding mode applied to both amounts

    Returns:
        (amount0, amount1)
    """
    amount0 = ZERO
    amount1 = ZERO
    if composition > ZERO:
        amount0 = round_amount(liquidity * composition / ratio, rounding)
    if composition < ONE:
        amount1 = round_amount(liquidity * (ONE - composition), rounding)
    return amount0, amount1


def get_liquidity_for_amount0_at_composition(
    amount0: Decimal,
    composition: Decimal,
    ratio: Decimal,
    rounding: str,
) -> Decimal:
    """
    Liquidity whose token0 part equals `amount0` at a composition.

    Returns zero when the composition holds no token0.
    """
    if composition <= ZERO:
        return ZERO
    return round_amount(amount0 * ratio / composition, rounding)


def get_liquidity_for_amount1_at_composition(
    amount1: Decimal,
    composition: Decimal,
    rounding: str,
) -> Decimal:
    """
    Liquidity whose token1 part equals `amount1` at a composition.

    Returns zero when the composition holds no token1.
    """
    if composition >= ONE:
        return ZERO
    return round_amount(amount1 / (ONE - composition), rounding)


def clamp_composition(value: Decimal) -> Decimal:
    """Clamp a computed composition into [0, 1]."""
    if value < ZERO:
        return ZERO
    if value > ONE:
        return ONE
    return value
