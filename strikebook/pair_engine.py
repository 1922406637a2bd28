"""
pair_engine.py - Swap, Provision, Borrow and Repay on a Single Pair

=== SIGN CONVENTION ===

Every result reports token amounts from the engine's side:
    positive = the caller pays the engine
    negative = the engine pays the caller

This matches the Settlement Account, so results are added to it unchanged.

=== QUOTING ===

Tier t holding liquidity at strike s quotes:
    ask at strike s + SPREADS[t]   (sells token0 for token1)
    bid at strike s - SPREADS[t]   (buys token0 for token1)

A swap repeatedly takes the best quote across tiers. All tiers quoting
that strike fill together in proportion to their reserves of the output
token. The spread surplus (execution ratio vs. resting ratio) stays in the
tier as liquidity, so it accrues to the tier's share holders.

=== PURE FUNCTIONS ===

Functions mutate only the Pair handed to them; the caller owns atomicity.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_DOWN
from typing import Dict, Optional, Tuple, Union

from .core import (
    EngineConfig, DEFAULT_CONFIG,
    NUM_SPREADS, SPREADS, ZERO, ONE,
    InvalidAmountDesired, InsufficientLiquidity, PairNotInitialized,
    round_amount, to_decimal, validate_tier, validate_liquidity_strike,
)
from .pairs import Pair, accrue
from .strike_math import (
    get_ratio_at_strike, get_amounts_for_liquidity, clamp_composition,
)


Number = Union[Decimal, int, str]


# =============================================================================
# RESULTS
# =============================================================================

@dataclass(frozen=True, slots=True)
class SwapResult:
    """
    Token amounts of a swap.

    strike_after is the pair's cached_strike_current afterwards: the strike
    of the last fill, not the resting strike of any tier.
    """
    amount0: Decimal
    amount1: Decimal
    strike_after: int


@dataclass(frozen=True, slots=True)
class ProvisionResult:
    """
    Effect of adding (positive) or removing (negative) liquidity.

    Attributes:
        liquidity: Liquidity units added or removed.
        balance: Position shares minted (positive) or to burn (negative).
        amount0: Token0 paid in or out.
        amount1: Token1 paid in or out.
    """
    liquidity: Decimal
    balance: Decimal
    amount0: Decimal
    amount1: Decimal


@dataclass(frozen=True, slots=True)
class BorrowResult:
    """Liquidity lent out, tokens paid to the borrower, and the borrow index used."""
    liquidity: Decimal
    amount0: Decimal
    amount1: Decimal
    liquidity_growth: Decimal


@dataclass(frozen=True, slots=True)
class RepayResult:
    """Liquidity returned, tokens owed by the repayer, and the borrow index used."""
    liquidity: Decimal
    amount0: Decimal
    amount1: Decimal
    liquidity_growth: Decimal


# =============================================================================
# HELPERS
# =============================================================================

def _require_initialized(pair: Pair) -> None:
    if not pair.initialized:
        raise PairNotInitialized(f"{pair.key!r} not initialized")


def _allocate(
    amount: Decimal,
    weights: Dict[int, Decimal],
    total: Decimal,
    caps: Optional[Dict[int, Decimal]] = None,
) -> Dict[int, Decimal]:
    """
    Split a whole-unit amount across tiers in proportion to weights.

    Each share is rounded down; the leftover units go to the first tiers
    with room under their cap.
    """
    shares = {t: round_amount(amount * w / total, ROUND_DOWN) for t, w in weights.items()}
    leftover = amount - sum(shares.values(), ZERO)
    for t in weights:
        if leftover <= ZERO:
            break
        room = leftover if caps is None else min(leftover, caps[t] - shares[t])
        if room > ZERO:
            shares[t] += room
            leftover -= room
    return shares


def _split_liquidity(
    liquidity: Decimal,
    weights: Dict[int, Decimal],
    total: Decimal,
) -> Dict[int, Decimal]:
    """Split fractional liquidity in proportion to weights, never exceeding a weight."""
    portions: Dict[int, Decimal] = {}
    remaining = liquidity
    tiers = list(weights)
    for i, t in enumerate(tiers):
        if i == len(tiers) - 1:
            portion = remaining
        else:
            portion = liquidity * weights[t] / total
        portion = min(portion, weights[t], remaining)
        portions[t] = portion
        remaining -= portion
    return portions


def _ask_strike(pair: Pair, tier: int) -> Optional[int]:
    """Strike whose token0 the tier sells next, or None if the tier has none left above."""
    current = pair.strike_current[tier]
    record = pair.strikes.get(current)
    if record is not None and pair.composition[tier] > ZERO and record.available(tier) > ZERO:
        return current
    return pair.next_strike_above(current, tier)


def _bid_strike(pair: Pair, tier: int) -> Optional[int]:
    """Strike whose token1 the tier sells next, or None if the tier has none left below."""
    current = pair.strike_current[tier]
    record = pair.strikes.get(current)
    if record is not None and pair.composition[tier] < ONE and record.available(tier) > ZERO:
        return current
    return pair.next_strike_below(current, tier)


# =============================================================================
# SWAP
# =============================================================================

def swap(
    pair: Pair,
    is_token0: bool,
    amount_desired: Number,
    config: EngineConfig = DEFAULT_CONFIG,
) -> SwapResult:
    """
    Trade against the pair's liquidity.

    Args:
        pair: Initialized pair (mutated)
        is_token0: True if amount_desired is denominated in token0, else token1
        amount_desired: Positive = exact input of that token,
                        negative = exact output of that token
        config: Rounding configuration

    Returns:
        SwapResult with engine-side amounts (input positive, output negative)

    Raises:
        InvalidAmountDesired: If amount_desired is zero, or an exact output
            exceeds the liquidity on that side (the pair is left mid-walk)
        PairNotInitialized: If the pair was never initialized

    Example:
        Pair at strike 0 with 1e18 token0 in tier 0:
        swap(pair, False, 5 * 10**17) -> amount1 = +5e17, amount0 ~ -4.9995e17
    """
    amount_desired = to_decimal(amount_desired)
    if amount_desired == ZERO:
        raise InvalidAmountDesired("Swap amount cannot be zero")
    _require_initialized(pair)

    exact_input = amount_desired > ZERO
    remaining = abs(amount_desired)
    price_down = is_token0 == exact_input

    if price_down:
        amount_in, amount_out = _swap_down(pair, remaining, exact_input, config)
    else:
        amount_in, amount_out = _swap_up(pair, remaining, exact_input, config)

    # Exact input may fill partially; exact output is all or nothing
    if not exact_input and amount_out < remaining:
        raise InvalidAmountDesired(
            f"Only {amount_out} of the {remaining} requested output is available"
        )
    if price_down:
        return SwapResult(amount_in, -amount_out, pair.cached_strike_current)
    return SwapResult(-amount_out, amount_in, pair.cached_strike_current)


def _swap_up(
    pair: Pair,
    remaining: Decimal,
    exact_input: bool,
    config: EngineConfig,
) -> Tuple[Decimal, Decimal]:
    """
    Sell the pair's token0 for token1, walking strikes upward.

    `remaining` is token1 in when exact_input, else token0 out.

    Returns:
        (token1 in, token0 out)
    """
    total_in = ZERO
    total_out = ZERO

    while remaining > ZERO:
        quotes = {}
        for tier in range(NUM_SPREADS):
            strike = _ask_strike(pair, tier)
            if strike is not None:
                quotes[tier] = strike
        if not quotes:
            break

        execution = min(s + SPREADS[t] for t, s in quotes.items())
        tiers = [t for t, s in quotes.items() if s + SPREADS[t] == execution]

        reserves: Dict[int, Decimal] = {}
        for t in tiers:
            strike = quotes[t]
            if strike != pair.strike_current[t]:
                pair.strike_current[t] = strike
                pair.composition[t] = ONE
            record = pair.strikes[strike]
            reserves[t] = round_amount(
                record.available(t) * pair.composition[t] / get_ratio_at_strike(strike),
                config.rounding_out,
            )

        total = sum(reserves.values(), ZERO)
        if total <= ZERO:
            # Only dust left at these strikes
            for t in tiers:
                pair.composition[t] = ZERO
            continue

        ratio = get_ratio_at_strike(execution)
        if exact_input:
            max_in = round_amount(total * ratio, config.rounding_in)
            if remaining >= max_in:
                step_out, step_in = total, max_in
            else:
                step_in = remaining
                step_out = round_amount(remaining / ratio, config.rounding_out)
            remaining -= step_in
        else:
            step_out = min(remaining, total)
            step_in = round_amount(step_out * ratio, config.rounding_in)
            remaining -= step_out

        exhausted = step_out == total
        outs = _allocate(step_out, reserves, total, caps=reserves)
        ins = _allocate(step_in, reserves, total)

        for t in tiers:
            strike = quotes[t]
            record = pair.strikes[strike]
            strike_ratio = get_ratio_at_strike(strike)
            available = record.available(t)
            value0 = available * pair.composition[t]
            value1 = available - value0

            new_value0 = ZERO if exhausted else max(value0 - outs[t] * strike_ratio, ZERO)
            new_value1 = value1 + ins[t]
            new_available = new_value0 + new_value1

            record.liquidity[t] += new_available - available
            if exhausted or new_available <= ZERO:
                pair.composition[t] = ZERO
            else:
                pair.composition[t] = clamp_composition(new_value0 / new_available)

        pair.cached_strike_current = execution
        total_in += step_in
        total_out += step_out

    return total_in, total_out


def _swap_down(
    pair: Pair,
    remaining: Decimal,
    exact_input: bool,
    config: EngineConfig,
) -> Tuple[Decimal, Decimal]:
    """
    Sell the pair's token1 for token0, walking strikes downward.

    `remaining` is token0 in when exact_input, else token1 out.

    Returns:
        (token0 in, token1 out)
    """
    total_in = ZERO
    total_out = ZERO

    while remaining > ZERO:
        quotes = {}
        for tier in range(NUM_SPREADS):
            strike = _bid_strike(pair, tier)
            if strike is not None:
                quotes[tier] = strike
        if not quotes:
            break

        execution = max(s - SPREADS[t] for t, s in quotes.items())
        tiers = [t for t, s in quotes.items() if s - SPREADS[t] == execution]

        reserves: Dict[int, Decimal] = {}
        for t in tiers:
            strike = quotes[t]
            if strike != pair.strike_current[t]:
                pair.strike_current[t] = strike
                pair.composition[t] = ZERO
            record = pair.strikes[strike]
            reserves[t] = round_amount(
                record.available(t) * (ONE - pair.composition[t]),
                config.rounding_out,
            )

        total = sum(reserves.values(), ZERO)
        if total <= ZERO:
            for t in tiers:
                pair.composition[t] = ONE
            continue

        ratio = get_ratio_at_strike(execution)
        if exact_input:
            max_in = round_amount(total / ratio, config.rounding_in)
            if remaining >= max_in:
                step_out, step_in = total, max_in
            else:
                step_in = remaining
                step_out = round_amount(remaining * ratio, config.rounding_out)
            remaining -= step_in
        else:
            step_out = min(remaining, total)
            step_in = round_amount(step_out / ratio, config.rounding_in)
            remaining -= step_out

        exhausted = step_out == total
        outs = _allocate(step_out, reserves, total, caps=reserves)
        ins = _allocate(step_in, reserves, total)

        for t in tiers:
            strike = quotes[t]
            record = pair.strikes[strike]
            strike_ratio = get_ratio_at_strike(strike)
            available = record.available(t)
            value0 = available * pair.composition[t]
            value1 = available - value0

            new_value1 = ZERO if exhausted else max(value1 - outs[t], ZERO)
            new_value0 = value0 + ins[t] * strike_ratio
            new_available = new_value0 + new_value1

            record.liquidity[t] += new_available - available
            if exhausted or new_available <= ZERO:
                pair.composition[t] = ONE
            else:
                pair.composition[t] = clamp_composition(new_value0 / new_available)

        pair.cached_strike_current = execution
        total_in += step_in
        total_out += step_out

    return total_in, total_out


# =============================================================================
# PROVISION
# =============================================================================

def provision_liquidity(
    pair: Pair,
    strike: int,
    spread: int,
    liquidity: Number,
    now: datetime,
    config: EngineConfig = DEFAULT_CONFIG,
) -> ProvisionResult:
    """
    Add (positive) or remove (negative) liquidity in one tier at one strike.

    Token amounts follow the tier's effective composition at the strike.
    Adding rounds amounts up and shares down; removing rounds amounts down
    and shares up.

    Raises:
        InvalidTier: If spread is not a valid tier
        InvalidStrike: If strike cannot hold liquidity
        InvalidAmountDesired: If liquidity is zero or too small to mint a share
        InsufficientLiquidity: If removing more than the tier's available liquidity
    """
    validate_tier(spread)
    validate_liquidity_strike(strike)
    liquidity = to_decimal(liquidity)
    if liquidity == ZERO:
        raise InvalidAmountDesired("Liquidity cannot be zero")
    _require_initialized(pair)

    ratio = get_ratio_at_strike(strike)
    composition = pair.tier_composition(spread, strike)

    if liquidity > ZERO:
        record = pair.get_or_create_strike(strike, now)
        accrue(record, now, config)
        supply = record.supply[spread]
        tier_liquidity = record.liquidity[spread]
        if supply <= ZERO or tier_liquidity <= ZERO:
            balance = round_amount(liquidity, config.rounding_out)
        else:
            balance = round_amount(liquidity * supply / tier_liquidity, config.rounding_out)
        if balance <= ZERO:
            raise InvalidAmountDesired(f"Liquidity {liquidity} too small to mint a share")

        amount0, amount1 = get_amounts_for_liquidity(liquidity, composition, ratio, config.rounding_in)
        record.liquidity[spread] += liquidity
        record.supply[spread] += balance
        return ProvisionResult(liquidity, balance, amount0, amount1)

    removing = -liquidity
    record = pair.strikes.get(strike)
    if record is None:
        raise InsufficientLiquidity(f"No liquidity at strike {strike}")
    accrue(record, now, config)
    if removing > record.available(spread):
        raise InsufficientLiquidity(
            f"Removing {removing} exceeds available {record.available(spread)} "
            f"at strike {strike} tier {spread}"
        )

    supply = record.supply[spread]
    balance = round_amount(removing * supply / record.liquidity[spread], config.rounding_in)
    if balance > supply:
        raise InsufficientLiquidity(f"Removing {removing} needs {balance} shares, supply is {supply}")

    amount0, amount1 = get_amounts_for_liquidity(removing, composition, ratio, config.rounding_out)
    record.liquidity[spread] -= removing
    record.supply[spread] -= balance
    return ProvisionResult(-removing, -balance, -amount0, -amount1)


def liquidity_for_balance(
    pair: Pair,
    strike: int,
    spread: int,
    balance: Decimal,
    rounding: str = ROUND_DOWN,
) -> Decimal:
    """Liquidity units currently backing `balance` shares of a tier."""
    validate_tier(spread)
    record = pair.strikes.get(strike)
    if record is None or record.supply[spread] <= ZERO:
        return ZERO
    return round_amount(balance * record.liquidity[spread] / record.supply[spread], rounding)


# =============================================================================
# BORROW / REPAY
# =============================================================================

def _side_values(pair: Pair, strike: int, portions: Dict[int, Decimal]) -> Tuple[Decimal, Decimal]:
    """Liquidity value held as token0 and as token1 across tier portions."""
    value0 = ZERO
    value1 = ZERO
    for t, portion in portions.items():
        composition = pair.tier_composition(t, strike)
        value0 += portion * composition
        value1 += portion * (ONE - composition)
    return value0, value1


def borrow_liquidity(
    pair: Pair,
    strike: int,
    liquidity: Number,
    now: datetime,
    config: EngineConfig = DEFAULT_CONFIG,
) -> BorrowResult:
    """
    Lend out liquidity resting at a strike.

    Liquidity is taken from each tier in proportion to its available
    liquidity. The borrower is paid in the token each tier holds at the
    strike: token0 above the tier's active strike, token1 below it.

    Raises:
        InsufficientLiquidity: If the strike has less available liquidity than requested
    """
    validate_liquidity_strike(strike)
    liquidity = to_decimal(liquidity)
    if liquidity <= ZERO:
        raise InvalidAmountDesired("Borrowed liquidity must be positive")
    _require_initialized(pair)

    record = pair.strikes.get(strike)
    if record is None:
        raise InsufficientLiquidity(f"No liquidity at strike {strike}")
    accrue(record, now, config)

    weights = {t: record.available(t) for t in range(NUM_SPREADS) if record.available(t) > ZERO}
    total = sum(weights.values(), ZERO)
    if liquidity > total:
        raise InsufficientLiquidity(
            f"Borrowing {liquidity} exceeds available {total} at strike {strike}"
        )

    portions = _split_liquidity(liquidity, weights, total)
    value0, value1 = _side_values(pair, strike, portions)
    for t, portion in portions.items():
        record.liquidity_borrowed[t] += portion

    ratio = get_ratio_at_strike(strike)
    amount0 = round_amount(value0 / ratio, config.rounding_out)
    amount1 = round_amount(value1, config.rounding_out)
    return BorrowResult(liquidity, -amount0, -amount1, record.liquidity_growth)


def repay_liquidity(
    pair: Pair,
    strike: int,
    balance: Number,
    now: datetime,
    config: EngineConfig = DEFAULT_CONFIG,
) -> RepayResult:
    """
    Return borrowed liquidity to a strike.

    `balance` is debt principal; the liquidity owed is principal times the
    strike's borrow index after accrual, capped at what the strike has lent.
    Tiers are repaid in proportion to what each has lent out.

    Raises:
        InvalidAmountDesired: If nothing is borrowed at the strike or balance is not positive
    """
    validate_liquidity_strike(strike)
    balance = to_decimal(balance)
    if balance <= ZERO:
        raise InvalidAmountDesired("Repaid balance must be positive")
    _require_initialized(pair)

    record = pair.strikes.get(strike)
    if record is None or record.total_borrowed <= ZERO:
        raise InvalidAmountDesired(f"Nothing borrowed at strike {strike}")
    accrue(record, now, config)

    borrowed = record.total_borrowed
    liquidity = min(balance * record.liquidity_growth, borrowed)

    weights = {
        t: record.liquidity_borrowed[t]
        for t in range(NUM_SPREADS)
        if record.liquidity_borrowed[t] > ZERO
    }
    portions = _split_liquidity(liquidity, weights, borrowed)
    value0, value1 = _side_values(pair, strike, portions)
    for t, portion in portions.items():
        record.liquidity_borrowed[t] -= portion

    ratio = get_ratio_at_strike(strike)
    amount0 = round_amount(value0 / ratio, config.rounding_in)
    amount1 = round_amount(value1, config.rounding_in)
    return RepayResult(liquidity, amount0, amount1, record.liquidity_growth)
