"""
Core types and pure functions for the strike book engine.

This module provides the foundational data structures and protocols:
1. Constants: strike domain, spread tiers, interest defaults
2. Enums: CommandType, TokenSelector, PositionType
3. Identity types: PairKey, BidirectionalId, DebtId
4. Exceptions: EngineError and domain-specific error types
5. Protocols: TokenCustody, SettlementCallback, SignatureVerifier
6. Configuration: EngineConfig

All functions in this module are pure.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_EVEN, ROUND_DOWN, ROUND_UP, getcontext
from enum import Enum
import hashlib
from typing import Any, List, Optional, Protocol, Tuple, Union, runtime_checkable


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# The engine requires deterministic Decimal arithmetic.
# We configure the global context at module load time to ensure consistency.
#
# PRECONDITION: No other code should modify the global Decimal context.
#
# Context parameters:
#   - prec=78: holds any 256-bit integer exactly, so products of token
#     amounts and strike ratios never lose integral digits
#   - rounding=ROUND_HALF_EVEN: default for intermediate results; every
#     amount that crosses the engine boundary is rounded explicitly
#
_ENGINE_DECIMAL_CONTEXT = getcontext()
_ENGINE_DECIMAL_CONTEXT.prec = 78
_ENGINE_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Price ladder: ratio(strike) = STRIKE_BASE ** strike (token1 per token0).
STRIKE_BASE = Decimal("1.0001")
MIN_STRIKE = -887272
MAX_STRIKE = 887272

# Spread tiers. Tier t quotes its liquidity SPREADS[t] strikes away from
# the strike it rests at.
NUM_SPREADS = 5
SPREADS: Tuple[int, ...] = (1, 2, 3, 4, 5)
MAX_SPREAD = SPREADS[-1]

# Strikes that can hold liquidity; every quote stays inside the ladder.
MIN_LIQUIDITY_STRIKE = MIN_STRIKE + MAX_SPREAD
MAX_LIQUIDITY_STRIKE = MAX_STRIKE - MAX_SPREAD

SECONDS_PER_YEAR = Decimal(365 * 24 * 60 * 60)

# Default borrow rate curve: rate = base + slope * utilization (annualized).
DEFAULT_BASE_RATE = Decimal("0.02")
DEFAULT_RATE_SLOPE = Decimal("0.20")

ZERO = Decimal("0")
ONE = Decimal("1")

# Identity the engine uses for its own custody account and position entries.
ENGINE_WALLET = "engine"


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Opaque asset identifier (token address, ticker, ...).
Asset = str

# Opaque owner identifier.
Owner = str


# ============================================================================
# ENUMS
# ============================================================================

class CommandType(Enum):
    """Tag of a command in a batch."""
    SWAP = "swap"
    ADD_LIQUIDITY = "add_liquidity"
    BORROW_LIQUIDITY = "borrow_liquidity"
    REPAY_LIQUIDITY = "repay_liquidity"
    REMOVE_LIQUIDITY = "remove_liquidity"
    CREATE_PAIR = "create_pair"


class TokenSelector(Enum):
    """
    Which quantity a command's amount is denominated in.

    TOKEN0 / TOKEN1: an amount of the pair's first / second asset.
    LIQUIDITY: liquidity units (add) or position balance (remove).
    """
    TOKEN0 = 0
    TOKEN1 = 1
    LIQUIDITY = 2


class PositionType(Enum):
    """Variant tag of a position."""
    BIDIRECTIONAL = "bidirectional"
    DEBT = "debt"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class EngineError(Exception):
    """Base exception for all engine errors."""
    pass


class Reentrancy(EngineError):
    """Raised when a batch is submitted while another is still executing."""
    pass


class InvalidTokenOrder(EngineError):
    """Raised when a pair's assets are unordered, equal, or null."""
    pass


class InsufficientInput(EngineError):
    """Raised when the callback did not deliver an asset owed to the engine."""
    pass


class CommandLengthMismatch(EngineError):
    """Raised when the number of commands and inputs differ."""
    pass


class InvalidCommand(EngineError):
    """Raised for an unknown command tag or an undecodable payload."""
    pass


class InvalidSelector(EngineError):
    """Raised when a token selector is not valid for the command."""
    pass


class InvalidAmountDesired(EngineError):
    """Raised when an amount is zero, has the wrong sign, or cannot be filled."""
    pass


class InvalidStrike(EngineError):
    """Raised when a strike is outside the representable domain."""
    pass


class InvalidTier(EngineError):
    """Raised when a spread tier is outside [0, NUM_SPREADS)."""
    pass


class PairAlreadyInitialized(EngineError):
    """Raised when initializing a pair twice."""
    pass


class PairNotInitialized(EngineError):
    """Raised when operating on or reading a pair that was never initialized."""
    pass


class InsufficientLiquidity(EngineError):
    """Raised when removing or borrowing more liquidity than is available."""
    pass


class SettlementCapacityExceeded(EngineError):
    """Raised when a batch tracks more assets or positions than it declared."""
    pass


class Undercollateralized(EngineError):
    """Raised when a debt position's collateral does not cover what it owes."""
    pass


class InsufficientPositionBalance(EngineError):
    """Raised when a position balance or buffer would go negative."""
    pass


class NotApproved(EngineError):
    """Raised when a spender moves positions without the owner's approval."""
    pass


class InvalidSignature(EngineError):
    """Raised when a signed transfer request fails verification."""
    pass


class InvalidTransferRequest(EngineError):
    """Raised when a requested transfer exceeds what was signed."""
    pass


class NonceAlreadyUsed(EngineError):
    """Raised when a signed transfer request is replayed."""
    pass


# ============================================================================
# ROUNDING
# ============================================================================

def round_amount(value: Decimal, rounding: str) -> Decimal:
    """
    Round a value to a whole unit in an explicit direction.

    Args:
        value: Quantity to round
        rounding: A decimal rounding mode (ROUND_DOWN, ROUND_UP, ...)

    Returns:
        Integral Decimal
    """
    return value.to_integral_value(rounding=rounding)


def to_decimal(value: Union[Decimal, int, str, float]) -> Decimal:
    """Convert a numeric input to Decimal, going through str for floats."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


# ============================================================================
# IDENTITY TYPES
# ============================================================================

def _is_null(asset: Optional[Asset]) -> bool:
    return asset is None or not str(asset).strip()


@dataclass(frozen=True, slots=True)
class PairKey:
    """
    Identity of a pair: two assets in strictly ascending order.

    Attributes:
        token0: The lesser asset identifier.
        token1: The greater asset identifier.
    """
    token0: Asset
    token1: Asset

    def __post_init__(self):
        if _is_null(self.token0) or _is_null(self.token1):
            raise InvalidTokenOrder("Pair assets cannot be null")
        if not self.token0 < self.token1:
            raise InvalidTokenOrder(
                f"Pair assets must be ordered: {self.token0!r} >= {self.token1!r}"
            )

    def __repr__(self) -> str:
        return f"Pair({self.token0}/{self.token1})"


@dataclass(frozen=True, slots=True)
class BidirectionalId:
    """Identity of a liquidity share in one (pair, strike, tier)."""
    token0: Asset
    token1: Asset
    strike: int
    spread: int

    @property
    def position_type(self) -> PositionType:
        return PositionType.BIDIRECTIONAL

    @property
    def pair(self) -> PairKey:
        return PairKey(self.token0, self.token1)


@dataclass(frozen=True, slots=True)
class DebtId:
    """Identity of a debt obligation on one (pair, strike, collateral asset)."""
    token0: Asset
    token1: Asset
    strike: int
    selector: TokenSelector

    @property
    def position_type(self) -> PositionType:
        return PositionType.DEBT

    @property
    def pair(self) -> PairKey:
        return PairKey(self.token0, self.token1)


PositionKey = Union[BidirectionalId, DebtId]


def position_id(key: PositionKey) -> str:
    """
    Content digest of a position identity.

    Used for display and for payloads handed to signature schemes. Storage
    is keyed by the identity value itself, never by this digest.
    """
    if isinstance(key, BidirectionalId):
        content = f"{key.position_type.value}|{key.token0}|{key.token1}|{key.strike}|{key.spread}"
    else:
        content = f"{key.position_type.value}|{key.token0}|{key.token1}|{key.strike}|{key.selector.name}"
    return hashlib.sha256(content.encode()).hexdigest()[:16]


# ============================================================================
# SETTLEMENT RECORDS
# ============================================================================

@dataclass(frozen=True, slots=True)
class AssetDelta:
    """Net effect of a batch on one asset, engine perspective (positive = owed to the engine)."""
    asset: Asset
    delta: Decimal


@dataclass(frozen=True, slots=True)
class PositionDelta:
    """Net effect of a batch on one position (negative = to be burned from the engine)."""
    key: PositionKey
    balance: Decimal
    buffer: Decimal = ZERO


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class TokenCustody(Protocol):
    """
    Token balance and transfer primitives.

    The engine never holds tokens itself; it asks custody for its own balance
    and to move tokens out. snapshot/restore let a failed batch be undone.
    """

    def balance_of(self, owner: Owner, asset: Asset) -> Decimal:
        ...

    def transfer(self, asset: Asset, source: Owner, dest: Owner, amount: Decimal) -> None:
        ...

    def snapshot(self) -> Any:
        ...

    def restore(self, snapshot: Any) -> None:
        ...


class SettlementCallback(Protocol):
    """
    Caller-supplied hook invoked once per batch.

    Must arrange delivery of every asset with a positive delta to the
    engine's custody account (and any positions to be burned to the engine's
    own position entry) before returning. The return value is ignored.
    """

    def __call__(
        self,
        assets: List[AssetDelta],
        positions: List[PositionDelta],
        data: Any,
    ) -> None:
        ...


class SignatureVerifier(Protocol):
    """Checks that `owner` authorized `request` with `signature`."""

    def __call__(self, owner: Owner, request: Any, signature: Any) -> bool:
        ...


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass(frozen=True, slots=True)
class EngineConfig:
    """
    Immutable engine parameters.

    Attributes:
        base_rate: Annual borrow rate at zero utilization.
        rate_slope: Additional annual rate at full utilization.
        rounding_in: Rounding for amounts the engine receives.
        rounding_out: Rounding for amounts the engine pays out.
    """
    base_rate: Decimal = DEFAULT_BASE_RATE
    rate_slope: Decimal = DEFAULT_RATE_SLOPE
    rounding_in: str = ROUND_UP
    rounding_out: str = ROUND_DOWN

    def __post_init__(self):
        if not isinstance(self.base_rate, Decimal):
            object.__setattr__(self, 'base_rate', to_decimal(self.base_rate))
        if not isinstance(self.rate_slope, Decimal):
            object.__setattr__(self, 'rate_slope', to_decimal(self.rate_slope))
        if self.base_rate < 0 or self.rate_slope < 0:
            raise ValueError("Interest rate parameters must be non-negative")


DEFAULT_CONFIG = EngineConfig()


def validate_tier(spread: int) -> None:
    """Raise InvalidTier unless 0 <= spread < NUM_SPREADS."""
    if not isinstance(spread, int) or isinstance(spread, bool) or not 0 <= spread < NUM_SPREADS:
        raise InvalidTier(f"Spread tier {spread!r} not in [0, {NUM_SPREADS})")


def validate_liquidity_strike(strike: int) -> None:
    """Raise InvalidStrike unless liquidity can rest at `strike`."""
    if not isinstance(strike, int) or isinstance(strike, bool):
        raise InvalidStrike(f"Strike must be an int, got {type(strike).__name__}")
    if not MIN_LIQUIDITY_STRIKE <= strike <= MAX_LIQUIDITY_STRIKE:
        raise InvalidStrike(
            f"Strike {strike} outside [{MIN_LIQUIDITY_STRIKE}, {MAX_LIQUIDITY_STRIKE}]"
        )
