"""
pairs.py - Strike/Pair Store

State containers for every asset pair the engine knows about.

A Pair holds, per spread tier, the tier's active strike and composition,
and a sparse map of Strike records created on first deposit. A sorted index
of initialized strikes lets the swap walk jump over empty strikes.

Tier side rule:
    For tier t and strike s, liquidity above the tier's active strike is all
    token0, liquidity below it is all token1, and liquidity at the active
    strike is split by the tier's composition.
"""

from __future__ import annotations
from bisect import bisect_left, bisect_right, insort
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional
import copy

from .core import (
    PairKey, EngineConfig,
    NUM_SPREADS, MIN_STRIKE, MAX_STRIKE, SECONDS_PER_YEAR, ZERO, ONE,
    InvalidStrike, PairAlreadyInitialized, PairNotInitialized,
)


def _zeros() -> List[Decimal]:
    return [ZERO] * NUM_SPREADS


@dataclass
class Strike:
    """
    Liquidity resting at one strike of a pair.

    Attributes:
        liquidity: Per tier, total value in liquidity units (includes lent-out liquidity).
        liquidity_borrowed: Per tier, liquidity currently lent out (interest adjusted).
        supply: Per tier, outstanding bidirectional shares.
        liquidity_growth: Borrow index; starts at 1 and never decreases.
        last_accrued: Logical time interest was last accrued.
    """
    liquidity: List[Decimal] = field(default_factory=_zeros)
    liquidity_borrowed: List[Decimal] = field(default_factory=_zeros)
    supply: List[Decimal] = field(default_factory=_zeros)
    liquidity_growth: Decimal = ONE
    last_accrued: Optional[datetime] = None

    def available(self, tier: int) -> Decimal:
        """Liquidity in a tier that is not lent out."""
        return self.liquidity[tier] - self.liquidity_borrowed[tier]

    @property
    def total_liquidity(self) -> Decimal:
        return sum(self.liquidity, ZERO)

    @property
    def total_borrowed(self) -> Decimal:
        return sum(self.liquidity_borrowed, ZERO)

    @property
    def total_available(self) -> Decimal:
        return self.total_liquidity - self.total_borrowed

    def utilization(self) -> Decimal:
        total = self.total_liquidity
        if total <= ZERO:
            return ZERO
        return self.total_borrowed / total


@dataclass
class Pair:
    """
    Per-pair state.

    Attributes:
        key: Ordered asset pair.
        initialized: Set exactly once by PairStore.initialize.
        cached_strike_current: Strike of the last execution price. A fill
            executes one spread away from the tier it takes, so after a swap
            this is the resting strike plus SPREADS[t] (ask) or minus it (bid).
            Resting strikes are in strike_current.
        composition: Per tier, fraction of active-strike liquidity held as token0.
        strike_current: Per tier, the strike the tier's mixed liquidity rests at.
        strikes: Strike records by index, created on first deposit.
    """
    key: PairKey
    initialized: bool = False
    cached_strike_current: int = 0
    composition: List[Decimal] = field(default_factory=lambda: [ONE] * NUM_SPREADS)
    strike_current: List[int] = field(default_factory=lambda: [0] * NUM_SPREADS)
    strikes: Dict[int, Strike] = field(default_factory=dict)
    _strike_index: List[int] = field(default_factory=list, repr=False)

    def get_or_create_strike(self, strike: int, now: datetime) -> Strike:
        """Return the Strike record, creating it on first use."""
        record = self.strikes.get(strike)
        if record is None:
            record = Strike(last_accrued=now)
            self.strikes[strike] = record
            insort(self._strike_index, strike)
        return record

    def tier_composition(self, tier: int, strike: int) -> Decimal:
        """Effective composition of tier liquidity resting at `strike`."""
        current = self.strike_current[tier]
        if strike > current:
            return ONE
        if strike < current:
            return ZERO
        return self.composition[tier]

    def next_strike_above(self, strike: int, tier: int) -> Optional[int]:
        """Lowest initialized strike > `strike` with available liquidity in `tier`."""
        i = bisect_right(self._strike_index, strike)
        while i < len(self._strike_index):
            candidate = self._strike_index[i]
            if self.strikes[candidate].available(tier) > ZERO:
                return candidate
            i += 1
        return None

    def next_strike_below(self, strike: int, tier: int) -> Optional[int]:
        """Highest initialized strike < `strike` with available liquidity in `tier`."""
        i = bisect_left(self._strike_index, strike) - 1
        while i >= 0:
            candidate = self._strike_index[i]
            if self.strikes[candidate].available(tier) > ZERO:
                return candidate
            i -= 1
        return None

    def initialized_strikes(self) -> List[int]:
        return list(self._strike_index)


class PairStore:
    """
    Registry of pairs keyed by PairKey.

    Read paths use get(), which refuses unknown or uninitialized pairs.
    Mutation paths use get_for_update(), which lazily creates the slot.

    Between begin() and commit() the store keeps a copy of each pair the
    first time it is handed out for update, so rollback() only has to put
    back the pairs a batch touched.
    """

    def __init__(self):
        self.pairs: Dict[PairKey, Pair] = {}
        self._saved: Optional[Dict[PairKey, Optional[Pair]]] = None

    def initialize(self, key: PairKey, starting_strike: int) -> Pair:
        """
        Initialize a pair at a starting strike.

        Raises:
            PairAlreadyInitialized: If the pair was initialized before
            InvalidStrike: If the starting strike is out of domain
        """
        if not isinstance(starting_strike, int) or not MIN_STRIKE <= starting_strike <= MAX_STRIKE:
            raise InvalidStrike(f"Starting strike {starting_strike!r} out of domain")
        pair = self.get_for_update(key)
        if pair.initialized:
            raise PairAlreadyInitialized(f"{key!r} already initialized")
        pair.initialized = True
        pair.cached_strike_current = starting_strike
        pair.strike_current = [starting_strike] * NUM_SPREADS
        pair.composition = [ONE] * NUM_SPREADS
        return pair

    def get(self, key: PairKey) -> Pair:
        pair = self.pairs.get(key)
        if pair is None or not pair.initialized:
            raise PairNotInitialized(f"{key!r} not initialized")
        return pair

    def get_for_update(self, key: PairKey) -> Pair:
        pair = self.pairs.get(key)
        if self._saved is not None and key not in self._saved:
            self._saved[key] = copy.deepcopy(pair)
        if pair is None:
            pair = Pair(key=key)
            self.pairs[key] = pair
        return pair

    def require_initialized(self, key: PairKey) -> Pair:
        """Mutation-path lookup for operations that need a live pair."""
        pair = self.get_for_update(key)
        if not pair.initialized:
            raise PairNotInitialized(f"{key!r} not initialized")
        return pair

    # ========================================================================
    # BATCH JOURNAL
    # ========================================================================

    def begin(self) -> None:
        self._saved = {}

    def commit(self) -> None:
        self._saved = None

    def rollback(self) -> None:
        """Restore every pair touched since begin(); drop slots created since."""
        saved, self._saved = self._saved or {}, None
        for key, pair in saved.items():
            if pair is None:
                self.pairs.pop(key, None)
            else:
                self.pairs[key] = pair

    def __contains__(self, key: PairKey) -> bool:
        pair = self.pairs.get(key)
        return pair is not None and pair.initialized

    def __len__(self) -> int:
        return sum(1 for p in self.pairs.values() if p.initialized)


# ============================================================================
# INTEREST ACCRUAL
# ============================================================================

def borrow_rate(strike: Strike, config: EngineConfig) -> Decimal:
    """Annual borrow rate at the strike's current utilization."""
    return config.base_rate + config.rate_slope * strike.utilization()


def accrue(strike: Strike, now: datetime, config: EngineConfig) -> Decimal:
    """
    Accrue interest on a strike's borrowed liquidity up to `now`.

    The borrow index grows by (1 + rate * elapsed / year). Each tier's borrowed
    liquidity and total liquidity grow by the same interest, so the tier's
    available liquidity is unchanged and its LPs own the interest.

    Returns:
        Interest accrued, in liquidity units
    """
    if strike.last_accrued is None or now <= strike.last_accrued:
        if strike.last_accrued is None:
            strike.last_accrued = now
        return ZERO

    elapsed = Decimal(str((now - strike.last_accrued).total_seconds()))
    strike.last_accrued = now

    borrowed = strike.total_borrowed
    if borrowed <= ZERO:
        return ZERO

    factor = borrow_rate(strike, config) * elapsed / SECONDS_PER_YEAR
    accrued = ZERO
    for tier in range(NUM_SPREADS):
        interest = strike.liquidity_borrowed[tier] * factor
        strike.liquidity_borrowed[tier] += interest
        strike.liquidity[tier] += interest
        accrued += interest
    strike.liquidity_growth = strike.liquidity_growth * (ONE + factor)
    return accrued
