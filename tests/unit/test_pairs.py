"""
test_pairs.py - Tests for the strike/pair store and interest accrual
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from strikebook import (
    PairKey, PairStore, Strike, EngineConfig, accrue, borrow_rate,
    NUM_SPREADS, MAX_STRIKE,
    InvalidTokenOrder, InvalidStrike, PairAlreadyInitialized, PairNotInitialized,
)

from tests.harness import KEY, START


class TestPairKey:
    """Tests for pair identity validation."""

    def test_ordered_key(self):
        key = PairKey("A", "B")
        assert key.token0 == "A"
        assert key.token1 == "B"

    def test_equal_content_equal_key(self):
        assert PairKey("A", "B") == PairKey("A", "B")
        assert hash(PairKey("A", "B")) == hash(PairKey("A", "B"))

    @pytest.mark.parametrize("token0,token1", [("B", "A"), ("A", "A"), ("", "B"), (None, "B")])
    def test_invalid_order_rejected(self, token0, token1):
        with pytest.raises(InvalidTokenOrder):
            PairKey(token0, token1)


class TestPairStore:
    """Tests for initialize / get / get_for_update."""

    def test_initialize_sets_every_tier(self):
        s = PairStore()
        pair = s.initialize(KEY, 42)
        assert pair.initialized
        assert pair.cached_strike_current == 42
        assert pair.strike_current == [42] * NUM_SPREADS
        assert pair.composition == [Decimal(1)] * NUM_SPREADS

    def test_initialize_twice_fails(self, store):
        with pytest.raises(PairAlreadyInitialized):
            store.initialize(KEY, 0)

    def test_initialize_out_of_domain(self):
        with pytest.raises(InvalidStrike):
            PairStore().initialize(KEY, MAX_STRIKE + 1)

    def test_read_path_refuses_unknown_pair(self):
        with pytest.raises(PairNotInitialized):
            PairStore().get(KEY)

    def test_mutation_path_creates_slot(self):
        s = PairStore()
        pair = s.get_for_update(KEY)
        assert not pair.initialized
        assert KEY not in s
        assert len(s) == 0
        with pytest.raises(PairNotInitialized):
            s.require_initialized(KEY)

    def test_contains_after_initialize(self, store):
        assert KEY in store
        assert len(store) == 1


class TestPairJournal:
    """Tests for begin / commit / rollback around a batch."""

    OTHER = PairKey("C", "D")

    def test_rollback_restores_touched_pair(self, store):
        store.begin()
        pair = store.get_for_update(KEY)
        pair.cached_strike_current = 99
        pair.get_or_create_strike(5, START)
        store.rollback()

        restored = store.get(KEY)
        assert restored.cached_strike_current == 0
        assert restored.strikes == {}

    def test_rollback_drops_created_pairs(self, store):
        store.begin()
        store.initialize(self.OTHER, 3)
        with pytest.raises(PairNotInitialized):
            store.require_initialized(PairKey("E", "F"))
        store.rollback()

        assert self.OTHER not in store
        assert set(store.pairs) == {KEY}

    def test_untouched_pair_is_not_copied(self, store):
        other = store.initialize(self.OTHER, 3)
        store.begin()
        store.get_for_update(KEY).cached_strike_current = 99
        store.rollback()
        assert store.pairs[self.OTHER] is other

    def test_commit_keeps_changes(self, store):
        store.begin()
        store.get_for_update(KEY).cached_strike_current = 99
        store.commit()
        store.rollback()
        assert store.get(KEY).cached_strike_current == 99


class TestStrikeIndex:
    """Tests for the sorted strike index and the tier side rule."""

    def test_strikes_created_lazily_and_sorted(self, pair):
        for s in (30, -10, 5):
            pair.get_or_create_strike(s, START)
        assert pair.initialized_strikes() == [-10, 5, 30]

    def test_get_or_create_returns_existing(self, pair):
        record = pair.get_or_create_strike(5, START)
        assert pair.get_or_create_strike(5, START) is record

    def test_next_strike_skips_empty_tiers(self, pair):
        for s in (-20, -10, 10, 20):
            pair.get_or_create_strike(s, START)
        pair.strikes[20].liquidity[1] = Decimal(100)
        pair.strikes[-20].liquidity[1] = Decimal(100)

        assert pair.next_strike_above(0, 1) == 20
        assert pair.next_strike_below(0, 1) == -20
        assert pair.next_strike_above(0, 0) is None
        assert pair.next_strike_above(20, 1) is None

    def test_next_strike_ignores_fully_borrowed(self, pair):
        record = pair.get_or_create_strike(10, START)
        record.liquidity[0] = Decimal(100)
        record.liquidity_borrowed[0] = Decimal(100)
        assert pair.next_strike_above(0, 0) is None

    def test_tier_side_rule(self, pair):
        pair.composition[2] = Decimal("0.25")
        assert pair.tier_composition(2, 1) == Decimal(1)
        assert pair.tier_composition(2, -1) == Decimal(0)
        assert pair.tier_composition(2, 0) == Decimal("0.25")


class TestAccrual:
    """Tests for interest accrual on a strike."""

    def _borrowed_strike(self) -> Strike:
        record = Strike(last_accrued=START)
        record.liquidity[0] = Decimal(1000)
        record.liquidity_borrowed[0] = Decimal(100)
        return record

    def test_rate_follows_utilization(self):
        config = EngineConfig(base_rate=Decimal("0.02"), rate_slope=Decimal("0.20"))
        assert borrow_rate(self._borrowed_strike(), config) == Decimal("0.04")

    def test_one_year_of_interest(self):
        record = self._borrowed_strike()
        interest = accrue(record, START + timedelta(days=365), EngineConfig())
        assert interest == Decimal(4)
        assert record.liquidity_growth == Decimal("1.04")
        assert record.liquidity_borrowed[0] == Decimal(104)
        assert record.liquidity[0] == Decimal(1004)

    def test_available_unchanged_by_accrual(self):
        record = self._borrowed_strike()
        before = record.available(0)
        accrue(record, START + timedelta(days=30), EngineConfig())
        assert record.available(0) == before

    def test_no_borrow_no_interest(self):
        record = Strike(last_accrued=START)
        record.liquidity[0] = Decimal(1000)
        assert accrue(record, START + timedelta(days=365), EngineConfig()) == 0
        assert record.liquidity_growth == Decimal(1)
        assert record.last_accrued == START + timedelta(days=365)

    def test_time_not_moving_is_noop(self):
        record = self._borrowed_strike()
        assert accrue(record, START, EngineConfig()) == 0
        assert record.liquidity_growth == Decimal(1)

    def test_negative_rates_rejected(self):
        with pytest.raises(ValueError):
            EngineConfig(base_rate=Decimal("-0.01"))
