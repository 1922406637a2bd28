"""
test_batch_scenarios.py - End-to-end batch scenarios

Tests complete flows through the engine:
- A first swap against a single liquidity provider
- A liquidity provider earning the spread on a round trip
- Borrow, accrue interest for a year, repay
- Several commands settled net in one callback
"""

from datetime import timedelta
from decimal import Decimal, ROUND_DOWN

from strikebook import (
    CommandType, TokenSelector, BidirectionalId, DebtId,
    SwapParams, AddLiquidityParams, RemoveLiquidityParams,
    BorrowLiquidityParams, RepayLiquidityParams,
    get_ratio_at_strike,
)

from tests.harness import E18, START, KEY, Payer, run, seed_liquidity


def holdings(engine, owner):
    wallet = engine.custody.wallet(owner)
    return wallet.get("A", Decimal(0)), wallet.get("B", Decimal(0))


class TestFirstSwap:
    """A single provider at strike 0 and one exact-input trade."""

    def test_exact_input_token1(self, seeded_engine):
        a_before, b_before = holdings(seeded_engine, "alice")

        result = run(
            seeded_engine,
            [CommandType.SWAP],
            [SwapParams("A", "B", TokenSelector.TOKEN1, E18 / 2)],
        )

        expected_out = (E18 / 2 / get_ratio_at_strike(1)).to_integral_value(rounding=ROUND_DOWN)
        deltas = {a.asset: a.delta for a in result.assets}
        assert deltas["B"] == E18 / 2
        assert deltas["A"] == -expected_out
        assert 0 < expected_out < E18 / 2

        a_after, b_after = holdings(seeded_engine, "alice")
        assert a_after - a_before == expected_out
        assert b_before - b_after == E18 / 2

        summary = seeded_engine.get_pair(KEY)
        assert summary.cached_strike_current == 1
        assert 0 < summary.composition[0] < 1

    def test_spread_surplus_stays_in_tier(self, seeded_engine):
        run(
            seeded_engine,
            [CommandType.SWAP],
            [SwapParams("A", "B", TokenSelector.TOKEN1, E18 / 2)],
        )
        assert seeded_engine.get_strike(KEY, 0).liquidity[0] > E18


class TestProviderRoundTrip:
    """Liquidity provider returns after traders cross the spread both ways."""

    def test_provider_earns_spread(self, seeded_engine):
        first = run(
            seeded_engine,
            [CommandType.SWAP],
            [SwapParams("A", "B", TokenSelector.TOKEN1, E18 / 2)],
        )
        bought = -{a.asset: a.delta for a in first.assets}["A"]
        run(
            seeded_engine,
            [CommandType.SWAP],
            [SwapParams("A", "B", TokenSelector.TOKEN0, bought)],
        )
        assert seeded_engine.get_pair(KEY).cached_strike_current == -1

        shares = seeded_engine.get_position("lp", BidirectionalId("A", "B", 0, 0)).balance
        assert shares == E18

        a_before, b_before = holdings(seeded_engine, "lp")
        run(
            seeded_engine,
            [CommandType.REMOVE_LIQUIDITY],
            [RemoveLiquidityParams("A", "B", 0, 0, TokenSelector.LIQUIDITY, -shares)],
            owner="lp",
        )
        a_after, b_after = holdings(seeded_engine, "lp")

        # Strike 0 prices A and B one to one
        assert (a_after - a_before) + (b_after - b_before) > E18
        assert seeded_engine.get_position("lp", BidirectionalId("A", "B", 0, 0)).balance == 0
        assert seeded_engine.get_strike(KEY, 0).supply[0] == 0

    def test_trader_pays_the_spread(self, seeded_engine):
        _, b_start = holdings(seeded_engine, "alice")
        first = run(
            seeded_engine,
            [CommandType.SWAP],
            [SwapParams("A", "B", TokenSelector.TOKEN1, E18 / 2)],
        )
        bought = -{a.asset: a.delta for a in first.assets}["A"]
        run(
            seeded_engine,
            [CommandType.SWAP],
            [SwapParams("A", "B", TokenSelector.TOKEN0, bought)],
        )
        _, b_end = holdings(seeded_engine, "alice")
        assert b_end < b_start


class TestBorrowLifecycle:
    """Borrow against token1 collateral, wait a year, repay in full."""

    def test_borrow_accrue_repay(self, live_engine):
        seed_liquidity(live_engine, 10, 0, E18)
        debt_key = DebtId("A", "B", 10, TokenSelector.TOKEN1)
        a_start, b_start = holdings(live_engine, "alice")

        borrowed = run(
            live_engine,
            [CommandType.BORROW_LIQUIDITY],
            [BorrowLiquidityParams("A", "B", 10, TokenSelector.TOKEN1, E18 * 2, E18 / 10)],
        )
        assert borrowed.minted[0].key == debt_key
        position = live_engine.get_position("alice", debt_key)
        assert position.balance == E18 / 10
        assert position.buffer == E18 * 2 - E18 / 10

        live_engine.advance_time(START + timedelta(days=365))
        assert not live_engine.is_undercollateralized("alice", debt_key)

        repaid = run(
            live_engine,
            [CommandType.REPAY_LIQUIDITY],
            [RepayLiquidityParams("A", "B", 10, TokenSelector.TOKEN1, position.balance, position.buffer)],
        )
        assert [p.key for p in repaid.positions] == [debt_key]

        strike = live_engine.get_strike(KEY, 10)
        assert strike.liquidity_growth > 1
        assert abs(sum(strike.liquidity_borrowed)) < Decimal("1e-40")
        assert strike.liquidity[0] > E18

        a_end, b_end = holdings(live_engine, "alice")
        assert b_end == b_start
        assert a_end < a_start
        assert live_engine.get_position("alice", debt_key).balance == 0
        assert live_engine.get_position(live_engine.wallet, debt_key).balance == 0

    def test_interest_goes_to_provider(self, live_engine):
        seed_liquidity(live_engine, 10, 0, E18)
        run(
            live_engine,
            [CommandType.BORROW_LIQUIDITY],
            [BorrowLiquidityParams("A", "B", 10, TokenSelector.TOKEN1, E18 * 2, E18 / 2)],
        )
        live_engine.advance_time(START + timedelta(days=365))
        position = live_engine.get_position("alice", DebtId("A", "B", 10, TokenSelector.TOKEN1))
        run(
            live_engine,
            [CommandType.REPAY_LIQUIDITY],
            [RepayLiquidityParams("A", "B", 10, TokenSelector.TOKEN1, position.balance, position.buffer)],
        )

        a_before, _ = holdings(live_engine, "lp")
        run(
            live_engine,
            [CommandType.REMOVE_LIQUIDITY],
            [RemoveLiquidityParams("A", "B", 10, 0, TokenSelector.LIQUIDITY, -E18)],
            owner="lp",
        )
        a_after, _ = holdings(live_engine, "lp")
        deposited = (E18 / get_ratio_at_strike(10)).to_integral_value(rounding=ROUND_DOWN)
        assert a_after - a_before > deposited


class TestNetSettlement:
    """Several commands, one callback with net deltas."""

    def test_add_then_remove_in_one_batch(self, live_engine):
        payer = Payer(live_engine, "alice")
        result = run(
            live_engine,
            [CommandType.ADD_LIQUIDITY, CommandType.REMOVE_LIQUIDITY],
            [
                AddLiquidityParams("A", "B", 20, 2, TokenSelector.LIQUIDITY, E18),
                RemoveLiquidityParams("A", "B", 20, 2, TokenSelector.LIQUIDITY, -E18),
            ],
            callback=payer,
        )
        assert len(payer.calls) == 1
        for a in result.assets:
            assert 0 <= a.delta <= 1
        assert live_engine.get_position("alice", BidirectionalId("A", "B", 20, 2)).balance == 0
        assert live_engine.get_strike(KEY, 20).supply[2] == 0

    def test_swap_both_ways_settles_once(self, seeded_engine):
        payer = Payer(seeded_engine, "alice")
        result = run(
            seeded_engine,
            [CommandType.SWAP, CommandType.SWAP],
            [
                SwapParams("A", "B", TokenSelector.TOKEN1, E18 / 4),
                SwapParams("A", "B", TokenSelector.TOKEN1, -(E18 / 8)),
            ],
            callback=payer,
        )
        assert len(payer.calls) == 1
        assert {a.asset for a in result.assets} == {"A", "B"}
