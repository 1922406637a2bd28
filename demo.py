#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: Learn the Strike Book Step by Step

A walk through the engine, one batch at a time. Each step builds on the
previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:  Foundation   - Custody, the engine, creating a pair
  4-6:  Trading      - Providing liquidity, swapping, earning the spread
  7-9:  Lending      - Borrowing liquidity, interest, repaying
  10:   Safety       - Rejected batches roll back completely

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
import sys

from strikebook import (
    # Engine and custody
    Engine, InMemoryCustody, PairKey,
    # Commands
    CommandType, TokenSelector,
    CreatePairParams, SwapParams, AddLiquidityParams, RemoveLiquidityParams,
    BorrowLiquidityParams, RepayLiquidityParams,
    # Positions
    BidirectionalId, DebtId, TransferDetails,
    # Errors
    EngineError,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1)

    # Initial funding, in smallest token units
    initial_balance: Decimal = Decimal(10) ** 24

    # Liquidity and trade sizes
    liquidity: Decimal = Decimal(10) ** 18
    swap_amount: Decimal = Decimal(10) ** 17 * 5

    # Lending
    borrow_strike: int = 10
    debt: Decimal = Decimal(10) ** 17
    collateral: Decimal = Decimal(10) ** 18 * 2


CONFIG = DemoConfig()
KEY = PairKey("A", "B")

QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    """Print a step header with learning objective."""
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def payer(engine: Engine, owner: str):
    """Settlement callback that pays the engine out of `owner`'s wallet."""
    def settle(assets, positions, data):
        for a in assets:
            if a.delta > 0:
                engine.custody.transfer(a.asset, owner, engine.wallet, a.delta)
        for p in positions:
            if p.balance < 0 or p.buffer < 0:
                engine.positions.transfer(
                    owner, engine.wallet, TransferDetails(p.key, -p.balance, -p.buffer)
                )
    return settle


def run(engine: Engine, owner: str, commands, inputs, num_assets=2, num_positions=1):
    return engine.execute(commands, inputs, owner, num_assets, num_positions, payer(engine, owner))


def show_wallet(engine: Engine, owner: str):
    wallet = engine.custody.wallet(owner)
    print(f"    {owner:>6}: A={wallet.get('A', 0):,}  B={wallet.get('B', 0):,}")


# ============================================================================
# PHASE 1: FOUNDATION (Steps 1-3)
# ============================================================================

def step_01_custody():
    step_header(1, "Custody", "Tokens live in custody; the engine holds its own wallet there.")
    custody = InMemoryCustody(test_mode=True)
    for owner in ("alice", "bob", "lp"):
        custody.set_balance(owner, "A", CONFIG.initial_balance)
        custody.set_balance(owner, "B", CONFIG.initial_balance)
    for owner in ("alice", "bob", "lp"):
        print(f"    {owner:>6}: {custody.wallet(owner)}")
    wait_for_enter()
    return custody


def step_02_engine(custody: InMemoryCustody):
    step_header(2, "The Engine", "One engine executes batches against every pair.")
    engine = Engine("demo", custody, initial_time=CONFIG.start_time)
    print(f"    {engine!r}")
    print(f"    Time: {engine.current_time}")
    wait_for_enter()
    return engine


def step_03_create_pair(engine: Engine):
    step_header(3, "Creating a Pair", "A pair starts at a strike; ratio = 1.0001 ** strike.")
    run(engine, "alice", [CommandType.CREATE_PAIR], [CreatePairParams("A", "B", 0)], num_assets=0, num_positions=0)
    summary = engine.get_pair(KEY)
    print(f"    Pair {KEY.token0}/{KEY.token1} rests at strike {summary.cached_strike_current}")
    wait_for_enter()


# ============================================================================
# PHASE 2: TRADING (Steps 4-6)
# ============================================================================

def step_04_add_liquidity(engine: Engine):
    step_header(4, "Providing Liquidity", "Liquidity at the active strike is held as token A.")
    run(engine, "lp", [CommandType.ADD_LIQUIDITY],
        [AddLiquidityParams("A", "B", 0, 0, TokenSelector.LIQUIDITY, CONFIG.liquidity)])
    position = engine.get_position("lp", BidirectionalId("A", "B", 0, 0))
    print(f"    lp holds {position.balance:,} shares of strike 0, tier 0")
    show_wallet(engine, "lp")
    wait_for_enter()


def step_05_swap(engine: Engine):
    step_header(5, "Swapping", "Buying A with B fills one spread above the resting strike.")
    result = run(engine, "alice", [CommandType.SWAP],
                 [SwapParams("A", "B", TokenSelector.TOKEN1, CONFIG.swap_amount)])
    for a in result.assets:
        side = "paid in" if a.delta > 0 else "paid out"
        print(f"    {a.asset}: {abs(a.delta):,} {side}")
    summary = engine.get_pair(KEY)
    print(f"    Execution strike: {summary.cached_strike_current}")
    print(f"    Tier 0 composition: {summary.composition[0]:.6f}")
    wait_for_enter()
    return result


def step_06_earn_spread(engine: Engine, first_swap):
    step_header(6, "Earning the Spread", "A round trip leaves the spread with the provider.")
    bought = -next(a.delta for a in first_swap.assets if a.asset == "A")
    run(engine, "alice", [CommandType.SWAP], [SwapParams("A", "B", TokenSelector.TOKEN0, bought)])
    strike = engine.get_strike(KEY, 0)
    print(f"    Tier 0 liquidity: {strike.liquidity[0]:,.0f} (deposited {CONFIG.liquidity:,})")
    wait_for_enter()


# ============================================================================
# PHASE 3: LENDING (Steps 7-9)
# ============================================================================

def step_07_borrow(engine: Engine):
    step_header(7, "Borrowing Liquidity", "Collateral must exceed the liquidity borrowed.")
    s = CONFIG.borrow_strike
    run(engine, "lp", [CommandType.ADD_LIQUIDITY],
        [AddLiquidityParams("A", "B", s, 0, TokenSelector.LIQUIDITY, CONFIG.liquidity)])
    run(engine, "bob", [CommandType.BORROW_LIQUIDITY],
        [BorrowLiquidityParams("A", "B", s, TokenSelector.TOKEN1, CONFIG.collateral, CONFIG.debt)])
    key = DebtId("A", "B", s, TokenSelector.TOKEN1)
    position = engine.get_position("bob", key)
    print(f"    bob owes {position.balance:,} principal with buffer {position.buffer:,}")
    print(f"    Utilization at strike {s}: {engine.get_strike(KEY, s).utilization:.2%}")
    wait_for_enter()
    return key


def step_08_interest(engine: Engine, key: DebtId):
    step_header(8, "Interest", "Debt grows with the strike's borrow index over time.")
    engine.advance_time(CONFIG.start_time + timedelta(days=365))
    print(f"    Time advanced to {engine.current_time}")
    print(f"    bob undercollateralized? {engine.is_undercollateralized('bob', key)}")
    wait_for_enter()


def step_09_repay(engine: Engine, key: DebtId):
    step_header(9, "Repaying", "Repaying principal returns the collateral.")
    position = engine.get_position("bob", key)
    run(engine, "bob", [CommandType.REPAY_LIQUIDITY],
        [RepayLiquidityParams("A", "B", key.strike, key.selector, position.balance, position.buffer)])
    strike = engine.get_strike(KEY, key.strike)
    print(f"    Borrow index after one year: {strike.liquidity_growth:.6f}")
    show_wallet(engine, "bob")
    wait_for_enter()


# ============================================================================
# PHASE 4: SAFETY (Step 10)
# ============================================================================

def step_10_rollback(engine: Engine):
    step_header(10, "Atomic Batches", "A batch that cannot settle leaves no trace.")
    before = engine.get_strike(KEY, 0)
    try:
        run(engine, "alice",
            [CommandType.ADD_LIQUIDITY, CommandType.REMOVE_LIQUIDITY],
            [AddLiquidityParams("A", "B", 0, 1, TokenSelector.LIQUIDITY, CONFIG.liquidity),
             RemoveLiquidityParams("A", "B", 0, 0, TokenSelector.LIQUIDITY, -CONFIG.liquidity)])
    except EngineError as e:
        print(f"    Rejected with {type(e).__name__}")
    after = engine.get_strike(KEY, 0)
    print(f"    Strike 0 unchanged: {before == after}")
    wait_for_enter()


def main():
    print("\n" + "=" * 70)
    print("STRIKE BOOK TUTORIAL")
    print("=" * 70)

    custody = step_01_custody()
    engine = step_02_engine(custody)
    step_03_create_pair(engine)

    step_04_add_liquidity(engine)
    first_swap = step_05_swap(engine)
    step_06_earn_spread(engine, first_swap)

    key = step_07_borrow(engine)
    step_08_interest(engine, key)
    step_09_repay(engine, key)

    step_10_rollback(engine)

    profile = engine.liquidity_profile(KEY)
    print("\nLiquidity profile:")
    for s, row in zip(profile['strike'], profile['liquidity']):
        print(f"    strike {s:>4}: {row.sum():,.0f}")

    print("""
    SUMMARY

    TRADING
      - Each tier quotes one spread above and below its resting strike
      - The spread stays in the tier and accrues to its shares

    LENDING
      - Borrowed liquidity pays interest to the strike's providers
      - Debt positions carry principal and a collateral buffer

    SETTLEMENT
      - Every batch settles net deltas through one callback
      - Anything short of full payment rolls the whole batch back

    Run tests: pytest tests/
    """)


if __name__ == "__main__":
    main()
