"""
conftest.py - Shared pytest fixtures for strikebook tests

Provides common fixtures used across unit, conformance and functional tests:
- Custody with funded wallets
- Engines (empty, with a live pair, with seeded liquidity)
- Bare pair stores for pure pair-engine tests
"""

import pytest

from strikebook import (
    Engine, InMemoryCustody, PairStore,
    CommandType, CreatePairParams,
)

from tests.harness import E18, START, KEY, run, seed_liquidity


# =============================================================================
# BASIC FIXTURES
# =============================================================================

@pytest.fixture
def custody():
    """Custody with alice, bob and lp each holding 1e24 of A and B."""
    c = InMemoryCustody(test_mode=True)
    for wallet in ("alice", "bob", "lp"):
        c.set_balance(wallet, "A", E18 * 1_000_000)
        c.set_balance(wallet, "B", E18 * 1_000_000)
    return c


@pytest.fixture
def engine(custody):
    """Engine with no pairs."""
    return Engine("test", custody, initial_time=START, verbose=False)


@pytest.fixture
def live_engine(engine):
    """Engine with pair A/B initialized at strike 0."""
    run(engine, [CommandType.CREATE_PAIR], [CreatePairParams("A", "B", 0)])
    return engine


@pytest.fixture
def seeded_engine(live_engine):
    """Pair A/B with 1e18 liquidity from lp at strike 0, tier 0 (all token A)."""
    seed_liquidity(live_engine, 0, 0, E18)
    return live_engine


# =============================================================================
# PAIR STORE FIXTURES
# =============================================================================

@pytest.fixture
def store():
    """PairStore with A/B initialized at strike 0."""
    s = PairStore()
    s.initialize(KEY, 0)
    return s


@pytest.fixture
def pair(store):
    """The initialized A/B pair of `store`."""
    return store.get(KEY)
