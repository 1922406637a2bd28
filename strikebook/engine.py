"""
engine.py - Batch Command Dispatcher

The Engine is the only object that mutates pair and position state. It runs
one batch of commands at a time and settles the batch's net token effects
in a single pass:

    1. reject mismatched command / input counts
    2. open a SettlementAccount
    3. run each command in order, netting token and position deltas
    4. pay out every asset with a negative delta to the recipient
    5. hand the deltas to the caller's callback
    6. check every asset with a positive delta actually arrived
    7. burn every negative position delta from the engine's own entry

A batch is all or nothing: any failure restores the pair store, the position
ledger and custody to their state at batch start, then re-raises. The pair
store and position ledger journal what the batch overwrites, so a rollback
costs in proportion to what the batch touched.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from .core import (
    # Types
    Asset, Owner, PairKey, BidirectionalId, DebtId, PositionKey,
    AssetDelta, PositionDelta, CommandType, TokenSelector,
    TokenCustody, SettlementCallback, EngineConfig,
    # Constants
    DEFAULT_CONFIG, ENGINE_WALLET, NUM_SPREADS, ZERO, ONE,
    # Exceptions
    Reentrancy, CommandLengthMismatch, InvalidSelector, InvalidAmountDesired,
    InsufficientInput, Undercollateralized,
    # Helpers
    validate_tier, validate_liquidity_strike, round_amount,
)
from .commands import (
    CommandParams, CreatePairParams, SwapParams, AddLiquidityParams,
    RemoveLiquidityParams, BorrowLiquidityParams, RepayLiquidityParams,
    decode_params, to_command_type,
)
from .pairs import Pair, PairStore
from .pair_engine import (
    swap, provision_liquidity, liquidity_for_balance,
    borrow_liquidity, repay_liquidity,
)
from .positions import PositionData, PositionLedger, is_undercollateralized
from .settlement import SettlementAccount
from .strike_math import (
    get_ratio_at_strike, get_ratios_at_strikes,
    get_liquidity_for_amount0, get_amount0_for_liquidity, get_amount1_for_liquidity,
    get_liquidity_for_amount0_at_composition, get_liquidity_for_amount1_at_composition,
)


# ============================================================================
# RESULT AND SUMMARY TYPES
# ============================================================================

@dataclass(frozen=True, slots=True)
class BatchResult:
    """
    Settled effects of one batch.

    Attributes:
        assets: Net asset deltas, engine side (positive = paid in by the caller).
        positions: Position deltas burned from the engine's entry at settlement.
        minted: Positions minted to the recipient while commands ran.
    """
    assets: Tuple[AssetDelta, ...]
    positions: Tuple[PositionDelta, ...]
    minted: Tuple[PositionDelta, ...] = ()


@dataclass(frozen=True, slots=True)
class PairSummary:
    key: PairKey
    cached_strike_current: int
    strike_current: Tuple[int, ...]
    composition: Tuple[Decimal, ...]
    num_strikes: int


@dataclass(frozen=True, slots=True)
class StrikeSummary:
    strike: int
    ratio: Decimal
    liquidity: Tuple[Decimal, ...]
    liquidity_borrowed: Tuple[Decimal, ...]
    supply: Tuple[Decimal, ...]
    liquidity_growth: Decimal
    utilization: Decimal


Handler = Callable[[Any, SettlementAccount, Owner, List[PositionDelta]], None]


class Engine:
    """
    Batch executor over a PairStore and a PositionLedger.

    Thread Safety:
        Not thread-safe. One batch runs at a time; a batch submitted while
        another is running (for example from inside a callback) fails with
        Reentrancy.

    Example:
        custody = InMemoryCustody(test_mode=True)
        engine = Engine("main", custody)

        def settle(assets, positions, data):
            for a in assets:
                if a.delta > 0:
                    custody.transfer(a.asset, "alice", engine.wallet, a.delta)

        engine.execute(
            [CommandType.CREATE_PAIR, CommandType.ADD_LIQUIDITY],
            [CreatePairParams("A", "B", 0),
             AddLiquidityParams("A", "B", 0, 0, TokenSelector.LIQUIDITY, Decimal(10**18))],
            to="alice", num_assets=2, num_positions=0, callback=settle,
        )
    """

    def __init__(
        self,
        name: str,
        custody: TokenCustody,
        config: EngineConfig = DEFAULT_CONFIG,
        wallet: Owner = ENGINE_WALLET,
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
    ):
        """
        Create an engine.

        Args:
            name: Engine identifier (used in log lines)
            custody: Token custody the engine holds its balances in
            config: Interest and rounding parameters
            wallet: The engine's own identity in custody and the position ledger
            initial_time: Starting logical time (default: 1970-01-01)
            verbose: Print one line per batch outcome (default: True)
        """
        self.name = name
        self.custody = custody
        self.config = config
        self.wallet = wallet
        self.pairs = PairStore()
        self.positions = PositionLedger()
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self.verbose = verbose
        self._locked = False
        self.batch_count = 0

        self._handlers: Dict[CommandType, Handler] = {
            CommandType.CREATE_PAIR: self._create_pair,
            CommandType.SWAP: self._swap,
            CommandType.ADD_LIQUIDITY: self._add_liquidity,
            CommandType.REMOVE_LIQUIDITY: self._remove_liquidity,
            CommandType.BORROW_LIQUIDITY: self._borrow_liquidity,
            CommandType.REPAY_LIQUIDITY: self._repay_liquidity,
        }

    # ========================================================================
    # TIME
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time; interest accrues against it."""
        return self._current_time

    def advance_time(self, new_time: datetime) -> None:
        """
        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    # ========================================================================
    # READS
    # ========================================================================

    def is_locked(self) -> bool:
        return self._locked

    def get_pair(self, key: PairKey) -> PairSummary:
        """
        Raises:
            PairNotInitialized: If the pair does not exist
        """
        pair = self.pairs.get(key)
        return PairSummary(
            key=pair.key,
            cached_strike_current=pair.cached_strike_current,
            strike_current=tuple(pair.strike_current),
            composition=tuple(pair.composition),
            num_strikes=len(pair.strikes),
        )

    def get_strike(self, key: PairKey, strike: int) -> StrikeSummary:
        """Strike record of an initialized pair; all zeros if nothing was ever deposited there."""
        pair = self.pairs.get(key)
        ratio = get_ratio_at_strike(strike)
        record = pair.strikes.get(strike)
        if record is None:
            zeros = (ZERO,) * NUM_SPREADS
            return StrikeSummary(strike, ratio, zeros, zeros, zeros, ONE, ZERO)
        return StrikeSummary(
            strike=strike,
            ratio=ratio,
            liquidity=tuple(record.liquidity),
            liquidity_borrowed=tuple(record.liquidity_borrowed),
            supply=tuple(record.supply),
            liquidity_growth=record.liquidity_growth,
            utilization=record.utilization(),
        )

    def get_position(self, owner: Owner, key: PositionKey) -> PositionData:
        return self.positions.read(owner, key)

    def is_undercollateralized(self, owner: Owner, key: DebtId) -> bool:
        """Check an owner's debt position against the strike's current borrow index."""
        pair = self.pairs.get(key.pair)
        record = pair.strikes.get(key.strike)
        growth = record.liquidity_growth if record is not None else ONE
        return is_undercollateralized(self.positions.read(owner, key), growth)

    def liquidity_profile(self, key: PairKey) -> Dict[str, np.ndarray]:
        """
        Liquidity across initialized strikes as arrays, for analytics.

        Returns:
            Dict with:
                'strike': (n,) int64
                'ratio': (n,) float64
                'liquidity': (n, NUM_SPREADS) float64
                'borrowed': (n, NUM_SPREADS) float64
        """
        pair = self.pairs.get(key)
        strikes = pair.initialized_strikes()
        liquidity = np.zeros((len(strikes), NUM_SPREADS), dtype=np.float64)
        borrowed = np.zeros((len(strikes), NUM_SPREADS), dtype=np.float64)
        for i, s in enumerate(strikes):
            record = pair.strikes[s]
            liquidity[i] = [float(x) for x in record.liquidity]
            borrowed[i] = [float(x) for x in record.liquidity_borrowed]
        strike_arr = np.asarray(strikes, dtype=np.int64)
        return {
            'strike': strike_arr,
            'ratio': get_ratios_at_strikes(strike_arr),
            'liquidity': liquidity,
            'borrowed': borrowed,
        }

    # ========================================================================
    # BATCH EXECUTION (Mutating)
    # ========================================================================

    def execute(
        self,
        commands: Sequence[Union[CommandType, str]],
        inputs: Sequence[Union[CommandParams, Mapping[str, Any]]],
        to: Owner,
        num_assets: int,
        num_positions: int,
        callback: SettlementCallback,
        data: Any = None,
    ) -> BatchResult:
        """
        Execute a batch of commands atomically.

        Args:
            commands: Command tags, in execution order
            inputs: One parameter object (or mapping) per command
            to: Recipient of payouts and minted positions
            num_assets: Most distinct assets the batch may touch
            num_positions: Most distinct positions the batch may burn
            callback: Invoked once with the net deltas; must deliver what is owed
            data: Passed through to the callback unchanged

        Returns:
            BatchResult with the settled deltas

        Raises:
            Reentrancy: If a batch is already running
            CommandLengthMismatch: If commands and inputs differ in length
            EngineError: Any command or settlement failure (state rolled back)
        """
        if self._locked:
            raise Reentrancy(f"Engine {self.name} is already executing a batch")
        self._locked = True
        try:
            return self._execute_locked(commands, inputs, to, num_assets, num_positions, callback, data)
        finally:
            self._locked = False

    def _execute_locked(self, commands, inputs, to, num_assets, num_positions, callback, data) -> BatchResult:
        if len(commands) != len(inputs):
            raise CommandLengthMismatch(
                f"{len(commands)} commands but {len(inputs)} inputs"
            )

        custody_before = self.custody.snapshot()
        self.pairs.begin()
        self.positions.begin()
        try:
            result = self._run_batch(commands, inputs, to, num_assets, num_positions, callback, data)
        except Exception as e:
            self.pairs.rollback()
            self.positions.rollback()
            self.custody.restore(custody_before)
            if self.verbose:
                print(f"✗ REJECTED: {type(e).__name__}: {e}")
            raise

        self.pairs.commit()
        self.positions.commit()
        self.batch_count += 1
        if self.verbose:
            print(
                f"✓ APPLIED: batch {self.batch_count} on {self.name} "
                f"({len(commands)} commands, {len(result.assets)} assets, "
                f"{len(result.positions)} burns, {len(result.minted)} mints)"
            )
        return result

    def _run_batch(
        self,
        commands: Sequence[Union[CommandType, str]],
        inputs: Sequence[Union[CommandParams, Mapping[str, Any]]],
        to: Owner,
        num_assets: int,
        num_positions: int,
        callback: SettlementCallback,
        data: Any,
    ) -> BatchResult:
        account = SettlementAccount(num_assets, num_positions)
        minted: List[PositionDelta] = []

        for command, raw in zip(commands, inputs):
            command = to_command_type(command)
            params = decode_params(command, raw)
            self._handlers[command](params, account, to, minted)

        assets = account.assets
        positions = account.positions

        # Push payments
        for a in assets:
            if a.delta < ZERO:
                self.custody.transfer(a.asset, self.wallet, to, -a.delta)

        if not account.is_empty():
            callback(assets, positions, data)

        for a in assets:
            if a.delta > ZERO:
                received = self.custody.balance_of(self.wallet, a.asset) - account.balance_before(a.asset)
                if received < a.delta:
                    raise InsufficientInput(
                        f"Expected {a.delta} {a.asset}, engine received {received}"
                    )

        for p in positions:
            if p.balance < ZERO or p.buffer < ZERO:
                self.positions.burn(
                    self.wallet, p.key,
                    max(-p.balance, ZERO), max(-p.buffer, ZERO),
                )
                if isinstance(p.key, DebtId) and self.is_undercollateralized(self.wallet, p.key):
                    raise Undercollateralized(
                        f"Remaining debt {p.key!r} of {self.wallet} is undercollateralized"
                    )

        return BatchResult(tuple(assets), tuple(positions), tuple(minted))

    # ========================================================================
    # COMMAND HANDLERS
    # ========================================================================

    def _track(self, account: SettlementAccount, asset: Asset, delta: Decimal) -> None:
        balance_before = ZERO
        if not account.has_asset(asset):
            balance_before = self.custody.balance_of(self.wallet, asset)
        account.update_asset(asset, delta, balance_before)

    def _live_pair(self, key: PairKey) -> Pair:
        return self.pairs.require_initialized(key)

    def _create_pair(self, params: CreatePairParams, account, to, minted) -> None:
        key = params.pair
        self.pairs.initialize(key, params.strike)
        if self.verbose:
            print(f"📝 Initialized: {key.token0}/{key.token1} at strike {params.strike}")

    def _swap(self, params: SwapParams, account, to, minted) -> None:
        if params.selector not in (TokenSelector.TOKEN0, TokenSelector.TOKEN1):
            raise InvalidSelector(f"Swap amount must be in TOKEN0 or TOKEN1, got {params.selector.name}")
        pair = self._live_pair(params.pair)
        result = swap(pair, params.selector is TokenSelector.TOKEN0, params.amount_desired, self.config)
        self._track(account, params.token0, result.amount0)
        self._track(account, params.token1, result.amount1)

    def _add_liquidity(self, params: AddLiquidityParams, account, to, minted) -> None:
        if params.amount_desired <= ZERO:
            raise InvalidAmountDesired(f"Adding liquidity needs a positive amount, got {params.amount_desired}")
        validate_tier(params.spread)
        validate_liquidity_strike(params.strike)
        pair = self._live_pair(params.pair)

        composition = pair.tier_composition(params.spread, params.strike)
        ratio = get_ratio_at_strike(params.strike)
        rounding = self.config.rounding_out
        if params.selector is TokenSelector.LIQUIDITY:
            liquidity = params.amount_desired
        elif params.selector is TokenSelector.TOKEN0:
            liquidity = get_liquidity_for_amount0_at_composition(params.amount_desired, composition, ratio, rounding)
        else:
            liquidity = get_liquidity_for_amount1_at_composition(params.amount_desired, composition, rounding)
        if liquidity <= ZERO:
            raise InvalidAmountDesired(
                f"{params.selector.name} amount {params.amount_desired} buys no liquidity "
                f"at strike {params.strike} tier {params.spread}"
            )

        result = provision_liquidity(pair, params.strike, params.spread, liquidity, self._current_time, self.config)
        self._track(account, params.token0, result.amount0)
        self._track(account, params.token1, result.amount1)

        key = BidirectionalId(params.token0, params.token1, params.strike, params.spread)
        self.positions.mint_bidirectional(to, key, result.balance)
        minted.append(PositionDelta(key, result.balance))

    def _remove_liquidity(self, params: RemoveLiquidityParams, account, to, minted) -> None:
        if params.amount_desired >= ZERO:
            raise InvalidAmountDesired(f"Removing liquidity needs a negative amount, got {params.amount_desired}")
        validate_tier(params.spread)
        validate_liquidity_strike(params.strike)
        pair = self._live_pair(params.pair)

        amount = -params.amount_desired
        composition = pair.tier_composition(params.spread, params.strike)
        ratio = get_ratio_at_strike(params.strike)
        rounding = self.config.rounding_in
        if params.selector is TokenSelector.LIQUIDITY:
            liquidity = liquidity_for_balance(pair, params.strike, params.spread, amount, self.config.rounding_out)
        elif params.selector is TokenSelector.TOKEN0:
            liquidity = get_liquidity_for_amount0_at_composition(amount, composition, ratio, rounding)
        else:
            liquidity = get_liquidity_for_amount1_at_composition(amount, composition, rounding)
        if liquidity <= ZERO:
            raise InvalidAmountDesired(
                f"{params.selector.name} amount {amount} redeems no liquidity "
                f"at strike {params.strike} tier {params.spread}"
            )

        result = provision_liquidity(pair, params.strike, params.spread, -liquidity, self._current_time, self.config)
        self._track(account, params.token0, result.amount0)
        self._track(account, params.token1, result.amount1)

        key = BidirectionalId(params.token0, params.token1, params.strike, params.spread)
        account.update_position(key, result.balance)

    def _collateral_asset(self, params, selector: TokenSelector) -> Asset:
        if selector is TokenSelector.TOKEN0:
            return params.token0
        if selector is TokenSelector.TOKEN1:
            return params.token1
        raise InvalidSelector(f"Collateral must be TOKEN0 or TOKEN1, got {selector.name}")

    def _borrow_liquidity(self, params: BorrowLiquidityParams, account, to, minted) -> None:
        collateral_asset = self._collateral_asset(params, params.selector_collateral)
        if params.amount_desired_collateral <= ZERO:
            raise InvalidAmountDesired("Borrowing needs positive collateral")
        if params.amount_desired_debt <= ZERO:
            raise InvalidAmountDesired("Borrowing needs a positive debt amount")
        validate_liquidity_strike(params.strike)
        pair = self._live_pair(params.pair)

        ratio = get_ratio_at_strike(params.strike)
        if params.selector_collateral is TokenSelector.TOKEN0:
            collateral = get_liquidity_for_amount0(params.amount_desired_collateral, ratio, self.config.rounding_out)
        else:
            collateral = round_amount(params.amount_desired_collateral, self.config.rounding_out)
        debt = params.amount_desired_debt
        if collateral <= debt:
            raise Undercollateralized(
                f"Collateral worth {collateral} liquidity does not exceed debt {debt}"
            )

        result = borrow_liquidity(pair, params.strike, debt, self._current_time, self.config)
        balance = round_amount(debt / result.liquidity_growth, self.config.rounding_in)
        position = PositionData(balance, collateral - balance)
        if is_undercollateralized(position, result.liquidity_growth):
            raise Undercollateralized(
                f"Debt of {balance} principal at index {result.liquidity_growth} "
                f"exceeds collateral {collateral}"
            )

        self._track(account, collateral_asset, params.amount_desired_collateral)
        self._track(account, params.token0, result.amount0)
        self._track(account, params.token1, result.amount1)

        key = DebtId(params.token0, params.token1, params.strike, params.selector_collateral)
        self.positions.mint_debt(to, key, position.balance, position.buffer)
        minted.append(PositionDelta(key, position.balance, position.buffer))

    def _repay_liquidity(self, params: RepayLiquidityParams, account, to, minted) -> None:
        collateral_asset = self._collateral_asset(params, params.selector_collateral)
        if params.amount_desired_debt <= ZERO:
            raise InvalidAmountDesired("Repaying needs a positive debt amount")
        if params.amount_buffer < ZERO:
            raise InvalidAmountDesired("Released buffer cannot be negative")
        validate_liquidity_strike(params.strike)
        pair = self._live_pair(params.pair)

        result = repay_liquidity(pair, params.strike, params.amount_desired_debt, self._current_time, self.config)
        self._track(account, params.token0, result.amount0)
        self._track(account, params.token1, result.amount1)

        released = params.amount_desired_debt + params.amount_buffer
        if params.selector_collateral is TokenSelector.TOKEN0:
            ratio = get_ratio_at_strike(params.strike)
            returned = get_amount0_for_liquidity(released, ratio, self.config.rounding_out)
        else:
            returned = get_amount1_for_liquidity(released, self.config.rounding_out)
        self._track(account, collateral_asset, -returned)

        key = DebtId(params.token0, params.token1, params.strike, params.selector_collateral)
        account.update_position(key, -params.amount_desired_debt, -params.amount_buffer)

    def __repr__(self) -> str:
        return (
            f"Engine(name={self.name!r}, pairs={len(self.pairs)}, "
            f"time={self._current_time.isoformat()}, locked={self._locked})"
        )
