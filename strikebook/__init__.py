"""
strikebook - Strike-Laddered AMM and Liquidity Lending Engine

Pairs of assets trade against liquidity resting at discrete strikes across
spread tiers. Liquidity can be provided, removed and borrowed against
collateral, all inside one atomic batch settled through a single callback.

Usage:
    from decimal import Decimal
    from strikebook import (
        Engine, InMemoryCustody, CommandType, TokenSelector,
        CreatePairParams, AddLiquidityParams, SwapParams,
    )

    custody = InMemoryCustody(test_mode=True)
    custody.set_balance("alice", "A", Decimal(10**18))
    custody.set_balance("alice", "B", Decimal(10**18))
    engine = Engine("main", custody)

    def settle(assets, positions, data):
        for a in assets:
            if a.delta > 0:
                custody.transfer(a.asset, "alice", engine.wallet, a.delta)

    # Seed a pair with liquidity
    engine.execute(
        [CommandType.CREATE_PAIR, CommandType.ADD_LIQUIDITY],
        [CreatePairParams("A", "B", 0),
         AddLiquidityParams("A", "B", 0, 0, TokenSelector.LIQUIDITY, Decimal(10**18))],
        to="alice", num_assets=2, num_positions=0, callback=settle,
    )

    # Buy A with exactly 0.5e18 of B
    engine.execute(
        [CommandType.SWAP],
        [SwapParams("A", "B", TokenSelector.TOKEN1, Decimal(5 * 10**17))],
        to="alice", num_assets=2, num_positions=0, callback=settle,
    )
"""

# Core types
from .core import (
    CommandType,
    TokenSelector,
    PositionType,
    PairKey,
    BidirectionalId,
    DebtId,
    PositionKey,
    position_id,
    AssetDelta,
    PositionDelta,
    TokenCustody,
    SettlementCallback,
    SignatureVerifier,
    EngineConfig,
    DEFAULT_CONFIG,
    round_amount,
    EngineError,
    Reentrancy,
    InvalidTokenOrder,
    InsufficientInput,
    CommandLengthMismatch,
    InvalidCommand,
    InvalidSelector,
    InvalidAmountDesired,
    InvalidStrike,
    InvalidTier,
    PairAlreadyInitialized,
    PairNotInitialized,
    InsufficientLiquidity,
    SettlementCapacityExceeded,
    Undercollateralized,
    InsufficientPositionBalance,
    NotApproved,
    InvalidSignature,
    InvalidTransferRequest,
    NonceAlreadyUsed,
    MIN_STRIKE,
    MAX_STRIKE,
    MIN_LIQUIDITY_STRIKE,
    MAX_LIQUIDITY_STRIKE,
    NUM_SPREADS,
    SPREADS,
    ENGINE_WALLET,
)

# Pricing primitives
from .strike_math import (
    get_ratio_at_strike,
    get_ratios_at_strikes,
    get_amount0_for_liquidity,
    get_amount1_for_liquidity,
    get_liquidity_for_amount0,
    get_liquidity_for_amount1,
    get_amounts_for_liquidity,
    get_liquidity_for_amount0_at_composition,
    get_liquidity_for_amount1_at_composition,
)

# Pair state and engine
from .pairs import Strike, Pair, PairStore, accrue, borrow_rate
from .pair_engine import (
    SwapResult, ProvisionResult, BorrowResult, RepayResult,
    swap, provision_liquidity, liquidity_for_balance,
    borrow_liquidity, repay_liquidity,
)

# Settlement and positions
from .settlement import SettlementAccount
from .positions import (
    PositionData, TransferDetails, SignedTransferRequest, PositionLedger,
    validate_request, is_undercollateralized,
)

# Commands and dispatcher
from .commands import (
    CreatePairParams, SwapParams, AddLiquidityParams, RemoveLiquidityParams,
    BorrowLiquidityParams, RepayLiquidityParams, decode_params,
)
from .engine import Engine, BatchResult, PairSummary, StrikeSummary

# Reference custody
from .custody import InMemoryCustody, InsufficientFunds

__all__ = [
    # Core
    'CommandType', 'TokenSelector', 'PositionType',
    'PairKey', 'BidirectionalId', 'DebtId', 'PositionKey', 'position_id',
    'AssetDelta', 'PositionDelta',
    'TokenCustody', 'SettlementCallback', 'SignatureVerifier',
    'EngineConfig', 'DEFAULT_CONFIG', 'round_amount',
    'MIN_STRIKE', 'MAX_STRIKE', 'MIN_LIQUIDITY_STRIKE', 'MAX_LIQUIDITY_STRIKE',
    'NUM_SPREADS', 'SPREADS', 'ENGINE_WALLET',
    # Exceptions
    'EngineError', 'Reentrancy', 'InvalidTokenOrder', 'InsufficientInput',
    'CommandLengthMismatch', 'InvalidCommand', 'InvalidSelector',
    'InvalidAmountDesired', 'InvalidStrike', 'InvalidTier',
    'PairAlreadyInitialized', 'PairNotInitialized', 'InsufficientLiquidity',
    'SettlementCapacityExceeded', 'Undercollateralized',
    'InsufficientPositionBalance', 'NotApproved', 'InvalidSignature',
    'InvalidTransferRequest', 'NonceAlreadyUsed', 'InsufficientFunds',
    # Pricing
    'get_ratio_at_strike', 'get_ratios_at_strikes',
    'get_amount0_for_liquidity', 'get_amount1_for_liquidity',
    'get_liquidity_for_amount0', 'get_liquidity_for_amount1',
    'get_amounts_for_liquidity',
    'get_liquidity_for_amount0_at_composition', 'get_liquidity_for_amount1_at_composition',
    # Pairs
    'Strike', 'Pair', 'PairStore', 'accrue', 'borrow_rate',
    'SwapResult', 'ProvisionResult', 'BorrowResult', 'RepayResult',
    'swap', 'provision_liquidity', 'liquidity_for_balance',
    'borrow_liquidity', 'repay_liquidity',
    # Settlement and positions
    'SettlementAccount',
    'PositionData', 'TransferDetails', 'SignedTransferRequest', 'PositionLedger',
    'validate_request', 'is_undercollateralized',
    # Commands and engine
    'CreatePairParams', 'SwapParams', 'AddLiquidityParams', 'RemoveLiquidityParams',
    'BorrowLiquidityParams', 'RepayLiquidityParams', 'decode_params',
    'Engine', 'BatchResult', 'PairSummary', 'StrikeSummary',
    # Custody
    'InMemoryCustody',
]

__version__ = '1.0.0'
