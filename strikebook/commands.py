"""
commands.py - Typed Command Parameters

One frozen parameter type per CommandType. A batch may carry these directly
or as plain mappings, which decode_params turns into the typed form once,
before any handler runs.

Amount signs:
    Swap             amount_desired != 0 (positive = exact input, negative = exact output)
    AddLiquidity     amount_desired > 0
    RemoveLiquidity  amount_desired < 0
    BorrowLiquidity  amount_desired_collateral > 0, amount_desired_debt > 0
    RepayLiquidity   amount_desired_debt > 0, amount_buffer >= 0

Every amount must be finite; NaN and Infinity are rejected as InvalidCommand.
"""

from __future__ import annotations
from dataclasses import dataclass, fields
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Type, Union

from .core import (
    Asset, CommandType, TokenSelector, PairKey,
    InvalidCommand, InvalidSelector, to_decimal,
)


def _selector(value: Any) -> TokenSelector:
    if isinstance(value, TokenSelector):
        return value
    if isinstance(value, str):
        try:
            return TokenSelector[value.upper()]
        except KeyError:
            raise InvalidSelector(f"Unknown token selector {value!r}") from None
    try:
        return TokenSelector(value)
    except ValueError:
        raise InvalidSelector(f"Unknown token selector {value!r}") from None


def _amount(value: Any) -> Decimal:
    try:
        amount = to_decimal(value)
    except (TypeError, ValueError, InvalidOperation):
        raise InvalidCommand(f"Amount {value!r} is not a number") from None
    if not amount.is_finite():
        raise InvalidCommand(f"Amount must be a finite number, got {value!r}")
    return amount


class _PairParams:
    """Shared accessor for parameter types that name a pair."""

    __slots__ = ()

    @property
    def pair(self) -> PairKey:
        return PairKey(self.token0, self.token1)


@dataclass(frozen=True, slots=True)
class CreatePairParams(_PairParams):
    token0: Asset
    token1: Asset
    strike: int


@dataclass(frozen=True, slots=True)
class SwapParams(_PairParams):
    token0: Asset
    token1: Asset
    selector: TokenSelector
    amount_desired: Decimal

    def __post_init__(self):
        object.__setattr__(self, 'selector', _selector(self.selector))
        object.__setattr__(self, 'amount_desired', _amount(self.amount_desired))


@dataclass(frozen=True, slots=True)
class AddLiquidityParams(_PairParams):
    token0: Asset
    token1: Asset
    strike: int
    spread: int
    selector: TokenSelector
    amount_desired: Decimal

    def __post_init__(self):
        object.__setattr__(self, 'selector', _selector(self.selector))
        object.__setattr__(self, 'amount_desired', _amount(self.amount_desired))


@dataclass(frozen=True, slots=True)
class RemoveLiquidityParams(_PairParams):
    token0: Asset
    token1: Asset
    strike: int
    spread: int
    selector: TokenSelector
    amount_desired: Decimal

    def __post_init__(self):
        object.__setattr__(self, 'selector', _selector(self.selector))
        object.__setattr__(self, 'amount_desired', _amount(self.amount_desired))


@dataclass(frozen=True, slots=True)
class BorrowLiquidityParams(_PairParams):
    """
    Borrow liquidity at a strike against collateral.

    Attributes:
        selector_collateral: TOKEN0 or TOKEN1, the asset posted as collateral.
        amount_desired_collateral: Collateral amount in that asset.
        amount_desired_debt: Liquidity units to borrow.
    """
    token0: Asset
    token1: Asset
    strike: int
    selector_collateral: TokenSelector
    amount_desired_collateral: Decimal
    amount_desired_debt: Decimal

    def __post_init__(self):
        object.__setattr__(self, 'selector_collateral', _selector(self.selector_collateral))
        object.__setattr__(self, 'amount_desired_collateral', _amount(self.amount_desired_collateral))
        object.__setattr__(self, 'amount_desired_debt', _amount(self.amount_desired_debt))


@dataclass(frozen=True, slots=True)
class RepayLiquidityParams(_PairParams):
    """
    Repay a debt position and reclaim its collateral.

    Attributes:
        amount_desired_debt: Debt principal to repay.
        amount_buffer: Buffer released along with the principal.
    """
    token0: Asset
    token1: Asset
    strike: int
    selector_collateral: TokenSelector
    amount_desired_debt: Decimal
    amount_buffer: Decimal

    def __post_init__(self):
        object.__setattr__(self, 'selector_collateral', _selector(self.selector_collateral))
        object.__setattr__(self, 'amount_desired_debt', _amount(self.amount_desired_debt))
        object.__setattr__(self, 'amount_buffer', _amount(self.amount_buffer))


CommandParams = Union[
    CreatePairParams, SwapParams, AddLiquidityParams, RemoveLiquidityParams,
    BorrowLiquidityParams, RepayLiquidityParams,
]

PARAMS_BY_COMMAND: Dict[CommandType, Type] = {
    CommandType.CREATE_PAIR: CreatePairParams,
    CommandType.SWAP: SwapParams,
    CommandType.ADD_LIQUIDITY: AddLiquidityParams,
    CommandType.REMOVE_LIQUIDITY: RemoveLiquidityParams,
    CommandType.BORROW_LIQUIDITY: BorrowLiquidityParams,
    CommandType.REPAY_LIQUIDITY: RepayLiquidityParams,
}


def to_command_type(command: Any) -> CommandType:
    """
    Coerce a command tag to CommandType.

    Raises:
        InvalidCommand: If the tag is not a known command
    """
    if isinstance(command, CommandType):
        return command
    try:
        return CommandType(command)
    except ValueError:
        raise InvalidCommand(f"Unknown command {command!r}") from None


def decode_params(command: Any, raw: Union[CommandParams, Mapping[str, Any]]) -> CommandParams:
    """
    Decode one command's parameters into its typed form.

    Args:
        command: CommandType or its string value
        raw: Typed params for that command, or a mapping of its field names

    Returns:
        The typed parameter object

    Raises:
        InvalidCommand: Unknown tag, params of another command, or a payload
            with missing, unknown or malformed fields
        InvalidSelector: Payload names an unknown token selector
    """
    command = to_command_type(command)
    params_type = PARAMS_BY_COMMAND[command]

    if isinstance(raw, params_type):
        return raw
    if not isinstance(raw, Mapping):
        raise InvalidCommand(
            f"{command.value} expects {params_type.__name__} or a mapping, got {type(raw).__name__}"
        )

    names = {f.name for f in fields(params_type)}
    missing = names - set(raw)
    unknown = set(raw) - names
    if missing or unknown:
        raise InvalidCommand(
            f"{command.value} payload: missing={sorted(missing)} unknown={sorted(unknown)}"
        )
    try:
        return params_type(**raw)
    except (TypeError, ValueError, InvalidOperation) as e:
        raise InvalidCommand(f"{command.value} payload malformed: {e}") from e
