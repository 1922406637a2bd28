"""
custody.py - In-Memory Token Custody

Reference TokenCustody: a wallet -> asset -> balance book. The engine only
reads its own balance and pushes tokens out; callers (and their settlement
callbacks) move tokens in with transfer().
"""

from __future__ import annotations
from collections import defaultdict
from decimal import Decimal
from typing import Dict

from .core import Asset, Owner, EngineError, ZERO, to_decimal


Balances = Dict[Owner, Dict[Asset, Decimal]]


class InsufficientFunds(EngineError):
    """Raised when a wallet's balance cannot cover a transfer."""
    pass


class InMemoryCustody:
    """
    Token balances held in memory.

    Example:
        custody = InMemoryCustody(test_mode=True)
        custody.set_balance("alice", "USDC", Decimal("1000"))
        custody.transfer("USDC", "alice", "engine", Decimal("250"))
        custody.balance_of("engine", "USDC")  # Decimal("250")
    """

    def __init__(self, test_mode: bool = False):
        """
        Args:
            test_mode: Allow set_balance() to create balances out of thin air
        """
        self.balances: Balances = defaultdict(lambda: defaultdict(lambda: ZERO))
        self._test_mode = test_mode

    def balance_of(self, owner: Owner, asset: Asset) -> Decimal:
        wallet = self.balances.get(owner)
        if wallet is None:
            return ZERO
        return wallet.get(asset, ZERO)

    def transfer(self, asset: Asset, source: Owner, dest: Owner, amount) -> None:
        """
        Move `amount` of `asset` from source to dest.

        Raises:
            ValueError: If amount is negative
            InsufficientFunds: If source holds less than amount
        """
        amount = to_decimal(amount)
        if amount < ZERO:
            raise ValueError(f"Transfer amount must be non-negative, got {amount}")
        if amount == ZERO:
            return
        available = self.balance_of(source, asset)
        if available < amount:
            raise InsufficientFunds(
                f"{source} holds {available} {asset}, cannot transfer {amount}"
            )
        self.balances[source][asset] = available - amount
        self.balances[dest][asset] += amount

    def set_balance(self, owner: Owner, asset: Asset, quantity) -> None:
        """
        Overwrite a wallet's balance directly. Test mode only.

        Raises:
            EngineError: If called when test_mode is False
        """
        if not self._test_mode:
            raise EngineError(
                "set_balance() is disabled in production mode. "
                "Set test_mode=True when creating InMemoryCustody for testing."
            )
        self.balances[owner][asset] = to_decimal(quantity)

    def wallet(self, owner: Owner) -> Dict[Asset, Decimal]:
        """Non-zero balances of one wallet."""
        return {a: q for a, q in self.balances.get(owner, {}).items() if q != ZERO}

    def snapshot(self) -> Dict[Owner, Dict[Asset, Decimal]]:
        return {owner: dict(wallet) for owner, wallet in self.balances.items()}

    def restore(self, snapshot: Dict[Owner, Dict[Asset, Decimal]]) -> None:
        balances: Balances = defaultdict(lambda: defaultdict(lambda: ZERO))
        for owner, wallet in snapshot.items():
            balances[owner].update(wallet)
        self.balances = balances
