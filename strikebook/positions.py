"""
positions.py - Position Ledger

Durable ownership of the two position variants:

    BidirectionalId  balance = shares of one (pair, strike, tier)
    DebtId           balance = borrowed principal, buffer = collateral minus principal

Positions move by transfer, by approved transfer_from, or by redeeming a
signed transfer request. Minting and burning are reserved for the engine.
Mints accumulate additively, so a second mint to a live debt position adds
its buffer to the existing one. A partial debt transfer carries at most its
pro-rata share of the buffer.
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Set, Tuple

from .core import (
    Owner, PositionKey, PositionType, BidirectionalId, DebtId,
    InsufficientPositionBalance, NotApproved, InvalidSignature,
    InvalidTransferRequest, NonceAlreadyUsed, Undercollateralized, SignatureVerifier,
    ZERO, to_decimal,
)


@dataclass(frozen=True, slots=True)
class PositionData:
    """An owner's holding of one position."""
    balance: Decimal = ZERO
    buffer: Decimal = ZERO


EMPTY_POSITION = PositionData()


@dataclass(frozen=True, slots=True)
class TransferDetails:
    """
    Amount of one position to move.

    amount_buffer only applies to debt positions; a bidirectional transfer
    carrying a buffer is rejected at construction.
    """
    id: PositionKey
    amount: Decimal
    amount_buffer: Decimal = ZERO

    def __post_init__(self):
        if not isinstance(self.id, (BidirectionalId, DebtId)):
            raise ValueError(f"Unknown position identity: {self.id!r}")
        object.__setattr__(self, 'amount', to_decimal(self.amount))
        object.__setattr__(self, 'amount_buffer', to_decimal(self.amount_buffer))
        if self.amount < 0 or self.amount_buffer < 0:
            raise ValueError("Transfer amounts must be non-negative")
        if isinstance(self.id, BidirectionalId) and self.amount_buffer != 0:
            raise ValueError("Bidirectional positions carry no buffer")

    @property
    def position_type(self) -> PositionType:
        return self.id.position_type


@dataclass(frozen=True, slots=True)
class SignedTransferRequest:
    """
    Upper bound on a transfer the owner has signed off on.

    Attributes:
        details: Maximum position amounts the holder of the signature may move.
        nonce: Single-use per owner.
        deadline: Last logical time the request may be redeemed (None = no expiry).
    """
    details: TransferDetails
    nonce: int
    deadline: Optional[datetime] = None


def validate_request(signed: TransferDetails, requested: TransferDetails) -> bool:
    """
    True if `requested` stays within what was signed.

    The identity and variant must match exactly; amounts may be smaller.
    """
    return (
        requested.id == signed.id
        and requested.position_type == signed.position_type
        and requested.amount <= signed.amount
        and requested.amount_buffer <= signed.amount_buffer
    )


def is_undercollateralized(data: PositionData, liquidity_growth: Decimal) -> bool:
    """
    True if a debt position owes more liquidity than its collateral covers.

    Owed = balance * liquidity_growth; collateral = buffer + balance.
    """
    if data.balance <= ZERO:
        return False
    return data.balance * liquidity_growth > data.buffer + data.balance


class PositionLedger:
    """
    Ownership, allowances and signature nonces for positions.

    Example:
        ledger = PositionLedger()
        key = BidirectionalId("A", "B", strike=0, spread=0)
        ledger.mint_bidirectional("alice", key, Decimal("100"))
        ledger.transfer("alice", "bob", TransferDetails(key, Decimal("40")))
        ledger.read("bob", key).balance  # Decimal("40")
    """

    def __init__(self):
        self.data: Dict[Tuple[Owner, PositionKey], PositionData] = {}
        self.allowances: Dict[Tuple[Owner, Owner], bool] = {}
        self.used_nonces: Dict[Owner, Set[int]] = defaultdict(set)
        # Pre-images of entries written since begin(); None while not journaling
        self._journal: Optional[Dict[str, Dict[Any, Any]]] = None

    # ========================================================================
    # READS
    # ========================================================================

    def read(self, owner: Owner, key: PositionKey) -> PositionData:
        return self.data.get((owner, key), EMPTY_POSITION)

    def read_allowance(self, owner: Owner, spender: Owner) -> bool:
        return self.allowances.get((owner, spender), False)

    def positions_of(self, owner: Owner) -> Dict[PositionKey, PositionData]:
        """Every position the owner holds with a non-zero balance or buffer."""
        return {
            key: data for (holder, key), data in self.data.items()
            if holder == owner and (data.balance != ZERO or data.buffer != ZERO)
        }

    # ========================================================================
    # EXTERNAL OPERATIONS
    # ========================================================================

    def approve(self, owner: Owner, spender: Owner, approved: bool) -> None:
        """Grant or revoke `spender`'s right to move all of `owner`'s positions."""
        self._remember('allowances', (owner, spender), self.allowances.get((owner, spender)))
        self.allowances[(owner, spender)] = bool(approved)

    def transfer(self, owner: Owner, to: Owner, details: TransferDetails) -> None:
        """
        Move a position amount from `owner` to `to`.

        Raises:
            InsufficientPositionBalance: If owner's balance or buffer is too small
            Undercollateralized: If a debt transfer takes more than its share of buffer
        """
        self._move(owner, to, details)

    def transfer_from(self, spender: Owner, owner: Owner, to: Owner, details: TransferDetails) -> None:
        """
        Move a position amount out of `owner` on behalf of `spender`.

        Raises:
            NotApproved: Unless owner approved spender
            InsufficientPositionBalance: If owner's balance or buffer is too small
            Undercollateralized: If a debt transfer takes more than its share of buffer
        """
        if spender != owner and not self.read_allowance(owner, spender):
            raise NotApproved(f"{spender} is not approved by {owner}")
        self._move(owner, to, details)

    def transfer_by_signature(
        self,
        owner: Owner,
        to: Owner,
        request: SignedTransferRequest,
        requested: TransferDetails,
        signature: Any,
        verifier: SignatureVerifier,
        now: Optional[datetime] = None,
    ) -> None:
        """
        Redeem a signed transfer request for up to its signed amounts.

        Raises:
            NonceAlreadyUsed: If the owner's nonce was redeemed before
            InvalidTransferRequest: If expired or `requested` exceeds what was signed
            InvalidSignature: If verifier rejects the signature
            InsufficientPositionBalance: If owner's balance or buffer is too small
            Undercollateralized: If a debt transfer takes more than its share of buffer
        """
        if request.nonce in self.used_nonces[owner]:
            raise NonceAlreadyUsed(f"Nonce {request.nonce} already used by {owner}")
        if request.deadline is not None and now is not None and now > request.deadline:
            raise InvalidTransferRequest(f"Request expired at {request.deadline}")
        if not validate_request(request.details, requested):
            raise InvalidTransferRequest("Requested transfer exceeds signed request")
        if not verifier(owner, request, signature):
            raise InvalidSignature(f"Signature does not authorize transfer from {owner}")
        self._move(owner, to, requested)
        self._remember('nonces', owner, set(self.used_nonces.get(owner, ())))
        self.used_nonces[owner].add(request.nonce)

    # ========================================================================
    # BATCH JOURNAL
    # ========================================================================

    def begin(self) -> None:
        """Start recording what each write replaces, for rollback()."""
        self._journal = {'data': {}, 'allowances': {}, 'nonces': {}}

    def commit(self) -> None:
        self._journal = None

    def rollback(self) -> None:
        """Undo every write since begin()."""
        journal, self._journal = self._journal, None
        if journal is None:
            return
        for table, entries in ((self.data, journal['data']), (self.allowances, journal['allowances'])):
            for key, previous in entries.items():
                if previous is None:
                    table.pop(key, None)
                else:
                    table[key] = previous
        for owner, nonces in journal['nonces'].items():
            self.used_nonces[owner] = nonces

    def _remember(self, table: str, key: Any, previous: Any) -> None:
        if self._journal is not None:
            self._journal[table].setdefault(key, previous)

    # ========================================================================
    # ENGINE-ONLY MUTATORS
    # ========================================================================

    def mint_bidirectional(self, owner: Owner, key: BidirectionalId, balance: Decimal) -> None:
        self._add(owner, key, to_decimal(balance), ZERO)

    def mint_debt(self, owner: Owner, key: DebtId, balance: Decimal, buffer: Decimal) -> None:
        self._add(owner, key, to_decimal(balance), to_decimal(buffer))

    def burn(self, owner: Owner, key: PositionKey, balance: Decimal, buffer: Decimal = ZERO) -> None:
        """
        Raises:
            InsufficientPositionBalance: If owner holds less than the burned amounts
        """
        self._add(owner, key, -to_decimal(balance), -to_decimal(buffer))

    def _add(self, owner: Owner, key: PositionKey, balance: Decimal, buffer: Decimal) -> None:
        current = self.read(owner, key)
        new_balance = current.balance + balance
        new_buffer = current.buffer + buffer
        if new_balance < ZERO or new_buffer < ZERO:
            raise InsufficientPositionBalance(
                f"{owner} holds {current.balance} (buffer {current.buffer}) of {key!r}, "
                f"cannot apply {balance} (buffer {buffer})"
            )
        self._remember('data', (owner, key), self.data.get((owner, key)))
        self.data[(owner, key)] = replace(current, balance=new_balance, buffer=new_buffer)

    def _move(self, owner: Owner, to: Owner, details: TransferDetails) -> None:
        if isinstance(details.id, DebtId):
            self._check_buffer_share(owner, details)
        # Debit first so a failed debit leaves the receiver untouched
        self._add(owner, details.id, -details.amount, -details.amount_buffer)
        self._add(to, details.id, details.amount, details.amount_buffer)

    def _check_buffer_share(self, owner: Owner, details: TransferDetails) -> None:
        """
        A debt transfer may carry at most its pro-rata share of the buffer.

        The sender keeps at least as much buffer per unit of principal as it
        had before, so moving debt never weakens what stays behind. Moving
        the whole balance may take any part of the buffer.

        Raises:
            Undercollateralized: If the buffer taken outruns the principal taken
        """
        current = self.read(owner, details.id)
        if details.amount > current.balance or details.amount_buffer > current.buffer:
            return  # _add reports the shortfall
        if details.amount_buffer * current.balance > current.buffer * details.amount:
            raise Undercollateralized(
                f"{owner} cannot move buffer {details.amount_buffer} with {details.amount} "
                f"of {details.id!r}: holds {current.balance} (buffer {current.buffer})"
            )
