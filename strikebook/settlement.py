"""
settlement.py - Per-Batch Netting Account

A SettlementAccount nets every token and position effect of one batch into
a single signed delta per asset and per position key. Keys keep first-seen
order and appear at most once. The account is discarded when the batch ends.

Sign convention (engine side):
    asset delta > 0      the caller owes the engine that asset
    asset delta < 0      the engine pays that asset out
    position delta > 0   minted to the recipient during the batch
    position delta < 0   burned from the engine's own entry at settlement
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List

from .core import (
    Asset, AssetDelta, PositionDelta, PositionKey,
    SettlementCapacityExceeded, ZERO, to_decimal,
)


@dataclass
class TrackedAsset:
    """Running delta for one asset, with the engine's balance at first sight."""
    asset: Asset
    delta: Decimal
    balance_before: Decimal


class SettlementAccount:
    """
    Insertion-ordered netting of asset and position deltas.

    Example:
        account = SettlementAccount(max_assets=2, max_positions=1)
        account.update_asset("USDC", Decimal("100"), balance_before=Decimal("0"))
        account.update_asset("USDC", Decimal("-40"), balance_before=Decimal("0"))
        account.assets  # [AssetDelta("USDC", Decimal("60"))]
    """

    def __init__(self, max_assets: int, max_positions: int):
        if max_assets < 0 or max_positions < 0:
            raise ValueError("Settlement capacities must be non-negative")
        self.max_assets = max_assets
        self.max_positions = max_positions
        self._assets: Dict[Asset, TrackedAsset] = {}
        self._positions: Dict[PositionKey, List[Decimal]] = {}

    def update_asset(self, asset: Asset, delta, balance_before) -> None:
        """
        Add a signed delta to an asset's slot, opening the slot on first use.

        balance_before is recorded only when the slot is opened.

        Raises:
            SettlementCapacityExceeded: If a new asset would exceed max_assets
        """
        delta = to_decimal(delta)
        tracked = self._assets.get(asset)
        if tracked is None:
            if len(self._assets) >= self.max_assets:
                raise SettlementCapacityExceeded(
                    f"Batch declared {self.max_assets} assets, cannot track {asset!r}"
                )
            self._assets[asset] = TrackedAsset(asset, delta, to_decimal(balance_before))
            return
        tracked.delta += delta

    def update_position(self, key: PositionKey, balance, buffer=ZERO) -> None:
        """
        Add signed balance and buffer deltas to a position's slot.

        Raises:
            SettlementCapacityExceeded: If a new position would exceed max_positions
        """
        balance = to_decimal(balance)
        buffer = to_decimal(buffer)
        slot = self._positions.get(key)
        if slot is None:
            if len(self._positions) >= self.max_positions:
                raise SettlementCapacityExceeded(
                    f"Batch declared {self.max_positions} positions, cannot track {key!r}"
                )
            self._positions[key] = [balance, buffer]
            return
        slot[0] += balance
        slot[1] += buffer

    def has_asset(self, asset: Asset) -> bool:
        return asset in self._assets

    def balance_before(self, asset: Asset) -> Decimal:
        return self._assets[asset].balance_before

    @property
    def assets(self) -> List[AssetDelta]:
        return [AssetDelta(t.asset, t.delta) for t in self._assets.values()]

    @property
    def positions(self) -> List[PositionDelta]:
        return [PositionDelta(key, slot[0], slot[1]) for key, slot in self._positions.items()]

    def is_empty(self) -> bool:
        return not self._assets and not self._positions

    def __repr__(self) -> str:
        return (
            f"SettlementAccount(assets={len(self._assets)}/{self.max_assets}, "
            f"positions={len(self._positions)}/{self.max_positions})"
        )
