"""
Bucket Vault — Asset Registry

Tracks which assets the vault currently custodies (insertion-ordered) and,
for passive buckets, the declared target-weight distribution.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from bucket_custody import TokenLedger
from bucket_types import (
    DISTRIBUTION_TOTAL,
    DistributionEntry,
    DuplicateAsset,
    EmptyDistribution,
    InvalidToken,
    InvalidWeight,
    ValuationOracle,
    WeightSumMismatch,
)

_log = logging.getLogger(__name__)

DistributionLike = Sequence[Union[DistributionEntry, Tuple[str, int]]]


def normalize_distribution(entries: DistributionLike) -> List[DistributionEntry]:
    """Accept DistributionEntry objects or (asset, weight) pairs."""
    out: List[DistributionEntry] = []
    for e in entries:
        if isinstance(e, DistributionEntry):
            out.append(e)
        else:
            asset, weight = e
            out.append(DistributionEntry(asset=asset, weight=weight))
    return out


def validate_distribution(
    entries: Sequence[DistributionEntry],
    oracle: Optional[ValuationOracle] = None,
) -> None:
    """
    Raise on the first violated rule:
        - non-empty
        - every weight a positive int
        - no duplicate asset
        - weights sum to exactly 100
        - every asset oracle-valid (when an oracle is given)
    """
    if not entries:
        raise EmptyDistribution("distribution must have at least one entry")

    seen = set()
    total = 0
    for entry in entries:
        if not isinstance(entry.weight, int) or isinstance(entry.weight, bool) or entry.weight <= 0:
            raise InvalidWeight(f"{entry.asset}: weight {entry.weight!r} must be a positive int")
        if entry.asset in seen:
            raise DuplicateAsset(f"{entry.asset} listed more than once")
        seen.add(entry.asset)
        total += entry.weight

    if total != DISTRIBUTION_TOTAL:
        raise WeightSumMismatch(f"weights sum to {total}, expected {DISTRIBUTION_TOTAL}")

    if oracle is not None:
        for entry in entries:
            if not oracle.is_token_valid(entry.asset):
                raise InvalidToken(f"{entry.asset} is not a valid token")


class AssetRegistry:
    """Currently-held assets of one vault account."""

    def __init__(self, vault_address: str, ledger: TokenLedger) -> None:
        self._vault = vault_address
        self._ledger = ledger
        self._held: List[str] = []

    def track(self, asset: str) -> None:
        if asset not in self._held:
            self._held.append(asset)
            _log.debug("Registry: tracking %s", asset)

    def prune(self) -> None:
        """Drop assets whose vault balance reached zero."""
        self._held = [a for a in self._held if self._ledger.balance_of(a, self._vault) > 0]

    def held_assets(self) -> List[str]:
        return list(self._held)

    def custodied_assets(self) -> List[str]:
        """Assets with a non-zero vault balance, in tracking order."""
        return [a for a in self._held if self._ledger.balance_of(a, self._vault) > 0]

    def to_list(self) -> List[str]:
        return list(self._held)

    def load_list(self, assets: Iterable[str]) -> None:
        self._held = []
        for a in assets:
            self.track(a)


class PassiveAssetRegistry(AssetRegistry):
    """Held assets plus the target-weight distribution."""

    def __init__(
        self,
        vault_address: str,
        ledger: TokenLedger,
        distribution: DistributionLike,
        oracle: Optional[ValuationOracle] = None,
    ) -> None:
        super().__init__(vault_address, ledger)
        entries = normalize_distribution(distribution)
        validate_distribution(entries, oracle)
        self._distribution: List[DistributionEntry] = entries

    @property
    def distribution(self) -> List[DistributionEntry]:
        return list(self._distribution)

    def replace_distribution(
        self, distribution: DistributionLike, oracle: Optional[ValuationOracle] = None,
    ) -> List[DistributionEntry]:
        entries = normalize_distribution(distribution)
        validate_distribution(entries, oracle)
        old = self._distribution
        self._distribution = entries
        _log.info(
            "Registry: distribution %s -> %s",
            [(e.asset, e.weight) for e in old],
            [(e.asset, e.weight) for e in entries],
        )
        return entries

    def target_weight(self, asset: str) -> int:
        for entry in self._distribution:
            if entry.asset == asset:
                return entry.weight
        return 0

    def custodied_assets(self) -> List[str]:
        assets = super().custodied_assets()
        for entry in self._distribution:
            if entry.asset not in assets and self._ledger.balance_of(entry.asset, self._vault) > 0:
                assets.append(entry.asset)
        return assets

    def distribution_to_list(self) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in self._distribution]

    def load_distribution(self, items: Iterable[Dict[str, Any]]) -> None:
        entries = [DistributionEntry(asset=i["asset"], weight=int(i["weight"])) for i in items]
        validate_distribution(entries)
        self._distribution = entries
