"""
Bucket Vault — Reference Valuation Oracle

Whitelist + USD pricing (8 decimals) + platform switch + platform fee.
Every lookup fails closed: an asset that is not whitelisted, a price that is
not positive, or a price older than the staleness window raises instead of
returning a value.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from bucket_fixed import BPS_DENOMINATOR, PRICE_DECIMALS, mul_div
from bucket_types import (
    MAX_FEE_BPS,
    InvalidFeeBps,
    InvalidToken,
    PriceFeed,
    StalePrice,
)

_log = logging.getLogger(__name__)

STALENESS_WINDOW_SECONDS = 30 * 24 * 60 * 60  # 30 days


@dataclass
class _PriceEntry:
    price: int                      # 8 dec
    updated_at: float               # epoch seconds
    feed: Optional[PriceFeed] = None


class StaticValuationOracle:
    """
    In-process ValuationOracle.

    Prices are either set manually (with an `updated_at`) or read from a wired
    PriceFeed.  The staleness window applies to both sources.
    """

    PRICE_DECIMALS = PRICE_DECIMALS

    def __init__(
        self,
        *,
        platform_fee_bps: int = 0,
        staleness_seconds: int = STALENESS_WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not 0 <= platform_fee_bps <= MAX_FEE_BPS:
            raise InvalidFeeBps(f"platform fee {platform_fee_bps} outside [0, {MAX_FEE_BPS}]")
        self._prices: Dict[str, _PriceEntry] = {}
        self._operational = True
        self._platform_fee_bps = platform_fee_bps
        self._staleness_seconds = staleness_seconds
        self._clock = clock

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def whitelist_token(
        self,
        asset: str,
        price: int,
        *,
        updated_at: Optional[float] = None,
        feed: Optional[PriceFeed] = None,
    ) -> None:
        self._prices[asset] = _PriceEntry(
            price=price,
            updated_at=self._clock() if updated_at is None else updated_at,
            feed=feed,
        )
        _log.info("Oracle: whitelisted %s at %d", asset, price)

    def set_price(self, asset: str, price: int, *, updated_at: Optional[float] = None) -> None:
        entry = self._entry(asset)
        entry.price = price
        entry.updated_at = self._clock() if updated_at is None else updated_at

    def wire_feed(self, asset: str, feed: Optional[PriceFeed]) -> None:
        self._entry(asset).feed = feed

    def remove_token(self, asset: str) -> None:
        self._prices.pop(asset, None)
        _log.info("Oracle: removed %s from whitelist", asset)

    def set_operational(self, operational: bool) -> None:
        self._operational = operational
        _log.info("Oracle: platform operational=%s", operational)

    def set_platform_fee(self, bps: int) -> None:
        if not 0 <= bps <= MAX_FEE_BPS:
            raise InvalidFeeBps(f"platform fee {bps} outside [0, {MAX_FEE_BPS}]")
        self._platform_fee_bps = bps

    # ------------------------------------------------------------------
    # ValuationOracle
    # ------------------------------------------------------------------

    def is_token_whitelisted(self, asset: str) -> bool:
        return asset in self._prices

    def is_platform_operational(self) -> bool:
        return self._operational

    def is_token_valid(self, asset: str) -> bool:
        return self._operational and self.is_token_whitelisted(asset)

    def get_whitelisted_tokens(self) -> List[str]:
        return list(self._prices)

    def get_token_price(self, asset: str) -> int:
        entry = self._entry(asset)
        if entry.feed is not None:
            price, updated_at = entry.feed.latest_round()
        else:
            price, updated_at = entry.price, entry.updated_at

        if price <= 0:
            raise StalePrice(f"{asset}: non-positive price {price}")
        age = self._clock() - updated_at
        if age > self._staleness_seconds:
            _log.warning("Oracle: stale price for %s (age=%ds)", asset, int(age))
            raise StalePrice(f"{asset}: price is {int(age)}s old")
        return price

    @property
    def platform_fee(self) -> int:
        return self._platform_fee_bps

    def calculate_fee(self, amount: int) -> int:
        return mul_div(amount, self._platform_fee_bps, BPS_DENOMINATOR)

    def _entry(self, asset: str) -> _PriceEntry:
        entry = self._prices.get(asset)
        if entry is None:
            raise InvalidToken(f"{asset} is not whitelisted")
        return entry
