"""
Bucket Vault — Swap Routing

Indexed DEX adapter table with best-of-N quoting, plus the single-adapter and
aggregator execution paths used by the rebalance engine.

Best-quote rule: strictly greater output wins; ties keep the
earliest-configured adapter.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

from bucket_custody import TokenLedger
from bucket_fixed import BPS_DENOMINATOR, mul_div
from bucket_types import (
    MAX_DEX_COUNT,
    DEXConfig,
    InvalidDexIndex,
    NoValidQuotesFound,
    SlippageExceeded,
    SwapAggregator,
    SwapAmountTooSmall,
    SwapOrder,
    SwapQuoter,
    SwapRouter,
    ValidationError,
    ZeroAddress,
)

_log = logging.getLogger(__name__)


class DexTable:
    """Up to MAX_DEX_COUNT adapter entries, addressed by index."""

    def __init__(self, configs: Optional[List[DEXConfig]] = None) -> None:
        self._configs: List[DEXConfig] = []
        for i, cfg in enumerate(configs or []):
            self.configure(i, cfg.router, cfg.quoter, cfg.fee_tier, cfg.enabled)

    def configure(
        self,
        index: int,
        router: SwapRouter,
        quoter: SwapQuoter,
        fee_tier: int,
        enabled: bool,
    ) -> DEXConfig:
        """index == count appends; index < count replaces."""
        if index < 0 or index > len(self._configs) or index >= MAX_DEX_COUNT:
            raise InvalidDexIndex(
                f"index {index} invalid (count={len(self._configs)}, max={MAX_DEX_COUNT})"
            )
        if router is None or quoter is None:
            raise ZeroAddress("router and quoter are required")
        if fee_tier < 0:
            raise ValidationError(f"fee tier must be non-negative, got {fee_tier}")
        cfg = DEXConfig(router=router, quoter=quoter, fee_tier=fee_tier, enabled=enabled)
        if index == len(self._configs):
            self._configs.append(cfg)
        else:
            self._configs[index] = cfg
        _log.info("DEX[%d] configured: %s", index, cfg.to_dict())
        return cfg

    def get(self, index: int) -> DEXConfig:
        if not 0 <= index < len(self._configs):
            raise InvalidDexIndex(f"index {index} invalid (count={len(self._configs)})")
        return self._configs[index]

    @property
    def count(self) -> int:
        return len(self._configs)

    def configs(self) -> List[DEXConfig]:
        return list(self._configs)

    def reset(self, configs: List[DEXConfig]) -> None:
        """Replace every entry (rollback / restore)."""
        if len(configs) > MAX_DEX_COUNT:
            raise InvalidDexIndex(f"{len(configs)} entries exceed max={MAX_DEX_COUNT}")
        self._configs = list(configs)

    # ------------------------------------------------------------------
    # Quoting
    # ------------------------------------------------------------------

    def best_quote(self, token_in: str, token_out: str, amount_in: int) -> Tuple[int, int]:
        """Returns (index, amount_out) of the best enabled adapter."""
        if amount_in <= 0:
            raise SwapAmountTooSmall(f"cannot quote amount {amount_in}")

        best_index = -1
        best_out = 0
        for i, cfg in enumerate(self._configs):
            if not cfg.enabled:
                continue
            out = cfg.quoter.quote(token_in, token_out, cfg.fee_tier, amount_in)
            _log.debug("DEX[%d] quote %s->%s %d = %d", i, token_in, token_out, amount_in, out)
            if out > best_out:
                best_index, best_out = i, out

        if best_index < 0:
            raise NoValidQuotesFound(
                f"no enabled DEX quotes {token_in}->{token_out} for {amount_in}"
            )
        return best_index, best_out

    def to_list(self) -> List[Dict[str, object]]:
        return [cfg.to_dict() for cfg in self._configs]


def min_out_for(quote: int, order_min: int, max_loss_bps: int) -> int:
    """Floor accepted from the chosen adapter."""
    return max(order_min, mul_div(quote, BPS_DENOMINATOR - max_loss_bps, BPS_DENOMINATOR))


def execute_via_dex(
    table: DexTable,
    ledger: TokenLedger,
    vault: str,
    order: SwapOrder,
    *,
    platform_fee: int,
    platform_treasury: str,
    max_loss_bps: int,
) -> int:
    """
    Route one order through the best-quoting adapter.

    The platform fee is paid out of amount_in first; the remainder is what
    gets quoted and swapped.  Returns the amount of token_out received.
    """
    errors = order.validate()
    if errors:
        raise ValidationError("; ".join(errors))
    if platform_fee > order.amount_in:
        raise SwapAmountTooSmall(f"fee {platform_fee} exceeds amount {order.amount_in}")
    net_in = order.amount_in - platform_fee
    if net_in <= 0:
        raise SwapAmountTooSmall(
            f"{order.token_in} amount {order.amount_in} is zero after fee {platform_fee}"
        )

    index, quoted = table.best_quote(order.token_in, order.token_out, net_in)
    cfg = table.get(index)
    min_out = min_out_for(quoted, order.min_amount_out, max_loss_bps)

    if platform_fee:
        ledger.transfer(order.token_in, vault, platform_treasury, platform_fee)

    before = ledger.balance_of(order.token_out, vault)
    ledger.transfer(order.token_in, vault, cfg.router.address, net_in)
    reported = cfg.router.execute(
        order.token_in, order.token_out, cfg.fee_tier, net_in, min_out, recipient=vault,
    )
    received = ledger.balance_of(order.token_out, vault) - before
    if received < min_out:
        raise SlippageExceeded(
            f"DEX[{index}] delivered {received} {order.token_out}, minimum {min_out}"
        )
    _log.info(
        "DEX[%d] swap %d %s -> %d %s (quoted %d, reported %d)",
        index, net_in, order.token_in, received, order.token_out, quoted, reported,
    )
    return received


def execute_via_aggregator(aggregator: SwapAggregator, vault: str, calldata: bytes) -> None:
    """Forward opaque calldata; the aggregator enforces its own slippage bounds."""
    if aggregator is None:
        raise ZeroAddress("aggregator router is not set")
    if not calldata:
        raise ValidationError("empty aggregator calldata")
    _log.info("Aggregator %s: forwarding %d bytes", aggregator.address, len(calldata))
    aggregator.swap(vault, calldata)
