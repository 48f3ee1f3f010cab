"""
Bucket Vault — Rebalance Engine

Values the vault, executes a batch of swap steps (aggregator calldata or
best-quote DEX orders), and enforces the value-loss guard over the whole
batch.  Caller and owner fees are skimmed from the batch proceeds before the
guard measures, so they count toward the loss bound.

Batch flow:
    1. value_before = Σ balance_i * price_i
    2. run every step (any failure aborts the batch)
    3. skim caller / owner fees from positive balance deltas
    4. value_after; require value_before - value_after <= max_loss_bps * value_before
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from bucket_custody import TokenLedger
from bucket_fixed import (
    BPS_DENOMINATOR,
    Fixed,
    SemanticType,
    asset_amount_for_usd,
    asset_value_usd,
    mul_div,
)
from bucket_registry import AssetRegistry
from bucket_swap import DexTable, execute_via_aggregator, execute_via_dex
from bucket_types import (
    DISTRIBUTION_TOTAL,
    MAX_VALUE_LOSS_BPS,
    REBALANCE_TOLERANCE_BPS,
    DistributionEntry,
    DistributionWithinTolerance,
    RebalanceReport,
    SwapAggregator,
    SwapAmountTooSmall,
    SwapOrder,
    ValuationOracle,
    ValidationError,
    ValueLossExceeded,
)

_log = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeeSplit:
    """Who receives the rebalance skims, and how much."""
    caller: str
    owner: str
    caller_bps: int
    owner_bps: int


class RebalanceEngine:
    """Valuation + guarded batch execution for one vault account."""

    def __init__(
        self,
        vault_address: str,
        ledger: TokenLedger,
        oracle: ValuationOracle,
        registry: AssetRegistry,
        dex_table: DexTable,
        *,
        max_loss_bps: int = MAX_VALUE_LOSS_BPS,
    ) -> None:
        self._vault = vault_address
        self._ledger = ledger
        self._oracle = oracle
        self._registry = registry
        self._dex = dex_table
        self._max_loss_bps = max_loss_bps

    # ------------------------------------------------------------------
    # Valuation
    # ------------------------------------------------------------------

    def asset_value(self, asset: str) -> Fixed:
        balance = self._ledger.balance_of(asset, self._vault)
        if balance == 0:
            return Fixed.zero(SemanticType.USD)
        price = self._oracle.get_token_price(asset)
        return asset_value_usd(balance, price, self._ledger.decimals(asset))

    def asset_values(self) -> Dict[str, Fixed]:
        return {a: self.asset_value(a) for a in self._registry.custodied_assets()}

    def total_value(self) -> Fixed:
        total = Fixed.zero(SemanticType.USD)
        for value in self.asset_values().values():
            total = total + value
        return total

    # ------------------------------------------------------------------
    # Batch execution
    # ------------------------------------------------------------------

    def execute_orders(
        self,
        orders: Sequence[SwapOrder],
        fees: FeeSplit,
        *,
        platform_treasury: str,
    ) -> RebalanceReport:
        """Best-quote DEX path."""
        if not orders:
            raise ValidationError("no orders supplied")

        def run() -> None:
            for order in orders:
                fee = self._oracle.calculate_fee(order.amount_in)
                execute_via_dex(
                    self._dex,
                    self._ledger,
                    self._vault,
                    order,
                    platform_fee=fee,
                    platform_treasury=platform_treasury,
                    max_loss_bps=self._max_loss_bps,
                )
                self._registry.track(order.token_out)

        return self._guarded(run, len(orders), fees)

    def execute_calldata(
        self,
        aggregator: Optional[SwapAggregator],
        calldatas: Sequence[bytes],
        fees: FeeSplit,
    ) -> RebalanceReport:
        """Aggregator path: each calldata blob is forwarded unchanged."""
        if not calldatas:
            raise ValidationError("no calldata supplied")

        def run() -> None:
            for blob in calldatas:
                execute_via_aggregator(aggregator, self._vault, blob)

        return self._guarded(run, len(calldatas), fees)

    def _guarded(self, run, steps: int, fees: FeeSplit) -> RebalanceReport:
        value_before = self.total_value()
        balances_before = {a: self._ledger.balance_of(a, self._vault) for a in self._ledger.assets()}

        run()

        proceeds: Dict[str, int] = {}
        for asset in self._ledger.assets():
            delta = self._ledger.balance_of(asset, self._vault) - balances_before.get(asset, 0)
            if delta > 0:
                proceeds[asset] = delta
                self._registry.track(asset)

        # fees count against the loss bound
        caller_fees, owner_fees = self._skim_fees(proceeds, fees)
        value_after = self.total_value()
        loss = value_before.value - value_after.value
        allowed = mul_div(value_before.value, self._max_loss_bps, BPS_DENOMINATOR)
        if loss > allowed:
            _log.warning(
                "Value-loss guard: before=%d after=%d loss=%d allowed=%d",
                value_before.value, value_after.value, loss, allowed,
            )
            raise ValueLossExceeded(
                f"batch lost {loss} (8-dec USD), allowed {allowed}"
            )

        self._registry.prune()

        report = RebalanceReport(
            value_before=value_before.value,
            value_after=value_after.value,
            proceeds=proceeds,
            caller_fees=caller_fees,
            owner_fees=owner_fees,
            steps=steps,
        )
        _log.info(
            "Rebalance committed: steps=%d value %d -> %d",
            steps, report.value_before, report.value_after,
        )
        return report

    def _skim_fees(self, proceeds: Dict[str, int], fees: FeeSplit):
        caller_fees: Dict[str, int] = {}
        owner_fees: Dict[str, int] = {}
        for asset, amount in proceeds.items():
            caller_cut = mul_div(amount, fees.caller_bps, BPS_DENOMINATOR)
            owner_cut = mul_div(amount, fees.owner_bps, BPS_DENOMINATOR)
            if caller_cut:
                self._ledger.transfer(asset, self._vault, fees.caller, caller_cut)
                caller_fees[asset] = caller_cut
            if owner_cut:
                self._ledger.transfer(asset, self._vault, fees.owner, owner_cut)
                owner_fees[asset] = owner_cut
        return caller_fees, owner_fees

    # ------------------------------------------------------------------
    # Target-weight planning
    # ------------------------------------------------------------------

    def plan_toward(self, distribution: Sequence[DistributionEntry]) -> List[SwapOrder]:
        """
        Orders moving holdings toward `distribution`.

        Over-weight assets (including held assets with no target) sell into
        under-weight ones, greedily in distribution order.  Legs worth no more
        than REBALANCE_TOLERANCE_BPS of total value are skipped.
        """
        values = self.asset_values()
        for entry in distribution:
            values.setdefault(entry.asset, self.asset_value(entry.asset))
        total = sum(v.value for v in values.values())
        if total == 0:
            raise DistributionWithinTolerance("vault holds no value to rebalance")

        weights = {e.asset: e.weight for e in distribution}
        tolerance = mul_div(total, REBALANCE_TOLERANCE_BPS, BPS_DENOMINATOR)

        surplus: List[List] = []
        deficit: List[List] = []
        ordered = [e.asset for e in distribution] + [a for a in values if a not in weights]
        for asset in ordered:
            target = mul_div(total, weights.get(asset, 0), DISTRIBUTION_TOTAL)
            current = values[asset].value
            if current > target:
                surplus.append([asset, current - target])
            elif target > current:
                deficit.append([asset, target - current])

        orders: List[SwapOrder] = []
        i = j = 0
        while i < len(surplus) and j < len(deficit):
            sell, buy = surplus[i], deficit[j]
            leg = min(sell[1], buy[1])
            if leg > tolerance:
                price_in = self._oracle.get_token_price(sell[0])
                amount_in = asset_amount_for_usd(
                    Fixed(value=leg, sem=SemanticType.USD),
                    price_in,
                    self._ledger.decimals(sell[0]),
                )
                if amount_in == 0:
                    raise SwapAmountTooSmall(f"{sell[0]} leg worth {leg} rounds to zero")
                orders.append(SwapOrder(token_in=sell[0], token_out=buy[0], amount_in=amount_in))
            sell[1] -= leg
            buy[1] -= leg
            if sell[1] == 0:
                i += 1
            if buy[1] == 0:
                j += 1

        if not orders:
            raise DistributionWithinTolerance(
                f"all legs within {REBALANCE_TOLERANCE_BPS} bps of {total}"
            )
        _log.info("Planned %d rebalance order(s) toward target distribution", len(orders))
        return orders
