"""Tests for bucket_rebalance.RebalanceEngine.

Tests:
  RB-1: valuation over custodied assets
  RB-2: value-loss guard boundary (0.4% commits, 0.6% raises)
  RB-3: fee skim from batch proceeds, counted toward the loss bound
  RB-4: target-weight planning
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(__file__))

from fakes import (
    ALICE,
    OWNER,
    TREASURY,
    USD,
    USDC,
    VAULT,
    WBTC,
    WETH,
    FixedRateDex,
    JsonAggregator,
    encode_swap,
    make_world,
)
from bucket_rebalance import FeeSplit, RebalanceEngine
from bucket_registry import PassiveAssetRegistry
from bucket_swap import DexTable
from bucket_types import (
    DistributionEntry,
    DistributionWithinTolerance,
    SwapOrder,
    ValidationError,
    ValueLossExceeded,
)

NO_FEES = FeeSplit(caller=ALICE, owner=OWNER, caller_bps=0, owner_bps=0)


def _engine(haircut_bps=0, distribution=((WETH, 50), (USDC, 50))):
    ledger, oracle = make_world()
    registry = PassiveAssetRegistry(VAULT, ledger, list(distribution), oracle)
    dex = FixedRateDex(ledger, "0xdex", haircut_bps=haircut_bps)
    table = DexTable()
    table.configure(0, dex, dex, 3000, True)
    engine = RebalanceEngine(VAULT, ledger, oracle, registry, table)
    return engine, ledger, registry


# ---------------------------------------------------------------------------
# RB-1
# ---------------------------------------------------------------------------

def test_total_value_sums_custodied_assets():
    engine, ledger, registry = _engine()
    ledger.mint(WETH, VAULT, 10 ** 18)
    ledger.mint(USDC, VAULT, 500 * 10 ** 6)
    assert engine.total_value().value == 2500 * USD
    assert engine.asset_value(WBTC).value == 0


# ---------------------------------------------------------------------------
# RB-2
# ---------------------------------------------------------------------------

def test_loss_within_bound_commits():
    engine, ledger, _ = _engine(haircut_bps=40)
    ledger.mint(WETH, VAULT, 10 ** 18)
    report = engine.execute_orders([SwapOrder(WETH, USDC, 10 ** 18)], NO_FEES, platform_treasury=TREASURY)
    assert report.value_before == 2000 * USD
    assert report.value_after == 1992 * USD
    assert report.value_change == -8 * USD
    assert ledger.balance_of(USDC, VAULT) == 1992 * 10 ** 6


def test_loss_beyond_bound_raises():
    engine, ledger, _ = _engine(haircut_bps=60)
    ledger.mint(WETH, VAULT, 10 ** 18)
    with pytest.raises(ValueLossExceeded):
        engine.execute_orders([SwapOrder(WETH, USDC, 10 ** 18)], NO_FEES, platform_treasury=TREASURY)


def test_aggregator_batch_guarded_as_a_whole():
    engine, ledger, _ = _engine()
    ledger.mint(WETH, VAULT, 2 * 10 ** 18)
    agg = JsonAggregator(ledger)
    # First leg is fine, second loses 2%; the batch as a whole loses 1%
    batch = [
        encode_swap(WETH, USDC, 10 ** 18),
        encode_swap(WETH, USDC, 10 ** 18, haircut_bps=200),
    ]
    with pytest.raises(ValueLossExceeded):
        engine.execute_calldata(agg, batch, NO_FEES)


def test_empty_batches_rejected():
    engine, _, _ = _engine()
    with pytest.raises(ValidationError):
        engine.execute_orders([], NO_FEES, platform_treasury=TREASURY)
    with pytest.raises(ValidationError):
        engine.execute_calldata(JsonAggregator(None), [], NO_FEES)


# ---------------------------------------------------------------------------
# RB-3
# ---------------------------------------------------------------------------

def test_fees_skimmed_from_proceeds():
    engine, ledger, registry = _engine()
    ledger.mint(WETH, VAULT, 10 ** 18)
    fees = FeeSplit(caller=ALICE, owner=OWNER, caller_bps=20, owner_bps=10)
    report = engine.execute_orders([SwapOrder(WETH, USDC, 10 ** 18)], fees, platform_treasury=TREASURY)

    assert report.proceeds == {USDC: 2000 * 10 ** 6}
    assert report.caller_fees == {USDC: 4_000_000}
    assert report.owner_fees == {USDC: 2_000_000}
    assert ledger.balance_of(USDC, ALICE) == 4_000_000
    assert ledger.balance_of(USDC, OWNER) == 2_000_000
    assert ledger.balance_of(USDC, VAULT) == 1994 * 10 ** 6
    assert report.value_after == 1994 * USD
    assert registry.held_assets() == [USDC]


def test_fees_count_toward_loss_bound():
    # 0.4% swap haircut plus 0.2% in fees is 0.6% in total
    engine, ledger, _ = _engine(haircut_bps=40)
    ledger.mint(WETH, VAULT, 10 ** 18)
    fees = FeeSplit(caller=ALICE, owner=OWNER, caller_bps=20, owner_bps=0)
    with pytest.raises(ValueLossExceeded):
        engine.execute_orders([SwapOrder(WETH, USDC, 10 ** 18)], fees, platform_treasury=TREASURY)

    engine, ledger, _ = _engine()
    ledger.mint(WETH, VAULT, 10 ** 18)
    fees = FeeSplit(caller=ALICE, owner=OWNER, caller_bps=10_000, owner_bps=0)
    with pytest.raises(ValueLossExceeded):
        engine.execute_orders([SwapOrder(WETH, USDC, 10 ** 18)], fees, platform_treasury=TREASURY)


# ---------------------------------------------------------------------------
# RB-4
# ---------------------------------------------------------------------------

def test_plan_sells_surplus_into_deficit():
    engine, ledger, registry = _engine()
    ledger.mint(WETH, VAULT, 10 ** 18)
    orders = engine.plan_toward(registry.distribution)
    assert orders == [SwapOrder(WETH, USDC, 5 * 10 ** 17)]


def test_plan_sells_untargeted_holdings():
    engine, ledger, registry = _engine(distribution=((WETH, 100),))
    ledger.mint(WBTC, VAULT, 10 ** 7)          # 0.1 WBTC = $4000
    registry.track(WBTC)
    orders = engine.plan_toward(registry.distribution)
    assert orders == [SwapOrder(WBTC, WETH, 10 ** 7)]


def test_balanced_vault_is_within_tolerance():
    engine, ledger, registry = _engine()
    ledger.mint(WETH, VAULT, 5 * 10 ** 17)
    ledger.mint(USDC, VAULT, 1010 * 10 ** 6)   # 0.25% off target
    with pytest.raises(DistributionWithinTolerance):
        engine.plan_toward(registry.distribution)


def test_empty_vault_has_nothing_to_plan():
    engine, _, registry = _engine()
    with pytest.raises(DistributionWithinTolerance):
        engine.plan_toward(registry.distribution)


def test_plan_then_execute_reaches_target():
    engine, ledger, registry = _engine(distribution=((WETH, 25), (USDC, 75)))
    ledger.mint(WETH, VAULT, 10 ** 18)
    orders = engine.plan_toward(registry.distribution)
    engine.execute_orders(orders, NO_FEES, platform_treasury=TREASURY)
    assert ledger.balance_of(WETH, VAULT) == 25 * 10 ** 16
    assert ledger.balance_of(USDC, VAULT) == 1500 * 10 ** 6
    with pytest.raises(DistributionWithinTolerance):
        engine.plan_toward([DistributionEntry(WETH, 25), DistributionEntry(USDC, 75)])
