"""Tests for bucket_registry: distribution validation and held-asset tracking."""

import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(__file__))

from fakes import JUNK, USDC, VAULT, WBTC, WETH, make_world
from bucket_registry import (
    AssetRegistry,
    PassiveAssetRegistry,
    normalize_distribution,
    validate_distribution,
)
from bucket_types import (
    DistributionEntry,
    DuplicateAsset,
    EmptyDistribution,
    InvalidToken,
    InvalidWeight,
    WeightSumMismatch,
)


def _entries(*pairs):
    return normalize_distribution(list(pairs))


# ---------------------------------------------------------------------------
# validate_distribution
# ---------------------------------------------------------------------------

def test_valid_distribution_passes():
    validate_distribution(_entries((WETH, 60), (USDC, 30), (WBTC, 10)))


def test_empty_distribution():
    with pytest.raises(EmptyDistribution):
        validate_distribution([])


@pytest.mark.parametrize("weight", [0, -5, 1.5, True])
def test_non_positive_or_non_int_weight(weight):
    with pytest.raises(InvalidWeight):
        validate_distribution([DistributionEntry(WETH, weight), DistributionEntry(USDC, 100)])


def test_duplicate_asset():
    with pytest.raises(DuplicateAsset):
        validate_distribution(_entries((WETH, 50), (WETH, 50)))


@pytest.mark.parametrize("weights", [(50, 49), (50, 51), (100, 1)])
def test_weights_must_sum_to_100(weights):
    with pytest.raises(WeightSumMismatch):
        validate_distribution(_entries((WETH, weights[0]), (USDC, weights[1])))


def test_assets_must_be_oracle_valid():
    _, oracle = make_world()
    with pytest.raises(InvalidToken):
        validate_distribution(_entries((WETH, 50), (JUNK, 50)), oracle)
    oracle.set_operational(False)
    with pytest.raises(InvalidToken):
        validate_distribution(_entries((WETH, 100)), oracle)


def test_normalize_accepts_entries_and_pairs():
    out = normalize_distribution([DistributionEntry(WETH, 40), (USDC, 60)])
    assert out == [DistributionEntry(WETH, 40), DistributionEntry(USDC, 60)]


# ---------------------------------------------------------------------------
# Registries
# ---------------------------------------------------------------------------

def test_registry_tracks_in_order_and_prunes_empty():
    ledger, _ = make_world()
    reg = AssetRegistry(VAULT, ledger)
    reg.track(USDC)
    reg.track(WETH)
    reg.track(USDC)
    assert reg.held_assets() == [USDC, WETH]

    ledger.mint(WETH, VAULT, 5)
    assert reg.custodied_assets() == [WETH]
    reg.prune()
    assert reg.held_assets() == [WETH]


def test_passive_registry_counts_distribution_assets_with_balance():
    ledger, oracle = make_world()
    reg = PassiveAssetRegistry(VAULT, ledger, [(WETH, 50), (USDC, 50)], oracle)
    ledger.mint(USDC, VAULT, 10)
    assert reg.custodied_assets() == [USDC]
    assert reg.target_weight(WETH) == 50
    assert reg.target_weight(WBTC) == 0


def test_replace_distribution_is_wholesale_and_validated():
    ledger, oracle = make_world()
    reg = PassiveAssetRegistry(VAULT, ledger, [(WETH, 100)], oracle)
    reg.replace_distribution([(USDC, 70), (WBTC, 30)], oracle)
    assert [(e.asset, e.weight) for e in reg.distribution] == [(USDC, 70), (WBTC, 30)]

    with pytest.raises(WeightSumMismatch):
        reg.replace_distribution([(USDC, 70)], oracle)
    assert len(reg.distribution) == 2
