"""Tests for bucket_guard: accountability, pause state machines, fee bounds."""

import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(__file__))

from fakes import ALICE, OWNER, make_world
from bucket_guard import FeeParameters, GovernanceGuard, check_bps, is_accountable
from bucket_shares import ShareLedger
from bucket_types import (
    InvalidFeeBps,
    NotOwner,
    OwnerNotAccountable,
    Paused,
    PauseState,
    PlatformNotOperational,
    SwapIsPaused,
    SwapNotPaused,
    SwapState,
)


def _guard():
    shares = ShareLedger()
    return GovernanceGuard(OWNER, shares, FeeParameters()), shares


# ---------------------------------------------------------------------------
# Accountability
# ---------------------------------------------------------------------------

def test_empty_bucket_is_accountable():
    guard, _ = _guard()
    assert guard.is_accountable()


def test_exactly_five_percent_is_accountable():
    guard, shares = _guard()
    shares.mint(OWNER, 5)
    shares.mint(ALICE, 95)
    assert guard.is_accountable()
    shares.mint(ALICE, 1)
    assert not guard.is_accountable()
    with pytest.raises(OwnerNotAccountable):
        guard.require_accountable()


def test_accountability_recomputed_each_call():
    shares = ShareLedger()
    shares.mint(ALICE, 100)
    assert not is_accountable(shares, OWNER)
    shares.mint(OWNER, 100)
    assert is_accountable(shares, OWNER)


# ---------------------------------------------------------------------------
# Pause state machines
# ---------------------------------------------------------------------------

def test_global_pause_is_idempotent():
    guard, _ = _guard()
    guard.set_pause(PauseState.PAUSED)
    guard.set_pause(PauseState.PAUSED)
    assert guard.paused
    with pytest.raises(Paused):
        guard.require_not_paused()
    guard.set_pause(PauseState.ACTIVE)
    guard.set_pause(PauseState.ACTIVE)
    assert not guard.paused


def test_swap_pause_is_strict():
    guard, _ = _guard()
    with pytest.raises(SwapNotPaused):
        guard.set_swap(SwapState.SWAP_ACTIVE)
    guard.set_swap(SwapState.SWAP_PAUSED)
    with pytest.raises(SwapIsPaused):
        guard.set_swap(SwapState.SWAP_PAUSED)
    with pytest.raises(SwapIsPaused):
        guard.require_swap_active()
    guard.set_swap(SwapState.SWAP_ACTIVE)
    assert not guard.swap_paused


def test_owner_and_platform_checks():
    guard, _ = _guard()
    guard.require_owner(OWNER)
    with pytest.raises(NotOwner):
        guard.require_owner(ALICE)
    _, oracle = make_world()
    GovernanceGuard.require_operational(oracle)
    oracle.set_operational(False)
    with pytest.raises(PlatformNotOperational):
        GovernanceGuard.require_operational(oracle)


# ---------------------------------------------------------------------------
# Fees
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("bps", [-1, 10_001, 1.0, None])
def test_check_bps_rejects_out_of_range(bps):
    with pytest.raises(InvalidFeeBps):
        check_bps("x", bps)


def test_fee_setters():
    guard, _ = _guard()
    guard.set_performance_fee(10_000)
    guard.set_rebalance_fees(6_000, 4_000)
    assert guard.fees.to_dict() == {
        "performance_fee_bps": 10_000,
        "rebalance_owner_fee_bps": 6_000,
        "rebalance_caller_fee_bps": 4_000,
    }
    with pytest.raises(InvalidFeeBps):
        guard.set_rebalance_fees(6_000, 4_001)
    assert guard.fees.rebalance_caller_fee_bps == 4_000


def test_invalid_initial_fees_rejected():
    with pytest.raises(InvalidFeeBps):
        GovernanceGuard(OWNER, ShareLedger(), FeeParameters(performance_fee_bps=20_000))


def test_persisted_flags_reload():
    guard, shares = _guard()
    guard.set_pause(PauseState.PAUSED)
    guard.set_swap(SwapState.SWAP_PAUSED)
    guard.set_performance_fee(1_000)
    guard.high_water_mark = 123

    other = GovernanceGuard(OWNER, shares, FeeParameters())
    other.load_dict(guard.to_dict())
    assert other.paused and other.swap_paused
    assert other.fees.performance_fee_bps == 1_000
    assert other.high_water_mark == 123
