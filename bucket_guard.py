"""
Bucket Vault — Fee and Governance Guard

Pause state machines, the owner-accountability invariant, and fee
parameters.  Accountability is a pure function of the share ledger and is
recomputed on every call; nothing here caches it.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict

from bucket_fixed import BPS_DENOMINATOR, mul_div
from bucket_shares import ShareLedger
from bucket_types import (
    MAX_FEE_BPS,
    MIN_OWNER_BPS,
    SWAP_TRANSITIONS,
    InvalidFeeBps,
    NotOwner,
    OwnerNotAccountable,
    Paused,
    PauseState,
    PlatformNotOperational,
    SwapIsPaused,
    SwapNotPaused,
    SwapState,
    ValuationOracle,
)

_log = logging.getLogger(__name__)


def is_accountable(ledger: ShareLedger, owner: str, min_owner_bps: int = MIN_OWNER_BPS) -> bool:
    """True if no shares exist or the owner holds at least min_owner_bps of supply."""
    supply = ledger.total_supply
    if supply == 0:
        return True
    return mul_div(ledger.balance_of(owner), BPS_DENOMINATOR, supply) >= min_owner_bps


def check_bps(name: str, bps: int) -> int:
    if not isinstance(bps, int) or isinstance(bps, bool) or not 0 <= bps <= MAX_FEE_BPS:
        raise InvalidFeeBps(f"{name}={bps!r} outside [0, {MAX_FEE_BPS}]")
    return bps


@dataclass
class FeeParameters:
    """Owner-configurable fee policy (basis points)."""
    performance_fee_bps: int = 0
    rebalance_owner_fee_bps: int = 0
    rebalance_caller_fee_bps: int = 0

    def validate(self) -> None:
        check_bps("performance_fee_bps", self.performance_fee_bps)
        check_bps("rebalance_owner_fee_bps", self.rebalance_owner_fee_bps)
        check_bps("rebalance_caller_fee_bps", self.rebalance_caller_fee_bps)
        if self.rebalance_owner_fee_bps + self.rebalance_caller_fee_bps > MAX_FEE_BPS:
            raise InvalidFeeBps("rebalance fees together exceed 10000 bps")

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class GovernanceGuard:
    """
    Owner identity, pause flags, and fee parameters of one bucket.

    Global pause is idempotent.  Swap pause is strict: pausing a paused swap
    state raises SwapIsPaused, unpausing an active one raises SwapNotPaused.
    """

    def __init__(self, owner: str, shares: ShareLedger, fees: FeeParameters) -> None:
        fees.validate()
        self._owner = owner
        self._shares = shares
        self._fees = fees
        self._pause_state = PauseState.ACTIVE
        self._swap_state = SwapState.SWAP_ACTIVE
        self.high_water_mark = 0

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def fees(self) -> FeeParameters:
        return self._fees

    @property
    def paused(self) -> bool:
        return self._pause_state == PauseState.PAUSED

    @property
    def swap_paused(self) -> bool:
        return self._swap_state == SwapState.SWAP_PAUSED

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def is_accountable(self) -> bool:
        return is_accountable(self._shares, self._owner)

    def require_owner(self, caller: str) -> None:
        if caller != self._owner:
            raise NotOwner(f"{caller} is not the owner")

    def require_accountable(self) -> None:
        if not self.is_accountable():
            supply = self._shares.total_supply
            held = self._shares.balance_of(self._owner)
            raise OwnerNotAccountable(
                f"owner holds {held} of {supply} shares (< {MIN_OWNER_BPS} bps)"
            )

    def require_not_paused(self) -> None:
        if self.paused:
            raise Paused("bucket is paused")

    def require_swap_active(self) -> None:
        if self.swap_paused:
            raise SwapIsPaused("swaps are paused")

    @staticmethod
    def require_operational(oracle: ValuationOracle) -> None:
        if not oracle.is_platform_operational():
            raise PlatformNotOperational("platform is not operational")

    # ------------------------------------------------------------------
    # Pause transitions
    # ------------------------------------------------------------------

    def set_pause(self, new_state: PauseState) -> None:
        """Idempotent: setting the current state again is a no-op transition."""
        old = self._pause_state
        self._pause_state = new_state
        _log.info("Pause: %s -> %s", old.value, new_state.value)

    def set_swap(self, new_state: SwapState) -> None:
        valid = SWAP_TRANSITIONS.get(self._swap_state, set())
        if new_state not in valid:
            if new_state == SwapState.SWAP_PAUSED:
                raise SwapIsPaused("swaps are already paused")
            raise SwapNotPaused("swaps are not paused")
        old = self._swap_state
        self._swap_state = new_state
        _log.info("Swap: %s -> %s", old.value, new_state.value)

    # ------------------------------------------------------------------
    # Fee setters
    # ------------------------------------------------------------------

    def set_performance_fee(self, bps: int) -> None:
        self._fees.performance_fee_bps = check_bps("performance_fee_bps", bps)
        _log.info("Performance fee set to %d bps", bps)

    def set_rebalance_fees(self, owner_bps: int, caller_bps: int) -> None:
        candidate = FeeParameters(
            performance_fee_bps=self._fees.performance_fee_bps,
            rebalance_owner_fee_bps=owner_bps,
            rebalance_caller_fee_bps=caller_bps,
        )
        candidate.validate()
        self._fees = candidate
        _log.info("Rebalance fees set: owner=%d caller=%d bps", owner_bps, caller_bps)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner": self._owner,
            "paused": self.paused,
            "swap_paused": self.swap_paused,
            "fees": self._fees.to_dict(),
            "high_water_mark": self.high_water_mark,
        }

    def load_dict(self, d: Dict[str, Any]) -> None:
        fees = FeeParameters(**d.get("fees", {}))
        fees.validate()
        self._fees = fees
        self._pause_state = PauseState.PAUSED if d.get("paused") else PauseState.ACTIVE
        self._swap_state = SwapState.SWAP_PAUSED if d.get("swap_paused") else SwapState.SWAP_ACTIVE
        self.high_water_mark = int(d.get("high_water_mark", 0))
