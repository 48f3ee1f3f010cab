"""
Bucket Vault — Share Ledger

Holder balances and total supply.  mint() and burn() are the only mutation
entry points, so Σ balances == total_supply can be checked mechanically after
every transition (check_invariant).
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from bucket_fixed import (
    BASELINE_SHARE_PRICE,
    Fixed,
    SemanticType,
    mul_div,
    share_price,
    shares_for_value,
    value_of_shares,
)
from bucket_types import (
    DepositTooSmall,
    InvalidRedeemAmount,
    VaultValueDepleted,
    ZeroAddress,
    ZERO_ADDRESS,
)

_log = logging.getLogger(__name__)


class ShareLedgerInvariantError(AssertionError):
    """Σ balances diverged from total supply."""


class ShareLedger:
    """Fungible share balances (18-decimal integers)."""

    def __init__(self) -> None:
        self._balances: Dict[str, int] = {}
        self._total_supply = 0

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def total_supply(self) -> int:
        return self._total_supply

    def balance_of(self, holder: str) -> int:
        return self._balances.get(holder, 0)

    def holders(self) -> List[str]:
        return list(self._balances)

    def check_invariant(self) -> None:
        total = sum(self._balances.values())
        if total != self._total_supply:
            raise ShareLedgerInvariantError(
                f"sum(balances)={total} != total_supply={self._total_supply}"
            )
        if any(v <= 0 for v in self._balances.values()):
            raise ShareLedgerInvariantError("non-positive balance entry retained")

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def mint(self, holder: str, shares: int) -> None:
        if holder == ZERO_ADDRESS:
            raise ZeroAddress("cannot mint to the null address")
        if shares <= 0:
            raise ValueError(f"mint amount must be positive, got {shares}")
        self._balances[holder] = self._balances.get(holder, 0) + shares
        self._total_supply += shares

    def burn(self, holder: str, shares: int) -> None:
        held = self._balances.get(holder, 0)
        if shares <= 0 or shares > held:
            raise InvalidRedeemAmount(f"cannot burn {shares} of {held} shares")
        remaining = held - shares
        if remaining:
            self._balances[holder] = remaining
        else:
            del self._balances[holder]
        self._total_supply -= shares

    # ------------------------------------------------------------------
    # Value math
    # ------------------------------------------------------------------

    def token_price(self, total_value: Fixed) -> Fixed:
        """USD per whole share; BASELINE while no shares exist."""
        if self._total_supply == 0:
            return BASELINE_SHARE_PRICE
        return share_price(total_value, Fixed(value=self._total_supply, sem=SemanticType.SHARES))

    def shares_for_deposit(self, deposit_value: Fixed, total_value_before: Fixed) -> int:
        """Shares minted for `deposit_value` USD given the pre-deposit vault value."""
        price = self.token_price(total_value_before)
        if price.is_zero():
            raise VaultValueDepleted(
                f"{self._total_supply} shares outstanding against zero value"
            )
        shares = shares_for_value(deposit_value, price).value
        if shares == 0:
            raise DepositTooSmall(f"deposit worth {deposit_value!r} mints no shares")
        return shares

    def value_of(self, shares: int, total_value: Fixed) -> Fixed:
        """USD value of `shares` at the current share price."""
        if self._total_supply == 0:
            return Fixed.zero(SemanticType.USD)
        return value_of_shares(
            Fixed(value=shares, sem=SemanticType.SHARES), self.token_price(total_value),
        )

    @staticmethod
    def pro_rata(balance: int, shares: int, supply_before: int) -> int:
        """Slice of `balance` owed to `shares` out of `supply_before` (truncating)."""
        return mul_div(balance, shares, supply_before)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_supply": self._total_supply,
            "balances": dict(sorted(self._balances.items())),
        }

    def load_dict(self, d: Dict[str, Any]) -> None:
        balances = {str(k): int(v) for k, v in d.get("balances", {}).items() if int(v) > 0}
        self._balances = balances
        self._total_supply = int(d.get("total_supply", 0))
        self.check_invariant()
