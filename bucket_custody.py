"""
Bucket Vault — Custody Ledger

In-process model of the host's asset balances: every asset, every account.
The vault, DEX routers, aggregators and flash-loan receivers all move value
through one TokenLedger, which is what lets a failed operation revert every
transfer it made (snapshot / restore).

Native currency is an ordinary entry keyed by NATIVE_ASSET; it has no
allowances (it is sent, never pulled).
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from bucket_types import (
    NATIVE_ASSET,
    NATIVE_DECIMALS,
    InsufficientAllowance,
    InsufficientBalance,
    InvalidToken,
    ZeroAddress,
    ZERO_ADDRESS,
)

_log = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerSnapshot:
    """Opaque copy of ledger state taken before an operation."""
    balances: Dict[str, Dict[str, int]]
    allowances: Dict[Tuple[str, str, str], int]


@dataclass
class TokenLedger:
    """Balances and allowances for every registered asset."""
    _decimals: Dict[str, int] = field(default_factory=lambda: {NATIVE_ASSET: NATIVE_DECIMALS})
    _balances: Dict[str, Dict[str, int]] = field(default_factory=dict)
    _allowances: Dict[Tuple[str, str, str], int] = field(default_factory=dict)

    # ------------------------------------------------------------------
    # Asset registry
    # ------------------------------------------------------------------

    def register_asset(self, asset: str, decimals: int) -> None:
        if not 0 <= decimals <= 36:
            raise ValueError(f"decimals out of range: {decimals}")
        existing = self._decimals.get(asset)
        if existing is not None and existing != decimals:
            raise ValueError(f"{asset} already registered with {existing} decimals")
        self._decimals[asset] = decimals

    def decimals(self, asset: str) -> int:
        try:
            return self._decimals[asset]
        except KeyError:
            raise InvalidToken(f"Unknown asset {asset}") from None

    def assets(self) -> List[str]:
        return list(self._decimals)

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    def balance_of(self, asset: str, account: str) -> int:
        return self._balances.get(asset, {}).get(account, 0)

    def mint(self, asset: str, account: str, amount: int) -> None:
        """Credit new units (test funding / router output)."""
        self.decimals(asset)
        if amount < 0:
            raise ValueError("amount must be non-negative")
        book = self._balances.setdefault(asset, {})
        book[account] = book.get(account, 0) + amount

    def burn(self, asset: str, account: str, amount: int) -> None:
        """Destroy units held by `account` (router input sink)."""
        self._debit(asset, account, amount)

    def transfer(self, asset: str, sender: str, recipient: str, amount: int) -> None:
        if recipient == ZERO_ADDRESS:
            raise ZeroAddress("transfer to the null address")
        self._debit(asset, sender, amount)
        book = self._balances.setdefault(asset, {})
        book[recipient] = book.get(recipient, 0) + amount
        _log.debug("transfer %s %d %s -> %s", asset, amount, sender, recipient)

    def _debit(self, asset: str, account: str, amount: int) -> None:
        self.decimals(asset)
        if amount < 0:
            raise ValueError("amount must be non-negative")
        book = self._balances.setdefault(asset, {})
        held = book.get(account, 0)
        if held < amount:
            raise InsufficientBalance(
                f"{account} holds {held} of {asset}, needs {amount}"
            )
        book[account] = held - amount

    # ------------------------------------------------------------------
    # Allowances (token pulls)
    # ------------------------------------------------------------------

    def approve(self, asset: str, owner: str, spender: str, amount: int) -> None:
        if asset == NATIVE_ASSET:
            raise InvalidToken("native currency has no allowances")
        self.decimals(asset)
        self._allowances[(asset, owner, spender)] = amount

    def allowance(self, asset: str, owner: str, spender: str) -> int:
        return self._allowances.get((asset, owner, spender), 0)

    def transfer_from(
        self, asset: str, spender: str, owner: str, recipient: str, amount: int,
    ) -> None:
        """Pull `amount` from `owner` to `recipient` using spender's allowance."""
        allowed = self.allowance(asset, owner, spender)
        if allowed < amount:
            raise InsufficientAllowance(
                f"{spender} may pull {allowed} of {asset} from {owner}, needs {amount}"
            )
        self.transfer(asset, owner, recipient, amount)
        self._allowances[(asset, owner, spender)] = allowed - amount

    # ------------------------------------------------------------------
    # Snapshot / restore
    # ------------------------------------------------------------------

    def snapshot(self) -> LedgerSnapshot:
        return LedgerSnapshot(
            balances=copy.deepcopy(self._balances),
            allowances=dict(self._allowances),
        )

    def restore(self, snap: LedgerSnapshot) -> None:
        self._balances = copy.deepcopy(snap.balances)
        self._allowances = dict(snap.allowances)
