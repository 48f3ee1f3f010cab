"""
Bucket Vault — Flash Loans

Same-call uncollateralized loan: transfer out, synchronous receiver callback,
mandatory post-condition balance >= balance_before + fee.  There is no loan
state outside the call frame; a shortfall raises and the enclosing atomic
operation restores the initial transfer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from bucket_custody import TokenLedger
from bucket_fixed import BPS_DENOMINATOR, mul_div
from bucket_types import (
    FLASH_LOAN_FEE_BPS,
    FlashLoanReceiver,
    InsufficientBalance,
    InsufficientRepayment,
    ZeroAddress,
    ZeroAmount,
    ZERO_ADDRESS,
)

_log = logging.getLogger(__name__)


@dataclass(frozen=True)
class FlashLoanReceipt:
    asset: str
    amount: int
    fee: int
    balance_before: int
    balance_after: int

    @property
    def surplus(self) -> int:
        return self.balance_after - self.balance_before


def flash_fee(amount: int, fee_bps: int = FLASH_LOAN_FEE_BPS) -> int:
    return mul_div(amount, fee_bps, BPS_DENOMINATOR)


class FlashLoanModule:
    """Lends vault holdings within a single call."""

    def __init__(self, vault_address: str, ledger: TokenLedger, fee_bps: int = FLASH_LOAN_FEE_BPS) -> None:
        self._vault = vault_address
        self._ledger = ledger
        self._fee_bps = fee_bps

    @property
    def fee_bps(self) -> int:
        return self._fee_bps

    def flash_loan(
        self,
        initiator: str,
        asset: str,
        amount: int,
        receiver: FlashLoanReceiver,
        data: bytes = b"",
    ) -> FlashLoanReceipt:
        if amount <= 0:
            raise ZeroAmount("flash loan amount must be positive")
        receiver_address = getattr(receiver, "address", None) if receiver is not None else None
        if not receiver_address or receiver_address == ZERO_ADDRESS:
            raise ZeroAddress("flash loan receiver is required")

        balance_before = self._ledger.balance_of(asset, self._vault)
        if balance_before < amount:
            raise InsufficientBalance(
                f"vault holds {balance_before} of {asset}, loan requests {amount}"
            )
        fee = flash_fee(amount, self._fee_bps)

        self._ledger.transfer(asset, self._vault, receiver_address, amount)
        receiver.on_flash_loan(initiator, asset, amount, fee, data)

        balance_after = self._ledger.balance_of(asset, self._vault)
        if balance_after < balance_before + fee:
            _log.warning(
                "Flash loan under-repaid: %s before=%d after=%d fee=%d",
                asset, balance_before, balance_after, fee,
            )
            raise InsufficientRepayment(
                f"{asset}: expected >= {balance_before + fee}, have {balance_after}"
            )

        _log.info("Flash loan %d %s to %s repaid (fee=%d)", amount, asset, receiver_address, fee)
        return FlashLoanReceipt(
            asset=asset,
            amount=amount,
            fee=fee,
            balance_before=balance_before,
            balance_after=balance_after,
        )
