"""
Bucket Vault — Types

Error taxonomy, pause state machines, distribution / DEX / swap-order
dataclasses, and the Protocols for every external collaborator (oracle,
price feed, DEX quoter/router, aggregator, flash-loan receiver).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Tuple

# Native currency and the null address share the same identifier
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
NATIVE_ASSET = ZERO_ADDRESS
NATIVE_DECIMALS = 18

FLASH_LOAN_FEE_BPS = 9           # 0.09%
MAX_VALUE_LOSS_BPS = 50          # 0.5%
MIN_OWNER_BPS = 500              # 5%
MAX_FEE_BPS = 10_000
MAX_DEX_COUNT = 8
DISTRIBUTION_TOTAL = 100
REBALANCE_TOLERANCE_BPS = 100    # 1% of total value


# ---------------------------------------------------------------------------
# Error taxonomy
# ---------------------------------------------------------------------------

class BucketError(Exception):
    """Base class for every rejected vault operation."""


class ValidationError(BucketError):
    """Caller supplied an invalid argument."""


class StateError(BucketError):
    """Operation not permitted in the current vault / platform state."""


class ResourceError(BucketError):
    """A balance, quote or trade size needed by the operation is unavailable."""


class SafetyError(BucketError):
    """A post-condition protecting holders failed."""


# Validation
class ZeroAmount(ValidationError):
    """Amount must be greater than zero."""


class ZeroAddress(ValidationError):
    """Address must not be the null address."""


class InvalidToken(ValidationError):
    """Asset is not valid for this operation."""


class InvalidRedeemAmount(ValidationError):
    """Redeem amount is zero or exceeds the caller's balance."""


class WeightSumMismatch(ValidationError):
    """Distribution weights do not sum to 100."""


class DuplicateAsset(ValidationError):
    """Distribution lists the same asset twice."""


class EmptyDistribution(ValidationError):
    """Distribution has no entries."""


class InvalidWeight(ValidationError):
    """Distribution weight must be a positive integer."""


class InvalidFeeBps(ValidationError):
    """Fee basis points outside [0, 10000]."""


class InvalidDexIndex(ValidationError):
    """DEX index out of range."""


class DepositTooSmall(ValidationError):
    """Deposit would mint zero shares."""


class TokenIsWhitelisted(ValidationError):
    """Vault-managed assets cannot be recovered."""


# State
class PlatformNotOperational(StateError):
    """Oracle reports the platform as not operational."""


class Paused(StateError):
    """Bucket is globally paused."""


class SwapIsPaused(StateError):
    """Swaps are paused."""


class SwapNotPaused(StateError):
    """Swaps are not paused."""


class OwnerNotAccountable(StateError):
    """Owner holds less than the minimum share of supply."""


class NotOwner(StateError):
    """Caller is not the bucket owner."""


class NotShareholder(StateError):
    """Caller holds no shares."""


class StalePrice(StateError):
    """Price is older than the staleness window or not positive."""


class ReentrantCall(StateError):
    """A mutating operation was entered while another is in progress."""


class DistributionWithinTolerance(StateError):
    """Holdings already match the target distribution."""


# Resource
class InsufficientBalance(ResourceError):
    """Account balance too low for the transfer."""


class InsufficientAllowance(ResourceError):
    """Spender allowance too low for the pull."""


class NoValidQuotesFound(ResourceError):
    """No enabled DEX returned a non-zero quote."""


class SwapAmountTooSmall(ResourceError):
    """Trade size is zero after fee deduction."""


class VaultValueDepleted(ResourceError):
    """Supply is outstanding but the vault holds no value."""


# Safety
class ValueLossExceeded(SafetyError):
    """Rebalance reduced total value by more than the allowed bps."""


class InsufficientRepayment(SafetyError):
    """Flash loan was not repaid with its fee."""


class SlippageExceeded(SafetyError):
    """DEX delivered less than the minimum output."""


# ---------------------------------------------------------------------------
# Pause state machines
# ---------------------------------------------------------------------------

class PauseState(Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"


class SwapState(Enum):
    SWAP_ACTIVE = "SWAP_ACTIVE"
    SWAP_PAUSED = "SWAP_PAUSED"


# Swap pause is strict: only real toggles are valid.
SWAP_TRANSITIONS: Dict[SwapState, set] = {
    SwapState.SWAP_ACTIVE: {SwapState.SWAP_PAUSED},
    SwapState.SWAP_PAUSED: {SwapState.SWAP_ACTIVE},
}


class BucketKind(Enum):
    ACTIVE = "ACTIVE"
    PASSIVE = "PASSIVE"


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DistributionEntry:
    """One (asset, weight%) pair of a passive target distribution."""
    asset: str
    weight: int

    def to_dict(self) -> Dict[str, Any]:
        return {"asset": self.asset, "weight": self.weight}


@dataclass(frozen=True)
class DEXConfig:
    """Indexed DEX adapter entry."""
    router: "SwapRouter"
    quoter: "SwapQuoter"
    fee_tier: int
    enabled: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "router": getattr(self.router, "address", ""),
            "quoter": getattr(self.quoter, "address", ""),
            "fee_tier": self.fee_tier,
            "enabled": self.enabled,
        }


@dataclass(frozen=True)
class SwapOrder:
    """A single internal-adapter trade: sell `amount_in` of token_in for token_out."""
    token_in: str
    token_out: str
    amount_in: int
    min_amount_out: int = 0

    def validate(self) -> List[str]:
        """Returns list of errors (empty = valid)."""
        errors: List[str] = []
        if self.token_in == self.token_out:
            errors.append("token_in and token_out must differ")
        if self.amount_in < 0:
            errors.append("amount_in must be non-negative")
        if self.min_amount_out < 0:
            errors.append("min_amount_out must be non-negative")
        return errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token_in": self.token_in,
            "token_out": self.token_out,
            "amount_in": self.amount_in,
            "min_amount_out": self.min_amount_out,
        }


@dataclass(frozen=True)
class RebalanceReport:
    """Outcome of a committed rebalance batch."""
    value_before: int                   # USD (8 dec)
    value_after: int                    # USD (8 dec), before fee skims
    proceeds: Dict[str, int]            # asset -> amount received
    caller_fees: Dict[str, int]
    owner_fees: Dict[str, int]
    steps: int

    @property
    def value_change(self) -> int:
        return self.value_after - self.value_before


# ---------------------------------------------------------------------------
# External collaborator Protocols
# ---------------------------------------------------------------------------

class ValuationOracle(Protocol):
    """Token eligibility and USD pricing authority."""

    PRICE_DECIMALS: int

    def is_token_valid(self, asset: str) -> bool:
        """Whitelisted AND platform operational."""
        ...

    def is_token_whitelisted(self, asset: str) -> bool:
        ...

    def get_token_price(self, asset: str) -> int:
        """USD price with PRICE_DECIMALS decimals.  Fails closed."""
        ...

    def is_platform_operational(self) -> bool:
        ...

    def calculate_fee(self, amount: int) -> int:
        """Platform fee owed on `amount`."""
        ...

    def get_whitelisted_tokens(self) -> List[str]:
        ...

    @property
    def platform_fee(self) -> int:
        """Platform fee in basis points."""
        ...


class PriceFeed(Protocol):
    """Live price source wired into the oracle."""

    def latest_round(self) -> Tuple[int, float]:
        """Returns (price with 8 decimals, updated_at epoch seconds)."""
        ...


class SwapQuoter(Protocol):
    address: str

    def quote(self, token_in: str, token_out: str, fee_tier: int, amount_in: int) -> int:
        """Expected output for `amount_in`.  0 means no route."""
        ...


class SwapRouter(Protocol):
    address: str

    def execute(
        self,
        token_in: str,
        token_out: str,
        fee_tier: int,
        amount_in: int,
        min_out: int,
        *,
        recipient: str,
    ) -> int:
        """Swap `amount_in` already held by the router; credit output to recipient."""
        ...


class SwapAggregator(Protocol):
    address: str

    def swap(self, vault: str, calldata: bytes) -> None:
        """Execute opaque calldata on behalf of `vault`."""
        ...


class FlashLoanReceiver(Protocol):
    address: str

    def on_flash_loan(
        self,
        initiator: str,
        asset: str,
        amount: int,
        fee: int,
        data: bytes,
    ) -> Optional[bytes]:
        """Must return amount + fee of `asset` to the lender before returning."""
        ...
