"""
Bucket Vault — Fixed-Point Arithmetic

Pure-integer fixed-point values with a semantic type.  Every authoritative
quantity in the vault (USD value, share count, share price) is an integer at
a fixed scale; Decimal is used only at ingress (parsing) and display.

Scales:
    USD     8 decimals   (oracle PRICE_DECIMALS)
    PRICE   8 decimals   (USD per whole share)
    SHARES 18 decimals   (PRECISION)
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_EVEN, ROUND_UP, getcontext
from enum import Enum, auto
from typing import Any, Final

getcontext().prec = 80  # For ingress parsing only


# =============================================================================
# SECTION 1: SEMANTIC TYPES AND SCALES
# =============================================================================

class SemanticType(Enum):
    """
    What a scaled integer measures.

    - USD: any USD-valued quantity (deposit value, total value, fees)
    - PRICE: USD per whole share
    - SHARES: share count
    """
    USD = auto()
    PRICE = auto()
    SHARES = auto()


PRICE_DECIMALS: Final[int] = 8
SHARE_DECIMALS: Final[int] = 18
PRECISION: Final[int] = 10 ** SHARE_DECIMALS
BPS_DENOMINATOR: Final[int] = 10_000

# Decimal places per semantic type; nothing else in the vault hardcodes them
SEMANTIC_SCALES: Final[dict[SemanticType, int]] = {
    SemanticType.USD: PRICE_DECIMALS,
    SemanticType.PRICE: PRICE_DECIMALS,
    SemanticType.SHARES: SHARE_DECIMALS,
}

# Largest magnitude any stored value may take (unsigned 256-bit word)
MAX_WORD: Final[int] = 2 ** 256 - 1


class RoundingMode(Enum):
    """
    TRUNCATE: Toward zero (vault-favouring for payouts and mints)
    AWAY_FROM_ZERO: Away from zero (for amounts the vault must receive)
    HALF_EVEN: Banker's rounding (display only)
    """
    TRUNCATE = auto()
    AWAY_FROM_ZERO = auto()
    HALF_EVEN = auto()


class FixedError(Exception):
    """Any failure in Fixed construction or arithmetic."""


class TypeMismatchError(FixedError):
    """Two Fixed values of different semantic type were combined or compared."""


class WordOverflowError(FixedError):
    """Raised when a value does not fit in a 256-bit word."""


# =============================================================================
# SECTION 2: FIXED
# =============================================================================

@dataclass(frozen=True, slots=True)
class Fixed:
    """
    Scaled integer tagged with what it measures.

    INVARIANTS:
    - value is always an integer (scaled)
    - sem determines the scale via SEMANTIC_SCALES
    - |value| fits in a 256-bit word
    """
    value: int
    sem: SemanticType

    def __post_init__(self) -> None:
        if not isinstance(self.value, int) or isinstance(self.value, bool):
            raise FixedError(f"value must be int, got {type(self.value).__name__}")
        if abs(self.value) > MAX_WORD:
            raise WordOverflowError(f"{self.sem.name} {self.value} exceeds 256-bit word")

    @property
    def scale(self) -> int:
        return SEMANTIC_SCALES[self.sem]

    # -------------------------------------------------------------------------
    # Ingress
    # -------------------------------------------------------------------------

    @classmethod
    def from_decimal(
        cls,
        x: Decimal,
        sem: SemanticType,
        rounding: RoundingMode = RoundingMode.TRUNCATE,
    ) -> Fixed:
        """INGRESS ONLY: Convert external Decimal to Fixed."""
        scaled = x * Decimal(10 ** SEMANTIC_SCALES[sem])
        if rounding == RoundingMode.TRUNCATE:
            int_val = int(scaled.to_integral_value(rounding=ROUND_DOWN))
        elif rounding == RoundingMode.AWAY_FROM_ZERO:
            int_val = int(scaled.to_integral_value(rounding=ROUND_UP))
        else:
            int_val = int(scaled.to_integral_value(rounding=ROUND_HALF_EVEN))
        return cls(value=int_val, sem=sem)

    @classmethod
    def from_str(cls, s: str, sem: SemanticType) -> Fixed:
        """INGRESS: Parse string to Fixed (truncating)."""
        return cls.from_decimal(Decimal(s), sem)

    @classmethod
    def zero(cls, sem: SemanticType) -> Fixed:
        return cls(value=0, sem=sem)

    @classmethod
    def from_int(cls, n: int, sem: SemanticType) -> Fixed:
        """Create from whole units (e.g., 2000 USD -> 2000 * 10**8)."""
        return cls(value=n * (10 ** SEMANTIC_SCALES[sem]), sem=sem)

    # -------------------------------------------------------------------------
    # Display
    # -------------------------------------------------------------------------

    def to_decimal(self) -> Decimal:
        """Decimal view for logs and the status console; never fed back into math."""
        return Decimal(self.value) / Decimal(10 ** self.scale)

    def __repr__(self) -> str:
        return f"Fixed({self.to_decimal()}, {self.sem.name})"

    def to_canonical(self) -> dict[str, Any]:
        """Integer-only form used when hashing config and state."""
        return {"v": self.value, "t": self.sem.name}

    # -------------------------------------------------------------------------
    # Same-type arithmetic
    # -------------------------------------------------------------------------

    def __add__(self, other: Fixed) -> Fixed:
        if self.sem != other.sem:
            raise TypeMismatchError(f"Cannot add {self.sem.name} to {other.sem.name}")
        return Fixed(value=self.value + other.value, sem=self.sem)

    def __sub__(self, other: Fixed) -> Fixed:
        if self.sem != other.sem:
            raise TypeMismatchError(f"Cannot subtract {other.sem.name} from {self.sem.name}")
        return Fixed(value=self.value - other.value, sem=self.sem)

    def __neg__(self) -> Fixed:
        return Fixed(value=-self.value, sem=self.sem)

    def mul_bps(self, bps: int, rounding: RoundingMode = RoundingMode.TRUNCATE) -> Fixed:
        """Scale by a basis-point fraction (scale preserved)."""
        return Fixed(value=mul_div(self.value, bps, BPS_DENOMINATOR, rounding), sem=self.sem)

    # -------------------------------------------------------------------------
    # Comparison (NotImplemented on mismatch for ==, raise for ordering)
    # -------------------------------------------------------------------------

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Fixed):
            return NotImplemented
        if self.sem != other.sem:
            return NotImplemented
        return self.value == other.value

    def __hash__(self) -> int:
        return hash((self.value, self.sem))

    def _check_order(self, other: Fixed) -> None:
        if self.sem != other.sem:
            raise TypeMismatchError(f"Cannot compare {self.sem.name} to {other.sem.name}")

    def __lt__(self, other: Fixed) -> bool:
        if not isinstance(other, Fixed):
            return NotImplemented
        self._check_order(other)
        return self.value < other.value

    def __le__(self, other: Fixed) -> bool:
        if not isinstance(other, Fixed):
            return NotImplemented
        self._check_order(other)
        return self.value <= other.value

    def __gt__(self, other: Fixed) -> bool:
        if not isinstance(other, Fixed):
            return NotImplemented
        self._check_order(other)
        return self.value > other.value

    def __ge__(self, other: Fixed) -> bool:
        if not isinstance(other, Fixed):
            return NotImplemented
        self._check_order(other)
        return self.value >= other.value

    def is_zero(self) -> bool:
        return self.value == 0

    def is_positive(self) -> bool:
        return self.value > 0


# =============================================================================
# SECTION 3: CROSS-TYPE ARITHMETIC (pure integer)
# =============================================================================

def mul_div(a: int, b: int, denominator: int, rounding: RoundingMode = RoundingMode.TRUNCATE) -> int:
    """
    a * b / denominator with explicit rounding.

    Operands are non-negative in every vault formula; a negative operand is a
    programming error and raises.
    """
    if denominator <= 0:
        raise FixedError(f"denominator must be positive, got {denominator}")
    if a < 0 or b < 0:
        raise FixedError(f"mul_div operands must be non-negative, got {a}, {b}")
    product = a * b
    if rounding == RoundingMode.TRUNCATE:
        return product // denominator
    if rounding == RoundingMode.AWAY_FROM_ZERO:
        return (product + denominator - 1) // denominator
    quotient, remainder = divmod(product, denominator)
    twice = remainder * 2
    if twice > denominator or (twice == denominator and quotient % 2 == 1):
        return quotient + 1
    return quotient


def asset_value_usd(amount: int, price: int, decimals: int) -> Fixed:
    """USD value (8 dec) of `amount` base units of an asset priced at `price` (8 dec)."""
    return Fixed(value=mul_div(amount, price, 10 ** decimals), sem=SemanticType.USD)


def asset_amount_for_usd(value: Fixed, price: int, decimals: int) -> int:
    """Base units of an asset worth `value` USD at `price` (truncating)."""
    if value.sem != SemanticType.USD:
        raise TypeMismatchError(f"Expected USD, got {value.sem.name}")
    if price <= 0:
        raise FixedError(f"price must be positive, got {price}")
    return mul_div(value.value, 10 ** decimals, price)


def share_price(total_value: Fixed, total_supply: Fixed) -> Fixed:
    """USD per whole share: total_value * PRECISION / total_supply."""
    if total_value.sem != SemanticType.USD or total_supply.sem != SemanticType.SHARES:
        raise TypeMismatchError("share_price expects (USD, SHARES)")
    return Fixed(
        value=mul_div(total_value.value, PRECISION, total_supply.value),
        sem=SemanticType.PRICE,
    )


def shares_for_value(value: Fixed, price: Fixed) -> Fixed:
    """Shares bought by `value` USD at `price` per share (truncating)."""
    if value.sem != SemanticType.USD or price.sem != SemanticType.PRICE:
        raise TypeMismatchError("shares_for_value expects (USD, PRICE)")
    return Fixed(value=mul_div(value.value, PRECISION, price.value), sem=SemanticType.SHARES)


def value_of_shares(shares: Fixed, price: Fixed) -> Fixed:
    """USD value of `shares` at `price` per share (truncating)."""
    if shares.sem != SemanticType.SHARES or price.sem != SemanticType.PRICE:
        raise TypeMismatchError("value_of_shares expects (SHARES, PRICE)")
    return Fixed(value=mul_div(shares.value, price.value, PRECISION), sem=SemanticType.USD)


def bps_of(part: int, whole: int) -> int:
    """Integer basis points `part` represents of `whole` (truncating)."""
    if whole <= 0:
        raise FixedError(f"whole must be positive, got {whole}")
    return mul_div(part, BPS_DENOMINATOR, whole)


BASELINE_SHARE_PRICE: Final[Fixed] = Fixed(value=10 ** PRICE_DECIMALS, sem=SemanticType.PRICE)
