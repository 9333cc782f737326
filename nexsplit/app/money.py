"""
money.py — Monetary primitives.

Every amount in the engine is a Decimal quantised to the minor unit of its
currency. Arithmetic that must not lose or invent pennies (splitting a total,
distributing a rounding residual) is done in integer minor units and converted
back at the end. Float never appears anywhere in or around money.

Net balances are the only signed figures; every stored amount is >= 0.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from nexsplit.app.errors import ErrorCode, InvalidInputError


DEFAULT_CURRENCY = "USD"

# Currencies without a fractional minor unit. Everything else uses cents.
# Three-decimal currencies (BHD, KWD, ...) are not supported by the
# NUMERIC(12, 2) storage columns and are rejected by the schemas.
_ZERO_DECIMAL_CURRENCIES = frozenset({"JPY", "KRW", "VND", "CLP", "ISK", "UGX"})

# Percentages must close to 100 within this tolerance.
PERCENTAGE_TOLERANCE = Decimal("0.01")
HUNDRED = Decimal("100")
ZERO = Decimal("0.00")


def currency_decimals(currency: str | None) -> int:
    """Number of fractional digits in the minor unit of `currency`."""
    code = (currency or DEFAULT_CURRENCY).upper()
    return 0 if code in _ZERO_DECIMAL_CURRENCIES else 2


def minor_unit(currency: str | None = None) -> Decimal:
    """The smallest representable amount: Decimal("0.01") for USD, Decimal("1") for JPY."""
    return Decimal(1).scaleb(-currency_decimals(currency))


def quantize(value: Decimal, currency: str | None = None) -> Decimal:
    """Rounds half-up to the currency's minor unit."""
    return value.quantize(minor_unit(currency), rounding=ROUND_HALF_UP)


def to_minor_units(value: Decimal, currency: str | None = None) -> int:
    """
    Converts a major-unit Decimal into an integer count of minor units.

    Raises InvalidInputError when `value` carries more precision than the
    currency allows. Input is never silently rounded.
    """
    scaled = value.scaleb(currency_decimals(currency))
    if scaled != scaled.to_integral_value():
        raise InvalidInputError(
            ErrorCode.INVALID_AMOUNT,
            f"Amount {value} has more decimal places than {currency or DEFAULT_CURRENCY} allows.",
        )
    return int(scaled)


def from_minor_units(units: int, currency: str | None = None) -> Decimal:
    """Inverse of to_minor_units. Always returns a Decimal at full minor-unit scale."""
    return quantize(Decimal(units).scaleb(-currency_decimals(currency)), currency)


def distribute_residual(shares: list[int], residual: int) -> list[int]:
    """
    Spreads `residual` minor units one at a time over `shares` in input order.

    A positive residual adds one unit to each of the first `residual` shares;
    a negative one takes one unit away from the first |residual| shares that
    are still above zero, so no share ever goes negative. Residuals larger
    than len(shares) wrap around.
    """
    if not shares or residual == 0:
        return list(shares)

    adjusted = list(shares)
    if residual < 0 and sum(adjusted) < -residual:
        raise ValueError(f"Cannot take {-residual} units from shares totalling {sum(adjusted)}.")

    step = 1 if residual > 0 else -1
    remaining = abs(residual)
    i = 0
    while remaining:
        idx = i % len(adjusted)
        if step > 0 or adjusted[idx] > 0:
            adjusted[idx] += step
            remaining -= 1
        i += 1
    return adjusted


@dataclass(frozen=True)
class Money:
    """An exact amount in a single currency."""

    amount: Decimal
    currency: str = DEFAULT_CURRENCY

    @classmethod
    def of(cls, amount: Decimal | str | int, currency: str | None = None) -> "Money":
        code = (currency or DEFAULT_CURRENCY).upper()
        return cls(quantize(Decimal(amount), code), code)

    @classmethod
    def exact(cls, amount: Decimal | str | int, currency: str | None = None) -> "Money":
        """Wraps `amount` without rounding; minor_units rejects excess precision."""
        return cls(Decimal(amount), (currency or DEFAULT_CURRENCY).upper())

    @classmethod
    def zero(cls, currency: str | None = None) -> "Money":
        return cls.of(0, currency)

    @classmethod
    def total(cls, values: Iterable["Money"], currency: str | None = None) -> "Money":
        """Sums `values`, all of which must be in `currency`."""
        result = cls.zero(currency)
        for value in values:
            result = result + value
        return result

    @classmethod
    def from_minor(cls, units: int, currency: str | None = None) -> "Money":
        code = (currency or DEFAULT_CURRENCY).upper()
        return cls(from_minor_units(units, code), code)

    @property
    def minor_units(self) -> int:
        return to_minor_units(self.amount, self.currency)

    def _require_same_currency(self, other: "Money") -> None:
        if other.currency != self.currency:
            raise InvalidInputError(
                ErrorCode.CURRENCY_MISMATCH,
                f"Cannot combine {self.currency} with {other.currency}; "
                f"currency conversion is not supported.",
                field="currency",
            )

    def __add__(self, other: "Money") -> "Money":
        self._require_same_currency(other)
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: "Money") -> "Money":
        self._require_same_currency(other)
        return Money(self.amount - other.amount, self.currency)

    def __neg__(self) -> "Money":
        return Money(-self.amount, self.currency)

    def is_zero(self) -> bool:
        return self.amount == 0

    def within(self, other: "Money", units: int = 1) -> bool:
        """True if the two amounts differ by at most `units` minor units."""
        self._require_same_currency(other)
        return abs(self.amount - other.amount) <= minor_unit(self.currency) * units

    def __str__(self) -> str:
        return str(self.amount)
