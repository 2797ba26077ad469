# Overview: Cent/decimal conversions. Amounts are stored as integer cents.

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from .errors import InvalidAmount

CENT = Decimal("0.01")


def to_decimal(value) -> Decimal:
    """Accept "12.50", 12.5, 12 or Decimal; floats go through str() to avoid binary noise."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or value is None:
        raise InvalidAmount(f"Invalid amount: {value!r}")
    try:
        if isinstance(value, float):
            return Decimal(str(value))
        return Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidAmount(f"Invalid amount: {value!r}")


def to_cents(value) -> int:
    """Currency amount -> integer cents (half-up)."""
    amount = to_decimal(value)
    if not amount.is_finite():
        raise InvalidAmount(f"Invalid amount: {value!r}")
    return int((amount * 100).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def round_cents(amount_in_cents: Decimal) -> int:
    """Full-precision cent quantity -> whole cents (half-up)."""
    return int(amount_in_cents.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def format_cents(cents: int | None) -> str | None:
    if cents is None:
        return None
    return str((Decimal(cents) / 100).quantize(CENT))
