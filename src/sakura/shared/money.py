"""Decimal helpers for currency amounts.

Aggregates store amounts in ``Float`` fields. Arithmetic always goes
through ``Decimal`` built from the string form of the stored value so that
sums and comparisons are exact.
"""

from decimal import ROUND_HALF_UP, Decimal

ZERO = Decimal("0")


def to_decimal(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_half_up(value: Decimal, unit: Decimal) -> Decimal:
    """Round to the smallest currency unit, halves away from zero."""
    return value.quantize(unit, rounding=ROUND_HALF_UP)


def to_float(value: Decimal) -> float:
    return float(value)
