"""
Decimal helpers for allowance amounts and distances.

Amounts are computed, stored (Numeric(38, 9)), and summed at full
precision.  ``round_money`` is the one place rounding happens, and only
where a value is shown to a person.
"""

from decimal import ROUND_HALF_UP, Decimal

_CENTS = Decimal("0.01")


def to_decimal(value: Decimal | int | str | float | None) -> Decimal:
    """
    Decimal for a rate, distance, or aggregate column.

    None (an empty SUM) is zero.  Floats go through ``str()``, so 0.1 stays
    ``Decimal("0.1")``.
    """
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def round_money(value: Decimal, places: int = 2) -> Decimal:
    """Round half-up to ``places`` decimals for display."""
    exponent = _CENTS if places == 2 else Decimal(1).scaleb(-places)
    return value.quantize(exponent, rounding=ROUND_HALF_UP)
