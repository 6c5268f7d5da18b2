"""Quantity rounding and percentage helpers."""

from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

_NON_NUMERIC = re.compile(r"[^\d.]")
_HUNDRED = Decimal("100")


def to_decimal(value: Any) -> Decimal | None:
    """Return value as a Decimal, or None when it is empty or not numeric."""
    if value is None or value == "":
        return None
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return None


def parse_quantity_input(value: Any) -> Decimal | None:
    """Strip everything but digits and '.' from a typed quantity.

    Returns None when nothing numeric remains, e.g. "" or "BTC".
    """
    cleaned = _NON_NUMERIC.sub("", str(value if value is not None else ""))
    if not cleaned:
        return None
    return to_decimal(cleaned)


def smart_round(value: Any, precision: int = 4) -> Decimal:
    """Round a quantity for display.

    Values above 1 keep ``precision`` decimals; smaller values keep enough
    decimals to preserve ``precision`` significant digits. Trailing zeros are
    dropped.
    """
    number = to_decimal(value)
    if number is None or number == 0:
        return Decimal("0")
    if abs(number) > 1:
        places = precision
    else:
        # adjusted() is floor(log10(|number|))
        places = abs(number.adjusted()) + precision
    rounded = number.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)
    return _strip_trailing_zeros(rounded)


def percentage_of(quantity: Any, total: Any) -> Decimal:
    """Return 100 * quantity / total rounded to 2 decimals, 0 when total is 0."""
    qty = to_decimal(quantity)
    total_value = to_decimal(total)
    if qty is None or not total_value:
        return Decimal("0")
    percentage = _HUNDRED * qty / total_value
    return percentage.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def fraction_of(total: Any, percentage: Any) -> Decimal:
    """Return ``percentage`` percent of ``total``, rounded for display."""
    total_value = to_decimal(total) or Decimal("0")
    pct = to_decimal(percentage) or Decimal("0")
    return smart_round(total_value * (pct / _HUNDRED))


def format_quantity(value: Decimal) -> str:
    """Format a quantity without exponent notation."""
    return format(_strip_trailing_zeros(value), "f")


def _strip_trailing_zeros(value: Decimal) -> Decimal:
    if value == value.to_integral_value():
        return value.quantize(Decimal(1))
    return value.normalize()
