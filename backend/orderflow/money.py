# Overview: Decimal helpers for monetary amounts (two-place precision).

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value) -> Decimal:
    """
    Coerce a number or numeric string into a two-place Decimal.

    Floats go through str() so 0.1 stays 0.10 rather than its binary expansion.
    Raises ValueError for values that are not numbers.
    """
    if value is None:
        return ZERO
    if isinstance(value, bool):
        raise ValueError(f"Invalid amount: {value!r}")
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError):
        raise ValueError(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def sum_money(values: Iterable) -> Decimal:
    total = ZERO
    for value in values:
        total += to_money(value)
    return to_money(total)


def format_money(value) -> str:
    """Canonical string form used in JSON payloads ("42.00")."""
    return f"{to_money(value):.2f}"
