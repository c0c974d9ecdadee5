from __future__ import annotations

import re
from decimal import Decimal

from .money import to_money


# Maximum amount that fits Numeric(10, 2)
MAX_AMOUNT = Decimal("99999999.99")

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class ValidationError(ValueError):
    """Local input problem; raised before anything is written."""


def require_text(field: str, value) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} must not be blank")
    return str(value).strip()


def optional_text(value) -> str | None:
    if value is None:
        return None
    stripped = str(value).strip()
    return stripped or None


def require_email(field: str, value) -> str | None:
    email = optional_text(value)
    if email is None:
        return None
    if not EMAIL_RE.match(email):
        raise ValidationError(f"{field} must be a valid email address")
    return email.lower()


def require_quantity(field: str, value) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer")
    if value < 1:
        raise ValidationError(f"{field} must be at least 1")
    return value


def require_amount(field: str, value, *, allow_negative: bool = False, allow_positive: bool = True) -> Decimal:
    try:
        amount = to_money(value)
    except ValueError:
        raise ValidationError(f"{field} must be a number")
    if amount < 0 and not allow_negative:
        raise ValidationError(f"{field} must not be negative")
    if amount > 0 and not allow_positive:
        raise ValidationError(f"{field} must not be positive")
    if abs(amount) > MAX_AMOUNT:
        raise ValidationError(f"{field} exceeds maximum of {MAX_AMOUNT}")
    return amount
