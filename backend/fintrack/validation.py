from __future__ import annotations

import math
from decimal import Decimal, InvalidOperation
from typing import Any


class ValidationError(ValueError):
    """400-level input problem."""


def parse_amount(value: Any, field: str = "amount", *, allow_negative: bool = True) -> Decimal:
    """
    Parse a monetary amount from a number or numeric string.

    - None / "" -> 0
    - "150000", 150000, 150000.5 -> Decimal
    - booleans, NaN, infinities and non-numeric strings are rejected
    """
    if value is None:
        return Decimal("0")
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValidationError(f"{field} must be a finite number")

    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return Decimal("0")
        value = stripped

    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")

    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    if not allow_negative and amount < 0:
        raise ValidationError(f"{field} must not be negative")
    return amount


def is_non_negative_number(value: Any) -> bool:
    """Strict check used by batch validation: blanks do not count as numbers."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return False
    try:
        parse_amount(value, allow_negative=False)
    except ValidationError:
        return False
    return True

