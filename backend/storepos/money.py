# Overview: Decimal helpers for money and quantity fields.

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Any

CENT = Decimal("0.01")
QUANTITY_STEP = Decimal("0.001")
ZERO = Decimal("0")


def to_money(value: Any) -> Decimal:
    """Round to cents, half-up. None counts as zero."""
    if value is None:
        return ZERO.quantize(CENT)
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_quantity(value: Any) -> Decimal:
    if value is None:
        return ZERO.quantize(QUANTITY_STEP)
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(QUANTITY_STEP, rounding=ROUND_HALF_UP)


def as_number(value: Decimal | None) -> float | None:
    """JSON-friendly rendering of a Numeric column."""
    if value is None:
        return None
    return float(value)
