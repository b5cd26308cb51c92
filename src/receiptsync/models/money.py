"""Fixed-point currency helpers."""

from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")

_THOUSANDS_SEPARATOR = re.compile(r"(?<=\d),(?=\d{3}\b)")


def to_money(value: Any) -> Decimal:  # noqa: ANN401
    """Convert a numeric value to a Decimal quantized to cents."""
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, float):
        amount = Decimal(str(value))
    elif isinstance(value, int):
        amount = Decimal(value)
    elif isinstance(value, str):
        amount = Decimal(value.strip().replace("$", ""))
    else:
        msg = f"Invalid type for amount conversion: {type(value)}"
        raise ValueError(msg)
    if not amount.is_finite():
        msg = f"Amount is not finite: {value!r}"
        raise ValueError(msg)
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def parse_amount(text: str | None) -> Decimal | None:
    """Parse a decimal string, returning None when it is not a finite amount."""
    if text is None:
        return None
    cleaned = _THOUSANDS_SEPARATOR.sub("", text.strip())
    try:
        return to_money(cleaned)
    except (InvalidOperation, ValueError):
        return None


def parse_amount_or_zero(text: str | None) -> Decimal:
    """Parse a decimal string, defaulting to zero."""
    amount = parse_amount(text)
    return ZERO if amount is None else amount


def format_amount(amount: Decimal) -> str:
    """Format an amount the way the remote API expects (two decimals)."""
    return f"{to_money(amount):.2f}"
