"""Decimal coercion helpers for deterministic money arithmetic."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation


ZERO = Decimal("0")


def to_decimal(value: float | int | str | Decimal | None) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def optional_decimal(value: float | int | str | Decimal | None) -> Decimal | None:
    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    try:
        parsed = to_decimal(value)
    except InvalidOperation:
        return None
    if not parsed.is_finite():
        return None
    return parsed


def is_positive(value: Decimal | None) -> bool:
    return value is not None and value > 0


def is_nonzero(value: Decimal | None) -> bool:
    return value is not None and value != 0


def plain_number(value: Decimal | None) -> str:
    """Render a decimal without exponent or trailing zeros ("10.00" -> "10")."""
    if value is None:
        return ""
    if value == 0:
        return "0"
    normalized = value.normalize()
    text = format(normalized, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text
