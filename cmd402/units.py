"""Helpers for converting between integer base units and display strings."""

from __future__ import annotations

from decimal import ROUND_DOWN, Decimal, InvalidOperation


def to_decimal(amount: int, decimals: int) -> Decimal:
    return Decimal(amount).scaleb(-decimals)


def format_units(amount: int, decimals: int, places: int | None = None) -> str:
    """Render ``amount`` base units with ``places`` fractional digits.

    Values are truncated rather than rounded so a displayed balance never
    exceeds what the holder actually owns.
    """

    value = to_decimal(amount, decimals)
    if places is None:
        return format(value.normalize(), "f")
    quantum = Decimal(1).scaleb(-places) if places else Decimal(1)
    return format(value.quantize(quantum, rounding=ROUND_DOWN), "f")


def parse_units(text: str, decimals: int) -> int:
    try:
        value = Decimal(text.strip())
    except InvalidOperation as exc:
        raise ValueError(f"invalid decimal amount: {text}") from exc
    if value < 0:
        raise ValueError(f"amount must not be negative: {text}")
    scaled = value.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"{text} has more than {decimals} decimal places")
    return int(scaled)


def short_hex(value: str, head: int = 6, tail: int = 4) -> str:
    """Abbreviate an address or hash as ``0x1234...abcd``."""

    if len(value) <= head + tail:
        return value
    return f"{value[:head]}...{value[-tail:]}"
