"""Decimal helpers for settlement and gateway amounts."""

from __future__ import annotations

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from typing import Union

Number = Union[Decimal, int, str]

CENT = Decimal("0.01")
UNIT = Decimal("1")

# Currencies the gateway settles without a fractional minor unit
ZERO_DECIMAL_CURRENCIES = frozenset(
    {
        "BIF",
        "CLP",
        "DJF",
        "GNF",
        "JPY",
        "KMF",
        "KRW",
        "PYG",
        "RWF",
        "UGX",
        "VND",
        "VUV",
        "XAF",
        "XOF",
        "XPF",
    }
)


def to_decimal(value: Number | float) -> Decimal:
    """Convert to Decimal; floats go through str() so 0.1 stays 0.1."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def round_cents(value: Decimal) -> Decimal:
    """Round half-up to two decimal places."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def floor_units(value: Decimal) -> Decimal:
    """Truncate toward zero to a whole unit."""
    return value.quantize(UNIT, rounding=ROUND_DOWN)


def currency_exponent(currency: str) -> int:
    return 0 if currency.upper() in ZERO_DECIMAL_CURRENCIES else 2


def to_minor_units(amount: Decimal, currency: str) -> str:
    """
    Express an amount as the integer string the gateway expects.

    Example:
        >>> to_minor_units(Decimal("130650.4"), "RWF")
        '130650'
        >>> to_minor_units(Decimal("12.345"), "USD")
        '1235'
    """
    exponent = currency_exponent(currency)
    scaled = (amount * (Decimal(10) ** exponent)).quantize(UNIT, rounding=ROUND_HALF_UP)
    return str(int(scaled))
