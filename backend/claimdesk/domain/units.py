"""Fixed-point helpers for the settlement token.

Accounting code works on integers with ``decimals`` implied places. These
helpers exist for presentation boundaries only.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_DOWN

DEFAULT_DECIMALS = 6


def to_display(amount: int, decimals: int = DEFAULT_DECIMALS) -> Decimal:
    """Return ``amount`` as a human-readable decimal (``163333333`` -> ``163.333333``)."""

    return Decimal(int(amount)).scaleb(-decimals)


def to_base_units(value: Decimal | str | int, decimals: int = DEFAULT_DECIMALS) -> int:
    """Convert a human-entered amount into fixed-point units, truncating extra precision."""

    quantum = Decimal(1).scaleb(-decimals)
    quantized = Decimal(str(value)).quantize(quantum, rounding=ROUND_DOWN)
    return int(quantized.scaleb(decimals))
