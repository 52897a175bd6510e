"""Conversion between major-currency amounts and processor minor units."""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

Amount = Union[int, float, str, Decimal]

_HUNDRED = Decimal(100)


def to_minor_units(amount: Amount) -> int:
    """Convert a major-currency amount (``12.50``) to integer minor units (``1250``).

    Floats go through ``str`` first so ``19.99`` becomes ``1999`` rather than
    ``1998``; halves round away from zero.
    """

    if isinstance(amount, bool):
        raise TypeError("amount must be numeric, not bool")
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid amount {amount!r}") from exc
    if not value.is_finite():
        raise ValueError(f"Amount must be finite, got {amount!r}")
    return int((value * _HUNDRED).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int) -> Decimal:
    """Return the major-currency value of ``amount`` minor units."""

    return (Decimal(amount) / _HUNDRED).quantize(Decimal("0.01"))


__all__ = ["Amount", "from_minor_units", "to_minor_units"]
