"""
Monetary helpers shared by invoicing and checkout.

Amounts are plain floats rounded to two decimals; gateway amounts are
integer minor units.
"""
import math
from decimal import Context, Decimal, ROUND_HALF_UP
from typing import Any

_CENTS = Decimal("0.01")
_UNITS = Decimal("1")
# wide enough for any finite float quantized to cents
_CTX = Context(prec=400)


def to_number(value: Any) -> float:
    """Coerce to a finite float, 0 for anything that isn't one."""
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float, Decimal)):
        try:
            num = float(value)
        except OverflowError:
            return 0.0
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        try:
            num = float(text)
        except ValueError:
            return 0.0
    else:
        return 0.0
    return num if math.isfinite(num) else 0.0


def round2(value: Any) -> float:
    num = to_number(value)
    return float(Decimal(repr(num)).quantize(_CENTS, rounding=ROUND_HALF_UP, context=_CTX))


def to_minor_units(value: Any) -> int:
    num = to_number(value)
    cents = _CTX.multiply(Decimal(repr(num)), Decimal(100))
    return int(cents.quantize(_UNITS, rounding=ROUND_HALF_UP, context=_CTX))
