"""Conversions between human-readable decimal amounts and smallest units."""

import math
from decimal import Decimal, InvalidOperation, ROUND_DOWN
from typing import Optional, Union

NumberLike = Union[str, int, Decimal]


def parse_decimal(value: Optional[NumberLike]) -> Optional[Decimal]:
    """Parse user input into a finite Decimal, or None when it isn't one."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        parsed = value
    else:
        text = str(value).strip().replace(",", "")
        if not text:
            return None
        try:
            parsed = Decimal(text)
        except InvalidOperation:
            return None
    if not parsed.is_finite():
        return None
    return parsed


def to_base_units(amount: NumberLike, decimals: int) -> str:
    """``"1.5"`` with 6 decimals -> ``"1500000"``; extra precision is truncated."""
    parsed = parse_decimal(amount)
    if parsed is None:
        raise ValueError(f"Invalid amount: {amount!r}")
    scaled = (parsed * (Decimal(10) ** decimals)).quantize(Decimal(1), rounding=ROUND_DOWN)
    return str(int(scaled))


def from_base_units(raw: NumberLike, decimals: int) -> Decimal:
    """``"1500000"`` with 6 decimals -> ``Decimal("1.5")``."""
    parsed = parse_decimal(raw)
    if parsed is None:
        raise ValueError(f"Invalid base-unit amount: {raw!r}")
    value = parsed / (Decimal(10) ** decimals)
    return value.normalize() if value != 0 else Decimal(0)


def exchange_rate(input_amount: NumberLike, output_amount: Decimal) -> Optional[Decimal]:
    """Output received per unit of input, or None for a zero input."""
    parsed = parse_decimal(input_amount)
    if parsed is None or parsed == 0:
        return None
    return output_amount / parsed


def estimated_minutes(duration_seconds: Optional[int]) -> Optional[int]:
    if duration_seconds is None:
        return None
    return max(1, math.ceil(duration_seconds / 60))
