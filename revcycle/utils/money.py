"""
Fixed-point money helpers.

All amounts in the engine are ``Decimal`` quantized to the configured
scale. Floats are converted through ``str`` so ``0.1`` stays ``0.10``.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, Union

MoneyInput = Union[Decimal, int, float, str]

CENT = Decimal("0.01")


def to_money(value: MoneyInput, quantum: Decimal = CENT) -> Decimal:
    """Convert a value to a quantized Decimal amount."""
    if isinstance(value, bool):
        raise ValueError("Boolean is not a monetary amount")
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError) as e:
        raise ValueError(f"Invalid monetary amount: {value!r}") from e
    if not amount.is_finite():
        raise ValueError(f"Invalid monetary amount: {value!r}")
    return amount.quantize(quantum, rounding=ROUND_HALF_UP)


def money_sum(amounts: Iterable[Decimal], quantum: Decimal = CENT) -> Decimal:
    """Exact sum of already-quantized amounts."""
    return sum(amounts, Decimal(0)).quantize(quantum, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal, quantum: Decimal = CENT) -> int:
    """Amount in the currency's minor unit (paise, cents)."""
    return int((amount / quantum).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor_units(units: int, quantum: Decimal = CENT) -> Decimal:
    """Inverse of ``to_minor_units``."""
    return (Decimal(units) * quantum).quantize(quantum)
