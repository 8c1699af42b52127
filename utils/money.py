"""Decimal money helpers."""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

from config.constants import MONEY_QUANTUM, MIN_ORDER_COMMISSION

Number = Union[Decimal, int, float, str]

ZERO = Decimal("0.00")


def to_money(value: Number) -> Decimal:
    """
    Convert a value to a two-digit Decimal using half-up rounding.

    Floats go through ``str`` so 0.1 becomes Decimal("0.10") and not its
    binary expansion.

    Raises:
        ValueError: if the value is not a finite number
    """
    if isinstance(value, bool):
        raise ValueError(f"Not a money amount: {value!r}")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValueError(f"Not a money amount: {value!r}")

    if not amount.is_finite():
        raise ValueError(f"Not a money amount: {value!r}")

    return amount.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def clamp_non_negative(amount: Decimal) -> Decimal:
    """Clamp a balance at zero."""
    return amount if amount > ZERO else ZERO


def calculate_commission(price: Number, commission_rate: Number) -> Decimal:
    """
    Calculate the fixed commission for a priced sale.

    Commission = price * rate, rounded half-up to 2 decimals. A positive
    commission that rounds below the minimum is raised to the minimum.

    Args:
        price: Sale price (non-negative)
        commission_rate: Fraction between 0 and 1

    Returns:
        Commission amount
    """
    price = Decimal(str(price))
    rate = Decimal(str(commission_rate))

    if not price.is_finite() or price < 0:
        raise ValueError(f"Invalid price: {price}. Must be a non-negative number.")
    if not rate.is_finite() or rate < 0 or rate > 1:
        raise ValueError(f"Invalid commission rate: {rate}. Must be between 0 and 1.")

    raw = price * rate
    commission = raw.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)

    if raw > 0 and commission < MIN_ORDER_COMMISSION:
        commission = MIN_ORDER_COMMISSION

    return commission
