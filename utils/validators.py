"""Input validation utilities."""

import re
from decimal import Decimal
from typing import Optional

from config.constants import MIN_WITHDRAWAL_AMOUNT, MAX_WITHDRAWAL_AMOUNT
from utils.money import to_money

# Local (0XXXXXXXXX) or international (+233XXXXXXXXX / 233XXXXXXXXX) mobile money numbers
MOMO_NUMBER_PATTERN = re.compile(r"^(?:\+?233|0)\d{9}$")


def validate_withdrawal_amount(
    text: str,
    min_val: Decimal = MIN_WITHDRAWAL_AMOUNT,
    max_val: Decimal = MAX_WITHDRAWAL_AMOUNT,
) -> Optional[Decimal]:
    """
    Validate and sanitize a withdrawal amount typed into a form.

    Args:
        text: Input text
        min_val: Minimum allowed value
        max_val: Maximum allowed value

    Returns:
        Validated amount or None if invalid
    """
    try:
        amount = to_money(text.replace(",", ""))
    except ValueError:
        return None

    if amount < min_val or amount > max_val:
        return None

    return amount


def validate_momo_number(text: str) -> Optional[str]:
    """
    Validate a mobile money payout number.

    Spaces and dashes are ignored.

    Returns:
        Normalized number or None if invalid
    """
    normalized = re.sub(r"[\s-]", "", text or "")
    if not MOMO_NUMBER_PATTERN.match(normalized):
        return None
    return normalized
