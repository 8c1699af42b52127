"""Formatting utilities for dashboard messages."""

from decimal import Decimal
from typing import Mapping

from config.constants import CURRENCY_SYMBOL, MONEY_QUANTUM


def format_cedis(amount: Decimal) -> str:
    """Format a cedi amount, e.g. GH₵1,250.00."""
    amount = Decimal(amount).quantize(MONEY_QUANTUM)
    sign = "-" if amount < 0 else ""
    return f"{sign}{CURRENCY_SYMBOL}{abs(amount):,.2f}"


def format_breakdown(breakdown: Mapping[str, Decimal]) -> str:
    """Format per-source totals: 'referral: 30.00, data_order: 120.00, ...'."""
    return ", ".join(
        f"{source}: {Decimal(amount).quantize(MONEY_QUANTUM)}"
        for source, amount in breakdown.items()
    )


def format_momo_number(momo_number: str) -> str:
    """Mask a payout number, keeping the last 4 digits."""
    if len(momo_number) <= 4:
        return momo_number
    return f"{'*' * (len(momo_number) - 4)}{momo_number[-4:]}"
