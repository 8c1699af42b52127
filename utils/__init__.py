from .formatters import format_cedis, format_breakdown, format_momo_number
from .money import to_money, clamp_non_negative, calculate_commission
from .validators import validate_withdrawal_amount, validate_momo_number

__all__ = [
    "format_cedis",
    "format_breakdown",
    "format_momo_number",
    "to_money",
    "clamp_non_negative",
    "calculate_commission",
    "validate_withdrawal_amount",
    "validate_momo_number",
]
