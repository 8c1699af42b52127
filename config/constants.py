"""Application constants."""

from decimal import Decimal

# Amounts are Ghana Cedi with two fraction digits
MONEY_QUANTUM = Decimal("0.01")
CURRENCY_SYMBOL = "GH₵"

# Smallest commission a priced sale can carry (when the computed value is positive)
MIN_ORDER_COMMISSION = Decimal("0.01")

# Withdrawal rules
MIN_WITHDRAWAL_AMOUNT = Decimal("10.00")
MAX_MONTHLY_WITHDRAWALS = 5

# Upper bound accepted by the amount validator
MAX_WITHDRAWAL_AMOUNT = Decimal("999999.99")

# Change notification event names
EVENT_ORDER_STATUS_CHANGED = "order_status_changed"
EVENT_COMMISSION_SUMMARY_CHANGED = "commission_summary_changed"
EVENT_WITHDRAWAL_STATUS_CHANGED = "withdrawal_status_changed"

# Pagination
DEFAULT_PAGE_SIZE = 20
