"""Withdrawal eligibility rules.

Pure functions: callers load the summary and history, this module decides.
Rules run in a fixed order and the first failing rule is reported.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Iterable, List, Optional

from config.constants import MAX_MONTHLY_WITHDRAWALS, MIN_WITHDRAWAL_AMOUNT
from database.models import CommissionSummary, Withdrawal
from services.errors import InvalidAmount
from utils.formatters import format_cedis
from utils.money import to_money


class RejectionReason(str, Enum):
    PENDING_WITHDRAWAL_EXISTS = "pending_withdrawal_exists"
    BELOW_MINIMUM = "below_minimum"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    MONTHLY_LIMIT_REACHED = "monthly_limit_reached"
    TEMPORARILY_UNAVAILABLE = "temporarily_unavailable"


@dataclass(frozen=True)
class WithdrawalDecision:
    """Outcome of an eligibility check."""
    accepted: bool
    amount: Decimal
    reason: Optional[RejectionReason] = None
    message: Optional[str] = None
    pending_withdrawal: Optional[Withdrawal] = None
    monthly_count: int = 0

    @property
    def retryable(self) -> bool:
        return self.reason == RejectionReason.TEMPORARILY_UNAVAILABLE

    @classmethod
    def accept(cls, amount: Decimal, monthly_count: int = 0) -> "WithdrawalDecision":
        return cls(accepted=True, amount=amount, monthly_count=monthly_count)

    @classmethod
    def reject(
        cls,
        amount: Decimal,
        reason: RejectionReason,
        message: str,
        pending_withdrawal: Optional[Withdrawal] = None,
        monthly_count: int = 0,
    ) -> "WithdrawalDecision":
        return cls(
            accepted=False,
            amount=amount,
            reason=reason,
            message=message,
            pending_withdrawal=pending_withdrawal,
            monthly_count=monthly_count,
        )


def normalize_amount(amount) -> Decimal:
    """
    Quantize a requested amount to cents (half-up).

    Raises:
        InvalidAmount: if the amount is not a finite number
    """
    try:
        return to_money(amount)
    except ValueError:
        raise InvalidAmount(amount)


def month_start(now: datetime) -> datetime:
    """First instant of ``now``'s calendar month, in UTC."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now = now.astimezone(timezone.utc)
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def find_pending(history: Iterable[Withdrawal]) -> Optional[Withdrawal]:
    """Return the agent's requested/processing withdrawal, if any."""
    for withdrawal in history:
        if withdrawal.is_active:
            return withdrawal
    return None


def count_in_month(history: Iterable[Withdrawal], now: datetime) -> int:
    """Count requests made in ``now``'s calendar month, whatever their status."""
    start = month_start(now)
    count = 0
    for withdrawal in history:
        requested_at = withdrawal.requested_at
        if requested_at.tzinfo is None:
            requested_at = requested_at.replace(tzinfo=timezone.utc)
        if requested_at >= start:
            count += 1
    return count


def validate(
    agent_id: int,
    amount,
    summary: CommissionSummary,
    history: List[Withdrawal],
    now: Optional[datetime] = None,
    min_amount: Decimal = MIN_WITHDRAWAL_AMOUNT,
    max_monthly: int = MAX_MONTHLY_WITHDRAWALS,
) -> WithdrawalDecision:
    """
    Decide whether an agent may withdraw ``amount``.

    Args:
        agent_id: Agent requesting the withdrawal
        amount: Requested amount
        summary: Agent's current commission summary
        history: Agent's withdrawals (at least this month's and any active one)
        now: Evaluation time, defaults to the current UTC time

    Returns:
        WithdrawalDecision

    Raises:
        InvalidAmount: if the amount is not a number
    """
    amount = normalize_amount(amount)
    now = now or datetime.now(timezone.utc)
    history = [w for w in history if w.agent_id == agent_id]
    monthly_count = count_in_month(history, now)

    pending = find_pending(history)
    if pending is not None:
        return WithdrawalDecision.reject(
            amount,
            RejectionReason.PENDING_WITHDRAWAL_EXISTS,
            f"You already have a pending withdrawal of {format_cedis(pending.amount)} "
            f"(status: {pending.status.value}). Wait for it to be processed before requesting another.",
            pending_withdrawal=pending,
            monthly_count=monthly_count,
        )

    if amount < min_amount:
        return WithdrawalDecision.reject(
            amount,
            RejectionReason.BELOW_MINIMUM,
            f"Minimum withdrawal amount is {format_cedis(min_amount)}",
            monthly_count=monthly_count,
        )

    available = summary.available_for_withdrawal
    if amount > available:
        return WithdrawalDecision.reject(
            amount,
            RejectionReason.INSUFFICIENT_BALANCE,
            f"Insufficient commission balance. Available: {format_cedis(available)}, "
            f"Requested: {format_cedis(amount)}",
            monthly_count=monthly_count,
        )

    if monthly_count >= max_monthly:
        return WithdrawalDecision.reject(
            amount,
            RejectionReason.MONTHLY_LIMIT_REACHED,
            f"Monthly withdrawal limit reached ({monthly_count}/{max_monthly}). "
            f"You can request again next month.",
            monthly_count=monthly_count,
        )

    return WithdrawalDecision.accept(amount, monthly_count=monthly_count)
