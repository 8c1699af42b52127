"""Withdrawal model."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional
from enum import Enum

from utils.formatters import format_momo_number


class WithdrawalStatus(str, Enum):
    REQUESTED = "requested"
    PROCESSING = "processing"
    PAID = "paid"
    REJECTED = "rejected"


ACTIVE_WITHDRAWAL_STATUSES = frozenset({WithdrawalStatus.REQUESTED, WithdrawalStatus.PROCESSING})


@dataclass
class Withdrawal:
    """Withdrawal request data model."""

    id: int
    agent_id: int
    amount: Decimal
    momo_number: str
    status: WithdrawalStatus
    request_token: Optional[str]
    requested_at: datetime
    processing_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    admin_notes: Optional[str] = None
    payout_reference: Optional[str] = None

    @classmethod
    def from_row(cls, row) -> "Withdrawal":
        """Create Withdrawal from database row."""
        return cls(
            id=row["id"],
            agent_id=row["agent_id"],
            amount=row["amount"],
            momo_number=row["momo_number"],
            status=WithdrawalStatus(row["status"]),
            request_token=row["request_token"],
            requested_at=row["requested_at"],
            processing_at=row["processing_at"],
            processed_at=row["processed_at"],
            admin_notes=row["admin_notes"],
            payout_reference=row["payout_reference"],
        )

    @property
    def is_active(self) -> bool:
        """Check if the request still awaits settlement."""
        return self.status in ACTIVE_WITHDRAWAL_STATUSES

    @property
    def masked_momo_number(self) -> str:
        """Get masked payout destination."""
        return format_momo_number(self.momo_number)


@dataclass
class WithdrawalAuditEntry:
    """Audit trail record written on settlement."""

    id: int
    withdrawal_id: int
    agent_id: int
    action: str
    amount: Decimal
    orders_marked: int
    amount_marked: Decimal
    actor: Optional[str]
    payout_reference: Optional[str]
    created_at: datetime

    @classmethod
    def from_row(cls, row) -> "WithdrawalAuditEntry":
        """Create WithdrawalAuditEntry from database row."""
        return cls(
            id=row["id"],
            withdrawal_id=row["withdrawal_id"],
            agent_id=row["agent_id"],
            action=row["action"],
            amount=row["amount"],
            orders_marked=row["orders_marked"],
            amount_marked=row["amount_marked"],
            actor=row["actor"],
            payout_reference=row["payout_reference"],
            created_at=row["created_at"],
        )
