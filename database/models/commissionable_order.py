"""Commissionable order model."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional
from enum import Enum


class SourceType(str, Enum):
    REFERRAL = "referral"
    DATA_ORDER = "data_order"
    WHOLESALE_ORDER = "wholesale_order"


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELED = "canceled"


TERMINAL_ORDER_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELED})


@dataclass(frozen=True)
class CommissionableOrderDraft:
    """Common fields a sale-flow record maps to before it is stored."""

    agent_id: int
    source_type: SourceType
    source_ref: str
    commission_amount: Decimal
    status: OrderStatus = OrderStatus.PENDING
    created_at: Optional[datetime] = None


@dataclass
class CommissionableOrder:
    """Commission-bearing order (referral, data order or wholesale order)."""

    id: int
    agent_id: int
    source_type: SourceType
    source_ref: str
    status: OrderStatus
    commission_amount: Decimal
    commission_paid: bool
    withdrawal_id: Optional[int]
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime]

    @classmethod
    def from_row(cls, row) -> "CommissionableOrder":
        """Create CommissionableOrder from database row."""
        return cls(
            id=row["id"],
            agent_id=row["agent_id"],
            source_type=SourceType(row["source_type"]),
            source_ref=row["source_ref"],
            status=OrderStatus(row["status"]),
            commission_amount=row["commission_amount"],
            commission_paid=bool(row["commission_paid"]),
            withdrawal_id=row["withdrawal_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            completed_at=row["completed_at"],
        )

    @property
    def is_terminal(self) -> bool:
        """Check if the order can no longer change status."""
        return self.status in TERMINAL_ORDER_STATUSES

    @property
    def is_payable(self) -> bool:
        """Check if the commission counts toward the available balance."""
        return self.status == OrderStatus.COMPLETED and not self.commission_paid
