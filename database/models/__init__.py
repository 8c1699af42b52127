from .agent import Agent
from .commissionable_order import (
    CommissionableOrder,
    CommissionableOrderDraft,
    OrderStatus,
    SourceType,
    TERMINAL_ORDER_STATUSES,
)
from .sources import (
    CommissionSource,
    DataOrderRecord,
    ReferralRecord,
    WholesaleOrderRecord,
)
from .withdrawal import (
    ACTIVE_WITHDRAWAL_STATUSES,
    Withdrawal,
    WithdrawalAuditEntry,
    WithdrawalStatus,
)
from .commission_summary import CommissionSummary

__all__ = [
    "Agent",
    "CommissionableOrder",
    "CommissionableOrderDraft",
    "OrderStatus",
    "SourceType",
    "TERMINAL_ORDER_STATUSES",
    "CommissionSource",
    "DataOrderRecord",
    "ReferralRecord",
    "WholesaleOrderRecord",
    "ACTIVE_WITHDRAWAL_STATUSES",
    "Withdrawal",
    "WithdrawalAuditEntry",
    "WithdrawalStatus",
    "CommissionSummary",
]
