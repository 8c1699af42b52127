from .commission_engine import CommissionEngine, WithdrawalSubmission
from .commission_aggregator import CommissionAggregator
from .order_status_service import OrderStatusService, TransitionResult
from .withdrawal_ledger import WithdrawalLedger, SettlementOutcome, SettlementResult
from .withdrawal_validator import RejectionReason, WithdrawalDecision
from .reconciliation_service import ReconciliationService, IntegrityReport

__all__ = [
    "CommissionEngine",
    "WithdrawalSubmission",
    "CommissionAggregator",
    "OrderStatusService",
    "TransitionResult",
    "WithdrawalLedger",
    "SettlementOutcome",
    "SettlementResult",
    "RejectionReason",
    "WithdrawalDecision",
    "ReconciliationService",
    "IntegrityReport",
]
