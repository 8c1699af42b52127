from .agent_repo import AgentRepository
from .commissionable_order_repo import CommissionableOrderRepository
from .withdrawal_repo import WithdrawalRepository

__all__ = [
    "AgentRepository",
    "CommissionableOrderRepository",
    "WithdrawalRepository",
]
