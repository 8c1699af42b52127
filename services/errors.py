"""Exceptions raised by the commission engine.

Business rejections of a withdrawal are not exceptions; they come back as a
``WithdrawalDecision`` with a ``RejectionReason``.
"""

from typing import Optional


class CommissionEngineError(Exception):
    """Base class for commission engine errors."""

    retryable = False


class InvalidStatus(CommissionEngineError):
    """Status string is not a known order status."""

    def __init__(self, status):
        self.status = status
        super().__init__(f"Unknown order status: {status!r}")


class InvalidTransition(CommissionEngineError):
    """Requested status change is not allowed from the current status."""

    def __init__(self, order_id: int, current_status: str, new_status: str):
        self.order_id = order_id
        self.current_status = current_status
        self.new_status = new_status
        super().__init__(
            f"Order {order_id} cannot move from '{current_status}' to '{new_status}'"
        )


class OrderNotFound(CommissionEngineError):
    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__(f"Commissionable order {order_id} not found")


class WithdrawalNotFound(CommissionEngineError):
    def __init__(self, withdrawal_id: int):
        self.withdrawal_id = withdrawal_id
        super().__init__(f"Withdrawal {withdrawal_id} not found")


class AggregationUnavailable(CommissionEngineError):
    """Commission totals could not be read from the store."""

    retryable = True

    def __init__(self, agent_id: int, reason: Optional[str] = None):
        self.agent_id = agent_id
        message = f"Commission summary unavailable for agent {agent_id}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class SettlementConflict(CommissionEngineError):
    """Withdrawal was already settled (or moved) by someone else."""

    def __init__(self, withdrawal_id: int, current_status: str):
        self.withdrawal_id = withdrawal_id
        self.current_status = current_status
        super().__init__(
            f"Withdrawal {withdrawal_id} cannot be settled, status is '{current_status}'"
        )


class SettlementShortfall(CommissionEngineError):
    """Unpaid completed commission does not cover the withdrawal amount."""

    def __init__(self, withdrawal_id: int, amount, available):
        self.withdrawal_id = withdrawal_id
        self.amount = amount
        self.available = available
        super().__init__(
            f"Withdrawal {withdrawal_id} for {amount} exceeds unpaid commission {available}"
        )


class InvalidAmount(CommissionEngineError):
    def __init__(self, amount):
        self.amount = amount
        super().__init__(f"Invalid withdrawal amount: {amount!r}")


class OperationTimeout(CommissionEngineError):
    """Operation did not finish within its deadline. Safe to retry."""

    retryable = True

    def __init__(self, operation: str, timeout: float):
        self.operation = operation
        self.timeout = timeout
        super().__init__(f"{operation} timed out after {timeout}s")


class InvalidOutcome(CommissionEngineError):
    def __init__(self, outcome):
        self.outcome = outcome
        super().__init__(f"Unknown settlement outcome: {outcome!r}")


class TokenReuse(CommissionEngineError):
    """A request token was sent again with a different amount or destination."""

    def __init__(self, request_token: str, withdrawal_id: int):
        self.request_token = request_token
        self.withdrawal_id = withdrawal_id
        super().__init__(
            f"Request token {request_token!r} already used for withdrawal {withdrawal_id} "
            f"with different details"
        )
