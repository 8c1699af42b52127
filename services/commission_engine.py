"""Commission engine: the operations dashboards call."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Optional, TypeVar, Union

import asyncpg

from config import settings
from core.notifications import ChangeNotifier
from database.connection import Database
from database.models import CommissionSummary, OrderStatus, Withdrawal, WithdrawalStatus
from database.repositories import AgentRepository, WithdrawalRepository
from services.commission_aggregator import CommissionAggregator
from services.errors import AggregationUnavailable, OperationTimeout, TokenReuse
from services.order_status_service import OrderStatusService, TransitionResult
from services.reconciliation_service import ReconciliationService, legacy_summary
from services.withdrawal_ledger import SettlementOutcome, SettlementResult, WithdrawalLedger
from services.withdrawal_validator import (
    RejectionReason,
    WithdrawalDecision,
    month_start,
    normalize_amount,
    validate,
)
from utils.formatters import format_cedis

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class WithdrawalSubmission:
    """Result of a withdrawal submission."""
    decision: WithdrawalDecision
    withdrawal: Optional[Withdrawal] = None
    summary: Optional[CommissionSummary] = None
    replayed: bool = False

    @property
    def accepted(self) -> bool:
        return self.decision.accepted

    @property
    def reason(self) -> Optional[RejectionReason]:
        return self.decision.reason

    @property
    def message(self) -> Optional[str]:
        return self.decision.message

    @property
    def retryable(self) -> bool:
        return self.decision.retryable

    @property
    def status(self) -> Optional[WithdrawalStatus]:
        """Current status of the recorded withdrawal, if one exists."""
        return self.withdrawal.status if self.withdrawal else None


class CommissionEngine:
    """
    Order transitions, balance reads, withdrawal submission and settlement.

    Every operation accepts ``timeout`` in seconds (default from settings).
    On expiry OperationTimeout is raised and the open transaction rolls back,
    so the call can be retried; withdrawal submissions should pass a
    ``request_token`` so a retry returns the first request.
    """

    def __init__(
        self,
        db: Database,
        notifier: Optional[ChangeNotifier] = None,
        operation_timeout: Optional[float] = None,
    ):
        self.db = db
        self.notifier = notifier or ChangeNotifier()
        self.operation_timeout = operation_timeout or settings.operation_timeout_seconds

        self.agent_repo = AgentRepository(db)
        self.withdrawal_repo = WithdrawalRepository(db)
        self.aggregator = CommissionAggregator(db)
        self.order_status = OrderStatusService(db, self.notifier)
        self.ledger = WithdrawalLedger(db, self.notifier)
        self.reconciliation = ReconciliationService(db)

    async def _bounded(self, operation: str, coro: Awaitable[T], timeout: Optional[float]) -> T:
        timeout = self.operation_timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(coro, timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[{operation}] Timed out after {timeout}s")
            raise OperationTimeout(operation, timeout)

    async def transition_order_status(
        self,
        order_id: int,
        new_status: Union[str, OrderStatus],
        timeout: Optional[float] = None,
    ) -> TransitionResult:
        """Change an order's status (see OrderStatusService.transition)."""
        return await self._bounded(
            "TRANSITION_ORDER",
            self.order_status.transition(order_id, new_status),
            timeout,
        )

    async def get_commission_summary(
        self,
        agent_id: int,
        timeout: Optional[float] = None,
    ) -> CommissionSummary:
        """
        Get an agent's commission summary for display.

        Falls back to the cached rollups (``degraded=True``) when the order
        rows cannot be aggregated.

        Raises:
            AggregationUnavailable: if neither source can be read
        """
        return await self._bounded("GET_SUMMARY", self._get_summary(agent_id), timeout)

    async def _get_summary(self, agent_id: int) -> CommissionSummary:
        try:
            return await self.aggregator.summarize(agent_id)
        except AggregationUnavailable as e:
            logger.warning(f"[GET_SUMMARY] Aggregation failed for agent {agent_id}, using rollups: {e}")
        return await self.reconciliation.legacy_balance(agent_id)

    async def submit_withdrawal(
        self,
        agent_id: int,
        amount,
        payout_destination: str,
        request_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> WithdrawalSubmission:
        """
        Validate and record a withdrawal request atomically.

        Raises:
            InvalidAmount: if the amount is not a number
            TokenReuse: if request_token was already used with another amount or destination
            OperationTimeout: if the deadline passes
        """
        amount = normalize_amount(amount)
        return await self._bounded(
            "SUBMIT_WITHDRAWAL",
            self._submit(agent_id, amount, payout_destination, request_token),
            timeout,
        )

    async def _submit(self, agent_id, amount, payout_destination, request_token) -> WithdrawalSubmission:
        logger.info(f"[SUBMIT_WITHDRAWAL] Agent {agent_id} requests {amount}")

        if request_token:
            existing = await self.withdrawal_repo.get_by_request_token(agent_id, request_token)
            if existing is not None:
                logger.info(f"[SUBMIT_WITHDRAWAL] Token replay, returning withdrawal {existing.id}")
                return self._replayed(existing, amount, payout_destination)

        now = datetime.now(timezone.utc)
        try:
            async with self.db.transaction() as conn:
                # Serializes submissions per agent
                agent = await self.agent_repo.lock_for_update(conn, agent_id)

                degraded = False
                try:
                    async with conn.transaction():
                        summary = await self.aggregator.summarize(agent_id, conn=conn)
                except AggregationUnavailable:
                    if agent is None:
                        raise
                    summary = legacy_summary(agent)
                    degraded = True

                history = await self.withdrawal_repo.get_history_since(
                    agent_id, month_start(now), conn=conn
                )
                decision = validate(agent_id, amount, summary, history, now=now)

                if not decision.accepted:
                    logger.info(f"[SUBMIT_WITHDRAWAL] Agent {agent_id} rejected: {decision.reason.value}")
                    return WithdrawalSubmission(decision=decision, summary=summary)

                if degraded:
                    logger.warning(
                        f"[SUBMIT_WITHDRAWAL] Agent {agent_id} passed checks on cached rollups only, deferring"
                    )
                    return WithdrawalSubmission(
                        decision=WithdrawalDecision.reject(
                            amount,
                            RejectionReason.TEMPORARILY_UNAVAILABLE,
                            "Your commission balance cannot be confirmed right now. Please try again shortly.",
                            monthly_count=decision.monthly_count,
                        ),
                        summary=summary,
                    )

                withdrawal = await self.ledger.create(
                    conn, agent_id, amount, payout_destination, request_token
                )
        except asyncpg.UniqueViolationError:
            return await self._resolve_conflict(agent_id, amount, payout_destination, request_token)

        logger.info(f"[SUBMIT_WITHDRAWAL] Agent {agent_id} withdrawal {withdrawal.id} accepted")
        return WithdrawalSubmission(decision=decision, withdrawal=withdrawal, summary=summary)

    async def _resolve_conflict(self, agent_id, amount, payout_destination, request_token) -> WithdrawalSubmission:
        """Map a unique violation on insert to a replay or a pending rejection."""
        if request_token:
            existing = await self.withdrawal_repo.get_by_request_token(agent_id, request_token)
            if existing is not None:
                return self._replayed(existing, amount, payout_destination)

        pending = await self.withdrawal_repo.get_active(agent_id)
        if pending is None:
            message = "You already have a pending withdrawal."
        else:
            message = (
                f"You already have a pending withdrawal of {format_cedis(pending.amount)} "
                f"(status: {pending.status.value}). Wait for it to be processed before requesting another."
            )
        logger.info(f"[SUBMIT_WITHDRAWAL] Agent {agent_id} lost race to an active withdrawal")
        return WithdrawalSubmission(
            decision=WithdrawalDecision.reject(
                amount,
                RejectionReason.PENDING_WITHDRAWAL_EXISTS,
                message,
                pending_withdrawal=pending,
            )
        )

    @staticmethod
    def _replayed(withdrawal: Withdrawal, amount, payout_destination: str) -> WithdrawalSubmission:
        """
        Answer a retry with the request its token first recorded.

        ``accepted`` stays true (the request was recorded); ``status`` and the
        message carry where it stands now.
        """
        if withdrawal.amount != amount or withdrawal.momo_number != payout_destination:
            logger.warning(
                f"[SUBMIT_WITHDRAWAL] Token {withdrawal.request_token} reused with different details "
                f"for withdrawal {withdrawal.id}"
            )
            raise TokenReuse(withdrawal.request_token, withdrawal.id)

        decision = WithdrawalDecision.accept(withdrawal.amount)
        decision.message = (
            f"Withdrawal of {format_cedis(withdrawal.amount)} already recorded "
            f"(status: {withdrawal.status.value})."
        )
        return WithdrawalSubmission(decision=decision, withdrawal=withdrawal, replayed=True)

    async def settle_withdrawal(
        self,
        withdrawal_id: int,
        outcome: Union[str, SettlementOutcome],
        actor: Optional[str] = None,
        payout_reference: Optional[str] = None,
        admin_notes: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> SettlementResult:
        """Settle a withdrawal (see WithdrawalLedger.settle)."""
        return await self._bounded(
            "SETTLE_WITHDRAWAL",
            self.ledger.settle(
                withdrawal_id,
                outcome,
                actor=actor,
                payout_reference=payout_reference,
                admin_notes=admin_notes,
            ),
            timeout,
        )
