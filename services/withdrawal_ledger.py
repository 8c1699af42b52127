"""Withdrawal ledger: request lifecycle and settlement."""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Iterable, List, Optional, Union

import asyncpg

from config.constants import EVENT_COMMISSION_SUMMARY_CHANGED, EVENT_WITHDRAWAL_STATUS_CHANGED
from core.notifications import ChangeNotifier
from database.connection import Database
from database.models import (
    ACTIVE_WITHDRAWAL_STATUSES,
    CommissionableOrder,
    Withdrawal,
    WithdrawalAuditEntry,
    WithdrawalStatus,
)
from database.repositories import (
    AgentRepository,
    CommissionableOrderRepository,
    WithdrawalRepository,
)
from services.errors import (
    InvalidOutcome,
    SettlementConflict,
    SettlementShortfall,
    WithdrawalNotFound,
)
from utils.money import ZERO

logger = logging.getLogger(__name__)


class SettlementOutcome(str, Enum):
    MARK_PAID = "paid"
    MARK_REJECTED = "rejected"


@dataclass
class SettlementResult:
    """Result of settling a withdrawal."""
    withdrawal: Withdrawal
    outcome: SettlementOutcome
    orders_marked: List[CommissionableOrder] = field(default_factory=list)
    amount_marked: Decimal = ZERO
    audit_entry: Optional[WithdrawalAuditEntry] = None

    @property
    def overshoot(self) -> Decimal:
        """Commission marked paid beyond the withdrawn amount."""
        if self.outcome != SettlementOutcome.MARK_PAID:
            return ZERO
        return self.amount_marked - self.withdrawal.amount


def select_orders_to_mark(
    orders: Iterable[CommissionableOrder],
    amount: Decimal,
) -> Optional[List[CommissionableOrder]]:
    """
    Pick the shortest oldest-first run of whole orders covering ``amount``.

    Orders are never split, so the selection may overshoot by less than the
    last order's commission.

    Returns:
        Selected orders, or None if all of them together fall short
    """
    ordered = sorted(orders, key=lambda o: (o.created_at, o.id))
    selected = []
    covered = ZERO
    for order in ordered:
        if covered >= amount:
            break
        selected.append(order)
        covered += order.commission_amount

    if covered < amount:
        return None
    return selected


# Outcome names used by payout callbacks
OUTCOME_ALIASES = {
    "markPaid": SettlementOutcome.MARK_PAID,
    "markRejected": SettlementOutcome.MARK_REJECTED,
    "MARK_PAID": SettlementOutcome.MARK_PAID,
    "MARK_REJECTED": SettlementOutcome.MARK_REJECTED,
}


def _parse_outcome(outcome: Union[str, SettlementOutcome]) -> SettlementOutcome:
    if isinstance(outcome, SettlementOutcome):
        return outcome
    if outcome in OUTCOME_ALIASES:
        return OUTCOME_ALIASES[outcome]
    try:
        return SettlementOutcome(outcome)
    except ValueError:
        raise InvalidOutcome(outcome) from None


class WithdrawalLedger:
    """Creates, advances and settles withdrawal requests."""

    def __init__(self, db: Database, notifier: Optional[ChangeNotifier] = None):
        self.db = db
        self.withdrawal_repo = WithdrawalRepository(db)
        self.order_repo = CommissionableOrderRepository(db)
        self.agent_repo = AgentRepository(db)
        self.notifier = notifier or ChangeNotifier()

    async def create(
        self,
        conn: asyncpg.Connection,
        agent_id: int,
        amount: Decimal,
        momo_number: str,
        request_token: Optional[str] = None,
    ) -> Withdrawal:
        """
        Record an accepted withdrawal request.

        Runs on the submission transaction's connection. The partial unique
        index raises asyncpg.UniqueViolationError if another request is active.
        """
        withdrawal = await self.withdrawal_repo.create(
            conn, agent_id, amount, momo_number, request_token
        )
        await self.notifier.publish(
            conn, EVENT_WITHDRAWAL_STATUS_CHANGED, agent_id,
            withdrawal_id=withdrawal.id,
            status=withdrawal.status.value,
        )
        logger.info(f"Withdrawal {withdrawal.id} requested by agent {agent_id} for {amount}")
        return withdrawal

    async def begin_processing(self, withdrawal_id: int, actor: Optional[str] = None) -> Withdrawal:
        """
        Mark a requested withdrawal as being paid out.

        Raises:
            WithdrawalNotFound, SettlementConflict
        """
        async with self.db.transaction() as conn:
            updated = await self.withdrawal_repo.compare_and_set_status(
                conn, withdrawal_id, [WithdrawalStatus.REQUESTED], WithdrawalStatus.PROCESSING
            )
            if updated is None:
                current = await self.withdrawal_repo.get_by_id(withdrawal_id, conn=conn)
                if current is None:
                    raise WithdrawalNotFound(withdrawal_id)
                raise SettlementConflict(withdrawal_id, current.status.value)

            await self.notifier.publish(
                conn, EVENT_WITHDRAWAL_STATUS_CHANGED, updated.agent_id,
                withdrawal_id=withdrawal_id,
                status=updated.status.value,
            )

        logger.info(f"[PROCESS_WITHDRAWAL] Withdrawal {withdrawal_id} processing (actor={actor})")
        return updated

    async def settle(
        self,
        withdrawal_id: int,
        outcome: Union[str, SettlementOutcome],
        actor: Optional[str] = None,
        payout_reference: Optional[str] = None,
        admin_notes: Optional[str] = None,
    ) -> SettlementResult:
        """
        Settle a withdrawal as paid or rejected.

        Paid: the agent's unpaid completed orders are marked paid
        oldest-first, whole orders only, until they cover the amount;
        ``total_paid_out`` grows by the sum actually marked.
        Rejected: no order is touched.

        Raises:
            WithdrawalNotFound: unknown withdrawal
            SettlementConflict: withdrawal is no longer requested/processing
            SettlementShortfall: unpaid commission cannot cover the amount
            InvalidOutcome: unknown outcome name
        """
        outcome = _parse_outcome(outcome)
        target = (
            WithdrawalStatus.PAID
            if outcome == SettlementOutcome.MARK_PAID
            else WithdrawalStatus.REJECTED
        )

        withdrawal = await self.withdrawal_repo.get_by_id(withdrawal_id)
        if withdrawal is None:
            raise WithdrawalNotFound(withdrawal_id)

        logger.info(
            f"[SETTLE_WITHDRAWAL] Withdrawal {withdrawal_id} -> {target.value} "
            f"(agent {withdrawal.agent_id}, amount {withdrawal.amount}, actor={actor})"
        )

        async with self.db.transaction() as conn:
            # Same lock order as submission: agent row first.
            await self.agent_repo.lock_for_update(conn, withdrawal.agent_id)

            updated = await self.withdrawal_repo.compare_and_set_status(
                conn, withdrawal_id, ACTIVE_WITHDRAWAL_STATUSES, target,
                admin_notes=admin_notes,
                payout_reference=payout_reference,
            )
            if updated is None:
                current = await self.withdrawal_repo.get_by_id(withdrawal_id, conn=conn)
                if current is None:
                    raise WithdrawalNotFound(withdrawal_id)
                logger.warning(
                    f"[SETTLE_WITHDRAWAL] Withdrawal {withdrawal_id} already {current.status.value}"
                )
                raise SettlementConflict(withdrawal_id, current.status.value)

            result = SettlementResult(withdrawal=updated, outcome=outcome)

            if outcome == SettlementOutcome.MARK_PAID:
                unpaid = await self.order_repo.lock_unpaid_completed(conn, updated.agent_id)
                selected = select_orders_to_mark(unpaid, updated.amount)
                if selected is None:
                    available = sum((o.commission_amount for o in unpaid), ZERO)
                    logger.error(
                        f"[SETTLE_WITHDRAWAL] Withdrawal {withdrawal_id} for {updated.amount} "
                        f"exceeds unpaid commission {available}"
                    )
                    raise SettlementShortfall(withdrawal_id, updated.amount, available)

                await self.order_repo.mark_paid(conn, [o.id for o in selected], withdrawal_id)
                result.orders_marked = selected
                result.amount_marked = sum((o.commission_amount for o in selected), ZERO)

                await self.agent_repo.apply_rollup_delta(
                    conn, updated.agent_id, paid_out_delta=result.amount_marked
                )
                await self.notifier.publish(
                    conn, EVENT_COMMISSION_SUMMARY_CHANGED, updated.agent_id,
                    withdrawal_id=withdrawal_id,
                )

            result.audit_entry = await self.withdrawal_repo.add_audit_entry(
                conn,
                updated,
                action=outcome.value,
                orders_marked=len(result.orders_marked),
                amount_marked=result.amount_marked,
                actor=actor,
                payout_reference=payout_reference,
            )
            await self.notifier.publish(
                conn, EVENT_WITHDRAWAL_STATUS_CHANGED, updated.agent_id,
                withdrawal_id=withdrawal_id,
                status=updated.status.value,
            )

        logger.info(
            f"[SETTLE_WITHDRAWAL] Withdrawal {withdrawal_id} {updated.status.value}: "
            f"{len(result.orders_marked)} orders marked, {result.amount_marked} paid out"
        )
        return result
