"""Order status state machine for commission-bearing orders."""

import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional, Tuple, Union

from database.connection import Database
from database.models import (
    CommissionSource,
    CommissionableOrder,
    OrderStatus,
)
from database.repositories import AgentRepository, CommissionableOrderRepository
from core.notifications import ChangeNotifier
from config.constants import EVENT_COMMISSION_SUMMARY_CHANGED, EVENT_ORDER_STATUS_CHANGED
from services.errors import InvalidStatus, InvalidTransition, OrderNotFound

logger = logging.getLogger(__name__)

# Terminal statuses map to an empty set. Admins may complete a pending order directly.
ALLOWED_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.COMPLETED, OrderStatus.CANCELED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELED: frozenset(),
}


def parse_status(value: Union[str, OrderStatus]) -> OrderStatus:
    """
    Parse an order status.

    Raises:
        InvalidStatus: if the value is not one of the four order statuses
    """
    if isinstance(value, OrderStatus):
        return value
    if not isinstance(value, str):
        raise InvalidStatus(value)
    try:
        return OrderStatus(value)
    except ValueError:
        raise InvalidStatus(value)


def check_transition(order_id: int, current: OrderStatus, target: OrderStatus) -> bool:
    """
    Check a status change against the transition table.

    Returns:
        True if the order has to change, False for a same-status no-op

    Raises:
        InvalidTransition: if ``target`` is not reachable from ``current``
    """
    if current == target:
        return False
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransition(order_id, current.value, target.value)
    return True


@dataclass
class TransitionResult:
    """Result of a status transition."""
    order: CommissionableOrder
    previous_status: OrderStatus
    changed: bool

    @property
    def became_payable(self) -> bool:
        return self.changed and self.order.status == OrderStatus.COMPLETED


class OrderStatusService:
    """Applies status transitions and records new sales."""

    def __init__(self, db: Database, notifier: Optional[ChangeNotifier] = None):
        self.db = db
        self.order_repo = CommissionableOrderRepository(db)
        self.agent_repo = AgentRepository(db)
        self.notifier = notifier or ChangeNotifier()

    async def transition(
        self,
        order_id: int,
        new_status: Union[str, OrderStatus],
    ) -> TransitionResult:
        """
        Move an order to ``new_status``.

        The write only succeeds if the order still has the status it was
        validated against; otherwise the fresh status is validated again.
        Entering 'completed' credits the fixed commission to the agent's
        rollup in the same transaction.

        Raises:
            InvalidStatus, OrderNotFound, InvalidTransition
        """
        target = parse_status(new_status)

        # Each miss means the order advanced; the table is acyclic so this is bounded.
        for _ in range(len(OrderStatus)):
            order = await self.order_repo.get_by_id(order_id)
            if order is None:
                raise OrderNotFound(order_id)

            if not check_transition(order_id, order.status, target):
                logger.info(f"[TRANSITION] Order {order_id} already {target.value}, no-op")
                return TransitionResult(order=order, previous_status=order.status, changed=False)

            async with self.db.transaction() as conn:
                updated = await self.order_repo.compare_and_set_status(
                    conn, order_id, order.status, target
                )
                if updated is not None:
                    if target == OrderStatus.COMPLETED:
                        await self.agent_repo.apply_rollup_delta(
                            conn, updated.agent_id, commissions_delta=updated.commission_amount
                        )
                        await self.notifier.publish(
                            conn, EVENT_COMMISSION_SUMMARY_CHANGED, updated.agent_id,
                            order_id=order_id,
                        )
                    await self.notifier.publish(
                        conn, EVENT_ORDER_STATUS_CHANGED, updated.agent_id,
                        order_id=order_id,
                        previous_status=order.status.value,
                        status=target.value,
                    )

            if updated is not None:
                logger.info(
                    f"[TRANSITION] Order {order_id} {order.status.value} -> {target.value} "
                    f"(agent {updated.agent_id}, commission {updated.commission_amount})"
                )
                return TransitionResult(order=updated, previous_status=order.status, changed=True)

            logger.info(f"[TRANSITION] Order {order_id} changed concurrently, re-checking")

        raise InvalidTransition(order_id, order.status.value, target.value)

    async def register_order(self, source: CommissionSource) -> Tuple[CommissionableOrder, bool]:
        """
        Record a sale-flow record.

        Returns:
            (order, created); a replayed record returns the stored order
        """
        async with self.db.transaction() as conn:
            order, created = await self.order_repo.record_sale(source, conn=conn)
            if created and order.status == OrderStatus.COMPLETED:
                await self.notifier.publish(
                    conn, EVENT_COMMISSION_SUMMARY_CHANGED, order.agent_id, order_id=order.id
                )

        if created:
            logger.info(
                f"Recorded {order.source_type.value} {order.source_ref} for agent {order.agent_id}: "
                f"commission {order.commission_amount} ({order.status.value})"
            )
        return order, created
