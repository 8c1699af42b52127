"""Commissionable order repository for database operations."""

from typing import Optional, List, Sequence, Tuple

import asyncpg

from config.constants import DEFAULT_PAGE_SIZE
from database.connection import Database
from database.models import (
    CommissionSource,
    CommissionableOrder,
    CommissionableOrderDraft,
    OrderStatus,
    SourceType,
)


class CommissionableOrderRepository:
    """Repository for commission-bearing orders across all sources."""

    def __init__(self, db: Database):
        self.db = db

    async def create(
        self,
        conn: asyncpg.Connection,
        draft: CommissionableOrderDraft,
    ) -> Optional[CommissionableOrder]:
        """
        Insert an order from its common fields.

        Returns None if the (source_type, source_ref) pair was already recorded.
        """
        row = await conn.fetchrow(
            """
            INSERT INTO commissionable_orders (
                agent_id, source_type, source_ref, status, commission_amount,
                created_at, completed_at
            )
            VALUES ($1, $2, $3, $4, $5, COALESCE($6, now()),
                    CASE WHEN $4 = 'completed' THEN now() END)
            ON CONFLICT (source_type, source_ref) DO NOTHING
            RETURNING *
            """,
            draft.agent_id,
            draft.source_type.value,
            draft.source_ref,
            draft.status.value,
            draft.commission_amount,
            draft.created_at,
        )
        if row:
            return CommissionableOrder.from_row(row)
        return None

    async def record_sale(
        self,
        source: CommissionSource,
        conn: Optional[asyncpg.Connection] = None,
    ) -> Tuple[CommissionableOrder, bool]:
        """
        Record a sale-flow record as a commissionable order.

        Recording the same source record twice returns the stored order.
        A record that arrives already completed credits the agent's
        ``total_commissions`` rollup in the same transaction.

        Returns:
            (order, created)
        """
        draft = source.to_draft()
        async with self.db.acquire(conn) as conn:
            async with conn.transaction():
                order = await self.create(conn, draft)
                if order is None:
                    existing = await self.get_by_source(draft.source_type, draft.source_ref, conn=conn)
                    return existing, False

                if order.status == OrderStatus.COMPLETED:
                    await conn.execute(
                        """
                        UPDATE agents
                        SET total_commissions = total_commissions + $1,
                            updated_at = now()
                        WHERE id = $2
                        """,
                        order.commission_amount, order.agent_id,
                    )
                return order, True

    async def get_by_id(
        self,
        order_id: int,
        conn: Optional[asyncpg.Connection] = None,
    ) -> Optional[CommissionableOrder]:
        """Get order by ID."""
        async with self.db.acquire(conn) as conn:
            row = await conn.fetchrow(
                "SELECT * FROM commissionable_orders WHERE id = $1",
                order_id,
            )
            if row:
                return CommissionableOrder.from_row(row)
            return None

    async def get_by_source(
        self,
        source_type: SourceType,
        source_ref: str,
        conn: Optional[asyncpg.Connection] = None,
    ) -> Optional[CommissionableOrder]:
        """Get order by its native source record."""
        async with self.db.acquire(conn) as conn:
            row = await conn.fetchrow(
                """
                SELECT * FROM commissionable_orders
                WHERE source_type = $1 AND source_ref = $2
                """,
                source_type.value, source_ref,
            )
            if row:
                return CommissionableOrder.from_row(row)
            return None

    async def compare_and_set_status(
        self,
        conn: asyncpg.Connection,
        order_id: int,
        expected_status: OrderStatus,
        new_status: OrderStatus,
    ) -> Optional[CommissionableOrder]:
        """
        Move an order to ``new_status`` only if it is still ``expected_status``.

        Returns the updated order, or None when another writer got there first.
        """
        row = await conn.fetchrow(
            """
            UPDATE commissionable_orders
            SET status = $3,
                updated_at = now(),
                completed_at = CASE WHEN $3 = 'completed' THEN now() ELSE completed_at END
            WHERE id = $1 AND status = $2
            RETURNING *
            """,
            order_id, expected_status.value, new_status.value,
        )
        if row:
            return CommissionableOrder.from_row(row)
        return None

    async def get_agent_orders(
        self,
        agent_id: int,
        status: Optional[OrderStatus] = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> List[CommissionableOrder]:
        """Get orders for an agent with pagination."""
        async with self.db.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM commissionable_orders
                WHERE agent_id = $1
                AND ($2::text IS NULL OR status = $2)
                ORDER BY created_at DESC, id DESC
                LIMIT $3 OFFSET $4
                """,
                agent_id, status.value if status else None, limit, offset,
            )
            return [CommissionableOrder.from_row(row) for row in rows]

    async def sum_completed_by_source(
        self,
        agent_id: int,
        conn: Optional[asyncpg.Connection] = None,
    ) -> List[asyncpg.Record]:
        """
        Paid and unpaid commission of completed orders, per source type.

        A single statement, so the result is one consistent snapshot.
        Rows: source_type, unpaid, paid.
        """
        async with self.db.acquire(conn) as conn:
            return await conn.fetch(
                """
                SELECT
                    source_type,
                    COALESCE(SUM(commission_amount) FILTER (WHERE NOT commission_paid), 0) AS unpaid,
                    COALESCE(SUM(commission_amount) FILTER (WHERE commission_paid), 0) AS paid
                FROM commissionable_orders
                WHERE agent_id = $1 AND status = 'completed'
                GROUP BY source_type
                """,
                agent_id,
            )

    async def lock_unpaid_completed(
        self,
        conn: asyncpg.Connection,
        agent_id: int,
    ) -> List[CommissionableOrder]:
        """Lock the agent's payable orders, oldest first."""
        rows = await conn.fetch(
            """
            SELECT * FROM commissionable_orders
            WHERE agent_id = $1
            AND status = 'completed'
            AND NOT commission_paid
            ORDER BY created_at ASC, id ASC
            FOR UPDATE
            """,
            agent_id,
        )
        return [CommissionableOrder.from_row(row) for row in rows]

    async def mark_paid(
        self,
        conn: asyncpg.Connection,
        order_ids: Sequence[int],
        withdrawal_id: int,
    ) -> int:
        """Flip commission_paid on the given unpaid orders. Returns rows changed."""
        if not order_ids:
            return 0
        result = await conn.execute(
            """
            UPDATE commissionable_orders
            SET commission_paid = TRUE,
                withdrawal_id = $2,
                updated_at = now()
            WHERE id = ANY($1::int[])
            AND status = 'completed'
            AND NOT commission_paid
            """,
            list(order_ids), withdrawal_id,
        )
        # asyncpg returns the command tag, e.g. "UPDATE 3"
        return int(result.split()[-1])

    async def get_by_withdrawal(self, withdrawal_id: int) -> List[CommissionableOrder]:
        """Get the orders a withdrawal paid off."""
        async with self.db.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM commissionable_orders
                WHERE withdrawal_id = $1
                ORDER BY created_at ASC, id ASC
                """,
                withdrawal_id,
            )
            return [CommissionableOrder.from_row(row) for row in rows]
