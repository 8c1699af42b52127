"""Withdrawal repository for database operations."""

from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Iterable

import asyncpg

from database.connection import Database
from database.models import Withdrawal, WithdrawalAuditEntry, WithdrawalStatus


class WithdrawalRepository:
    """Repository for withdrawal requests and their audit trail."""

    def __init__(self, db: Database):
        self.db = db

    async def create(
        self,
        conn: asyncpg.Connection,
        agent_id: int,
        amount: Decimal,
        momo_number: str,
        request_token: Optional[str] = None,
    ) -> Withdrawal:
        """
        Insert a withdrawal in 'requested' status.

        Raises asyncpg.UniqueViolationError when the agent already has an
        active request (partial unique index) or reuses a request token.
        """
        row = await conn.fetchrow(
            """
            INSERT INTO withdrawals (agent_id, amount, momo_number, status, request_token)
            VALUES ($1, $2, $3, 'requested', $4)
            RETURNING *
            """,
            agent_id, amount, momo_number, request_token,
        )
        return Withdrawal.from_row(row)

    async def get_by_id(
        self,
        withdrawal_id: int,
        conn: Optional[asyncpg.Connection] = None,
    ) -> Optional[Withdrawal]:
        """Get withdrawal by ID."""
        async with self.db.acquire(conn) as conn:
            row = await conn.fetchrow(
                "SELECT * FROM withdrawals WHERE id = $1",
                withdrawal_id,
            )
            if row:
                return Withdrawal.from_row(row)
            return None

    async def get_by_request_token(
        self,
        agent_id: int,
        request_token: str,
        conn: Optional[asyncpg.Connection] = None,
    ) -> Optional[Withdrawal]:
        """Get the withdrawal a client token already produced."""
        async with self.db.acquire(conn) as conn:
            row = await conn.fetchrow(
                "SELECT * FROM withdrawals WHERE agent_id = $1 AND request_token = $2",
                agent_id, request_token,
            )
            if row:
                return Withdrawal.from_row(row)
            return None

    async def get_active(
        self,
        agent_id: int,
        conn: Optional[asyncpg.Connection] = None,
    ) -> Optional[Withdrawal]:
        """Get the agent's requested/processing withdrawal, if any."""
        async with self.db.acquire(conn) as conn:
            row = await conn.fetchrow(
                """
                SELECT * FROM withdrawals
                WHERE agent_id = $1
                AND status IN ('requested', 'processing')
                ORDER BY requested_at DESC
                LIMIT 1
                """,
                agent_id,
            )
            if row:
                return Withdrawal.from_row(row)
            return None

    async def get_history_since(
        self,
        agent_id: int,
        since: datetime,
        conn: Optional[asyncpg.Connection] = None,
    ) -> List[Withdrawal]:
        """
        Get withdrawals requested since ``since`` plus any still active.

        This is everything the eligibility rules look at.
        """
        async with self.db.acquire(conn) as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM withdrawals
                WHERE agent_id = $1
                AND (requested_at >= $2 OR status IN ('requested', 'processing'))
                ORDER BY requested_at ASC
                """,
                agent_id, since,
            )
            return [Withdrawal.from_row(row) for row in rows]

    async def compare_and_set_status(
        self,
        conn: asyncpg.Connection,
        withdrawal_id: int,
        expected_statuses: Iterable[WithdrawalStatus],
        new_status: WithdrawalStatus,
        admin_notes: Optional[str] = None,
        payout_reference: Optional[str] = None,
    ) -> Optional[Withdrawal]:
        """
        Move a withdrawal to ``new_status`` only from one of ``expected_statuses``.

        Returns the updated withdrawal, or None when the status had already moved.
        """
        row = await conn.fetchrow(
            """
            UPDATE withdrawals
            SET status = $3,
                processing_at = CASE WHEN $3 = 'processing' THEN now() ELSE processing_at END,
                processed_at = CASE WHEN $3 IN ('paid', 'rejected') THEN now() ELSE processed_at END,
                admin_notes = COALESCE($4, admin_notes),
                payout_reference = COALESCE($5, payout_reference)
            WHERE id = $1 AND status = ANY($2::text[])
            RETURNING *
            """,
            withdrawal_id,
            [status.value for status in expected_statuses],
            new_status.value,
            admin_notes,
            payout_reference,
        )
        if row:
            return Withdrawal.from_row(row)
        return None

    async def add_audit_entry(
        self,
        conn: asyncpg.Connection,
        withdrawal: Withdrawal,
        action: str,
        orders_marked: int = 0,
        amount_marked: Decimal = Decimal("0.00"),
        actor: Optional[str] = None,
        payout_reference: Optional[str] = None,
    ) -> WithdrawalAuditEntry:
        """Record a settlement in the audit trail."""
        row = await conn.fetchrow(
            """
            INSERT INTO withdrawal_audit_log
            (withdrawal_id, agent_id, action, amount, orders_marked, amount_marked, actor, payout_reference)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            RETURNING *
            """,
            withdrawal.id, withdrawal.agent_id, action, withdrawal.amount,
            orders_marked, amount_marked, actor, payout_reference,
        )
        return WithdrawalAuditEntry.from_row(row)

    async def get_audit_entries(self, withdrawal_id: int) -> List[WithdrawalAuditEntry]:
        """Get the audit trail of a withdrawal."""
        async with self.db.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM withdrawal_audit_log
                WHERE withdrawal_id = $1
                ORDER BY created_at ASC, id ASC
                """,
                withdrawal_id,
            )
            return [WithdrawalAuditEntry.from_row(row) for row in rows]
