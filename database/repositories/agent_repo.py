"""Agent repository for database operations."""

from decimal import Decimal
from typing import Optional, List

import asyncpg

from database.connection import Database
from database.models import Agent


class AgentRepository:
    """Repository for agent rollup operations."""

    def __init__(self, db: Database):
        self.db = db

    async def create(self, full_name: Optional[str] = None) -> Agent:
        """Create a new agent with zero rollups."""
        async with self.db.acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO agents (full_name)
                VALUES ($1)
                RETURNING *
                """,
                full_name,
            )
            return Agent.from_row(row)

    async def get_by_id(
        self,
        agent_id: int,
        conn: Optional[asyncpg.Connection] = None,
    ) -> Optional[Agent]:
        """Get agent by ID."""
        async with self.db.acquire(conn) as conn:
            row = await conn.fetchrow(
                "SELECT * FROM agents WHERE id = $1",
                agent_id,
            )
            if row:
                return Agent.from_row(row)
            return None

    async def lock_for_update(self, conn: asyncpg.Connection, agent_id: int) -> Optional[Agent]:
        """
        Lock the agent row for the rest of the caller's transaction.

        Serializes per-agent check-then-insert sequences across processes.
        """
        row = await conn.fetchrow(
            "SELECT * FROM agents WHERE id = $1 FOR UPDATE",
            agent_id,
        )
        if row:
            return Agent.from_row(row)
        return None

    async def apply_rollup_delta(
        self,
        conn: asyncpg.Connection,
        agent_id: int,
        commissions_delta: Decimal = Decimal("0.00"),
        paid_out_delta: Decimal = Decimal("0.00"),
    ) -> None:
        """
        Adjust cached rollups.

        Only called inside the transaction that changes the underlying
        order rows, so the cache never drifts from them.
        """
        await conn.execute(
            """
            UPDATE agents
            SET total_commissions = total_commissions + $1,
                total_paid_out = total_paid_out + $2,
                updated_at = now()
            WHERE id = $3
            """,
            commissions_delta, paid_out_delta, agent_id,
        )

    async def set_rollups(
        self,
        conn: asyncpg.Connection,
        agent_id: int,
        total_commissions: Decimal,
        total_paid_out: Decimal,
    ) -> None:
        """Overwrite cached rollups with recomputed values."""
        await conn.execute(
            """
            UPDATE agents
            SET total_commissions = $1,
                total_paid_out = $2,
                updated_at = now()
            WHERE id = $3
            """,
            total_commissions, total_paid_out, agent_id,
        )

    async def get_all_ids(self) -> List[int]:
        """Get all agent IDs."""
        async with self.db.acquire() as conn:
            rows = await conn.fetch("SELECT id FROM agents ORDER BY id")
            return [row["id"] for row in rows]
