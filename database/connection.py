"""PostgreSQL database connection and initialization using asyncpg."""

import asyncpg
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional
import logging

logger = logging.getLogger(__name__)


class Database:
    """Async PostgreSQL database manager using connection pool."""

    def __init__(self, database_url: str, min_size: int = 2, max_size: int = 10):
        self.database_url = database_url
        self.min_size = min_size
        self.max_size = max_size
        self._pool: Optional[asyncpg.Pool] = None

    async def get_connection(self) -> asyncpg.Connection:
        """Get a connection from the pool."""
        if self._pool is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return await self._pool.acquire()

    async def release_connection(self, conn: asyncpg.Connection) -> None:
        """Release a connection back to the pool."""
        if self._pool:
            await self._pool.release(conn)

    @asynccontextmanager
    async def acquire(self, conn: Optional[asyncpg.Connection] = None) -> AsyncIterator[asyncpg.Connection]:
        """
        Yield ``conn`` when the caller already holds one (e.g. inside a
        transaction), otherwise a pooled connection released on exit.
        """
        if conn is not None:
            yield conn
            return

        conn = await self.get_connection()
        try:
            yield conn
        finally:
            await self.release_connection(conn)

    @asynccontextmanager
    async def transaction(self, isolation: str = "read_committed") -> AsyncIterator[asyncpg.Connection]:
        """Run a block in a short-lived transaction on a pooled connection."""
        conn = await self.get_connection()
        try:
            async with conn.transaction(isolation=isolation):
                yield conn
        finally:
            await self.release_connection(conn)

    async def close(self) -> None:
        """Close the connection pool."""
        if self._pool:
            await self._pool.close()
            self._pool = None

    async def initialize(self) -> None:
        """Create connection pool and initialize database tables."""
        # Create connection pool
        self._pool = await asyncpg.create_pool(
            self.database_url,
            min_size=self.min_size,
            max_size=self.max_size,
        )
        logger.info("Database connection pool created")

        # Create tables
        await self._create_tables()
        logger.info("Database tables initialized")

    async def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        conn = await self.get_connection()
        try:
            # Agents table (identity owned elsewhere; rollups owned here)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS agents (
                    id SERIAL PRIMARY KEY,
                    full_name TEXT,
                    total_commissions NUMERIC(12, 2) NOT NULL DEFAULT 0,
                    total_paid_out NUMERIC(12, 2) NOT NULL DEFAULT 0,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
                )
            """)

            # Withdrawals table
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS withdrawals (
                    id SERIAL PRIMARY KEY,
                    agent_id INTEGER NOT NULL,
                    amount NUMERIC(12, 2) NOT NULL CHECK(amount > 0),
                    momo_number TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'requested' CHECK(status IN ('requested', 'processing', 'paid', 'rejected')),
                    request_token TEXT,
                    requested_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                    processing_at TIMESTAMPTZ,
                    processed_at TIMESTAMPTZ,
                    admin_notes TEXT,
                    payout_reference TEXT,
                    FOREIGN KEY (agent_id) REFERENCES agents(id) ON DELETE CASCADE,
                    UNIQUE(agent_id, request_token)
                )
            """)

            # Commission-bearing orders from every source
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS commissionable_orders (
                    id SERIAL PRIMARY KEY,
                    agent_id INTEGER NOT NULL,
                    source_type TEXT NOT NULL CHECK(source_type IN ('referral', 'data_order', 'wholesale_order')),
                    source_ref TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending' CHECK(status IN ('pending', 'processing', 'completed', 'canceled')),
                    commission_amount NUMERIC(12, 2) NOT NULL CHECK(commission_amount >= 0),
                    commission_paid BOOLEAN NOT NULL DEFAULT FALSE,
                    withdrawal_id INTEGER,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                    completed_at TIMESTAMPTZ,
                    FOREIGN KEY (agent_id) REFERENCES agents(id) ON DELETE CASCADE,
                    FOREIGN KEY (withdrawal_id) REFERENCES withdrawals(id),
                    UNIQUE(source_type, source_ref),
                    CHECK(NOT commission_paid OR status = 'completed')
                )
            """)

            # Settlement audit trail
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS withdrawal_audit_log (
                    id SERIAL PRIMARY KEY,
                    withdrawal_id INTEGER NOT NULL,
                    agent_id INTEGER NOT NULL,
                    action TEXT NOT NULL,
                    amount NUMERIC(12, 2) NOT NULL,
                    orders_marked INTEGER NOT NULL DEFAULT 0,
                    amount_marked NUMERIC(12, 2) NOT NULL DEFAULT 0,
                    actor TEXT,
                    payout_reference TEXT,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                    FOREIGN KEY (withdrawal_id) REFERENCES withdrawals(id) ON DELETE CASCADE
                )
            """)

            # Row guards: fixed commission, one-way commission_paid, no delete while processing
            await conn.execute("""
                CREATE OR REPLACE FUNCTION guard_commissionable_orders() RETURNS trigger AS $$
                BEGIN
                    IF TG_OP = 'DELETE' THEN
                        IF OLD.status = 'processing' THEN
                            RAISE EXCEPTION 'commissionable order % cannot be deleted while processing', OLD.id;
                        END IF;
                        RETURN OLD;
                    END IF;
                    IF NEW.commission_amount <> OLD.commission_amount THEN
                        RAISE EXCEPTION 'commission_amount of order % is immutable', OLD.id;
                    END IF;
                    IF OLD.commission_paid AND NOT NEW.commission_paid THEN
                        RAISE EXCEPTION 'commission_paid of order % cannot be reverted', OLD.id;
                    END IF;
                    RETURN NEW;
                END;
                $$ LANGUAGE plpgsql
            """)
            await conn.execute("DROP TRIGGER IF EXISTS trg_guard_commissionable_orders ON commissionable_orders")
            await conn.execute("""
                CREATE TRIGGER trg_guard_commissionable_orders
                BEFORE UPDATE OR DELETE ON commissionable_orders
                FOR EACH ROW EXECUTE FUNCTION guard_commissionable_orders()
            """)

            # Withdrawal amount never changes; terminal statuses never change
            await conn.execute("""
                CREATE OR REPLACE FUNCTION guard_withdrawals() RETURNS trigger AS $$
                BEGIN
                    IF NEW.amount <> OLD.amount THEN
                        RAISE EXCEPTION 'amount of withdrawal % is immutable', OLD.id;
                    END IF;
                    IF OLD.status IN ('paid', 'rejected') AND NEW.status <> OLD.status THEN
                        RAISE EXCEPTION 'withdrawal % is already %', OLD.id, OLD.status;
                    END IF;
                    RETURN NEW;
                END;
                $$ LANGUAGE plpgsql
            """)
            await conn.execute("DROP TRIGGER IF EXISTS trg_guard_withdrawals ON withdrawals")
            await conn.execute("""
                CREATE TRIGGER trg_guard_withdrawals
                BEFORE UPDATE ON withdrawals
                FOR EACH ROW EXECUTE FUNCTION guard_withdrawals()
            """)

            # Create indexes
            await conn.execute(
                "CREATE UNIQUE INDEX IF NOT EXISTS idx_withdrawals_one_active_per_agent "
                "ON withdrawals(agent_id) WHERE status IN ('requested', 'processing')"
            )
            await conn.execute("CREATE INDEX IF NOT EXISTS idx_withdrawals_agent_requested_at ON withdrawals(agent_id, requested_at)")
            await conn.execute("CREATE INDEX IF NOT EXISTS idx_withdrawals_status ON withdrawals(status)")
            await conn.execute("CREATE INDEX IF NOT EXISTS idx_commissionable_orders_agent_status ON commissionable_orders(agent_id, status)")
            await conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_commissionable_orders_unpaid "
                "ON commissionable_orders(agent_id, created_at) WHERE status = 'completed' AND NOT commission_paid"
            )
            await conn.execute("CREATE INDEX IF NOT EXISTS idx_commissionable_orders_withdrawal ON commissionable_orders(withdrawal_id)")
            await conn.execute("CREATE INDEX IF NOT EXISTS idx_withdrawal_audit_log_withdrawal ON withdrawal_audit_log(withdrawal_id)")

        finally:
            await self.release_connection(conn)

    async def execute(self, query: str, *args):
        """Execute a query and return the result."""
        conn = await self.get_connection()
        try:
            return await conn.execute(query, *args)
        finally:
            await self.release_connection(conn)

    async def fetch(self, query: str, *args):
        """Execute a query and fetch all rows."""
        conn = await self.get_connection()
        try:
            return await conn.fetch(query, *args)
        finally:
            await self.release_connection(conn)

    async def fetchrow(self, query: str, *args):
        """Execute a query and fetch a single row."""
        conn = await self.get_connection()
        try:
            return await conn.fetchrow(query, *args)
        finally:
            await self.release_connection(conn)

    async def fetchval(self, query: str, *args):
        """Execute a query and fetch a single value."""
        conn = await self.get_connection()
        try:
            return await conn.fetchval(query, *args)
        finally:
            await self.release_connection(conn)
