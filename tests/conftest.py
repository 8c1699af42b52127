"""Shared pytest fixtures for commission engine tests.

Service tests run against mocked repositories. Repository and concurrency
tests need a real PostgreSQL database named by TEST_DATABASE_URL and are
skipped when it is not set.
"""

import os
import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Add project root to path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from database.connection import Database
from database.models import (
    Agent,
    CommissionableOrder,
    OrderStatus,
    SourceType,
    Withdrawal,
    WithdrawalStatus,
)

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")

BASE_TIME = datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)


def _async_context(value) -> MagicMock:
    """Async context manager yielding ``value`` and never swallowing errors."""
    ctx = MagicMock()
    ctx.__aenter__ = AsyncMock(return_value=value)
    ctx.__aexit__ = AsyncMock(return_value=False)
    return ctx


@pytest.fixture
def mock_conn() -> MagicMock:
    """Mock asyncpg connection supporting nested transactions."""
    conn = MagicMock()
    conn.execute = AsyncMock(return_value="SELECT 1")
    conn.fetch = AsyncMock(return_value=[])
    conn.fetchrow = AsyncMock(return_value=None)
    conn.fetchval = AsyncMock(return_value=None)
    conn.transaction = MagicMock(side_effect=lambda *a, **kw: _async_context(None))
    return conn


@pytest.fixture
def mock_db(mock_conn: MagicMock) -> MagicMock:
    """Mock Database whose transaction()/acquire() yield ``mock_conn``."""
    db = MagicMock()
    db.transaction = MagicMock(side_effect=lambda *a, **kw: _async_context(mock_conn))
    db.acquire = MagicMock(side_effect=lambda conn=None: _async_context(conn or mock_conn))
    return db


@pytest.fixture
def make_order():
    """Factory for CommissionableOrder instances."""
    counter = {"id": 0}

    def _make(
        commission_amount="10.00",
        status=OrderStatus.COMPLETED,
        commission_paid=False,
        source_type=SourceType.DATA_ORDER,
        agent_id=1,
        age_days=0,
        order_id=None,
    ) -> CommissionableOrder:
        counter["id"] += 1
        created_at = BASE_TIME - timedelta(days=age_days)
        return CommissionableOrder(
            id=order_id or counter["id"],
            agent_id=agent_id,
            source_type=source_type,
            source_ref=f"src-{counter['id']}",
            status=status,
            commission_amount=Decimal(commission_amount),
            commission_paid=commission_paid,
            withdrawal_id=None,
            created_at=created_at,
            updated_at=created_at,
            completed_at=created_at if status == OrderStatus.COMPLETED else None,
        )

    return _make


@pytest.fixture
def make_withdrawal():
    """Factory for Withdrawal instances."""
    counter = {"id": 0}

    def _make(
        amount="50.00",
        status=WithdrawalStatus.REQUESTED,
        agent_id=1,
        requested_at=BASE_TIME,
        withdrawal_id=None,
        request_token=None,
    ) -> Withdrawal:
        counter["id"] += 1
        return Withdrawal(
            id=withdrawal_id or counter["id"],
            agent_id=agent_id,
            amount=Decimal(amount),
            momo_number="0241234567",
            status=status,
            request_token=request_token,
            requested_at=requested_at,
        )

    return _make


@pytest.fixture
def sample_agent() -> Agent:
    """Agent with 150.00 earned and nothing paid out."""
    return Agent(
        id=1,
        full_name="Ama Mensah",
        total_commissions=Decimal("150.00"),
        total_paid_out=Decimal("0.00"),
        created_at=BASE_TIME,
        updated_at=BASE_TIME,
    )


@pytest_asyncio.fixture
async def pg_db():
    """Real PostgreSQL database with empty tables.

    Skips the test when TEST_DATABASE_URL is not set.
    """
    if not TEST_DATABASE_URL:
        pytest.skip("TEST_DATABASE_URL not set")

    db = Database(TEST_DATABASE_URL, min_size=1, max_size=10)
    await db.initialize()
    await db.execute(
        "TRUNCATE withdrawal_audit_log, commissionable_orders, withdrawals, agents RESTART IDENTITY CASCADE"
    )
    try:
        yield db
    finally:
        await db.close()


@pytest_asyncio.fixture
async def pg_agent_id(pg_db: Database) -> int:
    """Create an agent in the test database and return its ID."""
    from database.repositories import AgentRepository

    agent = await AgentRepository(pg_db).create("Test Agent")
    return agent.id
