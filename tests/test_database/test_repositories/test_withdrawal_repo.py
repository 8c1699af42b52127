"""Tests for WithdrawalRepository (requires TEST_DATABASE_URL)."""

from datetime import datetime, timezone
from decimal import Decimal

import asyncpg
import pytest
import pytest_asyncio

from database.connection import Database
from database.models import WithdrawalStatus
from database.repositories import WithdrawalRepository


@pytest_asyncio.fixture
async def withdrawal_repo(pg_db: Database) -> WithdrawalRepository:
    return WithdrawalRepository(pg_db)


async def _create(pg_db, repo, agent_id, amount="50.00", token=None):
    async with pg_db.transaction() as conn:
        return await repo.create(conn, agent_id, Decimal(amount), "0241234567", token)


class TestWithdrawalRepository:
    """Test cases for WithdrawalRepository."""

    @pytest.mark.asyncio
    async def test_create(self, pg_db, withdrawal_repo, pg_agent_id):
        withdrawal = await _create(pg_db, withdrawal_repo, pg_agent_id, token="tok-1")

        assert withdrawal.status == WithdrawalStatus.REQUESTED
        assert withdrawal.amount == Decimal("50.00")
        assert withdrawal.request_token == "tok-1"
        assert await withdrawal_repo.get_by_request_token(pg_agent_id, "tok-1") == withdrawal

    @pytest.mark.asyncio
    async def test_second_active_withdrawal_rejected(self, pg_db, withdrawal_repo, pg_agent_id):
        await _create(pg_db, withdrawal_repo, pg_agent_id)

        with pytest.raises(asyncpg.UniqueViolationError):
            await _create(pg_db, withdrawal_repo, pg_agent_id, amount="20.00")

    @pytest.mark.asyncio
    async def test_new_request_allowed_after_settlement(self, pg_db, withdrawal_repo, pg_agent_id):
        first = await _create(pg_db, withdrawal_repo, pg_agent_id)
        async with pg_db.transaction() as conn:
            await withdrawal_repo.compare_and_set_status(
                conn, first.id, [WithdrawalStatus.REQUESTED], WithdrawalStatus.REJECTED
            )

        second = await _create(pg_db, withdrawal_repo, pg_agent_id, amount="20.00")

        assert second.id != first.id
        assert (await withdrawal_repo.get_active(pg_agent_id)).id == second.id

    @pytest.mark.asyncio
    async def test_compare_and_set_status(self, pg_db, withdrawal_repo, pg_agent_id):
        withdrawal = await _create(pg_db, withdrawal_repo, pg_agent_id)

        async with pg_db.transaction() as conn:
            processing = await withdrawal_repo.compare_and_set_status(
                conn, withdrawal.id, [WithdrawalStatus.REQUESTED], WithdrawalStatus.PROCESSING
            )
            paid = await withdrawal_repo.compare_and_set_status(
                conn, withdrawal.id, [WithdrawalStatus.REQUESTED, WithdrawalStatus.PROCESSING],
                WithdrawalStatus.PAID, payout_reference="MP-123",
            )
            again = await withdrawal_repo.compare_and_set_status(
                conn, withdrawal.id, [WithdrawalStatus.REQUESTED, WithdrawalStatus.PROCESSING],
                WithdrawalStatus.REJECTED,
            )

        assert processing.processing_at is not None
        assert paid.status == WithdrawalStatus.PAID
        assert paid.processed_at is not None
        assert paid.payout_reference == "MP-123"
        assert again is None

    @pytest.mark.asyncio
    async def test_history_includes_this_month_and_active(self, pg_db, withdrawal_repo, pg_agent_id):
        old_settled = await _create(pg_db, withdrawal_repo, pg_agent_id)
        await pg_db.execute(
            "UPDATE withdrawals SET status = 'paid', requested_at = '2020-01-10' WHERE id = $1", old_settled.id
        )
        old_active = await _create(pg_db, withdrawal_repo, pg_agent_id)
        await pg_db.execute("UPDATE withdrawals SET requested_at = '2020-02-10' WHERE id = $1", old_active.id)

        history = await withdrawal_repo.get_history_since(
            pg_agent_id, datetime(2021, 1, 1, tzinfo=timezone.utc)
        )

        assert [w.id for w in history] == [old_active.id]

    @pytest.mark.asyncio
    async def test_audit_entry(self, pg_db, withdrawal_repo, pg_agent_id):
        withdrawal = await _create(pg_db, withdrawal_repo, pg_agent_id)

        async with pg_db.transaction() as conn:
            entry = await withdrawal_repo.add_audit_entry(
                conn, withdrawal, action="paid", orders_marked=2,
                amount_marked=Decimal("70.00"), actor="ops",
            )

        entries = await withdrawal_repo.get_audit_entries(withdrawal.id)
        assert entries == [entry]
        assert entry.amount == Decimal("50.00")
        assert entry.amount_marked == Decimal("70.00")
