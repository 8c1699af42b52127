"""Tests for the CommissionEngine facade."""

import asyncio
from dataclasses import replace
from decimal import Decimal
from unittest.mock import AsyncMock

import asyncpg
import pytest

from database.models import CommissionSummary, WithdrawalStatus
from services.commission_engine import CommissionEngine
from services.errors import AggregationUnavailable, InvalidAmount, OperationTimeout, TokenReuse
from services.withdrawal_ledger import SettlementOutcome
from services.withdrawal_validator import RejectionReason


def _summary(available: str, degraded: bool = False) -> CommissionSummary:
    value = Decimal(available)
    return CommissionSummary(
        agent_id=1,
        total_commissions=value,
        available_for_withdrawal=value,
        degraded=degraded,
    )


@pytest.fixture
def engine(mock_db, sample_agent):
    engine = CommissionEngine(mock_db, AsyncMock(), operation_timeout=5.0)
    engine.agent_repo = AsyncMock()
    engine.withdrawal_repo = AsyncMock()
    engine.aggregator = AsyncMock()
    engine.reconciliation = AsyncMock()
    engine.ledger = AsyncMock()
    engine.order_status = AsyncMock()

    engine.agent_repo.lock_for_update.return_value = sample_agent
    engine.withdrawal_repo.get_by_request_token.return_value = None
    engine.withdrawal_repo.get_history_since.return_value = []
    engine.aggregator.summarize.return_value = _summary("150.00")
    return engine


class TestGetCommissionSummary:
    """Tests for the two-tier read path."""

    @pytest.mark.asyncio
    async def test_authoritative_summary(self, engine):
        summary = await engine.get_commission_summary(1)

        assert summary.degraded is False
        assert summary.available_for_withdrawal == Decimal("150.00")
        engine.reconciliation.legacy_balance.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_falls_back_to_rollups(self, engine):
        engine.aggregator.summarize.side_effect = AggregationUnavailable(1)
        engine.reconciliation.legacy_balance.return_value = _summary("80.00", degraded=True)

        summary = await engine.get_commission_summary(1)

        assert summary.degraded is True
        assert summary.available_for_withdrawal == Decimal("80.00")

    @pytest.mark.asyncio
    async def test_both_tiers_down_raises(self, engine):
        """Never report a confident zero when nothing could be read."""
        engine.aggregator.summarize.side_effect = AggregationUnavailable(1)
        engine.reconciliation.legacy_balance.side_effect = AggregationUnavailable(1)

        with pytest.raises(AggregationUnavailable):
            await engine.get_commission_summary(1)

    @pytest.mark.asyncio
    async def test_timeout(self, engine):
        async def slow(*args, **kwargs):
            await asyncio.sleep(1)

        engine.aggregator.summarize.side_effect = slow

        with pytest.raises(OperationTimeout) as exc_info:
            await engine.get_commission_summary(1, timeout=0.01)

        assert exc_info.value.retryable is True


class TestSubmitWithdrawal:
    """Tests for submission."""

    @pytest.mark.asyncio
    async def test_accepted(self, engine, make_withdrawal, mock_conn):
        created = make_withdrawal("50.00")
        engine.ledger.create.return_value = created

        submission = await engine.submit_withdrawal(1, "50", "0241234567", request_token="tok-1")

        assert submission.accepted is True
        assert submission.withdrawal is created
        assert submission.replayed is False
        engine.agent_repo.lock_for_update.assert_awaited_once_with(mock_conn, 1)
        engine.aggregator.summarize.assert_awaited_once_with(1, conn=mock_conn)
        engine.ledger.create.assert_awaited_once_with(
            mock_conn, 1, Decimal("50.00"), "0241234567", "tok-1"
        )

    @pytest.mark.asyncio
    async def test_below_minimum(self, engine):
        submission = await engine.submit_withdrawal(1, "9.99", "0241234567")

        assert submission.accepted is False
        assert submission.reason == RejectionReason.BELOW_MINIMUM
        engine.ledger.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, engine):
        submission = await engine.submit_withdrawal(1, "150.01", "0241234567")

        assert submission.reason == RejectionReason.INSUFFICIENT_BALANCE
        engine.ledger.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_second_request_sees_pending(self, engine, make_withdrawal):
        """50.00 accepted, then 20.00 rejected with the first request reported."""
        first = make_withdrawal("50.00", status=WithdrawalStatus.REQUESTED)
        engine.ledger.create.return_value = first

        accepted = await engine.submit_withdrawal(1, "50.00", "0241234567")
        engine.withdrawal_repo.get_history_since.return_value = [first]
        second = await engine.submit_withdrawal(1, "20.00", "0241234567")

        assert accepted.accepted is True
        assert second.reason == RejectionReason.PENDING_WITHDRAWAL_EXISTS
        assert second.decision.pending_withdrawal.amount == Decimal("50.00")
        assert second.decision.pending_withdrawal.status == WithdrawalStatus.REQUESTED
        assert "GH₵50.00" in second.message
        assert engine.ledger.create.await_count == 1

    @pytest.mark.asyncio
    async def test_lost_race_maps_to_pending(self, engine, make_withdrawal):
        pending = make_withdrawal("30.00")
        engine.ledger.create.side_effect = asyncpg.UniqueViolationError("duplicate key")
        engine.withdrawal_repo.get_active.return_value = pending

        submission = await engine.submit_withdrawal(1, "50.00", "0241234567")

        assert submission.accepted is False
        assert submission.reason == RejectionReason.PENDING_WITHDRAWAL_EXISTS
        assert submission.decision.pending_withdrawal is pending
        assert "GH₵30.00" in submission.message

    @pytest.mark.asyncio
    async def test_token_replay_returns_existing(self, engine, make_withdrawal, mock_db):
        existing = make_withdrawal("50.00", request_token="tok-1")
        engine.withdrawal_repo.get_by_request_token.return_value = existing

        submission = await engine.submit_withdrawal(1, "50.00", "0241234567", request_token="tok-1")

        assert submission.accepted is True
        assert submission.replayed is True
        assert submission.withdrawal is existing
        mock_db.transaction.assert_not_called()

    @pytest.mark.asyncio
    async def test_token_race_returns_winner(self, engine, make_withdrawal):
        winner = make_withdrawal("50.00", request_token="tok-1")
        engine.withdrawal_repo.get_by_request_token.side_effect = [None, winner]
        engine.ledger.create.side_effect = asyncpg.UniqueViolationError("duplicate key")

        submission = await engine.submit_withdrawal(1, "50.00", "0241234567", request_token="tok-1")

        assert submission.replayed is True
        assert submission.withdrawal is winner

    @pytest.mark.asyncio
    async def test_token_replay_reports_current_status(self, engine, make_withdrawal):
        existing = make_withdrawal("50.00", status=WithdrawalStatus.REJECTED, request_token="tok-1")
        engine.withdrawal_repo.get_by_request_token.return_value = existing

        submission = await engine.submit_withdrawal(1, "50.00", "0241234567", request_token="tok-1")

        assert submission.replayed is True
        assert submission.status == WithdrawalStatus.REJECTED
        assert "status: rejected" in submission.message

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount,destination", [
        ("60.00", "0241234567"),
        ("50.00", "0209999999"),
    ])
    async def test_token_reused_with_other_details(self, engine, make_withdrawal, mock_db, amount, destination):
        existing = make_withdrawal("50.00", request_token="tok-1")
        engine.withdrawal_repo.get_by_request_token.return_value = existing

        with pytest.raises(TokenReuse) as exc_info:
            await engine.submit_withdrawal(1, amount, destination, request_token="tok-1")

        assert exc_info.value.withdrawal_id == existing.id
        mock_db.transaction.assert_not_called()

    @pytest.mark.asyncio
    async def test_degraded_read_never_accepts(self, engine, sample_agent):
        engine.aggregator.summarize.side_effect = AggregationUnavailable(1)

        submission = await engine.submit_withdrawal(1, "50.00", "0241234567")

        assert submission.accepted is False
        assert submission.reason == RejectionReason.TEMPORARILY_UNAVAILABLE
        assert submission.retryable is True
        assert submission.summary.degraded is True
        engine.ledger.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_degraded_read_can_still_reject(self, engine, sample_agent):
        engine.aggregator.summarize.side_effect = AggregationUnavailable(1)
        engine.agent_repo.lock_for_update.return_value = replace(
            sample_agent, total_commissions=Decimal("20.00")
        )

        submission = await engine.submit_withdrawal(1, "50.00", "0241234567")

        assert submission.reason == RejectionReason.INSUFFICIENT_BALANCE
        assert submission.retryable is False

    @pytest.mark.asyncio
    async def test_no_balance_source_raises(self, engine):
        engine.aggregator.summarize.side_effect = AggregationUnavailable(1)
        engine.agent_repo.lock_for_update.return_value = None

        with pytest.raises(AggregationUnavailable):
            await engine.submit_withdrawal(1, "50.00", "0241234567")

    @pytest.mark.asyncio
    async def test_invalid_amount(self, engine):
        with pytest.raises(InvalidAmount):
            await engine.submit_withdrawal(1, "fifty", "0241234567")

    @pytest.mark.asyncio
    async def test_timeout(self, engine):
        async def slow(*args, **kwargs):
            await asyncio.sleep(1)

        engine.agent_repo.lock_for_update.side_effect = slow

        with pytest.raises(OperationTimeout):
            await engine.submit_withdrawal(1, "50.00", "0241234567", timeout=0.01)


class TestDelegation:
    @pytest.mark.asyncio
    async def test_settle_withdrawal(self, engine):
        await engine.settle_withdrawal(7, SettlementOutcome.MARK_PAID, actor="ops", payout_reference="MP-1")

        engine.ledger.settle.assert_awaited_once_with(
            7, SettlementOutcome.MARK_PAID, actor="ops", payout_reference="MP-1", admin_notes=None
        )

    @pytest.mark.asyncio
    async def test_transition_order_status(self, engine):
        await engine.transition_order_status(3, "completed")

        engine.order_status.transition.assert_awaited_once_with(3, "completed")
