"""Commission aggregation across every commission source."""

import logging
from typing import Iterable, Mapping

import asyncpg

from database.connection import Database
from database.models import CommissionSummary, SourceType
from database.repositories import CommissionableOrderRepository
from services.errors import AggregationUnavailable
from utils.money import ZERO, clamp_non_negative, to_money

logger = logging.getLogger(__name__)

_SUMMARY_FIELDS = {
    SourceType.REFERRAL: "referral_commissions",
    SourceType.DATA_ORDER: "data_order_commissions",
    SourceType.WHOLESALE_ORDER: "wholesale_commissions",
}


def build_summary(agent_id: int, rows: Iterable[Mapping]) -> CommissionSummary:
    """
    Fold per-source (unpaid, paid) sums of completed orders into a summary.

    Args:
        agent_id: Agent the rows belong to
        rows: Mappings with ``source_type``, ``unpaid`` and ``paid``

    Returns:
        CommissionSummary with available = total - paid, never below zero
    """
    per_source = {field: ZERO for field in _SUMMARY_FIELDS.values()}
    total_commissions = ZERO
    total_paid_out = ZERO

    for row in rows:
        source_type = SourceType(row["source_type"])
        unpaid = to_money(row["unpaid"] or 0)
        paid = to_money(row["paid"] or 0)

        per_source[_SUMMARY_FIELDS[source_type]] += unpaid
        total_commissions += unpaid + paid
        total_paid_out += paid

    return CommissionSummary(
        agent_id=agent_id,
        total_commissions=total_commissions,
        total_paid_out=total_paid_out,
        available_for_withdrawal=clamp_non_negative(total_commissions - total_paid_out),
        **per_source,
    )


class CommissionAggregator:
    """Computes an agent's commission summary from the order rows."""

    def __init__(self, db: Database):
        self.db = db
        self.order_repo = CommissionableOrderRepository(db)

    async def summarize(self, agent_id: int, conn: asyncpg.Connection = None) -> CommissionSummary:
        """
        Summarize completed commission for an agent.

        Raises:
            AggregationUnavailable: if the store cannot be read
        """
        try:
            rows = await self.order_repo.sum_completed_by_source(agent_id, conn=conn)
        except (asyncpg.PostgresError, OSError, RuntimeError) as e:
            logger.error(f"[SUMMARIZE] Failed to aggregate commissions for agent {agent_id}: {e}")
            raise AggregationUnavailable(agent_id, str(e)) from e

        summary = build_summary(agent_id, rows)
        logger.debug(
            f"[SUMMARIZE] Agent {agent_id}: total={summary.total_commissions} "
            f"paid={summary.total_paid_out} available={summary.available_for_withdrawal}"
        )
        return summary
