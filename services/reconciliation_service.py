"""Balance fallback and rollup integrity checks."""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

import asyncpg

from database.connection import Database
from database.models import Agent, CommissionSummary
from database.repositories import AgentRepository, CommissionableOrderRepository
from services.commission_aggregator import build_summary
from services.errors import AggregationUnavailable
from utils.money import clamp_non_negative

logger = logging.getLogger(__name__)


def legacy_summary(agent: Agent) -> CommissionSummary:
    """
    Degraded summary from the agent's cached rollups.

    Per-source fields are zero; only the aggregate is known.
    """
    return CommissionSummary(
        agent_id=agent.id,
        total_commissions=agent.total_commissions,
        total_paid_out=agent.total_paid_out,
        available_for_withdrawal=clamp_non_negative(agent.total_commissions - agent.total_paid_out),
        degraded=True,
    )


@dataclass
class IntegrityReport:
    """Cached rollups compared with the values recomputed from order rows."""
    agent_id: int
    cached_total_commissions: Decimal
    cached_total_paid_out: Decimal
    calculated_total_commissions: Decimal
    calculated_total_paid_out: Decimal
    issues: List[str] = field(default_factory=list)

    @property
    def is_consistent(self) -> bool:
        return not self.issues


def compare_rollups(agent: Agent, calculated: CommissionSummary) -> IntegrityReport:
    """Build an integrity report for one agent."""
    report = IntegrityReport(
        agent_id=agent.id,
        cached_total_commissions=agent.total_commissions,
        cached_total_paid_out=agent.total_paid_out,
        calculated_total_commissions=calculated.total_commissions,
        calculated_total_paid_out=calculated.total_paid_out,
    )

    if agent.total_commissions < 0:
        report.issues.append(f"Negative total_commissions: {agent.total_commissions}")
    if agent.total_paid_out < 0:
        report.issues.append(f"Negative total_paid_out: {agent.total_paid_out}")
    if agent.total_paid_out > agent.total_commissions:
        report.issues.append(
            f"total_paid_out {agent.total_paid_out} exceeds total_commissions {agent.total_commissions}"
        )
    if agent.total_commissions != calculated.total_commissions:
        report.issues.append(
            f"total_commissions mismatch: cached {agent.total_commissions}, "
            f"calculated {calculated.total_commissions}"
        )
    if agent.total_paid_out != calculated.total_paid_out:
        report.issues.append(
            f"total_paid_out mismatch: cached {agent.total_paid_out}, "
            f"calculated {calculated.total_paid_out}"
        )

    return report


class ReconciliationService:
    """Reads and repairs the cached rollups on the agent row."""

    def __init__(self, db: Database):
        self.db = db
        self.agent_repo = AgentRepository(db)
        self.order_repo = CommissionableOrderRepository(db)

    async def legacy_balance(
        self,
        agent_id: int,
        conn: Optional[asyncpg.Connection] = None,
    ) -> CommissionSummary:
        """
        Balance from the agent's cached rollups, flagged degraded.

        Only for display. Never accept a withdrawal on this number.

        Raises:
            AggregationUnavailable: if the agent row cannot be read
        """
        try:
            agent = await self.agent_repo.get_by_id(agent_id, conn=conn)
        except (asyncpg.PostgresError, OSError, RuntimeError) as e:
            logger.error(f"[LEGACY_BALANCE] Failed to read rollups for agent {agent_id}: {e}")
            raise AggregationUnavailable(agent_id, str(e)) from e

        if agent is None:
            raise AggregationUnavailable(agent_id, "agent not found")

        logger.warning(f"[LEGACY_BALANCE] Serving degraded balance for agent {agent_id}")
        return legacy_summary(agent)

    async def check_integrity(self, agent_id: int) -> Optional[IntegrityReport]:
        """Compare an agent's cached rollups with the order rows."""
        agent = await self.agent_repo.get_by_id(agent_id)
        if agent is None:
            return None

        rows = await self.order_repo.sum_completed_by_source(agent_id)
        report = compare_rollups(agent, build_summary(agent_id, rows))

        if report.is_consistent:
            logger.debug(f"[INTEGRITY] Agent {agent_id} rollups consistent")
        else:
            logger.warning(f"[INTEGRITY] Agent {agent_id}: {'; '.join(report.issues)}")
        return report

    async def sync_rollups(self, agent_id: int) -> Optional[IntegrityReport]:
        """
        Rewrite an agent's rollups from the order rows.

        Returns the report taken before the rewrite, or None for an unknown agent.
        """
        async with self.db.transaction() as conn:
            agent = await self.agent_repo.lock_for_update(conn, agent_id)
            if agent is None:
                return None

            rows = await self.order_repo.sum_completed_by_source(agent_id, conn=conn)
            calculated = build_summary(agent_id, rows)
            report = compare_rollups(agent, calculated)

            if not report.is_consistent:
                await self.agent_repo.set_rollups(
                    conn, agent_id, calculated.total_commissions, calculated.total_paid_out
                )
                logger.info(
                    f"[SYNC_ROLLUPS] Agent {agent_id} rollups reset to "
                    f"commissions={calculated.total_commissions} paid_out={calculated.total_paid_out}"
                )

        return report
