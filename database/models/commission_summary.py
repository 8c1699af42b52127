"""Commission summary (derived, never persisted)."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict

from .commissionable_order import SourceType

_ZERO = Decimal("0.00")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CommissionSummary:
    """
    Per-agent commission totals.

    Per-source fields hold unpaid commission from completed orders.
    ``degraded`` is True when the numbers come from the cached agent rollups
    instead of the order rows; per-source fields are then zero and must not
    be presented as authoritative.
    """

    agent_id: int
    referral_commissions: Decimal = _ZERO
    data_order_commissions: Decimal = _ZERO
    wholesale_commissions: Decimal = _ZERO
    total_commissions: Decimal = _ZERO
    total_paid_out: Decimal = _ZERO
    available_for_withdrawal: Decimal = _ZERO
    degraded: bool = False
    computed_at: datetime = field(default_factory=_utcnow)

    @property
    def breakdown(self) -> Dict[str, Decimal]:
        """Unpaid commission per source type."""
        return {
            SourceType.REFERRAL.value: self.referral_commissions,
            SourceType.DATA_ORDER.value: self.data_order_commissions,
            SourceType.WHOLESALE_ORDER.value: self.wholesale_commissions,
        }
