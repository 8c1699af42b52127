"""Agent model."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional


@dataclass
class Agent:
    """
    Agent data model.

    Identity is owned by the authentication subsystem; the engine only
    reads and updates the cached commission rollups.
    """

    id: int
    full_name: Optional[str]
    total_commissions: Decimal
    total_paid_out: Decimal
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row) -> "Agent":
        """Create Agent from database row."""
        return cls(
            id=row["id"],
            full_name=row["full_name"],
            total_commissions=row["total_commissions"] or Decimal("0.00"),
            total_paid_out=row["total_paid_out"] or Decimal("0.00"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @property
    def display_name(self) -> str:
        """Get agent display name."""
        return self.full_name or f"Agent {self.id}"
