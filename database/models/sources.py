"""Native sale-flow records and their mapping to commissionable orders.

Each source keeps the shape the sale flow produces. ``to_draft`` maps it to
the common fields; the aggregator never looks at the native shape.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Union

from utils.money import calculate_commission, to_money

from .commissionable_order import CommissionableOrderDraft, OrderStatus, SourceType


def _map_status(native_status: str) -> OrderStatus:
    return OrderStatus(native_status.strip().lower())


@dataclass
class DataOrderRecord:
    """Data bundle order placed by an agent."""

    id: str
    agent_id: int
    bundle_name: str
    recipient_phone: str
    commission_amount: Decimal
    status: str = "pending"
    created_at: Optional[datetime] = None

    @classmethod
    def priced(
        cls,
        id: str,
        agent_id: int,
        bundle_name: str,
        recipient_phone: str,
        bundle_price: Decimal,
        commission_rate: Decimal,
        created_at: Optional[datetime] = None,
    ) -> "DataOrderRecord":
        """Build a data order whose commission is fixed from the bundle price."""
        return cls(
            id=id,
            agent_id=agent_id,
            bundle_name=bundle_name,
            recipient_phone=recipient_phone,
            commission_amount=calculate_commission(bundle_price, commission_rate),
            created_at=created_at,
        )

    def to_draft(self) -> CommissionableOrderDraft:
        return CommissionableOrderDraft(
            agent_id=self.agent_id,
            source_type=SourceType.DATA_ORDER,
            source_ref=str(self.id),
            commission_amount=to_money(self.commission_amount),
            status=_map_status(self.status),
            created_at=self.created_at,
        )


@dataclass
class WholesaleOrderRecord:
    """Wholesale product order. The sale flow reports delivery as 'delivered'."""

    id: str
    agent_id: int
    product_name: str
    quantity: int
    commission_amount: Decimal
    status: str = "pending"
    created_at: Optional[datetime] = None

    @classmethod
    def priced(
        cls,
        id: str,
        agent_id: int,
        product_name: str,
        quantity: int,
        commission_value: Decimal,
        created_at: Optional[datetime] = None,
    ) -> "WholesaleOrderRecord":
        """Build a wholesale order earning ``commission_value`` per unit."""
        if quantity <= 0:
            raise ValueError(f"Invalid quantity: {quantity}")
        return cls(
            id=id,
            agent_id=agent_id,
            product_name=product_name,
            quantity=quantity,
            commission_amount=to_money(to_money(commission_value) * quantity),
            created_at=created_at,
        )

    def to_draft(self) -> CommissionableOrderDraft:
        status = self.status.strip().lower()
        if status == "delivered":
            status = OrderStatus.COMPLETED.value
        return CommissionableOrderDraft(
            agent_id=self.agent_id,
            source_type=SourceType.WHOLESALE_ORDER,
            source_ref=str(self.id),
            commission_amount=to_money(self.commission_amount),
            status=_map_status(status),
            created_at=self.created_at,
        )


@dataclass
class ReferralRecord:
    """Client referral for a service; the commission comes from the service."""

    id: str
    agent_id: int
    client_name: str
    service_title: str
    service_commission_amount: Decimal
    status: str = "pending"
    created_at: Optional[datetime] = None

    def to_draft(self) -> CommissionableOrderDraft:
        return CommissionableOrderDraft(
            agent_id=self.agent_id,
            source_type=SourceType.REFERRAL,
            source_ref=str(self.id),
            commission_amount=to_money(self.service_commission_amount),
            status=_map_status(self.status),
            created_at=self.created_at,
        )


CommissionSource = Union[DataOrderRecord, WholesaleOrderRecord, ReferralRecord]
