"""
Billing events whose subscriber could not be linked to a durable user.

Kept for self-healing: ensure-entitlement recovers the purchase from the
billing platform and marks matching rows as recovered.
"""

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Column, DateTime, Enum, String

from tryon_billing.db_base import Base
from tryon_billing.models.base import utcnow


class UnresolvedEventStatus(str, enum.Enum):
    PENDING = "pending"
    RECOVERED = "recovered"


class UnresolvedBillingEvent(Base):
    __tablename__ = "unresolved_billing_events"

    id = Column(String(255), primary_key=True, default=lambda: str(uuid.uuid4()))
    subscriber_id = Column(String(255), nullable=False, index=True)
    event_type = Column(String(64), nullable=False)
    product_id = Column(String(255), nullable=True)
    aliases = Column(JSON, nullable=True)
    payload = Column(JSON, nullable=True)
    status = Column(
        Enum(
            UnresolvedEventStatus,
            name="unresolved_event_status",
            values_callable=lambda enum_cls: [e.value for e in enum_cls],
        ),
        nullable=False,
        default=UnresolvedEventStatus.PENDING,
    )
    recovered_user_id = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    recovered_at = Column(DateTime(timezone=True), nullable=True)

    def mark_recovered(self, user_id: str, now: Optional[datetime] = None) -> None:
        self.status = UnresolvedEventStatus.RECOVERED
        self.recovered_user_id = user_id
        self.recovered_at = now or utcnow()
