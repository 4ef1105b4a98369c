"""Analytics trail of billing events applied to a user."""

import uuid

from sqlalchemy import Column, DateTime, String

from tryon_billing.db_base import Base
from tryon_billing.models.base import utcnow


class MonetizationEvent(Base):
    __tablename__ = "monetization_events"

    id = Column(String(255), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(255), nullable=False, index=True)
    event_type = Column(String(64), nullable=False)
    product_id = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
