"""
Offer impression model.

Append-only log of offers shown to a user. Rows are never updated or
deleted; the decision engine only counts and filters them.
"""

import uuid

from sqlalchemy import JSON, Column, DateTime, Index, String

from tryon_billing.db_base import Base
from tryon_billing.models.base import utcnow


class OfferImpression(Base):
    """One presentation of an offer."""

    __tablename__ = "offer_impressions"
    __table_args__ = (
        Index("ix_offer_impressions_user_created", "user_id", "created_at"),
        Index("ix_offer_impressions_user_offer_created", "user_id", "offer_key", "created_at"),
    )

    id = Column(String(255), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(255), nullable=False)
    offer_key = Column(String(100), nullable=False)
    surface = Column(String(50), nullable=False)
    action_taken = Column(String(100), nullable=True)
    context = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
