"""
User profile model (read-only for this service).

primary_segment is computed by the analytics pipeline and steers offer
selection.
"""

import enum

from sqlalchemy import Column, Enum, String

from tryon_billing.db_base import Base
from tryon_billing.models.base import TimestampMixin


class UserSegment(str, enum.Enum):
    """Behavioral segment, from least to most engaged."""
    TOURIST = "tourist"
    SAMPLER = "sampler"
    EXPLORER = "explorer"
    BUYER = "buyer"
    POWER = "power"


class UserProfile(Base, TimestampMixin):
    __tablename__ = "user_profiles"

    user_id = Column(String(255), primary_key=True)
    primary_segment = Column(
        Enum(
            UserSegment,
            name="user_segment",
            values_callable=lambda enum_cls: [e.value for e in enum_cls],
        ),
        nullable=True,
    )
