"""Generation history (written by the generation service, read here)."""

import enum
import uuid

from sqlalchemy import Column, DateTime, Index, String

from tryon_billing.db_base import Base
from tryon_billing.models.base import utcnow


class GenerationStatus(str, enum.Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Generation(Base):
    __tablename__ = "generations"
    __table_args__ = (
        Index("ix_generations_user_created", "user_id", "created_at"),
    )

    id = Column(String(255), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(255), nullable=False)
    status = Column(String(32), nullable=False, default=GenerationStatus.SUCCEEDED.value)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
