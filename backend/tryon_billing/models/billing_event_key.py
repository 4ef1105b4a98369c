"""
Idempotency keys for non-idempotent ledger credits.

A key row is inserted in the same transaction as the credit it guards, so
a redelivered event (or a second concurrent reconciliation) hits the
primary key and is skipped instead of crediting twice.
"""

from sqlalchemy import Column, Integer, String

from tryon_billing.db_base import Base
from tryon_billing.models.base import TimestampMixin


class BillingEventKey(Base, TimestampMixin):
    """Record of a credit grant that has already been applied."""

    __tablename__ = "billing_event_keys"

    idempotency_key = Column(String(128), primary_key=True)
    user_id = Column(String(255), nullable=False, index=True)
    event_type = Column(String(64), nullable=False)
    product_id = Column(String(255), nullable=True)
    credits_granted = Column(Integer, nullable=False, default=0)
