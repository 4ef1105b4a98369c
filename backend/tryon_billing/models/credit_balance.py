"""
Credit balance mirror.

Second storage location for the consumable balance, read by the client
spend/fetch path. At rest it always equals Entitlement.consumable_balance.
"""

from sqlalchemy import CheckConstraint, Column, Integer, String

from tryon_billing.db_base import Base
from tryon_billing.models.base import TimestampMixin


class CreditBalance(Base, TimestampMixin):
    """Mirror row of the consumable balance."""

    __tablename__ = "credits"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_credits_balance_non_negative"),
    )

    user_id = Column(String(255), primary_key=True)
    balance = Column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<CreditBalance(user_id={self.user_id}, balance={self.balance})>"
