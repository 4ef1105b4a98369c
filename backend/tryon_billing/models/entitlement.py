"""
Entitlement model: what a user can do right now.

One row per user. Holds:
- subscription flag (unlimited generation)
- consumable balance ("looks"), mirrored in the credits table
- derived quality attributes (tier, watermark)
- purchase history counters used by the offer engine

quality_tier and watermark_suppressed are derived from subscription_active
and must only be written through apply_subscription_state().
"""

import enum

from sqlalchemy import Boolean, CheckConstraint, Column, Enum, Integer, String

from tryon_billing.db_base import Base
from tryon_billing.models.base import TimestampMixin


class QualityTier(str, enum.Enum):
    """Output quality tier, derived from the subscription flag."""
    STANDARD = "standard"
    PREMIUM = "premium"


QUALITY_TIER_ENUM = Enum(
    QualityTier,
    name="quality_tier",
    create_constraint=True,
    validate_strings=True,
    values_callable=lambda enum_cls: [e.value for e in enum_cls],
)


def derived_quality(subscription_active: bool) -> dict:
    """Column values that follow from the subscription flag."""
    tier = QualityTier.PREMIUM if subscription_active else QualityTier.STANDARD
    return {
        "subscription_active": bool(subscription_active),
        "quality_tier": tier,
        "watermark_suppressed": tier == QualityTier.PREMIUM,
    }


class Entitlement(Base, TimestampMixin):
    """Durable per-user entitlement record."""

    __tablename__ = "entitlements"
    __table_args__ = (
        CheckConstraint("consumable_balance >= 0", name="ck_entitlements_balance_non_negative"),
    )

    user_id = Column(String(255), primary_key=True, comment="Durable user identifier (UUID)")

    subscription_active = Column(Boolean, nullable=False, default=False)
    consumable_balance = Column(Integer, nullable=False, default=0)
    quality_tier = Column(QUALITY_TIER_ENUM, nullable=False, default=QualityTier.STANDARD)
    watermark_suppressed = Column(Boolean, nullable=False, default=False)

    has_entry_access = Column(Boolean, nullable=False, default=False)
    total_packs_purchased = Column(
        Integer,
        nullable=False,
        default=0,
        comment="Monotonic counter of looks packs bought; detects repeat buyers",
    )

    def apply_subscription_state(self, active: bool) -> None:
        """Set the subscription flag together with its derived attributes."""
        for key, value in derived_quality(active).items():
            setattr(self, key, value)

    def snapshot(self) -> dict:
        return {
            "user_id": self.user_id,
            "subscription_active": bool(self.subscription_active),
            "consumable_balance": int(self.consumable_balance or 0),
            "quality_tier": QualityTier(self.quality_tier).value,
            "watermark_suppressed": bool(self.watermark_suppressed),
            "has_entry_access": bool(self.has_entry_access),
            "total_packs_purchased": int(self.total_packs_purchased or 0),
        }

    def __repr__(self) -> str:
        return (
            f"<Entitlement(user_id={self.user_id}, subscription_active={self.subscription_active}, "
            f"consumable_balance={self.consumable_balance})>"
        )
