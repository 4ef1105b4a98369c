"""
Database models for entitlements, credits, and offer impressions.

Importing this package registers every table on Base.metadata.
"""

from tryon_billing.models.base import TimestampMixin, as_utc, utcnow
from tryon_billing.models.entitlement import Entitlement, QualityTier, derived_quality
from tryon_billing.models.credit_balance import CreditBalance
from tryon_billing.models.offer_impression import OfferImpression
from tryon_billing.models.billing_event_key import BillingEventKey
from tryon_billing.models.unresolved_billing_event import (
    UnresolvedBillingEvent,
    UnresolvedEventStatus,
)
from tryon_billing.models.monetization_event import MonetizationEvent
from tryon_billing.models.user_profile import UserProfile, UserSegment
from tryon_billing.models.generation import Generation, GenerationStatus

__all__ = [
    "TimestampMixin",
    "as_utc",
    "utcnow",
    "Entitlement",
    "QualityTier",
    "derived_quality",
    "CreditBalance",
    "OfferImpression",
    "BillingEventKey",
    "UnresolvedBillingEvent",
    "UnresolvedEventStatus",
    "MonetizationEvent",
    "UserProfile",
    "UserSegment",
    "Generation",
    "GenerationStatus",
]
