"""
Billing domain: event model, product catalog, and error taxonomy.
"""

from tryon_billing.billing.catalog import CREDIT_PACKS, CreditPack, credit_pack_for_product
from tryon_billing.billing.errors import (
    BillingError,
    IdentityUnresolvedError,
    StorageInconsistencyError,
    UpstreamUnavailableError,
)
from tryon_billing.billing.events import BillingEvent, BillingEventType

__all__ = [
    "CREDIT_PACKS",
    "CreditPack",
    "credit_pack_for_product",
    "BillingError",
    "IdentityUnresolvedError",
    "StorageInconsistencyError",
    "UpstreamUnavailableError",
    "BillingEvent",
    "BillingEventType",
]
