"""RevenueCat REST API integration."""

from tryon_billing.integrations.revenuecat.client import (
    RevenueCatClient,
    RevenueCatError,
    SubscriberRecord,
)

__all__ = ["RevenueCatClient", "RevenueCatError", "SubscriberRecord"]
