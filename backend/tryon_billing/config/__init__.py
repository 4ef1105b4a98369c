"""Configuration module for the billing core."""

from tryon_billing.config.settings import BillingSettings, get_settings

__all__ = [
    "BillingSettings",
    "get_settings",
]
