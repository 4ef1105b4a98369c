"""FastAPI dependencies: caller identity and request-scoped services."""

from tryon_billing.api.dependencies.auth import get_app_settings, get_current_user_id
from tryon_billing.api.dependencies.services import get_billing_client

__all__ = [
    "get_app_settings",
    "get_current_user_id",
    "get_billing_client",
]
