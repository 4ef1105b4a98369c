"""Request-scoped service construction."""

from typing import AsyncGenerator, Optional

from fastapi import Request

from tryon_billing.api.dependencies.auth import get_app_settings
from tryon_billing.integrations.revenuecat.client import RevenueCatClient


async def get_billing_client(request: Request) -> AsyncGenerator[Optional[RevenueCatClient], None]:
    """
    Billing platform client, or None when no API key is configured.

    Tests inject a client through app.state.billing_client.
    """
    injected = getattr(request.app.state, "billing_client", None)
    if injected is not None:
        yield injected
        return

    client = RevenueCatClient.from_settings(get_app_settings(request))
    if client is None:
        yield None
        return
    async with client:
        yield client
