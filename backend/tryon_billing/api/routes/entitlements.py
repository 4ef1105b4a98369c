"""
Entitlement API routes.

- POST /api/entitlements/ensure: called right after sign-in; creates the
  entitlement from billing truth when missing
- POST /api/entitlements/sync: "restore purchases"
- GET  /api/entitlements: current snapshot

The user id always comes from the bearer token.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from tryon_billing.api.dependencies.auth import get_app_settings, get_current_user_id
from tryon_billing.api.dependencies.services import get_billing_client
from tryon_billing.config.settings import BillingSettings
from tryon_billing.database.session import get_db_session
from tryon_billing.integrations.revenuecat.client import RevenueCatClient
from tryon_billing.jobs.ensure_entitlement import EntitlementReconciliationJob
from tryon_billing.platform.errors import NotFoundError
from tryon_billing.services.entitlement_store import EntitlementStore
from tryon_billing.services.generation_usage import GenerationUsageService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/entitlements", tags=["entitlements"])


class EntitlementResponse(BaseModel):
    """Entitlement snapshot."""
    success: bool = True
    user_id: str
    subscription_active: bool
    consumable_balance: int
    quality_tier: str
    watermark_suppressed: bool
    has_entry_access: bool
    total_packs_purchased: int


class EnsureEntitlementResponse(EntitlementResponse):
    action: str


class SyncEntitlementResponse(EntitlementResponse):
    verified_with_billing_platform: bool


def _job(
    db_session: Session,
    billing_client: Optional[RevenueCatClient],
    settings: BillingSettings,
) -> EntitlementReconciliationJob:
    return EntitlementReconciliationJob(
        db_session,
        billing_client=billing_client,
        usage_service=GenerationUsageService(db_session, settings.daily_generation_limit),
    )


@router.post("/ensure", response_model=EnsureEntitlementResponse)
async def ensure_entitlement(
    user_id: str = Depends(get_current_user_id),
    db_session: Session = Depends(get_db_session),
    billing_client: Optional[RevenueCatClient] = Depends(get_billing_client),
    settings: BillingSettings = Depends(get_app_settings),
):
    """
    Guarantee an entitlement row exists for the caller.

    Billing platform outages degrade to a zero-state row; only storage
    failures surface as errors.
    """
    result = await _job(db_session, billing_client, settings).ensure_entitlement(user_id)
    return result.to_dict()


@router.post("/sync", response_model=SyncEntitlementResponse)
async def sync_entitlement(
    user_id: str = Depends(get_current_user_id),
    db_session: Session = Depends(get_db_session),
    billing_client: Optional[RevenueCatClient] = Depends(get_billing_client),
    settings: BillingSettings = Depends(get_app_settings),
):
    """Re-verify the subscription flag with the billing platform."""
    result = await _job(db_session, billing_client, settings).sync_subscription(user_id)
    logger.info("Subscription synced", extra={
        "user_id": user_id,
        "subscription_active": result.subscription_active,
        "verified": result.verified,
    })
    return result.to_dict()


@router.get("", response_model=EntitlementResponse)
async def get_entitlement(
    user_id: str = Depends(get_current_user_id),
    db_session: Session = Depends(get_db_session),
):
    snapshot = EntitlementStore(db_session).get_snapshot(user_id)
    if snapshot is None:
        raise NotFoundError("Entitlement", user_id)
    return {"success": True, **snapshot}
