"""
RevenueCat webhook handler.

SECURITY:
- Every delivery MUST carry the shared secret ("Authorization: Bearer <secret>")
- No user authentication (deliveries come from the billing platform)
- The user id is resolved from the subscriber id, never trusted from the body

Status codes:
- 200: processed, duplicate, unresolved identity, unhandled type
- 400: malformed JSON or event
- 401: secret mismatch
- 500: storage failure (the platform redelivers)
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tryon_billing.api.dependencies.auth import get_app_settings
from tryon_billing.api.dependencies.services import get_billing_client
from tryon_billing.billing.events import BillingEvent
from tryon_billing.config.settings import BillingSettings
from tryon_billing.database.session import get_db_session
from tryon_billing.integrations.revenuecat.client import RevenueCatClient
from tryon_billing.services.billing_event_processor import BillingEventProcessor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


async def verify_webhook(
    request: Request,
    authorization: Optional[str] = Header(default=None),
    settings: BillingSettings = Depends(get_app_settings),
) -> bytes:
    """
    Verify the shared secret and return the raw body.

    Raises:
        HTTPException: 401 if the secret does not match
    """
    if not RevenueCatClient.verify_webhook_authorization(authorization, settings.revenuecat_webhook_secret):
        logger.warning("Invalid webhook authorization", extra={"path": request.url.path})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
    return await request.body()


@router.post("/revenuecat")
async def handle_revenuecat_event(
    body: bytes = Depends(verify_webhook),
    db_session: Session = Depends(get_db_session),
    billing_client: Optional[RevenueCatClient] = Depends(get_billing_client),
):
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.error("Invalid webhook JSON payload")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid JSON payload",
        )

    try:
        event = BillingEvent.from_payload(payload)
    except PydanticValidationError as e:
        logger.error("Malformed billing event", extra={"errors": e.error_count()})
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Malformed event",
        )

    try:
        result = await BillingEventProcessor(db_session, billing_client).process(event)
    except SQLAlchemyError as e:
        logger.error("Failed to process billing webhook", extra={
            "event_type": event.raw_type,
            "subscriber_id": event.subscriber_id,
            "error": str(e),
        })
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "error": "Storage failure"},
        )

    return result.to_dict()
