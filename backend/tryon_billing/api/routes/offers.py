"""
Offer routes.

- POST /api/offers/decide: read-only decision for an in-app moment
- POST /api/offers/impressions: record that an offer was presented
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from tryon_billing.api.dependencies.auth import get_current_user_id
from tryon_billing.database.session import get_db_session
from tryon_billing.services.impression_ledger import ImpressionLedger
from tryon_billing.services.offer_decision import OfferDecisionEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/offers", tags=["offers"])


class DecideOfferRequest(BaseModel):
    event: str = Field(..., description="Triggering in-app moment, e.g. out_of_looks")
    context: Dict[str, Any] = Field(default_factory=dict)


class RecordImpressionRequest(BaseModel):
    # Presence is validated by the ledger so a missing key is a 400, not a 422.
    offer_key: Optional[str] = None
    surface: Optional[str] = None
    action_taken: Optional[str] = None
    context: Optional[Dict[str, Any]] = None


@router.post("/decide")
async def decide_offer(
    body: DecideOfferRequest,
    user_id: str = Depends(get_current_user_id),
    db_session: Session = Depends(get_db_session),
):
    decision = OfferDecisionEngine(db_session).decide(user_id, body.event, body.context)
    return decision.to_dict()


@router.post("/impressions")
async def record_impression(
    body: RecordImpressionRequest,
    user_id: str = Depends(get_current_user_id),
    db_session: Session = Depends(get_db_session),
):
    impression = ImpressionLedger(db_session).record_impression(
        user_id,
        body.offer_key,
        body.surface,
        action_taken=body.action_taken,
        context=body.context,
    )
    return {"success": True, "id": impression.id}
