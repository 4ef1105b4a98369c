"""Generation usage routes."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from tryon_billing.api.dependencies.auth import get_app_settings, get_current_user_id
from tryon_billing.config.settings import BillingSettings
from tryon_billing.database.session import get_db_session
from tryon_billing.services.generation_usage import GenerationUsageService

router = APIRouter(prefix="/api/generations", tags=["generations"])


@router.get("/daily-limit")
async def daily_limit(
    user_id: str = Depends(get_current_user_id),
    db_session: Session = Depends(get_db_session),
    settings: BillingSettings = Depends(get_app_settings),
):
    """Trailing-24h generation cap for the caller."""
    service = GenerationUsageService(db_session, settings.daily_generation_limit)
    return service.check_daily_limit(user_id).to_dict()
