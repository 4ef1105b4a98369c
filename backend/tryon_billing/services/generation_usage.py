"""
Generation usage queries.

- count_generations: lifetime successful generations, used by the
  reconciliation consumption estimate
- check_daily_limit: trailing-24h generation cap
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tryon_billing.models.base import as_utc
from tryon_billing.models.generation import Generation, GenerationStatus

logger = logging.getLogger(__name__)

DEFAULT_DAILY_LIMIT = 20
RESET_WINDOW = timedelta(hours=24)


@dataclass
class DailyLimitStatus:
    can_generate: bool
    count: int
    limit: int
    remaining: int
    reset_in_minutes: int = 0
    reset_time_formatted: str = "now"
    error: Optional[str] = field(default=None)

    def to_dict(self) -> dict:
        payload = {
            "can_generate": self.can_generate,
            "count": self.count,
            "limit": self.limit,
            "remaining": self.remaining,
            "reset_in_minutes": self.reset_in_minutes,
            "reset_time_formatted": self.reset_time_formatted,
        }
        if self.error:
            payload["error"] = self.error
        return payload


def format_reset_time(minutes: int) -> str:
    """Human-readable reset time: "now", "45 minutes", "3h 5m"."""
    if minutes <= 0:
        return "now"
    hours, remainder = divmod(minutes, 60)
    if hours > 0:
        return f"{hours}h {remainder}m"
    return f"{remainder} minutes"


class GenerationUsageService:

    def __init__(self, db_session: Session, daily_limit: int = DEFAULT_DAILY_LIMIT):
        self.db_session = db_session
        self.daily_limit = daily_limit

    def count_generations(self, user_id: str) -> int:
        """Total successful generations ever recorded for the user."""
        return int(self.db_session.execute(
            select(func.count(Generation.id)).where(
                Generation.user_id == user_id,
                Generation.status == GenerationStatus.SUCCEEDED.value,
            )
        ).scalar() or 0)

    def check_daily_limit(self, user_id: str, now: Optional[datetime] = None) -> DailyLimitStatus:
        """
        Check the trailing-24h generation cap.

        The window resets when the oldest generation inside it ages out.
        Storage errors allow generation rather than blocking the user.
        """
        now = now or datetime.now(timezone.utc)
        window_start = now - RESET_WINDOW

        try:
            timestamps = self.db_session.execute(
                select(Generation.created_at)
                .where(
                    Generation.user_id == user_id,
                    Generation.created_at >= window_start,
                )
                .order_by(Generation.created_at.asc())
            ).scalars().all()
        except SQLAlchemyError as e:
            self.db_session.rollback()
            logger.error("Failed to read generation history", extra={
                "user_id": user_id,
                "error": str(e),
            })
            return DailyLimitStatus(
                can_generate=True,
                count=0,
                limit=self.daily_limit,
                remaining=self.daily_limit,
                error="Could not verify limit",
            )

        count = len(timestamps)
        can_generate = count < self.daily_limit
        reset_in_minutes = 0
        if not can_generate and timestamps:
            reset_at = as_utc(timestamps[0]) + RESET_WINDOW
            reset_in_minutes = max(0, math.ceil((reset_at - now).total_seconds() / 60))

        return DailyLimitStatus(
            can_generate=can_generate,
            count=count,
            limit=self.daily_limit,
            remaining=max(0, self.daily_limit - count),
            reset_in_minutes=reset_in_minutes,
            reset_time_formatted=format_reset_time(reset_in_minutes),
        )
