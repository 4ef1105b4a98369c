"""
Offer impression ledger.

Append-only; the decision engine reads counts and last-shown times,
callers record an impression once an offer is actually presented.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from tryon_billing.models.base import as_utc, utcnow
from tryon_billing.models.offer_impression import OfferImpression
from tryon_billing.platform.errors import ValidationError
from tryon_billing.services.transactions import run_in_transaction

logger = logging.getLogger(__name__)


class ImpressionLedger:

    def __init__(self, db_session: Session):
        self.db_session = db_session

    def record_impression(
        self,
        user_id: str,
        offer_key: Optional[str],
        surface: Optional[str],
        action_taken: Optional[str] = None,
        context: Optional[dict] = None,
        now: Optional[datetime] = None,
    ) -> OfferImpression:
        """
        Append an impression.

        Raises:
            ValidationError: offer_key or surface missing
        """
        if not offer_key or not surface:
            raise ValidationError(
                "Missing offer_key or surface",
                details={"offer_key": offer_key, "surface": surface},
            )

        impression = OfferImpression(
            user_id=user_id,
            offer_key=offer_key,
            surface=surface,
            action_taken=action_taken or None,
            context=context or None,
            created_at=now or utcnow(),
        )

        def _work() -> None:
            self.db_session.add(impression)

        # Rows get a fresh uuid, so only transient errors are worth retrying.
        run_in_transaction(self.db_session, _work, operation="record_impression")
        logger.info("Offer impression recorded", extra={
            "user_id": user_id,
            "offer_key": offer_key,
            "surface": surface,
            "action_taken": action_taken,
        })
        return impression

    def count_since(self, user_id: str, since: datetime) -> int:
        return int(self.db_session.execute(
            select(func.count(OfferImpression.id)).where(
                OfferImpression.user_id == user_id,
                OfferImpression.created_at >= since,
            )
        ).scalar() or 0)

    def last_impression_at(self, user_id: str, offer_key: Optional[str] = None) -> Optional[datetime]:
        """Most recent impression time, optionally for one offer only."""
        query = select(func.max(OfferImpression.created_at)).where(OfferImpression.user_id == user_id)
        if offer_key is not None:
            query = query.where(OfferImpression.offer_key == offer_key)
        last = self.db_session.execute(query).scalar()
        return as_utc(last) if last is not None else None
