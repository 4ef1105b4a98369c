"""
Entitlement store: reads and subscription-state upserts.

Subscription writes are keyed by user id and naturally idempotent
(setting a boolean twice is safe), so transient storage failures are
retried locally.
"""

import logging
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from tryon_billing.models.base import utcnow
from tryon_billing.models.entitlement import Entitlement, derived_quality
from tryon_billing.services.transactions import run_in_transaction

logger = logging.getLogger(__name__)


class EntitlementStore:
    """Per-user entitlement records."""

    def __init__(self, db_session: Session):
        self.db_session = db_session

    def get(self, user_id: str) -> Optional[Entitlement]:
        return self.db_session.execute(
            select(Entitlement)
            .where(Entitlement.user_id == user_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def get_snapshot(self, user_id: str) -> Optional[dict]:
        entitlement = self.get(user_id)
        return entitlement.snapshot() if entitlement is not None else None

    def apply_subscription_state(self, user_id: str, active: bool) -> None:
        """Upsert the subscription flag inside the current transaction."""
        values = derived_quality(active)
        values["updated_at"] = utcnow()
        result = self.db_session.execute(
            update(Entitlement).where(Entitlement.user_id == user_id).values(**values)
        )
        if result.rowcount:
            return
        self.db_session.add(Entitlement(user_id=user_id, consumable_balance=0, **derived_quality(active)))
        self.db_session.flush()

    def upsert_subscription_state(self, user_id: str, active: bool) -> Entitlement:
        """
        Atomically set the subscription flag, creating the row if needed.

        A unique conflict means a concurrent writer inserted the row first;
        the retry then takes the UPDATE path.
        """
        run_in_transaction(
            self.db_session,
            lambda: self.apply_subscription_state(user_id, active),
            operation="upsert_subscription_state",
        )
        logger.info("Subscription state updated", extra={
            "user_id": user_id,
            "subscription_active": active,
        })
        entitlement = self.get(user_id)
        self.db_session.refresh(entitlement)
        return entitlement
