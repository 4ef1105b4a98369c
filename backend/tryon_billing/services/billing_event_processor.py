"""
Billing platform webhook processor.

Applies one BillingEvent to the entitlement store and the credit ledger:
- subscription lifecycle events set subscription_active
- credit-pack purchases add looks to both ledger locations, deduplicated by
  an idempotency key committed in the same transaction as the credit
- events for subscribers that cannot be linked to a durable user are
  recorded for later recovery and reported as a soft skip

Subscription writes are retried locally (idempotent upserts). Credit adds
fail closed: nothing is applied unless key and credit commit together.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from tryon_billing.billing.catalog import credit_pack_for_product
from tryon_billing.billing.errors import IdentityUnresolvedError
from tryon_billing.billing.events import (
    ACTIVATING_EVENTS,
    DEACTIVATING_EVENTS,
    TRIAL_EVENTS,
    BillingEvent,
    BillingEventType,
)
from tryon_billing.models.billing_event_key import BillingEventKey
from tryon_billing.models.monetization_event import MonetizationEvent
from tryon_billing.models.unresolved_billing_event import UnresolvedBillingEvent
from tryon_billing.services.credit_ledger import CreditLedgerService
from tryon_billing.services.entitlement_store import EntitlementStore
from tryon_billing.services.identity_resolver import SubscriberLookup, resolve_user_id
from tryon_billing.services.transactions import run_in_transaction

logger = logging.getLogger(__name__)


class ProcessStatus(str, enum.Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IDENTITY_UNRESOLVED = "identity_unresolved"
    UNHANDLED = "unhandled"
    IGNORED = "ignored"


@dataclass
class ProcessResult:
    status: ProcessStatus
    action: str
    user_id: Optional[str] = None
    subscription_active: Optional[bool] = None
    credits_added: int = 0

    def to_dict(self) -> dict:
        payload = {
            "success": True,
            "status": self.status.value,
            "action": self.action,
        }
        if self.user_id:
            payload["user_id"] = self.user_id
        if self.subscription_active is not None:
            payload["subscription_active"] = self.subscription_active
        if self.credits_added:
            payload["credits_added"] = self.credits_added
        return payload


class BillingEventProcessor:
    """Processes billing platform webhook events."""

    def __init__(self, db_session: Session, billing_client: Optional[SubscriberLookup] = None):
        self.db_session = db_session
        self.billing_client = billing_client
        self.store = EntitlementStore(db_session)
        self.ledger = CreditLedgerService(db_session)

    async def process(self, event: BillingEvent) -> ProcessResult:
        """
        Apply a billing event.

        Returns:
            ProcessResult; every outcome other than a storage failure is a
            result the webhook acknowledges with 200

        Raises:
            SQLAlchemyError: storage kept failing (the platform will redeliver)
        """
        logger.info("Processing billing event", extra={
            "event_type": event.raw_type or event.type.value,
            "subscriber_id": event.subscriber_id,
            "product_id": event.product_id,
            "environment": event.environment,
        })

        if event.type == BillingEventType.UNKNOWN:
            logger.info("Unhandled billing event type", extra={"event_type": event.raw_type})
            return ProcessResult(status=ProcessStatus.UNHANDLED, action="none")

        pack = None
        if event.type == BillingEventType.NON_RENEWING_PURCHASE:
            pack = credit_pack_for_product(event.product_id)
            if pack is None:
                logger.info("Non-renewing purchase is not a credit pack", extra={
                    "product_id": event.product_id,
                })
                return ProcessResult(status=ProcessStatus.IGNORED, action="none")

        try:
            user_id = await resolve_user_id(
                event.subscriber_id,
                [alias for alias in (event.original_subscriber_id, *event.aliases) if alias],
                self.billing_client,
            )
        except IdentityUnresolvedError as e:
            self._record_unresolved(event, e)
            return ProcessResult(status=ProcessStatus.IDENTITY_UNRESOLVED, action="recorded_for_recovery")

        if pack is not None:
            return self._apply_credit_pack(event, user_id, pack)
        return self._apply_subscription_event(event, user_id)

    def _apply_subscription_event(self, event: BillingEvent, user_id: str) -> ProcessResult:
        if event.type in ACTIVATING_EVENTS:
            if not event.entitlement_ids:
                logger.warning("Activating event without entitlement ids; activating anyway", extra={
                    "user_id": user_id,
                    "event_type": event.type.value,
                    "product_id": event.product_id,
                })
            active = True
        elif event.type in TRIAL_EVENTS:
            active = True
        elif event.type in DEACTIVATING_EVENTS:
            active = False
        else:
            logger.info("No entitlement effect for billing event", extra={
                "user_id": user_id,
                "event_type": event.type.value,
            })
            return ProcessResult(status=ProcessStatus.UNHANDLED, action="none", user_id=user_id)

        self.store.upsert_subscription_state(user_id, active)
        self._log_monetization_event(user_id, event)

        action = "subscription_activated" if active else "subscription_deactivated"
        logger.info("Subscription state applied", extra={
            "user_id": user_id,
            "event_type": event.type.value,
            "subscription_active": active,
        })
        return ProcessResult(
            status=ProcessStatus.PROCESSED,
            action=action,
            user_id=user_id,
            subscription_active=active,
        )

    def _apply_credit_pack(self, event: BillingEvent, user_id: str, pack) -> ProcessResult:
        key = event.idempotency_key()

        def _work() -> bool:
            seen = self.db_session.execute(
                select(BillingEventKey.idempotency_key).where(BillingEventKey.idempotency_key == key)
            ).scalar_one_or_none()
            if seen is not None:
                return False
            self.db_session.add(BillingEventKey(
                idempotency_key=key,
                user_id=user_id,
                event_type=event.type.value,
                product_id=event.product_id,
                credits_granted=pack.credits,
            ))
            self.db_session.flush()
            self.ledger.apply_add(
                user_id,
                pack.credits,
                packs_purchased=1 if pack.counts_as_pack else 0,
                grant_entry_access=pack.grants_entry_access,
            )
            return True

        try:
            applied = run_in_transaction(self.db_session, _work, operation="credit_pack_purchase")
        except IntegrityError:
            # Retries exhausted on conflicts: a concurrent delivery owns the key.
            applied = False

        if not applied:
            logger.info("Duplicate credit-pack event skipped", extra={
                "user_id": user_id,
                "product_id": event.product_id,
                "idempotency_key": key,
            })
            return ProcessResult(status=ProcessStatus.DUPLICATE, action="skipped", user_id=user_id)

        self.ledger.verify_consistency(user_id)
        logger.info("Credit pack applied", extra={
            "user_id": user_id,
            "product_id": event.product_id,
            "credits": pack.credits,
        })
        return ProcessResult(
            status=ProcessStatus.PROCESSED,
            action="credits_added",
            user_id=user_id,
            credits_added=pack.credits,
        )

    def _record_unresolved(self, event: BillingEvent, error: IdentityUnresolvedError) -> None:
        logger.error("Billing event for unresolved subscriber; recorded for recovery", extra={
            "subscriber_id": event.subscriber_id,
            "event_type": event.type.value,
            "product_id": event.product_id,
            "aliases": error.aliases,
        })

        def _work() -> None:
            self.db_session.add(UnresolvedBillingEvent(
                subscriber_id=event.subscriber_id,
                event_type=event.type.value,
                product_id=event.product_id,
                aliases=list(event.aliases),
                payload=event.model_dump(mode="json", by_alias=True),
            ))

        run_in_transaction(self.db_session, _work, operation="record_unresolved_event")

    def _log_monetization_event(self, user_id: str, event: BillingEvent) -> None:
        """Analytics trail; failures never affect the entitlement write."""
        try:
            self.db_session.add(MonetizationEvent(
                user_id=user_id,
                event_type=event.type.value,
                product_id=event.product_id,
            ))
            self.db_session.commit()
        except SQLAlchemyError as e:
            self.db_session.rollback()
            logger.warning("Failed to log monetization event", extra={
                "user_id": user_id,
                "event_type": event.type.value,
                "error": str(e),
            })
