"""
Entitlement reconciliation job ("ensure-entitlement").

Runs after every sign-in. Guarantees the user has an entitlement row,
rebuilding it from the billing platform when it is missing. This is what
recovers purchases made before the user authenticated, which the webhook
could not link to a durable user.

Handles:
- existing row: returned as-is, no external calls
- missing row: subscription state + unredeemed credits recovered from the
  billing platform, inserted together with the credits mirror
- concurrent first sign-in: insert conflict falls back to an additive
  update guarded by a per-user recovery key (applied exactly once)
- billing platform down: zero-balance, non-subscribed row

Manual run for support cases:
    python -m tryon_billing.jobs.ensure_entitlement <user_id> [<user_id> ...]
"""

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from tryon_billing.billing.errors import UpstreamUnavailableError
from tryon_billing.integrations.revenuecat.client import RevenueCatClient, SubscriberRecord
from tryon_billing.models.billing_event_key import BillingEventKey
from tryon_billing.models.entitlement import Entitlement, derived_quality
from tryon_billing.models.unresolved_billing_event import UnresolvedBillingEvent, UnresolvedEventStatus
from tryon_billing.services.credit_ledger import CreditLedgerService
from tryon_billing.services.entitlement_store import EntitlementStore
from tryon_billing.services.generation_usage import GenerationUsageService
from tryon_billing.services.transactions import run_in_transaction

logger = logging.getLogger(__name__)

RECOVERY_EVENT_TYPE = "ENTITLEMENT_RECOVERY"


class EnsureAction(str, enum.Enum):
    EXISTS = "exists"
    CREATED = "created"
    CREATED_DEGRADED = "created_degraded"
    RACE_HEALED = "race_healed"


@dataclass
class RecoveredState:
    """What the billing platform says the user owns."""
    subscription_active: bool = False
    purchased_credits: int = 0
    estimated_consumed: int = 0
    recovered_balance: int = 0
    packs_purchased: int = 0
    has_entry_access: bool = False
    verified: bool = False
    subscriber: Optional[SubscriberRecord] = None

    @property
    def has_purchases(self) -> bool:
        return self.recovered_balance > 0 or self.packs_purchased > 0 or self.has_entry_access


@dataclass
class EnsureResult:
    action: EnsureAction
    snapshot: dict
    recovered_balance: int = 0

    def to_dict(self) -> dict:
        return {"success": True, "action": self.action.value, **self.snapshot}


@dataclass
class SyncResult:
    subscription_active: bool
    verified: bool
    snapshot: dict

    def to_dict(self) -> dict:
        return {
            "success": True,
            "verified_with_billing_platform": self.verified,
            **self.snapshot,
        }


def recovery_key(user_id: str) -> str:
    return f"recovery:{user_id}"


def estimate_recovered_balance(purchased_credits: int, total_generations: int) -> tuple:
    """
    Heuristic consumption estimate for the pre-sign-in period.

    No authoritative "credits spent" record exists before sign-in, so every
    past generation is assumed to have consumed one purchased credit.

    Returns:
        (estimated_consumed, recovered_balance)
    """
    estimated_consumed = min(max(total_generations, 0), max(purchased_credits, 0))
    return estimated_consumed, max(0, purchased_credits - estimated_consumed)


class EntitlementReconciliationJob:
    """
    Ensures an entitlement row exists for an authenticated user.

    Idempotent; safe to call on every authentication.
    """

    def __init__(
        self,
        db_session: Session,
        billing_client: Optional[RevenueCatClient] = None,
        usage_service: Optional[GenerationUsageService] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db_session = db_session
        self.billing_client = billing_client
        self.store = EntitlementStore(db_session)
        self.ledger = CreditLedgerService(db_session)
        self.usage = usage_service or GenerationUsageService(db_session)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def ensure_entitlement(self, user_id: str) -> EnsureResult:
        """
        Return the user's entitlement, creating it from billing truth if absent.

        Raises:
            SQLAlchemyError: genuine storage failure (never for billing outages)
        """
        existing = self.store.get(user_id)
        if existing is not None:
            logger.debug("Entitlement already exists", extra={"user_id": user_id})
            return EnsureResult(action=EnsureAction.EXISTS, snapshot=existing.snapshot())

        state = await self._recover_state(user_id)

        if self._insert_recovered(user_id, state):
            action = EnsureAction.CREATED if state.verified else EnsureAction.CREATED_DEGRADED
        else:
            self._apply_recovery_to_existing(user_id, state)
            action = EnsureAction.RACE_HEALED

        self.ledger.verify_consistency(user_id)
        if state.subscriber is not None:
            self._mark_unresolved_events_recovered(user_id, state.subscriber)

        snapshot = self.store.get_snapshot(user_id)
        logger.info("Entitlement ensured", extra={
            "user_id": user_id,
            "action": action.value,
            "subscription_active": snapshot["subscription_active"],
            "consumable_balance": snapshot["consumable_balance"],
            "recovered_balance": state.recovered_balance,
        })
        return EnsureResult(action=action, snapshot=snapshot, recovered_balance=state.recovered_balance)

    async def sync_subscription(self, user_id: str) -> SyncResult:
        """
        Re-verify the subscription flag with the billing platform ("restore purchases").

        Balances are never touched. When the platform cannot be reached the
        stored flag is kept; a missing row is created zero-state.
        """
        record: Optional[SubscriberRecord] = None
        verified = False
        if self.billing_client is None:
            logger.warning("Billing lookup not configured; subscription not verified", extra={
                "user_id": user_id,
            })
        else:
            try:
                record = await self.billing_client.get_subscriber(user_id)
                verified = True
            except UpstreamUnavailableError as e:
                logger.warning("Subscription sync degraded: billing platform unavailable", extra={
                    "user_id": user_id,
                    "error": str(e),
                })

        if verified:
            active = record.is_subscription_active(self._clock()) if record is not None else False
            entitlement = self.store.upsert_subscription_state(user_id, active)
        else:
            entitlement = self.store.get(user_id)
            if entitlement is None:
                entitlement = self.store.upsert_subscription_state(user_id, False)

        return SyncResult(
            subscription_active=bool(entitlement.subscription_active),
            verified=verified,
            snapshot=entitlement.snapshot(),
        )

    async def _recover_state(self, user_id: str) -> RecoveredState:
        if self.billing_client is None:
            logger.warning("REVENUECAT_API_KEY not set, creating zero-state entitlement", extra={
                "user_id": user_id,
            })
            return RecoveredState()

        try:
            record = await self.billing_client.get_subscriber(user_id)
        except UpstreamUnavailableError as e:
            logger.warning("Billing platform unavailable, creating zero-state entitlement", extra={
                "user_id": user_id,
                "error": str(e),
            })
            return RecoveredState()

        if record is None:
            return RecoveredState(verified=True)

        now = self._clock()
        has_entitlement = record.has_active_entitlement(now=now)
        has_active_sub = record.has_active_subscription(now=now)
        state = RecoveredState(
            subscription_active=has_entitlement or has_active_sub,
            purchased_credits=record.purchased_credits(),
            packs_purchased=record.purchased_pack_count(),
            has_entry_access=record.has_entry_purchase(),
            verified=True,
            subscriber=record,
        )
        if not has_entitlement and has_active_sub:
            logger.warning("Active subscription without entitlement grant", extra={"user_id": user_id})

        if state.purchased_credits > 0:
            total_generations = self.usage.count_generations(user_id)
            state.estimated_consumed, state.recovered_balance = estimate_recovered_balance(
                state.purchased_credits, total_generations
            )
            logger.info("Recovering purchased credits", extra={
                "user_id": user_id,
                "purchased": state.purchased_credits,
                "estimated_consumed": state.estimated_consumed,
                "recovered": state.recovered_balance,
            })
        return state

    def _insert_recovered(self, user_id: str, state: RecoveredState) -> bool:
        """Insert row + mirror + recovery key in one transaction. False on unique conflict."""

        def _work() -> None:
            self.db_session.add(Entitlement(
                user_id=user_id,
                consumable_balance=state.recovered_balance,
                has_entry_access=state.has_entry_access,
                total_packs_purchased=state.packs_purchased,
                **derived_quality(state.subscription_active),
            ))
            self.db_session.flush()
            if state.has_purchases:
                self._record_recovery_key(user_id, state.recovered_balance)
            self.ledger.increment_mirror(user_id, state.recovered_balance)

        try:
            run_in_transaction(
                self.db_session,
                _work,
                retry_on=(OperationalError,),
                operation="ensure_entitlement_insert",
            )
        except IntegrityError:
            logger.warning("Entitlement insert lost a race; applying additive recovery", extra={
                "user_id": user_id,
            })
            return False
        return True

    def _apply_recovery_to_existing(self, user_id: str, state: RecoveredState) -> None:
        """Additive update of a row another writer created first."""

        def _work() -> bool:
            if state.subscription_active:
                self.store.apply_subscription_state(user_id, True)
            if not state.has_purchases:
                return False
            already = self.db_session.execute(
                select(BillingEventKey.idempotency_key).where(
                    BillingEventKey.idempotency_key == recovery_key(user_id)
                )
            ).scalar_one_or_none()
            if already is not None:
                return False
            self._record_recovery_key(user_id, state.recovered_balance)
            self.ledger.apply_add(
                user_id,
                state.recovered_balance,
                packs_purchased=state.packs_purchased,
                grant_entry_access=state.has_entry_access,
            )
            return True

        applied = run_in_transaction(self.db_session, _work, operation="ensure_entitlement_race")
        logger.info("Race-path recovery", extra={
            "user_id": user_id,
            "credits_applied": state.recovered_balance if applied else 0,
        })

    def _record_recovery_key(self, user_id: str, credits: int) -> None:
        self.db_session.add(BillingEventKey(
            idempotency_key=recovery_key(user_id),
            user_id=user_id,
            event_type=RECOVERY_EVENT_TYPE,
            credits_granted=credits,
        ))
        self.db_session.flush()

    def _mark_unresolved_events_recovered(self, user_id: str, record: SubscriberRecord) -> None:
        def _work() -> int:
            pending = self.db_session.execute(
                select(UnresolvedBillingEvent).where(
                    UnresolvedBillingEvent.subscriber_id.in_(record.known_ids),
                    UnresolvedBillingEvent.status == UnresolvedEventStatus.PENDING,
                )
            ).scalars().all()
            now = self._clock()
            for event in pending:
                event.mark_recovered(user_id, now)
            return len(pending)

        recovered = run_in_transaction(self.db_session, _work, operation="mark_unresolved_recovered")
        if recovered:
            logger.info("Unresolved billing events recovered", extra={
                "user_id": user_id,
                "count": recovered,
            })


async def ensure_entitlement(
    db_session: Session,
    user_id: str,
    billing_client: Optional[RevenueCatClient] = None,
) -> EnsureResult:
    """Convenience wrapper to run the job for one user."""
    job = EntitlementReconciliationJob(db_session, billing_client=billing_client)
    return await job.ensure_entitlement(user_id)


async def _run_for_users(user_ids) -> list:
    from tryon_billing.config.settings import get_settings
    from tryon_billing.database.session import create_db_engine, create_session_factory

    settings = get_settings()
    engine = create_db_engine(settings.database_url)
    session = create_session_factory(engine)()
    client = RevenueCatClient.from_settings(settings)
    try:
        results = []
        for user_id in user_ids:
            result = await ensure_entitlement(session, user_id, billing_client=client)
            results.append((user_id, result.action.value, result.snapshot))
        return results
    finally:
        if client is not None:
            await client.close()
        session.close()
        engine.dispose()


if __name__ == "__main__":
    import asyncio
    import sys

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if len(sys.argv) < 2:
        print("usage: python -m tryon_billing.jobs.ensure_entitlement <user_id> [<user_id> ...]")
        sys.exit(1)

    for user_id, action, snapshot in asyncio.run(_run_for_users(sys.argv[1:])):
        print(f"{user_id}: {action} {snapshot}")
