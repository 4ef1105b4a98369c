"""
Offer decision engine.

Decides whether to show a paywall offer at an in-app moment and which one.
Read-only: the caller records the impression once the offer is presented,
so a decision can be previewed without being counted.

Rules, first match wins:
1. subscription active -> already-maximal
2. daily impression cap
3. weekly impression cap
4. last generation failed -> after-failure
5. per-event routing by segment and purchase history
6. same-offer cooldown for the subscription offer
7. any-offer cooldown
"""

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from tryon_billing.models.entitlement import Entitlement
from tryon_billing.models.user_profile import UserProfile, UserSegment
from tryon_billing.services import offer_catalog as catalog
from tryon_billing.services.credit_ledger import CreditLedgerService
from tryon_billing.services.impression_ledger import ImpressionLedger

logger = logging.getLogger(__name__)


class TriggerEvent(str, enum.Enum):
    TRY_GENERATE = "try_generate"
    OUT_OF_LOOKS = "out_of_looks"
    SAVE_RESULT = "save_result"
    SHARE_RESULT = "share_result"
    ATTEMPT_SECOND_PACK = "attempt_second_pack"


class DecisionReason(str, enum.Enum):
    ALREADY_MAXIMAL = "already-maximal"
    DAILY_LIMIT = "daily-limit"
    WEEKLY_LIMIT = "weekly-limit"
    AFTER_FAILURE = "after-failure"
    HAS_ACCESS = "has-access"
    NO_ENTRY_YET = "no-entry-yet"
    FIRST_PACK = "first-pack"
    UNKNOWN_EVENT = "unknown-event"
    SAME_OFFER_COOLDOWN = "same-offer-cooldown"
    COOLDOWN_ACTIVE = "cooldown-active"
    NO_ENTITLEMENT = "no-entitlement"


@dataclass
class Decision:
    should_show: bool
    reason: Optional[DecisionReason] = None
    offer_key: Optional[str] = None
    surface: Optional[str] = None
    products: List[dict] = field(default_factory=list)
    highlight: Optional[str] = None
    copy_variant: Optional[dict] = None
    segment: Optional[str] = None
    balance: Optional[int] = None

    @classmethod
    def suppressed(cls, reason: DecisionReason, **kwargs) -> "Decision":
        return cls(should_show=False, reason=reason, **kwargs)

    def to_dict(self) -> dict:
        if not self.should_show:
            return {"should_show": False, "reason": self.reason.value if self.reason else None}
        return {
            "should_show": True,
            "offer_key": self.offer_key,
            "surface": self.surface,
            "products": self.products,
            "highlight": self.highlight,
            "copy_variant": self.copy_variant,
            "segment": self.segment,
            "balance": self.balance,
        }


@dataclass
class _UserState:
    subscription_active: bool
    has_entry_access: bool
    packs_purchased: int
    balance: int
    segment: str

    @property
    def has_purchase_history(self) -> bool:
        return self.has_entry_access or self.packs_purchased > 0


def _last_generation_failed(context: Optional[Dict[str, Any]]) -> bool:
    if not context:
        return False
    status = context.get("last_generation_status", context.get("lastGenerationStatus"))
    return str(status).lower() == "failed" if status is not None else False


class OfferDecisionEngine:
    """Segment-driven, frequency-capped offer selection."""

    def __init__(self, db_session: Session, now: Optional[datetime] = None):
        self.db_session = db_session
        self.impressions = ImpressionLedger(db_session)
        self.ledger = CreditLedgerService(db_session)
        self._now = now

    @property
    def now(self) -> datetime:
        return self._now or datetime.now(timezone.utc)

    def decide(self, user_id: str, event: str, context: Optional[Dict[str, Any]] = None) -> Decision:
        state = self._load_state(user_id)
        if state is None:
            return Decision.suppressed(DecisionReason.NO_ENTITLEMENT)

        decision = self._evaluate(user_id, event, context, state)
        logger.info("Offer decision", extra={
            "user_id": user_id,
            "trigger_event": event,
            "segment": state.segment,
            "should_show": decision.should_show,
            "offer_key": decision.offer_key,
            "reason": decision.reason.value if decision.reason else None,
        })
        return decision

    def _evaluate(
        self,
        user_id: str,
        event: str,
        context: Optional[Dict[str, Any]],
        state: _UserState,
    ) -> Decision:
        if state.subscription_active:
            return Decision.suppressed(DecisionReason.ALREADY_MAXIMAL)

        now = self.now
        if self.impressions.count_since(user_id, now - catalog.DAILY_WINDOW) >= catalog.MAX_DAILY_IMPRESSIONS:
            return Decision.suppressed(DecisionReason.DAILY_LIMIT)
        if self.impressions.count_since(user_id, now - catalog.WEEKLY_WINDOW) >= catalog.MAX_WEEKLY_IMPRESSIONS:
            return Decision.suppressed(DecisionReason.WEEKLY_LIMIT)

        if _last_generation_failed(context):
            return Decision.suppressed(DecisionReason.AFTER_FAILURE)

        decision = self._route(event, state)
        if not decision.should_show:
            return decision

        if decision.offer_key in catalog.SAME_OFFER_COOLDOWN_KEYS:
            last_same = self.impressions.last_impression_at(user_id, decision.offer_key)
            if last_same is not None and now - last_same < catalog.SAME_OFFER_COOLDOWN:
                return Decision.suppressed(DecisionReason.SAME_OFFER_COOLDOWN)

        last_any = self.impressions.last_impression_at(user_id)
        if last_any is not None and now - last_any < catalog.ANY_OFFER_COOLDOWN:
            return Decision.suppressed(DecisionReason.COOLDOWN_ACTIVE)

        return decision

    def _route(self, event: str, state: _UserState) -> Decision:
        try:
            trigger = TriggerEvent(event)
        except ValueError:
            return Decision.suppressed(DecisionReason.UNKNOWN_EVENT)

        if trigger == TriggerEvent.TRY_GENERATE:
            if not state.has_entry_access and state.balance == 0:
                return self._entry_offer(state)
            return Decision.suppressed(DecisionReason.HAS_ACCESS)

        if trigger == TriggerEvent.OUT_OF_LOOKS:
            if not state.has_purchase_history:
                return self._entry_offer(state)
            if state.packs_purchased >= 2:
                return self._creator_mode_offer(
                    state,
                    catalog.SURFACE_SHEET,
                    catalog.copy_variant(UserSegment.BUYER.value, catalog.OFFER_CREATOR_MODE),
                )
            if state.segment == UserSegment.TOURIST.value:
                return self._offer(
                    state,
                    offer_key=catalog.OFFER_PACKS,
                    surface=catalog.SURFACE_SHEET,
                    products=catalog.products(*catalog.PACK_PRODUCTS),
                    highlight=catalog.HIGHLIGHT_PACKS,
                    copy_variant=catalog.copy_variant(state.segment, catalog.OFFER_PACKS),
                )
            return self._creator_mode_offer(
                state,
                catalog.SURFACE_SHEET,
                catalog.copy_variant(state.segment, catalog.OFFER_CREATOR_MODE),
            )

        if trigger in (TriggerEvent.SAVE_RESULT, TriggerEvent.SHARE_RESULT):
            if not state.has_entry_access:
                return Decision.suppressed(DecisionReason.NO_ENTRY_YET)
            return self._offer(
                state,
                offer_key=catalog.OFFER_CREATOR_MODE,
                surface=catalog.SURFACE_PILL,
                products=catalog.products("creator_mode"),
                highlight=catalog.HIGHLIGHT_CREATOR_MODE,
                copy_variant=dict(catalog.DELIGHT_PILL_COPY),
            )

        # attempt_second_pack
        if state.packs_purchased >= 1:
            return self._offer(
                state,
                offer_key=catalog.OFFER_CREATOR_MODE,
                surface=catalog.SURFACE_FULLSCREEN,
                products=catalog.products("creator_mode"),
                highlight=catalog.HIGHLIGHT_CREATOR_MODE,
                copy_variant=catalog.copy_variant(UserSegment.BUYER.value, catalog.OFFER_CREATOR_MODE),
            )
        return Decision.suppressed(DecisionReason.FIRST_PACK)

    def _entry_offer(self, state: _UserState) -> Decision:
        return self._offer(
            state,
            offer_key=catalog.OFFER_ENTRY,
            surface=catalog.SURFACE_SHEET,
            products=catalog.products("entry"),
            highlight=catalog.HIGHLIGHT_ENTRY,
            copy_variant=catalog.copy_variant(UserSegment.TOURIST.value, catalog.OFFER_ENTRY),
        )

    def _creator_mode_offer(self, state: _UserState, surface: str, copy_variant: dict) -> Decision:
        return self._offer(
            state,
            offer_key=catalog.OFFER_CREATOR_MODE,
            surface=surface,
            products=catalog.products("creator_mode", *catalog.PACK_PRODUCTS),
            highlight=catalog.HIGHLIGHT_CREATOR_MODE,
            copy_variant=copy_variant,
        )

    @staticmethod
    def _offer(state: _UserState, **kwargs) -> Decision:
        return Decision(should_show=True, segment=state.segment, balance=state.balance, **kwargs)

    def _load_state(self, user_id: str) -> Optional[_UserState]:
        entitlement = self.db_session.execute(
            select(Entitlement).where(Entitlement.user_id == user_id)
        ).scalar_one_or_none()
        if entitlement is None:
            return None

        segment = self.db_session.execute(
            select(UserProfile.primary_segment).where(UserProfile.user_id == user_id)
        ).scalar_one_or_none()

        return _UserState(
            subscription_active=bool(entitlement.subscription_active),
            has_entry_access=bool(entitlement.has_entry_access),
            packs_purchased=int(entitlement.total_packs_purchased or 0),
            balance=self.ledger.get_balance(user_id),
            segment=UserSegment(segment).value if segment else UserSegment.TOURIST.value,
        )
