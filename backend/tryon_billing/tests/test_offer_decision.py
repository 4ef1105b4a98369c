"""
Tests for the offer decision engine and impression ledger.

Tests cover:
1. Short-circuit rules (already-maximal, caps, after-failure)
2. Per-event routing by segment and purchase history
3. Same-offer and any-offer cooldowns
4. Impression recording
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from tryon_billing.models import CreditBalance, OfferImpression, UserProfile, UserSegment
from tryon_billing.platform.errors import ValidationError
from tryon_billing.services.impression_ledger import ImpressionLedger
from tryon_billing.services.offer_decision import DecisionReason, OfferDecisionEngine
from tryon_billing.tests.factories import seed_entitlement

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def set_segment(session, user_id, segment):
    session.add(UserProfile(user_id=user_id, primary_segment=segment))
    session.commit()


def add_impression(session, user_id, offer_key="packs", hours_ago=1.0, surface="sheet"):
    ImpressionLedger(session).record_impression(
        user_id, offer_key, surface, now=NOW - timedelta(hours=hours_ago),
    )


def decide(session, user_id, event, context=None):
    return OfferDecisionEngine(session, now=NOW).decide(user_id, event, context or {})


class TestShortCircuits:

    def test_no_entitlement(self, db_session, user_id):
        decision = decide(db_session, user_id, "out_of_looks")

        assert decision.should_show is False
        assert decision.reason == DecisionReason.NO_ENTITLEMENT

    def test_subscribed_user_is_already_maximal(self, db_session, user_id):
        seed_entitlement(db_session, user_id, active=True, packs=3, has_entry_access=True)

        decision = decide(db_session, user_id, "out_of_looks")

        assert decision.should_show is False
        assert decision.reason == DecisionReason.ALREADY_MAXIMAL

    @pytest.mark.parametrize("event", ["try_generate", "out_of_looks", "save_result", "attempt_second_pack"])
    @pytest.mark.parametrize("segment", list(UserSegment))
    def test_daily_cap_applies_to_every_event_and_segment(self, db_session, user_id, event, segment):
        seed_entitlement(db_session, user_id, has_entry_access=True, packs=1)
        set_segment(db_session, user_id, segment)
        add_impression(db_session, user_id, hours_ago=10)
        add_impression(db_session, user_id, hours_ago=20)

        decision = decide(db_session, user_id, event)

        assert decision.should_show is False
        assert decision.reason == DecisionReason.DAILY_LIMIT

    def test_weekly_cap(self, db_session, user_id):
        seed_entitlement(db_session, user_id)
        for days_ago in (2, 3, 4, 5, 6):
            add_impression(db_session, user_id, hours_ago=24 * days_ago)

        decision = decide(db_session, user_id, "try_generate")

        assert decision.reason == DecisionReason.WEEKLY_LIMIT

    def test_impressions_older_than_a_week_do_not_count(self, db_session, user_id):
        seed_entitlement(db_session, user_id)
        for days_ago in (8, 9, 10, 11, 12, 13):
            add_impression(db_session, user_id, hours_ago=24 * days_ago)

        decision = decide(db_session, user_id, "try_generate")

        assert decision.should_show is True

    @pytest.mark.parametrize("segment", list(UserSegment))
    def test_after_failure_never_shows(self, db_session, user_id, segment):
        seed_entitlement(db_session, user_id)
        set_segment(db_session, user_id, segment)

        decision = decide(db_session, user_id, "out_of_looks", {"last_generation_status": "failed"})

        assert decision.should_show is False
        assert decision.reason == DecisionReason.AFTER_FAILURE

    def test_after_failure_accepts_camel_case_context(self, db_session, user_id):
        seed_entitlement(db_session, user_id)

        decision = decide(db_session, user_id, "try_generate", {"lastGenerationStatus": "failed"})

        assert decision.reason == DecisionReason.AFTER_FAILURE


class TestRouting:

    def test_tourist_try_generate_gets_entry_offer(self, db_session, user_id):
        seed_entitlement(db_session, user_id)
        set_segment(db_session, user_id, UserSegment.TOURIST)

        decision = decide(db_session, user_id, "try_generate")

        assert decision.should_show is True
        assert decision.offer_key == "entry"
        assert decision.surface == "sheet"
        assert [p["id"] for p in decision.products] == ["entry_access"]
        assert decision.highlight == "entry_access"
        assert decision.copy_variant["cta"] == "Unlock for $2.99"

    def test_missing_profile_defaults_to_tourist(self, db_session, user_id):
        seed_entitlement(db_session, user_id)

        decision = decide(db_session, user_id, "try_generate")

        assert decision.segment == "tourist"
        assert decision.offer_key == "entry"

    def test_try_generate_with_balance_has_access(self, db_session, user_id):
        seed_entitlement(db_session, user_id, balance=3)

        decision = decide(db_session, user_id, "try_generate")

        assert decision.should_show is False
        assert decision.reason == DecisionReason.HAS_ACCESS

    def test_balance_is_read_from_mirror(self, db_session, user_id):
        seed_entitlement(db_session, user_id, balance=0, mirror=False)
        db_session.add(CreditBalance(user_id=user_id, balance=4))
        db_session.commit()

        decision = decide(db_session, user_id, "try_generate")

        assert decision.reason == DecisionReason.HAS_ACCESS

    @pytest.mark.parametrize("segment", list(UserSegment))
    def test_out_of_looks_without_history_gets_entry(self, db_session, user_id, segment):
        seed_entitlement(db_session, user_id)
        set_segment(db_session, user_id, segment)

        decision = decide(db_session, user_id, "out_of_looks")

        assert decision.offer_key == "entry"

    def test_out_of_looks_tourist_with_entry_gets_packs(self, db_session, user_id):
        seed_entitlement(db_session, user_id, has_entry_access=True)
        set_segment(db_session, user_id, UserSegment.TOURIST)

        decision = decide(db_session, user_id, "out_of_looks")

        assert decision.offer_key == "packs"
        assert [p["id"] for p in decision.products] == ["10looks", "30looks", "100looks"]
        assert decision.highlight == "30looks"

    @pytest.mark.parametrize("segment", [UserSegment.SAMPLER, UserSegment.EXPLORER, UserSegment.BUYER, UserSegment.POWER])
    def test_out_of_looks_engaged_segments_get_creator_mode(self, db_session, user_id, segment):
        seed_entitlement(db_session, user_id, has_entry_access=True, packs=1)
        set_segment(db_session, user_id, segment)

        decision = decide(db_session, user_id, "out_of_looks")

        assert decision.offer_key == "creator_mode"
        assert decision.products[0]["id"] == "creator_mode_weekly"
        assert len(decision.products) == 4
        assert decision.highlight == "creator_mode_weekly"

    def test_repeat_pack_buyer_steered_to_subscription(self, db_session, user_id):
        seed_entitlement(db_session, user_id, has_entry_access=True, packs=2)
        set_segment(db_session, user_id, UserSegment.TOURIST)

        decision = decide(db_session, user_id, "out_of_looks")

        assert decision.offer_key == "creator_mode"

    @pytest.mark.parametrize("event", ["save_result", "share_result"])
    def test_delight_moment_without_entry(self, db_session, user_id, event):
        seed_entitlement(db_session, user_id, balance=2)

        decision = decide(db_session, user_id, event)

        assert decision.reason == DecisionReason.NO_ENTRY_YET

    @pytest.mark.parametrize("event", ["save_result", "share_result"])
    def test_delight_moment_soft_pill(self, db_session, user_id, event):
        seed_entitlement(db_session, user_id, has_entry_access=True)

        decision = decide(db_session, user_id, event)

        assert decision.offer_key == "creator_mode"
        assert decision.surface == "pill"
        assert decision.copy_variant == {"title": "Create freely this week", "cta": "Try Creator Mode"}

    def test_second_pack_attempt_intercepted(self, db_session, user_id):
        seed_entitlement(db_session, user_id, has_entry_access=True, packs=1)

        decision = decide(db_session, user_id, "attempt_second_pack")

        assert decision.offer_key == "creator_mode"
        assert decision.surface == "fullscreen"

    def test_first_pack_not_intercepted(self, db_session, user_id):
        seed_entitlement(db_session, user_id, has_entry_access=True)

        decision = decide(db_session, user_id, "attempt_second_pack")

        assert decision.reason == DecisionReason.FIRST_PACK

    def test_unknown_event(self, db_session, user_id):
        seed_entitlement(db_session, user_id)

        decision = decide(db_session, user_id, "app_open")

        assert decision.reason == DecisionReason.UNKNOWN_EVENT


class TestCooldowns:

    def test_same_offer_cooldown_for_subscription_offer(self, db_session, user_id):
        seed_entitlement(db_session, user_id, has_entry_access=True)
        add_impression(db_session, user_id, offer_key="creator_mode", surface="pill", hours_ago=10)

        decision = decide(db_session, user_id, "save_result")

        assert decision.reason == DecisionReason.SAME_OFFER_COOLDOWN

    def test_same_offer_cooldown_expires(self, db_session, user_id):
        seed_entitlement(db_session, user_id, has_entry_access=True)
        add_impression(db_session, user_id, offer_key="creator_mode", surface="pill", hours_ago=25)

        decision = decide(db_session, user_id, "save_result")

        assert decision.should_show is True

    def test_any_offer_cooldown(self, db_session, user_id):
        seed_entitlement(db_session, user_id, has_entry_access=True)
        add_impression(db_session, user_id, offer_key="packs", hours_ago=2)

        decision = decide(db_session, user_id, "out_of_looks")

        assert decision.reason == DecisionReason.COOLDOWN_ACTIVE

    def test_any_offer_cooldown_expires(self, db_session, user_id):
        seed_entitlement(db_session, user_id, has_entry_access=True)
        add_impression(db_session, user_id, offer_key="packs", hours_ago=5)

        decision = decide(db_session, user_id, "out_of_looks")

        assert decision.should_show is True
        assert decision.offer_key == "packs"

    def test_decide_does_not_record_impressions(self, db_session, user_id):
        seed_entitlement(db_session, user_id)

        decide(db_session, user_id, "try_generate")
        decide(db_session, user_id, "try_generate")

        count = db_session.execute(select(func.count()).select_from(OfferImpression)).scalar()
        assert count == 0


class TestImpressionLedger:

    def test_record_and_query(self, db_session, user_id):
        ledger = ImpressionLedger(db_session)

        ledger.record_impression(user_id, "entry", "sheet", action_taken="dismissed",
                                 context={"event": "try_generate"}, now=NOW - timedelta(hours=3))
        ledger.record_impression(user_id, "packs", "sheet", now=NOW - timedelta(hours=1))

        assert ledger.count_since(user_id, NOW - timedelta(hours=2)) == 1
        assert ledger.count_since(user_id, NOW - timedelta(hours=24)) == 2
        assert ledger.last_impression_at(user_id) == NOW - timedelta(hours=1)
        assert ledger.last_impression_at(user_id, "entry") == NOW - timedelta(hours=3)
        assert ledger.last_impression_at(user_id, "creator_mode") is None

    @pytest.mark.parametrize("offer_key,surface", [(None, "sheet"), ("entry", None), ("", "sheet")])
    def test_missing_keys_rejected(self, db_session, user_id, offer_key, surface):
        with pytest.raises(ValidationError):
            ImpressionLedger(db_session).record_impression(user_id, offer_key, surface)
