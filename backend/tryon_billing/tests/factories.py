"""Test data builders: subscriber payloads, seeded rows, bearer tokens."""

import time
import uuid
from datetime import datetime, timedelta, timezone

import jwt

from tryon_billing.integrations.revenuecat.client import SubscriberRecord
from tryon_billing.models import CreditBalance, Entitlement, derived_quality

JWT_SECRET = "test-jwt-secret-with-enough-length-for-hs256"
WEBHOOK_SECRET = "test-webhook-secret"


def iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def subscriber_payload(
    app_user_id: str,
    *,
    original_app_user_id=None,
    other_aliases=None,
    entitlements=None,
    subscriptions=None,
    non_subscriptions=None,
) -> dict:
    """Body of GET /v1/subscribers/{id}."""
    return {
        "request_date": iso(datetime.now(timezone.utc)),
        "subscriber": {
            "original_app_user_id": original_app_user_id or app_user_id,
            "other_aliases": other_aliases or [],
            "entitlements": entitlements or {},
            "subscriptions": subscriptions or {},
            "non_subscriptions": non_subscriptions or {},
        },
    }


def purchases(count: int) -> list:
    return [{"id": f"txn_{uuid.uuid4().hex[:8]}", "purchase_date": iso(datetime.now(timezone.utc))} for _ in range(count)]


def make_record(app_user_id: str, **kwargs) -> SubscriberRecord:
    return SubscriberRecord.from_api(app_user_id, subscriber_payload(app_user_id, **kwargs))


def future(days: int = 7) -> str:
    return iso(datetime.now(timezone.utc) + timedelta(days=days))


def past(days: int = 7) -> str:
    return iso(datetime.now(timezone.utc) - timedelta(days=days))


def seed_entitlement(
    session,
    user_id: str,
    *,
    balance: int = 0,
    active: bool = False,
    has_entry_access: bool = False,
    packs: int = 0,
    mirror: bool = True,
) -> Entitlement:
    entitlement = Entitlement(
        user_id=user_id,
        consumable_balance=balance,
        has_entry_access=has_entry_access,
        total_packs_purchased=packs,
        **derived_quality(active),
    )
    session.add(entitlement)
    if mirror:
        session.add(CreditBalance(user_id=user_id, balance=balance))
    session.commit()
    return entitlement


def make_token(user_id: str, secret: str = JWT_SECRET, expires_in: int = 3600, audience="authenticated") -> str:
    claims = {"sub": user_id, "exp": int(time.time()) + expires_in}
    if audience:
        claims["aud"] = audience
    return jwt.encode(claims, secret, algorithm="HS256")
