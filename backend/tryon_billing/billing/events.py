"""
Billing platform webhook event model.

The platform posts {"event": {...}} with loosely-typed JSON. Only the
fields below are read; the type is narrowed to an allow-list and anything
else becomes BillingEventType.UNKNOWN (an explicit no-op).
"""

import enum
import hashlib
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class BillingEventType(str, enum.Enum):
    INITIAL_PURCHASE = "INITIAL_PURCHASE"
    RENEWAL = "RENEWAL"
    UNCANCELLATION = "UNCANCELLATION"
    SUBSCRIPTION_EXTENDED = "SUBSCRIPTION_EXTENDED"
    TRIAL_STARTED = "TRIAL_STARTED"
    TRIAL_CONVERTED = "TRIAL_CONVERTED"
    EXPIRATION = "EXPIRATION"
    CANCELLATION = "CANCELLATION"
    BILLING_ISSUE = "BILLING_ISSUE"
    NON_RENEWING_PURCHASE = "NON_RENEWING_PURCHASE"
    UNKNOWN = "UNKNOWN"


ACTIVATING_EVENTS = frozenset({
    BillingEventType.INITIAL_PURCHASE,
    BillingEventType.RENEWAL,
    BillingEventType.UNCANCELLATION,
    BillingEventType.SUBSCRIPTION_EXTENDED,
})

TRIAL_EVENTS = frozenset({
    BillingEventType.TRIAL_STARTED,
    BillingEventType.TRIAL_CONVERTED,
})

DEACTIVATING_EVENTS = frozenset({
    BillingEventType.EXPIRATION,
    BillingEventType.CANCELLATION,
    BillingEventType.BILLING_ISSUE,
})


class BillingEvent(BaseModel):
    """One billing platform event."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: BillingEventType
    raw_type: Optional[str] = None
    subscriber_id: str = Field(..., alias="app_user_id", min_length=1)
    original_subscriber_id: Optional[str] = Field(default=None, alias="original_app_user_id")
    aliases: List[str] = Field(default_factory=list)
    product_id: Optional[str] = None
    entitlement_ids: List[str] = Field(default_factory=list)
    purchased_at_ms: Optional[int] = None
    expiration_at_ms: Optional[int] = None
    event_timestamp_ms: Optional[int] = None
    environment: Optional[str] = None
    event_id: Optional[str] = Field(default=None, alias="id")

    @field_validator("type", mode="before")
    @classmethod
    def _narrow_type(cls, value):
        try:
            return BillingEventType(str(value).upper())
        except ValueError:
            return BillingEventType.UNKNOWN

    @field_validator("aliases", "entitlement_ids", mode="before")
    @classmethod
    def _none_to_list(cls, value):
        return value or []

    @classmethod
    def from_payload(cls, payload: dict) -> "BillingEvent":
        """Parse a webhook body ({"event": {...}} or a bare event dict)."""
        body = payload.get("event", payload) if isinstance(payload, dict) else {}
        if not isinstance(body, dict):
            body = {}
        data = dict(body)
        data.setdefault("raw_type", data.get("type"))
        return cls.model_validate(data)

    @property
    def occurred_at(self) -> Optional[datetime]:
        millis = self.event_timestamp_ms or self.purchased_at_ms
        if millis is None:
            return None
        return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)

    def idempotency_key(self) -> str:
        """Stable key for credit-pack dedup: subscriber, product, purchase time."""
        purchased = self.purchased_at_ms if self.purchased_at_ms is not None else (self.event_id or "")
        raw = f"{self.subscriber_id}:{self.product_id or ''}:{purchased}"
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()
