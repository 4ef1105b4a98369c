"""
RevenueCat subscriber API client.

Read-only: the billing core only ever looks subscribers up. Every call
carries a bounded timeout; transport errors, timeouts and non-404 HTTP
errors are raised as RevenueCatError (an UpstreamUnavailableError) so
callers can degrade to a safe default.
"""

import hmac
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import quote

import httpx

from tryon_billing.billing.catalog import credit_pack_for_product
from tryon_billing.billing.errors import UpstreamUnavailableError
from tryon_billing.config.settings import DEFAULT_REVENUECAT_API_BASE_URL, BillingSettings

logger = logging.getLogger(__name__)

# Entitlement identifiers that grant the subscription tier. "Studio" is a
# legacy identifier still present on old subscribers.
SUBSCRIPTION_ENTITLEMENTS = ("creator", "atelier", "Studio")


class RevenueCatError(UpstreamUnavailableError):
    """Error from the RevenueCat API."""

    def __init__(self, message: str, status_code: Optional[int] = None, cause: Optional[Exception] = None):
        super().__init__(message, status_code=status_code, cause=cause)


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO datetime string from RevenueCat."""
    if not value:
        return None
    try:
        if value.endswith("Z"):
            value = value[:-1] + "+00:00"
        parsed = datetime.fromisoformat(value)
    except (ValueError, TypeError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _is_unexpired(expires_date: Optional[str], now: datetime, *, missing_is_active: bool) -> bool:
    if expires_date is None:
        return missing_is_active
    expires_at = _parse_datetime(expires_date)
    return expires_at is not None and expires_at > now


@dataclass
class SubscriberRecord:
    """Subset of the RevenueCat subscriber object used by the billing core."""
    app_user_id: str
    original_app_user_id: Optional[str] = None
    other_aliases: List[str] = field(default_factory=list)
    entitlements: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    subscriptions: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    non_subscriptions: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)

    @classmethod
    def from_api(cls, app_user_id: str, payload: Dict[str, Any]) -> "SubscriberRecord":
        subscriber = payload.get("subscriber") or {}
        return cls(
            app_user_id=app_user_id,
            original_app_user_id=subscriber.get("original_app_user_id"),
            other_aliases=list(subscriber.get("other_aliases") or []),
            entitlements=dict(subscriber.get("entitlements") or {}),
            subscriptions=dict(subscriber.get("subscriptions") or {}),
            non_subscriptions={
                product_id: list(purchases or [])
                for product_id, purchases in (subscriber.get("non_subscriptions") or {}).items()
            },
        )

    @property
    def known_ids(self) -> List[str]:
        """Every identifier RevenueCat associates with this subscriber."""
        ids = [self.app_user_id]
        if self.original_app_user_id:
            ids.append(self.original_app_user_id)
        ids.extend(self.other_aliases)
        return list(dict.fromkeys(ids))

    def has_active_entitlement(
        self,
        names: Iterable[str] = SUBSCRIPTION_ENTITLEMENTS,
        now: Optional[datetime] = None,
    ) -> bool:
        """True if a named entitlement grant has an expiry in the future."""
        now = now or datetime.now(timezone.utc)
        for name in names:
            grant = self.entitlements.get(name)
            if grant and _is_unexpired(grant.get("expires_date"), now, missing_is_active=False):
                return True
        return False

    def has_active_subscription(self, now: Optional[datetime] = None) -> bool:
        """
        True if any raw subscription is unexpired.

        Fallback for misconfigured entitlement mappings upstream. A missing
        expiry on a subscription means a lifetime purchase.
        """
        now = now or datetime.now(timezone.utc)
        for product_id, subscription in self.subscriptions.items():
            if _is_unexpired(subscription.get("expires_date"), now, missing_is_active=True):
                logger.debug("Active raw subscription", extra={
                    "app_user_id": self.app_user_id,
                    "product_id": product_id,
                })
                return True
        return False

    def is_subscription_active(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return self.has_active_entitlement(now=now) or self.has_active_subscription(now=now)

    def purchased_credits(self) -> int:
        """Sum of credits over every recognized non-subscription purchase."""
        total = 0
        for product_id, purchases in self.non_subscriptions.items():
            pack = credit_pack_for_product(product_id)
            if pack is None:
                continue
            total += pack.credits * len(purchases)
        return total

    def purchased_pack_count(self) -> int:
        """Number of looks packs bought (the entry product is not a pack)."""
        count = 0
        for product_id, purchases in self.non_subscriptions.items():
            pack = credit_pack_for_product(product_id)
            if pack is not None and pack.counts_as_pack:
                count += len(purchases)
        return count

    def has_entry_purchase(self) -> bool:
        for product_id, purchases in self.non_subscriptions.items():
            pack = credit_pack_for_product(product_id)
            if pack is not None and pack.grants_entry_access and purchases:
                return True
        return False


class RevenueCatClient:
    """
    Client for the RevenueCat REST API (v1).

    Usage:
        async with RevenueCatClient(api_key) as client:
            record = await client.get_subscriber(user_id)
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_REVENUECAT_API_BASE_URL,
        timeout: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        if not api_key:
            raise ValueError("api_key is required")
        self.base_url = base_url.rstrip("/")
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings: BillingSettings) -> Optional["RevenueCatClient"]:
        """Build a client, or None when no API key is configured."""
        if not settings.billing_lookup_enabled:
            return None
        return cls(
            api_key=settings.revenuecat_api_key,
            base_url=settings.revenuecat_api_base_url,
            timeout=settings.revenuecat_timeout_seconds,
        )

    async def close(self):
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def get_subscriber(self, app_user_id: str) -> Optional[SubscriberRecord]:
        """
        Fetch a subscriber by app user id.

        Returns:
            SubscriberRecord, or None when RevenueCat does not know the id

        Raises:
            RevenueCatError: timeout, transport failure, or HTTP error other than 404
        """
        url = f"{self.base_url}/v1/subscribers/{quote(app_user_id, safe='')}"
        try:
            response = await self._client.get(url, headers=self._headers, timeout=self._timeout)
            if response.status_code == 404:
                logger.info("Subscriber not found in RevenueCat", extra={"app_user_id": app_user_id})
                return None
            response.raise_for_status()
            payload = response.json()

        except httpx.HTTPStatusError as e:
            logger.error("RevenueCat API HTTP error", extra={
                "app_user_id": app_user_id,
                "status_code": e.response.status_code,
                "response": e.response.text[:500],
            })
            raise RevenueCatError(
                f"RevenueCat API error: {e.response.status_code}",
                status_code=e.response.status_code,
                cause=e,
            )
        except httpx.TimeoutException as e:
            logger.error("RevenueCat API timeout", extra={
                "app_user_id": app_user_id,
                "timeout_seconds": self._timeout,
            })
            raise RevenueCatError("Request timed out", cause=e)
        except httpx.RequestError as e:
            logger.error("RevenueCat API request error", extra={
                "app_user_id": app_user_id,
                "error": str(e),
            })
            raise RevenueCatError(f"Request failed: {str(e)}", cause=e)
        except ValueError as e:
            raise RevenueCatError("Invalid JSON from RevenueCat", cause=e)

        return SubscriberRecord.from_api(app_user_id, payload)

    @staticmethod
    def verify_webhook_authorization(authorization: Optional[str], secret: Optional[str]) -> bool:
        """
        Verify the shared-secret Authorization header sent with webhooks.

        Args:
            authorization: Authorization header value ("Bearer <secret>")
            secret: Configured webhook secret

        Returns:
            True if the header carries the configured secret
        """
        if not secret:
            logger.error("REVENUECAT_WEBHOOK_SECRET not configured for webhook verification")
            return False
        if not authorization:
            return False

        expected = f"Bearer {secret}"
        return hmac.compare_digest(authorization.strip().encode("utf-8"), expected.encode("utf-8"))
