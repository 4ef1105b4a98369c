"""
Maps billing-platform subscriber ids to durable user ids.

A subscriber id is either a durable user id (UUID issued by the auth
provider) or an anonymous id assigned by the billing SDK before sign-in
("$RCAnonymousID:..."). Resolution order:
1. durable id -> returned unchanged
2. first durable id among the event's aliases
3. live subscriber lookup: original_app_user_id, then other_aliases
4. IdentityUnresolvedError
"""

import logging
import re
from typing import Iterable, Optional, Protocol

from tryon_billing.billing.errors import IdentityUnresolvedError, UpstreamUnavailableError

logger = logging.getLogger(__name__)

ANONYMOUS_ID_PREFIX = "$RCAnonymousID"

_DURABLE_ID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


class SubscriberLookup(Protocol):
    async def get_subscriber(self, app_user_id: str):
        ...


def is_durable_user_id(value: Optional[str]) -> bool:
    """True if value has the durable user identifier format."""
    if not value or value.startswith("$"):
        return False
    return bool(_DURABLE_ID_PATTERN.match(value))


def is_anonymous_id(value: Optional[str]) -> bool:
    return bool(value) and value.startswith(ANONYMOUS_ID_PREFIX)


def first_durable_id(candidates: Iterable[Optional[str]]) -> Optional[str]:
    for candidate in candidates:
        if is_durable_user_id(candidate):
            return candidate
    return None


async def resolve_user_id(
    subscriber_id: str,
    aliases: Iterable[str] = (),
    billing_client: Optional[SubscriberLookup] = None,
) -> str:
    """
    Resolve the durable user id for a subscriber.

    Raises:
        IdentityUnresolvedError: no durable id could be found
    """
    if is_durable_user_id(subscriber_id):
        return subscriber_id

    aliases = list(aliases or [])
    from_aliases = first_durable_id(aliases)
    if from_aliases:
        logger.info("Resolved subscriber from event aliases", extra={
            "subscriber_id": subscriber_id,
            "user_id": from_aliases,
        })
        return from_aliases

    if billing_client is not None:
        try:
            record = await billing_client.get_subscriber(subscriber_id)
        except UpstreamUnavailableError as e:
            logger.error("Subscriber alias lookup failed", extra={
                "subscriber_id": subscriber_id,
                "error": str(e),
            })
            record = None

        if record is not None:
            from_lookup = first_durable_id([record.original_app_user_id, *record.other_aliases])
            if from_lookup:
                logger.info("Resolved subscriber from billing platform aliases", extra={
                    "subscriber_id": subscriber_id,
                    "user_id": from_lookup,
                })
                return from_lookup

    raise IdentityUnresolvedError(subscriber_id, aliases)
