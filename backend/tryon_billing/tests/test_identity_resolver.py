"""Tests for subscriber-to-user identity resolution."""

import pytest

from tryon_billing.billing.errors import IdentityUnresolvedError, UpstreamUnavailableError
from tryon_billing.services.identity_resolver import is_anonymous_id, is_durable_user_id, resolve_user_id
from tryon_billing.tests.factories import make_record

USER_ID = "0a9b8c7d-6e5f-4a3b-9c2d-1e0f9a8b7c6d"
ANON_ID = "$RCAnonymousID:1a2b3c4d5e6f"


class TestIdClassification:

    @pytest.mark.parametrize("value,expected", [
        (USER_ID, True),
        (USER_ID.upper(), True),
        (ANON_ID, False),
        ("$" + USER_ID, False),
        ("user-42", False),
        ("", False),
        (None, False),
    ])
    def test_is_durable_user_id(self, value, expected):
        assert is_durable_user_id(value) is expected

    def test_is_anonymous_id(self):
        assert is_anonymous_id(ANON_ID) is True
        assert is_anonymous_id(USER_ID) is False
        assert is_anonymous_id(None) is False


class TestResolveUserId:

    @pytest.mark.asyncio
    async def test_durable_id_returned_unchanged(self, billing_client):
        assert await resolve_user_id(USER_ID, [], billing_client) == USER_ID
        billing_client.get_subscriber.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_first_durable_alias(self, billing_client):
        other = "11111111-2222-4333-8444-555555555555"

        resolved = await resolve_user_id(ANON_ID, [ANON_ID, USER_ID, other], billing_client)

        assert resolved == USER_ID
        billing_client.get_subscriber.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_lookup_original_app_user_id_first(self, billing_client):
        billing_client.get_subscriber.return_value = make_record(
            ANON_ID,
            original_app_user_id=USER_ID,
            other_aliases=["11111111-2222-4333-8444-555555555555"],
        )

        assert await resolve_user_id(ANON_ID, [], billing_client) == USER_ID

    @pytest.mark.asyncio
    async def test_lookup_other_aliases(self, billing_client):
        billing_client.get_subscriber.return_value = make_record(
            ANON_ID, original_app_user_id=ANON_ID, other_aliases=["$RCAnonymousID:zz", USER_ID],
        )

        assert await resolve_user_id(ANON_ID, [], billing_client) == USER_ID

    @pytest.mark.asyncio
    async def test_unresolved_raises(self, billing_client):
        with pytest.raises(IdentityUnresolvedError) as exc_info:
            await resolve_user_id(ANON_ID, ["$RCAnonymousID:other"], billing_client)

        assert exc_info.value.subscriber_id == ANON_ID
        assert exc_info.value.aliases == ["$RCAnonymousID:other"]

    @pytest.mark.asyncio
    async def test_lookup_failure_is_unresolved(self, billing_client):
        billing_client.get_subscriber.side_effect = UpstreamUnavailableError("timeout")

        with pytest.raises(IdentityUnresolvedError):
            await resolve_user_id(ANON_ID, [], billing_client)

    @pytest.mark.asyncio
    async def test_without_client(self):
        with pytest.raises(IdentityUnresolvedError):
            await resolve_user_id(ANON_ID, [], None)
