# TrIAge
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""Unit tests for Slack identity resolution."""

from unittest.mock import AsyncMock

import aiohttp
import pytest
from slack_sdk.errors import SlackApiError

from slack_link.account_directory import HostAPIError, StaticAccountDirectory
from slack_link.errors import IdentityNotFound, UpstreamError
from slack_link.identity_resolver import SlackIdentityResolver
from slack_link.models import Account


@pytest.fixture
def directory():
    return StaticAccountDirectory([Account(id="owner-1", email="Alice@Example.com")])


@pytest.fixture
def resolver(directory, client_factory):
    return SlackIdentityResolver(directory, client_factory=client_factory)


@pytest.mark.asyncio
async def test_resolves_owner_by_profile_email(resolver):
    assert await resolver.resolve_owner("U0000000001", "xoxp-user-1") == "owner-1"


@pytest.mark.asyncio
async def test_profile_without_email_is_identity_not_found(resolver, slack_client):
    slack_client.users_info.return_value = {'ok': True, 'user': {'id': 'U0000000001', 'profile': {}}}

    with pytest.raises(IdentityNotFound):
        await resolver.resolve_owner("U0000000001", "xoxp-user-1")


@pytest.mark.asyncio
async def test_unknown_email_is_identity_not_found(resolver, slack_client):
    slack_client.users_info.return_value = {
        'ok': True,
        'user': {'id': 'U0000000001', 'profile': {'email': 'mallory@example.com'}},
    }

    with pytest.raises(IdentityNotFound, match="User not found"):
        await resolver.resolve_owner("U0000000001", "xoxp-user-1")


@pytest.mark.asyncio
async def test_slack_api_error_is_upstream_error(resolver, slack_client):
    slack_client.users_info.side_effect = SlackApiError("err", {'ok': False, 'error': 'user_not_found'})

    with pytest.raises(UpstreamError):
        await resolver.resolve_owner("U0000000001", "xoxp-user-1")


@pytest.mark.asyncio
async def test_transport_error_is_upstream_error(resolver, slack_client):
    slack_client.users_info.side_effect = aiohttp.ClientConnectionError("reset")

    with pytest.raises(UpstreamError):
        await resolver.fetch_profile_email("U0000000001", "xoxp-user-1")


@pytest.mark.asyncio
async def test_ok_false_is_upstream_error(resolver, slack_client):
    slack_client.users_info.return_value = {'ok': False, 'error': 'invalid_auth'}

    with pytest.raises(UpstreamError):
        await resolver.fetch_profile_email("U0000000001", "xoxp-user-1")


@pytest.mark.asyncio
async def test_directory_failure_is_upstream_error(client_factory):
    directory = AsyncMock()
    directory.find_account_by_email.side_effect = HostAPIError("boom", status_code=503)
    resolver = SlackIdentityResolver(directory, client_factory=client_factory)

    with pytest.raises(UpstreamError):
        await resolver.resolve_owner("U0000000001", "xoxp-user-1")
