# TrIAge
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""Shared fixtures for the Slack link test suite."""

from unittest.mock import AsyncMock, Mock

import pytest

from slack_link.installation_store import InMemoryInstallationStore
from slack_link.models import OAuthGrant


@pytest.fixture
def store():
    return InMemoryInstallationStore()


@pytest.fixture
def make_grant():
    """Factory for OAuth grants with overridable fields."""
    def _make(
        team_id: str = "T0000000001",
        user_id: str = "U0000000001",
        bot_token: str = "xoxb-bot-1",
        user_token: str = "xoxp-user-1",
        team_name: str = "Acme"
    ) -> OAuthGrant:
        return OAuthGrant(
            slack_team_id=team_id,
            slack_team_name=team_name,
            slack_user_id=user_id,
            bot_token=bot_token,
            user_token=user_token,
        )
    return _make


@pytest.fixture
def slack_client():
    """Slack Web API client double with successful defaults."""
    client = Mock()
    client.chat_postMessage = AsyncMock(return_value={
        'ok': True,
        'channel': 'C0000000001',
        'ts': '1700000000.000100',
    })
    client.users_info = AsyncMock(return_value={
        'ok': True,
        'user': {'id': 'U0000000001', 'profile': {'email': 'alice@example.com'}},
    })
    return client


@pytest.fixture
def client_factory(slack_client):
    return Mock(return_value=slack_client)
