# TrIAge
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Integration tests for the HTTP API.

Runs the fully wired aiohttp application against an in-memory store, a
static account directory and a mocked Slack Web API client. Only the
OAuth token endpoint is patched at the httpx level.
"""

import json
import time
from unittest.mock import AsyncMock, Mock, patch
from urllib.parse import parse_qs, urlparse

import pytest
from aiohttp.test_utils import TestClient, TestServer
from slack_sdk.errors import SlackApiError

from slack_link.account_directory import StaticAccountDirectory
from slack_link.api import header_caller_resolver
from slack_link.config import SlackLinkConfig
from slack_link.main import build_application
from slack_link.models import Account
from slack_link.webhook_gate import SignatureValidator


SIGNING_SECRET = "integration-signing-secret"
OWNER_HEADER = {"X-Authenticated-User-Id": "owner-1"}


def make_config(**overrides) -> SlackLinkConfig:
    values = dict(
        slack_client_id="test_client_id",
        slack_client_secret="test_client_secret",
        slack_redirect_uri="https://link.example.com/slack/oauth_redirect",
        host_api_url="https://host.example.com",
        host_api_token="host-token",
        frontend_url="https://app.example.com/settings",
    )
    values.update(overrides)
    return SlackLinkConfig(**values)


def token_endpoint(mock_client, data):
    response = Mock()
    response.json.return_value = data
    response.raise_for_status = Mock()
    mock_client.return_value.__aenter__.return_value.post = AsyncMock(return_value=response)


OAUTH_OK = {
    'ok': True,
    'access_token': 'xoxb-bot-1',
    'team': {'id': 'T0000000001', 'name': 'Acme'},
    'authed_user': {'id': 'U0000000001', 'access_token': 'xoxp-user-1'},
}


@pytest.fixture
def sink():
    sink = Mock()
    sink.save_message = AsyncMock()
    return sink


@pytest.fixture
def make_app(store, client_factory, sink):
    def _make(**config_overrides):
        return build_application(
            make_config(**config_overrides),
            store=store,
            account_directory=StaticAccountDirectory([Account(id="owner-1", email="alice@example.com")]),
            message_sink=sink,
            caller_resolver=header_caller_resolver(),
            slack_client_factory=client_factory,
        )
    return _make


class TestOAuthRoutes:
    """Test install and OAuth redirect."""

    @pytest.mark.asyncio
    async def test_install_redirects_to_slack(self, make_app):
        async with TestClient(TestServer(make_app())) as client:
            response = await client.get('/slack/install', allow_redirects=False)

        assert response.status == 302
        location = urlparse(response.headers['Location'])
        assert location.netloc == "slack.com"
        assert parse_qs(location.query)['client_id'] == ["test_client_id"]

    @pytest.mark.asyncio
    async def test_oauth_redirect_links_workspace(self, make_app, store):
        with patch('httpx.AsyncClient') as mock_client:
            token_endpoint(mock_client, OAUTH_OK)

            async with TestClient(TestServer(make_app())) as client:
                response = await client.get('/slack/oauth_redirect?code=abc', allow_redirects=False)

        assert response.status == 302
        assert response.headers['Location'] == "https://app.example.com/settings"
        installation = await store.find_active_by_owner("owner-1")
        assert installation.slack_team_id == "T0000000001"

    @pytest.mark.asyncio
    async def test_oauth_redirect_without_code(self, make_app, store):
        with patch('httpx.AsyncClient') as mock_client:
            async with TestClient(TestServer(make_app())) as client:
                response = await client.get('/slack/oauth_redirect', allow_redirects=False)
                body = await response.json()

            mock_client.assert_not_called()

        assert response.status == 400
        assert body['success'] is False
        assert body['message'] == "Code is required for OAuth"
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_oauth_redirect_rejected_by_slack(self, make_app, store):
        with patch('httpx.AsyncClient') as mock_client:
            token_endpoint(mock_client, {'ok': False, 'error': 'invalid_code'})

            async with TestClient(TestServer(make_app())) as client:
                response = await client.get('/slack/oauth_redirect?code=stale', allow_redirects=False)
                body = await response.json()

        assert response.status == 502
        assert body['error'] == "upstream_rejected"
        assert len(store) == 0


class TestSlackCallbacks:
    """Test the webhook endpoint."""

    @pytest.mark.asyncio
    async def test_url_verification(self, make_app):
        async with TestClient(TestServer(make_app())) as client:
            response = await client.post('/slack/events', json={'type': 'url_verification', 'challenge': 'abc123'})
            body = await response.json()

        assert response.status == 200
        assert body == {'challenge': 'abc123'}

    @pytest.mark.asyncio
    async def test_message_event_reaches_sink(self, make_app, sink):
        payload = {
            'type': 'event_callback',
            'event_id': 'Ev0000000001',
            'event': {'type': 'message', 'text': 'hi', 'ts': '1700000000.000100', 'channel': 'C0000000001'},
        }

        async with TestClient(TestServer(make_app())) as client:
            response = await client.post('/slack/events', json=payload)
            text = await response.text()

        # Shutdown drains the persistence queue
        assert response.status == 200
        assert text == ""
        assert sink.save_message.await_count == 1

    @pytest.mark.asyncio
    async def test_messages_route_is_an_events_alias(self, make_app, sink):
        payload = {
            'type': 'event_callback',
            'event_id': 'Ev0000000003',
            'event': {'type': 'message', 'text': 'hi', 'ts': '1700000000.000300', 'channel': 'C0000000001'},
        }

        async with TestClient(TestServer(make_app())) as client:
            response = await client.post('/slack/messages', json=payload)

        assert response.status == 200
        assert sink.save_message.await_count == 1
        assert sink.save_message.await_args.args[0].message_id == '1700000000.000300'

    @pytest.mark.asyncio
    async def test_unknown_payload_gets_empty_object(self, make_app, sink):
        async with TestClient(TestServer(make_app())) as client:
            response = await client.post('/slack/events', json={'type': 'app_rate_limited'})
            body = await response.json()

        assert response.status == 200
        assert body == {}
        sink.save_message.assert_not_called()

    @pytest.mark.asyncio
    async def test_bot_message_is_acknowledged_only(self, make_app, sink):
        payload = {
            'type': 'event_callback',
            'event_id': 'Ev0000000002',
            'event': {'type': 'message', 'subtype': 'bot_message', 'ts': '1700000000.000200'},
        }

        async with TestClient(TestServer(make_app())) as client:
            response = await client.post('/slack/events', json=payload)

        assert response.status == 200
        sink.save_message.assert_not_called()

    @pytest.mark.asyncio
    async def test_form_encoded_slash_command(self, make_app, store, make_grant, slack_client):
        await store.upsert(make_grant(), "owner-1")
        form = {
            'command': '/register-notification',
            'channel_id': 'C0000000001',
            'user_id': 'U0000000001',
            'user_name': 'alice',
            'team_id': 'T0000000001',
            'text': '',
        }

        async with TestClient(TestServer(make_app())) as client:
            response = await client.post('/slack/register-notification', data=form)
            body = await response.json()

        assert response.status == 200
        assert body['response_type'] == 'ephemeral'
        assert "🧵 Thread: 1700000000.000100" in body['text']
        slack_client.chat_postMessage.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_slash_command_without_installation(self, make_app):
        form = {'channel_id': 'C0000000001', 'user_id': 'U0000000001', 'team_id': 'T_NONE'}

        async with TestClient(TestServer(make_app())) as client:
            response = await client.post('/slack/register-notification', data=form)
            body = await response.json()

        assert response.status == 200
        assert body['text'].startswith("❌ Failed to create notification thread")

    @pytest.mark.asyncio
    async def test_signature_required_when_secret_configured(self, make_app):
        body = json.dumps({'type': 'url_verification', 'challenge': 'abc123'}).encode()
        timestamp = str(int(time.time()))
        signature = SignatureValidator(SIGNING_SECRET).compute_signature(timestamp, body)
        headers = {'Content-Type': 'application/json', 'X-Slack-Request-Timestamp': timestamp}

        async with TestClient(TestServer(make_app(slack_signing_secret=SIGNING_SECRET))) as client:
            unsigned = await client.post('/slack/events', data=body, headers=headers)
            signed = await client.post(
                '/slack/events', data=body, headers={**headers, 'X-Slack-Signature': signature}
            )
            signed_body = await signed.json()

        assert unsigned.status == 401
        assert signed.status == 200
        assert signed_body == {'challenge': 'abc123'}


class TestWorkspaceRoutes:
    """Test authenticated workspace administration."""

    @pytest.mark.asyncio
    async def test_requires_caller(self, make_app):
        async with TestClient(TestServer(make_app())) as client:
            response = await client.get('/slack/workspaces')
            body = await response.json()

        assert response.status == 401
        assert body['error'] == "unauthorized"

    @pytest.mark.asyncio
    async def test_list_update_delete(self, make_app, store, make_grant):
        installation = await store.upsert(make_grant(), "owner-1")

        async with TestClient(TestServer(make_app())) as client:
            listed = await (await client.get('/slack/workspaces', headers=OWNER_HEADER)).json()

            patched = await client.patch(
                f'/slack/workspaces/{installation.id}', json={'isActive': False}, headers=OWNER_HEADER
            )
            patched_body = await patched.json()

            deleted = await client.delete(f'/slack/workspaces/{installation.id}', headers=OWNER_HEADER)
            deleted_body = await deleted.json()

        assert len(listed) == 1
        assert listed[0]['id'] == installation.id
        assert 'bot_token' not in listed[0]
        assert patched.status == 200
        assert patched_body['is_active'] is False
        assert deleted.status == 200
        assert deleted_body is True
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_other_owner_gets_404(self, make_app, store, make_grant):
        installation = await store.upsert(make_grant(), "owner-1")
        intruder = {"X-Authenticated-User-Id": "owner-2"}

        async with TestClient(TestServer(make_app())) as client:
            patched = await client.patch(
                f'/slack/workspaces/{installation.id}', json={'isActive': False}, headers=intruder
            )
            deleted = await client.delete(f'/slack/workspaces/{installation.id}', headers=intruder)

        assert patched.status == 404
        assert deleted.status == 404
        assert (await store.find_active_by_owner("owner-1")) is not None

    @pytest.mark.asyncio
    async def test_unknown_update_field_is_rejected(self, make_app, store, make_grant):
        installation = await store.upsert(make_grant(), "owner-1")

        async with TestClient(TestServer(make_app())) as client:
            response = await client.patch(
                f'/slack/workspaces/{installation.id}', json={'botToken': 'xoxb-evil'}, headers=OWNER_HEADER
            )

        assert response.status == 400


class TestNotifyRoutes:
    """Test authenticated sends."""

    @pytest.mark.asyncio
    async def test_notify(self, make_app, store, make_grant, slack_client):
        await store.upsert(make_grant(), "owner-1")

        async with TestClient(TestServer(make_app())) as client:
            response = await client.post(
                '/slack/notify', json={'channelId': 'C0000000001', 'message': 'Build finished'}, headers=OWNER_HEADER
            )
            body = await response.json()

        assert response.status == 200
        assert body['success'] is True
        assert body['message'] == "Message sent successfully"
        assert body['data']['ts'] == "1700000000.000100"
        slack_client.chat_postMessage.assert_awaited_once_with(channel="C0000000001", text="Build finished")

    @pytest.mark.asyncio
    async def test_notify_thread(self, make_app, store, make_grant, slack_client):
        await store.upsert(make_grant(), "owner-1")

        async with TestClient(TestServer(make_app())) as client:
            response = await client.post(
                '/slack/notify-thread',
                json={'channelId': 'C0000000001', 'threadTs': '1700000000.000100', 'message': 'Done'},
                headers=OWNER_HEADER
            )
            body = await response.json()

        assert response.status == 200
        assert body['message'] == "Thread reply sent successfully"
        assert body['data']['thread_ts'] == "1700000000.000100"

    @pytest.mark.asyncio
    async def test_notify_without_installation(self, make_app, client_factory):
        async with TestClient(TestServer(make_app())) as client:
            response = await client.post(
                '/slack/notify', json={'channelId': 'C0000000001', 'message': 'hi'}, headers=OWNER_HEADER
            )
            body = await response.json()

        assert response.status == 404
        assert body['error'] == "no_active_installation"
        client_factory.assert_not_called()

    @pytest.mark.asyncio
    async def test_notify_channel_not_found(self, make_app, store, make_grant, slack_client):
        await store.upsert(make_grant(), "owner-1")
        slack_client.chat_postMessage.side_effect = SlackApiError(
            "err", {'ok': False, 'error': 'channel_not_found'}
        )

        async with TestClient(TestServer(make_app())) as client:
            response = await client.post(
                '/slack/notify', json={'channelId': 'C_GONE', 'message': 'hi'}, headers=OWNER_HEADER
            )
            body = await response.json()

        assert response.status == 404
        assert body == {'success': False, 'message': "Slack channel not found", 'error': "channel_not_found"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [{}, {'channelId': '', 'message': 'hi'}, {'channelId': 'C1'}])
    async def test_notify_invalid_body(self, make_app, payload):
        async with TestClient(TestServer(make_app())) as client:
            response = await client.post('/slack/notify', json=payload, headers=OWNER_HEADER)
            body = await response.json()

        assert response.status == 400
        assert body['success'] is False

    @pytest.mark.asyncio
    async def test_notify_malformed_json(self, make_app):
        async with TestClient(TestServer(make_app())) as client:
            response = await client.post(
                '/slack/notify', data=b'{not json', headers={**OWNER_HEADER, 'Content-Type': 'application/json'}
            )

        assert response.status == 400


@pytest.mark.asyncio
async def test_health(make_app):
    async with TestClient(TestServer(make_app())) as client:
        response = await client.get('/health')
        body = await response.json()

    assert response.status == 200
    assert body == {'status': 'healthy', 'service': 'slack-link-api'}
