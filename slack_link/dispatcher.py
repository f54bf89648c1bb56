# TrIAge
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Outbound message dispatch.

Posts channel messages and thread replies with the bot token of the
caller's active installation, and translates Slack Web API failures into
the domain error taxonomy. Failed sends are not retried.
"""

import asyncio
from typing import Any, Dict, Optional

import aiohttp
from slack_sdk.errors import SlackApiError, SlackClientError

from slack_link.errors import InvalidRequest, NoActiveInstallation, map_slack_error
from slack_link.identity_resolver import ClientFactory, default_client_factory
from slack_link.installation_store import InstallationStore
from slack_link.logging_config import get_logger
from slack_link.models import Installation, NotificationThread, PostResult, ThreadReplyResult


logger = get_logger(__name__)

NOTIFICATION_THREAD_TEXT = "Notification Thread"


def _require(value: Optional[str], field_name: str) -> None:
    if not value or not str(value).strip():
        raise InvalidRequest(f"{field_name} is required")


class MessageDispatcher:
    """Sends messages to Slack on behalf of host accounts."""

    def __init__(self, store: InstallationStore, client_factory: Optional[ClientFactory] = None):
        """
        Args:
            store: Installation store used to find the active installation
            client_factory: Builds a Slack Web API client from a bot token
        """
        self.store = store
        self.client_factory = client_factory or default_client_factory

    async def _active_for_owner(self, owner_user_id: str) -> Installation:
        installation = await self.store.find_active_by_owner(owner_user_id)
        if installation is None:
            logger.warning("No active Slack installation for owner", extra={'owner_user_id': owner_user_id})
            raise NoActiveInstallation("No active Slack workspace found for this user")
        return installation

    async def _post(
        self,
        installation: Installation,
        failure_message: str,
        **kwargs
    ) -> Dict[str, Any]:
        client = self.client_factory(installation.bot_token)
        try:
            response = await client.chat_postMessage(**kwargs)
        except SlackApiError as e:
            upstream = e.response.get('error')
            logger.error("Slack chat.postMessage rejected", extra={
                'installation_id': installation.id,
                'channel': kwargs.get('channel'),
                'error': upstream
            })
            raise map_slack_error(upstream, failure_message) from e
        except (SlackClientError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error("Slack chat.postMessage transport failure", extra={
                'installation_id': installation.id,
                'channel': kwargs.get('channel'),
                'error': str(e)
            })
            raise map_slack_error(None, failure_message) from e

        if not response.get('ok', True):
            raise map_slack_error(response.get('error'), failure_message)

        return response

    async def post_to_channel(self, owner_user_id: str, channel_id: str, text: str) -> PostResult:
        """
        Post a message to a channel with the owner's active installation.

        Returns:
            PostResult whose ts identifies the message and anchors future replies

        Raises:
            InvalidRequest: Blank channel or text
            NoActiveInstallation: Owner has no active installation
            DispatchFailed: Slack rejected the post (or a mapped subclass)
        """
        _require(channel_id, "channelId")
        _require(text, "message")

        installation = await self._active_for_owner(owner_user_id)
        response = await self._post(
            installation,
            "Failed to send Slack message",
            channel=channel_id,
            text=text,
        )

        logger.info("Message sent successfully", extra={
            'installation_id': installation.id,
            'channel': response.get('channel', channel_id),
            'ts': response.get('ts'),
        })

        return PostResult(
            ok=True,
            channel=response.get('channel') or channel_id,
            ts=response['ts'],
            message_id=response['ts'],
        )

    async def post_thread_reply(
        self,
        owner_user_id: str,
        channel_id: str,
        thread_ts: str,
        text: str
    ) -> ThreadReplyResult:
        """
        Reply in the thread anchored at thread_ts.

        Raises:
            InvalidRequest: Blank channel, thread_ts or text
            NoActiveInstallation: Owner has no active installation
            DispatchFailed: Slack rejected the reply (or a mapped subclass)
        """
        _require(channel_id, "channelId")
        _require(thread_ts, "threadTs")
        _require(text, "message")

        installation = await self._active_for_owner(owner_user_id)
        response = await self._post(
            installation,
            "Failed to send thread reply",
            channel=channel_id,
            text=text,
            thread_ts=thread_ts,
        )

        logger.info("Thread reply sent successfully", extra={
            'installation_id': installation.id,
            'channel': response.get('channel', channel_id),
            'thread_ts': thread_ts,
        })

        return ThreadReplyResult(
            ok=True,
            channel=response.get('channel') or channel_id,
            ts=response['ts'],
            message_id=response['ts'],
            thread_ts=thread_ts,
        )

    async def create_notification_thread(
        self,
        channel_id: str,
        team_id: str,
        user_id: str,
        user_name: str,
        text: str = ""
    ) -> NotificationThread:
        """
        Post the anchor message of a notification thread.

        Slash commands only carry team context, so the installation is
        looked up by team. The returned thread_ts is the anchor's ts.
        Subscriptions against the thread are not stored yet.

        Raises:
            InvalidRequest: Blank channel or team
            NoActiveInstallation: Team has no active installation
            DispatchFailed: Slack rejected the anchor post
        """
        _require(channel_id, "channel_id")
        _require(team_id, "team_id")

        installation = await self.store.find_active_by_team(team_id)
        if installation is None:
            logger.warning("No active Slack installation for team", extra={'team_id': team_id})
            raise NoActiveInstallation("No active Slack installation found for this team")

        response = await self._post(
            installation,
            "Failed to create notification thread",
            channel=channel_id,
            text=NOTIFICATION_THREAD_TEXT,
        )

        thread = NotificationThread(
            channel_id=channel_id,
            thread_ts=response['ts'],
            user_id=user_id,
            user_name=user_name,
            team_id=team_id,
        )

        logger.info("Notification thread created", extra={
            'channel_id': thread.channel_id,
            'thread_ts': thread.thread_ts,
            'team_id': thread.team_id,
            'request_text': text,
        })
        return thread
