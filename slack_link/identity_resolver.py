# TrIAge
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Resolves the host account behind a Slack user.

Reads the Slack profile with the user-scoped token obtained at link time
(users:read.email scope) and matches its email against the host's
account directory.
"""

import asyncio
from typing import Callable, Optional

import aiohttp
from slack_sdk.errors import SlackApiError, SlackClientError
from slack_sdk.web.async_client import AsyncWebClient

from slack_link.account_directory import AccountDirectory, HostAPIError
from slack_link.errors import IdentityNotFound, UpstreamError
from slack_link.logging_config import get_logger


logger = get_logger(__name__)

ClientFactory = Callable[[str], AsyncWebClient]


def default_client_factory(token: str) -> AsyncWebClient:
    return AsyncWebClient(token=token)


class SlackIdentityResolver:
    """Maps (slack_user_id, user_token) to a host account id."""

    def __init__(
        self,
        account_directory: AccountDirectory,
        client_factory: Optional[ClientFactory] = None
    ):
        self.account_directory = account_directory
        self.client_factory = client_factory or default_client_factory

    async def fetch_profile_email(self, slack_user_id: str, user_token: str) -> Optional[str]:
        """
        Return the email on the Slack profile, or None if it is not shared.

        Raises:
            UpstreamError: If users.info fails or reports ok=false
        """
        client = self.client_factory(user_token)
        try:
            response = await client.users_info(user=slack_user_id)
        except SlackApiError as e:
            logger.error("Slack users.info rejected", extra={
                'slack_user_id': slack_user_id,
                'error': e.response.get('error')
            })
            raise UpstreamError("Failed to fetch user info from Slack") from e
        except (SlackClientError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error("Slack users.info transport failure", extra={
                'slack_user_id': slack_user_id,
                'error': str(e)
            })
            raise UpstreamError("Failed to fetch user info from Slack") from e

        if not response.get('ok'):
            raise UpstreamError("Failed to fetch user info from Slack")

        user = response.get('user') or {}
        profile = user.get('profile') or {}
        return profile.get('email')

    async def resolve_owner(self, slack_user_id: str, user_token: str) -> str:
        """
        Args:
            slack_user_id: Slack user who authorized the app
            user_token: User-scoped token from the OAuth exchange

        Returns:
            Host account id

        Raises:
            UpstreamError: If Slack or the host directory cannot be reached
            IdentityNotFound: If no host account matches the profile email
        """
        email = await self.fetch_profile_email(slack_user_id, user_token)
        if not email:
            logger.warning("Slack profile has no email", extra={'slack_user_id': slack_user_id})
            raise IdentityNotFound("Slack profile does not expose an email address")

        try:
            account = await self.account_directory.find_account_by_email(email)
        except HostAPIError as e:
            raise UpstreamError("Failed to look up host account") from e

        if account is None:
            logger.warning("No host account for Slack user", extra={'slack_user_id': slack_user_id})
            raise IdentityNotFound("User not found")

        logger.info("Resolved Slack user to host account", extra={
            'slack_user_id': slack_user_id,
            'owner_user_id': account.id
        })
        return account.id
