# TrIAge
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
OAuth linker for Slack workspace installation.

Drives the three-party handshake that links a host account to a Slack
workspace: build the authorization URL, exchange the returned code for bot
and user tokens, resolve the host account behind the authorizing Slack
user, and upsert the installation record.
"""

from dataclasses import dataclass
from typing import Any, Dict
from urllib.parse import urlencode

import httpx

from slack_link.config import SlackLinkConfig
from slack_link.errors import InvalidRequest, UpstreamError, UpstreamRejected
from slack_link.identity_resolver import SlackIdentityResolver
from slack_link.installation_store import InstallationStore
from slack_link.logging_config import get_logger
from slack_link.models import Installation, OAuthGrant


logger = get_logger(__name__)


@dataclass(frozen=True)
class OAuthSettings:
    """Slack app credentials and redirect targets, fixed at construction."""

    client_id: str
    client_secret: str
    redirect_uri: str
    frontend_url: str

    @classmethod
    def from_config(cls, config: SlackLinkConfig) -> "OAuthSettings":
        return cls(
            client_id=config.slack_client_id,
            client_secret=config.slack_client_secret,
            redirect_uri=config.slack_redirect_uri,
            frontend_url=config.frontend_url,
        )


class OAuthLinker:
    """
    Links host accounts to Slack workspaces.

    Handles:
    - Authorization URL generation
    - Code-for-token exchange
    - Host identity resolution through the Slack profile email
    - Installation upsert keyed by (team, authorizing Slack user)
    """

    OAUTH_AUTHORIZE_URL = "https://slack.com/oauth/v2/authorize"
    OAUTH_TOKEN_URL = "https://slack.com/api/oauth.v2.access"

    BOT_SCOPES = [
        "channels:history",   # Read channel messages
        "channels:read",      # See channel info
        "groups:history",     # Read private channel messages
        "groups:read",        # See private channel info
        "im:history",         # Read DMs
        "im:read",            # See DM info
        "users:read",         # Get user info
        "app_mentions:read",  # See @mentions
        "chat:write",         # Send messages
        "commands",           # Slash commands
    ]

    USER_SCOPES = [
        "users:read",
        "users:read.email",   # Needed to match the host account
    ]

    def __init__(
        self,
        settings: OAuthSettings,
        store: InstallationStore,
        identity_resolver: SlackIdentityResolver,
        timeout: float = 10.0
    ):
        self.settings = settings
        self.store = store
        self.identity_resolver = identity_resolver
        self.timeout = timeout

        logger.info("OAuth linker initialized", extra={
            'client_id': settings.client_id,
            'redirect_uri': settings.redirect_uri,
        })

    @property
    def redirect_after_link(self) -> str:
        """Front-end URL the browser returns to once linking succeeded."""
        return self.settings.frontend_url

    def build_authorization_url(self) -> str:
        """
        Compose the Slack authorization URL.

        Pure function of configuration: the same settings always yield the
        same URL.
        """
        params = {
            'client_id': self.settings.client_id,
            'scope': ','.join(self.BOT_SCOPES),
            'user_scope': ','.join(self.USER_SCOPES),
            'redirect_uri': self.settings.redirect_uri,
        }
        return f"{self.OAUTH_AUTHORIZE_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> Dict[str, Any]:
        """
        Exchange an authorization code at Slack's token endpoint.

        Raises:
            UpstreamError: On transport failure, non-2xx status or unreadable body
            UpstreamRejected: If Slack answers ok=false
        """
        async with httpx.AsyncClient() as client:
            try:
                response = await client.post(
                    self.OAUTH_TOKEN_URL,
                    data={
                        'client_id': self.settings.client_id,
                        'client_secret': self.settings.client_secret,
                        'code': code,
                        'redirect_uri': self.settings.redirect_uri,
                    },
                    timeout=self.timeout
                )
                response.raise_for_status()
                data = response.json()
            except httpx.HTTPError as e:
                logger.error("OAuth token exchange HTTP error", extra={'error': str(e)})
                raise UpstreamError("OAuth token exchange failed") from e
            except ValueError as e:
                logger.error("OAuth token exchange returned invalid JSON", extra={'error': str(e)})
                raise UpstreamError("OAuth token exchange returned an unreadable response") from e

        if not data.get('ok'):
            error = data.get('error', 'unknown_error')
            logger.error("OAuth token exchange rejected", extra={'error': error})
            raise UpstreamRejected(f"OAuth token exchange failed: {error}", upstream_error=error)

        return data

    @staticmethod
    def extract_grant(data: Dict[str, Any]) -> OAuthGrant:
        """
        Pull team, Slack user and tokens out of an oauth.v2.access response.

        Raises:
            InvalidRequest: If the authorizing user or the user token is missing
            UpstreamRejected: If the team id or bot token is missing
        """
        grant = OAuthGrant.from_oauth_response(data)

        if not grant.slack_user_id or not grant.user_token:
            raise InvalidRequest("Slack User ID and User Token are required")

        if not grant.slack_team_id or not grant.bot_token:
            raise UpstreamRejected("OAuth response is missing the team or bot token", upstream_error="incomplete_grant")

        return grant

    async def complete_handshake(self, code: str) -> Installation:
        """
        Complete the OAuth redirect for an authorization code.

        Args:
            code: The `code` query parameter Slack sent to the redirect URI

        Returns:
            The created or updated Installation, active

        Raises:
            InvalidRequest: Empty code, or a grant without a user identity
            UpstreamError: Slack or the host directory unreachable
            UpstreamRejected: Slack refused the exchange
            IdentityNotFound: No host account matches the Slack profile
        """
        if not code or not code.strip():
            raise InvalidRequest("Code is required for OAuth")

        data = await self.exchange_code(code)
        grant = self.extract_grant(data)

        logger.info("OAuth token exchange successful", extra={
            'slack_team_id': grant.slack_team_id,
            'slack_user_id': grant.slack_user_id,
        })

        owner_user_id = await self.identity_resolver.resolve_owner(grant.slack_user_id, grant.user_token)

        installation = await self.store.upsert(grant, owner_user_id)

        logger.info("Slack workspace linked", extra={
            'installation_id': installation.id,
            'slack_team_id': installation.slack_team_id,
            'owner_user_id': installation.owner_user_id,
        })
        return installation
