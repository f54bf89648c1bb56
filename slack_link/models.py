# TrIAge
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Data models for the Slack linking service.

This module defines Pydantic models for workspace installations, OAuth
grants, inbound Slack events, outbound send results and API request bodies.
All models use Pydantic v2 for validation.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _require_text(value: str) -> str:
    if not value or not value.strip():
        raise ValueError('must not be empty')
    return value


class Installation(BaseModel):
    """
    Link between one host account and one Slack workspace.

    Holds the tokens needed to act as the workspace's bot. The pair
    (slack_team_id, slack_user_id) is unique across all installations.
    """
    model_config = ConfigDict(frozen=False)

    id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        description="Opaque record identifier, immutable"
    )
    owner_user_id: str = Field(
        ...,
        description="Host account that authorized the installation"
    )
    slack_team_id: str = Field(
        ...,
        description="Slack workspace/team ID (e.g., 'T12345')"
    )
    slack_team_name: str = Field(
        default="",
        description="Slack workspace display name"
    )
    slack_user_id: str = Field(
        ...,
        description="Slack user who performed the authorization"
    )
    bot_token: str = Field(
        ...,
        description="Workspace-scoped bot token used for outbound calls"
    )
    user_token: str = Field(
        ...,
        description="User-scoped token, used only for identity resolution"
    )
    is_active: bool = Field(
        default=True,
        description="Whether the installation may be used for sends"
    )
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator('bot_token', 'user_token')
    @classmethod
    def validate_token_not_empty(cls, v: str) -> str:
        return _require_text(v)

    def summary(self) -> "InstallationSummary":
        """Project to the non-secret fields."""
        return InstallationSummary(
            id=self.id,
            slack_team_id=self.slack_team_id,
            slack_team_name=self.slack_team_name,
            is_active=self.is_active,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class InstallationSummary(BaseModel):
    """Installation as seen by its owner. Never carries tokens."""

    id: str
    slack_team_id: str
    slack_team_name: str
    is_active: bool
    created_at: datetime
    updated_at: datetime


class OAuthGrant(BaseModel):
    """
    Result of exchanging an authorization code with Slack.

    slack_user_id and user_token are Optional here so that a grant can be
    built from an incomplete response and rejected with a precise error.
    """

    slack_team_id: str
    slack_team_name: str = ""
    slack_user_id: Optional[str] = None
    bot_token: str
    user_token: Optional[str] = None

    @classmethod
    def from_oauth_response(cls, data: Dict[str, Any]) -> "OAuthGrant":
        team = data.get('team') or {}
        authed_user = data.get('authed_user') or {}
        return cls(
            slack_team_id=team.get('id') or '',
            slack_team_name=team.get('name') or '',
            slack_user_id=authed_user.get('id') or None,
            bot_token=data.get('access_token') or '',
            user_token=authed_user.get('access_token') or None,
        )


class Account(BaseModel):
    """Host-application account returned by the account directory."""

    id: str
    email: str


class WorkspaceUpdate(BaseModel):
    """Partial update of an installation. Only activation is mutable."""
    model_config = ConfigDict(extra='forbid', populate_by_name=True)

    is_active: Optional[bool] = Field(default=None, alias='isActive')

    def is_empty(self) -> bool:
        return self.is_active is None


class InboundMessage(BaseModel):
    """Record handed to the message sink for every accepted message event."""

    message_id: str
    user_id: Optional[str] = None
    channel_id: Optional[str] = None
    team_id: Optional[str] = None
    text: str = ""
    timestamp: datetime
    thread_ts: Optional[str] = None

    @classmethod
    def from_event(cls, event: Dict[str, Any]) -> "InboundMessage":
        ts = event.get('ts') or '0'
        return cls(
            message_id=event.get('client_msg_id') or ts,
            user_id=event.get('user'),
            channel_id=event.get('channel'),
            team_id=event.get('team'),
            text=event.get('text') or '',
            timestamp=datetime.fromtimestamp(float(ts), tz=timezone.utc),
            thread_ts=event.get('thread_ts'),
        )


class SlashCommand(BaseModel):
    """Slash command invocation as posted by Slack (form-encoded)."""

    command: str = ""
    channel_id: str = ""
    user_id: str = ""
    user_name: str = ""
    team_id: str = ""
    text: str = ""


class PostResult(BaseModel):
    """A message posted to a channel. ts is both its id and a thread anchor."""

    ok: bool = True
    channel: str
    ts: str
    message_id: str


class ThreadReplyResult(PostResult):
    thread_ts: str
    is_thread_reply: bool = True


class NotificationThread(BaseModel):
    channel_id: str
    thread_ts: str
    user_id: str
    user_name: str
    team_id: str


class SendMessageRequest(BaseModel):
    """Body of POST /slack/notify."""
    model_config = ConfigDict(populate_by_name=True)

    channel_id: str = Field(..., alias='channelId')
    message: str

    @field_validator('channel_id', 'message')
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        return _require_text(v)


class SendThreadMessageRequest(SendMessageRequest):
    """Body of POST /slack/notify-thread."""

    thread_ts: str = Field(..., alias='threadTs')

    @field_validator('thread_ts')
    @classmethod
    def validate_thread_ts(cls, v: str) -> str:
        return _require_text(v)
