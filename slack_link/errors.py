# TrIAge
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Domain errors for the Slack linking service.

Every failure that reaches a caller is one of the classes below. Each
carries a stable error_code and the HTTP status the API layer renders it
with, so upstream Slack error strings never leak through as-is.
"""

from typing import Dict, Optional, Tuple, Type


class SlackLinkError(Exception):
    """Base class for all domain errors."""

    error_code = "slack_link_error"
    status_code = 500

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if error_code is not None:
            self.error_code = error_code

    def to_dict(self) -> Dict[str, object]:
        return {"success": False, "message": self.message, "error": self.error_code}


class InvalidRequest(SlackLinkError):
    """Malformed or missing caller input."""

    error_code = "invalid_request"
    status_code = 400


class UpstreamError(SlackLinkError):
    """Transport-level failure while calling Slack."""

    error_code = "upstream_error"
    status_code = 502


class UpstreamRejected(SlackLinkError):
    """Slack answered with ok=false."""

    error_code = "upstream_rejected"
    status_code = 502

    def __init__(self, message: str, upstream_error: Optional[str] = None):
        super().__init__(message)
        self.upstream_error = upstream_error


class IdentityNotFound(SlackLinkError):
    """No host account matches the Slack profile's email."""

    error_code = "identity_not_found"
    status_code = 404


class NoActiveInstallation(SlackLinkError):
    error_code = "no_active_installation"
    status_code = 404


class NotFound(SlackLinkError):
    """
    Ownership-scoped lookup miss.

    Raised both when the record does not exist and when it belongs to
    someone else; callers cannot tell the two apart.
    """

    error_code = "not_found"
    status_code = 404


class DispatchFailed(SlackLinkError):
    """Catch-all failure for outbound sends."""

    error_code = "dispatch_failed"
    status_code = 500

    def __init__(self, message: str, upstream_error: Optional[str] = None):
        super().__init__(message)
        self.upstream_error = upstream_error


class ChannelNotFound(DispatchFailed):
    error_code = "channel_not_found"
    status_code = 404


class BotNotInChannel(DispatchFailed):
    error_code = "not_in_channel"
    status_code = 400


class InvalidCredentials(DispatchFailed):
    error_code = "invalid_auth"
    status_code = 400


class ThreadNotFound(DispatchFailed):
    error_code = "thread_not_found"
    status_code = 404


class ParentMessageNotFound(DispatchFailed):
    error_code = "message_not_found"
    status_code = 404


# Slack error string -> (domain error, user-facing message)
SLACK_ERROR_MAP: Dict[str, Tuple[Type[DispatchFailed], str]] = {
    "channel_not_found": (ChannelNotFound, "Slack channel not found"),
    "not_in_channel": (BotNotInChannel, "Bot is not a member of this channel"),
    "invalid_auth": (InvalidCredentials, "Invalid Slack authentication token"),
    "thread_not_found": (ThreadNotFound, "Thread not found - invalid thread_ts"),
    "message_not_found": (ParentMessageNotFound, "Parent message not found"),
}


def map_slack_error(upstream_code: Optional[str], fallback_message: str = "Failed to send Slack message") -> DispatchFailed:
    """
    Translate a Slack Web API error string into a domain error.

    Unknown or missing codes become a plain DispatchFailed that still
    remembers the upstream code for logging.
    """
    mapped = SLACK_ERROR_MAP.get(upstream_code or "")
    if mapped is None:
        return DispatchFailed(fallback_message, upstream_error=upstream_code)
    error_class, message = mapped
    return error_class(message, upstream_error=upstream_code)
