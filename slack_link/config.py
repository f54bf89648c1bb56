# TrIAge
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Configuration management for the Slack linking service.

Handles environment variables and application settings.
"""

import os
from dataclasses import dataclass
from typing import Optional


def _is_secure_url(url: str) -> bool:
    """HTTPS everywhere, plain HTTP only for local development hosts."""
    return url.startswith("https://") or url.startswith(("http://localhost", "http://127.0.0.1"))


@dataclass
class SlackLinkConfig:
    """Configuration for the Slack linking service."""

    # Slack app credentials (required)
    slack_client_id: str
    slack_client_secret: str
    slack_redirect_uri: str

    # Host application API (required)
    host_api_url: str
    host_api_token: str

    # Where the browser lands after a successful link
    frontend_url: str = "http://localhost:5173/"

    # Webhook signature verification is skipped when unset
    slack_signing_secret: Optional[str] = None

    # Storage (optional, in-memory when unset)
    database_url: Optional[str] = None
    encryption_key: Optional[str] = None
    redis_url: Optional[str] = None

    # Webhook deduplication window
    dedup_ttl_seconds: int = 300

    # Inbound message persistence workers
    persistence_workers: int = 2

    # Logging configuration (optional)
    log_level: str = "INFO"
    log_format: str = "json"

    # HTTP server
    host: str = "0.0.0.0"
    port: int = 8080

    @classmethod
    def from_env(cls) -> "SlackLinkConfig":
        """Load configuration from environment variables."""
        return cls(
            slack_client_id=os.environ["SLACK_CLIENT_ID"],
            slack_client_secret=os.environ["SLACK_CLIENT_SECRET"],
            slack_redirect_uri=os.environ["SLACK_REDIRECT_URI"],
            host_api_url=os.environ["HOST_API_URL"],
            host_api_token=os.environ["HOST_API_TOKEN"],
            frontend_url=os.environ.get("FRONTEND_URL", "http://localhost:5173/"),
            slack_signing_secret=os.environ.get("SLACK_SIGNING_SECRET") or None,
            database_url=os.environ.get("DATABASE_URL") or None,
            encryption_key=os.environ.get("ENCRYPTION_KEY") or None,
            redis_url=os.environ.get("REDIS_URL") or None,
            dedup_ttl_seconds=int(os.environ.get("DEDUP_TTL_SECONDS", "300")),
            persistence_workers=int(os.environ.get("PERSISTENCE_WORKERS", "2")),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
            log_format=os.environ.get("LOG_FORMAT", "json"),
            host=os.environ.get("HOST", "0.0.0.0"),
            port=int(os.environ.get("PORT", "8080")),
        )

    def validate(self) -> None:
        """Validate configuration values."""
        if not self.slack_client_id or not self.slack_client_secret:
            raise ValueError("SLACK_CLIENT_ID and SLACK_CLIENT_SECRET must not be empty")

        if not _is_secure_url(self.slack_redirect_uri):
            raise ValueError("SLACK_REDIRECT_URI must use HTTPS")

        if not _is_secure_url(self.host_api_url):
            raise ValueError("HOST_API_URL must use HTTPS")

        if self.dedup_ttl_seconds < 60 or self.dedup_ttl_seconds > 3600:
            raise ValueError("DEDUP_TTL_SECONDS must be between 60 and 3600")

        if self.persistence_workers < 1 or self.persistence_workers > 32:
            raise ValueError("PERSISTENCE_WORKERS must be between 1 and 32")

        if self.database_url:
            if not self.encryption_key or len(self.encryption_key) < 32:
                raise ValueError("ENCRYPTION_KEY must be at least 32 characters when DATABASE_URL is set")
