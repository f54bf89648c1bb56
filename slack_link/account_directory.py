# TrIAge
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Host account lookup.

The host application owns user accounts; this service only needs to find
the account whose email matches a Slack profile. HostAccountDirectory talks
to the host API over HTTPS, StaticAccountDirectory serves tests and local
runs.
"""

import logging
from typing import Dict, Iterable, Optional, Protocol

import httpx

from slack_link.models import Account


logger = logging.getLogger(__name__)


class AccountDirectory(Protocol):
    """Lookup capability provided by the host application."""

    async def find_account_by_email(self, email: str) -> Optional[Account]:
        ...


class HostAPIError(Exception):
    """Host API call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None, response_body: Optional[str] = None):
        self.message = message
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(message)


class HostAccountDirectory:
    """
    Async HTTP client for the host application's account API.

    Endpoint: GET {base_url}/api/v1/accounts?email=<email>
    200 returns {"id": ..., "email": ...}, 404 means no such account.
    """

    def __init__(
        self,
        base_url: str,
        api_token: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.api_token = api_token
        self.timeout = httpx.Timeout(timeout, connect=5.0)
        self.transport = transport
        self._client: Optional[httpx.AsyncClient] = None

        logger.info("Initialized host account directory", extra={"base_url": self.base_url})

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def connect(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=self._get_auth_headers(),
                transport=self.transport,
            )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def _get_auth_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_token}",
            "Accept": "application/json",
            "User-Agent": "TrIAge-Slack-Link/0.1.0",
        }

    async def find_account_by_email(self, email: str) -> Optional[Account]:
        """
        Raises:
            HostAPIError: On transport failure or unexpected status
        """
        await self.connect()

        try:
            response = await self._client.get("/api/v1/accounts", params={"email": email})
        except httpx.HTTPError as e:
            logger.error("Host account lookup failed", extra={"error": str(e)})
            raise HostAPIError(f"Host account lookup failed: {e}") from e

        if response.status_code == 404:
            return None

        if response.status_code != 200:
            logger.error("Host account lookup returned unexpected status", extra={
                "status_code": response.status_code
            })
            raise HostAPIError(
                "Host account lookup failed",
                status_code=response.status_code,
                response_body=response.text[:500],
            )

        data = response.json()
        if not data:
            return None
        return Account(id=str(data["id"]), email=data.get("email", email))


class StaticAccountDirectory:
    """In-memory directory keyed by case-insensitive email."""

    def __init__(self, accounts: Iterable[Account] = ()):
        self._by_email: Dict[str, Account] = {}
        for account in accounts:
            self.add(account)

    def add(self, account: Account) -> None:
        self._by_email[account.email.lower()] = account

    async def find_account_by_email(self, email: str) -> Optional[Account]:
        return self._by_email.get(email.lower())
