# TrIAge
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Workspace installation storage.

Defines the storage contract used by the OAuth linker, the message
dispatcher and workspace administration, with an in-memory implementation
and a PostgreSQL implementation that encrypts tokens at rest.

Selection rule shared by both implementations: when several active
installations match an owner (or a team), the most recently updated one
wins, ties broken by created_at and then by id.
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import asyncpg

from slack_link.encryption import TokenEncryption
from slack_link.models import Installation, OAuthGrant, WorkspaceUpdate, utcnow

logger = logging.getLogger(__name__)


def _selection_key(installation: Installation):
    return (installation.updated_at, installation.created_at, installation.id)


class InstallationStore(ABC):
    """Storage contract for workspace installations."""

    @abstractmethod
    async def upsert(self, grant: OAuthGrant, owner_user_id: str) -> Installation:
        """
        Insert or update the installation keyed by (team, slack user).

        Atomic with respect to that key. An existing row keeps its id,
        owner and created_at; tokens and team name are replaced and the
        installation is reactivated.
        """

    @abstractmethod
    async def find_active_by_owner(self, owner_user_id: str) -> Optional[Installation]:
        """Active installation selected for sends on behalf of owner_user_id."""

    @abstractmethod
    async def find_active_by_team(self, slack_team_id: str) -> Optional[Installation]:
        """Active installation for a workspace, used by slash commands."""

    @abstractmethod
    async def list_by_owner(self, owner_user_id: str) -> List[Installation]:
        """All installations of an owner, most recently updated first."""

    @abstractmethod
    async def update_for_owner(
        self,
        installation_id: str,
        owner_user_id: str,
        update: WorkspaceUpdate
    ) -> Optional[Installation]:
        """Apply update only if (installation_id, owner_user_id) matches a row."""

    @abstractmethod
    async def delete_for_owner(self, installation_id: str, owner_user_id: str) -> bool:
        """Delete only if (installation_id, owner_user_id) matches a row."""


class InMemoryInstallationStore(InstallationStore):
    """
    Dict-backed store for tests and local development.

    Writes are serialized by a single asyncio.Lock. Returned objects are
    copies, so callers cannot mutate stored state.
    """

    def __init__(self):
        self._rows: Dict[str, Installation] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._rows)

    def _find_by_natural_key(self, slack_team_id: str, slack_user_id: str) -> Optional[Installation]:
        for row in self._rows.values():
            if row.slack_team_id == slack_team_id and row.slack_user_id == slack_user_id:
                return row
        return None

    async def upsert(self, grant: OAuthGrant, owner_user_id: str) -> Installation:
        async with self._lock:
            existing = self._find_by_natural_key(grant.slack_team_id, grant.slack_user_id)
            if existing is not None:
                existing.slack_team_name = grant.slack_team_name
                existing.bot_token = grant.bot_token
                existing.user_token = grant.user_token
                existing.is_active = True
                existing.updated_at = utcnow()
                logger.info("Updated existing Slack installation", extra={
                    'installation_id': existing.id,
                    'slack_team_id': existing.slack_team_id,
                })
                return existing.model_copy()

            installation = Installation(
                owner_user_id=owner_user_id,
                slack_team_id=grant.slack_team_id,
                slack_team_name=grant.slack_team_name,
                slack_user_id=grant.slack_user_id,
                bot_token=grant.bot_token,
                user_token=grant.user_token,
                is_active=True,
            )
            self._rows[installation.id] = installation
            logger.info("Created Slack installation", extra={
                'installation_id': installation.id,
                'slack_team_id': installation.slack_team_id,
            })
            return installation.model_copy()

    def _select(self, candidates: List[Installation]) -> Optional[Installation]:
        if not candidates:
            return None
        return max(candidates, key=_selection_key).model_copy()

    async def find_active_by_owner(self, owner_user_id: str) -> Optional[Installation]:
        return self._select([
            row for row in self._rows.values()
            if row.owner_user_id == owner_user_id and row.is_active
        ])

    async def find_active_by_team(self, slack_team_id: str) -> Optional[Installation]:
        return self._select([
            row for row in self._rows.values()
            if row.slack_team_id == slack_team_id and row.is_active
        ])

    async def list_by_owner(self, owner_user_id: str) -> List[Installation]:
        rows = [row for row in self._rows.values() if row.owner_user_id == owner_user_id]
        rows.sort(key=_selection_key, reverse=True)
        return [row.model_copy() for row in rows]

    async def update_for_owner(
        self,
        installation_id: str,
        owner_user_id: str,
        update: WorkspaceUpdate
    ) -> Optional[Installation]:
        async with self._lock:
            row = self._rows.get(installation_id)
            if row is None or row.owner_user_id != owner_user_id:
                return None
            if update.is_active is not None:
                row.is_active = update.is_active
            row.updated_at = utcnow()
            return row.model_copy()

    async def delete_for_owner(self, installation_id: str, owner_user_id: str) -> bool:
        async with self._lock:
            row = self._rows.get(installation_id)
            if row is None or row.owner_user_id != owner_user_id:
                return False
            del self._rows[installation_id]
            return True


_COLUMNS = """
    id, owner_user_id, slack_team_id, slack_team_name, slack_user_id,
    bot_token, user_token, is_active, created_at, updated_at
"""

_ORDERING = "ORDER BY updated_at DESC, created_at DESC, id DESC"


class PostgresInstallationStore(InstallationStore):
    """
    PostgreSQL store backed by an asyncpg pool.

    Bot and user tokens are encrypted before they are written and decrypted
    when rows are read back. The unique constraint on
    (slack_team_id, slack_user_id) together with INSERT ... ON CONFLICT makes
    the upsert atomic without any application-level lock.
    """

    def __init__(self, database_url: str, encryption_key: str):
        """
        Args:
            database_url: PostgreSQL connection URL
            encryption_key: 32+ character key for token encryption
        """
        self.database_url = database_url
        self.encryption = TokenEncryption(encryption_key)
        self._pool: Optional[asyncpg.Pool] = None

        logger.info("Initialized PostgresInstallationStore")

    async def connect(self) -> None:
        if self._pool is None:
            logger.info("Creating database connection pool for Slack installations")
            self._pool = await asyncpg.create_pool(self.database_url, min_size=2, max_size=10, command_timeout=30)

    async def disconnect(self) -> None:
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("Database connection pool closed for Slack installations")

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()

    def _require_pool(self) -> asyncpg.Pool:
        if not self._pool:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._pool

    async def initialize_schema(self) -> None:
        """Create the slack_installation table and its indexes if missing."""
        schema_sql = """
        CREATE TABLE IF NOT EXISTS slack_installation (
            id TEXT PRIMARY KEY,
            owner_user_id VARCHAR(255) NOT NULL,
            slack_team_id VARCHAR(32) NOT NULL,
            slack_team_name VARCHAR(255) NOT NULL DEFAULT '',
            slack_user_id VARCHAR(32) NOT NULL,
            bot_token TEXT NOT NULL,
            user_token TEXT NOT NULL,
            is_active BOOLEAN NOT NULL DEFAULT TRUE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            UNIQUE (slack_team_id, slack_user_id)
        );

        CREATE INDEX IF NOT EXISTS idx_slack_installation_owner
        ON slack_installation(owner_user_id);

        CREATE INDEX IF NOT EXISTS idx_slack_installation_team_active
        ON slack_installation(slack_team_id) WHERE is_active = TRUE;
        """

        async with self._require_pool().acquire() as conn:
            await conn.execute(schema_sql)

        logger.info("Slack installation schema initialized")

    def _row_to_installation(self, row) -> Installation:
        return Installation(
            id=row["id"],
            owner_user_id=row["owner_user_id"],
            slack_team_id=row["slack_team_id"],
            slack_team_name=row["slack_team_name"],
            slack_user_id=row["slack_user_id"],
            bot_token=self.encryption.decrypt(row["bot_token"]),
            user_token=self.encryption.decrypt(row["user_token"]),
            is_active=row["is_active"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    async def upsert(self, grant: OAuthGrant, owner_user_id: str) -> Installation:
        upsert_sql = f"""
        INSERT INTO slack_installation (
            id, owner_user_id, slack_team_id, slack_team_name, slack_user_id,
            bot_token, user_token, is_active, created_at, updated_at
        ) VALUES ($1, $2, $3, $4, $5, $6, $7, TRUE, NOW(), NOW())
        ON CONFLICT (slack_team_id, slack_user_id) DO UPDATE SET
            slack_team_name = EXCLUDED.slack_team_name,
            bot_token = EXCLUDED.bot_token,
            user_token = EXCLUDED.user_token,
            is_active = TRUE,
            updated_at = NOW()
        RETURNING {_COLUMNS}
        """

        try:
            async with self._require_pool().acquire() as conn:
                row = await conn.fetchrow(
                    upsert_sql,
                    str(uuid.uuid4()),
                    owner_user_id,
                    grant.slack_team_id,
                    grant.slack_team_name,
                    grant.slack_user_id,
                    self.encryption.encrypt(grant.bot_token),
                    self.encryption.encrypt(grant.user_token),
                )
        except Exception as e:
            logger.error("Failed to upsert Slack installation", extra={
                'slack_team_id': grant.slack_team_id,
                'error': str(e)
            })
            raise

        installation = self._row_to_installation(row)
        logger.info("Slack installation upserted", extra={
            'installation_id': installation.id,
            'slack_team_id': installation.slack_team_id,
        })
        return installation

    async def _fetch_one(self, sql: str, *args) -> Optional[Installation]:
        async with self._require_pool().acquire() as conn:
            row = await conn.fetchrow(sql, *args)
        return self._row_to_installation(row) if row is not None else None

    async def find_active_by_owner(self, owner_user_id: str) -> Optional[Installation]:
        return await self._fetch_one(
            f"SELECT {_COLUMNS} FROM slack_installation "
            f"WHERE owner_user_id = $1 AND is_active = TRUE {_ORDERING} LIMIT 1",
            owner_user_id,
        )

    async def find_active_by_team(self, slack_team_id: str) -> Optional[Installation]:
        return await self._fetch_one(
            f"SELECT {_COLUMNS} FROM slack_installation "
            f"WHERE slack_team_id = $1 AND is_active = TRUE {_ORDERING} LIMIT 1",
            slack_team_id,
        )

    async def list_by_owner(self, owner_user_id: str) -> List[Installation]:
        async with self._require_pool().acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {_COLUMNS} FROM slack_installation WHERE owner_user_id = $1 {_ORDERING}",
                owner_user_id,
            )
        return [self._row_to_installation(row) for row in rows]

    async def update_for_owner(
        self,
        installation_id: str,
        owner_user_id: str,
        update: WorkspaceUpdate
    ) -> Optional[Installation]:
        update_fields = ["updated_at = NOW()"]
        params = [installation_id, owner_user_id]

        if update.is_active is not None:
            params.append(update.is_active)
            update_fields.append(f"is_active = ${len(params)}")

        update_sql = f"""
        UPDATE slack_installation
        SET {', '.join(update_fields)}
        WHERE id = $1 AND owner_user_id = $2
        RETURNING {_COLUMNS}
        """

        installation = await self._fetch_one(update_sql, *params)
        if installation is None:
            logger.warning("Slack installation not found for update", extra={
                'installation_id': installation_id
            })
        return installation

    async def delete_for_owner(self, installation_id: str, owner_user_id: str) -> bool:
        async with self._require_pool().acquire() as conn:
            result = await conn.execute(
                "DELETE FROM slack_installation WHERE id = $1 AND owner_user_id = $2",
                installation_id,
                owner_user_id,
            )

        # asyncpg returns the command tag, e.g. "DELETE 1"
        deleted = result.split()[-1] == "1"
        if not deleted:
            logger.warning("Slack installation not found for deletion", extra={
                'installation_id': installation_id
            })
        return deleted
