# TrIAge
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
Owner-scoped administration of linked Slack workspaces.

Every operation takes the caller's host account id and never touches an
installation owned by someone else. A miss is always reported as NotFound,
whether the record is absent or belongs to another account.
"""

from typing import List

from slack_link.errors import InvalidRequest, NotFound
from slack_link.installation_store import InstallationStore
from slack_link.logging_config import get_logger
from slack_link.models import InstallationSummary, WorkspaceUpdate


logger = get_logger(__name__)


class WorkspaceAdministration:

    def __init__(self, store: InstallationStore):
        self.store = store

    async def list_workspaces(self, owner_user_id: str) -> List[InstallationSummary]:
        installations = await self.store.list_by_owner(owner_user_id)
        return [installation.summary() for installation in installations]

    async def update_workspace(
        self,
        installation_id: str,
        owner_user_id: str,
        update: WorkspaceUpdate
    ) -> InstallationSummary:
        """
        Raises:
            InvalidRequest: If the update changes nothing
            NotFound: If (installation_id, owner_user_id) matches no installation
        """
        if update.is_empty():
            raise InvalidRequest("No updatable fields provided")

        installation = await self.store.update_for_owner(installation_id, owner_user_id, update)
        if installation is None:
            raise NotFound("Workspace not found or unauthorized")

        logger.info("Slack workspace updated", extra={
            'installation_id': installation_id,
            'is_active': installation.is_active,
        })
        return installation.summary()

    async def delete_workspace(self, installation_id: str, owner_user_id: str) -> bool:
        """
        Raises:
            NotFound: If (installation_id, owner_user_id) matches no installation
        """
        if not await self.store.delete_for_owner(installation_id, owner_user_id):
            raise NotFound("Workspace not found or unauthorized")

        logger.info("Slack workspace deleted", extra={'installation_id': installation_id})
        return True
