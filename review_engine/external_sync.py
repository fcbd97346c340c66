"""
External Sync Adapter

Mirrors the internal review status into a custom field on the linked
external project.

Key features:
- Fixed vocabulary mapping internal statuses to external field values
- One upsert strategy (fetch existing → update by id, else create)
- Safe-default revert of the external project status for drift correction

CONSTRAINTS:
- Sync failures NEVER fail a local transition; callers report them as warnings
- A failed lookup is never treated as "missing": no create is attempted
- An existing value is always updated by id, so repeated pushes leave
  exactly one remote value
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .errors import ExternalSyncError, ExternalSystemError
from .external_client import (
    PROJECT_STATUS_KEYS,
    ExternalProjectClient,
)
from .status_catalog import ReviewStatus

logger = logging.getLogger("external_sync")

# Internal status → value written into the external custom field
EXTERNAL_FIELD_VALUES: Dict[ReviewStatus, str] = {
    ReviewStatus.DRAFT: "In Progress",
    ReviewStatus.SUBMITTED: "In Progress",
    ReviewStatus.IN_REVIEW: "In Progress",
    ReviewStatus.NEEDS_WORK: "In Progress",
    ReviewStatus.APPROVED: "Approved",
    ReviewStatus.ARCHIVED: "Archived",
}

# External project status that requires an Approved review
EXTERNAL_STATUS_LIVE = "Live"

# Status an external project is reverted to when drift is corrected
SAFE_DEFAULT_PROJECT_STATUS = "In Development"


def to_external_value(status: ReviewStatus) -> str:
    return EXTERNAL_FIELD_VALUES[status]


@dataclass
class SyncResult:
    """Outcome of a push."""
    external_project_id: str
    value: str
    value_id: Optional[str] = None
    created: bool = False
    updated: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "external_project_id": self.external_project_id,
            "value": self.value,
            "value_id": self.value_id,
            "created": self.created,
            "updated": self.updated,
        }


class CustomFieldUpsert:
    """
    Idempotent upsert of a single custom field value on a workspace.

    Lookup failures other than "not found" raise ExternalSyncError and no
    create is attempted.
    """

    def __init__(self, client: ExternalProjectClient, field_id: str):
        self._client = client
        self._field_id = field_id

    async def upsert(self, project_id: str, value: str) -> SyncResult:
        try:
            existing = await self._client.find_field_value(project_id, self._field_id)
        except ExternalSystemError as e:
            raise ExternalSyncError(
                f"Could not look up status field on project {project_id}: {e.message}",
                http_status=e.http_status,
            ) from e

        try:
            if existing is None:
                value_id = await self._client.create_field_value(project_id, self._field_id, value)
                return SyncResult(project_id, value, value_id=value_id, created=True)

            value_id = await self._client.update_field_value(existing.value_id, value)
            return SyncResult(project_id, value, value_id=value_id, updated=True)
        except ExternalSystemError as e:
            raise ExternalSyncError(
                f"Could not write status field on project {project_id}: {e.message}",
                http_status=e.http_status,
            ) from e


class ExternalSyncAdapter:
    """Pushes internal statuses outward and applies drift corrections."""

    def __init__(self, client: ExternalProjectClient, status_field_id: str):
        self._client = client
        self._upsert = CustomFieldUpsert(client, status_field_id)

    @property
    def client(self) -> ExternalProjectClient:
        return self._client

    async def push_status(
        self,
        external_project_id: str,
        internal_status: ReviewStatus,
    ) -> SyncResult:
        """
        Mirror internal_status into the external status field.

        Raises ExternalSyncError on failure.
        """
        value = to_external_value(internal_status)
        result = await self._upsert.upsert(external_project_id, value)
        logger.info(
            f"Synced project {external_project_id} status field to '{value}' "
            f"(created={result.created}, updated={result.updated})"
        )
        return result

    async def revert_project_status(self, external_project_id: str) -> str:
        """
        Revert an external project to the safe default status.

        Returns the status the project was reverted to. Raises ExternalSyncError
        on failure.
        """
        status_key = PROJECT_STATUS_KEYS[SAFE_DEFAULT_PROJECT_STATUS]
        try:
            await self._client.set_project_status(external_project_id, status_key)
        except ExternalSystemError as e:
            raise ExternalSyncError(
                f"Could not revert project {external_project_id} to "
                f"'{SAFE_DEFAULT_PROJECT_STATUS}': {e.message}",
                http_status=e.http_status,
            ) from e

        logger.warning(
            f"Reverted external project {external_project_id} to '{SAFE_DEFAULT_PROJECT_STATUS}'"
        )
        return SAFE_DEFAULT_PROJECT_STATUS
