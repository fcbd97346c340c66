"""
External Project Client

Wire protocol for the external project-tracking system (Kantata/Mavenlink
style workspace API).

Endpoints used:
- GET  /workspaces/{id}                 project status ("Live", "In Development", ...)
- PUT  /workspaces/{id}                 set project status by status key
- GET  /custom_field_values             look up a custom field value on a workspace
- POST /custom_field_values             create a custom field value
- PUT  /custom_field_values/{id}        update a custom field value

Every call is bounded by a timeout. Timeouts, transport errors, non-2xx
responses and malformed payloads raise ExternalSystemError; HTTP 404 raises
ExternalNotFoundError.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from .errors import ExternalNotFoundError, ExternalSystemError

logger = logging.getLogger("external_client")

DEFAULT_BASE_URL = "https://api.mavenlink.com/api/v1"
DEFAULT_TIMEOUT = 12.0

SUBJECT_TYPE_WORKSPACE = "workspace"

# Workspace status keys
STATUS_KEY_IN_DEVELOPMENT = 305
STATUS_KEY_LIVE = 306

PROJECT_STATUS_KEYS: Dict[str, int] = {
    "In Development": STATUS_KEY_IN_DEVELOPMENT,
    "Live": STATUS_KEY_LIVE,
}


@dataclass
class ExternalProject:
    """Snapshot of an external workspace."""
    project_id: str
    status: Optional[str]
    status_key: Optional[int] = None
    title: Optional[str] = None
    lead_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project_id": self.project_id,
            "status": self.status,
            "status_key": self.status_key,
            "title": self.title,
            "lead_id": self.lead_id,
        }


@dataclass
class FieldValue:
    """A custom field value attached to a workspace."""
    value_id: str
    value: Optional[str]


class ExternalProjectClient:
    """
    Async client for the external project system.

    A fresh httpx.AsyncClient is opened per call. transport is injectable so
    tests can substitute httpx.MockTransport.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        api_token: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self.headers = {"Accept": "application/json"}
        if api_token:
            self.headers["Authorization"] = f"Bearer {api_token}"

    # -------------------------------------------------------------------------
    # Workspaces
    # -------------------------------------------------------------------------

    async def get_project(self, project_id: str) -> ExternalProject:
        """Fetch a workspace and its status."""
        data = await self._request("GET", f"/workspaces/{project_id}")

        workspaces = data.get("workspaces")
        if not isinstance(workspaces, dict):
            raise ExternalSystemError(f"Malformed workspace payload for project {project_id}")

        workspace = workspaces.get(str(project_id))
        if workspace is None and len(workspaces) == 1:
            workspace = next(iter(workspaces.values()))
        if not isinstance(workspace, dict):
            raise ExternalSystemError(f"Workspace {project_id} missing from payload")

        status = workspace.get("status")
        if isinstance(status, dict):
            message = status.get("message")
            key = status.get("key")
        elif isinstance(status, str):
            message, key = status, None
        elif status is None:
            message, key = None, None
        else:
            raise ExternalSystemError(f"Malformed status for workspace {project_id}: {status!r}")

        lead_id = workspace.get("lead_id")
        return ExternalProject(
            project_id=str(project_id),
            status=message,
            status_key=key,
            title=workspace.get("title"),
            lead_id=str(lead_id) if lead_id is not None else None,
        )

    async def set_project_status(self, project_id: str, status_key: int) -> None:
        await self._request(
            "PUT",
            f"/workspaces/{project_id}",
            json={"workspace": {"status_key": status_key}},
        )
        logger.info(f"Set external project {project_id} status key to {status_key}")

    # -------------------------------------------------------------------------
    # Custom Field Values
    # -------------------------------------------------------------------------

    async def find_field_value(self, project_id: str, field_id: str) -> Optional[FieldValue]:
        """
        Look up the value of a custom field on a workspace.

        Returns None when the value does not exist (404 or empty result).
        Other failures raise ExternalSystemError.
        """
        try:
            data = await self._request(
                "GET",
                "/custom_field_values",
                params={
                    "custom_field_id": field_id,
                    "subject_id": project_id,
                    "subject_type": SUBJECT_TYPE_WORKSPACE,
                },
            )
        except ExternalNotFoundError:
            return None

        results = data.get("results")
        if results is None:
            raise ExternalSystemError("Malformed custom field lookup payload: no results")
        if not results:
            return None

        value_id = str(results[0].get("id", "")) if isinstance(results[0], dict) else ""
        if not value_id:
            raise ExternalSystemError("Malformed custom field lookup payload: result without id")

        values = data.get("custom_field_values") or {}
        record = values.get(value_id, {}) if isinstance(values, dict) else {}
        return FieldValue(value_id=value_id, value=record.get("value"))

    async def create_field_value(self, project_id: str, field_id: str, value: str) -> str:
        """Create a custom field value. Returns the new value id."""
        data = await self._request(
            "POST",
            "/custom_field_values",
            json={
                "custom_field_value": {
                    "custom_field_id": field_id,
                    "subject_id": project_id,
                    "subject_type": SUBJECT_TYPE_WORKSPACE,
                    "value": value,
                }
            },
        )
        return self._first_result_id(data)

    async def update_field_value(self, value_id: str, value: str) -> str:
        data = await self._request(
            "PUT",
            f"/custom_field_values/{value_id}",
            json={"custom_field_value": {"value": value}},
        )
        try:
            return self._first_result_id(data)
        except ExternalSystemError:
            return value_id

    # -------------------------------------------------------------------------
    # Internal Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _first_result_id(data: Dict[str, Any]) -> str:
        results = data.get("results") or []
        if results and isinstance(results[0], dict) and results[0].get("id") is not None:
            return str(results[0]["id"])
        raise ExternalSystemError("Malformed payload: missing result id")

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(
                    method, url, headers=self.headers, params=params, json=json
                )
        except httpx.TimeoutException as e:
            raise ExternalSystemError(f"{method} {path} timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise ExternalSystemError(f"{method} {path} failed: {e}") from e

        if response.status_code == 404:
            raise ExternalNotFoundError(f"{method} {path} returned 404")
        if response.status_code >= 400:
            raise ExternalSystemError(
                f"{method} {path} returned {response.status_code}",
                http_status=response.status_code,
            )

        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as e:
            raise ExternalSystemError(f"{method} {path} returned invalid JSON") from e
        if not isinstance(data, dict):
            raise ExternalSystemError(f"{method} {path} returned unexpected payload type")
        return data
