"""
Pytest configuration for Review Engine tests.

This module provides:
1. Async test support without pytest-asyncio
2. A fake external project system served through httpx.MockTransport
3. A recording notifier
4. Common fixtures for repositories, workflow and reconciliation
"""

import asyncio
import functools
import itertools
import json
from typing import Any, Dict, List, Optional, Set

import httpx
import pytest

from review_engine.external_client import ExternalProjectClient
from review_engine.external_sync import ExternalSyncAdapter
from review_engine.notification_engine import Notification, Notifier
from review_engine.reconciliation import ReconciliationJob
from review_engine.review_store import ReviewRecord, ReviewRepository, UserProfile, utcnow
from review_engine.sla_calculator import SLARule, SLARuleSet
from review_engine.status_catalog import ReviewStatus, UserRole
from review_engine.transition_guard import Actor
from review_engine.workflow import ReviewWorkflow


# -----------------------------------------------------------------------------
# Async Test Support
# -----------------------------------------------------------------------------
def async_test(func):
    """
    Decorator to run async tests without pytest-asyncio.

    Usage:
        @async_test
        async def test_something(self):
            result = await some_async_function()
            assert result is not None
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        return asyncio.run(func(*args, **kwargs))
    return wrapper


# -----------------------------------------------------------------------------
# Test Constants
# -----------------------------------------------------------------------------
EXTERNAL_BASE_URL = "https://external.test/api/v1"
STATUS_FIELD_ID = "42"

OWNER_ID = "owner-1"
OTHER_MEMBER_ID = "member-2"
ADMIN_ID = "admin-1"
SECOND_ADMIN_ID = "admin-2"

OWNER = Actor(user_id=OWNER_ID, role=UserRole.MEMBER, name="Olive Owner")
OTHER_MEMBER = Actor(user_id=OTHER_MEMBER_ID, role=UserRole.MEMBER)
ADMIN = Actor(user_id=ADMIN_ID, role=UserRole.ADMIN, name="Ada Admin")

COMPLETE_FIELDS = {
    "title": "Lead routing graph",
    "description": "Routes inbound leads by territory",
    "graph_name": "Inbound Router",
    "account_name": "Acme Corp",
}

_STATUS_BY_KEY = {305: "In Development", 306: "Live"}


# -----------------------------------------------------------------------------
# Fake External System
# -----------------------------------------------------------------------------
class FakeExternalSystem:
    """
    In-memory workspace API.

    Failure modes are configured per project id (fail_projects,
    timeout_projects, malformed_projects, fail_status_update) or globally
    (fail_field_lookup, fail_field_write).
    """

    def __init__(self, delay: float = 0.0):
        self.projects: Dict[str, Dict[str, Any]] = {}
        self.field_values: Dict[str, Dict[str, Any]] = {}
        self.calls: List[tuple] = []
        self.fail_projects: Set[str] = set()
        self.timeout_projects: Set[str] = set()
        self.malformed_projects: Set[str] = set()
        self.fail_status_update: Set[str] = set()
        self.fail_field_lookup = False
        self.fail_field_write = False
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0
        self._ids = itertools.count(1000)

    def add_project(
        self,
        project_id: str,
        status: str = "In Development",
        title: Optional[str] = None,
        lead_id: Optional[str] = None,
    ):
        key = {v: k for k, v in _STATUS_BY_KEY.items()}.get(status)
        self.projects[project_id] = {
            "id": project_id,
            "title": title or f"Project {project_id}",
            "status": {"message": status, "key": key},
            "lead_id": lead_id,
        }

    def project_status(self, project_id: str) -> str:
        return self.projects[project_id]["status"]["message"]

    def values_for(self, project_id: str) -> List[Dict[str, Any]]:
        return [v for v in self.field_values.values() if v["subject_id"] == project_id]

    def calls_to(self, method: str, prefix: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == method and c[1].startswith(prefix)]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.replace("/api/v1", "", 1)
        self.calls.append((request.method, path))

        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            return self._route(request, path)
        finally:
            self.in_flight -= 1

    def _route(self, request: httpx.Request, path: str) -> httpx.Response:
        parts = path.strip("/").split("/")
        body = json.loads(request.content) if request.content else {}

        if parts[0] == "workspaces" and len(parts) == 2:
            project_id = parts[1]
            if project_id in self.timeout_projects:
                raise httpx.ReadTimeout("timed out", request=request)
            if request.method == "GET" and project_id in self.fail_projects:
                return httpx.Response(500, json={"errors": ["boom"]})
            if project_id not in self.projects:
                return httpx.Response(404, json={"errors": ["not found"]})
            if request.method == "GET" and project_id in self.malformed_projects:
                return httpx.Response(200, json={"unexpected": True})
            if request.method == "PUT":
                if project_id in self.fail_status_update:
                    return httpx.Response(500, json={"errors": ["cannot update"]})
                key = body["workspace"]["status_key"]
                self.projects[project_id]["status"] = {"message": _STATUS_BY_KEY[key], "key": key}
            return httpx.Response(200, json={
                "results": [{"key": "workspaces", "id": project_id}],
                "workspaces": {project_id: self.projects[project_id]},
            })

        if parts[0] == "custom_field_values":
            if request.method == "GET":
                if self.fail_field_lookup:
                    return httpx.Response(503, json={"errors": ["unavailable"]})
                params = request.url.params
                matches = {
                    vid: v for vid, v in self.field_values.items()
                    if v["custom_field_id"] == params.get("custom_field_id")
                    and v["subject_id"] == params.get("subject_id")
                }
                return httpx.Response(200, json={
                    "count": len(matches),
                    "results": [{"key": "custom_field_values", "id": vid} for vid in matches],
                    "custom_field_values": matches,
                })

            if self.fail_field_write:
                return httpx.Response(500, json={"errors": ["write failed"]})

            if request.method == "POST":
                payload = body["custom_field_value"]
                value_id = str(next(self._ids))
                self.field_values[value_id] = {"id": value_id, **payload}
            else:
                value_id = parts[1]
                if value_id not in self.field_values:
                    return httpx.Response(404, json={"errors": ["not found"]})
                self.field_values[value_id]["value"] = body["custom_field_value"]["value"]
            return httpx.Response(200, json={
                "results": [{"key": "custom_field_values", "id": value_id}],
                "custom_field_values": {value_id: self.field_values[value_id]},
            })

        return httpx.Response(404, json={"errors": ["unknown route"]})


# -----------------------------------------------------------------------------
# Recording Notifier
# -----------------------------------------------------------------------------
class RecordingNotifier(Notifier):
    """Notifier that records every notification it is asked to send."""

    def __init__(self, deliver: bool = True, raise_error: bool = False):
        self.sent: List[Notification] = []
        self.deliver = deliver
        self.raise_error = raise_error

    async def send(self, notification: Notification, channel: Optional[str] = None) -> bool:
        self.sent.append(notification)
        if self.raise_error:
            raise RuntimeError("notification service down")
        return self.deliver


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def make_review(
    repository: ReviewRepository,
    status: ReviewStatus = ReviewStatus.DRAFT,
    owner_id: str = OWNER_ID,
    external_project_id: Optional[str] = None,
    **fields: Any,
) -> ReviewRecord:
    """Create a review and force it into status (bypassing the guard)."""
    data = {**COMPLETE_FIELDS, **fields}
    review = repository.create_review(owner_id=owner_id, **data)
    if status != ReviewStatus.DRAFT:
        review = repository.save_status(review.review_id, status, utcnow())
    if external_project_id:
        review = repository.set_external_project(review.review_id, external_project_id, utcnow())
    return review


# -----------------------------------------------------------------------------
# Common Fixtures
# -----------------------------------------------------------------------------
@pytest.fixture
def repository(tmp_path) -> ReviewRepository:
    repo = ReviewRepository(tmp_path / "reviews")
    repo.upsert_profile(UserProfile(OWNER_ID, "Olive Owner", "owner@example.com"))
    repo.upsert_profile(UserProfile(OTHER_MEMBER_ID, "Mo Member", "member@example.com"))
    repo.upsert_profile(UserProfile(ADMIN_ID, "Ada Admin", "admin1@example.com", UserRole.ADMIN))
    repo.upsert_profile(UserProfile(SECOND_ADMIN_ID, "Al Admin", "admin2@example.com", UserRole.ADMIN))
    return repo


@pytest.fixture
def fake_external() -> FakeExternalSystem:
    return FakeExternalSystem()


@pytest.fixture
def external_client(fake_external) -> ExternalProjectClient:
    return ExternalProjectClient(
        base_url=EXTERNAL_BASE_URL,
        api_token="test-token",
        timeout=2.0,
        transport=fake_external.transport(),
    )


@pytest.fixture
def adapter(external_client) -> ExternalSyncAdapter:
    return ExternalSyncAdapter(external_client, STATUS_FIELD_ID)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def sla_rules() -> SLARuleSet:
    return SLARuleSet([
        SLARule(ReviewStatus.SUBMITTED, ReviewStatus.IN_REVIEW, 24),
        SLARule(ReviewStatus.IN_REVIEW, ReviewStatus.APPROVED, 72),
    ])


@pytest.fixture
def workflow(repository, adapter, notifier, sla_rules) -> ReviewWorkflow:
    return ReviewWorkflow(
        repository=repository,
        adapter=adapter,
        notifier=notifier,
        sla_rules=sla_rules,
        sync_timeout=2.0,
        app_base_url="https://reviews.test",
    )


@pytest.fixture
def reconciliation_job(repository, adapter, notifier) -> ReconciliationJob:
    return ReconciliationJob(
        repository=repository,
        adapter=adapter,
        notifier=notifier,
        max_concurrency=3,
        call_timeout=2.0,
        app_base_url="https://reviews.test",
        external_app_url="https://projects.test",
    )


# -----------------------------------------------------------------------------
# Session Configuration
# -----------------------------------------------------------------------------
def pytest_configure(config):
    """Configure pytest session."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as async (custom implementation)"
    )
