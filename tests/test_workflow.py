"""
Unit Tests for the Review Workflow

Test coverage for:
- Guard → store → sync ordering
- Idempotence: a repeated status writes no history and pushes nothing
- External sync failure is a warning, never a failure
- SLA deadline set on entering a tracked status
- Owner notification on status changes made by others
- External project linking
"""

from datetime import timedelta

import pytest

from review_engine.errors import (
    AuthorizationError,
    ConflictError,
    IllegalTransitionError,
    IncompleteReviewError,
    InvalidStatusError,
    NotFoundError,
)
from review_engine.notification_engine import NotificationType
from review_engine.status_catalog import ReviewStatus

from tests.conftest import (
    ADMIN,
    OTHER_MEMBER,
    OWNER,
    RecordingNotifier,
    async_test,
    make_review,
)


# -----------------------------------------------------------------------------
# Test 1: Status Changes
# -----------------------------------------------------------------------------
class TestChangeStatus:
    """End-to-end status changes."""

    @async_test
    async def test_submit_persists_history_and_deadline(self, repository, workflow):
        review = make_review(repository)

        outcome = await workflow.change_status(review.review_id, "Submitted", OWNER)

        assert outcome.changed is True
        assert outcome.review.status == ReviewStatus.SUBMITTED
        assert outcome.sla_deadline == outcome.transition.timestamp + timedelta(hours=24)
        assert outcome.warnings == []
        assert outcome.sync is None  # not linked

        stored = repository.get_review(review.review_id)
        assert stored.status == ReviewStatus.SUBMITTED
        assert stored.sla_deadline == outcome.sla_deadline
        assert [e.new_status for e in repository.get_history(review.review_id)] == [
            ReviewStatus.DRAFT, ReviewStatus.SUBMITTED,
        ]

    @async_test
    async def test_untracked_status_clears_deadline(self, repository, workflow):
        review = make_review(repository, status=ReviewStatus.IN_REVIEW)
        repository.save_status(review.review_id, ReviewStatus.IN_REVIEW, review.updated_at,
                               sla_deadline=review.updated_at)

        outcome = await workflow.change_status(review.review_id, "Approved", ADMIN)

        assert outcome.sla_deadline is None
        assert repository.get_review(review.review_id).sla_deadline is None

    @async_test
    async def test_linked_review_is_synced(self, repository, fake_external, workflow):
        fake_external.add_project("p-1")
        review = make_review(repository, status=ReviewStatus.IN_REVIEW, external_project_id="p-1")

        outcome = await workflow.change_status(review.review_id, "Approved", ADMIN)

        assert outcome.sync is not None
        assert outcome.sync.created is True
        assert fake_external.values_for("p-1")[0]["value"] == "Approved"

    @async_test
    async def test_noop_writes_no_history_and_no_sync(self, repository, fake_external, workflow, notifier):
        fake_external.add_project("p-1")
        review = make_review(repository, status=ReviewStatus.IN_REVIEW, external_project_id="p-1")
        history_before = repository.get_history(review.review_id)

        outcome = await workflow.change_status(review.review_id, "In Review", ADMIN)

        assert outcome.changed is False
        assert repository.get_history(review.review_id) == history_before
        assert repository.get_activities(review.review_id) == []
        assert fake_external.calls == []
        assert notifier.sent == []

    @async_test
    async def test_sync_failure_is_a_warning(self, repository, fake_external, workflow):
        fake_external.add_project("p-1")
        fake_external.fail_field_lookup = True
        review = make_review(repository, status=ReviewStatus.IN_REVIEW, external_project_id="p-1")

        outcome = await workflow.change_status(review.review_id, "Approved", ADMIN)

        assert outcome.review.status == ReviewStatus.APPROVED
        assert outcome.sync is None
        assert any("External sync failed" in w for w in outcome.warnings)
        assert repository.get_review(review.review_id).status == ReviewStatus.APPROVED

    @async_test
    async def test_field_write_failure_is_a_warning(self, repository, fake_external, workflow):
        fake_external.add_project("p-1")
        fake_external.fail_field_write = True
        review = make_review(repository, status=ReviewStatus.DRAFT, external_project_id="p-1")

        outcome = await workflow.change_status(review.review_id, "Submitted", OWNER)

        assert outcome.review.status == ReviewStatus.SUBMITTED
        assert outcome.warnings

    @async_test
    async def test_rejections_write_nothing(self, repository, workflow):
        review = make_review(repository, status=ReviewStatus.IN_REVIEW)

        with pytest.raises(AuthorizationError):
            await workflow.change_status(review.review_id, "Approved", OWNER)
        with pytest.raises(IllegalTransitionError):
            await workflow.change_status(review.review_id, "Draft", ADMIN)
        with pytest.raises(InvalidStatusError):
            await workflow.change_status(review.review_id, "Live", ADMIN)

        assert repository.get_review(review.review_id).status == ReviewStatus.IN_REVIEW
        assert len(repository.get_history(review.review_id)) == 1

    @async_test
    async def test_incomplete_draft(self, repository, workflow):
        review = make_review(repository, title="")
        with pytest.raises(IncompleteReviewError):
            await workflow.change_status(review.review_id, "Submitted", OWNER)

    @async_test
    async def test_unknown_review(self, workflow):
        with pytest.raises(NotFoundError):
            await workflow.change_status("missing", "Submitted", OWNER)


# -----------------------------------------------------------------------------
# Test 2: Notifications
# -----------------------------------------------------------------------------
class TestStatusNotifications:
    """Owners hear about changes made by others."""

    @async_test
    async def test_admin_change_notifies_owner(self, repository, workflow, notifier):
        review = make_review(repository, status=ReviewStatus.SUBMITTED)

        await workflow.change_status(review.review_id, "In Review", ADMIN)

        assert len(notifier.sent) == 1
        notification = notifier.sent[0]
        assert notification.notification_type == NotificationType.STATUS_CHANGED
        assert notification.recipients == ["owner@example.com"]
        assert "In Review" in notification.message
        assert "Ada Admin" in notification.message

    @async_test
    async def test_own_change_does_not_notify(self, repository, workflow, notifier):
        review = make_review(repository)
        await workflow.change_status(review.review_id, "Submitted", OWNER)
        assert notifier.sent == []

    @async_test
    async def test_notification_failure_is_a_warning(self, repository, adapter, sla_rules):
        from review_engine.workflow import ReviewWorkflow

        workflow = ReviewWorkflow(repository, adapter, RecordingNotifier(raise_error=True), sla_rules)
        review = make_review(repository, status=ReviewStatus.SUBMITTED)

        outcome = await workflow.change_status(review.review_id, "In Review", ADMIN)

        assert outcome.review.status == ReviewStatus.IN_REVIEW
        assert "Owner notification was not delivered" in outcome.warnings


# -----------------------------------------------------------------------------
# Test 3: Linking
# -----------------------------------------------------------------------------
class TestLinkExternalProject:
    """Linking a review to an external project."""

    @async_test
    async def test_link_and_push(self, repository, fake_external, workflow):
        fake_external.add_project("p-1", title="Rollout")
        review = make_review(repository, status=ReviewStatus.SUBMITTED)

        outcome = await workflow.link_external_project(review.review_id, "p-1", OWNER)

        assert outcome.review.external_project_id == "p-1"
        assert outcome.project.title == "Rollout"
        assert outcome.sync.created is True
        assert fake_external.values_for("p-1")[0]["value"] == "In Progress"

    @async_test
    async def test_unknown_project(self, repository, workflow):
        review = make_review(repository)
        with pytest.raises(NotFoundError):
            await workflow.link_external_project(review.review_id, "missing", OWNER)
        assert repository.get_review(review.review_id).external_project_id is None

    @async_test
    async def test_project_linked_elsewhere(self, repository, fake_external, workflow):
        fake_external.add_project("p-1")
        make_review(repository, external_project_id="p-1")
        other = make_review(repository)

        with pytest.raises(ConflictError):
            await workflow.link_external_project(other.review_id, "p-1", ADMIN)

    @async_test
    async def test_other_member_cannot_link(self, repository, fake_external, workflow):
        fake_external.add_project("p-1")
        review = make_review(repository)
        with pytest.raises(AuthorizationError):
            await workflow.link_external_project(review.review_id, "p-1", OTHER_MEMBER)


# -----------------------------------------------------------------------------
# Test 4: Drafts
# -----------------------------------------------------------------------------
class TestStartDraft:

    def test_start_draft(self, repository, workflow):
        review = workflow.start_draft(OWNER, title="New graph")
        assert review.status == ReviewStatus.DRAFT
        assert review.owner_id == OWNER.user_id
        assert repository.get_review(review.review_id).title == "New graph"
