"""
Review Workflow

Request-level orchestration of status changes:

    Transition Guard → Status Store → External Sync Adapter → Notifier

CONSTRAINTS:
- Guard rejections surface as typed errors before anything is written
- No-op transitions write nothing and push nothing
- External sync and notification failures NEVER fail the transition; they are
  returned as warnings and repaired later by reconciliation
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .errors import (
    AuthorizationError,
    ConflictError,
    ExternalNotFoundError,
    ExternalSystemError,
    NotFoundError,
    ValidationError,
)
from .external_client import ExternalProject
from .external_sync import ExternalSyncAdapter, SyncResult
from .notification_engine import NotificationTemplates, Notifier
from .review_store import ReviewRecord, ReviewRepository, StatusHistoryEntry, utcnow
from .sla_calculator import SLARuleSet, deadline_after_entering
from .status_store import StatusStore
from .transition_guard import Actor, Transition, TransitionGuard

logger = logging.getLogger("review_workflow")

DEFAULT_SYNC_TIMEOUT = 12.0


@dataclass
class TransitionOutcome:
    """Result of a status change request."""
    review: ReviewRecord
    transition: Transition
    history_entry: Optional[StatusHistoryEntry] = None
    sync: Optional[SyncResult] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return not self.transition.is_noop

    @property
    def sla_deadline(self) -> Optional[datetime]:
        return self.review.sla_deadline


@dataclass
class LinkOutcome:
    """Result of linking a review to an external project."""
    review: ReviewRecord
    project: ExternalProject
    sync: Optional[SyncResult] = None
    warnings: List[str] = field(default_factory=list)


class ReviewWorkflow:
    """Applies status change requests end to end."""

    def __init__(
        self,
        repository: ReviewRepository,
        adapter: ExternalSyncAdapter,
        notifier: Notifier,
        sla_rules: Optional[SLARuleSet] = None,
        guard: Optional[TransitionGuard] = None,
        sync_timeout: float = DEFAULT_SYNC_TIMEOUT,
        app_base_url: str = "",
    ):
        self._repository = repository
        self._store = StatusStore(repository)
        self._adapter = adapter
        self._notifier = notifier
        self._sla_rules = sla_rules if sla_rules is not None else SLARuleSet()
        self._guard = guard or TransitionGuard()
        self._sync_timeout = sync_timeout
        self._app_base_url = app_base_url.rstrip("/")

    @property
    def guard(self) -> TransitionGuard:
        return self._guard

    @property
    def sla_rules(self) -> SLARuleSet:
        return self._sla_rules

    def get_review(self, review_id: str) -> ReviewRecord:
        review = self._repository.get_review(review_id)
        if review is None:
            raise NotFoundError(f"Review '{review_id}' not found")
        return review

    def get_history(self, review_id: str) -> List[StatusHistoryEntry]:
        self.get_review(review_id)
        return self._repository.get_history(review_id)

    def available_transitions(self, review_id: str, actor: Actor) -> List[Dict[str, Any]]:
        return self._guard.available_transitions(self.get_review(review_id), actor)

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def start_draft(self, actor: Actor, **fields: Any) -> ReviewRecord:
        """Create a new review owned by actor."""
        return self._repository.create_review(owner_id=actor.user_id, **fields)

    async def change_status(
        self,
        review_id: str,
        requested_status: Any,
        actor: Actor,
    ) -> TransitionOutcome:
        """
        Move a review to requested_status.

        Raises ValidationError, AuthorizationError, NotFoundError,
        IllegalTransitionError or StorageError. External failures are
        reported in TransitionOutcome.warnings.
        """
        review = self.get_review(review_id)
        transition = self._guard.attempt_transition(review, requested_status, actor)

        if transition.is_noop:
            logger.info(f"Review {review_id} already '{review.status.value}'; nothing to do")
            return TransitionOutcome(review=review, transition=transition)

        deadline = deadline_after_entering(
            transition.new_status, transition.timestamp, self._sla_rules
        )
        persisted = self._store.apply(transition, sla_deadline=deadline)

        outcome = TransitionOutcome(
            review=persisted.review,
            transition=transition,
            history_entry=persisted.history_entry,
            warnings=list(persisted.anomalies),
        )

        if persisted.review.is_linked:
            outcome.sync = await self._push_best_effort(persisted.review, outcome.warnings)

        if actor.user_id != persisted.review.owner_id:
            await self._notify_owner(persisted.review, actor, outcome.warnings)

        return outcome

    async def link_external_project(
        self,
        review_id: str,
        external_project_id: str,
        actor: Actor,
    ) -> LinkOutcome:
        """
        Link a review to an existing external project and push its status.

        Raises NotFoundError if the review or the external project does not
        exist, ConflictError if the project is linked to another review.
        """
        external_project_id = (external_project_id or "").strip()
        if not external_project_id:
            raise ValidationError("External project id is required", field="externalProjectId")

        review = self.get_review(review_id)
        if actor.user_id != review.owner_id and not actor.is_admin:
            raise AuthorizationError("Only the owner or an Admin can link an external project")

        existing = self._repository.find_by_external_project(external_project_id)
        if existing is not None and existing.review_id != review_id:
            raise ConflictError(
                f"External project '{external_project_id}' is already linked to another review"
            )

        try:
            project = await asyncio.wait_for(
                self._adapter.client.get_project(external_project_id),
                timeout=self._sync_timeout,
            )
        except ExternalNotFoundError as e:
            raise NotFoundError(f"External project '{external_project_id}' not found") from e
        except asyncio.TimeoutError as e:
            raise ExternalSystemError(
                f"Looking up external project '{external_project_id}' timed out"
            ) from e

        review = self._repository.set_external_project(review_id, external_project_id, utcnow())
        logger.info(f"Linked review {review_id} to external project {external_project_id}")

        outcome = LinkOutcome(review=review, project=project)
        outcome.sync = await self._push_best_effort(review, outcome.warnings)
        return outcome

    # -------------------------------------------------------------------------
    # Internal Helpers
    # -------------------------------------------------------------------------

    async def _push_best_effort(
        self,
        review: ReviewRecord,
        warnings: List[str],
    ) -> Optional[SyncResult]:
        try:
            return await asyncio.wait_for(
                self._adapter.push_status(review.external_project_id, review.status),
                timeout=self._sync_timeout,
            )
        except asyncio.TimeoutError:
            message = f"External sync timed out after {self._sync_timeout}s"
        except ExternalSystemError as e:
            message = f"External sync failed: {e.message}"

        logger.warning(f"Review {review.review_id}: {message}")
        warnings.append(message)
        return None

    async def _notify_owner(
        self,
        review: ReviewRecord,
        actor: Actor,
        warnings: List[str],
    ) -> None:
        try:
            profile = self._repository.get_profile(review.owner_id)
            notification = NotificationTemplates.status_changed(
                recipient=profile.email if profile and profile.email else review.owner_id,
                review_id=review.review_id,
                review_title=review.title or review.review_id,
                new_status=review.status.value,
                actor_name=actor.name or actor.user_id,
                review_url=f"{self._app_base_url}/reviews/{review.review_id}",
            )
            delivered = await self._notifier.send(notification)
        except Exception as e:
            logger.error(f"Status notification for review {review.review_id} failed: {e}")
            delivered = False

        if not delivered:
            warnings.append("Owner notification was not delivered")
