"""
Reconciliation Job

Detects and corrects drift between local review statuses and the linked
external projects.

Drift rule:
    external project status is "Live" while the review is not Approved

On drift:
1. Revert the external project to the safe default status
2. Re-push the mirrored status field (best effort)
3. Send ONE notification to the owner, the project lead and every Admin

CONSTRAINTS:
- Absence of external information (fetch error, timeout, malformed payload)
  is NEVER treated as drift: is_valid=True with the error recorded
- A failure for one review NEVER aborts the others
- Fan-out is bounded by a semaphore; every external call is bounded by a timeout
- Idempotent: a second run finds nothing to correct
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .errors import ExternalSystemError, ReconciliationError, StorageError
from .external_client import ExternalProject
from .external_sync import EXTERNAL_STATUS_LIVE, ExternalSyncAdapter
from .notification_engine import NotificationTemplates, Notifier
from .review_store import ReviewRecord, ReviewRepository, utcnow
from .status_catalog import ReviewStatus

logger = logging.getLogger("reconciliation")

DEFAULT_MAX_CONCURRENCY = 5
DEFAULT_CALL_TIMEOUT = 12.0


@dataclass
class ReconciliationResult:
    """Outcome of reconciling one review. Transient; logged, not persisted."""
    review_id: str
    external_project_id: str
    internal_status: str
    external_status: Optional[str]
    is_valid: bool
    message: str
    corrected: bool = False
    notified: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reviewId": self.review_id,
            "externalProjectId": self.external_project_id,
            "internalStatus": self.internal_status,
            "externalStatus": self.external_status,
            "isValid": self.is_valid,
            "message": self.message,
            "corrected": self.corrected,
            "notified": self.notified,
            "error": self.error,
        }


@dataclass
class ReconciliationReport:
    """Aggregated results of one reconciliation run."""
    results: List[ReconciliationResult] = field(default_factory=list)
    started_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def valid_count(self) -> int:
        return sum(1 for r in self.results if r.is_valid)

    @property
    def invalid_count(self) -> int:
        return self.total - self.valid_count

    @property
    def corrected_count(self) -> int:
        return sum(1 for r in self.results if r.corrected)

    @property
    def error_count(self) -> int:
        return sum(1 for r in self.results if r.error)

    @property
    def summary(self) -> str:
        return f"{self.valid_count} valid, {self.invalid_count} invalid out of {self.total} projects checked."

    def to_dict(self) -> Dict[str, Any]:
        return {
            "correctedCount": self.corrected_count,
            "summary": self.summary,
            "results": [r.to_dict() for r in self.results],
            "startedAt": self.started_at.isoformat(),
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
        }


@dataclass
class GoLiveCheck:
    """Answer to "may this external project be marked Live?"."""
    external_project_id: str
    allowed: bool
    message: str
    review_id: Optional[str] = None
    review_status: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "externalProjectId": self.external_project_id,
            "valid": self.allowed,
            "message": self.message,
            "reviewId": self.review_id,
            "reviewStatus": self.review_status,
        }


class ReconciliationJob:
    """
    Scatter-gather reconciliation over every linked review.

    Safe to run on demand, on a schedule, and concurrently with itself.
    """

    def __init__(
        self,
        repository: ReviewRepository,
        adapter: ExternalSyncAdapter,
        notifier: Notifier,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        call_timeout: float = DEFAULT_CALL_TIMEOUT,
        app_base_url: str = "",
        external_app_url: str = "",
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._repository = repository
        self._adapter = adapter
        self._notifier = notifier
        self._max_concurrency = max_concurrency
        self._call_timeout = call_timeout
        self._app_base_url = app_base_url.rstrip("/")
        self._external_app_url = external_app_url.rstrip("/")

    async def reconcile_all(
        self,
        reviews: Optional[List[ReviewRecord]] = None,
    ) -> ReconciliationReport:
        """
        Reconcile every review with an external project id.

        Never raises for a single review; each review yields exactly one
        result.
        """
        report = ReconciliationReport()
        if reviews is None:
            reviews = self._repository.list_linked_reviews()
        reviews = [r for r in reviews if r.is_linked]

        logger.info(f"Reconciling {len(reviews)} linked reviews (max concurrency {self._max_concurrency})")

        semaphore = asyncio.Semaphore(self._max_concurrency)
        tasks = [self._reconcile_bounded(review, semaphore) for review in reviews]
        report.results = list(await asyncio.gather(*tasks))
        report.finished_at = utcnow()

        logger.info(
            f"Reconciliation finished: {report.summary} "
            f"({report.corrected_count} corrected, {report.error_count} errors)"
        )
        return report

    async def _reconcile_bounded(
        self,
        review: ReviewRecord,
        semaphore: asyncio.Semaphore,
    ) -> ReconciliationResult:
        async with semaphore:
            try:
                return await self.reconcile_one(review)
            except Exception as e:
                failure = ReconciliationError(review.review_id, f"Unexpected reconciliation failure: {e}")
                logger.exception(failure.message)
                return ReconciliationResult(
                    review_id=review.review_id,
                    external_project_id=review.external_project_id or "",
                    internal_status=review.status.value,
                    external_status=None,
                    is_valid=True,
                    message="Could not be checked",
                    error=failure.message,
                )

    async def reconcile_one(self, review: ReviewRecord) -> ReconciliationResult:
        """Reconcile a single linked review."""
        project_id = review.external_project_id
        internal = review.status.value

        try:
            project = await asyncio.wait_for(
                self._adapter.client.get_project(project_id),
                timeout=self._call_timeout,
            )
        except asyncio.TimeoutError:
            return self._unchecked(review, f"Fetching project {project_id} timed out")
        except ExternalSystemError as e:
            return self._unchecked(review, e.message)

        if project.status != EXTERNAL_STATUS_LIVE or review.status == ReviewStatus.APPROVED:
            return ReconciliationResult(
                review_id=review.review_id,
                external_project_id=project_id,
                internal_status=internal,
                external_status=project.status,
                is_valid=True,
                message=f"Project status '{project.status}' is consistent with review status '{internal}'",
            )

        logger.warning(
            f"Drift detected: project {project_id} is '{project.status}' "
            f"but review {review.review_id} is '{internal}'"
        )

        try:
            reverted_to = await asyncio.wait_for(
                self._adapter.revert_project_status(project_id),
                timeout=self._call_timeout,
            )
        except (asyncio.TimeoutError, ExternalSystemError) as e:
            error = getattr(e, "message", None) or f"Reverting project {project_id} timed out"
            logger.error(f"Drift on project {project_id} not corrected: {error}")
            return ReconciliationResult(
                review_id=review.review_id,
                external_project_id=project_id,
                internal_status=internal,
                external_status=project.status,
                is_valid=False,
                message=f"Project is '{project.status}' but review is '{internal}'. Failed to auto-correct",
                error=error,
            )

        try:
            await asyncio.wait_for(
                self._adapter.push_status(project_id, review.status),
                timeout=self._call_timeout,
            )
        except (asyncio.TimeoutError, ExternalSystemError) as e:
            logger.warning(f"Status field re-push failed for project {project_id}: {e}")

        notified = await self._notify_drift(review, project, reverted_to)

        return ReconciliationResult(
            review_id=review.review_id,
            external_project_id=project_id,
            internal_status=internal,
            external_status=project.status,
            is_valid=False,
            corrected=True,
            notified=notified,
            message=(
                f"Project status was '{project.status}' but review status is '{internal}'. "
                f"Automatically reset to '{reverted_to}'"
            ),
        )

    async def check_go_live(self, external_project_id: str) -> GoLiveCheck:
        """Whether the review linked to external_project_id permits going Live."""
        review = self._repository.find_by_external_project(external_project_id)
        if review is None:
            return GoLiveCheck(
                external_project_id=external_project_id,
                allowed=False,
                message="No review is linked to this project",
            )

        allowed = review.status == ReviewStatus.APPROVED
        message = (
            "Review is approved"
            if allowed
            else f"Review status is '{review.status.value}'; it must be Approved before going Live"
        )
        return GoLiveCheck(
            external_project_id=external_project_id,
            allowed=allowed,
            message=message,
            review_id=review.review_id,
            review_status=review.status.value,
        )

    # -------------------------------------------------------------------------
    # Internal Helpers
    # -------------------------------------------------------------------------

    def _unchecked(self, review: ReviewRecord, error: str) -> ReconciliationResult:
        logger.warning(f"Review {review.review_id} not checked: {error}")
        return ReconciliationResult(
            review_id=review.review_id,
            external_project_id=review.external_project_id or "",
            internal_status=review.status.value,
            external_status=None,
            is_valid=True,
            message="External status unavailable; no action taken",
            error=error,
        )

    def _resolve_recipients(self, review: ReviewRecord) -> List[str]:
        """Owner, project lead and every Admin, deduplicated in that order."""
        recipients: List[str] = []

        def add(address: Optional[str]):
            if address and address not in recipients:
                recipients.append(address)

        try:
            for user_id in (review.owner_id, review.lead_id):
                if not user_id:
                    continue
                profile = self._repository.get_profile(user_id)
                add(profile.email if profile and profile.email else user_id)
            for admin in self._repository.list_admins():
                add(admin.email or admin.user_id)
        except StorageError as e:
            logger.error(f"Could not resolve all recipients for review {review.review_id}: {e}")
            add(review.owner_id)

        return recipients

    async def _notify_drift(
        self,
        review: ReviewRecord,
        project: ExternalProject,
        reverted_to: str,
    ) -> bool:
        notification = NotificationTemplates.drift_corrected(
            recipients=self._resolve_recipients(review),
            review_id=review.review_id,
            review_title=review.title or review.review_id,
            external_project_id=project.project_id,
            project_title=project.title,
            internal_status=review.status.value,
            reverted_to=reverted_to,
            review_url=f"{self._app_base_url}/reviews/{review.review_id}",
            project_url=f"{self._external_app_url}/workspaces/{project.project_id}",
        )
        try:
            return await self._notifier.send(notification)
        except Exception as e:
            logger.error(f"Drift notification for review {review.review_id} failed: {e}")
            return False


class ReconciliationScheduler:
    """Runs the reconciliation job periodically."""

    def __init__(self, job: ReconciliationJob, interval_seconds: float):
        self._job = job
        self._interval = interval_seconds
        self._running = False
        self.last_report: Optional[ReconciliationReport] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self):
        """Start the reconciliation loop."""
        self._running = True
        logger.info(f"Reconciliation scheduler started, running every {self._interval}s")

        while self._running:
            try:
                self.last_report = await self._job.reconcile_all()
            except Exception as e:
                logger.error(f"Scheduled reconciliation error: {e}")

            await asyncio.sleep(self._interval)

    def stop(self):
        """Stop the reconciliation loop."""
        self._running = False
        logger.info("Reconciliation scheduler stopped")
