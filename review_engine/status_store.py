"""
Status Store

Persists an accepted transition.

Write order:
1. Review status column (primary, authoritative)
2. Status history row (secondary)
3. Activity record (secondary)

CONSTRAINTS:
- Failure of the primary write is fatal (StorageError propagates)
- Failures of secondary writes are logged and reported as anomalies, NEVER rolled back
- No-op transitions write nothing
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from .errors import StorageError
from .review_store import ActivityRecord, ReviewRecord, ReviewRepository, StatusHistoryEntry
from .transition_guard import Transition

logger = logging.getLogger("status_store")

ACTIVITY_TYPE_STATUS_CHANGED = "review_status_changed"


@dataclass
class PersistedReview:
    """Outcome of applying a transition."""
    review: ReviewRecord
    history_entry: Optional[StatusHistoryEntry] = None
    activity_recorded: bool = False
    anomalies: List[str] = field(default_factory=list)


class StatusStore:
    """Applies transitions to the storage collaborator."""

    def __init__(self, repository: ReviewRepository):
        self._repository = repository

    def apply(
        self,
        transition: Transition,
        sla_deadline: Optional[datetime] = None,
    ) -> PersistedReview:
        """
        Persist a transition.

        Raises NotFoundError if the review vanished, StorageError if the
        status write fails.
        """
        if transition.is_noop:
            review = self._repository.get_review(transition.review_id)
            return PersistedReview(review=review)

        review = self._repository.save_status(
            transition.review_id,
            transition.new_status,
            updated_at=transition.timestamp,
            sla_deadline=sla_deadline,
        )
        logger.info(
            f"Review {transition.review_id}: {transition.old_status.value} -> "
            f"{transition.new_status.value} by {transition.actor.user_id}"
        )

        result = PersistedReview(review=review)

        entry = StatusHistoryEntry(
            entry_id=str(uuid.uuid4()),
            review_id=transition.review_id,
            old_status=transition.old_status,
            new_status=transition.new_status,
            actor_id=transition.actor.user_id,
            timestamp=transition.timestamp,
        )
        try:
            self._repository.append_history(entry)
            result.history_entry = entry
        except StorageError as e:
            logger.error(f"History write failed for review {transition.review_id}: {e}")
            result.anomalies.append(f"history: {e.message}")

        try:
            self._repository.append_activity(self._build_activity(transition))
            result.activity_recorded = True
        except StorageError as e:
            logger.error(f"Activity write failed for review {transition.review_id}: {e}")
            result.anomalies.append(f"activity: {e.message}")

        return result

    @staticmethod
    def _build_activity(transition: Transition) -> ActivityRecord:
        old_value = transition.old_status.value
        new_value = transition.new_status.value
        return ActivityRecord(
            activity_id=str(uuid.uuid4()),
            activity_type=ACTIVITY_TYPE_STATUS_CHANGED,
            action="updated",
            description=f"Review status changed from {old_value} to {new_value}",
            user_id=transition.actor.user_id,
            review_id=transition.review_id,
            link=f"/reviews/{transition.review_id}",
            created_at=transition.timestamp.isoformat(),
            metadata={"old_status": old_value, "new_status": new_value},
        )
