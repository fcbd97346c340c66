"""
Transition Guard

Single entry point deciding whether a requested status change may happen.

Check order:
1. requested == current → no-op Transition (idempotent, anyone may "repeat" a status)
2. Catalog lookup → IllegalTransitionError (409)
3. Role requirement → AuthorizationError (403)
4. Draft completeness → IncompleteReviewError (400)

CONSTRAINTS:
- Performs NO writes
- The role check is authoritative; it never relies on storage-level policy
- Rejected attempts are logged for audit
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .errors import (
    AuthorizationError,
    IllegalTransitionError,
    IncompleteReviewError,
    ReviewEngineError,
)
from .review_store import ReviewRecord, utcnow
from .status_catalog import (
    ReviewStatus,
    RoleRequirement,
    UserRole,
    get_valid_targets,
    is_legal_transition,
    parse_status,
    requirement_satisfied,
)

logger = logging.getLogger("transition_guard")

# Descriptive fields a review must carry before it can leave Draft
REQUIRED_FIELDS_FOR_SUBMISSION: Tuple[str, ...] = (
    "title",
    "description",
    "graph_name",
    "account_name",
)


@dataclass(frozen=True)
class Actor:
    """Authenticated principal supplied by the identity collaborator."""
    user_id: str
    role: UserRole
    name: Optional[str] = None
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


@dataclass(frozen=True)
class Transition:
    """A validated status change, ready to be persisted."""
    review_id: str
    old_status: ReviewStatus
    new_status: ReviewStatus
    actor: Actor
    timestamp: datetime
    requirement: Optional[RoleRequirement] = None

    @property
    def is_noop(self) -> bool:
        return self.old_status == self.new_status

    def to_dict(self) -> Dict[str, Any]:
        return {
            "review_id": self.review_id,
            "old_status": self.old_status.value,
            "new_status": self.new_status.value,
            "actor_id": self.actor.user_id,
            "timestamp": self.timestamp.isoformat(),
            "requirement": self.requirement.value if self.requirement else None,
            "is_noop": self.is_noop,
        }


class TransitionGuard:
    """
    Validates status transitions against the catalog, role rules and review
    completeness.
    """

    def __init__(self, required_fields: Sequence[str] = REQUIRED_FIELDS_FOR_SUBMISSION):
        self._required_fields = tuple(required_fields)

    def attempt_transition(
        self,
        review: ReviewRecord,
        requested_status: Any,
        actor: Actor,
    ) -> Transition:
        """
        Validate a requested transition.

        Raises InvalidStatusError, IllegalTransitionError, AuthorizationError
        or IncompleteReviewError. Returns a Transition on success (is_noop when
        the requested status equals the current one).
        """
        new_status = parse_status(requested_status)
        old_status = review.status
        now = utcnow()

        if new_status == old_status:
            return Transition(
                review_id=review.review_id,
                old_status=old_status,
                new_status=new_status,
                actor=actor,
                timestamp=now,
            )

        requirement = is_legal_transition(old_status, new_status)
        if requirement is None:
            self._log_rejection(review, new_status, actor, "illegal")
            raise IllegalTransitionError(
                f"Cannot transition review from '{old_status.value}' to '{new_status.value}'"
            )

        is_owner = actor.user_id == review.owner_id
        if not requirement_satisfied(requirement, actor.role, is_owner):
            self._log_rejection(review, new_status, actor, f"requires {requirement.value}")
            raise AuthorizationError(
                f"Role '{actor.role.value}' cannot move review from '{old_status.value}' "
                f"to '{new_status.value}' (requires {requirement.value})"
            )

        if old_status == ReviewStatus.DRAFT and new_status != ReviewStatus.ARCHIVED:
            missing = self.missing_fields(review)
            if missing:
                self._log_rejection(review, new_status, actor, f"missing {missing}")
                raise IncompleteReviewError(missing)

        return Transition(
            review_id=review.review_id,
            old_status=old_status,
            new_status=new_status,
            actor=actor,
            timestamp=now,
            requirement=requirement,
        )

    def can_transition(
        self,
        review: ReviewRecord,
        requested_status: Any,
        actor: Actor,
    ) -> Tuple[bool, str]:
        """
        Check if a transition is valid without raising.

        Returns (allowed, reason)
        """
        try:
            transition = self.attempt_transition(review, requested_status, actor)
        except ReviewEngineError as e:
            return False, e.message

        if transition.is_noop:
            return True, f"Review is already '{transition.new_status.value}'"
        return True, f"Transition allowed: {transition.old_status.value} -> {transition.new_status.value}"

    def available_transitions(
        self,
        review: ReviewRecord,
        actor: Actor,
    ) -> List[Dict[str, Any]]:
        """Targets reachable from the review's current status, evaluated for actor."""
        is_owner = actor.user_id == review.owner_id
        missing = self.missing_fields(review) if review.status == ReviewStatus.DRAFT else []

        targets = []
        for to_status, requirement in get_valid_targets(review.status).items():
            permitted = requirement_satisfied(requirement, actor.role, is_owner)
            blocked_by = []
            if permitted and to_status != ReviewStatus.ARCHIVED:
                blocked_by = missing
            targets.append({
                "status": to_status.value,
                "requirement": requirement.value,
                "permitted": permitted and not blocked_by,
                "missing_fields": blocked_by,
            })
        return targets

    def missing_fields(self, review: ReviewRecord) -> List[str]:
        missing = []
        for name in self._required_fields:
            value = getattr(review, name, None)
            if value is None or (isinstance(value, str) and not value.strip()):
                missing.append(name)
        return missing

    def _log_rejection(
        self,
        review: ReviewRecord,
        new_status: ReviewStatus,
        actor: Actor,
        reason: str,
    ) -> None:
        logger.warning(
            f"Rejected transition for review {review.review_id}: "
            f"{review.status.value} -> {new_status.value} by {actor.user_id} "
            f"({actor.role.value}): {reason}"
        )
