"""
Review Status Catalog

Defines the closed set of review statuses and the explicit table of legal
transitions with their role requirements.

Key features:
- Closed status enum (unknown values fail validation, never pass through)
- Explicit transition table consulted by a single guard function
- Self-transitions are always legal and treated as no-ops
- No transitions out of Archived

States:
    Draft → Submitted → In Review → Approved → Archived
    (Needs Work loops back to Submitted; Approved can be re-opened to In Review)

Pure data and logic. No I/O.
"""

import re
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple

from .errors import InvalidStatusError

# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------

class ReviewStatus(str, Enum):
    """
    Review approval statuses.

    Values are the persisted textual form (the reviews table constrains the
    status column to exactly these strings).
    """
    DRAFT = "Draft"
    SUBMITTED = "Submitted"
    IN_REVIEW = "In Review"
    NEEDS_WORK = "Needs Work"
    APPROVED = "Approved"
    ARCHIVED = "Archived"

    @classmethod
    def values(cls) -> List[str]:
        return [s.value for s in cls]

    @classmethod
    def terminal_states(cls) -> Set["ReviewStatus"]:
        """States with no outgoing transitions."""
        return {cls.ARCHIVED}


class UserRole(str, Enum):
    """Roles supplied by the identity collaborator."""
    MEMBER = "Member"
    ADMIN = "Admin"


class RoleRequirement(str, Enum):
    """
    Who may perform a transition.

    OWNER: only the review's owner
    OWNER_OR_ADMIN: the owner or any Admin
    ADMIN_ONLY: any Admin, regardless of ownership
    """
    OWNER = "owner"
    OWNER_OR_ADMIN = "owner_or_admin"
    ADMIN_ONLY = "admin_only"


# -----------------------------------------------------------------------------
# Transition Table
# -----------------------------------------------------------------------------

# (from, to) -> role requirement
ALLOWED_TRANSITIONS: Dict[Tuple[ReviewStatus, ReviewStatus], RoleRequirement] = {
    (ReviewStatus.DRAFT, ReviewStatus.SUBMITTED): RoleRequirement.OWNER_OR_ADMIN,
    (ReviewStatus.DRAFT, ReviewStatus.ARCHIVED): RoleRequirement.ADMIN_ONLY,

    (ReviewStatus.SUBMITTED, ReviewStatus.DRAFT): RoleRequirement.OWNER,  # Withdraw
    (ReviewStatus.SUBMITTED, ReviewStatus.IN_REVIEW): RoleRequirement.ADMIN_ONLY,
    (ReviewStatus.SUBMITTED, ReviewStatus.ARCHIVED): RoleRequirement.ADMIN_ONLY,

    (ReviewStatus.IN_REVIEW, ReviewStatus.NEEDS_WORK): RoleRequirement.ADMIN_ONLY,
    (ReviewStatus.IN_REVIEW, ReviewStatus.APPROVED): RoleRequirement.ADMIN_ONLY,
    (ReviewStatus.IN_REVIEW, ReviewStatus.ARCHIVED): RoleRequirement.ADMIN_ONLY,

    (ReviewStatus.NEEDS_WORK, ReviewStatus.SUBMITTED): RoleRequirement.OWNER_OR_ADMIN,  # Resubmit
    (ReviewStatus.NEEDS_WORK, ReviewStatus.DRAFT): RoleRequirement.OWNER_OR_ADMIN,
    (ReviewStatus.NEEDS_WORK, ReviewStatus.IN_REVIEW): RoleRequirement.ADMIN_ONLY,
    (ReviewStatus.NEEDS_WORK, ReviewStatus.APPROVED): RoleRequirement.ADMIN_ONLY,
    (ReviewStatus.NEEDS_WORK, ReviewStatus.ARCHIVED): RoleRequirement.ADMIN_ONLY,

    (ReviewStatus.APPROVED, ReviewStatus.IN_REVIEW): RoleRequirement.ADMIN_ONLY,  # Re-open
    (ReviewStatus.APPROVED, ReviewStatus.ARCHIVED): RoleRequirement.ADMIN_ONLY,

    # Archived is terminal
}

# Transition the SLA clock measures once a review enters a status
EXPECTED_NEXT_STATUS: Dict[ReviewStatus, ReviewStatus] = {
    ReviewStatus.SUBMITTED: ReviewStatus.IN_REVIEW,
    ReviewStatus.IN_REVIEW: ReviewStatus.APPROVED,
    ReviewStatus.NEEDS_WORK: ReviewStatus.SUBMITTED,
}


# -----------------------------------------------------------------------------
# Lookups
# -----------------------------------------------------------------------------

def _normalize(value: str) -> str:
    return re.sub(r"[\s_\-]", "", value).lower()


_STATUS_BY_KEY: Dict[str, ReviewStatus] = {}
for _status in ReviewStatus:
    _STATUS_BY_KEY[_normalize(_status.value)] = _status
    _STATUS_BY_KEY[_normalize(_status.name)] = _status


def parse_status(value: object) -> ReviewStatus:
    """
    Parse a status value into the closed enum.

    Accepts the persisted display value ("In Review") as well as compact
    forms ("InReview", "IN_REVIEW", "in review"). Anything else raises
    InvalidStatusError.
    """
    if isinstance(value, ReviewStatus):
        return value
    if not isinstance(value, str) or not value.strip():
        raise InvalidStatusError(value, ReviewStatus.values())

    try:
        return ReviewStatus(value)
    except ValueError:
        pass

    status = _STATUS_BY_KEY.get(_normalize(value))
    if status is None:
        raise InvalidStatusError(value, ReviewStatus.values())
    return status


def is_legal_transition(
    from_status: ReviewStatus,
    to_status: ReviewStatus,
) -> Optional[RoleRequirement]:
    """
    Look up the role requirement for a transition.

    Returns None if the transition is not in the catalog. Self-transitions
    are always legal (the guard short-circuits them as no-ops before any
    role check).
    """
    if from_status == to_status:
        return RoleRequirement.OWNER_OR_ADMIN
    return ALLOWED_TRANSITIONS.get((from_status, to_status))


def get_valid_targets(from_status: ReviewStatus) -> Dict[ReviewStatus, RoleRequirement]:
    """All statuses reachable from from_status, with their requirements."""
    return {
        to_status: requirement
        for (source, to_status), requirement in ALLOWED_TRANSITIONS.items()
        if source == from_status
    }


def requirement_satisfied(
    requirement: RoleRequirement,
    role: UserRole,
    is_owner: bool,
) -> bool:
    """Evaluate a role requirement for an actor."""
    if requirement == RoleRequirement.OWNER:
        return is_owner
    if requirement == RoleRequirement.OWNER_OR_ADMIN:
        return is_owner or role == UserRole.ADMIN
    if requirement == RoleRequirement.ADMIN_ONLY:
        return role == UserRole.ADMIN
    return False
