"""
Unit Tests for the Status Catalog

Test coverage for:
- Closed status parsing
- Transition table shape
- Role requirement evaluation
"""

import pytest

from review_engine.errors import InvalidStatusError, ValidationError
from review_engine.status_catalog import (
    ALLOWED_TRANSITIONS,
    ReviewStatus,
    RoleRequirement,
    UserRole,
    get_valid_targets,
    is_legal_transition,
    parse_status,
    requirement_satisfied,
)


# -----------------------------------------------------------------------------
# Test 1: Status Parsing
# -----------------------------------------------------------------------------
class TestParseStatus:
    """Status values are a closed set."""

    @pytest.mark.parametrize("value,expected", [
        ("Draft", ReviewStatus.DRAFT),
        ("In Review", ReviewStatus.IN_REVIEW),
        ("InReview", ReviewStatus.IN_REVIEW),
        ("IN_REVIEW", ReviewStatus.IN_REVIEW),
        ("needs work", ReviewStatus.NEEDS_WORK),
        ("NeedsWork", ReviewStatus.NEEDS_WORK),
        ("approved", ReviewStatus.APPROVED),
        (ReviewStatus.ARCHIVED, ReviewStatus.ARCHIVED),
    ])
    def test_accepts_known_forms(self, value, expected):
        """Display values and compact names parse to the enum."""
        assert parse_status(value) == expected

    @pytest.mark.parametrize("value", ["Live", "Rejected", "", "   ", None, 3])
    def test_rejects_unknown_values(self, value):
        """Unknown values raise instead of passing through."""
        with pytest.raises(InvalidStatusError) as exc_info:
            parse_status(value)
        assert isinstance(exc_info.value, ValidationError)
        assert exc_info.value.status_code == 400
        assert exc_info.value.field == "newStatus"

    def test_persisted_values(self):
        """Persisted textual values match the storage constraint."""
        assert ReviewStatus.values() == [
            "Draft", "Submitted", "In Review", "Needs Work", "Approved", "Archived",
        ]


# -----------------------------------------------------------------------------
# Test 2: Transition Table
# -----------------------------------------------------------------------------
class TestTransitionTable:
    """Shape of the transition catalog."""

    def test_nothing_leaves_archived(self):
        """Archived is terminal."""
        assert get_valid_targets(ReviewStatus.ARCHIVED) == {}
        assert ReviewStatus.ARCHIVED in ReviewStatus.terminal_states()

    def test_self_transitions_are_legal(self):
        """Every status may transition to itself."""
        for status in ReviewStatus:
            assert is_legal_transition(status, status) is not None

    def test_approved_only_from_review_states(self):
        """Approved is reachable only from In Review or Needs Work, by Admins."""
        sources = {
            source for (source, target) in ALLOWED_TRANSITIONS
            if target == ReviewStatus.APPROVED
        }
        assert sources == {ReviewStatus.IN_REVIEW, ReviewStatus.NEEDS_WORK}
        for source in sources:
            assert ALLOWED_TRANSITIONS[(source, ReviewStatus.APPROVED)] == RoleRequirement.ADMIN_ONLY

    def test_reopen_path(self):
        """Approved can be re-opened to In Review."""
        assert is_legal_transition(ReviewStatus.APPROVED, ReviewStatus.IN_REVIEW) == RoleRequirement.ADMIN_ONLY

    def test_missing_entry_is_illegal(self):
        """Transitions absent from the table are illegal."""
        assert is_legal_transition(ReviewStatus.DRAFT, ReviewStatus.APPROVED) is None
        assert is_legal_transition(ReviewStatus.ARCHIVED, ReviewStatus.DRAFT) is None

    def test_withdraw_is_owner_only(self):
        """Only the owner may withdraw a submission."""
        assert ALLOWED_TRANSITIONS[(ReviewStatus.SUBMITTED, ReviewStatus.DRAFT)] == RoleRequirement.OWNER


# -----------------------------------------------------------------------------
# Test 3: Role Requirements
# -----------------------------------------------------------------------------
class TestRequirementSatisfied:
    """Role requirement evaluation."""

    @pytest.mark.parametrize("requirement,role,is_owner,expected", [
        (RoleRequirement.OWNER, UserRole.MEMBER, True, True),
        (RoleRequirement.OWNER, UserRole.ADMIN, False, False),
        (RoleRequirement.OWNER_OR_ADMIN, UserRole.MEMBER, True, True),
        (RoleRequirement.OWNER_OR_ADMIN, UserRole.ADMIN, False, True),
        (RoleRequirement.OWNER_OR_ADMIN, UserRole.MEMBER, False, False),
        (RoleRequirement.ADMIN_ONLY, UserRole.ADMIN, False, True),
        (RoleRequirement.ADMIN_ONLY, UserRole.MEMBER, True, False),
    ])
    def test_truth_table(self, requirement, role, is_owner, expected):
        assert requirement_satisfied(requirement, role, is_owner) is expected
