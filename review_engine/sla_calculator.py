"""
SLA Calculator

Computes review deadlines from administrator-managed SLA rules.

A rule (from_status, to_status, duration_hours) states how long a review may
sit in from_status before it is expected to reach to_status. Missing
configuration means "not tracked", never an error.

Pure functions. No side effects except reading the rules file in
load_sla_rules().
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple, Union

import yaml

from .errors import InvalidStatusError
from .status_catalog import EXPECTED_NEXT_STATUS, ReviewStatus, parse_status

logger = logging.getLogger("sla_calculator")


# -----------------------------------------------------------------------------
# SLA Rule (Frozen - Immutable)
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class SLARule:
    """One deadline rule. At most one per (from_status, to_status) pair."""
    from_status: ReviewStatus
    to_status: ReviewStatus
    duration_hours: float

    def __post_init__(self):
        if self.duration_hours < 0:
            raise ValueError(f"duration_hours cannot be negative: {self.duration_hours}")

    @property
    def key(self) -> Tuple[ReviewStatus, ReviewStatus]:
        return (self.from_status, self.to_status)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from_status": self.from_status.value,
            "to_status": self.to_status.value,
            "duration_hours": self.duration_hours,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SLARule":
        return cls(
            from_status=parse_status(data.get("from_status", data.get("from"))),
            to_status=parse_status(data.get("to_status", data.get("to"))),
            duration_hours=float(data["duration_hours"]),
        )


class SLARuleSet:
    """
    Read-only collection of SLA rules keyed by (from_status, to_status).

    Raises ValueError if two rules share a pair.
    """

    def __init__(self, rules: Iterable[SLARule] = ()):
        self._rules: Dict[Tuple[ReviewStatus, ReviewStatus], SLARule] = {}
        for rule in rules:
            if rule.key in self._rules:
                raise ValueError(
                    f"Duplicate SLA rule for {rule.from_status.value} -> {rule.to_status.value}"
                )
            self._rules[rule.key] = rule

    def get(self, from_status: ReviewStatus, to_status: ReviewStatus) -> Optional[SLARule]:
        return self._rules.get((from_status, to_status))

    def __iter__(self) -> Iterator[SLARule]:
        return iter(self._rules.values())

    def __len__(self) -> int:
        return len(self._rules)

    def to_list(self) -> List[Dict[str, Any]]:
        return [rule.to_dict() for rule in self]


RuleSource = Union[SLARuleSet, Iterable[SLARule]]


# -----------------------------------------------------------------------------
# Deadline Computation
# -----------------------------------------------------------------------------

def _find_rule(
    from_status: ReviewStatus,
    to_status: ReviewStatus,
    rules: RuleSource,
) -> Optional[SLARule]:
    if isinstance(rules, SLARuleSet):
        return rules.get(from_status, to_status)
    for rule in rules:
        if rule.from_status == from_status and rule.to_status == to_status:
            return rule
    return None


def compute_deadline(
    from_status: ReviewStatus,
    to_status: ReviewStatus,
    start_time: datetime,
    rules: RuleSource,
) -> Optional[datetime]:
    """
    Compute the deadline for a transition.

    Returns start_time + duration_hours of the matching rule, or None if no
    rule matches.
    """
    rule = _find_rule(from_status, to_status, rules)
    if rule is None:
        return None
    return start_time + timedelta(hours=rule.duration_hours)


def deadline_after_entering(
    status: ReviewStatus,
    entered_at: datetime,
    rules: RuleSource,
) -> Optional[datetime]:
    """
    Deadline for a review that has just entered status.

    Measures the next expected transition out of status (e.g. Submitted is
    expected to reach In Review). None when nothing is expected next or the
    transition is not tracked.
    """
    next_status = EXPECTED_NEXT_STATUS.get(status)
    if next_status is None:
        return None
    return compute_deadline(status, next_status, entered_at, rules)


# -----------------------------------------------------------------------------
# Configuration Loading
# -----------------------------------------------------------------------------

def load_sla_rules(path: Optional[Path]) -> SLARuleSet:
    """
    Load SLA rules from a YAML file.

    Expected layout:

        sla_rules:
          - from: Submitted
            to: In Review
            duration_hours: 24

    A missing file yields an empty rule set (nothing tracked). A malformed
    file raises ValueError.
    """
    if path is None or not path.exists():
        logger.info(f"No SLA rules file at {path}; deadlines are not tracked")
        return SLARuleSet()

    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}

    entries = data.get("sla_rules", []) if isinstance(data, dict) else data
    if not isinstance(entries, list):
        raise ValueError(f"SLA rules file {path} must contain a list under 'sla_rules'")

    try:
        rules = SLARuleSet(SLARule.from_dict(entry) for entry in entries)
    except (KeyError, TypeError, InvalidStatusError) as e:
        raise ValueError(f"Malformed SLA rule in {path}: {e}") from e

    logger.info(f"Loaded {len(rules)} SLA rules from {path}")
    return rules
