"""
Review Storage Collaborator

Row-level persistence for reviews, user profiles, status history and
activity records.

Storage layout:
- reviews.json: reviews and profiles keyed by id (atomic temp-file replace)
- status_history.jsonl: APPEND-ONLY, fsync'd, one row per status change
- activities.jsonl: APPEND-ONLY, fsync'd, feed/audit records

CONSTRAINTS:
- Each write is a single best-effort call; there are NO multi-row transactions
- Single-row read-modify-write is serialised by a process lock
- Reviews are never deleted (archived instead)
- external_project_id is unique across reviews
- Write failures raise StorageError; callers decide what is fatal
"""

import json
import logging
import os
import threading
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import ConflictError, NotFoundError, StorageError
from .status_catalog import ReviewStatus, UserRole

logger = logging.getLogger("review_store")

STATE_FILENAME = "reviews.json"
HISTORY_FILENAME = "status_history.jsonl"
ACTIVITY_FILENAME = "activities.jsonl"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# -----------------------------------------------------------------------------
# Records
# -----------------------------------------------------------------------------
@dataclass
class ReviewRecord:
    """
    A review moving through the approval lifecycle.

    status is mutated only through the transition guard and status store.
    """
    review_id: str
    owner_id: str
    status: ReviewStatus
    created_at: datetime
    updated_at: datetime
    title: str = ""
    description: str = ""
    graph_name: str = ""
    account_name: str = ""
    org_id: str = ""
    lead_id: Optional[str] = None
    external_project_id: Optional[str] = None
    sla_deadline: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_linked(self) -> bool:
        return bool(self.external_project_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "review_id": self.review_id,
            "owner_id": self.owner_id,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "title": self.title,
            "description": self.description,
            "graph_name": self.graph_name,
            "account_name": self.account_name,
            "org_id": self.org_id,
            "lead_id": self.lead_id,
            "external_project_id": self.external_project_id,
            "sla_deadline": _iso(self.sla_deadline),
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReviewRecord":
        return cls(
            review_id=data["review_id"],
            owner_id=data["owner_id"],
            status=ReviewStatus(data["status"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            title=data.get("title", ""),
            description=data.get("description", ""),
            graph_name=data.get("graph_name", ""),
            account_name=data.get("account_name", ""),
            org_id=data.get("org_id", ""),
            lead_id=data.get("lead_id"),
            external_project_id=data.get("external_project_id"),
            sla_deadline=_dt(data.get("sla_deadline")),
            metadata=data.get("metadata", {}),
        )


@dataclass(frozen=True)
class StatusHistoryEntry:
    """
    Immutable record of one status change.

    old_status is None for the creation entry.
    """
    entry_id: str
    review_id: str
    old_status: Optional[ReviewStatus]
    new_status: ReviewStatus
    actor_id: str
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "review_id": self.review_id,
            "old_status": self.old_status.value if self.old_status else None,
            "new_status": self.new_status.value,
            "actor_id": self.actor_id,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StatusHistoryEntry":
        return cls(
            entry_id=data["entry_id"],
            review_id=data["review_id"],
            old_status=ReviewStatus(data["old_status"]) if data.get("old_status") else None,
            new_status=ReviewStatus(data["new_status"]),
            actor_id=data["actor_id"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


@dataclass(frozen=True)
class ActivityRecord:
    """Immutable feed/audit record describing a change."""
    activity_id: str
    activity_type: str
    action: str
    description: str
    user_id: str
    review_id: Optional[str]
    link: Optional[str]
    created_at: str  # ISO format
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActivityRecord":
        return cls(
            activity_id=data["activity_id"],
            activity_type=data["activity_type"],
            action=data["action"],
            description=data["description"],
            user_id=data["user_id"],
            review_id=data.get("review_id"),
            link=data.get("link"),
            created_at=data["created_at"],
            metadata=data.get("metadata", {}),
        )


@dataclass
class UserProfile:
    """Contact and role information for a user."""
    user_id: str
    name: str
    email: str
    role: UserRole = UserRole.MEMBER

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "name": self.name,
            "email": self.email,
            "role": self.role.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserProfile":
        return cls(
            user_id=data["user_id"],
            name=data.get("name", ""),
            email=data.get("email", ""),
            role=UserRole(data.get("role", UserRole.MEMBER.value)),
        )


# -----------------------------------------------------------------------------
# Repository
# -----------------------------------------------------------------------------
class ReviewRepository:
    """
    File-backed storage collaborator.

    Provides row read/write primitives only. It enforces the persisted
    invariants (closed status values, unique external project ids) but no
    transition rules; those belong to the transition guard.
    """

    def __init__(self, data_dir: Path):
        self._data_dir = data_dir
        self._state_file = data_dir / STATE_FILENAME
        self._history_file = data_dir / HISTORY_FILENAME
        self._activity_file = data_dir / ACTIVITY_FILENAME
        self._lock = threading.Lock()
        self._ensure_dirs()

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    def _ensure_dirs(self) -> None:
        try:
            self._data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.debug(f"Could not create data directory: {e}")

    # -------------------------------------------------------------------------
    # Reviews
    # -------------------------------------------------------------------------

    def create_review(
        self,
        owner_id: str,
        title: str = "",
        description: str = "",
        graph_name: str = "",
        account_name: str = "",
        org_id: str = "",
        lead_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ReviewRecord:
        """
        Create a new review in Draft and record its creation history entry.
        """
        now = utcnow()
        review = ReviewRecord(
            review_id=str(uuid.uuid4()),
            owner_id=owner_id,
            status=ReviewStatus.DRAFT,
            created_at=now,
            updated_at=now,
            title=title,
            description=description,
            graph_name=graph_name,
            account_name=account_name,
            org_id=org_id,
            lead_id=lead_id,
            metadata=metadata or {},
        )

        with self._lock:
            state = self._load_state()
            state["reviews"][review.review_id] = review.to_dict()
            self._save_state(state)

        try:
            self.append_history(StatusHistoryEntry(
                entry_id=str(uuid.uuid4()),
                review_id=review.review_id,
                old_status=None,
                new_status=ReviewStatus.DRAFT,
                actor_id=owner_id,
                timestamp=now,
            ))
        except StorageError as e:
            logger.error(f"Review {review.review_id} created but creation history entry missing: {e}")

        logger.info(f"Created review {review.review_id} for owner {owner_id}")
        return review

    def get_review(self, review_id: str) -> Optional[ReviewRecord]:
        data = self._load_state()["reviews"].get(review_id)
        return ReviewRecord.from_dict(data) if data else None

    def list_reviews(self, status: Optional[ReviewStatus] = None) -> List[ReviewRecord]:
        reviews = []
        for data in self._load_state()["reviews"].values():
            try:
                review = ReviewRecord.from_dict(data)
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping unreadable review row: {e}")
                continue
            if status is None or review.status == status:
                reviews.append(review)
        reviews.sort(key=lambda r: r.created_at)
        return reviews

    def list_linked_reviews(self) -> List[ReviewRecord]:
        """Reviews with an external project id."""
        return [r for r in self.list_reviews() if r.is_linked]

    def find_by_external_project(self, external_project_id: str) -> Optional[ReviewRecord]:
        for review in self.list_reviews():
            if review.external_project_id == external_project_id:
                return review
        return None

    def save_status(
        self,
        review_id: str,
        status: ReviewStatus,
        updated_at: datetime,
        sla_deadline: Optional[datetime] = None,
    ) -> ReviewRecord:
        """
        Write the status column of a single review row.

        Raises NotFoundError if the review does not exist, StorageError if the
        write fails.
        """
        with self._lock:
            state = self._load_state()
            data = state["reviews"].get(review_id)
            if data is None:
                raise NotFoundError(f"Review '{review_id}' not found")

            data["status"] = ReviewStatus(status).value
            data["updated_at"] = updated_at.isoformat()
            data["sla_deadline"] = _iso(sla_deadline)
            self._save_state(state)

        return ReviewRecord.from_dict(data)

    def set_external_project(
        self,
        review_id: str,
        external_project_id: str,
        updated_at: datetime,
    ) -> ReviewRecord:
        """
        Link a review to an external project.

        Raises ConflictError if another review already references the project.
        """
        with self._lock:
            state = self._load_state()
            data = state["reviews"].get(review_id)
            if data is None:
                raise NotFoundError(f"Review '{review_id}' not found")

            for other_id, other in state["reviews"].items():
                if other_id != review_id and other.get("external_project_id") == external_project_id:
                    raise ConflictError(
                        f"External project '{external_project_id}' is already linked to review '{other_id}'"
                    )

            data["external_project_id"] = external_project_id
            data["updated_at"] = updated_at.isoformat()
            self._save_state(state)

        return ReviewRecord.from_dict(data)

    # -------------------------------------------------------------------------
    # Profiles
    # -------------------------------------------------------------------------

    def upsert_profile(self, profile: UserProfile) -> UserProfile:
        with self._lock:
            state = self._load_state()
            state["profiles"][profile.user_id] = profile.to_dict()
            self._save_state(state)
        return profile

    def get_profile(self, user_id: str) -> Optional[UserProfile]:
        data = self._load_state()["profiles"].get(user_id)
        return UserProfile.from_dict(data) if data else None

    def list_admins(self) -> List[UserProfile]:
        return [
            UserProfile.from_dict(data)
            for data in self._load_state()["profiles"].values()
            if data.get("role") == UserRole.ADMIN.value
        ]

    # -------------------------------------------------------------------------
    # History and Activity (Append-Only)
    # -------------------------------------------------------------------------

    def append_history(self, entry: StatusHistoryEntry) -> None:
        self._append_record(self._history_file, entry.to_dict())

    def get_history(self, review_id: str) -> List[StatusHistoryEntry]:
        """History for a review, ordered by timestamp."""
        entries = [
            StatusHistoryEntry.from_dict(record)
            for record in self._read_records(self._history_file)
            if record.get("review_id") == review_id
        ]
        entries.sort(key=lambda e: e.timestamp)
        return entries

    def append_activity(self, record: ActivityRecord) -> None:
        self._append_record(self._activity_file, record.to_dict())

    def get_activities(
        self,
        review_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[ActivityRecord]:
        records = [
            ActivityRecord.from_dict(record)
            for record in self._read_records(self._activity_file)
            if review_id is None or record.get("review_id") == review_id
        ]
        return records[-limit:]

    # -------------------------------------------------------------------------
    # Internal Helpers
    # -------------------------------------------------------------------------

    def _load_state(self) -> Dict[str, Any]:
        if not self._state_file.exists():
            return {"reviews": {}, "profiles": {}, "created_at": utcnow().isoformat()}
        try:
            state = json.loads(self._state_file.read_text())
        except (json.JSONDecodeError, OSError) as e:
            logger.error(f"Failed to load state file: {e}")
            raise StorageError(f"Review store unavailable: {e}") from e
        state.setdefault("reviews", {})
        state.setdefault("profiles", {})
        return state

    def _save_state(self, state: Dict[str, Any]) -> None:
        """Save state to file atomically."""
        state["last_updated"] = utcnow().isoformat()
        temp_file = self._state_file.with_suffix(".tmp")
        try:
            temp_file.write_text(json.dumps(state, indent=2, default=str))
            temp_file.replace(self._state_file)
        except OSError as e:
            logger.error(f"Failed to save state file: {e}")
            if temp_file.exists():
                temp_file.unlink()
            raise StorageError(f"Failed to write review store: {e}") from e

    def _append_record(self, file_path: Path, record: Dict[str, Any]) -> None:
        """
        Append a record to a JSONL file with fsync.

        APPEND-ONLY: Only appends, never modifies.
        """
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(file_path, "a") as f:
                f.write(json.dumps(record) + "\n")
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            raise StorageError(f"Failed to append to {file_path.name}: {e}") from e

    def _read_records(self, file_path: Path) -> List[Dict[str, Any]]:
        if not file_path.exists():
            return []

        records = []
        with open(file_path, "r") as f:
            for line in f:
                line = line.strip()
                if line:
                    try:
                        records.append(json.loads(line))
                    except json.JSONDecodeError:
                        # Skip malformed lines
                        continue
        return records
