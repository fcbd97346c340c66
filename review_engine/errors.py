"""
Error taxonomy for the review engine.

Every error carries the HTTP status the router surfaces it with. The core
raises these; only the router translates them into HTTP responses.

- ValidationError      400  malformed status value, missing required fields
- AuthorizationError   403  role/ownership mismatch (never retried, audited)
- NotFoundError        404  unknown review or external project
- IllegalTransitionError 409 transition absent from the catalog
- ConflictError        409  external project already linked elsewhere
- ExternalSystemError  502  timeout, non-2xx, malformed payload
- ReconciliationError  per review, aggregated into results
- StorageError         500  local store unavailable (fatal to the request)
"""

from typing import List, Optional, Sequence


class ReviewEngineError(Exception):
    """Base class for all review engine errors."""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# -----------------------------------------------------------------------------
# Client Errors
# -----------------------------------------------------------------------------
class ValidationError(ReviewEngineError):
    """Request content is invalid. Never retried."""
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class InvalidStatusError(ValidationError):
    """Status value is not one of the catalog's values."""

    def __init__(self, value: object, valid_values: Sequence[str]):
        super().__init__(
            f"Invalid status value '{value}'. Must be one of: {', '.join(valid_values)}",
            field="newStatus",
        )
        self.value = value


class IncompleteReviewError(ValidationError):
    """Review is missing descriptive fields required to leave Draft."""

    def __init__(self, missing_fields: List[str]):
        super().__init__(
            f"Review is incomplete. Missing required fields: {', '.join(missing_fields)}",
            field=missing_fields[0] if missing_fields else None,
        )
        self.missing_fields = list(missing_fields)


class AuthorizationError(ReviewEngineError):
    """Actor role or ownership does not satisfy the transition requirement."""
    status_code = 403


class NotFoundError(ReviewEngineError):
    """Review (or external project during linking) does not exist."""
    status_code = 404


class IllegalTransitionError(ReviewEngineError):
    """Transition is not present in the catalog."""
    status_code = 409


class ConflictError(ReviewEngineError):
    """Request conflicts with existing state."""
    status_code = 409


# -----------------------------------------------------------------------------
# External System Errors
# -----------------------------------------------------------------------------
class ExternalSystemError(ReviewEngineError):
    """External project system failed: timeout, non-2xx, malformed payload."""
    status_code = 502

    def __init__(self, message: str, http_status: Optional[int] = None):
        super().__init__(message)
        self.http_status = http_status


class ExternalNotFoundError(ExternalSystemError):
    """External resource does not exist (HTTP 404)."""

    def __init__(self, message: str):
        super().__init__(message, http_status=404)


class ExternalSyncError(ExternalSystemError):
    """Pushing a status value to the external system failed."""


# -----------------------------------------------------------------------------
# Internal Errors
# -----------------------------------------------------------------------------
class ReconciliationError(ReviewEngineError):
    """Reconciliation of a single review failed. Scoped to that review."""

    def __init__(self, review_id: str, message: str):
        super().__init__(message)
        self.review_id = review_id


class StorageError(ReviewEngineError):
    """Local store unavailable. Fatal to the request."""
    status_code = 500
