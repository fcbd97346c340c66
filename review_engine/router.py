"""
API Router for the Review Status Workflow

This module provides FastAPI routes for:
- Starting reviews and reading them back
- Status changes through the transition guard
- Status history and available transitions
- Linking reviews to external projects
- On-demand reconciliation (Admin only)
- Go-live pre-flight checks for external projects

Identity is supplied by the upstream gateway in the X-User-Id, X-User-Role
and X-User-Name headers.
"""

import logging
from typing import Any, Dict, List, NoReturn, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field

from .errors import IncompleteReviewError, ReviewEngineError
from .review_store import StatusHistoryEntry
from .services import ReviewServices
from .status_catalog import UserRole, parse_status
from .transition_guard import Actor

# -----------------------------------------------------------------------------
# Logging
# -----------------------------------------------------------------------------
logger = logging.getLogger("review_router")

# -----------------------------------------------------------------------------
# Router Setup
# -----------------------------------------------------------------------------
router = APIRouter(tags=["Reviews"])


# -----------------------------------------------------------------------------
# Request Models
# -----------------------------------------------------------------------------
class StatusChangeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    new_status: Any = Field(..., alias="newStatus", description="Requested review status")


class CreateReviewRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str = ""
    description: str = ""
    graph_name: str = Field("", alias="graphName")
    account_name: str = Field("", alias="accountName")
    org_id: str = Field("", alias="orgId")
    lead_id: Optional[str] = Field(None, alias="leadId")


class LinkProjectRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    external_project_id: str = Field(..., alias="externalProjectId")


# -----------------------------------------------------------------------------
# Dependencies
# -----------------------------------------------------------------------------
def get_services(request: Request) -> ReviewServices:
    return request.app.state.services


def get_actor(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
    x_user_name: Optional[str] = Header(None),
) -> Actor:
    """Authenticated principal from the identity headers."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    try:
        role = UserRole(x_user_role or UserRole.MEMBER.value)
    except ValueError:
        raise HTTPException(status_code=401, detail=f"Unknown role '{x_user_role}'")
    return Actor(user_id=x_user_id, role=role, name=x_user_name)


def _raise_http(error: ReviewEngineError) -> NoReturn:
    if isinstance(error, IncompleteReviewError):
        raise HTTPException(
            status_code=error.status_code,
            detail={"error": error.message, "missingFields": error.missing_fields},
        )
    if error.status_code >= 500:
        logger.error(f"{type(error).__name__}: {error.message}")
    raise HTTPException(status_code=error.status_code, detail=error.message)


def _history_to_dict(entries: List[StatusHistoryEntry]) -> List[Dict[str, Any]]:
    return [entry.to_dict() for entry in entries]


# -----------------------------------------------------------------------------
# Reviews
# -----------------------------------------------------------------------------
@router.post("/reviews", status_code=201)
async def create_review(
    request: CreateReviewRequest,
    actor: Actor = Depends(get_actor),
    services: ReviewServices = Depends(get_services),
):
    """Start a new review in Draft, owned by the caller."""
    try:
        review = services.workflow.start_draft(actor, **request.model_dump())
    except ReviewEngineError as e:
        _raise_http(e)
    return {"review": review.to_dict()}


@router.get("/reviews")
async def list_reviews(
    status: Optional[str] = None,
    actor: Actor = Depends(get_actor),
    services: ReviewServices = Depends(get_services),
):
    try:
        status_filter = parse_status(status) if status else None
        reviews = services.repository.list_reviews(status_filter)
    except ReviewEngineError as e:
        _raise_http(e)
    return {"reviews": [r.to_dict() for r in reviews], "count": len(reviews)}


@router.get("/reviews/{review_id}")
async def get_review(
    review_id: str,
    actor: Actor = Depends(get_actor),
    services: ReviewServices = Depends(get_services),
):
    try:
        review = services.workflow.get_review(review_id)
    except ReviewEngineError as e:
        _raise_http(e)
    return {"review": review.to_dict()}


@router.patch("/reviews/{review_id}/status")
async def change_review_status(
    review_id: str,
    request: StatusChangeRequest,
    actor: Actor = Depends(get_actor),
    services: ReviewServices = Depends(get_services),
):
    """
    Change a review's status.

    Errors:
    - 400: invalid status value or incomplete review
    - 403: role or ownership does not permit the transition
    - 404: unknown review
    - 409: transition not allowed from the current status

    External sync failures do not fail the request; they are returned in
    "warnings".
    """
    try:
        outcome = await services.workflow.change_status(review_id, request.new_status, actor)
        history = services.repository.get_history(review_id)
    except ReviewEngineError as e:
        _raise_http(e)

    deadline = outcome.sla_deadline
    return {
        "review": outcome.review.to_dict(),
        "changed": outcome.changed,
        "history": _history_to_dict(history),
        "slaDeadline": deadline.isoformat() if deadline else None,
        "sync": outcome.sync.to_dict() if outcome.sync else None,
        "warnings": outcome.warnings,
    }


@router.get("/reviews/{review_id}/history")
async def get_review_history(
    review_id: str,
    actor: Actor = Depends(get_actor),
    services: ReviewServices = Depends(get_services),
):
    try:
        history = services.workflow.get_history(review_id)
    except ReviewEngineError as e:
        _raise_http(e)
    return {"reviewId": review_id, "history": _history_to_dict(history)}


@router.get("/reviews/{review_id}/transitions")
async def get_available_transitions(
    review_id: str,
    actor: Actor = Depends(get_actor),
    services: ReviewServices = Depends(get_services),
):
    """Statuses reachable from the current one, evaluated for the caller."""
    try:
        review = services.workflow.get_review(review_id)
        transitions = services.workflow.available_transitions(review_id, actor)
    except ReviewEngineError as e:
        _raise_http(e)
    return {"reviewId": review_id, "currentStatus": review.status.value, "transitions": transitions}


@router.put("/reviews/{review_id}/external-project")
async def link_external_project(
    review_id: str,
    request: LinkProjectRequest,
    actor: Actor = Depends(get_actor),
    services: ReviewServices = Depends(get_services),
):
    """
    Link a review to an external project.

    404 if the project does not exist externally, 409 if it is already linked
    to another review.
    """
    try:
        outcome = await services.workflow.link_external_project(
            review_id, request.external_project_id, actor
        )
    except ReviewEngineError as e:
        _raise_http(e)

    return {
        "review": outcome.review.to_dict(),
        "project": outcome.project.to_dict(),
        "sync": outcome.sync.to_dict() if outcome.sync else None,
        "warnings": outcome.warnings,
    }


# -----------------------------------------------------------------------------
# Reconciliation
# -----------------------------------------------------------------------------
@router.post("/admin/reconcile")
async def reconcile(
    actor: Actor = Depends(get_actor),
    services: ReviewServices = Depends(get_services),
):
    """Run reconciliation over every linked review. Admin only."""
    if not actor.is_admin:
        logger.warning(f"Reconciliation denied for {actor.user_id} ({actor.role.value})")
        raise HTTPException(status_code=403, detail="Only Admins can run reconciliation")

    logger.info(f"Reconciliation requested by {actor.user_id}")
    try:
        report = await services.reconciliation.reconcile_all()
    except ReviewEngineError as e:
        _raise_http(e)
    return report.to_dict()


@router.get("/external/projects/{external_project_id}/go-live-check")
async def go_live_check(
    external_project_id: str,
    actor: Actor = Depends(get_actor),
    services: ReviewServices = Depends(get_services),
):
    """Whether the external project may be marked Live."""
    try:
        check = await services.reconciliation.check_go_live(external_project_id)
    except ReviewEngineError as e:
        _raise_http(e)
    return check.to_dict()


@router.get("/admin/sla-rules")
async def list_sla_rules(
    actor: Actor = Depends(get_actor),
    services: ReviewServices = Depends(get_services),
):
    """Configured SLA rules. Admin only."""
    if not actor.is_admin:
        raise HTTPException(status_code=403, detail="Only Admins can view SLA rules")
    rules = services.workflow.sla_rules
    return {"rules": rules.to_list(), "count": len(rules)}
