"""
Approval API routes.

REST endpoints for the artifact approval workflow.
All endpoints are prefixed with /approvals.

Caller identity comes from the ``X-User-Id`` header and roles from
``X-User-Roles`` (comma separated). Reviewer operations and the review queue
need one of admin, lead or qae; claims also honour the workflow's
requires_admin and requires_lead flags. Settings updates and SLA reports
need admin or lead.
"""

from typing import Any, Dict, FrozenSet, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Response
from sqlalchemy.orm import Session

from .db.base import get_db, unit_of_work
from .db.models import ApprovalWorkflowModel
from .enums import ArtifactState, ArtifactType, RiskLevel
from .errors import ApprovalError
from .policy import check_claim_capabilities, parse_roles, require_any_role
from .policy.capabilities import REVIEWER_ROLES, SETTINGS_ROLES
from .risk import RiskAssessmentService
from .schemas import (
    ApprovalSettingsUpdate,
    ApproveRequest,
    ArtifactCreate,
    ArtifactUpdate,
    RejectRequest,
    ReviseRequest,
)
from .services import ApprovalService
from .sla import SLAService

router = APIRouter(prefix="/approvals", tags=["approvals"])


def http_error(exc: ApprovalError) -> HTTPException:
    """Render an engine error as an HTTPException with a structured body."""
    body: Dict[str, Any] = {"code": exc.code, "message": exc.message}
    if exc.details:
        body["details"] = exc.details
    return HTTPException(status_code=exc.http_status, detail={"error": body})


def current_user(x_user_id: Optional[str] = Header(None)) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=401,
            detail={"error": {"code": "UNAUTHENTICATED", "message": "X-User-Id header is required"}},
        )
    return x_user_id.strip()


def current_roles(x_user_roles: Optional[str] = Header(None)) -> FrozenSet[str]:
    return parse_roles(x_user_roles or "")


def _require_roles(roles: FrozenSet[str], allowed: FrozenSet[str]) -> None:
    try:
        require_any_role(roles, allowed)
    except ApprovalError as e:
        raise http_error(e)


def _full(artifact) -> Dict[str, Any]:
    return artifact.to_dict(include_history=True, include_feedback=True)


# =============================================================================
# Artifact Endpoints
# =============================================================================


@router.post("/artifacts", status_code=201)
async def create_artifact(
    artifact: ArtifactCreate,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Create a draft artifact."""
    try:
        db_artifact = ApprovalService(db).create(artifact)
    except ApprovalError as e:
        raise http_error(e)
    return {"status": "success", "artifact": _full(db_artifact)}


@router.get("/artifacts/{artifact_id}")
async def get_artifact(
    artifact_id: str,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Get an artifact with its workflow, history and feedback."""
    try:
        artifact = ApprovalService(db).find_by_id(artifact_id)
    except ApprovalError as e:
        raise http_error(e)
    return _full(artifact)


@router.get("/artifacts")
async def list_artifacts(
    project_id: Optional[str] = None,
    type: Optional[ArtifactType] = None,
    state: Optional[ArtifactState] = None,
    risk_level: Optional[RiskLevel] = None,
    created_by_id: Optional[str] = None,
    assigned_to_id: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """List artifacts with optional filtering."""
    try:
        result = ApprovalService(db).find_all(
            page=page,
            limit=limit,
            project_id=project_id,
            type=type,
            state=state,
            risk_level=risk_level,
            created_by_id=created_by_id,
            assigned_to_id=assigned_to_id,
        )
    except ApprovalError as e:
        raise http_error(e)
    return result.to_dict()


@router.patch("/artifacts/{artifact_id}")
async def update_artifact(
    artifact_id: str,
    patch: ArtifactUpdate,
    user_id: str = Depends(current_user),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Patch a draft artifact."""
    try:
        artifact = ApprovalService(db).update(artifact_id, patch, user_id=user_id)
    except ApprovalError as e:
        raise http_error(e)
    return {"status": "success", "artifact": _full(artifact)}


@router.delete("/artifacts/{artifact_id}", status_code=204)
async def delete_artifact(
    artifact_id: str,
    user_id: str = Depends(current_user),
    db: Session = Depends(get_db),
) -> Response:
    """Delete a draft or archived artifact."""
    try:
        ApprovalService(db).delete(artifact_id, user_id=user_id)
    except ApprovalError as e:
        raise http_error(e)
    return Response(status_code=204)


# =============================================================================
# Workflow Endpoints
# =============================================================================


@router.post("/artifacts/{artifact_id}/submit")
async def submit_artifact(
    artifact_id: str,
    user_id: str = Depends(current_user),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Submit a draft for review (auto-approving it when policy allows)."""
    service = ApprovalService(db)
    try:
        artifact = service.find_by_id(artifact_id)
        settings = RiskAssessmentService(db).get_project_settings(artifact.project_id)
        artifact = service.submit_for_review(artifact_id, user_id, settings=settings)
    except ApprovalError as e:
        raise http_error(e)
    return {"status": "success", "artifact": _full(artifact)}


@router.post("/artifacts/{artifact_id}/claim")
async def claim_artifact(
    artifact_id: str,
    user_id: str = Depends(current_user),
    roles: FrozenSet[str] = Depends(current_roles),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Claim a pending artifact for review."""
    service = ApprovalService(db)
    try:
        service.find_by_id(artifact_id)
        workflow = (
            db.query(ApprovalWorkflowModel)
            .filter(ApprovalWorkflowModel.artifact_id == artifact_id)
            .first()
        )
        check_claim_capabilities(
            roles,
            requires_admin=bool(workflow and workflow.requires_admin),
            requires_lead=bool(workflow and workflow.requires_lead),
        )
        artifact = service.claim_review(artifact_id, user_id)
    except ApprovalError as e:
        raise http_error(e)
    return {"status": "success", "artifact": _full(artifact)}


@router.post("/artifacts/{artifact_id}/approve")
async def approve_artifact(
    artifact_id: str,
    body: Optional[ApproveRequest] = None,
    user_id: str = Depends(current_user),
    roles: FrozenSet[str] = Depends(current_roles),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Approve the artifact as its active reviewer."""
    _require_roles(roles, REVIEWER_ROLES)
    comment = body.comment if body else None
    try:
        artifact = ApprovalService(db).approve(artifact_id, user_id, comment=comment)
    except ApprovalError as e:
        raise http_error(e)
    return {"status": "success", "artifact": _full(artifact)}


@router.post("/artifacts/{artifact_id}/reject")
async def reject_artifact(
    artifact_id: str,
    body: RejectRequest,
    user_id: str = Depends(current_user),
    roles: FrozenSet[str] = Depends(current_roles),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Reject the artifact with structured feedback."""
    _require_roles(roles, REVIEWER_ROLES)
    try:
        artifact = ApprovalService(db).reject(
            artifact_id, user_id, comment=body.comment, feedback=body.feedback
        )
    except ApprovalError as e:
        raise http_error(e)
    return {"status": "success", "artifact": _full(artifact)}


@router.post("/artifacts/{artifact_id}/revise", status_code=201)
async def revise_artifact(
    artifact_id: str,
    body: ReviseRequest,
    user_id: str = Depends(current_user),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Create a new draft version of a rejected artifact."""
    try:
        artifact = ApprovalService(db).revise(artifact_id, user_id, body.content)
    except ApprovalError as e:
        raise http_error(e)
    return {"status": "success", "artifact": _full(artifact)}


@router.post("/artifacts/{artifact_id}/archive")
async def archive_artifact(
    artifact_id: str,
    user_id: str = Depends(current_user),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Archive an artifact."""
    try:
        artifact = ApprovalService(db).archive(artifact_id, user_id)
    except ApprovalError as e:
        raise http_error(e)
    return {"status": "success", "artifact": _full(artifact)}


@router.get("/artifacts/{artifact_id}/history")
async def get_artifact_history(
    artifact_id: str,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    """History entries for an artifact, newest first."""
    try:
        entries = ApprovalService(db).get_history(artifact_id, limit=limit, offset=offset)
    except ApprovalError as e:
        raise http_error(e)
    return [h.to_dict() for h in entries]


@router.get("/artifacts/{artifact_id}/feedback")
async def get_artifact_feedback(
    artifact_id: str,
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    """Rejection feedback for an artifact."""
    try:
        items = ApprovalService(db).get_feedback(artifact_id)
    except ApprovalError as e:
        raise http_error(e)
    return [f.to_dict() for f in items]


@router.get("/queue")
async def get_review_queue(
    project_id: Optional[str] = None,
    type: Optional[ArtifactType] = None,
    risk_level: Optional[RiskLevel] = None,
    user_id: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    roles: FrozenSet[str] = Depends(current_roles),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Artifacts awaiting review, riskiest first (reviewers only)."""
    _require_roles(roles, REVIEWER_ROLES)
    try:
        result = ApprovalService(db).get_review_queue(
            page=page,
            limit=limit,
            project_id=project_id,
            type=type,
            risk_level=risk_level,
            user_id=user_id,
        )
    except ApprovalError as e:
        raise http_error(e)
    return result.to_dict()


# =============================================================================
# SLA Endpoints
# =============================================================================


@router.get("/sla/breached")
async def list_breached_slas(
    project_id: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    roles: FrozenSet[str] = Depends(current_roles),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Open review windows past their deadline (admin or lead)."""
    _require_roles(roles, SETTINGS_ROLES)
    try:
        result = SLAService(db).list_breached(project_id=project_id, page=page, limit=limit)
    except ApprovalError as e:
        raise http_error(e)
    return result.to_dict()


@router.get("/sla/approaching")
async def list_approaching_slas(
    project_id: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    roles: FrozenSet[str] = Depends(current_roles),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Open review windows past their warning threshold (admin or lead)."""
    _require_roles(roles, SETTINGS_ROLES)
    try:
        result = SLAService(db).list_approaching(
            project_id=project_id, page=page, limit=limit
        )
    except ApprovalError as e:
        raise http_error(e)
    return result.to_dict()


@router.get("/sla/metrics/{project_id}")
async def get_sla_metrics(
    project_id: str,
    days: int = Query(30, ge=1),
    roles: FrozenSet[str] = Depends(current_roles),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """SLA compliance for a project over the last ``days`` days."""
    _require_roles(roles, SETTINGS_ROLES)
    try:
        metrics = SLAService(db).get_metrics(project_id, days=days)
    except ApprovalError as e:
        raise http_error(e)
    return metrics.model_dump(mode="json")


@router.get("/sla/{artifact_id}")
async def get_sla_status(
    artifact_id: str,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Where an artifact stands against its review deadline."""
    try:
        with unit_of_work(db):
            status = SLAService(db).get_sla_status(artifact_id)
    except ApprovalError as e:
        raise http_error(e)
    return status.model_dump(mode="json")


# =============================================================================
# Settings Endpoints
# =============================================================================


@router.get("/settings/{project_id}")
async def get_approval_settings(
    project_id: str,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Resolved approval settings for a project."""
    settings = RiskAssessmentService(db).get_project_settings(project_id)
    return settings.model_dump(mode="json")


@router.put("/settings/{project_id}")
async def update_approval_settings(
    project_id: str,
    update: ApprovalSettingsUpdate,
    user_id: str = Depends(current_user),
    roles: FrozenSet[str] = Depends(current_roles),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Update a project's approval settings (admin or lead)."""
    _require_roles(roles, SETTINGS_ROLES)
    try:
        settings = RiskAssessmentService(db).update_project_settings(project_id, update)
    except ApprovalError as e:
        raise http_error(e)
    return {"status": "success", "settings": settings.model_dump(mode="json")}
