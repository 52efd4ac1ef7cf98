"""
Pydantic schemas for engine inputs and collaborator contracts.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, constr

from .enums import (
    ArtifactType,
    FeedbackCategory,
    FeedbackSeverity,
    RiskLevel,
    SLAStatus,
)


# =============================================================================
# Artifact inputs
# =============================================================================


class ArtifactCreate(BaseModel):
    """Schema for creating a new Artifact."""

    model_config = ConfigDict(extra="forbid")

    project_id: constr(min_length=1, max_length=36)
    type: ArtifactType
    source_agent: constr(min_length=1, max_length=100) = Field(
        ..., description="Agent (or 'human') that produced the content"
    )
    title: constr(min_length=1, max_length=200)
    description: Optional[constr(max_length=1000)] = None
    content: Dict[str, Any] = Field(..., description="Opaque artifact payload")
    ai_confidence_score: Optional[float] = Field(
        None, ge=0, le=100, description="Producer's confidence, 0-100"
    )
    created_by_id: constr(min_length=1, max_length=128)


class ArtifactUpdate(BaseModel):
    """Patch applied to a draft artifact. Unset fields are left alone."""

    model_config = ConfigDict(extra="forbid")

    title: Optional[constr(min_length=1, max_length=200)] = None
    description: Optional[constr(max_length=1000)] = None
    content: Optional[Dict[str, Any]] = None
    type: Optional[ArtifactType] = None


class FeedbackCreate(BaseModel):
    """One structured feedback item supplied with a rejection."""

    model_config = ConfigDict(extra="forbid")

    category: FeedbackCategory
    severity: FeedbackSeverity
    description: constr(min_length=1)
    suggested_fix: Optional[str] = None
    affected_section: Optional[constr(max_length=200)] = None
    corrected_content: Optional[str] = None


class ApproveRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    comment: Optional[str] = None


class RejectRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    comment: Optional[str] = None
    feedback: List[FeedbackCreate] = Field(default_factory=list)


class ReviseRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    content: Dict[str, Any]


# =============================================================================
# RiskAssessment contract
# =============================================================================


class RiskAssessmentInput(BaseModel):
    """Artifact-shaped input handed to the risk assessor."""

    project_id: str
    artifact_type: ArtifactType
    source_agent: str
    ai_confidence_score: Optional[float] = None
    files_affected: int = 1


class ApprovalRequirements(BaseModel):
    """How many and which reviewers an artifact needs."""

    required_approvals: int = Field(1, ge=1)
    requires_admin: bool = False
    requires_lead: bool = False
    can_auto_approve: bool = False
    auto_approve_reason: Optional[str] = None


class RiskAssessmentResult(BaseModel):
    """Outcome of a risk assessment."""

    risk_score: int = Field(..., ge=0, le=100)
    risk_level: RiskLevel
    risk_factors: Dict[str, Any] = Field(default_factory=dict)
    approval_requirements: ApprovalRequirements


class ProjectApprovalSettings(BaseModel):
    """Resolved approval policy for a project."""

    auto_approve_enabled: bool = True
    auto_approve_max_risk: RiskLevel = RiskLevel.LOW
    auto_approve_min_confidence: float = Field(90, ge=0, le=100)

    low_risk_threshold: int = Field(25, ge=0, le=100)
    medium_risk_threshold: int = Field(50, ge=0, le=100)
    high_risk_threshold: int = Field(75, ge=0, le=100)

    low_risk_sla_hours: int = Field(1, ge=1, le=168)
    medium_risk_sla_hours: int = Field(4, ge=1, le=168)
    high_risk_sla_hours: int = Field(24, ge=1, le=168)
    critical_risk_sla_hours: int = Field(48, ge=1, le=168)


class ApprovalSettingsUpdate(BaseModel):
    """Partial update of a project's approval settings."""

    model_config = ConfigDict(extra="forbid")

    low_risk_threshold: Optional[int] = Field(None, ge=0, le=100)
    medium_risk_threshold: Optional[int] = Field(None, ge=0, le=100)
    high_risk_threshold: Optional[int] = Field(None, ge=0, le=100)
    low_risk_sla_hours: Optional[int] = Field(None, ge=1, le=168)
    medium_risk_sla_hours: Optional[int] = Field(None, ge=1, le=168)
    high_risk_sla_hours: Optional[int] = Field(None, ge=1, le=168)
    critical_risk_sla_hours: Optional[int] = Field(None, ge=1, le=168)
    auto_approve_enabled: Optional[bool] = None
    auto_approve_max_risk: Optional[RiskLevel] = None
    auto_approve_min_confidence: Optional[float] = Field(None, ge=0, le=100)


# =============================================================================
# SLA reporting
# =============================================================================


class SLAStatusResult(BaseModel):
    """Point-in-time view of a review deadline window."""

    artifact_id: str
    status: SLAStatus
    deadline: datetime
    deadline_hours: int
    percentage_elapsed: float
    time_remaining_seconds: float
    is_overdue: bool
    is_approaching: bool


class SLAMetrics(BaseModel):
    """Deadline compliance for a project's recent review windows."""

    project_id: str
    days: int
    total: int
    within_sla: int
    breached: int
    average_resolution_seconds: float
    compliance_rate: int
