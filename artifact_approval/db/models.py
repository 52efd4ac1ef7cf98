"""
SQLAlchemy models for the artifact approval workflow.

Ownership follows ids, not object graphs:
- one ApprovalWorkflow per Artifact, enforced by a unique ``artifact_id``
- at most one in-progress ApprovalStep per workflow, enforced by a partial
  unique index
- history and feedback rows hang off ``artifact_id`` and are removed only when
  the artifact itself is deleted
"""

from typing import Any, Dict, List

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import relationship

from ..enums import (
    ArtifactState,
    ArtifactType,
    FeedbackCategory,
    FeedbackSeverity,
    HistoryAction,
    RiskLevel,
    SLAStatus,
    StepStatus,
)
from ..primitives import generate_ulid, isoformat, utc_now
from .base import Base


def _values(enum_cls) -> List[str]:
    return [member.value for member in enum_cls]


# =============================================================================
# Enums as Database Enums (mirror artifact_approval/enums.py)
# =============================================================================

artifact_type_enum = Enum(*_values(ArtifactType), name="artifact_type")
artifact_state_enum = Enum(*_values(ArtifactState), name="artifact_state")
risk_level_enum = Enum(*_values(RiskLevel), name="risk_level")
step_status_enum = Enum(*_values(StepStatus), name="approval_step_status")
history_action_enum = Enum(*_values(HistoryAction), name="artifact_history_action")
feedback_category_enum = Enum(*_values(FeedbackCategory), name="feedback_category")
feedback_severity_enum = Enum(*_values(FeedbackSeverity), name="feedback_severity")
sla_status_enum = Enum(*_values(SLAStatus), name="sla_status")


class ProjectModel(Base):
    """Projects own artifacts. The engine only checks that they exist."""

    __tablename__ = "projects"

    id = Column(String(36), primary_key=True, default=generate_ulid)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    approval_settings = relationship(
        "ApprovalSettingsModel",
        back_populates="project",
        uselist=False,
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "created_at": isoformat(self.created_at),
        }


class ApprovalSettingsModel(Base):
    """Per-project risk thresholds, SLA budgets and auto-approve policy."""

    __tablename__ = "approval_settings"

    id = Column(String(36), primary_key=True, default=generate_ulid)
    project_id = Column(
        String(36),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    # Risk score thresholds (0-100)
    low_risk_threshold = Column(Integer, nullable=False, default=25)
    medium_risk_threshold = Column(Integer, nullable=False, default=50)
    high_risk_threshold = Column(Integer, nullable=False, default=75)

    # SLA budgets in hours
    low_risk_sla_hours = Column(Integer, nullable=False, default=1)
    medium_risk_sla_hours = Column(Integer, nullable=False, default=4)
    high_risk_sla_hours = Column(Integer, nullable=False, default=24)
    critical_risk_sla_hours = Column(Integer, nullable=False, default=48)

    # Auto-approve policy
    auto_approve_enabled = Column(Boolean, nullable=False, default=True)
    auto_approve_max_risk = Column(risk_level_enum, nullable=False, default="low")
    auto_approve_min_confidence = Column(Float, nullable=False, default=90.0)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    project = relationship("ProjectModel", back_populates="approval_settings")

    def sla_hours_for(self, risk_level: str) -> int:
        return {
            "low": self.low_risk_sla_hours,
            "medium": self.medium_risk_sla_hours,
            "high": self.high_risk_sla_hours,
            "critical": self.critical_risk_sla_hours,
        }[risk_level]

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "project_id": self.project_id,
            "low_risk_threshold": self.low_risk_threshold,
            "medium_risk_threshold": self.medium_risk_threshold,
            "high_risk_threshold": self.high_risk_threshold,
            "low_risk_sla_hours": self.low_risk_sla_hours,
            "medium_risk_sla_hours": self.medium_risk_sla_hours,
            "high_risk_sla_hours": self.high_risk_sla_hours,
            "critical_risk_sla_hours": self.critical_risk_sla_hours,
            "auto_approve_enabled": self.auto_approve_enabled,
            "auto_approve_max_risk": self.auto_approve_max_risk,
            "auto_approve_min_confidence": self.auto_approve_min_confidence,
            "updated_at": isoformat(self.updated_at),
        }


class ArtifactModel(Base):
    """A reviewable unit of work moving through the approval lifecycle."""

    __tablename__ = "artifacts"

    id = Column(String(36), primary_key=True, default=generate_ulid)
    project_id = Column(
        String(36), ForeignKey("projects.id"), nullable=False, index=True
    )
    type = Column(artifact_type_enum, nullable=False, index=True)
    state = Column(artifact_state_enum, nullable=False, default="draft", index=True)

    # Risk (from the risk assessment at creation)
    risk_level = Column(risk_level_enum, nullable=False, index=True)
    risk_score = Column(Integer, nullable=False, default=0)
    risk_factors = Column(JSON, nullable=False, default=dict)
    ai_confidence_score = Column(Float, nullable=True)

    # Provenance
    source_agent = Column(String(100), nullable=False)
    created_by_id = Column(String(128), nullable=False, index=True)

    # Payload
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    content = Column(JSON, nullable=False, default=dict)

    # Versioning
    version = Column(Integer, nullable=False, default=1)
    previous_version_id = Column(
        String(36),
        ForeignKey("artifacts.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # Lifecycle timestamps
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    archived_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    workflow = relationship(
        "ApprovalWorkflowModel",
        back_populates="artifact",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    history = relationship(
        "ArtifactHistoryModel",
        back_populates="artifact",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by=lambda: [
            ArtifactHistoryModel.action_at.desc(),
            ArtifactHistoryModel.id.desc(),
        ],
    )
    feedback = relationship(
        "ApprovalFeedbackModel",
        back_populates="artifact",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ApprovalFeedbackModel.created_at.desc()",
    )
    sla_tracking = relationship(
        "SLATrackingModel",
        back_populates="artifact",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_artifacts_project_state", "project_id", "state"),
        Index("ix_artifacts_state_submitted", "state", "submitted_at"),
    )

    def to_dict(
        self,
        include_workflow: bool = True,
        include_history: bool = False,
        include_feedback: bool = False,
    ) -> Dict[str, Any]:
        """Convert model to dictionary, optionally with nested relations."""
        data: Dict[str, Any] = {
            "id": self.id,
            "project_id": self.project_id,
            "type": self.type,
            "state": self.state,
            "risk_level": self.risk_level,
            "risk_score": self.risk_score,
            "risk_factors": self.risk_factors,
            "ai_confidence_score": self.ai_confidence_score,
            "source_agent": self.source_agent,
            "created_by_id": self.created_by_id,
            "title": self.title,
            "description": self.description,
            "content": self.content,
            "version": self.version,
            "previous_version_id": self.previous_version_id,
            "submitted_at": isoformat(self.submitted_at),
            "approved_at": isoformat(self.approved_at),
            "rejected_at": isoformat(self.rejected_at),
            "archived_at": isoformat(self.archived_at),
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }
        if include_workflow:
            data["workflow"] = self.workflow.to_dict() if self.workflow else None
        if include_history:
            data["history"] = [h.to_dict() for h in self.history]
        if include_feedback:
            data["feedback"] = [f.to_dict() for f in self.feedback]
        return data


class ApprovalWorkflowModel(Base):
    """Approval requirements and progress for exactly one artifact."""

    __tablename__ = "approval_workflows"

    id = Column(String(36), primary_key=True, default=generate_ulid)
    artifact_id = Column(
        String(36),
        ForeignKey("artifacts.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    required_approvals = Column(Integer, nullable=False, default=1)
    current_approvals = Column(Integer, nullable=False, default=0)
    requires_admin = Column(Boolean, nullable=False, default=False)
    requires_lead = Column(Boolean, nullable=False, default=False)
    auto_approved = Column(Boolean, nullable=False, default=False)
    auto_approve_reason = Column(Text, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    artifact = relationship("ArtifactModel", back_populates="workflow")
    steps = relationship(
        "ApprovalStepModel",
        back_populates="workflow",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ApprovalStepModel.step_order",
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "artifact_id": self.artifact_id,
            "required_approvals": self.required_approvals,
            "current_approvals": self.current_approvals,
            "requires_admin": self.requires_admin,
            "requires_lead": self.requires_lead,
            "auto_approved": self.auto_approved,
            "auto_approve_reason": self.auto_approve_reason,
            "started_at": isoformat(self.started_at),
            "completed_at": isoformat(self.completed_at),
            "steps": [s.to_dict() for s in self.steps],
        }


class ApprovalStepModel(Base):
    """One reviewer claim within a workflow."""

    __tablename__ = "approval_steps"

    id = Column(String(36), primary_key=True, default=generate_ulid)
    workflow_id = Column(
        String(36),
        ForeignKey("approval_workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step_order = Column(Integer, nullable=False, default=1)
    assigned_to_id = Column(String(128), nullable=False, index=True)
    status = Column(step_status_enum, nullable=False, default="in_progress")
    comment = Column(Text, nullable=True)
    action_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    workflow = relationship("ApprovalWorkflowModel", back_populates="steps")

    __table_args__ = (
        # Single active reviewer per workflow
        Index(
            "uq_approval_steps_active_per_workflow",
            "workflow_id",
            unique=True,
            sqlite_where=text("status = 'in_progress'"),
            postgresql_where=text("status = 'in_progress'"),
        ),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "step_order": self.step_order,
            "assigned_to_id": self.assigned_to_id,
            "status": self.status,
            "comment": self.comment,
            "action_at": isoformat(self.action_at),
            "created_at": isoformat(self.created_at),
        }


class ArtifactHistoryModel(Base):
    """Append-only record of one state transition."""

    __tablename__ = "artifact_history"

    # Integer key doubles as a tie-breaker for entries sharing a timestamp
    id = Column(Integer, primary_key=True, autoincrement=True)
    artifact_id = Column(
        String(36),
        ForeignKey("artifacts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    from_state = Column(artifact_state_enum, nullable=True)
    to_state = Column(artifact_state_enum, nullable=False)
    action = Column(history_action_enum, nullable=False, index=True)
    actor_id = Column(String(128), nullable=True, index=True)
    comment = Column(Text, nullable=True)
    action_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    artifact = relationship("ArtifactModel", back_populates="history")

    __table_args__ = (
        Index("ix_artifact_history_artifact_ts", "artifact_id", "action_at"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "artifact_id": self.artifact_id,
            "from_state": self.from_state,
            "to_state": self.to_state,
            "action": self.action,
            "actor_id": self.actor_id,
            "comment": self.comment,
            "action_at": isoformat(self.action_at),
        }


class ApprovalFeedbackModel(Base):
    """Structured reviewer feedback recorded on rejection."""

    __tablename__ = "approval_feedback"

    id = Column(String(36), primary_key=True, default=generate_ulid)
    artifact_id = Column(
        String(36),
        ForeignKey("artifacts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    category = Column(feedback_category_enum, nullable=False, index=True)
    severity = Column(feedback_severity_enum, nullable=False)
    description = Column(Text, nullable=False)
    suggested_fix = Column(Text, nullable=True)
    affected_section = Column(String(200), nullable=True)
    corrected_content = Column(Text, nullable=True)
    created_by_id = Column(String(128), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    artifact = relationship("ArtifactModel", back_populates="feedback")

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "artifact_id": self.artifact_id,
            "category": self.category,
            "severity": self.severity,
            "description": self.description,
            "suggested_fix": self.suggested_fix,
            "affected_section": self.affected_section,
            "corrected_content": self.corrected_content,
            "created_by_id": self.created_by_id,
            "created_at": isoformat(self.created_at),
        }


class SLATrackingModel(Base):
    """Deadline window opened when an artifact enters review."""

    __tablename__ = "sla_tracking"

    id = Column(String(36), primary_key=True, default=generate_ulid)
    artifact_id = Column(
        String(36),
        ForeignKey("artifacts.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    risk_level = Column(risk_level_enum, nullable=False)
    deadline_hours = Column(Integer, nullable=False)
    deadline = Column(DateTime(timezone=True), nullable=False, index=True)
    status = Column(sla_status_enum, nullable=False, default="within_sla", index=True)
    warning_threshold = Column(Integer, nullable=False, default=75)
    started_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    artifact = relationship("ArtifactModel", back_populates="sla_tracking")

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "artifact_id": self.artifact_id,
            "risk_level": self.risk_level,
            "deadline_hours": self.deadline_hours,
            "deadline": isoformat(self.deadline),
            "status": self.status,
            "warning_threshold": self.warning_threshold,
            "started_at": isoformat(self.started_at),
            "completed_at": isoformat(self.completed_at),
        }
