"""
Canonical enums for the approval workflow.

Database columns store the ``.value`` of these enums; the SQL enum types in
``db/models.py`` mirror them.
"""

from enum import Enum
from typing import List


class ArtifactType(str, Enum):
    """Kinds of reviewable work produced by agents or humans."""

    TEST_CASE = "test_case"
    SCRIPT = "script"
    BUG_ANALYSIS = "bug_analysis"
    CHAT_SUGGESTION = "chat_suggestion"
    SELF_HEALING_FIX = "self_healing_fix"


class ArtifactState(str, Enum):
    """Lifecycle states of an artifact."""

    DRAFT = "draft"
    PENDING_REVIEW = "pending_review"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    ARCHIVED = "archived"


class WorkflowEvent(str, Enum):
    """Events accepted by the artifact state machine."""

    SUBMIT = "submit"
    AUTO_APPROVE = "auto_approve"
    CLAIM = "claim"
    APPROVE = "approve"
    PARTIAL_APPROVE = "partial_approve"
    REJECT = "reject"
    REVISE = "revise"
    ARCHIVE = "archive"
    DELETE = "delete"
    UPDATE = "update"


class RiskLevel(str, Enum):
    """Risk levels, ordered from least to most risky."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @classmethod
    def ordered(cls) -> List["RiskLevel"]:
        return [cls.LOW, cls.MEDIUM, cls.HIGH, cls.CRITICAL]

    @property
    def rank(self) -> int:
        return RiskLevel.ordered().index(self)


class StepStatus(str, Enum):
    """Status of a single reviewer claim."""

    IN_PROGRESS = "in_progress"
    APPROVED = "approved"
    REJECTED = "rejected"


class HistoryAction(str, Enum):
    """Verbs recorded in the artifact history."""

    CREATED = "created"
    SUBMITTED = "submitted"
    AUTO_APPROVED = "auto_approved"
    CLAIMED = "claimed"
    APPROVAL_STEP_COMPLETED = "approval_step_completed"
    APPROVED = "approved"
    REJECTED = "rejected"
    REVISED = "revised"
    ARCHIVED = "archived"


class FeedbackCategory(str, Enum):
    """Why a reviewer rejected an artifact."""

    ACCURACY = "accuracy"
    INCOMPLETE = "incomplete"
    STYLE_VIOLATION = "style_violation"
    SECURITY_CONCERN = "security_concern"
    PERFORMANCE = "performance"
    SCOPE_CREEP = "scope_creep"
    DUPLICATE = "duplicate"
    OTHER = "other"


class FeedbackSeverity(str, Enum):
    """How serious a piece of rejection feedback is."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SLAStatus(str, Enum):
    """State of a review deadline window."""

    WITHIN_SLA = "within_sla"
    APPROACHING_SLA = "approaching_sla"
    BREACHED = "breached"
    COMPLETED = "completed"


class ReviewerRole(str, Enum):
    """Roles the API layer recognises when checking reviewer capabilities."""

    ADMIN = "admin"
    LEAD = "lead"
    QAE = "qae"
