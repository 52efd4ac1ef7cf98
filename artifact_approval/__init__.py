"""
Artifact Approval

Human-in-the-loop approval workflow engine for AI-produced artifacts:
state machine, multi-reviewer approvals, auto-approval policy, SLA windows,
revisions and an append-only history.
"""

import importlib.metadata

try:
    __version__ = importlib.metadata.version("artifact-approval")
except importlib.metadata.PackageNotFoundError:
    __version__ = "0.0.0"

from .enums import (
    ArtifactState,
    ArtifactType,
    FeedbackCategory,
    FeedbackSeverity,
    HistoryAction,
    RiskLevel,
    WorkflowEvent,
)
from .errors import (
    ApprovalError,
    DependencyError,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from .services import ApprovalService
from .state_machine import ArtifactStateMachine

__all__ = [
    "ApprovalError",
    "ApprovalService",
    "ArtifactState",
    "ArtifactStateMachine",
    "ArtifactType",
    "DependencyError",
    "FeedbackCategory",
    "FeedbackSeverity",
    "HistoryAction",
    "NotFoundError",
    "PermissionDenied",
    "RiskLevel",
    "ValidationError",
    "WorkflowEvent",
]
