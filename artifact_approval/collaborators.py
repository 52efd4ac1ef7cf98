"""
Collaborator contracts consumed by the approval service.

Any object with these methods can be handed to ``ApprovalService``; the
SQL-backed defaults live in ``risk.py``, ``sla.py`` and ``projects.py``.
Implementations signal their own failures by raising (``DependencyError`` or
anything else); the service rolls its unit of work back and lets the
exception through unchanged.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol, runtime_checkable

from .schemas import (
    ProjectApprovalSettings,
    RiskAssessmentInput,
    RiskAssessmentResult,
)


@runtime_checkable
class RiskAssessor(Protocol):
    """Scores artifacts and resolves per-project approval policy."""

    def assess_risk(self, data: RiskAssessmentInput) -> RiskAssessmentResult:
        ...

    def get_project_settings(self, project_id: str) -> ProjectApprovalSettings:
        ...


@runtime_checkable
class SLATracker(Protocol):
    """Opens and closes review deadline windows."""

    def create_sla_tracking(self, artifact_id: str) -> Any:
        ...

    def complete_sla_tracking(self, artifact_id: str) -> Any:
        ...


@runtime_checkable
class ProjectLookup(Protocol):
    """Existence check for projects."""

    def find_by_id(self, project_id: str) -> Optional[Any]:
        ...
