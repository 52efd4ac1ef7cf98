"""
Default risk assessment.

Scores an artifact from four weighted factors and maps the score to a risk
level using the project's thresholds:

    artifact type        40%   (script 70, self_healing_fix 60, bug_analysis 40,
                                chat_suggestion 30, test_case 20)
    scope                20%   (files affected)
    AI confidence        25%   (100 - confidence, 30 when unknown)
    rejection history    15%   (last 30 days, same project/type/agent)

Approval requirements follow the level: low and medium need one approval,
high needs two including a lead, critical needs two including an admin and
a lead.
"""

import math
from datetime import timedelta
from typing import Any, Dict, Mapping, Optional, Union

import structlog
from sqlalchemy import func
from sqlalchemy.orm import Session

from .config import get_settings
from .db.base import unit_of_work
from .db.models import ApprovalSettingsModel, ArtifactModel, ProjectModel
from .enums import ArtifactState, ArtifactType, RiskLevel
from .errors import NotFoundError, ValidationError
from .policy import auto_approve
from .primitives import utc_now
from .schemas import (
    ApprovalRequirements,
    ApprovalSettingsUpdate,
    ProjectApprovalSettings,
    RiskAssessmentInput,
    RiskAssessmentResult,
)

logger = structlog.get_logger()

ARTIFACT_TYPE_BASE_SCORES: Dict[str, int] = {
    ArtifactType.SCRIPT.value: 70,
    ArtifactType.TEST_CASE.value: 20,
    ArtifactType.BUG_ANALYSIS.value: 40,
    ArtifactType.CHAT_SUGGESTION.value: 30,
    ArtifactType.SELF_HEALING_FIX.value: 60,
}
UNKNOWN_TYPE_SCORE = 50
UNKNOWN_CONFIDENCE_SCORE = 30
HISTORY_WINDOW_DAYS = 30

WEIGHTS = {
    "artifact_type": 0.4,
    "scope": 0.2,
    "confidence": 0.25,
    "history": 0.15,
}

DEFAULT_REQUIREMENTS: Dict[RiskLevel, Dict[str, Any]] = {
    RiskLevel.LOW: {"required_approvals": 1, "requires_admin": False, "requires_lead": False},
    RiskLevel.MEDIUM: {"required_approvals": 1, "requires_admin": False, "requires_lead": False},
    RiskLevel.HIGH: {"required_approvals": 2, "requires_admin": False, "requires_lead": True},
    RiskLevel.CRITICAL: {"required_approvals": 2, "requires_admin": True, "requires_lead": True},
}


def count_files_affected(content: Optional[Mapping[str, Any]]) -> int:
    """Number of files an artifact touches, from ``content.files`` or ``content.scripts``."""
    if not content:
        return 1
    for key in ("files", "scripts"):
        items = content.get(key)
        if isinstance(items, (list, tuple)) and items:
            return len(items)
    return 1


def artifact_type_score(artifact_type: Union[ArtifactType, str]) -> int:
    value = artifact_type.value if isinstance(artifact_type, ArtifactType) else artifact_type
    return ARTIFACT_TYPE_BASE_SCORES.get(value, UNKNOWN_TYPE_SCORE)


def scope_score(files_affected: Optional[int]) -> int:
    if not files_affected or files_affected <= 1:
        return 0
    if files_affected <= 3:
        return 20
    if files_affected <= 5:
        return 40
    if files_affected <= 10:
        return 60
    return 80


def confidence_score(ai_confidence_score: Optional[float]) -> float:
    # Inverse: full confidence is no risk
    if ai_confidence_score is None:
        return UNKNOWN_CONFIDENCE_SCORE
    return max(0.0, 100 - ai_confidence_score)


def weighted_score(
    type_score: float, scope: float, confidence: float, history: float
) -> int:
    weighted = (
        type_score * WEIGHTS["artifact_type"]
        + scope * WEIGHTS["scope"]
        + confidence * WEIGHTS["confidence"]
        + history * WEIGHTS["history"]
    )
    # Half-up rounding
    return int(math.floor(min(100.0, max(0.0, weighted)) + 0.5))


def level_for_score(score: int, settings: ProjectApprovalSettings) -> RiskLevel:
    if score <= settings.low_risk_threshold:
        return RiskLevel.LOW
    if score <= settings.medium_risk_threshold:
        return RiskLevel.MEDIUM
    if score <= settings.high_risk_threshold:
        return RiskLevel.HIGH
    return RiskLevel.CRITICAL


def default_project_settings() -> ProjectApprovalSettings:
    """Approval settings for projects without a stored row."""
    config = get_settings()
    return ProjectApprovalSettings(
        auto_approve_enabled=config.auto_approve_enabled,
        auto_approve_max_risk=RiskLevel(config.auto_approve_max_risk),
        auto_approve_min_confidence=config.auto_approve_min_confidence,
    )


def _settings_from_row(row: ApprovalSettingsModel) -> ProjectApprovalSettings:
    return ProjectApprovalSettings(
        auto_approve_enabled=row.auto_approve_enabled,
        auto_approve_max_risk=RiskLevel(row.auto_approve_max_risk),
        auto_approve_min_confidence=row.auto_approve_min_confidence,
        low_risk_threshold=row.low_risk_threshold,
        medium_risk_threshold=row.medium_risk_threshold,
        high_risk_threshold=row.high_risk_threshold,
        low_risk_sla_hours=row.low_risk_sla_hours,
        medium_risk_sla_hours=row.medium_risk_sla_hours,
        high_risk_sla_hours=row.high_risk_sla_hours,
        critical_risk_sla_hours=row.critical_risk_sla_hours,
    )


class RiskAssessmentService:
    """SQL-backed risk assessor and approval settings store."""

    def __init__(self, db: Session):
        self.db = db

    def assess_risk(self, data: RiskAssessmentInput) -> RiskAssessmentResult:
        """Score an artifact and derive its approval requirements."""
        settings = self.get_project_settings(data.project_id)

        type_score = artifact_type_score(data.artifact_type)
        scope = scope_score(data.files_affected)
        confidence = confidence_score(data.ai_confidence_score)
        history = self.historical_rejection_score(
            data.project_id, data.artifact_type, data.source_agent
        )

        score = weighted_score(type_score, scope, confidence, history)
        level = level_for_score(score, settings)
        decision = auto_approve.evaluate(level, data.ai_confidence_score, settings)

        requirements = ApprovalRequirements(
            **DEFAULT_REQUIREMENTS[level],
            can_auto_approve=decision.approved,
            auto_approve_reason=decision.reason if decision.approved else None,
        )
        factors = {
            "artifact_type_score": type_score,
            "scope_score": scope,
            "confidence_score": confidence,
            "historical_rejection_score": history,
            "details": {
                "artifact_type": ArtifactType(data.artifact_type).value,
                "files_affected": data.files_affected,
                "ai_confidence": data.ai_confidence_score,
                "historical_rejection_rate": history if history > 0 else None,
            },
        }

        logger.info(
            "Risk assessment completed",
            project_id=data.project_id,
            artifact_type=ArtifactType(data.artifact_type).value,
            risk_score=score,
            risk_level=level.value,
        )
        return RiskAssessmentResult(
            risk_score=score,
            risk_level=level,
            risk_factors=factors,
            approval_requirements=requirements,
        )

    def historical_rejection_score(
        self,
        project_id: str,
        artifact_type: Union[ArtifactType, str],
        source_agent: str,
    ) -> float:
        """Rejection percentage among decided artifacts from the same source."""
        since = utc_now() - timedelta(days=HISTORY_WINDOW_DAYS)
        base = self.db.query(func.count(ArtifactModel.id)).filter(
            ArtifactModel.project_id == project_id,
            ArtifactModel.type == ArtifactType(artifact_type).value,
            ArtifactModel.source_agent == source_agent,
            ArtifactModel.created_at >= since,
        )
        decided = base.filter(
            ArtifactModel.state.in_(
                [ArtifactState.APPROVED.value, ArtifactState.REJECTED.value]
            )
        ).scalar()
        if not decided:
            return 0.0
        rejected = base.filter(
            ArtifactModel.state == ArtifactState.REJECTED.value
        ).scalar()
        return min(100.0, rejected / decided * 100)

    def get_stored_settings(self, project_id: str) -> Optional[ApprovalSettingsModel]:
        return (
            self.db.query(ApprovalSettingsModel)
            .filter(ApprovalSettingsModel.project_id == project_id)
            .first()
        )

    def get_project_settings(self, project_id: str) -> ProjectApprovalSettings:
        """Stored settings for a project, or configured defaults."""
        row = self.get_stored_settings(project_id)
        if row is None:
            return default_project_settings()
        return _settings_from_row(row)

    def update_project_settings(
        self, project_id: str, update: ApprovalSettingsUpdate
    ) -> ProjectApprovalSettings:
        """Validate and upsert a project's approval settings.

        Raises:
            NotFoundError: the project does not exist
            ValidationError: thresholds are out of order or out of range
        """
        if self.db.get(ProjectModel, project_id) is None:
            raise NotFoundError("Project", project_id)

        current = self.get_project_settings(project_id)
        merged = current.model_copy(update=update.model_dump(exclude_unset=True, exclude_none=True))

        low = merged.low_risk_threshold
        medium = merged.medium_risk_threshold
        high = merged.high_risk_threshold
        if low >= medium or medium >= high:
            raise ValidationError(
                "Risk thresholds must be in ascending order: low < medium < high",
                details={"low": low, "medium": medium, "high": high},
            )
        if low < 0 or high > 100:
            raise ValidationError("Risk thresholds must be between 0 and 100")

        values = merged.model_dump()
        values["auto_approve_max_risk"] = RiskLevel(values["auto_approve_max_risk"]).value

        with unit_of_work(self.db):
            row = self.get_stored_settings(project_id)
            if row is None:
                row = ApprovalSettingsModel(project_id=project_id)
                self.db.add(row)
            for key, value in values.items():
                setattr(row, key, value)

        logger.info("Approval settings updated", project_id=project_id)
        return merged
