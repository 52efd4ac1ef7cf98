"""
Default SLA tracker.

Opens a review deadline window when an artifact enters review and closes it
when the artifact is approved or rejected. Deadlines come from the project's
approval settings (hours per risk level). Status is derived from elapsed
time on read; nothing here sends reminders or escalates. Breach,
approaching and compliance reports read the same windows.
"""

import math
from datetime import datetime, timedelta
from typing import Dict, Optional

import structlog
from sqlalchemy.orm import Query, Session

from .config import get_settings
from .db.models import ApprovalSettingsModel, ArtifactModel, SLATrackingModel
from .enums import RiskLevel, SLAStatus
from .errors import DependencyError, NotFoundError, ValidationError
from .pagination import PageResult, paginate, resolve_page
from .primitives import ensure_utc, utc_now
from .schemas import SLAMetrics, SLAStatusResult

logger = structlog.get_logger()

DEFAULT_SLA_HOURS: Dict[RiskLevel, int] = {
    RiskLevel.LOW: 1,
    RiskLevel.MEDIUM: 4,
    RiskLevel.HIGH: 24,
    RiskLevel.CRITICAL: 48,
}


class SLAService:
    """SQL-backed SLA window bookkeeping."""

    def __init__(self, db: Session, warning_threshold: Optional[int] = None):
        self.db = db
        self.warning_threshold = (
            warning_threshold
            if warning_threshold is not None
            else get_settings().sla_warning_threshold
        )

    def deadline_hours(self, project_id: str, risk_level: RiskLevel) -> int:
        """SLA budget for a risk level, from project settings or defaults."""
        risk_level = RiskLevel(risk_level)
        row = (
            self.db.query(ApprovalSettingsModel)
            .filter(ApprovalSettingsModel.project_id == project_id)
            .first()
        )
        if row is None:
            return DEFAULT_SLA_HOURS[risk_level]
        return row.sla_hours_for(risk_level.value)

    def create_sla_tracking(self, artifact_id: str) -> SLATrackingModel:
        """Open (or reopen) the deadline window for an artifact.

        Flushes but does not commit; the caller owns the transaction.

        Raises:
            DependencyError: the artifact does not exist
        """
        artifact = self.db.get(ArtifactModel, artifact_id)
        if artifact is None:
            raise DependencyError(
                "sla", f"cannot open SLA window, artifact '{artifact_id}' not found"
            )

        risk_level = RiskLevel(artifact.risk_level)
        hours = self.deadline_hours(artifact.project_id, risk_level)
        now = utc_now()

        tracking = self._get(artifact_id)
        if tracking is None:
            tracking = SLATrackingModel(artifact_id=artifact_id)
            self.db.add(tracking)
        tracking.risk_level = risk_level.value
        tracking.deadline_hours = hours
        tracking.deadline = now + timedelta(hours=hours)
        tracking.status = SLAStatus.WITHIN_SLA.value
        tracking.warning_threshold = self.warning_threshold
        tracking.started_at = now
        tracking.completed_at = None
        self.db.flush()

        logger.info(
            "SLA tracking created",
            artifact_id=artifact_id,
            risk_level=risk_level.value,
            deadline_hours=hours,
        )
        return tracking

    def complete_sla_tracking(self, artifact_id: str) -> Optional[SLATrackingModel]:
        """Close the window. No-op when none was opened (auto-approved)."""
        tracking = self._get(artifact_id)
        if tracking is None:
            return None

        tracking.status = SLAStatus.COMPLETED.value
        tracking.completed_at = utc_now()
        self.db.flush()

        logger.info("SLA tracking completed", artifact_id=artifact_id)
        return tracking

    def get_sla_status(
        self, artifact_id: str, now: Optional[datetime] = None
    ) -> SLAStatusResult:
        """Compute where an artifact stands against its deadline.

        A changed derived status is written back to the row and flushed;
        the caller owns the commit.

        Raises:
            NotFoundError: no window exists for the artifact
        """
        tracking = self._get(artifact_id)
        if tracking is None:
            raise NotFoundError("SLATracking", artifact_id)

        now = ensure_utc(now) or utc_now()
        deadline = ensure_utc(tracking.deadline)
        completed_at = ensure_utc(tracking.completed_at)
        reference = completed_at or now

        remaining = (deadline - reference).total_seconds()
        percentage = _percentage_elapsed(tracking, reference)
        is_overdue = remaining < 0
        is_approaching = not is_overdue and percentage >= tracking.warning_threshold

        if completed_at is not None:
            status = SLAStatus.COMPLETED
        elif is_overdue:
            status = SLAStatus.BREACHED
        elif is_approaching:
            status = SLAStatus.APPROACHING_SLA
        else:
            status = SLAStatus.WITHIN_SLA

        if status.value != tracking.status:
            tracking.status = status.value
            self.db.flush()
            logger.info(
                "SLA status changed", artifact_id=artifact_id, status=status.value
            )

        return SLAStatusResult(
            artifact_id=artifact_id,
            status=status,
            deadline=deadline,
            deadline_hours=tracking.deadline_hours,
            percentage_elapsed=round(percentage),
            time_remaining_seconds=max(0.0, remaining),
            is_overdue=is_overdue,
            is_approaching=is_approaching,
        )

    def list_breached(
        self,
        project_id: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> PageResult:
        """Open windows whose deadline has passed, oldest deadline first."""
        now = ensure_utc(now) or utc_now()
        query = self._open_windows(project_id).filter(SLATrackingModel.deadline < now)
        return paginate(
            query.order_by(SLATrackingModel.deadline.asc(), SLATrackingModel.id.asc()),
            page,
            limit,
        )

    def list_approaching(
        self,
        project_id: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> PageResult:
        """Open windows at or past their warning threshold but not yet overdue.

        The threshold is stored per window, so the percentage check runs in
        Python over the open, not-yet-due rows before paging.
        """
        page, limit = resolve_page(page, limit)
        now = ensure_utc(now) or utc_now()
        candidates = (
            self._open_windows(project_id)
            .filter(SLATrackingModel.deadline >= now)
            .order_by(SLATrackingModel.deadline.asc(), SLATrackingModel.id.asc())
            .all()
        )
        approaching = [
            row
            for row in candidates
            if _percentage_elapsed(row, now) >= row.warning_threshold
        ]
        start = (page - 1) * limit
        return PageResult(
            data=approaching[start : start + limit],
            total=len(approaching),
            page=page,
            limit=limit,
        )

    def get_metrics(
        self, project_id: str, days: int = 30, now: Optional[datetime] = None
    ) -> SLAMetrics:
        """Deadline compliance for windows opened in the last ``days`` days.

        A window counts as breached when it closed after its deadline, or is
        still open past it. Resolution time covers closed windows only.
        """
        if days < 1:
            raise ValidationError("days must be >= 1", details={"days": days})

        now = ensure_utc(now) or utc_now()
        rows = (
            self.db.query(SLATrackingModel)
            .join(ArtifactModel, ArtifactModel.id == SLATrackingModel.artifact_id)
            .filter(
                ArtifactModel.project_id == project_id,
                SLATrackingModel.started_at >= now - timedelta(days=days),
            )
            .all()
        )

        total = len(rows)
        breached = 0
        resolution_seconds = []
        for row in rows:
            completed_at = ensure_utc(row.completed_at)
            if (completed_at or now) > ensure_utc(row.deadline):
                breached += 1
            if completed_at is not None:
                resolution_seconds.append(
                    (completed_at - ensure_utc(row.started_at)).total_seconds()
                )

        within_sla = total - breached
        return SLAMetrics(
            project_id=project_id,
            days=days,
            total=total,
            within_sla=within_sla,
            breached=breached,
            average_resolution_seconds=(
                sum(resolution_seconds) / len(resolution_seconds)
                if resolution_seconds
                else 0.0
            ),
            compliance_rate=(
                int(math.floor(within_sla / total * 100 + 0.5)) if total else 100
            ),
        )

    def _open_windows(self, project_id: Optional[str] = None) -> Query:
        query = self.db.query(SLATrackingModel).filter(
            SLATrackingModel.completed_at.is_(None)
        )
        if project_id:
            query = query.join(
                ArtifactModel, ArtifactModel.id == SLATrackingModel.artifact_id
            ).filter(ArtifactModel.project_id == project_id)
        return query

    def _get(self, artifact_id: str) -> Optional[SLATrackingModel]:
        return (
            self.db.query(SLATrackingModel)
            .filter(SLATrackingModel.artifact_id == artifact_id)
            .first()
        )


def _percentage_elapsed(tracking: SLATrackingModel, reference: datetime) -> float:
    """Share of the deadline budget used at ``reference``, clamped to 0..100."""
    total_seconds = tracking.deadline_hours * 3600
    remaining = (ensure_utc(tracking.deadline) - reference).total_seconds()
    return min(100.0, max(0.0, (total_seconds - remaining) / total_seconds * 100))
