"""Storage for structured rejection feedback."""

from typing import List, Optional, Sequence

from sqlalchemy import desc
from sqlalchemy.orm import Session

from .db.models import ApprovalFeedbackModel
from .primitives import generate_ulid, utc_now
from .schemas import FeedbackCreate


class FeedbackStore:
    """Persists ApprovalFeedback rows inside the caller's unit of work."""

    def __init__(self, db: Session):
        self.db = db

    def add_many(
        self,
        artifact_id: str,
        items: Sequence[FeedbackCreate],
        created_by_id: Optional[str] = None,
    ) -> List[ApprovalFeedbackModel]:
        """Insert every item verbatim, one row each."""
        now = utc_now()
        rows = [
            ApprovalFeedbackModel(
                id=generate_ulid(),
                artifact_id=artifact_id,
                category=item.category.value,
                severity=item.severity.value,
                description=item.description,
                suggested_fix=item.suggested_fix,
                affected_section=item.affected_section,
                corrected_content=item.corrected_content,
                created_by_id=created_by_id,
                created_at=now,
            )
            for item in items
        ]
        self.db.add_all(rows)
        self.db.flush()
        return rows

    def list_for_artifact(self, artifact_id: str) -> List[ApprovalFeedbackModel]:
        """Get feedback for an artifact, newest first."""
        return (
            self.db.query(ApprovalFeedbackModel)
            .filter(ApprovalFeedbackModel.artifact_id == artifact_id)
            .order_by(desc(ApprovalFeedbackModel.created_at))
            .all()
        )
