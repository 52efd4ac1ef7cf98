"""
Artifact history recorder.

Append-only log of every state transition. Entries are added to the caller's
session and flushed, never committed here: they land in the same unit of work
as the transition they describe, or not at all.
"""

from typing import List, Optional, Union

from sqlalchemy import desc
from sqlalchemy.orm import Session

from .db.models import ArtifactHistoryModel
from .enums import ArtifactState, HistoryAction
from .primitives import utc_now


def _value(member: Union[ArtifactState, HistoryAction, str, None]) -> Optional[str]:
    if member is None:
        return None
    return member.value if hasattr(member, "value") else str(member)


class HistoryRecorder:
    """Records and queries ArtifactHistory entries.

    Usage:
        history = HistoryRecorder(db_session)
        history.record(artifact.id, None, ArtifactState.DRAFT, HistoryAction.CREATED, "user-1")
    """

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        artifact_id: str,
        from_state: Optional[ArtifactState],
        to_state: ArtifactState,
        action: HistoryAction,
        actor_id: Optional[str],
        comment: Optional[str] = None,
    ) -> ArtifactHistoryModel:
        """Append one history entry.

        Args:
            artifact_id: Artifact the transition applies to
            from_state: State before the transition (None on creation)
            to_state: State after the transition
            action: Verb describing the transition
            actor_id: Who performed it
            comment: Optional reviewer comment or system note

        Returns:
            The flushed ArtifactHistoryModel
        """
        entry = ArtifactHistoryModel(
            artifact_id=artifact_id,
            from_state=_value(from_state),
            to_state=_value(to_state),
            action=_value(action),
            actor_id=actor_id,
            comment=comment,
            action_at=utc_now(),
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def list_for_artifact(
        self,
        artifact_id: str,
        limit: int = 100,
        offset: int = 0,
    ) -> List[ArtifactHistoryModel]:
        """Get history for an artifact, newest first."""
        return (
            self.db.query(ArtifactHistoryModel)
            .filter(ArtifactHistoryModel.artifact_id == artifact_id)
            .order_by(desc(ArtifactHistoryModel.action_at), desc(ArtifactHistoryModel.id))
            .offset(offset)
            .limit(limit)
            .all()
        )

    def query_by_actor(
        self,
        actor_id: str,
        action: Optional[HistoryAction] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[ArtifactHistoryModel]:
        """Get entries recorded for one actor across artifacts, newest first."""
        query = self.db.query(ArtifactHistoryModel).filter(
            ArtifactHistoryModel.actor_id == actor_id
        )
        if action:
            query = query.filter(ArtifactHistoryModel.action == _value(action))

        return (
            query.order_by(desc(ArtifactHistoryModel.action_at), desc(ArtifactHistoryModel.id))
            .offset(offset)
            .limit(limit)
            .all()
        )
