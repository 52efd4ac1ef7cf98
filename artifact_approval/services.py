"""
Approval workflow coordinator.

``ApprovalService`` drives every artifact operation. Each public mutating
method is one unit of work: guards are checked before anything is written,
state changes are compare-and-set updates on the expected current state, and
any exception (guard violation, collaborator failure, database error) rolls
the whole operation back and propagates unchanged.

Usage:
    service = ApprovalService(db)
    artifact = service.create(ArtifactCreate(...))
    service.submit_for_review(artifact.id, "user-1")
"""

from typing import Any, Dict, List, Optional, Sequence, Union

import structlog
from sqlalchemy import and_, case, delete, desc, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .collaborators import ProjectLookup, RiskAssessor, SLATracker
from .db.base import unit_of_work
from .db.models import (
    ApprovalFeedbackModel,
    ApprovalStepModel,
    ApprovalWorkflowModel,
    ArtifactHistoryModel,
    ArtifactModel,
)
from .enums import (
    ArtifactState,
    ArtifactType,
    HistoryAction,
    RiskLevel,
    StepStatus,
    WorkflowEvent,
)
from .errors import NotFoundError, ValidationError
from .feedback import FeedbackStore
from .history import HistoryRecorder
from .pagination import PageResult, paginate
from .policy import auto_approve
from .primitives import generate_ulid, utc_now
from .projects import ProjectService
from .risk import RiskAssessmentService, count_files_affected
from .schemas import (
    ArtifactCreate,
    ArtifactUpdate,
    FeedbackCreate,
    ProjectApprovalSettings,
    RiskAssessmentInput,
)
from .sla import SLAService
from .state_machine import DELETABLE_STATES, REVIEW_QUEUE_STATES, ArtifactStateMachine

logger = structlog.get_logger()

# Higher sorts first in the review queue
RISK_PRIORITY = case(
    {level.value: level.rank for level in RiskLevel},
    value=ArtifactModel.risk_level,
    else_=0,
)

_PATCHABLE_NON_NULL = ("title", "content", "type")


class ApprovalService:
    """Coordinates artifacts, workflows, steps, history and feedback."""

    def __init__(
        self,
        db: Session,
        risk_assessor: Optional[RiskAssessor] = None,
        sla_tracker: Optional[SLATracker] = None,
        project_lookup: Optional[ProjectLookup] = None,
        state_machine: Optional[ArtifactStateMachine] = None,
        history: Optional[HistoryRecorder] = None,
        feedback_store: Optional[FeedbackStore] = None,
    ):
        self.db = db
        self.risk = risk_assessor or RiskAssessmentService(db)
        self.sla = sla_tracker or SLAService(db)
        self.projects = project_lookup or ProjectService(db)
        self.state_machine = state_machine or ArtifactStateMachine.from_settings()
        self.history = history or HistoryRecorder(db)
        self.feedback = feedback_store or FeedbackStore(db)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def create(self, data: ArtifactCreate) -> ArtifactModel:
        """Create a draft artifact and its approval workflow.

        Raises:
            NotFoundError: the project does not exist
        """
        with unit_of_work(self.db):
            if self.projects.find_by_id(data.project_id) is None:
                raise NotFoundError("Project", data.project_id)

            assessment = self.risk.assess_risk(
                RiskAssessmentInput(
                    project_id=data.project_id,
                    artifact_type=data.type,
                    source_agent=data.source_agent,
                    ai_confidence_score=data.ai_confidence_score,
                    files_affected=count_files_affected(data.content),
                )
            )
            requirements = assessment.approval_requirements
            now = utc_now()

            artifact = ArtifactModel(
                id=generate_ulid(),
                project_id=data.project_id,
                type=data.type.value,
                state=ArtifactState.DRAFT.value,
                risk_level=RiskLevel(assessment.risk_level).value,
                risk_score=assessment.risk_score,
                risk_factors=assessment.risk_factors,
                ai_confidence_score=data.ai_confidence_score,
                source_agent=data.source_agent,
                created_by_id=data.created_by_id,
                title=data.title,
                description=data.description,
                content=data.content,
                version=1,
                created_at=now,
                updated_at=now,
            )
            self.db.add(artifact)
            self.db.flush()
            self.db.add(
                ApprovalWorkflowModel(
                    id=generate_ulid(),
                    artifact_id=artifact.id,
                    required_approvals=requirements.required_approvals,
                    requires_admin=requirements.requires_admin,
                    requires_lead=requirements.requires_lead,
                    started_at=now,
                )
            )
            self.db.flush()
            self.history.record(
                artifact.id,
                None,
                ArtifactState.DRAFT,
                HistoryAction.CREATED,
                data.created_by_id,
            )
            artifact_id = artifact.id

        logger.info(
            "Artifact created",
            artifact_id=artifact_id,
            project_id=data.project_id,
            risk_level=RiskLevel(assessment.risk_level).value,
            required_approvals=requirements.required_approvals,
        )
        return self.find_by_id(artifact_id)

    def submit_for_review(
        self,
        artifact_id: str,
        user_id: str,
        settings: Optional[ProjectApprovalSettings] = None,
    ) -> ArtifactModel:
        """Submit a draft for review, auto-approving it when policy allows.

        Args:
            artifact_id: Draft to submit
            user_id: Who submits it
            settings: Project approval settings; resolved through the risk
                assessor when not supplied
        """
        with unit_of_work(self.db):
            artifact = self._get_artifact(artifact_id)
            from_state = ArtifactState(artifact.state)
            self.state_machine.transition(from_state, WorkflowEvent.SUBMIT)
            workflow = self._get_workflow(artifact)

            if settings is None:
                settings = self.risk.get_project_settings(artifact.project_id)
            decision = auto_approve.evaluate(
                artifact.risk_level, artifact.ai_confidence_score, settings
            )
            now = utc_now()

            if decision.approved:
                target = self.state_machine.transition(
                    from_state, WorkflowEvent.AUTO_APPROVE
                )
                workflow.auto_approved = True
                workflow.auto_approve_reason = decision.reason
                workflow.current_approvals = workflow.required_approvals
                workflow.completed_at = now
                self._compare_and_set_state(
                    artifact, from_state, target, approved_at=now
                )
                self.history.record(
                    artifact_id,
                    from_state,
                    target,
                    HistoryAction.AUTO_APPROVED,
                    user_id,
                    decision.reason,
                )
                action = HistoryAction.AUTO_APPROVED
            else:
                target = self.state_machine.transition(from_state, WorkflowEvent.SUBMIT)
                self._compare_and_set_state(
                    artifact, from_state, target, submitted_at=now
                )
                self.sla.create_sla_tracking(artifact_id)
                self.history.record(
                    artifact_id, from_state, target, HistoryAction.SUBMITTED, user_id
                )
                action = HistoryAction.SUBMITTED

        logger.info(
            "Artifact submitted",
            artifact_id=artifact_id,
            user_id=user_id,
            outcome=action.value,
            decision_code=decision.code,
        )
        return self.find_by_id(artifact_id)

    def claim_review(self, artifact_id: str, user_id: str) -> ArtifactModel:
        """Assign a pending artifact to a reviewer.

        Raises:
            ValidationError: wrong state, empty reviewer, artifact already
                claimed, or the reviewer already approved this workflow
        """
        if not user_id or not user_id.strip():
            raise ValidationError("A reviewer id is required to claim an artifact")

        with unit_of_work(self.db):
            artifact = self._get_artifact(artifact_id)
            from_state = ArtifactState(artifact.state)
            target = self.state_machine.transition(from_state, WorkflowEvent.CLAIM)
            workflow = self._get_workflow(artifact)

            active = self._active_step(workflow.id)
            if active is not None:
                raise ValidationError(
                    "Artifact is already claimed",
                    details={"assigned_to_id": active.assigned_to_id},
                )
            if self._has_approved(workflow.id, user_id):
                raise ValidationError(
                    "Reviewer has already approved this artifact; "
                    "another reviewer must claim it",
                    details={"user_id": user_id},
                )

            step_order = workflow.current_approvals + 1
            self._compare_and_set_state(artifact, from_state, target)
            self.db.add(
                ApprovalStepModel(
                    id=generate_ulid(),
                    workflow_id=workflow.id,
                    step_order=step_order,
                    assigned_to_id=user_id,
                    status=StepStatus.IN_PROGRESS.value,
                    created_at=utc_now(),
                )
            )
            try:
                self.db.flush()
            except IntegrityError as exc:
                raise ValidationError("Artifact is already claimed") from exc

            self.history.record(
                artifact_id, from_state, target, HistoryAction.CLAIMED, user_id
            )

        logger.info("Artifact claimed for review", artifact_id=artifact_id, user_id=user_id)
        return self.find_by_id(artifact_id)

    def approve(
        self, artifact_id: str, user_id: str, comment: Optional[str] = None
    ) -> ArtifactModel:
        """Record the active reviewer's approval.

        The artifact is approved once the quota is met; until then it goes
        back to ``pending_review`` for another reviewer.
        """
        with unit_of_work(self.db):
            artifact = self._get_artifact(artifact_id)
            from_state = ArtifactState(artifact.state)
            self.state_machine.transition(from_state, WorkflowEvent.APPROVE)
            workflow = self._get_workflow(artifact)
            step = self._require_step_for(workflow, user_id)
            now = utc_now()

            self._resolve_step(step, user_id, StepStatus.APPROVED, comment, now)

            result = self.db.execute(
                update(ApprovalWorkflowModel)
                .where(
                    ApprovalWorkflowModel.id == workflow.id,
                    ApprovalWorkflowModel.current_approvals
                    < ApprovalWorkflowModel.required_approvals,
                )
                .values(current_approvals=ApprovalWorkflowModel.current_approvals + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ValidationError(
                    "Approval quota already met for this artifact",
                    details={"artifact_id": artifact_id},
                )
            self.db.refresh(workflow)

            if workflow.current_approvals >= workflow.required_approvals:
                target = self.state_machine.transition(from_state, WorkflowEvent.APPROVE)
                self._compare_and_set_state(
                    artifact, from_state, target, approved_at=now
                )
                workflow.completed_at = now
                self.sla.complete_sla_tracking(artifact_id)
                action = HistoryAction.APPROVED
            else:
                target = self.state_machine.transition(
                    from_state, WorkflowEvent.PARTIAL_APPROVE
                )
                self._compare_and_set_state(artifact, from_state, target)
                action = HistoryAction.APPROVAL_STEP_COMPLETED

            self.history.record(artifact_id, from_state, target, action, user_id, comment)
            current, required = workflow.current_approvals, workflow.required_approvals

        logger.info(
            "Approval recorded",
            artifact_id=artifact_id,
            user_id=user_id,
            current_approvals=current,
            required_approvals=required,
            state=target.value,
        )
        return self.find_by_id(artifact_id)

    def reject(
        self,
        artifact_id: str,
        user_id: str,
        comment: Optional[str] = None,
        feedback: Optional[Sequence[FeedbackCreate]] = None,
    ) -> ArtifactModel:
        """Reject the artifact, storing every feedback item verbatim."""
        feedback = list(feedback or [])

        with unit_of_work(self.db):
            artifact = self._get_artifact(artifact_id)
            from_state = ArtifactState(artifact.state)
            target = self.state_machine.transition(from_state, WorkflowEvent.REJECT)
            workflow = self._get_workflow(artifact)
            step = self._require_step_for(workflow, user_id)
            now = utc_now()

            self._resolve_step(step, user_id, StepStatus.REJECTED, comment, now)
            if feedback:
                self.feedback.add_many(artifact_id, feedback, created_by_id=user_id)
            self._compare_and_set_state(artifact, from_state, target, rejected_at=now)
            workflow.completed_at = now
            self.sla.complete_sla_tracking(artifact_id)
            self.history.record(
                artifact_id, from_state, target, HistoryAction.REJECTED, user_id, comment
            )

        logger.info(
            "Artifact rejected",
            artifact_id=artifact_id,
            user_id=user_id,
            feedback_count=len(feedback),
        )
        return self.find_by_id(artifact_id)

    def revise(
        self, artifact_id: str, user_id: str, content: Dict[str, Any]
    ) -> ArtifactModel:
        """Supersede a rejected artifact with a new draft version.

        Risk fields and approval requirements carry over; the old version is
        archived, never deleted.
        """
        with unit_of_work(self.db):
            old = self._get_artifact(artifact_id)
            from_state = ArtifactState(old.state)
            target = self.state_machine.transition(from_state, WorkflowEvent.REVISE)
            old_workflow = self._get_workflow(old)
            now = utc_now()

            new = ArtifactModel(
                id=generate_ulid(),
                project_id=old.project_id,
                type=old.type,
                state=ArtifactState.DRAFT.value,
                risk_level=old.risk_level,
                risk_score=old.risk_score,
                risk_factors=old.risk_factors,
                ai_confidence_score=old.ai_confidence_score,
                source_agent=old.source_agent,
                created_by_id=user_id,
                title=old.title,
                description=old.description,
                content=content,
                version=old.version + 1,
                previous_version_id=old.id,
                created_at=now,
                updated_at=now,
            )
            new_workflow = ApprovalWorkflowModel(
                id=generate_ulid(),
                artifact_id=new.id,
                required_approvals=old_workflow.required_approvals,
                requires_admin=old_workflow.requires_admin,
                requires_lead=old_workflow.requires_lead,
                started_at=now,
            )

            self._compare_and_set_state(old, from_state, target, archived_at=now)
            self.db.add(new)
            self.db.flush()
            self.db.add(new_workflow)
            self.db.flush()

            self.history.record(
                artifact_id,
                from_state,
                target,
                HistoryAction.ARCHIVED,
                user_id,
                f"Superseded by version {new.version}",
            )
            self.history.record(
                new.id,
                None,
                ArtifactState.DRAFT,
                HistoryAction.REVISED,
                user_id,
                f"Revision of version {new.version - 1}",
            )
            new_id, new_version = new.id, new.version

        logger.info(
            "Artifact revised",
            artifact_id=artifact_id,
            new_artifact_id=new_id,
            version=new_version,
            user_id=user_id,
        )
        return self.find_by_id(new_id)

    def archive(self, artifact_id: str, user_id: str) -> ArtifactModel:
        """Archive an artifact from one of the archivable states."""
        with unit_of_work(self.db):
            artifact = self._get_artifact(artifact_id)
            from_state = ArtifactState(artifact.state)
            target = self.state_machine.transition(from_state, WorkflowEvent.ARCHIVE)
            self._compare_and_set_state(
                artifact, from_state, target, archived_at=utc_now()
            )
            self.history.record(
                artifact_id, from_state, target, HistoryAction.ARCHIVED, user_id
            )

        logger.info("Artifact archived", artifact_id=artifact_id, user_id=user_id)
        return self.find_by_id(artifact_id)

    def delete(self, artifact_id: str, user_id: Optional[str] = None) -> None:
        """Permanently remove a draft or archived artifact.

        Workflow, steps, history, feedback and SLA rows go with it through
        foreign-key cascades.
        """
        with unit_of_work(self.db):
            artifact = self._get_artifact(artifact_id)
            from_state = ArtifactState(artifact.state)
            self.state_machine.transition(from_state, WorkflowEvent.DELETE)
            self.db.expunge(artifact)

            result = self.db.execute(
                delete(ArtifactModel)
                .where(
                    ArtifactModel.id == artifact_id,
                    ArtifactModel.state.in_([s.value for s in DELETABLE_STATES]),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ValidationError(
                    f"Artifact '{artifact_id}' changed concurrently and was not deleted",
                    details={"artifact_id": artifact_id},
                )

        logger.info(
            "Artifact deleted",
            artifact_id=artifact_id,
            user_id=user_id,
            state=from_state.value,
        )

    def update(
        self, artifact_id: str, patch: ArtifactUpdate, user_id: Optional[str] = None
    ) -> ArtifactModel:
        """Patch title, description, content or type of a draft."""
        changes = {
            key: value
            for key, value in patch.model_dump(exclude_unset=True).items()
            if value is not None or key not in _PATCHABLE_NON_NULL
        }
        if "type" in changes:
            changes["type"] = ArtifactType(changes["type"]).value

        with unit_of_work(self.db):
            artifact = self._get_artifact(artifact_id)
            from_state = ArtifactState(artifact.state)
            target = self.state_machine.transition(from_state, WorkflowEvent.UPDATE)
            if changes:
                self._compare_and_set_state(artifact, from_state, target, **changes)

        logger.info(
            "Artifact updated",
            artifact_id=artifact_id,
            user_id=user_id,
            fields=sorted(changes),
        )
        return self.find_by_id(artifact_id)

    # =========================================================================
    # Reads
    # =========================================================================

    def find_by_id(self, artifact_id: str) -> ArtifactModel:
        """Get an artifact by ID.

        Raises:
            NotFoundError: no such artifact
        """
        return self._get_artifact(artifact_id)

    def find_all(
        self,
        page: int = 1,
        limit: Optional[int] = None,
        project_id: Optional[str] = None,
        type: Optional[Union[ArtifactType, str]] = None,
        state: Optional[Union[ArtifactState, str]] = None,
        risk_level: Optional[Union[RiskLevel, str]] = None,
        created_by_id: Optional[str] = None,
        assigned_to_id: Optional[str] = None,
    ) -> PageResult:
        """List artifacts with optional filters, newest first."""
        query = self.db.query(ArtifactModel)

        if project_id:
            query = query.filter(ArtifactModel.project_id == project_id)
        if type:
            query = query.filter(ArtifactModel.type == ArtifactType(type).value)
        if state:
            query = query.filter(ArtifactModel.state == ArtifactState(state).value)
        if risk_level:
            query = query.filter(ArtifactModel.risk_level == RiskLevel(risk_level).value)
        if created_by_id:
            query = query.filter(ArtifactModel.created_by_id == created_by_id)
        if assigned_to_id:
            query = query.filter(self._assigned_to(assigned_to_id))

        query = query.order_by(desc(ArtifactModel.created_at), desc(ArtifactModel.id))
        return paginate(query, page, limit)

    def get_review_queue(
        self,
        page: int = 1,
        limit: Optional[int] = None,
        project_id: Optional[str] = None,
        type: Optional[Union[ArtifactType, str]] = None,
        risk_level: Optional[Union[RiskLevel, str]] = None,
        user_id: Optional[str] = None,
    ) -> PageResult:
        """Artifacts awaiting or under review: riskiest first, then oldest submission."""
        query = self.db.query(ArtifactModel).filter(
            ArtifactModel.state.in_([s.value for s in REVIEW_QUEUE_STATES])
        )

        if project_id:
            query = query.filter(ArtifactModel.project_id == project_id)
        if type:
            query = query.filter(ArtifactModel.type == ArtifactType(type).value)
        if risk_level:
            query = query.filter(ArtifactModel.risk_level == RiskLevel(risk_level).value)
        if user_id:
            query = query.filter(self._assigned_to(user_id))

        query = query.order_by(
            desc(RISK_PRIORITY),
            ArtifactModel.submitted_at.asc(),
            ArtifactModel.id.asc(),
        )
        return paginate(query, page, limit)

    def get_history(
        self, artifact_id: str, limit: int = 100, offset: int = 0
    ) -> List[ArtifactHistoryModel]:
        """History entries for an artifact, newest first."""
        self._get_artifact(artifact_id)
        return self.history.list_for_artifact(artifact_id, limit=limit, offset=offset)

    def get_feedback(self, artifact_id: str) -> List[ApprovalFeedbackModel]:
        """Rejection feedback for an artifact, newest first."""
        self._get_artifact(artifact_id)
        return self.feedback.list_for_artifact(artifact_id)

    # =========================================================================
    # Internals
    # =========================================================================

    def _get_artifact(self, artifact_id: str) -> ArtifactModel:
        artifact = self.db.get(ArtifactModel, artifact_id)
        if artifact is None:
            raise NotFoundError("Artifact", artifact_id)
        return artifact

    def _get_workflow(self, artifact: ArtifactModel) -> ApprovalWorkflowModel:
        workflow = (
            self.db.query(ApprovalWorkflowModel)
            .filter(ApprovalWorkflowModel.artifact_id == artifact.id)
            .first()
        )
        if workflow is None:
            raise NotFoundError("ApprovalWorkflow", artifact.id)
        return workflow

    def _active_step(self, workflow_id: str) -> Optional[ApprovalStepModel]:
        return (
            self.db.query(ApprovalStepModel)
            .filter(
                ApprovalStepModel.workflow_id == workflow_id,
                ApprovalStepModel.status == StepStatus.IN_PROGRESS.value,
            )
            .first()
        )

    def _has_approved(self, workflow_id: str, user_id: str) -> bool:
        return (
            self.db.query(ApprovalStepModel.id)
            .filter(
                ApprovalStepModel.workflow_id == workflow_id,
                ApprovalStepModel.assigned_to_id == user_id,
                ApprovalStepModel.status == StepStatus.APPROVED.value,
            )
            .first()
            is not None
        )

    def _require_step_for(
        self, workflow: ApprovalWorkflowModel, user_id: str
    ) -> ApprovalStepModel:
        step = self._active_step(workflow.id)
        if step is None:
            raise NotFoundError("ApprovalStep")
        if step.assigned_to_id != user_id:
            raise ValidationError(
                "Artifact is claimed by another reviewer",
                details={"assigned_to_id": step.assigned_to_id, "user_id": user_id},
            )
        return step

    def _resolve_step(
        self,
        step: ApprovalStepModel,
        user_id: str,
        status: StepStatus,
        comment: Optional[str],
        now,
    ) -> None:
        result = self.db.execute(
            update(ApprovalStepModel)
            .where(
                ApprovalStepModel.id == step.id,
                ApprovalStepModel.status == StepStatus.IN_PROGRESS.value,
                ApprovalStepModel.assigned_to_id == user_id,
            )
            .values(status=status.value, comment=comment, action_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ValidationError(
                "Review step was resolved concurrently",
                details={"step_id": step.id},
            )
        self.db.expire(step)

    def _compare_and_set_state(
        self,
        artifact: ArtifactModel,
        expected: ArtifactState,
        new: ArtifactState,
        **values: Any,
    ) -> None:
        """Move ``artifact`` from ``expected`` to ``new`` or fail if it moved meanwhile."""
        self.db.flush()
        result = self.db.execute(
            update(ArtifactModel)
            .where(
                ArtifactModel.id == artifact.id,
                ArtifactModel.state == expected.value,
            )
            .values(state=new.value, updated_at=utc_now(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ValidationError(
                f"Artifact '{artifact.id}' changed concurrently; "
                f"expected state '{expected.value}'",
                details={"artifact_id": artifact.id, "expected_state": expected.value},
            )
        self.db.expire(artifact)

    @staticmethod
    def _assigned_to(user_id: str):
        return ArtifactModel.workflow.has(
            ApprovalWorkflowModel.steps.any(
                and_(
                    ApprovalStepModel.assigned_to_id == user_id,
                    ApprovalStepModel.status == StepStatus.IN_PROGRESS.value,
                )
            )
        )
