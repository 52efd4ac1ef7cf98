"""
Tests for ApprovalService.

Covers the full lifecycle (create -> submit -> claim -> approve/reject ->
revise -> archive/delete), the guards on each step, and the guarantee that a
failed operation leaves nothing behind.
"""

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from artifact_approval.db.base import Base, create_db_engine
from artifact_approval.db.models import (
    ApprovalFeedbackModel,
    ApprovalStepModel,
    ApprovalWorkflowModel,
    ArtifactHistoryModel,
    ArtifactModel,
    SLATrackingModel,
)
from artifact_approval.enums import (
    ArtifactType,
    FeedbackCategory,
    FeedbackSeverity,
    RiskLevel,
)
from artifact_approval.errors import DependencyError, NotFoundError, ValidationError
from artifact_approval.primitives import generate_ulid
from artifact_approval.projects import ProjectService
from artifact_approval.schemas import ArtifactUpdate, FeedbackCreate
from artifact_approval.services import ApprovalService


def actions(service, artifact_id):
    return [h.action for h in service.get_history(artifact_id)]


def force_state(db_session, artifact_id, state):
    db_session.query(ArtifactModel).filter(ArtifactModel.id == artifact_id).update(
        {"state": state}
    )
    db_session.commit()


def feedback_item(**overrides):
    data = {
        "category": FeedbackCategory.ACCURACY,
        "severity": FeedbackSeverity.HIGH,
        "description": "Assertion checks the wrong status code",
        "suggested_fix": "Expect 401",
    }
    data.update(overrides)
    return FeedbackCreate(**data)


# =============================================================================
# Create
# =============================================================================


class TestCreate:
    def test_creates_draft_with_workflow(self, make_service, fake_risk, artifact_data):
        risk = fake_risk(risk_level=RiskLevel.HIGH, required_approvals=2, requires_lead=True)
        service = make_service(risk_assessor=risk)

        artifact = service.create(artifact_data())

        assert artifact.state == "draft"
        assert artifact.version == 1
        assert artifact.previous_version_id is None
        assert artifact.risk_level == "high"
        assert artifact.risk_score == 60
        assert artifact.workflow.required_approvals == 2
        assert artifact.workflow.current_approvals == 0
        assert artifact.workflow.requires_lead is True
        assert artifact.workflow.requires_admin is False
        assert actions(service, artifact.id) == ["created"]

    def test_passes_files_affected_to_assessor(self, make_service, fake_risk, artifact_data):
        risk = fake_risk()
        service = make_service(risk_assessor=risk)

        service.create(
            artifact_data(
                type=ArtifactType.SCRIPT,
                content={"scripts": ["a.sh", "b.sh", "c.sh"]},
            )
        )

        assert len(risk.assess_calls) == 1
        call = risk.assess_calls[0]
        assert call.files_affected == 3
        assert call.artifact_type == ArtifactType.SCRIPT
        assert call.source_agent == "testweaver"

    def test_unknown_project(self, make_service, fake_risk, artifact_data):
        risk = fake_risk()
        service = make_service(risk_assessor=risk)

        with pytest.raises(NotFoundError) as exc_info:
            service.create(artifact_data(project_id=generate_ulid()))

        assert exc_info.value.resource == "Project"
        assert risk.assess_calls == []

    def test_risk_failure_leaves_nothing(self, db_session, make_service, fake_risk, artifact_data):
        error = DependencyError("risk", "assessment service unavailable")
        service = make_service(risk_assessor=fake_risk(error=error))

        with pytest.raises(DependencyError) as exc_info:
            service.create(artifact_data())

        assert exc_info.value is error
        assert db_session.query(ArtifactModel).count() == 0
        assert db_session.query(ArtifactHistoryModel).count() == 0


# =============================================================================
# Submit
# =============================================================================


class TestSubmit:
    def test_low_risk_confident_artifact_is_auto_approved(
        self, make_service, fake_risk, fake_sla, artifact_data, project
    ):
        risk = fake_risk(risk_level=RiskLevel.LOW)
        sla = fake_sla()
        service = make_service(risk_assessor=risk, sla_tracker=sla)
        artifact = service.create(artifact_data(ai_confidence_score=95))

        artifact = service.submit_for_review(artifact.id, "author-1")

        assert artifact.state == "approved"
        assert artifact.approved_at is not None
        assert artifact.workflow.auto_approved is True
        assert "Auto-approved" in artifact.workflow.auto_approve_reason
        assert artifact.workflow.current_approvals == artifact.workflow.required_approvals
        assert artifact.workflow.completed_at is not None
        assert sla.created == []
        assert risk.settings_calls == [project.id]

        history = service.get_history(artifact.id)
        assert [h.action for h in history] == ["auto_approved", "created"]
        assert history[0].from_state == "draft"
        assert history[0].to_state == "approved"
        assert history[0].comment == artifact.workflow.auto_approve_reason

    def test_low_confidence_goes_to_review(self, make_service, fake_risk, fake_sla, artifact_data):
        sla = fake_sla()
        service = make_service(
            risk_assessor=fake_risk(risk_level=RiskLevel.LOW), sla_tracker=sla
        )
        artifact = service.create(artifact_data(ai_confidence_score=80))

        artifact = service.submit_for_review(artifact.id, "author-1")

        assert artifact.state == "pending_review"
        assert artifact.submitted_at is not None
        assert artifact.workflow.auto_approved is False
        assert sla.created == [artifact.id]
        assert actions(service, artifact.id) == ["submitted", "created"]

    def test_explicit_settings_skip_lookup(self, make_service, fake_risk, artifact_data):
        from artifact_approval.schemas import ProjectApprovalSettings

        risk = fake_risk(risk_level=RiskLevel.LOW)
        service = make_service(risk_assessor=risk)
        artifact = service.create(artifact_data(ai_confidence_score=99))

        artifact = service.submit_for_review(
            artifact.id,
            "author-1",
            settings=ProjectApprovalSettings(auto_approve_enabled=False),
        )

        assert artifact.state == "pending_review"
        assert risk.settings_calls == []

    def test_sla_failure_rolls_back(self, make_service, fake_sla, artifact_data):
        error = DependencyError("sla", "tracker unavailable")
        service = make_service(sla_tracker=fake_sla(create_error=error))
        artifact = service.create(artifact_data())

        with pytest.raises(DependencyError):
            service.submit_for_review(artifact.id, "author-1")

        artifact = service.find_by_id(artifact.id)
        assert artifact.state == "draft"
        assert artifact.submitted_at is None
        assert actions(service, artifact.id) == ["created"]

    def test_cannot_submit_twice(self, make_service, artifact_data):
        service = make_service()
        artifact = service.create(artifact_data())
        service.submit_for_review(artifact.id, "author-1")

        with pytest.raises(ValidationError):
            service.submit_for_review(artifact.id, "author-1")

        assert service.find_by_id(artifact.id).state == "pending_review"
        assert actions(service, artifact.id) == ["submitted", "created"]


# =============================================================================
# Claim / approve
# =============================================================================


class TestMultiReviewerApproval:
    def test_two_reviewers_needed(self, make_service, fake_risk, fake_sla, artifact_data):
        sla = fake_sla()
        service = make_service(
            risk_assessor=fake_risk(
                risk_level=RiskLevel.HIGH, required_approvals=2, requires_lead=True
            ),
            sla_tracker=sla,
        )
        artifact = service.create(artifact_data())
        service.submit_for_review(artifact.id, "author-1")

        artifact = service.claim_review(artifact.id, "lead-a")
        assert artifact.state == "in_review"

        artifact = service.approve(artifact.id, "lead-a", comment="Looks right")
        assert artifact.state == "pending_review"
        assert artifact.workflow.current_approvals == 1
        assert artifact.approved_at is None
        assert sla.completed == []

        # The first approver cannot take the second slot
        with pytest.raises(ValidationError):
            service.claim_review(artifact.id, "lead-a")
        assert service.find_by_id(artifact.id).state == "pending_review"

        service.claim_review(artifact.id, "lead-b")
        artifact = service.approve(artifact.id, "lead-b")

        assert artifact.state == "approved"
        assert artifact.approved_at is not None
        assert artifact.workflow.current_approvals == 2
        assert artifact.workflow.completed_at is not None
        assert sla.completed == [artifact.id]

        steps = artifact.workflow.steps
        assert [(s.step_order, s.assigned_to_id, s.status) for s in steps] == [
            (1, "lead-a", "approved"),
            (2, "lead-b", "approved"),
        ]
        assert steps[0].comment == "Looks right"
        assert actions(service, artifact.id) == [
            "approved",
            "claimed",
            "approval_step_completed",
            "claimed",
            "submitted",
            "created",
        ]

    def test_single_approval_completes(self, make_service, fake_sla, artifact_data):
        sla = fake_sla()
        service = make_service(sla_tracker=sla)
        artifact = service.create(artifact_data())
        service.submit_for_review(artifact.id, "author-1")
        service.claim_review(artifact.id, "qae-1")

        artifact = service.approve(artifact.id, "qae-1")

        assert artifact.state == "approved"
        assert artifact.workflow.current_approvals == 1
        assert sla.completed == [artifact.id]

    def test_claim_requires_reviewer_id(self, make_service, artifact_data):
        service = make_service()
        artifact = service.create(artifact_data())
        service.submit_for_review(artifact.id, "author-1")

        with pytest.raises(ValidationError):
            service.claim_review(artifact.id, "  ")

    def test_second_claim_fails(self, make_service, artifact_data):
        service = make_service()
        artifact = service.create(artifact_data())
        service.submit_for_review(artifact.id, "author-1")
        service.claim_review(artifact.id, "qae-1")

        with pytest.raises(ValidationError):
            service.claim_review(artifact.id, "qae-2")

        artifact = service.find_by_id(artifact.id)
        assert artifact.state == "in_review"
        assert [s.assigned_to_id for s in artifact.workflow.steps] == ["qae-1"]

    def test_active_step_blocks_claim(self, db_session, make_service, artifact_data):
        service = make_service()
        artifact = service.create(artifact_data())
        service.submit_for_review(artifact.id, "author-1")
        service.claim_review(artifact.id, "qae-1")
        force_state(db_session, artifact.id, "pending_review")

        with pytest.raises(ValidationError) as exc_info:
            service.claim_review(artifact.id, "qae-2")

        assert exc_info.value.message == "Artifact is already claimed"
        assert exc_info.value.details == {"assigned_to_id": "qae-1"}

    def test_one_active_step_per_workflow(self, db_session, make_service, artifact_data):
        service = make_service()
        artifact = service.create(artifact_data())
        service.submit_for_review(artifact.id, "author-1")
        artifact = service.claim_review(artifact.id, "qae-1")
        workflow_id = artifact.workflow.id

        db_session.add(
            ApprovalStepModel(
                workflow_id=workflow_id,
                step_order=2,
                assigned_to_id="qae-2",
                status="in_progress",
            )
        )
        with pytest.raises(IntegrityError):
            db_session.flush()
        db_session.rollback()

    def test_approve_by_other_reviewer(self, make_service, artifact_data):
        service = make_service()
        artifact = service.create(artifact_data())
        service.submit_for_review(artifact.id, "author-1")
        service.claim_review(artifact.id, "qae-1")

        with pytest.raises(ValidationError) as exc_info:
            service.approve(artifact.id, "qae-2")

        assert exc_info.value.message == "Artifact is claimed by another reviewer"
        artifact = service.find_by_id(artifact.id)
        assert artifact.state == "in_review"
        assert artifact.workflow.current_approvals == 0

    def test_approve_without_step(self, db_session, make_service, artifact_data):
        service = make_service()
        artifact = service.create(artifact_data())
        force_state(db_session, artifact.id, "in_review")

        with pytest.raises(NotFoundError) as exc_info:
            service.approve(artifact.id, "qae-1")

        assert exc_info.value.resource == "ApprovalStep"

    def test_approve_pending_artifact(self, make_service, artifact_data):
        service = make_service()
        artifact = service.create(artifact_data())
        service.submit_for_review(artifact.id, "author-1")

        with pytest.raises(ValidationError):
            service.approve(artifact.id, "qae-1")

    def test_sla_failure_on_final_approval_rolls_back(
        self, make_service, fake_sla, artifact_data
    ):
        error = DependencyError("sla", "tracker unavailable")
        service = make_service(sla_tracker=fake_sla(complete_error=error))
        artifact = service.create(artifact_data())
        service.submit_for_review(artifact.id, "author-1")
        service.claim_review(artifact.id, "qae-1")

        with pytest.raises(DependencyError):
            service.approve(artifact.id, "qae-1")

        artifact = service.find_by_id(artifact.id)
        assert artifact.state == "in_review"
        assert artifact.workflow.current_approvals == 0
        assert [s.status for s in artifact.workflow.steps] == ["in_progress"]
        assert actions(service, artifact.id)[0] == "claimed"

    def test_quota_already_met(self, db_session, make_service, artifact_data):
        service = make_service()
        artifact = service.create(artifact_data())
        service.submit_for_review(artifact.id, "author-1")
        service.claim_review(artifact.id, "qae-1")
        db_session.query(ApprovalWorkflowModel).filter(
            ApprovalWorkflowModel.artifact_id == artifact.id
        ).update({"current_approvals": 1})
        db_session.commit()

        with pytest.raises(ValidationError) as exc_info:
            service.approve(artifact.id, "qae-1")

        assert exc_info.value.message == "Approval quota already met for this artifact"
        artifact = service.find_by_id(artifact.id)
        assert artifact.state == "in_review"
        assert [s.status for s in artifact.workflow.steps] == ["in_progress"]


# =============================================================================
# Concurrent writers
# =============================================================================


class Race:
    """Two services on separate sessions over one file-backed database."""

    def __init__(self, factory, first, second, project_id):
        self.factory = factory
        self.first = first
        self.second = second
        self.project_id = project_id


@pytest.fixture
def race(tmp_path, fake_risk, fake_sla):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'approvals.db'}")
    Base.metadata.create_all(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    sessions = [factory(), factory()]
    first, second = (
        ApprovalService(
            session,
            risk_assessor=fake_risk(required_approvals=2),
            sla_tracker=fake_sla(),
        )
        for session in sessions
    )
    project = ProjectService(sessions[0]).create("Checkout")

    yield Race(factory, first, second, project.id)

    for session in sessions:
        session.close()
    engine.dispose()


def commit_in_between(monkeypatch, target, name, other_writer):
    """Run ``other_writer`` once, right after ``target.name`` returns."""
    original = getattr(target, name)
    done = []

    def wrapper(*args, **kwargs):
        result = original(*args, **kwargs)
        if not done:
            done.append(True)
            other_writer()
        return result

    monkeypatch.setattr(target, name, wrapper)


class TestConcurrentWriters:
    def _pending(self, race, artifact_data):
        artifact = race.first.create(artifact_data(project_id=race.project_id))
        race.first.submit_for_review(artifact.id, "author-1")
        return artifact.id

    def test_claim_loses_to_concurrent_claim(self, monkeypatch, race, artifact_data):
        artifact_id = self._pending(race, artifact_data)
        commit_in_between(
            monkeypatch,
            race.first,
            "_active_step",
            lambda: race.second.claim_review(artifact_id, "qae-b"),
        )

        with pytest.raises(ValidationError) as exc_info:
            race.first.claim_review(artifact_id, "qae-a")

        assert exc_info.value.details == {
            "artifact_id": artifact_id,
            "expected_state": "pending_review",
        }
        with race.factory() as db:
            assert db.get(ArtifactModel, artifact_id).state == "in_review"
            steps = db.query(ApprovalStepModel).all()
            assert [(s.assigned_to_id, s.status) for s in steps] == [
                ("qae-b", "in_progress")
            ]
            claims = db.query(ArtifactHistoryModel).filter_by(
                artifact_id=artifact_id, action="claimed"
            )
            assert claims.count() == 1

    def test_approve_loses_to_concurrent_approve(self, monkeypatch, race, artifact_data):
        artifact_id = self._pending(race, artifact_data)
        race.first.claim_review(artifact_id, "qae-1")
        commit_in_between(
            monkeypatch,
            race.first,
            "_require_step_for",
            lambda: race.second.approve(artifact_id, "qae-1"),
        )

        with pytest.raises(ValidationError) as exc_info:
            race.first.approve(artifact_id, "qae-1")

        assert exc_info.value.message == "Review step was resolved concurrently"
        with race.factory() as db:
            artifact = db.get(ArtifactModel, artifact_id)
            assert artifact.state == "pending_review"
            assert artifact.workflow.current_approvals == 1
            assert [s.status for s in artifact.workflow.steps] == ["approved"]

    def test_delete_loses_to_concurrent_submit(self, monkeypatch, race, artifact_data):
        artifact = race.first.create(artifact_data(project_id=race.project_id))
        commit_in_between(
            monkeypatch,
            race.first.state_machine,
            "transition",
            lambda: race.second.submit_for_review(artifact.id, "author-1"),
        )

        with pytest.raises(ValidationError) as exc_info:
            race.first.delete(artifact.id)

        assert exc_info.value.details == {"artifact_id": artifact.id}
        with race.factory() as db:
            assert db.get(ArtifactModel, artifact.id).state == "pending_review"


# =============================================================================
# Reject / revise
# =============================================================================


class TestReject:
    def test_reject_with_feedback(self, make_service, fake_sla, artifact_data):
        sla = fake_sla()
        service = make_service(sla_tracker=sla)
        artifact = service.create(artifact_data())
        service.submit_for_review(artifact.id, "author-1")
        service.claim_review(artifact.id, "qae-1")

        artifact = service.reject(
            artifact.id, "qae-1", comment="Wrong assertion", feedback=[feedback_item()]
        )

        assert artifact.state == "rejected"
        assert artifact.rejected_at is not None
        assert artifact.workflow.completed_at is not None
        assert sla.completed == [artifact.id]

        step = artifact.workflow.steps[0]
        assert step.status == "rejected"
        assert step.comment == "Wrong assertion"

        feedback = service.get_feedback(artifact.id)
        assert len(feedback) == 1
        assert feedback[0].category == "accuracy"
        assert feedback[0].suggested_fix == "Expect 401"
        assert feedback[0].created_by_id == "qae-1"

        history = service.get_history(artifact.id)
        assert history[0].action == "rejected"
        assert history[0].comment == "Wrong assertion"

    def test_every_feedback_item_is_kept(self, make_service, artifact_data):
        service = make_service()
        artifact = service.create(artifact_data())
        service.submit_for_review(artifact.id, "author-1")
        service.claim_review(artifact.id, "qae-1")

        items = [
            feedback_item(),
            feedback_item(),
            feedback_item(category=FeedbackCategory.SECURITY_CONCERN, severity=FeedbackSeverity.CRITICAL),
        ]
        service.reject(artifact.id, "qae-1", feedback=items)

        assert len(service.get_feedback(artifact.id)) == 3

    def test_sla_failure_keeps_review_open(
        self, db_session, make_service, fake_sla, artifact_data
    ):
        error = DependencyError("sla", "tracker unavailable")
        service = make_service(sla_tracker=fake_sla(complete_error=error))
        artifact = service.create(artifact_data())
        service.submit_for_review(artifact.id, "author-1")
        service.claim_review(artifact.id, "qae-1")

        with pytest.raises(DependencyError):
            service.reject(artifact.id, "qae-1", feedback=[feedback_item()])

        artifact = service.find_by_id(artifact.id)
        assert artifact.state == "in_review"
        assert artifact.rejected_at is None
        assert db_session.query(ApprovalFeedbackModel).count() == 0
        assert [s.status for s in artifact.workflow.steps] == ["in_progress"]


class TestRevise:
    def _rejected(self, service, artifact_data):
        artifact = service.create(artifact_data())
        service.submit_for_review(artifact.id, "author-1")
        service.claim_review(artifact.id, "qae-1")
        return service.reject(artifact.id, "qae-1", feedback=[feedback_item()])

    def test_revise_creates_next_version(self, make_service, fake_risk, artifact_data):
        risk = fake_risk(risk_level=RiskLevel.HIGH, required_approvals=2, requires_lead=True)
        service = make_service(risk_assessor=risk)
        old = self._rejected(service, artifact_data)
        old_id = old.id

        new = service.revise(old_id, "author-1", {"steps": ["fixed step"]})

        assert new.id != old_id
        assert new.state == "draft"
        assert new.version == 2
        assert new.previous_version_id == old_id
        assert new.content == {"steps": ["fixed step"]}
        assert new.title == old.title
        assert new.risk_level == "high"
        assert new.workflow.required_approvals == 2
        assert new.workflow.requires_lead is True
        assert new.workflow.current_approvals == 0
        assert new.workflow.steps == []
        # Risk is carried over, not reassessed
        assert len(risk.assess_calls) == 1

        old = service.find_by_id(old_id)
        assert old.state == "archived"
        assert old.archived_at is not None

        old_history = service.get_history(old_id)
        assert old_history[0].action == "archived"
        assert old_history[0].comment == "Superseded by version 2"

        new_history = service.get_history(new.id)
        assert [h.action for h in new_history] == ["revised"]
        assert new_history[0].comment == "Revision of version 1"

        # Feedback stays with the rejected version
        assert len(service.get_feedback(old_id)) == 1
        assert service.get_feedback(new.id) == []

    def test_revision_can_be_resubmitted(self, make_service, artifact_data):
        service = make_service()
        old = self._rejected(service, artifact_data)
        new = service.revise(old.id, "author-1", {"steps": ["v2"]})

        new = service.submit_for_review(new.id, "author-1")
        assert new.state == "pending_review"

    def test_revise_only_rejected(self, make_service, artifact_data):
        service = make_service()
        artifact = service.create(artifact_data())

        with pytest.raises(ValidationError):
            service.revise(artifact.id, "author-1", {"steps": []})

        assert service.find_all().total == 1


# =============================================================================
# Update / archive / delete
# =============================================================================


class TestUpdate:
    def test_patch_draft(self, make_service, artifact_data):
        service = make_service()
        artifact = service.create(artifact_data())

        artifact = service.update(
            artifact.id,
            ArtifactUpdate(title="Renamed", content={"steps": ["one"]}, type=ArtifactType.SCRIPT),
            user_id="author-1",
        )

        assert artifact.title == "Renamed"
        assert artifact.content == {"steps": ["one"]}
        assert artifact.type == "script"
        assert artifact.state == "draft"

    def test_none_leaves_required_fields_alone(self, make_service, artifact_data):
        service = make_service()
        artifact = service.create(artifact_data())

        artifact = service.update(artifact.id, ArtifactUpdate(title=None, description=None))

        assert artifact.title == "Login rejects expired password"
        assert artifact.description is None

    def test_update_after_submit_fails(self, make_service, artifact_data):
        service = make_service()
        artifact = service.create(artifact_data())
        service.submit_for_review(artifact.id, "author-1")

        with pytest.raises(ValidationError):
            service.update(artifact.id, ArtifactUpdate(title="Too late"))

        artifact = service.find_by_id(artifact.id)
        assert artifact.title == "Login rejects expired password"
        assert artifact.state == "pending_review"


class TestArchive:
    def test_archive_approved(self, make_service, artifact_data):
        service = make_service()
        artifact = service.create(artifact_data())
        service.submit_for_review(artifact.id, "author-1")
        service.claim_review(artifact.id, "qae-1")
        service.approve(artifact.id, "qae-1")

        artifact = service.archive(artifact.id, "admin-1")

        assert artifact.state == "archived"
        assert artifact.archived_at is not None
        assert actions(service, artifact.id)[0] == "archived"

    def test_draft_not_archivable_by_default(self, make_service, artifact_data):
        service = make_service()
        artifact = service.create(artifact_data())

        with pytest.raises(ValidationError):
            service.archive(artifact.id, "admin-1")

    def test_configured_archivable_states(self, make_service, artifact_data):
        from artifact_approval.state_machine import ArtifactStateMachine

        service = make_service(
            state_machine=ArtifactStateMachine(archivable_states=["approved", "draft"])
        )
        artifact = service.create(artifact_data())

        assert service.archive(artifact.id, "admin-1").state == "archived"


class TestDelete:
    def test_delete_pending_fails(self, make_service, artifact_data):
        service = make_service()
        artifact = service.create(artifact_data())
        service.submit_for_review(artifact.id, "author-1")

        with pytest.raises(ValidationError):
            service.delete(artifact.id)

        assert service.find_by_id(artifact.id).state == "pending_review"

    def test_delete_draft_removes_everything(self, db_session, make_service, artifact_data):
        service = make_service()
        artifact = service.create(artifact_data())
        artifact_id = artifact.id

        service.delete(artifact_id, user_id="author-1")

        with pytest.raises(NotFoundError):
            service.find_by_id(artifact_id)
        assert db_session.query(ArtifactHistoryModel).count() == 0

    def test_delete_archived_version(self, db_session, make_service, artifact_data):
        service = make_service()
        artifact = service.create(artifact_data())
        service.submit_for_review(artifact.id, "author-1")
        service.claim_review(artifact.id, "qae-1")
        service.reject(artifact.id, "qae-1", feedback=[feedback_item()])
        new = service.revise(artifact.id, "author-1", {"steps": ["v2"]})
        old_id, new_id = artifact.id, new.id

        service.delete(old_id)

        with pytest.raises(NotFoundError):
            service.find_by_id(old_id)
        assert db_session.query(ApprovalFeedbackModel).count() == 0
        assert db_session.query(ApprovalStepModel).count() == 0
        assert service.find_by_id(new_id).previous_version_id is None

    def test_delete_missing(self, make_service):
        with pytest.raises(NotFoundError):
            make_service().delete(generate_ulid())


# =============================================================================
# Reads
# =============================================================================


class TestReads:
    def test_find_by_id_missing(self, make_service):
        with pytest.raises(NotFoundError) as exc_info:
            make_service().find_by_id("missing")
        assert exc_info.value.http_status == 404

    def test_history_of_missing_artifact(self, make_service):
        with pytest.raises(NotFoundError):
            make_service().get_history("missing")

    def test_find_all_paginates(self, make_service, artifact_data):
        service = make_service()
        for i in range(3):
            service.create(artifact_data(title=f"Case {i}"))

        first = service.find_all(page=1, limit=2)
        second = service.find_all(page=2, limit=2)

        assert first.total == 3
        assert first.total_pages == 2
        assert len(first.data) == 2
        assert len(second.data) == 1
        # Newest first
        assert second.data[0].title == "Case 0"

    def test_find_all_filters(self, make_service, artifact_data):
        service = make_service()
        draft = service.create(artifact_data(title="Draft"))
        pending = service.create(artifact_data(title="Pending", type=ArtifactType.SCRIPT))
        service.submit_for_review(pending.id, "author-1")
        claimed = service.create(artifact_data(title="Claimed", created_by_id="author-2"))
        service.submit_for_review(claimed.id, "author-2")
        service.claim_review(claimed.id, "qae-1")

        assert [a.id for a in service.find_all(state="draft").data] == [draft.id]
        assert [a.id for a in service.find_all(type=ArtifactType.SCRIPT).data] == [pending.id]
        assert [a.id for a in service.find_all(created_by_id="author-2").data] == [claimed.id]
        assert [a.id for a in service.find_all(assigned_to_id="qae-1").data] == [claimed.id]
        assert service.find_all(project_id="other").total == 0

    def test_limit_out_of_range(self, make_service):
        with pytest.raises(ValidationError):
            make_service().find_all(limit=1000)
        with pytest.raises(ValidationError):
            make_service().find_all(page=0)


class TestReviewQueue:
    def _submit(self, make_service, fake_risk, artifact_data, level, title):
        service = make_service(risk_assessor=fake_risk(risk_level=level))
        artifact = service.create(artifact_data(title=title, ai_confidence_score=50))
        service.submit_for_review(artifact.id, "author-1")
        return artifact.id

    def test_riskiest_first_then_oldest(self, make_service, fake_risk, artifact_data):
        low = self._submit(make_service, fake_risk, artifact_data, RiskLevel.LOW, "low")
        medium_old = self._submit(make_service, fake_risk, artifact_data, RiskLevel.MEDIUM, "m1")
        critical = self._submit(make_service, fake_risk, artifact_data, RiskLevel.CRITICAL, "crit")
        medium_new = self._submit(make_service, fake_risk, artifact_data, RiskLevel.MEDIUM, "m2")

        queue = make_service().get_review_queue()

        assert [a.id for a in queue.data] == [critical, medium_old, medium_new, low]
        assert queue.total == 4

    def test_includes_claimed_excludes_decided(self, make_service, fake_risk, artifact_data):
        service = make_service()
        claimed = self._submit(make_service, fake_risk, artifact_data, RiskLevel.MEDIUM, "claimed")
        approved = self._submit(make_service, fake_risk, artifact_data, RiskLevel.MEDIUM, "approved")
        service.create(artifact_data(title="draft"))
        service.claim_review(claimed, "qae-1")
        service.claim_review(approved, "qae-2")
        service.approve(approved, "qae-2")

        queue = service.get_review_queue()
        assert [a.id for a in queue.data] == [claimed]

        mine = service.get_review_queue(user_id="qae-1")
        assert [a.id for a in mine.data] == [claimed]
        assert service.get_review_queue(user_id="qae-2").total == 0

    def test_filters_by_risk_level(self, make_service, fake_risk, artifact_data):
        self._submit(make_service, fake_risk, artifact_data, RiskLevel.LOW, "low")
        high = self._submit(make_service, fake_risk, artifact_data, RiskLevel.HIGH, "high")

        queue = make_service().get_review_queue(risk_level="high")
        assert [a.id for a in queue.data] == [high]


# =============================================================================
# Default collaborators
# =============================================================================


class TestWithDefaultCollaborators:
    """End-to-end with the SQL-backed risk assessor and SLA tracker."""

    def test_confident_test_case_auto_approves(self, db_session, artifact_data):
        service = ApprovalService(db_session)
        artifact = service.create(artifact_data(ai_confidence_score=95))

        assert artifact.risk_level == "low"
        assert artifact.risk_score == 9

        artifact = service.submit_for_review(artifact.id, "author-1")
        assert artifact.state == "approved"
        assert db_session.query(SLATrackingModel).count() == 0

    def test_wide_script_needs_two_approvals(self, db_session, artifact_data):
        service = ApprovalService(db_session)
        artifact = service.create(
            artifact_data(
                type=ArtifactType.SCRIPT,
                ai_confidence_score=None,
                content={"scripts": [f"deploy_{i}.sh" for i in range(11)]},
            )
        )

        assert artifact.risk_score == 52
        assert artifact.risk_level == "high"
        assert artifact.workflow.required_approvals == 2
        assert artifact.workflow.requires_lead is True

        artifact = service.submit_for_review(artifact.id, "author-1")
        assert artifact.state == "pending_review"
        assert artifact.sla_tracking.deadline_hours == 24
        assert artifact.sla_tracking.status == "within_sla"

        service.claim_review(artifact.id, "lead-1")
        service.approve(artifact.id, "lead-1")
        service.claim_review(artifact.id, "lead-2")
        artifact = service.approve(artifact.id, "lead-2")

        assert artifact.state == "approved"
        assert artifact.sla_tracking.status == "completed"
        assert artifact.sla_tracking.completed_at is not None
