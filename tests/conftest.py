"""Test configuration and fixtures."""

from typing import Any, Callable, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

from artifact_approval.db import models  # noqa: F401
from artifact_approval.db.base import Base, create_db_engine, get_db
from artifact_approval.enums import ArtifactType, RiskLevel
from artifact_approval.projects import ProjectService
from artifact_approval.schemas import (
    ApprovalRequirements,
    ArtifactCreate,
    ProjectApprovalSettings,
    RiskAssessmentInput,
    RiskAssessmentResult,
)
from artifact_approval.services import ApprovalService

RISK_SCORES = {
    RiskLevel.LOW: 10,
    RiskLevel.MEDIUM: 40,
    RiskLevel.HIGH: 60,
    RiskLevel.CRITICAL: 90,
}


class FakeRiskAssessor:
    """Returns a fixed assessment; raises ``error`` when one is set."""

    def __init__(
        self,
        risk_level: RiskLevel = RiskLevel.MEDIUM,
        required_approvals: int = 1,
        requires_admin: bool = False,
        requires_lead: bool = False,
        settings: Optional[ProjectApprovalSettings] = None,
        error: Optional[Exception] = None,
    ):
        self.risk_level = risk_level
        self.required_approvals = required_approvals
        self.requires_admin = requires_admin
        self.requires_lead = requires_lead
        self.settings = settings or ProjectApprovalSettings()
        self.error = error
        self.assess_calls: List[RiskAssessmentInput] = []
        self.settings_calls: List[str] = []

    def assess_risk(self, data: RiskAssessmentInput) -> RiskAssessmentResult:
        self.assess_calls.append(data)
        if self.error is not None:
            raise self.error
        return RiskAssessmentResult(
            risk_score=RISK_SCORES[self.risk_level],
            risk_level=self.risk_level,
            risk_factors={"source": "fake"},
            approval_requirements=ApprovalRequirements(
                required_approvals=self.required_approvals,
                requires_admin=self.requires_admin,
                requires_lead=self.requires_lead,
            ),
        )

    def get_project_settings(self, project_id: str) -> ProjectApprovalSettings:
        self.settings_calls.append(project_id)
        return self.settings


class FakeSLATracker:
    """Records calls; raises the configured errors."""

    def __init__(
        self,
        create_error: Optional[Exception] = None,
        complete_error: Optional[Exception] = None,
    ):
        self.create_error = create_error
        self.complete_error = complete_error
        self.created: List[str] = []
        self.completed: List[str] = []

    def create_sla_tracking(self, artifact_id: str) -> None:
        if self.create_error is not None:
            raise self.create_error
        self.created.append(artifact_id)

    def complete_sla_tracking(self, artifact_id: str) -> None:
        if self.complete_error is not None:
            raise self.complete_error
        self.completed.append(artifact_id)


@pytest.fixture
def engine():
    """Fresh in-memory database per test."""
    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory) -> Session:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def project(db_session):
    return ProjectService(db_session).create("Checkout", "Checkout flow tests")


@pytest.fixture
def fake_risk() -> Callable[..., FakeRiskAssessor]:
    return FakeRiskAssessor


@pytest.fixture
def fake_sla() -> Callable[..., FakeSLATracker]:
    return FakeSLATracker


@pytest.fixture
def make_service(db_session) -> Callable[..., ApprovalService]:
    """Build an ApprovalService with fake collaborators unless overridden."""

    def _make(**kwargs: Any) -> ApprovalService:
        kwargs.setdefault("risk_assessor", FakeRiskAssessor())
        kwargs.setdefault("sla_tracker", FakeSLATracker())
        return ApprovalService(db_session, **kwargs)

    return _make


@pytest.fixture
def artifact_data(project) -> Callable[..., ArtifactCreate]:
    """Build an ArtifactCreate for the test project."""

    def _make(**overrides: Any) -> ArtifactCreate:
        data: Dict[str, Any] = {
            "project_id": project.id,
            "type": ArtifactType.TEST_CASE,
            "source_agent": "testweaver",
            "title": "Login rejects expired password",
            "description": "Generated from bug report",
            "content": {"steps": ["open login", "enter expired password"]},
            "ai_confidence_score": 80,
            "created_by_id": "author-1",
        }
        data.update(overrides)
        return ArtifactCreate(**data)

    return _make


@pytest.fixture
def client(session_factory):
    """TestClient whose requests use the per-test database."""
    from artifact_approval.api import app

    def _override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _override_get_db
    # No context manager: the lifespan would initialise the default database
    yield TestClient(app)
    app.dependency_overrides.clear()
