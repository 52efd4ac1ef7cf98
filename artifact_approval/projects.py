"""Project lookup backed by the projects table."""

from typing import Optional

from sqlalchemy.orm import Session

from .db.base import unit_of_work
from .db.models import ProjectModel
from .primitives import generate_ulid, utc_now


class ProjectService:
    """Minimal project store; the engine only needs existence checks."""

    def __init__(self, db: Session):
        self.db = db

    def create(self, name: str, description: Optional[str] = None) -> ProjectModel:
        """Create a new project."""
        project = ProjectModel(
            id=generate_ulid(),
            name=name,
            description=description,
            created_at=utc_now(),
        )
        with unit_of_work(self.db):
            self.db.add(project)
        self.db.refresh(project)
        return project

    def find_by_id(self, project_id: str) -> Optional[ProjectModel]:
        """Get a project by ID."""
        return self.db.get(ProjectModel, project_id)
