"""Project operations."""
from typing import List, Optional
import logging
import uuid

from sqlalchemy import func
from sqlmodel import select

from taskflow.models.project import Project
from taskflow.models.task import Task
from taskflow.services.errors import InvalidInputError, NotFoundError
from taskflow.services.repository.base import RepositoryBase

logger = logging.getLogger(__name__)


class ProjectOperations(RepositoryBase):
    """Project surface of the repository."""

    def add_project(self, name: str, description: Optional[str] = None) -> Project:
        name = (name or "").strip()
        if not name:
            raise InvalidInputError("Project name cannot be empty")

        with self.transaction() as session:
            if self._project_named(session, name) is not None:
                raise InvalidInputError(f"Project '{name}' already exists")
            project = Project(name=name, description=description, created_at=self.now())
            session.add(project)
            session.flush()
            logger.info(f"Created project '{name}'")
            return project

    def find_project_by_id(self, project_id: uuid.UUID) -> Optional[Project]:
        with self.transaction() as session:
            return session.get(Project, project_id)

    def find_project_by_name(self, name: str) -> Optional[Project]:
        with self.transaction() as session:
            return self._project_named(session, name)

    def find_all_projects(self) -> List[Project]:
        with self.transaction() as session:
            return list(session.exec(select(Project).order_by(Project.name)).all())

    def delete_project(self, name: str) -> None:
        """
        Delete a project by name.

        Raises:
            NotFoundError: If no project has that name
            InvalidInputError: If any task still references the project
        """
        with self.transaction() as session:
            project = self._project_named(session, name)
            if project is None:
                raise NotFoundError(f"project '{name}'", {"project_name": name})

            referencing = session.exec(
                select(func.count()).select_from(Task).where(Task.project_id == project.id)
            ).one()
            if referencing:
                raise InvalidInputError(
                    f"Cannot delete project '{name}' because it has {referencing} associated task(s). "
                    "Delete or move the tasks first.",
                    {"project_name": name, "task_count": referencing},
                )
            session.delete(project)
            logger.info(f"Deleted project '{name}'")
