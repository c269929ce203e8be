"""
Repository base

Provides what every repository surface shares:
- Transaction scope (one Session per operation, rolled back on error)
- The clock and materialization policy
- Lookups that raise typed errors
- Metrics and structured logging
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterable, Iterator, List, Optional, Sequence
import logging
import uuid

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlmodel import Session, select

from taskflow.models.base import as_utc
from taskflow.models.project import Project
from taskflow.models.query import Query
from taskflow.models.series import SeriesException, TaskSeries
from taskflow.models.task import Task, TaskTag
from taskflow.services.errors import CoreError, NotFoundError, SeriesNotFoundError, StorageError
from taskflow.services.materialization import MaterializationManager
from taskflow.services.recurrence import RecurrenceManager
from taskflow.utils.logger import get_logger
from taskflow.utils.metrics import MetricsCollector

logger = logging.getLogger(__name__)


class RepositoryBase:
    """
    Shared state and helpers for the repository surfaces.

    Args:
        engine: SQLAlchemy engine
        manager: Materialization policy; its clock is the repository clock
        default_query: Filter tree applied by queries that pass none
    """

    def __init__(
        self,
        engine: Engine,
        manager: Optional[MaterializationManager] = None,
        default_query: Optional[Query] = None,
    ):
        self.engine = engine
        self.manager = manager or MaterializationManager()
        self.default_query = default_query
        self.metrics = MetricsCollector()
        self.events = get_logger("taskflow.materialization")
        self._session_factory = sessionmaker(engine, class_=Session, expire_on_commit=False)

    def now(self) -> datetime:
        return self.manager.now()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        Run the enclosed block in one database transaction.

        Commits on normal exit. Any exception rolls back; SQLAlchemy errors
        are re-raised as StorageError, core errors propagate unchanged.
        """
        session = self._session_factory()
        try:
            with session.begin():
                yield session
        except CoreError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Storage failure, transaction rolled back: {e}")
            raise StorageError(str(e)) from e
        finally:
            session.close()

    def _get_task(self, session: Session, task_id: uuid.UUID) -> Task:
        task = session.get(Task, task_id)
        if task is None:
            raise NotFoundError(f"task {task_id}", {"task_id": str(task_id)})
        return task

    def _get_series(self, session: Session, series_id: uuid.UUID) -> TaskSeries:
        series = session.get(TaskSeries, series_id)
        if series is None:
            raise SeriesNotFoundError(series_id)
        return series

    def _tags_of(self, session: Session, task_id: uuid.UUID) -> List[str]:
        return sorted(session.exec(select(TaskTag.tag_name).where(TaskTag.task_id == task_id)).all())

    def _add_tags(self, session: Session, task_id: uuid.UUID, tags: Iterable[str]) -> None:
        existing = set(self._tags_of(session, task_id))
        for tag in tags:
            tag = tag.strip()
            if tag and tag not in existing:
                session.add(TaskTag(task_id=task_id, tag_name=tag))
                existing.add(tag)
        session.flush()

    def _series_exceptions(self, session: Session, series_id: uuid.UUID) -> List[SeriesException]:
        return list(
            session.exec(
                select(SeriesException)
                .where(SeriesException.series_id == series_id)
                .order_by(SeriesException.occurrence_dt)
            ).all()
        )

    def _exception_tasks(
        self, session: Session, exceptions: Sequence[SeriesException]
    ) -> Dict[uuid.UUID, Task]:
        ids = [exc.exception_task_id for exc in exceptions if exc.exception_task_id]
        if not ids:
            return {}
        return {task.id: task for task in session.exec(select(Task).where(Task.id.in_(ids))).all()}

    def _recurrence_manager(self, session: Session, series: TaskSeries) -> RecurrenceManager:
        template = self._get_task(session, series.template_task_id)
        exceptions = self._series_exceptions(session, series.id)
        return RecurrenceManager(series, template, exceptions, self._exception_tasks(session, exceptions))

    @staticmethod
    def _same_instant(a: Optional[datetime], b: Optional[datetime]) -> bool:
        return as_utc(a) == as_utc(b)

    def _project_named(self, session: Session, name: str) -> Optional[Project]:
        return session.exec(select(Project).where(Project.name == name)).first()

    def _resolve_project_id(
        self, session: Session, project_id: Optional[uuid.UUID], project_name: Optional[str]
    ) -> Optional[uuid.UUID]:
        if project_id is not None:
            if session.get(Project, project_id) is None:
                raise NotFoundError(f"project {project_id}", {"project_id": str(project_id)})
            return project_id
        if project_name:
            project = self._project_named(session, project_name)
            if project is None:
                raise NotFoundError(f"project '{project_name}'", {"project_name": project_name})
            return project.id
        return None
