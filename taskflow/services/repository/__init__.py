"""Transactional repository over the task store."""
from typing import Optional

from sqlalchemy.engine import Engine

from taskflow.models.query import Query
from taskflow.services.filters import parse_filter_expressions
from taskflow.services.materialization import MaterializationManager
from taskflow.services.repository.exceptions import ExceptionOperations
from taskflow.services.repository.materialization import MaterializationOperations
from taskflow.services.repository.projects import ProjectOperations
from taskflow.services.repository.series import SeriesOperations
from taskflow.services.repository.tasks import TaskOperations
from taskflow.settings import Settings


class Repository(
    TaskOperations,
    ProjectOperations,
    SeriesOperations,
    ExceptionOperations,
    MaterializationOperations,
):
    """All repository surfaces over one engine."""

    @classmethod
    def from_settings(
        cls, engine: Engine, settings: Settings, manager: Optional[MaterializationManager] = None
    ) -> "Repository":
        manager = manager or MaterializationManager(settings.materialization_config())
        default_query: Optional[Query] = parse_filter_expressions(settings.default_filters)
        return cls(engine, manager, default_query)


__all__ = ["Repository"]
