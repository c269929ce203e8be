"""Initialize database tables."""
import logging

from sqlalchemy.engine import Engine
from sqlmodel import SQLModel

# Imported for their side effect of registering tables on SQLModel.metadata
from taskflow.models.project import Project  # noqa: F401
from taskflow.models.series import SeriesException, TaskSeries  # noqa: F401
from taskflow.models.task import Task, TaskDependency, TaskTag  # noqa: F401

logger = logging.getLogger(__name__)


def init_db(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    SQLModel.metadata.create_all(engine)
    logger.info("Database tables created")
