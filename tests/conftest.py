"""Shared fixtures: a file-backed SQLite store and a controllable clock."""
from datetime import datetime, timedelta, timezone

import pytest

from taskflow.db.config import create_db_engine
from taskflow.db.init import init_db
from taskflow.models.base import new_id
from taskflow.models.series import TaskSeries
from taskflow.models.task import Task
from taskflow.schemas.task import NewTaskData
from taskflow.services.materialization import MaterializationConfig, MaterializationManager
from taskflow.services.recurrence import normalize_rrule
from taskflow.services.repository import Repository


def utc(year, month, day, hour=0, minute=0, second=0):
    return datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc)


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.current = now

    def __call__(self) -> datetime:
        return self.current

    def set(self, now: datetime) -> None:
        self.current = now

    def advance(self, **kwargs) -> None:
        self.current = self.current + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FrozenClock(utc(2025, 7, 1))


@pytest.fixture
def engine(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'tasks.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def config():
    return MaterializationConfig()


@pytest.fixture
def manager(config, clock):
    return MaterializationManager(config, clock=clock)


@pytest.fixture
def repository(engine, manager):
    return Repository(engine, manager)


def make_series(rrule, dtstart, tz="UTC"):
    """Unsaved series and template, for pure recurrence tests."""
    template = Task(id=new_id(), name="Template", due_at=dtstart)
    series = TaskSeries(
        id=new_id(),
        template_task_id=template.id,
        rrule=normalize_rrule(rrule, dtstart, tz),
        dtstart=dtstart,
        timezone=tz,
    )
    return series, template


@pytest.fixture
def daily_series(repository):
    """Daily 09:00 UTC series from 2025-07-02; creation materializes July."""
    template = repository.add_task(
        NewTaskData(
            name="Water plants",
            description="Balcony and kitchen",
            due_at=utc(2025, 7, 2, 9),
            rrule="FREQ=DAILY",
            tags=["home"],
        )
    )
    return template, repository.find_series_by_template(template.id)
