"""Tests for the awaitable repository facade."""
import asyncio

import pytest

from taskflow.models.base import new_id
from taskflow.models.task import TaskStatus
from taskflow.schemas.task import NewTaskData
from taskflow.services.async_repository import AsyncRepository
from taskflow.services.errors import NotFoundError


@pytest.fixture
def facade(repository):
    return AsyncRepository(repository)


@pytest.mark.asyncio
async def test_operations_are_awaitable(facade):
    task = await facade.add_task(NewTaskData(name="Async chore", tags=["bg"]))
    result = await facade.complete_task(task.id)

    assert result.task.status is TaskStatus.COMPLETED
    assert await facade.get_task_tags(task.id) == ["bg"]


@pytest.mark.asyncio
async def test_errors_propagate(facade):
    with pytest.raises(NotFoundError):
        await facade.complete_task(new_id())


@pytest.mark.asyncio
async def test_concurrent_writes_are_serialized(facade):
    tasks = await asyncio.gather(*(facade.add_task(NewTaskData(name=f"Task {i}")) for i in range(8)))
    rows = await facade.find_tasks_with_details()
    assert {row.id for row in rows} == {task.id for task in tasks}


@pytest.mark.asyncio
async def test_cancelled_call_is_all_or_nothing(facade, repository):
    call = asyncio.ensure_future(facade.add_task(NewTaskData(name="Maybe", tags=["a", "b"])))
    await asyncio.sleep(0)
    call.cancel()
    with pytest.raises(asyncio.CancelledError):
        await call

    # The worker thread finishes its transaction on its own
    for _ in range(100):
        rows = await facade.find_tasks_with_details()
        if rows:
            break
        await asyncio.sleep(0.01)
    for row in rows:
        assert row.name == "Maybe"
        assert row.tags == ["a", "b"]


def test_exposes_policy_and_metrics(facade, repository):
    assert facade.manager is repository.manager
    assert facade.metrics is repository.metrics
    with pytest.raises(AttributeError):
        facade._refresh_series
