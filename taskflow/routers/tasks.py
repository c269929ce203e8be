"""Task router."""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query as QueryParam, Response, status

from taskflow.models.query import (
    DueFilter,
    PriorityFilter,
    ProjectFilter,
    StatusFilter,
    TagFilter,
    TagMatch,
    TextField,
    TextFilter,
    TextMatch,
    all_of,
    leaf,
)
from taskflow.models.series import EditScope
from taskflow.models.task import TaskPriority, TaskStatus
from taskflow.routers import get_repository
from taskflow.schemas.task import CompletionResponse, NewTaskData, TaskResponse, UpdateTaskData
from taskflow.services.async_repository import AsyncRepository
from taskflow.services.errors import InvalidInputError, NotFoundError
from taskflow.services.filters import DUE_KEYWORDS

router = APIRouter(prefix="/tasks", tags=["Tasks"])


@router.get("", response_model=Dict[str, Any])
async def list_tasks(
    repository: AsyncRepository = Depends(get_repository),
    task_status: Optional[TaskStatus] = QueryParam(None, alias="status", description="pending, completed or cancelled"),
    priority: Optional[TaskPriority] = QueryParam(None, description="none, low, medium or high"),
    project: Optional[str] = QueryParam(None, description="Project name"),
    tag: Optional[str] = QueryParam(None, description="Tasks carrying this tag"),
    due: Optional[str] = QueryParam(None, description="today, tomorrow, yesterday or overdue"),
    search: Optional[str] = QueryParam(None, description="Search keyword for task names"),
):
    """List tasks with their depth, project and tags. Without parameters the default filters apply."""
    filters = []
    if task_status:
        filters.append(leaf(StatusFilter(task_status)))
    if priority:
        filters.append(leaf(PriorityFilter(priority)))
    if project:
        filters.append(leaf(ProjectFilter(project)))
    if tag:
        filters.append(leaf(TagFilter(TagMatch.HAS, (tag,))))
    if due:
        factory = DUE_KEYWORDS.get(due.lower())
        if factory is None:
            raise InvalidInputError(f"Unknown due filter '{due}'")
        filters.append(leaf(DueFilter(factory())))
    if search:
        filters.append(leaf(TextFilter(TextField.NAME, TextMatch.CONTAINS, search)))

    tasks = await repository.find_tasks_with_details(all_of(*filters))
    return {"tasks": [task.model_dump(mode="json") for task in tasks], "count": len(tasks)}


@router.post("", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task(task_data: NewTaskData, repository: AsyncRepository = Depends(get_repository)):
    """Create a task; an rrule makes it a recurring series template."""
    return await repository.add_task(task_data)


@router.get("/{task_ref}", response_model=TaskResponse)
async def get_task(task_ref: str, repository: AsyncRepository = Depends(get_repository)):
    """Get a task by full id or short id prefix."""
    task_id = await repository.resolve_task_id(task_ref)
    task = await repository.find_task_by_id(task_id)
    if task is None:
        raise NotFoundError(f"task {task_ref}")
    return task


@router.patch("/{task_ref}", response_model=TaskResponse)
async def update_task(
    task_ref: str,
    task_data: UpdateTaskData,
    scope: EditScope = QueryParam(EditScope.THIS_OCCURRENCE, description="this, future or all"),
    repository: AsyncRepository = Depends(get_repository),
):
    task_id = await repository.resolve_task_id(task_ref)
    return await repository.update_task(task_id, task_data, scope)


@router.post("/{task_ref}/complete", response_model=CompletionResponse)
async def complete_task(task_ref: str, repository: AsyncRepository = Depends(get_repository)):
    task_id = await repository.resolve_task_id(task_ref)
    return CompletionResponse.from_result(await repository.complete_task(task_id))


@router.post("/{task_ref}/cancel", response_model=TaskResponse)
async def cancel_task(task_ref: str, repository: AsyncRepository = Depends(get_repository)):
    task_id = await repository.resolve_task_id(task_ref)
    return await repository.cancel_task(task_id)


@router.delete("/{task_ref}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(task_ref: str, repository: AsyncRepository = Depends(get_repository)):
    task_id = await repository.resolve_task_id(task_ref)
    await repository.delete_task(task_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/{task_ref}/dependencies/{depends_on_ref}", status_code=status.HTTP_204_NO_CONTENT)
async def add_dependency(
    task_ref: str, depends_on_ref: str, repository: AsyncRepository = Depends(get_repository)
):
    task_id = await repository.resolve_task_id(task_ref)
    depends_on_id = await repository.resolve_task_id(depends_on_ref)
    await repository.add_dependency(task_id, depends_on_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
