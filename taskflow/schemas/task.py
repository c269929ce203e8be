"""Task request, result and response schemas."""
from datetime import datetime
from typing import List, Literal, Optional, Union
import uuid

from pydantic import BaseModel, ConfigDict, Field, field_validator

from taskflow.models.task import Task, TaskPriority, TaskStatus


class NewTaskData(BaseModel):
    """Input for add_task. Supplying rrule turns the task into a series template."""

    name: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    due_at: Optional[datetime] = None
    priority: TaskPriority = TaskPriority.NONE
    project_name: Optional[str] = None
    project_id: Optional[uuid.UUID] = None
    tags: List[str] = Field(default_factory=list)
    parent_id: Optional[uuid.UUID] = None
    depends_on: Optional[uuid.UUID] = None
    rrule: Optional[str] = None
    timezone: Optional[str] = None
    series_id: Optional[uuid.UUID] = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name must not be blank")
        return value

    @field_validator("tags")
    @classmethod
    def clean_tags(cls, value: List[str]) -> List[str]:
        cleaned = []
        for tag in value:
            tag = tag.strip()
            if tag and tag not in cleaned:
                cleaned.append(tag)
        return cleaned


class UpdateTaskData(BaseModel):
    """Partial task update. Only fields explicitly set are applied.

    Nullable fields (description, due_at, project_name, parent_id) are
    cleared when set to None.
    """

    name: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = None
    due_at: Optional[datetime] = None
    priority: Optional[TaskPriority] = None
    status: Optional[TaskStatus] = None
    project_name: Optional[str] = None
    add_tags: List[str] = Field(default_factory=list)
    remove_tags: List[str] = Field(default_factory=list)
    parent_id: Optional[uuid.UUID] = None
    depends_on: Optional[uuid.UUID] = None
    rrule: Optional[str] = None
    timezone: Optional[str] = None
    series_id: Optional[uuid.UUID] = None

    def is_set(self, name: str) -> bool:
        return name in self.model_fields_set

    @property
    def touches_recurrence(self) -> bool:
        return any(self.is_set(name) for name in ("rrule", "timezone", "series_id"))

    def without_recurrence(self) -> "UpdateTaskData":
        data = self.model_dump(exclude_unset=True, exclude={"rrule", "timezone", "series_id"})
        return UpdateTaskData(**data)


class SingleCompletion(BaseModel):
    """complete_task result for a task outside any series."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    kind: Literal["single"] = "single"
    task: Task


class SeriesInstanceCompletion(BaseModel):
    """complete_task result for a series instance."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    kind: Literal["series_instance"] = "series_instance"
    completed: Task
    next_task: Optional[Task] = None
    series_id: uuid.UUID
    next_occurrence: Optional[datetime] = None


CompletionResult = Union[SingleCompletion, SeriesInstanceCompletion]


class TaskQueryResult(BaseModel):
    """One row of find_tasks_with_details: a task with its place in the forest."""

    id: uuid.UUID
    name: str
    description: Optional[str] = None
    status: TaskStatus
    priority: TaskPriority
    due_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    project_id: Optional[uuid.UUID] = None
    parent_id: Optional[uuid.UUID] = None
    series_id: Optional[uuid.UUID] = None
    depth: int = 0
    path: str = ""
    project_name: Optional[str] = None
    tags: List[str] = Field(default_factory=list)

    @property
    def tag_list(self) -> str:
        return ",".join(self.tags)


class TaskResponse(BaseModel):
    """Schema for task API responses."""

    id: uuid.UUID
    name: str
    description: Optional[str]
    status: TaskStatus
    priority: TaskPriority
    due_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    project_id: Optional[uuid.UUID] = None
    parent_id: Optional[uuid.UUID] = None
    series_id: Optional[uuid.UUID] = None

    model_config = ConfigDict(from_attributes=True)


class CompletionResponse(BaseModel):
    kind: str
    completed: TaskResponse
    next_task: Optional[TaskResponse] = None
    series_id: Optional[uuid.UUID] = None
    next_occurrence: Optional[datetime] = None

    @classmethod
    def from_result(cls, result: CompletionResult) -> "CompletionResponse":
        if isinstance(result, SingleCompletion):
            return cls(kind=result.kind, completed=TaskResponse.model_validate(result.task))
        return cls(
            kind=result.kind,
            completed=TaskResponse.model_validate(result.completed),
            next_task=TaskResponse.model_validate(result.next_task) if result.next_task else None,
            series_id=result.series_id,
            next_occurrence=result.next_occurrence,
        )
