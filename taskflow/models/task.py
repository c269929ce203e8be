"""Task, tag and dependency tables."""
from datetime import datetime
from enum import Enum
from typing import Optional
import uuid

from sqlalchemy import Column, ForeignKey, Index, String, Text, Uuid
from sqlalchemy import Enum as SAEnum
from sqlmodel import Field, SQLModel

from taskflow.models.base import UTCDateTime, new_id, utc_now


class TaskStatus(str, Enum):
    """Task lifecycle. Completed and cancelled are terminal."""

    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    def can_transition_to(self, target: "TaskStatus") -> bool:
        return self is TaskStatus.PENDING and target is not TaskStatus.PENDING


class TaskPriority(str, Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def enum_column(enum_cls, default, **kwargs) -> Column:
    """Column storing the enum's lowercase value rather than its member name."""
    return Column(
        SAEnum(
            enum_cls,
            values_callable=lambda members: [member.value for member in members],
            native_enum=False,
            validate_strings=True,
            length=20,
        ),
        nullable=False,
        default=default,
        **kwargs,
    )


class Task(SQLModel, table=True):
    """A task row: standalone, series template, or materialized series instance."""

    __tablename__ = "tasks"

    id: uuid.UUID = Field(default_factory=new_id, sa_column=Column(Uuid, primary_key=True))
    name: str = Field(sa_column=Column(String, nullable=False))
    description: Optional[str] = Field(default=None, sa_column=Column(Text))
    status: TaskStatus = Field(
        default=TaskStatus.PENDING,
        sa_column=enum_column(TaskStatus, TaskStatus.PENDING, index=True),
    )
    priority: TaskPriority = Field(
        default=TaskPriority.NONE,
        sa_column=enum_column(TaskPriority, TaskPriority.NONE),
    )
    due_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime, index=True))
    completed_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime))
    created_at: datetime = Field(default_factory=utc_now, sa_column=Column(UTCDateTime, nullable=False))
    updated_at: datetime = Field(default_factory=utc_now, sa_column=Column(UTCDateTime, nullable=False))

    project_id: Optional[uuid.UUID] = Field(
        default=None,
        sa_column=Column(Uuid, ForeignKey("projects.id", ondelete="RESTRICT"), index=True),
    )
    parent_id: Optional[uuid.UUID] = Field(
        default=None,
        sa_column=Column(Uuid, ForeignKey("tasks.id", ondelete="CASCADE"), index=True),
    )
    # SQLite renders use_alter constraints inline; it only breaks the tasks <-> task_series cycle
    series_id: Optional[uuid.UUID] = Field(
        default=None,
        sa_column=Column(
            Uuid,
            ForeignKey("task_series.id", ondelete="CASCADE", use_alter=True, name="fk_tasks_series_id"),
            index=True,
        ),
    )

    @property
    def short_id(self) -> str:
        return self.id.hex[:8]


class TaskTag(SQLModel, table=True):
    """Unordered, duplicate-free tag set of a task."""

    __tablename__ = "task_tags"

    task_id: uuid.UUID = Field(
        sa_column=Column(Uuid, ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True)
    )
    tag_name: str = Field(sa_column=Column(String, primary_key=True))


class TaskDependency(SQLModel, table=True):
    """Directed edge: task_id depends on depends_on_id."""

    __tablename__ = "task_dependencies"
    __table_args__ = (Index("ix_task_dependencies_depends_on_id", "depends_on_id"),)

    task_id: uuid.UUID = Field(
        sa_column=Column(Uuid, ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True)
    )
    depends_on_id: uuid.UUID = Field(
        sa_column=Column(Uuid, ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True)
    )
