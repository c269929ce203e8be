"""Recurring series and per-occurrence exception tables."""
from datetime import datetime
from enum import Enum
from typing import Optional
import uuid

from sqlalchemy import Boolean, CheckConstraint, Column, ForeignKey, String, Text, Uuid
from sqlmodel import Field, SQLModel

from taskflow.models.base import UTCDateTime, new_id, utc_now
from taskflow.models.task import enum_column


class ExceptionType(str, Enum):
    """How an exception changes its occurrence.

    skip hides it, override replaces it with another task at the same instant,
    move hides it and points at a standalone task at a new instant.
    """

    SKIP = "skip"
    OVERRIDE = "override"
    MOVE = "move"

    @property
    def requires_task(self) -> bool:
        return self is not ExceptionType.SKIP


class EditScope(str, Enum):
    THIS_OCCURRENCE = "this"
    THIS_AND_FUTURE = "future"
    ENTIRE_SERIES = "all"


class TaskSeries(SQLModel, table=True):
    """A persisted recurrence: canonical rule, anchor, zone and watermark."""

    __tablename__ = "task_series"

    id: uuid.UUID = Field(default_factory=new_id, sa_column=Column(Uuid, primary_key=True))
    template_task_id: uuid.UUID = Field(
        sa_column=Column(Uuid, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, unique=True)
    )
    rrule: str = Field(sa_column=Column(Text, nullable=False))
    dtstart: datetime = Field(sa_column=Column(UTCDateTime, nullable=False))
    timezone: str = Field(default="UTC", sa_column=Column(String, nullable=False, default="UTC"))
    active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True, index=True))
    last_materialized_until: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime))
    created_at: datetime = Field(default_factory=utc_now, sa_column=Column(UTCDateTime, nullable=False))
    updated_at: datetime = Field(default_factory=utc_now, sa_column=Column(UTCDateTime, nullable=False))


class SeriesException(SQLModel, table=True):
    """Override of a single occurrence, keyed by (series_id, occurrence_dt)."""

    __tablename__ = "series_exceptions"
    __table_args__ = (
        CheckConstraint(
            "(exception_type = 'skip' AND exception_task_id IS NULL) OR "
            "(exception_type IN ('override', 'move') AND exception_task_id IS NOT NULL)",
            name="ck_series_exceptions_task",
        ),
    )

    series_id: uuid.UUID = Field(
        sa_column=Column(Uuid, ForeignKey("task_series.id", ondelete="CASCADE"), primary_key=True)
    )
    occurrence_dt: datetime = Field(sa_column=Column(UTCDateTime, primary_key=True))
    exception_type: ExceptionType = Field(sa_column=enum_column(ExceptionType, None))
    exception_task_id: Optional[uuid.UUID] = Field(
        default=None,
        sa_column=Column(Uuid, ForeignKey("tasks.id", ondelete="CASCADE")),
    )
    notes: Optional[str] = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(default_factory=utc_now, sa_column=Column(UTCDateTime, nullable=False))
