"""Series and exception schemas."""
from datetime import datetime
from typing import List, Optional
import uuid

from pydantic import BaseModel, ConfigDict, Field

from taskflow.models.series import ExceptionType


class NewSeriesData(BaseModel):
    template_task_id: uuid.UUID
    rrule: str
    dtstart: datetime
    timezone: str = "UTC"


class UpdateSeriesData(BaseModel):
    """Partial series update; unset fields are left alone."""

    rrule: Optional[str] = None
    dtstart: Optional[datetime] = None
    timezone: Optional[str] = None
    active: Optional[bool] = None

    @property
    def changes_schedule(self) -> bool:
        return any(getattr(self, name) is not None for name in ("rrule", "dtstart", "timezone"))


class NewSeriesException(BaseModel):
    series_id: uuid.UUID
    occurrence_dt: datetime
    exception_type: ExceptionType
    exception_task_id: Optional[uuid.UUID] = None
    notes: Optional[str] = None


class SeriesStatistics(BaseModel):
    """Aggregates over a series' instances and exceptions."""

    series_id: uuid.UUID
    active: bool
    total_instances: int = 0
    pending_instances: int = 0
    completed_instances: int = 0
    cancelled_instances: int = 0
    total_exceptions: int = 0
    skip_exceptions: int = 0
    override_exceptions: int = 0
    move_exceptions: int = 0
    first_instance_at: Optional[datetime] = None
    last_instance_at: Optional[datetime] = None
    next_occurrence: Optional[datetime] = None
    completion_rate: float = 1.0
    health_score: float = 1.0


class SeriesResponse(BaseModel):
    id: uuid.UUID
    template_task_id: uuid.UUID
    rrule: str
    dtstart: datetime
    timezone: str
    active: bool
    last_materialized_until: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SeriesExceptionResponse(BaseModel):
    series_id: uuid.UUID
    occurrence_dt: datetime
    exception_type: ExceptionType
    exception_task_id: Optional[uuid.UUID] = None
    notes: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class OccurrenceResponse(BaseModel):
    scheduled_at: datetime
    effective_at: datetime
    exception_type: Optional[ExceptionType] = None
    exception_task_id: Optional[uuid.UUID] = None

    model_config = ConfigDict(from_attributes=True)


class DuplicateSeriesRequest(BaseModel):
    new_name: str = Field(..., min_length=1)
    new_timezone: Optional[str] = None


class SkipOccurrenceRequest(BaseModel):
    occurrence_dt: datetime
    notes: Optional[str] = None


class MoveOccurrenceRequest(BaseModel):
    from_dt: datetime
    to_dt: datetime
    timezone: str = "UTC"
    notes: Optional[str] = None


class RefreshRequest(BaseModel):
    start: datetime
    end: datetime


class SummaryResponse(BaseModel):
    series_processed: int
    instances_created: int
    series_with_errors: int
    errors: List[str]
    duration_ms: int
