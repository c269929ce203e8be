"""Series router: previews, statistics, exceptions and lifecycle."""
from datetime import datetime
from typing import List, Optional
import uuid

from fastapi import APIRouter, Depends, Query as QueryParam, Response, status
from pydantic import BaseModel

from taskflow.models.series import ExceptionType
from taskflow.routers import get_repository
from taskflow.schemas.series import (
    DuplicateSeriesRequest,
    MoveOccurrenceRequest,
    NewSeriesException,
    OccurrenceResponse,
    RefreshRequest,
    SeriesExceptionResponse,
    SeriesResponse,
    SeriesStatistics,
    SkipOccurrenceRequest,
    SummaryResponse,
)
from taskflow.schemas.task import NewTaskData
from taskflow.services.async_repository import AsyncRepository
from taskflow.services.errors import SeriesNotFoundError

router = APIRouter(prefix="/series", tags=["Series"])


class OverrideOccurrenceRequest(BaseModel):
    occurrence_dt: datetime
    task: NewTaskData
    notes: Optional[str] = None


@router.get("", response_model=List[SeriesResponse])
async def list_active_series(repository: AsyncRepository = Depends(get_repository)):
    return await repository.find_active_series()


@router.post("/refresh", response_model=SummaryResponse)
async def refresh_series(window: RefreshRequest, repository: AsyncRepository = Depends(get_repository)):
    """Materialize all active series over an explicit window."""
    summary = await repository.refresh_all_active_series(window.start, window.end)
    return summary.model_dump()


@router.get("/{series_id}", response_model=SeriesResponse)
async def get_series(series_id: uuid.UUID, repository: AsyncRepository = Depends(get_repository)):
    series = await repository.find_series_by_id(series_id)
    if series is None:
        raise SeriesNotFoundError(series_id)
    return series


@router.delete("/{series_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_series(series_id: uuid.UUID, repository: AsyncRepository = Depends(get_repository)):
    await repository.delete_series(series_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{series_id}/preview", response_model=List[OccurrenceResponse])
async def preview_series(
    series_id: uuid.UUID,
    count: int = QueryParam(5, ge=1, le=100),
    after: Optional[datetime] = None,
    repository: AsyncRepository = Depends(get_repository),
):
    occurrences = await repository.preview_series_occurrences(series_id, count, after)
    return [
        OccurrenceResponse(
            scheduled_at=occ.scheduled_at,
            effective_at=occ.effective_at,
            exception_type=occ.exception_type,
            exception_task_id=occ.exception_task_id,
        )
        for occ in occurrences
    ]


@router.get("/{series_id}/statistics", response_model=SeriesStatistics)
async def series_statistics(series_id: uuid.UUID, repository: AsyncRepository = Depends(get_repository)):
    return await repository.get_series_statistics(series_id)


@router.get("/{series_id}/exceptions", response_model=List[SeriesExceptionResponse])
async def list_exceptions(series_id: uuid.UUID, repository: AsyncRepository = Depends(get_repository)):
    return await repository.find_series_exceptions(series_id)


@router.post("/{series_id}/skip", response_model=SeriesExceptionResponse, status_code=status.HTTP_201_CREATED)
async def skip_occurrence(
    series_id: uuid.UUID, request: SkipOccurrenceRequest, repository: AsyncRepository = Depends(get_repository)
):
    return await repository.add_series_exception(
        NewSeriesException(
            series_id=series_id,
            occurrence_dt=request.occurrence_dt,
            exception_type=ExceptionType.SKIP,
            notes=request.notes,
        )
    )


@router.post("/{series_id}/move", response_model=SeriesExceptionResponse, status_code=status.HTTP_201_CREATED)
async def move_occurrence(
    series_id: uuid.UUID, request: MoveOccurrenceRequest, repository: AsyncRepository = Depends(get_repository)
):
    return await repository.move_occurrence_with_validation(
        series_id, request.from_dt, request.to_dt, request.timezone, request.notes
    )


@router.post("/{series_id}/override", response_model=SeriesExceptionResponse, status_code=status.HTTP_201_CREATED)
async def override_occurrence(
    series_id: uuid.UUID, request: OverrideOccurrenceRequest, repository: AsyncRepository = Depends(get_repository)
):
    return await repository.override_occurrence_with_task(
        series_id, request.occurrence_dt, request.task, request.notes
    )


@router.post("/{series_id}/duplicate", response_model=SeriesResponse, status_code=status.HTTP_201_CREATED)
async def duplicate_series(
    series_id: uuid.UUID, request: DuplicateSeriesRequest, repository: AsyncRepository = Depends(get_repository)
):
    return await repository.duplicate_series(series_id, request.new_name, request.new_timezone)


@router.post("/{series_id}/archive", response_model=SeriesResponse)
async def archive_series(series_id: uuid.UUID, repository: AsyncRepository = Depends(get_repository)):
    """Archive a series; refused while any instance is pending."""
    return await repository.archive_completed_series(series_id)


@router.post("/{series_id}/reactivate", response_model=SeriesResponse)
async def reactivate_series(series_id: uuid.UUID, repository: AsyncRepository = Depends(get_repository)):
    return await repository.reactivate_series(series_id)
