"""Per-occurrence exception operations: skip, override and move."""
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Tuple
import logging
import uuid

from sqlalchemy import and_, delete, or_
from sqlmodel import Session, select

from taskflow.models.base import as_utc
from taskflow.models.series import ExceptionType, SeriesException, TaskSeries
from taskflow.models.task import Task, TaskStatus
from taskflow.schemas.series import NewSeriesException
from taskflow.schemas.task import NewTaskData
from taskflow.services.errors import InvalidExceptionError, InvalidInputError, NotFoundError
from taskflow.services.repository.base import RepositoryBase
from taskflow.services.timezone import to_wall_clock, validate_timezone

logger = logging.getLogger(__name__)


class ExceptionOperations(RepositoryBase):
    """Exception surface of the repository."""

    def _validate_exception(self, session: Session, series: TaskSeries, data: NewSeriesException) -> None:
        if data.exception_type is ExceptionType.SKIP:
            if data.exception_task_id is not None:
                raise InvalidExceptionError("Skip exceptions cannot reference a task")
        else:
            label = data.exception_type.value.capitalize()
            if data.exception_task_id is None:
                raise InvalidExceptionError(f"{label} exceptions must reference a task")
            target = session.get(Task, data.exception_task_id)
            if target is None:
                raise InvalidExceptionError(
                    f"{label} exception task {data.exception_task_id} does not exist"
                )
            if data.exception_type is ExceptionType.MOVE and target.series_id is not None:
                raise InvalidExceptionError("Move targets must be standalone tasks")

        occurrence_dt = as_utc(data.occurrence_dt)
        recurrence = self._recurrence_manager(session, series)
        if not recurrence.is_occurrence(occurrence_dt):
            raise InvalidExceptionError(
                f"{occurrence_dt.isoformat()} is not an occurrence of series {series.id}"
            )
        if session.get(SeriesException, (series.id, occurrence_dt)) is not None:
            raise InvalidExceptionError(
                f"Occurrence {occurrence_dt.isoformat()} of series {series.id} already has an exception"
            )

    def _release_instance(
        self,
        session: Session,
        series: TaskSeries,
        occurrence_dt: datetime,
        keep_id: Optional[uuid.UUID],
    ) -> None:
        """
        Stop the series from backing ``occurrence_dt`` with its own row.

        A pending instance without subtasks is deleted. A finished instance, or one
        that has subtasks, is detached from the series and kept as a standalone task.
        """
        query = select(Task).where(Task.series_id == series.id, Task.due_at == occurrence_dt)
        if keep_id is not None:
            query = query.where(Task.id != keep_id)
        for instance in session.exec(query).all():
            has_children = session.exec(
                select(Task.id).where(Task.parent_id == instance.id).limit(1)
            ).first() is not None
            if instance.status is TaskStatus.PENDING and not has_children:
                session.delete(instance)
            else:
                instance.series_id = None
                instance.updated_at = self.now()
                session.add(instance)
                logger.info(
                    f"Detached {instance.status.value} instance {instance.id} from series {series.id}"
                )
        session.flush()

    def _add_exception(self, session: Session, data: NewSeriesException) -> SeriesException:
        series = self._get_series(session, data.series_id)
        self._validate_exception(session, series, data)
        occurrence_dt = as_utc(data.occurrence_dt)

        self._release_instance(session, series, occurrence_dt, data.exception_task_id)

        exception = SeriesException(
            series_id=series.id,
            occurrence_dt=occurrence_dt,
            exception_type=data.exception_type,
            exception_task_id=data.exception_task_id,
            notes=data.notes,
            created_at=self.now(),
        )
        session.add(exception)
        session.flush()
        logger.info(
            f"Added {data.exception_type.value} exception to series {series.id} at {occurrence_dt.isoformat()}"
        )
        return exception

    def add_series_exception(self, data: NewSeriesException) -> SeriesException:
        """
        Record an exception for one occurrence.

        Raises:
            SeriesNotFoundError: If the series does not exist
            InvalidExceptionError: If the exception breaks its type's rules,
                the instant is not an occurrence, or it already has an exception
        """
        with self.transaction() as session:
            return self._add_exception(session, data)

    def bulk_add_series_exceptions(self, exceptions: Sequence[NewSeriesException]) -> List[SeriesException]:
        """Add several exceptions; all or none are stored."""
        with self.transaction() as session:
            return [self._add_exception(session, data) for data in exceptions]

    def remove_series_exception(self, series_id: uuid.UUID, occurrence_dt: datetime) -> None:
        with self.transaction() as session:
            result = session.exec(
                delete(SeriesException).where(
                    SeriesException.series_id == series_id,
                    SeriesException.occurrence_dt == as_utc(occurrence_dt),
                )
            )
            if result.rowcount == 0:
                raise NotFoundError(
                    f"exception for series {series_id} at {as_utc(occurrence_dt).isoformat()}"
                )

    def bulk_remove_series_exceptions(self, keys: Iterable[Tuple[uuid.UUID, datetime]]) -> int:
        """Delete exceptions by (series_id, occurrence_dt); returns how many existed."""
        conditions = [
            and_(SeriesException.series_id == series_id, SeriesException.occurrence_dt == as_utc(instant))
            for series_id, instant in keys
        ]
        if not conditions:
            return 0
        with self.transaction() as session:
            return session.exec(delete(SeriesException).where(or_(*conditions))).rowcount

    def find_series_exceptions(self, series_id: uuid.UUID) -> List[SeriesException]:
        with self.transaction() as session:
            self._get_series(session, series_id)
            return self._series_exceptions(session, series_id)

    def validate_exception_conflicts(
        self, series_id: uuid.UUID, instants: Iterable[datetime]
    ) -> List[SeriesException]:
        """Existing exceptions at any of ``instants``."""
        wanted = [as_utc(instant) for instant in instants]
        if not wanted:
            return []
        with self.transaction() as session:
            return list(
                session.exec(
                    select(SeriesException)
                    .where(
                        SeriesException.series_id == series_id,
                        SeriesException.occurrence_dt.in_(wanted),
                    )
                    .order_by(SeriesException.occurrence_dt)
                ).all()
            )

    def override_occurrence_with_task(
        self,
        series_id: uuid.UUID,
        occurrence_dt: datetime,
        data: NewTaskData,
        notes: Optional[str] = None,
    ) -> SeriesException:
        """Create a replacement task for one occurrence and point an Override at it."""
        if data.rrule or data.series_id or data.timezone:
            raise InvalidInputError("An override task cannot carry its own recurrence")

        with self.transaction() as session:
            self._get_series(session, series_id)
            occurrence_dt = as_utc(occurrence_dt)
            if data.due_at is None:
                data = data.model_copy(update={"due_at": occurrence_dt})
            task = self._add_task(session, data)
            return self._add_exception(
                session,
                NewSeriesException(
                    series_id=series_id,
                    occurrence_dt=occurrence_dt,
                    exception_type=ExceptionType.OVERRIDE,
                    exception_task_id=task.id,
                    notes=notes or f"Override task created: {task.name}",
                ),
            )

    def move_occurrence_with_validation(
        self,
        series_id: uuid.UUID,
        from_dt: datetime,
        to_dt: datetime,
        timezone: str = "UTC",
        notes: Optional[str] = None,
    ) -> SeriesException:
        """
        Move one occurrence to another instant.

        A standalone task copying the template's name, description, priority,
        project and parent (not its tags) is created at ``to_dt``, and a Move
        exception at ``from_dt`` points at it.

        Args:
            timezone: Zone used to describe the move in the exception notes
        """
        tz = validate_timezone(timezone)
        from_dt, to_dt = as_utc(from_dt), as_utc(to_dt)
        if from_dt == to_dt:
            raise InvalidExceptionError("Move target must differ from the original occurrence")

        with self.transaction() as session:
            series = self._get_series(session, series_id)
            template = self._get_task(session, series.template_task_id)
            now = self.now()
            target = Task(
                name=template.name,
                description=template.description,
                priority=template.priority,
                project_id=template.project_id,
                parent_id=template.parent_id,
                due_at=to_dt,
                created_at=now,
                updated_at=now,
            )
            session.add(target)
            session.flush()

            if notes is None:
                notes = (
                    f"Moved from {to_wall_clock(from_dt, tz):%Y-%m-%d %H:%M} "
                    f"to {to_wall_clock(to_dt, tz):%Y-%m-%d %H:%M} ({timezone})"
                )
            return self._add_exception(
                session,
                NewSeriesException(
                    series_id=series_id,
                    occurrence_dt=from_dt,
                    exception_type=ExceptionType.MOVE,
                    exception_task_id=target.id,
                    notes=notes,
                ),
            )
