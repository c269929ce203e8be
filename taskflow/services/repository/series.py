"""Series operations: lifecycle, rescheduling, duplication, archiving and statistics."""
from datetime import datetime
from typing import List, Optional, Sequence, Tuple
import logging
import uuid

from sqlalchemy import delete, func, or_
from sqlmodel import Session, select

from taskflow.models.base import as_utc
from taskflow.models.series import ExceptionType, SeriesException, TaskSeries
from taskflow.models.task import Task, TaskStatus
from taskflow.schemas.series import NewSeriesData, SeriesStatistics, UpdateSeriesData
from taskflow.services.errors import InvalidInputError, SeriesNotCompletedError
from taskflow.services.recurrence import SeriesOccurrence, anchor, normalize_rrule
from taskflow.services.repository.base import RepositoryBase

logger = logging.getLogger(__name__)

INACTIVE_FACTOR = 0.8
INCONSISTENT_FACTOR = 0.9
EXCEPTION_RATIO_LIMIT = 0.2


class SeriesOperations(RepositoryBase):
    """Series surface of the repository."""

    def _create_series(
        self,
        session: Session,
        template: Task,
        canonical: str,
        dtstart: datetime,
        tz_name: str,
        now: Optional[datetime] = None,
    ) -> TaskSeries:
        now = now or self.now()
        series = TaskSeries(
            template_task_id=template.id,
            rrule=canonical,
            dtstart=anchor(dtstart),
            timezone=tz_name,
            active=True,
            created_at=now,
            updated_at=now,
        )
        session.add(series)
        session.flush()
        logger.info(f"Created series {series.id} for template '{template.name}'")
        return series

    def create_series(self, data: NewSeriesData) -> TaskSeries:
        """
        Turn an existing standalone task into a series template.

        The series has no instances until the next refresh.

        Raises:
            NotFoundError: If the template task does not exist
            InvalidInputError: If the task is an instance or already a template
            InvalidRRuleError, InvalidTimezoneError: If the schedule is rejected
        """
        with self.transaction() as session:
            template = self._get_task(session, data.template_task_id)
            if template.series_id is not None:
                raise InvalidInputError("A series instance cannot become a template")
            if self._series_for_template(session, template.id) is not None:
                raise InvalidInputError(f"Task '{template.name}' is already a series template")
            canonical = normalize_rrule(data.rrule, data.dtstart, data.timezone)
            return self._create_series(session, template, canonical, data.dtstart, data.timezone)

    def _series_for_template(self, session: Session, template_id: uuid.UUID) -> Optional[TaskSeries]:
        return session.exec(select(TaskSeries).where(TaskSeries.template_task_id == template_id)).first()

    def find_series_by_id(self, series_id: uuid.UUID) -> Optional[TaskSeries]:
        with self.transaction() as session:
            return session.get(TaskSeries, series_id)

    def find_series_by_template(self, template_id: uuid.UUID) -> Optional[TaskSeries]:
        with self.transaction() as session:
            return self._series_for_template(session, template_id)

    def find_active_series(self) -> List[TaskSeries]:
        with self.transaction() as session:
            return self._active_series(session)

    def find_series_by_pattern(self, pattern: str) -> List[TaskSeries]:
        """Series whose template name or rule text contains ``pattern``."""
        like = f"%{pattern}%"
        with self.transaction() as session:
            return list(
                session.exec(
                    select(TaskSeries)
                    .join(Task, Task.id == TaskSeries.template_task_id)
                    .where(or_(Task.name.ilike(like), TaskSeries.rrule.ilike(like)))
                    .order_by(TaskSeries.created_at)
                ).all()
            )

    # Updates

    def _reschedule_series(
        self,
        session: Session,
        series: TaskSeries,
        rrule: Optional[str] = None,
        dtstart: Optional[datetime] = None,
        timezone: Optional[str] = None,
    ) -> None:
        """Re-normalize the rule; any schedule change rewinds the watermark."""
        new_dtstart = anchor(dtstart) if dtstart is not None else anchor(series.dtstart)
        new_timezone = timezone or series.timezone
        canonical = normalize_rrule(rrule or series.rrule, new_dtstart, new_timezone)

        changed = (
            canonical != series.rrule
            or new_timezone != series.timezone
            or new_dtstart != anchor(series.dtstart)
        )
        series.rrule = canonical
        series.dtstart = new_dtstart
        series.timezone = new_timezone
        if changed:
            series.last_materialized_until = None
        series.updated_at = self.now()
        session.add(series)
        session.flush()

    def _update_series(self, session: Session, series_id: uuid.UUID, data: UpdateSeriesData) -> TaskSeries:
        series = self._get_series(session, series_id)
        if data.changes_schedule:
            self._reschedule_series(session, series, data.rrule, data.dtstart, data.timezone)
        if data.active is not None and data.active != series.active:
            series.active = data.active
            if data.active:
                series.last_materialized_until = None
        series.updated_at = self.now()
        session.add(series)
        session.flush()
        return series

    def update_series(self, series_id: uuid.UUID, data: UpdateSeriesData) -> TaskSeries:
        with self.transaction() as session:
            return self._update_series(session, series_id, data)

    def bulk_update_series(
        self, updates: Sequence[Tuple[uuid.UUID, UpdateSeriesData]]
    ) -> List[TaskSeries]:
        """Apply a separate update to each series in one transaction."""
        with self.transaction() as session:
            return [self._update_series(session, series_id, data) for series_id, data in updates]

    def delete_series(self, series_id: uuid.UUID) -> None:
        """Delete a series with its exceptions and instances; the template stays."""
        with self.transaction() as session:
            self._get_series(session, series_id)
            session.exec(delete(SeriesException).where(SeriesException.series_id == series_id))
            session.exec(delete(Task).where(Task.series_id == series_id))
            session.exec(delete(TaskSeries).where(TaskSeries.id == series_id))
            logger.info(f"Deleted series {series_id}")

    def duplicate_series(
        self, series_id: uuid.UUID, new_name: str, new_timezone: Optional[str] = None
    ) -> TaskSeries:
        """
        Clone a series under a new template name.

        The clone keeps the rule, anchor, priority, description, project and tags,
        optionally moves to another timezone, and has no instances yet.
        """
        if not new_name or not new_name.strip():
            raise InvalidInputError("New series name cannot be empty")

        with self.transaction() as session:
            series = self._get_series(session, series_id)
            template = self._get_task(session, series.template_task_id)
            now = self.now()

            clone = Task(
                name=new_name.strip(),
                description=template.description,
                priority=template.priority,
                due_at=template.due_at,
                project_id=template.project_id,
                parent_id=None,
                created_at=now,
                updated_at=now,
            )
            session.add(clone)
            session.flush()
            self._add_tags(session, clone.id, self._tags_of(session, template.id))

            tz_name = new_timezone or series.timezone
            canonical = normalize_rrule(series.rrule, series.dtstart, tz_name)
            return self._create_series(session, clone, canonical, series.dtstart, tz_name, now)

    # Lifecycle

    def archive_completed_series(self, series_id: uuid.UUID) -> TaskSeries:
        """
        Deactivate a series once none of its instances are pending.

        Raises:
            SeriesNotCompletedError: If any instance is still pending
        """
        with self.transaction() as session:
            series = self._get_series(session, series_id)
            pending = session.exec(
                select(func.count())
                .select_from(Task)
                .where(Task.series_id == series_id, Task.status == TaskStatus.PENDING)
            ).one()
            if pending:
                raise SeriesNotCompletedError(
                    f"Series has {pending} pending tasks. Complete or cancel them before archiving.",
                    {"series_id": str(series_id), "pending": pending},
                )
            series.active = False
            series.updated_at = self.now()
            session.add(series)
            logger.info(f"Archived series {series_id}")
            return series

    def reactivate_series(self, series_id: uuid.UUID) -> TaskSeries:
        """Reactivate an archived series; its watermark is rewound."""
        with self.transaction() as session:
            series = self._get_series(session, series_id)
            if series.active:
                raise InvalidInputError(f"Series {series_id} is already active")
            series.active = True
            series.last_materialized_until = None
            series.updated_at = self.now()
            session.add(series)
            return series

    # Reads

    def preview_series_occurrences(
        self, series_id: uuid.UUID, count: int, after: Optional[datetime] = None
    ) -> List[SeriesOccurrence]:
        with self.transaction() as session:
            series = self._get_series(session, series_id)
            recurrence = self._recurrence_manager(session, series)
            return recurrence.preview_occurrences(after or self.now(), count)

    def get_series_statistics(self, series_id: uuid.UUID) -> SeriesStatistics:
        """
        Aggregate instance and exception counts for a series.

        health_score = completion_rate * activity_factor * consistency_factor
        """
        with self.transaction() as session:
            series = self._get_series(session, series_id)
            stats = SeriesStatistics(series_id=series.id, active=series.active)

            by_status = session.exec(
                select(Task.status, func.count())
                .where(Task.series_id == series_id)
                .group_by(Task.status)
            ).all()
            for status, count in by_status:
                stats.total_instances += count
                if status == TaskStatus.PENDING:
                    stats.pending_instances = count
                elif status == TaskStatus.COMPLETED:
                    stats.completed_instances = count
                elif status == TaskStatus.CANCELLED:
                    stats.cancelled_instances = count

            by_type = session.exec(
                select(SeriesException.exception_type, func.count())
                .where(SeriesException.series_id == series_id)
                .group_by(SeriesException.exception_type)
            ).all()
            for exception_type, count in by_type:
                stats.total_exceptions += count
                if exception_type == ExceptionType.SKIP:
                    stats.skip_exceptions = count
                elif exception_type == ExceptionType.OVERRIDE:
                    stats.override_exceptions = count
                elif exception_type == ExceptionType.MOVE:
                    stats.move_exceptions = count

            first, last = session.exec(
                select(func.min(Task.due_at), func.max(Task.due_at)).where(Task.series_id == series_id)
            ).one()
            stats.first_instance_at = as_utc(first) if first else None
            stats.last_instance_at = as_utc(last) if last else None

            if series.active:
                stats.next_occurrence = self._recurrence_manager(session, series).next_occurrence_after(
                    self.now()
                )

            total = stats.total_instances
            stats.completion_rate = stats.completed_instances / total if total else 1.0
            activity = 1.0 if series.active else INACTIVE_FACTOR
            ratio = stats.total_exceptions / max(total, 1)
            consistency = 1.0 if ratio < EXCEPTION_RATIO_LIMIT else INCONSISTENT_FACTOR
            stats.health_score = stats.completion_rate * activity * consistency
            return stats
