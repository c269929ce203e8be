"""Materialization refresh protocol: keep series instance rows in sync with their rules."""
from datetime import datetime
from typing import List, Optional
import logging
import time
import uuid

from sqlmodel import Session, select

from taskflow.models.base import as_utc
from taskflow.models.series import TaskSeries
from taskflow.models.task import Task, TaskStatus, TaskTag
from taskflow.services.errors import CoreError, MaterializationError
from taskflow.services.materialization import MaterializationSummary
from taskflow.services.recurrence import RecurrenceManager, SeriesOccurrence
from taskflow.services.repository.base import RepositoryBase
from taskflow.utils.metrics import REFRESH_SECONDS

logger = logging.getLogger(__name__)


class MaterializationOperations(RepositoryBase):
    """Refresh of materialized series instances over a window."""

    def refresh_series_materialization(
        self, series_id: uuid.UUID, start: datetime, end: datetime
    ) -> int:
        """
        Materialize one series over [start, end].

        Returns:
            Number of instance rows inserted

        Raises:
            SeriesNotFoundError: If the series does not exist
            MaterializationError: If the series rule cannot be evaluated
        """
        with self.transaction() as session:
            series = self._get_series(session, series_id)
            return self._refresh_series(session, series, start, end)

    def refresh_all_active_series(self, start: datetime, end: datetime) -> MaterializationSummary:
        """
        Materialize every active series over [start, end].

        A series that fails is rolled back to its savepoint and reported in
        the summary; the others still commit.
        """
        with self.transaction() as session:
            return self._refresh_all(session, start, end, strict=False)

    def _active_series(self, session: Session) -> List[TaskSeries]:
        return list(
            session.exec(
                select(TaskSeries).where(TaskSeries.active == True).order_by(TaskSeries.id)  # noqa: E712
            ).all()
        )

    def _refresh_all(
        self, session: Session, start: datetime, end: datetime, strict: bool = True
    ) -> MaterializationSummary:
        started = time.perf_counter()
        summary = MaterializationSummary()

        with self.metrics.time_operation(REFRESH_SECONDS):
            for series in self._active_series(session):
                if strict:
                    summary.instances_created += self._refresh_series(session, series, start, end)
                else:
                    try:
                        with session.begin_nested():
                            summary.instances_created += self._refresh_series(session, series, start, end)
                    except MaterializationError as e:
                        summary.series_with_errors += 1
                        summary.errors.append(e.message)
                        continue
                summary.series_processed += 1

        summary.duration_ms = int((time.perf_counter() - started) * 1000)
        self.events.info(
            "Materialization refresh complete",
            window_start=as_utc(start),
            window_end=as_utc(end),
            **summary.model_dump(),
        )
        return summary

    def _candidates(
        self, recurrence: RecurrenceManager, start: datetime, end: datetime
    ) -> List[SeriesOccurrence]:
        """Occurrences the series itself must back with a row, by effective instant."""
        candidates = {
            occ.effective_at: occ
            for occ in recurrence.generate_occurrences_between(start, end)
            if occ.needs_instance
        }

        wanted = self.manager.config.min_upcoming_instances
        now = self.now()
        if wanted and end >= now:
            for occ in recurrence.preview_occurrences(now, wanted):
                if occ.needs_instance:
                    candidates.setdefault(occ.effective_at, occ)

        return [candidates[instant] for instant in sorted(candidates)]

    def _refresh_series(
        self, session: Session, series: TaskSeries, start: datetime, end: datetime
    ) -> int:
        start, end = as_utc(start), as_utc(end)
        if start > end:
            return 0

        try:
            recurrence = self._recurrence_manager(session, series)
            candidates = self._candidates(recurrence, start, end)
        except CoreError as e:
            self.metrics.refresh_error()
            logger.error(f"Cannot materialize series {series.id}: {e.message}")
            raise MaterializationError(
                f"Series {series.id}: {e.message}", {"series_id": str(series.id), "cause": e.code}
            ) from e

        if not candidates:
            self.metrics.series_refreshed(0)
            return 0

        existing = set(
            as_utc(due_at)
            for due_at in session.exec(
                select(Task.due_at).where(
                    Task.series_id == series.id,
                    Task.due_at >= candidates[0].effective_at,
                    Task.due_at <= candidates[-1].effective_at,
                )
            ).all()
        )

        template = recurrence.template
        tags = self._tags_of(session, template.id)
        now = self.now()
        batch_cap = self.manager.config.max_batch_size
        created = 0
        capped = False
        last_inserted: Optional[datetime] = None
        instances: List[Task] = []

        for occurrence in candidates:
            if occurrence.effective_at in existing:
                continue
            if created >= batch_cap:
                capped = True
                break
            instances.append(Task(
                name=template.name,
                description=template.description,
                priority=template.priority,
                parent_id=template.parent_id,
                project_id=template.project_id,
                series_id=series.id,
                status=TaskStatus.PENDING,
                due_at=occurrence.effective_at,
                created_at=now,
                updated_at=now,
            ))
            existing.add(occurrence.effective_at)
            created += 1
            last_inserted = occurrence.effective_at

        if instances:
            session.add_all(instances)
            session.flush()
            session.add_all(
                TaskTag(task_id=instance.id, tag_name=tag) for instance in instances for tag in tags
            )

        if created:
            watermark = last_inserted if capped else max(end, last_inserted)
            if series.last_materialized_until is not None:
                watermark = max(watermark, as_utc(series.last_materialized_until))
            series.last_materialized_until = watermark
            series.updated_at = now
            session.add(series)
            session.flush()
            logger.debug(f"Series {series.id}: materialized {created} instance(s)")
        if capped:
            logger.warning(
                f"Series {series.id}: batch cap of {batch_cap} reached, "
                f"materialized up to {last_inserted.isoformat()}"
            )

        self.metrics.series_refreshed(created)
        return created
