"""Task operations: create, complete, scoped edits, dependencies and detailed queries."""
from datetime import datetime, timedelta
from typing import List, Optional
import logging
import uuid

from sqlalchemy import String, cast, delete, literal
from sqlalchemy import select as sa_select
from sqlmodel import Session, select

from taskflow.models.base import as_utc
from taskflow.models.query import Query
from taskflow.models.series import EditScope, ExceptionType, SeriesException, TaskSeries
from taskflow.models.task import Task, TaskDependency, TaskStatus, TaskTag
from taskflow.schemas.task import (
    CompletionResult,
    NewTaskData,
    SeriesInstanceCompletion,
    SingleCompletion,
    TaskQueryResult,
    UpdateTaskData,
)
from taskflow.services.errors import (
    AmbiguousIdError,
    CircularDependencyError,
    CoreError,
    InvalidExceptionError,
    InvalidInputError,
    MaterializationError,
    NotFoundError,
    TaskBlockedError,
)
from taskflow.services.recurrence import RecurrenceManager, SeriesOccurrence, anchor, normalize_rrule
from taskflow.services.repository.base import RepositoryBase
from taskflow.services.repository.query_builder import build_task_query, extract_due_filters

logger = logging.getLogger(__name__)

# Slice materialized around a single occurrence that completion needs
SLICE = timedelta(minutes=1)


class TaskOperations(RepositoryBase):
    """Task surface of the repository. Mixed into Repository with the series surface."""

    # Create

    def add_task(self, data: NewTaskData) -> Task:
        """
        Insert a task. With an rrule the task becomes a series template and the
        series is materialized over the default window in the same transaction.

        Returns:
            The template task for recurring input, else the inserted task
        """
        with self.transaction() as session:
            task = self._add_task(session, data)
            logger.info(f"Added task {task.short_id} '{task.name}'")
            return task

    def _add_task(self, session: Session, data: NewTaskData, now: Optional[datetime] = None) -> Task:
        now = now or self.now()
        project_id = self._resolve_project_id(session, data.project_id, data.project_name)
        if data.parent_id is not None:
            self._get_task(session, data.parent_id)
        if data.series_id is not None:
            if data.rrule:
                raise InvalidInputError("A task cannot both start a series and belong to one")
            self._get_series(session, data.series_id)
        if data.timezone and not data.rrule:
            raise InvalidInputError("A timezone only applies to recurring tasks")

        # Validate the rule before anything is written
        canonical = None
        tz_name = data.timezone or "UTC"
        dtstart = anchor(data.due_at or now)
        if data.rrule:
            canonical = normalize_rrule(data.rrule, dtstart, tz_name)

        task = Task(
            name=data.name,
            description=data.description,
            priority=data.priority,
            due_at=as_utc(data.due_at),
            project_id=project_id,
            parent_id=data.parent_id,
            series_id=data.series_id,
            created_at=now,
            updated_at=now,
        )
        session.add(task)
        session.flush()

        if data.depends_on is not None:
            self._add_dependency(session, task, data.depends_on)
        self._add_tags(session, task.id, data.tags)

        if canonical is not None:
            series = self._create_series(session, task, canonical, dtstart, tz_name, now)
            start, end = self.manager.default_window(now)
            self._refresh_series(session, series, start, end)
        return task

    # Lookup

    def find_task_by_id(self, task_id: uuid.UUID) -> Optional[Task]:
        with self.transaction() as session:
            return session.get(Task, task_id)

    def get_task_tags(self, task_id: uuid.UUID) -> List[str]:
        with self.transaction() as session:
            self._get_task(session, task_id)
            return self._tags_of(session, task_id)

    def find_tasks_by_short_id_prefix(self, prefix: str) -> List[Task]:
        """Tasks whose id (hex, dashes ignored) starts with ``prefix``."""
        cleaned = prefix.replace("-", "").strip().lower()
        if not cleaned or any(ch not in "0123456789abcdef" for ch in cleaned):
            return []
        with self.transaction() as session:
            return list(
                session.exec(
                    select(Task)
                    .where(cast(Task.id, String).like(f"{cleaned}%"))
                    .order_by(Task.created_at)
                ).all()
            )

    def resolve_task_id(self, id_or_prefix: str) -> uuid.UUID:
        """
        Resolve a full id or a short id prefix to one task id.

        Raises:
            NotFoundError: If nothing matches
            AmbiguousIdError: If the prefix matches several tasks
        """
        try:
            task_id = uuid.UUID(id_or_prefix)
        except ValueError:
            matches = self.find_tasks_by_short_id_prefix(id_or_prefix)
            if not matches:
                raise NotFoundError(f"task matching '{id_or_prefix}'")
            if len(matches) > 1:
                raise AmbiguousIdError(id_or_prefix, [(task.id, task.name) for task in matches])
            return matches[0].id

        if self.find_task_by_id(task_id) is None:
            raise NotFoundError(f"task {task_id}")
        return task_id

    def find_series_instances(self, series_id: uuid.UUID) -> List[Task]:
        with self.transaction() as session:
            self._get_series(session, series_id)
            return list(
                session.exec(
                    select(Task).where(Task.series_id == series_id).order_by(Task.due_at)
                ).all()
            )

    def find_tasks_with_details(self, query: Optional[Query] = None) -> List[TaskQueryResult]:
        """
        Refresh active series over the window the query needs, then run it.

        Args:
            query: Filter tree; the configured default filters when None

        Returns:
            Matching tasks with depth, project name and tags, in ancestry order
        """
        if query is None:
            query = self.default_query
        due_filters = extract_due_filters(query)

        with self.transaction() as session:
            now = self.now()
            start, end = self.manager.calculate_window_for_filters(due_filters, now)
            self._refresh_all(session, start, end, strict=True)

            rows = session.exec(build_task_query(query, now, self.manager.tz)).all()
            results = []
            for row in rows:
                values = dict(row._mapping)
                tags = values.pop("tags", None)
                values["tags"] = sorted(tags.split(",")) if tags else []
                results.append(TaskQueryResult(**values))
            return results

    # Dependencies

    def _path_exists(self, session: Session, start: uuid.UUID, end: uuid.UUID) -> bool:
        """True if ``end`` is reachable from ``start`` along depends-on edges."""
        edges = TaskDependency.__table__
        path = (
            sa_select(edges.c.depends_on_id.label("id"))
            .where(edges.c.task_id == start)
            .cte("dependency_path", recursive=True)
        )
        step = edges.alias("step")
        path = path.union(sa_select(step.c.depends_on_id).where(step.c.task_id == path.c.id))
        found = session.exec(sa_select(literal(1)).select_from(path).where(path.c.id == end).limit(1))
        return found.first() is not None

    def _add_dependency(self, session: Session, task: Task, depends_on_id: uuid.UUID) -> None:
        if depends_on_id == task.id:
            raise InvalidInputError("A task cannot depend on itself")
        depends_on = self._get_task(session, depends_on_id)
        if session.get(TaskDependency, (task.id, depends_on_id)) is not None:
            return
        if self._path_exists(session, depends_on_id, task.id):
            raise CircularDependencyError(task.name, depends_on.name)
        session.add(TaskDependency(task_id=task.id, depends_on_id=depends_on_id))
        session.flush()

    def add_dependency(self, task_id: uuid.UUID, depends_on_id: uuid.UUID) -> None:
        """
        Record that ``task_id`` depends on ``depends_on_id``.

        Raises:
            CircularDependencyError: If the edge would close a cycle
        """
        with self.transaction() as session:
            self._add_dependency(session, self._get_task(session, task_id), depends_on_id)

    def remove_dependency(self, task_id: uuid.UUID, depends_on_id: uuid.UUID) -> None:
        with self.transaction() as session:
            result = session.exec(
                delete(TaskDependency).where(
                    TaskDependency.task_id == task_id, TaskDependency.depends_on_id == depends_on_id
                )
            )
            if result.rowcount == 0:
                raise NotFoundError(f"dependency {task_id} -> {depends_on_id}")

    def find_dependencies(self, task_id: uuid.UUID) -> List[Task]:
        with self.transaction() as session:
            return list(
                session.exec(
                    select(Task)
                    .join(TaskDependency, TaskDependency.depends_on_id == Task.id)
                    .where(TaskDependency.task_id == task_id)
                    .order_by(Task.name)
                ).all()
            )

    def _blockers(self, session: Session, task_id: uuid.UUID) -> List[str]:
        return list(
            session.exec(
                select(Task.name)
                .join(TaskDependency, TaskDependency.depends_on_id == Task.id)
                .where(TaskDependency.task_id == task_id, Task.status != TaskStatus.COMPLETED)
                .order_by(Task.name)
            ).all()
        )

    # Status changes

    def complete_task(self, task_id: uuid.UUID) -> CompletionResult:
        """
        Complete a task. For a series instance also report the next occurrence
        and, when it falls inside the materialized window, its task row.

        Raises:
            NotFoundError: If the task does not exist
            TaskBlockedError: If a dependency is not completed
            InvalidInputError: If the task is not pending
        """
        with self.transaction() as session:
            task = self._get_task(session, task_id)
            self._set_status(session, task, TaskStatus.COMPLETED)

            if task.series_id is None:
                return SingleCompletion(task=task)

            series = self._get_series(session, task.series_id)
            try:
                recurrence = self._recurrence_manager(session, series)
            except CoreError as e:
                raise MaterializationError(f"Series {series.id}: {e.message}") from e

            upcoming = recurrence.preview_occurrences(task.due_at or task.completed_at, 1)
            if not upcoming:
                return SeriesInstanceCompletion(completed=task, series_id=series.id)

            occurrence = upcoming[0]
            next_task = None
            if self.manager.contains(occurrence.effective_at, series.last_materialized_until):
                next_task = self._ensure_instance(session, series, recurrence, occurrence)
            return SeriesInstanceCompletion(
                completed=task,
                next_task=next_task,
                series_id=series.id,
                next_occurrence=occurrence.effective_at,
            )

    def _instance_at(self, session: Session, series_id: uuid.UUID, instant: datetime) -> Optional[Task]:
        return session.exec(
            select(Task).where(Task.series_id == series_id, Task.due_at == instant)
        ).first()

    def _ensure_instance(
        self,
        session: Session,
        series: TaskSeries,
        recurrence: RecurrenceManager,
        occurrence: SeriesOccurrence,
    ) -> Optional[Task]:
        if occurrence.exception_task_id is not None:
            return session.get(Task, occurrence.exception_task_id)

        instance = self._instance_at(session, series.id, occurrence.effective_at)
        if instance is None:
            self._refresh_series(
                session, series, occurrence.scheduled_at - SLICE, occurrence.scheduled_at + SLICE
            )
            instance = self._instance_at(session, series.id, occurrence.effective_at)
        return instance

    def cancel_task(self, task_id: uuid.UUID) -> Task:
        with self.transaction() as session:
            task = self._get_task(session, task_id)
            self._set_status(session, task, TaskStatus.CANCELLED)
            return task

    def _set_status(self, session: Session, task: Task, status: TaskStatus) -> None:
        if task.status == status:
            raise InvalidInputError(f"Task '{task.name}' is already {status.value}")
        if not task.status.can_transition_to(status):
            raise InvalidInputError(
                f"Task '{task.name}' is {task.status.value} and cannot become {status.value}"
            )
        if status is TaskStatus.COMPLETED:
            blockers = self._blockers(session, task.id)
            if blockers:
                raise TaskBlockedError(blockers)

        now = self.now()
        task.status = status
        task.completed_at = now if status is TaskStatus.COMPLETED else None
        task.updated_at = now
        session.add(task)
        session.flush()

    # Delete

    def delete_task(self, task_id: uuid.UUID) -> None:
        """Delete a task; tags, dependency edges, children and owned series go with it."""
        with self.transaction() as session:
            result = session.exec(delete(Task).where(Task.id == task_id))
            if result.rowcount == 0:
                raise NotFoundError(f"task {task_id}", {"task_id": str(task_id)})
            logger.info(f"Deleted task {task_id}")

    # Update

    def update_task(
        self,
        task_id: uuid.UUID,
        data: UpdateTaskData,
        scope: EditScope = EditScope.THIS_OCCURRENCE,
    ) -> Task:
        """
        Apply a partial update.

        Standalone tasks and templates ignore ``scope``. For a series instance:
        this occurrence edits the row alone (a due date change detaches it as a
        moved occurrence); future and all push the change to the template and
        series, drop the affected instances and rewind the watermark.

        Returns:
            The updated task, or the template for series-wide scopes
        """
        with self.transaction() as session:
            task = self._get_task(session, task_id)

            if task.series_id is None:
                if data.touches_recurrence:
                    raise InvalidInputError(
                        "Cannot add recurrence to existing task; create a new recurring task instead"
                    )
                self._apply_fields(session, task, data)
                return task

            series = self._get_series(session, task.series_id)
            if scope is EditScope.THIS_OCCURRENCE:
                return self._update_occurrence(session, task, series, data)
            return self._update_series_scope(session, task, series, data, scope)

    def _update_occurrence(
        self, session: Session, task: Task, series: TaskSeries, data: UpdateTaskData
    ) -> Task:
        if data.touches_recurrence:
            raise InvalidInputError(
                "Recurrence cannot change for a single occurrence; edit this and future or all occurrences"
            )

        original_due = task.due_at
        if data.is_set("due_at") and not self._same_instant(data.due_at, original_due):
            if data.due_at is None:
                raise InvalidInputError("A series occurrence must keep a due date")
            self._detach_as_move(session, task, series, original_due, as_utc(data.due_at))

        self._apply_fields(session, task, data)
        return task

    def _detach_as_move(
        self,
        session: Session,
        task: Task,
        series: TaskSeries,
        original: datetime,
        target: datetime,
    ) -> None:
        if session.get(SeriesException, (series.id, original)) is not None:
            raise InvalidExceptionError(f"Occurrence {original.isoformat()} already has an exception")
        task.series_id = None
        session.add(task)
        session.flush()
        session.add(
            SeriesException(
                series_id=series.id,
                occurrence_dt=original,
                exception_type=ExceptionType.MOVE,
                exception_task_id=task.id,
                notes=f"Moved from {original:%Y-%m-%d %H:%M} to {target:%Y-%m-%d %H:%M} (UTC)",
                created_at=self.now(),
            )
        )
        session.flush()

    def _update_series_scope(
        self,
        session: Session,
        task: Task,
        series: TaskSeries,
        data: UpdateTaskData,
        scope: EditScope,
    ) -> Task:
        if data.is_set("series_id"):
            raise InvalidInputError("An instance cannot be moved to another series")
        for field_name in ("status", "due_at"):
            if data.is_set(field_name):
                raise InvalidInputError(
                    f"'{field_name}' can only change for a single occurrence"
                )

        if data.is_set("rrule") or data.is_set("timezone"):
            self._reschedule_series(session, series, rrule=data.rrule, timezone=data.timezone)

        template = self._get_task(session, series.template_task_id)
        self._apply_fields(session, template, data.without_recurrence())

        instances = delete(Task).where(Task.series_id == series.id)
        if scope is EditScope.THIS_AND_FUTURE:
            pivot = task.due_at or self.now()
            instances = instances.where(Task.due_at >= pivot)
            series.last_materialized_until = pivot - timedelta(days=1)
        else:
            series.last_materialized_until = None
        session.exec(instances.execution_options(synchronize_session=False))

        series.updated_at = self.now()
        session.add(series)
        session.flush()
        session.expire_all()
        logger.info(f"Series {series.id} edited with scope '{scope.value}'")
        return session.get(Task, template.id)

    def _apply_fields(self, session: Session, task: Task, data: UpdateTaskData) -> None:
        if data.is_set("name"):
            if not data.name or not data.name.strip():
                raise InvalidInputError("Task name cannot be empty")
            task.name = data.name.strip()
        if data.is_set("description"):
            task.description = data.description
        if data.is_set("priority") and data.priority is not None:
            task.priority = data.priority
        if data.is_set("due_at"):
            task.due_at = as_utc(data.due_at)
        if data.is_set("project_name"):
            task.project_id = self._resolve_project_id(session, None, data.project_name)
        if data.is_set("parent_id"):
            self._check_parent(session, task, data.parent_id)
            task.parent_id = data.parent_id
        if data.is_set("status") and data.status is not None and data.status != task.status:
            self._set_status(session, task, data.status)

        if data.add_tags:
            self._add_tags(session, task.id, data.add_tags)
        if data.remove_tags:
            session.exec(
                delete(TaskTag).where(TaskTag.task_id == task.id, TaskTag.tag_name.in_(data.remove_tags))
            )
        if data.is_set("depends_on") and data.depends_on is not None:
            self._add_dependency(session, task, data.depends_on)

        task.updated_at = self.now()
        session.add(task)
        session.flush()

    def _check_parent(self, session: Session, task: Task, parent_id: Optional[uuid.UUID]) -> None:
        ancestor_id = parent_id
        while ancestor_id is not None:
            if ancestor_id == task.id:
                raise InvalidInputError("A task cannot be its own ancestor")
            ancestor_id = self._get_task(session, ancestor_id).parent_id
