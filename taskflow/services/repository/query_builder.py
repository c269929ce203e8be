"""Translate a filter tree into SQL over the task hierarchy."""
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import String, and_, cast, exists, func, literal, not_, or_, select, true
from sqlalchemy.sql import ColumnElement, Select
import pytz

from taskflow.models.base import as_utc
from taskflow.models.project import Project
from taskflow.models.query import (
    AndNode,
    DueDate,
    DueFilter,
    DueKind,
    FilterNode,
    NotNode,
    OrNode,
    PriorityFilter,
    ProjectFilter,
    Query,
    StatusFilter,
    TagFilter,
    TagMatch,
    TextField,
    TextFilter,
    TextMatch,
)
from taskflow.models.task import Task, TaskStatus, TaskTag
from taskflow.services.timezone import day_bounds, local_day

TASK_COLUMNS = (
    "id",
    "name",
    "description",
    "status",
    "priority",
    "due_at",
    "completed_at",
    "created_at",
    "updated_at",
    "project_id",
    "parent_id",
    "series_id",
)

tasks_table = Task.__table__
projects_table = Project.__table__
tags_table = TaskTag.__table__


def extract_due_filters(query: Optional[Query]) -> List[DueDate]:
    """Every due-date filter in the tree, through AND, OR and NOT."""
    if query is None:
        return []
    if isinstance(query, FilterNode):
        return [query.filter.due] if isinstance(query.filter, DueFilter) else []
    if isinstance(query, NotNode):
        return extract_due_filters(query.operand)
    return extract_due_filters(query.left) + extract_due_filters(query.right)


def _path_key(table) -> ColumnElement:
    return cast(table.c.created_at, String) + literal("/") + cast(table.c.id, String)


def hierarchy_cte():
    """Recursive walk of the parent forest carrying depth and ancestry path."""
    roots = select(
        *(tasks_table.c[name] for name in TASK_COLUMNS),
        literal(0).label("depth"),
        _path_key(tasks_table).label("path"),
    ).where(tasks_table.c.parent_id.is_(None))
    hierarchy = roots.cte("task_hierarchy", recursive=True)

    child = tasks_table.alias("child")
    children = select(
        *(child.c[name] for name in TASK_COLUMNS),
        (hierarchy.c.depth + 1).label("depth"),
        (hierarchy.c.path + literal(" > ") + _path_key(child)).label("path"),
    ).where(child.c.parent_id == hierarchy.c.id)
    return hierarchy.union_all(children)


class ConditionBuilder:
    """
    Build WHERE clauses for the hierarchy query.

    Args:
        hierarchy: The hierarchy CTE
        now: Reference instant for relative due filters
        tz: Zone whose calendar days Today/Tomorrow/Yesterday/On refer to
    """

    def __init__(self, hierarchy, now: datetime, tz: pytz.BaseTzInfo):
        self.h = hierarchy
        self.now = as_utc(now)
        self.tz = tz

    def build(self, query: Optional[Query]) -> ColumnElement:
        if query is None:
            return true()
        if isinstance(query, FilterNode):
            return self._filter(query.filter)
        if isinstance(query, NotNode):
            return not_(self.build(query.operand))
        if isinstance(query, AndNode):
            return and_(self.build(query.left), self.build(query.right))
        if isinstance(query, OrNode):
            return or_(self.build(query.left), self.build(query.right))
        raise TypeError(f"Unsupported query node: {query!r}")

    def _filter(self, value) -> ColumnElement:
        if isinstance(value, ProjectFilter):
            return projects_table.c.name == value.name
        if isinstance(value, StatusFilter):
            return self.h.c.status == value.status
        if isinstance(value, PriorityFilter):
            return self.h.c.priority == value.priority
        if isinstance(value, TagFilter):
            return self._tags(value)
        if isinstance(value, TextFilter):
            return self._text(value)
        if isinstance(value, DueFilter):
            return self._due(value.due)
        raise TypeError(f"Unsupported filter: {value!r}")

    def _has_tag(self, *names: str) -> ColumnElement:
        tag = tags_table.alias()
        return exists().where(tag.c.task_id == self.h.c.id, tag.c.tag_name.in_(names))

    def _tags(self, value: TagFilter) -> ColumnElement:
        tags = tuple(value.tags)
        has_all = and_(*(self._has_tag(name) for name in tags)) if tags else true()
        if value.match in (TagMatch.HAS, TagMatch.HAS_ALL):
            return has_all
        if value.match is TagMatch.HAS_ANY:
            return self._has_tag(*tags)
        if value.match is TagMatch.EXACT:
            other = tags_table.alias()
            return and_(
                has_all,
                ~exists().where(other.c.task_id == self.h.c.id, other.c.tag_name.not_in(tags)),
            )
        if value.match is TagMatch.NOT_HAS:
            return not_(has_all)
        if value.match is TagMatch.NOT_HAS_ANY:
            return ~self._has_tag(*tags)
        raise TypeError(f"Unsupported tag match: {value.match}")

    def _text(self, value: TextFilter) -> ColumnElement:
        column = self.h.c.name if value.field is TextField.NAME else self.h.c.description
        escaped = value.text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        if value.match is TextMatch.CONTAINS:
            return column.ilike(f"%{escaped}%", escape="\\")
        if value.match is TextMatch.EQUALS:
            return func.lower(column) == value.text.lower()
        if value.match is TextMatch.STARTS_WITH:
            return column.ilike(f"{escaped}%", escape="\\")
        if value.match is TextMatch.ENDS_WITH:
            return column.ilike(f"%{escaped}", escape="\\")
        if value.match is TextMatch.NOT_CONTAINS:
            return or_(column.is_(None), not_(column.ilike(f"%{escaped}%", escape="\\")))
        raise TypeError(f"Unsupported text match: {value.match}")

    def _day(self, offset_days: int = 0, day=None) -> ColumnElement:
        day = day or local_day(self.now, self.tz) + timedelta(days=offset_days)
        start, end = day_bounds(day, self.tz)
        return self.h.c.due_at.between(start, end)

    def _due(self, due: DueDate) -> ColumnElement:
        due_at = self.h.c.due_at
        if due.kind is DueKind.TODAY:
            return self._day(0)
        if due.kind is DueKind.TOMORROW:
            return self._day(1)
        if due.kind is DueKind.YESTERDAY:
            return self._day(-1)
        if due.kind is DueKind.ON:
            return self._day(day=due.day)
        if due.kind is DueKind.OVERDUE:
            return and_(due_at < self.now, self.h.c.status == TaskStatus.PENDING)
        if due.kind is DueKind.BEFORE:
            return due_at < as_utc(due.at)
        if due.kind is DueKind.AFTER:
            return due_at > as_utc(due.at)
        if due.kind is DueKind.WITHIN:
            return due_at.between(self.now, self.now + due.span)
        if due.kind is DueKind.AGO:
            return due_at.between(self.now - due.span, self.now)
        raise TypeError(f"Unsupported due filter: {due.kind}")


def build_task_query(query: Optional[Query], now: datetime, tz: pytz.BaseTzInfo) -> Select:
    """Select tasks with depth, path, project name and comma-joined tags, in path order."""
    hierarchy = hierarchy_cte()
    condition = ConditionBuilder(hierarchy, now, tz).build(query)
    row_tags = tags_table.alias("row_tags")

    hierarchy_columns = list(hierarchy.c)
    return (
        select(
            *hierarchy_columns,
            projects_table.c.name.label("project_name"),
            func.group_concat(row_tags.c.tag_name).label("tags"),
        )
        .select_from(
            hierarchy.outerjoin(projects_table, projects_table.c.id == hierarchy.c.project_id).outerjoin(
                row_tags, row_tags.c.task_id == hierarchy.c.id
            )
        )
        .where(condition)
        .group_by(*hierarchy_columns, projects_table.c.name)
        .order_by(hierarchy.c.path)
    )
