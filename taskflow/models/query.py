"""Filter tree consumed by the task query builder.

A query is a tree of FilterNode leaves joined with AndNode, OrNode and
NotNode. Leaves wrap one filter value; due-date leaves also drive the
materialization window.
"""
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Optional, Tuple, Union

from taskflow.models.task import TaskPriority, TaskStatus


class DueKind(str, Enum):
    TODAY = "today"
    TOMORROW = "tomorrow"
    YESTERDAY = "yesterday"
    OVERDUE = "overdue"
    BEFORE = "before"
    AFTER = "after"
    ON = "on"
    WITHIN = "within"
    AGO = "ago"


@dataclass(frozen=True)
class DueDate:
    kind: DueKind
    at: Optional[datetime] = None
    day: Optional[date] = None
    span: Optional[timedelta] = None

    @classmethod
    def today(cls) -> "DueDate":
        return cls(DueKind.TODAY)

    @classmethod
    def tomorrow(cls) -> "DueDate":
        return cls(DueKind.TOMORROW)

    @classmethod
    def yesterday(cls) -> "DueDate":
        return cls(DueKind.YESTERDAY)

    @classmethod
    def overdue(cls) -> "DueDate":
        return cls(DueKind.OVERDUE)

    @classmethod
    def before(cls, at: datetime) -> "DueDate":
        return cls(DueKind.BEFORE, at=at)

    @classmethod
    def after(cls, at: datetime) -> "DueDate":
        return cls(DueKind.AFTER, at=at)

    @classmethod
    def on(cls, day: date) -> "DueDate":
        return cls(DueKind.ON, day=day)

    @classmethod
    def within(cls, span: timedelta) -> "DueDate":
        return cls(DueKind.WITHIN, span=span)

    @classmethod
    def ago(cls, span: timedelta) -> "DueDate":
        return cls(DueKind.AGO, span=span)


class TagMatch(str, Enum):
    HAS = "has"
    HAS_ALL = "has_all"
    HAS_ANY = "has_any"
    EXACT = "exact"
    NOT_HAS = "not_has"
    NOT_HAS_ANY = "not_has_any"


class TextField(str, Enum):
    NAME = "name"
    DESCRIPTION = "description"


class TextMatch(str, Enum):
    CONTAINS = "contains"
    EQUALS = "equals"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    NOT_CONTAINS = "not_contains"


@dataclass(frozen=True)
class ProjectFilter:
    name: str


@dataclass(frozen=True)
class StatusFilter:
    status: TaskStatus


@dataclass(frozen=True)
class PriorityFilter:
    priority: TaskPriority


@dataclass(frozen=True)
class TagFilter:
    match: TagMatch
    tags: Tuple[str, ...]


@dataclass(frozen=True)
class TextFilter:
    field: TextField
    match: TextMatch
    text: str


@dataclass(frozen=True)
class DueFilter:
    due: DueDate


Filter = Union[ProjectFilter, StatusFilter, PriorityFilter, TagFilter, TextFilter, DueFilter]


@dataclass(frozen=True)
class FilterNode:
    filter: Filter


@dataclass(frozen=True)
class NotNode:
    operand: "Query"


@dataclass(frozen=True)
class AndNode:
    left: "Query"
    right: "Query"


@dataclass(frozen=True)
class OrNode:
    left: "Query"
    right: "Query"


Query = Union[FilterNode, NotNode, AndNode, OrNode]


def leaf(value: Filter) -> FilterNode:
    return FilterNode(value)


def all_of(*queries: Query) -> Optional[Query]:
    """AND-combine queries left to right; None when given nothing."""
    result: Optional[Query] = None
    for query in queries:
        result = query if result is None else AndNode(result, query)
    return result


def any_of(*queries: Query) -> Optional[Query]:
    result: Optional[Query] = None
    for query in queries:
        result = query if result is None else OrNode(result, query)
    return result
