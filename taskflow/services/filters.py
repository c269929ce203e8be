"""Parse configured default filter expressions into a query tree.

Each expression is a ``key:value`` token; tokens are AND-combined.
"""
from datetime import datetime
from typing import Iterable, Optional

from taskflow.models.base import as_utc
from taskflow.models.query import (
    DueDate,
    DueFilter,
    PriorityFilter,
    ProjectFilter,
    Query,
    StatusFilter,
    TagFilter,
    TagMatch,
    TextField,
    TextFilter,
    TextMatch,
    all_of,
    leaf,
)
from taskflow.models.task import TaskPriority, TaskStatus
from taskflow.services.errors import InvalidInputError

DUE_KEYWORDS = {
    "today": DueDate.today,
    "tomorrow": DueDate.tomorrow,
    "yesterday": DueDate.yesterday,
    "overdue": DueDate.overdue,
}


def _parse_instant(value: str) -> datetime:
    try:
        return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        raise InvalidInputError(f"Invalid date-time in filter: {value}")


def parse_filter_expression(expression: str) -> Query:
    key, sep, value = expression.strip().partition(":")
    key, value = key.strip().lower(), value.strip()
    if not sep or not value:
        raise InvalidInputError(f"Filter expression must look like key:value, got '{expression}'")

    try:
        if key == "status":
            return leaf(StatusFilter(TaskStatus(value.lower())))
        if key == "priority":
            return leaf(PriorityFilter(TaskPriority(value.lower())))
    except ValueError:
        raise InvalidInputError(f"Unknown {key} '{value}'")

    if key == "project":
        return leaf(ProjectFilter(value))
    if key == "tag":
        return leaf(TagFilter(TagMatch.HAS, (value,)))
    if key == "-tag":
        return leaf(TagFilter(TagMatch.NOT_HAS, (value,)))
    if key == "name":
        return leaf(TextFilter(TextField.NAME, TextMatch.CONTAINS, value))
    if key == "due":
        factory = DUE_KEYWORDS.get(value.lower())
        if factory is None:
            raise InvalidInputError(f"Unknown due keyword '{value}'")
        return leaf(DueFilter(factory()))
    if key == "due-before":
        return leaf(DueFilter(DueDate.before(_parse_instant(value))))
    if key == "due-after":
        return leaf(DueFilter(DueDate.after(_parse_instant(value))))
    raise InvalidInputError(f"Unknown filter key '{key}'")


def parse_filter_expressions(expressions: Iterable[str]) -> Optional[Query]:
    """AND-combine expressions; None for an empty list."""
    return all_of(*(parse_filter_expression(expr) for expr in expressions if expr.strip()))
