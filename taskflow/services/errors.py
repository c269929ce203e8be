"""
Core error taxonomy

Every failure surfaced by the recurrence engine and the repository is a
CoreError carrying a stable code, a human message and structured details.
"""

from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple


class CoreError(Exception):
    """Base exception for task core errors"""

    code = "CORE_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class NotFoundError(CoreError):
    code = "NOT_FOUND"

    def __init__(self, what: str, details: Optional[Dict[str, Any]] = None):
        self.what = what
        super().__init__(f"Not found: {what}", details)


class SeriesNotFoundError(NotFoundError):
    code = "SERIES_NOT_FOUND"

    def __init__(self, series_id: Any):
        self.series_id = series_id
        super().__init__(f"series {series_id}", {"series_id": str(series_id)})


class AmbiguousIdError(CoreError):
    """A short id prefix matched more than one task."""

    code = "AMBIGUOUS_ID"

    def __init__(self, prefix: str, candidates: Sequence[Tuple[Any, str]]):
        self.prefix = prefix
        self.candidates: List[Tuple[Any, str]] = list(candidates)
        listing = ", ".join(f"{str(task_id)[:8]} ({name})" for task_id, name in self.candidates)
        super().__init__(
            f"Ambiguous id '{prefix}' matches {len(self.candidates)} tasks: {listing}",
            {"candidates": [{"id": str(task_id), "name": name} for task_id, name in self.candidates]},
        )


class InvalidInputError(CoreError):
    code = "INVALID_INPUT"


class TaskBlockedError(CoreError):
    code = "TASK_BLOCKED"

    def __init__(self, names: Iterable[str]):
        self.names = list(names)
        super().__init__(
            f"Task is blocked by uncompleted dependencies: {', '.join(self.names)}",
            {"blocked_by": self.names},
        )


class CircularDependencyError(CoreError):
    code = "CIRCULAR_DEPENDENCY"

    def __init__(self, task_name: str, depends_on_name: str):
        self.task_name = task_name
        self.depends_on_name = depends_on_name
        super().__init__(
            f"Adding dependency '{task_name}' -> '{depends_on_name}' would create a cycle",
            {"task": task_name, "depends_on": depends_on_name},
        )

    @property
    def pair(self) -> Tuple[str, str]:
        return self.task_name, self.depends_on_name


class InvalidTimezoneError(CoreError):
    code = "INVALID_TIMEZONE"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Invalid timezone: {name}", {"timezone": name})


class InvalidRRuleError(CoreError):
    code = "INVALID_RRULE"


class InvalidExceptionError(CoreError):
    code = "INVALID_EXCEPTION"


class SeriesNotCompletedError(CoreError):
    code = "SERIES_NOT_COMPLETED"


class MaterializationError(CoreError):
    code = "MATERIALIZATION_FAILED"


class StorageError(CoreError):
    code = "STORAGE_ERROR"


def create_error_response(error: CoreError) -> Dict[str, Any]:
    """
    Create a standardized error response

    Args:
        error: The CoreError to convert

    Returns:
        Standardized error response dictionary
    """
    return {
        "success": False,
        "error": {
            "code": error.code,
            "message": error.message,
            "details": error.details,
        },
    }
