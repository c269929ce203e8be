"""RRULE normalization and occurrence enumeration for task series.

Rules are expanded by python-dateutil over naive wall-clock times in the
series timezone; each occurrence is then pinned to an instant with the DST
policy of :mod:`taskflow.services.timezone` and converted to UTC.
"""
import calendar
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Tuple
import uuid

import pytz
from dateutil.rrule import (
    DAILY,
    FR,
    MO,
    MONTHLY,
    SA,
    SU,
    TH,
    TU,
    WE,
    WEEKLY,
    YEARLY,
    rrule,
)

from taskflow.models.base import as_utc
from taskflow.models.series import ExceptionType, SeriesException, TaskSeries
from taskflow.models.task import Task
from taskflow.services.errors import InvalidRRuleError
from taskflow.services.timezone import to_wall_clock, validate_timezone, wall_clock_to_utc

logger = logging.getLogger(__name__)

FREQUENCIES = {"DAILY": DAILY, "WEEKLY": WEEKLY, "MONTHLY": MONTHLY, "YEARLY": YEARLY}
WEEKDAYS = {"MO": MO, "TU": TU, "WE": WE, "TH": TH, "FR": FR, "SA": SA, "SU": SU}
WEEKDAY_ORDER = list(WEEKDAYS)
BODY_KEYS = ("FREQ", "INTERVAL", "COUNT", "UNTIL", "BYMONTH", "BYMONTHDAY", "BYDAY")

MIN_YEAR = 1900
MAX_YEAR = 9998

BYDAY_PATTERN = re.compile(r"^([+-]?\d{1,2})?(MO|TU|WE|TH|FR|SA|SU)$")
UNTIL_DATE = re.compile(r"^\d{8}$")
UNTIL_LOCAL = re.compile(r"^\d{8}T\d{6}$")
UNTIL_UTC = re.compile(r"^\d{8}T\d{6}Z$")

# Longest month length, February counted as leap
MONTH_LENGTHS = {month: calendar.monthrange(2024, month)[1] for month in range(1, 13)}


@dataclass
class ParsedRule:
    """Validated RRULE body."""

    freq: str
    interval: int = 1
    count: Optional[int] = None
    until: Optional[datetime] = None
    bymonth: List[int] = field(default_factory=list)
    bymonthday: List[int] = field(default_factory=list)
    byday: List[Tuple[Optional[int], str]] = field(default_factory=list)

    def to_body(self) -> str:
        parts = [f"FREQ={self.freq}"]
        if self.interval != 1:
            parts.append(f"INTERVAL={self.interval}")
        if self.count is not None:
            parts.append(f"COUNT={self.count}")
        if self.until is not None:
            parts.append(f"UNTIL={self.until.strftime('%Y%m%dT%H%M%SZ')}")
        if self.bymonth:
            parts.append("BYMONTH=" + ",".join(str(m) for m in self.bymonth))
        if self.bymonthday:
            parts.append("BYMONTHDAY=" + ",".join(str(d) for d in self.bymonthday))
        if self.byday:
            parts.append(
                "BYDAY=" + ",".join(f"{n if n else ''}{code}" for n, code in self.byday)
            )
        return ";".join(parts)


def _check_year(instant: datetime, what: str) -> None:
    if not MIN_YEAR <= instant.year <= MAX_YEAR:
        raise InvalidRRuleError(
            f"{what} {instant.isoformat()} is outside the supported range {MIN_YEAR}-{MAX_YEAR}"
        )


def _parse_int(key: str, value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise InvalidRRuleError(f"{key} must be an integer, got '{value}'")


def _parse_int_list(key: str, value: str, allowed: range) -> List[int]:
    numbers = []
    for item in value.split(","):
        number = _parse_int(key, item.strip())
        if number == 0 or abs(number) not in allowed:
            raise InvalidRRuleError(f"{key} value {number} is out of range")
        if number not in numbers:
            numbers.append(number)
    return sorted(numbers)


def _parse_until(value: str, tz: pytz.BaseTzInfo) -> datetime:
    try:
        if UNTIL_UTC.match(value):
            return datetime.strptime(value, "%Y%m%dT%H%M%SZ").replace(tzinfo=timezone.utc)
        if UNTIL_LOCAL.match(value):
            return wall_clock_to_utc(datetime.strptime(value, "%Y%m%dT%H%M%S"), tz)
        if UNTIL_DATE.match(value):
            # A date-only UNTIL includes the whole day
            end_of_day = datetime.strptime(value, "%Y%m%d").replace(hour=23, minute=59, second=59)
            return wall_clock_to_utc(end_of_day, tz)
    except (ValueError, OverflowError):
        pass
    raise InvalidRRuleError(f"UNTIL value '{value}' is not a valid date or date-time")


def _split_rule_text(raw: str) -> str:
    """Extract the rule body, dropping any DTSTART line and RRULE: prefix."""
    if not raw or not raw.strip():
        raise InvalidRRuleError("Recurrence rule is empty")

    bodies = []
    for line in raw.strip().splitlines():
        line = line.strip()
        if not line:
            continue
        upper = line.upper()
        if upper.startswith("DTSTART"):
            continue
        if upper.startswith("RRULE:"):
            line = line[len("RRULE:"):]
        elif ":" in line:
            raise InvalidRRuleError(f"Unsupported recurrence property: {line.split(':', 1)[0]}")
        bodies.append(line.strip())

    if len(bodies) != 1:
        raise InvalidRRuleError("Recurrence text must contain exactly one RRULE")
    return bodies[0]


def parse_rule_body(raw: str, dtstart: datetime, tz: pytz.BaseTzInfo) -> ParsedRule:
    """Parse and validate the supported RRULE subset."""
    body = _split_rule_text(raw).upper().rstrip(";")
    values: Dict[str, str] = {}
    for part in body.split(";"):
        if "=" not in part:
            raise InvalidRRuleError(f"Malformed rule part '{part}'")
        key, value = (piece.strip() for piece in part.split("=", 1))
        if key not in BODY_KEYS:
            raise InvalidRRuleError(f"Unsupported rule part '{key}'")
        if key in values:
            raise InvalidRRuleError(f"Rule part '{key}' given more than once")
        if not value:
            raise InvalidRRuleError(f"Rule part '{key}' has no value")
        values[key] = value

    freq = values.get("FREQ")
    if freq is None:
        raise InvalidRRuleError("FREQ is required")
    if freq not in FREQUENCIES:
        raise InvalidRRuleError(
            f"Unsupported FREQ '{freq}'; expected one of {', '.join(FREQUENCIES)}"
        )
    rule = ParsedRule(freq=freq)

    if "INTERVAL" in values:
        rule.interval = _parse_int("INTERVAL", values["INTERVAL"])
        if rule.interval < 1:
            raise InvalidRRuleError("INTERVAL must be at least 1")

    if "COUNT" in values and "UNTIL" in values:
        raise InvalidRRuleError("COUNT and UNTIL cannot both be set")
    if "COUNT" in values:
        rule.count = _parse_int("COUNT", values["COUNT"])
        if rule.count < 1:
            raise InvalidRRuleError("COUNT must be at least 1")
    if "UNTIL" in values:
        rule.until = _parse_until(values["UNTIL"], tz)
        _check_year(rule.until, "UNTIL")
        if rule.until < dtstart:
            raise InvalidRRuleError("UNTIL precedes DTSTART")

    if "BYMONTH" in values:
        rule.bymonth = _parse_int_list("BYMONTH", values["BYMONTH"], range(1, 13))
        if any(month < 0 for month in rule.bymonth):
            raise InvalidRRuleError("BYMONTH values must be positive")

    if "BYMONTHDAY" in values:
        if freq == "WEEKLY":
            raise InvalidRRuleError("BYMONTHDAY cannot be used with FREQ=WEEKLY")
        rule.bymonthday = _parse_int_list("BYMONTHDAY", values["BYMONTHDAY"], range(1, 32))

    if "BYDAY" in values:
        max_ordinal = {"MONTHLY": 5, "YEARLY": 53}.get(freq)
        for item in values["BYDAY"].split(","):
            match = BYDAY_PATTERN.match(item.strip())
            if not match:
                raise InvalidRRuleError(f"Invalid BYDAY value '{item}'")
            ordinal = int(match.group(1)) if match.group(1) else None
            if ordinal is not None:
                if max_ordinal is None:
                    raise InvalidRRuleError(f"Ordinal BYDAY '{item}' requires FREQ=MONTHLY or YEARLY")
                if ordinal == 0 or abs(ordinal) > max_ordinal:
                    raise InvalidRRuleError(f"BYDAY ordinal in '{item}' is out of range")
            entry = (ordinal, match.group(2))
            if entry not in rule.byday:
                rule.byday.append(entry)
        rule.byday.sort(key=lambda entry: (WEEKDAY_ORDER.index(entry[1]), entry[0] or 0))

    if rule.bymonthday:
        months = rule.bymonth or list(range(1, 13))
        if not any(abs(day) <= MONTH_LENGTHS[month] for month in months for day in rule.bymonthday):
            raise InvalidRRuleError("BYMONTHDAY and BYMONTH never coincide")

    return rule


def _format_dtstart(dtstart: datetime, tz_name: str, tz: pytz.BaseTzInfo) -> str:
    if tz_name == "UTC":
        return f"DTSTART:{dtstart.strftime('%Y%m%dT%H%M%SZ')}"
    local = to_wall_clock(dtstart, tz)
    return f"DTSTART;TZID={tz_name}:{local.strftime('%Y%m%dT%H%M%S')}"


def anchor(dtstart: datetime) -> datetime:
    """Series anchors are whole-second UTC instants."""
    return as_utc(dtstart).replace(microsecond=0)


def normalize_rrule(raw: str, dtstart: datetime, tz_name: str) -> str:
    """
    Produce the canonical, persisted form of a recurrence rule.

    Args:
        raw: Rule text, optionally with RRULE: prefix or a DTSTART line
        dtstart: Anchor instant of the series
        tz_name: IANA timezone the rule is evaluated in

    Returns:
        "DTSTART...\\nRRULE:..." with a validated body in fixed key order

    Raises:
        InvalidTimezoneError: If tz_name is unknown
        InvalidRRuleError: If the rule is outside the supported subset
    """
    tz = validate_timezone(tz_name)
    dtstart = anchor(dtstart)
    _check_year(dtstart, "DTSTART")
    rule = parse_rule_body(raw, dtstart, tz)
    return f"{_format_dtstart(dtstart, tz_name, tz)}\nRRULE:{rule.to_body()}"


@dataclass(frozen=True)
class SeriesOccurrence:
    """One canonical occurrence and the exception applied to it, if any."""

    scheduled_at: datetime
    effective_at: datetime
    exception: Optional[SeriesException] = None

    @property
    def exception_type(self) -> Optional[ExceptionType]:
        return self.exception.exception_type if self.exception else None

    @property
    def exception_task_id(self) -> Optional[uuid.UUID]:
        return self.exception.exception_task_id if self.exception else None

    @property
    def is_visible(self) -> bool:
        return self.exception_type is not ExceptionType.SKIP

    @property
    def needs_instance(self) -> bool:
        """True when the series itself must supply a task row for this occurrence."""
        return self.exception is None


class RecurrenceManager:
    """
    Pure computation over one series: enumeration, next occurrence and previews.

    Args:
        series: The series row
        template: Its template task
        exceptions: Every exception of the series
        exception_tasks: Tasks referenced by exceptions, used to find move targets
    """

    def __init__(
        self,
        series: TaskSeries,
        template: Task,
        exceptions: Sequence[SeriesException] = (),
        exception_tasks: Optional[Mapping[uuid.UUID, Task]] = None,
    ):
        self.series = series
        self.template = template
        self.tz = validate_timezone(series.timezone)
        self.dtstart = anchor(series.dtstart)
        self.parsed = parse_rule_body(series.rrule, self.dtstart, self.tz)
        self.exceptions: Dict[datetime, SeriesException] = {
            as_utc(exc.occurrence_dt): exc for exc in exceptions
        }
        self.exception_tasks = dict(exception_tasks or {})
        self._rule = self._build_rule()

    def _build_rule(self) -> rrule:
        byweekday = None
        if self.parsed.byday:
            byweekday = [
                WEEKDAYS[code](ordinal) if ordinal else WEEKDAYS[code]
                for ordinal, code in self.parsed.byday
            ]
        until = to_wall_clock(self.parsed.until, self.tz) if self.parsed.until else None
        try:
            return rrule(
                FREQUENCIES[self.parsed.freq],
                dtstart=to_wall_clock(self.dtstart, self.tz),
                interval=self.parsed.interval,
                count=self.parsed.count,
                until=until,
                bymonth=self.parsed.bymonth or None,
                bymonthday=self.parsed.bymonthday or None,
                byweekday=byweekday,
            )
        except (ValueError, TypeError) as e:
            raise InvalidRRuleError(f"Cannot build recurrence rule: {e}")

    @property
    def canonical_rrule(self) -> str:
        return normalize_rrule(self.series.rrule, self.dtstart, self.series.timezone)

    def _annotate(self, scheduled: datetime) -> SeriesOccurrence:
        exception = self.exceptions.get(scheduled)
        effective = scheduled
        if exception is not None and exception.exception_type is ExceptionType.MOVE:
            target = self.exception_tasks.get(exception.exception_task_id)
            if target is not None and target.due_at is not None:
                effective = as_utc(target.due_at)
        return SeriesOccurrence(scheduled_at=scheduled, effective_at=effective, exception=exception)

    def _scheduled_between(self, start: datetime, end: datetime) -> Iterator[datetime]:
        low = max(to_wall_clock(start, self.tz), datetime(MIN_YEAR, 1, 2)) - timedelta(days=1)
        high = min(to_wall_clock(end, self.tz), datetime(MAX_YEAR, 12, 30)) + timedelta(days=1)
        if low > high:
            return
        for naive in self._rule.between(low, high, inc=True):
            instant = wall_clock_to_utc(naive, self.tz)
            if start <= instant <= end:
                yield instant

    def _scheduled_after(self, after: datetime) -> Iterator[datetime]:
        floor = max(to_wall_clock(after, self.tz), datetime(MIN_YEAR, 1, 2)) - timedelta(days=1)
        for naive in self._rule.xafter(floor, inc=True):
            instant = wall_clock_to_utc(naive, self.tz)
            if instant > after:
                yield instant

    def is_occurrence(self, instant: datetime) -> bool:
        """True if ``instant`` is one of the rule's canonical occurrences."""
        instant = as_utc(instant)
        return any(True for _ in self._scheduled_between(instant, instant))

    def generate_occurrences_between(self, start: datetime, end: datetime) -> List[SeriesOccurrence]:
        """Canonical occurrences scheduled in [start, end], skipped ones included."""
        start, end = as_utc(start), as_utc(end)
        if start > end:
            return []
        occurrences = [self._annotate(instant) for instant in self._scheduled_between(start, end)]
        logger.debug(
            f"Series {self.series.id}: {len(occurrences)} occurrences between "
            f"{start.isoformat()} and {end.isoformat()}"
        )
        return occurrences

    def visible_occurrences_between(self, start: datetime, end: datetime) -> List[SeriesOccurrence]:
        return [occ for occ in self.generate_occurrences_between(start, end) if occ.is_visible]

    def preview_occurrences(self, after: datetime, count: int) -> List[SeriesOccurrence]:
        """Up to ``count`` visible occurrences with effective instant after ``after``."""
        if count <= 0:
            return []
        after = as_utc(after)

        plain: List[SeriesOccurrence] = []
        for instant in self._scheduled_after(after):
            occurrence = self._annotate(instant)
            if occurrence.exception_type in (ExceptionType.SKIP, ExceptionType.MOVE):
                continue
            plain.append(occurrence)
            if len(plain) == count:
                break

        moved = [
            occurrence
            for occurrence in (
                self._annotate(instant)
                for instant, exc in self.exceptions.items()
                if exc.exception_type is ExceptionType.MOVE and self.is_occurrence(instant)
            )
            if occurrence.effective_at > after
        ]
        combined = sorted(plain + moved, key=lambda occ: (occ.effective_at, occ.scheduled_at))
        return combined[:count]

    def next_occurrence_after(self, after: datetime) -> Optional[datetime]:
        preview = self.preview_occurrences(after, 1)
        return preview[0].effective_at if preview else None
