"""Timezone helpers built on pytz.

Wall-clock to instant conversion follows one fixed DST policy:

* ambiguous local times (the repeated hour when clocks fall back) resolve to
  the earlier instant, i.e. the one still on daylight time;
* nonexistent local times (the skipped hour when clocks spring forward) are
  read with the offset in force before the gap, which lands them the length
  of the gap later on the wall clock (02:30 becomes 03:30 for a one hour gap).
"""
from datetime import date, datetime, time, timedelta, timezone
from typing import Tuple

import pytz

from taskflow.services.errors import InvalidTimezoneError


def validate_timezone(name: str) -> pytz.BaseTzInfo:
    """Return the pytz zone for an IANA name or raise InvalidTimezoneError."""
    if not name or not isinstance(name, str):
        raise InvalidTimezoneError(str(name))
    try:
        return pytz.timezone(name)
    except pytz.UnknownTimeZoneError:
        raise InvalidTimezoneError(name)


def localize(naive: datetime, tz: pytz.BaseTzInfo) -> datetime:
    """Attach ``tz`` to a naive wall-clock time using the DST policy above."""
    try:
        return tz.localize(naive, is_dst=None)
    except pytz.AmbiguousTimeError:
        return tz.localize(naive, is_dst=True)
    except pytz.NonExistentTimeError:
        return tz.normalize(tz.localize(naive, is_dst=False))


def wall_clock_to_utc(naive: datetime, tz: pytz.BaseTzInfo) -> datetime:
    return localize(naive, tz).astimezone(timezone.utc)


def to_wall_clock(instant: datetime, tz: pytz.BaseTzInfo) -> datetime:
    """Naive local wall-clock time of an aware instant."""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(tz).replace(tzinfo=None)


def day_bounds(day: date, tz: pytz.BaseTzInfo) -> Tuple[datetime, datetime]:
    """UTC instants of the first and last microsecond of ``day`` in ``tz``."""
    start = wall_clock_to_utc(datetime.combine(day, time.min), tz)
    next_start = wall_clock_to_utc(datetime.combine(day + timedelta(days=1), time.min), tz)
    return start, next_start - timedelta(microseconds=1)


def local_day(instant: datetime, tz: pytz.BaseTzInfo) -> date:
    return to_wall_clock(instant, tz).date()
