"""Tests for rule normalization, enumeration and the DST policy."""
from datetime import timedelta

import pytest

from taskflow.models.base import new_id
from taskflow.models.series import ExceptionType, SeriesException
from taskflow.models.task import Task
from taskflow.services.errors import InvalidRRuleError, InvalidTimezoneError
from taskflow.services.recurrence import RecurrenceManager, normalize_rrule
from tests.conftest import make_series, utc

START = utc(2025, 8, 8, 9)


class TestNormalization:
    def test_utc_rule_gets_utc_dtstart(self):
        assert normalize_rrule("FREQ=DAILY", START, "UTC") == (
            "DTSTART:20250808T090000Z\nRRULE:FREQ=DAILY"
        )

    def test_zoned_rule_pins_local_wall_clock(self):
        canonical = normalize_rrule("RRULE:freq=weekly;byday=fr,mo;interval=1", START, "America/New_York")
        assert canonical == (
            "DTSTART;TZID=America/New_York:20250808T050000\nRRULE:FREQ=WEEKLY;BYDAY=MO,FR"
        )

    def test_key_order_is_fixed(self):
        canonical = normalize_rrule("BYMONTHDAY=15,1;COUNT=3;FREQ=MONTHLY;INTERVAL=2", START, "UTC")
        assert canonical.endswith("RRULE:FREQ=MONTHLY;INTERVAL=2;COUNT=3;BYMONTHDAY=1,15")

    def test_floating_until_becomes_utc(self):
        canonical = normalize_rrule("FREQ=DAILY;UNTIL=20250810T090000", START, "America/New_York")
        assert "UNTIL=20250810T130000Z" in canonical

    def test_date_until_covers_whole_day(self):
        canonical = normalize_rrule("FREQ=DAILY;UNTIL=20250810", START, "UTC")
        assert "UNTIL=20250810T235959Z" in canonical

    def test_microseconds_are_dropped_from_anchor(self):
        canonical = normalize_rrule("FREQ=DAILY", START.replace(microsecond=123456), "UTC")
        assert canonical.startswith("DTSTART:20250808T090000Z")

    @pytest.mark.parametrize(
        "rule,tz",
        [
            ("FREQ=DAILY", "UTC"),
            ("FREQ=WEEKLY;BYDAY=TU,TH;COUNT=10", "Europe/Berlin"),
            ("FREQ=MONTHLY;BYDAY=-1FR", "America/New_York"),
            ("FREQ=YEARLY;BYMONTH=3;BYMONTHDAY=1;UNTIL=20300101", "Asia/Tokyo"),
        ],
    )
    def test_normalize_is_idempotent(self, rule, tz):
        once = normalize_rrule(rule, START, tz)
        assert normalize_rrule(once, START, tz) == once

    @pytest.mark.parametrize(
        "rule",
        [
            "",
            "INTERVAL=2",
            "FREQ=HOURLY",
            "FREQ=DAILY;COUNT=3;UNTIL=20250901T000000Z",
            "FREQ=DAILY;INTERVAL=0",
            "FREQ=DAILY;COUNT=0",
            "FREQ=WEEKLY;BYDAY=1MO",
            "FREQ=MONTHLY;BYDAY=6MO",
            "FREQ=WEEKLY;BYMONTHDAY=3",
            "FREQ=DAILY;WKST=MO",
            "FREQ=DAILY;BYMONTH=13",
            "FREQ=MONTHLY;BYMONTHDAY=32",
            "FREQ=YEARLY;BYMONTH=2;BYMONTHDAY=30",
            "FREQ=DAILY;UNTIL=20250101T000000Z",
            "FREQ=DAILY;UNTIL=not-a-date",
            "FREQ=DAILY;FREQ=WEEKLY",
            "FREQ=DAILY\nEXDATE:20250809T090000Z",
        ],
    )
    def test_rejects_unsupported_rules(self, rule):
        with pytest.raises(InvalidRRuleError):
            normalize_rrule(rule, START, "UTC")

    def test_rejects_anchor_outside_supported_range(self):
        with pytest.raises(InvalidRRuleError):
            normalize_rrule("FREQ=DAILY", utc(1800, 1, 1), "UTC")

    def test_rejects_unknown_timezone(self):
        with pytest.raises(InvalidTimezoneError):
            normalize_rrule("FREQ=DAILY", START, "Mars/Olympus_Mons")


class TestEnumeration:
    def test_daily_between_is_closed_interval(self):
        series, template = make_series("FREQ=DAILY", START)
        manager = RecurrenceManager(series, template)
        occurrences = manager.generate_occurrences_between(utc(2025, 8, 8, 9), utc(2025, 8, 10, 9))
        assert [occ.scheduled_at for occ in occurrences] == [
            utc(2025, 8, 8, 9),
            utc(2025, 8, 9, 9),
            utc(2025, 8, 10, 9),
        ]

    def test_count_limits_occurrences(self):
        series, template = make_series("FREQ=WEEKLY;COUNT=2", START)
        manager = RecurrenceManager(series, template)
        occurrences = manager.generate_occurrences_between(START, START + timedelta(days=60))
        assert len(occurrences) == 2
        assert manager.next_occurrence_after(START + timedelta(days=7)) is None

    def test_monthly_last_friday(self):
        series, template = make_series("FREQ=MONTHLY;BYDAY=-1FR", START)
        manager = RecurrenceManager(series, template)
        preview = manager.preview_occurrences(START, 3)
        assert [occ.effective_at for occ in preview] == [
            utc(2025, 8, 29, 9),
            utc(2025, 9, 26, 9),
            utc(2025, 10, 31, 9),
        ]

    def test_weekly_in_local_zone_keeps_wall_clock_across_dst(self):
        # 09:00 New York is 13:00Z in summer and 14:00Z in winter
        series, template = make_series("FREQ=WEEKLY", utc(2025, 10, 27, 13), "America/New_York")
        manager = RecurrenceManager(series, template)
        preview = manager.preview_occurrences(utc(2025, 10, 27), 2)
        assert [occ.effective_at for occ in preview] == [utc(2025, 10, 27, 13), utc(2025, 11, 3, 14)]

    def test_spring_forward_uses_offset_before_gap(self):
        # 02:30 does not exist in New York on 2025-03-09
        series, template = make_series("FREQ=DAILY;COUNT=3", utc(2025, 3, 8, 7, 30), "America/New_York")
        manager = RecurrenceManager(series, template)
        occurrences = manager.generate_occurrences_between(utc(2025, 3, 8), utc(2025, 3, 11))
        assert [occ.scheduled_at for occ in occurrences] == [
            utc(2025, 3, 8, 7, 30),
            utc(2025, 3, 9, 7, 30),
            utc(2025, 3, 10, 6, 30),
        ]

    def test_fall_back_picks_earlier_instant(self):
        # 01:30 happens twice in New York on 2025-11-02
        series, template = make_series("FREQ=DAILY;COUNT=3", utc(2025, 11, 1, 5, 30), "America/New_York")
        manager = RecurrenceManager(series, template)
        occurrences = manager.generate_occurrences_between(utc(2025, 11, 1), utc(2025, 11, 4))
        assert [occ.scheduled_at for occ in occurrences] == [
            utc(2025, 11, 1, 5, 30),
            utc(2025, 11, 2, 5, 30),
            utc(2025, 11, 3, 6, 30),
        ]

    def test_is_occurrence(self):
        series, template = make_series("FREQ=DAILY", START)
        manager = RecurrenceManager(series, template)
        assert manager.is_occurrence(utc(2025, 8, 12, 9))
        assert not manager.is_occurrence(utc(2025, 8, 12, 10))
        assert not manager.is_occurrence(utc(2025, 8, 7, 9))


class TestExceptions:
    def _manager(self, exceptions=(), tasks=None):
        series, template = make_series("FREQ=DAILY", START)
        for exc in exceptions:
            exc.series_id = series.id
        return RecurrenceManager(series, template, list(exceptions), tasks)

    def test_skip_is_annotated_but_not_visible(self):
        skip = SeriesException(occurrence_dt=utc(2025, 8, 9, 9), exception_type=ExceptionType.SKIP)
        manager = self._manager([skip])
        occurrences = manager.generate_occurrences_between(utc(2025, 8, 8), utc(2025, 8, 10, 23))
        assert [occ.exception_type for occ in occurrences] == [None, ExceptionType.SKIP, None]
        visible = manager.visible_occurrences_between(utc(2025, 8, 8), utc(2025, 8, 10, 23))
        assert utc(2025, 8, 9, 9) not in [occ.effective_at for occ in visible]

    def test_next_occurrence_skips_skipped(self):
        skip = SeriesException(occurrence_dt=utc(2025, 8, 9, 9), exception_type=ExceptionType.SKIP)
        manager = self._manager([skip])
        assert manager.next_occurrence_after(START) == utc(2025, 8, 10, 9)

    def test_move_changes_effective_instant(self):
        target = Task(id=new_id(), name="Moved", due_at=utc(2025, 8, 9, 15))
        move = SeriesException(
            occurrence_dt=utc(2025, 8, 9, 9),
            exception_type=ExceptionType.MOVE,
            exception_task_id=target.id,
        )
        manager = self._manager([move], {target.id: target})
        occurrences = manager.generate_occurrences_between(utc(2025, 8, 9), utc(2025, 8, 9, 23))
        assert occurrences[0].scheduled_at == utc(2025, 8, 9, 9)
        assert occurrences[0].effective_at == utc(2025, 8, 9, 15)
        assert not occurrences[0].needs_instance

    def test_move_past_a_later_occurrence_reorders_preview(self):
        target = Task(id=new_id(), name="Moved", due_at=utc(2025, 8, 10, 12))
        move = SeriesException(
            occurrence_dt=utc(2025, 8, 9, 9),
            exception_type=ExceptionType.MOVE,
            exception_task_id=target.id,
        )
        manager = self._manager([move], {target.id: target})
        preview = manager.preview_occurrences(START, 3)
        assert [occ.effective_at for occ in preview] == [
            utc(2025, 8, 10, 9),
            utc(2025, 8, 10, 12),
            utc(2025, 8, 11, 9),
        ]

    def test_override_stays_visible(self):
        override = SeriesException(
            occurrence_dt=utc(2025, 8, 9, 9),
            exception_type=ExceptionType.OVERRIDE,
            exception_task_id=new_id(),
        )
        manager = self._manager([override])
        preview = manager.preview_occurrences(START, 1)
        assert preview[0].exception_type is ExceptionType.OVERRIDE
        assert preview[0].is_visible

    @pytest.mark.parametrize("hours", [0, 1, 9, 24, 100, 1000])
    def test_next_occurrence_matches_preview(self, hours):
        skip = SeriesException(occurrence_dt=utc(2025, 8, 10, 9), exception_type=ExceptionType.SKIP)
        manager = self._manager([skip])
        after = START + timedelta(hours=hours)
        following = manager.next_occurrence_after(after)
        assert following > after
        assert following == manager.preview_occurrences(after, 1)[0].effective_at
