"""Materialization window policy."""
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, List, Optional, Tuple
import logging

from pydantic import BaseModel, Field, field_validator

from taskflow.models.base import as_utc, utc_now
from taskflow.models.query import DueDate, DueKind
from taskflow.services.timezone import day_bounds, local_day, validate_timezone

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

Window = Tuple[datetime, datetime]


class MaterializationConfig(BaseModel):
    """Tunables for how far series instances are materialized."""

    lookahead_days: int = Field(default=30, ge=0)
    min_upcoming_instances: int = Field(default=1, ge=0)
    max_batch_size: int = Field(default=100, ge=1)
    enable_catchup: bool = False
    materialization_grace_days: int = Field(default=3, ge=0)
    default_timezone: str = "UTC"

    @field_validator("default_timezone")
    @classmethod
    def check_timezone(cls, value: str) -> str:
        validate_timezone(value)
        return value


class MaterializationSummary(BaseModel):
    """Outcome of refreshing a batch of series."""

    series_processed: int = 0
    instances_created: int = 0
    series_with_errors: int = 0
    errors: List[str] = Field(default_factory=list)
    duration_ms: int = 0


class MaterializationManager:
    """
    Stateless policy deciding which window must be materialized for a read.

    Args:
        config: Materialization tunables
        clock: Returns the current UTC instant; defaults to the system clock
    """

    def __init__(
        self,
        config: Optional[MaterializationConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config or MaterializationConfig()
        self.clock = clock or utc_now
        self.tz = validate_timezone(self.config.default_timezone)

    def now(self) -> datetime:
        return as_utc(self.clock())

    @property
    def grace(self) -> timedelta:
        return timedelta(days=self.config.materialization_grace_days)

    @property
    def lookahead(self) -> timedelta:
        return timedelta(days=self.config.lookahead_days)

    def default_window(self, now: Optional[datetime] = None) -> Window:
        now = as_utc(now) if now else self.now()
        return now - self.grace, now + self.lookahead

    def catchup_floor(self, now: datetime) -> datetime:
        """Earliest instant of interest for overdue queries."""
        return EPOCH if self.config.enable_catchup else now - self.grace

    def _day_window(self, instant: datetime, offset_days: int) -> Window:
        day = local_day(instant, self.tz) + timedelta(days=offset_days)
        start, end = day_bounds(day, self.tz)
        return start - self.grace, end + self.grace

    def window_for_filter(self, due: DueDate, now: Optional[datetime] = None) -> Window:
        now = as_utc(now) if now else self.now()
        kind = due.kind
        if kind is DueKind.TODAY:
            return self._day_window(now, 0)
        if kind is DueKind.TOMORROW:
            return self._day_window(now, 1)
        if kind is DueKind.YESTERDAY:
            return self._day_window(now, -1)
        if kind is DueKind.ON:
            start, end = day_bounds(due.day, self.tz)
            return start - self.grace, end + self.grace
        if kind is DueKind.BEFORE:
            return now - self.grace, as_utc(due.at)
        if kind is DueKind.AFTER:
            at = as_utc(due.at)
            return max(at, now - self.grace), max(at + self.lookahead, now + self.lookahead)
        if kind is DueKind.OVERDUE:
            return self.catchup_floor(now), now
        if kind is DueKind.WITHIN:
            return now - self.grace, now + due.span
        if kind is DueKind.AGO:
            return now - due.span, now
        raise ValueError(f"Unknown due filter kind: {kind}")

    def calculate_window_for_filters(
        self, filters: Iterable[DueDate], now: Optional[datetime] = None
    ) -> Window:
        """
        Window that must be materialized before the filters can be answered.

        Several filters compose into the union interval. An inverted
        interval (e.g. Before a point older than the grace period)
        collapses onto its end.

        Args:
            filters: Due-date filters extracted from a query
            now: Reference instant, defaults to the clock

        Returns:
            (window_start, window_end) as UTC instants
        """
        now = as_utc(now) if now else self.now()
        windows = [self.window_for_filter(due, now) for due in filters]
        if not windows:
            return self.default_window(now)

        start = min(window[0] for window in windows)
        end = max(window[1] for window in windows)
        if start > end:
            start = end
        logger.debug(f"Materialization window for {len(windows)} filter(s): {start} .. {end}")
        return start, end

    def contains(self, instant: datetime, watermark: Optional[datetime] = None) -> bool:
        """True if ``instant`` is inside the default window, stretched up to ``watermark``."""
        start, end = self.default_window()
        if watermark is not None:
            end = max(end, as_utc(watermark))
        return start <= as_utc(instant) <= end
