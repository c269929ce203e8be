"""
Metrics collection for series materialization.

Counts refreshes, created instances and failures, and accumulates time
spent refreshing.
"""

import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator

SERIES_REFRESHED = "series_refreshed_total"
INSTANCES_CREATED = "instances_created_total"
REFRESH_ERRORS = "refresh_errors_total"
REFRESH_SECONDS = "refresh_seconds"


class MetricsCollector:
    """Thread-safe counters and timers."""

    def __init__(self):
        self.metrics = defaultdict(int)
        self.timers = defaultdict(float)
        self.lock = threading.Lock()

        self.metrics[SERIES_REFRESHED] = 0
        self.metrics[INSTANCES_CREATED] = 0
        self.metrics[REFRESH_ERRORS] = 0

    def increment_counter(self, metric_name: str, value: int = 1):
        with self.lock:
            self.metrics[metric_name] += value

    def record_timer(self, metric_name: str, duration: float):
        with self.lock:
            self.timers[metric_name] += duration

    def get_metrics(self) -> Dict[str, Any]:
        """Get current metrics values."""
        with self.lock:
            return {
                "counters": dict(self.metrics),
                "timers": dict(self.timers),
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }

    def series_refreshed(self, instances_created: int):
        """Record one series refresh and the rows it inserted."""
        with self.lock:
            self.metrics[SERIES_REFRESHED] += 1
            self.metrics[INSTANCES_CREATED] += instances_created

    def refresh_error(self):
        self.increment_counter(REFRESH_ERRORS)

    @contextmanager
    def time_operation(self, metric_name: str) -> Iterator[None]:
        """Accumulate the duration of the enclosed block, even when it raises."""
        start_time = time.perf_counter()
        try:
            yield
        finally:
            self.record_timer(metric_name, time.perf_counter() - start_time)
