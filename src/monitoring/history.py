"""Bounded per-metric history of observed values."""

import threading
import time
from collections import deque
from typing import Callable, Optional

from .models import MetricStats, Sample, nearest_rank


class MetricHistory:
    """Fixed-capacity history per metric, oldest value evicted first.

    Used for statistics about values already seen (e.g. why an alert fired),
    independent of the aggregator's own windows.
    """

    def __init__(self, capacity: int = 100, clock: Optional[Callable[[], float]] = None) -> None:
        """Initialize history.

        Args:
            capacity: Values retained per metric
            clock: Returns the current time in milliseconds
        """
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._clock = clock or (lambda: time.time() * 1000)
        self._entries: dict[str, deque[Sample]] = {}
        self._lock = threading.Lock()

    def record(self, metric: str, value: float) -> None:
        """Append a value to the metric's history."""
        with self._lock:
            entries = self._entries.get(metric)
            if entries is None:
                entries = self._entries[metric] = deque(maxlen=self.capacity)
            entries.append(Sample(self._clock(), value))

    def values(self, metric: str, window_ms: Optional[float] = None) -> list[float]:
        """Recorded values in insertion order.

        Args:
            metric: Metric key
            window_ms: Only values recorded within this many milliseconds;
                None or 0 returns the whole history
        """
        with self._lock:
            entries = list(self._entries.get(metric, ()))

        if window_ms:
            now = self._clock()
            return [e.value for e in entries if now - e.timestamp_ms <= window_ms]
        return [e.value for e in entries]

    def stats(self, metric: str, window_ms: Optional[float] = None) -> MetricStats:
        """Count, min, max, average and p95/p99 of the metric's history."""
        values = self.values(metric, window_ms)
        if not values:
            return MetricStats()

        ordered = sorted(values)
        return MetricStats(
            count=len(values),
            min=ordered[0],
            max=ordered[-1],
            avg=sum(values) / len(values),
            p95=nearest_rank(ordered, 95),
            p99=nearest_rank(ordered, 99),
        )

    def metrics(self) -> list[str]:
        """Metric keys with recorded history."""
        with self._lock:
            return list(self._entries)

    def clear(self, metric: Optional[str] = None) -> None:
        """Forget one metric's history, or all of it."""
        with self._lock:
            if metric is None:
                self._entries.clear()
            else:
                self._entries.pop(metric, None)
