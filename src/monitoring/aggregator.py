"""Sliding-window aggregation of request counts, errors and latencies."""

import threading
import time
from bisect import bisect_left
from operator import attrgetter
from typing import Callable, Optional

from config.logging_config import get_logger

from .history import MetricHistory
from .models import MetricsSnapshot, Sample, nearest_rank

logger = get_logger(__name__)

Clock = Callable[[], float]

_timestamp = attrgetter("timestamp_ms")


def wall_clock_ms() -> float:
    """Current wall-clock time in milliseconds."""
    return time.time() * 1000


class SampleSeries:
    """Append-only series of samples with bulk eviction from the head.

    Samples are kept in non-decreasing timestamp order. Eviction drops
    everything older than the retention cutoff in one slice, then trims the
    oldest surplus if the series is still over `max_size`.
    """

    def __init__(self, max_size: int) -> None:
        self.max_size = max_size
        self._samples: list[Sample] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._samples)

    def append(self, timestamp_ms: float, value: float, retain_after_ms: float) -> None:
        """Append a sample and evict anything older than `retain_after_ms`."""
        with self._lock:
            if self._samples and timestamp_ms < self._samples[-1].timestamp_ms:
                timestamp_ms = self._samples[-1].timestamp_ms
            self._samples.append(Sample(timestamp_ms, value))

            first_kept = bisect_left(self._samples, retain_after_ms, key=_timestamp)
            if first_kept > 0:
                del self._samples[:first_kept]

            overflow = len(self._samples) - self.max_size
            if overflow > 0:
                del self._samples[:overflow]

    def since(self, start_ms: float) -> list[Sample]:
        """Samples with timestamp >= `start_ms`."""
        with self._lock:
            index = bisect_left(self._samples, start_ms, key=_timestamp)
            return self._samples[index:]

    def count_since(self, start_ms: float) -> int:
        with self._lock:
            return len(self._samples) - bisect_left(self._samples, start_ms, key=_timestamp)

    def samples(self) -> list[Sample]:
        with self._lock:
            return list(self._samples)

    def clear(self) -> None:
        with self._lock:
            self._samples.clear()


class MetricsAggregator:
    """Tracks recent request outcomes and computes windowed statistics.

    Request middleware calls `record_request` once per completed request;
    the monitoring loop calls `snapshot` on each poll. Samples are retained
    for twice the default window, capped at `max_history_size` per series.
    """

    RESPONSE_TIME_METRIC = "http.response_time"

    def __init__(
        self,
        window_ms: int = 5 * 60 * 1000,
        max_history_size: int = 1000,
        history: Optional[MetricHistory] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        """Initialize the aggregator.

        Args:
            window_ms: Default lookback window for statistics
            max_history_size: Hard cap on samples retained per series
            history: Alert history that also receives each response time
            clock: Returns the current time in milliseconds
        """
        if window_ms <= 0:
            raise ValueError("window_ms must be positive")
        if max_history_size <= 0:
            raise ValueError("max_history_size must be positive")

        self.window_ms = window_ms
        self.max_history_size = max_history_size
        self._history = history
        self._clock = clock or wall_clock_ms

        # One sample per request; value is 1 for a server error, else 0
        self._requests = SampleSeries(max_history_size)
        self._response_times = SampleSeries(max_history_size)

        logger.info(
            "Metrics aggregator initialized",
            window_ms=window_ms,
            max_history_size=max_history_size,
        )

    def record_request(self, status_code: int, response_time_ms: float) -> None:
        """Record one completed HTTP request.

        Args:
            status_code: HTTP status code; 5xx counts as an error
            response_time_ms: Time taken to respond
        """
        now = self._clock()
        cutoff = now - self.window_ms * 2

        self._requests.append(now, 1 if status_code >= 500 else 0, cutoff)
        self._response_times.append(now, response_time_ms, cutoff)

        if self._history is not None:
            self._history.record(self.RESPONSE_TIME_METRIC, response_time_ms)

    def _window_start(self, window_ms: Optional[int]) -> float:
        return self._clock() - (self.window_ms if window_ms is None else window_ms)

    def request_count(self, window_ms: Optional[int] = None) -> int:
        """Requests recorded within the window."""
        return self._requests.count_since(self._window_start(window_ms))

    def error_count(self, window_ms: Optional[int] = None) -> int:
        """Server errors recorded within the window."""
        return int(sum(s.value for s in self._requests.since(self._window_start(window_ms))))

    def error_rate(self, window_ms: Optional[int] = None) -> float:
        """Fraction of requests in the window that were server errors.

        Errors and requests are counted over the same retained samples, so
        trimming by `max_history_size` never skews the ratio. Returns 0.0
        when no requests were recorded in the window.
        """
        samples = self._requests.since(self._window_start(window_ms))
        if not samples:
            return 0.0
        return sum(s.value for s in samples) / len(samples)

    def latency_percentile(self, percentile: float, window_ms: Optional[int] = None) -> float:
        """Nearest-rank response time percentile over the window.

        Args:
            percentile: Percentile in [0, 100]
            window_ms: Lookback window, defaults to the configured window

        Returns:
            Response time in milliseconds, or 0.0 if the window is empty
        """
        values = sorted(s.value for s in self._response_times.since(self._window_start(window_ms)))
        return nearest_rank(values, percentile)

    def snapshot(self) -> MetricsSnapshot:
        """Compute error rate and latency percentiles over the default window."""
        return MetricsSnapshot(
            error_rate=self.error_rate(),
            response_time_p95=self.latency_percentile(95),
            response_time_p99=self.latency_percentile(99),
            request_count=self.request_count(),
            error_count=self.error_count(),
        )

    def reset(self) -> None:
        """Drop all recorded samples."""
        self._requests.clear()
        self._response_times.clear()
