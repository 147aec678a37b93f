"""Data models for metric aggregation and alerting."""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

ContextValue = Union[str, int, float, bool, None]
AlertContext = dict[str, ContextValue]

_WINDOW_PATTERN = re.compile(r"^(\d+)(ms|s|m|h|d)$")

_WINDOW_UNITS_MS = {
    "ms": 1,
    "s": 1000,
    "m": 60 * 1000,
    "h": 60 * 60 * 1000,
    "d": 24 * 60 * 60 * 1000,
}


def parse_window(window: str) -> int:
    """Parse a window string such as "30s", "5m" or "1h" into milliseconds.

    Raises:
        ValueError: If the string is not a positive duration
    """
    match = _WINDOW_PATTERN.match(window.strip())
    if not match:
        raise ValueError(f"Invalid window: {window!r}")
    amount, unit = match.groups()
    if int(amount) <= 0:
        raise ValueError(f"Window must be positive: {window!r}")
    return int(amount) * _WINDOW_UNITS_MS[unit]


class AlertSeverity(str, Enum):
    """Alert severity levels."""

    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


@dataclass(frozen=True)
class Sample:
    """A timestamped numeric observation."""

    timestamp_ms: float
    value: float


class AlertThreshold(BaseModel):
    """Trigger condition for an alert. Values at or above `threshold` fire."""

    model_config = ConfigDict(frozen=True)

    threshold: float
    severity: AlertSeverity
    enabled: bool = True
    window: Optional[str] = Field(default=None, description="Lookback window, e.g. '5m'")
    percentile: Optional[float] = Field(default=None, gt=0, le=100)
    description: Optional[str] = None

    @field_validator("window")
    @classmethod
    def validate_window(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            parse_window(v)
        return v

    @property
    def window_ms(self) -> Optional[int]:
        """Lookback window in milliseconds, if one is configured."""
        if self.window is None:
            return None
        return parse_window(self.window)


class AlertDefinition(BaseModel):
    """Static rule mapping a metric key to a trigger threshold."""

    model_config = ConfigDict(frozen=True)

    key: str = Field(..., min_length=1, description="Unique lookup key")
    name: str = Field(..., min_length=1, description="Human readable title")
    metric: str = Field(..., min_length=1)
    threshold: AlertThreshold
    notification_channels: tuple[str, ...] = Field(default_factory=tuple)
    runbook_url: Optional[str] = None

    @property
    def severity(self) -> AlertSeverity:
        return self.threshold.severity

    @property
    def enabled(self) -> bool:
        return self.threshold.enabled


class MetricsSnapshot(BaseModel):
    """Point-in-time bundle of derived statistics."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    error_rate: float = 0.0
    response_time_p95: float = 0.0
    response_time_p99: float = 0.0
    request_count: int = 0
    error_count: int = 0
    gauges: dict[str, float] = Field(default_factory=dict)

    def as_metric_values(self) -> dict[str, float]:
        """Metric-key mapping consumed by the alert evaluator.

        General response time alerts are checked against p95.
        """
        values = {
            "http.error_rate": self.error_rate,
            "http.response_time": self.response_time_p95,
        }
        values.update(self.gauges)
        return values


@dataclass(frozen=True)
class TriggerResult:
    """Outcome of evaluating one value against one alert definition."""

    triggered: bool
    definition: Optional[AlertDefinition] = None
    value: Optional[float] = None

    @classmethod
    def not_triggered(cls, value: Optional[float] = None) -> "TriggerResult":
        return cls(triggered=False, value=value)


@dataclass(frozen=True)
class MetricStats:
    """Summary statistics over a metric's recorded history."""

    count: int = 0
    min: float = 0.0
    max: float = 0.0
    avg: float = 0.0
    p95: Optional[float] = None
    p99: Optional[float] = None


@dataclass(frozen=True)
class NotificationResult:
    """Per-channel outcome of a notification send."""

    channel: str
    success: bool
    error: Optional[str] = None


@dataclass
class AlertDispatch:
    """A triggered alert and the outcome of notifying each channel."""

    result: TriggerResult
    notifications: list[NotificationResult] = field(default_factory=list)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def delivered(self) -> bool:
        """Whether at least one channel accepted the alert."""
        return any(n.success for n in self.notifications)

    @property
    def failed_channels(self) -> list[str]:
        return [n.channel for n in self.notifications if not n.success]


def nearest_rank(sorted_values: list[float], percentile: float) -> float:
    """Nearest-rank percentile over already-sorted values.

    Index is floor(n * p / 100), clamped to the last element. Empty input
    yields 0.0.
    """
    if percentile < 0 or percentile > 100:
        raise ValueError(f"Percentile must be within [0, 100]: {percentile}")
    if not sorted_values:
        return 0.0
    index = int(len(sorted_values) * percentile / 100)
    return sorted_values[min(index, len(sorted_values) - 1)]
