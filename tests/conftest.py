"""Pytest configuration and shared fixtures."""

import asyncio

import pytest

from src.monitoring.definitions import AlertDefinitionTable
from src.monitoring.history import MetricHistory
from src.monitoring.models import AlertDefinition, AlertSeverity


class FakeClock:
    """Manually advanced clock returning milliseconds."""

    def __init__(self, start_ms: float = 1_700_000_000_000.0) -> None:
        self.now_ms = start_ms

    def __call__(self) -> float:
        return self.now_ms

    def advance(self, ms: float) -> None:
        self.now_ms += ms


@pytest.fixture
def clock() -> FakeClock:
    """Create a fake millisecond clock."""
    return FakeClock()


@pytest.fixture
def history(clock: FakeClock) -> MetricHistory:
    """Create a small metric history."""
    return MetricHistory(capacity=5, clock=clock)


def make_definition(
    key: str,
    metric: str = "test.metric",
    threshold: float = 10,
    severity: AlertSeverity = AlertSeverity.WARNING,
    enabled: bool = True,
    channels: tuple[str, ...] = ("discord",),
    **threshold_fields,
) -> AlertDefinition:
    """Build an alert definition for tests."""
    return AlertDefinition(
        key=key,
        name=key.replace("_", " ").title(),
        metric=metric,
        threshold={
            "threshold": threshold,
            "severity": severity,
            "enabled": enabled,
            **threshold_fields,
        },
        notification_channels=channels,
    )


@pytest.fixture
def definitions() -> AlertDefinitionTable:
    """Create a small alert table."""
    table = [
        make_definition("latency", metric="http.response_time", threshold=1000),
        make_definition(
            "errors",
            metric="http.error_rate",
            threshold=0.05,
            severity=AlertSeverity.CRITICAL,
            channels=("discord", "slack"),
        ),
        make_definition("disabled", metric="system.cpu_usage", threshold=1, enabled=False),
        make_definition("memory", metric="system.memory_usage", threshold=90, severity=AlertSeverity.INFO),
        make_definition("redis_down", metric="redis.connection_status", threshold=0),
    ]
    return AlertDefinitionTable({d.key: d for d in table})


@pytest.fixture
def make_alert():
    """Factory for alert definitions."""
    return make_definition


class RecordingNotifier:
    """Notifier that records calls and optionally fails."""

    def __init__(self, channel: str, fail: bool = False, accept: bool = True, delay: float = 0) -> None:
        self.channel = channel
        self.fail = fail
        self.accept = accept
        self.delay = delay
        self.calls = []

    async def notify(self, definition, value, context) -> bool:
        if self.delay:
            await asyncio.sleep(self.delay)
        self.calls.append((definition.key, value, context))
        if self.fail:
            raise RuntimeError(f"{self.channel} is down")
        return self.accept


@pytest.fixture
def recording_notifier():
    """Notifier class that records calls."""
    return RecordingNotifier
