"""Unit tests for the monitoring service."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest
from prometheus_client import CollectorRegistry

from config.settings import Environment, Settings
from src.monitoring.aggregator import MetricsAggregator
from src.monitoring.alerting import AlertManager
from src.monitoring.definitions import AlertDefinitionTable
from src.monitoring.evaluator import AlertEvaluator
from src.monitoring.metrics import PrometheusMetrics
from src.monitoring.notifiers import DiscordWebhookNotifier, LoggingNotifier
from src.monitoring.service import MonitoringService, build_monitoring_service, build_notifiers


def fake_client_session(status: int = 200, body=None, error: Exception = None) -> MagicMock:
    """Create a ClientSession replacement whose GET returns `status` and `body`."""
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=body)

    session = MagicMock()
    if error is not None:
        session.get.side_effect = error
    else:
        session.get.return_value.__aenter__ = AsyncMock(return_value=response)
        session.get.return_value.__aexit__ = AsyncMock(return_value=False)

    factory = MagicMock()
    factory.return_value.__aenter__ = AsyncMock(return_value=session)
    factory.return_value.__aexit__ = AsyncMock(return_value=False)
    return factory


@pytest.fixture
def channels(recording_notifier):
    return {
        "discord": recording_notifier("discord"),
        "slack": recording_notifier("slack"),
    }


@pytest.fixture
def aggregator(clock, history) -> MetricsAggregator:
    return MetricsAggregator(window_ms=60_000, history=history, clock=clock)


@pytest.fixture
def service(aggregator, definitions, history, channels) -> MonitoringService:
    """Create service over the test alert table."""
    manager = AlertManager(AlertEvaluator(definitions, history), notifiers=channels)
    return MonitoringService(aggregator, manager, interval_seconds=0.01)


def dispatched_keys(dispatches) -> list[str]:
    return sorted(d.result.definition.key for d in dispatches)


@pytest.mark.asyncio
class TestCheckMetrics:
    """Tests for a single monitoring cycle."""

    async def test_quiet_cycle(self, service: MonitoringService, channels):
        """Test healthy traffic dispatches nothing."""
        for _ in range(10):
            service.record_request(200, 50)

        assert await service.check_metrics() == []
        assert channels["discord"].calls == []

    async def test_error_rate_alert(self, service: MonitoringService, channels):
        """Test a high error rate reaches the configured channels."""
        for _ in range(9):
            service.record_request(200, 50)
        service.record_request(500, 50)

        dispatches = await service.check_metrics()

        assert dispatched_keys(dispatches) == ["errors"]
        key, value, context = channels["slack"].calls[0]
        assert value == pytest.approx(0.1)
        assert context["service"] == "api"
        assert context["environment"] == "development"
        assert "timestamp" in context

    async def test_latency_alert(self, service: MonitoringService):
        """Test slow responses fire the latency alert."""
        for _ in range(20):
            service.record_request(200, 1200)

        dispatches = await service.check_metrics()

        assert dispatched_keys(dispatches) == ["latency"]

    async def test_gauge_alert(self, service: MonitoringService):
        """Test gauge values are checked against their alerts."""
        service.register_gauge("system.memory_usage", lambda: 95.0)

        dispatches = await service.check_metrics()

        assert dispatched_keys(dispatches) == ["memory"]

    async def test_async_gauge(self, service: MonitoringService):
        """Test coroutine gauges are awaited."""
        async def memory() -> float:
            return 99.0

        service.register_gauge("system.memory_usage", memory)

        snapshot = await service.collect()

        assert snapshot.gauges == {"system.memory_usage": 99.0}

    async def test_failing_gauge_reads_zero(self, service: MonitoringService):
        """Test a failing gauge reads as 0 and does not alert."""
        def broken() -> float:
            raise OSError("cannot read meminfo")

        service.register_gauge("system.memory_usage", broken)

        snapshot = await service.collect()
        dispatches = await service.check_metrics()

        assert snapshot.gauges["system.memory_usage"] == 0.0
        assert dispatches == []

    async def test_gauges_recorded_in_history(self, service: MonitoringService):
        """Test each cycle's gauge values are kept in alert history."""
        readings = iter([10.0, 20.0, 30.0])
        service.register_gauge("queue.size", lambda: next(readings))

        for _ in range(3):
            await service.check_metrics()

        assert service.manager.evaluator.history("queue.size") == [10.0, 20.0, 30.0]

    async def test_cycle_errors_are_contained(self, service: MonitoringService, monkeypatch):
        """Test an unexpected error ends the cycle without raising."""
        def explode():
            raise RuntimeError("boom")

        monkeypatch.setattr(service.aggregator, "snapshot", explode)

        assert await service.check_metrics() == []

    async def test_publishes_to_exporter(self, aggregator, definitions, history, channels):
        """Test snapshots and requests are exported to Prometheus."""
        registry = CollectorRegistry()
        exporter = PrometheusMetrics(prefix="test", registry=registry)
        manager = AlertManager(AlertEvaluator(definitions, history), notifiers=channels)
        service = MonitoringService(aggregator, manager, exporter=exporter)
        service.register_gauge("system.cpu_usage", lambda: 42.0)

        service.record_request(200, 30)
        service.record_request(502, 30)
        await service.check_metrics()

        assert registry.get_sample_value("test_error_rate") == 0.5
        assert registry.get_sample_value("test_http_requests_total", {"status_class": "5xx"}) == 1
        assert registry.get_sample_value("test_gauge", {"metric": "system.cpu_usage"}) == 42.0


@pytest.mark.asyncio
class TestRequestAlertWindows:
    """Tests for request alerts measured over their own percentile."""

    async def test_percentile_alerts_use_their_percentile(self, aggregator, history, channels):
        """Test p99 alerts see p99 latency while p95 alerts see p95."""
        manager = AlertManager(
            AlertEvaluator(AlertDefinitionTable.default(), history),
            notifiers=channels,
        )
        service = MonitoringService(aggregator, manager)

        # p95 = 500ms, p99 = 2500ms
        for _ in range(97):
            service.record_request(200, 500)
        for _ in range(3):
            service.record_request(200, 2500)

        dispatches = await service.check_metrics()
        by_key = {d.result.definition.key: d for d in dispatches}

        assert "response_time_p99" in by_key
        assert "response_time_p95" not in by_key
        assert "response_time" not in by_key
        assert by_key["response_time_p99"].result.value == 2500
        p99_calls = [c for c in channels["discord"].calls if c[0] == "response_time_p99"]
        assert p99_calls[0][2]["percentile"] == 99


@pytest.mark.asyncio
class TestHealthCheck:
    """Tests for the health endpoint probe."""

    @pytest.fixture
    def health_service(self, aggregator, history, channels) -> MonitoringService:
        manager = AlertManager(
            AlertEvaluator(AlertDefinitionTable.default(), history),
            notifiers=channels,
        )
        return MonitoringService(aggregator, manager, health_check_url="http://api.test/health")

    async def test_healthy(self, health_service: MonitoringService, monkeypatch):
        monkeypatch.setattr(
            "src.monitoring.service.aiohttp.ClientSession",
            fake_client_session(200, {"status": "healthy"}),
        )

        assert await health_service.check_health() is None

    async def test_unhealthy_status(self, health_service: MonitoringService, channels, monkeypatch):
        monkeypatch.setattr(
            "src.monitoring.service.aiohttp.ClientSession",
            fake_client_session(503, {"status": "degraded"}),
        )

        dispatch = await health_service.check_health()

        assert dispatch.result.definition.key == "health_check_failure"
        context = channels["discord"].calls[0][2]
        assert context["http_status"] == 503
        assert context["health_status"] == "degraded"

    async def test_unreachable(self, health_service: MonitoringService, channels, monkeypatch):
        monkeypatch.setattr(
            "src.monitoring.service.aiohttp.ClientSession",
            fake_client_session(error=aiohttp.ClientConnectionError("refused")),
        )

        dispatch = await health_service.check_health()

        assert dispatch is not None
        assert "refused" in channels["discord"].calls[0][2]["error"]

    async def test_included_in_cycle(self, health_service: MonitoringService, monkeypatch):
        monkeypatch.setattr(
            "src.monitoring.service.aiohttp.ClientSession",
            fake_client_session(500, {"status": "unhealthy"}),
        )

        dispatches = await health_service.check_metrics()

        assert "health_check_failure" in dispatched_keys(dispatches)

    async def test_no_url(self, service: MonitoringService):
        assert await service.check_health() is None


@pytest.mark.asyncio
class TestLifecycle:
    """Tests for starting and stopping the loop."""

    async def test_start_runs_immediately_and_repeats(self, service: MonitoringService):
        readings = []
        service.register_gauge("queue.size", lambda: readings.append(1) or 0.0)

        await service.start()
        await asyncio.sleep(0.05)
        await service.stop()

        assert len(readings) >= 2
        assert not service.is_running

    async def test_start_twice(self, service: MonitoringService):
        await service.start()
        task = service._task
        await service.start()

        assert service._task is task
        await service.stop()

    async def test_disabled(self, aggregator, definitions, history):
        manager = AlertManager(AlertEvaluator(definitions, history))
        service = MonitoringService(aggregator, manager, enabled=False)

        await service.start()

        assert not service.is_running
        assert service._task is None

    async def test_status(self, service: MonitoringService):
        service.register_gauge("system.cpu_usage", lambda: 1.0)

        status = service.get_status()

        assert status["running"] is False
        assert status["gauges"] == ["system.cpu_usage"]
        assert status["channels"] == ["discord", "slack"]
        assert status["window_ms"] == 60_000


class TestBuildFromSettings:
    """Tests for wiring the service from settings."""

    def test_logging_fallback_without_webhooks(self):
        notifiers = build_notifiers(Settings())

        assert isinstance(notifiers["discord"], LoggingNotifier)
        assert isinstance(notifiers["slack"], LoggingNotifier)

    def test_webhook_notifiers(self):
        notifiers = build_notifiers(Settings(discord_webhook_url="https://discord.test/webhook"))

        assert list(notifiers) == ["discord"]
        assert isinstance(notifiers["discord"], DiscordWebhookNotifier)

    def test_build_service(self):
        settings = Settings(
            environment=Environment.PRODUCTION,
            metrics_window_ms=120_000,
            monitoring_interval_seconds=30,
            service_name="checkout",
        )

        service = build_monitoring_service(settings, gauges={"system.cpu_usage": lambda: 1.0})

        assert service.enabled
        assert service.interval_seconds == 30
        assert service.aggregator.window_ms == 120_000
        assert service.service_name == "checkout"
        assert service.environment == "production"
        assert "error_rate" in service.manager.evaluator.definitions
        assert service.exporter is None
