"""Periodic metric collection and alert checking."""

import asyncio
import inspect
from collections.abc import Awaitable, Mapping
from typing import Callable, Optional, Union

import aiohttp

from config.logging_config import get_logger
from config.settings import Settings

from .aggregator import MetricsAggregator
from .alerting import AlertManager
from .definitions import load_alert_definitions
from .evaluator import AlertEvaluator
from .history import MetricHistory
from .metrics import PrometheusMetrics
from .models import AlertContext, AlertDefinition, AlertDispatch, MetricsSnapshot
from .notifiers import DiscordWebhookNotifier, LoggingNotifier, Notifier, SlackWebhookNotifier

logger = get_logger(__name__)

GaugeCollector = Callable[[], Union[float, Awaitable[float]]]

HEALTH_CHECK_ALERT = "health_check_failure"


class MonitoringService:
    """Polls the aggregator and external gauges, then checks alerts.

    Each cycle:
    - Takes a snapshot of request metrics
    - Reads every registered gauge (a failing gauge reads as 0)
    - Checks request alerts over their own window and percentile
    - Checks every other enabled alert against the collected values
    - Optionally probes the health endpoint
    """

    REQUEST_METRICS = ("http.error_rate", "http.response_time")

    def __init__(
        self,
        aggregator: MetricsAggregator,
        manager: AlertManager,
        gauges: Optional[Mapping[str, GaugeCollector]] = None,
        exporter: Optional[PrometheusMetrics] = None,
        interval_seconds: float = 60.0,
        health_check_url: Optional[str] = None,
        environment: str = "development",
        service_name: str = "api",
        health_timeout_seconds: float = 5.0,
        enabled: bool = True,
    ) -> None:
        """Initialize monitoring service.

        Args:
            aggregator: Request metrics aggregator
            manager: Alert manager
            gauges: Metric key to collector returning the current value
            exporter: Prometheus metrics updated on each cycle
            interval_seconds: Seconds between cycles
            health_check_url: Endpoint expected to answer {"status": "healthy"}
            environment: Attached to alert context
            service_name: Attached to alert context
            health_timeout_seconds: Total timeout for the health probe
            enabled: Whether `start` runs the loop
        """
        self.aggregator = aggregator
        self.manager = manager
        self.gauges: dict[str, GaugeCollector] = dict(gauges or {})
        self.exporter = exporter
        self.interval_seconds = interval_seconds
        self.health_check_url = health_check_url
        self.environment = environment
        self.service_name = service_name
        self.health_timeout = aiohttp.ClientTimeout(total=health_timeout_seconds)
        self.enabled = enabled

        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    def record_request(self, status_code: int, response_time_ms: float) -> None:
        """Record a completed request (called by request middleware)."""
        self.aggregator.record_request(status_code, response_time_ms)
        if self.exporter:
            self.exporter.record_request(status_code, response_time_ms)

    def register_gauge(self, metric: str, collector: GaugeCollector) -> None:
        """Add or replace an external gauge collector."""
        self.gauges[metric] = collector

    async def collect_gauges(self) -> dict[str, float]:
        """Read every registered gauge.

        A collector that raises reads as 0.0, which never crosses a
        positive threshold.
        """
        values = {}
        for metric, collector in self.gauges.items():
            try:
                value = collector()
                if inspect.isawaitable(value):
                    value = await value
                values[metric] = float(value)
            except Exception as e:
                logger.warning("Gauge collection failed", metric=metric, error=str(e))
                values[metric] = 0.0
        return values

    async def collect(self) -> MetricsSnapshot:
        """Snapshot request metrics and attach gauge values."""
        snapshot = self.aggregator.snapshot()
        snapshot.gauges.update(await self.collect_gauges())

        evaluator = self.manager.evaluator
        for metric, value in snapshot.gauges.items():
            evaluator.record_history(metric, value)

        if self.exporter:
            self.exporter.publish_snapshot(snapshot)
        return snapshot

    def _request_value(self, definition: AlertDefinition) -> Optional[float]:
        """Measure a request alert over its own window and percentile."""
        window_ms = definition.threshold.window_ms
        if definition.metric == "http.error_rate":
            return self.aggregator.error_rate(window_ms)
        if definition.metric == "http.response_time":
            percentile = definition.threshold.percentile or 95
            return self.aggregator.latency_percentile(percentile, window_ms)
        return None

    def _context(self, snapshot: MetricsSnapshot) -> AlertContext:
        return {
            "timestamp": snapshot.timestamp.isoformat(),
            "environment": self.environment,
            "service": self.service_name,
        }

    async def check_metrics(self) -> list[AlertDispatch]:
        """Run one collection and alerting cycle.

        Returns:
            Alerts dispatched during this cycle
        """
        dispatches: list[AlertDispatch] = []
        try:
            snapshot = await self.collect()
            context = self._context(snapshot)

            request_alerts = [
                d for d in self.manager.evaluator.definitions.enabled()
                if d.metric in self.REQUEST_METRICS
            ]
            for definition in request_alerts:
                value = self._request_value(definition)
                alert_context = dict(context)
                if definition.threshold.percentile is not None:
                    alert_context["percentile"] = definition.threshold.percentile
                dispatch = await self.manager.process_alert(definition.key, value, alert_context)
                if dispatch:
                    dispatches.append(dispatch)

            dispatches.extend(
                await self.manager.check_all_alerts(
                    snapshot.as_metric_values(),
                    context,
                    exclude={d.key for d in request_alerts},
                )
            )

            if self.health_check_url:
                dispatch = await self.check_health()
                if dispatch:
                    dispatches.append(dispatch)

            logger.debug(
                "Metrics check completed",
                error_rate=snapshot.error_rate,
                response_time_p95=snapshot.response_time_p95,
                alerts=len(dispatches),
            )

        except Exception as e:
            logger.error("Error checking metrics", error=str(e))

        return dispatches

    async def check_health(self) -> Optional[AlertDispatch]:
        """Probe the health endpoint and alert if it is not healthy."""
        if not self.health_check_url:
            return None

        context: AlertContext = {"service": self.service_name, "url": self.health_check_url}
        try:
            async with aiohttp.ClientSession(timeout=self.health_timeout) as session:
                async with session.get(self.health_check_url) as resp:
                    data = await resp.json(content_type=None)
                    status = data.get("status") if isinstance(data, dict) else None
                    if 200 <= resp.status < 300 and status == "healthy":
                        return None
                    context["http_status"] = resp.status
                    context["health_status"] = status
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            context["error"] = str(e)

        logger.warning("Health check failed", **context)
        return await self.manager.process_alert(HEALTH_CHECK_ALERT, 0, context)

    async def start(self) -> None:
        """Start the monitoring loop in the background."""
        if self._running:
            logger.warning("Monitoring service is already running")
            return

        if not self.enabled:
            logger.info("Monitoring service is disabled")
            return

        logger.info("Starting monitoring service", interval_seconds=self.interval_seconds)
        self._running = True
        self._task = asyncio.create_task(self._run_loop())

    async def _run_loop(self) -> None:
        """Check immediately, then once per interval."""
        while self._running:
            await self.check_metrics()
            await asyncio.sleep(self.interval_seconds)

    async def stop(self) -> None:
        """Stop the loop and release notifier resources."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        await self.manager.close()
        logger.info("Monitoring service stopped")

    def get_status(self) -> dict:
        """Get current status."""
        return {
            "running": self._running,
            "enabled": self.enabled,
            "interval_seconds": self.interval_seconds,
            "window_ms": self.aggregator.window_ms,
            "gauges": sorted(self.gauges),
            "channels": sorted(self.manager.notifiers),
            "health_check_url": self.health_check_url,
        }


def build_notifiers(settings: Settings) -> dict[str, Notifier]:
    """Create a notifier per configured webhook, or a logging fallback."""
    notifiers: dict[str, Notifier] = {}
    if settings.slack_webhook_url:
        notifiers["slack"] = SlackWebhookNotifier(settings.slack_webhook_url)
    if settings.discord_webhook_url:
        notifiers["discord"] = DiscordWebhookNotifier(settings.discord_webhook_url)

    if not notifiers:
        logger.warning("No webhooks configured, alerts will only be logged")
        # Route the default channels to the log so alerts are never dropped
        notifiers["discord"] = LoggingNotifier("discord")
        notifiers["slack"] = LoggingNotifier("slack")
    return notifiers


def build_monitoring_service(
    settings: Settings,
    gauges: Optional[Mapping[str, GaugeCollector]] = None,
) -> MonitoringService:
    """Wire the aggregator, evaluator, alert manager and service from settings."""
    definitions = load_alert_definitions(settings.alert_definitions_path)
    history = MetricHistory(capacity=settings.alert_history_size)

    exporter = None
    if settings.prometheus_port:
        exporter = PrometheusMetrics()
        exporter.start_server(settings.prometheus_port)

    aggregator = MetricsAggregator(
        window_ms=settings.metrics_window_ms,
        max_history_size=settings.metrics_max_history,
        history=history,
    )
    manager = AlertManager(
        evaluator=AlertEvaluator(definitions, history),
        notifiers=build_notifiers(settings),
        rate_limit_seconds=settings.alert_rate_limit_seconds,
        exporter=exporter,
    )

    return MonitoringService(
        aggregator=aggregator,
        manager=manager,
        gauges=gauges,
        exporter=exporter,
        interval_seconds=settings.monitoring_interval_seconds,
        health_check_url=settings.health_check_url,
        environment=settings.environment.value,
        service_name=settings.service_name,
        enabled=bool(settings.monitoring_enabled),
    )
