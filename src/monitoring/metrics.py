"""Prometheus metrics export."""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server

from config.logging_config import get_logger

from .models import AlertDefinition, MetricsSnapshot, NotificationResult

logger = get_logger(__name__)


class PrometheusMetrics:
    """Exposes aggregated request metrics and alert activity to Prometheus.

    Metrics:
    - http_requests_total: Counter of requests by status class
    - http_response_time_ms: Histogram of response times
    - error_rate / response_time_p95_ms / response_time_p99_ms: Snapshot gauges
    - gauge: Externally collected gauges by metric key
    - alerts_triggered_total: Counter of dispatched alerts
    - notifications_total: Counter of channel sends by outcome
    """

    def __init__(
        self,
        prefix: str = "service_monitor",
        registry: Optional[CollectorRegistry] = None,
    ) -> None:
        """Initialize metrics.

        Args:
            prefix: Metric name prefix
            registry: Registry to register with (a private one avoids
                clashes when several instances exist, e.g. in tests)
        """
        self.prefix = prefix
        self.registry = registry or CollectorRegistry()

        # Counters
        self.http_requests = Counter(
            f"{prefix}_http_requests_total",
            "Total HTTP requests recorded",
            ["status_class"],  # 2xx, 4xx, 5xx, ...
            registry=self.registry,
        )

        self.alerts_triggered = Counter(
            f"{prefix}_alerts_triggered_total",
            "Total alerts dispatched",
            ["alert", "severity"],
            registry=self.registry,
        )

        self.notifications = Counter(
            f"{prefix}_notifications_total",
            "Total notification sends",
            ["channel", "outcome"],  # success, failure
            registry=self.registry,
        )

        # Gauges
        self.error_rate = Gauge(
            f"{prefix}_error_rate",
            "Server error rate over the default window",
            registry=self.registry,
        )

        self.response_time_p95 = Gauge(
            f"{prefix}_response_time_p95_ms",
            "P95 response time over the default window",
            registry=self.registry,
        )

        self.response_time_p99 = Gauge(
            f"{prefix}_response_time_p99_ms",
            "P99 response time over the default window",
            registry=self.registry,
        )

        self.gauges = Gauge(
            f"{prefix}_gauge",
            "Externally collected gauge values",
            ["metric"],
            registry=self.registry,
        )

        # Histograms
        self.response_time = Histogram(
            f"{prefix}_http_response_time_ms",
            "HTTP response time in milliseconds",
            buckets=[10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000],
            registry=self.registry,
        )

        self._server_started = False
        logger.info("Prometheus metrics initialized", prefix=prefix)

    def start_server(self, port: int = 8000) -> None:
        """Start Prometheus HTTP server.

        Args:
            port: Port to serve metrics on
        """
        if not self._server_started:
            start_http_server(port, registry=self.registry)
            self._server_started = True
            logger.info("Prometheus metrics server started", port=port)

    def record_request(self, status_code: int, response_time_ms: float) -> None:
        """Record one completed HTTP request."""
        self.http_requests.labels(status_class=f"{status_code // 100}xx").inc()
        self.response_time.observe(response_time_ms)

    def publish_snapshot(self, snapshot: MetricsSnapshot) -> None:
        """Update gauges from a metrics snapshot."""
        self.error_rate.set(snapshot.error_rate)
        self.response_time_p95.set(snapshot.response_time_p95)
        self.response_time_p99.set(snapshot.response_time_p99)
        for metric, value in snapshot.gauges.items():
            self.gauges.labels(metric=metric).set(value)

    def record_alert(self, definition: AlertDefinition) -> None:
        """Record a dispatched alert."""
        self.alerts_triggered.labels(
            alert=definition.key,
            severity=definition.severity.value,
        ).inc()

    def record_notification(self, result: NotificationResult) -> None:
        """Record a channel send outcome."""
        self.notifications.labels(
            channel=result.channel,
            outcome="success" if result.success else "failure",
        ).inc()
