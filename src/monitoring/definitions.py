"""Alert definition table.

Definitions are loaded once at startup and shared read-only with the
evaluator. The built-in table can be replaced with a JSON file of the same
shape (see `AlertDefinitionTable.from_mapping`).
"""

import json
from collections.abc import Iterator, Mapping
from pathlib import Path
from types import MappingProxyType
from typing import Any, Optional

from pydantic import ValidationError

from config.logging_config import get_logger
from src.core.exceptions import ConfigurationError

from .models import AlertDefinition, AlertSeverity

logger = get_logger(__name__)


def _alert(
    key: str,
    name: str,
    metric: str,
    threshold: float,
    severity: AlertSeverity,
    description: str,
    runbook: str,
    window: Optional[str] = None,
    percentile: Optional[float] = None,
    channels: tuple[str, ...] = ("discord",),
) -> AlertDefinition:
    return AlertDefinition(
        key=key,
        name=name,
        metric=metric,
        threshold={
            "threshold": threshold,
            "severity": severity,
            "window": window,
            "percentile": percentile,
            "description": description,
        },
        notification_channels=channels,
        runbook_url=f"/runbooks/{runbook}",
    )


_BUILTIN = [
    # Error rate
    _alert(
        "error_rate", "High Error Rate", "http.error_rate", 0.05, AlertSeverity.CRITICAL,
        "Error rate exceeds 5% over 5 minutes", "high-error-rate", window="5m",
    ),
    _alert(
        "error_rate_warning", "Elevated Error Rate", "http.error_rate", 0.02, AlertSeverity.WARNING,
        "Error rate exceeds 2% over 5 minutes", "elevated-error-rate", window="5m",
    ),
    # Response time
    _alert(
        "response_time", "High Response Time", "http.response_time", 1000, AlertSeverity.WARNING,
        "P95 response time exceeds 1 second over 5 minutes", "high-response-time",
        window="5m", percentile=95,
    ),
    _alert(
        "response_time_p95", "High P95 Response Time", "http.response_time", 1000, AlertSeverity.WARNING,
        "P95 response time exceeds 1 second over 5 minutes", "high-response-time",
        window="5m", percentile=95,
    ),
    _alert(
        "response_time_p99", "High P99 Response Time", "http.response_time", 2000, AlertSeverity.CRITICAL,
        "P99 response time exceeds 2 seconds over 5 minutes", "high-response-time",
        window="5m", percentile=99,
    ),
    # Database
    _alert(
        "database_connections", "High Database Connection Pool Usage", "database.connection_pool_usage",
        80, AlertSeverity.WARNING, "Database connection pool usage exceeds 80%", "database-connections",
    ),
    _alert(
        "database_connections_critical", "Critical Database Connection Pool Usage",
        "database.connection_pool_usage", 95, AlertSeverity.CRITICAL,
        "Database connection pool usage exceeds 95%", "database-connections",
    ),
    _alert(
        "database_query_time", "Slow Database Queries", "database.query_time", 5000, AlertSeverity.WARNING,
        "P95 database query time exceeds 5 seconds", "slow-database-queries", window="5m", percentile=95,
    ),
    # System resources
    _alert(
        "disk_usage", "High Disk Usage", "system.disk_usage", 85, AlertSeverity.CRITICAL,
        "Disk usage exceeds 85%", "disk-usage",
    ),
    _alert(
        "memory_usage", "High Memory Usage", "system.memory_usage", 90, AlertSeverity.CRITICAL,
        "Memory usage exceeds 90%", "memory-usage",
    ),
    _alert(
        "cpu_usage", "High CPU Usage", "system.cpu_usage", 90, AlertSeverity.WARNING,
        "CPU usage exceeds 90% over 5 minutes", "cpu-usage", window="5m",
    ),
    # Redis (0 = disconnected, so ">= 0" fires on disconnection)
    _alert(
        "redis_connection_failure", "Redis Connection Failure", "redis.connection_status", 0,
        AlertSeverity.WARNING, "Redis connection failed", "redis-connection-failure",
    ),
    _alert(
        "redis_memory_usage", "High Redis Memory Usage", "redis.memory_usage", 80, AlertSeverity.WARNING,
        "Redis memory usage exceeds 80%", "redis-memory-usage",
    ),
    # Application health (0 = unhealthy)
    _alert(
        "health_check_failure", "Health Check Failure", "health.check_status", 0, AlertSeverity.CRITICAL,
        "Health check endpoint returned unhealthy status", "health-check-failure",
    ),
    # Queues
    _alert(
        "queue_size", "Large Queue Size", "queue.size", 10000, AlertSeverity.WARNING,
        "Queue size exceeds 10,000 jobs", "queue-size",
    ),
    _alert(
        "queue_processing_time", "Slow Queue Processing", "queue.processing_time", 300000,
        AlertSeverity.WARNING, "P95 queue processing time exceeds 5 minutes", "queue-processing-time",
        window="10m", percentile=95,
    ),
    # API rate limiting
    _alert(
        "rate_limit_exceeded", "Rate Limit Exceeded", "api.rate_limit_exceeded", 100, AlertSeverity.WARNING,
        "Rate limit exceeded more than 100 times in 1 minute", "rate-limit-exceeded", window="1m",
    ),
]

DEFAULT_ALERTS: Mapping[str, AlertDefinition] = MappingProxyType(
    {definition.key: definition for definition in _BUILTIN}
)


class AlertDefinitionTable:
    """Read-only lookup over alert definitions, keyed by alert key."""

    def __init__(self, definitions: Mapping[str, AlertDefinition]) -> None:
        for key, definition in definitions.items():
            if definition.key != key:
                raise ConfigurationError(
                    f"Alert key mismatch: {key!r} maps to definition {definition.key!r}",
                    details={"key": key},
                )
        self._definitions: Mapping[str, AlertDefinition] = MappingProxyType(dict(definitions))

    @classmethod
    def default(cls) -> "AlertDefinitionTable":
        """Table of built-in alerts."""
        return cls(DEFAULT_ALERTS)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Mapping[str, Any]]) -> "AlertDefinitionTable":
        """Build a table from plain dicts, e.g. parsed JSON.

        Each entry's key is used as the definition key unless the entry
        declares its own.

        Raises:
            ConfigurationError: If any entry fails validation
        """
        definitions = {}
        for key, entry in raw.items():
            try:
                definitions[key] = AlertDefinition.model_validate({"key": key, **entry})
            except ValidationError as e:
                raise ConfigurationError(
                    f"Invalid alert definition: {key}",
                    details={"key": key, "errors": e.errors()},
                ) from e
        return cls(definitions)

    @property
    def definitions(self) -> Mapping[str, AlertDefinition]:
        return self._definitions

    def get(self, key: str) -> Optional[AlertDefinition]:
        """Get a definition by key, or None if unknown."""
        return self._definitions.get(key)

    def enabled(self) -> list[AlertDefinition]:
        """All enabled definitions, in table order."""
        return [d for d in self._definitions.values() if d.enabled]

    def by_severity(self, severity: AlertSeverity) -> list[AlertDefinition]:
        """Enabled definitions with the given severity."""
        return [d for d in self.enabled() if d.severity == severity]

    def for_metric(self, metric: str) -> list[AlertDefinition]:
        """Enabled definitions watching the given metric key."""
        return [d for d in self.enabled() if d.metric == metric]

    def __contains__(self, key: object) -> bool:
        return key in self._definitions

    def __iter__(self) -> Iterator[AlertDefinition]:
        return iter(self._definitions.values())

    def __len__(self) -> int:
        return len(self._definitions)


def load_alert_definitions(path: Optional[Path] = None) -> AlertDefinitionTable:
    """Load the alert table from a JSON file, or the built-ins when no path is given.

    Raises:
        ConfigurationError: If the file cannot be read or parsed
    """
    if path is None:
        return AlertDefinitionTable.default()

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(
            f"Cannot load alert definitions: {path}",
            details={"path": str(path), "error": str(e)},
        ) from e

    if not isinstance(raw, dict):
        raise ConfigurationError(
            "Alert definitions file must contain a JSON object",
            details={"path": str(path)},
        )

    table = AlertDefinitionTable.from_mapping(raw)
    logger.info("Alert definitions loaded", path=str(path), count=len(table))
    return table
