"""Metric aggregation, alert evaluation and notification modules."""

from .aggregator import MetricsAggregator
from .alerting import AlertManager
from .definitions import AlertDefinitionTable, load_alert_definitions
from .evaluator import AlertEvaluator
from .history import MetricHistory
from .models import AlertDefinition, AlertSeverity, MetricsSnapshot, TriggerResult
from .service import MonitoringService, build_monitoring_service

__all__ = [
    "MetricsAggregator",
    "AlertManager",
    "AlertDefinitionTable",
    "load_alert_definitions",
    "AlertEvaluator",
    "MetricHistory",
    "AlertDefinition",
    "AlertSeverity",
    "MetricsSnapshot",
    "TriggerResult",
    "MonitoringService",
    "build_monitoring_service",
]
