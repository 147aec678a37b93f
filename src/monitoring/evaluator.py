"""Threshold evaluation of metric values against alert definitions."""

from collections.abc import Collection, Mapping
from typing import Optional

from config.logging_config import get_logger

from .definitions import AlertDefinitionTable
from .history import MetricHistory
from .models import AlertContext, AlertSeverity, MetricStats, TriggerResult

logger = get_logger(__name__)


class AlertEvaluator:
    """Decides whether metric values cross their alert thresholds.

    Absent, disabled or unmeasured alerts are never errors; they evaluate
    as not triggered so that one missing metric cannot stop a poll cycle.
    """

    def __init__(
        self,
        definitions: AlertDefinitionTable,
        history: Optional[MetricHistory] = None,
    ) -> None:
        """Initialize evaluator.

        Args:
            definitions: Alert definition table shared read-only
            history: Bounded history of observed values
        """
        self.definitions = definitions
        self._history = history or MetricHistory()

    @property
    def metric_history(self) -> MetricHistory:
        return self._history

    def evaluate(self, alert_key: str, value: float) -> TriggerResult:
        """Compare a value against one alert's threshold (value >= threshold).

        Args:
            alert_key: Alert definition key
            value: Measured metric value

        Returns:
            Triggered result carrying the definition, or not triggered
        """
        definition = self.definitions.get(alert_key)
        if definition is None or not definition.enabled:
            return TriggerResult.not_triggered(value)

        if value >= definition.threshold.threshold:
            return TriggerResult(triggered=True, definition=definition, value=value)
        return TriggerResult.not_triggered(value)

    def evaluate_all(
        self,
        metric_values: Mapping[str, float],
        exclude: Collection[str] = (),
    ) -> list[TriggerResult]:
        """Evaluate every enabled alert whose metric is present.

        Args:
            metric_values: Metric key to measured value
            exclude: Alert keys evaluated elsewhere

        Returns:
            One result per evaluated alert, in table order
        """
        results = []
        for definition in self.definitions.enabled():
            if definition.key in exclude:
                continue
            value = metric_values.get(definition.metric)
            if value is None:
                logger.debug("No data for alert", alert=definition.key, metric=definition.metric)
                continue
            results.append(self.evaluate(definition.key, value))
        return results

    def triggered(
        self,
        metric_values: Mapping[str, float],
        exclude: Collection[str] = (),
    ) -> list[TriggerResult]:
        """Only the triggered results of `evaluate_all`."""
        return [r for r in self.evaluate_all(metric_values, exclude) if r.triggered]

    # History

    def record_history(self, metric: str, value: float) -> None:
        """Record an observed value for later statistics."""
        self._history.record(metric, value)

    def history(self, metric: str, window_ms: Optional[float] = None) -> list[float]:
        """Observed values for a metric, oldest first."""
        return self._history.values(metric, window_ms)

    def stats(self, metric: str, window_ms: Optional[float] = None) -> MetricStats:
        """Statistics over a metric's observed values."""
        return self._history.stats(metric, window_ms)

    # Logging

    def log_alert(self, result: TriggerResult, context: Optional[AlertContext] = None) -> None:
        """Log a triggered alert at a level matching its severity."""
        definition = result.definition
        if not result.triggered or definition is None:
            return

        # Context keys may collide with logger arguments such as `event`
        fields = {
            "alert": definition.name,
            "alert_key": definition.key,
            "metric": definition.metric,
            "threshold": definition.threshold.threshold,
            "value": result.value,
            "severity": definition.severity.value,
            "context": dict(context or {}),
        }

        if definition.severity == AlertSeverity.CRITICAL:
            logger.error("Critical alert triggered", **fields)
        elif definition.severity == AlertSeverity.WARNING:
            logger.warning("Warning alert triggered", **fields)
        else:
            logger.info("Info alert triggered", **fields)
