"""Alert routing: evaluate, log and fan out triggered alerts."""

import asyncio
import time
from collections.abc import Collection, Mapping
from typing import Callable, Optional

from config.logging_config import get_logger

from .evaluator import AlertEvaluator
from .metrics import PrometheusMetrics
from .models import AlertContext, AlertDispatch, TriggerResult
from .notifiers import Notifier, fan_out

logger = get_logger(__name__)


class AlertManager:
    """Routes triggered alerts to their notification channels.

    Each alert definition names its channels; channels without a registered
    notifier are skipped. Sends are best-effort: a failed channel is logged
    and reported in the dispatch, never raised.
    """

    def __init__(
        self,
        evaluator: AlertEvaluator,
        notifiers: Optional[Mapping[str, Notifier]] = None,
        rate_limit_seconds: float = 0.0,
        exporter: Optional[PrometheusMetrics] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        """Initialize alert manager.

        Args:
            evaluator: Threshold evaluator
            notifiers: Channel name to notifier
            rate_limit_seconds: Minimum seconds between dispatches of the same alert
            exporter: Prometheus metrics to count alerts and sends
            clock: Returns monotonic time in seconds
        """
        self.evaluator = evaluator
        self.notifiers: dict[str, Notifier] = dict(notifiers or {})
        self.rate_limit_seconds = rate_limit_seconds
        self.exporter = exporter
        self._clock = clock or time.monotonic

        self._last_sent: dict[str, float] = {}
        self._suppressed: dict[str, int] = {}

        logger.info(
            "Alert manager initialized",
            channels=sorted(self.notifiers),
            rate_limit_seconds=rate_limit_seconds,
        )

    def _should_send(self, alert_key: str) -> bool:
        """Check the repeat-suppression window for an alert."""
        if self.rate_limit_seconds <= 0:
            return True

        now = self._clock()
        last = self._last_sent.get(alert_key)
        if last is not None and now - last < self.rate_limit_seconds:
            self._suppressed[alert_key] = self._suppressed.get(alert_key, 0) + 1
            return False

        self._last_sent[alert_key] = now
        return True

    def _notifiers_for(self, result: TriggerResult) -> list[Notifier]:
        notifiers = []
        for channel in result.definition.notification_channels:
            notifier = self.notifiers.get(channel)
            if notifier is None:
                logger.warning(
                    "No notifier for channel",
                    channel=channel,
                    alert=result.definition.key,
                )
                continue
            notifiers.append(notifier)
        return notifiers

    async def dispatch(
        self,
        result: TriggerResult,
        context: Optional[AlertContext] = None,
    ) -> Optional[AlertDispatch]:
        """Log a triggered result and notify its channels.

        Returns:
            The dispatch, or None if the result was not triggered or was suppressed
        """
        if not result.triggered or result.definition is None:
            return None

        definition = result.definition
        if not self._should_send(definition.key):
            logger.debug("Alert rate limited", alert=definition.key)
            return None

        context = dict(context or {})
        suppressed = self._suppressed.pop(definition.key, 0)
        if suppressed:
            context["suppressed_count"] = suppressed

        self.evaluator.log_alert(result, context)
        if self.exporter:
            self.exporter.record_alert(definition)

        notifications = await fan_out(
            self._notifiers_for(result),
            definition,
            result.value,
            context,
        )

        if self.exporter:
            for notification in notifications:
                self.exporter.record_notification(notification)

        return AlertDispatch(result=result, notifications=notifications)

    async def process_alert(
        self,
        alert_key: str,
        value: float,
        context: Optional[AlertContext] = None,
    ) -> Optional[AlertDispatch]:
        """Evaluate one alert and dispatch it if triggered.

        Args:
            alert_key: Alert definition key
            value: Measured metric value
            context: Extra fields attached to logs and notifications
        """
        result = self.evaluator.evaluate(alert_key, value)
        return await self.dispatch(result, context)

    async def check_all_alerts(
        self,
        metric_values: Mapping[str, float],
        context: Optional[AlertContext] = None,
        exclude: Collection[str] = (),
    ) -> list[AlertDispatch]:
        """Evaluate all enabled alerts and dispatch the triggered ones concurrently.

        Args:
            metric_values: Metric key to measured value; missing keys are skipped
            context: Extra fields attached to logs and notifications
            exclude: Alert keys evaluated elsewhere

        Returns:
            Dispatches for alerts that fired and were not suppressed
        """
        triggered = self.evaluator.triggered(metric_values, exclude)
        if not triggered:
            return []

        outcomes = await asyncio.gather(
            *(self.dispatch(result, context) for result in triggered),
            return_exceptions=True,
        )

        dispatches = []
        for result, outcome in zip(triggered, outcomes):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                logger.error("Alert dispatch failed", alert=result.definition.key, error=str(outcome))
            elif outcome is not None:
                dispatches.append(outcome)
        return dispatches

    async def close(self) -> None:
        """Close notifiers that hold resources."""
        for notifier in self.notifiers.values():
            close = getattr(notifier, "close", None)
            if close is not None:
                await close()
