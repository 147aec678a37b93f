"""Alert notification channels and best-effort fan-out."""

import asyncio
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Optional, Protocol, runtime_checkable

import aiohttp

from config.logging_config import get_logger
from src.core.exceptions import NotificationError

from .models import AlertContext, AlertDefinition, AlertSeverity, NotificationResult

logger = get_logger(__name__)

FOOTER = "Service Monitor"

SEVERITY_EMOJI = {
    AlertSeverity.CRITICAL: ":rotating_light:",
    AlertSeverity.WARNING: ":warning:",
    AlertSeverity.INFO: ":information_source:",
}


@runtime_checkable
class Notifier(Protocol):
    """A notification channel.

    `notify` returns True when the channel accepted the alert. It may
    return False or raise; `fan_out` treats both as a failed send.
    """

    channel: str

    async def notify(
        self,
        definition: AlertDefinition,
        value: float,
        context: AlertContext,
    ) -> bool:
        ...


def _summary(definition: AlertDefinition, value: float) -> str:
    return (
        f"{definition.metric} is {value:g} "
        f"(threshold {definition.threshold.threshold:g})"
    )


def _fields(definition: AlertDefinition, value: float, context: AlertContext) -> dict[str, str]:
    fields = {
        "Metric": definition.metric,
        "Value": f"{value:g}",
        "Threshold": f"{definition.threshold.threshold:g}",
        "Severity": definition.severity.value,
    }
    if definition.threshold.percentile is not None:
        fields["Percentile"] = f"p{definition.threshold.percentile:g}"
    if definition.threshold.window:
        fields["Window"] = definition.threshold.window
    if definition.runbook_url:
        fields["Runbook"] = definition.runbook_url
    for key, item in context.items():
        fields[key] = str(item)
    return fields


class WebhookNotifier:
    """Base for channels that POST a JSON payload to a webhook URL."""

    channel = "webhook"
    ok_statuses: tuple[int, ...] = (200,)

    def __init__(
        self,
        webhook_url: str,
        session: Optional[aiohttp.ClientSession] = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        """Initialize notifier.

        Args:
            webhook_url: Webhook endpoint
            session: Shared HTTP session; one is created lazily if omitted
            timeout_seconds: Total timeout per request
        """
        self.webhook_url = webhook_url
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the HTTP session if this notifier created it."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    def build_payload(
        self,
        definition: AlertDefinition,
        value: float,
        context: AlertContext,
    ) -> dict:
        raise NotImplementedError

    async def notify(
        self,
        definition: AlertDefinition,
        value: float,
        context: AlertContext,
    ) -> bool:
        """Send the alert.

        Raises:
            NotificationError: If the webhook rejects the payload or is unreachable
        """
        payload = self.build_payload(definition, value, context)
        session = await self._get_session()

        try:
            async with session.post(self.webhook_url, json=payload, timeout=self.timeout) as resp:
                if resp.status not in self.ok_statuses:
                    raise NotificationError(
                        f"{self.channel} webhook returned {resp.status}",
                        channel=self.channel,
                        status=resp.status,
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NotificationError(
                f"{self.channel} webhook unreachable: {e}",
                channel=self.channel,
            ) from e

        logger.debug("Notification sent", channel=self.channel, alert=definition.key)
        return True


class SlackWebhookNotifier(WebhookNotifier):
    """Posts alerts to a Slack incoming webhook as a coloured attachment."""

    channel = "slack"
    ok_statuses = (200,)

    COLORS = {
        AlertSeverity.CRITICAL: "#f44336",
        AlertSeverity.WARNING: "#ff9800",
        AlertSeverity.INFO: "#36a64f",
    }

    def build_payload(
        self,
        definition: AlertDefinition,
        value: float,
        context: AlertContext,
    ) -> dict:
        severity = definition.severity
        return {
            "attachments": [
                {
                    "color": self.COLORS[severity],
                    "title": f"{SEVERITY_EMOJI[severity]} {definition.name}",
                    "text": definition.threshold.description or _summary(definition, value),
                    "ts": int(datetime.now(timezone.utc).timestamp()),
                    "footer": FOOTER,
                    "fields": [
                        {"title": k, "value": v, "short": True}
                        for k, v in _fields(definition, value, context).items()
                    ],
                }
            ]
        }


class DiscordWebhookNotifier(WebhookNotifier):
    """Posts alerts to a Discord webhook as an embed."""

    channel = "discord"
    ok_statuses = (200, 204)

    # Discord uses decimal colors
    COLORS = {
        AlertSeverity.CRITICAL: 0xFF0000,
        AlertSeverity.WARNING: 0xFFAA00,
        AlertSeverity.INFO: 0x00FF00,
    }

    def build_payload(
        self,
        definition: AlertDefinition,
        value: float,
        context: AlertContext,
    ) -> dict:
        severity = definition.severity
        return {
            "embeds": [
                {
                    "title": f"{SEVERITY_EMOJI[severity]} {definition.name}",
                    "description": definition.threshold.description or _summary(definition, value),
                    "color": self.COLORS[severity],
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                    "footer": {"text": FOOTER},
                    "fields": [
                        {"name": k, "value": v, "inline": True}
                        for k, v in _fields(definition, value, context).items()
                    ],
                }
            ]
        }


class LoggingNotifier:
    """Writes alerts to the log. Used when no webhook is configured."""

    def __init__(self, channel: str = "log") -> None:
        self.channel = channel

    async def notify(
        self,
        definition: AlertDefinition,
        value: float,
        context: AlertContext,
    ) -> bool:
        logger.info(
            "Alert notification",
            channel=self.channel,
            alert=definition.key,
            summary=_summary(definition, value),
            context=dict(context),
        )
        return True


async def fan_out(
    notifiers: Sequence[Notifier],
    definition: AlertDefinition,
    value: float,
    context: Optional[AlertContext] = None,
) -> list[NotificationResult]:
    """Send one alert to every notifier concurrently.

    A failing channel never prevents or aborts the others, and nothing is
    raised; each channel's outcome is reported in the returned list, in the
    order the notifiers were given.
    """
    if not notifiers:
        return []

    context = context or {}
    outcomes = await asyncio.gather(
        *(n.notify(definition, value, context) for n in notifiers),
        return_exceptions=True,
    )

    results = []
    for notifier, outcome in zip(notifiers, outcomes):
        if isinstance(outcome, BaseException):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            logger.error(
                "Alert send failed",
                channel=notifier.channel,
                alert=definition.key,
                error=str(outcome),
            )
            results.append(NotificationResult(notifier.channel, False, str(outcome)))
        elif not outcome:
            logger.error("Alert send rejected", channel=notifier.channel, alert=definition.key)
            results.append(NotificationResult(notifier.channel, False, "rejected"))
        else:
            results.append(NotificationResult(notifier.channel, True))
    return results
