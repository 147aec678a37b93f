"""Custom exception hierarchy for the service monitor."""

from typing import Any, Optional


class MonitoringError(Exception):
    """Base exception for all monitoring errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(MonitoringError):
    """Raised when settings or alert definitions are invalid."""

    pass


class NotificationError(MonitoringError):
    """Raised when a notification channel rejects or fails a send."""

    def __init__(
        self,
        message: str,
        channel: str,
        status: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details)
        self.channel = channel
        self.status = status
