"""Core infrastructure modules."""

from .exceptions import ConfigurationError, MonitoringError, NotificationError

__all__ = [
    "MonitoringError",
    "ConfigurationError",
    "NotificationError",
]
