"""Application settings using Pydantic Settings."""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    environment: Environment = Field(default=Environment.DEVELOPMENT)
    service_name: str = Field(default="api", description="Service name attached to alert context")

    # Monitoring loop
    monitoring_enabled: Optional[bool] = Field(
        default=None,
        description="Run the monitoring loop (defaults to on in production)",
    )
    monitoring_interval_seconds: float = Field(default=60.0, ge=1, description="Seconds between metric checks")

    # Aggregation windows
    metrics_window_ms: int = Field(default=300_000, ge=1000, description="Default lookback window in milliseconds")
    metrics_max_history: int = Field(default=1000, ge=1, description="Max samples retained per series")
    alert_history_size: int = Field(default=100, ge=1, description="Values retained per metric in alert history")

    # Alerting
    alert_rate_limit_seconds: float = Field(default=0.0, ge=0, description="Minimum seconds between repeats of one alert")
    alert_definitions_path: Optional[Path] = Field(default=None, description="JSON file overriding built-in alerts")
    slack_webhook_url: Optional[str] = Field(default=None)
    discord_webhook_url: Optional[str] = Field(default=None)
    health_check_url: Optional[str] = Field(default=None)

    # Prometheus
    prometheus_port: Optional[int] = Field(default=None, ge=1, le=65535)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")

    @field_validator("alert_definitions_path")
    @classmethod
    def validate_definitions_path(cls, v: Optional[Path]) -> Optional[Path]:
        if v is not None and not v.exists():
            raise ValueError(f"Alert definitions file not found: {v}")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("json", "console"):
            raise ValueError(f"Unsupported log format: {v}")
        return v

    @model_validator(mode="after")
    def default_monitoring_enabled(self) -> "Settings":
        if self.monitoring_enabled is None:
            self.monitoring_enabled = self.environment == Environment.PRODUCTION
        return self

    @property
    def is_production(self) -> bool:
        """Whether running in production."""
        return self.environment == Environment.PRODUCTION


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
