"""Alert engine configuration.

All settings can be overridden via ``ALERTS_*`` environment variables.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AlertConfig(BaseSettings):
    """Configuration for the alert evaluation cycle."""

    model_config = SettingsConfigDict(
        env_prefix="ALERTS_",
        case_sensitive=False,
        extra="ignore",
    )

    evaluation_interval_minutes: int = Field(
        default=60,
        ge=1,
        le=1440,
        description="Minutes between scheduled evaluation cycles",
    )

    # Severity: value / threshold at or above these ratios is critical
    critical_ratio: float = Field(
        default=1.5,
        ge=1.0,
        description="LCP/INP/CLS value-to-threshold ratio that makes an alert critical",
    )
    score_drop_critical_ratio: float = Field(
        default=2.0,
        ge=1.0,
        description="Score-drop to threshold ratio that makes an alert critical",
    )

    app_base_url: str = Field(
        default="https://app.sitepulse.io",
        description="Base URL for links in notifications",
    )
