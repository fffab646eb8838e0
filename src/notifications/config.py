"""Notification delivery configuration.

All settings can be overridden via ``NOTIFICATIONS_*`` environment variables.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class NotificationConfig(BaseSettings):
    """Configuration for channel senders and the dispatcher."""

    model_config = SettingsConfigDict(
        env_prefix="NOTIFICATIONS_",
        case_sensitive=False,
        extra="ignore",
    )

    timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=60,
        description="Hard timeout for each channel POST",
    )
    user_agent: str = Field(default="SitePulse-Webhook/1.0")
    signature_header: str = Field(
        default="X-SitePulse-Signature",
        description="Header carrying the HMAC-SHA256 body signature",
    )
    slack_webhook_prefix: str = Field(default="https://hooks.slack.com/")
    footer: str = Field(default="SitePulse SEO Monitoring")

    circuit_breaker_threshold: int = Field(
        default=5,
        ge=1,
        description="Consecutive failures before a channel's circuit opens",
    )
    circuit_breaker_recovery_seconds: float = Field(
        default=300.0,
        ge=5.0,
        description="Seconds a channel is skipped before a recovery probe",
    )
