"""Rate limit configuration. Override via ``RATE_LIMIT_*`` environment variables."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RateLimitConfig(BaseSettings):
    """Limits for user-triggered enqueues and external-API-bound work."""

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
        extra="ignore",
    )

    enabled: bool = True
    key_prefix: str = "ratelimit"

    # jobs:<user_id>
    user_trigger_limit: int = Field(default=10, ge=1)
    user_trigger_window_seconds: int = Field(default=60, ge=1)

    # psi:<site_id>
    pagespeed_site_limit: int = Field(default=10, ge=1)
    pagespeed_site_window_seconds: int = Field(default=3600, ge=1)
