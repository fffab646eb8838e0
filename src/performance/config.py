"""Page-speed configuration. Override via ``PAGESPEED_*`` environment variables."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PageSpeedConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="PAGESPEED_",
        case_sensitive=False,
        extra="ignore",
    )

    api_url: str = "https://www.googleapis.com/pagespeedonline/v5/runPagespeed"
    timeout_seconds: float = Field(default=90.0, gt=0)

    # In-process retries for 429/503: min(60s, 1s * 2^n), up to 4 times
    max_retries: int = Field(default=4, ge=0, le=10)
    max_backoff_seconds: float = Field(default=60.0, gt=0)

    daily_cap: int = Field(default=200, ge=1, description="API calls per UTC day")

    guard_window_minutes: int = Field(
        default=60, ge=1, description="Skip a run when a snapshot exists this recent"
    )
    cache_ttl_seconds: int = Field(default=3600, ge=0)
