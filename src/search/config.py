"""Search-data sync configuration. Override via ``SEARCH_SYNC_*`` environment variables."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SearchSyncConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SEARCH_SYNC_",
        case_sensitive=False,
        extra="ignore",
    )

    api_base_url: str = "https://www.googleapis.com/webmasters/v3"
    timeout_seconds: float = Field(default=30.0, gt=0)
    row_limit: int = Field(default=25_000, ge=1, le=25_000)
    max_retries: int = Field(default=3, ge=0, le=10)

    # Reported data lags by a couple of days
    end_offset_days: int = Field(default=2, ge=0, le=7)
