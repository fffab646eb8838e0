"""Crawler configuration. Override via ``CRAWL_*`` environment variables."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CrawlConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CRAWL_",
        case_sensitive=False,
        extra="ignore",
    )

    max_depth: int = Field(default=2, ge=0, le=5)
    delay_seconds: float = Field(default=1.0, ge=0.0, description="Pause between page fetches")
    timeout_seconds: float = Field(default=10.0, gt=0)
    user_agent: str = "SitePulse SEO Crawler/1.0"
    max_body_bytes: int = Field(default=2_000_000, ge=1024)

    min_interval_days: int = Field(
        default=6, ge=0, description="Skip scheduled crawls when a report is this recent"
    )

    slow_page_ms: float = Field(default=3000.0, gt=0)
    thin_content_words: int = Field(default=300, ge=0)
    top_issues_limit: int = Field(default=10, ge=1)
