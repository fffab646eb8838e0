"""Job store and worker configuration.

All settings can be overridden via ``JOBS_*`` environment variables.
Per-kind defaults mirror how expensive and how flaky each external
dependency is: crawls get few attempts with long backoff, score
recalculation is cheap and retried quickly.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.jobs.schemas import BackoffPolicy, JobKind


class JobsConfig(BaseSettings):
    """Configuration for job retries, leases and worker pools."""

    model_config = SettingsConfigDict(
        env_prefix="JOBS_",
        case_sensitive=False,
        extra="ignore",
    )

    key_prefix: str = Field(default="jobs", description="Redis key namespace")

    # Attempt budgets and base backoff delays (seconds) per kind
    search_sync_max_attempts: int = Field(default=3, ge=1, le=20)
    search_sync_backoff_seconds: float = Field(default=5.0, gt=0)
    pagespeed_max_attempts: int = Field(default=2, ge=1, le=20)
    pagespeed_backoff_seconds: float = Field(default=10.0, gt=0)
    crawl_max_attempts: int = Field(default=2, ge=1, le=20)
    crawl_backoff_seconds: float = Field(default=15.0, gt=0)
    score_max_attempts: int = Field(default=3, ge=1, le=20)
    score_backoff_seconds: float = Field(default=2.0, gt=0)
    max_backoff_seconds: float = Field(default=3600.0, gt=0)

    # Worker pool sizes per kind
    search_sync_concurrency: int = Field(default=2, ge=1, le=64)
    pagespeed_concurrency: int = Field(default=2, ge=1, le=64)
    crawl_concurrency: int = Field(default=1, ge=1, le=64)
    score_concurrency: int = Field(default=4, ge=1, le=64)

    # Leases
    lease_seconds: float = Field(
        default=120.0,
        ge=5.0,
        description="Lease duration; workers heartbeat at a third of this",
    )
    poll_interval_seconds: float = Field(default=1.0, gt=0)
    shutdown_grace_seconds: float = Field(default=30.0, ge=0)

    # Retention
    completed_retention: int = Field(default=200, ge=0)
    dead_letter_retention: int = Field(default=1000, ge=1)

    # Dead-letter depth alert
    dead_letter_alert_threshold: int = Field(default=10, ge=1)
    dead_letter_alert_debounce_seconds: int = Field(default=3600, ge=60)

    def max_attempts_for(self, kind: JobKind) -> int:
        return {
            JobKind.SEARCH_SYNC: self.search_sync_max_attempts,
            JobKind.PAGESPEED_TEST: self.pagespeed_max_attempts,
            JobKind.SITE_CRAWL: self.crawl_max_attempts,
            JobKind.SCORE_CALCULATION: self.score_max_attempts,
        }[kind]

    def backoff_for(self, kind: JobKind) -> BackoffPolicy:
        base = {
            JobKind.SEARCH_SYNC: self.search_sync_backoff_seconds,
            JobKind.PAGESPEED_TEST: self.pagespeed_backoff_seconds,
            JobKind.SITE_CRAWL: self.crawl_backoff_seconds,
            JobKind.SCORE_CALCULATION: self.score_backoff_seconds,
        }[kind]
        return BackoffPolicy(base_delay=base, max_delay=self.max_backoff_seconds)

    def concurrency_for(self, kind: JobKind) -> int:
        return {
            JobKind.SEARCH_SYNC: self.search_sync_concurrency,
            JobKind.PAGESPEED_TEST: self.pagespeed_concurrency,
            JobKind.SITE_CRAWL: self.crawl_concurrency,
            JobKind.SCORE_CALCULATION: self.score_concurrency,
        }[kind]
