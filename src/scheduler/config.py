"""Recurring task schedule.

Cron expressions use APScheduler's crontab fields. Day-of-week is given
by name because APScheduler numbers weekdays from Monday.
All settings can be overridden via ``SCHEDULER_*`` environment variables.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SchedulerConfig(BaseSettings):
    """Cron schedule for every recurring task."""

    model_config = SettingsConfigDict(
        env_prefix="SCHEDULER_",
        case_sensitive=False,
        extra="ignore",
    )

    timezone: str = Field(default="UTC")

    search_sync_cron: str = Field(default="0 2 * * *")
    pagespeed_mobile_cron: str = Field(default="0 4 * * *")
    pagespeed_desktop_cron: str = Field(default="5 4 * * *")
    crawl_cron: str = Field(default="0 5 * * sun")
    score_cron: str = Field(default="0 6 * * *")
    alert_evaluation_cron: str = Field(default="0 * * * *")
    dead_letter_check_cron: str = Field(default="*/15 * * * *")

    misfire_grace_seconds: int = Field(
        default=300,
        ge=1,
        description="How late a missed run may still start",
    )

    def cron_for(self, task: str) -> str:
        return {
            "search-sync": self.search_sync_cron,
            "pagespeed-mobile": self.pagespeed_mobile_cron,
            "pagespeed-desktop": self.pagespeed_desktop_cron,
            "site-crawl": self.crawl_cron,
            "score-calculation": self.score_cron,
            "alert-evaluation": self.alert_evaluation_cron,
            "dead-letter-check": self.dead_letter_check_cron,
        }[task]
