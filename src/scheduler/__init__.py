"""Cron scheduling of recurring fan-out, alert evaluation and monitoring."""

from src.scheduler.auth import verify_cron_secret
from src.scheduler.config import SchedulerConfig
from src.scheduler.exceptions import CronAuthError, SchedulerError, UnknownTaskError
from src.scheduler.service import SchedulerService

__all__ = [
    "CronAuthError",
    "SchedulerConfig",
    "SchedulerError",
    "SchedulerService",
    "UnknownTaskError",
    "verify_cron_secret",
]
