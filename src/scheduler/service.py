"""
Recurring task scheduler.

Runs every recurring task on its cron schedule inside the event loop
(APScheduler ``AsyncIOScheduler``). Each task is also reachable through
``run_task`` for an external trigger surface, which must present the
shared cron secret.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from src.alerts.service import AlertEngine
from src.jobs.monitor import DeadLetterMonitor
from src.jobs.schemas import JobKind
from src.jobs.service import JobService
from src.scheduler.auth import verify_cron_secret
from src.scheduler.config import SchedulerConfig
from src.scheduler.exceptions import UnknownTaskError

logger = structlog.get_logger(__name__)

TaskFn = Callable[[], Awaitable[dict[str, Any]]]


class SchedulerService:
    """
    Cron-driven fan-out of recurring work.

    Usage:
        scheduler = SchedulerService(job_service, alert_engine, monitor, cron_secret="s3cret")
        await scheduler.run()  # Until stop() is called

        # From a trigger endpoint
        result = await scheduler.run_task("alert-evaluation", "Bearer s3cret")
    """

    def __init__(
        self,
        job_service: JobService,
        alert_engine: AlertEngine | None = None,
        dead_letter_monitor: DeadLetterMonitor | None = None,
        config: SchedulerConfig | None = None,
        cron_secret: str | None = None,
    ) -> None:
        self._jobs = job_service
        self._alerts = alert_engine
        self._monitor = dead_letter_monitor
        self._config = config or SchedulerConfig()
        self._cron_secret = cron_secret
        self._scheduler: AsyncIOScheduler | None = None
        self._stopped = asyncio.Event()

        self._tasks: dict[str, TaskFn] = {
            "search-sync": lambda: self._fan_out(JobKind.SEARCH_SYNC),
            "pagespeed-mobile": lambda: self._fan_out(JobKind.PAGESPEED_TEST, "MOBILE"),
            "pagespeed-desktop": lambda: self._fan_out(JobKind.PAGESPEED_TEST, "DESKTOP"),
            "site-crawl": lambda: self._fan_out(JobKind.SITE_CRAWL),
            "score-calculation": lambda: self._fan_out(JobKind.SCORE_CALCULATION),
        }
        if alert_engine is not None:
            self._tasks["alert-evaluation"] = self._evaluate_alerts
        if dead_letter_monitor is not None:
            self._tasks["dead-letter-check"] = self._check_dead_letters

    @property
    def task_names(self) -> list[str]:
        return list(self._tasks)

    def build_scheduler(self) -> AsyncIOScheduler:
        """Register one cron job per task. The scheduler is not started."""
        scheduler = AsyncIOScheduler(timezone=self._config.timezone)
        for name in self._tasks:
            scheduler.add_job(
                self._scheduled,
                trigger=CronTrigger.from_crontab(
                    self._config.cron_for(name), timezone=self._config.timezone
                ),
                args=[name],
                id=name,
                name=name,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
                misfire_grace_time=self._config.misfire_grace_seconds,
            )
        return scheduler

    async def run(self) -> None:
        """Start the scheduler and block until stop()."""
        self._scheduler = self.build_scheduler()
        self._scheduler.start()
        logger.info("Scheduler started", tasks=self.task_names)
        try:
            await self._stopped.wait()
        finally:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Scheduler stopped")

    def stop(self) -> None:
        self._stopped.set()

    async def run_task(self, name: str, authorization: str | None) -> dict[str, Any]:
        """
        Run one task on demand for the external trigger surface.

        Raises:
            CronAuthError: Authorization header does not carry the cron secret.
            UnknownTaskError: No task named ``name``.
        """
        verify_cron_secret(authorization, self._cron_secret)
        return await self.execute(name)

    async def execute(self, name: str) -> dict[str, Any]:
        """Run one task now, without authorization."""
        task = self._tasks.get(name)
        if task is None:
            raise UnknownTaskError(f"Unknown task {name!r}. Known: {sorted(self._tasks)}")

        started = time.monotonic()
        result = await task()
        logger.info(
            "Task finished",
            task=name,
            duration=round(time.monotonic() - started, 3),
            result=result,
        )
        return result

    async def _scheduled(self, name: str) -> None:
        # A failing run must not unschedule the task; the next tick retries
        try:
            await self.execute(name)
        except Exception as e:
            logger.exception("Scheduled task failed", task=name, error=str(e))

    async def _fan_out(self, kind: JobKind, device: str | None = None) -> dict[str, Any]:
        summary = await self._jobs.enqueue_for_active_sites(kind, device)
        return summary.to_dict()

    async def _evaluate_alerts(self) -> dict[str, Any]:
        summary = await self._alerts.run_cycle()
        return summary.to_dict()

    async def _check_dead_letters(self) -> dict[str, Any]:
        alerted = await self._monitor.check()
        return {"alerted": alerted}
