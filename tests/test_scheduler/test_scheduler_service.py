"""Tests for SchedulerService task wiring and the trigger surface."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from apscheduler.triggers.cron import CronTrigger

from src.jobs.schemas import JobKind, TriggerSummary
from src.scheduler.config import SchedulerConfig
from src.scheduler.exceptions import CronAuthError, UnknownTaskError
from src.scheduler.service import SchedulerService


@pytest.fixture
def job_service():
    service = MagicMock()
    service.enqueue_for_active_sites = AsyncMock(
        return_value=TriggerSummary(enqueued=3, skipped=1, job_ids=["a", "b", "c"])
    )
    return service


@pytest.fixture
def alert_engine():
    engine = MagicMock()
    summary = MagicMock()
    summary.to_dict.return_value = {"rules": 2, "created": 1}
    engine.run_cycle = AsyncMock(return_value=summary)
    return engine


@pytest.fixture
def monitor():
    m = MagicMock()
    m.check = AsyncMock(return_value={"pagespeed-test": 12})
    return m


class TestTasks:

    def test_optional_tasks_only_when_wired(self, job_service, alert_engine, monitor):
        bare = SchedulerService(job_service)
        assert bare.task_names == [
            "search-sync",
            "pagespeed-mobile",
            "pagespeed-desktop",
            "site-crawl",
            "score-calculation",
        ]

        full = SchedulerService(job_service, alert_engine, monitor)
        assert full.task_names[-2:] == ["alert-evaluation", "dead-letter-check"]

    @pytest.mark.asyncio
    async def test_fan_out_tasks(self, job_service):
        service = SchedulerService(job_service)

        result = await service.execute("pagespeed-desktop")

        job_service.enqueue_for_active_sites.assert_awaited_once_with(
            JobKind.PAGESPEED_TEST, "DESKTOP"
        )
        assert result["enqueued"] == 3

        await service.execute("site-crawl")
        assert job_service.enqueue_for_active_sites.await_args.args == (JobKind.SITE_CRAWL, None)

    @pytest.mark.asyncio
    async def test_alert_and_dead_letter_tasks(self, job_service, alert_engine, monitor):
        service = SchedulerService(job_service, alert_engine, monitor)

        assert await service.execute("alert-evaluation") == {"rules": 2, "created": 1}
        assert await service.execute("dead-letter-check") == {"alerted": {"pagespeed-test": 12}}

    @pytest.mark.asyncio
    async def test_unknown_task(self, job_service):
        with pytest.raises(UnknownTaskError):
            await SchedulerService(job_service).execute("alert-evaluation")

    @pytest.mark.asyncio
    async def test_scheduled_run_swallows_failure(self, job_service):
        job_service.enqueue_for_active_sites.side_effect = RuntimeError("redis down")
        service = SchedulerService(job_service)

        await service._scheduled("search-sync")


class TestRunTask:

    @pytest.mark.asyncio
    async def test_authorized(self, job_service):
        service = SchedulerService(job_service, cron_secret="s3cret")

        result = await service.run_task("score-calculation", "Bearer s3cret")

        assert result["job_ids"] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_wrong_secret_runs_nothing(self, job_service):
        service = SchedulerService(job_service, cron_secret="s3cret")

        with pytest.raises(CronAuthError):
            await service.run_task("score-calculation", "Bearer nope")
        job_service.enqueue_for_active_sites.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_secret_configured(self, job_service):
        with pytest.raises(CronAuthError):
            await SchedulerService(job_service).run_task("search-sync", "Bearer ")


class TestSchedule:

    def test_one_cron_job_per_task(self, job_service, alert_engine, monitor):
        service = SchedulerService(job_service, alert_engine, monitor)

        scheduler = service.build_scheduler()
        jobs = {job.id: job for job in scheduler.get_jobs()}

        assert set(jobs) == set(service.task_names)
        crawl = jobs["site-crawl"]
        assert isinstance(crawl.trigger, CronTrigger)
        assert "day_of_week='sun'" in str(crawl.trigger)
        assert crawl.max_instances == 1
        assert crawl.coalesce is True

    def test_config_override(self, job_service):
        config = SchedulerConfig(search_sync_cron="30 1 * * *")
        scheduler = SchedulerService(job_service, config=config).build_scheduler()

        trigger = scheduler.get_job("search-sync").trigger
        assert "hour='1'" in str(trigger)
        assert "minute='30'" in str(trigger)

    def test_cron_for_unknown_task(self):
        with pytest.raises(KeyError):
            SchedulerConfig().cron_for("nope")

    @pytest.mark.asyncio
    async def test_run_until_stopped(self, job_service):
        service = SchedulerService(job_service)
        fake = MagicMock()

        with patch.object(service, "build_scheduler", return_value=fake):
            task = asyncio.create_task(service.run())
            await asyncio.sleep(0)
            service.stop()
            await asyncio.wait_for(task, timeout=1)

        fake.start.assert_called_once()
        fake.shutdown.assert_called_once_with(wait=False)
