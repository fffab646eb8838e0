"""
Job worker - leases jobs of one kind and runs them through a processor.

Runs as a standalone service that:
1. Leases jobs from the job store with a bounded lease
2. Runs the processor while a heartbeat keeps the lease alive
3. Acks the job on success (including skipped results)
4. Fails the job on error, letting the store schedule a retry or dead-letter it

Each worker runs a fixed number of concurrent slots. If the heartbeat
finds the lease gone (expired and re-leased elsewhere), the processor
task is cancelled and the job is left to its new holder: no ack, no fail.
"""

import asyncio
import time
from dataclasses import dataclass

import structlog

from src.jobs.backoff import ExponentialBackoff
from src.jobs.config import JobsConfig
from src.jobs.exceptions import JobError, LeaseLostError
from src.jobs.schemas import FailOutcome, Job, JobKind
from src.jobs.store import JobStore
from src.observability.logging import bind_context, clear_context
from src.observability.metrics import get_metrics
from src.observability.tracing import extract_trace_context, get_tracer, traced
from src.processors.base import JobProcessor

logger = structlog.get_logger(__name__)
tracer = get_tracer(__name__)


@dataclass
class _LeaseState:
    lost: bool = False


class JobWorker:
    """
    Worker pool for one job kind.

    Features:
    - Fixed number of concurrent slots, no cross-job ordering
    - Lease heartbeat with cancellation on lease loss
    - Exactly one ack or fail per lease
    - Store outage backoff
    - Metrics and trace continuation from the enqueuing span

    Usage:
        worker = JobWorker(JobKind.SITE_CRAWL, store, crawl_processor)
        await worker.start()  # Runs until stop() is called
    """

    def __init__(
        self,
        kind: JobKind,
        store: JobStore,
        processor: JobProcessor,
        config: JobsConfig | None = None,
        concurrency: int | None = None,
    ):
        self._kind = JobKind(kind)
        self._store = store
        self._processor = processor
        self._config = config or JobsConfig()
        self._concurrency = concurrency or self._config.concurrency_for(self._kind)
        self._lease_seconds = self._config.lease_seconds
        self._running = False
        self._slots: list[asyncio.Task] = []
        self._metrics = get_metrics()

        logger.info(
            "JobWorker initialized",
            kind=self._kind.value,
            concurrency=self._concurrency,
            lease_seconds=self._lease_seconds,
        )

    @property
    def kind(self) -> JobKind:
        return self._kind

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Run all slots until stop() is called or the task is cancelled."""
        self._running = True
        logger.info("Starting job worker", kind=self._kind.value)

        self._slots = [
            asyncio.create_task(self._slot_loop(i), name=f"{self._kind.value}-slot-{i}")
            for i in range(self._concurrency)
        ]
        try:
            await asyncio.gather(*self._slots)
        except asyncio.CancelledError:
            logger.info("Job worker cancelled", kind=self._kind.value)
        finally:
            for slot in self._slots:
                slot.cancel()
            self._slots = []
            logger.info("Job worker stopped", kind=self._kind.value)

    async def stop(self) -> None:
        """Stop leasing; in-flight jobs finish within the grace period."""
        logger.info("Stopping job worker", kind=self._kind.value)
        self._running = False
        if not self._slots:
            return
        done, pending = await asyncio.wait(
            self._slots, timeout=self._config.shutdown_grace_seconds
        )
        for slot in pending:
            # Abandoned leases expire and the jobs are re-leased elsewhere
            slot.cancel()

    async def run_once(self) -> str | None:
        """Lease and run at most one job. Returns its status, or None if idle."""
        job = await self._store.lease(self._kind, self._lease_seconds)
        if job is None:
            return None
        return await self._execute(job)

    async def _slot_loop(self, slot: int) -> None:
        backoff = ExponentialBackoff()
        while self._running:
            try:
                job = await self._store.lease(self._kind, self._lease_seconds)
                backoff.reset()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                delay = backoff.next_delay()
                logger.error(
                    "Lease failed, backing off",
                    kind=self._kind.value,
                    slot=slot,
                    error=str(e),
                    delay=round(delay, 2),
                )
                await asyncio.sleep(delay)
                continue

            if job is None:
                await asyncio.sleep(self._config.poll_interval_seconds)
                continue

            await self._execute(job)

    async def _execute(self, job: Job) -> str:
        """Run one leased job and settle it with the store."""
        bind_context(job_id=job.job_id, kind=job.kind.value, site_id=job.site_id)
        lease = _LeaseState()
        started = time.monotonic()
        task: asyncio.Task | None = None

        try:
            with traced(
                tracer,
                f"job.{job.kind.value}",
                {"job.id": job.job_id, "job.attempt": job.attempts, "site.id": job.site_id},
                parent_context=extract_trace_context(job.trace_parent),
            ):
                task = asyncio.create_task(self._processor.process(job))
                heartbeat = asyncio.create_task(self._heartbeat(job, task, lease))
                try:
                    result = await task
                finally:
                    heartbeat.cancel()
        except asyncio.CancelledError:
            if lease.lost:
                logger.warning("Lease revoked mid-run, abandoning job", attempt=job.attempts)
                self._metrics.record_job_result(job.kind.value, "abandoned")
                clear_context()
                return "abandoned"
            if task is not None and not task.done():
                task.cancel()
            clear_context()
            raise
        except Exception as e:
            status = await self._fail(job, e)
            self._metrics.record_job_result(job.kind.value, status, time.monotonic() - started)
            clear_context()
            return status

        status = "skipped" if result.is_skipped else "ok"
        try:
            await self._store.ack(job.job_id, job.lease_token)
        except LeaseLostError:
            logger.warning("Lease lost before ack; result stands but job may re-run")
            status = "abandoned"

        latency = time.monotonic() - started
        self._metrics.record_job_result(job.kind.value, status, latency)
        logger.info(
            "Job finished",
            status=status,
            reason=result.reason,
            attempt=job.attempts,
            duration=round(latency, 3),
            result=result.data,
        )
        clear_context()
        return status

    async def _fail(self, job: Job, error: Exception) -> str:
        retryable = error.retryable if isinstance(error, JobError) else True
        message = f"{type(error).__name__}: {error}"
        try:
            outcome = await self._store.fail(
                job.job_id, job.lease_token, message, retryable=retryable
            )
        except LeaseLostError:
            logger.warning("Lease lost before fail was recorded", error=message)
            return "abandoned"

        if outcome == FailOutcome.DEAD_LETTERED:
            logger.error(
                "Job dead-lettered",
                attempt=job.attempts,
                max_attempts=job.max_attempts,
                error=message,
            )
            return "dead_letter"

        logger.warning(
            "Job failed, retry scheduled",
            attempt=job.attempts,
            max_attempts=job.max_attempts,
            error=message,
        )
        return "retry"

    async def _heartbeat(self, job: Job, task: asyncio.Task, lease: _LeaseState) -> None:
        interval = self._lease_seconds / 3
        while not task.done():
            await asyncio.sleep(interval)
            try:
                held = await self._store.extend_lease(
                    job.job_id, job.lease_token, self._lease_seconds
                )
            except Exception as e:
                logger.warning("Lease heartbeat failed", error=str(e))
                continue
            if not held:
                lease.lost = True
                task.cancel()
                return
