"""In-process job store.

Implements the full store contract with plain dicts guarded by an
asyncio lock. Suitable for tests and single-process runs; state is lost
when the process exits.
"""

import asyncio
import logging
import uuid
from collections import deque
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any

from src.jobs.config import JobsConfig
from src.jobs.exceptions import LeaseLostError, UnknownJobError
from src.jobs.schemas import (
    EnqueueOptions,
    EnqueueResult,
    FailOutcome,
    Job,
    JobKind,
    JobPayload,
    JobState,
    QueueStatus,
)
from src.jobs.store import MAX_ATTEMPTS_EXCEEDED, JobStore, utc_now

logger = logging.getLogger(__name__)

_PENDING_STATES = frozenset({JobState.WAITING, JobState.ACTIVE, JobState.DELAYED})


class InMemoryJobStore(JobStore):
    """Job store backed by process memory."""

    def __init__(
        self,
        config: JobsConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        super().__init__(config, clock)
        self._lock = asyncio.Lock()
        self._jobs: dict[str, Job] = {}
        self._waiting: dict[JobKind, deque[str]] = {k: deque() for k in JobKind}
        self._completed: dict[JobKind, deque[str]] = {k: deque() for k in JobKind}
        self._dead: dict[JobKind, deque[str]] = {k: deque() for k in JobKind}
        self._dedupe: dict[str, str] = {}

    async def enqueue(
        self,
        kind: JobKind | str,
        payload: dict[str, Any] | JobPayload,
        options: EnqueueOptions | None = None,
        *,
        trace_parent: str | None = None,
    ) -> EnqueueResult:
        job = self._build_job(kind, payload, options, trace_parent)

        async with self._lock:
            if job.dedupe_key:
                existing_id = self._dedupe.get(job.dedupe_key)
                existing = self._jobs.get(existing_id) if existing_id else None
                if existing is not None and existing.state in _PENDING_STATES:
                    logger.debug(
                        "Dedupe hit for %s: returning job %s", job.dedupe_key, existing_id
                    )
                    return EnqueueResult(job_id=existing.job_id, created=False)
                self._dedupe[job.dedupe_key] = job.job_id

            self._jobs[job.job_id] = job
            if job.state == JobState.WAITING:
                self._waiting[job.kind].append(job.job_id)

        return EnqueueResult(job_id=job.job_id, created=True)

    async def lease(self, kind: JobKind, lease_seconds: float) -> Job | None:
        kind = JobKind(kind)
        async with self._lock:
            now = self._clock()
            self._promote_due(kind, now)
            self._reclaim_expired(kind, now)

            while self._waiting[kind]:
                job = self._jobs[self._waiting[kind].popleft()]
                job.attempts += 1
                job.state = JobState.ACTIVE
                job.lease_token = uuid.uuid4().hex
                job.lease_expiry = now + timedelta(seconds=lease_seconds)

                if job.attempts > job.max_attempts:
                    # Lease expired on the final attempt
                    self._to_dead_letter(job, MAX_ATTEMPTS_EXCEEDED, now)
                    continue

                return replace(job)

        return None

    async def extend_lease(self, job_id: str, lease_token: str, lease_seconds: float) -> bool:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None or not self._holds_lease(job, lease_token):
                return False
            job.lease_expiry = self._clock() + timedelta(seconds=lease_seconds)
            return True

    async def ack(self, job_id: str, lease_token: str) -> None:
        async with self._lock:
            job = self._require_leased(job_id, lease_token)
            now = self._clock()
            job.state = JobState.COMPLETED
            job.finished_at = now
            job.lease_token = None
            job.lease_expiry = None
            self._release_dedupe(job)
            self._retain(self._completed[job.kind], job.job_id, self._config.completed_retention)

    async def fail(
        self,
        job_id: str,
        lease_token: str,
        error: str,
        *,
        retryable: bool = True,
    ) -> FailOutcome:
        async with self._lock:
            job = self._require_leased(job_id, lease_token)
            now = self._clock()
            outcome = self._fail_outcome(job, retryable)

            if outcome == FailOutcome.RETRY_SCHEDULED:
                job.state = JobState.DELAYED
                job.last_error = error
                job.lease_token = None
                job.lease_expiry = None
                job.scheduled_at = now + timedelta(seconds=job.backoff.delay_for(job.attempts))
            else:
                self._to_dead_letter(job, error, now)
            return outcome

    async def get_job(self, job_id: str) -> Job | None:
        async with self._lock:
            job = self._jobs.get(job_id)
            return replace(job) if job else None

    async def get_status(self, kind: JobKind) -> QueueStatus:
        kind = JobKind(kind)
        async with self._lock:
            status = QueueStatus(
                completed=len(self._completed[kind]),
                failed=len(self._dead[kind]),
            )
            for job in self._jobs.values():
                if job.kind != kind:
                    continue
                if job.state == JobState.WAITING:
                    status.waiting += 1
                elif job.state == JobState.ACTIVE:
                    status.active += 1
                elif job.state == JobState.DELAYED:
                    status.delayed += 1
            return status

    async def list_dead_letters(self, kind: JobKind, limit: int = 50) -> list[Job]:
        kind = JobKind(kind)
        async with self._lock:
            ids = list(self._dead[kind])[:limit]
            return [replace(self._jobs[i]) for i in ids]

    async def requeue_dead_letter(self, job_id: str) -> bool:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.state != JobState.FAILED:
                return False
            holder = self._dedupe.get(job.dedupe_key) if job.dedupe_key else None
            if holder is not None and holder != job_id:
                logger.warning(
                    "Not requeueing %s: dedupe key %s is held by pending job %s",
                    job_id,
                    job.dedupe_key,
                    holder,
                )
                return False
            self._dead[job.kind].remove(job_id)
            job.state = JobState.WAITING
            job.attempts = 0
            job.finished_at = None
            job.scheduled_at = self._clock()
            if job.dedupe_key:
                self._dedupe[job.dedupe_key] = job.job_id
            self._waiting[job.kind].append(job_id)
            return True

    # ── internals (caller holds the lock) ────────────────────────────

    def _promote_due(self, kind: JobKind, now: datetime) -> None:
        due = sorted(
            (
                j for j in self._jobs.values()
                if j.kind == kind and j.state == JobState.DELAYED and j.scheduled_at <= now
            ),
            key=lambda j: j.scheduled_at,
        )
        for job in due:
            job.state = JobState.WAITING
            self._waiting[kind].append(job.job_id)

    def _reclaim_expired(self, kind: JobKind, now: datetime) -> None:
        for job in self._jobs.values():
            if (
                job.kind == kind
                and job.state == JobState.ACTIVE
                and job.lease_expiry is not None
                and job.lease_expiry <= now
            ):
                logger.warning(
                    "Lease expired for job %s (attempt %d), returning to waiting",
                    job.job_id,
                    job.attempts,
                )
                job.state = JobState.WAITING
                job.lease_token = None
                job.lease_expiry = None
                self._waiting[kind].append(job.job_id)

    def _holds_lease(self, job: Job, lease_token: str) -> bool:
        return job.state == JobState.ACTIVE and job.lease_token == lease_token

    def _require_leased(self, job_id: str, lease_token: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise UnknownJobError(f"Job {job_id} not found")
        if not self._holds_lease(job, lease_token):
            raise LeaseLostError(f"Lease for job {job_id} is no longer held (state={job.state.value})")
        return job

    def _to_dead_letter(self, job: Job, error: str, now: datetime) -> None:
        job.state = JobState.FAILED
        job.last_error = error
        job.finished_at = now
        job.lease_token = None
        job.lease_expiry = None
        self._release_dedupe(job)
        self._retain(self._dead[job.kind], job.job_id, self._config.dead_letter_retention)
        logger.warning(
            "Job %s (%s) dead-lettered after %d attempts: %s",
            job.job_id,
            job.kind.value,
            job.attempts,
            error,
        )

    def _release_dedupe(self, job: Job) -> None:
        if job.dedupe_key and self._dedupe.get(job.dedupe_key) == job.job_id:
            del self._dedupe[job.dedupe_key]

    def _retain(self, ids: deque[str], job_id: str, retention: int) -> None:
        ids.appendleft(job_id)
        while len(ids) > retention:
            self._jobs.pop(ids.pop(), None)
