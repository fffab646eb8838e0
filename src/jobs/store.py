"""
Job store contract.

A job store owns every job record. Workers borrow a job through a lease
and hand it back with exactly one ``ack`` or ``fail`` carrying the
lease token; the store rejects anything else with ``LeaseLostError``.

Lifecycle:

    enqueue ──► waiting ◄──────────── delayed (retry / delay elapsed)
                  │                      ▲
                lease                    │ fail (attempts left)
                  ▼                      │
                active ──── ack ──► completed
                  │  └──── fail ──► failed (dead-letter view)
                  └── lease expiry ──► waiting

Implementations:
    InMemoryJobStore: single process, used by tests and local runs
    RedisJobStore: shared store for a fleet of workers
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from src.jobs.config import JobsConfig
from src.jobs.schemas import (
    BackoffPolicy,
    EnqueueOptions,
    EnqueueResult,
    FailOutcome,
    Job,
    JobKind,
    JobPayload,
    JobState,
    QueueStatus,
    parse_payload,
)

MAX_ATTEMPTS_EXCEEDED = "max_attempts_exceeded"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class JobStore(ABC):
    """
    Abstract durable queue of typed jobs.

    Subclasses implement the state transitions; this base resolves
    per-kind defaults so both stores build identical job records.
    """

    def __init__(
        self,
        config: JobsConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._config = config or JobsConfig()
        self._clock = clock

    @property
    def config(self) -> JobsConfig:
        return self._config

    def _build_job(
        self,
        kind: JobKind | str,
        payload: dict[str, Any] | JobPayload,
        options: EnqueueOptions | None,
        trace_parent: str | None,
    ) -> Job:
        """Validate the payload and apply per-kind defaults."""
        kind = JobKind(kind)
        parsed = parse_payload(kind, payload)
        options = options or EnqueueOptions()
        now = self._clock()

        max_attempts = options.max_attempts or self._config.max_attempts_for(kind)
        backoff: BackoffPolicy = options.backoff or self._config.backoff_for(kind)
        job = Job(
            kind=kind,
            payload=parsed,
            max_attempts=max_attempts,
            backoff=backoff,
            dedupe_key=options.dedupe_key,
            trace_parent=trace_parent,
            created_at=now,
            scheduled_at=now,
        )
        if options.delay_seconds > 0:
            job.state = JobState.DELAYED
            job.scheduled_at = now + timedelta(seconds=options.delay_seconds)
        return job

    @abstractmethod
    async def enqueue(
        self,
        kind: JobKind | str,
        payload: dict[str, Any] | JobPayload,
        options: EnqueueOptions | None = None,
        *,
        trace_parent: str | None = None,
    ) -> EnqueueResult:
        """
        Add a job, or return the pending job already holding ``options.dedupe_key``.

        Raises:
            PayloadValidationError: Payload does not match the kind's schema.
        """
        ...

    @abstractmethod
    async def lease(self, kind: JobKind, lease_seconds: float) -> Job | None:
        """
        Claim the next runnable job of ``kind``.

        Promotes due delayed jobs and reclaims expired leases first. The
        returned job has its attempt counter incremented and carries a
        fresh ``lease_token``. Returns None when nothing is runnable.
        """
        ...

    @abstractmethod
    async def extend_lease(self, job_id: str, lease_token: str, lease_seconds: float) -> bool:
        """Push the lease expiry forward. False when the lease is no longer held."""
        ...

    @abstractmethod
    async def ack(self, job_id: str, lease_token: str) -> None:
        """
        Mark a leased job completed.

        Raises:
            LeaseLostError: Lease expired, was re-leased, or the job is terminal.
            UnknownJobError: No such job.
        """
        ...

    @abstractmethod
    async def fail(
        self,
        job_id: str,
        lease_token: str,
        error: str,
        *,
        retryable: bool = True,
    ) -> FailOutcome:
        """
        Record a failed attempt.

        Schedules a retry after the job's backoff delay while attempts
        remain and the error is retryable; otherwise moves the job to the
        dead-letter view.
        """
        ...

    @abstractmethod
    async def get_job(self, job_id: str) -> Job | None:
        ...

    @abstractmethod
    async def get_status(self, kind: JobKind) -> QueueStatus:
        ...

    @abstractmethod
    async def list_dead_letters(self, kind: JobKind, limit: int = 50) -> list[Job]:
        """Most recent dead-lettered jobs first."""
        ...

    @abstractmethod
    async def requeue_dead_letter(self, job_id: str) -> bool:
        """Move a dead-lettered job back to waiting with a fresh attempt budget.

        Returns False when the job is not dead-lettered or another pending
        job now holds its dedupe key.
        """
        ...

    async def close(self) -> None:
        """Release connections. No-op by default."""
        return None

    def _fail_outcome(self, job: Job, retryable: bool) -> FailOutcome:
        if retryable and not job.attempts_exhausted:
            return FailOutcome.RETRY_SCHEDULED
        return FailOutcome.DEAD_LETTERED
