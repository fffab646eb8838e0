"""
Background job store, workers and enqueue service.

Jobs are leased with a token and a bounded lease. Exactly one of ack or
fail settles each lease; failures retry with exponential backoff until
the kind's attempt budget is spent, then land in the dead-letter view.

Classes:
    JobStore: Store contract
    InMemoryJobStore: Process-local store for tests and single-process runs
    RedisJobStore: Shared store for a fleet of workers
    JobWorker: Lease/run/settle loop for one kind
    JobService: Enqueue entry points with dedupe and trigger rate limits
    IdempotencyGuard: Skips work already applied recently
    DeadLetterMonitor: Alerts on dead-letter growth
"""

from src.jobs.config import JobsConfig
from src.jobs.idempotency import IdempotencyGuard
from src.jobs.memory_store import InMemoryJobStore
from src.jobs.monitor import DeadLetterMonitor
from src.jobs.redis_store import RedisJobStore
from src.jobs.schemas import (
    EnqueueOptions,
    EnqueueResult,
    FailOutcome,
    Job,
    JobKind,
    JobState,
    ProcessResult,
    QueueStatus,
    TriggerSummary,
)
from src.jobs.service import JobService
from src.jobs.store import JobStore

__all__ = [
    "DeadLetterMonitor",
    "EnqueueOptions",
    "EnqueueResult",
    "FailOutcome",
    "IdempotencyGuard",
    "InMemoryJobStore",
    "Job",
    "JobKind",
    "JobService",
    "JobState",
    "JobStore",
    "JobsConfig",
    "ProcessResult",
    "QueueStatus",
    "RedisJobStore",
    "TriggerSummary",
]
