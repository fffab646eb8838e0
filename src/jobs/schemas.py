"""Job kinds, typed payloads and job records.

Payloads form a closed set: each ``JobKind`` maps to exactly one pydantic
model, and ``parse_payload`` is the only way a payload enters the store.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from src.jobs.exceptions import PayloadValidationError


class JobKind(str, Enum):
    SEARCH_SYNC = "search-sync"
    PAGESPEED_TEST = "pagespeed-test"
    SITE_CRAWL = "site-crawl"
    SCORE_CALCULATION = "score-calculation"


class JobState(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    DELAYED = "delayed"
    COMPLETED = "completed"
    FAILED = "failed"


class FailOutcome(str, Enum):
    """Result of ``JobStore.fail``."""

    RETRY_SCHEDULED = "retry_scheduled"
    DEAD_LETTERED = "dead_lettered"


Device = Literal["MOBILE", "DESKTOP"]


# ── Payloads ─────────────────────────────────────────────────────────


class JobPayload(BaseModel):
    """Fields every job carries: the site and the tenant it must belong to."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    site_id: str = Field(min_length=1)
    organization_id: str = Field(min_length=1)


def _check_http_url(value: str) -> str:
    if not value.startswith(("http://", "https://")):
        raise ValueError("url must be an absolute http(s) URL")
    return value


class SearchSyncPayload(JobPayload):
    days: int = Field(default=30, ge=1, le=480)


class PageSpeedPayload(JobPayload):
    url: str
    device: Device = "MOBILE"

    @field_validator("url")
    @classmethod
    def _validate_url(cls, value: str) -> str:
        return _check_http_url(value)


class CrawlPayload(JobPayload):
    url: str
    max_pages: int = Field(default=50, ge=1, le=500)
    force: bool = False

    @field_validator("url")
    @classmethod
    def _validate_url(cls, value: str) -> str:
        return _check_http_url(value)


class ScorePayload(JobPayload):
    target_date: date | None = None


PAYLOAD_MODELS: dict[JobKind, type[JobPayload]] = {
    JobKind.SEARCH_SYNC: SearchSyncPayload,
    JobKind.PAGESPEED_TEST: PageSpeedPayload,
    JobKind.SITE_CRAWL: CrawlPayload,
    JobKind.SCORE_CALCULATION: ScorePayload,
}


def parse_payload(kind: JobKind | str, data: dict[str, Any] | JobPayload) -> JobPayload:
    """Validate ``data`` against the payload model for ``kind``.

    Raises:
        PayloadValidationError: Unknown kind or payload shape mismatch.
    """
    try:
        kind = JobKind(kind)
    except ValueError:
        raise PayloadValidationError(f"Unknown job kind {kind!r}") from None

    model = PAYLOAD_MODELS[kind]
    if isinstance(data, model):
        return data
    if isinstance(data, JobPayload):
        data = data.model_dump()
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise PayloadValidationError(f"Invalid {kind.value} payload: {e}") from e


# ── Job records ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential retry delay: ``base * multiplier^(attempt-1)`` capped at ``max_delay``."""

    base_delay: float = 5.0
    multiplier: float = 2.0
    max_delay: float = 3600.0

    def delay_for(self, attempt: int) -> float:
        """Delay in seconds before retrying after the given (1-based) attempt."""
        exponent = max(attempt - 1, 0)
        return min(self.base_delay * (self.multiplier ** exponent), self.max_delay)

    def to_dict(self) -> dict[str, float]:
        return {
            "base_delay": self.base_delay,
            "multiplier": self.multiplier,
            "max_delay": self.max_delay,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BackoffPolicy":
        return cls(
            base_delay=float(data["base_delay"]),
            multiplier=float(data.get("multiplier", 2.0)),
            max_delay=float(data.get("max_delay", 3600.0)),
        )


@dataclass
class EnqueueOptions:
    """Per-call overrides for ``JobStore.enqueue``.

    Attributes:
        delay_seconds: Hold the job in the delayed state this long.
        dedupe_key: Skip the enqueue when a pending job holds this key.
        max_attempts: Override the kind's default attempt budget.
        backoff: Override the kind's default backoff policy.
    """

    delay_seconds: float = 0.0
    dedupe_key: str | None = None
    max_attempts: int | None = None
    backoff: BackoffPolicy | None = None


@dataclass
class EnqueueResult:
    job_id: str
    created: bool


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Job:
    """A unit of work owned by the job store.

    Workers receive a copy carrying the ``lease_token`` of their lease and
    must call exactly one of ``ack``/``fail`` with that token.
    """

    kind: JobKind
    payload: JobPayload
    job_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    attempts: int = 0
    max_attempts: int = 3
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)
    state: JobState = JobState.WAITING
    scheduled_at: datetime = field(default_factory=_utc_now)
    lease_expiry: datetime | None = None
    lease_token: str | None = None
    dedupe_key: str | None = None
    last_error: str | None = None
    trace_parent: str | None = None
    created_at: datetime = field(default_factory=_utc_now)
    finished_at: datetime | None = None

    @property
    def site_id(self) -> str:
        return self.payload.site_id

    @property
    def organization_id(self) -> str:
        return self.payload.organization_id

    @property
    def attempts_exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def to_dict(self) -> dict[str, Any]:
        """Serialize for inspection output (CLI, dead-letter listings)."""
        return {
            "job_id": self.job_id,
            "kind": self.kind.value,
            "payload": self.payload.model_dump(mode="json"),
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "state": self.state.value,
            "scheduled_at": self.scheduled_at.isoformat(),
            "dedupe_key": self.dedupe_key,
            "last_error": self.last_error,
            "created_at": self.created_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


@dataclass
class QueueStatus:
    """Per-kind job counts by state."""

    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "waiting": self.waiting,
            "active": self.active,
            "completed": self.completed,
            "failed": self.failed,
            "delayed": self.delayed,
        }


@dataclass
class ProcessResult:
    """What a processor reports back to the worker.

    ``skipped`` results (tenant gone, recently applied, not configured) are
    successes: the worker acks them like any other completed job.
    """

    status: Literal["ok", "skipped"] = "ok"
    reason: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, **data: Any) -> "ProcessResult":
        return cls(status="ok", data=data)

    @classmethod
    def skipped(cls, reason: str, **data: Any) -> "ProcessResult":
        return cls(status="skipped", reason=reason, data=data)

    @property
    def is_skipped(self) -> bool:
        return self.status == "skipped"


@dataclass
class TriggerSummary:
    """Counts reported by bulk and user-triggered enqueues."""

    enqueued: int = 0
    skipped: int = 0
    job_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"enqueued": self.enqueued, "skipped": self.skipped, "job_ids": self.job_ids}
