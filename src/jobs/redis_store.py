"""
Redis-backed job store shared by a fleet of workers.

Key layout (``{p}`` is ``JobsConfig.key_prefix``):

    {p}:job:{id}            hash   job record
    {p}:{kind}:waiting      list   runnable job ids, FIFO
    {p}:{kind}:delayed      zset   job ids scored by run-at epoch
    {p}:{kind}:active       zset   job ids scored by lease expiry epoch
    {p}:{kind}:completed    list   most recent completed ids (bounded)
    {p}:{kind}:failed       list   dead-letter view, newest first (bounded)
    {p}:dedupe:{key}        string job id currently holding a dedupe key

Every state transition runs as a Lua script so the check (state, lease
token, dedupe holder) and the write happen atomically. Expired leases
are reclaimed at the start of each ``lease`` call, the same way the
stream consumers reclaim idle pending messages before reading new ones.
"""

import json
import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import redis.asyncio as redis

from src.config.settings import get_settings
from src.jobs.config import JobsConfig
from src.jobs.exceptions import LeaseLostError, UnknownJobError
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
from src.jobs.store import MAX_ATTEMPTS_EXCEEDED, JobStore, utc_now

logger = logging.getLogger(__name__)

# KEYS: job hash, waiting, delayed, dedupe
# ARGV: job id, job key prefix, delayed flag, run-at score, has-dedupe flag, field/value pairs...
_ENQUEUE_LUA = """
if ARGV[5] == '1' then
  local existing = redis.call('GET', KEYS[4])
  if existing then
    local state = redis.call('HGET', ARGV[2] .. existing, 'state')
    if state == 'waiting' or state == 'active' or state == 'delayed' then
      return {0, existing}
    end
  end
  redis.call('SET', KEYS[4], ARGV[1])
end
local fields = {}
for i = 6, #ARGV do fields[#fields + 1] = ARGV[i] end
redis.call('HSET', KEYS[1], unpack(fields))
if ARGV[3] == '1' then
  redis.call('ZADD', KEYS[3], ARGV[4], ARGV[1])
else
  redis.call('RPUSH', KEYS[2], ARGV[1])
end
return {1, ARGV[1]}
"""

# KEYS: waiting, delayed, active
# ARGV: now, lease expiry, lease token, job key prefix
_LEASE_LUA = """
local due = redis.call('ZRANGEBYSCORE', KEYS[2], '-inf', ARGV[1])
for _, id in ipairs(due) do
  redis.call('ZREM', KEYS[2], id)
  redis.call('RPUSH', KEYS[1], id)
  redis.call('HSET', ARGV[4] .. id, 'state', 'waiting')
end
local expired = redis.call('ZRANGEBYSCORE', KEYS[3], '-inf', ARGV[1])
for _, id in ipairs(expired) do
  redis.call('ZREM', KEYS[3], id)
  redis.call('RPUSH', KEYS[1], id)
  redis.call('HSET', ARGV[4] .. id, 'state', 'waiting', 'lease_token', '')
end
local id = redis.call('LPOP', KEYS[1])
if not id then
  return false
end
redis.call('ZADD', KEYS[3], ARGV[2], id)
redis.call('HINCRBY', ARGV[4] .. id, 'attempts', 1)
redis.call('HSET', ARGV[4] .. id, 'state', 'active', 'lease_expiry', ARGV[2], 'lease_token', ARGV[3])
return id
"""

# KEYS: job hash, active
# ARGV: lease token, new expiry, job id
_EXTEND_LUA = """
if redis.call('HGET', KEYS[1], 'state') ~= 'active'
   or redis.call('HGET', KEYS[1], 'lease_token') ~= ARGV[1] then
  return 0
end
redis.call('HSET', KEYS[1], 'lease_expiry', ARGV[2])
redis.call('ZADD', KEYS[2], ARGV[2], ARGV[3])
return 1
"""

# KEYS: job hash, active, delayed, terminal list, dedupe
# ARGV: lease token, job id, now, mode (complete|retry|dead), error, run-at,
#       retention, has-dedupe flag, job key prefix
_FINISH_LUA = """
if redis.call('EXISTS', KEYS[1]) == 0 then
  return -1
end
if redis.call('HGET', KEYS[1], 'state') ~= 'active'
   or redis.call('HGET', KEYS[1], 'lease_token') ~= ARGV[1] then
  return 0
end
redis.call('ZREM', KEYS[2], ARGV[2])
if ARGV[4] == 'retry' then
  redis.call('HSET', KEYS[1], 'state', 'delayed', 'scheduled_at', ARGV[6],
             'last_error', ARGV[5], 'lease_token', '', 'lease_expiry', '')
  redis.call('ZADD', KEYS[3], ARGV[6], ARGV[2])
  return 1
end
local state = 'completed'
if ARGV[4] == 'dead' then
  state = 'failed'
  redis.call('HSET', KEYS[1], 'last_error', ARGV[5])
end
redis.call('HSET', KEYS[1], 'state', state, 'finished_at', ARGV[3],
           'lease_token', '', 'lease_expiry', '')
redis.call('LPUSH', KEYS[4], ARGV[2])
local retention = tonumber(ARGV[7])
local stale = redis.call('LRANGE', KEYS[4], retention, -1)
for _, old in ipairs(stale) do
  redis.call('DEL', ARGV[9] .. old)
end
if retention == 0 then
  redis.call('DEL', KEYS[4])
else
  redis.call('LTRIM', KEYS[4], 0, retention - 1)
end
if ARGV[8] == '1' and redis.call('GET', KEYS[5]) == ARGV[2] then
  redis.call('DEL', KEYS[5])
end
return 1
"""


def _ts(value: datetime | None) -> str:
    return "" if value is None else repr(value.timestamp())


def _dt(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromtimestamp(float(value), tz=timezone.utc)


def _job_to_fields(job: Job) -> dict[str, str]:
    """Flatten a Job into Redis hash fields (all strings)."""
    return {
        "job_id": job.job_id,
        "kind": job.kind.value,
        "payload": job.payload.model_dump_json(),
        "attempts": str(job.attempts),
        "max_attempts": str(job.max_attempts),
        "backoff": json.dumps(job.backoff.to_dict()),
        "state": job.state.value,
        "scheduled_at": _ts(job.scheduled_at),
        "lease_expiry": _ts(job.lease_expiry),
        "lease_token": job.lease_token or "",
        "dedupe_key": job.dedupe_key or "",
        "last_error": job.last_error or "",
        "trace_parent": job.trace_parent or "",
        "created_at": _ts(job.created_at),
        "finished_at": _ts(job.finished_at),
    }


def _fields_to_job(fields: dict[str, str]) -> Job:
    """Rebuild a Job from its Redis hash."""
    kind = JobKind(fields["kind"])
    return Job(
        job_id=fields["job_id"],
        kind=kind,
        payload=parse_payload(kind, json.loads(fields["payload"])),
        attempts=int(fields.get("attempts") or 0),
        max_attempts=int(fields["max_attempts"]),
        backoff=BackoffPolicy.from_dict(json.loads(fields["backoff"])),
        state=JobState(fields["state"]),
        scheduled_at=_dt(fields.get("scheduled_at")) or utc_now(),
        lease_expiry=_dt(fields.get("lease_expiry")),
        lease_token=fields.get("lease_token") or None,
        dedupe_key=fields.get("dedupe_key") or None,
        last_error=fields.get("last_error") or None,
        trace_parent=fields.get("trace_parent") or None,
        created_at=_dt(fields.get("created_at")) or utc_now(),
        finished_at=_dt(fields.get("finished_at")),
    )


class RedisJobStore(JobStore):
    """
    Job store over a shared Redis instance.

    Usage:
        store = RedisJobStore(redis_url="redis://localhost:6379/0")
        await store.connect()
        result = await store.enqueue(JobKind.SCORE_CALCULATION, payload)
        job = await store.lease(JobKind.SCORE_CALCULATION, lease_seconds=120)
        await store.ack(job.job_id, job.lease_token)
    """

    def __init__(
        self,
        redis_url: str | None = None,
        config: JobsConfig | None = None,
        redis_client: redis.Redis | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        super().__init__(config, clock)
        self._redis_url = redis_url
        self._redis = redis_client
        self._owns_client = redis_client is None
        self._scripts: dict[str, Any] = {}
        if redis_client is not None:
            self._register_scripts()

    async def connect(self) -> None:
        """Create the Redis client (when not injected) and register scripts."""
        if self._redis is None:
            if self._redis_url is None:
                self._redis_url = str(get_settings().redis_url)
            self._redis = redis.from_url(
                self._redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            self._register_scripts()
        logger.info("Job store connected (prefix=%s)", self._config.key_prefix)

    async def close(self) -> None:
        if self._redis is not None and self._owns_client:
            await self._redis.close()
            self._redis = None
            logger.info("Job store connection closed")

    @property
    def redis(self) -> redis.Redis:
        """Get Redis client, raising if not connected."""
        if self._redis is None:
            raise RuntimeError("Job store not connected. Call connect() first.")
        return self._redis

    async def health_check(self) -> bool:
        try:
            await self.redis.ping()
            return True
        except Exception:
            return False

    # ── keys ─────────────────────────────────────────────────────────

    @property
    def _job_prefix(self) -> str:
        return f"{self._config.key_prefix}:job:"

    def _job_key(self, job_id: str) -> str:
        return f"{self._job_prefix}{job_id}"

    def _kind_key(self, kind: JobKind, name: str) -> str:
        return f"{self._config.key_prefix}:{kind.value}:{name}"

    def _dedupe_key(self, dedupe_key: str | None) -> str:
        return f"{self._config.key_prefix}:dedupe:{dedupe_key or ''}"

    def _register_scripts(self) -> None:
        self._scripts = {
            "enqueue": self.redis.register_script(_ENQUEUE_LUA),
            "lease": self.redis.register_script(_LEASE_LUA),
            "extend": self.redis.register_script(_EXTEND_LUA),
            "finish": self.redis.register_script(_FINISH_LUA),
        }

    # ── contract ─────────────────────────────────────────────────────

    async def enqueue(
        self,
        kind: JobKind | str,
        payload: dict[str, Any] | JobPayload,
        options: EnqueueOptions | None = None,
        *,
        trace_parent: str | None = None,
    ) -> EnqueueResult:
        job = self._build_job(kind, payload, options, trace_parent)
        fields = _job_to_fields(job)
        flat: list[str] = []
        for name, value in fields.items():
            flat.extend((name, value))

        created, job_id = await self._scripts["enqueue"](
            keys=[
                self._job_key(job.job_id),
                self._kind_key(job.kind, "waiting"),
                self._kind_key(job.kind, "delayed"),
                self._dedupe_key(job.dedupe_key),
            ],
            args=[
                job.job_id,
                self._job_prefix,
                "1" if job.state == JobState.DELAYED else "0",
                fields["scheduled_at"],
                "1" if job.dedupe_key else "0",
                *flat,
            ],
        )
        if not int(created):
            logger.debug("Dedupe hit for %s: returning job %s", job.dedupe_key, job_id)
        return EnqueueResult(job_id=job_id, created=bool(int(created)))

    async def lease(self, kind: JobKind, lease_seconds: float) -> Job | None:
        kind = JobKind(kind)
        while True:
            now = self._clock()
            token = uuid.uuid4().hex
            job_id = await self._scripts["lease"](
                keys=[
                    self._kind_key(kind, "waiting"),
                    self._kind_key(kind, "delayed"),
                    self._kind_key(kind, "active"),
                ],
                args=[
                    _ts(now),
                    _ts(now + timedelta(seconds=lease_seconds)),
                    token,
                    self._job_prefix,
                ],
            )
            if not job_id:
                return None

            fields = await self.redis.hgetall(self._job_key(job_id))
            if not fields:
                logger.error("Leased job %s has no record, skipping", job_id)
                continue
            job = _fields_to_job(fields)

            if job.attempts > job.max_attempts:
                # Lease expired on the final attempt
                await self._finish(job, "dead", MAX_ATTEMPTS_EXCEEDED)
                logger.warning(
                    "Job %s (%s) dead-lettered: %s", job.job_id, kind.value, MAX_ATTEMPTS_EXCEEDED
                )
                continue
            return job

    async def extend_lease(self, job_id: str, lease_token: str, lease_seconds: float) -> bool:
        fields = await self.redis.hgetall(self._job_key(job_id))
        if not fields:
            return False
        kind = JobKind(fields["kind"])
        expiry = self._clock() + timedelta(seconds=lease_seconds)
        extended = await self._scripts["extend"](
            keys=[self._job_key(job_id), self._kind_key(kind, "active")],
            args=[lease_token, _ts(expiry), job_id],
        )
        return bool(int(extended))

    async def ack(self, job_id: str, lease_token: str) -> None:
        job = await self._load(job_id)
        job.lease_token = lease_token
        await self._finish(job, "complete")

    async def fail(
        self,
        job_id: str,
        lease_token: str,
        error: str,
        *,
        retryable: bool = True,
    ) -> FailOutcome:
        job = await self._load(job_id)
        job.lease_token = lease_token
        outcome = self._fail_outcome(job, retryable)
        if outcome == FailOutcome.RETRY_SCHEDULED:
            run_at = self._clock() + timedelta(seconds=job.backoff.delay_for(job.attempts))
            await self._finish(job, "retry", error, run_at=run_at)
        else:
            await self._finish(job, "dead", error)
            logger.warning(
                "Job %s (%s) dead-lettered after %d attempts: %s",
                job.job_id,
                job.kind.value,
                job.attempts,
                error,
            )
        return outcome

    async def get_job(self, job_id: str) -> Job | None:
        fields = await self.redis.hgetall(self._job_key(job_id))
        return _fields_to_job(fields) if fields else None

    async def get_status(self, kind: JobKind) -> QueueStatus:
        kind = JobKind(kind)
        async with self.redis.pipeline(transaction=False) as pipe:
            pipe.llen(self._kind_key(kind, "waiting"))
            pipe.zcard(self._kind_key(kind, "active"))
            pipe.llen(self._kind_key(kind, "completed"))
            pipe.llen(self._kind_key(kind, "failed"))
            pipe.zcard(self._kind_key(kind, "delayed"))
            waiting, active, completed, failed, delayed = await pipe.execute()
        return QueueStatus(
            waiting=waiting,
            active=active,
            completed=completed,
            failed=failed,
            delayed=delayed,
        )

    async def list_dead_letters(self, kind: JobKind, limit: int = 50) -> list[Job]:
        kind = JobKind(kind)
        ids = await self.redis.lrange(self._kind_key(kind, "failed"), 0, limit - 1)
        jobs: list[Job] = []
        for job_id in ids:
            fields = await self.redis.hgetall(self._job_key(job_id))
            if fields:
                jobs.append(_fields_to_job(fields))
        return jobs

    async def requeue_dead_letter(self, job_id: str) -> bool:
        fields = await self.redis.hgetall(self._job_key(job_id))
        if not fields or fields.get("state") != JobState.FAILED.value:
            return False
        kind = JobKind(fields["kind"])
        dedupe_key = fields.get("dedupe_key")

        # Claim the dedupe key first; a pending job holding it wins
        claimed = False
        if dedupe_key:
            redis_key = self._dedupe_key(dedupe_key)
            claimed = bool(await self.redis.set(redis_key, job_id, nx=True))
            if not claimed:
                holder = await self.redis.get(redis_key)
                if holder != job_id:
                    logger.warning(
                        "Not requeueing %s: dedupe key %s is held by pending job %s",
                        job_id,
                        dedupe_key,
                        holder,
                    )
                    return False

        removed = await self.redis.lrem(self._kind_key(kind, "failed"), 1, job_id)
        if not removed:
            if claimed:
                await self.redis.delete(self._dedupe_key(dedupe_key))
            return False

        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hset(
                self._job_key(job_id),
                mapping={
                    "state": JobState.WAITING.value,
                    "attempts": "0",
                    "finished_at": "",
                    "scheduled_at": _ts(self._clock()),
                },
            )
            pipe.rpush(self._kind_key(kind, "waiting"), job_id)
            await pipe.execute()
        logger.info("Requeued dead-lettered job %s (%s)", job_id, kind.value)
        return True

    # ── internals ────────────────────────────────────────────────────

    async def _load(self, job_id: str) -> Job:
        fields = await self.redis.hgetall(self._job_key(job_id))
        if not fields:
            raise UnknownJobError(f"Job {job_id} not found")
        return _fields_to_job(fields)

    async def _finish(
        self,
        job: Job,
        mode: str,
        error: str = "",
        run_at: datetime | None = None,
    ) -> None:
        """Run the terminal/retry transition; raise if the lease is not held."""
        if mode == "complete":
            terminal, retention = "completed", self._config.completed_retention
        else:
            terminal, retention = "failed", self._config.dead_letter_retention

        result = await self._scripts["finish"](
            keys=[
                self._job_key(job.job_id),
                self._kind_key(job.kind, "active"),
                self._kind_key(job.kind, "delayed"),
                self._kind_key(job.kind, terminal),
                self._dedupe_key(job.dedupe_key),
            ],
            args=[
                job.lease_token or "",
                job.job_id,
                _ts(self._clock()),
                mode,
                error,
                _ts(run_at),
                str(retention),
                "1" if job.dedupe_key else "0",
                self._job_prefix,
            ],
        )
        result = int(result)
        if result == -1:
            raise UnknownJobError(f"Job {job.job_id} not found")
        if result == 0:
            raise LeaseLostError(f"Lease for job {job.job_id} is no longer held")
