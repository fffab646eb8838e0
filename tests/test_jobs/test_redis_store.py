"""Tests for RedisJobStore hash mapping and settle transitions with a mocked client."""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.jobs.exceptions import LeaseLostError, UnknownJobError
from src.jobs.redis_store import RedisJobStore, _fields_to_job, _job_to_fields
from src.jobs.schemas import FailOutcome, Job, JobKind, JobState, parse_payload


def _job(clock, **overrides):
    payload = parse_payload(
        JobKind.PAGESPEED_TEST,
        {"site_id": "site-1", "organization_id": "org-1", "url": "https://example.com", "device": "DESKTOP"},
    )
    defaults = dict(
        kind=JobKind.PAGESPEED_TEST,
        payload=payload,
        job_id="job-1",
        attempts=1,
        max_attempts=3,
        state=JobState.ACTIVE,
        scheduled_at=clock.now,
        created_at=clock.now,
        lease_expiry=clock.now + timedelta(seconds=120),
        lease_token="tok",
        dedupe_key="pagespeed-test:desktop:site-1",
    )
    defaults.update(overrides)
    return Job(**defaults)


@pytest.fixture
def client():
    c = MagicMock()
    c.register_script = MagicMock(side_effect=lambda source: AsyncMock(return_value=1))
    c.hgetall = AsyncMock(return_value={})
    return c


@pytest.fixture
def store(client, clock):
    return RedisJobStore(redis_client=client, clock=clock)


class TestHashMapping:

    def test_fields_are_strings_and_restore(self, clock):
        job = _job(clock, trace_parent="00-" + "a" * 32 + "-" + "b" * 16 + "-01")

        fields = _job_to_fields(job)
        restored = _fields_to_job(fields)

        assert all(isinstance(v, str) for v in fields.values())
        assert fields["finished_at"] == ""
        assert restored.payload.device == "DESKTOP"
        assert restored.lease_expiry == job.lease_expiry
        assert restored.finished_at is None
        assert restored.trace_parent == job.trace_parent
        assert restored.state == JobState.ACTIVE


class TestSettle:

    @pytest.mark.asyncio
    async def test_ack_runs_finish_script(self, store, client, clock):
        client.hgetall.return_value = _job_to_fields(_job(clock))

        await store.ack("job-1", "tok")

        finish = store._scripts["finish"]
        kwargs = finish.await_args.kwargs
        assert kwargs["keys"][0] == "jobs:job:job-1"
        assert kwargs["keys"][3] == "jobs:pagespeed-test:completed"
        assert kwargs["args"][0] == "tok"
        assert kwargs["args"][3] == "complete"

    @pytest.mark.asyncio
    async def test_ack_with_stale_token(self, store, client, clock):
        client.hgetall.return_value = _job_to_fields(_job(clock))
        store._scripts["finish"] = AsyncMock(return_value=0)

        with pytest.raises(LeaseLostError):
            await store.ack("job-1", "old-token")

    @pytest.mark.asyncio
    async def test_unknown_job(self, store):
        with pytest.raises(UnknownJobError):
            await store.ack("missing", "tok")

    @pytest.mark.asyncio
    async def test_fail_schedules_retry_with_backoff(self, store, client, clock):
        client.hgetall.return_value = _job_to_fields(_job(clock, attempts=2))

        outcome = await store.fail("job-1", "tok", "TransientExternalError: 503")

        assert outcome == FailOutcome.RETRY_SCHEDULED
        args = store._scripts["finish"].await_args.kwargs["args"]
        assert args[3] == "retry"
        # Second attempt waits base_delay * multiplier
        assert float(args[5]) == pytest.approx((clock.now + timedelta(seconds=10)).timestamp())

    @pytest.mark.asyncio
    async def test_fail_non_retryable_dead_letters(self, store, client, clock):
        client.hgetall.return_value = _job_to_fields(_job(clock))

        outcome = await store.fail("job-1", "tok", "PayloadValidationError", retryable=False)

        assert outcome == FailOutcome.DEAD_LETTERED
        kwargs = store._scripts["finish"].await_args.kwargs
        assert kwargs["args"][3] == "dead"
        assert kwargs["keys"][3] == "jobs:pagespeed-test:failed"

    @pytest.mark.asyncio
    async def test_requeue_only_dead_lettered(self, store, client, clock):
        client.hgetall.return_value = _job_to_fields(_job(clock))

        assert await store.requeue_dead_letter("job-1") is False


class TestRequeue:

    DEDUPE = "jobs:dedupe:pagespeed-test:desktop:site-1"

    @pytest.fixture
    def dead(self, client, clock):
        client.hgetall.return_value = _job_to_fields(
            _job(clock, state=JobState.FAILED, lease_token=None, lease_expiry=None)
        )
        client.set = AsyncMock(return_value=True)
        client.get = AsyncMock(return_value=None)
        client.lrem = AsyncMock(return_value=1)
        client.delete = AsyncMock()
        pipe = MagicMock()
        pipe.execute = AsyncMock()
        ctx = MagicMock()
        ctx.__aenter__.return_value = pipe
        ctx.__aexit__.return_value = False
        client.pipeline = MagicMock(return_value=ctx)
        return pipe

    @pytest.mark.asyncio
    async def test_requeue_claims_dedupe_and_moves_to_waiting(self, store, client, dead):
        assert await store.requeue_dead_letter("job-1") is True

        client.set.assert_awaited_once_with(self.DEDUPE, "job-1", nx=True)
        client.lrem.assert_awaited_once_with("jobs:pagespeed-test:failed", 1, "job-1")
        dead.rpush.assert_called_once_with("jobs:pagespeed-test:waiting", "job-1")
        dead.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_requeue_refused_when_another_job_holds_dedupe(self, store, client, dead):
        client.set.return_value = None
        client.get.return_value = "job-2"

        assert await store.requeue_dead_letter("job-1") is False

        client.lrem.assert_not_awaited()
        dead.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_claim_released_when_job_left_dead_letter_list(self, store, client, dead):
        client.lrem.return_value = 0

        assert await store.requeue_dead_letter("job-1") is False

        client.delete.assert_awaited_once_with(self.DEDUPE)
