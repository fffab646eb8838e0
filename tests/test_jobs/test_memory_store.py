"""Tests for InMemoryJobStore lease, retry and dead-letter semantics."""

import pytest

from src.jobs.config import JobsConfig
from src.jobs.exceptions import LeaseLostError, PayloadValidationError
from src.jobs.memory_store import InMemoryJobStore
from src.jobs.schemas import EnqueueOptions, FailOutcome, JobKind, JobState
from src.jobs.store import MAX_ATTEMPTS_EXCEEDED

SCORE_PAYLOAD = {"site_id": "site-1", "organization_id": "org-1"}


@pytest.fixture
def store(clock):
    return InMemoryJobStore(JobsConfig(), clock=clock)


class TestEnqueue:
    """Enqueue validation, defaults and dedupe."""

    @pytest.mark.asyncio
    async def test_applies_kind_defaults(self, store):
        result = await store.enqueue(JobKind.SCORE_CALCULATION, SCORE_PAYLOAD)
        job = await store.get_job(result.job_id)

        assert result.created is True
        assert job.state == JobState.WAITING
        assert job.max_attempts == 3
        assert job.backoff.base_delay == 2.0

    @pytest.mark.asyncio
    async def test_invalid_payload_rejected(self, store):
        with pytest.raises(PayloadValidationError):
            await store.enqueue(JobKind.PAGESPEED_TEST, {"site_id": "s", "organization_id": "o"})

    @pytest.mark.asyncio
    async def test_dedupe_returns_pending_job(self, store):
        options = EnqueueOptions(dedupe_key="score-calculation:site-1")
        first = await store.enqueue(JobKind.SCORE_CALCULATION, SCORE_PAYLOAD, options)
        second = await store.enqueue(JobKind.SCORE_CALCULATION, SCORE_PAYLOAD, options)

        assert second.created is False
        assert second.job_id == first.job_id
        status = await store.get_status(JobKind.SCORE_CALCULATION)
        assert status.waiting == 1

    @pytest.mark.asyncio
    async def test_dedupe_released_after_completion(self, store):
        options = EnqueueOptions(dedupe_key="score-calculation:site-1")
        first = await store.enqueue(JobKind.SCORE_CALCULATION, SCORE_PAYLOAD, options)
        job = await store.lease(JobKind.SCORE_CALCULATION, 60)
        await store.ack(job.job_id, job.lease_token)

        again = await store.enqueue(JobKind.SCORE_CALCULATION, SCORE_PAYLOAD, options)
        assert again.created is True
        assert again.job_id != first.job_id

    @pytest.mark.asyncio
    async def test_delayed_job_not_leased_early(self, store, clock):
        await store.enqueue(
            JobKind.SCORE_CALCULATION, SCORE_PAYLOAD, EnqueueOptions(delay_seconds=30)
        )
        assert await store.lease(JobKind.SCORE_CALCULATION, 60) is None

        clock.advance(31)
        assert await store.lease(JobKind.SCORE_CALCULATION, 60) is not None


class TestLeaseAndSettle:
    """Exactly one ack or fail per lease."""

    @pytest.mark.asyncio
    async def test_lease_increments_attempts(self, store):
        await store.enqueue(JobKind.SCORE_CALCULATION, SCORE_PAYLOAD)
        job = await store.lease(JobKind.SCORE_CALCULATION, 60)

        assert job.attempts == 1
        assert job.state == JobState.ACTIVE
        assert job.lease_token

    @pytest.mark.asyncio
    async def test_lease_empty_queue(self, store):
        assert await store.lease(JobKind.SITE_CRAWL, 60) is None

    @pytest.mark.asyncio
    async def test_ack_then_fail_raises(self, store):
        await store.enqueue(JobKind.SCORE_CALCULATION, SCORE_PAYLOAD)
        job = await store.lease(JobKind.SCORE_CALCULATION, 60)
        await store.ack(job.job_id, job.lease_token)

        with pytest.raises(LeaseLostError):
            await store.fail(job.job_id, job.lease_token, "boom")
        with pytest.raises(LeaseLostError):
            await store.ack(job.job_id, job.lease_token)

    @pytest.mark.asyncio
    async def test_stale_token_after_expiry(self, store, clock):
        await store.enqueue(JobKind.SCORE_CALCULATION, SCORE_PAYLOAD)
        first = await store.lease(JobKind.SCORE_CALCULATION, 10)

        clock.advance(11)
        second = await store.lease(JobKind.SCORE_CALCULATION, 10)

        assert second.job_id == first.job_id
        assert second.attempts == 2
        with pytest.raises(LeaseLostError):
            await store.ack(first.job_id, first.lease_token)
        await store.ack(second.job_id, second.lease_token)

    @pytest.mark.asyncio
    async def test_extend_lease(self, store, clock):
        await store.enqueue(JobKind.SCORE_CALCULATION, SCORE_PAYLOAD)
        job = await store.lease(JobKind.SCORE_CALCULATION, 10)

        clock.advance(8)
        assert await store.extend_lease(job.job_id, job.lease_token, 10) is True
        clock.advance(8)
        # Still held: the extension moved expiry past the original deadline
        assert await store.lease(JobKind.SCORE_CALCULATION, 10) is None
        assert await store.extend_lease(job.job_id, "wrong-token", 10) is False


class TestRetryAndDeadLetter:
    """Backoff scheduling and the dead-letter view."""

    @pytest.mark.asyncio
    async def test_retry_uses_backoff(self, store, clock):
        await store.enqueue(JobKind.SEARCH_SYNC, SCORE_PAYLOAD)
        job = await store.lease(JobKind.SEARCH_SYNC, 60)

        outcome = await store.fail(job.job_id, job.lease_token, "timeout")
        assert outcome == FailOutcome.RETRY_SCHEDULED

        # Base delay for search-sync is 5s
        clock.advance(4)
        assert await store.lease(JobKind.SEARCH_SYNC, 60) is None
        clock.advance(2)
        retried = await store.lease(JobKind.SEARCH_SYNC, 60)
        assert retried.attempts == 2
        assert retried.last_error == "timeout"

    @pytest.mark.asyncio
    async def test_dead_letter_after_max_attempts(self, store, clock):
        await store.enqueue(JobKind.PAGESPEED_TEST, {
            **SCORE_PAYLOAD, "url": "https://example.com", "device": "MOBILE",
        })
        job = await store.lease(JobKind.PAGESPEED_TEST, 60)
        assert await store.fail(job.job_id, job.lease_token, "503") == FailOutcome.RETRY_SCHEDULED

        clock.advance(11)
        job = await store.lease(JobKind.PAGESPEED_TEST, 60)
        outcome = await store.fail(job.job_id, job.lease_token, "503 again")

        assert outcome == FailOutcome.DEAD_LETTERED
        dead = await store.list_dead_letters(JobKind.PAGESPEED_TEST)
        assert [j.job_id for j in dead] == [job.job_id]
        assert dead[0].last_error == "503 again"
        status = await store.get_status(JobKind.PAGESPEED_TEST)
        assert status.failed == 1
        assert status.delayed == 0

    @pytest.mark.asyncio
    async def test_non_retryable_dead_letters_immediately(self, store):
        await store.enqueue(JobKind.SEARCH_SYNC, SCORE_PAYLOAD)
        job = await store.lease(JobKind.SEARCH_SYNC, 60)

        outcome = await store.fail(job.job_id, job.lease_token, "bad payload", retryable=False)
        assert outcome == FailOutcome.DEAD_LETTERED

    @pytest.mark.asyncio
    async def test_expired_final_attempt_dead_lettered(self, store, clock):
        await store.enqueue(
            JobKind.SCORE_CALCULATION, SCORE_PAYLOAD, EnqueueOptions(max_attempts=1)
        )
        job = await store.lease(JobKind.SCORE_CALCULATION, 10)

        clock.advance(11)
        assert await store.lease(JobKind.SCORE_CALCULATION, 10) is None

        stored = await store.get_job(job.job_id)
        assert stored.state == JobState.FAILED
        assert stored.last_error == MAX_ATTEMPTS_EXCEEDED

    @pytest.mark.asyncio
    async def test_requeue_dead_letter(self, store):
        await store.enqueue(JobKind.SEARCH_SYNC, SCORE_PAYLOAD)
        job = await store.lease(JobKind.SEARCH_SYNC, 60)
        await store.fail(job.job_id, job.lease_token, "fatal", retryable=False)

        assert await store.requeue_dead_letter(job.job_id) is True
        assert await store.requeue_dead_letter(job.job_id) is False

        leased = await store.lease(JobKind.SEARCH_SYNC, 60)
        assert leased.job_id == job.job_id
        assert leased.attempts == 1

    @pytest.mark.asyncio
    async def test_requeue_refused_while_dedupe_key_is_held(self, store):
        options = EnqueueOptions(dedupe_key="search-sync:site-1")
        await store.enqueue(JobKind.SEARCH_SYNC, SCORE_PAYLOAD, options)
        job = await store.lease(JobKind.SEARCH_SYNC, 60)
        await store.fail(job.job_id, job.lease_token, "fatal", retryable=False)
        replacement = await store.enqueue(JobKind.SEARCH_SYNC, SCORE_PAYLOAD, options)
        assert replacement.created is True

        assert await store.requeue_dead_letter(job.job_id) is False

        assert (await store.get_job(job.job_id)).state == JobState.FAILED
        assert [j.job_id for j in await store.list_dead_letters(JobKind.SEARCH_SYNC)] == [job.job_id]
        status = await store.get_status(JobKind.SEARCH_SYNC)
        assert status.waiting == 1

    @pytest.mark.asyncio
    async def test_requeue_reclaims_free_dedupe_key(self, store):
        options = EnqueueOptions(dedupe_key="search-sync:site-1")
        await store.enqueue(JobKind.SEARCH_SYNC, SCORE_PAYLOAD, options)
        job = await store.lease(JobKind.SEARCH_SYNC, 60)
        await store.fail(job.job_id, job.lease_token, "fatal", retryable=False)

        assert await store.requeue_dead_letter(job.job_id) is True

        again = await store.enqueue(JobKind.SEARCH_SYNC, SCORE_PAYLOAD, options)
        assert again.created is False
        assert again.job_id == job.job_id
