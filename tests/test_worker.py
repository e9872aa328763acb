from __future__ import annotations

import asyncio

import pytest

from starsync.queue.jobs import Job, JobOptions, JobState
from starsync.queue.redis_queue import RedisJobQueue
from starsync.queue.worker import JobOutcome, Worker, compute_retry_delay
from starsync.sync.errors import FatalSyncError, RateLimitedError, TransientSyncError


def _job(**overrides) -> Job:
    fields = {
        "id": "j1",
        "name": "sync-stars",
        "data": {},
        "state": JobState.ACTIVE,
        "instance_id": "i1",
        "attempts_made": 1,
        "max_attempts": 3,
        "backoff_ms": 1_000,
    }
    fields.update(overrides)
    return Job(**fields)


class TestComputeRetryDelay:
    def test_retryable_uses_backoff(self):
        assert compute_retry_delay(_job(), TransientSyncError("x")) == 1_000

    def test_rate_limit_waits_at_least_retry_after(self):
        assert compute_retry_delay(_job(), RateLimitedError(retry_after_sec=60)) == 60_000
        slow = _job(backoff_ms=90_000)
        assert compute_retry_delay(slow, RateLimitedError(retry_after_sec=5)) == 90_000

    def test_fatal_never_retries(self):
        assert compute_retry_delay(_job(), FatalSyncError("x")) is None

    def test_last_attempt_never_retries(self):
        assert compute_retry_delay(_job(attempts_made=3), TransientSyncError("x")) is None

    def test_plain_exceptions_are_retryable(self):
        assert compute_retry_delay(_job(), RuntimeError("x")) == 1_000


@pytest.fixture
def queue(redis_client) -> RedisJobQueue:
    return RedisJobQueue(redis_client, "sync-stars", prefix="test")


class TestRunOnce:
    async def test_idle_queue(self, queue):
        worker = Worker(queue, processor=lambda job: asyncio.sleep(0))
        assert await worker.run_once() is None

    async def test_success_completes_job(self, queue):
        outcomes: asyncio.Queue[JobOutcome] = asyncio.Queue()

        async def processor(job: Job) -> dict:
            return {"created": 1}

        worker = Worker(queue, processor, outcomes=outcomes)
        await queue.add("sync-stars", {}, job_id="j1")

        outcome = await worker.run_once()

        assert outcome.ok
        assert outcome.final
        assert outcome.result == {"created": 1}
        assert outcomes.get_nowait() is outcome
        assert (await queue.get_job("j1")).return_value == {"created": 1}

    async def test_retryable_failure_is_delayed(self, queue):
        async def processor(job: Job) -> None:
            raise TransientSyncError("GitHub returned 502")

        worker = Worker(queue, processor)
        await queue.add("sync-stars", {}, job_id="j1", opts=JobOptions(attempts=3, backoff_ms=0))

        outcome = await worker.run_once()

        assert not outcome.ok
        assert not outcome.final
        assert outcome.retry_in_ms == 0
        job = await queue.get_job("j1")
        assert job.state is JobState.DELAYED
        assert "502" in job.failed_reason

        again = await worker.run_once()
        assert again.job.attempts_made == 2

    async def test_attempts_exhausted(self, queue):
        async def processor(job: Job) -> None:
            raise TransientSyncError("still down")

        worker = Worker(queue, processor)
        await queue.add("sync-stars", {}, job_id="j1", opts=JobOptions(attempts=2, backoff_ms=0))

        first = await worker.run_once()
        second = await worker.run_once()

        assert not first.final
        assert second.final
        assert await queue.get_state("j1") is JobState.FAILED

    async def test_fatal_fails_immediately(self, queue):
        async def processor(job: Job) -> None:
            raise FatalSyncError("malformed response")

        worker = Worker(queue, processor)
        await queue.add("sync-stars", {}, job_id="j1", opts=JobOptions(attempts=5))

        outcome = await worker.run_once()

        assert outcome.final
        job = await queue.get_job("j1")
        assert job.state is JobState.FAILED
        assert job.attempts_made == 1
        assert job.failed_reason == "FatalSyncError: malformed response"


class TestLifecycle:
    async def test_start_processes_until_stopped(self, queue):
        outcomes: asyncio.Queue[JobOutcome] = asyncio.Queue()
        processed: list[str] = []

        async def processor(job: Job) -> None:
            processed.append(job.id)

        worker = Worker(queue, processor, concurrency=2, poll_interval=0.01, outcomes=outcomes)
        await worker.start()
        assert worker.is_running
        try:
            await queue.add("sync-stars", {}, job_id="a")
            await queue.add("sync-stars", {}, job_id="b")
            first = await asyncio.wait_for(outcomes.get(), timeout=5)
            second = await asyncio.wait_for(outcomes.get(), timeout=5)
        finally:
            await worker.stop(timeout=5)

        assert {first.job.id, second.job.id} == {"a", "b"}
        assert sorted(processed) == ["a", "b"]
        assert not worker.is_running
