"""RedisJobQueue state machine on fakeredis."""

from __future__ import annotations

import pytest

from starsync.queue.jobs import JobConflictError, JobOptions, JobState
from starsync.queue.redis_queue import JobExistsError, RedisJobQueue


@pytest.fixture
def queue(redis_client) -> RedisJobQueue:
    return RedisJobQueue(redis_client, "sync-stars", prefix="test", keep_completed=2)


class TestAddAndLookup:
    async def test_add_creates_waiting_job(self, queue):
        job = await queue.add(
            "sync-stars", {"kind": "sync"}, job_id="j1", opts=JobOptions(attempts=2)
        )

        assert job.id == "j1"
        assert job.state is JobState.WAITING
        assert job.max_attempts == 2
        assert job.attempts_made == 0
        assert job.instance_id
        assert await queue.get_state("j1") is JobState.WAITING

    async def test_duplicate_id_is_rejected(self, queue):
        await queue.add("sync-stars", {}, job_id="j1")
        with pytest.raises(JobExistsError):
            await queue.add("sync-stars", {}, job_id="j1")

    async def test_unknown_job(self, queue):
        assert await queue.get_job("missing") is None
        assert await queue.get_state("missing") is None

    async def test_finished_job_can_be_removed_and_readded(self, queue):
        first = await queue.add("sync-stars", {}, job_id="j1")
        await queue.complete(await queue.fetch_next(), {})

        assert await queue.remove_if_terminal("j1") is JobState.COMPLETED

        second = await queue.add("sync-stars", {}, job_id="j1")
        assert second.instance_id != first.instance_id
        counts = await queue.get_counts()
        assert counts["waiting"] == 1
        assert counts["completed"] == 0

    @pytest.mark.parametrize("take", [False, True])
    async def test_in_flight_job_is_not_removed(self, queue, take):
        await queue.add("sync-stars", {}, job_id="j1")
        if take:
            await queue.fetch_next()
        expected = JobState.ACTIVE if take else JobState.WAITING

        with pytest.raises(JobConflictError) as excinfo:
            await queue.remove_if_terminal("j1")

        assert excinfo.value.state is expected
        assert await queue.get_state("j1") is expected

    async def test_remove_if_terminal_on_unknown_job(self, queue):
        assert await queue.remove_if_terminal("missing") is None

    async def test_delayed_add(self, queue):
        job = await queue.add("sync-stars", {}, job_id="later", opts=JobOptions(delay_ms=60_000))

        assert job.state is JobState.DELAYED
        assert await queue.fetch_next() is None
        assert await queue.promote_delayed() == 0


class TestWorkerSide:
    async def test_fetch_orders_by_priority_then_fifo(self, queue):
        await queue.add("n", {}, job_id="low-1", opts=JobOptions(priority=5))
        await queue.add("n", {}, job_id="high", opts=JobOptions(priority=0))
        await queue.add("n", {}, job_id="low-2", opts=JobOptions(priority=5))

        order = [(await queue.fetch_next()).id for _ in range(3)]

        assert order == ["high", "low-1", "low-2"]
        assert await queue.fetch_next() is None

    async def test_fetch_marks_active_and_counts_attempt(self, queue):
        await queue.add("n", {}, job_id="j1")

        job = await queue.fetch_next("worker-a")

        assert job.state is JobState.ACTIVE
        assert job.attempts_made == 1
        assert job.processed_at is not None
        assert (await queue.get_counts())["active"] == 1

    async def test_complete_stores_return_value(self, queue):
        await queue.add("n", {}, job_id="j1")
        job = await queue.fetch_next()

        await queue.complete(job, {"created": 3})

        stored = await queue.get_job("j1")
        assert stored.state is JobState.COMPLETED
        assert stored.return_value == {"created": 3}
        assert stored.finished_at is not None
        counts = await queue.get_counts()
        assert (counts["active"], counts["completed"]) == (0, 1)

    async def test_retry_then_promote(self, queue):
        await queue.add("n", {}, job_id="j1", opts=JobOptions(attempts=3))
        job = await queue.fetch_next()

        await queue.retry_later(job, 0, "TransientSyncError: boom")

        assert await queue.get_state("j1") is JobState.DELAYED
        assert await queue.promote_delayed() == 1
        again = await queue.fetch_next()
        assert again.attempts_made == 2
        assert again.failed_reason == "TransientSyncError: boom"

    async def test_fail(self, queue):
        await queue.add("n", {}, job_id="j1")
        job = await queue.fetch_next()

        await queue.fail(job, "FatalSyncError: bad")

        stored = await queue.get_job("j1")
        assert stored.state is JobState.FAILED
        assert stored.failed_reason == "FatalSyncError: bad"
        assert (await queue.get_counts())["failed"] == 1

    async def test_completed_history_is_capped(self, queue):
        for index in range(4):
            await queue.add("n", {}, job_id=f"j{index}")
            await queue.complete(await queue.fetch_next())

        assert (await queue.get_counts())["completed"] == 2
        assert await queue.get_job("j0") is None
        assert await queue.get_job("j3") is not None

    async def test_recover_stalled(self, queue, redis_client):
        await queue.add("n", {}, job_id="j1")
        await queue.fetch_next()
        await redis_client.zadd("test:sync-stars:active", {"j1": 0})

        recovered = await queue.recover_stalled(1_000)

        assert recovered == ["j1"]
        assert await queue.get_state("j1") is JobState.WAITING

    async def test_pause_and_resume(self, queue):
        await queue.add("n", {}, job_id="j1")
        await queue.pause()

        assert await queue.get_state("j1") is JobState.PAUSED
        assert await queue.fetch_next() is None
        counts = await queue.get_counts()
        assert (counts["waiting"], counts["paused"]) == (0, 1)

        await queue.resume()
        assert (await queue.fetch_next()).id == "j1"


class TestHousekeeping:
    async def test_clean_respects_grace_and_dry_run(self, queue, redis_client):
        for job_id in ("old", "new"):
            await queue.add("n", {}, job_id=job_id)
            await queue.complete(await queue.fetch_next())
        await redis_client.zadd("test:sync-stars:completed", {"old": 1})

        assert await queue.clean(60_000, JobState.COMPLETED, dry_run=True) == ["old"]
        assert await queue.get_job("old") is not None

        assert await queue.clean(60_000, JobState.COMPLETED) == ["old"]
        assert await queue.get_job("old") is None
        assert await queue.get_job("new") is not None

    async def test_clean_rejects_live_states(self, queue):
        with pytest.raises(ValueError):
            await queue.clean(0, JobState.WAITING)

    async def test_trim_events(self, queue):
        for index in range(5):
            await queue.add("n", {}, job_id=f"j{index}")

        assert await queue.trim_events(2, dry_run=True) == 3
        assert await queue.trim_events(2) == 3
        assert len(await queue.events()) == 2
        assert await queue.trim_events(2) == 0

    async def test_events_record_lifecycle(self, queue):
        await queue.add("n", {}, job_id="j1")
        await queue.complete(await queue.fetch_next())

        events = [entry["event"] for entry in await queue.events()]

        assert events == ["completed", "active", "added"]

    async def test_repeatable_upsert_is_idempotent(self, queue):
        assert await queue.upsert_repeatable("sync-stars", "sync-stars:cron", "0 5 * * *") is True
        assert await queue.upsert_repeatable("sync-stars", "sync-stars:cron", "0 5 * * *") is False
        assert await queue.upsert_repeatable("sync-stars", "sync-stars:cron", "0 6 * * *") is True

        entries = await queue.get_repeatables()
        assert sorted(entry["cron"] for entry in entries) == ["0 5 * * *", "0 6 * * *"]

        key = RedisJobQueue.repeat_key("sync-stars", "sync-stars:cron", "0 6 * * *", "UTC")
        assert await queue.remove_repeatable(key) is True
        assert len(await queue.get_repeatables()) == 1
