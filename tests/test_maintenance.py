"""Refresh-token purge and queue housekeeping."""

from __future__ import annotations

from datetime import timedelta

import pytest

from starsync.core.time_utils import utc_now
from starsync.db.models import RefreshToken
from starsync.infrastructure.persistence.sqlite.repositories import (
    SqliteRefreshTokenRepositoryAdapter,
)
from starsync.queue.jobs import MaintenanceOptions
from starsync.queue.orchestrator import build_queues
from starsync.queue.redis_queue import RedisJobQueue
from starsync.services.maintenance import LOCK_HELD_MESSAGE, MaintenanceService
from tests.conftest import make_test_app_config


def _seed_tokens() -> None:
    now = utc_now()
    RefreshToken.create(user_id=1, token_hash="expired-1", expires_at=now - timedelta(days=2))
    RefreshToken.create(user_id=1, token_hash="expired-2", expires_at=now - timedelta(hours=1))
    RefreshToken.create(user_id=1, token_hash="live", expires_at=now + timedelta(days=2))
    RefreshToken.create(
        user_id=1,
        token_hash="revoked-old",
        expires_at=now + timedelta(days=20),
        revoked=True,
        revoked_at=now - timedelta(days=10),
    )
    RefreshToken.create(
        user_id=1,
        token_hash="revoked-new",
        expires_at=now + timedelta(days=20),
        revoked=True,
        revoked_at=now - timedelta(days=1),
    )


@pytest.fixture
def queues(cfg, redis_client) -> tuple[RedisJobQueue, RedisJobQueue]:
    return build_queues(cfg, redis_client)


def _service(cfg, db, redis_client, queues=()) -> MaintenanceService:
    return MaintenanceService(
        cfg, tokens=SqliteRefreshTokenRepositoryAdapter(db), queues=queues, redis=redis_client
    )


class TestRefreshTokenCleanup:
    async def test_dry_run_only_counts(self, cfg, db, redis_client):
        _seed_tokens()

        result = await _service(cfg, db, redis_client).cleanup_refresh_tokens()

        assert result.dry_run is True
        assert result.expired_candidates == 2
        assert result.revoked_candidates == 1
        assert result.deleted_expired == result.deleted_revoked == 0
        assert RefreshToken.select().count() == 5

    async def test_deletes_in_batches(self, tmp_path, db, redis_client):
        cfg = make_test_app_config(tmp_path / "starsync.db", maintenance={"rt_batch_size": 1})
        _seed_tokens()

        result = await _service(cfg, db, redis_client).cleanup_refresh_tokens(dry_run=False)

        assert result.deleted_expired == 2
        assert result.deleted_revoked == 1
        remaining = {row.token_hash for row in RefreshToken.select()}
        assert remaining == {"live", "revoked-new"}

    async def test_held_lock_skips_cleanup(self, cfg, db, redis_client):
        _seed_tokens()
        await redis_client.set("test:lock:cleanup:rt", "someone-else")

        result = await _service(cfg, db, redis_client).cleanup_refresh_tokens(dry_run=False)

        assert result.locked is True
        assert result.message == LOCK_HELD_MESSAGE
        assert result.deleted_expired == 0
        assert RefreshToken.select().count() == 5
        assert await redis_client.get("test:lock:cleanup:rt") == "someone-else"

    async def test_lock_released_after_run(self, cfg, db, redis_client):
        await _service(cfg, db, redis_client).cleanup_refresh_tokens()
        assert await redis_client.get("test:lock:cleanup:rt") is None

    async def test_lock_can_be_skipped(self, cfg, db, redis_client):
        _seed_tokens()
        await redis_client.set("test:lock:cleanup:rt", "someone-else")

        result = await _service(cfg, db, redis_client).cleanup_refresh_tokens(use_lock=False)

        assert result.locked is False
        assert result.expired_candidates == 2

    async def test_without_redis_runs_unlocked(self, cfg, db):
        _seed_tokens()
        service = MaintenanceService(cfg, tokens=SqliteRefreshTokenRepositoryAdapter(db))

        result = await service.cleanup_refresh_tokens(use_lock=True)

        assert result.locked is False
        assert result.expired_candidates == 2


class TestQueueCleanup:
    @staticmethod
    async def _seed_queue(queue: RedisJobQueue, redis_client) -> None:
        for job_id in ("old-done", "new-done", "old-failed"):
            await queue.add(queue.name, {}, job_id=job_id)
        await queue.complete(await queue.fetch_next())
        await queue.complete(await queue.fetch_next())
        await queue.fail(await queue.fetch_next(), "boom")
        await redis_client.zadd(f"test:{queue.name}:completed", {"old-done": 1})
        await redis_client.zadd(f"test:{queue.name}:failed", {"old-failed": 1})
        await queue.upsert_repeatable("sync-stars", "sync-stars:cron", "0 5 * * *")
        await queue.upsert_repeatable("sync-stars", "sync-stars:cron", "*/5 * * * *")

    async def test_removes_aged_jobs_and_stale_schedules(self, cfg, db, redis_client, queues):
        sync_queue, _ = queues
        await self._seed_queue(sync_queue, redis_client)

        result = await _service(cfg, db, redis_client).cleanup_queue(sync_queue, dry_run=False)

        assert result.completed_removed == 1
        assert result.failed_removed == 1
        stale_key = RedisJobQueue.repeat_key("sync-stars", "sync-stars:cron", "*/5 * * * *", "UTC")
        assert result.repeatables_removed == [stale_key]
        assert await sync_queue.get_job("old-done") is None
        assert await sync_queue.get_job("old-failed") is None
        assert await sync_queue.get_job("new-done") is not None
        remaining = await sync_queue.get_repeatables()
        assert [entry["cron"] for entry in remaining] == ["0 5 * * *"]

    async def test_dry_run_reports_without_removing(self, cfg, db, redis_client, queues):
        sync_queue, _ = queues
        await self._seed_queue(sync_queue, redis_client)

        result = await _service(cfg, db, redis_client).cleanup_queue(sync_queue)

        assert result.dry_run is True
        assert result.completed_removed == 1
        assert len(result.repeatables_removed) == 1
        assert await sync_queue.get_job("old-done") is not None
        assert len(await sync_queue.get_repeatables()) == 2

    async def test_event_stream_is_trimmed(self, tmp_path, db, redis_client, queues):
        cfg = make_test_app_config(tmp_path / "starsync.db", maintenance={"trim_events": 2})
        sync_queue, _ = queues
        for index in range(5):
            await sync_queue.add("sync-stars", {}, job_id=f"j{index}")

        result = await _service(cfg, db, redis_client).cleanup_queue(sync_queue, dry_run=False)

        assert result.events_trimmed == 3
        assert len(await sync_queue.events()) == 2

    async def test_held_queue_lock(self, cfg, db, redis_client, queues):
        sync_queue, _ = queues
        await redis_client.set("test:lock:cleanup:queue:sync-stars", "someone-else")

        result = await _service(cfg, db, redis_client).cleanup_queue(sync_queue, dry_run=False)

        assert result.locked is True
        assert result.message == LOCK_HELD_MESSAGE


class TestMaintenanceRun:
    async def test_summary_covers_every_step(self, cfg, db, redis_client, queues):
        _seed_tokens()
        service = _service(cfg, db, redis_client, queues)

        summary = await service.run(
            MaintenanceOptions(rt_dry_run=False, queue_dry_run=False), cid="abc123"
        )

        assert summary.cid == "abc123"
        assert summary.refresh_tokens.deleted_expired == 2
        assert [q.queue for q in summary.queues] == ["sync-stars", "maintenance"]
        assert all(not q.locked for q in summary.queues)
        dumped = summary.model_dump(mode="json")
        assert dumped["refresh_tokens"]["dry_run"] is False
