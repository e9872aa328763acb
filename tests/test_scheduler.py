from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from starsync.queue.jobs import CRON_SYNC_JOB_ID, MAINTENANCE_JOB_ID
from starsync.queue.orchestrator import JobOrchestrator, build_queues
from starsync.services.scheduler import SchedulerService
from tests.conftest import make_test_app_config


def _orchestrator(cfg, redis_client) -> JobOrchestrator:
    sync_queue, maintenance_queue = build_queues(cfg, redis_client)
    return JobOrchestrator(
        cfg, sync_queue=sync_queue, maintenance_queue=maintenance_queue, state=AsyncMock()
    )


@pytest.mark.asyncio
class TestSchedulerService:
    async def test_registers_recurring_jobs(self, cfg, redis_client):
        orchestrator = _orchestrator(cfg, redis_client)
        scheduler = SchedulerService(cfg, orchestrator)

        await scheduler.start()
        try:
            assert scheduler.is_running
            assert scheduler.get_next_run_time(CRON_SYNC_JOB_ID) is not None
            assert scheduler.get_next_run_time(MAINTENANCE_JOB_ID) is not None
            assert scheduler.get_next_run_time("unknown") is None
        finally:
            await scheduler.stop()

        assert not scheduler.is_running
        assert scheduler.get_next_run_time(CRON_SYNC_JOB_ID) is None

        sync_entries = await orchestrator.sync_queue.get_repeatables()
        assert [(e["job_id"], e["cron"]) for e in sync_entries] == [
            (CRON_SYNC_JOB_ID, "0 5 * * *")
        ]
        maintenance_entries = await orchestrator.maintenance_queue.get_repeatables()
        assert [e["job_id"] for e in maintenance_entries] == [MAINTENANCE_JOB_ID]

    async def test_restart_does_not_duplicate_registrations(self, cfg, redis_client):
        for _ in range(2):
            scheduler = SchedulerService(cfg, _orchestrator(cfg, redis_client))
            await scheduler.start()
            await scheduler.stop()

        orchestrator = _orchestrator(cfg, redis_client)
        assert len(await orchestrator.sync_queue.get_repeatables()) == 1
        assert len(await orchestrator.maintenance_queue.get_repeatables()) == 1

    async def test_maintenance_can_be_disabled(self, tmp_path, redis_client):
        cfg = make_test_app_config(tmp_path / "db.sqlite", maintenance={"enabled": False})
        orchestrator = _orchestrator(cfg, redis_client)
        scheduler = SchedulerService(cfg, orchestrator)

        await scheduler.start()
        try:
            assert scheduler.get_next_run_time(MAINTENANCE_JOB_ID) is None
        finally:
            await scheduler.stop()

        assert await orchestrator.maintenance_queue.get_repeatables() == []

    async def test_start_twice_is_harmless(self, cfg, redis_client):
        scheduler = SchedulerService(cfg, _orchestrator(cfg, redis_client))
        await scheduler.start()
        try:
            await scheduler.start()
            assert scheduler.is_running
        finally:
            await scheduler.stop()

    async def test_failed_registration_leaves_scheduler_stopped(self, cfg, redis_client):
        orchestrator = _orchestrator(cfg, redis_client)
        orchestrator.maintenance_queue.upsert_repeatable = AsyncMock(
            side_effect=RedisConnectionError("refused")
        )
        scheduler = SchedulerService(cfg, orchestrator)

        with pytest.raises(RedisConnectionError):
            await scheduler.start()

        assert not scheduler.is_running
        assert scheduler.get_next_run_time(CRON_SYNC_JOB_ID) is None

        orchestrator.maintenance_queue.upsert_repeatable = AsyncMock(return_value=True)
        await scheduler.start()
        try:
            assert scheduler.get_next_run_time(MAINTENANCE_JOB_ID) is not None
        finally:
            await scheduler.stop()

    async def test_producer_role_starts_scheduler_only(self, tmp_path, redis_client):
        cfg = make_test_app_config(tmp_path / "db.sqlite", queue={"role": "producer"})
        orchestrator = _orchestrator(cfg, redis_client)

        await orchestrator.start()
        try:
            assert orchestrator._workers == []
            assert orchestrator._scheduler is not None
            assert orchestrator._scheduler.is_running
        finally:
            await orchestrator.stop()

        assert orchestrator._scheduler is None
