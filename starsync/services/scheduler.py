"""Background scheduler for recurring sync and maintenance jobs."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from starsync.queue.jobs import (
    CRON_SYNC_JOB_ID,
    MAINTENANCE_JOB_ID,
    MAINTENANCE_JOB_NAME,
    SYNC_JOB_NAME,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from datetime import datetime

    from starsync.config import AppConfig
    from starsync.queue.orchestrator import JobOrchestrator
    from starsync.queue.redis_queue import RedisJobQueue

logger = logging.getLogger(__name__)


class SchedulerService:
    """Fires the cron-driven jobs into the durable queues."""

    def __init__(self, cfg: AppConfig, orchestrator: JobOrchestrator) -> None:
        """Initialize scheduler service.

        Args:
            cfg: Application configuration
            orchestrator: Enqueues the fired jobs under their fixed ids
        """
        self.cfg = cfg
        self.orchestrator = orchestrator
        self._scheduler: AsyncIOScheduler | None = None
        self._started = False

    async def start(self) -> None:
        """Register recurring jobs and start the scheduler."""
        if self._started:
            logger.warning("scheduler_already_started")
            return

        scheduler = AsyncIOScheduler(timezone=self.cfg.queue.timezone)

        await self._register(
            scheduler,
            queue=self.orchestrator.sync_queue,
            job_id=CRON_SYNC_JOB_ID,
            name=SYNC_JOB_NAME,
            cron=self.cfg.queue.sync_cron,
            func=self.orchestrator.enqueue_scheduled_sync,
        )

        if self.cfg.maintenance.enabled:
            await self._register(
                scheduler,
                queue=self.orchestrator.maintenance_queue,
                job_id=MAINTENANCE_JOB_ID,
                name=MAINTENANCE_JOB_NAME,
                cron=self.cfg.maintenance.cron,
                func=self.orchestrator.enqueue_maintenance,
            )
        else:
            logger.info("scheduler_maintenance_job_skipped", extra={"enabled": False})

        scheduler.start()
        self._scheduler = scheduler
        self._started = True
        logger.info("scheduler_started")

    async def _register(
        self,
        scheduler: AsyncIOScheduler,
        *,
        queue: RedisJobQueue,
        job_id: str,
        name: str,
        cron: str,
        func: Callable[[], Awaitable[object]],
    ) -> None:
        tz = self.cfg.queue.timezone
        scheduler.add_job(
            func,
            trigger=CronTrigger.from_crontab(cron, timezone=tz),
            id=job_id,
            name=name,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        created = await queue.upsert_repeatable(name, job_id, cron, tz)
        logger.info(
            "scheduler_job_registered",
            extra={"job_id": job_id, "cron": cron, "tz": tz, "new_registration": created},
        )

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if self._scheduler and self._started:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            self._started = False
            logger.info("scheduler_stopped")

    def get_next_run_time(self, job_id: str) -> datetime | None:
        """Next fire time for a job, or None when unknown or not started."""
        if not self._scheduler or not self._started:
            return None
        job = self._scheduler.get_job(job_id)
        return job.next_run_time if job else None

    @property
    def is_running(self) -> bool:
        return self._started and self._scheduler is not None
