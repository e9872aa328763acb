"""Job orchestration: enqueue with deduplication, run workers, report outcomes.

Manual runs get a job id derived from their options. A request whose id is
still waiting, delayed, paused or active is rejected with ``JobConflictError``;
a finished one is removed and re-created under the same id. Scheduled runs use
fixed ids and are skipped while the previous firing is in flight.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Any

from starsync.core.logging_utils import generate_correlation_id
from starsync.queue.jobs import (
    CRON_SYNC_JOB_ID,
    MAINTENANCE_JOB_ID,
    MAINTENANCE_JOB_NAME,
    MAINTENANCE_QUEUE,
    SYNC_JOB_NAME,
    SYNC_QUEUE,
    JobConflictError,
    JobOptions,
    JobState,
    MaintenanceTask,
    SyncTask,
    build_manual_job_id,
)
from starsync.queue.redis_queue import JobExistsError, RedisJobQueue
from starsync.queue.worker import JobOutcome, Worker
from starsync.services.scheduler import SchedulerService
from starsync.sync.errors import FatalSyncError
from starsync.sync.types import SyncActor, SyncMode, SyncOptions, SyncStats

if TYPE_CHECKING:
    from redis.asyncio import Redis

    from starsync.config import AppConfig
    from starsync.queue.jobs import Job
    from starsync.services.maintenance import MaintenanceService
    from starsync.services.notifier import Notifier
    from starsync.sync.engine import StarSyncService
    from starsync.sync.state import SyncStateService

logger = logging.getLogger(__name__)

_MAINTENANCE_KEEP = 100


def build_queues(cfg: AppConfig, redis: Redis) -> tuple[RedisJobQueue, RedisJobQueue]:
    """The sync and maintenance queues for this deployment."""
    sync_queue = RedisJobQueue(
        redis,
        SYNC_QUEUE,
        prefix=cfg.queue.prefix,
        keep_completed=cfg.queue.remove_on_complete,
        keep_failed=cfg.queue.remove_on_fail,
    )
    maintenance_queue = RedisJobQueue(
        redis,
        MAINTENANCE_QUEUE,
        prefix=cfg.queue.prefix,
        keep_completed=_MAINTENANCE_KEEP,
        keep_failed=_MAINTENANCE_KEEP,
    )
    return sync_queue, maintenance_queue


class JobOrchestrator:
    """Front door for sync and maintenance jobs.

    Producers call the ``enqueue_*`` methods. In a worker role ``start()``
    also runs one ``Worker`` per queue and a consumer for their outcomes,
    which turns final results into notifications.
    """

    def __init__(
        self,
        cfg: AppConfig,
        *,
        sync_queue: RedisJobQueue,
        maintenance_queue: RedisJobQueue,
        state: SyncStateService,
        engine: StarSyncService | None = None,
        maintenance: MaintenanceService | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self.cfg = cfg
        self.sync_queue = sync_queue
        self.maintenance_queue = maintenance_queue
        self._state = state
        self._engine = engine
        self._maintenance = maintenance
        self._notifier = notifier
        self.outcomes: asyncio.Queue[JobOutcome] = asyncio.Queue()
        self._workers: list[Worker] = []
        self._consumer: asyncio.Task[None] | None = None
        self._scheduler: SchedulerService | None = None

    @property
    def queues(self) -> dict[str, RedisJobQueue]:
        return {SYNC_QUEUE: self.sync_queue, MAINTENANCE_QUEUE: self.maintenance_queue}

    def _job_options(self) -> JobOptions:
        return JobOptions(
            attempts=self.cfg.queue.job_attempts, backoff_ms=self.cfg.queue.job_backoff_ms
        )

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    async def _enqueue_unique(
        self,
        queue: RedisJobQueue,
        name: str,
        job_id: str,
        task: SyncTask | MaintenanceTask,
        opts: JobOptions,
    ) -> Job:
        existing = await queue.get_state(job_id)
        if existing is not None and not existing.terminal:
            raise JobConflictError(job_id, existing)

        previous = await queue.remove_if_terminal(job_id)
        if previous is not None:
            logger.info(
                "job_replaced", extra={"job_id": job_id, "previous_state": previous.value}
            )

        try:
            return await queue.add(
                name, task.model_dump(mode="json", by_alias=True), job_id=job_id, opts=opts
            )
        except JobExistsError as exc:
            state = await queue.get_state(job_id) or JobState.WAITING
            raise JobConflictError(job_id, state) from exc

    async def enqueue_manual_run(
        self,
        options: SyncOptions | None = None,
        *,
        note: str | None = None,
        actor: SyncActor = SyncActor.MANUAL,
    ) -> str:
        """Queue a manual sync and return its job id.

        Raises:
            JobConflictError: An identical run is already queued or running.
        """
        options = options or SyncOptions()
        job_id = build_manual_job_id(options)
        task = SyncTask(options=options, actor=actor, note=note)
        job = await self._enqueue_unique(
            self.sync_queue, SYNC_JOB_NAME, job_id, task, self._job_options()
        )
        logger.info(
            "manual_sync_enqueued",
            extra={"job_id": job.id, "instance_id": job.instance_id, "mode": options.mode.value},
        )
        return job.id

    async def enqueue_scheduled_sync(self) -> str | None:
        """Queue the recurring incremental sync; None when the last one is in flight."""
        task = SyncTask(options=SyncOptions(mode=SyncMode.INCREMENTAL), actor=SyncActor.CRON)
        try:
            job = await self._enqueue_unique(
                self.sync_queue, SYNC_JOB_NAME, CRON_SYNC_JOB_ID, task, self._job_options()
            )
        except JobConflictError as exc:
            logger.info(
                "scheduled_sync_skipped", extra={"job_id": exc.job_id, "state": exc.state.value}
            )
            return None
        logger.info("scheduled_sync_enqueued", extra={"job_id": job.id})
        return job.id

    async def enqueue_maintenance(self, task: MaintenanceTask | None = None) -> str | None:
        task = task or MaintenanceTask()
        opts = JobOptions(attempts=1)
        try:
            job = await self._enqueue_unique(
                self.maintenance_queue, MAINTENANCE_JOB_NAME, MAINTENANCE_JOB_ID, task, opts
            )
        except JobConflictError as exc:
            logger.info(
                "maintenance_skipped", extra={"job_id": exc.job_id, "state": exc.state.value}
            )
            return None
        logger.info("maintenance_enqueued", extra={"job_id": job.id})
        return job.id

    async def get_task_status(
        self, source: str | None = None, key: str | None = None
    ) -> dict[str, Any] | None:
        """Cursor, ETag, run timestamps, last error and stats of one sync task."""
        record = await self._state.get(source or self.cfg.sync.source, key or self.cfg.sync_key)
        return record.to_summary() if record else None

    async def get_queue_counts(self, queue: str = SYNC_QUEUE) -> dict[str, int]:
        return await self.queues[queue].get_counts()

    async def get_all_queue_counts(self) -> dict[str, dict[str, int]]:
        return {name: await q.get_counts() for name, q in self.queues.items()}

    async def get_job(self, job_id: str, queue: str = SYNC_QUEUE) -> Job | None:
        return await self.queues[queue].get_job(job_id)

    # ------------------------------------------------------------------
    # Processors
    # ------------------------------------------------------------------

    async def process_sync(self, job: Job) -> dict[str, Any]:
        task = job.task
        if not isinstance(task, SyncTask):
            msg = f"Job {job.id} does not carry a sync task"
            raise FatalSyncError(msg)
        if self._engine is None:
            msg = "Sync engine is not configured for this process"
            raise FatalSyncError(msg)
        cid = generate_correlation_id()
        logger.info(
            "sync_job_processing",
            extra={"cid": cid, "job_id": job.id, "actor": task.actor.value, "note": task.note},
        )
        outcome = await self._engine.run(task.options, cid=cid)
        return outcome.unwrap().model_dump(mode="json", by_alias=True)

    async def process_maintenance(self, job: Job) -> dict[str, Any]:
        task = job.task
        if not isinstance(task, MaintenanceTask):
            msg = f"Job {job.id} does not carry a maintenance task"
            raise FatalSyncError(msg)
        if self._maintenance is None:
            msg = "Maintenance service is not configured for this process"
            raise FatalSyncError(msg)
        summary = await self._maintenance.run(task.options)
        return summary.model_dump(mode="json")

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    async def handle_outcome(self, outcome: JobOutcome) -> None:
        """Emit the notification matching one finished attempt."""
        if self._notifier is None or not self.cfg.notify.enabled:
            return
        if not outcome.ok and not outcome.final:
            return

        job_id = outcome.job.id
        if outcome.queue == SYNC_QUEUE:
            if outcome.ok:
                stats = SyncStats.model_validate(outcome.result or {})
                await self._notifier.notify_run_succeeded(job_id, stats)
            else:
                await self._notifier.notify_run_failed(job_id, outcome.error)
        elif outcome.queue == MAINTENANCE_QUEUE:
            if outcome.ok:
                await self._notifier.notify_maintenance_succeeded(job_id, outcome.result or {})
            else:
                await self._notifier.notify_maintenance_failed(job_id, outcome.error)

    async def _consume_outcomes(self) -> None:
        while True:
            outcome = await self.outcomes.get()
            try:
                await self.handle_outcome(outcome)
            except Exception:
                logger.warning(
                    "notification_failed",
                    exc_info=True,
                    extra={"queue": outcome.queue, "job_id": outcome.job.id},
                )
            finally:
                self.outcomes.task_done()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        role = self.cfg.queue.role
        if role in ("both", "worker"):
            self._workers = [
                Worker(
                    self.sync_queue,
                    self.process_sync,
                    concurrency=self.cfg.queue.concurrency,
                    poll_interval=self.cfg.queue.poll_interval_sec,
                    stalled_after_sec=self.cfg.queue.stalled_after_sec,
                    outcomes=self.outcomes,
                ),
                Worker(
                    self.maintenance_queue,
                    self.process_maintenance,
                    concurrency=1,
                    poll_interval=self.cfg.queue.poll_interval_sec,
                    stalled_after_sec=self.cfg.queue.stalled_after_sec,
                    outcomes=self.outcomes,
                ),
            ]
            for worker in self._workers:
                await worker.start()
            self._consumer = asyncio.create_task(self._consume_outcomes(), name="job-outcomes")

        if role in ("both", "producer"):
            self._scheduler = SchedulerService(self.cfg, self)
            await self._scheduler.start()

        logger.info("orchestrator_started", extra={"role": role, "workers": len(self._workers)})

    async def stop(self, timeout: float = 30.0) -> None:
        if self._scheduler is not None:
            await self._scheduler.stop()
            self._scheduler = None
        for worker in self._workers:
            await worker.stop(timeout)
        self._workers = []
        if self._consumer is not None:
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self.outcomes.join(), timeout=5.0)
            self._consumer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._consumer
            self._consumer = None
        logger.info("orchestrator_stopped")
