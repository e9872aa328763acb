"""Periodic cleanup of refresh tokens and queue history.

Both steps can run under a Redis lock so only one process performs
destructive cleanup at a time. Finding the lock held is a normal outcome,
reported with ``locked=True``.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from starsync.core.logging_utils import generate_correlation_id
from starsync.core.time_utils import utc_now
from starsync.infrastructure.locks import RedisLock
from starsync.infrastructure.redis import redis_key
from starsync.queue.jobs import (
    MAINTENANCE_JOB_NAME,
    MAINTENANCE_QUEUE,
    SYNC_JOB_NAME,
    SYNC_QUEUE,
    JobState,
    MaintenanceOptions,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from redis.asyncio import Redis

    from starsync.config import AppConfig
    from starsync.queue.redis_queue import RedisJobQueue
    from starsync.sync.protocols import RefreshTokenRepository

logger = logging.getLogger(__name__)

LOCK_HELD_MESSAGE = "another cleanup is running"
_DAY_MS = 86_400_000


class RefreshTokenCleanup(BaseModel):
    locked: bool = False
    message: str | None = None
    dry_run: bool = True
    expired_cutoff: datetime | None = None
    revoked_cutoff: datetime | None = None
    expired_candidates: int = 0
    revoked_candidates: int = 0
    deleted_expired: int = 0
    deleted_revoked: int = 0


class QueueCleanup(BaseModel):
    queue: str
    locked: bool = False
    message: str | None = None
    dry_run: bool = True
    completed_removed: int = 0
    failed_removed: int = 0
    events_trimmed: int = 0
    repeatables_removed: list[str] = Field(default_factory=list)


class MaintenanceSummary(BaseModel):
    cid: str
    started_at: datetime
    duration_ms: int = 0
    refresh_tokens: RefreshTokenCleanup
    queues: list[QueueCleanup] = Field(default_factory=list)


class MaintenanceService:
    """Runs the cleanup steps configured in ``cfg.maintenance``."""

    def __init__(
        self,
        cfg: AppConfig,
        *,
        tokens: RefreshTokenRepository,
        queues: Sequence[RedisJobQueue] = (),
        redis: Redis | None = None,
    ) -> None:
        self.cfg = cfg
        self._tokens = tokens
        self._queues = list(queues)
        self._redis = redis

    def _expected_schedule(self, queue_name: str) -> tuple[str, str] | None:
        if queue_name == SYNC_QUEUE:
            return SYNC_JOB_NAME, self.cfg.queue.sync_cron
        if queue_name == MAINTENANCE_QUEUE:
            return MAINTENANCE_JOB_NAME, self.cfg.maintenance.cron
        return None

    @asynccontextmanager
    async def _guard(self, name: str, use_lock: bool) -> AsyncIterator[bool]:
        """Yield False when another process holds the lock."""
        if not use_lock:
            yield True
            return
        if self._redis is None:
            logger.warning("maintenance_lock_unavailable", extra={"lock": name})
            yield True
            return

        lock = RedisLock(
            self._redis,
            redis_key(self.cfg.redis.prefix, "lock", "cleanup", name),
            ttl_ms=self.cfg.maintenance.lock_ttl_seconds * 1000,
        )
        handle = await lock.acquire()
        if handle is None:
            yield False
            return
        try:
            yield True
        finally:
            await lock.release(handle)

    async def run(
        self, options: MaintenanceOptions | None = None, *, cid: str | None = None
    ) -> MaintenanceSummary:
        options = options or MaintenanceOptions()
        cid = cid or generate_correlation_id()
        started_at = utc_now()
        started = time.perf_counter()
        logger.info("maintenance_started", extra={"cid": cid, "queues": len(self._queues)})

        tokens = await self.cleanup_refresh_tokens(
            dry_run=options.rt_dry_run, use_lock=options.use_lock
        )
        queues = [
            await self.cleanup_queue(
                queue, dry_run=options.queue_dry_run, use_lock=options.use_lock
            )
            for queue in self._queues
        ]

        summary = MaintenanceSummary(
            cid=cid,
            started_at=started_at,
            duration_ms=int((time.perf_counter() - started) * 1000),
            refresh_tokens=tokens,
            queues=queues,
        )
        logger.info(
            "maintenance_completed",
            extra={"cid": cid, "duration_ms": summary.duration_ms},
        )
        return summary

    async def cleanup_refresh_tokens(
        self, *, dry_run: bool | None = None, use_lock: bool | None = None
    ) -> RefreshTokenCleanup:
        """Purge expired and long-revoked refresh tokens in batches."""
        mcfg = self.cfg.maintenance
        dry_run = mcfg.rt_dry_run if dry_run is None else dry_run
        use_lock = mcfg.use_lock if use_lock is None else use_lock

        async with self._guard("rt", use_lock) as acquired:
            if not acquired:
                logger.info("refresh_token_cleanup_locked")
                return RefreshTokenCleanup(
                    locked=True, message=LOCK_HELD_MESSAGE, dry_run=dry_run
                )

            now = utc_now()
            result = RefreshTokenCleanup(
                dry_run=dry_run,
                expired_cutoff=now - timedelta(days=mcfg.rt_expired_clean_after_days),
                revoked_cutoff=now - timedelta(days=mcfg.rt_revoked_retention_days),
            )
            result.expired_candidates = await self._tokens.async_count_expired_before(
                result.expired_cutoff
            )
            result.revoked_candidates = await self._tokens.async_count_revoked_before(
                result.revoked_cutoff
            )

            if not dry_run:
                batch = mcfg.rt_batch_size
                while True:
                    deleted = await self._tokens.async_delete_expired_batch(
                        result.expired_cutoff, limit=batch
                    )
                    result.deleted_expired += deleted
                    if deleted < batch:
                        break
                while True:
                    deleted = await self._tokens.async_delete_revoked_batch(
                        result.revoked_cutoff, limit=batch
                    )
                    result.deleted_revoked += deleted
                    if deleted < batch:
                        break

            logger.info(
                "refresh_token_cleanup_done",
                extra=result.model_dump(mode="json", exclude={"message"}),
            )
            return result

    async def cleanup_queue(
        self, queue: RedisJobQueue, *, dry_run: bool | None = None, use_lock: bool | None = None
    ) -> QueueCleanup:
        """Remove aged finished jobs and stale schedules, then cap the event stream."""
        mcfg = self.cfg.maintenance
        dry_run = mcfg.queue_dry_run if dry_run is None else dry_run
        use_lock = mcfg.use_lock if use_lock is None else use_lock

        async with self._guard(f"queue:{queue.name}", use_lock) as acquired:
            if not acquired:
                logger.info("queue_cleanup_locked", extra={"queue": queue.name})
                return QueueCleanup(
                    queue=queue.name, locked=True, message=LOCK_HELD_MESSAGE, dry_run=dry_run
                )

            result = QueueCleanup(queue=queue.name, dry_run=dry_run)
            completed = await queue.clean(
                mcfg.completed_after_days * _DAY_MS, JobState.COMPLETED, dry_run=dry_run
            )
            failed = await queue.clean(
                mcfg.failed_after_days * _DAY_MS, JobState.FAILED, dry_run=dry_run
            )
            result.completed_removed = len(completed)
            result.failed_removed = len(failed)
            result.events_trimmed = await queue.trim_events(mcfg.trim_events, dry_run=dry_run)
            result.repeatables_removed = await self._prune_repeatables(queue, dry_run=dry_run)

            logger.info(
                "queue_cleanup_done", extra=result.model_dump(mode="json", exclude={"message"})
            )
            return result

    async def _prune_repeatables(self, queue: RedisJobQueue, *, dry_run: bool) -> list[str]:
        expected = self._expected_schedule(queue.name)
        stale: list[str] = []
        for entry in await queue.get_repeatables():
            if expected is None or _matches(entry, *expected):
                continue
            stale.append(entry["key"])
            if not dry_run:
                await queue.remove_repeatable(entry["key"])
        return stale


def _matches(entry: dict[str, Any], name: str, cron: str) -> bool:
    return entry.get("name") == name and entry.get("cron") == cron
