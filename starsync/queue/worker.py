"""Fixed-size worker pool that drains one ``RedisJobQueue``.

Each slot runs one job to completion before it asks for the next. Every
finished attempt is published as a ``JobOutcome`` on an ``asyncio.Queue`` so
the orchestrator can react without callbacks.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import socket
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from starsync.core.logging_utils import truncate_log_content

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from starsync.queue.jobs import Job
    from starsync.queue.redis_queue import RedisJobQueue

logger = logging.getLogger(__name__)


@dataclass
class JobOutcome:
    queue: str
    job: Job
    result: Any = None
    error: BaseException | None = None
    final: bool = True
    retry_in_ms: int | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def compute_retry_delay(job: Job, exc: BaseException) -> int | None:
    """Milliseconds until the next attempt, or None when the job should fail now."""
    if not getattr(exc, "retryable", True):
        return None
    if job.attempts_made >= job.max_attempts:
        return None
    delay = job.backoff_ms
    retry_after = getattr(exc, "retry_after_sec", None)
    if retry_after:
        delay = max(delay, int(retry_after) * 1000)
    return delay


class Worker:
    def __init__(
        self,
        queue: RedisJobQueue,
        processor: Callable[[Job], Awaitable[Any]],
        *,
        concurrency: int = 1,
        poll_interval: float = 1.0,
        stalled_after_sec: int = 1_800,
        outcomes: asyncio.Queue[JobOutcome] | None = None,
        worker_id: str | None = None,
    ) -> None:
        self.queue = queue
        self.processor = processor
        self.concurrency = max(1, concurrency)
        self.poll_interval = poll_interval
        self.stalled_after_ms = stalled_after_sec * 1000
        self.outcomes = outcomes
        self.worker_id = worker_id or f"{socket.gethostname()}:{os.getpid()}:{queue.name}"
        self._stopping = asyncio.Event()
        self._tasks: list[asyncio.Task[None]] = []
        self._last_stall_check = 0.0

    @property
    def is_running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def start(self) -> None:
        if self.is_running:
            logger.warning("worker_already_started", extra={"queue": self.queue.name})
            return
        self._stopping.clear()
        await self.queue.recover_stalled(self.stalled_after_ms)
        self._last_stall_check = time.monotonic()
        self._tasks = [
            asyncio.create_task(self._slot(index), name=f"{self.queue.name}-worker-{index}")
            for index in range(self.concurrency)
        ]
        logger.info(
            "worker_started",
            extra={
                "queue": self.queue.name,
                "concurrency": self.concurrency,
                "worker_id": self.worker_id,
            },
        )

    async def stop(self, timeout: float | None = 30.0) -> None:
        """Let in-flight jobs finish, then stop polling."""
        self._stopping.set()
        if not self._tasks:
            return
        done, pending = await asyncio.wait(self._tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        for task in pending:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks = []
        logger.info(
            "worker_stopped",
            extra={"queue": self.queue.name, "finished": len(done), "cancelled": len(pending)},
        )

    async def _slot(self, index: int) -> None:
        while not self._stopping.is_set():
            try:
                outcome = await self.run_once()
            except Exception:
                logger.exception(
                    "worker_poll_failed", extra={"queue": self.queue.name, "slot": index}
                )
                outcome = None
            if outcome is None:
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)

    async def run_once(self) -> JobOutcome | None:
        """Promote due retries, then take and run at most one job."""
        await self.queue.promote_delayed()
        now = time.monotonic()
        if (now - self._last_stall_check) * 1000 >= self.stalled_after_ms / 2:
            self._last_stall_check = now
            await self.queue.recover_stalled(self.stalled_after_ms)

        job = await self.queue.fetch_next(self.worker_id)
        if job is None:
            return None
        return await self._process(job)

    async def _heartbeat(self, job_id: str) -> None:
        interval = max(1.0, self.stalled_after_ms / 3000)
        while True:
            await asyncio.sleep(interval)
            try:
                await self.queue.heartbeat(job_id)
            except Exception:
                logger.warning("worker_heartbeat_failed", exc_info=True, extra={"job_id": job_id})

    async def _process(self, job: Job) -> JobOutcome:
        logger.info(
            "job_started",
            extra={
                "queue": self.queue.name,
                "job_id": job.id,
                "attempt": job.attempts_made,
                "max_attempts": job.max_attempts,
            },
        )
        heartbeat = asyncio.create_task(self._heartbeat(job.id))
        try:
            result = await self.processor(job)
        except Exception as exc:
            outcome = await self._handle_failure(job, exc)
        else:
            await self.queue.complete(job, result)
            logger.info("job_completed", extra={"queue": self.queue.name, "job_id": job.id})
            outcome = JobOutcome(queue=self.queue.name, job=job, result=result)
        finally:
            heartbeat.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await heartbeat

        if self.outcomes is not None:
            self.outcomes.put_nowait(outcome)
        return outcome

    async def _handle_failure(self, job: Job, exc: BaseException) -> JobOutcome:
        reason = truncate_log_content(f"{type(exc).__name__}: {exc}", 500) or type(exc).__name__
        delay = compute_retry_delay(job, exc)
        if delay is not None:
            await self.queue.retry_later(job, delay, reason)
            logger.warning(
                "job_retry_scheduled",
                extra={
                    "queue": self.queue.name,
                    "job_id": job.id,
                    "attempt": job.attempts_made,
                    "delay_ms": delay,
                    "error": reason,
                },
            )
            return JobOutcome(
                queue=self.queue.name, job=job, error=exc, final=False, retry_in_ms=delay
            )

        await self.queue.fail(job, reason)
        logger.error(
            "job_failed",
            extra={
                "queue": self.queue.name,
                "job_id": job.id,
                "attempt": job.attempts_made,
                "retryable": getattr(exc, "retryable", True),
                "error": reason,
            },
        )
        return JobOutcome(queue=self.queue.name, job=job, error=exc, final=True)
