"""Durable job queue on plain Redis data structures.

Layout under ``<prefix>:<queue>:``::

    job:<id>     hash with the job fields
    wait         zset, score = priority * 1e12 + enqueue sequence
    delayed      zset, score = due time (ms)
    active       zset, score = last heartbeat (ms)
    completed    zset, score = finish time (ms)
    failed       zset, score = finish time (ms)
    paused       flag key
    events       stream of lifecycle events
    repeat       hash of recurring registrations

State moves are guarded by ``ZPOPMIN``/``ZREM`` return values, so several
workers can share a queue without scripting. Clients must be created with
``decode_responses=True``.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from typing import TYPE_CHECKING, Any

from redis.exceptions import WatchError

from starsync.infrastructure.redis import redis_key
from starsync.queue.jobs import Job, JobConflictError, JobOptions, JobState

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

_PRIORITY_FACTOR = 1_000_000_000_000
DEFAULT_EVENTS_MAX_LEN = 10_000

_STATE_SETS = {
    JobState.WAITING: "wait",
    JobState.PAUSED: "wait",
    JobState.ACTIVE: "active",
    JobState.DELAYED: "delayed",
    JobState.COMPLETED: "completed",
    JobState.FAILED: "failed",
}


class JobExistsError(Exception):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job {job_id} already exists")
        self.job_id = job_id


def _now_ms() -> int:
    return int(time.time() * 1000)


def _opt_int(value: str | None) -> int | None:
    if value in (None, ""):
        return None
    return int(value)


def _job_from_hash(raw: dict[str, str]) -> Job:
    return_value = raw.get("return_value")
    return Job(
        id=raw["id"],
        name=raw.get("name", ""),
        data=json.loads(raw.get("data") or "{}"),
        state=JobState(raw.get("state") or JobState.WAITING.value),
        instance_id=raw.get("instance_id", ""),
        attempts_made=int(raw.get("attempts_made") or 0),
        max_attempts=int(raw.get("max_attempts") or 1),
        backoff_ms=int(raw.get("backoff_ms") or 0),
        priority=int(raw.get("priority") or 0),
        created_at=int(raw.get("created_at") or 0),
        processed_at=_opt_int(raw.get("processed_at")),
        finished_at=_opt_int(raw.get("finished_at")),
        failed_reason=raw.get("failed_reason") or None,
        return_value=json.loads(return_value) if return_value else None,
    )


class RedisJobQueue:
    """One named queue. See the module docstring for the key layout."""

    def __init__(
        self,
        redis: Redis,
        name: str,
        *,
        prefix: str = "starsync",
        keep_completed: int = 1_000,
        keep_failed: int = 5_000,
        events_max_len: int = DEFAULT_EVENTS_MAX_LEN,
    ) -> None:
        self.redis = redis
        self.name = name
        self.prefix = prefix
        self.keep_completed = keep_completed
        self.keep_failed = keep_failed
        self.events_max_len = events_max_len

    def _key(self, *parts: str) -> str:
        return redis_key(self.prefix, self.name, *parts)

    def _job_key(self, job_id: str) -> str:
        return self._key("job", job_id)

    @property
    def events_key(self) -> str:
        return self._key("events")

    def _state_key(self, state: JobState) -> str:
        return self._key(_STATE_SETS[state])

    async def _wait_score(self, priority: int) -> int:
        seq = await self.redis.incr(self._key("seq"))
        return max(0, priority) * _PRIORITY_FACTOR + int(seq)

    def _emit(self, pipe: Any, event: str, job_id: str, **fields: Any) -> None:
        payload = {"event": event, "job_id": job_id, **{k: str(v) for k, v in fields.items()}}
        pipe.xadd(self.events_key, payload, maxlen=self.events_max_len, approximate=True)

    # ------------------------------------------------------------------
    # Enqueue / lookup
    # ------------------------------------------------------------------

    async def add(
        self,
        name: str,
        data: dict[str, Any],
        *,
        job_id: str | None = None,
        opts: JobOptions | None = None,
    ) -> Job:
        """Create a job. Raises ``JobExistsError`` if the id is taken."""
        opts = opts or JobOptions()
        job_id = job_id or uuid.uuid4().hex
        job_key = self._job_key(job_id)

        if not await self.redis.hsetnx(job_key, "id", job_id):
            raise JobExistsError(job_id)

        now = _now_ms()
        state = JobState.DELAYED if opts.delay_ms > 0 else JobState.WAITING
        mapping = {
            "id": job_id,
            "name": name,
            "data": json.dumps(data, separators=(",", ":")),
            "state": state.value,
            "instance_id": uuid.uuid4().hex,
            "attempts_made": 0,
            "max_attempts": max(1, opts.attempts),
            "backoff_ms": max(0, opts.backoff_ms),
            "priority": opts.priority,
            "created_at": now,
            "processed_at": "",
            "finished_at": "",
            "failed_reason": "",
            "return_value": "",
        }
        score = await self._wait_score(opts.priority) if state is JobState.WAITING else None

        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hset(job_key, mapping=mapping)
            if state is JobState.DELAYED:
                pipe.zadd(self._key("delayed"), {job_id: now + opts.delay_ms})
            else:
                pipe.zadd(self._key("wait"), {job_id: score})
            self._emit(pipe, "added", job_id, name=name)
            await pipe.execute()

        logger.info(
            "queue_job_added",
            extra={"queue": self.name, "job_id": job_id, "job_name": name, "state": state.value},
        )
        job = await self.get_job(job_id)
        if job is None:  # removed between write and read
            raise JobExistsError(job_id)
        return job

    async def get_job(self, job_id: str) -> Job | None:
        raw = await self.redis.hgetall(self._job_key(job_id))
        if not raw or "id" not in raw:
            return None
        return _job_from_hash(raw)

    async def get_state(self, job_id: str) -> JobState | None:
        raw = await self.redis.hget(self._job_key(job_id), "state")
        if raw is None:
            return None
        state = JobState(raw)
        if state is JobState.WAITING and await self.is_paused():
            return JobState.PAUSED
        return state

    async def remove_if_terminal(self, job_id: str) -> JobState | None:
        """Delete a completed or failed job so its id can be reused.

        The state check and the delete run in one WATCH/MULTI transaction.
        Returns the removed job's state, or None when no job exists.

        Raises:
            JobConflictError: The job is still in flight, or changed while checking.
        """
        job_key = self._job_key(job_id)
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                await pipe.watch(job_key)
                raw = await pipe.hget(job_key, "state")
                if raw is None:
                    await pipe.unwatch()
                    return None
                state = JobState(raw)
                if not state.terminal:
                    await pipe.unwatch()
                    raise JobConflictError(job_id, state)
                pipe.multi()
                pipe.delete(job_key)
                for name in ("wait", "delayed", "active", "completed", "failed"):
                    pipe.zrem(self._key(name), job_id)
                self._emit(pipe, "removed", job_id)
                await pipe.execute()
        except WatchError as exc:
            # another producer replaced the job between the check and the delete
            current = await self.get_state(job_id) or JobState.WAITING
            raise JobConflictError(job_id, current) from exc
        return state

    # ------------------------------------------------------------------
    # Worker side
    # ------------------------------------------------------------------

    async def fetch_next(self, worker_id: str = "") -> Job | None:
        """Atomically take the next waiting job and mark it active."""
        if await self.is_paused():
            return None
        popped = await self.redis.zpopmin(self._key("wait"), 1)
        if not popped:
            return None
        job_id = popped[0][0]
        now = _now_ms()

        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hset(
                self._job_key(job_id),
                mapping={"state": JobState.ACTIVE.value, "processed_at": now, "worker": worker_id},
            )
            pipe.hincrby(self._job_key(job_id), "attempts_made", 1)
            pipe.zadd(self._key("active"), {job_id: now})
            self._emit(pipe, "active", job_id, worker=worker_id)
            await pipe.execute()

        job = await self.get_job(job_id)
        if job is None:
            await self.redis.zrem(self._key("active"), job_id)
        return job

    async def heartbeat(self, job_id: str) -> None:
        await self.redis.zadd(self._key("active"), {job_id: _now_ms()}, xx=True)

    async def complete(self, job: Job, return_value: Any = None) -> None:
        now = _now_ms()
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hset(
                self._job_key(job.id),
                mapping={
                    "state": JobState.COMPLETED.value,
                    "finished_at": now,
                    "failed_reason": "",
                    "return_value": json.dumps(return_value, default=str),
                },
            )
            pipe.zrem(self._key("active"), job.id)
            pipe.zadd(self._key("completed"), {job.id: now})
            self._emit(pipe, "completed", job.id)
            await pipe.execute()
        await self._trim_finished(JobState.COMPLETED, self.keep_completed)

    async def retry_later(self, job: Job, delay_ms: int, reason: str) -> None:
        due = _now_ms() + max(0, delay_ms)
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hset(
                self._job_key(job.id),
                mapping={"state": JobState.DELAYED.value, "failed_reason": reason},
            )
            pipe.zrem(self._key("active"), job.id)
            pipe.zadd(self._key("delayed"), {job.id: due})
            self._emit(pipe, "retrying", job.id, delay_ms=delay_ms)
            await pipe.execute()

    async def fail(self, job: Job, reason: str) -> None:
        now = _now_ms()
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hset(
                self._job_key(job.id),
                mapping={
                    "state": JobState.FAILED.value,
                    "finished_at": now,
                    "failed_reason": reason,
                },
            )
            pipe.zrem(self._key("active"), job.id)
            pipe.zadd(self._key("failed"), {job.id: now})
            self._emit(pipe, "failed", job.id)
            await pipe.execute()
        await self._trim_finished(JobState.FAILED, self.keep_failed)

    async def _requeue(self, job_id: str, from_key: str, event: str) -> bool:
        if not await self.redis.zrem(from_key, job_id):
            return False
        raw_priority = await self.redis.hget(self._job_key(job_id), "priority")
        if raw_priority is None:
            return False
        score = await self._wait_score(int(raw_priority or 0))
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hset(self._job_key(job_id), "state", JobState.WAITING.value)
            pipe.zadd(self._key("wait"), {job_id: score})
            self._emit(pipe, event, job_id)
            await pipe.execute()
        return True

    async def promote_delayed(self) -> int:
        """Move delayed jobs whose due time passed back to ``wait``."""
        due = await self.redis.zrangebyscore(self._key("delayed"), "-inf", _now_ms())
        promoted = 0
        for job_id in due:
            if await self._requeue(job_id, self._key("delayed"), "promoted"):
                promoted += 1
        return promoted

    async def recover_stalled(self, stalled_after_ms: int) -> list[str]:
        """Requeue active jobs whose worker stopped heartbeating."""
        cutoff = _now_ms() - stalled_after_ms
        stale = await self.redis.zrangebyscore(self._key("active"), "-inf", cutoff)
        recovered = []
        for job_id in stale:
            if await self._requeue(job_id, self._key("active"), "stalled"):
                recovered.append(job_id)
        if recovered:
            logger.warning("queue_jobs_stalled", extra={"queue": self.name, "job_ids": recovered})
        return recovered

    async def _trim_finished(self, state: JobState, keep: int) -> None:
        key = self._state_key(state)
        overflow = await self.redis.zrange(key, 0, -(keep + 1))
        if not overflow:
            return
        async with self.redis.pipeline(transaction=True) as pipe:
            for job_id in overflow:
                pipe.delete(self._job_key(job_id))
            pipe.zrem(key, *overflow)
            await pipe.execute()

    # ------------------------------------------------------------------
    # Introspection and housekeeping
    # ------------------------------------------------------------------

    async def pause(self) -> None:
        await self.redis.set(self._key("paused"), "1")

    async def resume(self) -> None:
        await self.redis.delete(self._key("paused"))

    async def is_paused(self) -> bool:
        return bool(await self.redis.exists(self._key("paused")))

    async def get_counts(self) -> dict[str, int]:
        async with self.redis.pipeline(transaction=False) as pipe:
            for state in ("wait", "active", "delayed", "completed", "failed"):
                pipe.zcard(self._key(state))
            pipe.exists(self._key("paused"))
            waiting, active, delayed, completed, failed, paused = await pipe.execute()
        return {
            "waiting": 0 if paused else int(waiting),
            "active": int(active),
            "delayed": int(delayed),
            "completed": int(completed),
            "failed": int(failed),
            "paused": int(waiting) if paused else 0,
        }

    async def clean(
        self, grace_ms: int, state: JobState, *, limit: int = 1_000, dry_run: bool = False
    ) -> list[str]:
        """Remove finished jobs older than ``grace_ms``; dry run only lists them."""
        if not state.terminal:
            msg = f"Only completed or failed jobs can be cleaned, got {state.value}"
            raise ValueError(msg)
        key = self._state_key(state)
        cutoff = _now_ms() - max(0, grace_ms)
        job_ids = await self.redis.zrangebyscore(key, "-inf", cutoff, start=0, num=limit)
        if job_ids and not dry_run:
            async with self.redis.pipeline(transaction=True) as pipe:
                for job_id in job_ids:
                    pipe.delete(self._job_key(job_id))
                pipe.zrem(key, *job_ids)
                await pipe.execute()
        return list(job_ids)

    async def trim_events(self, max_len: int, *, dry_run: bool = False) -> int:
        """Cap the event stream; returns how many entries are (or would be) dropped."""
        length = await self.redis.xlen(self.events_key)
        excess = max(0, int(length) - max_len)
        if excess and not dry_run:
            await self.redis.xtrim(self.events_key, maxlen=max_len, approximate=False)
        return excess

    async def events(self, count: int = 100) -> list[dict[str, str]]:
        entries = await self.redis.xrevrange(self.events_key, count=count)
        return [fields for _entry_id, fields in entries]

    # ------------------------------------------------------------------
    # Recurring registrations
    # ------------------------------------------------------------------

    @staticmethod
    def repeat_key(name: str, job_id: str, cron: str, tz: str) -> str:
        return f"{name}:{job_id}:{cron}:{tz}"

    async def upsert_repeatable(self, name: str, job_id: str, cron: str, tz: str = "UTC") -> bool:
        """Register a recurring job; returns False when the identical entry exists."""
        key = self.repeat_key(name, job_id, cron, tz)
        entry = {
            "key": key,
            "name": name,
            "job_id": job_id,
            "cron": cron,
            "tz": tz,
            "registered_at": _now_ms(),
        }
        payload = json.dumps(entry, separators=(",", ":"))
        return bool(await self.redis.hsetnx(self._key("repeat"), key, payload))

    async def get_repeatables(self) -> list[dict[str, Any]]:
        raw = await self.redis.hgetall(self._key("repeat"))
        return [json.loads(value) for value in raw.values()]

    async def remove_repeatable(self, key: str) -> bool:
        return bool(await self.redis.hdel(self._key("repeat"), key))
