"""Best-effort distributed mutex on a single Redis key."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from redis.exceptions import RedisError, WatchError

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)


@dataclass
class LockHandle:
    key: str
    token: str


class RedisLock:
    """``SET key token NX PX ttl`` to acquire, compare-and-delete to release."""

    def __init__(self, redis: Redis, key: str, *, ttl_ms: int) -> None:
        self.redis = redis
        self.key = key
        self.ttl_ms = ttl_ms

    async def acquire(self) -> LockHandle | None:
        token = f"worker-{time.time_ns()}"
        acquired = await self.redis.set(self.key, token, nx=True, px=self.ttl_ms)
        if not acquired:
            logger.info("lock_held_elsewhere", extra={"key": self.key})
            return None
        logger.info("lock_acquired", extra={"key": self.key, "ttl_ms": self.ttl_ms})
        return LockHandle(self.key, token)

    async def release(self, handle: LockHandle | None) -> bool:
        """Delete the key only if it still holds our token. Never raises."""
        if handle is None:
            return False
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                await pipe.watch(handle.key)
                current = await pipe.get(handle.key)
                if current not in (handle.token, handle.token.encode()):
                    await pipe.unwatch()
                    return False
                pipe.multi()
                pipe.delete(handle.key)
                await pipe.execute()
                return True
        except (RedisError, WatchError):
            logger.warning("lock_release_failed", exc_info=True, extra={"key": handle.key})
            return False
