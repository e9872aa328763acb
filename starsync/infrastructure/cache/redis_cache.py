from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any

from starsync.infrastructure.redis import redis_key

if TYPE_CHECKING:
    from collections.abc import Iterable

    from redis.asyncio import Redis

    from starsync.config import AppConfig

logger = logging.getLogger(__name__)


class RedisCache:
    """JSON values under ``<redis prefix>:...`` keys.

    Reads and writes are bounded by ``redis.cache_timeout_sec`` and never raise:
    a miss, a timeout and a connection error all look like "not cached".
    """

    def __init__(self, cfg: AppConfig, client: Redis) -> None:
        self.cfg = cfg
        self._client = client
        self._timeout = max(0.05, float(cfg.redis.cache_timeout_sec))

    @property
    def enabled(self) -> bool:
        return self.cfg.redis.cache_enabled

    def key(self, *parts: str) -> str:
        return redis_key(self.cfg.redis.prefix, *parts)

    async def get_json(self, *parts: str) -> Any | None:
        if not self.enabled:
            return None
        key = self.key(*parts)
        try:
            raw = await asyncio.wait_for(self._client.get(key), timeout=self._timeout)
        except Exception as exc:
            logger.warning("cache_get_failed", extra={"key": key, "error": str(exc)})
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("cache_decode_failed", extra={"key": key})
            return None

    async def set_json(self, *, value: Any, ttl_seconds: int, parts: Iterable[str]) -> bool:
        """Store ``value`` for ``ttl_seconds``; False when skipped or failed."""
        if not self.enabled or ttl_seconds <= 0:
            return False
        key = self.key(*parts)
        try:
            payload = json.dumps(value, ensure_ascii=False)
            await asyncio.wait_for(
                self._client.set(key, payload, ex=ttl_seconds), timeout=self._timeout
            )
        except (TypeError, ValueError):
            logger.warning("cache_encode_failed", extra={"key": key})
            return False
        except Exception as exc:
            logger.warning("cache_set_failed", extra={"key": key, "error": str(exc)})
            return False
        return True
