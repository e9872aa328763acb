"""Redis connection for the job queue, cleanup locks and the README cache."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING
from urllib.parse import urlsplit, urlunsplit

import redis.asyncio as aioredis
from redis.exceptions import RedisError

if TYPE_CHECKING:
    from starsync.config import RedisConfig

logger = logging.getLogger(__name__)


def build_redis_url(cfg: RedisConfig) -> str:
    if cfg.url:
        return cfg.url
    return f"redis://{cfg.host}:{cfg.port}/{cfg.db}"


def mask_redis_url(url: str) -> str:
    """Drop credentials from ``url`` so it can be logged."""
    parts = urlsplit(url)
    if not parts.password and not parts.username:
        return url
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    return urlunsplit((parts.scheme, f"***@{host}", parts.path, parts.query, parts.fragment))


def redis_key(prefix: str, *parts: str) -> str:
    """Compose a namespaced Redis key."""
    safe_parts = [part for part in parts if part]
    return ":".join([prefix, *safe_parts])


async def connect_redis(cfg: RedisConfig) -> aioredis.Redis:
    """Open a client and ping it, retrying up to ``cfg.connect_attempts`` times.

    The client decodes responses to ``str``; queue and lock code relies on it.

    Raises:
        RuntimeError: Redis stayed unreachable.
    """
    url = build_redis_url(cfg)
    client = aioredis.from_url(
        url,
        password=cfg.password,
        socket_timeout=cfg.socket_timeout,
        decode_responses=True,
    )
    safe_url = mask_redis_url(url)
    for attempt in range(1, cfg.connect_attempts + 1):
        try:
            await client.ping()
        except (RedisError, OSError) as exc:
            logger.warning(
                "redis_connection_failed",
                extra={
                    "url": safe_url,
                    "attempt": attempt,
                    "max_attempts": cfg.connect_attempts,
                    "error": str(exc),
                },
            )
            if attempt < cfg.connect_attempts:
                await asyncio.sleep(cfg.connect_retry_delay_sec)
            continue
        logger.info("redis_connected", extra={"url": safe_url, "prefix": cfg.prefix})
        return client

    await client.aclose()
    msg = f"Redis at {safe_url} is unreachable; the job queue needs it (check REDIS_URL)"
    raise RuntimeError(msg)
