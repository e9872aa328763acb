from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from starsync.config import AppConfig
    from starsync.infrastructure.cache import RedisCache

logger = logging.getLogger(__name__)


class ReadmeSource(Protocol):
    async def get_readme_raw(self, full_name: str) -> str: ...


class ReadmeService:
    """README lookup with a fail-open Redis cache in front of the API."""

    def __init__(self, cfg: AppConfig, source: ReadmeSource, cache: RedisCache) -> None:
        self.cfg = cfg
        self.source = source
        self.cache = cache

    async def get_readme(self, full_name: str) -> str:
        cached = await self.cache.get_json("gh", "readme", full_name)
        if isinstance(cached, str):
            logger.debug("readme_cache_hit", extra={"repo": full_name})
            return cached

        text = await self.source.get_readme_raw(full_name)
        if text:
            await self.cache.set_json(
                value=text,
                ttl_seconds=self.cfg.sync.readme_cache_ttl_seconds,
                parts=("gh", "readme", full_name),
            )
        return text
