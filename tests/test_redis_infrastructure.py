from __future__ import annotations

import unittest
from unittest.mock import AsyncMock, patch

import fakeredis.aioredis
import pytest

from starsync.adapters.github.readme import ReadmeService
from starsync.config import RedisConfig
from starsync.infrastructure.cache import RedisCache
from starsync.infrastructure.locks import LockHandle, RedisLock
from starsync.infrastructure.redis import build_redis_url, connect_redis, mask_redis_url, redis_key
from tests.conftest import make_test_app_config


def test_redis_key_skips_empty_parts():
    assert redis_key("test", "lock", "", "cleanup") == "test:lock:cleanup"


class TestRedisConnection:
    def test_url_from_parts(self):
        cfg = RedisConfig(host="cache.internal", port=6380, db=2)
        assert build_redis_url(cfg) == "redis://cache.internal:6380/2"
        assert build_redis_url(RedisConfig(url="redis://h:1/0")) == "redis://h:1/0"

    def test_mask_credentials(self):
        assert mask_redis_url("redis://user:s3cret@h:6379/0") == "redis://***@h:6379/0"
        assert mask_redis_url("redis://h:6379/0") == "redis://h:6379/0"

    async def test_connect_retries_then_succeeds(self):
        client = AsyncMock()
        client.ping.side_effect = [ConnectionError("refused"), True]
        cfg = RedisConfig(connect_attempts=3, connect_retry_delay_sec=0.01)

        with patch("starsync.infrastructure.redis.aioredis.from_url", return_value=client):
            assert await connect_redis(cfg) is client

        assert client.ping.await_count == 2
        client.aclose.assert_not_awaited()

    async def test_connect_gives_up(self):
        client = AsyncMock()
        client.ping.side_effect = ConnectionError("refused")
        cfg = RedisConfig(
            url="redis://user:s3cret@h:6379/0", connect_attempts=2, connect_retry_delay_sec=0.01
        )

        with (
            patch("starsync.infrastructure.redis.aioredis.from_url", return_value=client),
            pytest.raises(RuntimeError, match=r"\*\*\*@h:6379") as excinfo,
        ):
            await connect_redis(cfg)

        assert "s3cret" not in str(excinfo.value)
        assert client.ping.await_count == 2
        client.aclose.assert_awaited_once()


class TestRedisLock(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.redis = fakeredis.aioredis.FakeRedis(decode_responses=True)
        self.lock = RedisLock(self.redis, "test:lock:x", ttl_ms=10_000)

    async def asyncTearDown(self) -> None:
        await self.redis.aclose()

    async def test_single_holder(self):
        handle = await self.lock.acquire()

        self.assertIsNotNone(handle)
        self.assertIsNone(await self.lock.acquire())
        ttl = await self.redis.pttl("test:lock:x")
        self.assertTrue(0 < ttl <= 10_000)

    async def test_release_only_own_token(self):
        handle = await self.lock.acquire()

        self.assertFalse(await self.lock.release(LockHandle("test:lock:x", "not-mine")))
        self.assertTrue(await self.redis.exists("test:lock:x"))
        self.assertTrue(await self.lock.release(handle))
        self.assertFalse(await self.redis.exists("test:lock:x"))
        self.assertFalse(await self.lock.release(None))


class TestRedisCache:
    async def test_round_trip_with_ttl(self, cfg, redis_client):
        cache = RedisCache(cfg, redis_client)

        assert await cache.set_json(value={"a": 1}, ttl_seconds=60, parts=("gh", "x"))
        assert await cache.get_json("gh", "x") == {"a": 1}
        assert 0 < await redis_client.ttl("test:gh:x") <= 60

    async def test_miss_and_bad_payload(self, cfg, redis_client):
        cache = RedisCache(cfg, redis_client)
        await redis_client.set("test:gh:broken", "{nope")

        assert await cache.get_json("gh", "missing") is None
        assert await cache.get_json("gh", "broken") is None

    async def test_fails_open(self, cfg):
        client = AsyncMock()
        client.get.side_effect = ConnectionError("down")
        client.set.side_effect = ConnectionError("down")
        cache = RedisCache(cfg, client)

        assert await cache.get_json("gh", "x") is None
        assert await cache.set_json(value=1, ttl_seconds=60, parts=("gh", "x")) is False

    async def test_disabled_cache(self, tmp_path, redis_client):
        cfg = make_test_app_config(tmp_path / "db.sqlite", redis={"cache_enabled": False})
        cache = RedisCache(cfg, redis_client)

        assert not cache.enabled
        assert await cache.set_json(value=1, ttl_seconds=60, parts=("gh", "x")) is False
        assert await cache.get_json("gh", "x") is None

    async def test_zero_ttl_is_not_stored(self, cfg, redis_client):
        cache = RedisCache(cfg, redis_client)
        assert await cache.set_json(value=1, ttl_seconds=0, parts=("gh", "x")) is False


class TestReadmeService:
    @pytest.fixture
    def source(self) -> AsyncMock:
        source = AsyncMock()
        source.get_readme_raw.return_value = "# Title"
        return source

    async def test_second_lookup_hits_cache(self, cfg, redis_client, source):
        service = ReadmeService(cfg, source, RedisCache(cfg, redis_client))

        assert await service.get_readme("octo/repo-1") == "# Title"
        assert await service.get_readme("octo/repo-1") == "# Title"

        source.get_readme_raw.assert_awaited_once_with("octo/repo-1")
        ttl = await redis_client.ttl("test:gh:readme:octo/repo-1")
        assert 0 < ttl <= cfg.sync.readme_cache_ttl_seconds

    async def test_empty_readme_is_not_cached(self, cfg, redis_client, source):
        source.get_readme_raw.return_value = ""
        service = ReadmeService(cfg, source, RedisCache(cfg, redis_client))

        assert await service.get_readme("octo/none") == ""
        assert await service.get_readme("octo/none") == ""

        assert source.get_readme_raw.await_count == 2

    async def test_cache_outage_falls_back_to_api(self, cfg, source):
        broken = AsyncMock()
        broken.get.side_effect = ConnectionError("down")
        broken.set.side_effect = ConnectionError("down")
        service = ReadmeService(cfg, source, RedisCache(cfg, broken))

        assert await service.get_readme("octo/repo-1") == "# Title"
