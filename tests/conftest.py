"""Pytest configuration and shared fixtures.

This module provides common fixtures for all tests.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import fakeredis.aioredis
import pytest

from starsync.config import (
    AppConfig,
    DatabaseConfig,
    GitHubConfig,
    MaintenanceConfig,
    NotifyConfig,
    QueueConfig,
    RedisConfig,
    RuntimeConfig,
    SyncConfig,
)
from starsync.db.session import DatabaseSessionManager


def make_test_app_config(
    db_path: str | Path = "/tmp/starsync-test.db",
    *,
    github: dict[str, Any] | None = None,
    sync: dict[str, Any] | None = None,
    queue: dict[str, Any] | None = None,
    maintenance: dict[str, Any] | None = None,
    redis: dict[str, Any] | None = None,
    notify: dict[str, Any] | None = None,
) -> AppConfig:
    """Build an ``AppConfig`` without touching the process environment."""
    return AppConfig(
        github=GitHubConfig(
            **{
                "token": "ghp_test",
                "username": "octocat",
                "api_url": "https://api.github.test",
                "max_retries": 0,
                "retry_base_delay_ms": 0,
                **(github or {}),
            }
        ),
        sync=SyncConfig(**(sync or {})),
        queue=QueueConfig(**{"prefix": "test", "job_backoff_ms": 0, **(queue or {})}),
        maintenance=MaintenanceConfig(**(maintenance or {})),
        redis=RedisConfig(**{"prefix": "test", **(redis or {})}),
        database=DatabaseConfig(path=str(db_path)),
        notify=NotifyConfig(**(notify or {})),
        runtime=RuntimeConfig(),
    )


@pytest.fixture
def cfg(tmp_path: Path) -> AppConfig:
    return make_test_app_config(tmp_path / "starsync.db")


@pytest.fixture
def db(tmp_path: Path):
    """Migrated SQLite database in a temporary file."""
    manager = DatabaseSessionManager(path=str(tmp_path / "starsync.db"))
    manager.migrate()
    yield manager
    manager.close()


@pytest.fixture
async def redis_client():
    client = fakeredis.aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()
