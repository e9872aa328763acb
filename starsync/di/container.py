"""Dependency container wiring configuration, storage, queues and services.

Every entry point (worker process, admin API, CLI) builds one ``Container``
from an ``AppConfig`` and reaches collaborators through it.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from starsync.db.session import DatabaseSessionManager
from starsync.infrastructure.cache import RedisCache
from starsync.infrastructure.persistence.sqlite.repositories import (
    SqliteProjectRepositoryAdapter,
    SqliteRefreshTokenRepositoryAdapter,
    SqliteSyncStateRepositoryAdapter,
)
from starsync.infrastructure.redis import connect_redis
from starsync.queue.orchestrator import JobOrchestrator, build_queues
from starsync.services.maintenance import MaintenanceService
from starsync.services.notifier import LoggingNotifier
from starsync.sync.engine import StarSyncService
from starsync.sync.state import SyncStateService

if TYPE_CHECKING:
    from redis.asyncio import Redis

    from starsync.config import AppConfig
    from starsync.services.notifier import Notifier
    from starsync.sync.protocols import StarredFetcherFactory

logger = logging.getLogger(__name__)


class Container:
    """Owns the long-lived collaborators of one process.

    Example:
        ```python
        container = await Container.create(load_config())
        job_id = await container.orchestrator.enqueue_manual_run(SyncOptions())
        await container.close()
        ```
    """

    def __init__(
        self,
        cfg: AppConfig,
        db: DatabaseSessionManager,
        redis: Redis,
        *,
        client_factory: StarredFetcherFactory | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self.cfg = cfg
        self.db = db
        self.redis = redis

        self.projects = SqliteProjectRepositoryAdapter(db)
        self.tokens = SqliteRefreshTokenRepositoryAdapter(db)
        self.state = SyncStateService(
            SqliteSyncStateRepositoryAdapter(db), stats_max_bytes=cfg.sync.stats_max_bytes
        )
        self.engine = StarSyncService(
            cfg, projects=self.projects, state=self.state, client_factory=client_factory
        )
        self.cache = RedisCache(cfg, redis)

        sync_queue, maintenance_queue = build_queues(cfg, redis)
        self.maintenance = MaintenanceService(
            cfg, tokens=self.tokens, queues=(sync_queue, maintenance_queue), redis=redis
        )
        self.notifier = notifier or LoggingNotifier(cfg.notify)
        self.orchestrator = JobOrchestrator(
            cfg,
            sync_queue=sync_queue,
            maintenance_queue=maintenance_queue,
            state=self.state,
            engine=self.engine,
            maintenance=self.maintenance,
            notifier=self.notifier,
        )

    @classmethod
    async def create(cls, cfg: AppConfig) -> Container:
        """Open the database and the Redis client.

        Raises:
            RuntimeError: Redis is unreachable.
        """
        db = DatabaseSessionManager(
            path=cfg.database.path,
            operation_timeout=cfg.database.operation_timeout,
            max_retries=cfg.database.max_retries,
        )
        db.migrate()
        try:
            redis = await connect_redis(cfg.redis)
        except RuntimeError:
            db.close()
            raise
        return cls(cfg, db, redis)

    async def close(self) -> None:
        await self.orchestrator.stop()
        await self.redis.aclose()
        self.db.close()
        logger.info("container_closed")
