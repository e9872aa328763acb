"""SQLite ownership for repositories.

Peewee is synchronous, so every repository call goes through
``DatabaseSessionManager.run``: the callable executes on a worker thread inside
a connection context, writes are serialized by one asyncio lock, and
``database is locked`` errors are retried with exponential backoff.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

import peewee
from playhouse.sqlite_ext import SqliteExtDatabase

from starsync.db.models import ALL_MODELS, database_proxy

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")

_PRAGMAS = {
    "journal_mode": "wal",
    "synchronous": "normal",
    "foreign_keys": 1,
    "busy_timeout": 5000,
}


def _is_lock_contention(exc: peewee.OperationalError) -> bool:
    message = str(exc).lower()
    return "locked" in message or "busy" in message


class DatabaseSessionManager:
    """Opens the SQLite file, binds the models and runs repository callables."""

    def __init__(
        self, path: str, *, operation_timeout: float = 30.0, max_retries: int = 3
    ) -> None:
        self.path = path
        self.operation_timeout = operation_timeout
        self.max_retries = max_retries
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._database = SqliteExtDatabase(path, pragmas=_PRAGMAS, check_same_thread=False)
        database_proxy.initialize(self._database)
        self._write_lock = asyncio.Lock()

    @property
    def database(self) -> SqliteExtDatabase:
        return self._database

    def migrate(self) -> None:
        """Create missing tables."""
        with self._database.connection_context():
            self._database.create_tables(ALL_MODELS, safe=True)
        logger.info(
            "db_migrated",
            extra={"db": Path(self.path).name, "tables": [m._meta.table_name for m in ALL_MODELS]},
        )

    def close(self) -> None:
        if not self._database.is_closed():
            self._database.close()

    async def ping(self) -> None:
        """Round-trip ``SELECT 1``; raises when the file cannot be read."""

        def _select() -> None:
            self._database.execute_sql("SELECT 1").fetchone()

        await self.run(_select, operation_name="ping", read_only=True)

    async def run(
        self,
        operation: Callable[..., T],
        *args: Any,
        operation_name: str,
        read_only: bool = False,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> T:
        """Run ``operation(*args, **kwargs)`` on a thread.

        Writes run inside ``database.atomic()`` so a multi-statement callable
        commits or rolls back as a unit.

        Raises:
            TimeoutError: The call exceeded ``timeout`` (default ``operation_timeout``).
            peewee.OperationalError: Still locked after ``max_retries`` retries.
            peewee.IntegrityError: Constraint violation; never retried.
        """
        limit = self.operation_timeout if timeout is None else timeout

        def _call() -> T:
            with self._database.connection_context():
                if read_only:
                    return operation(*args, **kwargs)
                with self._database.atomic():
                    return operation(*args, **kwargs)

        async def _dispatch() -> T:
            if read_only:
                return await asyncio.to_thread(_call)
            async with self._write_lock:
                return await asyncio.to_thread(_call)

        attempt = 0
        while True:
            try:
                return await asyncio.wait_for(_dispatch(), timeout=limit)
            except TimeoutError:
                logger.error(
                    "db_operation_timeout",
                    extra={"operation": operation_name, "timeout": limit, "attempt": attempt},
                )
                raise
            except peewee.OperationalError as exc:
                if not _is_lock_contention(exc) or attempt >= self.max_retries:
                    logger.error(
                        "db_operational_error",
                        extra={"operation": operation_name, "attempt": attempt, "error": str(exc)},
                    )
                    raise
                attempt += 1
                delay = 0.1 * (2**attempt)
                logger.warning(
                    "db_locked_retrying",
                    extra={"operation": operation_name, "attempt": attempt, "delay": delay},
                )
                await asyncio.sleep(delay)
