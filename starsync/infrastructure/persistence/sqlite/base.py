from __future__ import annotations

from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

    from starsync.db.session import DatabaseSessionManager

T = TypeVar("T")


class SqliteBaseRepository:
    """Repositories define blocking peewee closures and hand them to ``_execute``."""

    def __init__(self, session_manager: DatabaseSessionManager) -> None:
        self._session = session_manager

    async def _execute(
        self,
        operation: Callable[[], T],
        *,
        operation_name: str,
        read_only: bool = False,
    ) -> T:
        return await self._session.run(
            operation, operation_name=operation_name, read_only=read_only
        )
