"""Ports used by the sync engine.

Keeping these as Protocols isolates reconciliation from the concrete SQLite
and HTTP implementations.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from contextlib import AbstractAsyncContextManager
    from datetime import datetime

    from starsync.adapters.github.models import FetchStarredResult, StarredItem
    from starsync.adapters.github.pages import StarredPages


class StarredFetcher(Protocol):
    async def fetch_first_star_page(
        self, username: str, *, etag: str | None = None
    ) -> FetchStarredResult: ...

    def iterate_starred(
        self,
        username: str,
        *,
        per_page: int = 50,
        max_pages: int = 0,
        etag: str | None = None,
        stop_when: Callable[[StarredItem], bool] | None = None,
    ) -> StarredPages: ...


class StarredFetcherFactory(Protocol):
    def __call__(self) -> AbstractAsyncContextManager[StarredFetcher]: ...


class ProjectRepository(Protocol):
    async def async_get_by_github_id(self, github_id: int) -> dict[str, Any] | None: ...

    async def async_create_project(self, data: dict[str, Any]) -> int: ...

    async def async_update_project(self, project_id: int, fields: dict[str, Any]) -> None: ...

    async def async_list_ids_not_in(self, github_ids: Iterable[int]) -> list[int]: ...

    async def async_archive_and_delete(self, project_id: int, *, reason: str) -> int | None: ...


class SyncStateRepository(Protocol):
    async def async_get_state(self, source: str, key: str) -> dict[str, Any] | None: ...

    async def async_ensure_state(self, source: str, key: str) -> dict[str, Any]: ...

    async def async_update_state(self, source: str, key: str, fields: dict[str, Any]) -> None: ...

    async def async_append_history(self, row: dict[str, Any]) -> None: ...

    async def async_list_history(
        self, source: str, key: str, *, limit: int = 20
    ) -> list[dict[str, Any]]: ...


class RefreshTokenRepository(Protocol):
    async def async_count_expired_before(self, cutoff: datetime) -> int: ...

    async def async_count_revoked_before(self, cutoff: datetime) -> int: ...

    async def async_delete_expired_batch(self, cutoff: datetime, *, limit: int) -> int: ...

    async def async_delete_revoked_batch(self, cutoff: datetime, *, limit: int) -> int: ...
