"""SQLite implementation of the sync state store tables."""

from __future__ import annotations

from typing import Any

import peewee

from starsync.core.time_utils import utc_now
from starsync.db.models import SyncState, SyncStateHistory, model_to_dict
from starsync.infrastructure.persistence.sqlite.base import SqliteBaseRepository

_STATE_FIELDS = frozenset(
    {
        "cursor",
        "etag",
        "last_run_at",
        "last_success_at",
        "last_error_at",
        "last_error",
        "stats_json",
    }
)
_HISTORY_FIELDS = _STATE_FIELDS | {"source", "key", "created_at"}


class SqliteSyncStateRepositoryAdapter(SqliteBaseRepository):
    async def async_get_state(self, source: str, key: str) -> dict[str, Any] | None:
        def _query() -> dict[str, Any] | None:
            row = SyncState.get_or_none((SyncState.source == source) & (SyncState.key == key))
            return model_to_dict(row)

        return await self._execute(_query, operation_name="get_sync_state", read_only=True)

    async def async_ensure_state(self, source: str, key: str) -> dict[str, Any]:
        """Create the row if it is missing; concurrent callers converge on one row."""

        def _ensure() -> dict[str, Any]:
            try:
                row, _ = SyncState.get_or_create(source=source, key=key)
            except peewee.IntegrityError:
                row = SyncState.get((SyncState.source == source) & (SyncState.key == key))
            return model_to_dict(row) or {}

        return await self._execute(_ensure, operation_name="ensure_sync_state")

    async def async_update_state(self, source: str, key: str, fields: dict[str, Any]) -> None:
        values = {k: v for k, v in fields.items() if k in _STATE_FIELDS}
        values["updated_at"] = utc_now()

        def _update() -> None:
            SyncState.update(**values).where(
                (SyncState.source == source) & (SyncState.key == key)
            ).execute()

        await self._execute(_update, operation_name="update_sync_state")

    async def async_append_history(self, row: dict[str, Any]) -> None:
        values = {k: v for k, v in row.items() if k in _HISTORY_FIELDS}

        def _insert() -> None:
            SyncStateHistory.create(**values)

        await self._execute(_insert, operation_name="append_sync_history")

    async def async_list_history(
        self, source: str, key: str, *, limit: int = 20
    ) -> list[dict[str, Any]]:
        def _query() -> list[dict[str, Any]]:
            query = (
                SyncStateHistory.select()
                .where((SyncStateHistory.source == source) & (SyncStateHistory.key == key))
                .order_by(SyncStateHistory.id.desc())
                .limit(limit)
            )
            return [model_to_dict(row) or {} for row in query]

        return await self._execute(_query, operation_name="list_sync_history", read_only=True)
