"""Per-(source, key) progress store for reconciliation runs.

The state row is written once when a run finishes; every finish also appends
a history row. History is best-effort: a failed append is logged and dropped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from starsync.core.etag import sanitize_etag
from starsync.core.time_utils import to_iso, utc_now
from starsync.sync.stats import STATS_JSON_MAX_BYTES, decode_stats, encode_stats

if TYPE_CHECKING:
    from datetime import datetime

    from starsync.sync.protocols import SyncStateRepository
    from starsync.sync.types import SyncStats

logger = logging.getLogger(__name__)

ERROR_MESSAGE_MAX_LENGTH = 500


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


def normalize_error_message(
    error: BaseException | str | None, max_length: int = ERROR_MESSAGE_MAX_LENGTH
) -> str:
    """Single-line, length-capped description of an error."""
    if error is None:
        return "Unknown error"
    if isinstance(error, BaseException):
        message = str(error).strip()
        text = f"{type(error).__name__}: {message}" if message else type(error).__name__
    else:
        text = str(error).strip() or "Unknown error"
    text = " ".join(text.split())
    if len(text) > max_length:
        text = text[: max_length - 3] + "..."
    return text


@dataclass(frozen=True)
class SyncStateRecord:
    source: str
    key: str
    cursor: str | None = None
    etag: str | None = None
    last_run_at: datetime | None = None
    last_success_at: datetime | None = None
    last_error_at: datetime | None = None
    last_error: str | None = None
    stats_json: str | None = None
    id: int | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> SyncStateRecord:
        return cls(
            id=row.get("id"),
            source=row["source"],
            key=row["key"],
            cursor=row.get("cursor"),
            etag=row.get("etag"),
            last_run_at=row.get("last_run_at"),
            last_success_at=row.get("last_success_at"),
            last_error_at=row.get("last_error_at"),
            last_error=row.get("last_error"),
            stats_json=row.get("stats_json"),
            updated_at=row.get("updated_at"),
        )

    @property
    def stats(self) -> SyncStats | None:
        return decode_stats(self.stats_json)

    def to_summary(self) -> dict[str, Any]:
        stats = self.stats
        return {
            "id": self.id,
            "source": self.source,
            "key": self.key,
            "cursor": self.cursor,
            "etag": self.etag,
            "last_run_at": to_iso(self.last_run_at),
            "last_success_at": to_iso(self.last_success_at),
            "last_error_at": to_iso(self.last_error_at),
            "last_error": self.last_error,
            "stats": stats.model_dump(mode="json", by_alias=True) if stats else None,
            "updated_at": to_iso(self.updated_at),
        }


class SyncStateService:
    def __init__(
        self, repository: SyncStateRepository, *, stats_max_bytes: int = STATS_JSON_MAX_BYTES
    ) -> None:
        self._repo = repository
        self._stats_max_bytes = stats_max_bytes

    async def get(self, source: str, key: str) -> SyncStateRecord | None:
        row = await self._repo.async_get_state(source, key)
        return SyncStateRecord.from_row(row) if row else None

    async def ensure(self, source: str, key: str) -> SyncStateRecord:
        return SyncStateRecord.from_row(await self._repo.async_ensure_state(source, key))

    async def touch_run(self, source: str, key: str, when: datetime | None = None) -> None:
        """Record that a run started, whatever its outcome turns out to be."""
        await self._repo.async_update_state(source, key, {"last_run_at": when or utc_now()})

    async def set_cursor_etag(
        self, source: str, key: str, *, cursor: str | None = UNSET, etag: str | None = UNSET
    ) -> None:
        fields: dict[str, Any] = {}
        if cursor is not UNSET:
            fields["cursor"] = cursor
        if etag is not UNSET:
            fields["etag"] = sanitize_etag(etag)
        if fields:
            await self._repo.async_update_state(source, key, fields)

    async def mark_success(
        self,
        source: str,
        key: str,
        *,
        cursor: str | None = UNSET,
        etag: str | None = UNSET,
        stats: SyncStats | None = None,
        finished_at: datetime | None = None,
    ) -> None:
        """Store the finished run and retire any earlier failure.

        ``cursor`` and ``etag`` are written only when passed; leaving them out
        keeps the stored values.
        """
        finished = finished_at or utc_now()
        fields: dict[str, Any] = {
            "last_run_at": finished,
            "last_success_at": finished,
            "last_error_at": None,
            "last_error": None,
        }
        if cursor is not UNSET:
            fields["cursor"] = cursor
        if etag is not UNSET:
            fields["etag"] = sanitize_etag(etag)
        if stats is not None:
            fields["stats_json"] = encode_stats(stats, limit=self._stats_max_bytes)

        await self._repo.async_update_state(source, key, fields)
        await self._append_history(source, key)

    async def mark_error(
        self,
        source: str,
        key: str,
        error: BaseException | str | None,
        when: datetime | None = None,
    ) -> None:
        """Store the failure only; cursor and etag stay as the last success left them."""
        fields: dict[str, Any] = {
            "last_error_at": when or utc_now(),
            "last_error": normalize_error_message(error),
        }
        await self._repo.async_update_state(source, key, fields)
        await self._append_history(source, key)

    async def history(self, source: str, key: str, *, limit: int = 20) -> list[dict[str, Any]]:
        return await self._repo.async_list_history(source, key, limit=limit)

    async def _append_history(self, source: str, key: str) -> None:
        try:
            row = await self._repo.async_get_state(source, key)
            if row is None:
                return
            await self._repo.async_append_history(
                {
                    "source": source,
                    "key": key,
                    "cursor": row.get("cursor"),
                    "etag": row.get("etag"),
                    "last_run_at": row.get("last_run_at"),
                    "last_success_at": row.get("last_success_at"),
                    "last_error_at": row.get("last_error_at"),
                    "last_error": row.get("last_error"),
                    "stats_json": row.get("stats_json"),
                    "created_at": utc_now(),
                }
            )
        except Exception as exc:
            logger.warning(
                "sync_history_append_failed",
                exc_info=True,
                extra={"source": source, "key": key, "error": str(exc)},
            )
