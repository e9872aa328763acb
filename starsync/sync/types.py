"""Value types shared by the sync engine, state store and job layer."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime  # noqa: TC003 - Pydantic needs this at runtime
from enum import StrEnum
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from starsync.sync.errors import SyncError


class SyncMode(StrEnum):
    FULL = "full"
    INCREMENTAL = "incremental"


class SyncActor(StrEnum):
    CRON = "cron"
    MANUAL = "manual"


class SyncOptions(BaseModel):
    """Per-run knobs; unset values fall back to ``SyncConfig``."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    mode: SyncMode = SyncMode.INCREMENTAL
    per_page: int | None = Field(default=None, ge=1, le=100, alias="perPage")
    max_pages: int | None = Field(default=None, ge=0, alias="maxPages")
    soft_delete_unstarred: bool | None = Field(default=None, alias="softDeleteUnstarred")
    respect_cursor: bool = Field(default=False, alias="respectCursor")


class SyncStats(BaseModel):
    """Counters of one run; serialized with camelCase keys."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    scanned: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    soft_deleted: int = Field(default=0, alias="softDeleted")
    pages: int = 0
    archive_failed: int = Field(default=0, alias="archiveFailed")
    rate_limit_remaining: int | None = Field(default=None, alias="rateLimitRemaining")
    started_at: datetime | None = Field(default=None, alias="startedAt")
    finished_at: datetime | None = Field(default=None, alias="finishedAt")
    duration_ms: int | None = Field(default=None, alias="durationMs")
    stop_reason: str | None = Field(default=None, alias="stopReason")
    errors: list[str] = Field(default_factory=list)

    @property
    def processed(self) -> int:
        return self.created + self.updated + self.unchanged


@dataclass
class SyncOutcome:
    """Result of a run: stats on success, the classified error otherwise."""

    stats: SyncStats
    error: SyncError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> SyncStats:
        if self.error is not None:
            raise self.error
        return self.stats
