"""Job identities, payloads and states for the sync and maintenance queues."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from starsync.sync.types import SyncActor, SyncOptions

SYNC_QUEUE = "sync-stars"
MAINTENANCE_QUEUE = "maintenance"

SYNC_JOB_NAME = "sync-stars"
MAINTENANCE_JOB_NAME = "maintenance"

CRON_SYNC_JOB_ID = f"{SYNC_JOB_NAME}:cron"
MAINTENANCE_JOB_ID = "maintenance:daily"
MANUAL_JOB_PREFIX = f"{SYNC_JOB_NAME}:manual:"


class JobState(StrEnum):
    WAITING = "waiting"
    ACTIVE = "active"
    DELAYED = "delayed"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)


class MaintenanceOptions(BaseModel):
    """Overrides for one cleanup run; unset values use ``MaintenanceConfig``."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    rt_dry_run: bool | None = None
    queue_dry_run: bool | None = None
    use_lock: bool | None = None


class SyncTask(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    kind: Literal["sync"] = "sync"
    options: SyncOptions = Field(default_factory=SyncOptions)
    actor: SyncActor = SyncActor.MANUAL
    note: str | None = None


class MaintenanceTask(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    kind: Literal["maintenance"] = "maintenance"
    options: MaintenanceOptions = Field(default_factory=MaintenanceOptions)
    actor: SyncActor = SyncActor.CRON


Task = Annotated[SyncTask | MaintenanceTask, Field(discriminator="kind")]
TASK_ADAPTER: TypeAdapter[SyncTask | MaintenanceTask] = TypeAdapter(Task)


class JobConflictError(Exception):
    """A job with the same id is still in flight."""

    def __init__(self, job_id: str, state: JobState | str) -> None:
        self.job_id = job_id
        self.state = JobState(state)
        super().__init__(f"Job {job_id} is already {self.state.value}")


@dataclass(frozen=True)
class JobOptions:
    attempts: int = 3
    backoff_ms: int = 30_000
    priority: int = 0
    delay_ms: int = 0


@dataclass
class Job:
    id: str
    name: str
    data: dict[str, Any]
    state: JobState
    instance_id: str
    attempts_made: int = 0
    max_attempts: int = 1
    backoff_ms: int = 0
    priority: int = 0
    created_at: int = 0
    processed_at: int | None = None
    finished_at: int | None = None
    failed_reason: str | None = None
    return_value: Any = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def task(self) -> SyncTask | MaintenanceTask:
        return TASK_ADAPTER.validate_python(self.data)

    @property
    def final_attempt(self) -> bool:
        return self.attempts_made >= self.max_attempts

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "state": self.state.value,
            "attempts_made": self.attempts_made,
            "max_attempts": self.max_attempts,
            "created_at": self.created_at,
            "processed_at": self.processed_at,
            "finished_at": self.finished_at,
            "failed_reason": self.failed_reason,
        }


def hash_sync_options(options: SyncOptions) -> str:
    """Stable short digest of the options that change what a manual run does."""
    payload = {
        "mode": options.mode.value,
        "perPage": options.per_page,
        "maxPages": options.max_pages,
        "softDeleteUnstarred": options.soft_delete_unstarred,
    }
    if options.respect_cursor:
        # omitted when false
        payload["respectCursor"] = True
    canonical = json.dumps(payload, separators=(",", ":"))
    return hashlib.sha1(canonical.encode("utf-8")).hexdigest()[:8]  # noqa: S324


def build_manual_job_id(options: SyncOptions) -> str:
    return f"{MANUAL_JOB_PREFIX}{hash_sync_options(options)}"
