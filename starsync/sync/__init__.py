from starsync.sync.archive import ArchiveReason, ArchiveService
from starsync.sync.engine import StarSyncService
from starsync.sync.errors import (
    FatalSyncError,
    RateLimitedError,
    SyncError,
    TransientSyncError,
    classify_error,
)
from starsync.sync.state import SyncStateRecord, SyncStateService
from starsync.sync.types import SyncActor, SyncMode, SyncOptions, SyncOutcome, SyncStats

__all__ = [
    "ArchiveReason",
    "ArchiveService",
    "FatalSyncError",
    "RateLimitedError",
    "StarSyncService",
    "SyncActor",
    "SyncError",
    "SyncMode",
    "SyncOptions",
    "SyncOutcome",
    "SyncStateRecord",
    "SyncStateService",
    "SyncStats",
    "TransientSyncError",
    "classify_error",
]
