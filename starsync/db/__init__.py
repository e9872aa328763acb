from __future__ import annotations

from starsync.db.models import (
    ALL_MODELS,
    ArchivedProject,
    Project,
    RefreshToken,
    SyncState,
    SyncStateHistory,
    database_proxy,
    model_to_dict,
)
from starsync.db.session import DatabaseSessionManager

__all__ = [
    "ALL_MODELS",
    "ArchivedProject",
    "DatabaseSessionManager",
    "Project",
    "RefreshToken",
    "SyncState",
    "SyncStateHistory",
    "database_proxy",
    "model_to_dict",
]
