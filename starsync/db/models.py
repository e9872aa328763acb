"""Peewee ORM models for the starsync database."""

from __future__ import annotations

import datetime as _dt
from typing import Any

import peewee
from playhouse.sqlite_ext import JSONField

from starsync.core.time_utils import ensure_utc, utc_now

# A proxy that will be initialised with the concrete database instance at runtime.
database_proxy: peewee.Database = peewee.DatabaseProxy()


class UTCDateTimeField(peewee.DateTimeField):
    """Store naive UTC in SQLite and hand back timezone-aware values."""

    def db_value(self, value: Any) -> Any:
        if isinstance(value, _dt.datetime):
            value = ensure_utc(value).replace(tzinfo=None)
        return super().db_value(value)

    def python_value(self, value: Any) -> Any:
        value = super().python_value(value)
        if isinstance(value, _dt.datetime):
            return ensure_utc(value)
        return value


class BaseModel(peewee.Model):
    """Base Peewee model bound to the lazily initialised database proxy."""

    def save(self, *args: Any, **kwargs: Any) -> int:
        if hasattr(self, "updated_at"):
            self.updated_at = utc_now()
        return super().save(*args, **kwargs)

    class Meta:
        database = database_proxy
        legacy_table_names = False


class Project(BaseModel):
    """A starred repository mirrored from GitHub."""

    id = peewee.AutoField()
    github_id = peewee.BigIntegerField(unique=True)
    name = peewee.TextField()
    full_name = peewee.TextField(index=True)
    url = peewee.TextField()
    description = peewee.TextField(null=True)
    language = peewee.TextField(null=True)
    stars = peewee.IntegerField(default=0)
    forks = peewee.IntegerField(default=0)
    last_commit = UTCDateTimeField(null=True)
    starred_at = UTCDateTimeField(null=True)
    topics = JSONField(null=True)
    last_sync_at = UTCDateTimeField(null=True)
    touched_at = UTCDateTimeField(null=True)
    created_at = UTCDateTimeField(default=utc_now)
    updated_at = UTCDateTimeField(default=utc_now)

    class Meta:
        table_name = "projects"


class ArchivedProject(BaseModel):
    """Snapshot of a project taken right before it was deleted."""

    id = peewee.AutoField()
    github_id = peewee.BigIntegerField(index=True)
    original_project_id = peewee.IntegerField(null=True)
    reason = peewee.TextField()
    snapshot = JSONField()
    archived_at = UTCDateTimeField(default=utc_now)

    class Meta:
        table_name = "archived_projects"


class SyncState(BaseModel):
    id = peewee.AutoField()
    source = peewee.TextField()
    key = peewee.TextField()
    cursor = peewee.TextField(null=True)
    etag = peewee.TextField(null=True)
    last_run_at = UTCDateTimeField(null=True)
    last_success_at = UTCDateTimeField(null=True)
    last_error_at = UTCDateTimeField(null=True)
    last_error = peewee.TextField(null=True)
    stats_json = peewee.TextField(null=True)
    created_at = UTCDateTimeField(default=utc_now)
    updated_at = UTCDateTimeField(default=utc_now)

    class Meta:
        table_name = "sync_states"
        indexes = ((("source", "key"), True),)


class SyncStateHistory(BaseModel):
    """Append-only record of every finished run attempt."""

    id = peewee.AutoField()
    source = peewee.TextField()
    key = peewee.TextField()
    cursor = peewee.TextField(null=True)
    etag = peewee.TextField(null=True)
    last_run_at = UTCDateTimeField(null=True)
    last_success_at = UTCDateTimeField(null=True)
    last_error_at = UTCDateTimeField(null=True)
    last_error = peewee.TextField(null=True)
    stats_json = peewee.TextField(null=True)
    created_at = UTCDateTimeField(default=utc_now)

    class Meta:
        table_name = "sync_state_history"
        indexes = ((("source", "key", "created_at"), False),)


class RefreshToken(BaseModel):
    id = peewee.AutoField()
    user_id = peewee.IntegerField(index=True)
    token_hash = peewee.TextField(unique=True)
    expires_at = UTCDateTimeField(index=True)
    revoked = peewee.BooleanField(default=False)
    revoked_at = UTCDateTimeField(null=True)
    created_at = UTCDateTimeField(default=utc_now)

    class Meta:
        table_name = "refresh_tokens"


def model_to_dict(model: BaseModel | None) -> dict[str, Any] | None:
    """Convert a Peewee model instance to a plain dictionary."""
    if model is None:
        return None
    data: dict[str, Any] = {}
    for field_name in model._meta.sorted_field_names:
        value = getattr(model, field_name)
        if isinstance(value, peewee.Model):
            value = value.get_id()
        data[field_name] = value
    return data


ALL_MODELS: tuple[type[BaseModel], ...] = (
    Project,
    ArchivedProject,
    SyncState,
    SyncStateHistory,
    RefreshToken,
)
