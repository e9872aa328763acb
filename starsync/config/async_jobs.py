from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from ._validators import _parse_bounded_int, validate_cron_expression

QueueRole = Literal["both", "worker", "producer"]


class QueueConfig(BaseModel):
    """Durable job queue, worker pool and recurring schedule settings."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    prefix: str = Field(default="starsync", validation_alias="BULL_PREFIX")
    role: QueueRole = Field(default="both", validation_alias="BULL_ROLE")
    sync_cron: str = Field(default="0 5 * * *", validation_alias="SYNC_STARS_CRON")
    timezone: str = Field(default="UTC", validation_alias="SYNC_TIMEZONE")
    concurrency: int = Field(default=2, validation_alias="SYNC_CONCURRENCY")
    job_attempts: int = Field(default=3, validation_alias="SYNC_JOB_ATTEMPTS")
    job_backoff_ms: int = Field(default=30_000, validation_alias="SYNC_JOB_BACKOFF_MS")
    remove_on_complete: int = Field(default=1_000, validation_alias="QUEUE_KEEP_COMPLETED")
    remove_on_fail: int = Field(default=5_000, validation_alias="QUEUE_KEEP_FAILED")
    poll_interval_sec: float = Field(default=1.0, validation_alias="QUEUE_POLL_INTERVAL_SEC")
    stalled_after_sec: int = Field(
        default=1_800,
        validation_alias="QUEUE_STALLED_AFTER_SEC",
        description="Active jobs older than this are assumed abandoned and requeued",
    )

    @field_validator("role", mode="before")
    @classmethod
    def _validate_role(cls, value: Any) -> str:
        role = str(value or "both").strip().lower()
        if role not in {"both", "worker", "producer"}:
            msg = f"Invalid queue role: {role}. Must be one of both, worker, producer"
            raise ValueError(msg)
        return role

    @field_validator("prefix", mode="before")
    @classmethod
    def _validate_prefix(cls, value: Any) -> str:
        prefix = str(value or "starsync").strip()
        if any(ch in prefix for ch in (" ", "\t", "\n", "\r")):
            msg = "Queue prefix cannot contain whitespace"
            raise ValueError(msg)
        return prefix or "starsync"

    @field_validator("sync_cron", mode="before")
    @classmethod
    def _validate_cron(cls, value: Any) -> str:
        return validate_cron_expression(value, default="0 5 * * *")

    @field_validator(
        "concurrency",
        "job_attempts",
        "job_backoff_ms",
        "remove_on_complete",
        "remove_on_fail",
        "stalled_after_sec",
        mode="before",
    )
    @classmethod
    def _validate_ints(cls, value: Any, info: ValidationInfo) -> int:
        limits: dict[str, tuple[int, int]] = {
            "concurrency": (1, 64),
            "job_attempts": (1, 20),
            "job_backoff_ms": (0, 3_600_000),
            "remove_on_complete": (1, 1_000_000),
            "remove_on_fail": (1, 1_000_000),
            "stalled_after_sec": (30, 86_400),
        }
        return _parse_bounded_int(
            value,
            default=cls.model_fields[info.field_name].default,
            name=info.field_name.replace("_", " "),
            bounds=limits[info.field_name],
        )

    @field_validator("poll_interval_sec", mode="before")
    @classmethod
    def _validate_poll_interval(cls, value: Any) -> float:
        default = cls.model_fields["poll_interval_sec"].default
        try:
            parsed = float(str(value if value not in (None, "") else default))
        except ValueError as exc:
            msg = "Queue poll interval must be a valid number"
            raise ValueError(msg) from exc
        if parsed <= 0 or parsed > 60:
            msg = "Queue poll interval must be between 0 and 60 seconds"
            raise ValueError(msg)
        return parsed


class MaintenanceConfig(BaseModel):
    """Scheduled cleanup of auxiliary records and queue history."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    enabled: bool = Field(default=True, validation_alias="MAINT_ENABLED")
    cron: str = Field(default="0 3 * * *", validation_alias="MAINT_CRON")
    use_lock: bool = Field(default=True, validation_alias="MAINT_USE_LOCK")
    lock_ttl_seconds: int = Field(default=1_800, validation_alias="MAINT_LOCK_TTL_SECONDS")

    rt_expired_clean_after_days: int = Field(
        default=0, validation_alias="RT_EXPIRED_CLEAN_AFTER_DAYS"
    )
    rt_revoked_retention_days: int = Field(default=7, validation_alias="RT_REVOKED_RETENTION_DAYS")
    rt_batch_size: int = Field(default=1_000, validation_alias="RT_CLEAN_BATCH")
    rt_dry_run: bool = Field(default=True, validation_alias="RT_CLEAN_DRY_RUN")

    queue_dry_run: bool = Field(default=True, validation_alias="BULL_CLEAN_DRY_RUN")
    completed_after_days: int = Field(default=3, validation_alias="BULL_CLEAN_COMPLETED_AFTER_DAYS")
    failed_after_days: int = Field(default=30, validation_alias="BULL_CLEAN_FAILED_AFTER_DAYS")
    trim_events: int = Field(default=1_000, validation_alias="BULL_TRIM_EVENTS")

    @field_validator("cron", mode="before")
    @classmethod
    def _validate_cron(cls, value: Any) -> str:
        return validate_cron_expression(value, default="0 3 * * *")

    @field_validator(
        "lock_ttl_seconds",
        "rt_expired_clean_after_days",
        "rt_revoked_retention_days",
        "rt_batch_size",
        "completed_after_days",
        "failed_after_days",
        "trim_events",
        mode="before",
    )
    @classmethod
    def _validate_ints(cls, value: Any, info: ValidationInfo) -> int:
        limits: dict[str, tuple[int, int]] = {
            "lock_ttl_seconds": (10, 86_400),
            "rt_expired_clean_after_days": (0, 3_650),
            "rt_revoked_retention_days": (0, 3_650),
            "rt_batch_size": (1, 100_000),
            "completed_after_days": (0, 3_650),
            "failed_after_days": (0, 3_650),
            "trim_events": (0, 1_000_000),
        }
        return _parse_bounded_int(
            value,
            default=cls.model_fields[info.field_name].default,
            name=info.field_name.replace("_", " "),
            bounds=limits[info.field_name],
        )
