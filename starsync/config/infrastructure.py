from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from ._validators import _parse_bounded_int


class DatabaseConfig(BaseModel):
    """SQLite location and operation limits."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    path: str = Field(default="/data/starsync.db", validation_alias="DB_PATH")
    operation_timeout: float = Field(
        default=30.0,
        validation_alias="DB_OPERATION_TIMEOUT",
        description="Database operation timeout in seconds",
    )
    max_retries: int = Field(
        default=3,
        validation_alias="DB_MAX_RETRIES",
        description="Maximum retries for transient database errors",
    )

    @field_validator("path", mode="before")
    @classmethod
    def _validate_path(cls, value: Any) -> str:
        path = str(value or "/data/starsync.db").strip()
        if "\x00" in path:
            msg = "Database path contains invalid characters"
            raise ValueError(msg)
        return path

    @field_validator("operation_timeout", mode="before")
    @classmethod
    def _validate_timeout(cls, value: Any) -> float:
        if value in (None, ""):
            return 30.0
        try:
            parsed = float(str(value))
        except ValueError as exc:
            msg = "Database operation timeout must be a valid number"
            raise ValueError(msg) from exc
        if parsed <= 0 or parsed > 3600:
            msg = "Database operation timeout must be between 0 and 3600 seconds"
            raise ValueError(msg)
        return parsed

    @field_validator("max_retries", mode="before")
    @classmethod
    def _validate_max_retries(cls, value: Any) -> int:
        return _parse_bounded_int(value, default=3, name="database max retries", bounds=(0, 10))


class RedisConfig(BaseModel):
    """Shared Redis connection settings (queue, locks and cache)."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    cache_enabled: bool = Field(default=True, validation_alias="REDIS_CACHE_ENABLED")
    connect_attempts: int = Field(
        default=5,
        validation_alias="REDIS_CONNECT_ATTEMPTS",
        description="Startup pings before giving up.",
    )
    connect_retry_delay_sec: float = Field(
        default=1.0, validation_alias="REDIS_CONNECT_RETRY_DELAY_SEC"
    )
    url: str | None = Field(default=None, validation_alias="REDIS_URL")
    host: str = Field(default="127.0.0.1", validation_alias="REDIS_HOST")
    port: int = Field(default=6379, validation_alias="REDIS_PORT")
    db: int = Field(default=0, validation_alias="REDIS_DB")
    password: str | None = Field(default=None, validation_alias="REDIS_PASSWORD")
    prefix: str = Field(default="starsync", validation_alias="REDIS_PREFIX")
    socket_timeout: float = Field(default=5.0, validation_alias="REDIS_SOCKET_TIMEOUT")
    cache_timeout_sec: float = Field(default=0.3, validation_alias="REDIS_CACHE_TIMEOUT_SEC")

    @field_validator("url", mode="before")
    @classmethod
    def _normalize_url(cls, value: Any) -> str | None:
        if value in (None, ""):
            return None
        cleaned = str(value).strip()
        if len(cleaned) > 200:
            msg = "Redis URL appears too long"
            raise ValueError(msg)
        return cleaned or None

    @field_validator("host", mode="before")
    @classmethod
    def _validate_host(cls, value: Any) -> str:
        host = str(value or "").strip()
        if not host:
            msg = "Redis host is required when URL is not provided"
            raise ValueError(msg)
        return host

    @field_validator("port", "db", mode="before")
    @classmethod
    def _validate_int_bounds(cls, value: Any, info: ValidationInfo) -> int:
        return _parse_bounded_int(
            value,
            default=cls.model_fields[info.field_name].default,
            name=f"redis {info.field_name}",
            bounds=(0, 65535),
        )

    @field_validator("connect_attempts", mode="before")
    @classmethod
    def _validate_connect_attempts(cls, value: Any) -> int:
        return _parse_bounded_int(value, default=5, name="redis connect attempts", bounds=(1, 30))

    @field_validator(
        "socket_timeout", "cache_timeout_sec", "connect_retry_delay_sec", mode="before"
    )
    @classmethod
    def _validate_timeouts(cls, value: Any, info: ValidationInfo) -> float:
        default = cls.model_fields[info.field_name].default
        try:
            parsed = float(str(value if value not in (None, "") else default))
        except ValueError as exc:
            msg = f"Redis {info.field_name.replace('_', ' ')} must be a valid number"
            raise ValueError(msg) from exc
        if parsed <= 0 or parsed > 60:
            msg = f"Redis {info.field_name.replace('_', ' ')} must be between 0 and 60 seconds"
            raise ValueError(msg)
        return parsed

    @field_validator("prefix", mode="before")
    @classmethod
    def _validate_prefix(cls, value: Any) -> str:
        prefix = str(value or "starsync").strip()
        if not prefix:
            msg = "Redis prefix cannot be empty"
            raise ValueError(msg)
        if any(ch in prefix for ch in (" ", "\t", "\n", "\r")):
            msg = "Redis prefix cannot contain whitespace"
            raise ValueError(msg)
        return prefix
