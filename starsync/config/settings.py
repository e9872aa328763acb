from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from ._validators import _parse_bounded_int
from .async_jobs import MaintenanceConfig, QueueConfig
from .github import GitHubConfig
from .infrastructure import DatabaseConfig, RedisConfig
from .sync import SyncConfig

logger = logging.getLogger(__name__)


class RuntimeConfig(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_file: str | None = Field(default=None, validation_alias="LOG_FILE")
    api_host: str = Field(default="0.0.0.0", validation_alias="API_HOST")
    api_port: int = Field(default=8080, validation_alias="API_PORT")

    @field_validator("log_level", mode="before")
    @classmethod
    def _validate_log_level(cls, value: Any) -> str:
        level = str(value or "INFO").upper().strip()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            msg = f"Invalid log level: {level}"
            raise ValueError(msg)
        return level

    @field_validator("api_port", mode="before")
    @classmethod
    def _validate_api_port(cls, value: Any) -> int:
        return _parse_bounded_int(value, default=8080, name="API port", bounds=(1, 65535))


class NotifyConfig(BaseModel):
    """Run notification routing."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    enabled: bool = Field(
        default=True, validation_alias=AliasChoices("NOTIFY_ENABLED", "NOTIFY_EMAIL_ENABLED")
    )
    mail_to: str = Field(default="", validation_alias="MAIL_TO")


@dataclass(frozen=True)
class AppConfig:
    github: GitHubConfig
    sync: SyncConfig
    queue: QueueConfig
    maintenance: MaintenanceConfig
    redis: RedisConfig
    database: DatabaseConfig
    notify: NotifyConfig
    runtime: RuntimeConfig

    @property
    def sync_key(self) -> str:
        """State key of the single recurring sync task."""
        return f"user:{self.github.username}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and ``.env``.

    Nested models are populated by matching the validation_alias on each field.
    """

    model_config = SettingsConfigDict(
        extra="ignore",
        populate_by_name=True,
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )

    github: GitHubConfig = Field(default_factory=GitHubConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    maintenance: MaintenanceConfig = Field(default_factory=MaintenanceConfig)
    redis: RedisConfig = Field(default_factory=RedisConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    notify: NotifyConfig = Field(default_factory=NotifyConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)

    @model_validator(mode="before")
    @classmethod
    def _build_nested_from_env(cls, data: dict[str, Any]) -> dict[str, Any]:
        """Build nested config objects from flat environment variables.

        Constructor arguments take precedence over the process environment.
        """
        if not isinstance(data, dict):
            return data

        result = dict(data)
        merged_source = {**os.environ, **data}

        for field_name, field_info in cls.model_fields.items():
            annotation = field_info.annotation
            if not isinstance(annotation, type) or not issubclass(annotation, BaseModel):
                continue

            nested_data: dict[str, Any] = {}
            for nested_field_name, nested_field in annotation.model_fields.items():
                env_value = cls._resolve_env_value(merged_source, nested_field)
                if env_value is not None:
                    nested_data[nested_field_name] = env_value

            if nested_data:
                if isinstance(result.get(field_name), dict):
                    result[field_name] = {**nested_data, **result[field_name]}
                else:
                    result[field_name] = nested_data

        return result

    @staticmethod
    def _resolve_env_value(data: dict[str, Any], field: Any) -> Any | None:
        aliases: list[str] = []
        alias = field.validation_alias
        if isinstance(alias, AliasChoices):
            aliases.extend(choice for choice in alias.choices if isinstance(choice, str))
        elif isinstance(alias, str):
            aliases.append(alias)
        if field.alias:
            aliases.append(field.alias)

        for name in aliases:
            if name in data:
                return data[name]
        return None

    def as_app_config(self) -> AppConfig:
        return AppConfig(
            github=self.github,
            sync=self.sync,
            queue=self.queue,
            maintenance=self.maintenance,
            redis=self.redis,
            database=self.database,
            notify=self.notify,
            runtime=self.runtime,
        )


def load_config(*, require_github: bool = True, **overrides: Any) -> AppConfig:
    """Load application configuration from environment variables.

    Args:
        require_github: Fail when GITHUB_USERNAME is missing. CLI commands that
            only inspect the queue pass False.
        **overrides: Section overrides, e.g. ``sync={"per_page": 10}``.

    Raises:
        RuntimeError: If configuration validation fails.
    """
    try:
        settings = Settings(**overrides)
    except ValidationError as exc:
        msg = f"Configuration validation failed: {exc}"
        raise RuntimeError(msg) from exc

    if require_github and not settings.github.username:
        msg = "GITHUB_USERNAME is required to synchronize starred repositories"
        raise RuntimeError(msg)
    if not settings.github.token:
        logger.warning("github_token_missing", extra={"effect": "unauthenticated rate limits"})

    return settings.as_app_config()
