from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from ._validators import _parse_bounded_int


class SyncConfig(BaseModel):
    """Defaults for the starred-repository reconciliation run."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    source: str = Field(default="github:stars", validation_alias="SYNC_SOURCE")
    per_page: int = Field(default=50, validation_alias="SYNC_PER_PAGE")
    max_pages: int = Field(
        default=0,
        validation_alias="SYNC_MAX_PAGES",
        description="0 walks every page",
    )
    soft_delete_unstarred: bool = Field(
        default=False, validation_alias="SYNC_SOFT_DELETE_UNSTARRED"
    )
    precheck_enabled: bool = Field(default=True, validation_alias="SYNC_PRECHECK_ENABLED")
    stats_max_bytes: int = Field(default=4096, validation_alias="SYNC_STATS_MAX_BYTES")
    readme_cache_ttl_seconds: int = Field(
        default=21_600, validation_alias="SYNC_README_CACHE_TTL_SECONDS"
    )

    @field_validator("source", mode="before")
    @classmethod
    def _validate_source(cls, value: Any) -> str:
        source = str(value or "github:stars").strip()
        if len(source) > 100:
            msg = "Sync source name is too long"
            raise ValueError(msg)
        return source

    @field_validator(
        "per_page", "max_pages", "stats_max_bytes", "readme_cache_ttl_seconds", mode="before"
    )
    @classmethod
    def _validate_ints(cls, value: Any, info: ValidationInfo) -> int:
        limits: dict[str, tuple[int, int]] = {
            "per_page": (1, 100),
            "max_pages": (0, 10_000),
            "stats_max_bytes": (256, 65_536),
            "readme_cache_ttl_seconds": (60, 604_800),
        }
        return _parse_bounded_int(
            value,
            default=cls.model_fields[info.field_name].default,
            name=info.field_name.replace("_", " "),
            bounds=limits[info.field_name],
        )
