from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from ._validators import _parse_bounded_int


class GitHubConfig(BaseModel):
    """GitHub REST API access for the starred-repository fetcher."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    token: str = Field(default="", validation_alias="GITHUB_TOKEN")
    username: str = Field(default="", validation_alias="GITHUB_USERNAME")
    api_url: str = Field(default="https://api.github.com", validation_alias="GITHUB_API_URL")
    user_agent: str = Field(default="starsync/0.4", validation_alias="GITHUB_USER_AGENT")
    request_timeout_ms: int = Field(
        default=15_000,
        validation_alias="SYNC_REQUEST_TIMEOUT",
        description="Soft timeout for each GitHub request; expiry counts as a transient failure",
    )
    max_retries: int = Field(default=2, validation_alias="GITHUB_MAX_RETRIES")
    retry_base_delay_ms: int = Field(default=500, validation_alias="GITHUB_RETRY_BASE_DELAY_MS")

    @field_validator("token", mode="before")
    @classmethod
    def _validate_token(cls, value: Any) -> str:
        if value in (None, ""):
            return ""
        token = str(value).strip()
        if len(token) > 500:
            msg = "GitHub token appears to be too long"
            raise ValueError(msg)
        if any(char in token for char in (" ", "\n", "\t")):
            msg = "GitHub token contains invalid characters"
            raise ValueError(msg)
        return token

    @field_validator("username", mode="before")
    @classmethod
    def _validate_username(cls, value: Any) -> str:
        name = str(value or "").strip().lstrip("@")
        if len(name) > 39:
            msg = "GitHub username must be at most 39 characters"
            raise ValueError(msg)
        if name and not all(ch.isalnum() or ch == "-" for ch in name):
            msg = "GitHub username may only contain alphanumerics and hyphens"
            raise ValueError(msg)
        return name

    @field_validator("api_url", mode="before")
    @classmethod
    def _validate_api_url(cls, value: Any) -> str:
        url = str(value or "https://api.github.com").strip()
        if not url.startswith(("http://", "https://")):
            msg = "GitHub API URL must start with http:// or https://"
            raise ValueError(msg)
        return url.rstrip("/")

    @field_validator("request_timeout_ms", "max_retries", "retry_base_delay_ms", mode="before")
    @classmethod
    def _validate_ints(cls, value: Any, info: ValidationInfo) -> int:
        limits: dict[str, tuple[int, int]] = {
            "request_timeout_ms": (500, 300_000),
            "max_retries": (0, 10),
            "retry_base_delay_ms": (0, 60_000),
        }
        return _parse_bounded_int(
            value,
            default=cls.model_fields[info.field_name].default,
            name=info.field_name.replace("_", " "),
            bounds=limits[info.field_name],
        )

    @property
    def request_timeout_sec(self) -> float:
        return self.request_timeout_ms / 1000.0
