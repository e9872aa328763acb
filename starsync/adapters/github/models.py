"""Pydantic models for the GitHub starred-repository API."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime  # noqa: TC003 - Pydantic needs this at runtime

from pydantic import BaseModel, Field, TypeAdapter

from starsync.core.time_utils import to_iso


class GitHubRepo(BaseModel):
    """Repository payload as returned inside a star entry."""

    id: int
    name: str
    full_name: str
    html_url: str
    description: str | None = None
    language: str | None = None
    stargazers_count: int = 0
    forks_count: int = 0
    pushed_at: datetime | None = None
    topics: list[str] = Field(default_factory=list)
    archived: bool = False

    model_config = {"populate_by_name": True, "extra": "ignore"}


class StarredItem(BaseModel):
    """One entry of ``GET /users/{user}/starred`` with the ``star+json`` media type."""

    starred_at: datetime
    repo: GitHubRepo

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @property
    def cursor(self) -> str:
        """Ordering key of this entry, newest first."""
        return to_iso(self.starred_at) or ""


STARRED_LIST = TypeAdapter(list[StarredItem])


@dataclass
class FetchStarredResult:
    """Outcome of a single starred-page request."""

    items: list[StarredItem] = field(default_factory=list)
    etag: str | None = None
    not_modified: bool = False
    status: int = 200
    rate_limit_remaining: int | None = None
    rate_limit_reset: datetime | None = None
    secondary_rate_limited: bool = False
    retry_after_sec: int | None = None
