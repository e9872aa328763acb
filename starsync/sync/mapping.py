from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from starsync.core.time_utils import ensure_utc, to_epoch_ms

if TYPE_CHECKING:
    from starsync.adapters.github.models import StarredItem

# Attributes compared on every observation; anything else is never patched.
DIFF_FIELDS: tuple[str, ...] = (
    "name",
    "full_name",
    "url",
    "description",
    "language",
    "stars",
    "forks",
    "last_commit",
)


def map_starred_item(item: StarredItem) -> dict[str, Any]:
    repo = item.repo
    return {
        "github_id": repo.id,
        "name": repo.name,
        "full_name": repo.full_name,
        "url": repo.html_url,
        "description": repo.description,
        "language": repo.language,
        "stars": repo.stargazers_count,
        "forks": repo.forks_count,
        "last_commit": ensure_utc(repo.pushed_at),
        "starred_at": ensure_utc(item.starred_at),
        "topics": list(repo.topics),
    }


def _normalize(value: Any) -> Any:
    if isinstance(value, datetime):
        return to_epoch_ms(value)
    return value


def diff_project(existing: dict[str, Any], incoming: dict[str, Any]) -> dict[str, Any]:
    """Return only the allow-listed attributes whose values changed."""
    patch: dict[str, Any] = {}
    for name in DIFF_FIELDS:
        if _normalize(existing.get(name)) != _normalize(incoming.get(name)):
            patch[name] = incoming.get(name)
    return patch
