"""SQLite implementation of the mirrored project repository."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from starsync.core.time_utils import to_iso, utc_now
from starsync.db.models import ArchivedProject, Project, model_to_dict
from starsync.infrastructure.persistence.sqlite.base import SqliteBaseRepository

if TYPE_CHECKING:
    from collections.abc import Iterable

_WRITABLE_FIELDS = frozenset(Project._meta.sorted_field_names) - {"id", "created_at"}


def _snapshot(row: dict[str, Any]) -> dict[str, Any]:
    return {
        key: to_iso(value) if isinstance(value, datetime) else value
        for key, value in row.items()
    }


class SqliteProjectRepositoryAdapter(SqliteBaseRepository):
    """Adapter for Project and ArchivedProject operations."""

    async def async_get_by_github_id(self, github_id: int) -> dict[str, Any] | None:
        def _query() -> dict[str, Any] | None:
            return model_to_dict(Project.get_or_none(Project.github_id == github_id))

        return await self._execute(_query, operation_name="get_project", read_only=True)

    async def async_create_project(self, data: dict[str, Any]) -> int:
        fields = {k: v for k, v in data.items() if k in _WRITABLE_FIELDS}

        def _create() -> int:
            return Project.create(**fields).id

        return await self._execute(_create, operation_name="create_project")

    async def async_update_project(self, project_id: int, fields: dict[str, Any]) -> None:
        """Write exactly the given columns (plus ``updated_at``)."""
        values = {k: v for k, v in fields.items() if k in _WRITABLE_FIELDS}
        if not values:
            return
        values.setdefault("updated_at", utc_now())

        def _update() -> None:
            Project.update(**values).where(Project.id == project_id).execute()

        await self._execute(_update, operation_name="update_project")

    async def async_list_ids_not_in(self, github_ids: Iterable[int]) -> list[int]:
        """Project ids whose GitHub id is absent from ``github_ids``."""
        seen = set(github_ids)

        def _query() -> list[int]:
            return [
                row.id
                for row in Project.select(Project.id, Project.github_id).order_by(Project.id)
                if row.github_id not in seen
            ]

        return await self._execute(_query, operation_name="list_unseen_projects", read_only=True)

    async def async_archive_and_delete(self, project_id: int, *, reason: str) -> int | None:
        """Snapshot then delete a project in one transaction.

        Returns the archive row id, or None when the project no longer exists.
        """

        def _archive() -> int | None:
            project = Project.get_or_none(Project.id == project_id)
            if project is None:
                return None
            row = model_to_dict(project) or {}
            archived = ArchivedProject.create(
                github_id=project.github_id,
                original_project_id=project.id,
                reason=reason,
                snapshot=_snapshot(row),
                archived_at=utc_now(),
            )
            project.delete_instance()
            return archived.id

        return await self._execute(_archive, operation_name="archive_project")

    async def async_list_archived(self, github_id: int) -> list[dict[str, Any]]:
        def _query() -> list[dict[str, Any]]:
            query = (
                ArchivedProject.select()
                .where(ArchivedProject.github_id == github_id)
                .order_by(ArchivedProject.id)
            )
            return [model_to_dict(row) or {} for row in query]

        return await self._execute(_query, operation_name="list_archived", read_only=True)
