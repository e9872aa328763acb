from starsync.infrastructure.persistence.sqlite.repositories.project_repository import (
    SqliteProjectRepositoryAdapter,
)
from starsync.infrastructure.persistence.sqlite.repositories.refresh_token_repository import (
    SqliteRefreshTokenRepositoryAdapter,
)
from starsync.infrastructure.persistence.sqlite.repositories.sync_state_repository import (
    SqliteSyncStateRepositoryAdapter,
)

__all__ = [
    "SqliteProjectRepositoryAdapter",
    "SqliteRefreshTokenRepositoryAdapter",
    "SqliteSyncStateRepositoryAdapter",
]
