from starsync.api.routers import health, sync

__all__ = ["health", "sync"]
