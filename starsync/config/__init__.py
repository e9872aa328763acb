from __future__ import annotations

from .async_jobs import MaintenanceConfig, QueueConfig
from .github import GitHubConfig
from .infrastructure import DatabaseConfig, RedisConfig
from .settings import AppConfig, NotifyConfig, RuntimeConfig, Settings, load_config
from .sync import SyncConfig

__all__ = [
    "AppConfig",
    "DatabaseConfig",
    "GitHubConfig",
    "MaintenanceConfig",
    "NotifyConfig",
    "QueueConfig",
    "RedisConfig",
    "RuntimeConfig",
    "Settings",
    "SyncConfig",
    "load_config",
]
