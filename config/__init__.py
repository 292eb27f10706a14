"""Config package."""
from .config import (
    CloudSyncConfig,
    GitConfig,
    GitHubConfig,
    S3Config,
    SFTPConfig,
    SyncConfig,
    WebDAVConfig,
    load_config,
    save_example_config,
)

__all__ = [
    "CloudSyncConfig",
    "SyncConfig",
    "GitConfig",
    "S3Config",
    "WebDAVConfig",
    "GitHubConfig",
    "SFTPConfig",
    "load_config",
    "save_example_config",
]
