"""Provider drivers for CloudSync."""
from .base import LocalDriver, ProviderDriver, RemoteEntry, normalize_path, parent_path
from .exceptions import (
    AuthError,
    CloudSyncError,
    NetworkError,
    NotFoundError,
    ProviderError,
    UnknownProviderError,
    ValidationError,
)
from .factory import CONFIG_MODELS, create_driver

__all__ = [
    "ProviderDriver",
    "LocalDriver",
    "RemoteEntry",
    "normalize_path",
    "parent_path",
    "create_driver",
    "CONFIG_MODELS",
    "CloudSyncError",
    "ProviderError",
    "AuthError",
    "NotFoundError",
    "NetworkError",
    "UnknownProviderError",
    "ValidationError",
]
