"""Sync engine: registry, status tracking and batched transfer orchestration."""
from .exceptions import AggregateTransferError, SyncCancelledError
from .git_workspace import GitResult, GitWorkspace
from .models import (
    ProviderInstance,
    ProviderType,
    SyncDirection,
    SyncStatus,
    SyncStatusRecord,
)
from .orchestrator import CancelToken, SyncHandle, SyncOrchestrator, SyncStats
from .registry import ProviderRegistry, find_duplicate_repo_provider
from .service import CloudSyncService
from .state import StateStore
from .status import StatusTracker
from .walker import FileWalker

__all__ = [
    "AggregateTransferError",
    "SyncCancelledError",
    "GitResult",
    "GitWorkspace",
    "ProviderInstance",
    "ProviderType",
    "SyncDirection",
    "SyncStatus",
    "SyncStatusRecord",
    "CancelToken",
    "SyncHandle",
    "SyncOrchestrator",
    "SyncStats",
    "ProviderRegistry",
    "find_duplicate_repo_provider",
    "CloudSyncService",
    "StateStore",
    "StatusTracker",
    "FileWalker",
]
