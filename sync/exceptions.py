"""Errors raised by the sync engine."""
from typing import List, Optional

from storage.exceptions import CloudSyncError

MAX_SAMPLE_ERRORS = 5


class AggregateTransferError(CloudSyncError):
    """Too many per-file failures within one batch or one provider run."""

    def __init__(
        self,
        message: str,
        failed: int,
        attempted: int,
        samples: Optional[List[str]] = None,
    ):
        self.failed = failed
        self.attempted = attempted
        self.samples = list(samples or [])[:MAX_SAMPLE_ERRORS]
        if self.samples:
            message = f"{message} Sample errors: {'; '.join(self.samples)}"
        super().__init__(message)


class SyncCancelledError(CloudSyncError):
    """Raised when a running sync observes its cancel token."""
