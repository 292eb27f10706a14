"""Per-provider sync status tracking."""
import logging
from typing import Dict, Optional

from sync.models import SyncStatus, SyncStatusRecord, utc_now
from sync.state import StateStore

logger = logging.getLogger(__name__)


class StatusTracker:
    """
    Owns the provider-id -> SyncStatusRecord map of the state document.

    Every mark() stamps the current UTC time and persists immediately. The
    error message is kept only while the status is ``error``.
    """

    def __init__(self, store: StateStore):
        self.store = store

    def mark(
        self,
        provider_id: str,
        status: SyncStatus,
        error: Optional[str] = None,
    ) -> Optional[SyncStatusRecord]:
        """
        Record a status transition.

        Args:
            provider_id: Provider whose status changes
            status: New status
            error: Human-readable message, stored only for ``error``

        Returns:
            The new record, or None if the provider no longer exists
        """
        if not any(p.id == provider_id for p in self.store.providers):
            logger.warning(f"[StatusTracker] Ignoring status for unknown provider {provider_id}")
            return None

        status = SyncStatus(status)
        record = SyncStatusRecord(
            status=status,
            last_sync_time=utc_now(),
            last_sync_error=error if status is SyncStatus.ERROR else None,
        )
        self.store.sync_status[provider_id] = record
        self.store.save()

        if status is SyncStatus.ERROR:
            logger.error(f"[StatusTracker] {provider_id} -> {status.value}: {error}")
        else:
            logger.info(f"[StatusTracker] {provider_id} -> {status.value}")
        return record.model_copy()

    def get(self, provider_id: str) -> SyncStatusRecord:
        record = self.store.sync_status.get(provider_id)
        return record.model_copy() if record else SyncStatusRecord()

    def get_all(self) -> Dict[str, SyncStatusRecord]:
        """Snapshot of every provider's status (pending for providers never synced)."""
        return {
            p.id: self.get(p.id)
            for p in self.store.providers
        }
