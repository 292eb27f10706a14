"""
Sync orchestration engine.

Moves files between the local root and registered providers in fixed-size
batches: transfers inside a batch run concurrently on worker threads, batches
run strictly one after another with a pause in between, and a run is aborted
or marked failed once failures cross configured thresholds.
"""
import asyncio
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar, Union

from config import SyncConfig
from storage.base import ProviderDriver, RemoteEntry
from storage.exceptions import CloudSyncError, NotFoundError, ValidationError
from storage.factory import create_driver
from sync.exceptions import MAX_SAMPLE_ERRORS, AggregateTransferError, SyncCancelledError
from sync.models import ProviderInstance, SyncDirection, SyncStatus
from sync.registry import ProviderRegistry
from sync.status import StatusTracker
from sync.walker import FileWalker

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class SyncStats:
    """Statistics from one provider's transfer run."""
    files_found: int = 0
    files_transferred: int = 0
    files_failed: int = 0
    batches_completed: int = 0
    duration_seconds: float = 0.0
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def __str__(self) -> str:
        return (
            f"SyncStats(found={self.files_found}, transferred={self.files_transferred}, "
            f"failed={self.files_failed}, batches={self.batches_completed}, "
            f"duration={self.duration_seconds:.1f}s)"
        )


class CancelToken:
    """Cooperative cancellation flag, safe to set from any thread."""

    def __init__(self):
        self._event = threading.Event()
        self.reason = "cancelled by user"

    def cancel(self, reason: Optional[str] = None) -> None:
        if reason:
            self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise SyncCancelledError(f"Sync cancelled: {self.reason}")


class SyncHandle:
    """
    Handle to a sync run started by SyncOrchestrator.trigger().

    Await it (or ``wait()``) for the per-provider results; ``cancel()`` stops
    the run before the next batch or file dispatch.
    """

    def __init__(self, task: "asyncio.Task", token: CancelToken, direction: SyncDirection):
        self.task = task
        self.token = token
        self.direction = direction

    def cancel(self, reason: Optional[str] = None) -> None:
        logger.info(f"[SyncHandle] Cancellation requested for {self.direction.value} run")
        self.token.cancel(reason)

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    def done(self) -> bool:
        return self.task.done()

    async def wait(self) -> List[Dict[str, Any]]:
        return await self.task

    def __await__(self):
        return self.task.__await__()


class SyncOrchestrator:
    """
    Runs upload and download operations against registered providers.

    Upload targets every enabled provider (snapshot taken when the run
    starts), one provider at a time. Download targets exactly one provider.
    Per-file failures are collected, never retried, and only escalate when:
    - more than ``batch_failure_ratio`` of a batch failed (run aborted)
    - at least ``total_failure_ratio`` of all files failed (provider error)
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        tracker: StatusTracker,
        local_root: Union[str, Path],
        sync_config: Optional[SyncConfig] = None,
        walker: Optional[FileWalker] = None,
        driver_factory: Callable[[ProviderInstance], ProviderDriver] = create_driver,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize orchestrator.

        Args:
            registry: Loaded provider registry
            tracker: Status tracker sharing the registry's state store
            local_root: Local directory tree being synced
            sync_config: Batch sizes, delay and failure thresholds
            walker: Local file enumerator (built from sync_config if None)
            driver_factory: Builds a driver for a provider instance
            sleep: Coroutine used for the inter-batch pause
        """
        self.registry = registry
        self.tracker = tracker
        self.local_root = Path(local_root)
        self.config = sync_config or SyncConfig()
        self.walker = walker or FileWalker(
            excluded_dirs=self.config.excluded_dirs,
            exclude_hidden=self.config.exclude_hidden,
        )
        self.driver_factory = driver_factory
        self.sleep = sleep

    # ------------------------------------------------------------------ #
    # Entry points
    # ------------------------------------------------------------------ #

    def _resolve_targets(
        self,
        direction: SyncDirection,
        target_id: Optional[str],
    ) -> List[ProviderInstance]:
        if direction is SyncDirection.UPLOAD:
            return [p for p in self.registry.list() if p.enabled]

        if not target_id:
            raise ValidationError("Download operation requires a target provider ID.")
        provider = self.registry.get_by_id(target_id)
        if provider is None:
            raise NotFoundError(f"Download target provider {target_id} not found.")
        return [provider]

    def trigger(
        self,
        direction: Union[SyncDirection, str],
        target_id: Optional[str] = None,
    ) -> SyncHandle:
        """
        Start a sync run in the background and return its handle.

        Must be called from a running event loop. A download without a
        target or with an unknown target fails immediately.

        Raises:
            ValidationError: Download without target_id
            NotFoundError: Unknown target_id
        """
        direction = SyncDirection(direction)
        targets = self._resolve_targets(direction, target_id)
        token = CancelToken()
        task = asyncio.ensure_future(self._run(direction, targets, token))
        return SyncHandle(task, token, direction)

    async def run(
        self,
        direction: Union[SyncDirection, str],
        target_id: Optional[str] = None,
        token: Optional[CancelToken] = None,
    ) -> List[Dict[str, Any]]:
        """Run a sync to completion in the current task."""
        direction = SyncDirection(direction)
        targets = self._resolve_targets(direction, target_id)
        return await self._run(direction, targets, token or CancelToken())

    async def _run(
        self,
        direction: SyncDirection,
        targets: Sequence[ProviderInstance],
        token: CancelToken,
    ) -> List[Dict[str, Any]]:
        logger.info("=" * 80)
        logger.info(f"[SyncOrchestrator] Starting {direction.value} for {len(targets)} provider(s)")
        logger.info("=" * 80)

        start_time = time.time()
        results: List[Dict[str, Any]] = []

        if direction is SyncDirection.DOWNLOAD and targets and not targets[0].enabled:
            provider = targets[0]
            logger.warning(f"[SyncOrchestrator] Download target provider {provider.id} is disabled")
            self.tracker.mark(provider.id, SyncStatus.DISABLED)
            return [self._result(provider, SyncStatus.DISABLED, None, None)]

        if not targets:
            logger.info("[SyncOrchestrator] No enabled providers found for the operation")
            return results

        for provider in targets:
            if token.cancelled:
                logger.info(
                    f"[SyncOrchestrator] Run cancelled, skipping remaining providers "
                    f"starting at {provider.name}"
                )
                break
            result = await self._sync_provider(direction, provider, token)
            results.append(result)
            if result.get("cancelled"):
                break

        duration = time.time() - start_time
        logger.info("=" * 80)
        logger.info(f"[SyncOrchestrator] {direction.value} complete in {duration:.1f}s")
        logger.info(f"  Providers processed: {len(results)}")
        logger.info(f"  Successful: {sum(1 for r in results if r['success'])}")
        logger.info("=" * 80)

        return results

    # ------------------------------------------------------------------ #
    # Per-provider run
    # ------------------------------------------------------------------ #

    @staticmethod
    def _result(
        provider: ProviderInstance,
        status: SyncStatus,
        stats: Optional[SyncStats],
        error: Optional[str],
        cancelled: bool = False,
    ) -> Dict[str, Any]:
        return {
            "provider_id": provider.id,
            "provider_name": provider.name,
            "success": status is SyncStatus.SUCCESS,
            "status": status.value,
            "sync_stats": stats,
            "error": error,
            "cancelled": cancelled,
        }

    async def _sync_provider(
        self,
        direction: SyncDirection,
        provider: ProviderInstance,
        token: CancelToken,
    ) -> Dict[str, Any]:
        logger.info(
            f"[SyncOrchestrator] Starting {direction.value} for provider: "
            f"{provider.name} ({provider.id})"
        )
        self.tracker.mark(provider.id, SyncStatus.IN_PROGRESS)

        stats = SyncStats()
        start_time = time.time()
        driver: Optional[ProviderDriver] = None
        try:
            driver = self.driver_factory(provider)
            if direction is SyncDirection.UPLOAD:
                await self._upload(driver, provider, stats, token)
            else:
                await self._download(driver, provider, stats, token)

        except SyncCancelledError as e:
            stats.duration_seconds = time.time() - start_time
            self.tracker.mark(provider.id, SyncStatus.ERROR, str(e))
            return self._result(provider, SyncStatus.ERROR, stats, str(e), cancelled=True)

        except CloudSyncError as e:
            stats.duration_seconds = time.time() - start_time
            message = str(e) or type(e).__name__
            logger.error(f"[SyncOrchestrator] {direction.value} failed for {provider.name}: {message}")
            self.tracker.mark(provider.id, SyncStatus.ERROR, message)
            return self._result(provider, SyncStatus.ERROR, stats, message)

        except Exception as e:
            stats.duration_seconds = time.time() - start_time
            message = f"Unexpected {type(e).__name__}: {e}"
            logger.error(
                f"[SyncOrchestrator] {direction.value} failed for {provider.name}: {message}",
                exc_info=True,
            )
            self.tracker.mark(provider.id, SyncStatus.ERROR, message)
            return self._result(provider, SyncStatus.ERROR, stats, message)

        finally:
            if driver is not None:
                driver.close()

        stats.duration_seconds = time.time() - start_time
        logger.info(f"[SyncOrchestrator] {direction.value} completed for {provider.name}: {stats}")
        self.tracker.mark(provider.id, SyncStatus.SUCCESS)
        return self._result(provider, SyncStatus.SUCCESS, stats, None)

    async def _upload(
        self,
        driver: ProviderDriver,
        provider: ProviderInstance,
        stats: SyncStats,
        token: CancelToken,
    ) -> None:
        loop = asyncio.get_event_loop()
        local_files = await loop.run_in_executor(None, self.walker.walk, self.local_root)
        logger.info(
            f"[SyncOrchestrator] Found {len(local_files)} local files to upload to {provider.name}"
        )

        def upload_one(relative_path: str) -> None:
            driver.upload_file(self.local_root / relative_path, relative_path)

        await self._run_batches(
            local_files,
            upload_one,
            lambda relative_path: relative_path,
            self.config.upload_batch_size,
            "upload",
            stats,
            token,
        )

    async def _download(
        self,
        driver: ProviderDriver,
        provider: ProviderInstance,
        stats: SyncStats,
        token: CancelToken,
    ) -> None:
        loop = asyncio.get_event_loop()
        self.local_root.mkdir(parents=True, exist_ok=True)
        remote_files = await loop.run_in_executor(None, self._list_recursive, driver, "")
        logger.info(
            f"[SyncOrchestrator] Found {len(remote_files)} remote files to download from {provider.name}"
        )

        root = self.local_root.resolve()

        def download_one(entry: RemoteEntry) -> None:
            local_path = (root / entry.path).resolve()
            if not local_path.is_relative_to(root):
                raise ValidationError(f"Remote path escapes the local root: {entry.path}")
            local_path.parent.mkdir(parents=True, exist_ok=True)
            driver.download_file(entry.path, local_path)

        await self._run_batches(
            remote_files,
            download_one,
            lambda entry: entry.path,
            self.config.download_batch_size,
            "download",
            stats,
            token,
        )

    @staticmethod
    def _list_recursive(driver: ProviderDriver, relative_path: str) -> List[RemoteEntry]:
        """Flatten the remote tree into file entries using single-level listings."""
        files: List[RemoteEntry] = []
        pending = [relative_path]
        seen = set()
        while pending:
            current = pending.pop(0)
            if current in seen:
                continue
            seen.add(current)
            for entry in driver.list_files(current):
                if entry.is_directory:
                    pending.append(entry.path)
                else:
                    files.append(entry)
        return files

    # ------------------------------------------------------------------ #
    # Batching
    # ------------------------------------------------------------------ #

    async def _transfer(
        self,
        executor: ThreadPoolExecutor,
        transfer: Callable[[T], None],
        item: T,
        path: str,
        label: str,
    ) -> Dict[str, Any]:
        """Run one transfer on a worker thread. Never raises."""
        loop = asyncio.get_event_loop()
        try:
            await loop.run_in_executor(executor, transfer, item)
            return {"success": True, "path": path}
        except Exception as e:
            error = str(e) or type(e).__name__
            logger.error(f"[SyncOrchestrator] Failed to {label} {path}: {error}")
            return {"success": False, "path": path, "error": error}

    async def _run_batches(
        self,
        items: List[T],
        transfer: Callable[[T], None],
        path_of: Callable[[T], str],
        batch_size: int,
        label: str,
        stats: SyncStats,
        token: CancelToken,
    ) -> None:
        """
        Transfer items in sequential batches with concurrent transfers inside.

        Raises:
            SyncCancelledError: Token cancelled before a batch or file dispatch
            AggregateTransferError: A batch or the whole run crossed its threshold
        """
        total = len(items)
        stats.files_found = total
        if total == 0:
            return

        batches = [items[i:i + batch_size] for i in range(0, total, batch_size)]
        total_batches = len(batches)

        with ThreadPoolExecutor(max_workers=batch_size, thread_name_prefix=f"sync-{label}") as executor:
            for batch_index, batch in enumerate(batches):
                token.raise_if_cancelled()
                logger.info(
                    f"[SyncOrchestrator] Processing {label} batch {batch_index + 1}/{total_batches} "
                    f"({len(batch)} files)"
                )

                pending = []
                for item in batch:
                    if token.cancelled:
                        break
                    pending.append(self._transfer(executor, transfer, item, path_of(item), label))

                results = await asyncio.gather(*pending)

                failures = [r for r in results if not r["success"]]
                stats.files_transferred += len(results) - len(failures)
                stats.files_failed += len(failures)
                stats.errors.extend(failures)
                stats.batches_completed += 1

                if batch_index < total_batches - 1:
                    token.raise_if_cancelled()

                if failures:
                    logger.warning(
                        f"[SyncOrchestrator] {len(failures)} files failed to {label} "
                        f"in batch {batch_index + 1}"
                    )
                    if len(failures) / len(batch) > self.config.batch_failure_ratio:
                        raise AggregateTransferError(
                            f"Too many {label} failures in batch {batch_index + 1} "
                            f"({len(failures)}/{len(batch)}). Aborting sync.",
                            failed=len(failures),
                            attempted=len(batch),
                            samples=self._samples(failures),
                        )

                if batch_index < total_batches - 1:
                    await self.sleep(self.config.batch_delay_seconds)

        if stats.files_failed:
            logger.warning(
                f"[SyncOrchestrator] Completed with {stats.files_failed} failed {label}s "
                f"out of {total} files"
            )
            if stats.files_failed / total >= self.config.total_failure_ratio:
                raise AggregateTransferError(
                    f"Too many files failed to {label} ({stats.files_failed}/{total}). "
                    f"Sync considered failed.",
                    failed=stats.files_failed,
                    attempted=total,
                    samples=self._samples(stats.errors),
                )

    @staticmethod
    def _samples(failures: List[Dict[str, Any]]) -> List[str]:
        return [f"{f['path']}: {f.get('error', 'Unknown error')}" for f in failures[:MAX_SAMPLE_ERRORS]]
