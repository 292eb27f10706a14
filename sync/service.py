"""
CloudSync service facade.

Wires the state store, registry, status tracker, orchestrator and git
workspace for one local root, and exposes the operations used by the scripts.
"""
import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from config import CloudSyncConfig
from storage.base import ProviderDriver
from storage.exceptions import NotFoundError, ProviderError, ValidationError
from storage.factory import create_driver
from sync.git_workspace import GitWorkspace, Runner, run_git
from sync.models import ProviderInstance, SyncDirection, SyncStatusRecord
from sync.orchestrator import SyncHandle, SyncOrchestrator
from sync.registry import ProviderRegistry
from sync.state import StateStore
from sync.status import StatusTracker
from sync.walker import FileWalker

logger = logging.getLogger(__name__)


class CloudSyncService:
    """
    Entry point for sync operations over one local root.

    Example:
        service = CloudSyncService(load_config())
        await service.start()
        handle = service.trigger_sync("upload")
        results = await handle
    """

    def __init__(
        self,
        config: CloudSyncConfig,
        driver_factory: Callable[[ProviderInstance], ProviderDriver] = create_driver,
        git_runner: Runner = run_git,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config
        self.data_dir = Path(config.data_dir)
        self.driver_factory = driver_factory

        self.store = StateStore(config.state_file)
        self.registry = ProviderRegistry(self.store)
        self.status_tracker = StatusTracker(self.store)
        self.walker = FileWalker(
            excluded_dirs=config.sync.excluded_dirs,
            exclude_hidden=config.sync.exclude_hidden,
        )
        self.orchestrator = SyncOrchestrator(
            registry=self.registry,
            tracker=self.status_tracker,
            local_root=self.data_dir,
            sync_config=config.sync,
            walker=self.walker,
            driver_factory=driver_factory,
            sleep=sleep,
        )
        self.git = GitWorkspace(self.data_dir, self.registry, config.git, runner=git_runner)

    async def start(self) -> "CloudSyncService":
        """Load persisted providers and status."""
        await self.registry.load()
        logger.info(
            f"[CloudSyncService] Ready: {len(self.registry.list())} providers, "
            f"data_dir={self.data_dir}"
        )
        return self

    def trigger_sync(
        self,
        direction: Union[SyncDirection, str],
        target_id: Optional[str] = None,
    ) -> SyncHandle:
        """
        Start an upload (all enabled providers) or download (one provider).

        Raises:
            ValidationError: Download without target_id
            NotFoundError: Unknown target_id
        """
        return self.orchestrator.trigger(direction, target_id)

    def get_status(self) -> Dict[str, SyncStatusRecord]:
        return self.status_tracker.get_all()

    async def test_provider(self, provider_id: str) -> Tuple[bool, str]:
        """
        Test connectivity of a registered provider.

        Returns:
            (success, human-readable message)

        Raises:
            NotFoundError: Unknown provider id
        """
        provider = self.registry.get_by_id(provider_id)
        if provider is None:
            raise NotFoundError(f"Provider not found: {provider_id}")

        logger.info(f"[CloudSyncService] Testing connection for {provider.name} ({provider.type.value})")
        driver = None
        loop = asyncio.get_event_loop()
        try:
            driver = self.driver_factory(provider)
            await loop.run_in_executor(None, driver.test_connection)
        except (ProviderError, ValidationError) as e:
            logger.warning(f"[CloudSyncService] Connection test failed for {provider.name}: {e}")
            return False, str(e)
        finally:
            if driver is not None:
                driver.close()

        return True, f"Connection to {provider.name} successful."

    async def directory_tree(self) -> List[Dict[str, Any]]:
        """Nested view of the local root (directories first, then by name)."""
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self.walker.build_tree, self.data_dir)
