"""
Provider registry: CRUD over provider instances plus the active github selection.

The registry is an explicit object over a StateStore; callers must ``await
registry.load()`` before using it.
"""
import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from storage.base import normalize_path
from storage.exceptions import NotFoundError, ValidationError
from storage.factory import CONFIG_MODELS
from sync.models import ProviderConfig, ProviderInstance, ProviderType, SyncStatusRecord
from sync.state import StateStore

logger = logging.getLogger(__name__)


def _format_validation_error(error: PydanticValidationError) -> str:
    parts = []
    for err in error.errors():
        loc = ".".join(str(x) for x in err.get("loc", ()))
        msg = err.get("msg", "invalid value")
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts)


def build_provider_config(
    provider_type: Union[ProviderType, str],
    config: Union[Dict[str, Any], BaseModel],
) -> ProviderConfig:
    """
    Validate a raw config against the model for provider_type.

    Raises:
        ValidationError: Unknown type or malformed config
    """
    try:
        provider_type = ProviderType(provider_type)
    except ValueError:
        raise ValidationError(f"Invalid provider type: {provider_type}") from None

    model = CONFIG_MODELS[provider_type.value]
    if isinstance(config, BaseModel):
        config = config.model_dump()
    try:
        return model(**config)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid {provider_type.value} configuration: {_format_validation_error(e)}"
        ) from e


def find_duplicate_repo_provider(
    existing: Iterable[ProviderInstance],
    provider_type: Union[ProviderType, str],
    config: ProviderConfig,
) -> Optional[ProviderInstance]:
    """
    Return the github instance that points at the same repo, branch and path.

    Adding a second github provider for the same location updates the first
    one instead of creating a duplicate. Other provider types never collapse.
    """
    if ProviderType(provider_type) is not ProviderType.GITHUB:
        return None
    for instance in existing:
        if instance.type is not ProviderType.GITHUB:
            continue
        if (
            instance.config.repo == config.repo
            and instance.config.branch == config.branch
            and normalize_path(instance.config.path) == normalize_path(config.path)
        ):
            return instance
    return None


class ProviderRegistry:
    """
    Manages provider instances and the active github provider.

    Invariants kept on every mutation:
    - ids are unique and never change; type never changes
    - the active id, if set, names an existing github instance
    - every instance has a status record (pending on add/update)
    """

    def __init__(self, store: StateStore):
        self.store = store

    def _require_loaded(self) -> None:
        if not self.store.loaded:
            raise RuntimeError("ProviderRegistry used before load() was awaited")

    def _find(self, provider_id: str) -> Optional[ProviderInstance]:
        for instance in self.store.providers:
            if instance.id == provider_id:
                return instance
        return None

    def _first_github_id(self) -> Optional[str]:
        for instance in self.store.providers:
            if instance.type is ProviderType.GITHUB:
                return instance.id
        return None

    def _rederive_active(self) -> bool:
        """Fix a dangling or missing active id. Returns True if it changed."""
        active = self.store.active_github_provider_id
        current = self._find(active) if active else None
        if current is not None and current.type is ProviderType.GITHUB:
            return False
        new_active = self._first_github_id()
        if new_active == active:
            return False
        self.store.active_github_provider_id = new_active
        logger.info(f"[ProviderRegistry] Active github provider re-derived: {new_active or 'None'}")
        return True

    async def load(self) -> None:
        """Load providers and status from the state document."""
        loop = asyncio.get_event_loop()
        await loop.run_in_executor(None, self.store.load)

        changed = self._rederive_active()
        for instance in self.store.providers:
            if instance.id not in self.store.sync_status:
                self.store.sync_status[instance.id] = SyncStatusRecord()
                changed = True
        if changed and self.store.path.exists():
            await self.save()

    async def save(self) -> None:
        self._require_loaded()
        loop = asyncio.get_event_loop()
        await loop.run_in_executor(None, self.store.save)

    def list(self) -> List[ProviderInstance]:
        """Return copies of all provider instances in insertion order."""
        self._require_loaded()
        return [p.model_copy(deep=True) for p in self.store.providers]

    def get_by_id(self, provider_id: str) -> Optional[ProviderInstance]:
        self._require_loaded()
        instance = self._find(provider_id)
        return instance.model_copy(deep=True) if instance else None

    @property
    def active_id(self) -> Optional[str]:
        self._require_loaded()
        return self.store.active_github_provider_id

    def get_active(self) -> Optional[ProviderInstance]:
        """Return the active github provider, if any."""
        active_id = self.active_id
        return self.get_by_id(active_id) if active_id else None

    def add(
        self,
        provider_type: Union[ProviderType, str],
        name: str,
        config: Union[Dict[str, Any], BaseModel],
        enabled: bool = True,
    ) -> ProviderInstance:
        """
        Register a new provider instance.

        A github instance matching an existing one on repo, branch and path
        updates that instance instead (same id is returned).

        Raises:
            ValidationError: Unknown type or malformed config
        """
        self._require_loaded()
        provider_config = build_provider_config(provider_type, config)
        provider_type = ProviderType(provider_type)

        duplicate = find_duplicate_repo_provider(self.store.providers, provider_type, provider_config)
        if duplicate is not None:
            logger.info(
                f"[ProviderRegistry] Found existing github provider with same repo/branch/path "
                f"({duplicate.id}), updating instead of creating"
            )
            duplicate.name = name or duplicate.name
            duplicate.enabled = enabled
            duplicate.config = provider_config
            self.store.sync_status[duplicate.id] = SyncStatusRecord()
            self.store.save()
            return duplicate.model_copy(deep=True)

        instance = ProviderInstance(
            type=provider_type,
            name=name,
            enabled=enabled,
            config=provider_config,
        )
        self.store.providers.append(instance)
        self.store.sync_status[instance.id] = SyncStatusRecord()
        logger.info(f"[ProviderRegistry] Added provider: {instance.id} ({name})")

        if instance.type is ProviderType.GITHUB and not self.store.active_github_provider_id:
            self.store.active_github_provider_id = instance.id
            logger.info(f"[ProviderRegistry] Set {instance.id} as active github provider")

        self.store.save()
        return instance.model_copy(deep=True)

    def update(
        self,
        provider_id: str,
        name: Optional[str] = None,
        enabled: Optional[bool] = None,
        config: Optional[Dict[str, Any]] = None,
    ) -> ProviderInstance:
        """
        Update name, enabled flag and/or config of an existing instance.

        Config fields are shallow-merged over the current config. The status
        is reset to pending.

        Raises:
            NotFoundError: Unknown id
            ValidationError: Merged config is malformed
        """
        self._require_loaded()
        instance = self._find(provider_id)
        if instance is None:
            raise NotFoundError(f"Provider not found: {provider_id}")

        if config:
            merged = {**instance.config.model_dump(), **config}
            new_config = build_provider_config(instance.type, merged)
        else:
            new_config = instance.config

        if name is not None:
            instance.name = name
        if enabled is not None:
            instance.enabled = enabled
        instance.config = new_config

        self.store.sync_status[instance.id] = SyncStatusRecord()
        self.store.save()
        logger.info(f"[ProviderRegistry] Updated provider: {instance.id} ({instance.name})")
        return instance.model_copy(deep=True)

    def delete(self, provider_id: str) -> bool:
        """Remove an instance and its status. Returns False for an unknown id."""
        self._require_loaded()
        instance = self._find(provider_id)
        if instance is None:
            logger.warning(f"[ProviderRegistry] Cannot delete provider: {provider_id} not found")
            return False

        self.store.providers.remove(instance)
        self.store.sync_status.pop(provider_id, None)
        if self.store.active_github_provider_id == provider_id:
            self.store.active_github_provider_id = self._first_github_id()
            logger.info(
                f"[ProviderRegistry] Active github provider {provider_id} deleted. "
                f"New active: {self.store.active_github_provider_id or 'None'}"
            )

        self.store.save()
        logger.info(f"[ProviderRegistry] Deleted provider: {provider_id}")
        return True

    def set_active(self, provider_id: str) -> bool:
        """Select the active github provider. Returns False for unknown or non-github ids."""
        self._require_loaded()
        instance = self._find(provider_id)
        if instance is None or instance.type is not ProviderType.GITHUB:
            logger.warning(
                f"[ProviderRegistry] Cannot set active github provider: "
                f"{provider_id} not found or not a github provider"
            )
            return False

        self.store.active_github_provider_id = provider_id
        self.store.save()
        logger.info(f"[ProviderRegistry] Active github provider set to {provider_id}")
        return True
