"""
Persistent state document for providers, sync status and the active selection.

Layout on disk (JSON):

    {
        "providers": [ {id, type, name, enabled, config}, ... ],
        "sync_status": { "<provider id>": {status, last_sync_time, last_sync_error} },
        "active_github_provider_id": "<provider id>" | null
    }

Every mutation is written immediately through an atomic temp-file + rename.
Older files that keep providers under "pluginState" with camelCase keys are
migrated on load.
"""
import json
import logging
import os
import re
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from sync.models import ProviderInstance, SyncStatusRecord

logger = logging.getLogger(__name__)

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


def _snake(key: str) -> str:
    return _CAMEL_RE.sub("_", key).lower()


def _snake_keys(data: Dict[str, Any]) -> Dict[str, Any]:
    return {_snake(k): v for k, v in data.items()}


def migrate_legacy_document(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Convert a legacy state document to the current layout.

    Handles both ``{"pluginState": {"providers", "syncStatus"}, "activeGithubProviderId"}``
    and the bare ``{"providers", "syncStatus"}`` form.
    """
    legacy = data.get("pluginState") if isinstance(data.get("pluginState"), dict) else data

    providers = []
    for raw in legacy.get("providers") or []:
        if not isinstance(raw, dict):
            continue
        provider = dict(raw)
        if isinstance(provider.get("config"), dict):
            provider["config"] = _snake_keys(provider["config"])
        providers.append(provider)

    raw_status = legacy.get("syncStatus") or legacy.get("sync_status") or {}
    sync_status = {
        pid: _snake_keys(record)
        for pid, record in raw_status.items()
        if isinstance(record, dict)
    }

    return {
        "providers": providers,
        "sync_status": sync_status,
        "active_github_provider_id": data.get("activeGithubProviderId"),
    }


class StateStore:
    """In-memory state document backed by a JSON file."""

    def __init__(self, path: Union[str, Path]):
        """
        Initialize state store.

        Args:
            path: Location of the JSON state document
        """
        self.path = Path(path)
        self.providers: List[ProviderInstance] = []
        self.sync_status: Dict[str, SyncStatusRecord] = {}
        self.active_github_provider_id: Optional[str] = None
        self.loaded = False
        self._lock = threading.RLock()

    def _reset(self) -> None:
        self.providers = []
        self.sync_status = {}
        self.active_github_provider_id = None

    def load(self) -> None:
        """
        Load the document. A missing or unreadable file yields fresh state.

        An unreadable file is first moved aside to ``<name>.corrupt`` so the
        next save does not overwrite it.
        """
        with self._lock:
            self._reset()
            try:
                if not self.path.exists():
                    logger.info(f"[StateStore] No state file at {self.path}, starting fresh")
                    return

                with open(self.path, "r", encoding="utf-8") as f:
                    data = json.load(f)

                if not isinstance(data, dict):
                    raise ValueError("state document is not a JSON object")

                if "pluginState" in data or "syncStatus" in data:
                    logger.warning("[StateStore] Migrating legacy state document layout")
                    data = migrate_legacy_document(data)

                self._apply(data)
                logger.info(
                    f"[StateStore] Loaded {len(self.providers)} providers from {self.path}"
                )
            except (OSError, ValueError) as e:
                logger.error(f"[StateStore] Error loading state from {self.path}: {e}")
                self._reset()
                self._quarantine()
            finally:
                self.loaded = True

    def _quarantine(self) -> None:
        if not self.path.exists():
            return
        backup = self.path.with_name(self.path.name + ".corrupt")
        try:
            os.replace(self.path, backup)
        except OSError as e:
            logger.error(f"[StateStore] Could not move unreadable state file aside: {e}")
            return
        logger.warning(f"[StateStore] Unreadable state file moved to {backup}")

    def _apply(self, data: Dict[str, Any]) -> None:
        for raw in data.get("providers") or []:
            try:
                self.providers.append(ProviderInstance(**raw))
            except (PydanticValidationError, TypeError) as e:
                logger.warning(
                    f"[StateStore] Skipping invalid provider {raw.get('id', '?') if isinstance(raw, dict) else raw}: {e}"
                )

        known_ids = {p.id for p in self.providers}
        for pid, raw in (data.get("sync_status") or {}).items():
            if pid not in known_ids:
                continue
            try:
                self.sync_status[pid] = SyncStatusRecord(**raw)
            except (PydanticValidationError, TypeError) as e:
                logger.warning(f"[StateStore] Dropping invalid status for {pid}: {e}")

        self.active_github_provider_id = data.get("active_github_provider_id")

    def to_document(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "providers": [p.model_dump(mode="json") for p in self.providers],
                "sync_status": {
                    pid: record.model_dump(mode="json")
                    for pid, record in self.sync_status.items()
                },
                "active_github_provider_id": self.active_github_provider_id,
            }

    def save(self) -> None:
        """Write the document atomically (temp file + rename)."""
        with self._lock:
            document = self.to_document()
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_name(self.path.name + ".tmp")
            try:
                with open(tmp_path, "w", encoding="utf-8") as f:
                    json.dump(document, f, indent=4)
                os.replace(tmp_path, self.path)
            except OSError:
                if tmp_path.exists():
                    tmp_path.unlink()
                raise
            logger.debug(f"[StateStore] Saved state to {self.path}")
