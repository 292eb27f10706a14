"""
Base provider abstraction for CloudSync.

Provides a uniform driver contract for every remote backend. All paths handed
to a driver are relative to the driver's configured root (bucket prefix, WebDAV
base directory, repository path or remote directory), use forward slashes and
carry no leading slash.
"""
import logging
import os
import shutil
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional, Union

from storage.exceptions import NotFoundError, ProviderError, UnknownProviderError

logger = logging.getLogger(__name__)

PARTIAL_SUFFIX = ".part"


def normalize_path(path: Optional[str]) -> str:
    """
    Normalize a relative path to forward slashes with no leading/trailing slash.

    Empty and "." segments are dropped, so "a\\b//c.txt", "/a/b/c.txt" and
    "a/./b/c.txt" all become "a/b/c.txt".
    """
    if not path:
        return ""
    parts = [p for p in str(path).replace("\\", "/").split("/") if p and p != "."]
    return "/".join(parts)


def parent_path(path: str) -> str:
    """Return the normalized parent of a relative path ("" for top level)."""
    path = normalize_path(path)
    return path.rsplit("/", 1)[0] if "/" in path else ""


@dataclass
class RemoteEntry:
    """One item returned by a single-level remote listing."""
    name: str
    path: str  # Relative to the provider root
    is_directory: bool
    size: Optional[int] = None
    modified_at: Optional[datetime] = None


@contextmanager
def atomic_local_file(local_path: Union[str, Path]) -> Iterator[Path]:
    """
    Yield a temporary sibling path and move it over local_path on success.

    On any exception the partial temporary file is removed and the exception
    propagates, so a failed download never leaves a truncated file behind.
    """
    local_path = Path(local_path)
    local_path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = local_path.with_name(local_path.name + PARTIAL_SUFFIX)
    try:
        yield tmp_path
        os.replace(tmp_path, local_path)
    except BaseException:
        if tmp_path.exists():
            tmp_path.unlink()
        raise


class ProviderDriver(ABC):
    """
    Abstract base class for provider drivers.

    All implementations must support:
    - A cheap connection test raising only classified ProviderError subclasses
    - Idempotent directory creation (or a documented no-op)
    - Unconditional overwrite on upload
    - Download that never leaves a partial local file
    - Single-level listing that returns [] for a missing directory
    """

    def __init__(self, root: str = ""):
        """
        Initialize driver.

        Args:
            root: Root/prefix for all operations, normalized once here
        """
        self.root = normalize_path(root)

    @property
    @abstractmethod
    def backend_type(self) -> str:
        """Return backend type identifier ('s3', 'webdav', 'github', 'sftp', 'local')."""
        pass

    def test_connection(self) -> None:
        """
        Perform the cheapest round trip that proves credentials and root are usable.

        Raises:
            AuthError, NotFoundError, NetworkError or UnknownProviderError
        """
        try:
            self._test_connection()
        except ProviderError:
            raise
        except Exception as e:
            raise UnknownProviderError(
                f"{self.backend_type} connection test failed: {e}"
            ) from e

    @abstractmethod
    def _test_connection(self) -> None:
        pass

    @abstractmethod
    def ensure_directory(self, relative_path: str) -> None:
        """
        Create a directory (and its parents) if the backend models directories.

        Args:
            relative_path: Directory path relative to the provider root
        """
        pass

    @abstractmethod
    def upload_file(self, local_path: Union[str, Path], relative_path: str) -> None:
        """
        Upload a local file, overwriting any existing remote file.

        Args:
            local_path: Absolute local file path
            relative_path: Destination path relative to the provider root
        """
        pass

    @abstractmethod
    def download_file(self, relative_path: str, local_path: Union[str, Path]) -> None:
        """
        Download a remote file, creating local parent directories as needed.

        Args:
            relative_path: Source path relative to the provider root
            local_path: Absolute local destination path

        Raises:
            NotFoundError: If the remote file does not exist
        """
        pass

    @abstractmethod
    def list_files(self, relative_path: str = "") -> List[RemoteEntry]:
        """
        List a single directory level.

        Args:
            relative_path: Directory path relative to the provider root

        Returns:
            Entries with paths relative to the provider root; [] if missing
        """
        pass

    def close(self) -> None:
        """Release any connection held by the driver."""
        pass

    def join_path(self, *parts: str) -> str:
        """Join normalized path components with forward slashes, skipping empty ones."""
        clean_parts = [normalize_path(p) for p in parts if p]
        return "/".join(p for p in clean_parts if p)

    def remote_path(self, relative_path: str) -> str:
        """Map a root-relative path to the backend's full path/key."""
        return self.join_path(self.root, relative_path)

    def relative_to_root(self, full_path: str) -> str:
        """Map a backend full path/key back to a root-relative path."""
        full_path = normalize_path(full_path)
        if not self.root:
            return full_path
        if full_path == self.root:
            return ""
        if full_path.startswith(self.root + "/"):
            return full_path[len(self.root) + 1:]
        return full_path


class LocalDriver(ProviderDriver):
    """Provider driver over a local directory (reference implementation)."""

    def __init__(self, base_path: Union[str, Path]):
        """
        Initialize local driver.

        Args:
            base_path: Directory acting as the remote root
        """
        super().__init__("")
        self.base_dir = Path(base_path).resolve()

    @property
    def backend_type(self) -> str:
        return "local"

    def _resolve_path(self, path: str) -> Path:
        """Convert relative path to absolute local path."""
        relative = normalize_path(path)
        return self.base_dir / relative if relative else self.base_dir

    def _test_connection(self) -> None:
        if not self.base_dir.is_dir():
            raise NotFoundError(f"Local directory not found: {self.base_dir}")

    def ensure_directory(self, relative_path: str) -> None:
        self._resolve_path(relative_path).mkdir(parents=True, exist_ok=True)

    def upload_file(self, local_path: Union[str, Path], relative_path: str) -> None:
        self.ensure_directory(parent_path(relative_path))
        full_path = self._resolve_path(relative_path)
        with atomic_local_file(full_path) as tmp_path:
            shutil.copy2(local_path, tmp_path)

    def download_file(self, relative_path: str, local_path: Union[str, Path]) -> None:
        full_path = self._resolve_path(relative_path)
        if not full_path.is_file():
            raise NotFoundError(f"Remote file not found: {normalize_path(relative_path)}")
        with atomic_local_file(local_path) as tmp_path:
            shutil.copy2(full_path, tmp_path)

    def list_files(self, relative_path: str = "") -> List[RemoteEntry]:
        full_path = self._resolve_path(relative_path)

        if not full_path.is_dir():
            return []

        result = []
        for f in sorted(full_path.iterdir()):
            stat = f.stat()
            is_dir = f.is_dir()
            result.append(RemoteEntry(
                name=f.name,
                path=self.join_path(relative_path, f.name),
                is_directory=is_dir,
                size=None if is_dir else stat.st_size,
                modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            ))

        return result
