"""SFTP host driver (paramiko)."""
import errno
import logging
import socket
import stat
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Union

import paramiko

from config import SFTPConfig
from storage.base import (
    ProviderDriver,
    RemoteEntry,
    atomic_local_file,
    normalize_path,
    parent_path,
)
from storage.exceptions import (
    AuthError,
    NetworkError,
    NotFoundError,
    ProviderError,
    UnknownProviderError,
)

logger = logging.getLogger(__name__)


def _is_missing(error: Exception) -> bool:
    return isinstance(error, FileNotFoundError) or (
        isinstance(error, IOError) and getattr(error, "errno", None) == errno.ENOENT
    )


class SFTPDriver(ProviderDriver):
    """
    SFTP provider driver.

    Keeps one SSH connection open for the lifetime of the driver and
    reconnects when the transport drops. paramiko's SFTPClient is not safe for
    concurrent use, so every remote operation is serialized on a lock.
    """

    def __init__(self, config: SFTPConfig, ssh_factory=None):
        """
        Initialize SFTP driver.

        Args:
            config: SFTP provider configuration
            ssh_factory: Callable returning a paramiko.SSHClient (tests)
        """
        root = normalize_path(config.path)
        super().__init__(root)
        self.config = config
        # Absolute remote paths keep their leading slash
        self.absolute = config.path.strip().replace("\\", "/").startswith("/")
        self._ssh_factory = ssh_factory or paramiko.SSHClient
        self._ssh: Optional[paramiko.SSHClient] = None
        self._sftp: Optional[paramiko.SFTPClient] = None
        self._lock = threading.RLock()

    @property
    def backend_type(self) -> str:
        return "sftp"

    def _full_path(self, relative_path: str) -> str:
        path = self.remote_path(relative_path)
        if self.absolute:
            return "/" + path
        return path or "."

    def _connect(self) -> paramiko.SFTPClient:
        if self._ssh is not None and self._sftp is not None:
            transport = self._ssh.get_transport()
            if transport is not None and transport.is_active():
                return self._sftp
            self.close()

        logger.info(
            f"[SFTPDriver] Connecting to {self.config.username}@{self.config.host}:{self.config.port}"
        )
        client = self._ssh_factory()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        kwargs = dict(
            hostname=self.config.host,
            port=self.config.port,
            username=self.config.username,
            timeout=20,
            banner_timeout=30,
            auth_timeout=30,
        )
        if self.config.password:
            kwargs["password"] = self.config.password
        if self.config.private_key:
            kwargs["key_filename"] = self.config.private_key
            if self.config.passphrase:
                kwargs["passphrase"] = self.config.passphrase

        try:
            client.connect(**kwargs)
        except paramiko.AuthenticationException as e:
            client.close()
            raise AuthError(
                "SFTP authentication failed. Check username, password/key, and permissions."
            ) from e
        except (socket.error, paramiko.SSHException) as e:
            client.close()
            raise NetworkError(
                f"Could not connect to SFTP host: {self.config.host}:{self.config.port} ({e})"
            ) from e

        self._ssh = client
        self._sftp = client.open_sftp()
        return self._sftp

    def close(self) -> None:
        with self._lock:
            if self._sftp is not None:
                self._sftp.close()
            if self._ssh is not None:
                self._ssh.close()
            self._sftp = None
            self._ssh = None

    def _classify(self, error: Exception, context: str) -> ProviderError:
        if isinstance(error, ProviderError):
            return error
        if _is_missing(error):
            return NotFoundError(f"SFTP path not found ({context})")
        if isinstance(error, PermissionError) or getattr(error, "errno", None) == errno.EACCES:
            return AuthError(f"SFTP permission denied ({context})")
        if isinstance(error, (socket.error, EOFError, paramiko.SSHException)):
            return NetworkError(f"SFTP connection error ({context}): {error}")
        return UnknownProviderError(f"SFTP operation failed ({context}): {error}")

    def _test_connection(self) -> None:
        with self._lock:
            sftp = self._connect()
            try:
                sftp.listdir(self._full_path(""))
            except Exception as e:
                raise self._classify(e, f"list {self._full_path('')}") from e

    def _mkdirs(self, sftp: paramiko.SFTPClient, relative_path: str) -> None:
        segments = self.join_path(self.root, relative_path).split("/")
        current = "/" if self.absolute else ""
        for segment in segments:
            if not segment:
                continue
            current = f"{current.rstrip('/')}/{segment}" if current else segment
            try:
                attrs = sftp.stat(current)
            except IOError as e:
                if not _is_missing(e):
                    raise
                sftp.mkdir(current)
                continue
            if not stat.S_ISDIR(attrs.st_mode or 0):
                raise UnknownProviderError(f"SFTP path exists but is not a directory: {current}")

    def ensure_directory(self, relative_path: str) -> None:
        with self._lock:
            sftp = self._connect()
            try:
                self._mkdirs(sftp, relative_path)
            except Exception as e:
                raise self._classify(e, f"ensure directory {relative_path}") from e

    def upload_file(self, local_path: Union[str, Path], relative_path: str) -> None:
        remote = self._full_path(relative_path)
        with self._lock:
            sftp = self._connect()
            try:
                self._mkdirs(sftp, parent_path(relative_path))
                sftp.put(str(local_path), remote)
            except Exception as e:
                raise self._classify(e, f"upload {remote}") from e

    def download_file(self, relative_path: str, local_path: Union[str, Path]) -> None:
        remote = self._full_path(relative_path)
        with self._lock:
            sftp = self._connect()
            try:
                with atomic_local_file(local_path) as tmp_path:
                    sftp.get(remote, str(tmp_path))
            except Exception as e:
                raise self._classify(e, f"download {remote}") from e

    def list_files(self, relative_path: str = "") -> List[RemoteEntry]:
        remote = self._full_path(relative_path)
        with self._lock:
            sftp = self._connect()
            try:
                listing = sftp.listdir_attr(remote)
            except Exception as e:
                if _is_missing(e):
                    return []
                raise self._classify(e, f"list {remote}") from e

        entries = []
        for attrs in listing:
            is_dir = stat.S_ISDIR(attrs.st_mode or 0)
            modified = None
            if attrs.st_mtime is not None:
                modified = datetime.fromtimestamp(attrs.st_mtime, tz=timezone.utc)
            entries.append(RemoteEntry(
                name=attrs.filename,
                path=self.join_path(relative_path, attrs.filename),
                is_directory=is_dir,
                size=None if is_dir else attrs.st_size,
                modified_at=modified,
            ))
        return entries
