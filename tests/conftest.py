"""Test configuration fixtures."""
import pytest
from pathlib import Path
import tempfile
import shutil
import sys
import threading
import time

sys.path.insert(0, str(Path(__file__).parent.parent))

from config import CloudSyncConfig
from storage.base import ProviderDriver, RemoteEntry, atomic_local_file, normalize_path
from storage.exceptions import NotFoundError, UnknownProviderError
from sync.registry import ProviderRegistry
from sync.state import StateStore
from sync.status import StatusTracker


class FakeDriver(ProviderDriver):
    """In-memory driver recording every call; paths in fail_paths raise."""

    def __init__(self, files=None, fail_paths=None, delay=0.0, on_upload=None):
        super().__init__("")
        self.files = dict(files or {})
        self.fail_paths = set(fail_paths or [])
        self.delay = delay
        self.on_upload = on_upload
        self.events = []
        self.closed = False
        self._lock = threading.Lock()

    @property
    def backend_type(self) -> str:
        return "fake"

    def _record(self, *event):
        with self._lock:
            self.events.append(event)

    def _test_connection(self):
        pass

    def ensure_directory(self, relative_path):
        pass

    def upload_file(self, local_path, relative_path):
        relative_path = normalize_path(relative_path)
        self._record("start", relative_path)
        if self.on_upload:
            self.on_upload(relative_path)
        if self.delay:
            time.sleep(self.delay)
        try:
            if relative_path in self.fail_paths:
                raise UnknownProviderError(f"simulated failure for {relative_path}")
            with self._lock:
                self.files[relative_path] = Path(local_path).read_bytes()
        finally:
            self._record("end", relative_path)

    def download_file(self, relative_path, local_path):
        relative_path = normalize_path(relative_path)
        self._record("download", relative_path)
        if relative_path not in self.files:
            raise NotFoundError(relative_path)
        with atomic_local_file(local_path) as tmp_path:
            # Failures strike after a partial write
            tmp_path.write_bytes(self.files[relative_path][:1])
            if relative_path in self.fail_paths:
                raise UnknownProviderError(f"simulated failure for {relative_path}")
            tmp_path.write_bytes(self.files[relative_path])

    def list_files(self, relative_path=""):
        relative_path = normalize_path(relative_path)
        entries = {}
        for path in sorted(self.files):
            if relative_path and not path.startswith(relative_path + "/"):
                continue
            rest = path[len(relative_path) + 1:] if relative_path else path
            head = rest.split("/", 1)[0]
            child = f"{relative_path}/{head}" if relative_path else head
            entries[child] = RemoteEntry(
                name=head,
                path=child,
                is_directory="/" in rest,
                size=None if "/" in rest else len(self.files[path]),
            )
        return list(entries.values())

    def close(self):
        self.closed = True

    @property
    def uploaded(self):
        return [e[1] for e in self.events if e[0] == "end" and e[1] in self.files]


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    temp_path = tempfile.mkdtemp()
    yield Path(temp_path)
    shutil.rmtree(temp_path)


@pytest.fixture
def sample_config(temp_dir):
    """Sample configuration for testing."""
    return CloudSyncConfig(**{
        "data_dir": str(temp_dir / "data"),
        "state_file": str(temp_dir / "state.json"),
        "sync": {
            "upload_batch_size": 10,
            "download_batch_size": 5,
            "batch_delay_seconds": 0.0,
        },
        "log_level": "DEBUG",
    })


@pytest.fixture
def store(temp_dir):
    """Loaded state store backed by a temp file."""
    state = StateStore(temp_dir / "state.json")
    state.load()
    return state


@pytest.fixture
def registry(store):
    return ProviderRegistry(store)


@pytest.fixture
def tracker(store):
    return StatusTracker(store)


@pytest.fixture
def github_config():
    return {"token": "ghp_test", "repo": "octo/data", "branch": "main", "path": "backup"}


@pytest.fixture
def s3_config():
    return {"bucket": "test-bucket", "access_key_id": "AKIA", "secret_access_key": "secret"}


def write_files(root: Path, paths, content=b"data"):
    """Create files (and parents) below root."""
    for rel in paths:
        target = root / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content if isinstance(content, bytes) else content(rel))
