"""
Git working tree over the local sync root, bound to the active github provider.

Commands run the ``git`` executable in the local root; results are returned as
GitResult values rather than raised, except for precondition failures (no
active provider, incomplete config, repository not initialized).
"""
import asyncio
import logging
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional, Union

from config import GitConfig, GitHubConfig
from storage.exceptions import NotFoundError, ValidationError
from sync.registry import ProviderRegistry

logger = logging.getLogger(__name__)

GITIGNORE_CONTENT = """\
# CloudSync .gitignore

# Temporary files
*.tmp
*.temp
*.bak
*.part
.DS_Store
Thumbs.db

# Large media files (consider managing these separately)
*.mp3
*.mp4
*.wav
*.webm

# System and cache files
node_modules/
.cache/
.config/
__pycache__/
*.pyc

# Security-sensitive files
*.key
*.pem
*.env
auth.json

# Editor-specific files
.vscode/
.idea/
*.swp
*.swo
"""

NETWORK_ERROR_MARKERS = (
    "ECONNRESET",
    "Could not resolve host",
    "Failed to connect",
    "unable to access",
    "Connection timed out",
    "port 443",
)

Runner = Callable[[List[str], Path], subprocess.CompletedProcess]


def run_git(args: List[str], cwd: Path) -> subprocess.CompletedProcess:
    return subprocess.run(
        ["git", *args],
        cwd=cwd,
        capture_output=True,
        text=True,
        timeout=300,
    )


@dataclass
class GitResult:
    """Outcome of one git workspace command."""
    success: bool
    message: str
    output: str = ""


class GitCommandError(Exception):
    """A git invocation exited non-zero."""

    def __init__(self, args: List[str], returncode: int, stdout: str, stderr: str):
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(f"git {args[0] if args else ''} failed ({returncode}): {(stderr or stdout).strip()}")

    @property
    def output(self) -> str:
        return self.stdout or self.stderr or ""


def _is_network_error(error: Exception) -> bool:
    text = str(error)
    if isinstance(error, GitCommandError):
        text += error.output
    return any(marker in text for marker in NETWORK_ERROR_MARKERS)


class GitWorkspace:
    """Git commands for the local root using the active github provider's remote."""

    def __init__(
        self,
        work_dir: Union[str, Path],
        registry: ProviderRegistry,
        git_config: Optional[GitConfig] = None,
        runner: Runner = run_git,
    ):
        self.work_dir = Path(work_dir)
        self.registry = registry
        self.git_config = git_config or GitConfig()
        self.runner = runner

    @property
    def git_dir(self) -> Path:
        return self.work_dir / ".git"

    def _active_config(self) -> GitHubConfig:
        provider = self.registry.get_active()
        if provider is None:
            raise ValidationError(
                "No active GitHub provider. Add and activate a GitHub provider first."
            )
        config = provider.config
        if not config.repo or not config.token:
            raise ValidationError(
                "Active GitHub provider configuration is incomplete (missing repository or token)."
            )
        return config

    def _require_repo(self) -> GitHubConfig:
        config = self._active_config()
        if not self.git_dir.exists():
            raise NotFoundError("Git repository not found. Initialize it first.")
        return config

    def _remote_url(self, config: GitHubConfig) -> str:
        return f"https://{config.token}@{self.git_config.remote_host}/{config.repo}.git"

    def _mask(self, text: str, config: GitHubConfig) -> str:
        return text.replace(config.token, "***") if config.token else text

    async def _git(self, *args: str, check: bool = True) -> str:
        loop = asyncio.get_event_loop()
        result = await loop.run_in_executor(None, self.runner, list(args), self.work_dir)
        if check and result.returncode != 0:
            raise GitCommandError(list(args), result.returncode, result.stdout or "", result.stderr or "")
        output = result.stdout or ""
        if result.returncode:
            output += result.stderr or ""
        return output

    async def init(self) -> GitResult:
        """
        Initialize the repository, or re-point ``origin`` if it already exists.

        A failed pull caused by network trouble still counts as success; the
        message says the remote could not be reached.
        """
        config = self._active_config()
        branch = config.branch or "main"
        self.work_dir.mkdir(parents=True, exist_ok=True)

        try:
            if self.git_dir.exists():
                logger.info(f"[GitWorkspace] .git exists, updating remote for {config.repo}")
                await self._git("remote", "remove", "origin", check=False)
                await self._git("remote", "add", "origin", self._remote_url(config))
                done_message = "Git repository remote updated."
            else:
                logger.info(f"[GitWorkspace] Initializing new git repository for {config.repo}")
                await self._git("init")
                await self._git("config", "user.email", self.git_config.user_email)
                await self._git("config", "user.name", self.git_config.user_name)
                await self._git("remote", "add", "origin", self._remote_url(config))
                done_message = "Git repository initialized and connected to remote."
        except GitCommandError as e:
            message = self._mask(str(e), config)
            logger.error(f"[GitWorkspace] Error initializing git repository: {message}")
            return GitResult(False, f"Failed to initialize git repository: {message}", self._mask(e.output, config))

        try:
            await self._git("fetch", "origin")
            checkout = await self._git("checkout", "-b", branch, check=False)
            if "already exists" in checkout:
                await self._git("checkout", branch)
            output = await self._git("pull", "origin", branch, "--allow-unrelated-histories")
        except GitCommandError as e:
            logger.warning(f"[GitWorkspace] Error pulling during init: {self._mask(str(e), config)}")
            if _is_network_error(e):
                return GitResult(
                    True,
                    f"{done_message} Could not reach GitHub to pull data; check the network.",
                    self._mask(e.output, config),
                )
            return GitResult(True, done_message, self._mask(e.output, config))

        return GitResult(True, done_message, self._mask(output, config))

    def write_gitignore(self) -> GitResult:
        """Create a .gitignore with common patterns unless one exists."""
        self._active_config()
        path = self.work_dir / ".gitignore"
        if path.exists():
            return GitResult(True, ".gitignore file already exists.")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(GITIGNORE_CONTENT, encoding="utf-8")
        except OSError as e:
            logger.error(f"[GitWorkspace] Error creating .gitignore: {e}")
            return GitResult(False, f"Failed to create .gitignore: {e}")
        return GitResult(True, ".gitignore file created with common patterns.")

    async def commit(self, message: Optional[str] = None) -> GitResult:
        """Stage everything and commit. "nothing to commit" counts as success."""
        config = self._require_repo()
        message = message or f"CloudSync data sync: {datetime.now(timezone.utc).isoformat()}"
        try:
            await self._git("add", ".")
            output = await self._git("commit", "-m", message)
        except GitCommandError as e:
            if "nothing to commit" in e.output:
                return GitResult(True, "No changes to commit.", e.output)
            logger.error(f"[GitWorkspace] Error committing changes: {self._mask(str(e), config)}")
            return GitResult(False, f"Commit failed: {self._mask(str(e), config)}", self._mask(e.output, config))

        if "nothing to commit" in output:
            return GitResult(True, "No changes to commit.", output)
        return GitResult(True, "Changes committed.", output or "Committed.")

    async def push(self) -> GitResult:
        config = self._require_repo()
        branch = config.branch or "main"
        try:
            output = await self._git("push", "origin", branch)
        except GitCommandError as e:
            output = self._mask(e.output, config)
            if _is_network_error(e):
                message = "Push failed: could not connect to GitHub. Check the network."
            elif "rejected" in output and "behind" in output:
                message = "Push rejected: local branch is behind the remote. Pull first."
            else:
                message = f"Push failed: {self._mask(str(e), config)}"
            logger.error(f"[GitWorkspace] {message}")
            return GitResult(False, message, output)
        return GitResult(True, "Push completed.", self._mask(output.strip(), config) or "Everything up-to-date.")

    async def pull(self) -> GitResult:
        config = self._require_repo()
        branch = config.branch or "main"
        try:
            output = await self._git("pull", "origin", branch, "--allow-unrelated-histories")
        except GitCommandError as e:
            if _is_network_error(e):
                message = "Pull failed: could not connect to GitHub. Check the network."
            else:
                message = f"Pull failed: {self._mask(str(e), config)}"
            logger.error(f"[GitWorkspace] {message}")
            return GitResult(False, message, self._mask(e.output, config))
        return GitResult(True, "Pulled changes from remote.", self._mask(output, config) or "Pulled.")

    async def status(self) -> GitResult:
        config = self._require_repo()
        try:
            output = await self._git("status")
        except GitCommandError as e:
            return GitResult(False, f"Status failed: {self._mask(str(e), config)}", self._mask(e.output, config))
        return GitResult(True, "Status retrieved.", output)
