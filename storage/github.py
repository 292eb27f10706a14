"""GitHub repository driver (REST contents API over httpx)."""
import base64
import logging
from pathlib import Path
from typing import Any, List, Optional, Union
from urllib.parse import quote

import httpx

from config import GitHubConfig
from storage.base import ProviderDriver, RemoteEntry, atomic_local_file, normalize_path
from storage.exceptions import AuthError, NetworkError, NotFoundError, UnknownProviderError

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"
GITHUB_API_VERSION = "2022-11-28"


class GitHubDriver(ProviderDriver):
    """
    GitHub provider driver.

    The repository has no explicit directories: they exist implicitly through
    file paths, so ensure_directory is a no-op. Updating an existing file
    requires its current blob sha, which upload_file looks up first.
    """

    def __init__(
        self,
        config: GitHubConfig,
        transport: Optional[httpx.BaseTransport] = None,
        api_url: str = GITHUB_API_URL,
        timeout: float = 30.0,
    ):
        """
        Initialize GitHub driver.

        Args:
            config: GitHub provider configuration
            transport: Optional httpx transport (tests)
            api_url: API base URL (GitHub Enterprise)
            timeout: Request timeout in seconds
        """
        super().__init__(config.path)
        self.config = config
        self.owner, self.repo = config.repo.split("/", 1)
        self.branch = config.branch or "main"
        self.repo_url = f"{api_url.rstrip('/')}/repos/{self.owner}/{self.repo}"

        self._client = httpx.Client(
            base_url=self.repo_url,
            headers={
                "Authorization": f"Bearer {config.token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": GITHUB_API_VERSION,
            },
            timeout=httpx.Timeout(timeout),
            follow_redirects=True,
            transport=transport,
        )

    @property
    def backend_type(self) -> str:
        return "github"

    def close(self) -> None:
        if not self._client.is_closed:
            self._client.close()

    def _contents_url(self, relative_path: str) -> str:
        return f"/contents/{quote(self.remote_path(relative_path), safe='/')}"

    def _request(self, method: str, url: str, context: str, **kwargs: Any) -> httpx.Response:
        try:
            return self._client.request(method, url, **kwargs)
        except httpx.RequestError as e:
            raise NetworkError(f"GitHub request failed ({context}): {e}") from e

    def _raise_for_status(self, response: httpx.Response, context: str) -> None:
        status = response.status_code
        if status < 400:
            return

        message = ""
        try:
            data = response.json()
            if isinstance(data, dict):
                message = data.get("message") or ""
        except ValueError:
            pass

        if status == 401:
            raise AuthError(
                f"GitHub authentication failed ({context}). Check your personal access token."
            )
        if status == 403 or status == 429:
            if response.headers.get("X-RateLimit-Remaining") == "0" or "rate limit" in message.lower():
                raise NetworkError(f"GitHub API rate limit exceeded ({context})")
            raise AuthError(f"GitHub access forbidden ({context}): {message}")
        if status == 404:
            raise NotFoundError(f"GitHub resource not found ({context})")
        raise UnknownProviderError(
            f"GitHub request failed with status {status} ({context}): {message}"
        )

    def _test_connection(self) -> None:
        logger.info(f"[GitHubDriver] Testing connection to repo: {self.owner}/{self.repo}")
        response = self._request("GET", self.repo_url, f"repo {self.owner}/{self.repo}")
        self._raise_for_status(response, f"repo {self.owner}/{self.repo}")

    def ensure_directory(self, relative_path: str) -> None:
        logger.debug(f"[GitHubDriver] ensure_directory({relative_path}) is a no-op")

    def _get_file_sha(self, relative_path: str) -> Optional[str]:
        """Return the blob sha of an existing file, or None if absent."""
        context = f"stat {normalize_path(relative_path)}"
        response = self._request(
            "GET", self._contents_url(relative_path), context, params={"ref": self.branch}
        )
        if response.status_code == 404:
            return None
        self._raise_for_status(response, context)
        data = response.json()
        if isinstance(data, dict) and data.get("type") == "file":
            return data.get("sha")
        return None

    def upload_file(self, local_path: Union[str, Path], relative_path: str) -> None:
        relative_path = normalize_path(relative_path)
        context = f"upload {relative_path}"
        content = base64.b64encode(Path(local_path).read_bytes()).decode("ascii")

        payload = {
            "message": f"Sync: Upload {relative_path}",
            "content": content,
            "branch": self.branch,
        }
        existing_sha = self._get_file_sha(relative_path)
        if existing_sha:
            payload["sha"] = existing_sha
            logger.debug(f"[GitHubDriver] Updating {relative_path} (sha {existing_sha})")
        else:
            logger.debug(f"[GitHubDriver] Creating {relative_path}")

        response = self._request("PUT", self._contents_url(relative_path), context, json=payload)
        self._raise_for_status(response, context)

    def download_file(self, relative_path: str, local_path: Union[str, Path]) -> None:
        relative_path = normalize_path(relative_path)
        context = f"download {relative_path}"
        try:
            with self._client.stream(
                "GET",
                self._contents_url(relative_path),
                params={"ref": self.branch},
                headers={"Accept": "application/vnd.github.raw"},
            ) as response:
                if response.status_code >= 400:
                    response.read()
                self._raise_for_status(response, context)
                with atomic_local_file(local_path) as tmp_path:
                    with open(tmp_path, "wb") as f:
                        for chunk in response.iter_bytes():
                            f.write(chunk)
        except httpx.RequestError as e:
            raise NetworkError(f"GitHub request failed ({context}): {e}") from e

    def list_files(self, relative_path: str = "") -> List[RemoteEntry]:
        relative_path = normalize_path(relative_path)
        context = f"list {relative_path or '/'}"
        response = self._request(
            "GET", self._contents_url(relative_path), context, params={"ref": self.branch}
        )
        if response.status_code == 404:
            return []
        self._raise_for_status(response, context)

        data = response.json()
        if not isinstance(data, list):
            return []  # Path is a file, not a directory

        entries = []
        for item in data:
            is_dir = item.get("type") == "dir"
            entries.append(RemoteEntry(
                name=item["name"],
                path=self.relative_to_root(item["path"]),
                is_directory=is_dir,
                size=None if is_dir else item.get("size"),
            ))
        return entries
