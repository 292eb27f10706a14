"""WebDAV share driver (httpx)."""
import logging
import xml.etree.ElementTree as ET
from email.utils import parsedate_to_datetime
from pathlib import Path
from typing import Any, List, Optional, Union
from urllib.parse import quote, unquote, urlparse

import httpx

from config import WebDAVConfig
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
    UnknownProviderError,
)

logger = logging.getLogger(__name__)

DAV_NS = "{DAV:}"
PROPFIND_BODY = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<d:propfind xmlns:d="DAV:"><d:prop>'
    "<d:resourcetype/><d:getcontentlength/><d:getlastmodified/>"
    "</d:prop></d:propfind>"
)


class WebDAVDriver(ProviderDriver):
    """WebDAV provider driver. Directories are explicit collections (MKCOL)."""

    def __init__(
        self,
        config: WebDAVConfig,
        transport: Optional[httpx.BaseTransport] = None,
        timeout: float = 30.0,
    ):
        """
        Initialize WebDAV driver.

        Args:
            config: WebDAV provider configuration
            transport: Optional httpx transport (tests)
            timeout: Request timeout in seconds
        """
        super().__init__(config.path)
        self.config = config
        parsed = urlparse(config.url)
        self.server_url = f"{parsed.scheme}://{parsed.netloc}"
        # Path component of the server URL, e.g. "dav" for https://host/dav
        self.url_path = normalize_path(unquote(parsed.path))

        auth = None
        if config.username:
            auth = httpx.BasicAuth(config.username, config.password or "")

        self._client = httpx.Client(
            auth=auth,
            timeout=httpx.Timeout(timeout),
            follow_redirects=True,
            transport=transport,
        )

    @property
    def backend_type(self) -> str:
        return "webdav"

    def close(self) -> None:
        if not self._client.is_closed:
            self._client.close()

    def _server_path(self, relative_path: str) -> str:
        """Path from the server root: URL path + configured root + relative path."""
        return self.join_path(self.url_path, self.root, relative_path)

    def _url(self, relative_path: str, directory: bool = False) -> str:
        server_path = self._server_path(relative_path)
        url = f"{self.server_url}/{quote(server_path, safe='/')}"
        if directory and not url.endswith("/"):
            url += "/"
        return url

    def _request(self, method: str, url: str, context: str, **kwargs: Any) -> httpx.Response:
        try:
            return self._client.request(method, url, **kwargs)
        except httpx.RequestError as e:
            raise NetworkError(f"WebDAV request failed ({context}): {e}") from e

    def _raise_for_status(self, response: httpx.Response, context: str) -> None:
        status = response.status_code
        if status < 400:
            return
        if status in (401, 403):
            raise AuthError(f"WebDAV authentication failed ({context}). Check username/password.")
        if status == 404:
            raise NotFoundError(f"WebDAV resource not found ({context})")
        raise UnknownProviderError(f"WebDAV request failed with status {status} ({context})")

    def _exists(self, relative_path: str) -> bool:
        response = self._request(
            "PROPFIND",
            self._url(relative_path, directory=True),
            f"stat {relative_path or '/'}",
            headers={"Depth": "0"},
            content=PROPFIND_BODY,
        )
        if response.status_code == 404:
            return False
        self._raise_for_status(response, f"stat {relative_path or '/'}")
        return True

    def _test_connection(self) -> None:
        logger.info(f"[WebDAVDriver] Testing connection to {self.config.url}")
        if not self._exists(""):
            raise NotFoundError(f"WebDAV directory not found: /{self._server_path('')}")

    def ensure_directory(self, relative_path: str) -> None:
        relative_path = normalize_path(relative_path)
        full_path = self.join_path(self.root, relative_path)
        if not full_path or self._exists(relative_path):
            return

        # MKCOL one segment at a time below the URL path; 405 means it already exists
        segments = full_path.split("/")
        for i in range(1, len(segments) + 1):
            partial = "/".join(segments[:i])
            url = f"{self.server_url}/{quote(self.join_path(self.url_path, partial), safe='/')}/"
            response = self._request("MKCOL", url, f"mkdir {partial}")
            if response.status_code in (201, 405):
                continue
            self._raise_for_status(response, f"mkdir {partial}")

    def upload_file(self, local_path: Union[str, Path], relative_path: str) -> None:
        relative_path = normalize_path(relative_path)
        self.ensure_directory(parent_path(relative_path))

        logger.debug(f"[WebDAVDriver] Uploading {local_path} -> {relative_path}")
        content = Path(local_path).read_bytes()
        response = self._request(
            "PUT", self._url(relative_path), f"upload {relative_path}", content=content
        )
        self._raise_for_status(response, f"upload {relative_path}")

    def download_file(self, relative_path: str, local_path: Union[str, Path]) -> None:
        relative_path = normalize_path(relative_path)
        context = f"download {relative_path}"
        logger.debug(f"[WebDAVDriver] Downloading {relative_path} -> {local_path}")
        try:
            with self._client.stream("GET", self._url(relative_path)) as response:
                self._raise_for_status(response, context)
                with atomic_local_file(local_path) as tmp_path:
                    with open(tmp_path, "wb") as f:
                        for chunk in response.iter_bytes():
                            f.write(chunk)
        except httpx.RequestError as e:
            raise NetworkError(f"WebDAV request failed ({context}): {e}") from e

    def list_files(self, relative_path: str = "") -> List[RemoteEntry]:
        relative_path = normalize_path(relative_path)
        context = f"list {relative_path or '/'}"
        response = self._request(
            "PROPFIND",
            self._url(relative_path, directory=True),
            context,
            headers={"Depth": "1"},
            content=PROPFIND_BODY,
        )
        if response.status_code == 404:
            return []
        self._raise_for_status(response, context)

        try:
            root = ET.fromstring(response.content)
        except ET.ParseError as e:
            raise UnknownProviderError(f"Invalid PROPFIND response ({context}): {e}") from e

        listed_dir = self._server_path(relative_path)
        base = self.join_path(self.url_path, self.root)
        entries = []
        for item in root.findall(f"{DAV_NS}response"):
            href = item.findtext(f"{DAV_NS}href") or ""
            server_path = normalize_path(unquote(urlparse(href).path))
            if server_path == listed_dir:
                continue

            if base and server_path.startswith(base + "/"):
                entry_path = server_path[len(base) + 1:]
            elif not base:
                entry_path = server_path
            else:
                entry_path = self.join_path(relative_path, server_path.rsplit("/", 1)[-1])

            prop = item.find(f"{DAV_NS}propstat/{DAV_NS}prop")
            is_dir = False
            size = None
            modified = None
            if prop is not None:
                is_dir = prop.find(f"{DAV_NS}resourcetype/{DAV_NS}collection") is not None
                length = prop.findtext(f"{DAV_NS}getcontentlength")
                if length and not is_dir:
                    size = int(length)
                lastmod = prop.findtext(f"{DAV_NS}getlastmodified")
                if lastmod:
                    try:
                        modified = parsedate_to_datetime(lastmod)
                    except (TypeError, ValueError):
                        modified = None

            entries.append(RemoteEntry(
                name=entry_path.rsplit("/", 1)[-1],
                path=entry_path,
                is_directory=is_dir,
                size=size,
                modified_at=modified,
            ))

        return entries
