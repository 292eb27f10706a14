"""Tests for the GitHub contents API driver (httpx mock transport)."""
import base64
import json
import pytest
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

import httpx

from config import GitHubConfig
from storage.exceptions import AuthError, NetworkError, NotFoundError
from storage.github import GitHubDriver


def make_driver(handler, path="backup"):
    config = GitHubConfig(token="ghp_secret", repo="octo/data", branch="dev", path=path)
    return GitHubDriver(config, transport=httpx.MockTransport(handler))


def test_upload_new_file_has_no_sha(temp_dir):
    """Test create path: sha lookup 404, then PUT without sha."""
    requests = []

    def handler(request):
        requests.append(request)
        if request.method == "GET":
            return httpx.Response(404, json={"message": "Not Found"})
        return httpx.Response(201, json={"content": {}})

    local = temp_dir / "a.txt"
    local.write_bytes(b"hello")

    make_driver(handler).upload_file(local, "chats/a.txt")

    lookup, put = requests
    assert lookup.url.path == "/repos/octo/data/contents/backup/chats/a.txt"
    assert lookup.url.params["ref"] == "dev"
    assert lookup.headers["Authorization"] == "Bearer ghp_secret"

    body = json.loads(put.content)
    assert put.method == "PUT"
    assert body["message"] == "Sync: Upload chats/a.txt"
    assert body["branch"] == "dev"
    assert base64.b64decode(body["content"]) == b"hello"
    assert "sha" not in body


def test_upload_existing_file_sends_sha(temp_dir):
    """Test update path includes the current blob sha."""
    bodies = []

    def handler(request):
        if request.method == "GET":
            return httpx.Response(200, json={"type": "file", "sha": "abc123", "path": "backup/a.txt"})
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"content": {}})

    local = temp_dir / "a.txt"
    local.write_bytes(b"v2")

    make_driver(handler).upload_file(local, "a.txt")

    assert bodies[0]["sha"] == "abc123"


def test_download_raw_content(temp_dir):
    """Test download requests the raw media type."""
    seen = []

    def handler(request):
        seen.append(request.headers["Accept"])
        return httpx.Response(200, content=b"file body")

    target = temp_dir / "deep" / "a.txt"
    make_driver(handler).download_file("a.txt", target)

    assert target.read_bytes() == b"file body"
    assert seen == ["application/vnd.github.raw"]


def test_download_missing_file(temp_dir):
    """Test NotFoundError for a missing file."""
    driver = make_driver(lambda request: httpx.Response(404, json={"message": "Not Found"}))
    target = temp_dir / "a.txt"

    with pytest.raises(NotFoundError):
        driver.download_file("a.txt", target)
    assert not target.exists()


def test_list_files_is_relative_to_root():
    """Test listing maps repository paths back under the configured path."""
    def handler(request):
        assert request.url.path == "/repos/octo/data/contents/backup/chats"
        return httpx.Response(200, json=[
            {"name": "sub", "path": "backup/chats/sub", "type": "dir", "size": 0},
            {"name": "a.json", "path": "backup/chats/a.json", "type": "file", "size": 42},
        ])

    entries = make_driver(handler).list_files("chats")

    assert [(e.name, e.path, e.is_directory, e.size) for e in entries] == [
        ("sub", "chats/sub", True, None),
        ("a.json", "chats/a.json", False, 42),
    ]


def test_list_missing_directory_is_empty():
    """Test that a 404 listing yields []."""
    driver = make_driver(lambda request: httpx.Response(404, json={"message": "Not Found"}))
    assert driver.list_files("missing") == []


def test_ensure_directory_is_noop():
    """Test that no request is made for directories."""
    def handler(request):
        raise AssertionError("no request expected")

    make_driver(handler).ensure_directory("a/b/c")


def test_test_connection_bad_token():
    """Test 401 classification."""
    driver = make_driver(lambda request: httpx.Response(401, json={"message": "Bad credentials"}))
    with pytest.raises(AuthError):
        driver.test_connection()


def test_test_connection_missing_repo():
    """Test 404 classification for the repository probe."""
    def handler(request):
        assert request.url.path == "/repos/octo/data"
        return httpx.Response(404, json={"message": "Not Found"})

    with pytest.raises(NotFoundError):
        make_driver(handler).test_connection()


def test_rate_limit_is_network_error():
    """Test that an exhausted rate limit is treated as transient."""
    driver = make_driver(lambda request: httpx.Response(
        403,
        json={"message": "API rate limit exceeded"},
        headers={"X-RateLimit-Remaining": "0"},
    ))
    with pytest.raises(NetworkError):
        driver.test_connection()
