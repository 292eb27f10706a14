"""Tests for the WebDAV driver (httpx mock transport)."""
import pytest
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

import httpx

from config import WebDAVConfig
from storage.exceptions import AuthError, NetworkError, NotFoundError
from storage.webdav import WebDAVDriver

MULTISTATUS = """<?xml version="1.0" encoding="utf-8"?>
<d:multistatus xmlns:d="DAV:">
  <d:response>
    <d:href>/dav/backup/chats/</d:href>
    <d:propstat><d:prop><d:resourcetype><d:collection/></d:resourcetype></d:prop></d:propstat>
  </d:response>
  <d:response>
    <d:href>/dav/backup/chats/sub/</d:href>
    <d:propstat><d:prop><d:resourcetype><d:collection/></d:resourcetype></d:prop></d:propstat>
  </d:response>
  <d:response>
    <d:href>/dav/backup/chats/a%20b.json</d:href>
    <d:propstat><d:prop>
      <d:resourcetype/>
      <d:getcontentlength>12</d:getcontentlength>
      <d:getlastmodified>Mon, 01 Jan 2024 00:00:00 GMT</d:getlastmodified>
    </d:prop></d:propstat>
  </d:response>
</d:multistatus>"""


def make_driver(handler):
    config = WebDAVConfig(url="https://dav.example.com/dav", username="me", password="pw", path="/backup/")
    return WebDAVDriver(config, transport=httpx.MockTransport(handler))


def test_list_files_parses_multistatus():
    """Test PROPFIND listing with the requested directory skipped."""
    seen = []

    def handler(request):
        seen.append((request.method, str(request.url), request.headers.get("Depth")))
        return httpx.Response(207, text=MULTISTATUS)

    entries = make_driver(handler).list_files("chats")

    assert seen == [("PROPFIND", "https://dav.example.com/dav/backup/chats/", "1")]
    assert [(e.name, e.path, e.is_directory, e.size) for e in entries] == [
        ("sub", "chats/sub", True, None),
        ("a b.json", "chats/a b.json", False, 12),
    ]
    assert entries[1].modified_at.year == 2024


def test_list_missing_directory_is_empty():
    """Test that a 404 listing yields []."""
    driver = make_driver(lambda request: httpx.Response(404))
    assert driver.list_files("missing") == []


def test_ensure_directory_creates_each_segment():
    """Test MKCOL per missing segment; 405 means already there."""
    calls = []

    def handler(request):
        calls.append((request.method, request.url.path))
        if request.method == "PROPFIND":
            return httpx.Response(404)
        if request.url.path == "/dav/backup/":
            return httpx.Response(405)
        return httpx.Response(201)

    make_driver(handler).ensure_directory("a/b")

    assert calls == [
        ("PROPFIND", "/dav/backup/a/b/"),
        ("MKCOL", "/dav/backup/"),
        ("MKCOL", "/dav/backup/a/"),
        ("MKCOL", "/dav/backup/a/b/"),
    ]


def test_ensure_existing_directory_is_noop():
    """Test idempotent directory creation."""
    calls = []

    def handler(request):
        calls.append(request.method)
        return httpx.Response(207, text=MULTISTATUS)

    make_driver(handler).ensure_directory("chats")
    assert calls == ["PROPFIND"]


def test_upload_puts_file_content(temp_dir):
    """Test upload sends the bytes with basic auth."""
    puts = []

    def handler(request):
        if request.method == "PUT":
            puts.append((request.url.path, request.content, request.headers.get("Authorization")))
            return httpx.Response(201)
        return httpx.Response(207, text=MULTISTATUS)

    local = temp_dir / "a.json"
    local.write_bytes(b'{"x": 1}')

    make_driver(handler).upload_file(local, "chats/a.json")

    assert len(puts) == 1
    path, content, auth = puts[0]
    assert path == "/dav/backup/chats/a.json"
    assert content == b'{"x": 1}'
    assert auth.startswith("Basic ")


def test_download_writes_file(temp_dir):
    """Test streamed download into nested local directories."""
    driver = make_driver(lambda request: httpx.Response(200, content=b"remote bytes"))
    target = temp_dir / "x" / "y" / "file.txt"

    driver.download_file("file.txt", target)

    assert target.read_bytes() == b"remote bytes"


def test_download_missing_file(temp_dir):
    """Test NotFoundError without leaving a file."""
    driver = make_driver(lambda request: httpx.Response(404))
    target = temp_dir / "file.txt"

    with pytest.raises(NotFoundError):
        driver.download_file("file.txt", target)
    assert not target.exists()


def test_test_connection_auth_failure():
    """Test 401 classification."""
    driver = make_driver(lambda request: httpx.Response(401))
    with pytest.raises(AuthError):
        driver.test_connection()


def test_test_connection_missing_root():
    """Test a missing base directory."""
    driver = make_driver(lambda request: httpx.Response(404))
    with pytest.raises(NotFoundError):
        driver.test_connection()


def test_test_connection_network_failure():
    """Test transport errors become NetworkError."""
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(NetworkError):
        make_driver(handler).test_connection()
