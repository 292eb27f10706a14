"""Tests for the SFTP driver (paramiko client mocked)."""
import errno
import stat
import pytest
from pathlib import Path
from unittest.mock import MagicMock
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

import paramiko

from config import SFTPConfig
from storage.exceptions import AuthError, NetworkError, NotFoundError
from storage.sftp import SFTPDriver


def missing(path="x"):
    return IOError(errno.ENOENT, "No such file", path)


def attrs(name, is_dir=False, size=0, mtime=1700000000):
    a = paramiko.SFTPAttributes()
    a.filename = name
    a.st_mode = (stat.S_IFDIR | 0o755) if is_dir else (stat.S_IFREG | 0o644)
    a.st_size = size
    a.st_mtime = mtime
    return a


@pytest.fixture
def sftp():
    return MagicMock()


@pytest.fixture
def ssh(sftp):
    client = MagicMock()
    client.open_sftp.return_value = sftp
    client.get_transport.return_value.is_active.return_value = True
    return client


@pytest.fixture
def factory(ssh):
    return MagicMock(return_value=ssh)


@pytest.fixture
def driver(factory):
    config = SFTPConfig(host="sftp.example.com", username="me", password="pw", path="/home/me/backup/")
    return SFTPDriver(config, ssh_factory=factory)


def test_connect_uses_password(driver, ssh, sftp):
    """Test connection parameters."""
    sftp.listdir.return_value = []

    driver.test_connection()

    kwargs = ssh.connect.call_args.kwargs
    assert kwargs["hostname"] == "sftp.example.com"
    assert kwargs["port"] == 22
    assert kwargs["password"] == "pw"
    assert "key_filename" not in kwargs
    sftp.listdir.assert_called_once_with("/home/me/backup")


def test_connection_is_reused(driver, factory, sftp):
    """Test that one SSH session serves several operations."""
    sftp.listdir_attr.return_value = []

    driver.list_files("")
    driver.list_files("chats")

    assert factory.call_count == 1


def test_upload_creates_missing_directories(driver, sftp, temp_dir):
    """Test mkdir per missing segment before put."""
    existing = {"/home", "/home/me", "/home/me/backup"}

    def fake_stat(path):
        if path in existing:
            return attrs(path.rsplit("/", 1)[-1], is_dir=True)
        raise missing(path)

    sftp.stat.side_effect = fake_stat
    local = temp_dir / "a.txt"
    local.write_text("x")

    driver.upload_file(local, "chats/a.txt")

    sftp.mkdir.assert_called_once_with("/home/me/backup/chats")
    sftp.put.assert_called_once_with(str(local), "/home/me/backup/chats/a.txt")


def test_list_files_maps_attributes(driver, sftp):
    """Test listing of files and directories."""
    sftp.listdir_attr.return_value = [attrs("sub", is_dir=True), attrs("a.json", size=7)]

    entries = driver.list_files("chats")

    sftp.listdir_attr.assert_called_once_with("/home/me/backup/chats")
    assert [(e.name, e.path, e.is_directory, e.size) for e in entries] == [
        ("sub", "chats/sub", True, None),
        ("a.json", "chats/a.json", False, 7),
    ]
    assert entries[1].modified_at.year == 2023


def test_list_missing_directory_is_empty(driver, sftp):
    """Test that ENOENT listing yields []."""
    sftp.listdir_attr.side_effect = missing()
    assert driver.list_files("missing") == []


def test_download_writes_through_temp_file(driver, sftp, temp_dir):
    """Test download target is written atomically."""
    def fake_get(remote, local):
        assert local.endswith(".part")
        Path(local).write_bytes(b"remote")

    sftp.get.side_effect = fake_get
    target = temp_dir / "deep" / "a.txt"

    driver.download_file("a.txt", target)

    assert target.read_bytes() == b"remote"
    assert sftp.get.call_args.args[0] == "/home/me/backup/a.txt"


def test_download_missing_file(driver, sftp, temp_dir):
    """Test NotFoundError and cleanup on a missing remote file."""
    sftp.get.side_effect = missing()
    target = temp_dir / "a.txt"

    with pytest.raises(NotFoundError):
        driver.download_file("a.txt", target)
    assert not target.exists()


def test_authentication_failure(driver, ssh):
    """Test AuthError on rejected credentials."""
    ssh.connect.side_effect = paramiko.AuthenticationException("denied")

    with pytest.raises(AuthError):
        driver.test_connection()


def test_unreachable_host(driver, ssh):
    """Test NetworkError when the host cannot be reached."""
    ssh.connect.side_effect = OSError("Connection refused")

    with pytest.raises(NetworkError):
        driver.test_connection()


def test_private_key_connection(factory, ssh, sftp):
    """Test key-based authentication parameters."""
    config = SFTPConfig(
        host="sftp.example.com", username="me", private_key="/keys/id_ed25519", passphrase="s3cret"
    )
    sftp.listdir.return_value = []

    SFTPDriver(config, ssh_factory=factory).test_connection()

    kwargs = ssh.connect.call_args.kwargs
    assert kwargs["key_filename"] == "/keys/id_ed25519"
    assert kwargs["passphrase"] == "s3cret"
    assert "password" not in kwargs
    sftp.listdir.assert_called_once_with(".")
