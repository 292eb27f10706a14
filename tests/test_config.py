"""Tests for configuration loading and provider config models."""
import pytest
import yaml
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from pydantic import ValidationError as PydanticValidationError

from config import CloudSyncConfig, GitHubConfig, SFTPConfig, SyncConfig, load_config, save_example_config


def test_sync_config_defaults():
    """Test batching policy defaults."""
    config = SyncConfig()
    assert config.upload_batch_size == 10
    assert config.download_batch_size == 5
    assert config.batch_delay_seconds == 1.0
    assert config.batch_failure_ratio == 0.5
    assert config.total_failure_ratio == 0.2
    assert config.excluded_dirs == ["node_modules"]
    assert config.exclude_hidden


def test_load_config_from_path(temp_dir):
    """Test loading a YAML file with nested sections."""
    path = temp_dir / "config.yaml"
    path.write_text(yaml.dump({
        "data_dir": "/srv/data",
        "sync": {"upload_batch_size": 3},
        "log_level": "DEBUG",
    }))

    config = load_config(str(path))

    assert config.data_dir == "/srv/data"
    assert config.sync.upload_batch_size == 3
    assert config.sync.download_batch_size == 5
    assert config.log_level == "DEBUG"


def test_load_config_from_env(temp_dir, monkeypatch):
    """Test CLOUDSYNC_CONFIG lookup."""
    path = temp_dir / "env.yaml"
    path.write_text("state_file: /tmp/state.json\n")
    monkeypatch.setenv("CLOUDSYNC_CONFIG", str(path))

    assert load_config().state_file == "/tmp/state.json"


def test_load_config_missing_file(temp_dir):
    """Test a clear error for a missing file."""
    with pytest.raises(FileNotFoundError):
        load_config(str(temp_dir / "nope.yaml"))


def test_empty_config_file_uses_defaults(temp_dir):
    path = temp_dir / "empty.yaml"
    path.write_text("")

    assert load_config(str(path)) == CloudSyncConfig()


def test_example_config_round_trips(temp_dir):
    """Test that the example config is loadable."""
    path = temp_dir / "config" / "config.example.yaml"

    save_example_config(str(path))

    config = load_config(str(path))
    assert config.sync.batch_delay_seconds == 1.0
    assert config.git.user_name == "CloudSync"


def test_batch_size_must_be_positive():
    with pytest.raises(PydanticValidationError):
        SyncConfig(upload_batch_size=0)


@pytest.mark.parametrize("repo", ["octo", "octo/data/extra", "octo/da ta", ""])
def test_github_repo_format_rejected(repo):
    """Test owner/name validation."""
    with pytest.raises(PydanticValidationError, match="owner/repo-name"):
        GitHubConfig(token="t", repo=repo)


def test_github_repo_is_stripped():
    assert GitHubConfig(token="t", repo="  octo/data.git-x ").repo == "octo/data.git-x"


def test_sftp_requires_password_or_key():
    """Test the credential requirement."""
    with pytest.raises(PydanticValidationError, match="password or a private key"):
        SFTPConfig(host="h", username="u")

    assert SFTPConfig(host="h", username="u", private_key="/k").password is None
