"""Configuration management for CloudSync."""
import os
import re
import yaml
from pathlib import Path
from typing import Optional
from pydantic import BaseModel, Field, field_validator, model_validator


REPO_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")


class S3Config(BaseModel):
    """S3 (or S3-compatible) object storage provider configuration."""
    access_key_id: str = ""
    secret_access_key: str = ""
    bucket: str = Field(..., description="Bucket name")
    region: Optional[str] = None  # Auto-detected if None
    endpoint: Optional[str] = None  # For S3-compatible services (MinIO, R2, etc.)
    path_prefix: str = ""  # e.g. "my_data/"


class WebDAVConfig(BaseModel):
    """WebDAV share provider configuration."""
    url: str = Field(..., description="Server URL, e.g. https://cloud.example.com")
    username: str = ""
    password: Optional[str] = None
    path: str = ""  # e.g. "/remote.php/dav/files/user/my_data/"


class GitHubConfig(BaseModel):
    """Git-backed repository (GitHub contents API) provider configuration."""
    token: str = Field(..., description="Personal access token")
    repo: str = Field(..., description='Repository in "owner/name" form')
    branch: str = "main"
    path: str = ""  # Path prefix inside the repository

    @field_validator("repo")
    @classmethod
    def _check_repo(cls, value: str) -> str:
        value = value.strip()
        if not REPO_PATTERN.match(value):
            raise ValueError('Invalid GitHub repository format. Use "owner/repo-name".')
        return value


class SFTPConfig(BaseModel):
    """SFTP host provider configuration."""
    host: str
    port: int = 22
    username: str
    password: Optional[str] = None
    private_key: Optional[str] = None  # Path to a key file
    passphrase: Optional[str] = None
    path: str = ""  # e.g. "/home/user/my_data/"

    @model_validator(mode="after")
    def _check_credentials(self) -> "SFTPConfig":
        if not self.password and not self.private_key:
            raise ValueError("SFTP connection requires either a password or a private key.")
        return self


class SyncConfig(BaseModel):
    """Batching and failure-threshold policy for sync runs."""
    upload_batch_size: int = Field(default=10, ge=1)
    download_batch_size: int = Field(default=5, ge=1)
    batch_delay_seconds: float = Field(default=1.0, ge=0)  # Pause between batches (rate limits)
    batch_failure_ratio: float = 0.5  # Abort when a batch fails more than this share
    total_failure_ratio: float = 0.2  # Mark error when this share of all files failed
    excluded_dirs: list[str] = Field(default_factory=lambda: ["node_modules"])
    exclude_hidden: bool = True


class GitConfig(BaseModel):
    """Identity used for commits in the git working tree."""
    user_name: str = "CloudSync"
    user_email: str = "cloudsync@example.com"
    remote_host: str = "github.com"


class CloudSyncConfig(BaseModel):
    """Root configuration for CloudSync."""
    data_dir: str = "./data"  # Local directory tree that gets synced
    state_file: str = "./cloud-sync-state.json"  # Providers + sync status document

    sync: SyncConfig = Field(default_factory=SyncConfig)
    git: GitConfig = Field(default_factory=GitConfig)

    # Logging
    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def load_config(config_path: Optional[str] = None) -> CloudSyncConfig:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to config file. If None, looks for:
            1. CLOUDSYNC_CONFIG environment variable
            2. ./config/config.yaml
            3. ~/.cloudsync/config.yaml

    Returns:
        CloudSyncConfig instance
    """
    if config_path is None:
        # Check environment variable
        config_path = os.environ.get("CLOUDSYNC_CONFIG")

        if config_path is None:
            # Check default locations
            candidates = [
                Path("./config/config.yaml"),
                Path.home() / ".cloudsync" / "config.yaml",
            ]
            for candidate in candidates:
                if candidate.exists():
                    config_path = str(candidate)
                    break

    if config_path is None:
        raise FileNotFoundError(
            "No config file found. Set CLOUDSYNC_CONFIG or create config/config.yaml"
        )

    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        yaml_data = yaml.safe_load(f) or {}

    return CloudSyncConfig(**yaml_data)


def save_example_config(output_path: str = "./config/config.example.yaml"):
    """
    Save an example configuration file.

    Args:
        output_path: Where to save the example config
    """
    example = {
        "data_dir": "./data",
        "state_file": "./cloud-sync-state.json",
        "sync": {
            "upload_batch_size": 10,
            "download_batch_size": 5,
            "batch_delay_seconds": 1.0,
            "batch_failure_ratio": 0.5,
            "total_failure_ratio": 0.2,
            "excluded_dirs": ["node_modules"],
        },
        "git": {
            "user_name": "CloudSync",
            "user_email": "cloudsync@example.com",
        },
        "log_level": "INFO",
    }

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, 'w') as f:
        yaml.dump(example, f, default_flow_style=False, sort_keys=False)

    print(f"Example config saved to {output_path}")
