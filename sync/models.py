"""Data model shared by the registry, status tracker and orchestrator."""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, model_validator

from config import GitHubConfig, S3Config, SFTPConfig, WebDAVConfig
from storage.factory import CONFIG_MODELS

ProviderConfig = Union[S3Config, WebDAVConfig, GitHubConfig, SFTPConfig]


class ProviderType(str, Enum):
    """Supported backend kinds."""
    S3 = "s3"
    WEBDAV = "webdav"
    GITHUB = "github"
    SFTP = "sftp"


class SyncStatus(str, Enum):
    """Per-provider sync state."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    ERROR = "error"
    DISABLED = "disabled"


class SyncDirection(str, Enum):
    UPLOAD = "upload"
    DOWNLOAD = "download"


def new_provider_id() -> str:
    return uuid.uuid4().hex


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ProviderInstance(BaseModel):
    """
    A configured remote backend.

    The config is parsed with the model matching ``type`` so that the tagged
    union never resolves to the wrong backend config.
    """
    id: str = Field(default_factory=new_provider_id)
    type: ProviderType
    name: str
    enabled: bool = True
    config: ProviderConfig

    @model_validator(mode="before")
    @classmethod
    def _parse_config(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("config"), dict):
            provider_type = getattr(data.get("type"), "value", data.get("type"))
            model = CONFIG_MODELS.get(provider_type)
            if model is not None:
                data = {**data, "config": model(**data["config"])}
        return data

    @model_validator(mode="after")
    def _check_config_type(self) -> "ProviderInstance":
        expected = CONFIG_MODELS[self.type.value]
        if not isinstance(self.config, expected):
            raise ValueError(
                f"{self.type.value} provider requires {expected.__name__}, "
                f"got {type(self.config).__name__}"
            )
        return self


class SyncStatusRecord(BaseModel):
    """Last known sync outcome for one provider."""
    status: SyncStatus = SyncStatus.PENDING
    last_sync_time: Optional[datetime] = None
    last_sync_error: Optional[str] = None
