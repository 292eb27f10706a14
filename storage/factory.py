"""
Driver factory for creating provider drivers.

Provides a unified interface for creating the appropriate driver for a
registered provider instance based on its type.
"""
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sync.models import ProviderInstance

from config import GitHubConfig, S3Config, SFTPConfig, WebDAVConfig
from storage.base import ProviderDriver
from storage.exceptions import ValidationError

logger = logging.getLogger(__name__)

CONFIG_MODELS = {
    "s3": S3Config,
    "webdav": WebDAVConfig,
    "github": GitHubConfig,
    "sftp": SFTPConfig,
}


def create_driver(instance: "ProviderInstance") -> ProviderDriver:
    """
    Create provider driver from a registered provider instance.

    Args:
        instance: ProviderInstance whose config matches its type

    Returns:
        ProviderDriver instance

    Raises:
        ValidationError: If the type is unknown or config does not match it
    """
    provider_type = str(getattr(instance.type, "value", instance.type))
    config = instance.config
    expected = CONFIG_MODELS.get(provider_type)

    if expected is None:
        raise ValidationError(f"[{instance.name}] Unknown provider type: {provider_type}")
    if not isinstance(config, expected):
        raise ValidationError(
            f"[{instance.name}] {provider_type} provider has mismatched configuration"
        )

    if provider_type == "s3":
        from storage.s3 import S3Driver
        logger.info(f"[{instance.name}] Initializing S3 driver: {config.bucket}")
        return S3Driver(config)

    elif provider_type == "webdav":
        from storage.webdav import WebDAVDriver
        logger.info(f"[{instance.name}] Initializing WebDAV driver: {config.url}")
        return WebDAVDriver(config)

    elif provider_type == "github":
        from storage.github import GitHubDriver
        logger.info(f"[{instance.name}] Initializing GitHub driver: {config.repo}@{config.branch}")
        return GitHubDriver(config)

    else:
        from storage.sftp import SFTPDriver
        logger.info(f"[{instance.name}] Initializing SFTP driver: {config.host}:{config.port}")
        return SFTPDriver(config)
