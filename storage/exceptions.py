"""
Error taxonomy shared by provider drivers and the sync engine.

Drivers translate SDK/transport exceptions into one of the classified
ProviderError subclasses so callers never see a raw transport exception.
"""


class CloudSyncError(Exception):
    """Base class for all CloudSync errors."""


class ProviderError(CloudSyncError):
    """Classified failure raised by a provider driver."""


class AuthError(ProviderError):
    """Bad credentials or token."""


class NotFoundError(ProviderError):
    """Missing remote path/file, or missing provider/config id."""


class NetworkError(ProviderError):
    """Transport-level unreachability (DNS, refused, timeout)."""


class UnknownProviderError(ProviderError):
    """Any driver failure that could not be classified."""


class ValidationError(CloudSyncError):
    """Malformed configuration (e.g. wrong repository-name format)."""
