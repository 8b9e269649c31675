"""
Exception hierarchy for the offline resource cache.
"""


class OfflineCacheError(Exception):
    """Base exception for the offline cache subsystem."""
    pass


class StorageError(OfflineCacheError):
    """Cache storage backend failed to read or write."""
    pass


class NetworkError(OfflineCacheError):
    """Network fetch failed before a response was received."""

    def __init__(self, message: str, url: str = None):
        super().__init__(message)
        self.url = url


class InstallError(OfflineCacheError):
    """Precaching failed; the new worker version must not activate."""

    def __init__(self, message: str, failed_assets=None):
        super().__init__(message)
        self.failed_assets = list(failed_assets or [])


class InvalidMessageError(OfflineCacheError):
    """Control message could not be parsed."""
    pass
