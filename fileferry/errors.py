"""Exception types shared by the server and the sync client."""

from __future__ import annotations

from typing import Optional


class FileFerryError(Exception):
    """Base class for all fileferry errors."""


class ManifestFetchError(FileFerryError):
    """The remote manifest could not be retrieved or decoded. Aborts a sync run."""


class LocalHashError(FileFerryError):
    """A local file could not be read while diffing; it is treated as missing."""


class AccessError(FileFerryError):
    """A file request that the server refuses with an HTTP status."""

    status_code = 404

    def __init__(self, path: str, message: Optional[str] = None) -> None:
        self.path = path
        super().__init__(message or path)


class PathTraversalRejected(AccessError):
    status_code = 404


class FileNotFound(AccessError):
    status_code = 404


class SizeLimitExceeded(AccessError):
    status_code = 413

    def __init__(self, path: str, size: int, limit: int) -> None:
        self.size = size
        self.limit = limit
        super().__init__(path, f"{path} is {size} bytes (limit {limit})")


class GateSaturated(AccessError):
    """Raised under the ``reject`` gate policy when every transfer slot is taken."""

    status_code = 503


class TransientDownloadError(FileFerryError):
    """A download attempt failed in a way worth retrying."""


class PermanentDownloadFailure(FileFerryError):
    """A download exhausted its attempts."""

    def __init__(self, name: str, attempts: int, reason: str) -> None:
        self.name = name
        self.attempts = attempts
        self.reason = reason
        super().__init__(f"{name}: {reason} (after {attempts} attempts)")


class CacheRebuildError(FileFerryError):
    """The manifest cache could not be written; the previous cache stays in place."""


__all__ = [
    "AccessError",
    "CacheRebuildError",
    "FileFerryError",
    "FileNotFound",
    "GateSaturated",
    "LocalHashError",
    "ManifestFetchError",
    "PathTraversalRejected",
    "PermanentDownloadFailure",
    "SizeLimitExceeded",
    "TransientDownloadError",
]
