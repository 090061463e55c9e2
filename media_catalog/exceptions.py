"""
Custom exception hierarchy for the media catalog worker.

Every failure the reconciliation loop knows how to recover from has its own
type so callers can decide how far it is allowed to propagate.
"""


class MediaCatalogError(Exception):
    """Base exception for all media catalog errors."""
    pass


class ScanError(MediaCatalogError):
    """Raised when a scan root cannot be read."""
    pass


class ProbeError(MediaCatalogError):
    """Raised when a file cannot be probed for media info."""
    pass


class ResolveError(MediaCatalogError):
    """Raised when a file path cannot be mapped to a site URI."""
    pass


class StoreError(MediaCatalogError):
    """Raised when a catalog read, write or transaction fails."""
    pass


class ConfigError(MediaCatalogError):
    """Raised when site configuration is missing or malformed."""
    pass
