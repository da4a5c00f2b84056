"""Exceptions raised by the file cache."""


class CacheError(Exception):
    """Base exception for cache-related errors."""

    pass


class CacheLoadError(CacheError):
    """Raised when the cache file exists but cannot be trusted.

    The offending file has already been deleted when this is raised.
    """

    pass


class CorruptFormatError(CacheLoadError):
    """Raised when the cache file cannot be parsed into the expected shape."""

    pass


class MissingDigestError(CacheLoadError):
    """Raised when the cache file carries no integrity digest."""

    pass


class DigestMismatchError(CacheLoadError):
    """Raised when the stored digest does not match the stored entries."""

    pass


class CacheWriteError(CacheError):
    """Raised when the cache file cannot be opened or fully written."""

    pass


class CacheLockError(CacheError):
    """Raised when unable to acquire a cache file lock, on reads or writes."""

    pass


class CachePermissionError(CacheWriteError):
    """Raised when cache directory permissions are insufficient."""

    pass


class CacheSerializationError(CacheError):
    """Raised when a value cannot be encoded into the cache file format."""

    pass
