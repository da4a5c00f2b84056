"""flatcache: file-backed key/value cache with per-entry TTL.

Key components:
- Cache: Main cache interface
- CacheConfig: Configuration management
- EntryStore: In-memory entry table and expiration sweep
- IntegrityCodec: Digest-checked serialization of the entry table
- FilePersistence: Locked reads and writes of the cache file
"""

__version__ = "0.1.0"

from flatcache.cache import Cache
from flatcache.codec import IntegrityCodec
from flatcache.config import CacheConfig, get_global_config, set_global_config
from flatcache.entries import CacheEntry, EntryStore
from flatcache.errors import (
    CacheError,
    CacheLoadError,
    CacheLockError,
    CachePermissionError,
    CacheSerializationError,
    CacheWriteError,
    CorruptFormatError,
    DigestMismatchError,
    MissingDigestError,
)
from flatcache.persistence import FilePersistence

__all__ = [
    "Cache",
    "CacheConfig",
    "CacheEntry",
    "EntryStore",
    "IntegrityCodec",
    "FilePersistence",
    "get_global_config",
    "set_global_config",
    "CacheError",
    "CacheLoadError",
    "CorruptFormatError",
    "MissingDigestError",
    "DigestMismatchError",
    "CacheWriteError",
    "CacheLockError",
    "CachePermissionError",
    "CacheSerializationError",
    "__version__",
]
