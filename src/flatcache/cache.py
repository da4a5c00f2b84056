"""File-backed key/value cache with per-entry TTL."""

import copy
import logging
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

from rich.console import Console

from flatcache.codec import IntegrityCodec
from flatcache.config import CacheConfig, get_global_config
from flatcache.display import print_entries
from flatcache.entries import EntryStore
from flatcache.errors import CacheSerializationError
from flatcache.persistence import FilePersistence

logger = logging.getLogger(__name__)


class Cache:
    """Key/value cache persisted to a single local file.

    The cache file is loaded once, when the cache is created, and kept in
    memory afterwards. Every mutation writes the whole table back to disk
    before returning. Changes made to the file by other processes are only
    picked up by :meth:`reload_from_disc`.

    Public operations are serialized with a re-entrant lock, so one handle
    can be shared between threads. Separate processes coordinate through
    file locks only.

    Args:
        cache_dir: Cache directory (a trailing "/" is added if missing)
        cache_filename: Logical cache name; hashed to build the file name
        file_extension: File extension (".php" is appended if missing)
        config: Cache configuration (uses global if None)
        clock: Wall-clock source returning epoch seconds

    Raises:
        CacheLoadError: If the cache file is corrupt (it is deleted first)
    """

    def __init__(
        self,
        cache_dir: Optional[Union[str, Path]] = None,
        cache_filename: Optional[str] = None,
        file_extension: Optional[str] = None,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or get_global_config()
        self._lock = threading.RLock()
        self._dev_mode = self.config.dev_mode
        self._store = EntryStore(clock=clock)
        self._persistence = FilePersistence(
            cache_dir=cache_dir if cache_dir is not None else self.config.cache_dir,
            cache_filename=(
                cache_filename
                if cache_filename is not None
                else self.config.cache_filename
            ),
            file_extension=(
                file_extension
                if file_extension is not None
                else self.config.file_extension
            ),
            codec=IntegrityCodec(self.config.checksum_algorithm),
            lock_timeout=self.config.lock_timeout,
        )

        self.reload_from_disc()

    def _save(self) -> None:
        self._persistence.save(self._store.entries())

    def store(
        self,
        key: str,
        value: Any,
        ttl_seconds: Optional[float] = None,
        permanent: bool = False,
    ) -> None:
        """Store ``value`` under ``key`` for ``ttl_seconds`` seconds.

        An existing entry under ``key`` is overwritten. In dev mode the TTL
        is always replaced by ``config.dev_ttl``.

        Args:
            key: Cache key
            value: Data to store
            ttl_seconds: Seconds before the key expires (config default if None)
            permanent: If True, the entry is never removed by the expiration sweep

        Raises:
            CacheSerializationError: If ``value`` cannot be encoded; the
                previous entry for ``key`` is restored
            CacheWriteError: If the file cannot be written; the new entry
                stays in memory
            CacheLockError: If the writer lock cannot be acquired; the new
                entry stays in memory
        """
        if ttl_seconds is None:
            ttl_seconds = self.config.default_ttl

        with self._lock:
            if self._dev_mode:
                logger.debug(
                    f"Dev mode: storing {key!r} with {self.config.dev_ttl}s "
                    f"instead of {ttl_seconds}s"
                )
                ttl_seconds = self.config.dev_ttl

            previous = self._store.get(key)
            self._store.insert(key, value, ttl_seconds, permanent)
            try:
                self._save()
            except CacheSerializationError:
                if previous is None:
                    self._store.remove(key)
                else:
                    self._store.put(key, previous)
                raise

    def retrieve(self, key: str, with_meta: bool = False) -> Any:
        """Return the data stored under ``key``.

        Expired entries are erased first.

        Args:
            key: Cache key
            with_meta: If True, return the whole entry as a dict with
                "time", "expire", "data" and "permanent" fields

        Returns:
            Copy of the stored data (or entry dict), or None if ``key`` is
            not cached
        """
        with self._lock:
            self.erase_expired()

            entry = self._store.get(key)
            if entry is None:
                return None
            return copy.deepcopy(entry.to_dict() if with_meta else entry.value)

    def refresh_if_expired(
        self,
        key: str,
        compute_fn: Callable[[], Any],
        ttl_seconds: Optional[float] = None,
        with_meta: bool = False,
    ) -> Any:
        """Recompute ``key`` with ``compute_fn`` if it is missing or expired.

        Shortcut for::

            if cache.is_expired(key):
                cache.store(key, compute_fn(), ttl_seconds)
            data = cache.retrieve(key)

        Errors raised by ``compute_fn`` propagate unchanged.

        Returns:
            Data currently stored under ``key`` (see :meth:`retrieve`)
        """
        with self._lock:
            if self.is_expired(key):
                self.store(key, compute_fn(), ttl_seconds)

            return self.retrieve(key, with_meta)

    def erase_key(self, key: str) -> bool:
        """Erase the entry under ``key``.

        Returns:
            True if ``key`` was found and removed, False otherwise. Nothing
            is written to disk when the key is absent.
        """
        with self._lock:
            if not self._store.remove(key):
                return False

            self._save()
            return True

    def erase_expired(self) -> int:
        """Erase expired, non-permanent entries.

        Returns:
            Number of erased entries
        """
        with self._lock:
            count = self._store.sweep_expired()
            if count > 0:
                logger.debug(
                    f"Erased {count} expired entries from "
                    f"{self._persistence.cache_filename}"
                )
                self._save()
            return count

    def clear_cache(self) -> None:
        """Erase every entry."""
        with self._lock:
            self._store.clear()
            self._save()

    def is_expired(self, key: str, erase_expired: bool = True) -> bool:
        """Check if ``key`` is missing or past its TTL.

        Permanent entries still report True once their TTL has elapsed.

        Args:
            key: Cache key
            erase_expired: If True, expired entries are erased first
        """
        with self._lock:
            if erase_expired:
                self.erase_expired()
            return self._store.is_expired(key)

    def is_cached(self, key: str, erase_expired: bool = True) -> bool:
        """Check if ``key`` is cached.

        Args:
            key: Cache key
            erase_expired: If True, expired entries are erased first
        """
        with self._lock:
            if erase_expired:
                self.erase_expired()
            return key in self._store

    def ttl_remaining(self, key: str) -> Optional[float]:
        """Seconds left before ``key`` expires, or None if not cached."""
        with self._lock:
            return self._store.ttl_remaining(key)

    def reload_from_disc(self) -> None:
        """Discard in-memory entries and load the cache file again.

        Use after changing the directory, file name or extension.

        Raises:
            CacheLoadError: If the cache file is corrupt. The file is deleted
                and the in-memory entries are kept.
        """
        with self._lock:
            entries = self._persistence.load()
            self._store.replace_all(entries)

    def get_cache_array(self) -> Dict[str, Dict[str, Any]]:
        """Return a copy of all entries as dicts, keyed by cache key."""
        with self._lock:
            return copy.deepcopy(self._store.to_dict())

    def debug_cache(self, console: Optional[Console] = None) -> None:
        """Print the decoded contents of the cache file."""
        entries = self._persistence.peek()
        if entries is None:
            return
        print_entries(entries, title=self.cache_filename, console=console)

    def is_dev_mode(self) -> bool:
        return self._dev_mode

    def set_dev_mode(self, dev_mode: bool) -> "Cache":
        """Turn dev mode on or off.

        While on, every store expires after ``config.dev_ttl`` seconds.
        """
        self._dev_mode = dev_mode
        return self

    # Path configuration. Changing these does not reload the cache.

    @property
    def cache_dir(self) -> str:
        return self._persistence.cache_dir

    @property
    def cache_filename(self) -> str:
        return self._persistence.cache_filename

    @property
    def cache_filename_hashed(self) -> str:
        """Hashed cache file name, used as the actual file name."""
        return self._persistence.cache_filename_hashed

    @property
    def file_extension(self) -> str:
        return self._persistence.file_extension

    @property
    def cache_file_path(self) -> Path:
        return self._persistence.cache_file_path

    def set_cache_dir(self, cache_dir: Union[str, Path]) -> "Cache":
        with self._lock:
            self._persistence.set_cache_dir(cache_dir)
        return self

    def set_cache_filename(self, cache_filename: str) -> "Cache":
        with self._lock:
            self._persistence.set_cache_filename(cache_filename)
        return self

    def set_file_extension(self, file_extension: str) -> "Cache":
        with self._lock:
            self._persistence.set_file_extension(file_extension)
        return self
