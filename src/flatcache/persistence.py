"""On-disk storage of the entry table.

A logical cache (directory + name + extension) maps to exactly one file::

    {cache_dir}{md5(cache_filename)}{file_extension}

The file holds one sentinel header line followed by the blob produced by
:class:`flatcache.codec.IntegrityCodec`. Reads take a shared OS lock on the
file, writes take an exclusive one, each held only around the actual I/O.
Writers are additionally serialized across processes by a sidecar
``filelock.FileLock`` with a bounded timeout.
"""

import contextlib
import hashlib
import logging
import os
from pathlib import Path
from typing import BinaryIO, Dict, Iterator, Optional, Union

from filelock import FileLock, Timeout

from flatcache.codec import IntegrityCodec
from flatcache.entries import CacheEntry
from flatcache.errors import (
    CacheError,
    CacheLoadError,
    CacheLockError,
    CachePermissionError,
    CacheWriteError,
)

try:
    import fcntl
except ImportError:  # pragma: no cover - Windows
    fcntl = None

logger = logging.getLogger(__name__)

# Keeps the file inert if it ends up in a PHP-served directory.
HEADER = b'<?php die("Access denied") ?>\n'
REQUIRED_EXTENSION = ".php"


def hash_filename(cache_filename: str) -> str:
    """Hash a logical cache name into the on-disk file name component."""
    return hashlib.md5(cache_filename.encode("utf-8")).hexdigest()


def normalize_cache_dir(cache_dir: Union[str, Path]) -> str:
    """Ensure the cache directory ends with "/"."""
    cache_dir = os.fspath(cache_dir)
    if not cache_dir.endswith("/"):
        cache_dir += "/"
    return cache_dir


def normalize_extension(file_extension: str) -> str:
    """Ensure the file extension ends with ".php"."""
    if not file_extension.endswith(REQUIRED_EXTENSION):
        file_extension += REQUIRED_EXTENSION
    return file_extension


def strip_first_line(data: bytes) -> bytes:
    """Drop everything up to and including the first newline.

    Data without a newline is returned unchanged.
    """
    position = data.find(b"\n")
    if position == -1:
        return data
    return data[position + 1 :]


@contextlib.contextmanager
def _os_lock(fp: BinaryIO, exclusive: bool) -> Iterator[None]:
    """Hold an advisory lock on an open file for the duration of the block."""
    if fcntl is None:  # pragma: no cover - Windows
        yield
        return

    try:
        fcntl.flock(fp.fileno(), fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)
    except OSError as e:
        mode = "exclusive" if exclusive else "shared"
        raise CacheLockError(f"Cannot get {mode} lock for {fp.name}: {e}") from e
    try:
        yield
    finally:
        fcntl.flock(fp.fileno(), fcntl.LOCK_UN)


class FilePersistence:
    """Locked whole-file reads and writes for one logical cache.

    Saving creates a sidecar ``<cache file>.lock`` next to the cache file for
    the writer lock. It is left in place after the lock is released, so each
    directory and file name ever saved to keeps its own lock file.

    Args:
        cache_dir: Directory holding the cache file
        cache_filename: Logical cache name, hashed to build the file name
        file_extension: File extension, forced to end with ".php"
        codec: Codec used to encode and verify the file body
        lock_timeout: Seconds to wait for the writer lock
    """

    def __init__(
        self,
        cache_dir: Union[str, Path] = "cache/",
        cache_filename: str = "defaultcache",
        file_extension: str = ".cache.php",
        codec: Optional[IntegrityCodec] = None,
        lock_timeout: float = 10.0,
    ):
        self.set_cache_dir(cache_dir)
        self.set_cache_filename(cache_filename)
        self.set_file_extension(file_extension)
        self.codec = codec or IntegrityCodec()
        self.lock_timeout = lock_timeout

    def set_cache_dir(self, cache_dir: Union[str, Path]) -> None:
        self.cache_dir = normalize_cache_dir(cache_dir)

    def set_cache_filename(self, cache_filename: str) -> None:
        self.cache_filename = cache_filename
        self.cache_filename_hashed = hash_filename(cache_filename)

    def set_file_extension(self, file_extension: str) -> None:
        self.file_extension = normalize_extension(file_extension)

    @property
    def cache_file_path(self) -> Path:
        """Combine directory, hashed name and extension into a path."""
        return Path(self.cache_dir + self.cache_filename_hashed + self.file_extension)

    @property
    def lock_path(self) -> Path:
        path = self.cache_file_path
        return path.with_name(path.name + ".lock")

    def exists(self) -> bool:
        path = self.cache_file_path
        return path.is_file() and os.access(path, os.R_OK)

    def _read_body(self) -> Optional[bytes]:
        """Read the file under a shared lock and strip its header.

        Returns:
            File body, or None if the file does not exist
        """
        path = self.cache_file_path
        try:
            with open(path, "rb") as fp:
                with _os_lock(fp, exclusive=False):
                    data = fp.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise CacheError(f"Cannot read cache file {path}: {e}") from e

        return strip_first_line(data)

    def load(self) -> Dict[str, CacheEntry]:
        """Load the entry table from disk.

        A missing or unreadable file is a cold cache and yields no entries.

        Raises:
            CorruptFormatError: If the file cannot be parsed
            MissingDigestError: If the file has no digest
            DigestMismatchError: If the digest does not match
            CacheLockError: If the shared lock cannot be obtained
        """
        if not self.exists():
            logger.debug(f"No cache file for {self.cache_filename}, starting empty")
            return {}

        body = self._read_body()
        if body is None:
            return {}

        try:
            entries = self.codec.decode(body)
        except CacheLoadError as e:
            self.cache_file_path.unlink(missing_ok=True)
            logger.warning(
                f"Deleted corrupt cache file {self.cache_file_path} "
                f"({self.cache_filename}): {e}"
            )
            raise type(e)(
                f"{e}, cache file deleted. ({self.cache_filename})"
            ) from e

        logger.debug(
            f"Loaded {len(entries)} entries from {self.cache_file_path}"
        )
        return entries

    def peek(self) -> Optional[Dict[str, CacheEntry]]:
        """Decode the file without loading it or deleting it on failure.

        Returns:
            Decoded entries, or None if the file does not exist
        """
        if not self.exists():
            return None
        body = self._read_body()
        if body is None:
            return None
        return self.codec.decode(body)

    def _ensure_dir(self) -> None:
        directory = Path(self.cache_dir)
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except PermissionError as e:
            raise CachePermissionError(
                f"Cannot create cache directory {directory}: {e}"
            ) from e
        except OSError as e:
            logger.error(f"OS error creating cache directory: {e}")
            raise CacheWriteError(f"Cannot create cache directory: {e}") from e

    def save(self, entries: Dict[str, CacheEntry]) -> None:
        """Write the entry table to disk, replacing the file contents.

        Raises:
            CacheSerializationError: If an entry value cannot be encoded
            CacheLockError: If the writer lock cannot be acquired in time
            CachePermissionError: If the directory or file is not writable
            CacheWriteError: If the file cannot be opened or fully written
        """
        data = HEADER + self.codec.encode(entries)
        self._ensure_dir()

        try:
            with FileLock(self.lock_path, timeout=self.lock_timeout):
                self._write(data)
        except Timeout as e:
            logger.error(f"Timeout acquiring lock for {self.cache_file_path}")
            raise CacheLockError(
                f"Timeout acquiring lock for {self.cache_file_path} "
                f"after {self.lock_timeout} seconds"
            ) from e

        logger.debug(f"Saved {len(entries)} entries to {self.cache_file_path}")

    def _write(self, data: bytes) -> None:
        path = self.cache_file_path
        try:
            fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o666)
        except PermissionError as e:
            raise CachePermissionError(f"Cannot open cache file {path}: {e}") from e
        except OSError as e:
            logger.error(f"OS error opening cache file: {e}")
            raise CacheWriteError(f"Cannot open cache file for writing: {e}") from e

        with os.fdopen(fd, "r+b") as fp:
            with _os_lock(fp, exclusive=True):
                try:
                    fp.seek(0)
                    fp.truncate()
                    written = fp.write(data)
                    fp.flush()
                except OSError as e:
                    logger.error(f"OS error writing cache file: {e}")
                    raise CacheWriteError(f"Cannot write to cache file: {e}") from e

                if written != len(data):
                    raise CacheWriteError(
                        f"Short write to cache file {path}: "
                        f"{written} of {len(data)} bytes"
                    )
