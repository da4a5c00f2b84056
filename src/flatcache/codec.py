"""Integrity-checked serialization of the entry table.

The blob written to disk is a MessagePack map with two fields:

- ``entries``: the packed entry table, kept as raw bytes
- ``hash-sum``: hex digest computed over exactly those bytes

Keeping the entries packed inside the outer map means the digest is checked
against the bytes that were hashed, not against a re-encoding of them.
"""

import hashlib
import logging
from typing import Any, Dict

import msgpack
from msgpack.exceptions import UnpackException

from flatcache.entries import CacheEntry
from flatcache.errors import (
    CacheSerializationError,
    CorruptFormatError,
    DigestMismatchError,
    MissingDigestError,
)

logger = logging.getLogger(__name__)

ENTRIES_FIELD = "entries"
DIGEST_FIELD = "hash-sum"
SUPPORTED_ALGORITHMS = ("md5", "sha256")


def compute_digest(data: bytes, algorithm: str = "md5") -> str:
    """Compute checksum from bytes.

    Args:
        data: Bytes to hash
        algorithm: Hash algorithm ('md5', 'sha256')

    Returns:
        Hex digest of checksum

    Raises:
        ValueError: If algorithm not supported
    """
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise ValueError(f"Unsupported algorithm: {algorithm}")

    if algorithm == "md5":
        hasher = hashlib.md5()
    else:
        hasher = hashlib.sha256()

    hasher.update(data)
    return hasher.hexdigest()


def _unpack(data: bytes) -> Any:
    return msgpack.unpackb(data, raw=False, strict_map_key=False)


class IntegrityCodec:
    """Encodes entry tables to bytes and verifies them on the way back."""

    def __init__(self, algorithm: str = "md5"):
        if algorithm not in SUPPORTED_ALGORITHMS:
            raise ValueError(f"Unsupported algorithm: {algorithm}")
        self.algorithm = algorithm

    def encode(self, entries: Dict[str, CacheEntry]) -> bytes:
        """Serialize ``entries`` together with their digest.

        Raises:
            CacheSerializationError: If a value cannot be packed
        """
        raw = {key: entry.to_dict() for key, entry in entries.items()}
        try:
            packed = msgpack.packb(raw, use_bin_type=True)
        except (TypeError, ValueError, OverflowError) as e:
            raise CacheSerializationError(f"Cannot serialize cache entries: {e}") from e

        return msgpack.packb(
            {
                ENTRIES_FIELD: packed,
                DIGEST_FIELD: compute_digest(packed, self.algorithm),
            },
            use_bin_type=True,
        )

    def decode(self, blob: bytes) -> Dict[str, CacheEntry]:
        """Parse and verify a blob produced by :meth:`encode`.

        Raises:
            CorruptFormatError: If the blob is not the expected structure
            MissingDigestError: If the digest field is absent
            DigestMismatchError: If the digest does not match the entries
        """
        try:
            outer = _unpack(blob)
        except (UnpackException, ValueError, TypeError) as e:
            raise CorruptFormatError("Cannot unserialize cache file") from e

        if not isinstance(outer, dict):
            raise CorruptFormatError("Cannot unserialize cache file")

        if DIGEST_FIELD not in outer:
            raise MissingDigestError("No hash found in cache file")

        packed = outer.get(ENTRIES_FIELD)
        if not isinstance(packed, bytes):
            raise CorruptFormatError("Cache file has no entries section")

        if outer[DIGEST_FIELD] != compute_digest(packed, self.algorithm):
            raise DigestMismatchError("Cache data miss-hashed")

        try:
            raw = _unpack(packed)
        except (UnpackException, ValueError, TypeError) as e:
            raise CorruptFormatError("Cannot unserialize cache entries") from e

        if not isinstance(raw, dict):
            raise CorruptFormatError("Cache entries are not a mapping")

        entries = {}
        for key, item in raw.items():
            if not isinstance(key, str) or not isinstance(item, dict):
                raise CorruptFormatError(f"Malformed cache entry {key!r}")
            try:
                entries[key] = CacheEntry.from_dict(item)
            except (KeyError, TypeError) as e:
                raise CorruptFormatError(f"Malformed cache entry {key!r}: {e}") from e

        logger.debug(f"Decoded {len(entries)} cache entries")
        return entries
