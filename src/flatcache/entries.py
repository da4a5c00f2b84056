"""In-memory entry table and expiration rules."""

import copy
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, Optional


def is_timestamp_expired(
    stored_at: float, ttl_seconds: float, now: Optional[float] = None
) -> bool:
    """Check if an entry stored at ``stored_at`` has outlived its TTL.

    Args:
        stored_at: Epoch seconds when the entry was stored
        ttl_seconds: Time-to-live in seconds
        now: Current epoch seconds (defaults to ``time.time()``)

    Returns:
        True if expired. Reaching the TTL exactly counts as expired.
    """
    if now is None:
        now = time.time()
    return (now - stored_at) >= ttl_seconds


def ttl_remaining(
    stored_at: float, ttl_seconds: float, now: Optional[float] = None
) -> float:
    """Get remaining seconds until the TTL expires.

    Args:
        stored_at: Epoch seconds when the entry was stored
        ttl_seconds: Time-to-live in seconds
        now: Current epoch seconds (defaults to ``time.time()``)

    Returns:
        Seconds remaining, never negative
    """
    if now is None:
        now = time.time()
    return max(0.0, ttl_seconds - (now - stored_at))


@dataclass
class CacheEntry:
    """One stored value plus its timing and permanence metadata.

    Attributes:
        value: The cached data
        stored_at: Epoch seconds recorded at store time
        ttl_seconds: Seconds after ``stored_at`` at which the entry expires
        permanent: If True, the expiration sweep never removes this entry
    """

    value: Any
    stored_at: float
    ttl_seconds: float
    permanent: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the persisted entry layout."""
        return {
            "time": self.stored_at,
            "expire": self.ttl_seconds,
            "data": self.value,
            "permanent": self.permanent,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry":
        """Build an entry from the persisted entry layout.

        Raises:
            KeyError: If a required field is missing
            TypeError: If a timing field is not numeric
        """
        stored_at = data["time"]
        ttl_seconds = data["expire"]
        if isinstance(stored_at, bool) or not isinstance(stored_at, (int, float)):
            raise TypeError(f"Entry time must be numeric, got {stored_at!r}")
        if isinstance(ttl_seconds, bool) or not isinstance(ttl_seconds, (int, float)):
            raise TypeError(f"Entry expire must be numeric, got {ttl_seconds!r}")
        return cls(
            value=data["data"],
            stored_at=float(stored_at),
            ttl_seconds=float(ttl_seconds),
            permanent=bool(data.get("permanent", False)),
        )


class EntryStore:
    """Mapping from key to :class:`CacheEntry`.

    The store is a plain in-memory structure. It never touches the disk;
    :class:`flatcache.cache.Cache` persists it after every mutation.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def insert(
        self, key: str, value: Any, ttl_seconds: float, permanent: bool = False
    ) -> CacheEntry:
        """Store a copy of ``value`` under ``key``, replacing any existing entry."""
        entry = CacheEntry(
            value=copy.deepcopy(value),
            stored_at=self._clock(),
            ttl_seconds=float(ttl_seconds),
            permanent=permanent,
        )
        self._entries[key] = entry
        return entry

    def put(self, key: str, entry: CacheEntry) -> None:
        """Place an already-built entry under ``key``."""
        self._entries[key] = entry

    def get(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def remove(self, key: str) -> bool:
        """Remove ``key``. Returns whether it existed."""
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def is_expired(self, key: str) -> bool:
        """True if ``key`` is absent or its TTL has elapsed."""
        entry = self._entries.get(key)
        if entry is None:
            return True
        return is_timestamp_expired(entry.stored_at, entry.ttl_seconds, self._clock())

    def ttl_remaining(self, key: str) -> Optional[float]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        return ttl_remaining(entry.stored_at, entry.ttl_seconds, self._clock())

    def sweep_expired(self) -> int:
        """Remove every expired, non-permanent entry.

        Returns:
            Number of removed entries
        """
        expired = [
            key
            for key, entry in self._entries.items()
            if not entry.permanent and self.is_expired(key)
        ]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def entries(self) -> Dict[str, CacheEntry]:
        """Get a shallow copy of the key to entry mapping."""
        return dict(self._entries)

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        """Get all entries in the persisted layout, keyed by cache key."""
        return {key: entry.to_dict() for key, entry in self._entries.items()}

    def replace_all(self, entries: Dict[str, CacheEntry]) -> None:
        """Swap the whole table for ``entries``."""
        self._entries = dict(entries)
