"""Cache configuration management."""

import json
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional


@dataclass
class CacheConfig:
    """Configuration for a file cache.

    Attributes:
        cache_dir: Directory holding the cache file
        cache_filename: Logical cache name; hashed to build the file name
        file_extension: Cache file extension, always ending in ".php"
        default_ttl: Default time-to-live in seconds
        dev_mode: If True, every store expires after ``dev_ttl`` seconds
        dev_ttl: TTL forced on every store while dev mode is on
        checksum_algorithm: Algorithm for the file digest ('md5', 'sha256')
        lock_timeout: Seconds to wait for the writer lock before failing
    """

    cache_dir: str = "cache/"
    cache_filename: str = "defaultcache"
    file_extension: str = ".cache.php"
    default_ttl: float = 60.0
    dev_mode: bool = False
    dev_ttl: float = 0.1
    checksum_algorithm: str = "md5"
    lock_timeout: float = 10.0

    def __post_init__(self):
        """Accept Path objects for cache_dir."""
        if isinstance(self.cache_dir, Path):
            self.cache_dir = str(self.cache_dir)

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "CacheConfig":
        """Load configuration from a JSON file.

        Args:
            config_path: Path to config file. If None, uses ./flatcache.json.

        Returns:
            CacheConfig instance (defaults if the file does not exist)
        """
        if config_path is None:
            config_path = Path("flatcache.json")

        if not config_path.exists():
            return cls()

        with open(config_path, "r") as f:
            data = json.load(f)

        return cls(**data)

    def save(self, config_path: Optional[Path] = None) -> None:
        """Save configuration to a JSON file.

        Args:
            config_path: Path to config file. If None, uses ./flatcache.json.
        """
        if config_path is None:
            config_path = Path("flatcache.json")

        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, "w") as f:
            json.dump(asdict(self), f, indent=2)

    @classmethod
    def from_env(cls) -> "CacheConfig":
        """Create configuration from environment variables.

        Environment variables:
            FLATCACHE_DIR: Cache directory path
            FLATCACHE_FILENAME: Logical cache name
            FLATCACHE_EXTENSION: Cache file extension
            FLATCACHE_TTL: Default TTL in seconds
            FLATCACHE_DEV_MODE: Enable dev mode (true/false)

        Returns:
            CacheConfig instance
        """
        config = cls()

        if os.getenv("FLATCACHE_DIR"):
            config.cache_dir = os.getenv("FLATCACHE_DIR")

        if os.getenv("FLATCACHE_FILENAME"):
            config.cache_filename = os.getenv("FLATCACHE_FILENAME")

        if os.getenv("FLATCACHE_EXTENSION"):
            config.file_extension = os.getenv("FLATCACHE_EXTENSION")

        if os.getenv("FLATCACHE_TTL"):
            config.default_ttl = float(os.getenv("FLATCACHE_TTL"))

        if os.getenv("FLATCACHE_DEV_MODE"):
            config.dev_mode = os.getenv("FLATCACHE_DEV_MODE", "").lower() == "true"

        return config


# Global cache configuration instance
_global_config: Optional[CacheConfig] = None


def get_global_config() -> CacheConfig:
    """Get global cache configuration.

    Returns:
        Global CacheConfig instance
    """
    global _global_config
    if _global_config is None:
        _global_config = CacheConfig()
    return _global_config


def set_global_config(config: Optional[CacheConfig]) -> None:
    """Set global cache configuration.

    Args:
        config: CacheConfig instance to use globally, or None to reset
    """
    global _global_config
    _global_config = config
