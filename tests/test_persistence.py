"""Unit tests for cache file persistence."""

import errno
import hashlib
import tempfile
from pathlib import Path
from unittest.mock import patch

import msgpack
import pytest
from filelock import Timeout

from flatcache import persistence
from flatcache.codec import compute_digest
from flatcache.entries import CacheEntry
from flatcache.errors import (
    CacheError,
    CacheLockError,
    CachePermissionError,
    CacheWriteError,
    CorruptFormatError,
    DigestMismatchError,
    MissingDigestError,
)
from flatcache.persistence import (
    HEADER,
    FilePersistence,
    hash_filename,
    normalize_cache_dir,
    normalize_extension,
    strip_first_line,
)


@pytest.fixture
def temp_cache_dir():
    """Create temporary cache directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def files(temp_cache_dir):
    return FilePersistence(cache_dir=temp_cache_dir / "cache", cache_filename="test")


@pytest.fixture
def entries():
    return {
        "a": CacheEntry(value={"x": [1, 2.5, True]}, stored_at=10.0, ttl_seconds=60.0),
        "b": CacheEntry(value=b"\x00\n\xff", stored_at=11.0, ttl_seconds=5.0, permanent=True),
    }


def write_raw(files, body):
    path = files.cache_file_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(HEADER + body)
    return path


class TestPathDerivation:
    """Test mapping of logical caches to file paths."""

    def test_hash_filename_is_md5(self):
        assert hash_filename("defaultcache") == hashlib.md5(b"defaultcache").hexdigest()

    def test_normalize_cache_dir_adds_slash(self):
        assert normalize_cache_dir("directory") == "directory/"
        assert normalize_cache_dir("directory/") == "directory/"

    def test_normalize_cache_dir_accepts_path(self):
        assert normalize_cache_dir(Path("a") / "b") == "a/b/"

    def test_normalize_extension_adds_php(self):
        assert normalize_extension(".test") == ".test.php"
        assert normalize_extension(".cache.php") == ".cache.php"

    def test_cache_file_path(self):
        files = FilePersistence("testdir", "fileName", ".test")
        expected = "testdir/" + hashlib.md5(b"fileName").hexdigest() + ".test.php"
        assert files.cache_file_path == Path(expected)

    def test_name_characters_do_not_leak(self):
        files = FilePersistence("dir/", "../../etc/passwd & 'x'")
        assert files.cache_file_path.parent == Path("dir")
        assert "&" not in files.cache_file_path.name

    def test_lock_path_is_sidecar(self, files):
        assert files.lock_path.name == files.cache_file_path.name + ".lock"


class TestStripFirstLine:
    """Test removal of the sentinel header."""

    def test_strips_header(self):
        assert strip_first_line(HEADER + b"body\nmore") == b"body\nmore"

    def test_no_newline(self):
        assert strip_first_line(b"body") == b"body"


class TestLoadSave:
    """Test whole-file reads and writes."""

    def test_load_missing_file_is_empty(self, files):
        assert files.load() == {}

    def test_load_does_not_create_directory(self, files):
        files.load()
        assert not Path(files.cache_dir).exists()

    def test_save_creates_directory(self, files, entries):
        files.save(entries)
        assert files.cache_file_path.exists()

    def test_save_writes_header(self, files, entries):
        files.save(entries)
        assert files.cache_file_path.read_bytes().startswith(HEADER)

    def test_load_returns_saved_entries(self, files, entries):
        files.save(entries)
        assert files.load() == entries

    def test_save_truncates_previous_contents(self, files, entries):
        files.save(entries)
        files.save({})
        assert files.load() == {}

    def test_peek_does_not_delete(self, files):
        path = write_raw(files, b"garbage")
        with pytest.raises(CorruptFormatError):
            files.peek()
        assert path.exists()

    def test_peek_missing_file(self, files):
        assert files.peek() is None


class TestCorruptFiles:
    """Test that untrusted files are deleted and reported."""

    def test_unparseable_file(self, files):
        path = write_raw(files, b"am\nnot\nserialized")

        with pytest.raises(
            CorruptFormatError,
            match=r"Cannot unserialize cache file, cache file deleted\. \(test\)",
        ):
            files.load()

        assert not path.exists()

    def test_missing_digest(self, files):
        path = write_raw(files, msgpack.packb({"entries": msgpack.packb({})}))

        with pytest.raises(MissingDigestError, match="cache file deleted"):
            files.load()

        assert not path.exists()

    def test_digest_mismatch(self, files):
        body = msgpack.packb(
            {"entries": msgpack.packb({}), "hash-sum": "invalid"}, use_bin_type=True
        )
        path = write_raw(files, body)

        with pytest.raises(DigestMismatchError, match="cache file deleted"):
            files.load()

        assert not path.exists()
        assert files.load() == {}

    def test_valid_hand_written_file(self, files):
        packed = msgpack.packb(
            {"k": {"time": 1.0, "expire": 2.0, "data": "v", "permanent": False}},
            use_bin_type=True,
        )
        write_raw(
            files,
            msgpack.packb(
                {"entries": packed, "hash-sum": compute_digest(packed)},
                use_bin_type=True,
            ),
        )

        assert files.load()["k"].value == "v"


class TestWriteFailures:
    """Test that write problems surface as cache errors."""

    def test_lock_timeout(self, files, entries):
        with patch("flatcache.persistence.FileLock") as mock_lock:
            mock_lock.return_value.__enter__.side_effect = Timeout("lock")
            with pytest.raises(CacheLockError, match="Timeout acquiring lock"):
                files.save(entries)

    @patch("flatcache.persistence.FileLock")
    def test_open_permission_denied(self, mock_lock, files, entries):
        with patch(
            "flatcache.persistence.os.open", side_effect=PermissionError("denied")
        ):
            with pytest.raises(CachePermissionError):
                files.save(entries)

    @patch("flatcache.persistence.FileLock")
    def test_open_os_error(self, mock_lock, files, entries):
        with patch(
            "flatcache.persistence.os.open",
            side_effect=OSError(errno.EIO, "I/O error"),
        ):
            with pytest.raises(CacheWriteError, match="Cannot open cache file"):
                files.save(entries)

    def test_directory_permission_denied(self, files, entries):
        with patch.object(Path, "mkdir", side_effect=PermissionError("denied")):
            with pytest.raises(CachePermissionError, match="Cannot create cache directory"):
                files.save(entries)

    def test_lock_error_is_not_write_error(self):
        """Lock failures can come from the read path too."""
        assert issubclass(CacheLockError, CacheError)
        assert not issubclass(CacheLockError, CacheWriteError)

    def test_lock_file_left_next_to_cache_file(self, files, entries):
        files.save(entries)

        assert files.lock_path.parent == files.cache_file_path.parent
        assert files.lock_path.exists()


@pytest.mark.skipif(persistence.fcntl is None, reason="requires fcntl")
class TestOsLock:
    """Test advisory locking of the data file."""

    def test_lock_released_after_block(self, temp_cache_dir):
        fcntl = persistence.fcntl
        path = temp_cache_dir / "f"
        path.write_bytes(b"x")

        with open(path, "rb") as fp:
            with persistence._os_lock(fp, exclusive=True):
                pass

        with open(path, "rb") as other:
            fcntl.flock(other.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            fcntl.flock(other.fileno(), fcntl.LOCK_UN)

    def test_lock_released_on_error(self, temp_cache_dir):
        fcntl = persistence.fcntl
        path = temp_cache_dir / "f"
        path.write_bytes(b"x")

        with open(path, "rb") as fp:
            with pytest.raises(RuntimeError):
                with persistence._os_lock(fp, exclusive=True):
                    raise RuntimeError("boom")

            with open(path, "rb") as other:
                fcntl.flock(other.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                fcntl.flock(other.fileno(), fcntl.LOCK_UN)

    def test_shared_locks_coexist(self, temp_cache_dir):
        path = temp_cache_dir / "f"
        path.write_bytes(b"x")

        with open(path, "rb") as first, open(path, "rb") as second:
            with persistence._os_lock(first, exclusive=False):
                with persistence._os_lock(second, exclusive=False):
                    assert first.read() == second.read() == b"x"

    def test_flock_failure_becomes_lock_error(self, temp_cache_dir):
        path = temp_cache_dir / "f"
        path.write_bytes(b"x")

        with open(path, "rb") as fp:
            with patch.object(
                persistence.fcntl, "flock", side_effect=OSError(errno.ENOLCK, "no locks")
            ):
                with pytest.raises(CacheLockError):
                    with persistence._os_lock(fp, exclusive=False):
                        pass
