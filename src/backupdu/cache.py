"""Result cache with per-key, non-blocking locks.

A scan of a large backup tree can take minutes, so finished results are kept
on disk and shared between requests. At most one computation per key runs at
a time; callers that lose the lock race get the last stored value instead of
waiting.
"""

import fcntl
import logging
import os
import re
import tempfile
import time
import zlib
from contextlib import ExitStack, contextmanager
from pathlib import Path
from typing import Callable, ContextManager, Iterator, Optional, Protocol, TypeVar

from pydantic import BaseModel, ValidationError

from backupdu.models import ScanResult

logger = logging.getLogger(__name__)

CACHE_SUFFIX = ".cache"
LOCK_SUFFIX = ".lock"

T = TypeVar("T", bound=BaseModel)


class CacheEntry(BaseModel):
    """A stored value and when it was written."""

    key: str
    written_at: float
    value: str

    def age(self, now: float | None = None) -> float:
        return (time.time() if now is None else now) - self.written_at


class CacheStore(Protocol):
    """Storage contract used by get_or_compute()."""

    def get(self, key: str) -> Optional[CacheEntry]: ...

    def put(self, key: str, value: str) -> CacheEntry: ...

    def lock(self, key: str) -> ContextManager[bool]: ...

    def sweep(self, retention: float) -> int: ...


def cache_key(scan_root: str, unpacked: bool = False) -> str:
    """Deterministic cache key for one set of scan parameters."""
    return f"scan:{scan_root.rstrip('/') or '/'}:unpacked={int(bool(unpacked))}"


def safe_filename(key: str) -> str:
    """File stem for a key: readable prefix plus a crc32 to keep keys distinct."""
    readable = re.sub(r"[^a-z0-9_\-]", "_", key, flags=re.IGNORECASE)[:50]
    return f"backup_{readable}_{zlib.crc32(key.encode()) & 0xFFFFFFFF:08x}"


class FileCacheStore:
    """
    Cache store backed by one JSON file per key in a private directory.

    Writes go to a temporary file and are renamed into place, so readers
    never see a half-written entry. Locks are flock() locks on a sibling
    ``.lock`` file.
    """

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def _ensure_dir(self) -> None:
        self.directory.mkdir(mode=0o700, parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        return self.directory / (safe_filename(key) + CACHE_SUFFIX)

    def lock_path_for(self, key: str) -> Path:
        return self.directory / (safe_filename(key) + CACHE_SUFFIX + LOCK_SUFFIX)

    def get(self, key: str) -> Optional[CacheEntry]:
        """Stored entry for key; None when missing, unreadable or for another key."""
        path = self.path_for(key)
        try:
            raw = path.read_text()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("Cannot read cache file %s: %s", path, e)
            return None

        try:
            entry = CacheEntry.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding corrupt cache file %s", path)
            return None

        if entry.key != key:
            return None
        return entry

    def put(self, key: str, value: str) -> CacheEntry:
        """Store value under key with the current time."""
        self._ensure_dir()
        entry = CacheEntry(key=key, written_at=time.time(), value=value)
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=".tmp-", suffix=CACHE_SUFFIX)
        try:
            with os.fdopen(fd, "w") as f:
                f.write(entry.model_dump_json())
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.path_for(key))
        except OSError:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise
        return entry

    @contextmanager
    def lock(self, key: str) -> Iterator[bool]:
        """
        Try to take the exclusive lock for key without blocking.

        Yields True when the lock is held for the duration of the block,
        False when another holder has it.

        Raises:
            OSError: If the lock file cannot be created or locked at all
        """
        self._ensure_dir()
        lock_path = self.lock_path_for(key)
        fd = os.open(lock_path, os.O_RDWR | os.O_CREAT, 0o600)

        try:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                yield False
                return
            try:
                # Keep the sweep away from lock files in use.
                os.utime(lock_path)
                yield True
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)

    def _is_locked(self, lock_path: Path) -> bool:
        try:
            fd = os.open(lock_path, os.O_RDWR)
        except OSError:
            return False
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            return True
        else:
            fcntl.flock(fd, fcntl.LOCK_UN)
            return False
        finally:
            os.close(fd)

    def sweep(self, retention: float) -> int:
        """
        Delete cache files (and idle lock files) older than retention seconds.

        Returns:
            Number of files removed
        """
        if not self.directory.is_dir():
            return 0

        now = time.time()
        removed = 0
        for path in self.directory.iterdir():
            name = path.name
            if not (name.endswith(CACHE_SUFFIX) or name.endswith(LOCK_SUFFIX)):
                continue
            try:
                if now - path.stat().st_mtime <= retention:
                    continue
                if name.endswith(LOCK_SUFFIX) and self._is_locked(path):
                    continue
                path.unlink()
                removed += 1
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning("Cannot sweep %s: %s", path, e)

        if removed:
            logger.debug("Swept %d stale cache files from %s", removed, self.directory)
        return removed

    def clear(self) -> int:
        """Remove every stored entry regardless of age."""
        return self.sweep(-1)


def _decode(entry: Optional[CacheEntry], model: type[T]) -> Optional[T]:
    """Parse a stored entry, treating corruption as a miss."""
    if entry is None:
        return None
    try:
        return model.model_validate_json(entry.value)
    except (ValidationError, ValueError):
        logger.warning("Discarding unparseable cached value for %s", entry.key)
        return None


def _fresh(entry: Optional[CacheEntry], ttl: float) -> bool:
    return entry is not None and entry.age() < ttl


def get_or_compute(
    store: CacheStore,
    key: str,
    ttl: float,
    force_refresh: bool,
    compute: Callable[[], T],
    model: type[T] = ScanResult,
) -> Optional[T]:
    """
    Return a cached value for key, computing it when stale or forced.

    Args:
        store: Cache store
        key: Cache key (see cache_key())
        ttl: Seconds a stored value stays fresh
        force_refresh: Recompute even if a fresh value is stored
        compute: Zero-argument callable producing the value
        model: Pydantic model the stored JSON is parsed into

    Returns:
        The fresh or computed value; on lock contention the last stored value
        (possibly stale); None if contention and nothing was ever stored.
        When the store cannot be locked at all the value is computed without
        caching.
    """
    if not force_refresh:
        entry = store.get(key)
        if _fresh(entry, ttl):
            value = _decode(entry, model)
            if value is not None:
                return value

    with ExitStack() as stack:
        try:
            acquired = stack.enter_context(store.lock(key))
        except OSError as e:
            logger.warning("Cache unavailable for %s, computing without it: %s", key, e)
            return compute()

        if not acquired:
            logger.info("Computation for %s already running, serving last stored value", key)
            return _decode(store.get(key), model)

        if not force_refresh:
            # Another holder may have finished while we waited for the lock.
            entry = store.get(key)
            if _fresh(entry, ttl):
                value = _decode(entry, model)
                if value is not None:
                    return value

        value = compute()
        try:
            store.put(key, value.model_dump_json())
        except OSError as e:
            logger.warning("Cannot store cache entry for %s: %s", key, e)
        return value

