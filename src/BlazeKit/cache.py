"""Key/value stores with per-entry time-to-live.

The authorization session and the bucket directory both remember remote
state for a bounded time.  They talk to a :class:`CacheStore`, which keeps
them independent from where that state lives:

* :class:`MemoryCache` keeps entries in-process (the default).
* :class:`FileCache` writes one JSON document per key so that short-lived
  processes (cron jobs, CLIs) can share an authorization across runs.
"""

from __future__ import annotations

import contextlib
import hashlib
import json
import logging
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Optional, Protocol, Tuple, Union

import platformdirs
from filelock import FileLock, Timeout

from .errors import CacheError

__all__ = ["CacheStore", "MemoryCache", "FileCache", "default_cache_dir"]

logger = logging.getLogger(__name__)


class CacheStore(Protocol):
    """Generic key/value store with TTL semantics."""

    def get(self, key: str) -> Optional[Any]:
        """Return the stored value, or ``None`` when absent or expired."""
        ...

    def set(self, key: str, value: Any, ttl_seconds: float) -> None: ...

    def forget(self, key: str) -> None: ...


class MemoryCache:
    """Thread-safe in-process cache.

    Expiry uses a monotonic clock; tests inject their own ``clock`` to step
    time forward deterministically.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: Dict[str, Tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        with self._lock:
            self._entries[key] = (self._clock() + float(ttl_seconds), value)

    def forget(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def default_cache_dir() -> Path:
    return Path(platformdirs.user_cache_dir("blazekit"))


class FileCache:
    """JSON-file cache rooted at ``directory`` (created with mode 0700).

    Values must be JSON-serialisable.  Writes go through a temporary file and
    ``os.replace`` so a concurrent reader never observes a partial document.
    Each key is guarded by a :class:`filelock.FileLock` next to its document,
    which serialises writers across processes sharing the directory.

    Raises:
        CacheError: If the directory cannot be created or is not writable.
    """

    def __init__(
        self,
        directory: Optional[Union[str, Path]] = None,
        *,
        clock: Callable[[], float] = time.time,
        lock_timeout: float = 10.0,
    ) -> None:
        self.directory = Path(directory) if directory is not None else default_cache_dir()
        self._clock = clock
        self.lock_timeout = lock_timeout
        self._lock = threading.Lock()
        try:
            self.directory.mkdir(mode=0o700, parents=True, exist_ok=True)
        except OSError as exc:
            raise CacheError(f"Unable to create cache directory {self.directory}: {exc}") from exc
        if not os.access(self.directory, os.W_OK):
            raise CacheError(f"Cache directory {self.directory} is not writable")

    def _path_for(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:32]
        return self.directory / f"{digest}.json"

    @contextlib.contextmanager
    def _locked(self, path: Path) -> Iterator[None]:
        lock = FileLock(str(path.with_suffix(".lock")), timeout=self.lock_timeout)
        with self._lock:
            try:
                lock.acquire()
            except Timeout as exc:
                raise CacheError(f"Timed out waiting for cache lock {lock.lock_file}") from exc
            try:
                yield
            finally:
                lock.release()

    def get(self, key: str) -> Optional[Any]:
        path = self._path_for(key)
        with self._locked(path):
            try:
                document = json.loads(path.read_text(encoding="utf-8"))
            except FileNotFoundError:
                return None
            except (OSError, ValueError) as exc:
                logger.warning(
                    "Discarding unreadable cache entry",
                    extra={"cache_key": key, "error": str(exc)},
                )
                path.unlink(missing_ok=True)
                return None
            if self._clock() >= float(document.get("expires_at", 0)):
                path.unlink(missing_ok=True)
                return None
            return document.get("value")

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        path = self._path_for(key)
        document = {"key": key, "expires_at": self._clock() + float(ttl_seconds), "value": value}
        with self._locked(path):
            fd, tmp_name = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(document, handle)
                os.chmod(tmp_name, 0o600)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise

    def forget(self, key: str) -> None:
        path = self._path_for(key)
        with self._locked(path):
            path.unlink(missing_ok=True)
