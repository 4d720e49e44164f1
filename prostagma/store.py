"""
In-memory coordinator state: the file cache and the trigger counters.

Two classes, each owning its map behind its own lock:
  CacheStore   — source URL → backing file inside the cache directory
  TriggerStore — trigger name → non-negative counter

Nothing here is persisted. The cache directory is wiped on startup and the
counters start from zero, so a restarted coordinator forgets everything.
"""

import logging
import os
import shutil
import tempfile
import threading

from prostagma.errors import InternalError, NotFoundError

logger = logging.getLogger("prostagma")


class CacheStore:
    """
    URL → local file mapping for fetched artifacts.

    A fetch writes into a fresh, uniquely named file (``new_file``) and only
    then publishes it. Publishing for a URL that is already cached replaces
    the mapping and deletes the superseded file under the same lock.
    """

    def __init__(self, cache_dir: str):
        self._cache_dir = cache_dir
        self._files: dict[str, str] = {}
        self._lock = threading.Lock()

    @property
    def cache_dir(self) -> str:
        return self._cache_dir

    def reset(self) -> None:
        """Wipe the cache directory and mapping. Raises OSError if the directory can't be created."""
        with self._lock:
            if os.path.exists(self._cache_dir):
                logger.info(f"Cleaning cache directory {self._cache_dir}")
                shutil.rmtree(self._cache_dir, ignore_errors=True)
            os.makedirs(self._cache_dir, exist_ok=True)
            self._files.clear()

    def new_file(self) -> str:
        """Create an empty, uniquely named file in the cache directory and return its path."""
        try:
            fd, path = tempfile.mkstemp(dir=self._cache_dir)
        except OSError as e:
            raise InternalError(f"could not create cache file: {e}") from e
        os.close(fd)
        return path

    def discard(self, path: str) -> None:
        """Remove an unpublished cache file (e.g. after a failed fetch)."""
        _unlink_quietly(path)

    def publish(self, url: str, path: str) -> None:
        """Map ``url`` to ``path``, deleting any file it supersedes."""
        with self._lock:
            previous = self._files.get(url)
            self._files[url] = path
            if previous and previous != path:
                _unlink_quietly(previous)
                logger.debug(f"Superseded {previous} for {url}")

    def get(self, url: str):
        """Return the backing path for ``url`` or None."""
        with self._lock:
            return self._files.get(url)

    def open(self, url: str):
        """
        Open the cached file for ``url`` for binary reading.

        The handle is opened while the lock is held, so a concurrent
        ``publish`` for the same URL can unlink the path but not the open file.
        """
        with self._lock:
            path = self._files.get(url)
            if path is None:
                raise NotFoundError(f"not cached: {url}")
            try:
                return open(path, "rb")
            except OSError as e:
                raise InternalError(f"could not open cached file {path}: {e}") from e

    def __len__(self) -> int:
        with self._lock:
            return len(self._files)


class TriggerStore:
    """Named counters. Every read and write goes through one lock, so no update is lost."""

    def __init__(self):
        self._counts: dict[str, int] = {}
        self._lock = threading.Lock()

    def get(self, name: str) -> int:
        """Return the current count, registering the name at 0 if it was never seen."""
        with self._lock:
            return self._counts.setdefault(name, 0)

    def increment(self, name: str) -> int:
        """Add one to the counter (starting from 0) and return the new value."""
        with self._lock:
            count = self._counts.get(name, 0) + 1
            self._counts[name] = count
            return count

    def snapshot(self) -> dict:
        """Return a copy of all counters."""
        with self._lock:
            return dict(self._counts)

    def __len__(self) -> int:
        with self._lock:
            return len(self._counts)


def _unlink_quietly(path: str) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not remove cache file {path}: {e}")
