"""Data structures used by multiple VFS components."""

from __future__ import annotations

import collections
from contextlib import contextmanager
from dataclasses import dataclass, field
import threading
import time
from typing import Any, Dict, Iterator


@dataclass
class CacheItem:
    """
    A file whose contents are cached on local disk because it was opened for writing.

    Storage points to the cache file that mirrors the remote path.

    Dirty is set when the cache file has contents that haven't been uploaded yet.
    Dirty items are persisted in the index of the VFS cache so that their upload can be
    resumed if the process dies before it completes.

    The remote size and modification time are remembered from when the contents were
    downloaded or uploaded. If they no longer match the remote when the file is opened
    again, the cached contents are stale and are downloaded again.

    Opens is the number of handles for this item and last access is used to decide
    when a clean, closed item is old enough to be removed from the cache.
    """

    path: str
    storage: str

    dirty: bool = False
    opens: int = 0
    last_access: float = field(default_factory=time.time)

    remote_size: int = -1
    remote_mtime_ns: int = 0


class LockIndex:
    """
    Collection of mutexes to lock critical sections by arbitrary values.

    Its use case is to lock critical sections based on unpredictable input values, like
    remote names or file paths. Locks are automatically garbage collected when no longer
    in use (no threads in the critical section and none waiting to enter).
    """

    def __init__(self) -> None:
        """Instantiate a LockIndex."""
        self._global_lock = threading.Lock()

        self._locks: Dict[Any, threading.Lock] = collections.defaultdict(threading.Lock)
        self._lock_users: Dict[Any, int] = collections.defaultdict(int)

    @contextmanager
    def lock(self, key: Any, blocking=True) -> Iterator[bool]:
        """Lock a critical section based on the specified key."""
        # Retrieve lock and increment user count
        with self._global_lock:
            self._lock_users[key] += 1
            lock = self._locks[key]

        acquired = lock.acquire(blocking)

        try:
            yield acquired
        finally:
            if acquired:
                lock.release()

            # Decrement user count and delete lock if there are none left
            with self._global_lock:
                self._lock_users[key] -= 1

                if self._lock_users[key] == 0:
                    del self._lock_users[key]
                    del self._locks[key]

    @property
    def lock_count(self):
        """Return the number of locks currently in use."""
        with self._global_lock:
            return len(self._locks)
