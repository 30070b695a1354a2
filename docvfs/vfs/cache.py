"""Module with the cache that owns the VFS instance of every remote."""

import dataclasses
import math
import os.path
import shutil
import threading
from typing import Callable, Dict, List, Optional

from docvfs.backend import BackendFactory, new_backend, RemoteBackend
from docvfs.config import ConfigStore
from docvfs.constants import WAIT_FOR_WRITERS_TIMEOUT
from docvfs.errors import RemoteNotFoundError
from docvfs.logger import log, notice
from docvfs.paths import section_name
from docvfs.vfs.common import LockIndex
from docvfs.vfs.options import CacheMode, RemoteOptionsResolver, VfsOptions
from docvfs.vfs.vfs import Vfs

VfsFactory = Callable[[str, RemoteBackend, VfsOptions, str], Vfs]


class VfsCache:
    """
    Cache with exactly one VFS instance per remote.

    Instances are created on first access and live until they are evicted. Creating an
    instance may involve network setup by the backend, so it happens outside of the lock
    that guards the instance map. Instead, construction is serialized per remote to
    guarantee that the same remote is never constructed twice, while cold starts of
    different remotes proceed concurrently.
    """

    def __init__(
        self,
        store: ConfigStore,
        cache_path: str,
        backend_factory: BackendFactory = new_backend,
        resolver: Optional[RemoteOptionsResolver] = None,
        vfs_factory: VfsFactory = Vfs,
    ) -> None:
        """
        Instantiate an empty cache for the remotes configured in the store.

        On-disk cache data of each instance is stored in a directory under cache_path.
        """
        self._store = store
        self._cache_path = os.path.expanduser(cache_path)

        self._backend_factory = backend_factory
        self._resolver = resolver or RemoteOptionsResolver(store)
        self._vfs_factory = vfs_factory

        self._lock = threading.Lock()
        self._instances: Dict[str, Vfs] = {}
        self._construction_locks = LockIndex()

    @property
    def cache_path(self) -> str:
        return self._cache_path

    def _lookup(self, remote: str) -> Optional[Vfs]:
        with self._lock:
            return self._instances.get(remote)

    def get(self, remote: str) -> Vfs:
        """Return the VFS instance of a remote (with colon), creating it if needed."""
        vfs = self._lookup(remote)
        if vfs is not None:
            return vfs

        with self._construction_locks.lock(remote):
            # Another thread may have finished constructing it while we waited
            vfs = self._lookup(remote)
            if vfs is not None:
                return vfs

            vfs = self._create(remote)

            with self._lock:
                self._instances[remote] = vfs

            return vfs

    def init_remote(self, remote: str) -> None:
        """
        Construct the VFS instance of a remote ahead of its first use.

        This resumes uploads of files that a previous process left in the cache.
        """
        self.get(remote)

    def _create(self, remote: str) -> Vfs:
        section = section_name(remote)

        if not self._store.has_section(section):
            raise RemoteNotFoundError(f"remote not found in config: {remote}")

        options = self._resolver.resolve(remote)
        backend = self._backend_factory(remote, self._store.get_section(section))

        try:
            if options.cache_mode < CacheMode.WRITES and not backend.features.streaming:
                notice(f"{remote} does not support streaming, forcing cache mode writes")
                options = dataclasses.replace(options, cache_mode=CacheMode.WRITES)

            vfs = self._vfs_factory(remote, backend, options, self._cache_path)
        except Exception:
            backend.shutdown()
            raise

        log.info(f"created vfs for {remote} with {options}")

        return vfs

    def remotes(self) -> List[str]:
        """Return the remotes that currently have a VFS instance, sorted by name."""
        with self._lock:
            return sorted(self._instances)

    def evict(
        self,
        remote: str,
        delete_cache_dir: bool,
        timeout: float = WAIT_FOR_WRITERS_TIMEOUT,
    ) -> None:
        """
        Remove the VFS instance of a remote from the cache and shut it down.

        Files that are still being written get up to timeout seconds to be uploaded.
        Failures to shut down are logged, but the instance is removed from the cache
        regardless. The remote can't be constructed again until the old instance is
        completely shut down, so a new instance never shares its cache directory.
        """
        with self._construction_locks.lock(remote):
            with self._lock:
                vfs = self._instances.pop(remote, None)

            if vfs is None:
                if delete_cache_dir:
                    self._delete_cache_dir(remote)
                return

            log.info(f"evicting vfs for {remote}")

            try:
                vfs.wait_for_writers(timeout)
            except Exception as e:
                log.error(f"failed to wait for writers of {remote}: {e}")

            try:
                vfs.shutdown()
            except Exception as e:
                log.error(f"failed to shut down vfs for {remote}: {e}")

            if delete_cache_dir:
                try:
                    vfs.clean_up()
                except Exception as e:
                    log.error(f"failed to delete cache of {remote}: {e}")

    def evict_all(
        self, delete_cache_dir: bool, timeout: float = WAIT_FOR_WRITERS_TIMEOUT
    ) -> None:
        """Evict every VFS instance."""
        for remote in self.remotes():
            self.evict(remote, delete_cache_dir, timeout)

    def _delete_cache_dir(self, remote: str) -> None:
        try:
            path = os.path.join(self._cache_path, section_name(remote))
            shutil.rmtree(path)
        except FileNotFoundError:
            pass
        except Exception as e:
            log.error(f"failed to delete cache of {remote}: {e}")

    def max_cleanup_wait_seconds(self) -> int:
        """
        Return the number of seconds before every caching instance has been cleaned up.

        That's the maximum of cache_max_age + cache_poll_interval over all instances
        that cache file contents, or 0 if there are none.
        """
        with self._lock:
            instances = list(self._instances.values())

        waits = [
            vfs.options.cache_max_age + vfs.options.cache_poll_interval
            for vfs in instances
            if vfs.options.cache_mode != CacheMode.OFF
        ]

        return math.ceil(max(waits, default=0))
