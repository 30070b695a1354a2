"""Module that implements a VFS instance: cached POSIX-like file access to a remote."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
import io
import os
import os.path
import posixpath
import shutil
import stat
import tempfile
import threading
import time
from typing import BinaryIO, Dict, List, Optional, Tuple

import fasteners

from docvfs.backend import Entry, RemoteBackend
from docvfs.constants import INIT_WRITE_BACK
from docvfs.errors import BackendError, ErrorKind, error_kind, is_not_found
from docvfs.logger import log
from docvfs.paths import section_name
import docvfs.rpc as rpc
from docvfs.vfs.common import CacheItem, LockIndex
from docvfs.vfs.handles import CachedHandle, Handle, ReadHandle, StreamHandle
from docvfs.vfs.options import CacheMode, VfsOptions


@dataclass
class Node:
    """A file or directory within a VFS instance."""

    vfs: Vfs
    path: str
    entry: Entry

    @property
    def name(self) -> str:
        if not self.path:
            return self.vfs.options.volume_name

        return self.entry.name

    def is_dir(self) -> bool:
        return self.entry.is_dir

    @property
    def mode(self) -> int:
        """Return the POSIX mode word with type and permission bits."""
        return self.vfs.mode(self.entry)

    def remove(self) -> None:
        """Remove the file or empty directory."""
        self.vfs._remove(self.path, self.entry, recursive=False)

    def remove_all(self) -> None:
        """Remove the file or the directory with all of its contents."""
        self.vfs._remove(self.path, self.entry, recursive=True)


class Vfs:
    """
    Stateful handle providing POSIX-like file operations on top of a remote backend.

    A VFS instance is bound to exactly one remote and its options never change after
    construction. It adds two things on top of the backend:

    * Directory listings are cached for a short time (dir_cache_time). This avoids
    listing a directory again for every stat() of its children, while still picking up
    changes made outside of docvfs quickly.
    * If the cache mode is WRITES, files opened for writing are cached on local disk.
    This is what allows opening files for reading and writing at the same time and
    writing at random offsets. With caching off, writes are streamed to the remote,
    which requires the file to be truncated and written sequentially.

    Cached files are uploaded when the last handle is closed, either synchronously or
    after the write-back delay. Files that haven't been uploaded yet are recorded in an
    index on disk and their uploads are resumed when a VFS instance for the same remote
    is created in a later process.

    A background timer regularly removes cached files that are closed, uploaded and
    older than cache_max_age.
    """

    def __init__(
        self, remote: str, backend: RemoteBackend, options: VfsOptions, cache_root: str
    ) -> None:
        """Instantiate a VFS instance with its cache in a directory under cache_root."""
        self.remote = remote
        self.backend = backend

        # Resumed uploads must not block construction.
        self.options = dataclasses.replace(options, write_back=INIT_WRITE_BACK)

        self._cache_path = os.path.join(cache_root, section_name(remote))

        self._lock = threading.Lock()
        self._writers_changed = threading.Condition(self._lock)
        self._index_lock = threading.Lock()

        self._items: Dict[str, CacheItem] = {}
        self._item_locks = LockIndex()

        self._dir_cache: Dict[str, Tuple[float, List[Entry]]] = {}

        self._active_writers = 0
        self._running_uploads = 0
        self._scheduled_uploads: Dict[str, threading.Timer] = {}

        self._cleaner: Optional[threading.Timer] = None
        self._shut_down = False

        self._encoding = rpc.Encoding(CacheItem)

        if self.options.cache_mode >= CacheMode.WRITES:
            os.makedirs(self._data_path, exist_ok=True)

            self._resume_uploads()
            self._schedule_cleanup()

        # Files are uploaded synchronously when they are closed from now on.
        self.options = dataclasses.replace(self.options, write_back=0.0)

    def __repr__(self) -> str:
        return f"Vfs({self.remote!r})"

    @property
    def cache_path(self) -> str:
        return self._cache_path

    @property
    def _data_path(self) -> str:
        return os.path.join(self._cache_path, "data")

    @property
    def _index_path(self) -> str:
        return os.path.join(self._cache_path, "index.json")

    @property
    def _index_lock_path(self) -> str:
        return os.path.join(self._cache_path, "index.lock")

    def _storage_path(self, path: str) -> str:
        return os.path.join(self._data_path, path)

    def _check_open(self) -> None:
        if self._shut_down:
            raise BackendError(ErrorKind.CLOSED_HANDLE, "vfs has been shut down")

    def mode(self, entry: Entry) -> int:
        """Return the POSIX mode word (type and permission bits) for an entry."""
        if entry.is_dir:
            return stat.S_IFDIR | self.options.dir_perms
        else:
            return stat.S_IFREG | self.options.file_perms

    #
    # Directory cache
    #

    def _list(self, path: str) -> List[Entry]:
        """List a directory on the remote, using the cached listing if still fresh."""
        now = time.monotonic()

        with self._lock:
            cached = self._dir_cache.get(path)

            if cached and now - cached[0] < self.options.dir_cache_time:
                return list(cached[1])

        entries = self.backend.list(path)

        with self._lock:
            self._dir_cache[path] = (now, entries)

        return list(entries)

    def invalidate(self, path: str) -> None:
        """Forget cached listings of a path, everything below it, and its parent."""
        parent = posixpath.dirname(path)

        with self._lock:
            for key in list(self._dir_cache):
                if path == "" or key in (path, parent) or key.startswith(path + "/"):
                    del self._dir_cache[key]

    def _local_entry(self, path: str) -> Optional[Entry]:
        """Return an entry for a cached file that is open or not uploaded yet."""
        with self._lock:
            item = self._items.get(path)

            if item is None or not (item.dirty or item.opens):
                return None

        try:
            st = os.stat(item.storage)
        except FileNotFoundError:
            return None

        return Entry(
            name=posixpath.basename(path),
            is_dir=False,
            size=st.st_size,
            mtime_ns=st.st_mtime_ns,
        )

    def _lookup(self, path: str) -> Optional[Entry]:
        """Find the entry at a path, or None if it doesn't exist."""
        local = self._local_entry(path)
        if local is not None:
            return local

        if not path:
            return self.backend.stat("")

        parent, name = posixpath.split(path)

        try:
            entries = self._list(parent)
        except Exception as e:
            if is_not_found(e) or error_kind(e) == ErrorKind.IS_FILE:
                return None
            raise

        for entry in entries:
            if entry.name == name:
                return entry

        return None

    def _check_parent(self, path: str) -> None:
        parent = posixpath.dirname(path)
        entry = self._lookup(parent)

        if entry is None:
            raise BackendError(ErrorKind.DIR_NOT_FOUND)
        elif not entry.is_dir:
            raise BackendError(ErrorKind.IS_FILE)

    #
    # Metadata access
    #

    def stat(self, path: str) -> Node:
        """Look up a file or directory."""
        self._check_open()

        entry = self._lookup(path)

        if entry is None:
            raise BackendError(ErrorKind.NOT_FOUND)

        return Node(self, path, entry)

    def readdir(self, path: str) -> List[Node]:
        """
        List the contents of a directory, sorted by name.

        Files that are cached locally but not uploaded yet are included.
        """
        node = self.stat(path)

        if not node.is_dir():
            raise BackendError(ErrorKind.IS_FILE)

        entries = {entry.name: entry for entry in self._list(path)}

        with self._lock:
            local_paths = [p for p in self._items if posixpath.dirname(p) == path]

        for local_path in local_paths:
            local = self._local_entry(local_path)
            if local is not None:
                entries[local.name] = local

        return [
            Node(self, posixpath.join(path, name), entries[name])
            for name in sorted(entries)
        ]

    #
    # File system structure
    #

    def mkdir(self, path: str, perms: int = 0o777) -> Node:
        """Create a directory. Permissions are not supported by remotes and ignored."""
        self._check_open()

        if self._lookup(path) is not None:
            raise BackendError(ErrorKind.ALREADY_EXISTS)

        self._check_parent(path)
        self.backend.mkdir(path)
        self.invalidate(path)

        return self.stat(path)

    def rename(self, old: str, new: str) -> None:
        """
        Rename a file or directory.

        An existing target is replaced if it has the same type and, for directories,
        if it is empty. Files that are open for writing can't be renamed.
        """
        self._check_open()

        if not old or not new:
            raise BackendError(ErrorKind.INVALID_ARGUMENT, "can't rename the root")

        src = self._lookup(old)
        if src is None:
            raise BackendError(ErrorKind.NOT_FOUND)

        self._check_parent(new)

        dst = self._lookup(new)
        if dst is not None:
            if src.is_dir and not dst.is_dir:
                raise BackendError(ErrorKind.IS_FILE)
            elif not src.is_dir and dst.is_dir:
                raise BackendError(ErrorKind.IS_DIR)
            elif dst.is_dir:
                self.backend.rmdir(new)

        if src.is_dir:
            self._rename_dir(old, new)
        else:
            self._rename_file(old, new)

        self.invalidate(old)
        self.invalidate(new)

    def _rename_dir(self, old: str, new: str) -> None:
        with self._lock:
            busy = any(
                (p == old or p.startswith(old + "/")) and (item.dirty or item.opens)
                for p, item in self._items.items()
            )

        if busy:
            raise BackendError(
                ErrorKind.NO_PERMISSION, "directory contains files being written"
            )

        if not self.backend.features.dir_move:
            raise BackendError(ErrorKind.NOT_IMPLEMENTED)

        self.backend.dir_move(old, new)

    def _rename_file(self, old: str, new: str) -> None:
        with self._item_locks.lock(old):
            with self._lock:
                item = self._items.get(old)

            if item is not None:
                if item.opens:
                    raise BackendError(
                        ErrorKind.NO_PERMISSION, "file is open"
                    )

                # Make sure that the remote has the latest contents before moving them
                self._cancel_upload(old)
                if item.dirty:
                    self._upload(item)

                self._drop_item(item)

            with self._lock:
                replaced = self._items.get(new)

            if replaced is not None:
                if replaced.opens:
                    raise BackendError(
                        ErrorKind.NO_PERMISSION, "target file is open"
                    )

                self._cancel_upload(new)
                self._drop_item(replaced)

            if self.backend.features.move:
                self.backend.move(old, new)
            else:
                self._copy_file(old, new)
                self.backend.remove(old)

    def _copy_file(self, src: str, dst: str) -> None:
        """Copy a file by downloading and uploading it again."""
        with tempfile.TemporaryFile() as f:
            self.backend.download(src, f, self.options.chunk_size)
            f.seek(0)
            self.backend.put(dst, f)

    def _remove(self, path: str, entry: Entry, recursive: bool) -> None:
        self._check_open()

        if entry.is_dir:
            if recursive:
                with self._lock:
                    items = [
                        item
                        for p, item in self._items.items()
                        if path == "" or p.startswith(path + "/")
                    ]

                for item in items:
                    with self._item_locks.lock(item.path):
                        self._cancel_upload(item.path)
                        self._drop_item(item)

                self.backend.purge(path)
            else:
                self.backend.rmdir(path)
        else:
            with self._item_locks.lock(path):
                with self._lock:
                    item = self._items.get(path)

                if item is not None:
                    self._cancel_upload(path)
                    self._drop_item(item)

                try:
                    self.backend.remove(path)
                except Exception as e:
                    # The file may only have existed in the cache
                    if item is None or not is_not_found(e):
                        raise

        self.invalidate(path)

    #
    # File contents
    #

    def open_file(self, path: str, flags: int, perms: int = 0o666) -> Handle:
        """
        Open a file, following the semantics of POSIX open().

        Permissions are not supported by remotes and ignored.
        """
        self._check_open()

        access = flags & os.O_ACCMODE
        readable = access in (os.O_RDONLY, os.O_RDWR)
        writable = access in (os.O_WRONLY, os.O_RDWR)

        if not path:
            raise BackendError(ErrorKind.IS_DIR)

        entry = self._lookup(path)

        if entry is not None:
            if entry.is_dir:
                raise BackendError(ErrorKind.IS_DIR)
            elif flags & os.O_CREAT and flags & os.O_EXCL:
                raise BackendError(ErrorKind.ALREADY_EXISTS)
        elif not flags & os.O_CREAT:
            raise BackendError(ErrorKind.NOT_FOUND)
        else:
            self._check_parent(path)

        if self.options.cache_mode >= CacheMode.WRITES:
            with self._lock:
                cached = path in self._items

            if writable or cached or entry is None:
                return self._open_cached(path, entry, flags, readable, writable)

        if not writable:
            if entry is None:
                self.backend.put(path, io.BytesIO())
                self.invalidate(path)

            return ReadHandle(self, path)

        if entry is not None and not flags & os.O_TRUNC:
            raise BackendError(
                ErrorKind.NO_PERMISSION,
                "can't open an existing file for writing without O_TRUNC if caching is off",
            )

        with self._lock:
            self._active_writers += 1

        return StreamHandle(self, path, readable)

    def _open_cached(
        self,
        path: str,
        entry: Optional[Entry],
        flags: int,
        readable: bool,
        writable: bool,
    ) -> CachedHandle:
        with self._item_locks.lock(path):
            with self._lock:
                item = self._items.get(path)

            if item is not None and not item.dirty and not item.opens and entry:
                # Stale if the file was changed on the remote since it was cached
                if (entry.size, entry.mtime_ns) != (
                    item.remote_size,
                    item.remote_mtime_ns,
                ):
                    self._drop_item(item)
                    item = None

            if item is None:
                item = CacheItem(path=path, storage=self._storage_path(path))
                os.makedirs(os.path.dirname(item.storage), exist_ok=True)

                if entry is not None and not flags & os.O_TRUNC:
                    with open(item.storage, "wb") as f:
                        self.backend.download(path, f, self.options.chunk_size)

                    item.remote_size = entry.size
                    item.remote_mtime_ns = entry.mtime_ns
                else:
                    open(item.storage, "wb").close()

                with self._lock:
                    self._items[path] = item
            elif flags & os.O_TRUNC and writable:
                os.truncate(item.storage, 0)

            fd = os.open(item.storage, os.O_RDWR if writable else os.O_RDONLY)

            with self._lock:
                item.opens += 1
                item.last_access = time.time()

                if writable:
                    self._active_writers += 1

            if writable:
                self._cancel_upload(path)

            # New and truncated files have to be uploaded even if never written
            if entry is None or (writable and flags & os.O_TRUNC):
                self._mark_dirty(item)

        return CachedHandle(self, item, fd, readable, writable)

    def _mark_dirty(self, item: CacheItem) -> None:
        with self._lock:
            was_dirty = item.dirty
            item.dirty = True

        if not was_dirty:
            self._save_index()

    def _release(self, item: CacheItem, fd: int, writable: bool) -> None:
        """Close a cache file descriptor and upload the item if it was the last one."""
        try:
            os.close(fd)
        finally:
            try:
                with self._item_locks.lock(item.path):
                    with self._lock:
                        item.opens -= 1
                        item.last_access = time.time()
                        last = item.opens == 0

                    if last and item.dirty:
                        if self.options.write_back > 0:
                            self._schedule_upload(item.path, self.options.write_back)
                        else:
                            self._upload(item)
            finally:
                if writable:
                    self._writer_done()

    def _upload_stream(self, path: str, src: BinaryIO) -> None:
        """Upload the contents of a streaming handle."""
        self.backend.put_stream(path, src)
        self.invalidate(path)

    def _writer_done(self) -> None:
        with self._writers_changed:
            self._active_writers -= 1
            self._writers_changed.notify_all()

    #
    # Uploads
    #

    def _upload(self, item: CacheItem) -> None:
        """Upload a cached file. The caller must hold the item's lock."""
        log.debug(f"uploading {self.remote}{item.path}")

        with open(item.storage, "rb") as f:
            entry = self.backend.put(item.path, f)

        with self._lock:
            item.dirty = False
            item.remote_size = entry.size
            item.remote_mtime_ns = entry.mtime_ns
            item.last_access = time.time()

        self._save_index()
        self.invalidate(item.path)

    def _schedule_upload(self, path: str, delay: float) -> None:
        timer = threading.Timer(delay, self._run_scheduled_upload, args=(path,))
        timer.daemon = True

        with self._writers_changed:
            previous = self._scheduled_uploads.pop(path, None)
            if previous:
                previous.cancel()

            self._scheduled_uploads[path] = timer

        timer.start()

    def _cancel_upload(self, path: str) -> None:
        with self._writers_changed:
            timer = self._scheduled_uploads.pop(path, None)

            if timer:
                timer.cancel()
                self._writers_changed.notify_all()

    def _run_scheduled_upload(self, path: str) -> None:
        with self._writers_changed:
            if self._scheduled_uploads.get(path) is not threading.current_thread():
                # Cancelled or rescheduled in the meantime
                return

            del self._scheduled_uploads[path]
            self._running_uploads += 1

        try:
            with self._item_locks.lock(path):
                with self._lock:
                    item = self._items.get(path)

                if item is not None and item.dirty and not item.opens:
                    self._upload(item)
        except Exception as e:
            log.error(f"failed to upload {self.remote}{path}: {e}")
        finally:
            with self._writers_changed:
                self._running_uploads -= 1
                self._writers_changed.notify_all()

    def _pending_writers(self) -> int:
        return (
            self._active_writers + self._running_uploads + len(self._scheduled_uploads)
        )

    def wait_for_writers(self, timeout: float) -> bool:
        """
        Wait for open writable files to be closed and all pending uploads to complete.

        Returns False if there were still writers left after the timeout.
        """
        with self._writers_changed:
            done = self._writers_changed.wait_for(
                lambda: self._pending_writers() == 0, timeout
            )

            if not done:
                log.warning(
                    f"{self.remote}: {self._pending_writers()} writers left after"
                    f" waiting {timeout} seconds"
                )

            return done

    #
    # Persistent index of dirty items
    #

    def _save_index(self) -> None:
        with self._lock:
            dirty = {
                path: dataclasses.replace(item, opens=0)
                for path, item in self._items.items()
                if item.dirty
            }

        with self._index_lock, fasteners.InterProcessLock(self._index_lock_path):
            tmp = self._index_path + ".tmp"

            with open(tmp, "w") as f:
                self._encoding.dump_json(dirty, f)

            os.replace(tmp, self._index_path)

    def _load_index(self) -> Dict[str, CacheItem]:
        with self._index_lock, fasteners.InterProcessLock(self._index_lock_path):
            with open(self._index_path, "r") as f:
                return self._encoding.load_json(f)

    def _resume_uploads(self) -> None:
        """Queue uploads of files that were left dirty by a previous VFS instance."""
        try:
            index = self._load_index()
        except FileNotFoundError:
            return
        except Exception as e:
            log.error(f"{self.remote}: not resuming uploads from broken index: {e}")
            return

        for path, item in index.items():
            if not os.path.exists(item.storage):
                log.warning(f"{self.remote}: cached file for {path} disappeared")
                continue

            log.info(f"{self.remote}: resuming upload of {path}")

            self._items[path] = item
            self._schedule_upload(path, self.options.write_back)

    #
    # Cache cleanup
    #

    def _schedule_cleanup(self) -> None:
        with self._lock:
            if self._shut_down:
                return

            self._cleaner = threading.Timer(
                self.options.cache_poll_interval, self._run_cleanup
            )
            self._cleaner.daemon = True
            self._cleaner.start()

    def _run_cleanup(self) -> None:
        try:
            self.clean_cache()
        except Exception as e:
            log.error(f"{self.remote}: cache cleanup failed: {e}")
        finally:
            self._schedule_cleanup()

    def clean_cache(self) -> None:
        """Remove cached files that are closed, uploaded and older than the max age."""
        cutoff = time.time() - self.options.cache_max_age

        with self._lock:
            items = list(self._items.values())

        for item in items:
            with self._item_locks.lock(item.path, False) as acquired:
                if not acquired:
                    continue

                with self._lock:
                    expired = (
                        not item.dirty
                        and not item.opens
                        and item.path not in self._scheduled_uploads
                        and item.last_access < cutoff
                    )

                if expired:
                    log.debug(f"removing {self.remote}{item.path} from cache")
                    self._drop_item(item)

        self._remove_orphans(cutoff)

    def _remove_orphans(self, cutoff: float) -> None:
        """Remove files that don't belong to any item, and empty directories."""
        with self._lock:
            known = {item.storage for item in self._items.values()}

        for root, dirs, files in os.walk(self._data_path, topdown=False):
            for name in files:
                storage = os.path.join(root, name)

                try:
                    if storage not in known and os.stat(storage).st_mtime < cutoff:
                        os.remove(storage)
                except FileNotFoundError:
                    pass

            if root != self._data_path:
                try:
                    os.rmdir(root)
                except OSError:
                    # Not empty
                    pass

    def _drop_item(self, item: CacheItem) -> None:
        """Forget an item and delete its cache file."""
        with self._lock:
            if self._items.get(item.path) is item:
                del self._items[item.path]

        try:
            os.remove(item.storage)
        except FileNotFoundError:
            pass

        if item.dirty:
            self._save_index()

    #
    # Lifecycle
    #

    def shutdown(self) -> None:
        """
        Stop background work and reject new operations.

        Pending uploads are cancelled, but remain recorded in the index so that they
        are resumed by the next VFS instance for this remote.
        """
        with self._writers_changed:
            self._shut_down = True

            if self._cleaner:
                self._cleaner.cancel()

            for timer in self._scheduled_uploads.values():
                timer.cancel()

            self._scheduled_uploads.clear()
            self._writers_changed.notify_all()

        self.backend.shutdown()

    def clean_up(self) -> None:
        """Delete all on-disk cache data of this instance."""
        with self._lock:
            self._items.clear()

        try:
            shutil.rmtree(self._cache_path)
        except FileNotFoundError:
            pass
