"""
Module with the public document operations.

Every operation takes docs, resolves them to a VFS instance and a path within it, and
performs a single action. Failures are always raised as OSError with the nearest errno
equivalent. Resolving a doc falls back to EINVAL and everything after that to EIO, so
most failures of remotes end up as EIO. Only codes that are explicitly documented (like
EEXIST when creating something) should be used to make decisions.
"""

from __future__ import annotations

from dataclasses import dataclass
import errno
import os
import posixpath
import tempfile
from typing import List, Optional, Tuple

from docvfs.backend import Entry, RemoteBackend
from docvfs.errors import (
    BackendError,
    ErrorKind,
    error_kind,
    InstanceMismatchError,
    is_not_found,
    os_errors,
    to_os_error,
)
from docvfs.logger import log
import docvfs.paths as paths
from docvfs.vfs import CacheMode, Handle, Node, Vfs, VfsCache


@dataclass
class DocEntry:
    """A document as reported to the host."""

    doc: str
    name: str
    size: int

    # Type bits and permission bits
    mode: int

    mtime_ms: int

    @staticmethod
    def from_node(doc: str, node: Node) -> DocEntry:
        return DocEntry(
            doc=doc,
            name=node.name,
            size=node.entry.size,
            mode=node.mode,
            mtime_ms=node.entry.mtime_ns // 1_000_000,
        )


def _check_range(offset: int, size: int) -> None:
    if offset < 0 or size < 0:
        raise to_os_error(
            BackendError(ErrorKind.INVALID_ARGUMENT, "negative offset or size"),
            errno.EINVAL,
        )


class DocumentHandle:
    """
    An open document.

    All reads and writes take an explicit offset. A handle is closed after close() was
    called, even if that call failed, and all further calls fail with EBADF.
    """

    def __init__(self, doc: str, handle: Handle) -> None:
        """Instantiate a handle wrapping an open VFS file."""
        self.doc = doc

        self._handle = handle
        self._closed = False

    def __enter__(self) -> DocumentHandle:
        return self

    def __exit__(self, *exc_info) -> None:
        if not self._closed:
            self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise to_os_error(BackendError(ErrorKind.CLOSED_HANDLE), errno.EBADF)

    def read_at(self, offset: int, size: int) -> bytes:
        """Read up to size bytes. Fewer bytes are returned at the end of the file."""
        self._check_open()
        _check_range(offset, size)

        with os_errors(errno.EIO):
            return self._handle.read_at(offset, size)

    def write_at(self, data: bytes, offset: int) -> int:
        """Write data at the offset and return the number of bytes written."""
        self._check_open()
        _check_range(offset, len(data))

        with os_errors(errno.EIO):
            return self._handle.write_at(data, offset)

    def flush(self) -> None:
        self._check_open()

        with os_errors(errno.EIO):
            self._handle.flush()

    def size(self) -> int:
        self._check_open()

        with os_errors(errno.EIO):
            return self._handle.size()

    def close(self) -> None:
        """Close the document. A failed upload of its contents is reported here."""
        self._check_open()
        self._closed = True

        with os_errors(errno.EIO):
            self._handle.close()


class DocumentOperations:
    """Document operations on top of the VFS instances in a cache."""

    def __init__(self, vfs_cache: VfsCache) -> None:
        """Instantiate operations that use the VFS instances of the given cache."""
        self._vfs_cache = vfs_cache

    def _vfs_for_doc(self, doc: str) -> Tuple[str, Vfs, str]:
        """Resolve a doc to its remote, the VFS instance and the path within it."""
        with os_errors(errno.EINVAL):
            remote, path = paths.split_remote(doc)

            return remote, self._vfs_cache.get(remote), paths.clean_path(path)

    #
    # Directories and metadata
    #

    def list(self, doc: str) -> List[DocEntry]:
        """List a directory. Entries are sorted by name and carry their own doc."""
        _, vfs, path = self._vfs_for_doc(doc)

        with os_errors(errno.EIO):
            nodes = vfs.readdir(path)

        return [DocEntry.from_node(paths.join(doc, n.name), n) for n in nodes]

    def stat(self, doc: str) -> DocEntry:
        _, vfs, path = self._vfs_for_doc(doc)

        with os_errors(errno.EIO):
            node = vfs.stat(path)

        return DocEntry.from_node(doc, node)

    def mkdir(self, doc: str, perms: int = 0o777) -> None:
        """Create a directory. Fails with EEXIST if the doc already exists."""
        _, vfs, path = self._vfs_for_doc(doc)

        with os_errors(errno.EIO):
            vfs.mkdir(path, perms & 0o777)

    def rename(self, source_doc: str, target_doc: str) -> None:
        """
        Rename a document within a remote.

        Both docs must belong to the same VFS instance. Renames across remotes are
        rejected with EINVAL before anything is touched.
        """
        source_remote, source_vfs, source_path = self._vfs_for_doc(source_doc)
        target_remote, target_vfs, target_path = self._vfs_for_doc(target_doc)

        if source_remote != target_remote or source_vfs is not target_vfs:
            raise to_os_error(
                InstanceMismatchError(
                    f"can't rename across remotes: {source_remote} -> {target_remote}"
                ),
                errno.EINVAL,
            )

        with os_errors(errno.EIO):
            source_vfs.rename(source_path, target_path)

    def remove(self, doc: str, recursive: bool) -> None:
        """Remove a file or directory. Directories must be empty unless recursive."""
        _, vfs, path = self._vfs_for_doc(doc)

        with os_errors(errno.EIO):
            node = vfs.stat(path)

            if recursive:
                node.remove_all()
            else:
                node.remove()

    #
    # Copying and moving
    #

    def _is_file(self, remote: str, path: str) -> bool:
        """Check if a path on a remote is an existing file."""
        try:
            self._vfs_cache.get(remote).backend.new_object(path)
        except Exception as e:
            if is_not_found(e) or error_kind(e) == ErrorKind.IS_DIR:
                return False
            raise

        return True

    def copy_or_move(self, source_doc: str, target_doc: str, copy: bool) -> None:
        """
        Copy or move a document, possibly to another remote.

        If the source is a directory, its contents are copied or moved into the target
        directory, which must not be a file. If the source is a file, an existing target
        file is replaced.

        Server-side copies and moves are used if the backend supports them. Otherwise
        the data is downloaded and uploaded again.
        """
        with os_errors(errno.EINVAL):
            source_remote, source_root, source_name = paths.resolve_for_operation(
                source_doc, False, self._is_file
            )
            target_remote, target_root, target_name = paths.resolve_for_operation(
                target_doc, bool(source_name), self._is_file
            )

            source_vfs = self._vfs_cache.get(source_remote)
            target_vfs = self._vfs_cache.get(target_remote)

        with os_errors(errno.EIO):
            try:
                if not source_name:
                    if target_name:
                        # A directory can't be merged into a file
                        raise BackendError(ErrorKind.IS_FILE)

                    self._transfer_dir(
                        source_vfs, source_root, target_vfs, target_root, copy
                    )
                else:
                    self._transfer_file(
                        source_vfs,
                        posixpath.join(source_root, source_name),
                        target_vfs,
                        posixpath.join(target_root, target_name),
                        copy,
                    )
            finally:
                source_vfs.invalidate(source_root)
                target_vfs.invalidate(target_root)

    def _transfer_dir(
        self, source: Vfs, source_path: str, target: Vfs, target_path: str, copy: bool
    ) -> None:
        backend = source.backend

        if (
            not copy
            and source is target
            and backend.features.dir_move
            and source_path
            and not _exists(backend, target_path)
        ):
            backend.dir_move(source_path, target_path)
            return

        self._merge_dir(source, source_path, target, target_path, copy)

        if not copy:
            # The source directory itself is left behind after moving its contents
            if source_path:
                backend.rmdir(source_path)
            else:
                log.debug(f"not removing root of {source.remote} after move")

    def _merge_dir(
        self, source: Vfs, source_path: str, target: Vfs, target_path: str, copy: bool
    ) -> None:
        """Copy or move the contents of a directory into another directory."""
        entries = source.backend.list(source_path)
        target.backend.mkdir(target_path)

        for entry in entries:
            child_source = posixpath.join(source_path, entry.name)
            child_target = posixpath.join(target_path, entry.name)

            if entry.is_dir:
                self._merge_dir(source, child_source, target, child_target, copy)

                if not copy:
                    source.backend.rmdir(child_source)
            else:
                self._transfer_file(source, child_source, target, child_target, copy)

    def _transfer_file(
        self, source: Vfs, source_path: str, target: Vfs, target_path: str, copy: bool
    ) -> None:
        source_backend = source.backend
        target_backend = target.backend

        source_backend.new_object(source_path)

        existing = _find_object(target_backend, target_path)
        same_backend = source_backend is target_backend

        if same_backend and source_path == target_path and existing is not None:
            log.debug(f"not transferring {source.remote}{source_path} onto itself")
            return

        # copy, move and put replace an existing target in place
        if existing is not None:
            log.debug(f"replacing {target.remote}{target_path}")

        if same_backend and copy and source_backend.features.copy:
            source_backend.copy(source_path, target_path)
        elif same_backend and not copy and source_backend.features.move:
            source_backend.move(source_path, target_path)
        else:
            with tempfile.TemporaryFile() as f:
                source_backend.download(source_path, f, source.options.chunk_size)
                f.seek(0)
                target_backend.put(target_path, f)

            if not copy:
                source_backend.remove(source_path)

    #
    # File contents
    #

    def open(self, doc: str, flags: int, mode: int = 0o666) -> DocumentHandle:
        """
        Open a document, following the semantics of POSIX open().

        If the remote doesn't cache file contents, files opened for writing are always
        truncated because they can only be written as a stream.
        """
        _, vfs, path = self._vfs_for_doc(doc)

        if vfs.options.cache_mode < CacheMode.WRITES and flags & (
            os.O_WRONLY | os.O_RDWR
        ):
            log.debug(f"forcing O_TRUNC for writable {doc} due to streaming")
            flags |= os.O_TRUNC

        with os_errors(errno.EIO):
            handle = vfs.open_file(path, flags, mode & 0o777)

        return DocumentHandle(doc, handle)


def _exists(backend: RemoteBackend, path: str) -> bool:
    try:
        backend.stat(path)
    except Exception as e:
        if is_not_found(e):
            return False
        raise

    return True


def _find_object(backend: RemoteBackend, path: str) -> Optional[Entry]:
    """Look up a file, or return None if it doesn't exist."""
    try:
        return backend.new_object(path)
    except Exception as e:
        if is_not_found(e):
            return None
        raise

