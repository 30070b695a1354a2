"""
Module with the file handles returned by VFS instances.

All handles use explicit offsets for reads and writes, so there is no implicit file
position. A short read at the end of a file or a short write on a full disk is a
valid result rather than an error.

Once closed, every further operation on a handle fails with CLOSED_HANDLE, even if
the close itself reported an error.
"""

from __future__ import annotations

import os
import tempfile
import threading
from typing import TYPE_CHECKING

from docvfs.errors import BackendError, ErrorKind
from docvfs.vfs.common import CacheItem

if TYPE_CHECKING:
    from docvfs.vfs.vfs import Vfs


class Handle:
    """Base class of an open file."""

    def __init__(self, vfs: Vfs, path: str, readable: bool, writable: bool) -> None:
        """Instantiate a handle for the file at the path within the VFS instance."""
        self.path = path
        self.readable = readable
        self.writable = writable

        self._vfs = vfs
        self._lock = threading.Lock()
        self._closed = False

    def _check_open(self) -> None:
        if self._closed:
            raise BackendError(ErrorKind.CLOSED_HANDLE)

    def _check_readable(self) -> None:
        self._check_open()

        if not self.readable:
            raise BackendError(ErrorKind.BAD_HANDLE, "file not open for reading")

    def _check_writable(self) -> None:
        self._check_open()

        if not self.writable:
            raise BackendError(ErrorKind.BAD_HANDLE, "file not open for writing")

    @property
    def closed(self) -> bool:
        return self._closed

    def read_at(self, offset: int, size: int) -> bytes:
        """Read up to size bytes at the offset. Returns fewer bytes at end of file."""
        raise NotImplementedError()

    def write_at(self, data: bytes, offset: int) -> int:
        """Write data at the offset and return the number of bytes written."""
        self._check_writable()

        raise NotImplementedError()

    def flush(self) -> None:
        """Request that written data is made durable. This may be a no-op."""

    def size(self) -> int:
        """Return the current size of the file."""
        raise NotImplementedError()

    def close(self) -> None:
        """Close the handle."""
        raise NotImplementedError()


class ReadHandle(Handle):
    """
    Read-only handle that reads directly from the remote.

    Data is requested in chunks that start at the chunk size option and double for
    every sequential read until they reach the chunk size limit. A read that isn't
    sequential resets the chunk size.
    """

    def __init__(self, vfs: Vfs, path: str) -> None:
        """Instantiate a read handle for a file that exists on the remote."""
        super().__init__(vfs, path, readable=True, writable=False)

        self._chunk_size = vfs.options.chunk_size
        self._buffer = b""
        self._buffer_offset = 0

    def _next_chunk_size(self, offset: int) -> int:
        options = self._vfs.options

        if not self._buffer or offset != self._buffer_offset + len(self._buffer):
            return options.chunk_size

        grown = self._chunk_size * 2

        if options.chunk_size_limit >= 0:
            grown = min(grown, options.chunk_size_limit)

        return max(grown, options.chunk_size)

    def read_at(self, offset: int, size: int) -> bytes:
        with self._lock:
            self._check_readable()

            start = offset - self._buffer_offset
            if start >= 0 and start + size <= len(self._buffer):
                return self._buffer[start : start + size]

            self._chunk_size = self._next_chunk_size(offset)
            data = self._vfs.backend.read(self.path, offset, max(size, self._chunk_size))

            self._buffer = data
            self._buffer_offset = offset

            return data[:size]

    def size(self) -> int:
        self._check_open()

        return self._vfs.backend.new_object(self.path).size

    def close(self) -> None:
        with self._lock:
            self._check_open()

            self._closed = True
            self._buffer = b""


class StreamHandle(Handle):
    """
    Handle for writing a file without caching it, used if caching is off.

    The file is always truncated when opened and must be written sequentially. Written
    data is spooled (in memory, then in a temporary file) so that it can be read back
    before the handle is closed, and it's uploaded to the remote as a stream on close.
    """

    def __init__(self, vfs: Vfs, path: str, readable: bool) -> None:
        """Instantiate a streaming write handle for an empty file."""
        super().__init__(vfs, path, readable=readable, writable=True)

        self._spool = tempfile.SpooledTemporaryFile(max_size=vfs.options.chunk_size)
        self._size = 0

    def read_at(self, offset: int, size: int) -> bytes:
        with self._lock:
            self._check_readable()

            self._spool.seek(offset)
            return self._spool.read(size)

    def write_at(self, data: bytes, offset: int) -> int:
        with self._lock:
            self._check_writable()

            if offset != self._size:
                raise BackendError(
                    ErrorKind.BAD_SEEK,
                    f"can't write at {offset} in streaming mode (size is {self._size})",
                )

            self._spool.seek(offset)
            written = self._spool.write(data)
            self._size += written

            return written

    def size(self) -> int:
        self._check_open()

        return self._size

    def close(self) -> None:
        with self._lock:
            self._check_open()

            self._closed = True

            try:
                self._spool.seek(0)
                self._vfs._upload_stream(self.path, self._spool)
            finally:
                self._spool.close()
                self._vfs._writer_done()


class CachedHandle(Handle):
    """Handle for a file whose contents are cached on local disk."""

    def __init__(
        self, vfs: Vfs, item: CacheItem, fd: int, readable: bool, writable: bool
    ) -> None:
        """Instantiate a handle for an open cache file descriptor."""
        super().__init__(vfs, item.path, readable=readable, writable=writable)

        self._item = item
        self._fd = fd

    def read_at(self, offset: int, size: int) -> bytes:
        self._check_readable()

        return os.pread(self._fd, size, offset)

    def write_at(self, data: bytes, offset: int) -> int:
        self._check_writable()

        written = os.pwrite(self._fd, data, offset)
        self._vfs._mark_dirty(self._item)

        return written

    def flush(self) -> None:
        self._check_open()

        if self.writable:
            os.fsync(self._fd)

    def size(self) -> int:
        self._check_open()

        return os.fstat(self._fd).st_size

    def close(self) -> None:
        with self._lock:
            self._check_open()

            self._closed = True
            self._vfs._release(self._item, self._fd, self.writable)
