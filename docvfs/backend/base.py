"""Interface that remote storage backends implement for use by VFS instances."""

from __future__ import annotations

from dataclasses import dataclass
from typing import BinaryIO, Dict, List, Optional

from docvfs.errors import BackendError, ErrorKind


@dataclass
class Entry:
    """
    A file or directory on a remote, as reported by the backend.

    Paths are not part of entries because backends report entries relative to the
    directory that is listed. The modification time is in nanoseconds.
    """

    name: str
    is_dir: bool
    size: int
    mtime_ns: int


@dataclass
class Features:
    """Optional capabilities of a backend."""

    # Uploads of unknown size without local materialization
    streaming: bool = False

    # Server-side copying and moving of files
    copy: bool = False
    move: bool = False

    # Server-side moving of directories
    dir_move: bool = False

    # Storage usage information
    about: bool = False


class RemoteBackend:
    """
    Base class for a remote storage backend.

    Backends should inherit this class and implement the operations they support. All
    paths are relative to the root of the remote, without leading or trailing slashes,
    and the root itself is the empty string.

    The implementation should expect functions to be invoked simultaneously from an
    arbitrary number of threads.

    Functions report errors by raising BackendError, preferably with one of the
    ErrorKind sentinels, or by letting native OSError exceptions propagate. Lookups of
    entries that don't exist must raise one of the not-found sentinels so that callers
    can distinguish these from other failures.
    """

    features = Features()

    def __init__(self, name: str) -> None:
        """Instantiate a backend for the remote with the given name (with colon)."""
        self.name = name

    def stat(self, path: str) -> Entry:
        """Retrieve the entry at the given path, which may be a file or directory."""
        raise NotImplementedError()

    def list(self, path: str) -> List[Entry]:
        """List the contents of a directory."""
        raise NotImplementedError()

    def new_object(self, path: str) -> Entry:
        """
        Look up the file at the given path.

        Raises OBJECT_NOT_FOUND if it doesn't exist and IS_DIR if it is a directory.
        """
        entry = self.stat(path)

        if entry.is_dir:
            raise BackendError(ErrorKind.IS_DIR)

        return entry

    def read(self, path: str, offset: int, size: int) -> bytes:
        """Read up to size bytes of a file starting at the given offset."""
        raise NotImplementedError()

    def download(self, path: str, dst: BinaryIO, chunk_size: int) -> None:
        """Download a whole file into dst using reads of chunk_size bytes."""
        chunk_size = max(chunk_size, 1)
        offset = 0

        while True:
            data = self.read(path, offset, chunk_size)
            dst.write(data)
            offset += len(data)

            if len(data) < chunk_size:
                break

    def put(self, path: str, src: BinaryIO) -> Entry:
        """Upload the (seekable) contents of src to a file, replacing it if it exists."""
        raise NotImplementedError()

    def put_stream(self, path: str, src: BinaryIO) -> Entry:
        """Upload contents of unknown size from a stream."""
        raise BackendError(ErrorKind.NOT_IMPLEMENTED)

    def mkdir(self, path: str) -> None:
        """Create a directory, including any missing parents."""
        raise NotImplementedError()

    def rmdir(self, path: str) -> None:
        """Remove an empty directory."""
        raise NotImplementedError()

    def remove(self, path: str) -> None:
        """Remove a file."""
        raise NotImplementedError()

    def purge(self, path: str) -> None:
        """Remove a directory and all of its contents."""
        raise NotImplementedError()

    def copy(self, src: str, dst: str) -> Entry:
        """Copy a file server-side, replacing the destination if it exists."""
        raise BackendError(ErrorKind.NOT_IMPLEMENTED)

    def move(self, src: str, dst: str) -> Entry:
        """Move a file server-side, replacing the destination if it exists."""
        raise BackendError(ErrorKind.NOT_IMPLEMENTED)

    def dir_move(self, src: str, dst: str) -> None:
        """Move a directory server-side. The destination must not exist."""
        raise BackendError(ErrorKind.NOT_IMPLEMENTED)

    def about(self) -> Dict[str, Optional[int]]:
        """Retrieve storage usage information (total, used, free) in bytes."""
        raise BackendError(ErrorKind.NOT_IMPLEMENTED)

    def shutdown(self) -> None:
        """Release resources held by the backend."""
