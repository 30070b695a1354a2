"""Module with a backend that keeps all files in memory."""

from __future__ import annotations

from dataclasses import dataclass
import threading
import time
from typing import BinaryIO, Dict, List, Set

from docvfs.backend.base import Entry, Features, RemoteBackend
from docvfs.errors import BackendError, ErrorKind


@dataclass
class _File:
    data: bytes
    mtime_ns: int


def _parent(path: str) -> str:
    return path.rpartition("/")[0]


def _name(path: str) -> str:
    return path.rpartition("/")[2]


def _is_under(path: str, directory: str) -> bool:
    return directory == "" or path.startswith(directory + "/")


class MemoryBackend(RemoteBackend):
    """
    Backend that stores everything in memory and loses it on shutdown.

    Setting the "streaming" config key to false makes the backend reject streamed
    uploads, like remotes that need to know the size of a file up front.
    """

    def __init__(self, name: str, streaming: bool = True) -> None:
        """Instantiate an empty in-memory remote."""
        super().__init__(name)

        self.features = Features(
            streaming=streaming, copy=True, move=True, dir_move=True, about=False
        )

        self._lock = threading.Lock()
        self._files: Dict[str, _File] = {}
        self._dirs: Set[str] = {""}

    @staticmethod
    def from_config(name: str, config: Dict[str, str]) -> MemoryBackend:
        streaming = config.get("streaming", "true").lower() not in ("false", "0", "no")
        return MemoryBackend(name, streaming)

    def _file_entry(self, path: str) -> Entry:
        f = self._files[path]
        return Entry(name=_name(path), is_dir=False, size=len(f.data), mtime_ns=f.mtime_ns)

    def _dir_entry(self, path: str) -> Entry:
        return Entry(name=_name(path), is_dir=True, size=0, mtime_ns=0)

    def _store(self, path: str, data: bytes) -> Entry:
        if path in self._dirs:
            raise BackendError(ErrorKind.IS_DIR)

        self._make_dirs(_parent(path))
        self._files[path] = _File(data=data, mtime_ns=time.time_ns())

        return self._file_entry(path)

    def _make_dirs(self, path: str) -> None:
        while path not in self._dirs:
            if path in self._files:
                raise BackendError(ErrorKind.IS_FILE)

            self._dirs.add(path)
            path = _parent(path)

    #
    # Metadata access
    #

    def stat(self, path: str) -> Entry:
        with self._lock:
            if path in self._files:
                return self._file_entry(path)
            elif path in self._dirs:
                return self._dir_entry(path)
            else:
                raise BackendError(ErrorKind.NOT_FOUND)

    def list(self, path: str) -> List[Entry]:
        with self._lock:
            if path in self._files:
                raise BackendError(ErrorKind.IS_FILE)
            elif path not in self._dirs:
                raise BackendError(ErrorKind.DIR_NOT_FOUND)

            entries = [self._file_entry(p) for p in self._files if _parent(p) == path]
            entries += [
                self._dir_entry(p) for p in self._dirs if p and _parent(p) == path
            ]

            return entries

    def new_object(self, path: str) -> Entry:
        with self._lock:
            if path in self._files:
                return self._file_entry(path)
            elif path in self._dirs:
                raise BackendError(ErrorKind.IS_DIR)
            else:
                raise BackendError(ErrorKind.OBJECT_NOT_FOUND)

    #
    # File contents
    #

    def read(self, path: str, offset: int, size: int) -> bytes:
        with self._lock:
            if path not in self._files:
                raise BackendError(ErrorKind.OBJECT_NOT_FOUND)

            return self._files[path].data[offset : offset + size]

    def put(self, path: str, src: BinaryIO) -> Entry:
        data = src.read()

        with self._lock:
            return self._store(path, data)

    def put_stream(self, path: str, src: BinaryIO) -> Entry:
        if not self.features.streaming:
            raise BackendError(ErrorKind.NOT_IMPLEMENTED)

        return self.put(path, src)

    #
    # File system structure
    #

    def mkdir(self, path: str) -> None:
        with self._lock:
            if path in self._files:
                raise BackendError(ErrorKind.ALREADY_EXISTS)

            self._make_dirs(path)

    def rmdir(self, path: str) -> None:
        with self._lock:
            if path not in self._dirs:
                raise BackendError(ErrorKind.DIR_NOT_FOUND)
            elif any(_parent(p) == path for p in self._files) or any(
                p and _parent(p) == path for p in self._dirs
            ):
                raise BackendError(ErrorKind.DIR_NOT_EMPTY)
            elif path == "":
                raise BackendError(ErrorKind.NO_PERMISSION)

            self._dirs.remove(path)

    def remove(self, path: str) -> None:
        with self._lock:
            if path in self._dirs:
                raise BackendError(ErrorKind.IS_DIR)
            elif path not in self._files:
                raise BackendError(ErrorKind.OBJECT_NOT_FOUND)

            del self._files[path]

    def purge(self, path: str) -> None:
        with self._lock:
            if path not in self._dirs:
                raise BackendError(ErrorKind.DIR_NOT_FOUND)

            for p in [p for p in self._files if _is_under(p, path)]:
                del self._files[p]

            self._dirs = {p for p in self._dirs if not _is_under(p, path) or p == ""}
            self._dirs.discard(path)
            self._dirs.add("")

    def copy(self, src: str, dst: str) -> Entry:
        with self._lock:
            if src not in self._files:
                raise BackendError(ErrorKind.OBJECT_NOT_FOUND)

            return self._store(dst, self._files[src].data)

    def move(self, src: str, dst: str) -> Entry:
        with self._lock:
            if src not in self._files:
                raise BackendError(ErrorKind.OBJECT_NOT_FOUND)

            entry = self._store(dst, self._files[src].data)
            del self._files[src]

            return entry

    def dir_move(self, src: str, dst: str) -> None:
        with self._lock:
            if src not in self._dirs:
                raise BackendError(ErrorKind.DIR_NOT_FOUND)
            elif dst in self._dirs or dst in self._files:
                raise BackendError(ErrorKind.ALREADY_EXISTS)

            self._make_dirs(dst)

            def rebase(p: str) -> str:
                return dst + p[len(src) :]

            for p in [p for p in self._files if _is_under(p, src)]:
                self._files[rebase(p)] = self._files.pop(p)

            moved = {p for p in self._dirs if p == src or _is_under(p, src)}
            self._dirs = (self._dirs - moved) | {rebase(p) for p in moved}
