"""Module with a backend that stores files in a directory on the local disk."""

from __future__ import annotations

import os
import os.path
import shutil
import stat
import tempfile
from typing import BinaryIO, Dict, List, Optional

from docvfs.backend.base import Entry, Features, RemoteBackend
from docvfs.errors import BackendError, ErrorKind


class LocalBackend(RemoteBackend):
    """Backend that exposes a local directory. Configured with the "root" key."""

    features = Features(streaming=True, copy=True, move=True, dir_move=True, about=True)

    def __init__(self, name: str, root: str) -> None:
        """Instantiate a backend rooted at the specified local directory."""
        super().__init__(name)

        self._root = os.path.abspath(os.path.expanduser(root))

    @staticmethod
    def from_config(name: str, config: Dict[str, str]) -> LocalBackend:
        return LocalBackend(name, config.get("root", "/"))

    def _abs(self, path: str) -> str:
        return os.path.join(self._root, path) if path else self._root

    @staticmethod
    def _entry(name: str, st: os.stat_result) -> Entry:
        return Entry(
            name=name,
            is_dir=stat.S_ISDIR(st.st_mode),
            size=0 if stat.S_ISDIR(st.st_mode) else st.st_size,
            mtime_ns=st.st_mtime_ns,
        )

    #
    # Metadata access
    #

    def stat(self, path: str) -> Entry:
        try:
            st = os.stat(self._abs(path))
        except (FileNotFoundError, NotADirectoryError):
            raise BackendError(ErrorKind.NOT_FOUND)

        return self._entry(os.path.basename(path), st)

    def list(self, path: str) -> List[Entry]:
        entries = []

        try:
            with os.scandir(self._abs(path)) as it:
                for dirent in it:
                    try:
                        entries.append(self._entry(dirent.name, dirent.stat()))
                    except FileNotFoundError:
                        # Removed while listing
                        continue
        except FileNotFoundError:
            raise BackendError(ErrorKind.DIR_NOT_FOUND)
        except NotADirectoryError:
            raise BackendError(ErrorKind.IS_FILE)

        return entries

    def new_object(self, path: str) -> Entry:
        try:
            st = os.stat(self._abs(path))
        except (FileNotFoundError, NotADirectoryError):
            raise BackendError(ErrorKind.OBJECT_NOT_FOUND)

        if stat.S_ISDIR(st.st_mode):
            raise BackendError(ErrorKind.IS_DIR)

        return self._entry(os.path.basename(path), st)

    def about(self) -> Dict[str, Optional[int]]:
        usage = shutil.disk_usage(self._root)

        return {"total": usage.total, "used": usage.used, "free": usage.free}

    #
    # File contents
    #

    def read(self, path: str, offset: int, size: int) -> bytes:
        try:
            with open(self._abs(path), "rb") as f:
                return os.pread(f.fileno(), size, offset)
        except FileNotFoundError:
            raise BackendError(ErrorKind.OBJECT_NOT_FOUND)

    def put(self, path: str, src: BinaryIO) -> Entry:
        target = self._abs(path)
        os.makedirs(os.path.dirname(target), exist_ok=True)

        # Write to a temporary file first so that readers never see partial contents
        fd, tmp = tempfile.mkstemp(dir=os.path.dirname(target), prefix=".docvfs-")

        try:
            with os.fdopen(fd, "wb") as f:
                shutil.copyfileobj(src, f)

            os.replace(tmp, target)
        except BaseException:
            os.unlink(tmp)
            raise

        return self._entry(os.path.basename(path), os.stat(target))

    def put_stream(self, path: str, src: BinaryIO) -> Entry:
        return self.put(path, src)

    #
    # File system structure
    #

    def mkdir(self, path: str) -> None:
        os.makedirs(self._abs(path), exist_ok=True)

    def rmdir(self, path: str) -> None:
        try:
            os.rmdir(self._abs(path))
        except FileNotFoundError:
            raise BackendError(ErrorKind.DIR_NOT_FOUND)

    def remove(self, path: str) -> None:
        try:
            os.unlink(self._abs(path))
        except FileNotFoundError:
            raise BackendError(ErrorKind.OBJECT_NOT_FOUND)

    def purge(self, path: str) -> None:
        try:
            shutil.rmtree(self._abs(path))
        except FileNotFoundError:
            raise BackendError(ErrorKind.DIR_NOT_FOUND)

    def copy(self, src: str, dst: str) -> Entry:
        target = self._abs(dst)
        os.makedirs(os.path.dirname(target), exist_ok=True)

        try:
            shutil.copy2(self._abs(src), target)
        except FileNotFoundError:
            raise BackendError(ErrorKind.OBJECT_NOT_FOUND)

        return self._entry(os.path.basename(dst), os.stat(target))

    def move(self, src: str, dst: str) -> Entry:
        target = self._abs(dst)
        os.makedirs(os.path.dirname(target), exist_ok=True)

        try:
            os.replace(self._abs(src), target)
        except FileNotFoundError:
            raise BackendError(ErrorKind.OBJECT_NOT_FOUND)

        return self._entry(os.path.basename(dst), os.stat(target))

    def dir_move(self, src: str, dst: str) -> None:
        target = self._abs(dst)

        if os.path.lexists(target):
            raise BackendError(ErrorKind.ALREADY_EXISTS)

        os.makedirs(os.path.dirname(target), exist_ok=True)

        try:
            os.rename(self._abs(src), target)
        except FileNotFoundError:
            raise BackendError(ErrorKind.DIR_NOT_FOUND)
