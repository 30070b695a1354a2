"""Module that exposes a bridge as an RPC service."""

import errno
import itertools
import threading
from typing import Dict, List, Tuple

from docvfs.backend import Features
from docvfs.bridge import Bridge
from docvfs.constants import PROTOCOL_VERSION
from docvfs.errors import BackendError, ErrorKind, to_os_error
from docvfs.operations import DocEntry, DocumentHandle


class BridgeService:
    """
    RPC service with the document operations and management calls of a bridge.

    Open documents are referred to by integer handles, since handle objects can't be
    sent over the wire. A handle is forgotten when it is closed, even if closing fails.
    """

    def __init__(self, bridge: Bridge) -> None:
        """Instantiate a service for an initialized bridge."""
        self._bridge = bridge

        self._handles_lock = threading.Lock()
        self._handles: Dict[int, DocumentHandle] = {}
        self._handle_ids = itertools.count(1)

    def _handle(self, fh: int) -> DocumentHandle:
        with self._handles_lock:
            handle = self._handles.get(fh)

        if handle is None:
            raise to_os_error(BackendError(ErrorKind.BAD_HANDLE), errno.EBADF)

        return handle

    @property
    def handle_count(self) -> int:
        with self._handles_lock:
            return len(self._handles)

    #
    # Versioning and logging
    #

    @staticmethod
    def protocol_version() -> str:
        return PROTOCOL_VERSION

    def version(self) -> str:
        return self._bridge.version()

    def set_log_verbosity(self, verbosity: int) -> None:
        self._bridge.set_log_verbosity(verbosity)

    #
    # Docs
    #

    def remote_split(self, doc: str) -> Tuple[str, str]:
        return self._bridge.remote_split(doc)

    def path_split(self, doc: str) -> Tuple[str, str]:
        return self._bridge.path_split(doc)

    def path_join(self, parent_doc: str, leaf_name: str) -> str:
        return self._bridge.path_join(parent_doc, leaf_name)

    def list(self, doc: str) -> List[DocEntry]:
        return self._bridge.operations.list(doc)

    def stat(self, doc: str) -> DocEntry:
        return self._bridge.operations.stat(doc)

    def mkdir(self, doc: str, perms: int) -> None:
        self._bridge.operations.mkdir(doc, perms)

    def rename(self, source_doc: str, target_doc: str) -> None:
        self._bridge.operations.rename(source_doc, target_doc)

    def remove(self, doc: str, recursive: bool) -> None:
        self._bridge.operations.remove(doc, recursive)

    def copy_or_move(self, source_doc: str, target_doc: str, copy: bool) -> None:
        self._bridge.operations.copy_or_move(source_doc, target_doc, copy)

    #
    # File operations
    #

    def open(self, doc: str, flags: int, mode: int) -> int:
        handle = self._bridge.operations.open(doc, flags, mode)

        with self._handles_lock:
            fh = next(self._handle_ids)
            self._handles[fh] = handle

        return fh

    def read_at(self, fh: int, offset: int, size: int) -> bytes:
        return self._handle(fh).read_at(offset, size)

    def write_at(self, fh: int, data: bytes, offset: int) -> int:
        return self._handle(fh).write_at(data, offset)

    def flush(self, fh: int) -> None:
        self._handle(fh).flush()

    def size(self, fh: int) -> int:
        return self._handle(fh).size()

    def close(self, fh: int) -> None:
        handle = self._handle(fh)

        with self._handles_lock:
            self._handles.pop(fh, None)

        handle.close()

    #
    # Cache management
    #

    def evict_remote(self, remote: str, delete_cache_dir: bool) -> None:
        self._bridge.evict_remote(remote, delete_cache_dir)

    def evict_all(self, delete_cache_dir: bool) -> None:
        self._bridge.evict_all(delete_cache_dir)

    def max_cleanup_wait_seconds(self) -> int:
        return self._bridge.max_cleanup_wait_seconds()

    def init_remote(self, remote: str) -> None:
        self._bridge.init_remote(remote)

    def remote_features(self, remote: str) -> Features:
        return self._bridge.remote_features(remote)

    #
    # Configuration
    #

    def config_load(self) -> None:
        self._bridge.config_load()

    def config_save(self) -> None:
        self._bridge.config_save()

    def config_check_name(self, name: str) -> None:
        self._bridge.config_check_name(name)

    def config_copy_section(self, old_section: str, new_section: str) -> None:
        self._bridge.config_copy_section(old_section, new_section)

    def config_delete_key(self, section: str, key: str) -> bool:
        return self._bridge.config_delete_key(section, key)

    def get_vfs_options(self, overrides: Dict[str, str]) -> List[Tuple[str, str]]:
        return self._bridge.get_vfs_options(overrides)

    def reload_certificates(self) -> int:
        """Reload the trust store and return the number of trusted certificates."""
        return len(self._bridge.reload_certificates())

    #
    # Passthroughs
    #

    def password_obscure(self, text: str) -> str:
        return self._bridge.password_obscure(text)

    def password_reveal(self, text: str) -> str:
        return self._bridge.password_reveal(text)

    def authorize(self, args_nul_sep: str) -> None:
        self._bridge.authorize(args_nul_sep)

    def authorize_url(self) -> str:
        return self._bridge.authorize_url()

    def rpc_call(self, method: str, json_input: str) -> Tuple[str, int]:
        return self._bridge.rpc_call(method, json_input)
