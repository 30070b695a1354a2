"""
Module with the bridge: the object that owns all state of a docvfs process.

A host application creates a single Bridge, calls init() once, and then uses it for
everything: document operations (through the operations attribute), managing the VFS
instance cache, editing the remote configuration and so on. There is no global state,
so tests simply create a fresh bridge per case with fake collaborators.

Like the document operations, all methods raise OSError with the nearest errno
equivalent on failure.
"""

import base64
import binascii
import errno
from typing import Callable, Dict, List, Optional, Tuple

from docvfs.backend import BackendFactory, Features, new_backend
from docvfs.certs import CertPool, TrustStore
from docvfs.config import Config, ConfigStore
from docvfs.constants import AUTHORIZE_URL, VERSION, WAIT_FOR_WRITERS_TIMEOUT
from docvfs.errors import BackendError, ErrorKind, os_errors
from docvfs.logger import log, set_verbosity
from docvfs.operations import DocumentOperations
import docvfs.paths as paths
from docvfs.rc import RpcDispatcher
from docvfs.vfs import describe, migrate_legacy_options, VfsCache

Authorizer = Callable[[List[str]], None]


class PasswordCodec:
    """
    Reversible encoding of passwords stored in the remote configuration.

    This is obscuring, not encryption. It only prevents passwords from being readable
    at a glance.
    """

    def obscure(self, text: str) -> str:
        return base64.urlsafe_b64encode(text.encode()).decode().rstrip("=")

    def reveal(self, text: str) -> str:
        padded = text + "=" * (-len(text) % 4)

        try:
            return base64.urlsafe_b64decode(padded.encode()).decode()
        except (binascii.Error, UnicodeDecodeError) as e:
            raise ValueError(f"failed to reveal password: {e}")


def _unsupported_authorizer(args: List[str]) -> None:
    raise BackendError(ErrorKind.NOT_IMPLEMENTED, "authorization is not supported")


class Bridge:
    """Owner of the configuration store, VFS cache, trust store and operations."""

    def __init__(
        self,
        config: Config,
        backend_factory: BackendFactory = new_backend,
        password_codec: Optional[PasswordCodec] = None,
        authorizer: Authorizer = _unsupported_authorizer,
        trust_store: Optional[TrustStore] = None,
    ) -> None:
        """
        Instantiate a bridge. Nothing is read from disk until init() is called.

        The collaborators default to the builtin backends, base64 password obscuring,
        no support for authorization, and a trust store with the configured directories.
        """
        self.config = config

        self.store = ConfigStore(config.remotes.path)
        self.vfs_cache = VfsCache(self.store, config.cache.path, backend_factory)
        self.trust_store = trust_store or TrustStore.from_config(config.certs)
        self.operations = DocumentOperations(self.vfs_cache)
        self.dispatcher = RpcDispatcher(self)

        self.password_codec = password_codec or PasswordCodec()
        self._authorizer = authorizer

    #
    # Lifecycle
    #

    def init(self) -> None:
        """Load the remote configuration and the trusted certificates."""
        try:
            self._load_store()
        except FileNotFoundError:
            log.info(f"no remote config at {self.store.path}, starting empty")
            self.store.clear()

        self.trust_store.rebuild()

    def shutdown(self) -> None:
        """Shut down all VFS instances, waiting for pending uploads, keeping caches."""
        self.vfs_cache.evict_all(delete_cache_dir=False)

    @staticmethod
    def version() -> str:
        return VERSION

    @staticmethod
    def set_log_verbosity(verbosity: int) -> None:
        """Set the log level: 0 for notices, 1 for info and 2 or more for debug."""
        set_verbosity(verbosity)

    #
    # VFS cache management
    #

    def evict_remote(
        self,
        remote: str,
        delete_cache_dir: bool,
        timeout: float = WAIT_FOR_WRITERS_TIMEOUT,
    ) -> None:
        self.vfs_cache.evict(remote, delete_cache_dir, timeout)

    def evict_all(
        self, delete_cache_dir: bool, timeout: float = WAIT_FOR_WRITERS_TIMEOUT
    ) -> None:
        self.vfs_cache.evict_all(delete_cache_dir, timeout)

    def max_cleanup_wait_seconds(self) -> int:
        return self.vfs_cache.max_cleanup_wait_seconds()

    def init_remote(self, remote: str) -> None:
        """Create the VFS instance of a remote now, which resumes pending uploads."""
        with os_errors(errno.EIO):
            self.vfs_cache.init_remote(remote)

    def remote_features(self, remote: str) -> Features:
        with os_errors(errno.EIO):
            return self.vfs_cache.get(remote).backend.features

    def can_stream(self, remote: str) -> bool:
        return self.remote_features(remote).streaming

    #
    # Docs
    #

    @staticmethod
    def remote_split(doc: str) -> Tuple[str, str]:
        with os_errors(errno.EINVAL):
            return paths.split_remote(doc)

    @staticmethod
    def path_split(doc: str) -> Tuple[str, str]:
        with os_errors(errno.EINVAL):
            return paths.split_parent_leaf(doc)

    @staticmethod
    def path_join(parent_doc: str, leaf_name: str) -> str:
        return paths.join(parent_doc, leaf_name)

    #
    # Remote configuration
    #

    def _load_store(self) -> None:
        self.store.load()

        if migrate_legacy_options(self.store):
            self.store.save()

    def config_load(self) -> None:
        """
        Reload the remote configuration from disk.

        All VFS instances are evicted so that they are recreated with the new options.
        A missing file is reported as ENOENT.
        """
        with os_errors(errno.EIO):
            self._load_store()

        self.vfs_cache.evict_all(delete_cache_dir=False)

    def config_save(self) -> None:
        with os_errors(errno.EIO):
            self.store.save()

    @staticmethod
    def config_check_name(name: str) -> None:
        """Check that a remote name (without colon) is valid. Raises EINVAL if not."""
        with os_errors(errno.EINVAL):
            paths.check_config_name(name)

    def config_copy_section(self, old_section: str, new_section: str) -> None:
        self.store.copy_section(old_section, new_section)

    def config_delete_key(self, section: str, key: str) -> bool:
        return self.store.delete_key(section, key)

    @staticmethod
    def get_vfs_options(overrides: Dict[str, str]) -> List[Tuple[str, str]]:
        """Return the effective VFS options for a set of overrides, sorted by key."""
        with os_errors(errno.EINVAL):
            return describe(overrides)

    #
    # Passthroughs
    #

    def password_obscure(self, text: str) -> str:
        return self.password_codec.obscure(text)

    def password_reveal(self, text: str) -> str:
        with os_errors(errno.EINVAL):
            return self.password_codec.reveal(text)

    def authorize(self, args_nul_sep: str) -> None:
        """Run an authorization flow with arguments separated by NUL characters."""
        with os_errors(errno.EIO):
            self._authorizer(args_nul_sep.split("\0"))

    @staticmethod
    def authorize_url() -> str:
        return AUTHORIZE_URL

    def reload_certificates(self) -> CertPool:
        return self.trust_store.rebuild()

    def rpc_call(self, method: str, json_input: str) -> Tuple[str, int]:
        """Call an RPC method with a JSON object, returning JSON and an HTTP status."""
        return self.dispatcher.call(method, json_input)
