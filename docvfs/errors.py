"""
Module with the error types used throughout docvfs and their errno translation.

Backends report failures either as native OSError instances (for example the local
backend simply lets os.stat() fail) or as BackendError instances. A BackendError
usually carries one of a closed set of sentinel kinds, but most failures of real
remotes are opaque messages without any kind at all.

Public operations convert every failure into an OSError with the nearest errno
equivalent using translate(). Because so many errors are opaque, callers should only
make decisions based on the errno where that is explicitly documented (e.g. EEXIST from
operations that create something). Everything else is advisory.
"""

from __future__ import annotations

from contextlib import contextmanager
from enum import auto, Enum
import errno
from typing import Dict, Iterator, Optional, Tuple


class ErrorKind(Enum):
    """Sentinel errors that a backend or VFS instance can report."""

    NOT_EMPTY = auto()
    BAD_SEEK = auto()
    BAD_HANDLE = auto()
    READ_ONLY = auto()
    UNSUPPORTED = auto()
    TOO_MANY_SYMLINKS = auto()
    NOT_FOUND = auto()
    ALREADY_EXISTS = auto()
    NO_PERMISSION = auto()
    INVALID_ARGUMENT = auto()
    CLOSED_HANDLE = auto()
    DIR_NOT_FOUND = auto()
    OBJECT_NOT_FOUND = auto()
    IS_FILE = auto()
    IS_DIR = auto()
    DIR_NOT_EMPTY = auto()
    PERMISSION_DENIED = auto()
    NOT_IMPLEMENTED = auto()
    COMMAND_NOT_FOUND = auto()
    NAME_TOO_LONG = auto()
    CONFIG_NOT_FOUND = auto()


ERRNO_MAP: Dict[ErrorKind, int] = {
    ErrorKind.NOT_EMPTY: errno.ENOTEMPTY,
    ErrorKind.BAD_SEEK: errno.ESPIPE,
    ErrorKind.BAD_HANDLE: errno.EBADF,
    ErrorKind.READ_ONLY: errno.EROFS,
    ErrorKind.UNSUPPORTED: errno.ENOSYS,
    ErrorKind.TOO_MANY_SYMLINKS: errno.ELOOP,
    ErrorKind.NOT_FOUND: errno.ENOENT,
    ErrorKind.ALREADY_EXISTS: errno.EEXIST,
    ErrorKind.NO_PERMISSION: errno.EPERM,
    ErrorKind.INVALID_ARGUMENT: errno.EINVAL,
    ErrorKind.CLOSED_HANDLE: errno.EBADF,
    ErrorKind.DIR_NOT_FOUND: errno.ENOENT,
    ErrorKind.OBJECT_NOT_FOUND: errno.ENOENT,
    ErrorKind.IS_FILE: errno.ENOTDIR,
    ErrorKind.IS_DIR: errno.EISDIR,
    ErrorKind.DIR_NOT_EMPTY: errno.ENOTEMPTY,
    ErrorKind.PERMISSION_DENIED: errno.EACCES,
    ErrorKind.NOT_IMPLEMENTED: errno.ENOSYS,
    ErrorKind.COMMAND_NOT_FOUND: errno.ENOENT,
    ErrorKind.NAME_TOO_LONG: errno.ENAMETOOLONG,
    ErrorKind.CONFIG_NOT_FOUND: errno.ENOENT,
}

_MESSAGES: Dict[ErrorKind, str] = {
    ErrorKind.NOT_EMPTY: "directory not empty",
    ErrorKind.BAD_SEEK: "illegal seek",
    ErrorKind.BAD_HANDLE: "bad file descriptor",
    ErrorKind.READ_ONLY: "read only file system",
    ErrorKind.UNSUPPORTED: "operation not supported",
    ErrorKind.TOO_MANY_SYMLINKS: "too many levels of symbolic links",
    ErrorKind.NOT_FOUND: "no such file or directory",
    ErrorKind.ALREADY_EXISTS: "file already exists",
    ErrorKind.NO_PERMISSION: "operation not permitted",
    ErrorKind.INVALID_ARGUMENT: "invalid argument",
    ErrorKind.CLOSED_HANDLE: "file already closed",
    ErrorKind.DIR_NOT_FOUND: "directory not found",
    ErrorKind.OBJECT_NOT_FOUND: "object not found",
    ErrorKind.IS_FILE: "is a file not a directory",
    ErrorKind.IS_DIR: "is a directory not a file",
    ErrorKind.DIR_NOT_EMPTY: "directory not empty",
    ErrorKind.PERMISSION_DENIED: "permission denied",
    ErrorKind.NOT_IMPLEMENTED: "optional feature not implemented",
    ErrorKind.COMMAND_NOT_FOUND: "command not found",
    ErrorKind.NAME_TOO_LONG: "file name too long",
    ErrorKind.CONFIG_NOT_FOUND: "config file not found",
}

NOT_FOUND_KINDS = (
    ErrorKind.NOT_FOUND,
    ErrorKind.DIR_NOT_FOUND,
    ErrorKind.OBJECT_NOT_FOUND,
)


class BackendError(Exception):
    """
    Error reported by a remote backend or a VFS instance.

    The kind is one of the ErrorKind sentinels, or None for opaque errors that only
    carry a message.
    """

    def __init__(self, kind: Optional[ErrorKind], message: Optional[str] = None):
        """Instantiate an error of the given kind with an optional custom message."""
        if message is None:
            message = _MESSAGES[kind] if kind else "unknown error"

        super().__init__(message)

        self.kind = kind

    @staticmethod
    def opaque(message: str) -> BackendError:
        """Create an error without a sentinel kind."""
        return BackendError(None, message)


class ParseError(ValueError):
    """Malformed doc or path string."""

    kind = ErrorKind.INVALID_ARGUMENT


class ConfigError(ValueError):
    """Invalid configuration, like a bad per-remote option override."""

    kind: ErrorKind = ErrorKind.INVALID_ARGUMENT


class UnknownOptionError(ConfigError):
    """Option override for a key that is not a known VFS option."""


class EmptyValueError(ConfigError):
    """Empty option override for a field that does not accept empty strings."""


class RemoteNotFoundError(ConfigError):
    """Remote without a configuration section."""

    kind = ErrorKind.CONFIG_NOT_FOUND


class InstanceMismatchError(ValueError):
    """Operation spanning two docs that resolve to different VFS instances."""

    kind = ErrorKind.INVALID_ARGUMENT


def error_kind(err: BaseException) -> Optional[ErrorKind]:
    """Return the sentinel kind of an error, if it has one."""
    kind = getattr(err, "kind", None)

    return kind if isinstance(kind, ErrorKind) else None


def is_not_found(err: BaseException) -> bool:
    """Check if an error indicates that a file system entry does not exist."""
    return isinstance(err, FileNotFoundError) or error_kind(err) in NOT_FOUND_KINDS


def translate(err: BaseException, fallback: int) -> Tuple[str, int]:
    """
    Translate an error to a message and the nearest errno equivalent.

    Native OS error codes are used as-is. Otherwise the sentinel kind is mapped, and if
    there is none, the fallback code is used.
    """
    if isinstance(err, OSError) and err.errno:
        return err.strerror or str(err), err.errno

    kind = error_kind(err)

    if kind is not None:
        return str(err), ERRNO_MAP[kind]
    else:
        return str(err) or err.__class__.__name__, fallback


def to_os_error(err: BaseException, fallback: int) -> OSError:
    """Turn an error into an OSError carrying the translated errno and message."""
    message, code = translate(err, fallback)

    return OSError(code, message)


@contextmanager
def os_errors(fallback: int) -> Iterator[None]:
    """Raise any exception within the block as an OSError with the translated errno."""
    try:
        yield
    except Exception as e:
        raise to_os_error(e, fallback) from e
