"""
Modules that provide cached, POSIX-like file access on top of remote backends.

Every remote gets exactly one VFS instance, created on first access by the VfsCache and
configured with options that are resolved from the remote's configuration section.

A VFS instance adds the state that a remote backend itself doesn't have: short-lived
directory listings, a local disk cache for files that are being written, uploads that
are resumed after a crash, and the background cleanup of that disk cache. Because most
remotes only accept whole uploads, a file can only be opened for reading and writing at
the same time, or written at random offsets, if its contents are cached locally. With
caching off, files can only be written sequentially after being truncated.

The VfsCache also decides how long a host process should stay alive after its last
use: long enough for every caching instance to complete at least one cleanup pass.
"""

from .cache import VfsCache
from .handles import CachedHandle, Handle, ReadHandle, StreamHandle
from .options import (
    CacheMode,
    DEFAULT_OPTIONS,
    describe,
    migrate_legacy_options,
    RemoteOptionsResolver,
    resolve_options,
    VfsOptions,
)
from .vfs import Node, Vfs

__all__ = [
    "CacheMode",
    "CachedHandle",
    "DEFAULT_OPTIONS",
    "Handle",
    "Node",
    "ReadHandle",
    "RemoteOptionsResolver",
    "StreamHandle",
    "Vfs",
    "VfsCache",
    "VfsOptions",
    "describe",
    "migrate_legacy_options",
    "resolve_options",
]
