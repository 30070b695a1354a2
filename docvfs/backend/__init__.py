"""
Modules with the remote storage backends that VFS instances are built on.

Backends implement the byte-level protocol of a remote and are treated as an opaque
capability by the rest of docvfs: they only need to provide the primitives declared in
RemoteBackend and report which optional features they support. The backend for a remote
is selected by the "type" key in the remote's configuration section.
"""

from typing import Callable, Dict

from docvfs.errors import ConfigError
from .base import Entry, Features, RemoteBackend
from .local import LocalBackend
from .memory import MemoryBackend

BackendFactory = Callable[[str, Dict[str, str]], RemoteBackend]

BACKENDS: Dict[str, BackendFactory] = {
    "local": LocalBackend.from_config,
    "memory": MemoryBackend.from_config,
}


def new_backend(remote: str, config: Dict[str, str]) -> RemoteBackend:
    """Create a backend for a remote from its configuration section."""
    backend_type = config.get("type")

    if not backend_type:
        raise ConfigError(f"remote {remote} has no backend type")
    elif backend_type not in BACKENDS:
        raise ConfigError(f"remote {remote} has unknown backend type: {backend_type}")

    return BACKENDS[backend_type](remote, config)


__all__ = [
    "BackendFactory",
    "Entry",
    "Features",
    "LocalBackend",
    "MemoryBackend",
    "RemoteBackend",
    "new_backend",
]
