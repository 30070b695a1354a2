"""
Module with the trust store used to verify outbound TLS connections.

The set of trusted certificates is assembled from a list of "add" directories (like the
system store and a store with certificates added by the user) minus the certificates in
a "remove" directory (certificates disabled by the user). All stores are keyed by file
name, which makes it possible to disable a system certificate by placing a file with
the same name in the remove directory, even though the system directory itself is
read-only.

The pool is never patched. Every rebuild reads all directories again and then replaces
the previous pool in one step, so a connection always sees a complete pool.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
import os
import re
import socket
import ssl
import threading
from typing import Dict, List, Optional, Set, Tuple

from docvfs.config import CertsConfig
from docvfs.logger import log

_PEM_BLOCK = re.compile(
    rb"-----BEGIN CERTIFICATE-----\s*(.+?)\s*-----END CERTIFICATE-----", re.DOTALL
)


@dataclass(frozen=True)
class CertPool:
    """Immutable set of trusted certificates (DER) keyed by the file they came from."""

    certs: Dict[str, Tuple[bytes, ...]] = field(default_factory=dict)

    def __len__(self) -> int:
        return sum(len(ders) for ders in self.certs.values())

    def __contains__(self, der: object) -> bool:
        return any(der in ders for ders in self.certs.values())

    def file_names(self) -> List[str]:
        return sorted(self.certs)

    def certificates(self) -> List[bytes]:
        """Return all certificates, ordered by file name."""
        return [der for name in self.file_names() for der in self.certs[name]]


def _is_valid(der: bytes) -> bool:
    """Check if OpenSSL accepts the data as a DER-encoded certificate."""
    try:
        ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT).load_verify_locations(cadata=der)
    except (ssl.SSLError, ValueError):
        return False

    return True


def parse_certificates(data: bytes) -> List[bytes]:
    """
    Parse the certificates in a PEM or DER encoded file.

    PEM files may contain any number of certificate blocks. Blocks that can't be
    decoded are skipped rather than discarding the whole file.
    """
    if b"-----BEGIN" not in data:
        return [data] if _is_valid(data) else []

    certs = []

    for match in _PEM_BLOCK.finditer(data):
        try:
            der = base64.b64decode(b"".join(match.group(1).split()), validate=True)
        except binascii.Error:
            log.debug("skipping undecodable PEM block")
            continue

        if _is_valid(der):
            certs.append(der)
        else:
            log.debug("skipping invalid certificate in PEM block")

    return certs


def _list_dir(path: str) -> List[str]:
    """List the regular files in a directory, or nothing if it can't be read."""
    try:
        with os.scandir(path) as it:
            return sorted(e.name for e in it if e.is_file())
    except OSError as e:
        log.info(f"skipping certificate directory {path}: {e}")
        return []


def build_pool(add_dirs: List[str], remove_dir: Optional[str]) -> CertPool:
    """
    Build a pool from the files in the add directories minus those in the remove one.

    If multiple add directories contain a file with the same name then only the first
    one is used.
    """
    removed: Set[str] = set(_list_dir(remove_dir)) if remove_dir else set()
    certs: Dict[str, Tuple[bytes, ...]] = {}

    for directory in add_dirs:
        for name in _list_dir(directory):
            if name in removed or name in certs:
                continue

            try:
                with open(os.path.join(directory, name), "rb") as f:
                    data = f.read()
            except OSError as e:
                log.info(f"skipping certificate file {name}: {e}")
                continue

            parsed = parse_certificates(data)
            if parsed:
                certs[name] = tuple(parsed)

    return CertPool(certs)


class TrustStore:
    """
    Process-wide trust store that can be rebuilt at any time.

    Connections should call ssl_context() for every new connection so that they pick up
    the pool that is current at that time.
    """

    def __init__(self, add_dirs: List[str], remove_dir: Optional[str]) -> None:
        """Instantiate a trust store with an empty pool. Call rebuild() to fill it."""
        self.add_dirs = list(add_dirs)
        self.remove_dir = remove_dir

        self._lock = threading.Lock()
        self._pool = CertPool()
        self._context: Optional[Tuple[CertPool, ssl.SSLContext]] = None

    @staticmethod
    def from_config(config: CertsConfig) -> TrustStore:
        return TrustStore(config.add_dirs, config.remove_dir)

    def rebuild(self) -> CertPool:
        """Read all certificate directories again and replace the current pool."""
        pool = build_pool(self.add_dirs, self.remove_dir)

        with self._lock:
            self._pool = pool

        log.info(f"loaded {len(pool)} trusted certificates")

        return pool

    @property
    def pool(self) -> CertPool:
        with self._lock:
            return self._pool

    def ssl_context(self) -> ssl.SSLContext:
        """Return a client SSL context that trusts the current pool."""
        pool = self.pool

        with self._lock:
            if self._context is not None and self._context[0] is pool:
                return self._context[1]

        context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)

        if len(pool):
            context.load_verify_locations(cadata=b"".join(pool.certificates()))

        with self._lock:
            self._context = (pool, context)

        return context

    def wrap_socket(self, sock: socket.socket, server_hostname: str) -> ssl.SSLSocket:
        """Wrap a connected socket for TLS, verifying the server against the pool."""
        return self.ssl_context().wrap_socket(sock, server_hostname=server_hostname)
