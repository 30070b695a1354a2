"""
Module for configuration: process-wide variables and the remote configuration store.

Process-wide variables have defaults that are overridable by a file. Remotes are
configured in a separate INI file with one section per remote, which is the file that
the host edits through the RPC interface.
"""

from __future__ import annotations

from configparser import ConfigParser, Error as ConfigParserError, SectionProxy
from dataclasses import dataclass, field
import os
import os.path
import ssl
import tempfile
import threading
from typing import Dict, List, Optional

import fasteners

from docvfs.constants import VFS_OPTION_PREFIX
from docvfs.errors import ConfigError
from docvfs.logger import log


def _default_cert_dirs() -> List[str]:
    dirs = []

    capath = ssl.get_default_verify_paths().capath
    if capath:
        dirs.append(capath)
    if "/etc/ssl/certs" not in dirs:
        dirs.append("/etc/ssl/certs")

    dirs.append(os.path.expanduser("~/.docvfs/certs/added"))

    return dirs


@dataclass
class CacheConfig:
    """Configuration variables related to the on-disk VFS caches."""

    path: str = os.path.expanduser("~/.docvfs/cache")

    @staticmethod
    def load(section: SectionProxy) -> CacheConfig:
        """Load overridden variables from a section within a config file."""
        config = CacheConfig()

        config.path = os.path.expanduser(section.get("path", fallback=config.path))

        return config


@dataclass
class RemotesConfig:
    """Configuration variables related to the remote configuration store."""

    path: str = os.path.expanduser("~/.docvfs/remotes.conf")

    @staticmethod
    def load(section: SectionProxy) -> RemotesConfig:
        """Load overridden variables from a section within a config file."""
        config = RemotesConfig()

        config.path = os.path.expanduser(section.get("path", fallback=config.path))

        return config


@dataclass
class CertsConfig:
    """Configuration variables related to the trusted certificate store."""

    add_dirs: List[str] = field(default_factory=_default_cert_dirs)
    remove_dir: str = os.path.expanduser("~/.docvfs/certs/removed")

    @staticmethod
    def load(section: SectionProxy) -> CertsConfig:
        """Load overridden variables from a section within a config file."""
        config = CertsConfig()

        add_dirs = section.get("add_dirs")
        if add_dirs is not None:
            config.add_dirs = [
                os.path.expanduser(d) for d in add_dirs.split(os.pathsep) if d
            ]

        config.remove_dir = os.path.expanduser(
            section.get("remove_dir", fallback=config.remove_dir)
        )

        return config


@dataclass
class Config:
    """Configuration variables."""

    remotes: RemotesConfig = field(default_factory=RemotesConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    certs: CertsConfig = field(default_factory=CertsConfig)

    @staticmethod
    def load(filename: str) -> Config:
        """Load overridden configuration variables from a config file."""
        parser = ConfigParser()

        config = Config()

        try:
            with open(filename, "r") as f:
                parser.read_string(f.read(), filename)

            if "remotes" in parser:
                config.remotes = RemotesConfig.load(parser["remotes"])
            if "cache" in parser:
                config.cache = CacheConfig.load(parser["cache"])
            if "certs" in parser:
                config.certs = CertsConfig.load(parser["certs"])
        except FileNotFoundError:
            log.info(f"no config file at {filename}")
        except Exception as e:
            # An unreadable config file is not considered a fatal error since we can
            # fall back to defaults.
            log.error(f"failed to read config file {filename}: {e}")
        else:
            log.info(f"loaded config: {config}")

        return config


class ConfigStore:
    """
    Store with the configuration of all remotes.

    Every remote has a section named after the remote (without the colon). The "type"
    key selects the backend and the remaining keys are backend specific, aside from
    keys with the docvfs: prefix, which are reserved for docvfs itself.

    The file is only read and written by explicit load() and save() calls. Both are
    protected by an inter-process lock to avoid reading a half-written file from a
    concurrent save in another process.
    """

    def __init__(self, path: str) -> None:
        """Instantiate a store backed by the config file at the given path."""
        self.path = os.path.expanduser(path)

        self._lock = threading.RLock()
        self._parser = self._new_parser()

    @staticmethod
    def _new_parser() -> ConfigParser:
        # Keys contain colons and are case sensitive, and values may contain % signs.
        parser = ConfigParser(
            delimiters=("=",), interpolation=None, default_section="\0defaults"
        )
        parser.optionxform = str  # type: ignore

        return parser

    @property
    def _lock_path(self) -> str:
        return self.path + ".lock"

    def load(self) -> None:
        """
        Load the config file, replacing all configuration in memory.

        A missing file raises FileNotFoundError, which callers generally treat as an
        empty configuration. Other I/O errors are raised as-is and syntax errors are
        raised as ConfigError.
        """
        parser = self._new_parser()

        with fasteners.InterProcessLock(self._lock_path):
            with open(self.path, "r") as f:
                try:
                    parser.read_file(f, self.path)
                except ConfigParserError as e:
                    raise ConfigError(f"failed to parse {self.path}: {e}")

        with self._lock:
            self._parser = parser

        log.debug(f"loaded {len(parser.sections())} remotes from {self.path}")

    def save(self) -> None:
        """Atomically write the configuration to the config file."""
        directory = os.path.dirname(self.path) or "."
        os.makedirs(directory, exist_ok=True)

        with fasteners.InterProcessLock(self._lock_path):
            fd, tmp = tempfile.mkstemp(dir=directory, prefix=".config-")

            try:
                with os.fdopen(fd, "w") as f:
                    with self._lock:
                        self._parser.write(f)

                os.replace(tmp, self.path)
            except BaseException:
                os.unlink(tmp)
                raise

    def clear(self) -> None:
        """Forget all configuration in memory."""
        with self._lock:
            self._parser = self._new_parser()

    #
    # Sections
    #

    def sections(self) -> List[str]:
        with self._lock:
            return self._parser.sections()

    def has_section(self, section: str) -> bool:
        with self._lock:
            return self._parser.has_section(section)

    def get_section(self, section: str) -> Dict[str, str]:
        """Return a copy of all key/value pairs in a section."""
        with self._lock:
            if not self._parser.has_section(section):
                return {}

            return dict(self._parser.items(section))

    def delete_section(self, section: str) -> bool:
        with self._lock:
            return self._parser.remove_section(section)

    def copy_section(self, old_section: str, new_section: str) -> None:
        """Copy all keys of a section into another, creating it if needed."""
        with self._lock:
            for key, value in self.get_section(old_section).items():
                self.set_value(new_section, key, value)

    #
    # Keys
    #

    def get_value(self, section: str, key: str) -> Optional[str]:
        with self._lock:
            return self._parser.get(section, key, fallback=None)

    def set_value(self, section: str, key: str, value: str) -> None:
        with self._lock:
            if not self._parser.has_section(section):
                self._parser.add_section(section)

            self._parser.set(section, key, value)

    def delete_key(self, section: str, key: str) -> bool:
        with self._lock:
            if not self._parser.has_section(section):
                return False

            return self._parser.remove_option(section, key)

    def vfs_overrides(self, section: str) -> Dict[str, str]:
        """Return the VFS option overrides of a remote, keyed by option name."""
        return {
            key[len(VFS_OPTION_PREFIX) :]: value
            for key, value in self.get_section(section).items()
            if key.startswith(VFS_OPTION_PREFIX)
        }
