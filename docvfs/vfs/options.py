"""
Module with the VFS options record and the resolution of per-remote overrides.

Every VFS instance is created with options that start from defaults tuned for a
document provider (as opposed to a long-lived mount) and that are then overridden by
keys in the remote's configuration section. Override keys are the option names
prefixed with VFS_OPTION_PREFIX and values use the same notation as rclone's VFS flags,
e.g. "docvfs:vfs:dir_cache_time = 1m30s".

Overrides are validated against a static table of known options. Unknown keys are a
hard error rather than being ignored so that typos don't silently have no effect.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from enum import IntEnum
import re
from typing import Any, Callable, Dict, List, Tuple

from docvfs.config import ConfigStore
from docvfs.constants import LEGACY_VFS_CACHING_KEY, VFS_OPTION_PREFIX
from docvfs.errors import ConfigError, EmptyValueError, UnknownOptionError
from docvfs.logger import log
from docvfs.paths import section_name

KIB = 1024
MIB = 1024 * KIB


class CacheMode(IntEnum):
    """
    Policy for caching file contents on local disk.

    The order matters: a mode weaker than WRITES can't open files for reading and
    writing at the same time.
    """

    OFF = 0
    WRITES = 1


@dataclass
class VfsOptions:
    """Options of a VFS instance. Durations are in seconds and sizes in bytes."""

    # How long directory listings are cached
    dir_cache_time: float = 5.0

    cache_mode: CacheMode = CacheMode.WRITES

    # Cached files that are closed and uploaded are removed after this age, checked
    # every poll interval.
    cache_max_age: float = 15.0
    cache_poll_interval: float = 20.0

    # Reads from the remote start with chunk_size bytes and double for sequential
    # reads up to chunk_size_limit (-1 for no limit).
    chunk_size: int = 2 * MIB
    chunk_size_limit: int = 8 * MIB

    # Delay before uploading files after they are closed, 0 for synchronous uploads.
    write_back: float = 0.0

    dir_perms: int = 0o777
    file_perms: int = 0o666

    volume_name: str = ""


DEFAULT_OPTIONS = VfsOptions()

#
# Value notation
#

_DURATION_UNITS = {"ms": 0.001, "s": 1, "m": 60, "h": 3600, "d": 86400}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ms|s|m|h|d)")

_SIZE_UNITS = {"": KIB, "b": 1, "k": KIB, "m": MIB, "g": 1024 * MIB, "t": KIB ** 4}
_SIZE = re.compile(r"^(\d+(?:\.\d*)?)([bkmgt]?)(?:i?b?)$", re.IGNORECASE)


def parse_duration(value: str) -> float:
    """Parse a duration like "90", "1.5s", "500ms" or "1h30m" to seconds."""
    value = value.strip()

    try:
        seconds = float(value)
    except ValueError:
        pass
    else:
        if not 0 <= seconds < float("inf"):
            raise ValueError(f"invalid duration: {value!r}")

        return seconds

    pos = 0
    seconds = 0.0

    for match in _DURATION_PART.finditer(value):
        if match.start() != pos:
            break

        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()

    if pos == 0 or pos != len(value):
        raise ValueError(f"invalid duration: {value!r}")

    return seconds


def format_duration(seconds: float) -> str:
    """Format seconds in the same notation that parse_duration() accepts."""
    if seconds < 1 and seconds != 0:
        return f"{round(seconds * 1000)}ms"

    hours, rest = divmod(seconds, 3600)
    minutes, rest = divmod(rest, 60)

    result = ""
    if hours:
        result += f"{int(hours)}h"
    if minutes or hours:
        result += f"{int(minutes)}m"

    return result + f"{rest:g}s"


def parse_size(value: str) -> int:
    """
    Parse a size like "512B", "2M", "2Mi" or "off" to bytes.

    Like rclone, a number without a suffix is in KiB and all suffixes are binary. "off"
    is returned as -1.
    """
    value = value.strip()

    if value.lower() == "off":
        return -1

    match = _SIZE.match(value)
    if not match:
        raise ValueError(f"invalid size: {value!r}")

    return int(float(match.group(1)) * _SIZE_UNITS[match.group(2).lower()])


def format_size(size: int) -> str:
    """Format bytes in the same notation that parse_size() accepts."""
    if size < 0:
        return "off"

    for suffix, factor in (("Ti", KIB ** 4), ("Gi", 1024 * MIB), ("Mi", MIB), ("Ki", KIB)):
        if size and size % factor == 0:
            return f"{size // factor}{suffix}"

    return f"{size}B"


def parse_cache_mode(value: str) -> CacheMode:
    try:
        return CacheMode[value.strip().upper()]
    except KeyError:
        raise ValueError(f"invalid cache mode: {value!r}")


def format_cache_mode(mode: CacheMode) -> str:
    return mode.name.lower()


def parse_perms(value: str) -> int:
    perms = int(value.strip(), 8)

    if not 0 <= perms <= 0o777:
        raise ValueError(f"permissions out of range: {value!r}")

    return perms


def format_perms(perms: int) -> str:
    return f"{perms:03o}"


def parse_bool(value: str) -> bool:
    """Parse a boolean using the same rules as Go's strconv.ParseBool."""
    if value in ("1", "t", "T", "TRUE", "true", "True"):
        return True
    elif value in ("0", "f", "F", "FALSE", "false", "False"):
        return False
    else:
        raise ValueError(f"invalid boolean: {value!r}")


#
# Option table
#


@dataclass
class OptionSpec:
    """How to parse and format an option, and whether it's overridable at all."""

    parse: Callable[[str], Any]
    format: Callable[[Any], str]
    allows_empty: bool = False
    overridable: bool = True


OPTIONS: Dict[str, OptionSpec] = {
    "dir_cache_time": OptionSpec(parse_duration, format_duration),
    "cache_mode": OptionSpec(parse_cache_mode, format_cache_mode),
    "cache_max_age": OptionSpec(parse_duration, format_duration),
    "cache_poll_interval": OptionSpec(parse_duration, format_duration),
    "chunk_size": OptionSpec(parse_size, format_size),
    "chunk_size_limit": OptionSpec(parse_size, format_size),
    # Always controlled by the VFS instance lifecycle
    "write_back": OptionSpec(parse_duration, format_duration, overridable=False),
    "dir_perms": OptionSpec(parse_perms, format_perms),
    "file_perms": OptionSpec(parse_perms, format_perms),
    "volume_name": OptionSpec(str, str, allows_empty=True),
}


def _validate(overrides: Dict[str, str]) -> Dict[str, Any]:
    """Parse overrides into option values, dropping options that can't be overridden."""
    values: Dict[str, Any] = {}

    for key, raw in overrides.items():
        spec = OPTIONS.get(key)

        if spec is None:
            raise UnknownOptionError(f"unknown VFS option: {key}")
        elif not spec.overridable:
            log.debug(f"ignoring override for VFS option: {key}")
            continue
        elif raw == "" and not spec.allows_empty:
            raise EmptyValueError(f"empty value for VFS option: {key}")

        try:
            values[key] = spec.parse(raw)
        except ValueError as e:
            raise ConfigError(f"invalid value for VFS option {key}: {e}")

    return values


def resolve_options(
    overrides: Dict[str, str], defaults: VfsOptions = DEFAULT_OPTIONS
) -> VfsOptions:
    """Apply validated overrides on top of the defaults."""
    return dataclasses.replace(defaults, **_validate(overrides))


def describe(overrides: Dict[str, str]) -> List[Tuple[str, str]]:
    """Return all effective options as sorted (key, value) strings."""
    options = resolve_options(overrides)

    return [(key, OPTIONS[key].format(getattr(options, key))) for key in sorted(OPTIONS)]


class RemoteOptionsResolver:
    """Resolves the VFS options of remotes from their configuration sections."""

    def __init__(self, store: ConfigStore, defaults: VfsOptions = DEFAULT_OPTIONS):
        """Instantiate a resolver that reads overrides from the config store."""
        self._store = store
        self._defaults = defaults

    def overrides(self, remote: str) -> Dict[str, str]:
        return self._store.vfs_overrides(section_name(remote))

    def resolve(self, remote: str) -> VfsOptions:
        """Resolve the options of a remote (with colon)."""
        return resolve_options(self.overrides(remote), self._defaults)


def migrate_legacy_options(store: ConfigStore) -> bool:
    """
    Translate the legacy VFS caching flag into a cache mode override.

    The flag is deleted afterwards, so this only has an effect once. Returns whether
    anything was changed, in which case the store should be saved.
    """
    changed = False
    cache_mode_key = VFS_OPTION_PREFIX + "cache_mode"

    for section in store.sections():
        value = store.get_value(section, LEGACY_VFS_CACHING_KEY)
        if value is None:
            continue

        try:
            enabled = parse_bool(value)
        except ValueError as e:
            raise ConfigError(f"failed to migrate options of {section}: {e}")

        if not enabled and store.get_value(section, cache_mode_key) is None:
            store.set_value(section, cache_mode_key, format_cache_mode(CacheMode.OFF))

        store.delete_key(section, LEGACY_VFS_CACHING_KEY)
        changed = True

        log.info(f"migrated legacy VFS caching option of {section}")

    return changed
