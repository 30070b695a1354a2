"""
Module with string operations on docs.

A doc is a path of the form "<remote><path>", for example "gdrive:/photos/cat.jpg",
where the remote is the name of a configured remote followed by a colon. Docs double as
stable external document IDs, so they must be reproducible: listing a directory has to
yield exactly the same doc strings as splitting a child doc into its parent and leaf.
That's why trailing slashes are never part of a doc (aside from the root slash directly
following the remote delimiter, which is part of the path itself).

Nothing in this module performs I/O.
"""

import posixpath
import re
from typing import Callable, Tuple

from docvfs.errors import BackendError, ErrorKind, ParseError

# Valid remote names, based on rclone's rules for config section names.
_CONFIG_NAME = re.compile(r"^[\w.+@]+(?:[ -]+[\w.+@-]+)*$")


def check_config_name(name: str) -> None:
    """Check that a remote name (without the colon) is valid."""
    if not _CONFIG_NAME.match(name):
        raise ParseError(f"invalid remote name: {name!r}")


def section_name(remote: str) -> str:
    """Return the configuration section name (remote without the colon) of a remote."""
    if not remote.endswith(":"):
        raise ParseError(f"remote is missing delimiter: {remote!r}")

    name = remote[:-1]
    check_config_name(name)

    return name


def split_remote(doc: str) -> Tuple[str, str]:
    """
    Split a doc into the remote (with colon) and the path within the remote.

    Example: "gdrive:/a/b" -> ("gdrive:", "/a/b")
    """
    idx = doc.find(":")

    if idx < 0:
        raise ParseError(f"doc does not reference a remote: {doc!r}")

    check_config_name(doc[:idx])

    return doc[: idx + 1], doc[idx + 1 :]


def split_parent_leaf(doc: str) -> Tuple[str, str]:
    """
    Split a doc into the parent doc and the leaf name.

    The parent never has a trailing slash, so that it matches the doc that listing the
    grandparent would return.

    Examples:
    * "gdrive:/a/b" -> ("gdrive:/a", "b")
    * "gdrive:/a/" -> ("gdrive:/a", "")
    * "gdrive:/a" -> ("gdrive:/", "a")
    """
    remote, path = split_remote(doc)

    idx = path.rfind("/")
    parent, leaf = path[: idx + 1], path[idx + 1 :]

    trimmed = parent.rstrip("/")
    if not trimmed and parent.startswith("/"):
        trimmed = "/"

    return remote + trimmed, leaf


def join(parent_doc: str, leaf_name: str) -> str:
    """Join a parent doc with a leaf name. This is the inverse of split_parent_leaf."""
    if not leaf_name:
        return parent_doc
    elif parent_doc.endswith(":") or parent_doc.endswith("/"):
        return parent_doc + leaf_name
    else:
        return f"{parent_doc}/{leaf_name}"


def clean_path(path: str) -> str:
    """
    Normalize a path within a remote to the form used by VFS instances and backends.

    The result is relative to the root of the remote, without leading or trailing
    slashes. The root itself is the empty string.
    """
    return posixpath.normpath("/" + path).lstrip("/")


def resolve_for_operation(
    doc: str, treat_as_file: bool, is_file: Callable[[str, str], bool]
) -> Tuple[str, str, str]:
    """
    Determine how a doc that may or may not exist should be addressed on its remote.

    Returns a tuple of (remote, root path, name). If the doc refers to a file then the
    root is its parent directory and the name is the file name. Otherwise the root is
    the doc itself (a directory or nothing at all) and the name is empty.

    The is_file callable is used to probe whether (remote, path) is an existing file.
    It's not called at all if treat_as_file is set, in which case the doc is assumed to
    be a file and may not be the bare root of a remote.
    """
    remote, path = split_remote(doc)
    parent_doc, name = split_parent_leaf(doc)
    _, parent_path = split_remote(parent_doc)

    if treat_as_file:
        if not name:
            raise BackendError(ErrorKind.IS_DIR)

        return remote, clean_path(parent_path), name

    if name and is_file(remote, clean_path(path)):
        return remote, clean_path(parent_path), name

    return remote, clean_path(path), ""
