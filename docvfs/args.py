"""Module defining the command-line arguments and providing a parser for them."""

from __future__ import annotations

import argparse
from typing import List, Optional

import semver

from docvfs.constants import PROTOCOL_VERSION, VERSION


class Arguments(argparse.Namespace):
    """Parsed command-line arguments."""

    command: str

    endpoint: str

    protocol: semver.VersionInfo

    config: str
    remotes: Optional[str]

    token: Optional[str]
    workers: int

    debug: bool
    verbose: int

    @classmethod
    def parse(cls, args: Optional[List[str]] = None) -> Arguments:
        """
        Parse command-line arguments from the given list of strings.

        Defaults to sys.argv if none are specified.
        """
        return cls._get_parser().parse_args(args, namespace=cls())

    @classmethod
    def _get_parser(cls) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            description="Expose remote storage as documents to a host application.",
            usage="docvfs [option...] {serve,version} ...",
        )

        parser.add_argument(
            "--version",
            action="version",
            version=f"%(prog)s {VERSION} (protocol {PROTOCOL_VERSION})",
            help="show the program version and protocol version",
        )

        # Hidden flag to indicate the protocol version that the host expects
        parser.add_argument(
            "--protocol",
            type=cls._parse_version,
            default=semver.VersionInfo.parse(PROTOCOL_VERSION),
            help=argparse.SUPPRESS,
        )

        # Path to (optional) config file
        parser.add_argument(
            "--config",
            type=str,
            help="path to config file (default is ~/.docvfs/config)",
            default="~/.docvfs/config",
        )

        # Enable debug output for development
        parser.add_argument(
            "--debug", action="store_true", help="enable debug information"
        )
        parser.add_argument(
            "-v",
            "--verbose",
            action="count",
            default=0,
            help="increase log verbosity (can be repeated)",
        )

        subparsers = parser.add_subparsers(dest="command", metavar="command")
        subparsers.required = True

        serve = subparsers.add_parser("serve", help="serve the bridge over RPC")
        serve.add_argument(
            "endpoint",
            type=str,
            help="ZeroMQ endpoint to listen on, like ipc:///tmp/docvfs.sock",
        )
        serve.add_argument(
            "--remotes",
            type=str,
            help="path to remote config file (overrides the config file)",
        )
        serve.add_argument(
            "--token", type=str, help="shared secret that clients must present"
        )
        serve.add_argument(
            "--workers",
            type=cls._parse_workers,
            help="number of RPC worker threads",
            default=4,
        )

        subparsers.add_parser("version", help="show the program version")

        return parser

    @staticmethod
    def _parse_version(arg: str) -> semver.VersionInfo:
        try:
            return semver.VersionInfo.parse(arg)
        except (ValueError, TypeError):
            raise argparse.ArgumentTypeError("expected semantic version string")

    @staticmethod
    def _parse_workers(arg: str) -> int:
        try:
            val = int(arg)
            assert val > 0
            return val
        except (ValueError, AssertionError):
            raise argparse.ArgumentTypeError("expected number > 0")
