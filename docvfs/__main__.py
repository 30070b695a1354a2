"""
Module implementing the command-line interface and invoking the main logic of docvfs.

docvfs is started by a host application (like a document provider) that has no
knowledge of remote storage protocols. The host launches "docvfs serve" with an
endpoint and then talks to the bridge over RPC: listing, reading and writing documents,
managing the remote configuration and shutting down VFS instances when it's done.
"""

import os.path
import signal
import sys
from typing import List, NoReturn, Optional

from semver import VersionInfo

from docvfs.bridge import Bridge
from docvfs.config import Config
import docvfs.constants as constants
from docvfs.logger import log, set_verbosity
import docvfs.rpc as rpc
from docvfs.service import BridgeService
from .args import Arguments


def _serve(args: Arguments) -> None:
    """Serve a bridge over RPC until interrupted or terminated."""
    config = Config.load(os.path.expanduser(args.config))

    if args.remotes:
        config.remotes.path = os.path.expanduser(args.remotes)

    bridge = Bridge(config)
    bridge.init()

    server = rpc.Server(BridgeService(bridge), args.token, args.workers)

    # The host stops docvfs with SIGTERM when it no longer needs it
    signal.signal(signal.SIGTERM, lambda signum, frame: server.stop())

    try:
        log.info(f"serving on {args.endpoint}")
        server.serve(args.endpoint)
    finally:
        bridge.shutdown()


def main(arguments: Optional[List[str]] = None) -> NoReturn:
    """
    Run docvfs with the given arguments.

    Defaults to parsing command-line arguments from sys.argv if none are specified.
    """
    # Parse command-line arguments.
    args = Arguments.parse(arguments)

    # Check if the host and docvfs use compatible protocols.
    if args.protocol.major != VersionInfo.parse(constants.PROTOCOL_VERSION).major:
        log.error(
            f"incompatible protocol ({args.protocol} != {constants.PROTOCOL_VERSION})"
        )
        sys.exit(constants.DOCVFS_ERROR_CODE)

    # Configure logging.
    set_verbosity(2 if args.debug else args.verbose)

    if args.command == "version":
        print(f"docvfs {constants.VERSION} (protocol {constants.PROTOCOL_VERSION})")
        sys.exit(0)

    try:
        _serve(args)
    except KeyboardInterrupt:
        sys.exit(128 + signal.SIGINT)
    except Exception as e:
        log.error(f"failed to serve: {e}")
        sys.exit(constants.DOCVFS_ERROR_CODE)

    sys.exit(0)


if __name__ == "__main__":
    main()
