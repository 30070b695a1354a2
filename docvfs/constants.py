"""Module defining various global constants."""

# docvfs version
VERSION = "1.0.0"

# docvfs RPC protocol
# The major version must be identical on the host and the bridge.
PROTOCOL_VERSION = "1.0.0"

# Special exit code for when docvfs itself fails.
DOCVFS_ERROR_CODE = 254

# Prefix of all keys that docvfs stores in a remote's configuration section.
OPTION_PREFIX = "docvfs:"

# Prefix of the keys that override VFS options for a specific remote.
VFS_OPTION_PREFIX = OPTION_PREFIX + "vfs:"

# Deprecated boolean flag that used to toggle VFS content caching per remote.
LEGACY_VFS_CACHING_KEY = OPTION_PREFIX + "vfs_caching"

# Seconds to wait for pending uploads when a VFS instance is evicted.
WAIT_FOR_WRITERS_TIMEOUT = 60.0

# Write-back delay used while a VFS instance is being constructed, so that resuming
# uploads of leftover dirty files never blocks construction.
INIT_WRITE_BACK = 1.0

# Local redirect listener used by OAuth authorization flows.
AUTHORIZE_URL = "http://127.0.0.1:53682/"
