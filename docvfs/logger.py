"""Module containing utilities for logging, along with a standard logger."""

import logging
from typing import Any, Optional

# Level between INFO and WARNING for messages that should be shown by default.
NOTICE = 25

logging.addLevelName(NOTICE, "NOTICE")


def _get_logger(name: Optional[str] = "docvfs") -> logging.Logger:
    stderrOutput = logging.StreamHandler()

    formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")
    stderrOutput.setFormatter(formatter)

    logger = logging.getLogger(name)
    logger.addHandler(stderrOutput)
    logger.setLevel(NOTICE)

    return logger


def summarize(obj: Any, max_length: int = 255) -> str:
    """Return a stringified representation of the object up to the given length."""
    stringified_obj = str(obj)

    if len(stringified_obj) <= max_length:
        return stringified_obj
    else:
        return stringified_obj[: max_length - 3] + "..."


def notice(msg: str) -> None:
    """Log a message at the NOTICE level."""
    log.log(NOTICE, msg)


def set_verbosity(verbosity: int) -> None:
    """
    Set the logging verbosity of the default logger.

    0 (or less) only shows notices and above, 1 adds informational messages and 2 (or
    more) enables debug output.
    """
    if verbosity >= 2:
        log.setLevel(logging.DEBUG)
    elif verbosity == 1:
        log.setLevel(logging.INFO)
    else:
        log.setLevel(NOTICE)


# Default logger
log = _get_logger()
