"""
Logging setup for the hubness toolkit.

Library modules get their logger through get_logger() so that all of them
share one handler and format. The experiment runners keep printing their
progress lines to stdout; this logger is for the library itself.
"""

import logging
import os
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
DATE_FORMAT = "%H:%M:%S"
ROOT_LOGGER_NAME = "hubness_core"

_configured = False


def _configure_root(level: Optional[int] = None) -> None:
    global _configured
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if level is None:
        level_name = os.environ.get("HUBNESS_LOG_LEVEL", "WARNING").upper()
        level = getattr(logging, level_name, logging.WARNING)
    root.setLevel(level)
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
        root.addHandler(handler)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """
    Returns a logger below the 'hubness_core' namespace.

    The level defaults to the HUBNESS_LOG_LEVEL environment variable
    (WARNING when unset).
    """
    if not _configured:
        _configure_root()
    if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def set_log_level(level: int) -> None:
    """Changes the level of every toolkit logger at once (e.g. from a runner)."""
    _configure_root(level)
