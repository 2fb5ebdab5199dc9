"""Logging configuration for the ETS bridge.

Uses Python's standard logging module with support for:
- File logging, enabled by config or ZED_ETS_LANG_SERVER_LOG=true
- Verbosity levels: error(0), warning(1), info(2), verbose(3), trace(4)
- Errors always mirrored to stderr, never to stdout (stdout is the LSP stream)
- Structured format with timestamps and level names
"""

from __future__ import annotations

import logging
import os
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ets_bridge.config import Config

# Custom log levels
TRACE = 5
VERBOSE = 15

logging.addLevelName(TRACE, "TRACE")
logging.addLevelName(VERBOSE, "VERBOSE")

# Module-level logger
logger = logging.getLogger("ets_bridge")

_initialized = False

# Map --verbose=N to log levels (0=errors only, 4=everything)
_VERBOSITY_MAP = {
    0: logging.ERROR,
    1: logging.WARNING,
    2: logging.INFO,
    3: VERBOSE,
    4: TRACE,
}


class _LowercaseLevelFormatter(logging.Formatter):
    """Formatter that emits lowercase level names."""

    def format(self, record: logging.LogRecord) -> str:
        record.levelname = record.levelname.lower()
        return super().format(record)


def setup_logging(config: Config | None = None) -> None:
    """Initialize logging based on configuration.

    Call this once at startup. Subsequent calls are no-ops.

    The log file is written only when file logging is enabled. Errors are
    always written to stderr as well, whether or not the file is enabled.

    Args:
        config: Bridge configuration; None means errors-to-stderr only.
    """
    global _initialized
    if _initialized:
        return
    _initialized = True

    verbose = config.verbose if config else 2
    log_level = _VERBOSITY_MAP.get(verbose, TRACE)
    logger.setLevel(log_level)

    # Format: YYYY-MM-DD HH:MM:SS level: message
    formatter = _LowercaseLevelFormatter(
        "%(asctime)s %(levelname)s: %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
    )

    if config and config.log_enabled and config.log_file:
        log_path = os.path.expanduser(str(config.log_file))
        try:
            file_handler = logging.FileHandler(log_path, mode="w", encoding="utf-8")
            file_handler.setLevel(log_level)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except OSError as e:
            print(f"[ets-bridge] Failed to open log file: {e}", file=sys.stderr)

    _add_stderr_handler(formatter, logging.ERROR)


def _add_stderr_handler(formatter: logging.Formatter, level: int = logging.DEBUG) -> None:
    """Add a stderr handler to the logger."""
    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(level)
    stderr_handler.setFormatter(formatter)
    logger.addHandler(stderr_handler)


def close_logging() -> None:
    """Flush and close every handler attached to the bridge logger."""
    global _initialized
    for handler in list(logger.handlers):
        try:
            handler.flush()
            handler.close()
        finally:
            logger.removeHandler(handler)
    _initialized = False


def get_logger(name: str | None = None) -> logging.Logger:
    """Get a logger instance.

    Args:
        name: Optional name for a child logger (e.g., "framing", "bridge").
              If None, returns the root ets_bridge logger.

    Returns:
        A configured logger instance.
    """
    if name:
        return logger.getChild(name)
    return logger
