"""
Logging for synlauncher.

A single `synlauncher` logger writes to the console through Rich. Rotating
file output under the launcher's log directory is attached on demand by the
CLI once the configuration is known.
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from rich.logging import RichHandler

from synlauncher.constants import (
    DEBUG_LOG_FORMAT,
    INFO_LOG_FORMAT,
    LOG_DATE_FORMAT,
    LOG_FILE_BACKUP_COUNT,
    LOG_FILE_MAX_BYTES,
    LOG_FILE_NAME,
    LOG_LEVEL_ENV_VAR,
    LOGGER_NAME,
)

logger = logging.getLogger(LOGGER_NAME)

# At most one file handler is attached at a time
_file_handler: Optional[RotatingFileHandler] = None

_CONSOLE_FORMAT = "%(message)s"


def _resolve_level(level_name: str) -> Optional[int]:
    level = getattr(logging, str(level_name).upper(), None)
    return level if isinstance(level, int) else None


def _formatter_for(handler: logging.Handler, level: int) -> logging.Formatter:
    # Rich renders time and level itself
    if isinstance(handler, RichHandler):
        return logging.Formatter(_CONSOLE_FORMAT)
    fmt = DEBUG_LOG_FORMAT if level < logging.INFO else INFO_LOG_FORMAT
    return logging.Formatter(fmt, datefmt=LOG_DATE_FORMAT)


def set_log_level(level_name: str) -> None:
    """
    Apply `level_name` to the logger and every attached handler.

    Unknown names are reported and ignored. File handlers switch to the
    verbose format (with the logger name) below INFO.
    """
    level = _resolve_level(level_name)
    if level is None:
        logger.warning(f"Ignoring unknown log level '{level_name}'")
        return

    logger.setLevel(level)
    for handler in logger.handlers:
        handler.setLevel(level)
        handler.setFormatter(_formatter_for(handler, level))
    logger.log(level, f"Logging at {logging.getLevelName(level)}")


def add_file_logging(log_dir_path: Path, level_name: str = "INFO") -> None:
    """
    Write log records to a rotating `synlauncher.log` inside `log_dir_path`.

    The directory is created when missing. Calling this again swaps the
    previous file handler for a new one. Unknown level names fall back to
    INFO.

    Raises:
        OSError: If the directory or the log file cannot be created.
    """
    global _file_handler
    if _file_handler is not None:
        logger.removeHandler(_file_handler)
        _file_handler.close()
        _file_handler = None

    level = _resolve_level(level_name)
    if level is None:
        logger.warning(f"Unknown file log level '{level_name}', using INFO")
        level = logging.INFO

    log_dir_path.mkdir(parents=True, exist_ok=True)
    log_file = log_dir_path / LOG_FILE_NAME
    handler = RotatingFileHandler(
        log_file,
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUP_COUNT,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(_formatter_for(handler, level))
    logger.addHandler(handler)
    _file_handler = handler
    logger.debug(f"Writing {logging.getLevelName(level)} logs to {log_file}")


def _initialize_logger() -> None:
    """Reset the logger to a single Rich console handler at the environment's level."""
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = RichHandler(
        rich_tracebacks=True,
        show_path=False,
        markup=False,
        log_time_format=LOG_DATE_FORMAT,
    )
    logger.addHandler(console)

    requested = os.environ.get(LOG_LEVEL_ENV_VAR, "INFO")
    level = _resolve_level(requested)
    if level is None:
        logger.warning(f"Ignoring {LOG_LEVEL_ENV_VAR}={requested!r}, using INFO")
        level = logging.INFO
    logger.setLevel(level)
    console.setLevel(level)
    console.setFormatter(_formatter_for(console, level))


_initialize_logger()
