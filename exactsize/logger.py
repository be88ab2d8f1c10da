"""
Centralized logging for ExactSize.
Library code logs to the "exactsize" logger; file output is opt-in.
"""

import logging
from pathlib import Path
from typing import Optional, Union

LOGGER_NAME = "exactsize"
LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"
DEFAULT_LOG_FILE = "exactsize.log"

_file_handler: Optional[logging.FileHandler] = None


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Get the package logger or one of its children."""
    if name:
        return logging.getLogger(f"{LOGGER_NAME}.{name}")
    return logging.getLogger(LOGGER_NAME)


def setup_file_logging(
    log_file: Union[str, Path, None] = None,
    level: int = logging.DEBUG,
) -> Path:
    """
    Attach a file handler to the package logger.

    The log file is overwritten on each run.

    Args:
        log_file: Path of the log file (defaults to exactsize.log in cwd)
        level: Minimum level written to the file

    Returns:
        Path of the log file in use
    """
    global _file_handler

    log_path = Path(log_file) if log_file else Path.cwd() / DEFAULT_LOG_FILE
    logger = get_logger()

    close_logging()

    _file_handler = logging.FileHandler(log_path, mode='w', encoding="utf-8")
    _file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    _file_handler.setLevel(level)
    logger.addHandler(_file_handler)
    logger.setLevel(min(level, logger.level or level))
    return log_path


def close_logging() -> None:
    """Detach and close the file handler, if any."""
    global _file_handler
    if _file_handler is not None:
        get_logger().removeHandler(_file_handler)
        _file_handler.close()
        _file_handler = None
