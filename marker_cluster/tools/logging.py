"""
Logging setup for the clustering engine and its worker process.

Methods:
    resolve_level: Turn a level name into a ``logging`` level, rejecting typos.
    setup_logging: Configure logging in the caller's process.
    setup_worker_logging: Configure logging inside a spawned worker process.
"""

import logging
from typing import Optional, Union

PACKAGE_LOGGER = "marker_cluster"
LOG_FORMAT = "%(asctime)s - %(processName)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def resolve_level(log_level: Optional[Union[str, int]]) -> int:
    """
    Resolve a level name (case-insensitive) or number.

    Raises:
        ValueError: If the name is not a standard logging level
    """
    if log_level is None:
        return logging.INFO
    if isinstance(log_level, int):
        return log_level

    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ValueError(
            f"Unknown log level '{log_level}'. Use DEBUG, INFO, WARNING, ERROR or CRITICAL"
        )
    return level


def setup_logging(
    log_level: Optional[Union[str, int]] = "INFO",
    log_file: Optional[str] = None,
) -> None:
    """
    Configure logging for an application using the engine.

    The root handler is installed only if none exists yet; the level is
    always applied to the ``marker_cluster`` logger.

    Args:
        log_level: Logging level (e.g., "INFO", "DEBUG", "WARNING").
        log_file: Path to an additional log file (optional).
    """
    level = resolve_level(log_level)
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=DATE_FORMAT)
    logging.getLogger(PACKAGE_LOGGER).setLevel(level)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        logging.getLogger().addHandler(file_handler)


def setup_worker_logging(log_level: Union[str, int]) -> None:
    """
    Configure logging in a freshly spawned worker process.

    A spawned process starts with an unconfigured root logger, so handlers
    are replaced outright and records carry the process name.
    """
    level = resolve_level(log_level)
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=DATE_FORMAT, force=True)
    logging.getLogger(PACKAGE_LOGGER).setLevel(level)
