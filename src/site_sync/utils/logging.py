"""Logging setup for the sync engine and the remote agent."""

import logging
import sys
from pathlib import Path
from typing import Optional

from loguru import logger

CONSOLE_FORMAT = (
    '<green>{time:YYYY-MM-DD HH:mm:ss}</green> | '
    '<level>{level: <8}</level> | '
    '<cyan>{extra[component]}</cyan> | '
    '<level>{message}</level>'
)

FILE_FORMAT = (
    '{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[component]} | '
    '{name}:{function}:{line} | {message}'
)

# Libraries that log through the standard logging module
NOISY_LIBRARIES = ('paramiko', 'aiohttp.access', 'urllib3')


def setup_logging(
    level: str = 'INFO',
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
) -> None:
    """Route site-sync records to stderr and, optionally, a rotating file.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file path
        log_format: Optional console format; the file keeps its own
    """
    logger.remove()
    logger.configure(extra={'component': 'site-sync'})

    logger.add(
        sys.stderr,
        format=log_format or CONSOLE_FORMAT,
        level=level,
        colorize=True,
        backtrace=True,
        diagnose=False,
    )

    if log_file:
        _add_file_sink(log_file, level)

    # Library records below WARNING are dropped unless debugging
    library_level = logging.DEBUG if level == 'DEBUG' else logging.WARNING
    for name in NOISY_LIBRARIES:
        logging.getLogger(name).setLevel(library_level)

    logger.debug(f'Logging initialized with level {level}')


def _add_file_sink(log_file: str, level: str) -> None:
    Path(log_file).parent.mkdir(parents=True, exist_ok=True)
    logger.add(
        log_file,
        format=FILE_FORMAT,
        level=level,
        rotation='10 MB',
        retention='30 days',
        compression='gz',
        enqueue=True,
        diagnose=False,
    )
    logger.debug(f'Writing log file {log_file}')


def get_logger(component: str):
    """Logger whose records carry ``component``."""
    return logger.bind(component=component)
