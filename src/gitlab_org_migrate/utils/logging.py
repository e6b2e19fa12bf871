"""Logging utilities for GitLab Org Migrate."""

import sys
from pathlib import Path
from typing import Optional, Union

from loguru import logger

FILE_FORMAT = (
    '{time:YYYY-MM-DD HH:mm:ss} | '
    '{level: <8} | '
    '{name}:{function}:{line} | '
    '{message}'
)


def setup_logging(
    level: str = 'INFO',
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
) -> None:
    """Setup logging configuration using loguru.

    Args:
        level: Log level (DEBUG, INFO, SUCCESS, WARNING, ERROR, CRITICAL)
        log_file: Optional log file path
        log_format: Optional custom log format
    """
    # Remove default handler
    logger.remove()

    # Default format if not provided
    if log_format is None:
        log_format = (
            '<green>{time:YYYY-MM-DD HH:mm:ss}</green> | '
            '<level>{level: <8}</level> | '
            '<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | '
            '<level>{message}</level>'
        )

    # Add console handler
    logger.add(
        sys.stderr,
        format=log_format,
        level=level,
        colorize=True,
        backtrace=True,
        diagnose=False,
    )

    if log_file:
        add_file_sink(log_file, level=level)

    logger.debug(f'Logging initialized with level: {level}')


def add_file_sink(log_file: Union[str, Path], level: str = 'DEBUG') -> int:
    """Attach a plain-text file handler.

    Args:
        log_file: Log file path
        level: Minimum level written to the file

    Returns:
        Handler ID, for ``logger.remove``
    """
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    handler_id = logger.add(
        str(log_path),
        format=FILE_FORMAT,
        level=level,
        rotation='10 MB',
        retention='30 days',
        compression='gz',
        backtrace=True,
        diagnose=False,
    )
    logger.info(f'Log file: {log_path}')
    return handler_id
