"""Structured logging setup using loguru."""
import sys
from pathlib import Path
from typing import Optional

from loguru import logger as _logger


LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)


def setup_logging(
    log_file: Optional[str] = "spotbot.log",
    level: str = "INFO",
    enable_console: bool = True,
) -> None:
    """Configure logging for the bot.

    Args:
        log_file: Path to the rotating log file, or None to skip file logging
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        enable_console: Whether to log to stdout as well
    """
    _logger.remove()

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        _logger.add(
            str(log_path),
            format=LOG_FORMAT,
            level=level,
            rotation="100 MB",
            retention="7 days",
        )

    if enable_console:
        _logger.add(
            sys.stdout,
            format=LOG_FORMAT,
            level=level,
            colorize=True,
        )


logger = _logger
