"""Centralized logging configuration using loguru."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"

# Remove default handler
logger.remove()

# Console handler until configure_logging() replaces it
_console_sink_id = logger.add(sys.stderr, level="INFO", format=CONSOLE_FORMAT, colorize=True)


class InterceptHandler(logging.Handler):
    """Route stdlib ``logging`` records into loguru sinks."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find the caller outside the logging module so {name}:{line} is useful
        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def configure_logging(
    log_dir: Optional[Path] = None,
    level: str = "INFO",
    rotation: str = "50 MB",
    retention: str = "10 days",
    intercept_stdlib: bool = True,
) -> None:
    """Install console and file sinks.

    Args:
        log_dir: Directory for rotating log files (console only if None)
        level: Console log level
        rotation: Rotation policy for the main log file
        retention: Retention policy for the main log file
        intercept_stdlib: Forward stdlib logging records to loguru
    """
    global _console_sink_id

    logger.remove()
    _console_sink_id = logger.add(sys.stderr, level=level, format=CONSOLE_FORMAT, colorize=True)

    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)

        logger.add(
            log_dir / "replay_{time}.log",
            rotation=rotation,
            retention=retention,
            level="DEBUG",
            format=FILE_FORMAT,
            enqueue=True,  # Thread-safe logging
        )

        # Add error-specific log file
        logger.add(
            log_dir / "errors_{time}.log",
            rotation="10 MB",
            retention="30 days",
            level="ERROR",
            format=FILE_FORMAT,
            enqueue=True,
        )

    if intercept_stdlib:
        logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)


def get_logger(name: Optional[str] = None):
    """Get a logger instance with the given name.

    Args:
        name: Module name for the logger (usually __name__)

    Returns:
        Configured logger instance
    """
    if name:
        return logger.bind(name=name)
    return logger


# Export configured logger
__all__ = ["logger", "get_logger", "configure_logging", "InterceptHandler"]
