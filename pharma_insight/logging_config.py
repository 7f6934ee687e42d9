"""Application-wide logging configuration using loguru.

Intercepts all standard-library logging (from uvicorn, httpx, etc.)
and routes it through loguru.
"""

import inspect
import logging
import sys

from loguru import logger

from pharma_insight.config import LOG_LEVEL


class _InterceptHandler(logging.Handler):
    """Redirect standard logging messages to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = inspect.currentframe(), 0
        while frame:
            filename = frame.f_code.co_filename
            is_logging = filename == logging.__file__
            is_frozen = "importlib" in filename and "_bootstrap" in filename
            if depth > 0 and not (is_logging or is_frozen):
                break
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(level: str = LOG_LEVEL) -> None:
    """Make loguru the only log sink; stdlib loggers are forwarded to it."""
    logger.remove()
    logger.add(
        sys.stderr,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
            "<level>{message}</level>"
        ),
        colorize=True,
        level=level.upper(),
    )

    logging.basicConfig(handlers=[_InterceptHandler()], level=0, force=True)
