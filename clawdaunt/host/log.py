"""Loguru setup for the host process.

The embedded control server (uvicorn) and the outbound HTTP client (httpx)
log through the standard library.  Their loggers are routed into loguru so
the host writes a single stream to stderr.
"""

from __future__ import annotations

import logging
import sys

from loguru import logger

LOG_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)

# Standard-library loggers written by the host's libraries, with the floor for each.
# Every tunnel health check is an httpx request.
LIBRARY_LOGGERS: dict[str, int] = {
    "uvicorn.error": logging.WARNING,
    "uvicorn.access": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "asyncio": logging.WARNING,
}


class _InterceptHandler(logging.Handler):
    """Bridge stdlib logging records into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Report the library's call site, not this handler.
        frame = logging.currentframe()
        depth = 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def route_library_logging() -> None:
    """Send each of ``LIBRARY_LOGGERS`` to loguru at its floor level."""
    handler = _InterceptHandler()
    for name, floor in LIBRARY_LOGGERS.items():
        stdlib_logger = logging.getLogger(name)
        stdlib_logger.handlers = [handler]
        stdlib_logger.setLevel(floor)
        stdlib_logger.propagate = False


def setup_logging(level: str = "INFO") -> None:
    """Make loguru's stderr sink the host's only log output.

    Call this once at process startup, before any embedded server starts.
    """
    level = level.upper()

    logger.remove()
    logger.add(sys.stderr, level=level, format=LOG_FORMAT, diagnose=False)
    route_library_logging()

    logger.info("Logging initialised (level={})", level)
