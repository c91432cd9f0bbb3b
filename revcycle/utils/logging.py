"""
Logging Configuration
Structured logging with loguru for the service layer; the engine
services keep stdlib loggers, configured here at the same level.
Source: https://github.com/Delgan/loguru
"""

import logging
import sys
from pathlib import Path

from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"
ENGINE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s - %(message)s"

# Chatty third-party loggers held at WARNING unless we are debugging.
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def setup_logging(
    level: str = "INFO",
    log_file: str | None = None,
    json_logs: bool = False,
) -> None:
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file path, rotated at 100 MB
        json_logs: Serialize loguru records as JSON (production)
    """
    level = level.upper()

    logger.remove()
    if json_logs:
        logger.add(sys.stderr, format="{message}", level=level, serialize=True)
    else:
        logger.add(sys.stderr, format=CONSOLE_FORMAT, level=level, colorize=True)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            rotation="100 MB",
            retention="30 days",
            compression="zip",
            format=FILE_FORMAT,
            level=level,
            serialize=json_logs,
        )

    # Ledger, invoice and payment services log through logging.getLogger.
    logging.basicConfig(level=level, format=ENGINE_FORMAT, stream=sys.stderr)
    logging.getLogger("revcycle").setLevel(level)
    if level != "DEBUG":
        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logger.info(f"Logging configured: level={level}, json_logs={json_logs}")


def get_logger(name: str = __name__):  # type: ignore[no-untyped-def]
    """
    Get a loguru logger bound to ``name``.

    Example:
        >>> from revcycle.utils.logging import get_logger
        >>> logger = get_logger(__name__)
        >>> logger.info("Risk sync started")
    """
    return logger.bind(name=name)
