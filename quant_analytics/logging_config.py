"""
Centralized logging configuration for the quant analytics engine.

Engine modules only call `logging.getLogger(__name__)`; applications (and
the compute worker process) call setup_logging / configure_default_logging
once to attach handlers.

Environment variables:
- LOG_LEVEL:   DEBUG, INFO, WARNING, ERROR, CRITICAL (default INFO)
- LOG_FILE:    path of a rotating log file (default none)
- LOG_JSON:    "true" for one JSON object per line
- LOG_CONSOLE: "false" to silence stdout
"""

import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import Optional

PACKAGE_LOGGER = "quant_analytics"


class ColoredFormatter(logging.Formatter):
    """Console formatter that colours the level name."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
        "RESET": "\033[0m",
    }

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        if levelname in self.COLORS:
            record.levelname = f"{self.COLORS[levelname]}{levelname}{self.COLORS['RESET']}"
        try:
            return super().format(record)
        finally:
            # Other handlers share the record
            record.levelname = levelname


def _env_flag(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").lower() == "true"


def setup_logging(
    name: Optional[str] = PACKAGE_LOGGER,
    level: Optional[str] = None,
    log_file: Optional[str] = None,
    console: bool = True,
    json_format: bool = False,
    rotation: bool = True,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
) -> logging.Logger:
    """
    Configure a logger (the package logger by default).

    Args:
        name: Logger name; None configures the root logger
        level: Log level name; falls back to LOG_LEVEL, then INFO
        log_file: Log file path; falls back to LOG_FILE, then no file
        console: Attach a stdout handler
        json_format: Emit JSON lines instead of the human-readable format
        rotation: Rotate the log file at max_bytes
        max_bytes: Maximum log file size before rotation
        backup_count: Number of rotated files to keep

    Returns:
        The configured logger

    Example:
        >>> logger = setup_logging(level="DEBUG", log_file="logs/quant_analytics.log")
        >>> logger.info("Engine started")
    """
    logger = logging.getLogger(name)

    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")
    if log_file is None:
        log_file = os.getenv("LOG_FILE")

    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logger.setLevel(numeric_level)
    logger.handlers.clear()

    if json_format:
        log_format = (
            '{"timestamp": "%(asctime)s", "level": "%(levelname)s", '
            '"logger": "%(name)s", "process": "%(processName)s", '
            '"function": "%(funcName)s", "line": %(lineno)d, '
            '"message": "%(message)s"}'
        )
        date_format = "%Y-%m-%dT%H:%M:%S"
    else:
        log_format = (
            "%(asctime)s - %(name)s - %(levelname)s - "
            "%(processName)s:%(funcName)s:%(lineno)d - %(message)s"
        )
        date_format = "%Y-%m-%d %H:%M:%S"

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(numeric_level)
        if json_format:
            console_handler.setFormatter(logging.Formatter(log_format, date_format))
        else:
            console_handler.setFormatter(ColoredFormatter(log_format, date_format))
        logger.addHandler(console_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        if rotation:
            file_handler = logging.handlers.RotatingFileHandler(
                log_file,
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
        else:
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(logging.Formatter(log_format, date_format))
        logger.addHandler(file_handler)

    if name is not None:
        logger.propagate = False

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Logger for `name`, configuring the package logger on first use.

    Example:
        >>> logger = get_logger(__name__)
    """
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    if not package_logger.handlers and not logging.getLogger().handlers:
        setup_logging()
    return logging.getLogger(name)


def log_exception(
    logger: logging.Logger,
    exc: Exception,
    message: str = "An exception occurred",
    level: int = logging.ERROR,
) -> None:
    """Log `exc` with its traceback under a context message."""
    logger.log(level, f"{message}: {exc}", exc_info=exc)


def configure_default_logging() -> logging.Logger:
    """
    Configure the package logger from environment variables.

    Same variables as setup_logging, but LOG_FILE defaults to
    logs/quant_analytics.log.
    """
    level = os.getenv("LOG_LEVEL", "INFO")
    log_file = os.getenv("LOG_FILE", "logs/quant_analytics.log")
    logger = setup_logging(
        level=level,
        log_file=log_file,
        console=_env_flag("LOG_CONSOLE", True),
        json_format=_env_flag("LOG_JSON", False),
    )
    logger.info(f"Logging initialized: level={level} file={log_file}")
    return logger
