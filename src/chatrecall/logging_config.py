"""
Logging configuration for chatrecall.

Provides centralized logging setup with rotating file output under the
XDG state directory and optional console output.
"""

import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from chatrecall.config import settings

STANDARD_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class JsonFormatter(logging.Formatter):
    """Render log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record, DATE_FORMAT),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _build_formatter(log_format: str) -> logging.Formatter:
    if log_format == "json":
        return JsonFormatter()
    return logging.Formatter(fmt=STANDARD_FORMAT, datefmt=DATE_FORMAT)


def setup_logging(
    context: str = "app",
    log_dir: Optional[Path] = None,
    level: Optional[str] = None,
) -> logging.Logger:
    """
    Configure the ``chatrecall`` logger hierarchy.

    Args:
        context: Name used for the log file (``<context>.log``)
        log_dir: Directory for log files (defaults to settings.log_directory)
        level: Log level name (defaults to settings.log_level)

    Returns:
        The configured package logger

    Raises:
        PermissionError: If the log directory cannot be created
    """
    logger = logging.getLogger("chatrecall")
    logger.setLevel(getattr(logging, (level or settings.log_level).upper(), logging.INFO))

    # Avoid adding duplicate handlers if already configured
    if logger.handlers:
        return logger

    formatter = _build_formatter(settings.log_format)

    if settings.log_file_enabled:
        directory = log_dir or settings.log_directory
        directory.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            directory / f"{context}.log",
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if settings.log_console_enabled:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    return logger
