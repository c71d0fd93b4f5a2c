"""
Logging configuration and utilities
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Optional, Set


REDACTED = "***REDACTED***"


class ColoredFormatter(logging.Formatter):
    """Colored console output formatter"""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
        'RESET': '\033[0m'
    }

    def format(self, record):
        color = self.COLORS.get(record.levelname, self.COLORS['RESET'])
        reset = self.COLORS['RESET']

        timestamp = datetime.fromtimestamp(record.created).strftime('%H:%M:%S')

        formatted = f"{color}[{timestamp}] {record.levelname:8}{reset} | {record.name} | {record.getMessage()}"

        if record.exc_info:
            formatted += f"\n{self.formatException(record.exc_info)}"

        return formatted


class SecretRedactionFilter(logging.Filter):
    """
    Masks registered secrets in every log record

    Attached to handlers, so records from any logger (including third-party
    libraries) pass through it before being emitted.
    """

    _secrets: Set[str] = set()

    @classmethod
    def register_secret(cls, secret: Optional[str]) -> None:
        """Register a value that must never reach a log sink"""
        if secret and len(secret) >= 4:
            cls._secrets.add(secret)

    @classmethod
    def clear(cls) -> None:
        cls._secrets.clear()

    @classmethod
    def redact(cls, text: str) -> str:
        for secret in cls._secrets:
            if secret in text:
                text = text.replace(secret, REDACTED)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        if not self._secrets:
            return True

        message = record.getMessage()
        redacted = self.redact(message)

        if record.exc_info and record.exc_info[1] is not None:
            # Formatted tracebacks would otherwise bypass the message rewrite
            exc_text = logging.Formatter().formatException(record.exc_info)
            redacted = f"{redacted}\n{self.redact(exc_text)}"
            record.exc_info = None
            record.exc_text = None

        if redacted != message:
            record.msg = redacted
            record.args = None

        return True


def mask_value(value: Optional[str], visible: int = 4) -> str:
    """Mask a credential for display, keeping only the last few characters"""
    if not value:
        return ""
    if len(value) <= visible * 2:
        return "*" * len(value)
    return f"{'*' * (len(value) - visible)}{value[-visible:]}"


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    max_size_mb: int = 100,
    backup_count: int = 5
) -> logging.Logger:
    """
    Setup logging configuration

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path for file logging
        max_size_mb: Maximum log file size before rotation
        backup_count: Number of backup files to keep

    Returns:
        Root logger instance
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    root_logger.handlers.clear()

    redaction = SecretRedactionFilter()

    # Console handler with colors
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG)
    console_handler.setFormatter(ColoredFormatter())
    console_handler.addFilter(redaction)
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s'
        ))
        file_handler.addFilter(redaction)
        root_logger.addHandler(file_handler)

    # aiohttp access/client logs are noisy at DEBUG
    logging.getLogger("aiohttp").setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Get a named logger"""
    return logging.getLogger(name)
