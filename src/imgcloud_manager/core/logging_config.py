"""Logging configuration for the resource manager."""

import json
import logging
import logging.handlers
import re
from datetime import datetime
from pathlib import Path
from typing import Optional


# Standard LogRecord attributes; anything else came in through ``extra``
_RECORD_FIELDS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename',
    'module', 'lineno', 'funcName', 'created', 'msecs', 'relativeCreated',
    'thread', 'threadName', 'processName', 'process', 'getMessage',
    'exc_info', 'exc_text', 'stack_info', 'taskName', 'message', 'asctime',
}


class RedactingFormatter(logging.Formatter):
    """Formatter that masks provider credentials in log messages."""

    _patterns = [
        re.compile(r'(Bearer\s+)([A-Za-z0-9_\-\.]{8,})', re.IGNORECASE),
        re.compile(r'(token["\']?\s*[:=]\s*["\']?)([A-Za-z0-9_\-\.]{8,})', re.IGNORECASE),
        re.compile(r'(redis://[^:/@\s]*:)([^@\s]+)(@)', re.IGNORECASE),
    ]

    def format(self, record):
        return self.redact(super().format(record))

    @classmethod
    def redact(cls, message: str) -> str:
        for pattern in cls._patterns:
            if pattern.groups == 3:
                message = pattern.sub(r'\1[REDACTED]\3', message)
            else:
                message = pattern.sub(r'\1[REDACTED]', message)
        return message


class StructuredFormatter(RedactingFormatter):
    """JSON formatter for structured logging."""

    def format(self, record):
        """Format record as JSON with structured fields."""
        log_entry = {
            'timestamp': datetime.utcnow().isoformat() + 'Z',
            'level': record.levelname,
            'logger': record.name,
            'message': self.redact(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RECORD_FIELDS:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    structured: bool = False,
    max_file_size: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5
) -> None:
    """Configure root logging for the manager process.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to log file (if None, logs to console only)
        structured: Whether to use structured JSON logging
        max_file_size: Maximum log file size before rotation
        backup_count: Number of backup files to keep
    """
    numeric_level = getattr(logging, log_level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f'Invalid log level: {log_level}')

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    if structured:
        formatter = StructuredFormatter()
    else:
        formatter = RedactingFormatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_file_size,
            backupCount=backup_count
        )
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    configure_library_loggers()

    root_logger.info("Logging configured", extra={
        'log_level': log_level,
        'log_file': log_file,
        'structured': structured
    })


def configure_library_loggers():
    """Configure logging for third-party libraries."""
    logging.getLogger('aiohttp.access').setLevel(logging.WARNING)
    logging.getLogger('aiohttp.client').setLevel(logging.WARNING)
    logging.getLogger('asyncio').setLevel(logging.WARNING)
    logging.getLogger('redis').setLevel(logging.WARNING)
