"""
Logging configuration for the offline resource cache.

Provides structured logging with per-request correlation IDs, centralized
configuration, and multiple output formats for different environments.
Modules log through structlog; structlog output is routed through the
standard library handlers configured here.
"""

import json
import logging
import sys
import traceback
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union
from uuid import uuid4

import structlog

from .config import OfflineCacheSettings, get_settings


# Context variables for correlation tracking
request_id: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
worker_version: ContextVar[Optional[str]] = ContextVar('worker_version', default=None)


class CorrelationFilter(logging.Filter):
    """Add request correlation context to log records."""

    def filter(self, record):
        record.request_id = request_id.get() or 'no-request'
        record.worker_version = worker_version.get() or 'unknown'
        return True


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(self, include_extra=True):
        super().__init__()
        self.include_extra = include_extra

    def format(self, record):
        """Format log record as JSON."""
        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'request_id': getattr(record, 'request_id', 'no-request'),
            'worker_version': getattr(record, 'worker_version', 'unknown'),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if record.exc_info:
            log_entry['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': traceback.format_exception(*record.exc_info)
            }

        if self.include_extra:
            for key, value in record.__dict__.items():
                if key in log_entry or key.startswith('_') or key in _RECORD_ATTRS:
                    continue
                try:
                    json.dumps(value)
                    log_entry[key] = value
                except (TypeError, ValueError):
                    log_entry[key] = str(value)

        return json.dumps(log_entry, default=str)


_RECORD_ATTRS = set(vars(logging.LogRecord('', 0, '', 0, '', (), None))) | {'message', 'asctime'}


class ColoredFormatter(logging.Formatter):
    """Colored formatter for console output."""

    COLORS = {
        'DEBUG': '\033[36m',      # Cyan
        'INFO': '\033[32m',       # Green
        'WARNING': '\033[33m',    # Yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[35m',   # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        color = self.COLORS.get(record.levelname, '')
        formatted = super().format(record)
        request_info = f"[{getattr(record, 'request_id', 'no-request')[:8]}]"
        return f"{color}{formatted}{self.RESET} {request_info}"


class LoggingConfig:
    """Centralized logging configuration."""

    DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    @classmethod
    def setup_logging(
        cls,
        level: Union[str, int] = logging.INFO,
        format_type: str = 'colored',
        log_file: Optional[str] = None,
        console_output: bool = True,
    ):
        """
        Setup logging for the worker and its host.

        Args:
            level: Logging level
            format_type: 'json', 'colored', or 'standard'
            log_file: Optional log file path (always JSON)
            console_output: Enable console output
        """
        if log_file:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)

        root_logger = logging.getLogger()
        root_logger.setLevel(level)
        root_logger.handlers.clear()

        correlation_filter = CorrelationFilter()

        if console_output:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(level)
            console_handler.setFormatter(cls._formatter(format_type))
            console_handler.addFilter(correlation_filter)
            root_logger.addHandler(console_handler)

        if log_file:
            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(level)
            file_handler.setFormatter(JSONFormatter())
            file_handler.addFilter(correlation_filter)
            root_logger.addHandler(file_handler)

        # Third-party loggers (reduce noise)
        for logger_name in ('aiohttp', 'redis', 'asyncio'):
            logging.getLogger(logger_name).setLevel(logging.WARNING)

        structlog.configure(
            processors=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.add_log_level,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.KeyValueRenderer(key_order=['event'], sort_keys=True),
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

        structlog.get_logger(__name__).info(
            "Logging system initialized",
            level=level,
            format_type=format_type,
            log_file=log_file,
        )

    @classmethod
    def _formatter(cls, format_type: str) -> logging.Formatter:
        if format_type == 'json':
            return JSONFormatter()
        if format_type == 'colored':
            return ColoredFormatter(cls.DEFAULT_FORMAT)
        return logging.Formatter(cls.DEFAULT_FORMAT)


class RequestContext:
    """Context manager binding a request id for one intercepted fetch."""

    def __init__(self, request_id_value: str = None, version: str = None):
        self.request_id_value = request_id_value or str(uuid4())
        self.version = version
        self.request_token = None
        self.version_token = None

    def __enter__(self):
        self.request_token = request_id.set(self.request_id_value)
        if self.version:
            self.version_token = worker_version.set(self.version)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.request_token:
            request_id.reset(self.request_token)
        if self.version_token:
            worker_version.reset(self.version_token)


def get_request_id() -> Optional[str]:
    """Get current request ID."""
    return request_id.get()


def initialize_logging(settings: Optional[OfflineCacheSettings] = None):
    """Initialize logging from settings."""
    settings = settings or get_settings()

    if settings.is_production():
        LoggingConfig.setup_logging(
            level=settings.log_level.value,
            format_type='json',
            log_file='logs/offline-cache.log',
        )
    else:
        LoggingConfig.setup_logging(
            level=settings.log_level.value,
            format_type=settings.log_format,
        )
