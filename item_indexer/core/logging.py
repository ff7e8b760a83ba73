"""
Logging configuration for the item indexer.

This module provides:
- Structured logging with JSON output
- Console and rotating file handlers
- Per-message correlation IDs
- Performance logging for bulk flushes
- Environment-specific log levels for third-party libraries
"""

import logging
import logging.handlers
import os
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger

from ..config import LoggingConfig, Environment


# Application logger
logger = logging.getLogger("item_indexer")

# Context variables for log correlation
correlation_id: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)
document_id: ContextVar[Optional[str]] = ContextVar('document_id', default=None)


class StructuredFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with additional fields."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        log_record['timestamp'] = datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')
        log_record['level'] = record.levelname

        if correlation_id.get():
            log_record['correlation_id'] = correlation_id.get()
        if document_id.get():
            log_record['document_id'] = document_id.get()

        # Service information
        log_record['service'] = os.getenv('APP_NAME', 'item-indexer')
        log_record['version'] = os.getenv('APP_VERSION', '1.0.0')
        log_record['environment'] = os.getenv('ENVIRONMENT', 'development')


class PerformanceFilter(logging.Filter):
    """Copy ``perf_*`` extras onto the record under their short names."""

    def filter(self, record):
        for key, value in list(record.__dict__.items()):
            if key.startswith('perf_'):
                setattr(record, key[len('perf_'):], value)

        return True


class LogContextManager:
    """Context manager for log correlation."""

    def __init__(self, corr_id: Optional[str] = None, doc_id: Optional[str] = None):
        self.corr_id = corr_id or correlation_id.get()
        self.doc_id = doc_id or document_id.get()
        self.token_corr = None
        self.token_doc = None

    def __enter__(self):
        self.token_corr = correlation_id.set(self.corr_id)
        self.token_doc = document_id.set(self.doc_id)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        correlation_id.reset(self.token_corr)
        document_id.reset(self.token_doc)


def setup_logging(config: LoggingConfig, environment: Environment) -> None:
    """
    Set up logging for the whole process.

    Args:
        config: Logging configuration
        environment: Deployment environment
    """
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    level = getattr(logging, config.level, logging.INFO)
    root_logger.setLevel(level)

    if config.structured:
        formatter = StructuredFormatter(
            fmt='%(timestamp)s %(level)s %(name)s %(message)s',
            datefmt='%Y-%m-%dT%H:%M:%SZ'
        )
    else:
        formatter = logging.Formatter(
            fmt=config.format,
            datefmt=config.date_format
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(PerformanceFilter())
    root_logger.addHandler(console_handler)

    if config.log_to_file and config.log_file_path:
        log_path = Path(config.log_file_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            filename=str(log_path),
            maxBytes=config.max_file_size,
            backupCount=config.backup_count,
            encoding='utf-8'
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(PerformanceFilter())
        root_logger.addHandler(file_handler)

    if environment == Environment.PRODUCTION:
        # Reduce noise from third-party libraries
        for name in ('aio_pika', 'aiormq', 'elasticsearch', 'elastic_transport', 'aiohttp.access'):
            logging.getLogger(name).setLevel(logging.WARNING)
    elif environment == Environment.DEVELOPMENT:
        logging.getLogger('elastic_transport.transport').setLevel(logging.INFO)

    _setup_component_loggers(environment)


def _setup_component_loggers(environment: Environment) -> None:
    """Set up component-specific loggers."""
    consumer_logger = logging.getLogger('item_indexer.consumer')
    consumer_logger.setLevel(logging.DEBUG if environment == Environment.DEVELOPMENT else logging.INFO)

    indexer_logger = logging.getLogger('item_indexer.indexer')
    indexer_logger.setLevel(logging.DEBUG if environment == Environment.DEVELOPMENT else logging.INFO)

    monitoring_logger = logging.getLogger('item_indexer.monitoring')
    monitoring_logger.setLevel(logging.INFO)


class PerformanceLogger:
    """Logger for performance monitoring."""

    def __init__(self, logger_name: str = 'item_indexer.performance'):
        self.logger = logging.getLogger(logger_name)

    def log_operation(
        self,
        operation: str,
        duration_ms: float,
        success: bool = True,
        extra: Optional[Dict[str, Any]] = None
    ) -> None:
        """Log operation performance."""
        level = logging.DEBUG if success else logging.WARNING

        extra_data = dict(extra or {})
        extra_data.update({
            'perf_operation': operation,
            'perf_duration_ms': duration_ms,
            'perf_success': success,
        })

        self.logger.log(
            level,
            f"Operation {operation} completed in {duration_ms:.2f}ms",
            extra=extra_data
        )

    def log_batch(
        self,
        batch_size: int,
        processing_time_ms: float,
        success: bool = True,
        extra: Optional[Dict[str, Any]] = None
    ) -> None:
        """Log bulk flush performance."""
        level = logging.INFO if success else logging.ERROR

        throughput = batch_size / (processing_time_ms / 1000) if processing_time_ms > 0 else 0

        extra_data = dict(extra or {})
        extra_data.update({
            'perf_batch_size': batch_size,
            'perf_processing_time_ms': processing_time_ms,
            'perf_throughput_docs_per_sec': throughput,
            'perf_success': success,
        })

        self.logger.log(
            level,
            f"Flushed batch of {batch_size} documents in {processing_time_ms:.2f}ms "
            f"({throughput:.2f} docs/s)",
            extra=extra_data
        )


# Global logger instance
performance_logger = PerformanceLogger()


def generate_correlation_id() -> str:
    """Generate a new correlation ID."""
    return str(uuid.uuid4())


def log_performance(operation: str, duration_ms: float, success: bool = True, **extra):
    """Convenience function for performance logging."""
    performance_logger.log_operation(operation, duration_ms, success=success, extra=extra)
