"""
Monitoring helpers for automatic metrics collection.

This module provides:
- Bulk request timing
- A performance monitoring decorator
- Module-level recording functions that are no-ops when monitoring is off
"""

import asyncio
import functools
import time
from contextlib import asynccontextmanager
from typing import Any, Callable

from ..core.logging import log_performance
from .service import get_monitoring_service


@asynccontextmanager
async def time_bulk_request(batch_size: int):
    """
    Context manager for timing one bulk request.

    Usage:
        async with time_bulk_request(len(batch)):
            await client.bulk(operations=lines)
    """
    start_time = time.monotonic()
    monitoring = get_monitoring_service()

    try:
        yield
    except Exception as e:
        duration = time.monotonic() - start_time
        if monitoring:
            monitoring.record_bulk_request(batch_size, duration, success=False)
        log_performance("bulk_request", duration * 1000, success=False,
                        batch_size=batch_size, error=str(e))
        raise

    duration = time.monotonic() - start_time
    if monitoring:
        monitoring.record_bulk_request(batch_size, duration, success=True)
    log_performance("bulk_request", duration * 1000, batch_size=batch_size)


def monitor_performance(operation: str):
    """
    Generic performance monitoring decorator.

    Args:
        operation: Operation name for logging
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs) -> Any:
            start_time = time.monotonic()

            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                duration = time.monotonic() - start_time
                log_performance(operation, duration * 1000, success=False, error=str(e))
                raise

            log_performance(operation, (time.monotonic() - start_time) * 1000)
            return result

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs) -> Any:
            start_time = time.monotonic()

            try:
                result = func(*args, **kwargs)
            except Exception as e:
                duration = time.monotonic() - start_time
                log_performance(operation, duration * 1000, success=False, error=str(e))
                raise

            log_performance(operation, (time.monotonic() - start_time) * 1000)
            return result

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


# Convenience functions for manual metrics recording
def record_message_consumed(queue: str) -> None:
    """Record a consumed message."""
    monitoring = get_monitoring_service()
    if monitoring:
        monitoring.record_message_consumed(queue)


def record_message_acked(queue: str) -> None:
    """Record an acknowledged message."""
    monitoring = get_monitoring_service()
    if monitoring:
        monitoring.record_message_acked(queue)


def record_message_rejected(queue: str, reason: str, requeued: bool = False) -> None:
    """Record a rejected message."""
    monitoring = get_monitoring_service()
    if monitoring:
        monitoring.record_message_rejected(queue, reason, requeued)


def record_document_submitted() -> None:
    monitoring = get_monitoring_service()
    if monitoring:
        monitoring.record_document_submitted()


def record_document_indexed(result: str) -> None:
    monitoring = get_monitoring_service()
    if monitoring:
        monitoring.record_document_indexed(result)


def record_document_failed(error_type: str) -> None:
    monitoring = get_monitoring_service()
    if monitoring:
        monitoring.record_document_failed(error_type)


def record_indexer_queue_depth(depth: int) -> None:
    monitoring = get_monitoring_service()
    if monitoring:
        monitoring.update_queue_depth(depth)
