"""
Monitoring package for the item indexer.

This package provides:
- Health and readiness endpoints
- Prometheus metrics collection and exposure
- Bulk request timing and performance monitoring
- Process resource monitoring
"""

from .service import (
    HealthStatus,
    MetricsCollector,
    HealthChecker,
    MonitoringService,
    get_monitoring_service,
    set_monitoring_service,
    create_monitoring_service,
)

from .middleware import (
    time_bulk_request,
    monitor_performance,
    record_message_consumed,
    record_message_acked,
    record_message_rejected,
    record_document_submitted,
    record_document_indexed,
    record_document_failed,
    record_indexer_queue_depth,
)

__all__ = [
    # Service classes
    "HealthStatus",
    "MetricsCollector",
    "HealthChecker",
    "MonitoringService",

    # Service functions
    "get_monitoring_service",
    "set_monitoring_service",
    "create_monitoring_service",

    # Timing helpers
    "time_bulk_request",
    "monitor_performance",

    # Manual metrics recording
    "record_message_consumed",
    "record_message_acked",
    "record_message_rejected",
    "record_document_submitted",
    "record_document_indexed",
    "record_document_failed",
    "record_indexer_queue_depth",
]
