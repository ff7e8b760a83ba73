"""
Monitoring service for the item indexer.

This module provides:
- Health and readiness endpoints
- Metrics collection and exposure
- Prometheus integration
- Process resource monitoring
"""

import asyncio
import platform
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

import psutil
from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from ..config import MonitoringConfig
from ..core.logging import logger

HealthCheck = Callable[[], Awaitable[Dict[str, Any]]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class HealthStatus:
    """Health check status container."""
    status: str  # "healthy" or "unhealthy"
    timestamp: datetime = field(default_factory=_utcnow)
    checks: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "status": self.status,
            "timestamp": self.timestamp.isoformat(),
            "checks": self.checks,
            "message": self.message,
        }


class MetricsCollector:
    """Prometheus metrics collector."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        # Message consumption metrics
        self.messages_consumed = Counter(
            'item_indexer_messages_consumed_total',
            'Total number of messages received from the broker',
            ['queue'],
            registry=self.registry
        )

        self.messages_acked = Counter(
            'item_indexer_messages_acked_total',
            'Total number of messages acknowledged',
            ['queue'],
            registry=self.registry
        )

        self.messages_rejected = Counter(
            'item_indexer_messages_rejected_total',
            'Total number of messages rejected',
            ['queue', 'reason'],
            registry=self.registry
        )

        self.messages_requeued = Counter(
            'item_indexer_messages_requeued_total',
            'Total number of messages rejected with requeue',
            ['queue'],
            registry=self.registry
        )

        # Document metrics
        self.documents_submitted = Counter(
            'item_indexer_documents_submitted_total',
            'Total number of documents handed to the bulk indexer',
            registry=self.registry
        )

        self.documents_indexed = Counter(
            'item_indexer_documents_indexed_total',
            'Total number of documents written to the index',
            ['result'],
            registry=self.registry
        )

        self.documents_failed = Counter(
            'item_indexer_documents_failed_total',
            'Total number of documents the index rejected',
            ['error_type'],
            registry=self.registry
        )

        # Bulk request metrics
        self.bulk_requests = Counter(
            'item_indexer_bulk_requests_total',
            'Total number of bulk requests sent',
            ['outcome'],
            registry=self.registry
        )

        self.bulk_request_duration = Histogram(
            'item_indexer_bulk_request_duration_seconds',
            'Time spent on bulk requests',
            buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0),
            registry=self.registry
        )

        self.bulk_batch_size = Histogram(
            'item_indexer_bulk_batch_size',
            'Number of operations per bulk request',
            buckets=(1, 10, 50, 100, 500, 1000, 5000),
            registry=self.registry
        )

        self.indexer_queue_depth = Gauge(
            'item_indexer_indexer_queue_depth',
            'Operations waiting in the indexer queue',
            registry=self.registry
        )

        # Process metrics
        self.process_cpu_usage = Gauge(
            'item_indexer_process_cpu_usage_percent',
            'Process CPU usage percentage',
            registry=self.registry
        )

        self.process_memory_usage = Gauge(
            'item_indexer_process_memory_usage_bytes',
            'Process resident memory in bytes',
            registry=self.registry
        )

        # Application metrics
        self.app_uptime = Gauge(
            'item_indexer_app_uptime_seconds',
            'Application uptime in seconds',
            registry=self.registry
        )

        self.app_start_time = time.time()
        self._process = psutil.Process()

    def record_message_consumed(self, queue: str) -> None:
        """Record a consumed message."""
        self.messages_consumed.labels(queue=queue).inc()

    def record_message_acked(self, queue: str) -> None:
        """Record an acknowledged message."""
        self.messages_acked.labels(queue=queue).inc()

    def record_message_rejected(self, queue: str, reason: str, requeued: bool) -> None:
        """Record a rejected message."""
        self.messages_rejected.labels(queue=queue, reason=reason).inc()
        if requeued:
            self.messages_requeued.labels(queue=queue).inc()

    def record_document_submitted(self) -> None:
        self.documents_submitted.inc()

    def record_document_indexed(self, result: str) -> None:
        self.documents_indexed.labels(result=result).inc()

    def record_document_failed(self, error_type: str) -> None:
        self.documents_failed.labels(error_type=error_type).inc()

    def record_bulk_request(self, batch_size: int, duration_seconds: float, success: bool) -> None:
        """Record bulk request metrics."""
        self.bulk_requests.labels(outcome="success" if success else "failure").inc()
        self.bulk_request_duration.observe(duration_seconds)
        self.bulk_batch_size.observe(batch_size)

    def update_queue_depth(self, depth: int) -> None:
        self.indexer_queue_depth.set(depth)

    def collect_system_metrics(self) -> None:
        """Collect current process metrics."""
        self.process_cpu_usage.set(self._process.cpu_percent(interval=None))
        self.process_memory_usage.set(self._process.memory_info().rss)
        self.app_uptime.set(time.time() - self.app_start_time)

    def get_metrics_text(self) -> str:
        """Get metrics in Prometheus text format."""
        return generate_latest(self.registry).decode('utf-8')


class HealthChecker:
    """Health check manager."""

    def __init__(self, check_interval: float = 5.0):
        self.checks: Dict[str, HealthCheck] = {}
        self._last_check_time: Optional[float] = None
        self._last_status: Optional[HealthStatus] = None
        self._check_interval = check_interval

    def add_check(self, name: str, check_func: HealthCheck) -> None:
        """Register an async health check returning a dict with a ``status`` key."""
        self.checks[name] = check_func

    async def run_health_checks(self) -> HealthStatus:
        """Run all health checks."""
        now = time.monotonic()

        # Return cached result if recent
        if (self._last_check_time is not None and
            self._last_status is not None and
            now - self._last_check_time < self._check_interval):
            return self._last_status

        checks_results = {}
        overall_status = "healthy"

        for name, check_func in self.checks.items():
            try:
                result = await check_func()
                checks_results[name] = result

                if result.get("status") != "healthy":
                    overall_status = "unhealthy"

            except Exception as e:
                checks_results[name] = {
                    "status": "unhealthy",
                    "error": str(e)
                }
                overall_status = "unhealthy"

        checks_results["system"] = {
            "status": "healthy",
            "platform": platform.platform(),
            "python_version": platform.python_version(),
            "cpu_count": psutil.cpu_count(),
        }

        status = HealthStatus(status=overall_status, checks=checks_results)

        self._last_check_time = now
        self._last_status = status

        return status


class MonitoringService:
    """Main monitoring service."""

    def __init__(
        self,
        config: MonitoringConfig,
        metrics_collector: Optional[MetricsCollector] = None,
        health_checker: Optional[HealthChecker] = None,
    ):
        self.config = config
        self.metrics = metrics_collector or MetricsCollector()
        self.health_checker = health_checker or HealthChecker()

        # Set once every component finished starting
        self.ready = False

        self.app: Optional[web.Application] = None
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None

        self._monitoring_task: Optional[asyncio.Task] = None

    def create_app(self) -> web.Application:
        """Build the aiohttp application serving the monitoring endpoints."""
        app = web.Application()
        app.router.add_get('/health', self.health_check_handler)
        app.router.add_get('/ready', self.readiness_handler)
        app.router.add_get(self.config.prometheus_path, self.metrics_handler)
        return app

    async def start(self) -> None:
        """Start the monitoring service."""
        logger.info("Starting monitoring service...")

        if not self.config.enabled:
            logger.info("Monitoring disabled in configuration")
            return

        self.app = self.create_app()

        self.runner = web.AppRunner(self.app)
        await self.runner.setup()

        self.site = web.TCPSite(
            self.runner,
            '0.0.0.0',
            self.config.health_check_port
        )
        await self.site.start()

        logger.info(f"Health check server started on port {self.config.health_check_port}")

        if self.config.collect_system_metrics:
            self._monitoring_task = asyncio.create_task(self._background_monitoring())

        logger.info("Monitoring service started")

    async def stop(self) -> None:
        """Stop the monitoring service."""
        logger.info("Stopping monitoring service...")
        self.ready = False

        if self._monitoring_task:
            self._monitoring_task.cancel()
            try:
                await self._monitoring_task
            except asyncio.CancelledError:
                pass
            self._monitoring_task = None

        if self.site:
            await self.site.stop()
            self.site = None

        if self.runner:
            await self.runner.cleanup()
            self.runner = None

        logger.info("Monitoring service stopped")

    async def health_check_handler(self, request: web.Request) -> web.Response:
        """Health check endpoint handler."""
        try:
            health_status = await self.health_checker.run_health_checks()

            status_code = 200 if health_status.status == "healthy" else 503

            return web.json_response(
                health_status.to_dict(),
                status=status_code
            )

        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return web.json_response(
                {
                    "status": "unhealthy",
                    "error": str(e),
                    "timestamp": _utcnow().isoformat()
                },
                status=503
            )

    async def readiness_handler(self, request: web.Request) -> web.Response:
        """Readiness endpoint handler: healthy and fully started."""
        if not self.ready:
            return web.json_response(
                {"status": "not_ready", "timestamp": _utcnow().isoformat()},
                status=503
            )
        return await self.health_check_handler(request)

    async def metrics_handler(self, request: web.Request) -> web.Response:
        """Metrics endpoint handler."""
        if not self.config.prometheus_enabled:
            return web.Response(status=404, text="Metrics not enabled")

        try:
            if self.config.collect_system_metrics:
                self.metrics.collect_system_metrics()

            return web.Response(
                body=self.metrics.get_metrics_text().encode('utf-8'),
                headers={"Content-Type": CONTENT_TYPE_LATEST}
            )

        except Exception as e:
            logger.error(f"Metrics collection failed: {e}")
            return web.Response(status=500, text=f"Metrics error: {e}")

    async def _background_monitoring(self) -> None:
        """Background monitoring task."""
        while True:
            try:
                self.metrics.collect_system_metrics()
                await asyncio.sleep(60)

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Background monitoring error: {e}")
                await asyncio.sleep(60)

    def record_message_consumed(self, queue: str) -> None:
        if self.config.collect_consumer_metrics:
            self.metrics.record_message_consumed(queue)

    def record_message_acked(self, queue: str) -> None:
        if self.config.collect_consumer_metrics:
            self.metrics.record_message_acked(queue)

    def record_message_rejected(self, queue: str, reason: str, requeued: bool) -> None:
        if self.config.collect_consumer_metrics:
            self.metrics.record_message_rejected(queue, reason, requeued)

    def record_document_submitted(self) -> None:
        if self.config.collect_indexer_metrics:
            self.metrics.record_document_submitted()

    def record_document_indexed(self, result: str) -> None:
        if self.config.collect_indexer_metrics:
            self.metrics.record_document_indexed(result)

    def record_document_failed(self, error_type: str) -> None:
        if self.config.collect_indexer_metrics:
            self.metrics.record_document_failed(error_type)

    def record_bulk_request(self, batch_size: int, duration_seconds: float, success: bool) -> None:
        if self.config.collect_indexer_metrics:
            self.metrics.record_bulk_request(batch_size, duration_seconds, success)

    def update_queue_depth(self, depth: int) -> None:
        if self.config.collect_indexer_metrics:
            self.metrics.update_queue_depth(depth)


# Global monitoring service instance
_monitoring_service: Optional[MonitoringService] = None


def get_monitoring_service() -> Optional[MonitoringService]:
    """Get the global monitoring service instance."""
    return _monitoring_service


def set_monitoring_service(service: Optional[MonitoringService]) -> None:
    """Set the global monitoring service instance."""
    global _monitoring_service
    _monitoring_service = service


@asynccontextmanager
async def create_monitoring_service(config: MonitoringConfig):
    """
    Context manager for monitoring service lifecycle.

    Usage:
        async with create_monitoring_service(config) as monitoring:
            monitoring.health_checker.add_check("indexer", indexer.get_health_status)
    """
    service = MonitoringService(config)
    set_monitoring_service(service)

    try:
        await service.start()
        yield service
    finally:
        await service.stop()
        set_monitoring_service(None)
