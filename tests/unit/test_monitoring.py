"""
Unit tests for the monitoring service and helpers.
"""

import json
from unittest.mock import Mock

import pytest

from item_indexer.config import MonitoringConfig
from item_indexer.monitoring import (
    HealthChecker,
    MetricsCollector,
    MonitoringService,
    record_message_rejected,
    set_monitoring_service,
    time_bulk_request,
)


@pytest.fixture
def monitoring() -> MonitoringService:
    return MonitoringService(MonitoringConfig(enabled=False))


@pytest.mark.unit
class TestMetricsCollector:
    def test_rejections_by_reason(self):
        metrics = MetricsCollector()

        metrics.record_message_rejected("items", "DecodeError", requeued=False)
        metrics.record_message_rejected("items", "IndexerBusyError", requeued=True)

        sample = metrics.registry.get_sample_value
        assert sample("item_indexer_messages_rejected_total", {"queue": "items", "reason": "DecodeError"}) == 1
        assert sample("item_indexer_messages_requeued_total", {"queue": "items"}) == 1

    def test_bulk_request(self):
        metrics = MetricsCollector()

        metrics.record_bulk_request(batch_size=10, duration_seconds=0.2, success=False)

        sample = metrics.registry.get_sample_value
        assert sample("item_indexer_bulk_requests_total", {"outcome": "failure"}) == 1
        assert sample("item_indexer_bulk_batch_size_sum") == 10

    def test_system_metrics(self):
        metrics = MetricsCollector()

        metrics.collect_system_metrics()

        assert metrics.registry.get_sample_value("item_indexer_process_memory_usage_bytes") > 0
        assert "item_indexer_app_uptime_seconds" in metrics.get_metrics_text()


@pytest.mark.unit
class TestHealthChecker:
    async def test_all_checks_healthy(self):
        checker = HealthChecker()

        async def consumer():
            return {"status": "healthy"}

        checker.add_check("consumer", consumer)
        status = await checker.run_health_checks()

        assert status.status == "healthy"
        assert status.checks["consumer"] == {"status": "healthy"}
        assert "system" in status.checks

    async def test_failing_check_makes_service_unhealthy(self):
        checker = HealthChecker()

        async def indexer():
            raise RuntimeError("stopped")

        checker.add_check("indexer", indexer)
        status = await checker.run_health_checks()

        assert status.status == "unhealthy"
        assert status.checks["indexer"]["error"] == "stopped"

    async def test_results_are_cached(self):
        checker = HealthChecker(check_interval=60)
        calls = []

        async def consumer():
            calls.append(1)
            return {"status": "healthy"}

        checker.add_check("consumer", consumer)
        await checker.run_health_checks()
        await checker.run_health_checks()

        assert len(calls) == 1


@pytest.mark.unit
class TestMonitoringService:
    async def test_health_endpoint(self, monitoring):
        async def consumer():
            return {"status": "unhealthy"}

        monitoring.health_checker.add_check("consumer", consumer)

        response = await monitoring.health_check_handler(Mock())

        assert response.status == 503
        assert json.loads(response.body)["status"] == "unhealthy"

    async def test_not_ready_until_started(self, monitoring):
        response = await monitoring.readiness_handler(Mock())
        assert response.status == 503

        monitoring.ready = True
        response = await monitoring.readiness_handler(Mock())
        assert response.status == 200

    async def test_metrics_endpoint(self, monitoring):
        monitoring.record_document_submitted()

        response = await monitoring.metrics_handler(Mock())

        assert response.status == 200
        assert b"item_indexer_documents_submitted_total 1.0" in response.body

    async def test_metrics_disabled(self):
        service = MonitoringService(MonitoringConfig(prometheus_enabled=False))

        response = await service.metrics_handler(Mock())

        assert response.status == 404

    async def test_disabled_service_does_not_listen(self, monitoring):
        await monitoring.start()

        assert monitoring.runner is None
        await monitoring.stop()

    def test_metric_groups_can_be_switched_off(self):
        service = MonitoringService(MonitoringConfig(collect_consumer_metrics=False))

        service.record_message_consumed("items")

        assert service.metrics.registry.get_sample_value(
            "item_indexer_messages_consumed_total", {"queue": "items"}
        ) is None


@pytest.mark.unit
class TestHelpers:
    async def test_time_bulk_request_records_outcome(self, monitoring):
        set_monitoring_service(monitoring)

        async with time_bulk_request(3):
            pass

        with pytest.raises(ConnectionError):
            async with time_bulk_request(2):
                raise ConnectionError("down")

        sample = monitoring.metrics.registry.get_sample_value
        assert sample("item_indexer_bulk_requests_total", {"outcome": "success"}) == 1
        assert sample("item_indexer_bulk_requests_total", {"outcome": "failure"}) == 1

    def test_helpers_without_service_are_noops(self):
        record_message_rejected("items", "DecodeError")
