"""
Unit tests for the bulk indexer.

Tests cover:
- Size- and interval-triggered flushes
- Bulk request format
- Per-item success and failure callbacks
- Whole-request failures
- Lifecycle: submit before start, after close, flush on close
- Back-pressure on a full queue
"""

import asyncio
from unittest.mock import Mock

import pytest
from elasticsearch import ApiError

from item_indexer.config import IndexerConfig
from item_indexer.core.errors import (
    IndexerBusyError,
    IndexerClosedError,
    InvalidDocumentError,
    SubmissionError,
)
from item_indexer.indexer.bulk import BulkIndexer, BulkIndexerItem


def _item(doc_id: str, name: str = "table", **callbacks) -> BulkIndexerItem:
    return BulkIndexerItem(
        document_id=doc_id,
        body={"doc": {"source": "shop", "name": {"en": name}}, "doc_as_upsert": True},
        **callbacks,
    )


@pytest.mark.unit
class TestFlushPolicy:
    """Test cases for flush triggers."""

    async def test_byte_threshold_flushes_without_waiting_for_interval(self, search_client, wait_until):
        config = IndexerConfig(workers=1, flush_bytes=1, flush_interval_seconds=60, queue_size=10)

        async with BulkIndexer(search_client, "items", config) as indexer:
            await indexer.submit(_item("shop-1"))
            await wait_until(lambda: len(search_client.requests) == 1, timeout=1.0)

        assert search_client.flushed_ids == ["shop-1"]

    async def test_interval_flushes_single_small_document(self, search_client, indexer_config, wait_until):
        async with BulkIndexer(search_client, "items", indexer_config) as indexer:
            await indexer.submit(_item("shop-1"))
            await wait_until(lambda: "shop-1" in search_client.documents, timeout=1.0)

            assert indexer.stats.num_indexed == 1

    async def test_close_flushes_buffered_documents(self, search_client):
        config = IndexerConfig(workers=1, flush_bytes=10_000_000, flush_interval_seconds=60, queue_size=10)
        indexer = BulkIndexer(search_client, "items", config)
        await indexer.start()

        for doc_id in ("shop-1", "shop-2", "shop-3"):
            await indexer.submit(_item(doc_id))

        assert search_client.requests == []

        await indexer.close()

        assert len(search_client.requests) == 1
        assert search_client.flushed_ids == ["shop-1", "shop-2", "shop-3"]
        assert indexer.stats.num_flushed == 3

    async def test_many_workers_flush_everything_on_close(self, search_client):
        config = IndexerConfig(workers=4, flush_bytes=10_000_000, flush_interval_seconds=60, queue_size=100)

        async with BulkIndexer(search_client, "items", config) as indexer:
            for i in range(50):
                await indexer.submit(_item(f"shop-{i}"))

        assert sorted(search_client.flushed_ids) == sorted(f"shop-{i}" for i in range(50))
        assert indexer.stats.num_added == 50
        assert indexer.stats.num_indexed == 50


@pytest.mark.unit
class TestBulkRequest:
    """Test cases for the bulk request content and outcomes."""

    async def test_update_operation_format(self, search_client, indexer_config):
        async with BulkIndexer(search_client, "items", indexer_config) as indexer:
            await indexer.submit(_item("shop-1"))

        meta, body = search_client.requests[0]
        assert meta == {"update": {"_index": "items", "_id": "shop-1", "retry_on_conflict": 3}}
        assert body["doc_as_upsert"] is True
        assert body["doc"]["name"] == {"en": "table"}

    async def test_second_upsert_updates_same_document(self, search_client, indexer_config):
        async with BulkIndexer(search_client, "items", indexer_config) as indexer:
            await indexer.submit(_item("shop-1", name="first"))
        async with BulkIndexer(search_client, "items", indexer_config) as indexer:
            await indexer.submit(_item("shop-1", name="second"))

        assert list(search_client.documents) == ["shop-1"]
        assert search_client.documents["shop-1"]["name"] == {"en": "second"}
        assert indexer.stats.num_updated == 1

    async def test_per_item_callbacks(self, search_client, indexer_config):
        search_client.failing_ids.add("shop-2")
        on_success = Mock()
        on_failure = Mock()

        async with BulkIndexer(search_client, "items", indexer_config) as indexer:
            await indexer.submit(_item("shop-1", on_success=on_success, on_failure=on_failure))
            await indexer.submit(_item("shop-2", on_success=on_success, on_failure=on_failure))

        on_success.assert_called_once()
        item, response = on_success.call_args.args
        assert item.document_id == "shop-1"
        assert response["result"] == "created"

        on_failure.assert_called_once()
        item, response, error = on_failure.call_args.args
        assert item.document_id == "shop-2"
        assert response["status"] == 400
        assert error is None

        assert indexer.stats.num_failed == 1
        assert indexer.stats.num_created == 1

    async def test_request_failure_fails_whole_batch(self, search_client, indexer_config):
        search_client.bulk_error = ConnectionError("cluster unreachable")
        on_failure = Mock()

        async with BulkIndexer(search_client, "items", indexer_config) as indexer:
            await indexer.submit(_item("shop-1", on_failure=on_failure))
            await indexer.submit(_item("shop-2", on_failure=on_failure))

        assert on_failure.call_count == 2
        for call in on_failure.call_args_list:
            _, response, error = call.args
            assert response is None
            assert isinstance(error, ConnectionError)
        assert indexer.stats.num_failed == 2

    async def test_refused_request_fails_whole_batch_with_error(self, search_client, indexer_config):
        refusal = ApiError("request entity too large", meta=Mock(status=413), body={})
        search_client.bulk_error = refusal
        on_failure = Mock()

        async with BulkIndexer(search_client, "items", indexer_config) as indexer:
            await indexer.submit(_item("shop-1", on_failure=on_failure))
            await indexer.submit(_item("shop-2", on_failure=on_failure))

        assert [call.args[0].document_id for call in on_failure.call_args_list] == ["shop-1", "shop-2"]
        for call in on_failure.call_args_list:
            _, response, error = call.args
            assert response is None
            assert error is refusal
        assert indexer.stats.num_failed == 2

    async def test_callback_exception_does_not_stop_worker(self, search_client, indexer_config, wait_until):
        def broken(item, response):
            raise RuntimeError("callback bug")

        async with BulkIndexer(search_client, "items", indexer_config) as indexer:
            await indexer.submit(_item("shop-1", on_success=broken))
            await wait_until(lambda: indexer.stats.num_indexed == 1, timeout=1.0)
            await indexer.submit(_item("shop-2"))

        assert search_client.flushed_ids == ["shop-1", "shop-2"]

    async def test_unserializable_body_is_rejected_on_submit(self, search_client, indexer_config):
        async with BulkIndexer(search_client, "items", indexer_config) as indexer:
            with pytest.raises(InvalidDocumentError) as exc_info:
                await indexer.submit(BulkIndexerItem(document_id="shop-1", body={"doc": object()}))

        assert exc_info.value.retryable is False
        assert search_client.requests == []

    @pytest.mark.parametrize("value", [float("nan"), float("inf")])
    async def test_non_finite_number_is_rejected_on_submit(self, search_client, indexer_config, value):
        async with BulkIndexer(search_client, "items", indexer_config) as indexer:
            with pytest.raises(InvalidDocumentError):
                await indexer.submit(BulkIndexerItem(
                    document_id="shop-1",
                    body={"doc": {"dimensions": {"volume": value}}, "doc_as_upsert": True},
                ))
            await indexer.submit(_item("shop-2"))

        assert indexer.stats.num_added == 1
        assert search_client.flushed_ids == ["shop-2"]


@pytest.mark.unit
class TestLifecycle:
    """Test cases for start, close and submission errors."""

    async def test_submit_before_start(self, search_client, indexer_config):
        indexer = BulkIndexer(search_client, "items", indexer_config)

        with pytest.raises(IndexerClosedError):
            await indexer.submit(_item("shop-1"))

    async def test_submit_after_close(self, search_client, indexer_config):
        indexer = BulkIndexer(search_client, "items", indexer_config)
        await indexer.start()
        await indexer.close()

        with pytest.raises(IndexerClosedError) as exc_info:
            await indexer.submit(_item("shop-1"))

        assert isinstance(exc_info.value, SubmissionError)
        assert exc_info.value.retryable is True

    async def test_close_is_idempotent(self, search_client, indexer_config):
        indexer = BulkIndexer(search_client, "items", indexer_config)
        await indexer.start()

        await indexer.close()
        await indexer.close()

        assert not indexer.running

    async def test_full_queue_times_out(self, search_client, wait_until):
        search_client.release = asyncio.Event()
        config = IndexerConfig(
            workers=1,
            flush_bytes=1,
            flush_interval_seconds=60,
            queue_size=1,
            submit_timeout_seconds=0.05,
        )
        indexer = BulkIndexer(search_client, "items", config)
        await indexer.start()

        # First item is taken by the worker, which blocks in the bulk call
        await indexer.submit(_item("shop-1"))
        await wait_until(lambda: indexer._queue.qsize() == 0, timeout=1.0)
        await asyncio.sleep(0.01)
        # Second item fills the queue
        await indexer.submit(_item("shop-2"))

        with pytest.raises(IndexerBusyError):
            await indexer.submit(_item("shop-3"))

        search_client.release.set()
        await indexer.close()

        assert search_client.flushed_ids == ["shop-1", "shop-2"]

    async def test_health_status(self, search_client, indexer_config):
        indexer = BulkIndexer(search_client, "items", indexer_config)
        assert (await indexer.get_health_status())["status"] == "unhealthy"

        async with indexer:
            status = await indexer.get_health_status()

        assert status["status"] == "healthy"
        assert status["index"] == "items"
        assert status["workers"] == 1
