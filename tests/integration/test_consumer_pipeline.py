"""
Integration tests for the consume, transform and index pipeline.

The consumer, transformer, pipeline and bulk indexer are wired together as
in production; only the broker queue and the search client are in-memory.
"""

from unittest.mock import AsyncMock, Mock

import pytest

from item_indexer.consumer.consumer import MessageConsumer
from item_indexer.core.errors import IndexerBusyError
from item_indexer.indexer.bulk import BulkIndexer
from item_indexer.pipeline import IndexingPipeline


@pytest.fixture
async def indexer(search_client, indexer_config):
    indexer = BulkIndexer(search_client, "items", indexer_config)
    await indexer.start()
    yield indexer
    await indexer.close()


@pytest.fixture
def pipeline(transformer, indexer):
    return IndexingPipeline(transformer, indexer)


@pytest.fixture
def consumer(rabbitmq_config, consumer_config, pipeline):
    return MessageConsumer(rabbitmq_config, consumer_config, pipeline)


@pytest.mark.integration
class TestConsumerPipeline:
    """End-to-end message processing."""

    async def test_item_reaches_index(
        self, consumer, indexer, search_client, make_queue, make_message, sample_item, fixed_timestamp
    ):
        message = make_message(sample_item)
        consumer.queue = make_queue([message])

        await consumer.consume()
        await indexer.close()

        message.ack.assert_awaited_once()
        document = search_client.documents["shop-42"]
        assert document["timestamp"] == fixed_timestamp
        assert document["name"] == {"en": "Oak table"}
        assert document["dimensions"] == {"weight": pytest.approx(0.5)}
        assert document["price"] == {}

    async def test_decode_failure_does_not_stop_next_message(
        self, consumer, indexer, search_client, make_queue, make_message, sample_item
    ):
        bad = make_message(b"{\"source\": ")
        good = make_message(sample_item)
        consumer.queue = make_queue([bad, good])

        await consumer.consume()
        await indexer.close()

        bad.reject.assert_awaited_once_with(requeue=False)
        good.ack.assert_awaited_once()
        assert list(search_client.documents) == ["shop-42"]

    async def test_transformation_failure_rejects_only_that_message(
        self, consumer, indexer, search_client, make_queue, make_message, sample_item
    ):
        broken = dict(sample_item, id="1", dimensions=[{"name": "RADIUS", "value": 1, "unit": "CM"}])
        good = dict(sample_item, id="2")
        messages = [make_message(broken), make_message(good)]
        consumer.queue = make_queue(messages)

        await consumer.consume()
        await indexer.close()

        messages[0].reject.assert_awaited_once_with(requeue=False)
        messages[1].ack.assert_awaited_once()
        assert list(search_client.documents) == ["shop-2"]

    async def test_overflowing_conversion_rejects_only_that_message(
        self, consumer, indexer, search_client, make_queue, make_message, sample_item
    ):
        huge = dict(sample_item, id="1", dimensions=[{"name": "VOLUME", "value": 1e303, "unit": "MM3"}])
        good = dict(sample_item, id="2")
        messages = [make_message(huge), make_message(good)]
        consumer.queue = make_queue(messages)

        await consumer.consume()
        await indexer.close()

        messages[0].reject.assert_awaited_once_with(requeue=False)
        messages[0].ack.assert_not_awaited()
        messages[1].ack.assert_awaited_once()
        assert search_client.flushed_ids == ["shop-2"]
        assert list(search_client.documents) == ["shop-2"]

    async def test_submission_failure_rejects_only_that_message(
        self, rabbitmq_config, consumer_config, transformer, make_queue, make_message, sample_item
    ):
        indexer = Mock()
        indexer.submit = AsyncMock(side_effect=[IndexerBusyError("full"), None])
        consumer = MessageConsumer(rabbitmq_config, consumer_config, IndexingPipeline(transformer, indexer))
        messages = [make_message(dict(sample_item, id="1")), make_message(dict(sample_item, id="2"))]
        consumer.queue = make_queue(messages)

        await consumer.consume()

        messages[0].reject.assert_awaited_once_with(requeue=False)
        messages[0].ack.assert_not_awaited()
        messages[1].ack.assert_awaited_once()
        assert indexer.submit.await_count == 2
        assert consumer.metrics.messages_rejected == 1
        assert consumer.metrics.messages_acked == 1

    async def test_redelivery_upserts_single_document(
        self, consumer, indexer, search_client, make_queue, make_message, sample_item, wait_until
    ):
        first = make_message(sample_item)
        updated = dict(sample_item, name="Oak table, oiled")
        second = make_message(updated, redelivered=True)
        consumer.queue = make_queue([first])
        await consumer.consume()
        await wait_until(lambda: "shop-42" in search_client.documents)

        consumer.queue = make_queue([second])
        await consumer.consume()
        await indexer.close()

        assert list(search_client.documents) == ["shop-42"]
        assert search_client.documents["shop-42"]["name"] == {"en": "Oak table, oiled"}

    async def test_index_rejection_is_reported(
        self, consumer, indexer, search_client, pipeline, make_queue, make_message, sample_item
    ):
        search_client.failing_ids.add("shop-42")
        message = make_message(sample_item)
        consumer.queue = make_queue([message])

        await consumer.consume()
        await indexer.close()

        # Acknowledged once queued; the write failure surfaces through the callbacks
        message.ack.assert_awaited_once()
        assert pipeline.metrics.documents_submitted == 1
        assert pipeline.metrics.documents_failed == 1
        assert pipeline.metrics.documents_indexed == 0
        assert search_client.documents == {}

    async def test_pipeline_counts_indexed_documents(
        self, consumer, indexer, pipeline, make_queue, make_message, sample_item
    ):
        consumer.queue = make_queue([
            make_message(dict(sample_item, id=str(i))) for i in range(5)
        ])

        await consumer.consume()
        await indexer.close()

        assert pipeline.metrics.to_dict() == {
            "documents_submitted": 5,
            "documents_indexed": 5,
            "documents_failed": 0,
        }
        assert indexer.stats.num_created == 5
