"""
Test configuration and fixtures for item indexer tests.

This module provides:
- Sample source items and message factories
- An in-memory search client that applies bulk upserts
- An in-memory broker queue for consumer tests
- Configuration fixtures sized for fast tests
"""

import asyncio
import json
import uuid
from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Set
from unittest.mock import AsyncMock, Mock

import pytest
from elasticsearch.serializer import JsonSerializer

from item_indexer.config import ConsumerConfig, IndexerConfig, RabbitMQConfig
from item_indexer.consumer.transformer import DocumentTransformer
from item_indexer.monitoring import set_monitoring_service

FIXED_TIMESTAMP = 1700000000


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow running tests")


@pytest.fixture(autouse=True)
def no_global_monitoring():
    """Keep the global monitoring service unset between tests."""
    set_monitoring_service(None)
    yield
    set_monitoring_service(None)


@pytest.fixture
def sample_item() -> Dict[str, Any]:
    """English item with a weight in grams and no price."""
    return {
        "source": "shop",
        "id": "42",
        "lang": "EN",
        "name": "Oak table",
        "description": "A solid oak dining table",
        "urls": ["https://shop.example/items/42"],
        "categories": ["furniture", "tables"],
        "image_urls": ["https://shop.example/img/42.jpg"],
        "dimensions": [
            {"name": "WEIGHT", "value": 500, "unit": "G"},
        ],
    }


@pytest.fixture
def sample_priced_item(sample_item) -> Dict[str, Any]:
    item = dict(sample_item)
    item["lang"] = "FR"
    item["name"] = "Table en chêne"
    item["price"] = {"amount": 249.9, "currency": "EUR"}
    item["dimensions"] = [
        {"name": "HEIGHT", "value": 750, "unit": "MM"},
        {"name": "WIDTH", "value": 1.6, "unit": "M"},
    ]
    return item


@pytest.fixture
def make_message():
    """Factory for broker messages carrying a JSON or raw body."""
    def _make(body: Any, redelivered: bool = False, message_id: Optional[str] = None):
        message = Mock()
        if isinstance(body, (bytes, bytearray)):
            message.body = bytes(body)
        else:
            message.body = json.dumps(body).encode("utf-8")
        message.message_id = message_id or str(uuid.uuid4())
        message.redelivered = redelivered
        message.ack = AsyncMock()
        message.reject = AsyncMock()
        return message

    return _make


@pytest.fixture
def transformer() -> DocumentTransformer:
    """Transformer with a fixed clock."""
    return DocumentTransformer(clock=lambda: FIXED_TIMESTAMP)


@pytest.fixture
def indexer_config() -> IndexerConfig:
    """Indexer flushing quickly on interval, never on size."""
    return IndexerConfig(
        workers=1,
        flush_bytes=10_000_000,
        flush_interval_seconds=0.05,
        queue_size=100,
        retry_on_conflict=3,
    )


@pytest.fixture
def rabbitmq_config() -> RabbitMQConfig:
    return RabbitMQConfig(
        queue_name="items.test",
        connection_attempts=2,
        connection_retry_delay_seconds=0,
    )


@pytest.fixture
def consumer_config() -> ConsumerConfig:
    return ConsumerConfig(shutdown_timeout_seconds=1.0)


class FakeSearchClient:
    """
    In-memory stand-in for the search client bulk API.

    Applies ``update`` operations with ``doc_as_upsert`` semantics to a dict
    of documents keyed by id, and records every request. Exposes the parts of
    the client the bulk helpers use: ``options()``, the JSON serializer and
    a response carrying ``body``.
    """

    def __init__(self):
        self.transport = SimpleNamespace(
            serializers=SimpleNamespace(get_serializer=lambda mimetype: JsonSerializer())
        )
        self.documents: Dict[str, Dict[str, Any]] = {}
        self.requests: List[List[Dict[str, Any]]] = []
        self.failing_ids: Set[str] = set()
        self.bulk_error: Optional[Exception] = None
        self.release: Optional[asyncio.Event] = None

    def options(self, **kwargs) -> "FakeSearchClient":
        return self

    async def bulk(self, operations: List[bytes], **kwargs) -> SimpleNamespace:
        if self.release is not None:
            await self.release.wait()
        if self.bulk_error is not None:
            raise self.bulk_error

        parsed = [json.loads(line) for line in operations]
        self.requests.append(parsed)

        items = []
        for meta, body in zip(parsed[::2], parsed[1::2]):
            action, target = next(iter(meta.items()))
            doc_id = target["_id"]

            if doc_id in self.failing_ids:
                items.append({action: {
                    "_id": doc_id,
                    "status": 400,
                    "error": {"type": "mapper_parsing_exception", "reason": "bad field"},
                }})
                continue

            existed = doc_id in self.documents
            merged = dict(self.documents.get(doc_id, {}))
            merged.update(body["doc"])
            self.documents[doc_id] = merged

            items.append({action: {
                "_id": doc_id,
                "status": 200 if existed else 201,
                "result": "updated" if existed else "created",
            }})

        errors = any(next(iter(i.values()))["status"] >= 300 for i in items)
        return SimpleNamespace(body={"errors": errors, "items": items})

    @property
    def flushed_ids(self) -> List[str]:
        return [
            next(iter(op.values()))["_id"]
            for request in self.requests
            for op in request[::2]
        ]


@pytest.fixture
def search_client() -> FakeSearchClient:
    return FakeSearchClient()


class FakeQueueIterator:
    """Queue iterator yielding preset messages, optionally staying open until closed."""

    def __init__(self, messages, stay_open: bool = False):
        self._pending: asyncio.Queue = asyncio.Queue()
        for message in messages:
            self._pending.put_nowait(message)
        if not stay_open:
            self._pending.put_nowait(None)
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self.closed:
            raise StopAsyncIteration
        message = await self._pending.get()
        if message is None:
            raise StopAsyncIteration
        return message

    def push(self, message) -> None:
        self._pending.put_nowait(message)

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._pending.put_nowait(None)


class FakeQueue:
    def __init__(self, messages=(), stay_open: bool = False):
        self.queue_iterator = FakeQueueIterator(list(messages), stay_open=stay_open)

    def iterator(self):
        return self.queue_iterator


@pytest.fixture
def make_queue():
    """Factory for in-memory broker queues."""
    def _make(messages=(), stay_open: bool = False) -> FakeQueue:
        return FakeQueue(messages, stay_open=stay_open)

    return _make


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01) -> None:
    """Poll ``predicate`` until it is true or fail after ``timeout`` seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met within timeout")
        await asyncio.sleep(interval)


@pytest.fixture(name="wait_until")
def wait_until_fixture():
    return wait_until


@pytest.fixture
def fixed_timestamp() -> int:
    return FIXED_TIMESTAMP
