"""
Bulk indexer for the item indexer.

This module provides:
- A bounded submission queue shared by a fixed pool of flush workers
- Size- and interval-triggered bulk flushes
- Per-item success/failure callbacks
- Indexing statistics
- Flush-on-close lifecycle

Each worker owns its buffer, so submissions and flushes never touch the same
buffer. Workers flush when their buffered payload reaches ``flush_bytes`` or
when ``flush_interval_seconds`` passed since their last flush. A flush sends
the buffered actions through ``helpers.async_streaming_bulk`` as one request.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from elasticsearch import helpers

from ..config import IndexerConfig
from ..core.errors import IndexerBusyError, IndexerClosedError, InvalidDocumentError
from ..core.logging import performance_logger
from ..monitoring.middleware import record_indexer_queue_depth, time_bulk_request

logger = logging.getLogger(__name__)

_STOP = object()


@dataclass
class BulkIndexerItem:
    """A single bulk operation with optional outcome callbacks."""
    document_id: str
    body: Optional[Dict[str, Any]] = None
    action: str = "update"

    # on_success(item, response_item)
    on_success: Optional[Callable[["BulkIndexerItem", Dict[str, Any]], Any]] = None
    # on_failure(item, response_item or None, exception or None)
    on_failure: Optional[
        Callable[["BulkIndexerItem", Optional[Dict[str, Any]], Optional[BaseException]], Any]
    ] = None


@dataclass
class BulkIndexerStats:
    """Bulk indexer counters."""
    num_added: int = 0
    num_flushed: int = 0
    num_failed: int = 0
    num_indexed: int = 0
    num_created: int = 0
    num_updated: int = 0
    num_requests: int = 0

    def to_dict(self) -> Dict[str, int]:
        return dict(self.__dict__)


@dataclass
class _QueuedItem:
    item: BulkIndexerItem
    action: Dict[str, Any]
    size: int


@dataclass
class _Batch:
    entries: List[_QueuedItem] = field(default_factory=list)
    size: int = 0

    def add(self, entry: _QueuedItem) -> None:
        self.entries.append(entry)
        self.size += entry.size

    @property
    def actions(self) -> List[Dict[str, Any]]:
        return [entry.action for entry in self.entries]

    def __len__(self) -> int:
        return len(self.entries)


class BulkIndexer:
    """
    Buffered bulk writer for one index.

    Usage:
        async with BulkIndexer(client, "items", IndexerConfig()) as indexer:
            await indexer.submit(BulkIndexerItem(document_id="a-1", body={...}))
    """

    def __init__(self, client, index_name: str, config: IndexerConfig):
        self.client = client
        self.index_name = index_name
        self.config = config

        self.stats = BulkIndexerStats()

        self._queue: asyncio.Queue = asyncio.Queue(maxsize=config.queue_size)
        self._workers: List[asyncio.Task] = []
        self._closed = False

    async def __aenter__(self) -> "BulkIndexer":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def running(self) -> bool:
        return bool(self._workers) and not self._closed

    async def start(self) -> None:
        """Start the flush workers."""
        if self._workers:
            return
        if self._closed:
            raise IndexerClosedError("Indexer has been closed")

        for worker_id in range(self.config.workers):
            self._workers.append(asyncio.create_task(self._worker(worker_id)))

        logger.info(
            f"Bulk indexer started for index {self.index_name} "
            f"({self.config.workers} workers, flush at {self.config.flush_bytes} bytes "
            f"or every {self.config.flush_interval_seconds}s)"
        )

    async def submit(self, item: BulkIndexerItem) -> None:
        """
        Enqueue an operation for the next flush.

        Returns as soon as the operation is queued; the outcome is reported
        through the item callbacks.

        Raises:
            IndexerClosedError: If the indexer is not running
            IndexerBusyError: If the queue stayed full for the submit timeout
            InvalidDocumentError: If the body cannot be serialized
        """
        if not self.running:
            raise IndexerClosedError("Indexer is not accepting documents")

        entry = self._encode(item)

        try:
            if self.config.submit_timeout_seconds is None:
                await self._queue.put(entry)
            else:
                await asyncio.wait_for(
                    self._queue.put(entry), timeout=self.config.submit_timeout_seconds
                )
        except asyncio.TimeoutError:
            raise IndexerBusyError(
                f"Indexer queue full for {self.config.submit_timeout_seconds}s"
            ) from None

        self.stats.num_added += 1

    async def close(self) -> None:
        """Stop accepting operations, flush every buffer and stop the workers."""
        if self._closed:
            return
        self._closed = True

        if not self._workers:
            return

        logger.info(f"Closing bulk indexer, {self._queue.qsize()} queued operations left")

        for _ in self._workers:
            await self._queue.put(_STOP)

        results = await asyncio.gather(*self._workers, return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                logger.error(f"Bulk indexer worker failed: {result!r}")

        self._workers = []
        logger.info(f"Bulk indexer closed: {self.stats.to_dict()}")

    def _encode(self, item: BulkIndexerItem) -> _QueuedItem:
        action: Dict[str, Any] = {
            "_op_type": item.action,
            "_index": self.index_name,
            "_id": item.document_id,
        }
        if item.action == "update" and self.config.retry_on_conflict:
            action["retry_on_conflict"] = self.config.retry_on_conflict
        if item.action != "delete" and item.body is not None:
            action["_source"] = item.body

        # Non-finite floats would serialize to NaN/Infinity, which the bulk API rejects
        try:
            lines = [
                json.dumps(part, separators=(",", ":"), ensure_ascii=False, allow_nan=False)
                for part in helpers.expand_action(action)
                if part is not None
            ]
        except (TypeError, ValueError) as e:
            raise InvalidDocumentError(
                f"Cannot serialize document {item.document_id}: {e}"
            ) from e

        size = sum(len(line.encode("utf-8")) + 1 for line in lines)
        return _QueuedItem(item=item, action=action, size=size)

    async def _worker(self, worker_id: int) -> None:
        """Collect queued operations and flush them by size or interval."""
        loop = asyncio.get_running_loop()
        interval = self.config.flush_interval_seconds
        batch = _Batch()
        deadline = loop.time() + interval

        while True:
            timeout = max(0.0, deadline - loop.time())
            try:
                entry = await asyncio.wait_for(self._queue.get(), timeout=timeout)
            except asyncio.TimeoutError:
                if batch:
                    logger.debug(f"Worker {worker_id}: flush interval elapsed")
                    await self._flush(worker_id, batch)
                    batch = _Batch()
                deadline = loop.time() + interval
                continue

            self._queue.task_done()

            if entry is _STOP:
                if batch:
                    await self._flush(worker_id, batch)
                return

            batch.add(entry)
            if batch.size >= self.config.flush_bytes:
                logger.debug(f"Worker {worker_id}: flush size reached ({batch.size} bytes)")
                await self._flush(worker_id, batch)
                batch = _Batch()
                deadline = loop.time() + interval

    async def _flush(self, worker_id: int, batch: _Batch) -> None:
        """Send one bulk request and dispatch per-item outcomes."""
        self.stats.num_requests += 1
        record_indexer_queue_depth(self._queue.qsize())
        start_time = time.monotonic()

        # Outcomes are yielded in submission order, one per action
        reported = 0
        failed = 0
        try:
            async with time_bulk_request(len(batch)):
                async for ok, info in helpers.async_streaming_bulk(
                    self.client,
                    batch.actions,
                    chunk_size=len(batch),
                    max_chunk_bytes=max(batch.size, self.config.flush_bytes),
                    raise_on_error=False,
                    raise_on_exception=False,
                ):
                    entry = batch.entries[reported]
                    reported += 1
                    result = next(iter(info.values()), {})

                    if ok:
                        self._report_success(entry.item, result)
                        continue

                    failed += 1
                    # Set when the whole request was refused by the cluster
                    error = result.pop("exception", None)
                    if error is not None:
                        self._report_failure(entry.item, None, error)
                    else:
                        self._report_failure(entry.item, result, None)
        except Exception as e:
            duration_ms = (time.monotonic() - start_time) * 1000
            logger.error(f"Worker {worker_id}: bulk request of {len(batch)} operations failed: {e}")
            performance_logger.log_batch(len(batch), duration_ms, success=False)
            self.stats.num_flushed += len(batch)
            for entry in batch.entries[reported:]:
                self._report_failure(entry.item, None, e)
            return

        duration_ms = (time.monotonic() - start_time) * 1000
        self.stats.num_flushed += len(batch)

        if reported < len(batch):
            logger.warning(
                f"Worker {worker_id}: bulk response has {reported} items "
                f"for {len(batch)} operations"
            )
            for entry in batch.entries[reported:]:
                failed += 1
                self._report_failure(entry.item, None, None)

        performance_logger.log_batch(len(batch), duration_ms, success=failed == 0)

    def _report_success(self, item: BulkIndexerItem, result: Dict[str, Any]) -> None:
        self.stats.num_indexed += 1
        if result.get("result") == "created":
            self.stats.num_created += 1
        elif result.get("result") == "updated":
            self.stats.num_updated += 1

        if item.on_success is not None:
            try:
                item.on_success(item, result)
            except Exception:
                logger.exception(f"on_success callback failed for {item.document_id}")

    def _report_failure(
        self,
        item: BulkIndexerItem,
        result: Optional[Dict[str, Any]],
        error: Optional[BaseException],
    ) -> None:
        self.stats.num_failed += 1

        if item.on_failure is not None:
            try:
                item.on_failure(item, result, error)
            except Exception:
                logger.exception(f"on_failure callback failed for {item.document_id}")
        else:
            reason = error if error is not None else (result or {}).get("error")
            logger.error(f"Failed to index {item.document_id}: {reason}")

    async def get_health_status(self) -> Dict[str, Any]:
        """Get indexer health status."""
        return {
            "status": "healthy" if self.running else "unhealthy",
            "running": self.running,
            "index": self.index_name,
            "queued": self._queue.qsize(),
            "workers": len(self._workers),
            "stats": self.stats.to_dict(),
        }
