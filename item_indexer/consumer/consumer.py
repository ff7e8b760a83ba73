"""
RabbitMQ consumer service for the item indexer.

This module provides:
- Broker connection with bounded retries
- Prefetch-limited subscription to the items queue
- Per-message decode, processing and acknowledgement
- Requeue policy for transient failures
- Graceful stop that lets the in-flight message finish
- Consumer health monitoring
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

import aio_pika
from aio_pika.abc import (
    AbstractChannel,
    AbstractConnection,
    AbstractIncomingMessage,
    AbstractQueue,
    AbstractQueueIterator,
)
from aio_pika.exceptions import AMQPConnectionError

from ..config import ConsumerConfig, RabbitMQConfig
from ..core.connection import RetryPolicy, connect_with_retry
from ..core.errors import ConnectionFailedError, DecodeError, PipelineError
from ..core.logging import LogContextManager, generate_correlation_id
from ..monitoring.middleware import (
    record_message_acked,
    record_message_consumed,
    record_message_rejected,
)
from .models import SourceItem, decode_source_item
from .transformer import document_id

logger = logging.getLogger(__name__)

MessageCallback = Callable[[SourceItem], Awaitable[None]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConsumerState(str, Enum):
    """Lifecycle states of the message consumer."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    SUBSCRIBED = "subscribed"
    CONSUMING = "consuming"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass
class ConsumerMetrics:
    """Consumer performance and health metrics."""
    messages_consumed: int = 0
    messages_acked: int = 0
    messages_rejected: int = 0
    messages_requeued: int = 0
    decode_failures: int = 0
    processing_failures: int = 0
    last_message_timestamp: Optional[datetime] = None
    consumer_start_time: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert metrics to dictionary."""
        now = _utcnow()
        return {
            "messages_consumed": self.messages_consumed,
            "messages_acked": self.messages_acked,
            "messages_rejected": self.messages_rejected,
            "messages_requeued": self.messages_requeued,
            "decode_failures": self.decode_failures,
            "processing_failures": self.processing_failures,
            "last_message_timestamp": self.last_message_timestamp.isoformat() if self.last_message_timestamp else None,
            "consumer_start_time": self.consumer_start_time.isoformat() if self.consumer_start_time else None,
            "uptime_seconds": (now - (self.consumer_start_time or now)).total_seconds(),
        }


class MessageConsumer:
    """
    Consumer of source item messages.

    Every delivered message is decoded and handed to ``callback``. A message
    is acknowledged once the callback returned, and rejected when decoding or
    the callback failed. One bad message never stops consumption.
    """

    def __init__(
        self,
        rabbitmq_config: RabbitMQConfig,
        consumer_config: ConsumerConfig,
        callback: MessageCallback,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.rabbitmq_config = rabbitmq_config
        self.consumer_config = consumer_config
        self.callback = callback
        self._sleep = sleep

        self.state = ConsumerState.DISCONNECTED
        self.metrics = ConsumerMetrics()

        self.connection: Optional[AbstractConnection] = None
        self.channel: Optional[AbstractChannel] = None
        self.queue: Optional[AbstractQueue] = None

        self._queue_iter: Optional[AbstractQueueIterator] = None
        self._stop_event = asyncio.Event()

    @property
    def queue_name(self) -> str:
        return self.rabbitmq_config.queue_name

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    async def connect(self) -> None:
        """
        Connect to the broker and open a channel.

        Raises:
            ConnectionFailedError: If the broker stayed unreachable for every attempt
        """
        self.state = ConsumerState.CONNECTING
        policy = RetryPolicy(
            retries=self.rabbitmq_config.connection_attempts,
            delay_seconds=self.rabbitmq_config.connection_retry_delay_seconds,
        )

        try:
            self.connection = await connect_with_retry(
                lambda: aio_pika.connect(
                    self.rabbitmq_config.url,
                    client_properties={"connection_name": self.rabbitmq_config.app_id},
                ),
                policy,
                "RabbitMQ",
                retry_on=(AMQPConnectionError, OSError, asyncio.TimeoutError),
                sleep=self._sleep,
            )
        except ConnectionFailedError:
            self.state = ConsumerState.FAILED
            raise

        self.channel = await self.connection.channel()
        self.state = ConsumerState.CONNECTED

    async def setup(self) -> None:
        """Apply the prefetch limit and declare the items queue."""
        if self.channel is None:
            raise RuntimeError("Consumer is not connected")

        await self.channel.set_qos(prefetch_count=self.rabbitmq_config.prefetch_count)

        arguments = None
        if self.rabbitmq_config.dead_letter_exchange:
            arguments = {"x-dead-letter-exchange": self.rabbitmq_config.dead_letter_exchange}

        self.queue = await self.channel.declare_queue(
            self.queue_name,
            durable=self.rabbitmq_config.queue_durable,
            exclusive=False,
            auto_delete=False,
            arguments=arguments,
        )
        self.state = ConsumerState.SUBSCRIBED

        logger.info(
            f"Subscribed to queue {self.queue_name} "
            f"(prefetch {self.rabbitmq_config.prefetch_count})"
        )

    async def handle_message(self, message: AbstractIncomingMessage) -> bool:
        """
        Process one delivered message.

        Returns:
            True if the message was acknowledged, False if it was rejected
        """
        with LogContextManager(corr_id=message.message_id or generate_correlation_id()):
            self.metrics.messages_consumed += 1
            self.metrics.last_message_timestamp = _utcnow()
            record_message_consumed(self.queue_name)

            try:
                item = decode_source_item(message.body)
            except DecodeError as e:
                self.metrics.decode_failures += 1
                logger.error(f"Failed to decode message: {e}")
                await self._reject(message, e)
                return False

            with LogContextManager(doc_id=document_id(item)):
                try:
                    await self.callback(item)
                except PipelineError as e:
                    self.metrics.processing_failures += 1
                    logger.error(f"Failed to process message: {e}")
                    await self._reject(message, e)
                    return False
                except Exception as e:
                    self.metrics.processing_failures += 1
                    logger.exception(f"Unexpected error processing message: {e}")
                    await self._reject(message, e)
                    return False

                await message.ack()
                self.metrics.messages_acked += 1
                record_message_acked(self.queue_name)
                logger.debug("Message acknowledged")
                return True

    async def _reject(self, message: AbstractIncomingMessage, error: Exception) -> None:
        retryable = getattr(error, "retryable", False)
        requeue = (
            self.consumer_config.requeue_retryable_failures
            and retryable
            and not message.redelivered
        )

        await message.reject(requeue=requeue)

        self.metrics.messages_rejected += 1
        if requeue:
            self.metrics.messages_requeued += 1
        record_message_rejected(self.queue_name, type(error).__name__, requeue)

        logger.warning(
            f"Message rejected ({type(error).__name__}, requeue={requeue})"
        )

    async def consume(self) -> None:
        """Consume messages until the stream ends or a stop is requested."""
        if self.queue is None:
            raise RuntimeError("Consumer is not set up")

        self.state = ConsumerState.CONSUMING
        self.metrics.consumer_start_time = _utcnow()
        logger.info(f"Consuming from queue {self.queue_name}")

        async with self.queue.iterator() as queue_iter:
            self._queue_iter = queue_iter
            try:
                async for message in queue_iter:
                    await self.handle_message(message)
                    if self.stop_requested:
                        break
            finally:
                self._queue_iter = None

        logger.info(f"Stopped consuming from queue {self.queue_name}")
        self.state = ConsumerState.STOPPED

    def request_stop(self) -> None:
        """Ask the consumer to stop after the in-flight message."""
        if not self.stop_requested:
            logger.info("Consumer stop requested")
        self._stop_event.set()

    async def run(self) -> None:
        """Consume until the stream ends or ``request_stop`` is called."""
        consume_task = asyncio.create_task(self.consume())
        stop_task = asyncio.create_task(self._stop_event.wait())

        try:
            await asyncio.wait({consume_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)

            if consume_task.done():
                # Surfaces errors raised while consuming
                consume_task.result()
                return

            # Stop delivering new messages, let the in-flight one finish
            if self._queue_iter is not None:
                await self._queue_iter.close()

            try:
                await asyncio.wait_for(
                    consume_task, timeout=self.consumer_config.shutdown_timeout_seconds
                )
            except asyncio.TimeoutError:
                logger.warning(
                    f"In-flight message did not finish within "
                    f"{self.consumer_config.shutdown_timeout_seconds}s"
                )
            self.state = ConsumerState.STOPPED

        finally:
            stop_task.cancel()

    async def close(self) -> None:
        """Close the channel and the broker connection."""
        if self.channel is not None and not self.channel.is_closed:
            try:
                await self.channel.close()
            except Exception as e:
                logger.error(f"Error closing channel: {e}")

        if self.connection is not None and not self.connection.is_closed:
            try:
                await self.connection.close()
            except Exception as e:
                logger.error(f"Error closing broker connection: {e}")

        self.channel = None
        self.connection = None
        if self.state != ConsumerState.FAILED:
            self.state = ConsumerState.STOPPED

        logger.info("Broker connection closed")

    async def get_health_status(self) -> Dict[str, Any]:
        """Get consumer health status."""
        healthy = self.state in (
            ConsumerState.CONNECTED,
            ConsumerState.SUBSCRIBED,
            ConsumerState.CONSUMING,
        ) and self.connection is not None and not self.connection.is_closed

        return {
            "status": "healthy" if healthy else "unhealthy",
            "state": self.state.value,
            "queue": self.queue_name,
            "metrics": self.metrics.to_dict(),
        }
