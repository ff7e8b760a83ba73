"""
Main entry point for the item indexer.

This module provides:
- Application initialization in dependency order
- Signal handling for graceful shutdown
- Ordered drain and cleanup on exit
"""

import asyncio
import logging
import os
import signal
import sys
from typing import Optional

from elasticsearch import AsyncElasticsearch

from .config import AppConfig, load_configuration
from .consumer import DocumentTransformer, MessageConsumer
from .core.errors import ConnectionFailedError
from .core.logging import setup_logging
from .indexer import (
    BulkIndexer,
    build_index_config,
    create_search_client,
    ensure_index,
    search_health_check,
)
from .monitoring import MonitoringService, set_monitoring_service
from .pipeline import IndexingPipeline

logger = logging.getLogger(__name__)


class ItemIndexerApplication:
    """
    Main item indexer application.

    Owns every connection and component, starts them leaf-first and stops
    them in the order that lets queued documents reach the index.
    """

    def __init__(self, config: AppConfig):
        self.config = config
        self.monitoring_service: Optional[MonitoringService] = None
        self.search_client: Optional[AsyncElasticsearch] = None
        self.indexer: Optional[BulkIndexer] = None
        self.pipeline: Optional[IndexingPipeline] = None
        self.consumer: Optional[MessageConsumer] = None
        self._signals_installed = False

    async def initialize(self) -> None:
        """Initialize all application components."""
        logger.info("Initializing item indexer...")

        if self.config.monitoring.enabled:
            self.monitoring_service = MonitoringService(self.config.monitoring)
            set_monitoring_service(self.monitoring_service)
            await self.monitoring_service.start()

        es_config = self.config.elasticsearch
        self.search_client = await create_search_client(es_config)

        if es_config.create_index:
            await ensure_index(
                self.search_client,
                es_config.index_name,
                build_index_config(es_config.number_of_shards, es_config.number_of_replicas),
            )

        self.indexer = BulkIndexer(self.search_client, es_config.index_name, self.config.indexer)
        await self.indexer.start()

        transformer = DocumentTransformer(
            strict_locale=self.config.consumer.strict_locale,
            strict_currency=self.config.consumer.strict_currency,
        )
        self.pipeline = IndexingPipeline(transformer, self.indexer)

        self.consumer = MessageConsumer(self.config.rabbitmq, self.config.consumer, self.pipeline)
        await self.consumer.connect()
        await self.consumer.setup()

        if self.monitoring_service:
            checker = self.monitoring_service.health_checker
            checker.add_check("consumer", self.consumer.get_health_status)
            checker.add_check("indexer", self.indexer.get_health_status)
            checker.add_check(
                "elasticsearch", search_health_check(self.search_client, es_config.index_name)
            )
            self.monitoring_service.ready = True

        logger.info("Item indexer initialized successfully")

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self.request_shutdown)
        self._signals_installed = True

    def _remove_signal_handlers(self) -> None:
        if not self._signals_installed:
            return
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        self._signals_installed = False

    def request_shutdown(self) -> None:
        """Stop consuming; cleanup follows once the in-flight message finished."""
        logger.info("Received shutdown signal")
        if self.consumer:
            self.consumer.request_stop()

    async def run(self) -> int:
        """
        Run the application until the stream closes or a signal arrives.

        Returns:
            Process exit status
        """
        try:
            await self.initialize()
        except ConnectionFailedError as e:
            logger.critical(f"Startup failed: {e}")
            await self.cleanup()
            return 1
        except Exception as e:
            logger.critical(f"Failed to initialize application: {e}", exc_info=True)
            await self.cleanup()
            return 1

        self._install_signal_handlers()

        try:
            await self.consumer.run()
        except Exception as e:
            logger.error(f"Consumer failed: {e}", exc_info=True)
            return 1
        finally:
            self._remove_signal_handlers()
            await self.cleanup()

        return 0

    async def cleanup(self) -> None:
        """Release every resource; each step runs even if a previous one failed."""
        logger.info("Cleaning up application resources...")

        if self.consumer:
            self.consumer.request_stop()

        if self.indexer:
            try:
                await self.indexer.close()
            except Exception as e:
                logger.error(f"Error closing bulk indexer: {e}")

        if self.consumer:
            try:
                await self.consumer.close()
            except Exception as e:
                logger.error(f"Error closing consumer: {e}")

        if self.search_client:
            try:
                await self.search_client.close()
            except Exception as e:
                logger.error(f"Error closing search client: {e}")
            self.search_client = None

        if self.monitoring_service:
            try:
                await self.monitoring_service.stop()
            except Exception as e:
                logger.error(f"Error stopping monitoring service: {e}")
            set_monitoring_service(None)
            self.monitoring_service = None

        logger.info("Application cleanup completed")


async def main() -> int:
    """Main application entry point."""
    config = load_configuration(os.getenv("CONFIG_FILE"))

    setup_logging(config.logging, config.environment)

    logger.info(f"Starting item indexer v{config.version}")
    logger.info(f"Environment: {config.environment.value}")
    logger.info(f"Configuration: {config.to_dict()}")

    app = ItemIndexerApplication(config)
    return await app.run()


def run() -> None:
    """Console script entry point."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
