"""
Search engine client construction and index provisioning.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from elasticsearch import ApiError, AsyncElasticsearch, BadRequestError, TransportError

from ..config import ElasticsearchConfig
from ..core.connection import RetryPolicy, connect_with_retry
from ..monitoring.middleware import monitor_performance

logger = logging.getLogger(__name__)


def build_client(config: ElasticsearchConfig) -> AsyncElasticsearch:
    """Build an AsyncElasticsearch client from configuration, without any I/O."""
    options: Dict[str, Any] = {
        "max_retries": config.max_retries,
        "retry_on_timeout": True,
        "request_timeout": config.request_timeout,
    }
    if config.username:
        options["basic_auth"] = (config.username, config.password or "")

    return AsyncElasticsearch(hosts=list(config.urls), **options)


async def create_search_client(
    config: ElasticsearchConfig,
    client_factory: Callable[[ElasticsearchConfig], AsyncElasticsearch] = build_client,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> AsyncElasticsearch:
    """
    Create a client and verify the cluster answers.

    Raises:
        ConnectionFailedError: If the cluster did not answer within the configured attempts
    """
    client = client_factory(config)
    policy = RetryPolicy(
        retries=config.connection_attempts,
        delay_seconds=config.connection_retry_delay_seconds,
    )

    try:
        info = await connect_with_retry(
            client.info,
            policy,
            "Elasticsearch",
            retry_on=(ApiError, TransportError, OSError),
            sleep=sleep,
        )
    except Exception:
        await client.close()
        raise

    version = (info.get("version") or {}).get("number", "unknown")
    logger.info(f"Elasticsearch cluster version {version} at {', '.join(config.urls)}")
    return client


def _error_type(error: ApiError) -> str:
    body = error.body if isinstance(error.body, dict) else {}
    reason = body.get("error")
    if isinstance(reason, dict):
        return reason.get("type", "")
    return str(error.error)


@monitor_performance("ensure_index")
async def ensure_index(client: AsyncElasticsearch, name: str, index_config: Dict[str, Any]) -> bool:
    """
    Create ``name`` with ``index_config`` unless it already exists.

    Returns:
        True when this call created the index
    """
    if await client.indices.exists(index=name):
        logger.info(f"Index {name} already exists")
        return False

    try:
        await client.indices.create(
            index=name,
            settings=index_config.get("settings"),
            mappings=index_config.get("mappings"),
        )
    except BadRequestError as e:
        # Another instance created it between exists and create
        if _error_type(e) == "resource_already_exists_exception":
            logger.info(f"Index {name} was created concurrently")
            return False
        raise

    logger.info(f"Created index {name}")
    return True


def search_health_check(client: AsyncElasticsearch, index_name: Optional[str] = None):
    """Build a health check reporting whether the cluster answers a ping."""
    async def elasticsearch() -> Dict[str, Any]:
        reachable = await client.ping()
        result: Dict[str, Any] = {"status": "healthy" if reachable else "unhealthy"}
        if index_name:
            result["index"] = index_name
        return result

    return elasticsearch
