"""
Centralized configuration management for the item indexer.

This module provides:
- Environment variable parsing with defaults
- Type-safe configuration classes per component
- Connection URL construction for the message broker
- Configuration validation
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.parse import quote


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes", "on")


def _env_optional_float(name: str) -> Optional[float]:
    value = os.getenv(name)
    return float(value) if value else None


class Environment(str, Enum):
    """Deployment environment enumeration."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


@dataclass
class RabbitMQConfig:
    """RabbitMQ connection and queue configuration."""
    host: str = "localhost"
    port: int = 5672
    username: str = "guest"
    password: str = "guest"
    vhost: str = ""
    app_id: str = "item-indexer"

    # Retries after the first connection try
    connection_attempts: int = 5
    connection_retry_delay_seconds: float = 5.0

    # Queue settings
    queue_name: str = "items.normalized"
    queue_durable: bool = False
    prefetch_count: int = 1
    dead_letter_exchange: Optional[str] = None

    @property
    def url(self) -> str:
        """Generate the AMQP connection URL."""
        credentials = f"{quote(self.username, safe='')}:{quote(self.password, safe='')}"
        return f"amqp://{credentials}@{self.host}:{self.port}/{quote(self.vhost, safe='')}"

    @classmethod
    def from_env(cls) -> "RabbitMQConfig":
        """Create RabbitMQ config from environment variables."""
        return cls(
            host=os.getenv("RABBITMQ_HOST", "localhost"),
            port=int(os.getenv("RABBITMQ_PORT", "5672")),
            username=os.getenv("RABBITMQ_USERNAME", "guest"),
            password=os.getenv("RABBITMQ_PASSWORD", "guest"),
            vhost=os.getenv("RABBITMQ_VHOST", ""),
            app_id=os.getenv("RABBITMQ_APP_ID", "item-indexer"),
            connection_attempts=int(os.getenv("RABBITMQ_CONNECTION_ATTEMPTS", "5")),
            connection_retry_delay_seconds=float(os.getenv("RABBITMQ_CONNECTION_RETRY_DELAY", "5.0")),
            queue_name=os.getenv("RABBITMQ_QUEUE_NAME", "items.normalized"),
            queue_durable=_env_bool("RABBITMQ_QUEUE_DURABLE", "false"),
            prefetch_count=int(os.getenv("PREFETCH_COUNT", "1")),
            dead_letter_exchange=os.getenv("RABBITMQ_DEAD_LETTER_EXCHANGE") or None,
        )


@dataclass
class ElasticsearchConfig:
    """Elasticsearch client and index configuration."""
    urls: List[str] = field(default_factory=lambda: ["http://localhost:9200"])
    username: Optional[str] = None
    password: Optional[str] = None

    # Retries after the first connection try
    connection_attempts: int = 5
    connection_retry_delay_seconds: float = 5.0

    # Transport-level retries for every request, bulk flushes included
    max_retries: int = 3
    request_timeout: float = 30.0

    # Index settings
    index_name: str = "items"
    number_of_shards: int = 1
    number_of_replicas: int = 1
    create_index: bool = True

    @classmethod
    def from_env(cls) -> "ElasticsearchConfig":
        """Create Elasticsearch config from environment variables."""
        urls = os.getenv("ELASTICSEARCH_URLS", "http://localhost:9200")
        return cls(
            urls=[url.strip() for url in urls.split(",") if url.strip()],
            username=os.getenv("ELASTICSEARCH_USERNAME") or None,
            password=os.getenv("ELASTICSEARCH_PASSWORD") or None,
            connection_attempts=int(os.getenv("ELASTICSEARCH_CONNECTION_ATTEMPTS", "5")),
            connection_retry_delay_seconds=float(os.getenv("ELASTICSEARCH_CONNECTION_RETRY_DELAY", "5.0")),
            max_retries=int(os.getenv("ELASTICSEARCH_MAX_RETRIES", "3")),
            request_timeout=float(os.getenv("ELASTICSEARCH_REQUEST_TIMEOUT", "30.0")),
            index_name=os.getenv("ELASTICSEARCH_INDEX_NAME", "items"),
            number_of_shards=int(os.getenv("ELASTICSEARCH_NUMBER_OF_SHARDS", "1")),
            number_of_replicas=int(os.getenv("ELASTICSEARCH_NUMBER_OF_REPLICAS", "1")),
            create_index=_env_bool("ELASTICSEARCH_CREATE_INDEX", "true"),
        )


@dataclass
class IndexerConfig:
    """Bulk indexer configuration."""
    workers: int = 2
    flush_bytes: int = 5_000_000
    flush_interval_seconds: float = 30.0
    queue_size: int = 1000
    retry_on_conflict: int = 3

    # None waits for queue space indefinitely
    submit_timeout_seconds: Optional[float] = None

    @classmethod
    def from_env(cls) -> "IndexerConfig":
        """Create indexer config from environment variables."""
        return cls(
            workers=int(os.getenv("INDEXER_WORKERS", "2")),
            flush_bytes=int(os.getenv("INDEXER_FLUSH_BYTES", "5000000")),
            flush_interval_seconds=float(os.getenv("INDEXER_FLUSH_INTERVAL", "30.0")),
            queue_size=int(os.getenv("INDEXER_QUEUE_SIZE", "1000")),
            retry_on_conflict=int(os.getenv("INDEXER_RETRY_ON_CONFLICT", "3")),
            submit_timeout_seconds=_env_optional_float("INDEXER_SUBMIT_TIMEOUT"),
        )


@dataclass
class ConsumerConfig:
    """Message handling configuration."""
    requeue_retryable_failures: bool = False
    shutdown_timeout_seconds: float = 30.0

    # Transformation strictness for values outside the known sets
    strict_locale: bool = True
    strict_currency: bool = True

    @classmethod
    def from_env(cls) -> "ConsumerConfig":
        """Create consumer config from environment variables."""
        return cls(
            requeue_retryable_failures=_env_bool("CONSUMER_REQUEUE_RETRYABLE", "false"),
            shutdown_timeout_seconds=float(os.getenv("CONSUMER_SHUTDOWN_TIMEOUT", "30.0")),
            strict_locale=_env_bool("TRANSFORM_STRICT_LOCALE", "true"),
            strict_currency=_env_bool("TRANSFORM_STRICT_CURRENCY", "true"),
        )


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"

    # File logging
    log_to_file: bool = False
    log_file_path: Optional[str] = None
    max_file_size: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5

    # Structured logging (JSON)
    structured: bool = False

    @classmethod
    def from_env(cls) -> "LoggingConfig":
        """Create logging config from environment variables."""
        return cls(
            level=os.getenv("LOG_LEVEL", "INFO").upper(),
            format=os.getenv("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"),
            date_format=os.getenv("LOG_DATE_FORMAT", "%Y-%m-%d %H:%M:%S"),
            log_to_file=_env_bool("LOG_TO_FILE", "false"),
            log_file_path=os.getenv("LOG_FILE_PATH"),
            max_file_size=int(os.getenv("LOG_MAX_FILE_SIZE", str(10 * 1024 * 1024))),
            backup_count=int(os.getenv("LOG_BACKUP_COUNT", "5")),
            structured=_env_bool("LOG_STRUCTURED", "false"),
        )


@dataclass
class MonitoringConfig:
    """Monitoring and metrics configuration."""
    enabled: bool = True
    health_check_port: int = 8001

    # Prometheus metrics
    prometheus_enabled: bool = True
    prometheus_path: str = "/metrics"

    # Metric groups
    collect_consumer_metrics: bool = True
    collect_indexer_metrics: bool = True
    collect_system_metrics: bool = True

    @classmethod
    def from_env(cls) -> "MonitoringConfig":
        """Create monitoring config from environment variables."""
        return cls(
            enabled=_env_bool("MONITORING_ENABLED", "true"),
            health_check_port=int(os.getenv("HEALTH_CHECK_PORT", "8001")),
            prometheus_enabled=_env_bool("PROMETHEUS_ENABLED", "true"),
            prometheus_path=os.getenv("PROMETHEUS_PATH", "/metrics"),
            collect_consumer_metrics=_env_bool("COLLECT_CONSUMER_METRICS", "true"),
            collect_indexer_metrics=_env_bool("COLLECT_INDEXER_METRICS", "true"),
            collect_system_metrics=_env_bool("COLLECT_SYSTEM_METRICS", "true"),
        )


@dataclass
class AppConfig:
    """Main application configuration."""
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = False

    # Component configs
    rabbitmq: RabbitMQConfig = field(default_factory=RabbitMQConfig.from_env)
    elasticsearch: ElasticsearchConfig = field(default_factory=ElasticsearchConfig.from_env)
    indexer: IndexerConfig = field(default_factory=IndexerConfig.from_env)
    consumer: ConsumerConfig = field(default_factory=ConsumerConfig.from_env)
    logging: LoggingConfig = field(default_factory=LoggingConfig.from_env)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig.from_env)

    # Application settings
    app_name: str = "item-indexer"
    version: str = "1.0.0"

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Create application config from environment variables."""
        env_str = os.getenv("ENVIRONMENT", "development").lower()
        try:
            environment = Environment(env_str)
        except ValueError:
            environment = Environment.DEVELOPMENT

        return cls(
            environment=environment,
            debug=_env_bool("DEBUG", "false"),
            app_name=os.getenv("APP_NAME", "item-indexer"),
            version=os.getenv("APP_VERSION", "1.0.0"),
        )

    def validate(self) -> None:
        """Validate configuration values."""
        if self.rabbitmq.connection_attempts < 0:
            raise ValueError("RabbitMQ connection attempts cannot be negative")

        if self.rabbitmq.prefetch_count < 1:
            raise ValueError("Prefetch count must be positive")

        if not self.rabbitmq.queue_name:
            raise ValueError("A queue name must be configured")

        if not self.elasticsearch.urls:
            raise ValueError("At least one Elasticsearch URL must be configured")

        if self.elasticsearch.connection_attempts < 0:
            raise ValueError("Elasticsearch connection attempts cannot be negative")

        if self.elasticsearch.max_retries < 0:
            raise ValueError("Max retries cannot be negative")

        if not self.elasticsearch.index_name:
            raise ValueError("An index name must be configured")

        if self.indexer.workers < 1:
            raise ValueError("Indexer needs at least one worker")

        if self.indexer.flush_bytes <= 0 or self.indexer.flush_interval_seconds <= 0:
            raise ValueError("Indexer flush thresholds must be positive")

        if self.indexer.queue_size < 1:
            raise ValueError("Indexer queue size must be positive")

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary for logging, credentials excluded."""
        return {
            "environment": self.environment.value,
            "debug": self.debug,
            "app_name": self.app_name,
            "version": self.version,
            "rabbitmq": {
                "host": self.rabbitmq.host,
                "port": self.rabbitmq.port,
                "vhost": self.rabbitmq.vhost,
                "queue_name": self.rabbitmq.queue_name,
                "prefetch_count": self.rabbitmq.prefetch_count,
                "dead_letter_exchange": self.rabbitmq.dead_letter_exchange,
            },
            "elasticsearch": {
                "urls": self.elasticsearch.urls,
                "index_name": self.elasticsearch.index_name,
                "max_retries": self.elasticsearch.max_retries,
            },
            "indexer": {
                "workers": self.indexer.workers,
                "flush_bytes": self.indexer.flush_bytes,
                "flush_interval_seconds": self.indexer.flush_interval_seconds,
                "queue_size": self.indexer.queue_size,
            },
        }


# Global configuration instance
config = AppConfig.from_env()
config.validate()
