"""
Configuration loader utilities.

Provides functions to load configuration from various sources:
- Configuration files (YAML/JSON)
- Environment variables (take precedence over files)
- Default values (fallback)
"""

import json
import logging
import os
import typing
from dataclasses import fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .settings import (
    AppConfig,
    ConsumerConfig,
    ElasticsearchConfig,
    Environment,
    IndexerConfig,
    LoggingConfig,
    MonitoringConfig,
    RabbitMQConfig,
)

logger = logging.getLogger(__name__)

SECTIONS = {
    "rabbitmq": RabbitMQConfig,
    "elasticsearch": ElasticsearchConfig,
    "indexer": IndexerConfig,
    "consumer": ConsumerConfig,
    "logging": LoggingConfig,
    "monitoring": MonitoringConfig,
}

ENV_MAPPINGS = {
    "ENVIRONMENT": "environment",
    "DEBUG": "debug",
    "APP_NAME": "app_name",
    "APP_VERSION": "version",
    # RabbitMQ settings
    "RABBITMQ_HOST": "rabbitmq.host",
    "RABBITMQ_PORT": "rabbitmq.port",
    "RABBITMQ_USERNAME": "rabbitmq.username",
    "RABBITMQ_PASSWORD": "rabbitmq.password",
    "RABBITMQ_VHOST": "rabbitmq.vhost",
    "RABBITMQ_APP_ID": "rabbitmq.app_id",
    "RABBITMQ_CONNECTION_ATTEMPTS": "rabbitmq.connection_attempts",
    "RABBITMQ_CONNECTION_RETRY_DELAY": "rabbitmq.connection_retry_delay_seconds",
    "RABBITMQ_QUEUE_NAME": "rabbitmq.queue_name",
    "RABBITMQ_QUEUE_DURABLE": "rabbitmq.queue_durable",
    "RABBITMQ_DEAD_LETTER_EXCHANGE": "rabbitmq.dead_letter_exchange",
    "PREFETCH_COUNT": "rabbitmq.prefetch_count",
    # Elasticsearch settings
    "ELASTICSEARCH_URLS": "elasticsearch.urls",
    "ELASTICSEARCH_USERNAME": "elasticsearch.username",
    "ELASTICSEARCH_PASSWORD": "elasticsearch.password",
    "ELASTICSEARCH_CONNECTION_ATTEMPTS": "elasticsearch.connection_attempts",
    "ELASTICSEARCH_CONNECTION_RETRY_DELAY": "elasticsearch.connection_retry_delay_seconds",
    "ELASTICSEARCH_MAX_RETRIES": "elasticsearch.max_retries",
    "ELASTICSEARCH_REQUEST_TIMEOUT": "elasticsearch.request_timeout",
    "ELASTICSEARCH_INDEX_NAME": "elasticsearch.index_name",
    "ELASTICSEARCH_NUMBER_OF_SHARDS": "elasticsearch.number_of_shards",
    "ELASTICSEARCH_NUMBER_OF_REPLICAS": "elasticsearch.number_of_replicas",
    "ELASTICSEARCH_CREATE_INDEX": "elasticsearch.create_index",
    # Indexer settings
    "INDEXER_WORKERS": "indexer.workers",
    "INDEXER_FLUSH_BYTES": "indexer.flush_bytes",
    "INDEXER_FLUSH_INTERVAL": "indexer.flush_interval_seconds",
    "INDEXER_QUEUE_SIZE": "indexer.queue_size",
    "INDEXER_RETRY_ON_CONFLICT": "indexer.retry_on_conflict",
    "INDEXER_SUBMIT_TIMEOUT": "indexer.submit_timeout_seconds",
    # Consumer settings
    "CONSUMER_REQUEUE_RETRYABLE": "consumer.requeue_retryable_failures",
    "CONSUMER_SHUTDOWN_TIMEOUT": "consumer.shutdown_timeout_seconds",
    "TRANSFORM_STRICT_LOCALE": "consumer.strict_locale",
    "TRANSFORM_STRICT_CURRENCY": "consumer.strict_currency",
    # Logging settings
    "LOG_LEVEL": "logging.level",
    "LOG_FORMAT": "logging.format",
    "LOG_DATE_FORMAT": "logging.date_format",
    "LOG_TO_FILE": "logging.log_to_file",
    "LOG_FILE_PATH": "logging.log_file_path",
    "LOG_MAX_FILE_SIZE": "logging.max_file_size",
    "LOG_BACKUP_COUNT": "logging.backup_count",
    "LOG_STRUCTURED": "logging.structured",
    # Monitoring settings
    "MONITORING_ENABLED": "monitoring.enabled",
    "HEALTH_CHECK_PORT": "monitoring.health_check_port",
    "PROMETHEUS_ENABLED": "monitoring.prometheus_enabled",
    "PROMETHEUS_PATH": "monitoring.prometheus_path",
    "COLLECT_CONSUMER_METRICS": "monitoring.collect_consumer_metrics",
    "COLLECT_INDEXER_METRICS": "monitoring.collect_indexer_metrics",
    "COLLECT_SYSTEM_METRICS": "monitoring.collect_system_metrics",
}


def _convert(value: Any, field_type: Any) -> Any:
    """Convert a raw file or environment value to the annotated field type."""
    if value is None:
        return None

    # Optional[X] -> X
    if typing.get_origin(field_type) is typing.Union:
        args = [arg for arg in typing.get_args(field_type) if arg is not type(None)]
        if isinstance(value, str) and value == "":
            return None
        field_type = args[0]

    if typing.get_origin(field_type) in (list, typing.List):
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return list(value)

    if field_type is bool:
        if isinstance(value, bool):
            return value
        return str(value).lower() in ("true", "1", "yes", "on")

    if field_type in (int, float, str):
        return field_type(value)

    return value


def build_section(cls, values: Dict[str, Any]):
    """Build a config dataclass from a dict, ignoring unknown keys."""
    kwargs = {}
    for f in fields(cls):
        if f.name in values:
            kwargs[f.name] = _convert(values[f.name], f.type)

    unknown = set(values) - {f.name for f in fields(cls)}
    if unknown:
        logger.warning(f"Ignoring unknown {cls.__name__} keys: {sorted(unknown)}")

    return cls(**kwargs)


class ConfigLoader:
    """Configuration loader with support for multiple sources."""

    def __init__(self):
        self.config_paths = [
            Path.cwd() / "config" / "app.yaml",
            Path.cwd() / "config" / "app.json",
            Path.home() / ".item_indexer" / "config.yaml",
            Path.home() / ".item_indexer" / "config.json",
        ]

    def load_from_file(self, config_path: Optional[Path] = None) -> Dict[str, Any]:
        """
        Load configuration from file.

        Args:
            config_path: Specific config file path, or None to try defaults

        Returns:
            Configuration dictionary from file, or empty dict if not found
        """
        if config_path:
            paths_to_try = [Path(config_path)]
        else:
            paths_to_try = self.config_paths

        for path in paths_to_try:
            if not path.exists():
                continue

            with open(path, "r", encoding="utf-8") as f:
                if path.suffix.lower() in [".yaml", ".yml"]:
                    return yaml.safe_load(f) or {}
                elif path.suffix.lower() == ".json":
                    return json.load(f) or {}

            logger.warning(f"Unsupported config file type: {path}")

        return {}

    def merge_configs(self, file_config: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge file configuration with environment variables.

        Environment variables take precedence over file config.
        """
        merged = {
            key: dict(value) if isinstance(value, dict) else value
            for key, value in file_config.items()
        }

        for env_var, config_path in ENV_MAPPINGS.items():
            env_value = os.getenv(env_var)
            if env_value is not None:
                self._set_nested_value(merged, config_path, env_value)

        return merged

    def _set_nested_value(self, config: Dict[str, Any], path: str, value: Any) -> None:
        """Set a value in a nested dictionary using dot notation."""
        keys = path.split(".")
        current = config

        for key in keys[:-1]:
            if key not in current or not isinstance(current[key], dict):
                current[key] = {}
            current = current[key]

        current[keys[-1]] = value

    def load_config(self, config_path: Optional[Path] = None) -> AppConfig:
        """
        Load and create AppConfig from available sources.

        Args:
            config_path: Optional specific config file path

        Returns:
            Validated AppConfig instance
        """
        merged = self.merge_configs(self.load_from_file(config_path))

        env_str = str(merged.get("environment", "development")).lower()
        try:
            environment = Environment(env_str)
        except ValueError:
            logger.warning(f"Unknown environment {env_str!r}, using development")
            environment = Environment.DEVELOPMENT

        sections = {
            name: build_section(cls, merged.get(name) or {})
            for name, cls in SECTIONS.items()
        }

        config = AppConfig(
            environment=environment,
            debug=_convert(merged.get("debug", False), bool),
            app_name=str(merged.get("app_name", "item-indexer")),
            version=str(merged.get("version", "1.0.0")),
            **sections,
        )
        config.validate()
        return config


def load_configuration(config_path: Optional[Path] = None) -> AppConfig:
    """
    Convenience function to load application configuration.

    Args:
        config_path: Optional path to configuration file

    Returns:
        Configured AppConfig instance
    """
    loader = ConfigLoader()
    return loader.load_config(config_path)


# Example configuration file templates
DEFAULT_CONFIG_YAML = """
environment: development
debug: false

rabbitmq:
  host: localhost
  port: 5672
  username: guest
  password: guest
  vhost: ""
  queue_name: items.normalized
  prefetch_count: 1
  connection_attempts: 5

elasticsearch:
  urls:
    - http://localhost:9200
  index_name: items
  max_retries: 3
  connection_attempts: 5

indexer:
  workers: 2
  flush_bytes: 5000000
  flush_interval_seconds: 30

logging:
  level: INFO
  structured: false

monitoring:
  enabled: true
  health_check_port: 8001
"""

DEFAULT_CONFIG_JSON = json.dumps(yaml.safe_load(DEFAULT_CONFIG_YAML), indent=2)
