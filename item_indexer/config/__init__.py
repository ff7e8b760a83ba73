"""
Configuration package for the item indexer.

This package provides centralized configuration management with:
- Environment variable support
- Configuration file loading (YAML/JSON)
- Type-safe configuration classes
- Validation of impossible values before startup
"""

from .settings import (
    AppConfig,
    RabbitMQConfig,
    ElasticsearchConfig,
    IndexerConfig,
    ConsumerConfig,
    LoggingConfig,
    MonitoringConfig,
    Environment,
    config as app_config
)

from .loader import (
    ConfigLoader,
    load_configuration,
    DEFAULT_CONFIG_YAML,
    DEFAULT_CONFIG_JSON
)

__all__ = [
    # Main configuration classes
    "AppConfig",
    "RabbitMQConfig",
    "ElasticsearchConfig",
    "IndexerConfig",
    "ConsumerConfig",
    "LoggingConfig",
    "MonitoringConfig",
    "Environment",

    # Global config instance
    "app_config",

    # Loading utilities
    "ConfigLoader",
    "load_configuration",
    "DEFAULT_CONFIG_YAML",
    "DEFAULT_CONFIG_JSON",
]
