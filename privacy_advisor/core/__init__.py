"""
Core module initialization.
"""

from .config import (
    APIConfig,
    Config,
    get_config,
    get_or_init_config,
    init_config,
    reload_config,
    RedisConfig,
    QueueConfig,
    RateLimitConfig,
    QuotaConfig,
    ListsConfig,
    MonitoringConfig,
    YAMLConfigLoader
)
from .cache import TTLCache

__all__ = [
    'APIConfig',
    'Config',
    'get_config',
    'get_or_init_config',
    'init_config',
    'reload_config',
    'RedisConfig',
    'QueueConfig',
    'RateLimitConfig',
    'QuotaConfig',
    'ListsConfig',
    'MonitoringConfig',
    'YAMLConfigLoader',
    'TTLCache',
]
