"""
Configuration management system with environment variable loading and validation.
"""

import yaml
from pathlib import Path
from typing import Optional, Dict, Any, List
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
import logging

logger = logging.getLogger(__name__)


class APIConfig(BaseSettings):
    """API server configuration."""
    model_config = SettingsConfigDict(env_prefix='API_', extra='ignore')

    host: str = Field(default='0.0.0.0')
    port: int = Field(default=8000, ge=1, le=65535)
    workers: int = Field(default=1, ge=1, le=32)
    reload: bool = Field(default=False)
    admin_api_key: Optional[str] = Field(None, description="Callers presenting this key bypass the daily quota")


class RedisConfig(BaseSettings):
    """Redis configuration."""
    model_config = SettingsConfigDict(env_prefix='REDIS_', extra='ignore')

    url: Optional[str] = Field(default='redis://localhost:6379/0')
    max_connections: int = Field(default=50, ge=1, le=1000)
    socket_timeout: int = Field(default=5, ge=1, le=60)
    socket_connect_timeout: int = Field(default=5, ge=1, le=60)
    decode_responses: bool = Field(default=True)


class QueueConfig(BaseSettings):
    """Scan job queue configuration."""
    model_config = SettingsConfigDict(env_prefix='QUEUE_', extra='ignore')

    name: str = Field(default='scan.site')
    dead_name: str = Field(default='scan.dead')
    attempts: int = Field(default=3, ge=1, le=25)
    backoff_ms: int = Field(default=5000, ge=0)
    concurrency: int = Field(default=2, ge=1, le=64)
    task_time_limit: int = Field(default=300, ge=10, le=3600)
    executor: Optional[str] = Field(
        None,
        description="Import path of the scan executor, 'package.module:attribute'"
    )


class RateLimitConfig(BaseSettings):
    """Admission control configuration."""
    model_config = SettingsConfigDict(env_prefix='RATE_LIMIT_', extra='ignore')

    window_ms: int = Field(default=60_000, ge=1000)
    scan_per_minute: int = Field(default=10, ge=1)
    report_per_minute: int = Field(default=60, ge=1)
    general_per_minute: int = Field(default=120, ge=1)
    load_cache_seconds: int = Field(default=30, ge=1)
    complex_domains: List[str] = Field(
        default_factory=lambda: ['facebook.com', 'google.com', 'amazon.com']
    )

    @field_validator('complex_domains', mode='before')
    @classmethod
    def parse_complex_domains(cls, v):
        """Parse complex domains from comma-separated string or list."""
        if v is None:
            return []
        if isinstance(v, str):
            return [domain.strip().lower() for domain in v.split(',') if domain.strip()]
        return v


class QuotaConfig(BaseSettings):
    """Daily scan quota configuration."""
    model_config = SettingsConfigDict(env_prefix='QUOTA_', extra='ignore')

    free_tier_limit: int = Field(default=3, ge=1)
    upgrade_url: str = Field(default='/pricing')


class ListsConfig(BaseSettings):
    """Tracker list cache configuration."""
    model_config = SettingsConfigDict(env_prefix='LISTS_', extra='ignore')

    ttl_seconds: int = Field(default=300, ge=1)
    defaults_dir: Optional[str] = Field(None)


class MonitoringConfig(BaseSettings):
    """Monitoring and observability configuration."""
    model_config = SettingsConfigDict(env_prefix='', extra='ignore')

    log_level: str = Field(default='INFO')
    log_format: str = Field(default='json')

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = {'DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'}
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()


class Config(BaseSettings):
    """Main configuration class."""
    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore'
    )

    # Environment
    environment: str = Field(default='development')
    debug: bool = Field(default=False)

    # Sub-configurations
    api: APIConfig = Field(default_factory=APIConfig)
    redis: RedisConfig = Field(default_factory=RedisConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    quota: QuotaConfig = Field(default_factory=QuotaConfig)
    lists: ListsConfig = Field(default_factory=ListsConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    @field_validator('environment')
    @classmethod
    def validate_environment(cls, v):
        """Validate environment."""
        valid_envs = {'development', 'staging', 'production', 'test'}
        if v.lower() not in valid_envs:
            raise ValueError(f"Invalid environment: {v}. Must be one of {valid_envs}")
        return v.lower()

    def validate_config(self) -> List[str]:
        """
        Validate configuration and return list of warnings/errors.

        Returns:
            List of validation messages
        """
        messages = []

        if self.environment == 'production':
            if self.debug:
                messages.append("WARNING: Debug mode enabled in production")
            if not self.redis.url:
                messages.append(
                    "WARNING: Redis URL not configured; admission control falls back to "
                    "per-process counters and dynamic adjustment is skipped"
                )

        if self.rate_limit.report_per_minute < self.rate_limit.scan_per_minute:
            messages.append("WARNING: report rate limit is lower than scan rate limit")

        if not self.queue.executor:
            messages.append("WARNING: QUEUE_EXECUTOR not set; workers cannot execute scan jobs")

        if self.queue.backoff_ms == 0:
            messages.append("WARNING: Queue backoff disabled; failed jobs retry immediately")

        return messages


class YAMLConfigLoader:
    """Load configuration from YAML files."""

    @staticmethod
    def load_yaml_config(config_path: Path) -> Dict[str, Any]:
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to YAML config file

        Returns:
            Configuration dictionary
        """
        if not config_path.exists():
            logger.warning(f"Config file not found: {config_path}")
            return {}

        try:
            with open(config_path, 'r') as f:
                config = yaml.safe_load(f)
                logger.info(f"Loaded configuration from {config_path}")
                return config or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Error loading config from {config_path}: {e}")
            return {}

    @staticmethod
    def merge_configs(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge two configuration dictionaries (override takes precedence).

        Args:
            base: Base configuration
            override: Override configuration

        Returns:
            Merged configuration
        """
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = YAMLConfigLoader.merge_configs(result[key], value)
            else:
                result[key] = value
        return result


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        raise RuntimeError("Configuration not initialized. Call init_config() first.")
    return _config


def init_config(
    env_file: Optional[str] = None,
    yaml_config_path: Optional[Path] = None
) -> Config:
    """
    Initialize the global configuration instance.

    YAML values are used as defaults for the sections they name; environment
    variables still take precedence for any section the YAML file omits.

    Args:
        env_file: Path to .env file (optional)
        yaml_config_path: Path to YAML config file (optional)

    Returns:
        Initialized Config instance
    """
    global _config

    yaml_config: Dict[str, Any] = {}
    if yaml_config_path:
        yaml_config = YAMLConfigLoader.load_yaml_config(yaml_config_path)

    base = Config(_env_file=env_file) if env_file else Config()
    if yaml_config:
        merged = YAMLConfigLoader.merge_configs(base.model_dump(), yaml_config)
        _config = Config.model_validate(merged)
    else:
        _config = base

    validation_messages = _config.validate_config()
    for msg in validation_messages:
        if msg.startswith('ERROR'):
            logger.error(msg)
            raise ValueError(msg)
        else:
            logger.warning(msg)

    logger.info(f"Configuration initialized for environment: {_config.environment}")
    return _config


def get_or_init_config() -> Config:
    """Return the global config, initializing it from the environment if needed."""
    if _config is None:
        return init_config()
    return _config


def reload_config():
    """Reload configuration (for hot reload support)."""
    global _config
    _config = None
    return init_config()
