"""
Redis client construction shared by the API, workers and the requeue tool.
"""

from typing import Optional

from redis import Redis

from privacy_advisor.core.config import RedisConfig


def create_redis_client(redis_config: RedisConfig, url: Optional[str] = None) -> Redis:
    """
    Create a Redis client from configuration.

    Args:
        redis_config: Redis settings
        url: Overrides redis_config.url

    Raises:
        ValueError: if no URL is configured
    """
    redis_url = url or redis_config.url
    if not redis_url:
        raise ValueError("Redis URL is not configured")

    return Redis.from_url(
        redis_url,
        max_connections=redis_config.max_connections,
        socket_timeout=redis_config.socket_timeout,
        socket_connect_timeout=redis_config.socket_connect_timeout,
        decode_responses=redis_config.decode_responses,
    )
