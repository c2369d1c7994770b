"""
FastAPI application factory.
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis import Redis
from redis.exceptions import RedisError

from privacy_advisor import __version__
from privacy_advisor.api.errors.handlers import register_exception_handlers
from privacy_advisor.api.middleware.rate_limit import AdmissionMiddleware
from privacy_advisor.api.middleware.request_context import RequestContextMiddleware
from privacy_advisor.api.routers import admin, health, reports, scans
from privacy_advisor.core.cache import TTLCache
from privacy_advisor.core.config import Config, get_or_init_config
from privacy_advisor.core.logging_config import configure_structlog
from privacy_advisor.core.redis_client import create_redis_client
from privacy_advisor.services.admission import (
    AdmissionController,
    InMemorySlidingWindowLimiter,
    RedisSlidingWindowLimiter,
    SlidingWindowLimiter,
    build_default_policies,
)
from privacy_advisor.services.job_broker import InMemoryJobBroker, JobBroker, RedisJobBroker
from privacy_advisor.services.lists import ListCache, RedisListStore
from privacy_advisor.services.quota import DailyQuotaService, InMemoryQuotaStore, RedisQuotaStore
from privacy_advisor.services.scan_repository import InMemoryScanRepository, ScanRepository

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager for startup and shutdown events.
    """
    config = app.state.config
    logger.info("Starting Privacy Advisor API")
    logger.info(f"Environment: {config.environment}")

    yield

    logger.info("Shutting down Privacy Advisor API")
    redis_client = app.state.redis_client
    if redis_client is not None:
        logger.info("Closing Redis client...")
        redis_client.close()
        logger.info("Redis client closed")


def _connect_redis(config: Config) -> Optional[Redis]:
    """Redis client if configured and reachable, else None (features degrade)."""
    if not config.redis.url:
        logger.info("Redis not configured, using in-process stores")
        return None
    try:
        logger.info("Initializing Redis client...")
        client = create_redis_client(config.redis)
        client.ping()
        logger.info("Redis client initialized successfully")
        return client
    except (RedisError, ValueError) as e:
        logger.warning(f"Failed to initialize Redis client: {e} (continuing with in-process stores)")
        return None


def create_app(
    config: Optional[Config] = None,
    redis_client: Optional[Redis] = None,
    broker: Optional[JobBroker] = None,
    quota_service: Optional[DailyQuotaService] = None,
    scan_repository: Optional[ScanRepository] = None,
    limiter: Optional[SlidingWindowLimiter] = None,
    load_cache: Optional[TTLCache] = None,
    list_cache: Optional[ListCache] = None
) -> FastAPI:
    """
    Create and configure FastAPI application.

    Components not passed in are built from configuration: Redis-backed
    when Redis is reachable, in-process otherwise.

    Returns:
        Configured FastAPI application instance
    """
    config = config or get_or_init_config()

    configure_structlog(
        log_level=config.monitoring.log_level,
        json_logs=(config.monitoring.log_format == 'json'),
        development_mode=(config.environment == 'development')
    )

    if redis_client is None and broker is None:
        redis_client = _connect_redis(config)

    if broker is None:
        if redis_client is not None:
            from privacy_advisor.services.celery_app import get_celery_app
            broker = RedisJobBroker(
                redis_client,
                celery_app=get_celery_app(),
                dead_letter_queue=config.queue.dead_name,
            )
        else:
            broker = InMemoryJobBroker(dead_letter_queue=config.queue.dead_name)

    if quota_service is None:
        store = RedisQuotaStore(redis_client) if redis_client is not None else InMemoryQuotaStore()
        quota_service = DailyQuotaService(store, daily_limit=config.quota.free_tier_limit)

    if limiter is None:
        limiter = RedisSlidingWindowLimiter(redis_client) if redis_client is not None else InMemorySlidingWindowLimiter()

    if list_cache is None:
        list_cache = ListCache(
            RedisListStore(redis_client) if redis_client is not None else None,
            ttl_seconds=config.lists.ttl_seconds,
            defaults_dir=Path(config.lists.defaults_dir) if config.lists.defaults_dir else None,
        )

    rate_limit = config.rate_limit
    load_cache = load_cache or TTLCache(default_ttl=rate_limit.load_cache_seconds)
    queue_name = config.queue.name

    def queue_metrics():
        return broker.get_metrics(queue_name)

    policies = build_default_policies(
        scan_per_minute=rate_limit.scan_per_minute,
        report_per_minute=rate_limit.report_per_minute,
        general_per_minute=rate_limit.general_per_minute,
        window_ms=rate_limit.window_ms,
    )
    controllers = {
        name: AdmissionController(
            policy,
            limiter,
            metrics_source=queue_metrics if policy.enable_dynamic_adjustment else None,
            cache=load_cache,
            complex_domains=rate_limit.complex_domains,
            load_cache_seconds=rate_limit.load_cache_seconds,
        )
        for name, policy in policies.items()
    }

    app = FastAPI(
        title="Privacy Advisor API",
        description="Privacy scan submission, reports and queue monitoring",
        version=__version__,
        docs_url="/api/docs",
        openapi_url="/api/openapi.json",
        lifespan=lifespan,
    )

    app.state.config = config
    app.state.redis_client = redis_client
    app.state.broker = broker
    app.state.quota_service = quota_service
    app.state.scan_repository = scan_repository or InMemoryScanRepository()
    app.state.admission_controllers = controllers
    app.state.list_cache = list_cache

    # Starlette runs the last added middleware first: request context wraps admission
    app.add_middleware(AdmissionMiddleware, controllers=controllers)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "X-Request-ID",
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "Retry-After",
        ]
    )

    app.include_router(health.router, tags=["Health"])
    app.include_router(scans.router, prefix="/api", tags=["Scans"])
    app.include_router(reports.router, prefix="/api", tags=["Reports"])
    app.include_router(admin.router, prefix="/api", tags=["Admin"])

    register_exception_handlers(app)

    logger.info("FastAPI application created successfully")
    return app
