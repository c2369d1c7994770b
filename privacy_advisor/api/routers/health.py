"""
Health check and monitoring endpoints.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Request, Response, status
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel
from redis.exceptions import RedisError

from privacy_advisor import __version__
from privacy_advisor.api.monitoring.metrics import (
    get_metrics_content_type,
    get_metrics_text,
    update_queue_metrics,
)

router = APIRouter()
logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str
    timestamp: str
    version: str
    components: Dict[str, Dict[str, Any]] = {}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get(
    "/healthz",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Liveness check"
)
async def liveness():
    """The process is up and serving requests."""
    return HealthResponse(status="ok", timestamp=_now(), version=__version__)


@router.get(
    "/readyz",
    response_model=HealthResponse,
    summary="Readiness check",
    description="Check Redis and the job broker; 503 when a configured dependency is down"
)
async def readiness(request: Request, response: Response):
    components: Dict[str, Dict[str, Any]] = {}

    redis_client = getattr(request.app.state, 'redis_client', None)
    if redis_client is None:
        components['redis'] = {'status': 'disabled'}
    else:
        try:
            redis_client.ping()
            components['redis'] = {'status': 'healthy'}
        except RedisError as e:
            logger.warning(f"Readiness check: Redis unavailable: {e}")
            components['redis'] = {'status': 'unhealthy', 'error': str(e)}

    broker = request.app.state.broker
    queue_name = request.app.state.config.queue.name
    try:
        metrics = broker.get_metrics(queue_name)
        components['queue'] = {'status': 'healthy', **metrics.model_dump()}
    except RedisError as e:
        logger.warning(f"Readiness check: broker unavailable: {e}")
        components['queue'] = {'status': 'unhealthy', 'error': str(e)}

    healthy = all(c['status'] in ('healthy', 'disabled') for c in components.values())
    if not healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status="ok" if healthy else "unhealthy",
        timestamp=_now(),
        version=__version__,
        components=components,
    )


@router.get(
    "/metrics",
    response_class=PlainTextResponse,
    status_code=status.HTTP_200_OK,
    summary="Prometheus metrics"
)
async def prometheus_metrics(request: Request):
    """
    Prometheus metrics endpoint.

    Refreshes the scan queue gauges from the broker, then returns all
    metrics in Prometheus text format.
    """
    queue_name = request.app.state.config.queue.name
    try:
        update_queue_metrics(queue_name, request.app.state.broker.get_metrics(queue_name))
    except RedisError as e:
        logger.warning(f"Failed to refresh queue metrics: {e}")

    return PlainTextResponse(
        content=get_metrics_text().decode('utf-8'),
        media_type=get_metrics_content_type()
    )
