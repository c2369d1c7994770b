"""
Admission control middleware.

Applies the scan, report or general admission policy to each request and
answers 429 when the caller is over its dynamic limit.
"""

import json
import logging
from typing import Any, Callable, Dict, Mapping, Optional

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from privacy_advisor.api.monitoring.metrics import record_admission_decision
from privacy_advisor.services.admission import AdmissionController, is_exempt, rate_limit_key

logger = logging.getLogger(__name__)

DENIAL_MESSAGE = "Too many requests, please try again later"


def select_policy(path: str) -> str:
    """Admission policy name for a request path."""
    if path.startswith('/api/scan'):
        return 'scan'
    if path.startswith('/api/report'):
        return 'report'
    return 'general'


class AdmissionMiddleware(BaseHTTPMiddleware):
    """
    Middleware for applying dynamic admission limits to API requests.
    """

    def __init__(self, app: ASGIApp, controllers: Mapping[str, AdmissionController]):
        """
        Args:
            app: ASGI application
            controllers: Admission controllers keyed by policy name
                ('scan', 'report', 'general')
        """
        super().__init__(app)
        self.controllers = dict(controllers)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """
        Process request and apply admission control.

        Args:
            request: Incoming request
            call_next: Next middleware/handler

        Returns:
            Response from handler or 429 if over the limit
        """
        path = request.url.path
        controller = self.controllers.get(select_policy(path))
        if is_exempt(path) or controller is None:
            return await call_next(request)

        key = self._get_rate_limit_key(request)
        body = await self._read_json_body(request)
        decision = await controller.admit(key, path, body)
        record_admission_decision(decision.policy, decision.allowed)

        if not decision.allowed:
            logger.warning(
                f"Admission denied: policy={decision.policy} key={key} limit={decision.limit} "
                f"complexity={decision.complexity.value if decision.complexity else 'unknown'}"
            )
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "error": "rate_limited",
                    "message": DENIAL_MESSAGE,
                    "retryAfterMs": decision.retry_after_ms,
                    "retryAfterSeconds": decision.retry_after_seconds,
                },
                headers={
                    "Retry-After": str(decision.retry_after_seconds),
                    "X-RateLimit-Limit": str(decision.limit),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Reset": str(decision.reset),
                }
            )

        response = await call_next(request)

        response.headers["X-RateLimit-Limit"] = str(decision.limit)
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
        response.headers["X-RateLimit-Reset"] = str(decision.reset)

        return response

    @staticmethod
    def _get_rate_limit_key(request: Request) -> str:
        client_ip = request.client.host if request.client else None
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            forwarded_for = forwarded_for.split(",")[0].strip()
        return rate_limit_key(client_ip, request.headers.get("User-Agent"), forwarded_for)

    @staticmethod
    async def _read_json_body(request: Request) -> Optional[Dict[str, Any]]:
        if request.method not in ("POST", "PUT", "PATCH"):
            return None
        if "json" not in request.headers.get("content-type", ""):
            return None
        try:
            raw = await request.body()
            body = json.loads(raw) if raw else None
        except (ValueError, UnicodeDecodeError) as e:
            logger.debug(f"Unparseable request body, classifying without it: {e}")
            return None
        return body if isinstance(body, dict) else None
