"""
Admission control for scan, report and general API traffic.

The per-request limit is derived from:
- Request complexity (simple vs complex URLs vs bulk operations)
- Queue backpressure (pending depth and failure ratio of the scan queue)

and enforced with a sliding-window counter keyed by client.
"""

import asyncio
import base64
import logging
import math
import time
from abc import ABC, abstractmethod
from collections import deque
from enum import Enum
from typing import Any, Callable, Deque, Dict, Iterable, Mapping, Optional, Tuple
from urllib.parse import parse_qsl, urlsplit
from uuid import uuid4

from pydantic import BaseModel, Field
from redis import Redis
from redis.exceptions import RedisError

from privacy_advisor.core.cache import TTLCache
from privacy_advisor.models.job import QueueMetrics

logger = logging.getLogger(__name__)

DEFAULT_COMPLEX_DOMAINS = ('facebook.com', 'google.com', 'amazon.com')
EXEMPT_PATH_PREFIXES = ('/healthz', '/health', '/readyz', '/metrics', '/api/admin')

MAX_BACKPRESSURE_FACTOR = 3.0
MIN_BACKPRESSURE_MULTIPLIER = 0.1
FAILURE_RATIO_THRESHOLD = 0.1
MIN_FAILURE_MULTIPLIER = 0.5


class ComplexityClass(str, Enum):
    """How expensive a request is expected to be for the scan workers."""
    SIMPLE = "simple"
    COMPLEX = "complex"
    BULK = "bulk"


def classify_request(
    path: str,
    body: Optional[Mapping[str, Any]] = None,
    complex_domains: Iterable[str] = DEFAULT_COMPLEX_DOMAINS
) -> ComplexityClass:
    """
    Classify a request by expected scan cost.

    - COMPLEX: force flag set, more than 5 query parameters, more than 4 path
      segments, or a host known to be expensive to scan
    - BULK: path mentions "bulk" or the batch flag is set
    - SIMPLE: everything else, including unparseable URLs

    Args:
        path: Request path
        body: Parsed JSON body, if any
        complex_domains: Host fragments that always classify as complex

    Returns:
        Complexity class
    """
    body = body if isinstance(body, Mapping) else {}

    if body.get('force') is True:
        return ComplexityClass.COMPLEX

    url = body.get('url')
    if isinstance(url, str):
        try:
            parts = urlsplit(url)
            hostname = (parts.hostname or '').lower()
            if not parts.scheme or not hostname:
                raise ValueError(f"Not an absolute URL: {url!r}")
            query_params = parse_qsl(parts.query, keep_blank_values=True)
            path_segments = [segment for segment in parts.path.split('/') if segment]
        except ValueError as e:
            logger.debug(f"Error determining scan complexity, defaulting to simple: {e}")
            return ComplexityClass.SIMPLE

        if len(query_params) > 5 or len(path_segments) > 4:
            return ComplexityClass.COMPLEX

        if any(domain in hostname for domain in complex_domains):
            return ComplexityClass.COMPLEX

    if 'bulk' in path or body.get('batch') is True:
        return ComplexityClass.BULK

    return ComplexityClass.SIMPLE


def calculate_load_factor(metrics: Optional[QueueMetrics], threshold: int) -> float:
    """
    Limit multiplier for the current queue state.

    Shrinks limits proportionally when the backlog exceeds threshold (down to
    0.1), otherwise shrinks them when more than 10% of jobs are failing (down
    to 0.5).
    """
    if metrics is None:
        return 1.0

    total_pending = metrics.total_pending
    if threshold > 0 and total_pending > threshold:
        backpressure = min(total_pending / threshold, MAX_BACKPRESSURE_FACTOR)
        return max(MIN_BACKPRESSURE_MULTIPLIER, 1.0 / backpressure)

    failure_ratio = metrics.failure_ratio
    if failure_ratio > FAILURE_RATIO_THRESHOLD:
        return max(MIN_FAILURE_MULTIPLIER, 1.0 - failure_ratio)

    return 1.0


def rate_limit_key(client_ip: Optional[str], user_agent: Optional[str], forwarded_for: Optional[str] = None) -> str:
    """
    Rate limit key from client IP and a truncated user agent encoding,
    so distinct clients behind one IP are counted separately.
    """
    ip = client_ip or forwarded_for or 'anonymous'
    agent = user_agent or 'unknown'
    encoded = base64.b64encode(agent.encode('utf-8')).decode('ascii')[:16]
    return f"{ip}:{encoded}"


def is_exempt(path: str) -> bool:
    """Health, metrics and admin paths bypass admission control."""
    return path.startswith(EXEMPT_PATH_PREFIXES)


class AdmissionPolicy(BaseModel):
    """Limits for one class of endpoints."""
    name: str
    base_limit: int = Field(..., ge=1)
    window_ms: int = Field(default=60_000, ge=1)
    complexity_multiplier: Dict[ComplexityClass, float] = Field(
        default_factory=lambda: {
            ComplexityClass.SIMPLE: 1.0,
            ComplexityClass.COMPLEX: 0.5,
            ComplexityClass.BULK: 0.3,
        }
    )
    queue_backpressure_threshold: int = Field(default=100, ge=1)
    enable_dynamic_adjustment: bool = True

    @property
    def window_seconds(self) -> float:
        return self.window_ms / 1000.0

    @property
    def retry_after_seconds(self) -> int:
        return math.ceil(self.window_ms / 1000)


def build_default_policies(
    scan_per_minute: int,
    report_per_minute: int,
    general_per_minute: int,
    window_ms: int = 60_000
) -> Dict[str, AdmissionPolicy]:
    """Pre-configured policies for scan, report and general endpoints."""
    return {
        'scan': AdmissionPolicy(
            name='scan',
            base_limit=scan_per_minute,
            window_ms=window_ms,
            complexity_multiplier={
                ComplexityClass.SIMPLE: 1.0,
                ComplexityClass.COMPLEX: 0.6,
                ComplexityClass.BULK: 0.3,
            },
            queue_backpressure_threshold=50,
            enable_dynamic_adjustment=True,
        ),
        'report': AdmissionPolicy(
            name='report',
            base_limit=report_per_minute,
            window_ms=window_ms,
            complexity_multiplier={
                ComplexityClass.SIMPLE: 1.0,
                ComplexityClass.COMPLEX: 0.8,
                ComplexityClass.BULK: 0.5,
            },
            queue_backpressure_threshold=100,
            enable_dynamic_adjustment=False,
        ),
        'general': AdmissionPolicy(
            name='general',
            base_limit=general_per_minute,
            window_ms=window_ms,
            complexity_multiplier={
                ComplexityClass.SIMPLE: 1.0,
                ComplexityClass.COMPLEX: 1.0,
                ComplexityClass.BULK: 0.7,
            },
            enable_dynamic_adjustment=False,
        ),
    }


class AdmissionDecision(BaseModel):
    """Outcome of admitting one request."""
    allowed: bool
    limit: int
    remaining: int
    reset: int = Field(..., description="Epoch seconds when the current window ends")
    retry_after_ms: int
    retry_after_seconds: int
    complexity: Optional[ComplexityClass] = None
    policy: str


class SlidingWindowLimiter(ABC):
    """Counts hits per key inside a rolling time window."""

    @abstractmethod
    async def hit(self, key: str, limit: int, window_seconds: float) -> Tuple[bool, dict]:
        """
        Record a hit and report whether it is within limit.

        Returns:
            Tuple of (is_allowed, info_dict) where info_dict contains
            limit, remaining and reset
        """


class InMemorySlidingWindowLimiter(SlidingWindowLimiter):
    """Process-local sliding window counter."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = asyncio.Lock()

    async def hit(self, key: str, limit: int, window_seconds: float) -> Tuple[bool, dict]:
        async with self._lock:
            now = self._clock()
            hits = self._hits.setdefault(key, deque())
            while hits and hits[0] <= now - window_seconds:
                hits.popleft()
            request_count = len(hits)
            hits.append(now)

        return request_count < limit, {
            "limit": limit,
            "remaining": max(0, limit - request_count - 1),
            "reset": int(now + window_seconds),
        }


class RedisSlidingWindowLimiter(SlidingWindowLimiter):
    """
    Redis-based sliding window counter using a sorted set of hit timestamps.
    Fails open when Redis is unavailable.
    """

    def __init__(self, redis_client: Redis, key_prefix: str = 'rate_limit', clock: Callable[[], float] = time.time):
        self.redis = redis_client
        self.key_prefix = key_prefix
        self._clock = clock

    async def hit(self, key: str, limit: int, window_seconds: float) -> Tuple[bool, dict]:
        current_time = self._clock()
        reset_time = int(current_time + window_seconds)
        try:
            window_start = current_time - window_seconds
            redis_key = f"{self.key_prefix}:{key}:{int(window_seconds)}"

            pipe = self.redis.pipeline()
            pipe.zremrangebyscore(redis_key, 0, window_start)
            pipe.zcard(redis_key)
            pipe.zadd(redis_key, {f"{current_time}:{uuid4().hex}": current_time})
            pipe.expire(redis_key, int(window_seconds) + 10)
            results = pipe.execute()
            request_count = results[1]
        except RedisError as e:
            logger.error(f"Redis error in rate limiting: {e}")
            return True, {"limit": limit, "remaining": limit, "reset": reset_time}

        return request_count < limit, {
            "limit": limit,
            "remaining": max(0, limit - request_count - 1),
            "reset": reset_time,
        }


class AdmissionController:
    """
    Computes the dynamic limit for a request and enforces it.

    The queue load factor is cached per policy for load_cache_seconds; the
    cache collapses concurrent recomputation into a single metrics read.
    """

    def __init__(
        self,
        policy: AdmissionPolicy,
        limiter: SlidingWindowLimiter,
        metrics_source: Optional[Callable[[], Optional[QueueMetrics]]] = None,
        cache: Optional[TTLCache] = None,
        complex_domains: Iterable[str] = DEFAULT_COMPLEX_DOMAINS,
        load_cache_seconds: float = 30.0
    ):
        """
        Initialize the controller.

        Args:
            policy: Limits for the endpoints this controller guards
            limiter: Sliding window hit limiter
            metrics_source: Blocking callable returning the scan queue snapshot;
                None disables dynamic adjustment
            cache: Cache for the load factor (shared between controllers is fine)
            complex_domains: Host fragments classified as complex
            load_cache_seconds: Load factor time to live
        """
        self.policy = policy
        self.limiter = limiter
        self.metrics_source = metrics_source
        self.cache = cache or TTLCache(default_ttl=load_cache_seconds)
        self.complex_domains = tuple(complex_domains)
        self.load_cache_seconds = load_cache_seconds

    @property
    def load_cache_key(self) -> str:
        return f"queue_load_adjustment:{self.policy.name}"

    async def _compute_load_factor(self) -> float:
        try:
            metrics = await asyncio.to_thread(self.metrics_source)
        except Exception as e:
            logger.warning(f"Error calculating load adjustment: {e}")
            return 1.0
        return calculate_load_factor(metrics, self.policy.queue_backpressure_threshold)

    async def load_adjustment(self) -> float:
        """Current queue load multiplier for this policy (cached)."""
        if self.metrics_source is None:
            return 1.0
        return await self.cache.get_or_compute(
            self.load_cache_key,
            self._compute_load_factor,
            ttl=self.load_cache_seconds,
        )

    async def compute_limit(
        self,
        path: str,
        body: Optional[Mapping[str, Any]] = None
    ) -> Tuple[int, Optional[ComplexityClass]]:
        """
        Limit applying to this request.

        Any failure while classifying or reading load falls back to the
        policy's base limit.

        Returns:
            Tuple of (limit, complexity class or None on fallback)
        """
        policy = self.policy
        try:
            complexity = classify_request(path, body, self.complex_domains)
            multiplier = policy.complexity_multiplier.get(complexity, 1.0)
            adjusted_limit = math.floor(policy.base_limit * multiplier)

            if policy.enable_dynamic_adjustment:
                load = await self.load_adjustment()
                adjusted_limit = math.floor(adjusted_limit * load)

            final_limit = max(1, adjusted_limit)
        except Exception as e:
            logger.error(f"Error calculating dynamic rate limit, using base limit: {e}", exc_info=True)
            return policy.base_limit, None

        logger.debug(
            f"Dynamic rate limit calculated: policy={policy.name} complexity={complexity.value} "
            f"base={policy.base_limit} multiplier={multiplier} final={final_limit}"
        )
        return final_limit, complexity

    async def admit(
        self,
        key: str,
        path: str,
        body: Optional[Mapping[str, Any]] = None
    ) -> AdmissionDecision:
        """
        Decide whether the request identified by key may proceed.

        Args:
            key: Rate limit key (see rate_limit_key)
            path: Request path
            body: Parsed JSON body, if any

        Returns:
            Admission decision with the limit that applied
        """
        limit, complexity = await self.compute_limit(path, body)
        allowed, info = await self.limiter.hit(
            f"{self.policy.name}:{key}", limit, self.policy.window_seconds
        )
        return AdmissionDecision(
            allowed=allowed,
            limit=info["limit"],
            remaining=0 if not allowed else info["remaining"],
            reset=info["reset"],
            retry_after_ms=self.policy.window_ms,
            retry_after_seconds=self.policy.retry_after_seconds,
            complexity=complexity,
            policy=self.policy.name,
        )
