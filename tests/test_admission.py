"""
Tests for admission control: classification, queue load, limits and the
HTTP 429 surface.
"""

import asyncio
import threading
import time

import fakeredis
import pytest

from privacy_advisor.core.cache import TTLCache
from privacy_advisor.models.job import QueueMetrics
from privacy_advisor.services.admission import (
    AdmissionController,
    AdmissionPolicy,
    ComplexityClass,
    InMemorySlidingWindowLimiter,
    RedisSlidingWindowLimiter,
    build_default_policies,
    calculate_load_factor,
    classify_request,
    is_exempt,
    rate_limit_key,
)


def scan_policy(base_limit: int = 10) -> AdmissionPolicy:
    return build_default_policies(
        scan_per_minute=base_limit,
        report_per_minute=60,
        general_per_minute=120,
    )['scan']


class CountingMetricsSource:
    """Blocking metrics source that counts how often it is read."""

    def __init__(self, metrics=None, delay: float = 0.05, error: Exception = None):
        self.metrics = metrics or QueueMetrics()
        self.delay = delay
        self.error = error
        self.calls = 0
        self._lock = threading.Lock()

    def __call__(self):
        with self._lock:
            self.calls += 1
        time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.metrics


class TestClassifyRequest:

    def test_simple_url(self):
        assert classify_request('/api/scan', {'url': 'https://example.com/page'}) == ComplexityClass.SIMPLE

    def test_force_flag_is_complex(self):
        assert classify_request('/api/scan', {'url': 'https://example.com', 'force': True}) == ComplexityClass.COMPLEX

    def test_many_query_params_is_complex(self):
        url = 'https://example.com/?a=1&b=2&c=3&d=4&e=5&f=6'
        assert classify_request('/api/scan', {'url': url}) == ComplexityClass.COMPLEX

    def test_deep_path_is_complex(self):
        url = 'https://example.com/a/b/c/d/e'
        assert classify_request('/api/scan', {'url': url}) == ComplexityClass.COMPLEX

    def test_known_heavy_domain_is_complex(self):
        assert classify_request('/api/scan', {'url': 'https://www.facebook.com/'}) == ComplexityClass.COMPLEX

    def test_bulk_path_and_batch_flag(self):
        assert classify_request('/api/scan/bulk', {}) == ComplexityClass.BULK
        assert classify_request('/api/scan', {'url': 'https://example.com', 'batch': True}) == ComplexityClass.BULK

    def test_unparseable_url_is_simple(self):
        assert classify_request('/api/scan', {'url': 'not a url'}) == ComplexityClass.SIMPLE
        assert classify_request('/api/scan', {'url': 'http://[::1'}) == ComplexityClass.SIMPLE

    def test_missing_body_is_simple(self):
        assert classify_request('/api/scan', None) == ComplexityClass.SIMPLE


class TestLoadFactor:

    def test_idle_queue(self):
        assert calculate_load_factor(QueueMetrics(), threshold=50) == 1.0

    def test_no_metrics(self):
        assert calculate_load_factor(None, threshold=50) == 1.0

    def test_backlog_over_threshold(self):
        assert calculate_load_factor(QueueMetrics(waiting=80, active=20), threshold=50) == pytest.approx(0.5)

    def test_backlog_capped(self):
        factor = calculate_load_factor(QueueMetrics(waiting=1000), threshold=50)
        assert factor == pytest.approx(1 / 3)

    def test_failure_ratio(self):
        factor = calculate_load_factor(QueueMetrics(waiting=6, active=0, failed=4), threshold=50)
        assert factor == pytest.approx(0.6)

    def test_failure_ratio_floor(self):
        factor = calculate_load_factor(QueueMetrics(waiting=1, failed=9), threshold=50)
        assert factor == pytest.approx(0.5)


def test_rate_limit_key_prefers_client_ip():
    key = rate_limit_key('10.0.0.1', 'Mozilla/5.0 (X11; Linux x86_64)', forwarded_for='1.2.3.4')
    ip, encoded = key.split(':')
    assert ip == '10.0.0.1'
    assert len(encoded) == 16


def test_rate_limit_key_defaults():
    assert rate_limit_key(None, None).startswith('anonymous:')
    assert rate_limit_key(None, 'ua', forwarded_for='1.2.3.4').startswith('1.2.3.4:')


def test_exempt_paths():
    assert is_exempt('/healthz')
    assert is_exempt('/metrics')
    assert is_exempt('/api/admin/requeue')
    assert not is_exempt('/api/scan')


class TestAdmissionController:

    @pytest.mark.asyncio
    async def test_limit_scaled_by_complexity(self):
        controller = AdmissionController(scan_policy(10), InMemorySlidingWindowLimiter())

        limit, complexity = await controller.compute_limit('/api/scan', {'url': 'https://example.com', 'force': True})

        assert complexity == ComplexityClass.COMPLEX
        assert limit == 6

    @pytest.mark.asyncio
    async def test_limit_scaled_by_queue_load(self):
        source = CountingMetricsSource(QueueMetrics(waiting=100), delay=0)
        controller = AdmissionController(scan_policy(10), InMemorySlidingWindowLimiter(), metrics_source=source)

        limit, _ = await controller.compute_limit('/api/scan', {'url': 'https://example.com'})

        assert limit == 5

    @pytest.mark.asyncio
    async def test_limit_never_below_one(self):
        source = CountingMetricsSource(QueueMetrics(waiting=10_000), delay=0)
        controller = AdmissionController(scan_policy(1), InMemorySlidingWindowLimiter(), metrics_source=source)

        limit, _ = await controller.compute_limit('/api/scan/bulk', {})

        assert limit == 1

    @pytest.mark.asyncio
    async def test_concurrent_requests_read_metrics_once(self):
        source = CountingMetricsSource(QueueMetrics(waiting=5))
        controller = AdmissionController(
            scan_policy(10),
            InMemorySlidingWindowLimiter(),
            metrics_source=source,
            cache=TTLCache(default_ttl=30),
        )

        results = await asyncio.gather(*(controller.load_adjustment() for _ in range(20)))

        assert results == [1.0] * 20
        assert source.calls == 1

    @pytest.mark.asyncio
    async def test_load_factor_cached_between_requests(self):
        source = CountingMetricsSource(delay=0)
        controller = AdmissionController(scan_policy(10), InMemorySlidingWindowLimiter(), metrics_source=source)

        await controller.compute_limit('/api/scan', None)
        await controller.compute_limit('/api/scan', None)

        assert source.calls == 1

    @pytest.mark.asyncio
    async def test_metrics_failure_falls_back_to_no_adjustment(self):
        source = CountingMetricsSource(delay=0, error=ConnectionError("redis down"))
        controller = AdmissionController(scan_policy(10), InMemorySlidingWindowLimiter(), metrics_source=source)

        limit, complexity = await controller.compute_limit('/api/scan', {'url': 'https://example.com'})

        assert limit == 10
        assert complexity == ComplexityClass.SIMPLE

    @pytest.mark.asyncio
    async def test_classification_failure_falls_back_to_base_limit(self, monkeypatch):
        from privacy_advisor.services import admission

        def broken(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(admission, 'classify_request', broken)
        controller = AdmissionController(scan_policy(7), InMemorySlidingWindowLimiter())

        assert await controller.compute_limit('/api/scan', {}) == (7, None)

    @pytest.mark.asyncio
    async def test_admit_denies_over_limit(self, clock):
        controller = AdmissionController(scan_policy(2), InMemorySlidingWindowLimiter(clock=clock))

        first = await controller.admit('client', '/api/scan', None)
        second = await controller.admit('client', '/api/scan', None)
        third = await controller.admit('client', '/api/scan', None)

        assert first.allowed and second.allowed
        assert first.remaining == 1
        assert not third.allowed
        assert third.remaining == 0
        assert third.retry_after_ms == 60_000
        assert third.retry_after_seconds == 60

        clock.advance(61)
        assert (await controller.admit('client', '/api/scan', None)).allowed

    @pytest.mark.asyncio
    async def test_keys_are_counted_separately(self):
        controller = AdmissionController(scan_policy(1), InMemorySlidingWindowLimiter())

        assert (await controller.admit('a', '/api/scan', None)).allowed
        assert (await controller.admit('b', '/api/scan', None)).allowed
        assert not (await controller.admit('a', '/api/scan', None)).allowed


class TestAdmissionMiddleware:

    @pytest.fixture
    def config(self, config):
        config.rate_limit.scan_per_minute = 2
        return config

    @pytest.mark.asyncio
    async def test_denied_request_gets_429(self, client):
        for _ in range(2):
            response = await client.get('/api/scan/unknown')
            assert response.status_code == 404
            assert response.headers['X-RateLimit-Limit'] == '2'

        response = await client.get('/api/scan/unknown')

        assert response.status_code == 429
        assert response.json() == {
            "error": "rate_limited",
            "message": "Too many requests, please try again later",
            "retryAfterMs": 60000,
            "retryAfterSeconds": 60,
        }
        assert response.headers['Retry-After'] == '60'
        assert response.headers['X-RateLimit-Remaining'] == '0'

    @pytest.mark.asyncio
    async def test_exempt_paths_bypass_admission(self, client):
        for _ in range(5):
            response = await client.get('/healthz')
            assert response.status_code == 200
            assert 'X-RateLimit-Limit' not in response.headers

    @pytest.mark.asyncio
    async def test_report_policy_is_separate(self, client):
        for _ in range(3):
            await client.get('/api/scan/unknown')

        response = await client.get('/api/reports/unknown')

        assert response.status_code == 404
        assert response.headers['X-RateLimit-Limit'] == '60'


def test_classification_is_deterministic():
    body = {'url': 'https://shop.example.com/a/b?x=1', 'batch': False}

    results = {classify_request('/api/scan', dict(body)) for _ in range(10)}

    assert results == {ComplexityClass.SIMPLE}


class TestRedisSlidingWindowLimiter:

    @pytest.mark.asyncio
    async def test_denies_over_limit_and_slides(self, redis_client, clock):
        limiter = RedisSlidingWindowLimiter(redis_client, clock=clock)

        results = [(await limiter.hit('client', 2, 60))[0] for _ in range(3)]

        assert results == [True, True, False]
        clock.advance(61)
        allowed, info = await limiter.hit('client', 2, 60)
        assert allowed
        assert info == {"limit": 2, "remaining": 1, "reset": int(clock.now + 60)}

    @pytest.mark.asyncio
    async def test_same_timestamp_hits_are_counted_separately(self, redis_client, clock):
        limiter = RedisSlidingWindowLimiter(redis_client, clock=clock)

        for _ in range(5):
            await limiter.hit('client', 10, 60)

        assert redis_client.zcard('rate_limit:client:60') == 5

    @pytest.mark.asyncio
    async def test_fails_open_when_redis_down(self, clock):
        server = fakeredis.FakeServer()
        server.connected = False
        limiter = RedisSlidingWindowLimiter(fakeredis.FakeRedis(server=server), clock=clock)

        allowed, info = await limiter.hit('client', 1, 60)

        assert allowed
        assert info["remaining"] == 1

    @pytest.mark.asyncio
    async def test_controller_over_redis(self, redis_client, clock):
        controller = AdmissionController(scan_policy(1), RedisSlidingWindowLimiter(redis_client, clock=clock))

        assert (await controller.admit('client', '/api/scan', None)).allowed
        assert not (await controller.admit('client', '/api/scan', None)).allowed
