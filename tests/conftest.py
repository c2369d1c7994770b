"""
Shared fixtures for the test suite.

Everything runs against in-process stores (fakeredis for the Redis-backed
ones); no Redis server or Celery worker is needed.
"""

import os
from datetime import datetime, timezone
from typing import AsyncGenerator, Optional

import fakeredis
import pytest
from httpx import ASGITransport, AsyncClient

# Set test environment
os.environ['ENVIRONMENT'] = 'test'
os.environ.pop('REDIS_URL', None)

from privacy_advisor.core.config import (  # noqa: E402
    APIConfig,
    Config,
    QueueConfig,
    QuotaConfig,
    RateLimitConfig,
    RedisConfig,
)
from privacy_advisor.models.report import Evidence, ScanRecord  # noqa: E402
from privacy_advisor.services.admission import InMemorySlidingWindowLimiter  # noqa: E402
from privacy_advisor.services.errors import BrokerError  # noqa: E402
from privacy_advisor.services.job_broker import InMemoryJobBroker  # noqa: E402
from privacy_advisor.services.quota import DailyQuotaService, InMemoryQuotaStore  # noqa: E402
from privacy_advisor.services.scan_repository import InMemoryScanRepository  # noqa: E402


class FixedClock:
    """Manually advanced clock for TTL and window tests."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def config() -> Config:
    """Configuration without Redis and with small limits."""
    return Config(
        environment='test',
        api=APIConfig(admin_api_key='test-admin-key'),
        redis=RedisConfig(url=None),
        queue=QueueConfig(name='scan.site', dead_name='scan.dead', attempts=3, backoff_ms=1000),
        rate_limit=RateLimitConfig(scan_per_minute=20, report_per_minute=60, general_per_minute=120),
        quota=QuotaConfig(free_tier_limit=3, upgrade_url='/pricing'),
    )


class FlakyJobBroker(InMemoryJobBroker):
    """In-memory broker whose next enqueue can be made to fail."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fail_next_enqueue: Optional[Exception] = None

    def enqueue(self, name, payload, opts=None, queue='scan.site'):
        if self.fail_next_enqueue is not None:
            error, self.fail_next_enqueue = self.fail_next_enqueue, None
            raise BrokerError(f"Failed to enqueue {name}: {error}") from error
        return super().enqueue(name, payload, opts, queue)


@pytest.fixture
def broker() -> FlakyJobBroker:
    return FlakyJobBroker(dead_letter_queue='scan.dead')


@pytest.fixture
def redis_client():
    """In-process Redis with Lua scripting."""
    client = fakeredis.FakeRedis(decode_responses=True)
    yield client
    client.flushall()


@pytest.fixture
def quota_service() -> DailyQuotaService:
    return DailyQuotaService(InMemoryQuotaStore(), daily_limit=3)


@pytest.fixture
def scan_repository() -> InMemoryScanRepository:
    return InMemoryScanRepository()


@pytest.fixture
def app(config, broker, quota_service, scan_repository):
    """FastAPI app wired to in-process components."""
    from privacy_advisor.api.main import create_app

    return create_app(
        config=config,
        broker=broker,
        quota_service=quota_service,
        scan_repository=scan_repository,
        limiter=InMemorySlidingWindowLimiter(),
    )


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client for the app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


def make_scan(scan_id: str = 'scan-1', input: str = 'https://www.example.com/') -> ScanRecord:
    return ScanRecord(
        id=scan_id,
        input=input,
        normalized_input=input,
        status='running',
        created_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
    )


def make_evidence(evidence_id: str, kind: str, details=None, severity: int = 3, scan_id: str = 'scan-1') -> Evidence:
    return Evidence(
        id=evidence_id,
        scan_id=scan_id,
        kind=kind,
        severity=severity,
        title=f"{kind} finding",
        details=details,
    )
