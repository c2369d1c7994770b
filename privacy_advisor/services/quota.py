"""
Daily scan quota service.

Tracks scans per identifier (user id or client IP) per UTC day for the free
tier. Privileged identifiers never reach this service; the caller decides.

Limits reset at midnight UTC: a new date is a new counter starting at 0.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Tuple

from redis import Redis
from redis.exceptions import RedisError

from privacy_advisor.models.quota import QuotaRecord, RateLimitInfo
from privacy_advisor.services.errors import QuotaStoreError

logger = logging.getLogger(__name__)

DEFAULT_DAILY_LIMIT = 3


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class QuotaStore(ABC):
    """Counter storage keyed by (identifier, UTC date)."""

    @abstractmethod
    async def get_or_create(self, identifier: str, date: str) -> QuotaRecord:
        """Return the record for the day, creating it at 0 if absent."""

    @abstractmethod
    async def increment(self, identifier: str, date: str) -> int:
        """Atomically add one to the day's counter, creating it if absent. Returns the new count."""

    @abstractmethod
    async def increment_if_below(self, identifier: str, date: str, limit: int) -> Tuple[bool, int]:
        """
        Atomically add one only if the counter is below limit.

        Returns:
            (incremented, count after the operation)
        """

    @abstractmethod
    async def decrement(self, identifier: str, date: str) -> int:
        """Atomically take one back from the day's counter, never below 0. Returns the new count."""


class InMemoryQuotaStore(QuotaStore):
    """Process-local quota store."""

    def __init__(self):
        self._counts: Dict[Tuple[str, str], int] = {}
        self._lock = asyncio.Lock()

    async def get_or_create(self, identifier: str, date: str) -> QuotaRecord:
        async with self._lock:
            count = self._counts.setdefault((identifier, date), 0)
        return QuotaRecord(identifier=identifier, date=date, scans_count=count)

    async def increment(self, identifier: str, date: str) -> int:
        async with self._lock:
            key = (identifier, date)
            self._counts[key] = self._counts.get(key, 0) + 1
            return self._counts[key]

    async def increment_if_below(self, identifier: str, date: str, limit: int) -> Tuple[bool, int]:
        async with self._lock:
            key = (identifier, date)
            current = self._counts.get(key, 0)
            if current >= limit:
                return False, current
            self._counts[key] = current + 1
            return True, current + 1

    async def decrement(self, identifier: str, date: str) -> int:
        async with self._lock:
            key = (identifier, date)
            self._counts[key] = max(0, self._counts.get(key, 0) - 1)
            return self._counts[key]


class RedisQuotaStore(QuotaStore):
    """
    Redis-backed quota store.

    Each (identifier, date) pair is a plain integer key; INCR is the atomic
    upsert-and-increment. Keys expire two days after creation.
    """

    # KEYS[1]=counter, ARGV[1]=limit, ARGV[2]=ttl seconds
    INCREMENT_IF_BELOW_SCRIPT = """
    local current = tonumber(redis.call("get", KEYS[1]) or "0")
    if current >= tonumber(ARGV[1]) then
        return {0, current}
    end
    current = redis.call("incr", KEYS[1])
    redis.call("expire", KEYS[1], ARGV[2])
    return {1, current}
    """

    # KEYS[1]=counter
    DECREMENT_SCRIPT = """
    local current = tonumber(redis.call("get", KEYS[1]) or "0")
    if current <= 0 then
        return 0
    end
    return redis.call("decr", KEYS[1])
    """

    def __init__(self, redis_client: Redis, key_prefix: str = 'quota', ttl_seconds: int = 2 * 24 * 3600):
        self.redis = redis_client
        self.key_prefix = key_prefix
        self.ttl_seconds = ttl_seconds
        self._increment_if_below = self.redis.register_script(self.INCREMENT_IF_BELOW_SCRIPT)
        self._decrement = self.redis.register_script(self.DECREMENT_SCRIPT)

    def _build_key(self, identifier: str, date: str) -> str:
        return f"{self.key_prefix}:{identifier}:{date}"

    async def get_or_create(self, identifier: str, date: str) -> QuotaRecord:
        key = self._build_key(identifier, date)
        try:
            # SET NX creates the day's row at 0 without touching an existing count
            self.redis.set(key, 0, nx=True, ex=self.ttl_seconds)
            raw = self.redis.get(key)
        except RedisError as e:
            raise QuotaStoreError(f"Failed to read quota for {identifier}: {e}") from e
        return QuotaRecord(identifier=identifier, date=date, scans_count=int(raw or 0))

    async def increment(self, identifier: str, date: str) -> int:
        key = self._build_key(identifier, date)
        try:
            pipe = self.redis.pipeline()
            pipe.incr(key)
            pipe.expire(key, self.ttl_seconds)
            count, _ = pipe.execute()
        except RedisError as e:
            raise QuotaStoreError(f"Failed to increment quota for {identifier}: {e}") from e
        return int(count)

    async def increment_if_below(self, identifier: str, date: str, limit: int) -> Tuple[bool, int]:
        key = self._build_key(identifier, date)
        try:
            incremented, count = self._increment_if_below(keys=[key], args=[limit, self.ttl_seconds])
        except RedisError as e:
            raise QuotaStoreError(f"Failed to consume quota for {identifier}: {e}") from e
        return bool(incremented), int(count)

    async def decrement(self, identifier: str, date: str) -> int:
        key = self._build_key(identifier, date)
        try:
            count = self._decrement(keys=[key])
        except RedisError as e:
            raise QuotaStoreError(f"Failed to release quota for {identifier}: {e}") from e
        return int(count)


class DailyQuotaService:
    """
    Manages daily scan limits for free tier identifiers.

    check() and increment() mirror the classic two-step flow; try_consume()
    performs the check and the increment as one atomic step and is what the
    scan endpoint uses, so concurrent requests cannot overrun the limit.
    """

    def __init__(
        self,
        store: QuotaStore,
        daily_limit: int = DEFAULT_DAILY_LIMIT,
        clock: Callable[[], datetime] = utc_now
    ):
        """
        Initialize the quota service.

        Args:
            store: Counter storage
            daily_limit: Scans allowed per identifier per UTC day
            clock: Returns the current time as an aware datetime
        """
        self.store = store
        self.daily_limit = daily_limit
        self._clock = clock

    def _now(self) -> datetime:
        now = self._clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now.astimezone(timezone.utc)

    def today(self) -> str:
        """Today's UTC date key, YYYY-MM-DD."""
        return self._now().date().isoformat()

    def next_reset(self) -> datetime:
        """Next UTC midnight."""
        now = self._now()
        return datetime(now.year, now.month, now.day, tzinfo=timezone.utc) + timedelta(days=1)

    def _info(self, scans_used: int, allowed: Optional[bool] = None) -> RateLimitInfo:
        return RateLimitInfo(
            allowed=scans_used < self.daily_limit if allowed is None else allowed,
            scans_used=scans_used,
            scans_remaining=max(0, self.daily_limit - scans_used),
            reset_at=self.next_reset(),
        )

    async def check(self, identifier: str) -> RateLimitInfo:
        """
        Check if the identifier has quota left today.

        Args:
            identifier: User ID or IP address

        Returns:
            Rate limit information
        """
        record = await self.store.get_or_create(identifier, self.today())
        return self._info(record.scans_count)

    async def increment(self, identifier: str) -> int:
        """Record one scan for today. Returns the new count."""
        count = await self.store.increment(identifier, self.today())
        logger.debug(f"Quota incremented for {identifier}: {count}/{self.daily_limit}")
        return count

    async def try_consume(self, identifier: str) -> RateLimitInfo:
        """
        Atomically consume one scan if the identifier is below the limit.

        Returns:
            Rate limit information after the attempt; allowed is False when
            nothing was consumed
        """
        consumed, count = await self.store.increment_if_below(identifier, self.today(), self.daily_limit)
        if not consumed:
            logger.info(f"Daily quota exhausted for {identifier} ({count}/{self.daily_limit})")
        return self._info(count, allowed=consumed)

    async def release(self, identifier: str) -> int:
        """Give back one scan consumed today, e.g. when the scan could not be queued."""
        count = await self.store.decrement(identifier, self.today())
        logger.info(f"Quota released for {identifier}: {count}/{self.daily_limit}")
        return count
