"""
In-process TTL cache with single-flight computation.

Implements:
- Per-key time-to-live with an injectable clock
- get_or_compute() collapsing concurrent misses on the same key into a
  single in-flight computation whose result every waiter observes
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass
class _CacheEntry:
    value: Any
    expires_at: float


class TTLCache:
    """
    Small keyed cache used for values that are expensive to compute and
    acceptable to serve slightly stale (queue load factors, tracker lists).

    Instances are cheap; create one per component so tests can control the
    clock and observe concurrency without touching module state.
    """

    def __init__(self, default_ttl: float = 30.0, clock: Callable[[], float] = time.monotonic):
        """
        Initialize the cache.

        Args:
            default_ttl: Time to live in seconds when set() is called without one
            clock: Monotonic time source in seconds
        """
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: Dict[str, _CacheEntry] = {}
        self._inflight: Dict[str, asyncio.Future] = {}

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value for key, or None if absent or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store value under key for ttl seconds."""
        ttl = self.default_ttl if ttl is None else ttl
        self._entries[key] = _CacheEntry(value=value, expires_at=self._clock() + ttl)

    def invalidate(self, key: Optional[str] = None) -> None:
        """Drop one key, or every key when called without arguments."""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    async def get_or_compute(
        self,
        key: str,
        compute: Callable[[], Awaitable[T]],
        ttl: Optional[float] = None
    ) -> T:
        """
        Return the cached value for key, computing it at most once per miss.

        Callers arriving while a computation for the same key is running
        await that computation instead of starting their own. A failed
        computation is not cached; its exception is raised to every waiter.

        Args:
            key: Cache key
            compute: Coroutine factory producing the value
            ttl: Time to live in seconds for the computed value

        Returns:
            Cached or freshly computed value
        """
        cached = self.get(key)
        if cached is not None:
            return cached

        inflight = self._inflight.get(key)
        if inflight is not None:
            logger.debug(f"Cache JOIN: waiting on in-flight computation for {key}")
            return await asyncio.shield(inflight)

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        logger.debug(f"Cache MISS: computing {key}")
        try:
            value = await compute()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # Mark retrieved so an unobserved failure does not warn at GC time
            future.exception()
            raise
        else:
            self.set(key, value, ttl)
            future.set_result(value)
            return value
        finally:
            self._inflight.pop(key, None)
