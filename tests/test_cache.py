"""
Tests for the TTL cache and its single-flight computation.
"""

import asyncio

import pytest

from privacy_advisor.core.cache import TTLCache


def test_set_and_expire(clock):
    cache = TTLCache(default_ttl=30, clock=clock)
    cache.set('load', 0.5)

    assert cache.get('load') == 0.5
    assert 'load' in cache

    clock.advance(30)
    assert cache.get('load') is None
    assert 'load' not in cache


def test_invalidate(clock):
    cache = TTLCache(default_ttl=30, clock=clock)
    cache.set('a', 1)
    cache.set('b', 2)

    cache.invalidate('a')
    assert cache.get('a') is None
    assert cache.get('b') == 2

    cache.invalidate()
    assert cache.get('b') is None


@pytest.mark.asyncio
async def test_get_or_compute_collapses_concurrent_misses():
    cache = TTLCache(default_ttl=30)
    calls = 0

    async def compute():
        nonlocal calls
        calls += 1
        await asyncio.sleep(0.05)
        return 0.7

    results = await asyncio.gather(*(cache.get_or_compute('load', compute) for _ in range(10)))

    assert results == [0.7] * 10
    assert calls == 1


@pytest.mark.asyncio
async def test_get_or_compute_serves_cached_value_until_expiry(clock):
    cache = TTLCache(default_ttl=30, clock=clock)
    values = iter([1.0, 0.5])

    async def compute():
        return next(values)

    assert await cache.get_or_compute('load', compute) == 1.0
    clock.advance(10)
    assert await cache.get_or_compute('load', compute) == 1.0
    clock.advance(25)
    assert await cache.get_or_compute('load', compute) == 0.5


@pytest.mark.asyncio
async def test_failed_computation_is_not_cached():
    cache = TTLCache(default_ttl=30)

    async def failing():
        raise RuntimeError("metrics unavailable")

    async def working():
        return 1.0

    with pytest.raises(RuntimeError):
        await cache.get_or_compute('load', failing)

    assert await cache.get_or_compute('load', working) == 1.0
