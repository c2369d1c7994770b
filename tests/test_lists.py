"""
Tests for the tracker list cache.
"""

import json

import pytest

from privacy_advisor.services.errors import ListsUnavailableError
from privacy_advisor.services.lists import (
    ListCache,
    ListStore,
    RedisListStore,
    StaticListStore,
    load_default_lists,
    normalize_list,
)


class CountingStore(ListStore):
    def __init__(self, data=None, error=None):
        self.data = data or {}
        self.error = error
        self.fetches = 0

    async def fetch(self):
        self.fetches += 1
        if self.error is not None:
            raise self.error
        return self.data

    async def save(self, data):
        self.data = data


STORED = {
    'easyprivacy': {'domains': ['tracker.example', 42, 'ads.example']},
    'whotracks': {
        'trackers': [
            {'domain': 'tracker.example', 'category': 'analytics'},
            {'domain': 'broken.example'},
            'garbage',
        ],
        'fingerprinting': ['fp.example', None],
    },
}


def test_normalize_list_drops_malformed_entries():
    easy = normalize_list(STORED['easyprivacy'])
    who = normalize_list(STORED['whotracks'])

    assert easy.domains == ['tracker.example', 'ads.example']
    assert easy.trackers is None
    assert [t.domain for t in who.trackers] == ['tracker.example']
    assert who.fingerprinting == ['fp.example']
    assert who.domains == []


def test_normalize_list_rejects_non_mapping():
    assert normalize_list(None) is None
    assert normalize_list(['a.com']) is None


def test_bundled_defaults_load():
    lists = load_default_lists()

    assert 'google-analytics.com' in lists.easy_privacy.domains
    assert 'fingerprintjs.com' in lists.who_tracks.fingerprinting
    assert lists.tracker_domains().count('google-analytics.com') == 1


def test_missing_defaults_raise(tmp_path):
    with pytest.raises(ListsUnavailableError):
        load_default_lists(tmp_path)


def test_malformed_defaults_raise(tmp_path):
    (tmp_path / 'easyprivacy-demo.json').write_text('["not", "a", "mapping"]')
    (tmp_path / 'whotracks-demo.json').write_text(json.dumps({'trackers': []}))

    with pytest.raises(ListsUnavailableError):
        load_default_lists(tmp_path)


@pytest.mark.asyncio
async def test_lists_served_from_store():
    cache = ListCache(StaticListStore(STORED))

    lists = await cache.get()

    assert lists.easy_privacy.domains == ['tracker.example', 'ads.example']
    assert lists.tracker_domains() == ['tracker.example', 'ads.example']


@pytest.mark.asyncio
async def test_lists_refreshed_after_ttl(clock):
    store = CountingStore(STORED)
    cache = ListCache(store, ttl_seconds=300, clock=clock)

    await cache.get()
    clock.advance(299)
    await cache.get()
    assert store.fetches == 1

    clock.advance(2)
    await cache.get()
    assert store.fetches == 2


@pytest.mark.asyncio
async def test_empty_store_falls_back_to_defaults():
    cache = ListCache(CountingStore({'easyprivacy': {'domains': ['only.example']}}))

    lists = await cache.get()

    assert 'google-analytics.com' in lists.easy_privacy.domains


@pytest.mark.asyncio
async def test_store_failure_falls_back_to_defaults():
    cache = ListCache(CountingStore(error=OSError("connection refused")))

    lists = await cache.get()

    assert 'doubleclick.net' in lists.easy_privacy.domains


@pytest.mark.asyncio
async def test_unavailable_when_store_and_defaults_fail(tmp_path):
    cache = ListCache(CountingStore(), defaults_dir=tmp_path)

    with pytest.raises(ListsUnavailableError):
        await cache.get()


@pytest.mark.asyncio
async def test_invalidate_forces_reload():
    store = CountingStore(STORED)
    cache = ListCache(store)

    await cache.get()
    cache.invalidate()
    await cache.get()

    assert store.fetches == 2


@pytest.mark.asyncio
async def test_store_with_only_malformed_entries_falls_back_to_defaults():
    cache = ListCache(StaticListStore({
        'easyprivacy': {'domains': [1, 2, None]},
        'whotracks': {'trackers': ['garbage', {'domain': 3}]},
    }))

    lists = await cache.get()

    assert 'google-analytics.com' in lists.easy_privacy.domains
    assert lists.who_tracks.trackers


def test_empty_defaults_raise(tmp_path):
    (tmp_path / 'easyprivacy-demo.json').write_text(json.dumps({'domains': []}))
    (tmp_path / 'whotracks-demo.json').write_text(json.dumps({'trackers': [], 'fingerprinting': []}))

    with pytest.raises(ListsUnavailableError):
        load_default_lists(tmp_path)


@pytest.mark.asyncio
async def test_refresh_reseeds_store_from_bundled_lists():
    store = CountingStore(STORED)
    cache = ListCache(store)
    assert (await cache.get()).easy_privacy.domains == ['tracker.example', 'ads.example']

    lists = await cache.refresh()

    assert set(store.data) == {'easyprivacy', 'whotracks'}
    assert 'google-analytics.com' in lists.easy_privacy.domains
    assert store.fetches == 2


class TestRedisListStore:

    @pytest.mark.asyncio
    async def test_save_then_fetch(self, redis_client):
        store = RedisListStore(redis_client)

        await store.save(STORED)

        assert json.loads(redis_client.get('lists:easyprivacy')) == STORED['easyprivacy']
        assert await store.fetch() == STORED

    @pytest.mark.asyncio
    async def test_unparseable_value_is_dropped(self, redis_client):
        redis_client.set('lists:easyprivacy', '{not json')
        redis_client.set('lists:whotracks', json.dumps(STORED['whotracks']))

        assert await RedisListStore(redis_client).fetch() == {'whotracks': STORED['whotracks']}

    @pytest.mark.asyncio
    async def test_cache_over_redis_after_refresh(self, redis_client):
        cache = ListCache(RedisListStore(redis_client))
        assert redis_client.get('lists:whotracks') is None

        lists = await cache.refresh()

        assert redis_client.exists('lists:easyprivacy', 'lists:whotracks') == 2
        assert 'google-analytics.com' in lists.easy_privacy.domains
