"""
Tracker reference list cache.

Serves the EasyPrivacy domain list and the WhoTracks fingerprinting/tracker
list to the scan logic. Lists are refreshed from a backing store at most
once per TTL window; malformed entries are dropped field by field, and the
bundled demo lists are used when the store has nothing usable.
"""

import json
import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from redis import Redis
from redis.exceptions import RedisError

from privacy_advisor.core.cache import TTLCache
from privacy_advisor.models.lists import DomainList, Lists, TrackerEntry
from privacy_advisor.services.errors import ListsUnavailableError

logger = logging.getLogger(__name__)

EASY_PRIVACY_SOURCE = 'easyprivacy'
WHO_TRACKS_SOURCE = 'whotracks'

DEFAULTS_DIR = Path(__file__).resolve().parent.parent / 'data'
DEFAULT_FILES = {
    EASY_PRIVACY_SOURCE: 'easyprivacy-demo.json',
    WHO_TRACKS_SOURCE: 'whotracks-demo.json',
}


class ListStore(ABC):
    """Backing store holding the latest downloaded lists, keyed by source."""

    @abstractmethod
    async def fetch(self) -> Dict[str, Any]:
        """Return raw list data keyed by source name."""

    @abstractmethod
    async def save(self, data: Dict[str, Any]) -> None:
        """Replace the stored lists with data keyed by source name."""


class StaticListStore(ListStore):
    """List store over an in-memory mapping."""

    def __init__(self, data: Optional[Dict[str, Any]] = None):
        self.data = data or {}

    async def fetch(self) -> Dict[str, Any]:
        return dict(self.data)

    async def save(self, data: Dict[str, Any]) -> None:
        self.data = dict(data)


class RedisListStore(ListStore):
    """List store reading JSON documents from Redis keys ``lists:<source>``."""

    def __init__(self, redis_client: Redis, key_prefix: str = 'lists'):
        self.redis = redis_client
        self.key_prefix = key_prefix

    def _key(self, source: str) -> str:
        return f"{self.key_prefix}:{source}"

    async def fetch(self) -> Dict[str, Any]:
        sources = [EASY_PRIVACY_SOURCE, WHO_TRACKS_SOURCE]
        raw_values = self.redis.mget([self._key(source) for source in sources])
        result: Dict[str, Any] = {}
        for source, raw in zip(sources, raw_values):
            if raw is None:
                continue
            try:
                result[source] = json.loads(raw)
            except (TypeError, ValueError) as e:
                logger.warning(f"Discarding unparseable {source} list from Redis: {e}")
        return result

    async def save(self, data: Dict[str, Any]) -> None:
        pipe = self.redis.pipeline()
        for source, raw in data.items():
            pipe.set(self._key(source), json.dumps(raw))
        pipe.execute()


def normalize_list(raw: Any) -> Optional[DomainList]:
    """
    Normalize raw list data, keeping only well-formed entries.

    Returns None when raw is not a mapping at all.
    """
    if not isinstance(raw, dict):
        return None

    raw_domains = raw.get('domains')
    domains = [d for d in raw_domains if isinstance(d, str)] if isinstance(raw_domains, list) else []

    trackers = None
    raw_trackers = raw.get('trackers')
    if isinstance(raw_trackers, list):
        trackers = [
            TrackerEntry(domain=t['domain'], category=t['category'])
            for t in raw_trackers
            if isinstance(t, dict) and isinstance(t.get('domain'), str) and isinstance(t.get('category'), str)
        ]

    fingerprinting = None
    raw_fingerprinting = raw.get('fingerprinting')
    if isinstance(raw_fingerprinting, list):
        fingerprinting = [f for f in raw_fingerprinting if isinstance(f, str)]

    return DomainList(domains=domains, trackers=trackers, fingerprinting=fingerprinting)


def _usable(domain_list: Optional[DomainList]) -> bool:
    return domain_list is not None and domain_list.has_entries()


def read_default_files(defaults_dir: Optional[Path] = None) -> Dict[str, Any]:
    """
    Raw bundled list documents keyed by source.

    Raises:
        ListsUnavailableError: if a file is missing or is not valid JSON
    """
    directory = Path(defaults_dir) if defaults_dir else DEFAULTS_DIR
    raw: Dict[str, Any] = {}
    for source, filename in DEFAULT_FILES.items():
        path = directory / filename
        try:
            with open(path, 'r', encoding='utf-8') as f:
                raw[source] = json.load(f)
        except (OSError, ValueError) as e:
            raise ListsUnavailableError(f"Failed to load privacy lists: {path}: {e}") from e
    return raw


def load_default_lists(defaults_dir: Optional[Path] = None) -> Lists:
    """
    Load the bundled default lists.

    Raises:
        ListsUnavailableError: if either file is missing, malformed or empty
    """
    raw = read_default_files(defaults_dir)
    easy = normalize_list(raw[EASY_PRIVACY_SOURCE])
    who = normalize_list(raw[WHO_TRACKS_SOURCE])
    if not (_usable(easy) and _usable(who)):
        raise ListsUnavailableError("Failed to load privacy lists: bundled defaults are malformed")
    return Lists(easy_privacy=easy, who_tracks=who)


class ListCache:
    """Time-bounded cache of the tracker lists with fallback to bundled defaults."""

    CACHE_KEY = 'privacy_lists'

    def __init__(
        self,
        store: Optional[ListStore] = None,
        ttl_seconds: float = 300,
        defaults_dir: Optional[Path] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize the list cache.

        Args:
            store: Backing store; None means bundled defaults only
            ttl_seconds: How long a loaded pair of lists is served from memory
            defaults_dir: Directory holding the bundled default JSON files
            clock: Monotonic time source in seconds
        """
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.defaults_dir = defaults_dir
        self._cache = TTLCache(default_ttl=ttl_seconds, clock=clock)

    async def get(self) -> Lists:
        """
        Return the current lists, refreshing them if the TTL has elapsed.

        Raises:
            ListsUnavailableError: if neither the store nor the defaults are usable
        """
        return await self._cache.get_or_compute(self.CACHE_KEY, self._load)

    def invalidate(self) -> None:
        self._cache.invalidate(self.CACHE_KEY)

    async def refresh(self) -> Lists:
        """
        Reseed the store from the bundled lists and reload.

        Raises:
            ListsUnavailableError: if the bundled lists cannot be read
            RedisError: if the store rejects the write
        """
        raw = read_default_files(self.defaults_dir)
        if self.store is not None:
            await self.store.save(raw)
            logger.info(f"List store reseeded with sources: {', '.join(raw)}")
        self.invalidate()
        return await self.get()

    async def _load(self) -> Lists:
        stored: Dict[str, Any] = {}
        if self.store is not None:
            try:
                stored = await self.store.fetch()
            except (RedisError, OSError, ValueError) as e:
                logger.warning(f"List store unavailable, using bundled defaults: {e}")

        easy = normalize_list(stored.get(EASY_PRIVACY_SOURCE))
        who = normalize_list(stored.get(WHO_TRACKS_SOURCE))
        if _usable(easy) and _usable(who):
            logger.debug(
                f"Loaded lists from store: {len(easy.domains)} easyprivacy domains, "
                f"{len(who.trackers or [])} whotracks trackers"
            )
            return Lists(easy_privacy=easy, who_tracks=who)

        logger.info("List store has no usable data, loading bundled defaults")
        return load_default_lists(self.defaults_dir)
