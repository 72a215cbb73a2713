"""
In-process read-through cache for app_settings rows.

Entries live for a fixed TTL and are only evicted lazily. `None` results are
never cached, so a missing setting is re-fetched on every call. Concurrent
misses on the same key may fetch twice; that is harmless.
"""

import logging
import math
import time
from typing import Any, Awaitable, Callable, Optional

from cachetools import TTLCache

from mongo.constants import SETTINGS_CACHE_TTL_SECONDS
from mongo.documents import new_document, utc_now

logger = logging.getLogger(__name__)

SETTINGS_COLLECTION = "app_settings"


class SettingsCache:
    def __init__(self, ttl: float = SETTINGS_CACHE_TTL_SECONDS, timer: Callable[[], float] = time.monotonic):
        # bounded only by the number of distinct keys
        self._cache: TTLCache = TTLCache(maxsize=math.inf, ttl=ttl, timer=timer)

    async def get(self, key: str, fetch_fn: Callable[[], Awaitable[Any]]) -> Any:
        """Return the cached value for `key`, calling `fetch_fn` on miss or expiry."""
        try:
            return self._cache[key]
        except KeyError:
            pass

        value = await fetch_fn()
        if value is not None:
            self._cache[key] = value
        return value

    def invalidate(self, key: str) -> None:
        self._cache.pop(key, None)

    def invalidate_all(self) -> None:
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)


# Global instance
settings_cache = SettingsCache()


async def _settings_collection(db=None):
    if db is None:
        from mongo.client import get_database
        db = await get_database()
    return db[SETTINGS_COLLECTION]


async def get_setting(key: str, db=None, cache: Optional[SettingsCache] = None) -> Any:
    """Read `app_settings.value` for `key` through the cache."""
    if cache is None:
        cache = settings_cache

    async def _fetch():
        col = await _settings_collection(db)
        doc = await col.find_one({"key": key})
        return doc.get("value") if doc else None

    return await cache.get(key, _fetch)


async def set_setting(key: str, value: Any, db=None, cache: Optional[SettingsCache] = None) -> None:
    """Upsert a setting and drop its cached value."""
    col = await _settings_collection(db)
    defaults = new_document(SETTINGS_COLLECTION, {"key": key})
    await col.update_one(
        {"key": key},
        {
            "$set": {"value": value, "updatedAt": utc_now()},
            "$setOnInsert": {"id": defaults["id"], "createdAt": defaults["createdAt"]},
        },
        upsert=True,
    )
    (settings_cache if cache is None else cache).invalidate(key)
    logger.info("Setting '%s' updated", key)
