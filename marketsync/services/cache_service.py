# marketsync/services/cache_service.py
"""
In-process TTL cache for marketplace data.

Each entry carries a category (products, prices, orders, ...) that selects its
base TTL; an optional context string ("realtime", "historical", "listing")
tightens or loosens it. The cache is bounded: inserting into a full cache first
drops expired entries, then the oldest 20% of capacity.

One instance is created by the application factory and handed to every service
that needs it. Nothing is shared between processes or persisted.
"""

import logging
import sys
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from marketsync.core.enums import CacheCategory

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300

CATEGORY_TTL_SECONDS: Dict[str, int] = {
    CacheCategory.PRODUCTS.value: 3 * 60,
    CacheCategory.PRICES.value: 90,
    CacheCategory.STOCK.value: 2 * 60,
    CacheCategory.ORDERS.value: 10 * 60,
    CacheCategory.SALES.value: 15 * 60,
    CacheCategory.ACCOUNT.value: 30 * 60,
    CacheCategory.AUTH.value: 20 * 60,
    CacheCategory.USER.value: 25 * 60,
    CacheCategory.ANALYTICS.value: 20 * 60,
    CacheCategory.METRICS.value: 15 * 60,
    CacheCategory.ALERTS.value: 5 * 60,
    CacheCategory.CONFIG.value: 60 * 60,
    CacheCategory.CATEGORIES.value: 24 * 60 * 60,
    CacheCategory.FEES.value: 12 * 60 * 60,
}

REALTIME_MAX_TTL = 60
HISTORICAL_MIN_TTL = 30 * 60
LISTING_MAX_TTL = 3 * 60

EVICTION_FRACTION = 0.2
USER_PREFIX = "user:"


def ttl_for(category: Union[CacheCategory, str, None], context: Optional[str] = None) -> int:
    """
    Resolve the TTL in seconds for a category and optional context.

    Context rules are applied in order on top of the category value:
    realtime/live caps at 60s, historical/90d floors at 30min, listing/products
    caps at 3min.
    """
    key = category.value if isinstance(category, CacheCategory) else category
    ttl = CATEGORY_TTL_SECONDS.get(key, DEFAULT_TTL_SECONDS)

    if context:
        context = context.lower()
        if "realtime" in context or "live" in context:
            ttl = min(ttl, REALTIME_MAX_TTL)
        if "historical" in context or "90d" in context:
            ttl = max(ttl, HISTORICAL_MIN_TTL)
        if "listing" in context or "products" in context:
            ttl = min(ttl, LISTING_MAX_TTL)

    return ttl


def create_cache_key(*parts: Any) -> str:
    """Join key parts with ':' skipping None, e.g. ('ml', 'items', 42) -> 'ml:items:42'."""
    return ":".join(str(part) for part in parts if part is not None)


def user_key(user_id: Any, key: str) -> str:
    return f"{USER_PREFIX}{user_id}:{key}"


def efficiency_label(hit_rate: float) -> str:
    if hit_rate > 80:
        return "excellent"
    if hit_rate > 60:
        return "good"
    if hit_rate > 40:
        return "fair"
    return "low"


@dataclass
class CacheEntry:
    key: str
    value: Any
    category: str
    created_at: float
    ttl_seconds: int
    context: Optional[str] = None
    namespace: Optional[str] = None

    def is_valid(self, now: float) -> bool:
        return now - self.created_at <= self.ttl_seconds


@dataclass
class CacheStats:
    size: int
    max_size: int
    hits: int
    misses: int
    hit_rate: float
    efficiency: str


@dataclass
class UserCacheStats:
    user_id: str
    entries: int
    memory_kb: float
    oldest_key: Optional[str] = None
    newest_key: Optional[str] = None
    categories: Dict[str, int] = field(default_factory=dict)


class IntelligentCache:
    """
    Bounded TTL cache keyed by string.

    Args:
        max_size: hard cap on stored entries
        clock: zero-arg callable returning epoch seconds, injectable for tests
    """

    def __init__(self, max_size: int = 500, clock: Callable[[], float] = time.time):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.is_valid(self._clock())

    # Core operations

    def set(
        self,
        key: str,
        value: Any,
        category: Union[CacheCategory, str] = "default",
        context: Optional[str] = None,
        namespace: Optional[str] = None,
    ) -> None:
        if key not in self._entries and len(self._entries) >= self.max_size:
            self._evict()

        category_value = category.value if isinstance(category, CacheCategory) else str(category)
        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            category=category_value,
            created_at=self._clock(),
            ttl_seconds=ttl_for(category_value, context),
            context=context,
            namespace=namespace,
        )

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None

        if not entry.is_valid(self._clock()):
            del self._entries[key]
            self._misses += 1
            logger.debug(f"Cache expired: {key}")
            return None

        self._hits += 1
        return entry.value

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()
        self._hits = 0
        self._misses = 0

    def invalidate_pattern(self, pattern: str) -> int:
        """Remove every key containing ``pattern``. Returns how many were removed."""
        doomed = [key for key in self._entries if pattern in key]
        for key in doomed:
            del self._entries[key]
        if doomed:
            logger.debug(f"Invalidated {len(doomed)} cache entries matching '{pattern}'")
        return len(doomed)

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if not entry.is_valid(now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def _evict(self) -> None:
        removed = self.purge_expired()
        if len(self._entries) < self.max_size:
            logger.debug(f"Cache eviction removed {removed} expired entries")
            return

        to_drop = max(1, int(self.max_size * EVICTION_FRACTION))
        oldest = sorted(self._entries.values(), key=lambda entry: entry.created_at)[:to_drop]
        for entry in oldest:
            del self._entries[entry.key]
        logger.debug(f"Cache eviction removed {removed} expired and {len(oldest)} oldest entries")

    # Per-user namespace

    def set_for_user(self, user_id: Any, key: str, value: Any,
                     category: Union[CacheCategory, str] = "default", context: Optional[str] = None) -> None:
        self.set(user_key(user_id, key), value, category, context, namespace=str(user_id))

    def get_for_user(self, user_id: Any, key: str) -> Optional[Any]:
        return self.get(user_key(user_id, key))

    def delete_for_user(self, user_id: Any, key: str) -> bool:
        return self.delete(user_key(user_id, key))

    def invalidate_user(self, user_id: Any) -> int:
        prefix = f"{USER_PREFIX}{user_id}:"
        doomed = [key for key in self._entries if key.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def get_user_stats(self, user_id: Any) -> UserCacheStats:
        prefix = f"{USER_PREFIX}{user_id}:"
        entries = [entry for key, entry in self._entries.items() if key.startswith(prefix)]
        stats = UserCacheStats(user_id=str(user_id), entries=len(entries), memory_kb=0.0)
        if not entries:
            return stats

        size_bytes = 0
        for entry in entries:
            size_bytes += sys.getsizeof(entry.key) + sys.getsizeof(entry.value)
            stats.categories[entry.category] = stats.categories.get(entry.category, 0) + 1
        stats.memory_kb = round(size_bytes / 1024, 2)

        ordered = sorted(entries, key=lambda entry: entry.created_at)
        stats.oldest_key = ordered[0].key[len(prefix):]
        stats.newest_key = ordered[-1].key[len(prefix):]
        return stats

    def cleanup_user(self, user_id: Any, max_age_seconds: float = 24 * 60 * 60) -> int:
        """Drop a user's entries older than ``max_age_seconds`` regardless of TTL."""
        prefix = f"{USER_PREFIX}{user_id}:"
        now = self._clock()
        doomed = [
            key for key, entry in self._entries.items()
            if key.startswith(prefix) and now - entry.created_at > max_age_seconds
        ]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    # Stats

    def get_stats(self) -> CacheStats:
        total = self._hits + self._misses
        hit_rate = round(self._hits / total * 100, 2) if total else 0.0
        return CacheStats(
            size=len(self._entries),
            max_size=self.max_size,
            hits=self._hits,
            misses=self._misses,
            hit_rate=hit_rate,
            efficiency=efficiency_label(hit_rate),
        )


async def with_cache(
    cache: IntelligentCache,
    key: str,
    producer: Callable[[], Awaitable[Any]],
    category: Union[CacheCategory, str] = "default",
    context: Optional[str] = None,
) -> Any:
    """
    Return the cached value for ``key`` or await ``producer`` and cache its result.

    A producer exception propagates and nothing is cached.
    """
    cached = cache.get(key)
    if cached is not None:
        logger.debug(f"Cache hit: {key}")
        return cached

    logger.debug(f"Cache miss: {key}")
    value = await producer()
    cache.set(key, value, category, context)
    return value


async def with_user_cache(
    cache: IntelligentCache,
    user_id: Any,
    key: str,
    producer: Callable[[], Awaitable[Any]],
    category: Union[CacheCategory, str] = "default",
    context: Optional[str] = None,
) -> Any:
    cached = cache.get_for_user(user_id, key)
    if cached is not None:
        return cached

    value = await producer()
    cache.set_for_user(user_id, key, value, category, context)
    return value
