"""In-memory TTL cache for normalized posts, with statistics and a sweep loop."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

from .constants import DEFAULT_CACHE_TTL_SECONDS, DEFAULT_CLEANUP_INTERVAL_SECONDS
from .logger import get_logger
from .posts import CachedPost, normalize_posts

logger = get_logger()

Clock = Callable[[], float]


@dataclass
class CacheEntry:
    """Cached post list with its absolute expiration time."""
    items: list[CachedPost]
    expires_at: float
    created_at: float = field(default_factory=time.time)

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


@dataclass
class CacheStats:
    """Cache statistics for monitoring."""
    total_hits: int = 0
    total_misses: int = 0
    total_sets: int = 0
    total_invalidations: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.total_hits + self.total_misses
        return self.total_hits / total if total > 0 else 0.0


class PostCache:
    """TTL key-value cache of post lists.

    All access happens on the event loop thread and never awaits between a
    read and a write, so no lock is needed.
    """

    def __init__(
        self,
        name: str = "posts",
        ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS,
        cleanup_interval: int = DEFAULT_CLEANUP_INTERVAL_SECONDS,
        clock: Clock = time.time,
    ):
        self.name = name
        self._entries: dict[str, CacheEntry] = {}
        self._ttl_seconds = ttl_seconds
        self._cleanup_interval = cleanup_interval
        self._clock = clock
        self._stats = CacheStats()
        self._cleanup_task: Optional[asyncio.Task] = None
        self._running = False

        logger.debug(
            f"PostCache '{name}' initialized: ttl={ttl_seconds}s, cleanup_interval={cleanup_interval}s"
        )

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    @property
    def clock(self) -> Clock:
        return self._clock

    async def start(self) -> None:
        """Start the background sweep of expired entries."""
        if self._running:
            return

        self._running = True
        self._cleanup_task = asyncio.create_task(self._cleanup_loop(), name=f"post-cache-sweep:{self.name}")
        logger.info(f"PostCache '{self.name}' started")

    async def stop(self) -> None:
        """Stop the sweep loop. Cached entries are kept."""
        self._running = False
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
        logger.info(f"PostCache '{self.name}' stopped")

    def get(self, key: str) -> list[CachedPost]:
        """Return the cached posts for ``key``, or an empty list if absent or expired."""
        entry = self._entries.get(key)

        if entry is None:
            self._stats.total_misses += 1
            return []

        if entry.is_expired(self._clock()):
            del self._entries[key]
            self._stats.total_misses += 1
            self._stats.total_invalidations += 1
            logger.debug(f"Cache entry expired: {self.name}:{key}")
            return []

        self._stats.total_hits += 1
        return list(entry.items)

    def set(self, key: str, raw_items: Iterable[Any] | None) -> list[CachedPost]:
        """
        Normalize and store posts for ``key``, replacing any previous entry.

        Args:
            key: Cache key (user id or niche)
            raw_items: Posts in any upstream shape

        Returns:
            The normalized posts that were stored
        """
        now = self._clock()
        items = normalize_posts(raw_items)
        self._entries[key] = CacheEntry(items=items, expires_at=now + self._ttl_seconds, created_at=now)
        self._stats.total_sets += 1

        logger.info(f"Cached {len(items)} posts in '{self.name}' for {key!r}, expires in {self._ttl_seconds}s")
        return list(items)

    def invalidate(self, key: str) -> bool:
        """Drop the entry for ``key``. Returns True if one existed."""
        if self._entries.pop(key, None) is None:
            return False
        self._stats.total_invalidations += 1
        return True

    def clear(self) -> int:
        """Clear all entries and return how many were removed."""
        count = len(self._entries)
        self._entries.clear()
        self._stats.total_invalidations += count
        if count:
            logger.info(f"Cleared {count} entries from '{self.name}'")
        return count

    def sweep_expired(self) -> int:
        """Remove expired entries and return how many were removed."""
        now = self._clock()
        expired_keys = [key for key, entry in self._entries.items() if entry.is_expired(now)]

        for key in expired_keys:
            del self._entries[key]
            logger.debug(f"Cleared expired cache entry {self.name}:{key}")

        if expired_keys:
            self._stats.total_invalidations += len(expired_keys)
            logger.info(f"Swept {len(expired_keys)} expired entries from '{self.name}'")
        return len(expired_keys)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        entry = self._entries.get(key)  # type: ignore[arg-type]
        return entry is not None and not entry.is_expired(self._clock())

    def get_stats(self) -> dict:
        """Get cache statistics."""
        return {
            "name": self.name,
            "hit_rate": round(self._stats.hit_rate, 4),
            "total_hits": self._stats.total_hits,
            "total_misses": self._stats.total_misses,
            "total_sets": self._stats.total_sets,
            "total_invalidations": self._stats.total_invalidations,
            "entry_count": len(self._entries),
            "total_items": sum(len(entry.items) for entry in self._entries.values()),
            "ttl_seconds": self._ttl_seconds,
        }

    async def _cleanup_loop(self) -> None:
        """Background cleanup loop for expired entries."""
        while self._running:
            try:
                await asyncio.sleep(self._cleanup_interval)
                self.sweep_expired()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in cache cleanup loop for '{self.name}': {e}")


# Global trending cache instance
_trending_cache: Optional[PostCache] = None


def get_trending_cache() -> PostCache:
    """Get the process-wide trending post cache, keyed by niche."""
    global _trending_cache
    if _trending_cache is None:
        _trending_cache = PostCache(name="trending")
    return _trending_cache


def set_trending_cache(cache: Optional[PostCache]) -> None:
    """Replace the process-wide trending cache (None resets it)."""
    global _trending_cache
    _trending_cache = cache
