"""Background cache warming for competitor and trending posts.

Warming is triggered per user and runs entirely in background tasks: the
trigger returns immediately, and request handlers later ask whether a cache
is ready or wait for it with a bounded timeout.

Failure policy: a warming task that fails still marks its cache ready. The
cache is simply left empty, and callers treat an empty cache as "no data
available" instead of waiting on a flag that would never flip.
"""

from __future__ import annotations

import asyncio
from functools import partial
from typing import Any, Coroutine, Iterable, Optional, Protocol

from .cache_manager import Clock, PostCache
from .config import WarmingSettings
from .database import PostStorage
from .logger import get_logger
from .posts import normalize_posts, rank_by_engagement
from .utils.competitors import parse_competitors
from .warming_state import CacheType, CacheTypeLike, WarmingState, WarmingStateTracker, WarmingTask

logger = get_logger()


class PostScraper(Protocol):
    """What the cache warmer needs from the Instagram data source."""

    def convert_usernames_to_urls(self, usernames: Iterable[str]) -> list[str]: ...

    async def scrape_competitor_profiles(self, urls: Iterable[str], posts_per_profile: int = 10) -> list[Any]: ...

    async def search_trending_posts(self, niche: str, limit: int = 10) -> list[Any]: ...


def _profile_field(user: Any, name: str) -> Any:
    """Read a field from a storage row, mapping, or plain object."""
    if user is None:
        return None
    try:
        return user[name]
    except (KeyError, IndexError, TypeError):
        return getattr(user, name, None)


class CacheWarmer:
    """Pre-fetches competitor and trending posts for users in the background."""

    def __init__(
        self,
        storage: PostStorage,
        scraper: Optional[PostScraper],
        trending_cache: PostCache,
        tracker: WarmingStateTracker | None = None,
        settings: WarmingSettings | None = None,
        clock: Clock | None = None,
    ):
        self.storage = storage
        self.scraper = scraper
        self.trending_cache = trending_cache
        self.tracker = tracker or WarmingStateTracker()
        self.settings = settings or WarmingSettings()
        self._clock = clock or trending_cache.clock
        self._startups: dict[str, asyncio.Task] = {}
        self._registered: dict[str, asyncio.Event] = {}

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def warm_cache_on_startup(self, user_id: str) -> Optional[asyncio.Task]:
        """
        Schedule cache warming for a user without waiting for it.

        Must be called from a running event loop. Calling it again while a
        warming pass exists for the user is a no-op, unless that pass
        finished longer ago than the cache TTL, in which case it is replaced.

        Returns:
            The scheduled background task, or None if nothing was scheduled
        """
        if self.is_stale(user_id):
            logger.info(f"Cache warming state for user {user_id} outlived the cache TTL, warming again")
            self.cleanup(user_id)

        if user_id in self.tracker:
            logger.debug(f"Cache warming already registered for user {user_id}")
            return None

        pending = self._startups.get(user_id)
        if pending is not None and not pending.done():
            logger.debug(f"Cache warming already scheduled for user {user_id}")
            return None

        task = asyncio.create_task(self._warm_user(user_id), name=f"cache-warm:{user_id}")
        self._startups[user_id] = task
        self._registered[user_id] = asyncio.Event()
        task.add_done_callback(partial(self._forget_startup, user_id))
        return task

    def rewarm(self, user_id: str) -> Optional[asyncio.Task]:
        """Discard the user's warming state and schedule a fresh pass.

        Used after the niche or competitor list changes. A pass that is still
        loading the old profile is superseded and exits without warming.
        """
        self.cleanup(user_id)
        self._startups.pop(user_id, None)
        return self.warm_cache_on_startup(user_id)

    def _forget_startup(self, user_id: str, task: asyncio.Task) -> None:
        if self._startups.get(user_id) is task:
            del self._startups[user_id]
            self._registered.pop(user_id, None)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Cache warming for user {user_id} crashed: {task.exception()!r}")

    def _is_superseded(self, user_id: str) -> bool:
        registered = self._startups.get(user_id)
        return registered is not None and registered is not asyncio.current_task()

    # ------------------------------------------------------------------
    # Warming pipeline
    # ------------------------------------------------------------------

    async def _warm_user(self, user_id: str) -> None:
        try:
            user = await self.storage.get_user(user_id)
        except Exception:
            logger.exception(f"Failed to load profile for user {user_id}; skipping cache warming")
            return

        niche = _profile_field(user, "niche")
        if not niche:
            logger.info(f"User {user_id} has no niche, skipping cache warming")
            return

        if self._is_superseded(user_id) or user_id in self.tracker:
            logger.debug(f"Cache warming pass for user {user_id} superseded")
            return

        competitors = parse_competitors(_profile_field(user, "competitors"))
        state = self.tracker.create(user_id, niche, competitors, started_at=self._clock())
        logger.info(
            f"Starting cache warming for user {user_id}, niche: {niche}, competitors: {len(competitors)}"
        )

        # Every cache type is launched or marked ready before the first await
        launched: list[WarmingTask] = []

        if competitors:
            launched.append(self._launch(state, CacheType.COMPETITOR, self._warm_competitor_posts(state)))
        else:
            logger.info(f"No competitors for user {user_id}, skipping competitor cache warming")
            state.mark_ready(CacheType.COMPETITOR)

        cached_trending = self.trending_cache.get(niche)
        if len(cached_trending) < self.settings.min_cached_posts:
            launched.append(self._launch(state, CacheType.TRENDING, self._warm_trending_posts(state)))
        else:
            logger.info(f"Trending posts cache already warm for niche {niche!r} ({len(cached_trending)} posts)")
            state.mark_ready(CacheType.TRENDING)

        registered = self._registered.get(user_id)
        if registered is not None:
            registered.set()

        results = await asyncio.gather(*(handle.task for handle in launched), return_exceptions=True)
        for handle, result in zip(launched, results):
            if isinstance(result, BaseException):
                logger.error(f"{handle.cache_type.value} warming for user {user_id} failed: {result!r}")

        state.finish()
        logger.info(f"Cache warming completed for user {user_id}")

    def _launch(self, state: WarmingState, cache_type: CacheType, coro: Coroutine[Any, Any, None]) -> WarmingTask:
        task = asyncio.create_task(coro, name=f"cache-warm:{cache_type.value}:{state.user_id}")
        handle = WarmingTask(cache_type, task)
        state.pending_tasks[cache_type] = handle
        logger.debug(f"Warming {cache_type.value} posts for user {state.user_id}")
        return handle

    async def _competitor_cache_is_cold(self, user_id: str) -> bool:
        try:
            cached = await self.storage.get_cached_competitor_posts(user_id)
        except Exception as e:
            logger.warning(f"Could not read cached competitor posts for user {user_id}: {e}")
            return True

        if self.settings.refresh_competitor_posts:
            logger.debug(f"Refreshing competitor posts for user {user_id} ({len(cached)} cached)")
            return True
        if len(cached) >= self.settings.min_cached_posts:
            logger.info(f"Competitor posts cache already warm for user {user_id} ({len(cached)} posts)")
            return False
        return True

    async def _warm_competitor_posts(self, state: WarmingState) -> None:
        try:
            if self.scraper is None:
                logger.warning("No scraper configured; competitor posts cache left empty")
                return
            if not await self._competitor_cache_is_cold(state.user_id):
                return

            urls = self.scraper.convert_usernames_to_urls(state.competitors)
            raw_posts = await self.scraper.scrape_competitor_profiles(urls, self.settings.posts_per_competitor)
            posts = normalize_posts(raw_posts)
            if not posts:
                logger.warning(f"No competitor posts returned for user {state.user_id}; nothing cached")
                return

            if self.tracker.get(state.user_id) is not state:
                logger.info(f"Discarding competitor posts from a superseded warming pass for user {state.user_id}")
                return

            top_posts = rank_by_engagement(posts, self.settings.top_competitor_posts)
            await self.storage.set_cached_competitor_posts(state.user_id, top_posts)
            logger.info(f"Competitor posts cache warmed for user {state.user_id}: {len(top_posts)} posts cached")
        except Exception:
            logger.exception(f"Error warming competitor posts cache for user {state.user_id}")
        finally:
            state.mark_ready(CacheType.COMPETITOR)

    async def _warm_trending_posts(self, state: WarmingState) -> None:
        try:
            if self.scraper is None:
                logger.warning("No scraper configured; trending posts cache left empty")
                return

            raw_posts = await self.scraper.search_trending_posts(state.niche, self.settings.trending_limit)
            stored = self.trending_cache.set(state.niche, raw_posts)
            logger.info(f"Trending posts cache warmed for niche {state.niche!r}: {len(stored)} posts cached")
        except Exception:
            logger.exception(f"Error warming trending posts cache for niche {state.niche!r}")
        finally:
            state.mark_ready(CacheType.TRENDING)

    # ------------------------------------------------------------------
    # Readiness
    # ------------------------------------------------------------------

    def is_cache_ready(self, user_id: str, cache_type: CacheTypeLike) -> bool:
        return self.tracker.is_ready(user_id, cache_type)

    def is_cache_warming(self, user_id: str, cache_type: CacheTypeLike) -> bool:
        return self.tracker.is_warming(user_id, cache_type)

    def is_startup_pending(self, user_id: str) -> bool:
        startup = self._startups.get(user_id)
        return startup is not None and not startup.done()

    def is_user_warming(self, user_id: str) -> bool:
        state = self.tracker.get(user_id)
        return state is not None and state.is_warming

    def is_stale(self, user_id: str) -> bool:
        """True when the user's finished warming pass is older than the cache TTL."""
        state = self.tracker.get(user_id)
        if state is None or state.is_warming:
            return False
        return self._clock() - state.started_at >= self.trending_cache.ttl_seconds

    async def wait_for_cache(
        self, user_id: str, cache_type: CacheTypeLike, timeout: float | None = None
    ) -> bool:
        """
        Wait up to ``timeout`` seconds for a cache to finish warming.

        Never raises for a slow or failed warm and never cancels the warming
        task; it only bounds how long this caller waits.

        Returns:
            True if the cache is ready by the time this returns
        """
        cache_type = CacheType.coerce(cache_type)
        if timeout is None:
            timeout = self.settings.default_wait_seconds

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        state = self.tracker.get(user_id)
        startup = self._startups.get(user_id)
        if state is None and startup is not None and not startup.done():
            # Profile still loading, so no per-type task exists yet
            await self._wait_for_registration(user_id, startup, timeout)
            state = self.tracker.get(user_id)
        if state is None:
            return False

        handle = state.pending_tasks.get(cache_type)
        if handle is None:
            return state.is_ready(cache_type)

        logger.debug(f"Waiting up to {timeout}s for {cache_type.value} cache of user {user_id}")
        finished = await handle.wait(max(0.0, deadline - loop.time()))
        if not finished:
            logger.info(f"{cache_type.value} cache for user {user_id} not ready after {timeout}s")
        return finished

    async def _wait_for_registration(self, user_id: str, startup: asyncio.Task, timeout: float) -> None:
        """Wait until the startup pass has registered its cache tasks, or has ended."""
        registered = self._registered.setdefault(user_id, asyncio.Event())
        signal = asyncio.create_task(registered.wait())
        try:
            await asyncio.wait({startup, signal}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            signal.cancel()

    def get_cache_status(self, user_id: str) -> dict[str, bool]:
        state = self.tracker.get(user_id)
        return {
            CacheType.COMPETITOR.value: state.competitor_posts_ready if state else False,
            CacheType.TRENDING.value: state.trending_posts_ready if state else False,
        }

    def cleanup(self, user_id: str) -> None:
        if self.tracker.remove(user_id):
            logger.debug(f"Cleared warming state for user {user_id}")

    async def aclose(self) -> None:
        """Cancel every scheduled and in-flight warming task (process shutdown)."""
        tasks: list[asyncio.Future] = list(self._startups.values())
        for state in self.tracker:
            tasks.extend(handle.task for handle in state.pending_tasks.values())

        pending = [task for task in tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.info(f"Cancelled {len(pending)} cache warming task(s)")
        self._startups.clear()
        self._registered.clear()


# Global instance for easy access
_cache_warmer: CacheWarmer | None = None


def get_cache_warmer() -> CacheWarmer | None:
    """Get the global cache warmer instance."""
    return _cache_warmer


def set_cache_warmer(warmer: CacheWarmer | None) -> None:
    """Register (or clear) the global cache warmer instance."""
    global _cache_warmer
    _cache_warmer = warmer
