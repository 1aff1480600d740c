"""Post selection for idea generation, backed by the warmed caches."""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from .cache_manager import PostCache
from .cache_warmer import CacheWarmer
from .database import PostStorage
from .logger import get_logger
from .posts import CachedPost, normalize_posts
from .utils.error_messages import get_error_message
from .warming_state import CacheType, CacheTypeLike

logger = get_logger()

STATUS_READY = "ready"
STATUS_WARMING = "warming"


class ContentSourceError(Exception):
    """Raised when posts cannot be supplied for generation.

    ``user_message`` is safe to show to the end user as-is.
    """

    def __init__(self, error_type: str, user_message: str) -> None:
        super().__init__(user_message)
        self.error_type = error_type
        self.user_message = user_message


class NoPostDataError(ContentSourceError):
    """The cache finished warming but holds no posts."""


@dataclass
class PostSelection:
    source: CacheType
    status: str
    posts: list[CachedPost] = field(default_factory=list)
    message: Optional[str] = None

    @property
    def ready(self) -> bool:
        return self.status == STATUS_READY


class ContentSourceService:
    """Picks cached posts to seed idea generation."""

    def __init__(
        self,
        warmer: CacheWarmer,
        storage: PostStorage,
        trending_cache: PostCache,
        rng: random.Random | None = None,
    ):
        self.warmer = warmer
        self.storage = storage
        self.trending_cache = trending_cache
        self._rng = rng or random.Random()

    async def select_posts(
        self,
        user_id: str,
        source: CacheTypeLike,
        count: int = 3,
        wait_timeout: float | None = None,
    ) -> PostSelection:
        """
        Select up to ``count`` random posts from the user's warmed cache.

        Args:
            user_id: User requesting generation
            source: "competitor" or "trending"
            count: Number of posts wanted
            wait_timeout: Seconds to wait for warming (defaults to the warmer's setting)

        Returns:
            A ready selection, or a "warming" selection telling the user to retry

        Raises:
            NoPostDataError: If the cache is ready but empty, or the user has no niche
        """
        source = CacheType.coerce(source)
        if count < 1:
            raise ValueError(f"count must be at least 1 (got {count})")

        if self.warmer.is_stale(user_id):
            # The warmed data has expired along with the pass that fetched it
            self.warmer.rewarm(user_id)

        if not self.warmer.is_cache_ready(user_id, source):
            if user_id not in self.warmer.tracker:
                self.warmer.warm_cache_on_startup(user_id)

            ready = await self.warmer.wait_for_cache(user_id, source, wait_timeout)
            if not ready:
                if user_id not in self.warmer.tracker and not self.warmer.is_startup_pending(user_id):
                    # The warming pass ended without registering state
                    raise NoPostDataError("no_niche", get_error_message("no_niche"))

                logger.info(f"{source.value} posts for user {user_id} still warming")
                return PostSelection(
                    source=source,
                    status=STATUS_WARMING,
                    message=get_error_message("cache_warming", source=source.value),
                )

        posts = await self._load_posts(user_id, source)
        if not posts:
            error_type = self._empty_reason(user_id, source)
            niche = self._niche_for(user_id) or ""
            raise NoPostDataError(error_type, get_error_message(error_type, niche=niche))

        chosen = self._rng.sample(posts, min(count, len(posts)))
        logger.debug(f"Selected {len(chosen)} of {len(posts)} {source.value} posts for user {user_id}")
        return PostSelection(source=source, status=STATUS_READY, posts=chosen)

    async def _load_posts(self, user_id: str, source: CacheType) -> list[CachedPost]:
        if source is CacheType.COMPETITOR:
            return normalize_posts(await self.storage.get_cached_competitor_posts(user_id))

        niche = self._niche_for(user_id)
        if not niche:
            return []
        return self.trending_cache.get(niche)

    def _niche_for(self, user_id: str) -> Optional[str]:
        state = self.warmer.tracker.get(user_id)
        return state.niche if state else None

    def _empty_reason(self, user_id: str, source: CacheType) -> str:
        if self.warmer.scraper is None:
            return "scraper_unavailable"
        if source is CacheType.TRENDING:
            return "no_trending_posts"

        state = self.warmer.tracker.get(user_id)
        if state is not None and not state.competitors:
            return "no_competitors"
        return "no_competitor_posts"


def format_posts_for_generation(posts: Iterable[Any]) -> list[dict[str, Any]]:
    """Shape posts into the dictionaries handed to the idea generator."""
    return [
        {
            "id": post.post_id,
            "username": post.username,
            "caption": post.caption,
            "hashtags": list(post.hashtags),
            "likes": post.likes,
            "comments": post.comments,
            "engagement": post.engagement,
            "image_url": post.image_url,
            "url": post.post_url,
            "timestamp": post.timestamp,
            "location": post.location,
        }
        for post in normalize_posts(posts)
    ]
