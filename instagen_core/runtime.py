"""Process wiring for the cache warming services."""

from __future__ import annotations

from typing import Optional

from dotenv import load_dotenv

from . import cache_manager, cache_warmer, user_cache_warmer
from .apify_scraper import create_apify_scraper
from .cache_manager import PostCache
from .cache_warmer import CacheWarmer, PostScraper
from .config import Config, RuntimeSettings, load_runtime_config
from .content_sources import ContentSourceService
from .database import Database
from .logger import get_logger, setup_logger
from .user_cache_warmer import UserCacheWarmer
from .warming_state import WarmingStateTracker

logger = get_logger()


class CacheRuntime:
    """Owns the storage, caches and warmers for one process."""

    def __init__(
        self,
        config: Config,
        *,
        database: Database | None = None,
        scraper: Optional[PostScraper] = None,
    ):
        self.config = config
        self.db = database or Database(config.database_path, cache_ttl_seconds=config.cache.ttl_seconds)
        if scraper is None:
            scraper = create_apify_scraper(config.apify_api_token, config.scraper)
        self.scraper = scraper

        self.trending_cache = PostCache(
            name="trending",
            ttl_seconds=config.cache.ttl_seconds,
            cleanup_interval=config.cache.cleanup_interval_seconds,
        )
        self.tracker = WarmingStateTracker()
        self.warmer = CacheWarmer(
            self.db,
            self.scraper,
            self.trending_cache,
            tracker=self.tracker,
            settings=config.warming,
        )
        self.user_warmer = UserCacheWarmer(self.warmer, config.warming)
        self.content = ContentSourceService(self.warmer, self.db, self.trending_cache)
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        if self._started:
            return

        await self.db.connect()
        logger.info("Database connected and schema initialized.")

        removed = await self.db.clear_expired_competitor_posts()
        logger.debug(f"Startup sweep removed {removed} expired competitor post rows")

        await self.trending_cache.start()

        cache_manager.set_trending_cache(self.trending_cache)
        cache_warmer.set_cache_warmer(self.warmer)
        user_cache_warmer.initialize_user_cache_warmer(self.warmer, self.config.warming)

        self._started = True
        logger.info(
            f"Cache runtime started (scraper {'enabled' if self.scraper else 'disabled'}, "
            f"warming {'enabled' if self.config.warming.enabled else 'disabled'})"
        )

    async def stop(self) -> None:
        if not self._started:
            return

        await self.warmer.aclose()
        await self.trending_cache.stop()

        user_cache_warmer.initialize_user_cache_warmer(None)
        cache_warmer.set_cache_warmer(None)
        cache_manager.set_trending_cache(None)

        await self.db.close()
        logger.info("Database connection closed.")
        self._started = False

    async def __aenter__(self) -> "CacheRuntime":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()


def create_runtime(settings: RuntimeSettings | None = None) -> CacheRuntime:
    """Load ``.env`` and configuration, set up logging, and build a runtime."""
    load_dotenv()
    config = load_runtime_config(settings)
    setup_logger(level=config.log_level)
    return CacheRuntime(config)
