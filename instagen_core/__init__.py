"""Core modules for InstaGen background cache warming."""

from .cache_manager import PostCache
from .cache_warmer import CacheWarmer
from .config import Config, RuntimeSettings, load_config, load_runtime_config
from .content_sources import ContentSourceService, NoPostDataError, PostSelection
from .database import Database
from .posts import CachedPost
from .runtime import CacheRuntime, create_runtime
from .user_cache_warmer import UserCacheWarmer, WarmingTrigger
from .warming_state import CacheType, WarmingStateTracker

__all__ = [
    "CachedPost",
    "CacheType",
    "CacheRuntime",
    "CacheWarmer",
    "Config",
    "ContentSourceService",
    "Database",
    "NoPostDataError",
    "PostCache",
    "PostSelection",
    "RuntimeSettings",
    "UserCacheWarmer",
    "WarmingStateTracker",
    "WarmingTrigger",
    "create_runtime",
    "load_config",
    "load_runtime_config",
]
