"""User cache warming triggers for InstaGen Core."""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import TYPE_CHECKING, Optional, Union

from .logger import get_logger

if TYPE_CHECKING:
    from .cache_warmer import CacheWarmer
    from .config import WarmingSettings

logger = get_logger()


class WarmingTrigger(str, Enum):
    """Events that may start cache warming for a user."""
    LOGIN = "login"
    PROFILE_UPDATE = "profile_update"
    GENERATION_REQUEST = "generation_request"


class UserCacheWarmer:
    """Decides which user events start cache warming."""

    def __init__(self, warmer: CacheWarmer, settings: WarmingSettings):
        self.warmer = warmer
        self.settings = settings

    def should_warm(self, trigger: Union[WarmingTrigger, str]) -> bool:
        if not self.settings.enabled:
            return False
        return WarmingTrigger(trigger).value in self.settings.triggers

    def on_trigger(self, user_id: str, trigger: Union[WarmingTrigger, str]) -> Optional[asyncio.Task]:
        """Schedule warming for ``user_id`` if ``trigger`` is enabled.

        A profile update discards any previous warming state first, since the
        niche or competitor list may have changed.
        """
        trigger = WarmingTrigger(trigger)
        if not self.should_warm(trigger):
            logger.debug(f"Cache warming trigger {trigger.value} ignored for user {user_id}")
            return None

        if trigger is WarmingTrigger.PROFILE_UPDATE:
            return self.warmer.rewarm(user_id)
        return self.warmer.warm_cache_on_startup(user_id)


# Global instance for easy access
_user_cache_warmer: UserCacheWarmer | None = None


def get_user_cache_warmer() -> UserCacheWarmer | None:
    """Get the global user cache warmer instance."""
    return _user_cache_warmer


def initialize_user_cache_warmer(warmer: CacheWarmer | None, settings: WarmingSettings | None = None) -> None:
    """Initialize (or clear, with ``None``) the global user cache warmer instance."""
    global _user_cache_warmer
    if warmer is None:
        _user_cache_warmer = None
        return
    _user_cache_warmer = UserCacheWarmer(warmer, settings or warmer.settings)


async def warm_user_cache(
    user_id: str, trigger: Union[WarmingTrigger, str] = WarmingTrigger.LOGIN
) -> Optional[asyncio.Task]:
    """Convenience function to warm cache for a user."""
    warmer = get_user_cache_warmer()
    if warmer is None:
        return None
    try:
        return warmer.on_trigger(user_id, trigger)
    except ValueError as e:
        logger.warning(f"Failed to warm cache for user {user_id}: {e}")
        return None
