from unittest.mock import MagicMock

import pytest

from instagen_core.config import WarmingSettings
from instagen_core.user_cache_warmer import (
    UserCacheWarmer,
    WarmingTrigger,
    get_user_cache_warmer,
    initialize_user_cache_warmer,
    warm_user_cache,
)


@pytest.fixture
def mock_warmer():
    warmer = MagicMock()
    warmer.settings = WarmingSettings()
    return warmer


def test_login_trigger_schedules_warming(mock_warmer):
    user_warmer = UserCacheWarmer(mock_warmer, WarmingSettings())

    result = user_warmer.on_trigger("user-1", WarmingTrigger.LOGIN)

    mock_warmer.warm_cache_on_startup.assert_called_once_with("user-1")
    assert result is mock_warmer.warm_cache_on_startup.return_value


def test_profile_update_trigger_rewarms(mock_warmer):
    user_warmer = UserCacheWarmer(mock_warmer, WarmingSettings())

    user_warmer.on_trigger("user-1", "profile_update")

    mock_warmer.rewarm.assert_called_once_with("user-1")
    mock_warmer.warm_cache_on_startup.assert_not_called()


def test_disabled_warming_ignores_triggers(mock_warmer):
    user_warmer = UserCacheWarmer(mock_warmer, WarmingSettings(enabled=False))

    assert user_warmer.on_trigger("user-1", WarmingTrigger.LOGIN) is None
    mock_warmer.warm_cache_on_startup.assert_not_called()


def test_unconfigured_trigger_is_ignored(mock_warmer):
    settings = WarmingSettings(triggers=frozenset({"login"}))
    user_warmer = UserCacheWarmer(mock_warmer, settings)

    assert user_warmer.should_warm("login") is True
    assert user_warmer.should_warm(WarmingTrigger.GENERATION_REQUEST) is False
    assert user_warmer.on_trigger("user-1", "generation_request") is None
    mock_warmer.warm_cache_on_startup.assert_not_called()


def test_unknown_trigger_raises(mock_warmer):
    user_warmer = UserCacheWarmer(mock_warmer, WarmingSettings())

    with pytest.raises(ValueError):
        user_warmer.on_trigger("user-1", "page_view")


@pytest.mark.asyncio
async def test_warm_user_cache_without_global_is_noop():
    assert get_user_cache_warmer() is None
    assert await warm_user_cache("user-1") is None


@pytest.mark.asyncio
async def test_warm_user_cache_uses_global_instance(mock_warmer):
    initialize_user_cache_warmer(mock_warmer)

    assert isinstance(get_user_cache_warmer(), UserCacheWarmer)
    await warm_user_cache("user-1", WarmingTrigger.GENERATION_REQUEST)

    mock_warmer.warm_cache_on_startup.assert_called_once_with("user-1")


@pytest.mark.asyncio
async def test_warm_user_cache_swallows_unknown_trigger(mock_warmer):
    initialize_user_cache_warmer(mock_warmer, WarmingSettings())

    assert await warm_user_cache("user-1", "page_view") is None
    mock_warmer.warm_cache_on_startup.assert_not_called()
