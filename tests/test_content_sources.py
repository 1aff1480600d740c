import asyncio
import random

import pytest

from instagen_core.cache_warmer import CacheWarmer
from instagen_core.content_sources import (
    ContentSourceService,
    NoPostDataError,
    PostSelection,
    format_posts_for_generation,
)
from instagen_core.posts import normalize_post
from instagen_core.warming_state import CacheType


@pytest.fixture
def service(warmer, fake_storage, trending_cache):
    return ContentSourceService(warmer, fake_storage, trending_cache, rng=random.Random(7))


@pytest.mark.asyncio
async def test_select_competitor_posts_from_warm_cache(service, warmer):
    await warmer.warm_cache_on_startup("user-1")

    selection = await service.select_posts("user-1", "competitor", count=3)

    assert isinstance(selection, PostSelection)
    assert selection.ready is True
    assert selection.source is CacheType.COMPETITOR
    assert len(selection.posts) == 3
    top_ids = {f"post-{i}" for i in range(6, 16)}
    assert {post.post_id for post in selection.posts} <= top_ids
    assert len({post.post_id for post in selection.posts}) == 3


@pytest.mark.asyncio
async def test_select_trending_posts_caps_at_available(service, warmer):
    await warmer.warm_cache_on_startup("user-1")

    selection = await service.select_posts("user-1", CacheType.TRENDING, count=50)

    assert selection.ready is True
    assert len(selection.posts) == 12


@pytest.mark.asyncio
async def test_select_posts_triggers_warming_for_new_user(service, warmer, fake_scraper):
    selection = await service.select_posts("user-1", "trending", count=2, wait_timeout=1.0)

    assert selection.status == "ready"
    assert len(selection.posts) == 2
    assert len(fake_scraper.trending_calls) == 1


@pytest.mark.asyncio
async def test_select_posts_reports_warming_after_bounded_wait(service, warmer, fake_scraper):
    fake_scraper.gate = asyncio.Event()
    warmer.warm_cache_on_startup("user-1")

    selection = await service.select_posts("user-1", "competitor", wait_timeout=0.05)

    assert selection.status == "warming"
    assert selection.posts == []
    assert "Still Preparing" in selection.message
    assert "competitor" in selection.message


@pytest.mark.asyncio
async def test_expired_warm_is_refreshed_on_next_selection(service, warmer, fake_scraper, clock):
    await warmer.warm_cache_on_startup("user-1")

    clock.advance(24 * 60 * 60 + 60)
    selection = await service.select_posts("user-1", "trending", count=2, wait_timeout=1.0)

    assert selection.ready is True
    assert len(selection.posts) == 2
    assert len(fake_scraper.trending_calls) == 2
    assert warmer.is_stale("user-1") is False


@pytest.mark.asyncio
async def test_failed_warm_raises_user_facing_error(service, warmer, fake_scraper):
    fake_scraper.competitor_error = RuntimeError("Apify down")
    await warmer.warm_cache_on_startup("user-1")

    with pytest.raises(NoPostDataError) as exc_info:
        await service.select_posts("user-1", "competitor")

    assert exc_info.value.error_type == "no_competitor_posts"
    assert "No Competitor Posts Found" in exc_info.value.user_message


@pytest.mark.asyncio
async def test_user_without_competitors_gets_specific_error(service, warmer, fake_storage):
    fake_storage.users["user-1"]["competitors"] = "[]"
    await warmer.warm_cache_on_startup("user-1")

    with pytest.raises(NoPostDataError) as exc_info:
        await service.select_posts("user-1", "competitor")

    assert exc_info.value.error_type == "no_competitors"


@pytest.mark.asyncio
async def test_empty_trending_cache_names_the_niche(service, warmer, fake_scraper):
    fake_scraper.trending_posts = []
    await warmer.warm_cache_on_startup("user-1")

    with pytest.raises(NoPostDataError) as exc_info:
        await service.select_posts("user-1", "trending")

    assert exc_info.value.error_type == "no_trending_posts"
    assert "fitness" in exc_info.value.user_message


@pytest.mark.asyncio
async def test_user_without_niche_gets_no_niche_error(service, fake_storage):
    fake_storage.users["user-3"] = {"id": "user-3", "niche": "", "competitors": None}

    with pytest.raises(NoPostDataError) as exc_info:
        await service.select_posts("user-3", "trending", wait_timeout=1.0)

    assert exc_info.value.error_type == "no_niche"


@pytest.mark.asyncio
async def test_missing_scraper_reports_unavailable(fake_storage, trending_cache):
    warmer = CacheWarmer(fake_storage, None, trending_cache)
    service = ContentSourceService(warmer, fake_storage, trending_cache)
    await warmer.warm_cache_on_startup("user-1")

    with pytest.raises(NoPostDataError) as exc_info:
        await service.select_posts("user-1", "trending")

    assert exc_info.value.error_type == "scraper_unavailable"


@pytest.mark.asyncio
async def test_select_posts_rejects_bad_arguments(service):
    with pytest.raises(ValueError):
        await service.select_posts("user-1", "competitor", count=0)
    with pytest.raises(ValueError):
        await service.select_posts("user-1", "reels")


def test_format_posts_for_generation(raw_post):
    post = normalize_post(raw_post(4, comments=3))

    formatted = format_posts_for_generation([post])

    assert formatted == [
        {
            "id": "post-4",
            "username": "competitor",
            "caption": "Caption 4 #fitness",
            "hashtags": ["fitness", "gym"],
            "likes": 40,
            "comments": 3,
            "engagement": 43,
            "image_url": "https://cdn.example.com/4.jpg",
            "url": "https://www.instagram.com/p/4/",
            "timestamp": "2026-01-01T00:00:00.000Z",
            "location": None,
        }
    ]
