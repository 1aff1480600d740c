import asyncio

import pytest
import pytest_asyncio

from instagen_core import cache_manager, cache_warmer, user_cache_warmer
from instagen_core.cache_manager import PostCache
from instagen_core.cache_warmer import CacheWarmer
from instagen_core.config import WarmingSettings
from instagen_core.database import Database
from instagen_core.warming_state import WarmingStateTracker

T0 = 1_700_000_000.0


class ManualClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: float = T0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_raw_post(index: int, *, username: str = "competitor", likes: int | None = None, comments: int = 0) -> dict:
    """A post in the shape the Apify actor returns."""
    return {
        "id": f"post-{index}",
        "ownerUsername": username,
        "caption": f"Caption {index} #fitness",
        "hashtags": ["fitness", "gym"],
        "likesCount": index * 10 if likes is None else likes,
        "commentsCount": comments,
        "url": f"https://www.instagram.com/p/{index}/",
        "displayUrl": f"https://cdn.example.com/{index}.jpg",
        "timestamp": "2026-01-01T00:00:00.000Z",
    }


class FakeScraper:
    def __init__(
        self,
        competitor_posts: list | None = None,
        trending_posts: list | None = None,
        *,
        competitor_error: Exception | None = None,
        trending_error: Exception | None = None,
    ) -> None:
        self.competitor_posts = list(competitor_posts or [])
        self.trending_posts = list(trending_posts or [])
        self.competitor_error = competitor_error
        self.trending_error = trending_error
        self.gate: asyncio.Event | None = None
        self.competitor_gate: asyncio.Event | None = None
        self.competitor_calls: list[tuple[list[str], int]] = []
        self.trending_calls: list[tuple[str, int]] = []

    def convert_usernames_to_urls(self, usernames) -> list[str]:
        return [f"https://www.instagram.com/{name.lstrip('@')}/" for name in usernames if name]

    async def scrape_competitor_profiles(self, urls, posts_per_profile: int = 10) -> list:
        self.competitor_calls.append((list(urls), posts_per_profile))
        gate = self.competitor_gate or self.gate
        if gate is not None:
            await gate.wait()
        if self.competitor_error is not None:
            raise self.competitor_error
        return list(self.competitor_posts)

    async def search_trending_posts(self, niche: str, limit: int = 10) -> list:
        self.trending_calls.append((niche, limit))
        if self.gate is not None:
            await self.gate.wait()
        if self.trending_error is not None:
            raise self.trending_error
        return list(self.trending_posts)


class FakeStorage:
    def __init__(self, users: dict | None = None) -> None:
        self.users: dict[str, dict] = dict(users or {})
        self.competitor_posts: dict[str, list] = {}
        self.set_calls: list[tuple[str, list]] = []
        self.get_user_error: Exception | None = None
        self.read_gate: asyncio.Event | None = None

    async def get_user(self, user_id: str):
        if self.get_user_error is not None:
            raise self.get_user_error
        return self.users.get(user_id)

    async def get_cached_competitor_posts(self, user_id: str) -> list:
        if self.read_gate is not None:
            await self.read_gate.wait()
        return list(self.competitor_posts.get(user_id, []))

    async def set_cached_competitor_posts(self, user_id: str, posts) -> None:
        posts = list(posts)
        self.set_calls.append((user_id, posts))
        self.competitor_posts[user_id] = posts


@pytest.fixture(autouse=True)
def reset_globals():
    yield
    cache_warmer.set_cache_warmer(None)
    cache_manager.set_trending_cache(None)
    user_cache_warmer.initialize_user_cache_warmer(None)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def trending_cache(clock: ManualClock) -> PostCache:
    return PostCache(name="trending", clock=clock)


@pytest.fixture
def fake_scraper() -> FakeScraper:
    return FakeScraper(
        competitor_posts=[make_raw_post(i) for i in range(1, 16)],
        trending_posts=[make_raw_post(100 + i, username="trendsetter") for i in range(12)],
    )


@pytest.fixture
def fake_storage() -> FakeStorage:
    return FakeStorage(
        users={
            "user-1": {"id": "user-1", "niche": "fitness", "competitors": '["@gymshark", "nike"]'},
        }
    )


@pytest.fixture
def warming_settings() -> WarmingSettings:
    return WarmingSettings()


@pytest_asyncio.fixture
async def warmer(fake_storage, fake_scraper, trending_cache, warming_settings):
    instance = CacheWarmer(
        fake_storage,
        fake_scraper,
        trending_cache,
        tracker=WarmingStateTracker(),
        settings=warming_settings,
    )
    yield instance
    for gate in (fake_scraper.gate, fake_scraper.competitor_gate, fake_storage.read_gate):
        if gate is not None:
            gate.set()
    await instance.aclose()


@pytest_asyncio.fixture
async def db(clock: ManualClock):
    database = Database(":memory:", clock=clock)
    await database.connect()
    yield database
    await database.close()


@pytest.fixture
def raw_post():
    return make_raw_post


@pytest.fixture
def storage_factory():
    return FakeStorage
