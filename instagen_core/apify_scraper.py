"""Apify Instagram scraper client used to fetch competitor and trending posts."""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional

import aiohttp

from .config import ScraperSettings
from .constants import APIFY_INSTAGRAM_SCRAPER_URL, INSTAGRAM_BASE_URL
from .logger import get_logger
from .posts import normalize_post
from .utils.competitors import strip_handle

logger = get_logger()


class ApifyError(RuntimeError):
    """Raised when the Apify API cannot return Instagram data."""


class ApifyAuthError(ApifyError):
    pass


class ApifyRateLimitError(ApifyError):
    pass


class RetryableStatusError(ApifyError):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"Retryable status_code={status_code}")
        self.status_code = status_code


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 3
    backoff_initial_seconds: float = 0.5
    backoff_max_seconds: float = 8.0
    jitter_seconds: float = 0.25

    @classmethod
    def from_settings(cls, settings: ScraperSettings) -> "RetryConfig":
        return cls(
            max_attempts=settings.max_attempts,
            backoff_initial_seconds=settings.backoff_initial_seconds,
            backoff_max_seconds=settings.backoff_max_seconds,
            jitter_seconds=settings.jitter_seconds,
        )

    def backoff_for(self, attempt: int) -> float:
        backoff = min(
            self.backoff_initial_seconds * (2 ** (attempt - 1)),
            self.backoff_max_seconds,
        )
        return backoff + random.uniform(0.0, self.jitter_seconds)


async def _sleep(seconds: float) -> None:
    if seconds <= 0:
        return
    await asyncio.sleep(seconds)


class ApifyInstagramScraper:
    """Client for the Apify ``instagram-scraper`` actor (synchronous dataset runs)."""

    def __init__(
        self,
        api_token: str,
        *,
        settings: ScraperSettings | None = None,
        base_url: str = APIFY_INSTAGRAM_SCRAPER_URL,
    ):
        self.api_token = api_token
        self.base_url = base_url
        self.settings = settings or ScraperSettings()
        self.retry = RetryConfig.from_settings(self.settings)

    def convert_usernames_to_urls(self, usernames: Iterable[str]) -> list[str]:
        """Turn competitor handles into profile URLs, keeping URLs as they are."""
        urls: list[str] = []
        for name in usernames:
            if not name:
                continue
            text = str(name).strip()
            if text.startswith(("http://", "https://")):
                urls.append(text)
                continue
            handle = strip_handle(text)
            if handle:
                urls.append(f"{INSTAGRAM_BASE_URL}/{handle}/")
        return urls

    async def search_trending_posts(self, niche: str, limit: int = 10) -> list[dict[str, Any]]:
        """Fetch recent top posts for a niche hashtag."""
        payload = self._search_input(
            search=niche,
            search_type="hashtag",
            limit=limit,
            newer_than_days=self.settings.trending_lookback_days,
        )
        posts = await self._run_actor(payload)
        logger.info(f"Fetched {len(posts)} trending posts for niche {niche!r}")
        return posts

    async def search_user_posts(self, username: str, limit: int = 10) -> list[dict[str, Any]]:
        """Fetch recent posts for a single account."""
        payload = self._search_input(
            search=strip_handle(username),
            search_type="user",
            limit=limit,
            newer_than_days=self.settings.user_lookback_days,
        )
        return await self._run_actor(payload)

    async def scrape_competitor_profiles(
        self, urls: Iterable[str], posts_per_profile: int = 10
    ) -> list[dict[str, Any]]:
        """Fetch up to ``posts_per_profile`` recent posts from each profile URL."""
        direct_urls = [url for url in urls if url]
        if not direct_urls:
            return []

        payload = {
            "addParentData": False,
            "directUrls": direct_urls,
            "onlyPostsNewerThan": self._date_days_ago(self.settings.user_lookback_days),
            "resultsLimit": posts_per_profile,
            "resultsType": "posts",
        }
        posts = await self._run_actor(payload)
        logger.info(f"Fetched {len(posts)} posts from {len(direct_urls)} competitor profiles")
        return posts

    async def search_multiple_hashtags(self, hashtags: Iterable[str], limit: int = 5) -> list[dict[str, Any]]:
        """Search several hashtags and return the most engaging unique posts."""
        all_posts: list[dict[str, Any]] = []

        for hashtag in hashtags:
            try:
                all_posts.extend(await self.search_trending_posts(hashtag, limit))
            except ApifyError as e:
                logger.error(f"Failed to fetch posts for hashtag {hashtag!r}: {e}")

        seen: set[str] = set()
        unique_posts: list[dict[str, Any]] = []
        for post in all_posts:
            post_id = str(post.get("id") or post.get("shortCode") or "")
            if post_id and post_id in seen:
                continue
            seen.add(post_id)
            unique_posts.append(post)

        def _engagement(post: dict[str, Any]) -> int:
            normalized = normalize_post(post)
            return normalized.engagement if normalized else 0

        return sorted(unique_posts, key=_engagement, reverse=True)[:limit]

    def _search_input(self, *, search: str, search_type: str, limit: int, newer_than_days: int) -> dict[str, Any]:
        return {
            "addParentData": False,
            "enhanceUserSearchWithFacebookPage": False,
            "isUserReelFeedURL": False,
            "isUserTaggedFeedURL": False,
            "onlyPostsNewerThan": self._date_days_ago(newer_than_days),
            "resultsLimit": limit,
            "resultsType": "posts",
            "search": search,
            "searchLimit": 1,
            "searchType": search_type,
        }

    @staticmethod
    def _date_days_ago(days: int) -> str:
        return (datetime.now(timezone.utc) - timedelta(days=days)).strftime("%Y-%m-%d")

    @staticmethod
    def _extract_items(data: Any) -> list[dict[str, Any]]:
        if isinstance(data, dict):
            data = data.get("topPosts") or data.get("items") or []
        if not isinstance(data, list):
            return []
        # The actor reports unreachable profiles as {"error": ...} items
        return [item for item in data if isinstance(item, dict) and "error" not in item]

    async def _run_actor(self, payload: dict[str, Any]) -> list[dict[str, Any]]:
        """POST an actor input and return the dataset items, retrying transient failures."""
        retry = self.retry
        if retry.max_attempts < 1:
            raise ValueError("RetryConfig.max_attempts must be >= 1")

        timeout = aiohttp.ClientTimeout(total=self.settings.timeout_seconds)
        last_exc: BaseException | None = None

        for attempt in range(1, retry.max_attempts + 1):
            try:
                async with aiohttp.ClientSession(timeout=timeout) as session:
                    async with session.post(
                        self.base_url,
                        params={"token": self.api_token},
                        json=payload,
                    ) as response:
                        if response.status == 401:
                            raise ApifyAuthError("Invalid Apify API token. Please check your APIFY_API_TOKEN.")
                        if response.status == 429 or 500 <= response.status <= 599:
                            raise RetryableStatusError(response.status)
                        if response.status >= 400:
                            raise ApifyError(f"Apify API error: HTTP {response.status}")

                        data = await response.json(content_type=None)
                return self._extract_items(data)

            except (aiohttp.ClientConnectionError, asyncio.TimeoutError, RetryableStatusError) as exc:
                last_exc = exc
                if attempt >= retry.max_attempts:
                    break

                logger.info(
                    f"Apify retry attempt={attempt}/{retry.max_attempts} "
                    f"search={payload.get('search') or payload.get('directUrls')} reason={exc}"
                )
                await _sleep(retry.backoff_for(attempt))

            except ApifyError:
                raise
            except (aiohttp.ClientError, ValueError) as exc:
                logger.error(f"Apify Instagram scraper error: {exc}")
                raise ApifyError(f"Failed to fetch Instagram data: {exc}") from exc

        if isinstance(last_exc, RetryableStatusError) and last_exc.status_code == 429:
            raise ApifyRateLimitError("Apify API rate limit exceeded. Please try again later.") from last_exc
        raise ApifyError(f"Failed to fetch Instagram data after {retry.max_attempts} attempts") from last_exc


def create_apify_scraper(
    api_token: Optional[str], settings: ScraperSettings | None = None
) -> Optional[ApifyInstagramScraper]:
    """Build a scraper, or return None when no API token is configured."""
    if not api_token:
        logger.warning("APIFY_API_TOKEN not configured; Instagram data fetching is disabled")
        return None
    return ApifyInstagramScraper(api_token, settings=settings)
