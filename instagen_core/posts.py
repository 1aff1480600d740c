"""Normalized Instagram post records shared by every cache."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from typing import Any, Iterable, Mapping, Optional

from .constants import INSTAGRAM_BASE_URL
from .logger import get_logger

logger = get_logger()


@dataclass(frozen=True)
class CachedPost:
    """A post in the cache's record shape, independent of the upstream source."""
    post_id: str
    username: str
    caption: str = ""
    hashtags: list[str] = field(default_factory=list)
    likes: int = 0
    comments: int = 0
    post_url: Optional[str] = None
    image_url: Optional[str] = None
    profile_url: Optional[str] = None
    timestamp: Optional[str] = None
    location: Optional[str] = None

    @property
    def engagement(self) -> int:
        return self.likes + self.comments

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["engagement"] = self.engagement
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CachedPost":
        post = normalize_post(data)
        if post is None:
            raise ValueError("Cannot build a CachedPost from an empty payload")
        return post


def _first(raw: Mapping[str, Any], *keys: str) -> Any:
    """Return the first non-None value among ``keys``."""
    for key in keys:
        value = raw.get(key)
        if value is not None:
            return value
    return None


def _to_count(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return max(value, 0)
    if isinstance(value, str):
        try:
            return max(int(value), 0)
        except ValueError:
            pass
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return 0
    if not math.isfinite(number):
        return 0
    return max(int(number), 0)


def _to_optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_hashtags(value: Any) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        parts = value.replace(",", " ").split()
    elif isinstance(value, (list, tuple)):
        parts = [str(item) for item in value if item]
    else:
        return []
    return [part.strip().lstrip("#") for part in parts if part.strip().lstrip("#")]


def profile_url_for(username: str) -> Optional[str]:
    if not username:
        return None
    return f"{INSTAGRAM_BASE_URL}/{username}/"


def normalize_post(raw: Any) -> Optional[CachedPost]:
    """
    Normalize one upstream post into a CachedPost.

    Live scraper items use ``likesCount``/``ownerUsername`` while stored rows
    use ``likes``/``username``; both shapes are accepted.

    Returns:
        The normalized post, or None when ``raw`` is not a post payload
    """
    if isinstance(raw, CachedPost):
        return raw
    if not isinstance(raw, Mapping) or not raw:
        return None

    username = str(_first(raw, "ownerUsername", "username") or "").strip()
    post_id = str(_first(raw, "id", "postId", "post_id", "shortCode") or "")

    return CachedPost(
        post_id=post_id,
        username=username,
        caption=str(raw.get("caption") or ""),
        hashtags=_parse_hashtags(raw.get("hashtags")),
        likes=_to_count(_first(raw, "likesCount", "likes")),
        comments=_to_count(_first(raw, "commentsCount", "comments")),
        post_url=_to_optional_str(_first(raw, "url", "postUrl", "post_url")),
        image_url=_to_optional_str(_first(raw, "displayUrl", "imageUrl", "image_url")),
        profile_url=_to_optional_str(_first(raw, "profileUrl", "profile_url")) or profile_url_for(username),
        timestamp=_to_optional_str(raw.get("timestamp")),
        location=_to_optional_str(_first(raw, "locationName", "location")),
    )


def normalize_posts(items: Iterable[Any] | None) -> list[CachedPost]:
    """Normalize a batch of posts, dropping anything that is not a post."""
    if not items:
        return []

    posts: list[CachedPost] = []
    skipped = 0
    for item in items:
        post = normalize_post(item)
        if post is None:
            skipped += 1
            continue
        posts.append(post)

    if skipped:
        logger.debug(f"Skipped {skipped} invalid post payload(s) during normalization")
    return posts


def rank_by_engagement(posts: Iterable[CachedPost], limit: int | None = None) -> list[CachedPost]:
    """Sort posts by likes + comments, highest first."""
    ranked = sorted(posts, key=lambda post: post.engagement, reverse=True)
    if limit is not None:
        return ranked[:limit]
    return ranked
