"""Configuration management for InstaGen Core."""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import (
    DEFAULT_CACHE_TTL_SECONDS,
    DEFAULT_CLEANUP_INTERVAL_SECONDS,
    DEFAULT_MIN_CACHED_POSTS,
    DEFAULT_POSTS_PER_COMPETITOR,
    DEFAULT_TOP_COMPETITOR_POSTS,
    DEFAULT_TRENDING_LIMIT,
    DEFAULT_WAIT_TIMEOUT_SECONDS,
)

CONFIG_PATH = Path("config.json")
DEFAULT_DATABASE_PATH = "instagen.db"

VALID_TRIGGERS = {"login", "profile_update", "generation_request"}


@dataclass(frozen=True)
class CacheSettings:
    ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS
    cleanup_interval_seconds: int = DEFAULT_CLEANUP_INTERVAL_SECONDS


@dataclass(frozen=True)
class WarmingSettings:
    enabled: bool = True
    posts_per_competitor: int = DEFAULT_POSTS_PER_COMPETITOR
    top_competitor_posts: int = DEFAULT_TOP_COMPETITOR_POSTS
    trending_limit: int = DEFAULT_TRENDING_LIMIT
    min_cached_posts: int = DEFAULT_MIN_CACHED_POSTS
    refresh_competitor_posts: bool = True
    default_wait_seconds: float = DEFAULT_WAIT_TIMEOUT_SECONDS
    triggers: frozenset[str] = field(default_factory=lambda: frozenset(VALID_TRIGGERS))


@dataclass(frozen=True)
class ScraperSettings:
    timeout_seconds: float = 30.0
    max_attempts: int = 3
    backoff_initial_seconds: float = 0.5
    backoff_max_seconds: float = 8.0
    jitter_seconds: float = 0.25
    trending_lookback_days: int = 7
    user_lookback_days: int = 30


@dataclass
class Config:
    database_path: str = DEFAULT_DATABASE_PATH
    log_level: str = "INFO"
    apify_api_token: str | None = None
    cache: CacheSettings = field(default_factory=CacheSettings)
    warming: WarmingSettings = field(default_factory=WarmingSettings)
    scraper: ScraperSettings = field(default_factory=ScraperSettings)


class RuntimeSettings(BaseSettings):
    """Environment overrides, read from ``INSTAGEN_*`` variables and ``.env``."""

    model_config = SettingsConfigDict(env_prefix="INSTAGEN_", env_file=".env", extra="ignore")

    config_path: Path | None = None
    log_level: str | None = None
    database_path: str | None = None
    apify_api_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices("APIFY_API_TOKEN", "INSTAGEN_APIFY_API_TOKEN"),
    )


def _coerce_positive_int(value: Any, *, field_name: str, allow_zero: bool = False) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{field_name} must be an integer (got {value!r})") from exc
    if number < 0 or (number == 0 and not allow_zero):
        qualifier = "non-negative" if allow_zero else "positive"
        raise ValueError(f"{field_name} must be {qualifier} (got {number})")
    return number


def _coerce_positive_float(value: Any, *, field_name: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{field_name} must be a number (got {value!r})") from exc
    if number <= 0:
        raise ValueError(f"{field_name} must be positive (got {number})")
    return number


def _parse_cache_settings(payload: dict[str, Any] | None) -> CacheSettings:
    """Parse cache settings from config payload."""
    if not payload:
        return CacheSettings()
    if not isinstance(payload, dict):
        raise ValueError("cache must be an object")

    defaults = CacheSettings()
    return CacheSettings(
        ttl_seconds=_coerce_positive_int(
            payload.get("ttl_seconds", defaults.ttl_seconds), field_name="cache.ttl_seconds"
        ),
        cleanup_interval_seconds=_coerce_positive_int(
            payload.get("cleanup_interval_seconds", defaults.cleanup_interval_seconds),
            field_name="cache.cleanup_interval_seconds",
        ),
    )


def _parse_triggers(payload: Any) -> frozenset[str]:
    if not isinstance(payload, (list, tuple)):
        raise ValueError("warming.triggers must be a list of trigger names")

    triggers = {str(item).strip().lower() for item in payload}
    unknown = triggers - VALID_TRIGGERS
    if unknown:
        raise ValueError(
            f"warming.triggers contains unknown entries {sorted(unknown)}; "
            f"valid triggers are {sorted(VALID_TRIGGERS)}"
        )
    return frozenset(triggers)


def _parse_warming_settings(payload: dict[str, Any] | None) -> WarmingSettings:
    """Parse cache warming settings from config payload."""
    if not payload:
        return WarmingSettings()
    if not isinstance(payload, dict):
        raise ValueError("warming must be an object")

    defaults = WarmingSettings()
    triggers = defaults.triggers
    if "triggers" in payload:
        triggers = _parse_triggers(payload["triggers"])

    return WarmingSettings(
        enabled=bool(payload.get("enabled", defaults.enabled)),
        posts_per_competitor=_coerce_positive_int(
            payload.get("posts_per_competitor", defaults.posts_per_competitor),
            field_name="warming.posts_per_competitor",
        ),
        top_competitor_posts=_coerce_positive_int(
            payload.get("top_competitor_posts", defaults.top_competitor_posts),
            field_name="warming.top_competitor_posts",
        ),
        trending_limit=_coerce_positive_int(
            payload.get("trending_limit", defaults.trending_limit),
            field_name="warming.trending_limit",
        ),
        min_cached_posts=_coerce_positive_int(
            payload.get("min_cached_posts", defaults.min_cached_posts),
            field_name="warming.min_cached_posts",
            allow_zero=True,
        ),
        refresh_competitor_posts=bool(
            payload.get("refresh_competitor_posts", defaults.refresh_competitor_posts)
        ),
        default_wait_seconds=_coerce_positive_float(
            payload.get("default_wait_seconds", defaults.default_wait_seconds),
            field_name="warming.default_wait_seconds",
        ),
        triggers=triggers,
    )


def _parse_scraper_settings(payload: dict[str, Any] | None) -> ScraperSettings:
    """Parse scraper client settings from config payload."""
    if not payload:
        return ScraperSettings()
    if not isinstance(payload, dict):
        raise ValueError("scraper must be an object")

    defaults = ScraperSettings()
    backoff_initial = float(payload.get("backoff_initial_seconds", defaults.backoff_initial_seconds))
    backoff_max = float(payload.get("backoff_max_seconds", defaults.backoff_max_seconds))
    if backoff_initial < 0 or backoff_max < backoff_initial:
        raise ValueError(
            "scraper backoff must satisfy 0 <= backoff_initial_seconds <= backoff_max_seconds "
            f"(got {backoff_initial}, {backoff_max})"
        )

    return ScraperSettings(
        timeout_seconds=_coerce_positive_float(
            payload.get("timeout_seconds", defaults.timeout_seconds),
            field_name="scraper.timeout_seconds",
        ),
        max_attempts=_coerce_positive_int(
            payload.get("max_attempts", defaults.max_attempts), field_name="scraper.max_attempts"
        ),
        backoff_initial_seconds=backoff_initial,
        backoff_max_seconds=backoff_max,
        jitter_seconds=float(payload.get("jitter_seconds", defaults.jitter_seconds)),
        trending_lookback_days=_coerce_positive_int(
            payload.get("trending_lookback_days", defaults.trending_lookback_days),
            field_name="scraper.trending_lookback_days",
        ),
        user_lookback_days=_coerce_positive_int(
            payload.get("user_lookback_days", defaults.user_lookback_days),
            field_name="scraper.user_lookback_days",
        ),
    )


def load_config(config_path: str | Path = CONFIG_PATH) -> Config:
    """Load and parse configuration from JSON file."""
    path = Path(config_path)

    if not path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {path}\n"
            "Please copy config.example.json to config.json and fill in your values."
        )

    with path.open("r", encoding="utf-8") as file:
        data: dict[str, Any] = json.load(file)

    if not isinstance(data, dict):
        raise ValueError(f"Configuration root must be an object: {path}")

    return Config(
        database_path=str(data.get("database_path", DEFAULT_DATABASE_PATH)),
        log_level=str(data.get("log_level", "INFO")),
        apify_api_token=data.get("apify_api_token"),
        cache=_parse_cache_settings(data.get("cache")),
        warming=_parse_warming_settings(data.get("warming")),
        scraper=_parse_scraper_settings(data.get("scraper")),
    )


def load_runtime_config(settings: RuntimeSettings | None = None) -> Config:
    """Load the JSON config if present and apply environment overrides."""
    settings = settings or RuntimeSettings()
    path = settings.config_path or CONFIG_PATH

    if path.exists():
        config = load_config(path)
    elif settings.config_path is not None:
        # An explicitly configured path must exist
        raise FileNotFoundError(f"Configuration file not found: {path}")
    else:
        config = Config()

    overrides: dict[str, Any] = {}
    if settings.log_level:
        overrides["log_level"] = settings.log_level
    if settings.database_path:
        overrides["database_path"] = settings.database_path
    if settings.apify_api_token:
        overrides["apify_api_token"] = settings.apify_api_token

    return replace(config, **overrides) if overrides else config
