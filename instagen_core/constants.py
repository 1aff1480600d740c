"""Shared constants for InstaGen Core cache warming."""

# Cached posts expire after 24 hours
DEFAULT_CACHE_TTL_SECONDS = 24 * 60 * 60

# Expired entries are swept hourly
DEFAULT_CLEANUP_INTERVAL_SECONDS = 60 * 60

# Competitor warming
DEFAULT_POSTS_PER_COMPETITOR = 10
DEFAULT_TOP_COMPETITOR_POSTS = 10

# Trending warming
DEFAULT_TRENDING_LIMIT = 30

# A cache holding fewer posts than this is considered cold
DEFAULT_MIN_CACHED_POSTS = 10

DEFAULT_WAIT_TIMEOUT_SECONDS = 5.0

INSTAGRAM_BASE_URL = "https://www.instagram.com"
APIFY_INSTAGRAM_SCRAPER_URL = (
    "https://api.apify.com/v2/acts/apify~instagram-scraper/run-sync-get-dataset-items"
)
