"""Standardized user-facing messages for content generation data sources."""

from __future__ import annotations

from typing import Any


def get_error_message(error_type: str, **kwargs: Any) -> str:
    """
    Get formatted error message with variables.

    Args:
        error_type: Type of error (key from ERROR_MESSAGES)
        **kwargs: Variables to format into the message

    Returns:
        Formatted error message string
    """
    message_template = ERROR_MESSAGES.get(error_type, "❌ An error occurred. Please try again later.")

    try:
        return message_template.format(**kwargs)
    except KeyError:
        # If a required variable is missing, return a generic message
        return f"❌ {error_type.replace('_', ' ').title()} error occurred."


ERROR_MESSAGES = {
    "cache_warming": (
        "⏳ **Still Preparing Your Data**\n\n"
        "We're fetching fresh {source} posts for you.\n"
        "• This usually takes less than a minute\n"
        "• Try generating again shortly"
    ),

    "no_competitor_posts": (
        "❌ **No Competitor Posts Found**\n\n"
        "We couldn't find recent posts from your competitors.\n"
        "• Check that the usernames are correct and the accounts are public\n"
        "• Try the trending or date-based generation instead"
    ),

    "no_competitors": (
        "❌ **No Competitors Configured**\n\n"
        "Add at least one competitor account in your settings to generate competitor-based ideas."
    ),

    "no_trending_posts": (
        "❌ **No Trending Posts Found**\n\n"
        "We couldn't find trending posts for the niche `{niche}` right now.\n"
        "• Try a broader niche\n"
        "• Try again later"
    ),

    "no_niche": (
        "❌ **No Niche Set**\n\n"
        "Choose a content niche in your settings before generating ideas."
    ),

    "scraper_unavailable": (
        "⚠️ **Instagram Data Unavailable**\n\n"
        "Instagram data fetching is not configured right now. Please try again later."
    ),
}
