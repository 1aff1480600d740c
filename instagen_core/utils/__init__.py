"""Shared utilities for InstaGen Core."""

from .competitors import parse_competitors, strip_handle
from .error_messages import ERROR_MESSAGES, get_error_message

__all__ = [
    "parse_competitors",
    "strip_handle",
    "ERROR_MESSAGES",
    "get_error_message",
]
