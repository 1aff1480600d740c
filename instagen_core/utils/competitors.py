"""Parsing for the stored competitors field."""

from __future__ import annotations

import json
from typing import Any

from ..logger import get_logger

logger = get_logger()


def strip_handle(name: str) -> str:
    """Drop surrounding whitespace and a leading ``@`` from a username."""
    return name.strip().lstrip("@").strip()


def _clean(entries: list[Any]) -> list[str]:
    cleaned: list[str] = []
    for entry in entries:
        if entry is None:
            continue
        text = str(entry).strip()
        if text:
            cleaned.append(text)
    return cleaned


def parse_competitors(raw: Any) -> list[str]:
    """
    Normalize the competitors field into an ordered list of usernames.

    The field is stored as a JSON array string, a comma-separated string, or
    arrives as a native list depending on which code path wrote it.
    Unparseable values are treated as "no competitors".
    """
    if raw is None:
        return []

    if isinstance(raw, (list, tuple)):
        return _clean(list(raw))

    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return []
        if text.startswith("["):
            try:
                parsed = json.loads(text)
            except json.JSONDecodeError as e:
                logger.warning(f"Error parsing competitors JSON {text!r}: {e}")
                return []
            if not isinstance(parsed, list):
                logger.warning(f"Competitors JSON is not an array: {text!r}")
                return []
            return _clean(parsed)
        return _clean(text.split(","))

    logger.warning(f"Unsupported competitors value of type {type(raw).__name__}; treating as empty")
    return []
