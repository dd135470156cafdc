"""Utility helpers for the FlixFinder service."""

from __future__ import annotations

import re
import unicodedata
from typing import Any

from .errors import ValidationError

POSTER_BASE_URL = "https://image.tmdb.org/t/p/w500"


def normalize_text(value: str) -> str:
    """Return a case- and accent-insensitive comparison key."""

    value = unicodedata.normalize("NFD", value)
    value = "".join(char for char in value if not unicodedata.combining(char))
    value = re.sub(r"\s+", " ", value)
    return value.strip().casefold()


def build_image_url(path: Any, base_url: str = POSTER_BASE_URL) -> str | None:
    """Return an absolute artwork URL, or ``None`` when no path is known."""

    if not isinstance(path, str) or not path:
        return None
    if path.startswith("http"):
        return path
    return f"{base_url}{path}"


def coerce_int(value: Any, *, default: int | None = None) -> int | None:
    if isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def coerce_float(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def page_offset(page: int, limit: int, *, max_limit: int = 100) -> int:
    """Validate 1-based paging arguments and return the row offset."""

    if page < 1:
        raise ValidationError("page must be 1 or greater", field="page")
    if not 1 <= limit <= max_limit:
        raise ValidationError(
            f"limit must be between 1 and {max_limit}", field="limit"
        )
    return (page - 1) * limit
