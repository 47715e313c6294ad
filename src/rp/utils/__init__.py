"""Utility modules for the research pipeline."""

from rp.utils.text import (
    detect_geography,
    detect_timeframe,
    extract_keywords,
    normalize_query,
    normalize_user_input,
    plural,
    slugify,
    unique_slug,
)

__all__ = [
    "detect_geography",
    "detect_timeframe",
    "extract_keywords",
    "normalize_query",
    "normalize_user_input",
    "plural",
    "slugify",
    "unique_slug",
]
