"""Text utilities: chat message normalization, query signatures, keyword extraction.

All helpers are pure and deterministic so the gatherers can rely on them for
deduplication.
"""

from __future__ import annotations

import re
import unicodedata
from typing import Any, Iterable
from urllib.parse import urlsplit

_WHITESPACE_RE = re.compile(r"\s+")
_NON_WORD_RE = re.compile(r"[^\w\s]")
_LEADING_JUNK_RE = re.compile(r"^[^A-Za-z0-9]+")
_YEAR_RANGE_RE = re.compile(r"\b((?:19|20)\d{2})\s*(?:-|–|to)\s*((?:19|20)\d{2})\b")
_YEAR_RE = re.compile(r"\b(?:19|20)\d{2}\b")
_RELATIVE_RE = re.compile(
    r"\b(?:next|last|past|coming)\s+(?:\w+\s+)?(?:years?|months?|quarters?)\b",
    re.IGNORECASE,
)

STOPWORDS = frozenset({
    "a", "about", "an", "analysis", "and", "are", "as", "at", "be", "by", "do",
    "for", "from", "give", "how", "in", "into", "is", "it", "its", "launch", "me",
    "of", "on", "or", "our", "please", "should", "the", "their", "this", "to",
    "we", "what", "which", "who", "why", "will", "with", "within", "your",
})

# Canonical name -> lowercase aliases matched on word boundaries.
GEOGRAPHIES: dict[str, tuple[str, ...]] = {
    "Europe": ("europe", "european", "eu", "emea"),
    "North America": ("north america", "north american"),
    "United States": ("united states", "usa", "u.s.", "us market"),
    "Latin America": ("latin america", "latam", "south america"),
    "Asia": ("asia", "asian", "apac", "asia-pacific"),
    "Africa": ("africa", "african"),
    "Middle East": ("middle east", "mena", "gcc"),
    "China": ("china", "chinese"),
    "Japan": ("japan", "japanese"),
    "India": ("india", "indian"),
    "France": ("france", "french"),
    "Germany": ("germany", "german"),
    "United Kingdom": ("united kingdom", "uk", "britain", "british"),
}


def normalize_user_input(value: Any) -> str:
    """Extract the free-text question from a possibly structured chat message.

    Accepts a plain string, a message mapping with `content` or `parts`, or a
    list of such messages (joined by newlines). Parts may be plain strings or
    `{"type": "text", "text": ...}` mappings.
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (list, tuple)):
        return "\n".join(filter(None, (normalize_user_input(item) for item in value))).strip()
    if isinstance(value, dict):
        parts = value.get("parts")
        if isinstance(parts, (list, tuple)):
            texts: list[str] = []
            for part in parts:
                if isinstance(part, str):
                    texts.append(part)
                elif isinstance(part, dict) and isinstance(part.get("text"), str):
                    texts.append(part["text"])
            return " ".join(texts).strip()
        content = value.get("content")
        if isinstance(content, str):
            return content.strip()
        if isinstance(content, (list, tuple)):
            return normalize_user_input({"parts": content})
    return ""


def normalize_query(query: str) -> str:
    """Canonical form of a search query used in dedup signatures.

    Case-folded, accents stripped, punctuation removed, whitespace collapsed.
    Word order is preserved.
    """
    text = unicodedata.normalize("NFKD", query)
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = _NON_WORD_RE.sub(" ", text.casefold())
    return _WHITESPACE_RE.sub(" ", text).strip()


def normalize_url(url: str) -> str:
    """Source identity of a URL: host without "www.", path and query.

    Scheme, fragment and a trailing slash do not distinguish sources.
    """
    parts = urlsplit(url.strip())
    if not parts.netloc:
        return url.strip().casefold()
    host = parts.netloc.lower()
    if host.startswith("www."):
        host = host[4:]
    identity = host + parts.path.rstrip("/")
    return f"{identity}?{parts.query}" if parts.query else identity


def strip_leading_junk(text: str) -> str:
    """Drop bullets and other leading punctuation."""
    return _LEADING_JUNK_RE.sub("", text).strip()


def slugify(text: str, max_length: int = 48) -> str:
    """Lowercase, ASCII, hyphen-separated slug."""
    slug = normalize_query(text).replace(" ", "-").replace("_", "-")
    slug = re.sub(r"-{2,}", "-", slug).strip("-")
    return slug[:max_length].rstrip("-") or "section"


def unique_slug(text: str, taken: set[str]) -> str:
    """Slugify `text`, adding a numeric suffix until it is not in `taken`.

    The returned slug is added to `taken`.
    """
    base = slugify(text)
    slug = base
    counter = 2
    while slug in taken:
        slug = f"{base}-{counter}"
        counter += 1
    taken.add(slug)
    return slug


def extract_keywords(text: str, limit: int = 8) -> list[str]:
    """Ordered, unique content words of a question."""
    seen: set[str] = set()
    keywords: list[str] = []
    for token in normalize_query(text).split():
        if len(token) < 3 or token in STOPWORDS or token.isdigit() or token in seen:
            continue
        seen.add(token)
        keywords.append(token)
        if len(keywords) >= limit:
            break
    return keywords


def detect_geography(text: str) -> str | None:
    """First geography mentioned in the text, by canonical name."""
    lowered = f" {text.casefold()} "
    best: tuple[int, str] | None = None
    for name, aliases in GEOGRAPHIES.items():
        for alias in aliases:
            match = re.search(rf"(?<![\w]){re.escape(alias)}(?![\w])", lowered)
            if match and (best is None or match.start() < best[0]):
                best = (match.start(), name)
    return best[1] if best else None


def detect_timeframe(text: str) -> str | None:
    """Timeframe mentioned in the text, preserved as written."""
    match = _YEAR_RANGE_RE.search(text)
    if match:
        return f"{match.group(1)}-{match.group(2)}"
    match = _RELATIVE_RE.search(text)
    if match:
        return match.group(0)
    years = _YEAR_RE.findall(text)
    if years:
        return years[0]
    return None


def plural(count: int, noun: str, suffix: str = "s") -> str:
    """`3 sections`, `1 section`."""
    return f"{count} {noun}{'' if count == 1 else suffix}"


def truncate(text: str, length: int) -> str:
    """Shorten text to `length` characters with an ellipsis."""
    return text if len(text) <= length else text[: max(0, length - 1)].rstrip() + "…"


def dedupe(items: Iterable[str]) -> list[str]:
    """Drop repeated strings, preserving first-seen order."""
    seen: set[str] = set()
    result: list[str] = []
    for item in items:
        if item and item not in seen:
            seen.add(item)
            result.append(item)
    return result
