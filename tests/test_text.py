"""
Tests for text utilities.
"""

from __future__ import annotations

import pytest

from rp.utils.text import (
    detect_geography,
    detect_timeframe,
    extract_keywords,
    normalize_query,
    normalize_url,
    normalize_user_input,
    plural,
    slugify,
    truncate,
    unique_slug,
)


class TestNormalizeUserInput:
    """Tests for chat message normalization."""

    def test_plain_string(self) -> None:
        assert normalize_user_input("  What is the EV market?  ") == "What is the EV market?"

    def test_message_with_parts(self) -> None:
        message = {"role": "user", "parts": [{"type": "text", "text": "EV market"}, "in Europe"]}
        assert normalize_user_input(message) == "EV market in Europe"

    def test_message_with_content_list(self) -> None:
        message = {"content": [{"type": "text", "text": "Battery"}, {"type": "image", "url": "x"}]}
        assert normalize_user_input(message) == "Battery"

    def test_list_of_messages(self) -> None:
        assert normalize_user_input([{"content": "First"}, {"content": "Second"}]) == "First\nSecond"

    def test_empty_inputs(self) -> None:
        assert normalize_user_input(None) == ""
        assert normalize_user_input({"parts": []}) == ""
        assert normalize_user_input(42) == ""


class TestQueryNormalization:
    """Tests for dedup normalization and slugs."""

    def test_normalize_query_is_case_accent_and_punctuation_insensitive(self) -> None:
        assert normalize_query("Électric  Vehicles, Europe!") == normalize_query("electric vehicles europe")

    def test_slugify(self) -> None:
        assert slugify("Bargaining Power of Buyers") == "bargaining-power-of-buyers"
        assert slugify("!!!") == "section"

    def test_unique_slug_adds_suffix(self) -> None:
        taken: set[str] = set()
        assert unique_slug("Market", taken) == "market"
        assert unique_slug("market", taken) == "market-2"
        assert unique_slug("MARKET", taken) == "market-3"


class TestNormalizeUrl:
    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://www.IEA.org/batteries/", "iea.org/batteries"),
            ("http://iea.org/batteries#fig-2", "iea.org/batteries"),
            ("https://acea.auto/data?year=2025", "acea.auto/data?year=2025"),
            (" not a url ", "not a url"),
        ],
    )
    def test_source_identity(self, url: str, expected: str) -> None:
        assert normalize_url(url) == expected


class TestDetection:
    """Tests for geography, timeframe and keyword detection."""

    def test_detect_geography(self) -> None:
        assert detect_geography("EV batteries in Europe") == "Europe"
        assert detect_geography("Expansion into the UK and Germany") == "United Kingdom"
        assert detect_geography("Global smartphone demand") is None

    def test_detect_timeframe(self) -> None:
        assert detect_timeframe("Outlook 2024-2030 for solar") == "2024-2030"
        assert detect_timeframe("growth over the next five years") == "next five years"
        assert detect_timeframe("a 2026 launch") == "2026"
        assert detect_timeframe("no dates here") is None

    def test_extract_keywords_skips_stopwords_and_numbers(self) -> None:
        keywords = extract_keywords("What is the market for EV batteries in Europe in 2026?")
        assert keywords == ["market", "batteries", "europe"]


class TestFormatting:
    def test_plural(self) -> None:
        assert plural(1, "section") == "1 section"
        assert plural(3, "section") == "3 sections"

    def test_truncate(self) -> None:
        assert truncate("short", 10) == "short"
        assert truncate("a" * 20, 10) == "a" * 9 + "…"
