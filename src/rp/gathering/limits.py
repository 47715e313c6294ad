"""
Per-run limits for evidence gathering.

Both trackers are created once per run and handed to the gatherer through the
stage context. They are never shared across runs.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from rp.utils.text import normalize_query

if TYPE_CHECKING:
    from rp.config import Settings


@dataclass(frozen=True)
class GatherLimits:
    """Caps applied by the evidence gatherer."""

    max_web_queries_per_section: int = 2
    max_concurrent_searches: int = 4
    max_concurrent_generations: int = 4
    max_warehouse_probes: int = 3
    max_concurrent_probes: int = 2
    warehouse_row_limit: int = 25
    dedup_include_locale: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> GatherLimits:
        return cls(
            max_web_queries_per_section=settings.MAX_WEB_QUERIES_PER_SECTION,
            max_concurrent_searches=settings.MAX_CONCURRENT_SEARCHES,
            max_concurrent_generations=settings.MAX_CONCURRENT_GENERATIONS,
            max_warehouse_probes=settings.MAX_WAREHOUSE_PROBES,
            max_concurrent_probes=settings.MAX_CONCURRENT_PROBES,
            warehouse_row_limit=settings.WAREHOUSE_ROW_LIMIT,
            dedup_include_locale=settings.DEDUP_INCLUDE_LOCALE,
        )


class QuerySignatures:
    """Signatures of web queries already issued in a run.

    A signature is `(section_id, normalized_query)`, extended with the
    locale when `include_locale` is set.
    """

    def __init__(self, include_locale: bool = False) -> None:
        self.include_locale = include_locale
        self._seen: set[tuple[str, ...]] = set()
        self._per_section: dict[str, int] = {}

    def signature(self, section_id: str, query: str, locale: str | None = None) -> tuple[str, ...]:
        base = (section_id, normalize_query(query))
        if self.include_locale:
            return base + ((locale or "").casefold(),)
        return base

    def admit(self, section_id: str, query: str, locale: str | None = None) -> bool:
        """Record the query; False if an equivalent query was already admitted."""
        sig = self.signature(section_id, query, locale)
        if sig in self._seen:
            return False
        self._seen.add(sig)
        self._per_section[section_id] = self._per_section.get(section_id, 0) + 1
        return True

    def count(self, section_id: str) -> int:
        """Number of queries admitted for a section."""
        return self._per_section.get(section_id, 0)

    def __len__(self) -> int:
        return len(self._seen)


class ProbeBudget:
    """Per-run budget of warehouse probes.

    Probes beyond the limit are not issued and not queued.
    """

    def __init__(self, limit: int) -> None:
        self.limit = limit
        self._used = 0

    def reserve(self) -> bool:
        """Reserve one probe. False when the budget is spent."""
        if self._used >= self.limit:
            return False
        self._used += 1
        return True

    @property
    def used(self) -> int:
        return self._used

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self._used)
