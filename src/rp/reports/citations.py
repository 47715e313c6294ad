"""
Citation registry for one run.

Assigns each distinct source key one bibliography entry with a sequential
id (C1, C2, ...). The first registration of a key wins; later registrations
return the existing entry. A registry is created per assembly and never
shared between runs.

Source keys:
- web:{normalized_url}    the lead source of a web query result
- warehouse:{section_id}  successful warehouse probes for a section
- file:{filename}         a user-supplied attachment
"""

from __future__ import annotations

from datetime import datetime
from typing import Sequence

from rp.types import (
    AccessLevel,
    CitationAnchor,
    CitationEntry,
    Citations,
    SearchPlanSummary,
    TrustLevel,
    UserFileInsight,
    WarehouseProbe,
    WebEvidence,
    utc_now,
)
from rp.utils.text import normalize_url


class CitationRegistry:
    """First-seen-wins registry of citation entries."""

    def __init__(self) -> None:
        self._entries: dict[str, CitationEntry] = {}
        self._section_keys: dict[str, list[str]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    @property
    def entries(self) -> tuple[CitationEntry, ...]:
        """Entries in registration order."""
        return tuple(self._entries.values())

    def get(self, key: str) -> CitationEntry | None:
        return self._entries.get(key)

    def register(
        self,
        key: str,
        *,
        title: str,
        url: str,
        publisher: str,
        access: str = AccessLevel.FREE.value,
        trust_level: str = TrustLevel.TRUSTED.value,
        retrieved_at: datetime | None = None,
        section_id: str | None = None,
    ) -> CitationEntry:
        """Register a source key, returning its entry.

        Args:
            key: Source key; the first registration of a key wins.
            section_id: Section whose evidence the key belongs to, used for anchors.
        """
        entry = self._entries.get(key)
        if entry is None:
            entry = CitationEntry(
                id=f"C{len(self._entries) + 1}",
                key=key,
                title=title,
                url=url,
                publisher=publisher,
                access=access,
                trust_level=trust_level,
                retrieved_at=retrieved_at or utc_now(),
            )
            self._entries[key] = entry
        if section_id is not None:
            keys = self._section_keys.setdefault(section_id, [])
            if key not in keys:
                keys.append(key)
        return entry

    def register_web(self, section_id: str, items: Sequence[WebEvidence]) -> CitationEntry | None:
        """Cite a section's web evidence, one entry per distinct lead source.

        Each query result is cited through its top source, keyed by URL so a
        page found for several sections is listed once. Items without sources
        are not cited. Returns the section's first entry.
        """
        first_entry: CitationEntry | None = None
        for item in items:
            if not item.has_content:
                continue
            lead = item.sources[0]
            entry = self.register(
                f"web:{normalize_url(lead.url)}",
                title=lead.title or item.query,
                url=lead.url,
                publisher=lead.publisher or "Web",
                retrieved_at=item.retrieved_at,
                section_id=section_id,
            )
            if first_entry is None:
                first_entry = entry
        return first_entry

    def register_probes(self, section_id: str, probes: Sequence[WarehouseProbe]) -> CitationEntry | None:
        """Cite a section's successful warehouse probes."""
        succeeded = [p for p in probes if p.succeeded]
        if not succeeded:
            return None
        first = succeeded[0]
        return self.register(
            f"warehouse:{section_id}",
            title=f"Warehouse query: {first.requirement}",
            url="warehouse://internal",
            publisher="Internal warehouse",
            access=AccessLevel.PAID.value,
            trust_level=TrustLevel.VERIFIED.value,
            retrieved_at=first.retrieved_at,
            section_id=section_id,
        )

    def register_file(self, insight: UserFileInsight, retrieved_at: datetime | None = None) -> CitationEntry:
        return self.register(
            f"file:{insight.filename}",
            title=insight.filename,
            url=f"file://{insight.filename}",
            publisher="User upload",
            trust_level=TrustLevel.VERIFIED.value,
            retrieved_at=retrieved_at,
            section_id=insight.section_id,
        )

    def anchors(self, section_ids: Sequence[str]) -> tuple[CitationAnchor, ...]:
        """One anchor per section, targeting its own evidence or the first entry.

        No anchors when the bibliography is empty.
        """
        if not self._entries:
            return ()
        fallback = next(iter(self._entries.values()))
        anchors = []
        for index, section_id in enumerate(section_ids):
            keys = self._section_keys.get(section_id)
            entry = self._entries[keys[0]] if keys else fallback
            anchors.append(
                CitationAnchor(
                    id=f"anchor-{index + 1}",
                    section_id=section_id,
                    label=f"[{entry.id}]",
                    target=entry.id,
                )
            )
        return tuple(anchors)

    def citations(self, section_ids: Sequence[str]) -> Citations:
        return Citations(anchors=self.anchors(section_ids), bibliography=self.entries)


def build_citations(
    search: SearchPlanSummary | None,
    section_ids: Sequence[str],
    registry: CitationRegistry | None = None,
    files_retrieved_at: datetime | None = None,
) -> Citations:
    """Register evidence in section order and build anchors for `section_ids`.

    For each section: web evidence, then warehouse probes, then user files.
    Evidence for sections outside `section_ids` is registered afterwards in
    evidence order. Attachments carry no retrieval time, so `files_retrieved_at`
    (usually the run start) is used for them.
    """
    if registry is None:
        registry = CitationRegistry()
    if search is not None:
        ordered = list(section_ids)
        seen = set(ordered)
        for item in (*search.web, *search.warehouse.results, *search.user_files):
            if item.section_id not in seen:
                seen.add(item.section_id)
                ordered.append(item.section_id)

        for section_id in ordered:
            registry.register_web(section_id, search.web_for(section_id))
            registry.register_probes(section_id, search.probes_for(section_id))
            for insight in search.files_for(section_id):
                registry.register_file(insight, files_retrieved_at)

    return registry.citations(section_ids)
