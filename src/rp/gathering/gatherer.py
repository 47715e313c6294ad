"""
Evidence gatherer.

Fans out to the external capabilities for a set of sections and folds the
results back into typed evidence items:

- Web: deduplicated queries per section, bounded by a search semaphore.
- Warehouse: SQL probes from structured generation, limited by the per-run
  ProbeBudget and a probe semaphore. Slots beyond the budget are not issued.
- Proprietary: access plans for the preferred data connection.
- User files: attachments routed to the section they mention.

Every sub-task is fault-tolerant. A failed call yields an item carrying an
`error`; it never propagates out of the gatherer. Cancellation does.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from typing import Any, Sequence

from rp.capabilities import Capabilities
from rp.capabilities.search import SearchResult
from rp.capabilities.warehouse import clean_sql
from rp.exceptions import CapabilityError
from rp.gathering.limits import GatherLimits, ProbeBudget, QuerySignatures
from rp.llm.schemas import WarehouseQueryDraft
from rp.logging import get_logger
from rp.types import (
    Attachment,
    Availability,
    CapabilityStatus,
    Confidence,
    ConnectionStatus,
    DataConnection,
    ProprietaryEvidence,
    RetrievalMethod,
    Section,
    UserFileInsight,
    WarehouseProbe,
    WarehouseSummary,
    WebEvidence,
    WebSource,
)
from rp.utils.text import extract_keywords, plural, strip_leading_junk, truncate

logger = get_logger(__name__)

_METRIC_RE = re.compile(r"[^.\n]*\d[\d.,]*\s*(?:%|percent|bn|billion|million|m\b|k\b|gwh|mwh|units|€|\$)[^.\n]*", re.IGNORECASE)


@dataclass(frozen=True)
class GatherContext:
    """Shared context of one gathering pass."""

    geography: str
    keywords: tuple[str, ...] = ()
    timeframe: str | None = None
    locale: str | None = None


@dataclass(frozen=True)
class WarehouseSlot:
    """One (section, requirement) pair that may receive a warehouse probe."""

    section: Section
    requirement: str


@dataclass(frozen=True)
class WarehouseOutcome:
    """Outcome of a warehouse slot. `probe` is None when no SQL was produced."""

    slot: WarehouseSlot
    probe: WarehouseProbe | None
    note: str


@dataclass(frozen=True)
class WarehouseGathering:
    summary: WarehouseSummary
    outcomes: tuple[WarehouseOutcome, ...] = ()


def build_query(requirement: str, geography: str, keywords: Sequence[str]) -> str:
    """Requirement + geography + the two strongest keywords."""
    base = strip_leading_junk(requirement)
    focus = " ".join(keywords[:2])
    return " ".join(part for part in (base, geography, focus) if part).strip()


def requirements_of(section: Section) -> tuple[str, ...]:
    """Data requirements of a section, falling back to its title."""
    return section.data_requirements or (section.title,)


def web_confidence(result_count: int) -> Confidence:
    if result_count >= 3:
        return Confidence.HIGH
    if result_count >= 1:
        return Confidence.MEDIUM
    return Confidence.LOW


def fold_web_results(
    section_id: str,
    query: str,
    results: Sequence[SearchResult],
    search_available: bool = True,
) -> WebEvidence:
    """Fold raw search results into one WebEvidence item."""
    seen: set[str] = set()
    sources: list[WebSource] = []
    for result in results:
        if result.url in seen:
            continue
        seen.add(result.url)
        sources.append(WebSource(title=result.title, url=result.url, publisher=result.source))

    snippets = tuple(r.snippet for r in results if r.snippet)[:3]
    if sources:
        lead = truncate(snippets[0], 240) if snippets else sources[0].title
        summary = f"{plural(len(sources), 'web result')} for \"{query}\": {lead}"
    elif search_available:
        summary = f"No web results found for \"{query}\"."
    else:
        summary = "Web search is not available; no web evidence gathered."

    return WebEvidence(
        section_id=section_id,
        query=query,
        summary=summary,
        confidence=web_confidence(len(sources)),
        snippets=snippets,
        sources=tuple(sources),
    )


def _reraise_cancellation(results: Sequence[Any]) -> None:
    for result in results:
        if isinstance(result, asyncio.CancelledError):
            raise result


class EvidenceGatherer:
    """Bounded-concurrency fan-out to the external capabilities.

    One gatherer serves one stage execution. The query signatures and probe
    budget it is given belong to the run.
    """

    def __init__(
        self,
        capabilities: Capabilities,
        limits: GatherLimits,
        signatures: QuerySignatures,
        budget: ProbeBudget,
    ) -> None:
        self.capabilities = capabilities
        self.limits = limits
        self.signatures = signatures
        self.budget = budget
        self._search_semaphore = asyncio.Semaphore(limits.max_concurrent_searches)
        self._generation_semaphore = asyncio.Semaphore(limits.max_concurrent_generations)
        self._probe_semaphore = asyncio.Semaphore(limits.max_concurrent_probes)

    # -- web -----------------------------------------------------------------

    def plan_web_queries(self, section: Section, ctx: GatherContext) -> list[str]:
        """Deduplicated queries for a section, capped per section."""
        queries: list[str] = []
        cap = self.limits.max_web_queries_per_section
        for requirement in requirements_of(section):
            if self.signatures.count(section.id) >= cap:
                break
            query = build_query(requirement, ctx.geography, ctx.keywords)
            if query and self.signatures.admit(section.id, query, ctx.locale):
                queries.append(query)
        return queries

    async def _search_one(self, section_id: str, query: str, ctx: GatherContext) -> WebEvidence:
        search = self.capabilities.search
        async with self._search_semaphore:
            results = await search.search(query, geo_hint=ctx.geography)
        return fold_web_results(section_id, query, results, search_available=search.available)

    async def gather_web(
        self,
        sections: Sequence[Section],
        ctx: GatherContext,
    ) -> list[WebEvidence]:
        """Run every planned web query concurrently.

        Returns items in planning order (section order, then requirement order).
        """
        planned: list[tuple[str, str]] = []
        for section in sections:
            planned.extend((section.id, q) for q in self.plan_web_queries(section, ctx))

        if not planned:
            return []

        results = await asyncio.gather(
            *(self._search_one(section_id, query, ctx) for section_id, query in planned),
            return_exceptions=True,
        )
        _reraise_cancellation(results)

        evidence: list[WebEvidence] = []
        for (section_id, query), result in zip(planned, results):
            if isinstance(result, BaseException):
                message = result.message if isinstance(result, CapabilityError) else str(result)
                logger.warning("Web search failed", section_id=section_id, query=query, error=message)
                evidence.append(
                    WebEvidence(
                        section_id=section_id,
                        query=query,
                        summary=f"Web search failed for \"{query}\": {message}",
                        confidence=Confidence.LOW,
                        error=message,
                    )
                )
            else:
                evidence.append(result)

        logger.info(
            "Web evidence gathered",
            queries=len(planned),
            with_sources=sum(1 for e in evidence if e.has_content),
        )
        return evidence

    # -- warehouse -----------------------------------------------------------

    def _sql_prompt(self, slot: WarehouseSlot, ctx: GatherContext) -> str:
        keyword_list = ", ".join(ctx.keywords[:5])
        lines = [
            "You are a SQL assistant. Return one valid read-only SELECT statement.",
            f"Requirement: {slot.requirement}",
            f"Section: {slot.section.title}",
            f"Geography or filter: {ctx.geography}",
        ]
        if ctx.timeframe:
            lines.append(f"Timeframe: {ctx.timeframe}")
        if keyword_list:
            lines.append(f"Relevant keywords: {keyword_list}")
        lines.append("Return only the SQL statement without commentary or markdown fences.")
        return "\n".join(lines)

    async def _probe(self, slot: WarehouseSlot, ctx: GatherContext) -> WarehouseOutcome:
        async with self._generation_semaphore:
            generated = await self.capabilities.generator.generate(
                self._sql_prompt(slot, ctx), WarehouseQueryDraft
            )
        # Fallback: no SQL means no probe is issued for this slot.
        draft = generated.unwrap_or(None)
        sql = clean_sql(draft.sql) if draft else ""
        if not sql:
            return WarehouseOutcome(slot=slot, probe=None, note="Warehouse: SQL generation unavailable")

        async with self._probe_semaphore:
            try:
                rows = await self.capabilities.warehouse.execute(
                    sql, (), row_limit=self.limits.warehouse_row_limit
                )
            except CapabilityError as e:
                logger.warning("Warehouse probe failed", section_id=slot.section.id, error=e.message)
                probe = WarehouseProbe(
                    section_id=slot.section.id,
                    section_title=slot.section.title,
                    requirement=slot.requirement,
                    sql=sql,
                    error=e.message,
                )
                return WarehouseOutcome(slot=slot, probe=probe, note="Warehouse: SQL probe failed")

        probe = WarehouseProbe(
            section_id=slot.section.id,
            section_title=slot.section.title,
            requirement=slot.requirement,
            sql=sql,
            rows=tuple(rows[: self.limits.warehouse_row_limit]),
        )
        return WarehouseOutcome(slot=slot, probe=probe, note="Warehouse: executed SQL probe")

    async def gather_warehouse(
        self,
        slots: Sequence[WarehouseSlot],
        ctx: GatherContext,
    ) -> WarehouseGathering:
        """Probe the warehouse for the first slots the run budget allows."""
        warehouse = self.capabilities.warehouse
        status = await warehouse.connect()
        if status is not CapabilityStatus.CONNECTED:
            return WarehouseGathering(
                summary=WarehouseSummary(status=status, message=warehouse.message)
            )

        selected: list[WarehouseSlot] = []
        for slot in slots:
            if not self.budget.reserve():
                break
            selected.append(slot)
        skipped = len(slots) - len(selected)

        results = await asyncio.gather(
            *(self._probe(slot, ctx) for slot in selected),
            return_exceptions=True,
        )
        _reraise_cancellation(results)

        outcomes: list[WarehouseOutcome] = []
        for slot, result in zip(selected, results):
            if isinstance(result, BaseException):
                message = str(result)
                logger.warning("Warehouse probe crashed", section_id=slot.section.id, error=message)
                outcomes.append(
                    WarehouseOutcome(
                        slot=slot,
                        probe=WarehouseProbe(
                            section_id=slot.section.id,
                            section_title=slot.section.title,
                            requirement=slot.requirement,
                            sql="",
                            error=message,
                        ),
                        note="Warehouse: SQL probe failed",
                    )
                )
            else:
                outcomes.append(result)

        message = None
        if skipped:
            message = (
                f"{plural(skipped, 'probe')} not issued: "
                f"per-run limit of {self.budget.limit} reached."
            )
        probes = tuple(o.probe for o in outcomes if o.probe is not None)
        logger.info(
            "Warehouse probes complete",
            issued=len(probes),
            failed=sum(1 for p in probes if not p.succeeded),
            skipped=skipped,
        )
        return WarehouseGathering(
            summary=WarehouseSummary(status=status, message=message, results=probes),
            outcomes=tuple(outcomes),
        )

    # -- proprietary ---------------------------------------------------------

    @staticmethod
    def proprietary_plan(
        section: Section,
        requirement: str,
        connection: DataConnection,
    ) -> ProprietaryEvidence:
        """Access plan for a requirement on the preferred connection."""
        data_share = any(d.retrieval_method is RetrievalMethod.DATA_SHARE for d in connection.datasets)
        dataset = connection.datasets[0].title if connection.datasets else connection.name
        if data_share or connection.status is ConnectionStatus.READY:
            availability = Availability.AVAILABLE
            next_steps = f"Extract {requirement.lower()} from {dataset}."
        else:
            availability = Availability.REQUIRES_ACCESS
            next_steps = f"Request access to {connection.name} before extraction."
        return ProprietaryEvidence(
            section_id=section.id,
            source_id=connection.source_id,
            dataset_name=dataset,
            summary=f"{connection.name} covers \"{requirement}\" for {section.title}.",
            availability=availability,
            next_steps=next_steps,
        )

    # -- user files ----------------------------------------------------------

    @staticmethod
    def gather_user_files(
        attachments: Sequence[Attachment],
        sections: Sequence[Section],
    ) -> list[UserFileInsight]:
        """Route each attachment to the section whose terms it mentions most."""
        if not sections:
            return []

        insights: list[UserFileInsight] = []
        for attachment in attachments:
            text = attachment.content
            lowered = text.casefold()
            best = sections[0]
            best_hits = 0
            for section in sections:
                terms = extract_keywords(" ".join((section.title, *section.data_requirements)), limit=12)
                hits = sum(1 for term in terms if term in lowered)
                if hits > best_hits:
                    best, best_hits = section, hits

            metrics = tuple(m.group(0).strip() for m in _METRIC_RE.finditer(text))[:5]
            summary = truncate(" ".join(text.split()), 200) or f"{attachment.filename} is empty."
            insights.append(
                UserFileInsight(
                    section_id=best.id,
                    filename=attachment.filename,
                    summary=summary,
                    key_metrics=metrics,
                )
            )
        return insights
