"""
Data Source Manager (Stage 3).

Ranks the curated source catalog against the question's sector, function
and geography, and applies the trusted-sources-only preference.
"""

from __future__ import annotations

from rp.stages.base import Stage, StageContext
from rp.state import RunState, StageUpdate
from rp.types import ExcludedSource, RankedSource, SourceSelection, StageName, TrustLevel
from rp.utils.text import detect_geography

MAX_RECOMMENDED = 5
MAX_SUPPLEMENTARY = 5


class DataSourceManagerStage(Stage):
    """Stage 3: Source management.

    Sources that match the sector are recommended; the rest of the positive
    matches are supplementary. With `trusted_sources_only`, any source below
    the verified trust level is excluded with a reason.
    """

    name = StageName.DATA_SOURCE_MANAGER
    reads = (StageName.PROMPT_ENHANCER,)

    async def run(self, state: RunState, ctx: StageContext) -> StageUpdate:
        enhanced = state.enhanced_prompt
        question = state.input.question
        if enhanced is not None:
            sector = enhanced.triage.sector
            function = enhanced.triage.function
            geography = enhanced.geography or detect_geography(question) or "Global"
        else:
            sector, function = "General", "Market Analysis"
            geography = detect_geography(question) or "Global"

        profile = state.input.profile
        trusted_only = bool(profile and profile.trusted_sources_only)

        kept: list[RankedSource] = []
        excluded: list[ExcludedSource] = []
        for source in ctx.catalog.rank(sector, function, geography):
            if trusted_only and source.trust_level is not TrustLevel.VERIFIED:
                excluded.append(
                    ExcludedSource(
                        id=source.id,
                        name=source.name,
                        trust_level=source.trust_level,
                        reason="Excluded: trusted sources only (source is not verified)",
                    )
                )
                continue
            kept.append(source)

        recommended = [s for s in kept if "sector" in s.matched_on][:MAX_RECOMMENDED]
        chosen = {s.id for s in recommended}
        supplementary = [s for s in kept if s.id not in chosen][:MAX_SUPPLEMENTARY]

        notes = [f"Ranked against sector={sector}, function={function}, geography={geography}."]
        if not recommended:
            notes.append("No sector-specific source matched; relying on general sources.")
        if excluded:
            notes.append(f"{len(excluded)} source(s) excluded by the trusted-sources-only preference.")

        selection = SourceSelection(
            sector=sector,
            function=function,
            geography=geography,
            trusted_sources_only=trusted_only,
            recommended=tuple(recommended),
            supplementary=tuple(supplementary),
            excluded=tuple(excluded),
            notes=tuple(notes),
        )
        self.log_info(
            "Sources selected",
            recommended=len(recommended),
            supplementary=len(supplementary),
            excluded=len(excluded),
        )
        return self.complete(
            selection,
            f"Selected {len(recommended) + len(supplementary)} preferred data source(s).",
        )
