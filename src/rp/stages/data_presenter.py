"""
Data Presenter (Stage 8).

Lays the analysis out as presentation sections, an executive summary and
the appendices. Proprietary access plans and open gaps are listed under the
appendices.
"""

from __future__ import annotations

from rp.stages.base import Stage, StageContext
from rp.state import RunState, StageUpdate
from rp.types import (
    Availability,
    PresentationPayload,
    PresentationSection,
    StageName,
)
from rp.utils.text import dedupe, plural

DRAFT_SUMMARY = (
    "Draft concise executive summary once analyses finalize: capture market context, "
    "momentum indicators, and recommended actions."
)
NEXT_STEPS = (
    "Convert preliminary findings into visuals (charts/tables) and draft narrative paragraphs for review."
)
PENDING_STEPS = "Analysis pending for this section; re-run once evidence is available."


class DataPresenterStage(Stage):
    """Stage 8: Presentation."""

    name = StageName.DATA_PRESENTER
    reads = (StageName.LEAD_MANAGER, StageName.DATA_SEARCHER, StageName.EXPERT_INPUT, StageName.DATA_ANALYZER)

    async def run(self, state: RunState, ctx: StageContext) -> StageUpdate:
        scope = state.scope
        analysis = state.analysis
        if scope is None and analysis is None:
            raise self.missing(StageName.LEAD_MANAGER, StageName.DATA_ANALYZER)

        if scope is not None:
            outline = [(s.id, s.title) for s in scope.sections]
        else:
            outline = [(c.section_id, c.title) for c in analysis.components]

        sections: list[PresentationSection] = []
        for section_id, title in outline:
            component = analysis.component_for(section_id) if analysis else None
            if component is None:
                sections.append(PresentationSection(section_id=section_id, title=title, next_steps=PENDING_STEPS))
                continue
            sections.append(
                PresentationSection(
                    section_id=section_id,
                    title=title,
                    key_findings=tuple(component.findings[:3]) + component.caveats,
                    supporting_data=component.inputs,
                    next_steps=NEXT_STEPS,
                )
            )

        components = analysis.components if analysis else ()
        evidenced = [c for c in components if c.evidence_count]
        if evidenced:
            executive_summary = (
                f"{plural(len(evidenced), 'section')} of {len(outline)} backed by retrieved evidence. "
                + " ".join(c.findings[0] for c in evidenced[:2])
            )
        else:
            executive_summary = DRAFT_SUMMARY

        appendices = ["List of data sources with access notes."]
        search = state.search
        if search is not None:
            for plan in dedupe(
                f"Access plan – {p.dataset_name}: {p.next_steps}"
                for p in search.proprietary
                if p.availability is Availability.REQUIRES_ACCESS
            ):
                appendices.append(plan)
        appendices.append("Methodology and assumptions log.")
        appendices.append("Outstanding data gaps or expert follow-up actions.")
        gaps = state.gaps
        if gaps is not None:
            appendices.extend(f"Gap – {g.description}" for g in gaps.gaps)

        payload = PresentationPayload(
            executive_summary=executive_summary,
            sections=tuple(sections),
            appendices=tuple(appendices),
        )
        self.log_info("Presentation prepared", sections=len(sections), appendices=len(appendices))
        return self.complete(payload, f"Presentation scaffold includes {len(sections)} section(s).")
