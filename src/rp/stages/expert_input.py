"""
Expert Input (Stage 6).

Flags data gaps for escalation: unmet checklist requirements and failed
warehouse probes.
"""

from __future__ import annotations

from rp.stages.base import Stage, StageContext
from rp.state import RunState, StageUpdate
from rp.types import DataGap, DataGapSummary, Priority, StageName

ESCALATION_ACTION = (
    "Escalate to subject-matter expert or internal knowledge base to source the missing metrics."
)
PROBE_ACTION = "Check the warehouse query with the data owner and re-run the probe."


class ExpertInputStage(Stage):
    """Stage 6: Expert escalation."""

    name = StageName.EXPERT_INPUT
    reads = (StageName.DATA_SEARCHER,)

    async def run(self, state: RunState, ctx: StageContext) -> StageUpdate:
        search = state.search
        if search is None:
            raise self.missing(StageName.DATA_SEARCHER)

        gaps: list[DataGap] = []
        for coverage in search.coverage:
            if coverage.unmet_requirements:
                gaps.append(
                    DataGap(
                        id=f"gap-{len(gaps) + 1}",
                        section_id=coverage.section_id,
                        description=(
                            f"Missing data for section \"{coverage.section_title}\" "
                            f"({', '.join(coverage.unmet_requirements)})."
                        ),
                        recommended_action=ESCALATION_ACTION,
                        priority=Priority.HIGH,
                    )
                )

        for probe in search.warehouse.results:
            if not probe.succeeded:
                gaps.append(
                    DataGap(
                        id=f"gap-{len(gaps) + 1}",
                        section_id=probe.section_id,
                        description=(
                            f"Warehouse probe for \"{probe.requirement}\" in "
                            f"\"{probe.section_title}\" failed: {probe.error}"
                        ),
                        recommended_action=PROBE_ACTION,
                        priority=Priority.MEDIUM,
                    )
                )

        if gaps:
            high = sum(1 for g in gaps if g.priority is Priority.HIGH)
            notes = (
                f"Identified {high} high-priority gap(s).",
                "Document outstanding questions for potential expert community handoff.",
            )
        else:
            notes = (
                "Current search plan covers all checklist requirements. "
                "Expert input optional at this stage.",
            )

        summary = (
            f"Flagged {len(gaps)} data gap(s) for expert review." if gaps else "No expert escalation required."
        )
        self.log_info("Gaps reviewed", gaps=len(gaps))
        return self.complete(DataGapSummary(gaps=tuple(gaps), notes=notes), summary)
