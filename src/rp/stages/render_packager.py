"""
Render Packager (Stage 10).

Assembles the Deliverable: rendered sections, citations, export manifest
and version history.
"""

from __future__ import annotations

from rp.reports import DeliverableAssembler
from rp.stages.base import Stage, StageContext
from rp.state import RunState, StageUpdate
from rp.types import SectionStatus, StageName


class RenderPackagerStage(Stage):
    """Stage 10: Deliverable packaging."""

    name = StageName.RENDER_PACKAGER
    reads = (
        StageName.LEAD_MANAGER,
        StageName.DATA_SEARCHER,
        StageName.DATA_ANALYZER,
        StageName.DATA_PRESENTER,
    )

    async def run(self, state: RunState, ctx: StageContext) -> StageUpdate:
        deliverable = DeliverableAssembler(state).assemble()
        pending = sum(1 for s in deliverable.sections if s.status is SectionStatus.PENDING)
        self.log_info(
            "Deliverable assembled",
            sections=len(deliverable.sections),
            pending=pending,
            citations=len(deliverable.citations.bibliography),
        )
        return self.complete(
            deliverable,
            f"Deliverable v{deliverable.version} packaged with {len(deliverable.sections)} section(s) "
            f"and {len(deliverable.citations.bibliography)} citation(s).",
        )
