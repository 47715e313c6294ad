"""
Reviewer (Stage 9).

Scores the run on checklist completion, trusted-source usage, format and
open gaps. The quality score drives the optional revision edge.
"""

from __future__ import annotations

from rp.stages.base import Stage, StageContext
from rp.state import RunState, StageUpdate
from rp.types import ReviewResult, StageName, TrustLevel


def quality_score(completion: float, trusted: bool, format_ok: bool, gaps: bool) -> float:
    """Mean of the four review criteria, rounded to two decimals."""
    parts = [completion, 1.0 if trusted else 0.0, 1.0 if format_ok else 0.0, 0.8 if gaps else 1.0]
    return round(sum(parts) / len(parts), 2)


class ReviewerStage(Stage):
    """Stage 9: Quality review."""

    name = StageName.REVIEWER
    reads = (StageName.DATA_CONNECTOR, StageName.DATA_SEARCHER, StageName.EXPERT_INPUT, StageName.DATA_PRESENTER)

    async def run(self, state: RunState, ctx: StageContext) -> StageUpdate:
        coverage = state.search.coverage if state.search else ()
        covered = sum(1 for c in coverage if c.complete)
        completion = covered / (len(coverage) or 1)

        gaps_identified = bool(state.gaps and state.gaps.gaps)
        connections = state.connections.connections if state.connections else ()
        trusted = any(c.trust_level is TrustLevel.VERIFIED for c in connections)
        format_ok = bool(state.presentation and state.presentation.sections)

        revisions: list[str] = []
        if completion < 1:
            revisions.append("Resolve outstanding checklist items before final sign-off.")
        if gaps_identified:
            revisions.append("Coordinate with expert community to address flagged data gaps.")
        if not format_ok:
            revisions.append("Populate executive summary and analytical sections before release.")

        score = quality_score(completion, trusted, format_ok, gaps_identified)
        result = ReviewResult(
            checklist_completion=round(completion, 2),
            data_gaps_identified=gaps_identified,
            trusted_sources_used=trusted,
            format_correct=format_ok,
            quality_score=score,
            revisions_needed=tuple(revisions),
        )
        self.log_info("Review complete", quality_score=score, revision=state.revision)
        return self.complete(result, f"Quality score: {round(score * 100)}%.")
