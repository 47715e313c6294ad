"""
Progress protocol: maps run-state snapshots to timeline steps.

The orchestrator only guarantees log ordering and content. Consumers turn
each snapshot into user-facing steps with `build_timeline` and use a
`TimelineEmitter` to emit each `(stage, status)` transition exactly once.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from rp.state import RunState, StageRecord
from rp.types import DictMixin, StageName, StageStatus

STAGE_TITLES: dict[StageName, str] = {
    StageName.PROMPT_ENHANCER: "Prompt enhancement",
    StageName.LEAD_MANAGER: "Scope planning",
    StageName.DATA_SOURCE_MANAGER: "Source management",
    StageName.DATA_CONNECTOR: "Data connections",
    StageName.DATA_SEARCHER: "Search plan",
    StageName.EXPERT_INPUT: "Expert escalation",
    StageName.DATA_ANALYZER: "Analysis modelling",
    StageName.DATA_PRESENTER: "Presentation",
    StageName.REVIEWER: "Quality review",
    StageName.RENDER_PACKAGER: "Deliverable packaging",
}


def summarize(record: StageRecord) -> str:
    """Human summary of a log entry."""
    if record.status is StageStatus.STARTED:
        return f"{STAGE_TITLES[record.stage]} in progress."
    if record.status is StageStatus.CANCELLED:
        return record.summary or f"{STAGE_TITLES[record.stage]} cancelled."
    if record.status is StageStatus.ERROR:
        return f"{STAGE_TITLES[record.stage]} failed: {record.summary or 'unknown error'}"
    return record.summary or f"{record.stage.value.replace('_', ' ').capitalize()} completed."


@dataclass(frozen=True)
class TimelineStep(DictMixin):
    """One user-facing progress entry."""

    stage: StageName
    title: str
    status: StageStatus
    summary: str
    details: str | None
    timestamp: datetime
    revision: int = 0

    @property
    def signature(self) -> str:
        base = f"{self.stage.value}:{self.status.value}"
        return f"{base}@r{self.revision}" if self.revision else base


def build_timeline(state: RunState) -> list[TimelineStep]:
    """Map the execution log of a snapshot to timeline steps, in log order."""
    return [
        TimelineStep(
            stage=record.stage,
            title=STAGE_TITLES[record.stage],
            status=record.status,
            summary=summarize(record),
            details=record.detail,
            timestamp=record.timestamp,
            revision=record.revision,
        )
        for record in state.execution_log
    ]


class TimelineEmitter:
    """Emits each timeline transition once across successive snapshots.

    Transitions are keyed by their `(stage, status)` signature, suffixed with
    the revision number on revision passes.
    """

    def __init__(self) -> None:
        self._seen: set[str] = set()

    def emit(self, state: RunState) -> list[TimelineStep]:
        """Steps of `state` that were not emitted before."""
        fresh = []
        for step in build_timeline(state):
            if step.signature in self._seen:
                continue
            self._seen.add(step.signature)
            fresh.append(step)
        return fresh

    def reset(self) -> None:
        self._seen.clear()
