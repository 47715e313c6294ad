"""
Run state: the merge-only accumulator threaded through one pipeline run.

RunState is a frozen dataclass. Every transition (recording a stage start,
merging a stage update, taking the revision edge, terminating) returns a new
RunState, so any value handed to a stream consumer is already an immutable
snapshot.

The merge boundary enforces the stage contract:
- a stage may only write its own output slot
- the output must be the type registered for that slot
- a slot is written once (a revision pass archives it first)
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field, replace
from datetime import datetime
from types import MappingProxyType
from typing import Any, Iterable, Mapping

import orjson

from rp.exceptions import StageContractError, StageError
from rp.types import (
    STAGE_OUTPUT_TYPES,
    AnalysisSummary,
    ConnectionSummary,
    DataGapSummary,
    Deliverable,
    DictMixin,
    EnhancedPrompt,
    PresentationPayload,
    ReviewResult,
    RunInput,
    ScopePlan,
    SearchPlanSummary,
    SourceSelection,
    StageName,
    StageStatus,
    TerminationReason,
    generate_id,
    to_primitive,
    utc_now,
)


def output_digest(output: Any) -> str:
    """Short stable digest of a stage output."""
    payload = to_primitive(output)
    if isinstance(payload, dict):
        # Fields that differ between otherwise identical outputs.
        payload = {k: v for k, v in payload.items() if k not in ("deliverable_id", "created_at")}
    raw = orjson.dumps(payload, option=orjson.OPT_SORT_KEYS, default=str)
    return hashlib.sha256(raw).hexdigest()[:16]


@dataclass(frozen=True)
class StageRecord(DictMixin):
    """One entry of the append-only execution log."""

    stage: StageName
    status: StageStatus
    timestamp: datetime = field(default_factory=utc_now)
    output_digest: str | None = None
    summary: str = ""
    detail: str | None = None
    revision: int = 0

    @property
    def signature(self) -> str:
        return f"{self.stage.value}:{self.status.value}"


@dataclass(frozen=True)
class StageUpdate:
    """Partial state returned by a stage.

    Exactly one of `outputs` or `error` is meaningful. `outputs` is a mapping
    so the merge can detect a stage writing a slot that is not its own.
    """

    stage: StageName
    outputs: Mapping[StageName, Any] = field(default_factory=dict)
    error: StageError | None = None
    summary: str = ""

    @classmethod
    def completed(cls, stage: StageName, output: Any, summary: str = "") -> StageUpdate:
        return cls(stage=stage, outputs={stage: output}, summary=summary)

    @classmethod
    def failed(cls, stage: StageName, error: StageError) -> StageUpdate:
        return cls(stage=stage, error=error, summary=error.message)

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class RunTermination(DictMixin):
    reason: TerminationReason
    message: str
    stage: StageName | None = None


@dataclass(frozen=True)
class SupersededOutput(DictMixin):
    """A loop-stage output replaced by a revision pass."""

    revision: int
    stage: StageName
    output: Any


@dataclass(frozen=True)
class RunState:
    """Immutable snapshot of a run.

    Owned by exactly one run; never shared across concurrent runs.
    """

    run_id: str
    input: RunInput
    started_at: datetime
    stage_outputs: Mapping[StageName, Any] = field(
        default_factory=lambda: MappingProxyType({})
    )
    execution_log: tuple[StageRecord, ...] = ()
    current_stage: StageName | None = None
    revision: int = 0
    superseded_outputs: tuple[SupersededOutput, ...] = ()
    termination: RunTermination | None = None

    @classmethod
    def create(cls, run_input: RunInput, run_id: str | None = None) -> RunState:
        """Factory method to create the initial run state."""
        return cls(
            run_id=run_id or generate_id("run"),
            input=run_input,
            started_at=utc_now(),
        )

    # -- read access ---------------------------------------------------------

    def output(self, stage: StageName) -> Any | None:
        """Get a stage output, or None when the stage has not completed."""
        return self.stage_outputs.get(stage)

    @property
    def enhanced_prompt(self) -> EnhancedPrompt | None:
        return self.output(StageName.PROMPT_ENHANCER)

    @property
    def scope(self) -> ScopePlan | None:
        return self.output(StageName.LEAD_MANAGER)

    @property
    def sources(self) -> SourceSelection | None:
        return self.output(StageName.DATA_SOURCE_MANAGER)

    @property
    def connections(self) -> ConnectionSummary | None:
        return self.output(StageName.DATA_CONNECTOR)

    @property
    def search(self) -> SearchPlanSummary | None:
        return self.output(StageName.DATA_SEARCHER)

    @property
    def gaps(self) -> DataGapSummary | None:
        return self.output(StageName.EXPERT_INPUT)

    @property
    def analysis(self) -> AnalysisSummary | None:
        return self.output(StageName.DATA_ANALYZER)

    @property
    def presentation(self) -> PresentationPayload | None:
        return self.output(StageName.DATA_PRESENTER)

    @property
    def review(self) -> ReviewResult | None:
        return self.output(StageName.REVIEWER)

    @property
    def deliverable(self) -> Deliverable | None:
        return self.output(StageName.RENDER_PACKAGER)

    @property
    def last_record(self) -> StageRecord | None:
        return self.execution_log[-1] if self.execution_log else None

    @property
    def is_terminated(self) -> bool:
        return self.termination is not None

    @property
    def stage_executions(self) -> int:
        """Number of stage executions started so far."""
        return sum(1 for r in self.execution_log if r.status is StageStatus.STARTED)

    def records_for(self, stage: StageName) -> list[StageRecord]:
        return [r for r in self.execution_log if r.stage is stage]

    def errored_stages(self) -> list[StageName]:
        return [r.stage for r in self.execution_log if r.status is StageStatus.ERROR]

    def log_signature(self) -> str:
        """`stage:status` signature of the log, used by consumers to diff snapshots."""
        return "|".join(r.signature for r in self.execution_log)

    # -- transitions ---------------------------------------------------------

    def record(
        self,
        stage: StageName,
        status: StageStatus,
        summary: str = "",
        detail: str | None = None,
        digest: str | None = None,
    ) -> RunState:
        """Append one entry to the execution log."""
        entry = StageRecord(
            stage=stage,
            status=status,
            output_digest=digest,
            summary=summary,
            detail=detail,
            revision=self.revision,
        )
        return replace(
            self,
            execution_log=self.execution_log + (entry,),
            current_stage=stage,
        )

    def merge(self, update: StageUpdate, executing: StageName | None = None) -> RunState:
        """Merge a stage update and append its terminal log record.

        Args:
            update: The update returned by a stage.
            executing: The stage that actually ran; its update must carry the
                same stage name.

        Raises:
            StageContractError: If the update claims another stage, writes a
                foreign slot, writes a value of the wrong type, or overwrites
                an existing output.
        """
        if executing is not None and update.stage is not executing:
            raise StageContractError(
                "Stage returned an update for another stage",
                context={"stage": executing.value, "claimed": update.stage.value},
            )

        if update.error is not None:
            return self.record(
                update.stage,
                StageStatus.ERROR,
                summary=update.summary or update.error.message,
                detail=str(update.error),
            )

        for key, value in update.outputs.items():
            if key != update.stage:
                raise StageContractError(
                    "Stage attempted to write another stage's output",
                    context={"stage": update.stage.value, "slot": getattr(key, "value", key)},
                )
            expected = STAGE_OUTPUT_TYPES[key]
            if not isinstance(value, expected):
                raise StageContractError(
                    "Stage output does not match its slot type",
                    context={
                        "stage": key.value,
                        "expected": expected.__name__,
                        "actual": type(value).__name__,
                    },
                )
            if key in self.stage_outputs:
                raise StageContractError(
                    "Stage output already written",
                    context={"stage": key.value},
                )

        outputs = dict(self.stage_outputs)
        outputs.update(update.outputs)
        digest = output_digest(update.outputs[update.stage]) if update.outputs else None
        merged = replace(self, stage_outputs=MappingProxyType(outputs))
        return merged.record(
            update.stage,
            StageStatus.COMPLETED,
            summary=update.summary,
            digest=digest,
        )

    def begin_revision(self, stages: Iterable[StageName]) -> RunState:
        """Archive the outputs of the loop stages and bump the revision counter."""
        outputs = dict(self.stage_outputs)
        archived: list[SupersededOutput] = []
        for stage in stages:
            if stage in outputs:
                archived.append(
                    SupersededOutput(revision=self.revision, stage=stage, output=outputs.pop(stage))
                )
        return replace(
            self,
            stage_outputs=MappingProxyType(outputs),
            superseded_outputs=self.superseded_outputs + tuple(archived),
            revision=self.revision + 1,
        )

    def terminate(
        self,
        reason: TerminationReason,
        message: str,
        stage: StageName | None = None,
    ) -> RunState:
        """Mark the run as terminated."""
        return replace(
            self,
            termination=RunTermination(reason=reason, message=message, stage=stage),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "run_id": self.run_id,
            "input": self.input.to_dict(),
            "started_at": self.started_at.isoformat(),
            "stage_outputs": {
                stage.value: to_primitive(output) for stage, output in self.stage_outputs.items()
            },
            "execution_log": [r.to_dict() for r in self.execution_log],
            "current_stage": self.current_stage.value if self.current_stage else None,
            "revision": self.revision,
            "superseded_outputs": [s.to_dict() for s in self.superseded_outputs],
            "termination": self.termination.to_dict() if self.termination else None,
        }
