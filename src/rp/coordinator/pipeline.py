"""
Pipeline coordinator.

Owns the fixed stage order and drives execution:

prompt_enhancer → lead_manager → data_source_manager → data_connector →
data_searcher → expert_input → data_analyzer → data_presenter → reviewer →
render_packager

plus one conditional revision edge reviewer → data_analyzer, taken while the
quality score is below the threshold and the revision budget allows it.

Stages run one at a time. After each stage the orchestrator yields an
immutable RunState snapshot; `run` is built on `stream`. Stage errors are
recorded and the run continues. Cancellation, timeout, the recursion guard
and a failed entry stage terminate the run with a marked partial state.
"""

from __future__ import annotations

import asyncio
import contextlib
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Iterable, Mapping, Sequence

from rp.capabilities import Capabilities
from rp.config import Settings, get_settings
from rp.exceptions import (
    ConfigurationError,
    InputError,
    PipelineError,
    RecursionLimitError,
    RunCancelledError,
    StageContractError,
)
from rp.logging import get_logger, log_context
from rp.retrieval import SourceCatalog
from rp.stages import Stage, StageContext, default_stages
from rp.state import RunState, StageUpdate
from rp.types import (
    Attachment,
    Deliverable,
    RunInput,
    StageName,
    StageStatus,
    TerminationReason,
    UserProfile,
    utc_now,
)
from rp.utils.text import normalize_user_input

logger = get_logger(__name__)

MAX_QUESTION_LENGTH = 8000
_LOCALE_RE = re.compile(r"^[A-Za-z]{2,3}(?:[-_][A-Za-z0-9]{2,8})*$")

# Stages re-entered by the revision edge, in order.
REVISION_LOOP = (StageName.DATA_ANALYZER, StageName.DATA_PRESENTER, StageName.REVIEWER)


@dataclass
class PipelineConfig:
    """Configuration for the orchestrator."""

    # Recursion guard
    max_stage_executions: int = 50

    # Revision edge (inert while max_revisions == 0)
    quality_threshold: float = 0.8
    max_revisions: int = 0

    # Whole-run timeout; None = no limit
    timeout_seconds: float | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> PipelineConfig:
        return cls(
            max_stage_executions=settings.MAX_STAGE_EXECUTIONS,
            quality_threshold=settings.QUALITY_THRESHOLD,
            max_revisions=settings.MAX_REVISIONS,
            timeout_seconds=settings.RUN_TIMEOUT_SECONDS,
        )


class PipelineDefinition:
    """The fixed, ordered list of stages plus the revision edge.

    Stage implementations can be swapped (for tests or alternative
    backends) but the order cannot.
    """

    ORDER: tuple[StageName, ...] = tuple(StageName)

    def __init__(self, stages: Sequence[Stage]) -> None:
        names = tuple(stage.name for stage in stages)
        if names != self.ORDER:
            raise ConfigurationError(
                "Pipeline stages must follow the fixed stage order",
                context={"expected": [s.value for s in self.ORDER], "actual": [s.value for s in names]},
            )
        self.stages: tuple[Stage, ...] = tuple(stages)

    @classmethod
    def default(cls, overrides: Mapping[StageName, Stage] | None = None) -> PipelineDefinition:
        """Default stages, with optional per-stage replacements."""
        overrides = overrides or {}
        for name, stage in overrides.items():
            if stage.name is not name:
                raise ConfigurationError(
                    "Override does not implement the stage it replaces",
                    context={"slot": name.value, "stage": stage.name.value},
                )
        return cls([overrides.get(stage.name, stage) for stage in default_stages()])

    def __len__(self) -> int:
        return len(self.stages)

    @property
    def entry(self) -> Stage:
        return self.stages[0]

    def index_of(self, name: StageName) -> int:
        return self.ORDER.index(name)

    @staticmethod
    def should_revise(state: RunState, config: PipelineConfig) -> bool:
        """Whether the reviewer → data_analyzer edge is taken."""
        review = state.review
        if review is None:
            return False
        return review.quality_score < config.quality_threshold and state.revision < config.max_revisions


@dataclass
class PipelineResult:
    """Result of a run. Always returned, even for a terminated run."""

    run_state: RunState
    duration_seconds: float
    started_at: datetime
    completed_at: datetime = field(default_factory=utc_now)

    @property
    def run_id(self) -> str:
        return self.run_state.run_id

    @property
    def deliverable(self) -> Deliverable | None:
        return self.run_state.deliverable

    @property
    def terminated(self) -> bool:
        return self.run_state.is_terminated

    @property
    def errors(self) -> list[dict[str, Any]]:
        """Stage errors recorded in the log."""
        return [
            {"stage": r.stage.value, "summary": r.summary, "detail": r.detail}
            for r in self.run_state.execution_log
            if r.status is StageStatus.ERROR
        ]

    def raise_for_termination(self) -> None:
        """Raise the matching PipelineError if the run was terminated early.

        Raises:
            RunCancelledError: If the run was cancelled or timed out.
            RecursionLimitError: If the run hit the stage execution limit.
            PipelineError: If the entry stage failed.
        """
        termination = self.run_state.termination
        if termination is None:
            return
        context = {
            "run_id": self.run_id,
            "stage": termination.stage.value if termination.stage else None,
            "reason": termination.reason.value,
        }
        if termination.reason in (TerminationReason.CANCELLED, TerminationReason.TIMEOUT):
            raise RunCancelledError(termination.message, context=context)
        if termination.reason is TerminationReason.RECURSION_LIMIT:
            raise RecursionLimitError(termination.message, context=context)
        raise PipelineError(termination.message, context=context)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "duration_seconds": round(self.duration_seconds, 3),
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "errors": self.errors,
            "state": self.run_state.to_dict(),
        }

    def to_report_markdown(self) -> str:
        """The deliverable as Markdown, or a partial-run report."""
        if self.deliverable is not None:
            return self.deliverable.to_markdown()
        lines = [f"# Partial run {self.run_id}", ""]
        termination = self.run_state.termination
        if termination is not None:
            lines.extend([f"Run terminated ({termination.reason.value}): {termination.message}", ""])
        lines.append("## Execution log")
        lines.append("")
        for record in self.run_state.execution_log:
            summary = f" - {record.summary}" if record.summary else ""
            lines.append(f"- {record.stage.value}: {record.status.value}{summary}")
        return "\n".join(lines) + "\n"


def build_run_input(
    question: Any,
    profile: UserProfile | Mapping[str, Any] | None = None,
    attachments: Iterable[Attachment | Mapping[str, Any]] = (),
) -> RunInput:
    """Validate and normalise the inbound request.

    Raises:
        InputError: If the question or profile is malformed.
    """
    text = normalize_user_input(question)
    if not text:
        raise InputError("No message content found", context={"field": "question"})
    if len(text) > MAX_QUESTION_LENGTH:
        raise InputError(
            "Question is too long",
            context={"field": "question", "length": len(text), "max": MAX_QUESTION_LENGTH},
        )

    if profile is None or isinstance(profile, UserProfile):
        user_profile = profile
    elif isinstance(profile, Mapping):
        user_profile = UserProfile.from_dict(dict(profile))
    else:
        raise InputError("Profile must be a mapping", context={"field": "profile", "type": type(profile).__name__})

    if user_profile and user_profile.locale and not _LOCALE_RE.match(user_profile.locale):
        raise InputError("Invalid locale", context={"field": "profile.locale", "value": user_profile.locale})

    files: list[Attachment] = []
    for item in attachments:
        if isinstance(item, Attachment):
            files.append(item)
        elif isinstance(item, Mapping) and isinstance(item.get("filename"), str):
            files.append(
                Attachment(
                    filename=item["filename"],
                    content=str(item.get("content") or ""),
                    media_type=str(item.get("media_type") or "text/plain"),
                )
            )
        else:
            raise InputError("Attachment must have a filename", context={"field": "attachments"})

    return RunInput(question=text, profile=user_profile, attachments=tuple(files))


class Orchestrator:
    """Drives one pipeline definition over any number of independent runs.

    Each run gets its own RunState and StageContext; nothing mutable is
    shared between runs.
    """

    def __init__(
        self,
        capabilities: Capabilities,
        settings: Settings | None = None,
        definition: PipelineDefinition | None = None,
        config: PipelineConfig | None = None,
        catalog: SourceCatalog | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            capabilities: Injected capability clients.
            settings: Application settings (loads from env if None).
            definition: Stage implementations (defaults if None).
            config: Orchestration limits (from settings if None).
            catalog: Source catalog (loaded from settings if None).
        """
        self.settings = settings or get_settings()
        self.capabilities = capabilities
        self.definition = definition or PipelineDefinition.default()
        self.config = config or PipelineConfig.from_settings(self.settings)
        self.catalog = catalog or SourceCatalog(self.settings.SOURCE_CATALOG_PATH)

    async def _execute_stage(
        self,
        stage: Stage,
        state: RunState,
        ctx: StageContext,
        cancel_event: asyncio.Event | None,
        deadline: float | None,
    ) -> StageUpdate | TerminationReason:
        """Run one stage, racing it against the cancel event and the deadline."""
        loop = asyncio.get_running_loop()
        task = asyncio.create_task(stage.execute(state, ctx), name=f"{state.run_id}:{stage.name.value}")
        waiters: set[asyncio.Future[Any]] = {task}
        cancel_waiter: asyncio.Task[Any] | None = None
        if cancel_event is not None:
            cancel_waiter = asyncio.create_task(cancel_event.wait())
            waiters.add(cancel_waiter)
        timeout = None if deadline is None else max(0.0, deadline - loop.time())

        try:
            done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            raise
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()

        if task in done and not task.cancelled():
            return task.result()

        reason = (
            TerminationReason.CANCELLED
            if task.cancelled() or (cancel_event is not None and cancel_event.is_set())
            else TerminationReason.TIMEOUT
        )
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        return reason

    async def stream(
        self,
        run_input: RunInput,
        cancel_event: asyncio.Event | None = None,
        timeout: float | None = None,
        run_id: str | None = None,
    ) -> AsyncIterator[RunState]:
        """Execute the pipeline, yielding a snapshot after each stage.

        Args:
            run_input: Validated run input.
            cancel_event: Set to cancel the run; the in-flight stage is cancelled.
            timeout: Whole-run timeout in seconds (config default if None).
            run_id: Explicit run id (generated if None).

        Yields:
            Immutable RunState snapshots, one per stage transition.
        """
        state = RunState.create(run_input, run_id=run_id)
        ctx = StageContext.for_run(self.settings, self.capabilities, self.catalog)
        stages = self.definition.stages
        loop = asyncio.get_running_loop()
        timeout = timeout if timeout is not None else self.config.timeout_seconds
        deadline = loop.time() + timeout if timeout is not None else None

        with log_context(run_id=state.run_id):
            logger.info("Run started", stages=len(stages), question_length=len(run_input.question))
            index = 0
            while index < len(stages):
                stage = stages[index]

                if cancel_event is not None and cancel_event.is_set():
                    state = state.record(stage.name, StageStatus.CANCELLED, summary="Run cancelled before stage start.")
                    state = state.terminate(TerminationReason.CANCELLED, "Run cancelled by caller", stage.name)
                    logger.warning("Run cancelled", stage=stage.name.value)
                    yield state
                    return

                if deadline is not None and loop.time() >= deadline:
                    state = state.record(stage.name, StageStatus.CANCELLED, summary="Run timed out before stage start.")
                    state = state.terminate(TerminationReason.TIMEOUT, f"Run exceeded {timeout}s", stage.name)
                    logger.warning("Run timed out", stage=stage.name.value)
                    yield state
                    return

                if state.stage_executions >= self.config.max_stage_executions:
                    state = state.record(
                        stage.name, StageStatus.CANCELLED, summary="Stage execution limit reached before stage start."
                    )
                    state = state.terminate(
                        TerminationReason.RECURSION_LIMIT,
                        f"Stage execution limit of {self.config.max_stage_executions} reached",
                        stage.name,
                    )
                    logger.error("Recursion limit reached", executions=state.stage_executions)
                    yield state
                    return

                state = state.record(stage.name, StageStatus.STARTED)
                with log_context(stage=stage.name.value, revision=state.revision):
                    outcome = await self._execute_stage(stage, state, ctx, cancel_event, deadline)

                if isinstance(outcome, TerminationReason):
                    label = "cancelled" if outcome is TerminationReason.CANCELLED else "timed out"
                    state = state.record(stage.name, StageStatus.CANCELLED, summary=f"Stage {label} while running.")
                    state = state.terminate(outcome, f"Run {label} during {stage.name.value}", stage.name)
                    logger.warning("Run stopped", reason=outcome.value, stage=stage.name.value)
                    yield state
                    return

                try:
                    state = state.merge(outcome, executing=stage.name)
                except StageContractError as e:
                    logger.error("Stage contract violation", stage=stage.name.value, error=str(e))
                    state = state.merge(StageUpdate.failed(stage.name, e))

                failed = state.last_record is not None and state.last_record.status is StageStatus.ERROR
                if stage is self.definition.entry and failed:
                    state = state.terminate(
                        TerminationReason.ENTRY_STAGE_FAILED,
                        f"Entry stage failed: {state.last_record.summary}",
                        stage.name,
                    )
                    logger.error("Entry stage failed", error=state.last_record.summary)
                    yield state
                    return

                if failed:
                    logger.warning("Stage errored, continuing", stage=stage.name.value, error=state.last_record.summary)

                yield state

                if stage.name is StageName.REVIEWER and self.definition.should_revise(state, self.config):
                    score = state.review.quality_score
                    state = state.begin_revision(REVISION_LOOP)
                    logger.info("Revision edge taken", revision=state.revision, quality_score=score)
                    index = self.definition.index_of(StageName.DATA_ANALYZER)
                    continue

                index += 1

            logger.info(
                "Run completed",
                executions=state.stage_executions,
                errors=len(state.errored_stages()),
                revision=state.revision,
            )

    async def run(
        self,
        run_input: RunInput,
        cancel_event: asyncio.Event | None = None,
        timeout: float | None = None,
        run_id: str | None = None,
    ) -> RunState:
        """Execute the pipeline and return the final snapshot."""
        state: RunState | None = None
        async for snapshot in self.stream(run_input, cancel_event=cancel_event, timeout=timeout, run_id=run_id):
            state = snapshot
        if state is None:
            raise PipelineError("Pipeline produced no snapshot", context={"stages": len(self.definition.stages)})
        return state

    async def execute(
        self,
        run_input: RunInput,
        cancel_event: asyncio.Event | None = None,
        timeout: float | None = None,
    ) -> PipelineResult:
        """Execute the pipeline and wrap the final snapshot in a PipelineResult."""
        started_at = utc_now()
        start_time = asyncio.get_running_loop().time()
        state = await self.run(run_input, cancel_event=cancel_event, timeout=timeout)
        return PipelineResult(
            run_state=state,
            duration_seconds=asyncio.get_running_loop().time() - start_time,
            started_at=started_at,
        )


async def run_pipeline(
    question: Any,
    profile: UserProfile | Mapping[str, Any] | None = None,
    *,
    attachments: Iterable[Attachment | Mapping[str, Any]] = (),
    settings: Settings | None = None,
    capabilities: Capabilities | None = None,
    definition: PipelineDefinition | None = None,
    cancel_event: asyncio.Event | None = None,
    timeout: float | None = None,
) -> PipelineResult:
    """Convenience function to run the full pipeline.

    Capabilities built here from settings are closed before returning;
    injected capabilities are left open for the caller.

    Raises:
        InputError: If the question or profile is malformed. No stage runs.
    """
    run_input = build_run_input(question, profile, attachments)
    settings = settings or get_settings()
    owned = capabilities is None
    capabilities = capabilities or Capabilities.from_settings(settings)
    try:
        orchestrator = Orchestrator(capabilities, settings=settings, definition=definition)
        return await orchestrator.execute(run_input, cancel_event=cancel_event, timeout=timeout)
    finally:
        if owned:
            await capabilities.aclose()


async def stream_pipeline(
    question: Any,
    profile: UserProfile | Mapping[str, Any] | None = None,
    *,
    attachments: Iterable[Attachment | Mapping[str, Any]] = (),
    settings: Settings | None = None,
    capabilities: Capabilities | None = None,
    definition: PipelineDefinition | None = None,
    cancel_event: asyncio.Event | None = None,
    timeout: float | None = None,
) -> AsyncIterator[RunState]:
    """Streaming variant of `run_pipeline`, yielding snapshots.

    Raises:
        InputError: On first iteration, if the question or profile is
            malformed. No stage runs.
    """
    run_input = build_run_input(question, profile, attachments)
    settings = settings or get_settings()
    owned = capabilities is None
    capabilities = capabilities or Capabilities.from_settings(settings)
    try:
        orchestrator = Orchestrator(capabilities, settings=settings, definition=definition)
        async for snapshot in orchestrator.stream(run_input, cancel_event=cancel_event, timeout=timeout):
            yield snapshot
    finally:
        if owned:
            await capabilities.aclose()
