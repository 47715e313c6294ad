"""
Tests for the run state: merge contract, revision archive and immutability.
"""

from __future__ import annotations

import dataclasses

import pytest

from rp.exceptions import StageContractError, StageError
from rp.state import RunState, StageUpdate, output_digest
from rp.types import (
    DataGapSummary,
    ExecutionStrategy,
    ReviewResult,
    ScopePlan,
    Section,
    StageName,
    StageStatus,
    TerminationReason,
)


def _scope() -> ScopePlan:
    return ScopePlan(
        project_title="EV batteries",
        execution_strategy=ExecutionStrategy.FULLY_PARALLEL,
        sections=(Section(id="rivalry", title="Rivalry", description="Competition"),),
    )


def _review(score: float) -> ReviewResult:
    return ReviewResult(
        checklist_completion=1.0,
        data_gaps_identified=False,
        trusted_sources_used=True,
        format_correct=True,
        quality_score=score,
    )


class TestRunStateMerge:
    """Tests for RunState.merge."""

    def test_merge_writes_own_slot_and_logs_completion(self, run_state: RunState) -> None:
        """A valid update fills the slot and appends a COMPLETED record."""
        update = StageUpdate.completed(StageName.LEAD_MANAGER, _scope(), summary="Scoped.")
        merged = run_state.merge(update)

        assert merged.scope == _scope()
        record = merged.last_record
        assert record is not None
        assert record.stage is StageName.LEAD_MANAGER
        assert record.status is StageStatus.COMPLETED
        assert record.summary == "Scoped."
        assert record.output_digest == output_digest(_scope())

    def test_merge_does_not_mutate_previous_snapshot(self, run_state: RunState) -> None:
        """Snapshots handed out earlier never change."""
        merged = run_state.merge(StageUpdate.completed(StageName.LEAD_MANAGER, _scope()))

        assert run_state.scope is None
        assert run_state.execution_log == ()
        assert len(merged.execution_log) == 1

    def test_snapshot_is_frozen(self, run_state: RunState) -> None:
        """RunState fields cannot be reassigned."""
        with pytest.raises(dataclasses.FrozenInstanceError):
            run_state.revision = 3  # type: ignore[misc]

        merged = run_state.merge(StageUpdate.completed(StageName.LEAD_MANAGER, _scope()))
        with pytest.raises(TypeError):
            merged.stage_outputs[StageName.REVIEWER] = _review(1.0)  # type: ignore[index]

    def test_foreign_slot_is_rejected(self, run_state: RunState) -> None:
        """A stage cannot write another stage's slot."""
        update = StageUpdate(stage=StageName.LEAD_MANAGER, outputs={StageName.EXPERT_INPUT: DataGapSummary()})

        with pytest.raises(StageContractError) as exc_info:
            run_state.merge(update)

        assert exc_info.value.context["slot"] == "expert_input"

    def test_wrong_output_type_is_rejected(self, run_state: RunState) -> None:
        """The slot type is checked at the merge boundary."""
        update = StageUpdate.completed(StageName.LEAD_MANAGER, DataGapSummary())

        with pytest.raises(StageContractError) as exc_info:
            run_state.merge(update)

        assert exc_info.value.context["expected"] == "ScopePlan"

    def test_slot_is_written_once(self, run_state: RunState) -> None:
        """Writing a filled slot again is a contract violation."""
        merged = run_state.merge(StageUpdate.completed(StageName.LEAD_MANAGER, _scope()))

        with pytest.raises(StageContractError):
            merged.merge(StageUpdate.completed(StageName.LEAD_MANAGER, _scope()))

    def test_update_must_name_the_executing_stage(self, run_state: RunState) -> None:
        forged = StageUpdate.completed(StageName.REVIEWER, _review(1.0))

        with pytest.raises(StageContractError) as exc_info:
            run_state.merge(forged, executing=StageName.DATA_SOURCE_MANAGER)

        assert exc_info.value.context == {"stage": "data_source_manager", "claimed": "reviewer"}
        assert run_state.merge(forged).review == _review(1.0)

    def test_failed_update_records_error_without_output(self, run_state: RunState) -> None:
        """An error update leaves the slot empty and logs an ERROR record."""
        update = StageUpdate.failed(StageName.EXPERT_INPUT, StageError("no search plan"))
        merged = run_state.merge(update)

        assert merged.gaps is None
        assert merged.last_record is not None
        assert merged.last_record.status is StageStatus.ERROR
        assert merged.last_record.summary == "no search plan"
        assert merged.errored_stages() == [StageName.EXPERT_INPUT]


class TestRunStateTransitions:
    """Tests for record, begin_revision and terminate."""

    def test_stage_executions_counts_started_records(self, run_state: RunState) -> None:
        state = run_state.record(StageName.PROMPT_ENHANCER, StageStatus.STARTED)
        state = state.record(StageName.PROMPT_ENHANCER, StageStatus.ERROR, summary="boom")
        state = state.record(StageName.LEAD_MANAGER, StageStatus.STARTED)

        assert state.stage_executions == 2
        assert state.current_stage is StageName.LEAD_MANAGER
        assert state.log_signature() == "prompt_enhancer:started|prompt_enhancer:error|lead_manager:started"

    def test_begin_revision_archives_loop_outputs(self, run_state: RunState) -> None:
        """Loop-stage outputs move to superseded_outputs; others stay."""
        state = run_state.merge(StageUpdate.completed(StageName.LEAD_MANAGER, _scope()))
        state = state.merge(StageUpdate.completed(StageName.REVIEWER, _review(0.5)))

        revised = state.begin_revision([StageName.DATA_ANALYZER, StageName.REVIEWER])

        assert revised.revision == 1
        assert revised.review is None
        assert revised.scope == _scope()
        assert len(revised.superseded_outputs) == 1
        archived = revised.superseded_outputs[0]
        assert archived.stage is StageName.REVIEWER
        assert archived.revision == 0
        assert archived.output.quality_score == 0.5

        # The reviewer may now write its slot again.
        again = revised.merge(StageUpdate.completed(StageName.REVIEWER, _review(0.9)))
        assert again.review is not None
        assert again.review.quality_score == 0.9
        assert again.last_record is not None
        assert again.last_record.revision == 1

    def test_terminate_marks_partial_state(self, run_state: RunState) -> None:
        state = run_state.terminate(TerminationReason.CANCELLED, "Run cancelled by caller", StageName.DATA_SEARCHER)

        assert state.is_terminated
        assert state.termination is not None
        assert state.termination.reason is TerminationReason.CANCELLED
        assert state.termination.stage is StageName.DATA_SEARCHER
        assert not run_state.is_terminated

    def test_to_dict_is_serializable(self, run_state: RunState) -> None:
        state = run_state.merge(StageUpdate.completed(StageName.LEAD_MANAGER, _scope()))
        data = state.to_dict()

        assert data["run_id"] == state.run_id
        assert data["stage_outputs"]["lead_manager"]["sections"][0]["id"] == "rivalry"
        assert data["execution_log"][0]["status"] == "completed"
        assert data["termination"] is None


class TestOutputDigest:
    """Tests for output_digest."""

    def test_digest_is_stable(self) -> None:
        assert output_digest(_scope()) == output_digest(_scope())

    def test_digest_changes_with_content(self) -> None:
        other = dataclasses.replace(_scope(), project_title="Other")
        assert output_digest(_scope()) != output_digest(other)
