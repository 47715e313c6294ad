"""
Tests for the timeline progress protocol.
"""

from __future__ import annotations

from rp.coordinator.progress import TimelineEmitter, build_timeline, summarize
from rp.state import RunState
from rp.types import StageName, StageStatus


class TestBuildTimeline:
    """Tests for build_timeline and summarize."""

    def test_steps_follow_log_order(self, run_state: RunState) -> None:
        state = run_state.record(StageName.PROMPT_ENHANCER, StageStatus.STARTED)
        state = state.record(StageName.PROMPT_ENHANCER, StageStatus.COMPLETED, summary="Framework: Porter.")

        steps = build_timeline(state)

        assert [(s.stage, s.status) for s in steps] == [
            (StageName.PROMPT_ENHANCER, StageStatus.STARTED),
            (StageName.PROMPT_ENHANCER, StageStatus.COMPLETED),
        ]
        assert steps[0].title == "Prompt enhancement"
        assert steps[0].summary == "Prompt enhancement in progress."
        assert steps[1].summary == "Framework: Porter."

    def test_summaries_by_status(self, run_state: RunState) -> None:
        state = run_state.record(StageName.DATA_SEARCHER, StageStatus.ERROR, summary="search down")
        state = state.record(StageName.REVIEWER, StageStatus.COMPLETED)
        state = state.record(StageName.DATA_ANALYZER, StageStatus.CANCELLED)

        summaries = [summarize(r) for r in state.execution_log]

        assert summaries == [
            "Search plan failed: search down",
            "Reviewer completed.",
            "Analysis modelling cancelled.",
        ]


class TestTimelineEmitter:
    """Tests for emitting each transition once."""

    def test_transitions_emitted_once(self, run_state: RunState) -> None:
        emitter = TimelineEmitter()
        first = run_state.record(StageName.PROMPT_ENHANCER, StageStatus.STARTED)
        second = first.record(StageName.PROMPT_ENHANCER, StageStatus.COMPLETED)

        assert [s.status for s in emitter.emit(first)] == [StageStatus.STARTED]
        assert [s.status for s in emitter.emit(second)] == [StageStatus.COMPLETED]
        assert emitter.emit(second) == []

    def test_revision_pass_is_emitted_again(self, run_state: RunState) -> None:
        emitter = TimelineEmitter()
        state = run_state.record(StageName.DATA_ANALYZER, StageStatus.STARTED)
        state = state.record(StageName.DATA_ANALYZER, StageStatus.COMPLETED)
        emitter.emit(state)

        revised = state.begin_revision([StageName.DATA_ANALYZER])
        revised = revised.record(StageName.DATA_ANALYZER, StageStatus.STARTED)

        fresh = emitter.emit(revised)

        assert len(fresh) == 1
        assert fresh[0].revision == 1
        assert fresh[0].signature == "data_analyzer:started@r1"

    def test_reset_forgets_seen_transitions(self, run_state: RunState) -> None:
        emitter = TimelineEmitter()
        state = run_state.record(StageName.REVIEWER, StageStatus.STARTED)
        emitter.emit(state)
        emitter.reset()

        assert len(emitter.emit(state)) == 1
