"""
End-to-end runs through every stage with fake capabilities.
"""

from __future__ import annotations

import pytest
from fakes import AlwaysErrorStage, FakeGenerator, FakeSearch, FakeWarehouse, make_capabilities, result

from rp.capabilities import Capabilities
from rp.config import Settings
from rp.coordinator import Orchestrator, PipelineDefinition
from rp.llm.schemas import ScopeDraft, SectionDraft, WarehouseQueryDraft
from rp.reports.assembler import pending_narrative
from rp.retrieval import SourceCatalog
from rp.stages.prompt_enhancer import PORTER
from rp.types import Priority, RunInput, SectionStatus, StageName, UserProfile


def _scope_draft(prompt: str) -> ScopeDraft:
    return ScopeDraft(
        project_title="Battery plant in Europe",
        execution_strategy="fully_parallel",
        sections=[
            SectionDraft(
                title="Alpha demand",
                description="Demand for battery cells",
                priority="high",
                data_requirements=["Battery demand volumes"],
            ),
            SectionDraft(
                title="Beta costs",
                description="Cell cost benchmarks",
                dependencies=["Alpha demand"],
                data_requirements=["Cell cost benchmarks"],
            ),
        ],
    )


def _sql_for_costs(prompt: str) -> WarehouseQueryDraft | None:
    if "Requirement: Cell cost benchmarks" in prompt:
        return WarehouseQueryDraft(sql="SELECT * FROM cells")
    return None


class TestEndToEnd:
    """Full runs covering degraded, partial and failing capabilities."""

    @pytest.mark.asyncio
    async def test_no_capabilities_still_delivers(self, settings: Settings, catalog: SourceCatalog) -> None:
        """Every capability unavailable: a framework scope with pending sections."""
        orchestrator = Orchestrator(Capabilities.unavailable(), settings=settings, catalog=catalog)
        run_input = RunInput(
            question="Porter's Five Forces for EV batteries in Europe, 2026 launch",
            profile=UserProfile(role="Strategy lead", locale="en-US"),
        )

        result = await orchestrator.execute(run_input)
        state = result.run_state
        deliverable = result.deliverable

        assert result.errors == []
        assert state.enhanced_prompt.framework == PORTER
        assert state.enhanced_prompt.triage.sector == "Automotive"
        assert state.enhanced_prompt.geography == "Europe"
        assert state.scope.total_sections == 5
        assert deliverable is not None
        assert len(deliverable.sections) == 5
        assert all(s.status is SectionStatus.PENDING for s in deliverable.sections)
        assert all(s.narrative.startswith("Pending data ingestion for") for s in deliverable.sections)
        assert deliverable.citations.bibliography == ()
        assert deliverable.citations.anchors == ()
        assert "## References" not in deliverable.to_markdown()

    @pytest.mark.asyncio
    async def test_partial_evidence(self, settings: Settings, catalog: SourceCatalog) -> None:
        """Web evidence for one section, a failed warehouse probe for the other."""
        generator = FakeGenerator({ScopeDraft: _scope_draft, WarehouseQueryDraft: _sql_for_costs})
        search = FakeSearch(
            {
                "battery demand": [
                    result("EV cell demand 2026", "https://www.demand.example/report", "Demand reaches 900 GWh"),
                    result("Battery outlook", "https://outlook.example/b", "Capacity doubles"),
                ]
            }
        )
        warehouse = FakeWarehouse(error="no such table: cells")
        orchestrator = Orchestrator(
            make_capabilities(generator=generator, search=search, warehouse=warehouse),
            settings=settings,
            catalog=catalog,
        )

        result_ = await orchestrator.execute(RunInput(question="Should we launch a battery plant in Europe?"))
        state = result_.run_state
        deliverable = result_.deliverable

        assert [s.id for s in state.scope.sections] == ["alpha-demand", "beta-costs"]
        assert state.scope.sections[1].dependencies == ("alpha-demand",)
        assert state.connections.preferred_connection().source_id == "warehouse"
        assert len(warehouse.executed) == 1

        assert deliverable is not None
        alpha = deliverable.section("alpha-demand")
        beta = deliverable.section("beta-costs")
        assert alpha.status is SectionStatus.READY
        assert beta.status is SectionStatus.PENDING
        assert "failed" in beta.narrative
        assert "no such table: cells" in beta.narrative

        bibliography = deliverable.citations.bibliography
        assert [e.key for e in bibliography] == ["web:demand.example/report"]
        assert bibliography[0].url == "https://www.demand.example/report"
        assert bibliography[0].id == "C1"
        assert [a.target for a in deliverable.citations.anchors] == ["C1", "C1"]

        gaps = state.gaps.gaps
        assert len(gaps) == 1
        assert gaps[0].section_id == "beta-costs"
        assert gaps[0].priority is Priority.MEDIUM

    @pytest.mark.asyncio
    async def test_failing_analyzer_yields_pending_sections(
        self, settings: Settings, catalog: SourceCatalog
    ) -> None:
        """A crashing analysis stage is recorded; packaging still runs."""
        analyzer = AlwaysErrorStage(StageName.DATA_ANALYZER)
        orchestrator = Orchestrator(
            Capabilities.unavailable(),
            settings=settings,
            definition=PipelineDefinition.default({StageName.DATA_ANALYZER: analyzer}),
            catalog=catalog,
        )

        result = await orchestrator.execute(RunInput(question="SWOT of the European heat pump market"))
        deliverable = result.deliverable

        assert analyzer.runs == 1
        assert [e["stage"] for e in result.errors] == ["data_analyzer"]
        assert "RuntimeError" in result.errors[0]["summary"]
        assert deliverable is not None
        assert len(deliverable.sections) == 4
        for section in deliverable.sections:
            assert section.status is SectionStatus.PENDING
            assert section.narrative == pending_narrative(section.title)
