"""
Tests for evidence gathering: query dedup, probe budget and fault tolerance.
"""

from __future__ import annotations

import pytest
from fakes import FakeGenerator, FakeSearch, FakeWarehouse, make_capabilities, result

from rp.exceptions import SearchError
from rp.gathering import (
    EvidenceGatherer,
    GatherContext,
    GatherLimits,
    ProbeBudget,
    QuerySignatures,
    WarehouseSlot,
    build_query,
    fold_web_results,
)
from rp.llm.schemas import WarehouseQueryDraft
from rp.types import (
    AccessLevel,
    Attachment,
    Availability,
    CapabilityStatus,
    Confidence,
    ConnectionStatus,
    DataConnection,
    Section,
    TrustLevel,
)

CTX = GatherContext(geography="Europe", keywords=("battery", "plant"), timeframe="2026", locale="en-US")


def _section(section_id: str, *requirements: str) -> Section:
    return Section(id=section_id, title=section_id.replace("-", " ").title(), description="", data_requirements=requirements)


def _gatherer(capabilities, limits: GatherLimits | None = None, include_locale: bool = False) -> EvidenceGatherer:
    limits = limits or GatherLimits()
    return EvidenceGatherer(
        capabilities,
        limits,
        QuerySignatures(include_locale=include_locale),
        ProbeBudget(limits.max_warehouse_probes),
    )


def _sql_for_all(prompt: str) -> WarehouseQueryDraft:
    return WarehouseQueryDraft(sql="```sql\nSELECT region, volume FROM demand;\n```")


class TestQuerySignatures:
    """Tests for per-run query dedup."""

    def test_equivalent_queries_are_admitted_once(self) -> None:
        signatures = QuerySignatures()

        assert signatures.admit("rivalry", "EV Battery, Europe!")
        assert not signatures.admit("rivalry", "ev battery europe")
        assert signatures.admit("suppliers", "ev battery europe")
        assert signatures.count("rivalry") == 1
        assert len(signatures) == 2

    def test_locale_in_signature_when_enabled(self) -> None:
        signatures = QuerySignatures(include_locale=True)

        assert signatures.admit("rivalry", "ev battery", "en-US")
        assert signatures.admit("rivalry", "ev battery", "fr-FR")
        assert not signatures.admit("rivalry", "EV battery", "EN-us")

    def test_locale_ignored_by_default(self) -> None:
        signatures = QuerySignatures()

        assert signatures.admit("rivalry", "ev battery", "en-US")
        assert not signatures.admit("rivalry", "ev battery", "fr-FR")


class TestProbeBudget:
    def test_reserve_until_spent(self) -> None:
        budget = ProbeBudget(2)

        assert budget.reserve()
        assert budget.reserve()
        assert not budget.reserve()
        assert budget.used == 2
        assert budget.remaining == 0

    def test_zero_budget(self) -> None:
        assert not ProbeBudget(0).reserve()


class TestWebGathering:
    """Tests for web query planning and folding."""

    def test_build_query(self) -> None:
        assert build_query("- Market share of leaders", "Europe", ["battery", "plant", "cells"]) == (
            "Market share of leaders Europe battery plant"
        )

    def test_plan_dedups_and_caps_per_section(self) -> None:
        gatherer = _gatherer(make_capabilities(), GatherLimits(max_web_queries_per_section=2))
        section = _section("rivalry", "Market share", "market share!", "Capacity additions", "Pricing")

        queries = gatherer.plan_web_queries(section, CTX)

        assert queries == ["Market share Europe battery plant", "Capacity additions Europe battery plant"]
        # A second planning pass in the same run issues nothing new.
        assert gatherer.plan_web_queries(section, CTX) == []

    def test_section_without_requirements_uses_title(self) -> None:
        gatherer = _gatherer(make_capabilities())
        assert gatherer.plan_web_queries(_section("market-overview"), CTX) == [
            "Market Overview Europe battery plant"
        ]

    def test_fold_web_results_dedups_urls(self) -> None:
        results = [
            result("A", "https://a.example/x", "Demand grew 12%"),
            result("A again", "https://a.example/x", "dup"),
            result("B", "https://b.example/y"),
        ]
        evidence = fold_web_results("rivalry", "ev demand", results)

        assert len(evidence.sources) == 2
        assert evidence.confidence is Confidence.MEDIUM
        assert evidence.has_content
        assert evidence.summary.startswith("2 web results for \"ev demand\": Demand grew 12%")

    def test_fold_without_results(self) -> None:
        assert fold_web_results("s", "q", []).summary == "No web results found for \"q\"."
        unavailable = fold_web_results("s", "q", [], search_available=False)
        assert unavailable.summary == "Web search is not available; no web evidence gathered."
        assert unavailable.confidence is Confidence.LOW
        assert not unavailable.has_content

    @pytest.mark.asyncio
    async def test_failed_search_is_contained(self) -> None:
        """A provider failure becomes an item with an error, not an exception."""
        search = FakeSearch(
            results={"market share": [result("Share", "https://s.example/1", "Leader holds 30%")]},
            errors={"pricing": SearchError("HTTP 503")},
        )
        gatherer = _gatherer(make_capabilities(search=search))
        sections = [_section("rivalry", "Market share"), _section("buyers", "Pricing")]

        evidence = await gatherer.gather_web(sections, CTX)

        assert [e.section_id for e in evidence] == ["rivalry", "buyers"]
        assert evidence[0].has_content
        assert evidence[1].error == "HTTP 503"
        assert not evidence[1].has_content
        assert "failed" in evidence[1].summary

    @pytest.mark.asyncio
    async def test_null_search_yields_empty_evidence(self) -> None:
        gatherer = _gatherer(make_capabilities())
        evidence = await gatherer.gather_web([_section("rivalry", "Market share")], CTX)

        assert len(evidence) == 1
        assert evidence[0].sources == ()
        assert evidence[0].error is None


class TestWarehouseGathering:
    """Tests for warehouse probes under the per-run budget."""

    @pytest.mark.asyncio
    async def test_probe_count_never_exceeds_budget(self) -> None:
        warehouse = FakeWarehouse(rows=[{"region": "EU", "volume": 120}])
        generator = FakeGenerator({WarehouseQueryDraft: _sql_for_all})
        limits = GatherLimits(max_warehouse_probes=2, max_concurrent_probes=2)
        gatherer = _gatherer(make_capabilities(generator=generator, warehouse=warehouse), limits)
        section = _section("demand", "r1", "r2", "r3", "r4", "r5")
        slots = [WarehouseSlot(section, r) for r in section.data_requirements]

        gathering = await gatherer.gather_warehouse(slots, CTX)

        assert len(warehouse.executed) == 2
        assert len(gathering.summary.results) == 2
        assert [o.slot.requirement for o in gathering.outcomes] == ["r1", "r2"]
        assert gathering.summary.message == "3 probes not issued: per-run limit of 2 reached."
        # Skipped slots never reach generation either.
        assert len(generator.calls_for(WarehouseQueryDraft)) == 2

    @pytest.mark.asyncio
    async def test_budget_is_shared_across_calls(self) -> None:
        warehouse = FakeWarehouse(rows=[{"n": 1}])
        generator = FakeGenerator({WarehouseQueryDraft: _sql_for_all})
        limits = GatherLimits(max_warehouse_probes=3)
        gatherer = _gatherer(make_capabilities(generator=generator, warehouse=warehouse), limits)
        section = _section("demand", "r1", "r2")
        slots = [WarehouseSlot(section, r) for r in section.data_requirements]

        await gatherer.gather_warehouse(slots, CTX)
        second = await gatherer.gather_warehouse(slots, CTX)

        assert len(warehouse.executed) == 3
        assert len(second.summary.results) == 1

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self) -> None:
        warehouse = FakeWarehouse(rows=[{"n": 1}])
        generator = FakeGenerator({WarehouseQueryDraft: _sql_for_all})
        limits = GatherLimits(max_warehouse_probes=6, max_concurrent_probes=2)
        gatherer = _gatherer(make_capabilities(generator=generator, warehouse=warehouse), limits)
        section = _section("demand", *(f"r{i}" for i in range(6)))

        await gatherer.gather_warehouse([WarehouseSlot(section, r) for r in section.data_requirements], CTX)

        assert len(warehouse.executed) == 6
        assert warehouse.max_in_flight <= 2

    @pytest.mark.asyncio
    async def test_sql_is_cleaned_before_execution(self) -> None:
        warehouse = FakeWarehouse(rows=[{"region": "EU"}])
        gatherer = _gatherer(
            make_capabilities(generator=FakeGenerator({WarehouseQueryDraft: _sql_for_all}), warehouse=warehouse)
        )
        section = _section("demand", "Regional volumes")

        gathering = await gatherer.gather_warehouse([WarehouseSlot(section, "Regional volumes")], CTX)

        assert warehouse.executed == ["SELECT region, volume FROM demand"]
        probe = gathering.summary.results[0]
        assert probe.succeeded
        assert probe.rows == ({"region": "EU"},)
        assert gathering.outcomes[0].note == "Warehouse: executed SQL probe"

    @pytest.mark.asyncio
    async def test_failed_probe_is_recorded_with_error(self) -> None:
        warehouse = FakeWarehouse(error="no such table: demand")
        gatherer = _gatherer(
            make_capabilities(generator=FakeGenerator({WarehouseQueryDraft: _sql_for_all}), warehouse=warehouse)
        )
        section = _section("demand", "Regional volumes")

        gathering = await gatherer.gather_warehouse([WarehouseSlot(section, "Regional volumes")], CTX)

        probe = gathering.summary.results[0]
        assert not probe.succeeded
        assert probe.error == "no such table: demand"
        assert probe.rows == ()
        assert gathering.outcomes[0].note == "Warehouse: SQL probe failed"

    @pytest.mark.asyncio
    async def test_no_sql_means_no_probe(self) -> None:
        warehouse = FakeWarehouse()
        gatherer = _gatherer(make_capabilities(generator=FakeGenerator(), warehouse=warehouse))
        section = _section("demand", "Regional volumes")

        gathering = await gatherer.gather_warehouse([WarehouseSlot(section, "Regional volumes")], CTX)

        assert warehouse.executed == []
        assert gathering.summary.results == ()
        assert gathering.outcomes[0].probe is None
        assert gathering.outcomes[0].note == "Warehouse: SQL generation unavailable"

    @pytest.mark.asyncio
    async def test_disconnected_warehouse_reports_status(self) -> None:
        warehouse = FakeWarehouse(status=CapabilityStatus.ERROR)
        gatherer = _gatherer(make_capabilities(warehouse=warehouse))
        section = _section("demand", "Regional volumes")

        gathering = await gatherer.gather_warehouse([WarehouseSlot(section, "Regional volumes")], CTX)

        assert gathering.summary.status is CapabilityStatus.ERROR
        assert gathering.summary.message == "Fake warehouse offline"
        assert gathering.outcomes == ()
        assert gatherer.budget.used == 0


class TestProprietaryAndFiles:
    def test_proprietary_plan_requires_access_for_credentialed_source(self) -> None:
        connection = DataConnection(
            source_id="bloomberg",
            name="Bloomberg Terminal",
            access=AccessLevel.PAID,
            trust_level=TrustLevel.VERIFIED,
            status=ConnectionStatus.REQUIRES_CREDENTIALS,
        )
        plan = EvidenceGatherer.proprietary_plan(_section("demand", "Volumes"), "Volumes", connection)

        assert plan.availability is Availability.REQUIRES_ACCESS
        assert plan.next_steps == "Request access to Bloomberg Terminal before extraction."

    def test_user_files_route_to_best_matching_section(self) -> None:
        sections = [_section("suppliers", "Raw material prices"), _section("buyers", "Customer concentration")]
        attachments = [
            Attachment(filename="notes.txt", content="Customer concentration is high: top 3 buyers take 60% of volume."),
            Attachment(filename="empty.txt", content=""),
        ]

        insights = EvidenceGatherer.gather_user_files(attachments, sections)

        assert insights[0].section_id == "buyers"
        assert any("60%" in metric for metric in insights[0].key_metrics)
        assert insights[1].section_id == "suppliers"
        assert insights[1].summary == "empty.txt is empty."

    def test_user_files_without_sections(self) -> None:
        assert EvidenceGatherer.gather_user_files([Attachment("a.txt", "x")], []) == []
