"""
Data Searcher (Stage 5).

Builds the search plan for every section and gathers the evidence it can:
web queries, warehouse probes, proprietary access plans and user files.
Web and warehouse gathering run concurrently; both are fault-tolerant, so
the stage always returns a plan even when every capability is unavailable.
"""

from __future__ import annotations

import asyncio

from rp.gathering import GatherContext, WarehouseOutcome, WarehouseSlot, build_query
from rp.gathering.gatherer import EvidenceGatherer, requirements_of
from rp.stages.base import Stage, StageContext
from rp.state import RunState, StageUpdate
from rp.types import (
    ProprietaryEvidence,
    SearchChannel,
    SearchPlanSummary,
    SearchTask,
    SectionCoverage,
    StageName,
)
from rp.utils.text import detect_geography, detect_timeframe, extract_keywords, plural


class DataSearcherStage(Stage):
    """Stage 5: Search plan and evidence gathering.

    Responsible for:
    1. One task per section, requirement and channel
    2. Concurrent web and warehouse gathering under the run's limits
    3. Coverage per section with unmet requirements
    """

    name = StageName.DATA_SEARCHER
    reads = (StageName.PROMPT_ENHANCER, StageName.LEAD_MANAGER, StageName.DATA_CONNECTOR)

    def _gather_context(self, state: RunState) -> GatherContext:
        question = state.input.question
        connections = state.connections
        enhanced = state.enhanced_prompt
        if connections is not None:
            geography = connections.context.geography
            keywords = connections.context.keywords
            timeframe = connections.context.timeframe
        else:
            geography = (enhanced.geography if enhanced else None) or detect_geography(question) or "Global"
            keywords = tuple(extract_keywords(question))
            timeframe = (enhanced.timeframe if enhanced else None) or detect_timeframe(question)
        return GatherContext(
            geography=geography,
            keywords=tuple(keywords),
            timeframe=timeframe,
            locale=state.input.locale,
        )

    async def run(self, state: RunState, ctx: StageContext) -> StageUpdate:
        scope = state.scope
        if scope is None or not scope.sections:
            raise self.missing(StageName.LEAD_MANAGER)

        sections = scope.sections
        gather_ctx = self._gather_context(state)
        gatherer: EvidenceGatherer = ctx.gatherer()
        connection = state.connections.preferred_connection() if state.connections else None

        slots = [
            WarehouseSlot(section=section, requirement=requirement)
            for section in sections
            for requirement in requirements_of(section)
        ]
        web, warehouse = await asyncio.gather(
            gatherer.gather_web(sections, gather_ctx),
            gatherer.gather_warehouse(slots, gather_ctx),
        )
        user_files = gatherer.gather_user_files(state.input.attachments, sections)

        tasks: list[SearchTask] = []
        coverage: list[SectionCoverage] = []
        proprietary: list[ProprietaryEvidence] = []

        def add_task(section_id: str, channel: SearchChannel, **fields: str) -> None:
            index = sum(1 for t in tasks if t.section_id == section_id and t.channel is channel) + 1
            tasks.append(
                SearchTask(
                    id=f"{section_id}-{channel.value}-{index}",
                    section_id=section_id,
                    channel=channel,
                    **fields,
                )
            )

        for section in sections:
            planned: list[str] = []
            unmet: list[str] = []

            for requirement in requirements_of(section):
                query = build_query(requirement, gather_ctx.geography, gather_ctx.keywords)
                if connection is None:
                    unmet.append(requirement)
                    continue
                plan = gatherer.proprietary_plan(section, requirement, connection)
                proprietary.append(plan)
                add_task(
                    section.id,
                    SearchChannel.PROPRIETARY,
                    target=connection.name,
                    query=query,
                    rationale=f"Preferred connection for \"{requirement}\"",
                    expected_output=plan.dataset_name,
                )
                planned.append(f"Proprietary: {connection.name}")

            for item in web:
                if item.section_id != section.id:
                    continue
                add_task(
                    section.id,
                    SearchChannel.WEB,
                    target="web",
                    query=item.query,
                    rationale="Scoped public web search",
                    expected_output="Articles, statistics and reports with sources",
                )
                planned.append(f"Web: {item.query}")

            outcomes: list[WarehouseOutcome] = [o for o in warehouse.outcomes if o.slot.section.id == section.id]
            for outcome in outcomes:
                if outcome.probe is not None:
                    add_task(
                        section.id,
                        SearchChannel.WAREHOUSE,
                        target="warehouse",
                        query=outcome.probe.sql,
                        rationale=f"Warehouse probe for \"{outcome.slot.requirement}\"",
                        expected_output="Rows from internal tables",
                    )
                planned.append(outcome.note)

            for insight in user_files:
                if insight.section_id == section.id:
                    add_task(
                        section.id,
                        SearchChannel.USER_FILES,
                        target=insight.filename,
                        query=insight.filename,
                        rationale="User-supplied attachment",
                        expected_output="Key metrics from the attachment",
                    )
                    planned.append(f"File: {insight.filename}")

            coverage.append(
                SectionCoverage(
                    section_id=section.id,
                    section_title=section.title,
                    planned_tasks=tuple(planned),
                    unmet_requirements=tuple(unmet),
                )
            )

        summary = SearchPlanSummary(
            tasks=tuple(tasks),
            coverage=tuple(coverage),
            warehouse=warehouse.summary,
            web=tuple(web),
            proprietary=tuple(proprietary),
            user_files=tuple(user_files),
        )
        self.log_info(
            "Search plan compiled",
            tasks=len(tasks),
            web=len(web),
            probes=len(warehouse.summary.results),
            warehouse=warehouse.summary.status.value,
        )
        return self.complete(summary, _describe(tasks, len(warehouse.summary.results)))


def _describe(tasks: list[SearchTask], probes: int) -> str:
    text = f"Compiled {plural(len(tasks), 'search task')}"
    if probes:
        text += f" with {plural(probes, 'warehouse result')}"
    return text + "."
