"""
Data Analyzer (Stage 7).

Builds one analysis component per section from the evidence gathered for
it. Findings come only from retrieved content: web results with sources,
successful warehouse probes and user files. Failed probes and failed web
searches become caveats that the narrative states explicitly.

Narratives use structured generation when available; the fallback is a
deterministic narrative assembled from the same findings and caveats.
"""

from __future__ import annotations

import asyncio

from rp.llm.schemas import SectionNarrativeDraft
from rp.stages.base import Stage, StageContext
from rp.state import RunState, StageUpdate
from rp.types import (
    AnalysisComponent,
    AnalysisSummary,
    ConnectionSummary,
    SearchPlanSummary,
    Section,
    StageName,
)
from rp.utils.text import plural, truncate

PENDING_FINDING = (
    "Pending data ingestion – prepare to calculate growth rates, benchmark comparisons, "
    "and key ratios aligned with SMART metrics."
)
COMBO_VISUAL = "Suggest combo chart blending quantitative trend line with annotated qualitative highlights."
TABLE_VISUAL = "Summary table of warehouse figures with source notes."

NARRATIVE_PROMPT = """You are a research analyst writing one section of a consulting report.

SECTION: {title}
DESCRIPTION: {description}

EVIDENCE (use nothing else):
{evidence}

CAVEATS (state each one explicitly):
{caveats}

Write up to 5 findings and a short narrative paragraph. Do not invent figures."""


def _rows_preview(rows: tuple[dict, ...]) -> str:
    first = rows[0]
    pairs = ", ".join(f"{k}={v}" for k, v in list(first.items())[:4])
    return truncate(pairs, 160)


def collect_evidence(
    section: Section,
    search: SearchPlanSummary | None,
) -> tuple[list[str], list[str], int]:
    """Findings, caveats and the evidence count of a section."""
    findings: list[str] = []
    caveats: list[str] = []
    count = 0
    if search is None:
        return findings, ["Search results are unavailable for this section."], 0

    for item in search.web_for(section.id):
        if item.error:
            caveats.append(f"Web search for \"{item.query}\" failed ({item.error}).")
        elif item.has_content:
            findings.append(item.summary)
            count += 1

    for probe in search.probes_for(section.id):
        if probe.succeeded:
            count += 1
            if probe.rows:
                findings.append(
                    f"Warehouse probe for \"{probe.requirement}\" returned "
                    f"{plural(len(probe.rows), 'row')} (first: {_rows_preview(probe.rows)})."
                )
            else:
                findings.append(f"Warehouse probe for \"{probe.requirement}\" returned no rows.")
        else:
            caveats.append(
                f"Warehouse probe for \"{probe.requirement}\" failed ({probe.error}); "
                "no warehouse figures are reported for this requirement."
            )

    for insight in search.files_for(section.id):
        count += 1
        metrics = f" Key metrics: {'; '.join(insight.key_metrics)}." if insight.key_metrics else ""
        findings.append(f"{insight.filename}: {insight.summary}{metrics}")

    return findings, caveats, count


def fallback_narrative(section: Section, findings: list[str], caveats: list[str]) -> str:
    if findings:
        text = f"{section.title}: " + " ".join(findings[:3])
    else:
        text = f"Pending data ingestion for {section.title}: no retrieved evidence is available yet."
    if caveats:
        text += " " + " ".join(caveats)
    return text


def _inputs(section: Section, search: SearchPlanSummary | None, connections: ConnectionSummary | None) -> tuple[str, ...]:
    inputs: list[str] = []
    preferred = connections.preferred_connection() if connections else None
    if preferred is not None:
        inputs.append(preferred.name)
    if search is not None:
        inputs.extend(f"{t.channel.value}: {t.target}" for t in search.tasks if t.section_id == section.id)
    return tuple(dict.fromkeys(inputs))


class DataAnalyzerStage(Stage):
    """Stage 7: Analysis modelling.

    Reads the scope, the search plan and the connections. On a revision pass
    it produces a fresh summary for the same sections.
    """

    name = StageName.DATA_ANALYZER
    reads = (StageName.LEAD_MANAGER, StageName.DATA_CONNECTOR, StageName.DATA_SEARCHER)

    async def _component(
        self,
        section: Section,
        state: RunState,
        ctx: StageContext,
        semaphore: asyncio.Semaphore,
    ) -> AnalysisComponent:
        search = state.search
        findings, caveats, count = collect_evidence(section, search)
        probes = search.probes_for(section.id) if search else []
        visualization = TABLE_VISUAL if any(p.succeeded and p.rows for p in probes) else COMBO_VISUAL

        narrative = fallback_narrative(section, findings, caveats)
        generator = ctx.capabilities.generator
        if findings and generator.available:
            prompt = NARRATIVE_PROMPT.format(
                title=section.title,
                description=section.description,
                evidence="\n".join(f"- {f}" for f in findings),
                caveats="\n".join(f"- {c}" for c in caveats) or "- none",
            )
            async with semaphore:
                result = await generator.generate(prompt, SectionNarrativeDraft)
            if result.ok:
                draft = result.value
                if draft.findings:
                    findings = list(draft.findings)
                narrative = draft.narrative
                # Caveats are always stated, whatever the generated text says.
                missing = [c for c in caveats if c not in narrative]
                if missing:
                    narrative = f"{narrative} {' '.join(missing)}"

        return AnalysisComponent(
            section_id=section.id,
            title=section.title,
            approach=f"Synthesize quantitative indicators with qualitative insights for {section.title.lower()}.",
            inputs=_inputs(section, search, state.connections),
            findings=tuple(findings) or (PENDING_FINDING,),
            narrative=narrative,
            visualization=visualization,
            evidence_count=count,
            caveats=tuple(caveats),
        )

    async def run(self, state: RunState, ctx: StageContext) -> StageUpdate:
        scope = state.scope
        if scope is None:
            raise self.missing(StageName.LEAD_MANAGER)

        semaphore = asyncio.Semaphore(ctx.limits.max_concurrent_generations)
        components = await asyncio.gather(
            *(self._component(section, state, ctx, semaphore) for section in scope.sections)
        )

        notes = [
            "Ensure raw datasets are validated before modelling.",
            "Document assumptions and transformation steps for auditability.",
        ]
        if state.revision:
            notes.append(f"Revision pass {state.revision}.")
        analysis = AnalysisSummary(components=tuple(components), notes=tuple(notes))
        with_evidence = sum(1 for c in components if c.evidence_count)
        self.log_info("Analysis modelled", components=len(components), with_evidence=with_evidence)
        return self.complete(analysis, f"Outlined {len(components)} analysis component(s).")
