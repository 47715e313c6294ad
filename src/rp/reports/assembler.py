"""
Deliverable assembler.

Builds the terminal Deliverable from whatever the run state holds. Every
upstream slot may be absent; missing analysis yields "pending" sections
rather than an error.
"""

from __future__ import annotations

from dataclasses import dataclass

from rp.reports.citations import CitationRegistry, build_citations
from rp.state import RunState
from rp.types import (
    Accessibility,
    AnalysisComponent,
    Deliverable,
    DeliverableExport,
    DeliverableMode,
    ExecutiveSummary,
    ExportStatus,
    RenderedSection,
    RenderedVisual,
    SectionStatus,
    StageName,
    StageStatus,
    VersionEntry,
)
from rp.utils.text import dedupe

TEMPLATE = "consulting-report/v1"
DEFAULT_LOCALE = "en-US"
DEFAULT_TIMEZONE = "UTC"
HIGHLIGHT_COUNT = 4
DECK_SECTION_COUNT = 5
DEFAULT_HEADLINE = "Executive summary"

ACCESSIBILITY_CHECKLIST = (
    "Provide chart titles and legends readable by screen readers.",
    "Check colour contrast of charts and tables.",
    "Add text alternatives for every table and visual.",
)


def number_format(locale: str) -> str:
    language = locale.split("-")[0].lower()
    if language == "fr":
        return "1 234,56"
    if language in ("de", "es", "it", "nl", "pt"):
        return "1.234,56"
    return "1,234.56"


def date_format(locale: str) -> str:
    if locale.lower() == "en-us":
        return "MM/dd/yyyy"
    if locale.lower().startswith("de"):
        return "dd.MM.yyyy"
    return "dd/MM/yyyy"


def pending_narrative(title: str) -> str:
    return f"Analysis pending for {title}: the analysis stage produced no output for this section."


@dataclass
class _Outline:
    section_id: str
    title: str
    summary: tuple[str, ...]
    data_highlights: tuple[str, ...]


class DeliverableAssembler:
    """Assembles the Deliverable of one run.

    A fresh CitationRegistry is used for every assembly, so assembling the
    same state twice yields identical citation ids.
    """

    def __init__(self, state: RunState) -> None:
        self.state = state

    def _mode(self) -> DeliverableMode:
        profile = self.state.input.profile
        if profile and profile.seniority and "analyst" in profile.seniority.lower():
            return DeliverableMode.DETAILED
        return DeliverableMode.EXEC

    def _outline(self) -> list[_Outline]:
        """Presentation sections, else scope sections, else analysis components."""
        state = self.state
        analysis = state.analysis
        if state.presentation is not None and state.presentation.sections:
            return [
                _Outline(s.section_id, s.title, s.key_findings, s.supporting_data)
                for s in state.presentation.sections
            ]
        if state.scope is not None:
            outline = []
            for section in state.scope.sections:
                component = analysis.component_for(section.id) if analysis else None
                summary = tuple(component.findings[:3]) if component else ()
                highlights = component.inputs if component else section.data_requirements
                outline.append(_Outline(section.id, section.title, summary, highlights))
            return outline
        if analysis is not None:
            return [
                _Outline(c.section_id, c.title, tuple(c.findings[:3]), c.inputs)
                for c in analysis.components
            ]
        return []

    @staticmethod
    def _visuals(component: AnalysisComponent | None) -> tuple[RenderedVisual, ...]:
        if component is None:
            return ()
        visual_type = "table" if "table" in component.visualization.lower() else "chart"
        return (
            RenderedVisual(
                id=f"{component.section_id}-visual-1",
                type=visual_type,
                title=component.title,
                description=component.visualization,
                source=", ".join(component.inputs) or "Analytical model",
            ),
        )

    def _sections(self, mode: DeliverableMode) -> list[RenderedSection]:
        analysis = self.state.analysis
        rendered = []
        for item in self._outline():
            component = analysis.component_for(item.section_id) if analysis else None
            ready = component is not None and component.evidence_count > 0
            rendered.append(
                RenderedSection(
                    id=item.section_id,
                    title=item.title,
                    density=mode,
                    status=SectionStatus.READY if ready else SectionStatus.PENDING,
                    summary=item.summary,
                    data_highlights=item.data_highlights,
                    visuals=self._visuals(component),
                    narrative=component.narrative if component else pending_narrative(item.title),
                )
            )
        return rendered

    def _history(self) -> tuple[VersionEntry, ...]:
        records = [
            r
            for r in self.state.execution_log
            if r.status in (StageStatus.COMPLETED, StageStatus.ERROR) and r.stage is not StageName.RENDER_PACKAGER
        ]
        return tuple(
            VersionEntry(
                version=index + 1,
                summary=record.summary or f"{record.stage.value.replace('_', ' ')} {record.status.value}",
                timestamp=record.timestamp,
            )
            for index, record in enumerate(records)
        )

    @staticmethod
    def _exports(sections: list[RenderedSection], appendices: tuple[str, ...]) -> tuple[DeliverableExport, ...]:
        titles = [s.title for s in sections]
        report_includes = tuple(titles) + (appendices or ("Appendices",))
        highlights = tuple(h for s in sections for h in s.data_highlights)
        return (
            DeliverableExport("pdf", "executive-report.pdf", ExportStatus.QUEUED, report_includes),
            DeliverableExport("pptx", "summary-deck.pptx", ExportStatus.QUEUED, tuple(titles[:DECK_SECTION_COUNT])),
            DeliverableExport("docx", "detailed-report.docx", ExportStatus.QUEUED, report_includes),
            DeliverableExport("csv", "data-extracts.csv", ExportStatus.QUEUED, highlights),
        )

    def assemble(self) -> Deliverable:
        """Build the Deliverable."""
        state = self.state
        profile = state.input.profile
        locale = (profile.locale if profile else None) or DEFAULT_LOCALE
        timezone = (profile.timezone if profile else None) or DEFAULT_TIMEZONE
        mode = self._mode()

        sections = self._sections(mode)
        citations = build_citations(
            state.search,
            [s.id for s in sections],
            registry=CitationRegistry(),
            files_retrieved_at=state.started_at,
        )

        presentation = state.presentation
        appendices = presentation.appendices if presentation else ()
        body = (presentation.executive_summary,) if presentation else ()
        highlights = tuple(dedupe(b for s in sections for b in s.summary))[:HIGHLIGHT_COUNT]
        headline = state.scope.project_title if state.scope else DEFAULT_HEADLINE

        history = self._history()
        visual_cache = tuple(v for s in sections for v in s.visuals)
        return Deliverable(
            template=TEMPLATE,
            version=len(history) + 1,
            history=history,
            mode=mode,
            locale=locale,
            number_format=number_format(locale),
            date_format=date_format(locale),
            timezone=timezone,
            executive_summary=ExecutiveSummary(headline=headline, body=body, highlights=highlights),
            sections=tuple(sections),
            appendices=appendices,
            exports=self._exports(sections, appendices),
            citations=citations,
            accessibility=Accessibility(status="pending", checklist=ACCESSIBILITY_CHECKLIST),
            visual_cache=visual_cache,
        )
