"""
Core types for the research pipeline.

This module defines the fundamental data structures used throughout the system:
- Enums for stage names, statuses, and classifications
- Frozen dataclasses for run input and every stage output
- Evidence items produced by the gatherers (web, proprietary, warehouse, user files)
- Citation and deliverable types produced by the render packager
- Helper functions for ID generation, timestamps, and serialization

Every stage output is immutable once created. Collections are tuples so a
snapshot handed to a consumer can never be changed behind its back.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from uuid6 import uuid7


def generate_id(prefix: str = "") -> str:
    """Generate a time-ordered unique ID using UUID7.

    Args:
        prefix: Optional prefix for the ID (e.g., "run", "snap")

    Returns:
        A unique ID string, optionally prefixed.
    """
    uid = str(uuid7())
    return f"{prefix}_{uid}" if prefix else uid


def utc_now() -> datetime:
    """Get current UTC time with timezone info."""
    return datetime.now(timezone.utc)


def to_primitive(value: Any) -> Any:
    """Convert dataclasses, enums, and datetimes into JSON-ready primitives."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Path):
        return str(value)
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_primitive(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, dict):
        return {str(k): to_primitive(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_primitive(v) for v in value]
    return value


class DictMixin:
    """Adds to_dict() to dataclasses."""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for serialization."""
        return to_primitive(self)


class StageName(str, Enum):
    """Names of the pipeline stages, in definition order."""

    PROMPT_ENHANCER = "prompt_enhancer"
    LEAD_MANAGER = "lead_manager"
    DATA_SOURCE_MANAGER = "data_source_manager"
    DATA_CONNECTOR = "data_connector"
    DATA_SEARCHER = "data_searcher"
    EXPERT_INPUT = "expert_input"
    DATA_ANALYZER = "data_analyzer"
    DATA_PRESENTER = "data_presenter"
    REVIEWER = "reviewer"
    RENDER_PACKAGER = "render_packager"


class StageStatus(str, Enum):
    """Status of one entry in the execution log."""

    STARTED = "started"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not StageStatus.STARTED


class TerminationReason(str, Enum):
    """Why a run stopped before the last stage."""

    CANCELLED = "cancelled"
    TIMEOUT = "timeout"
    RECURSION_LIMIT = "recursion_limit"
    ENTRY_STAGE_FAILED = "entry_stage_failed"


class Priority(str, Enum):
    """Priority of a section or data gap."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ExecutionStrategy(str, Enum):
    FULLY_PARALLEL = "fully_parallel"
    FULLY_SEQUENTIAL = "fully_sequential"
    HYBRID = "hybrid"


class TrustLevel(str, Enum):
    """Trust classification of a data source."""

    VERIFIED = "verified"  # Official statistics, regulators, primary data
    TRUSTED = "trusted"  # Reputable secondary sources


class AccessLevel(str, Enum):
    FREE = "free"
    PAID = "paid"


class ConnectionStatus(str, Enum):
    READY = "ready"
    REQUIRES_CREDENTIALS = "requires_credentials"
    NOT_APPLICABLE = "not_applicable"


class RetrievalMethod(str, Enum):
    API = "api"
    DOWNLOAD = "download"
    REPORT = "report"
    DATA_SHARE = "data_share"


class SearchChannel(str, Enum):
    """Channel a search task is routed to."""

    WEB = "web"
    PROPRIETARY = "proprietary"
    WAREHOUSE = "warehouse"
    USER_FILES = "user_files"


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Availability(str, Enum):
    AVAILABLE = "available"
    REQUIRES_ACCESS = "requires_access"


class CapabilityStatus(str, Enum):
    """Status of an external capability for one run."""

    DISABLED = "disabled"
    CONNECTED = "connected"
    ERROR = "error"


class DeliverableMode(str, Enum):
    EXEC = "exec"
    DETAILED = "detailed"


class SectionStatus(str, Enum):
    READY = "ready"
    PENDING = "pending"


class ExportStatus(str, Enum):
    QUEUED = "queued"
    READY = "ready"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Run input
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UserProfile(DictMixin):
    """Optional profile of the person asking the question."""

    role: str | None = None
    company: str | None = None
    locale: str | None = None
    timezone: str | None = None
    seniority: str | None = None
    trusted_sources_only: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserProfile:
        """Create from a loosely-shaped profile mapping."""
        return cls(
            role=data.get("role"),
            company=data.get("company") or data.get("company_name"),
            locale=data.get("locale"),
            timezone=data.get("timezone"),
            seniority=data.get("seniority"),
            trusted_sources_only=bool(data.get("trusted_sources_only", False)),
        )


@dataclass(frozen=True)
class Attachment(DictMixin):
    """A user-supplied file attached to the question."""

    filename: str
    content: str
    media_type: str = "text/plain"


@dataclass(frozen=True)
class RunInput(DictMixin):
    """Validated input of one pipeline run."""

    question: str
    profile: UserProfile | None = None
    attachments: tuple[Attachment, ...] = ()

    @property
    def locale(self) -> str | None:
        return self.profile.locale if self.profile else None


# ---------------------------------------------------------------------------
# prompt_enhancer
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TriageResult(DictMixin):
    sector: str
    function: str
    category: str = "research"
    confidence: float = 0.5


@dataclass(frozen=True)
class FrameworkComponent(DictMixin):
    component: str
    description: str
    required_data: tuple[str, ...]
    analysis_approach: str


@dataclass(frozen=True)
class SmartRequirements(DictMixin):
    specific: tuple[str, ...] = ()
    measurable: tuple[str, ...] = ()
    attainable: tuple[str, ...] = ()
    relevant: tuple[str, ...] = ()
    time_bound: tuple[str, ...] = ()


@dataclass(frozen=True)
class OutputSection(DictMixin):
    section_title: str
    section_order: int
    components_included: tuple[str, ...]
    content_requirements: str


@dataclass(frozen=True)
class EnhancedPrompt(DictMixin):
    """Output of the prompt_enhancer stage.

    `generated` is False when the heuristic fallback produced the output
    because structured generation was unavailable.
    """

    triage: TriageResult
    analysis_type: str
    framework: str
    components: tuple[FrameworkComponent, ...]
    smart: SmartRequirements
    output_structure: tuple[OutputSection, ...]
    enhanced_prompt: str
    geography: str | None = None
    timeframe: str | None = None
    factors: tuple[str, ...] = ()
    grouping_logic: str = ""
    generated: bool = False


# ---------------------------------------------------------------------------
# lead_manager
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Section(DictMixin):
    """Unit of analytical decomposition.

    The id is assigned once by the scoping stage and is the join key for
    search tasks, evidence, analysis components, and rendered sections.
    """

    id: str
    title: str
    description: str
    priority: Priority = Priority.MEDIUM
    dependencies: tuple[str, ...] = ()
    data_requirements: tuple[str, ...] = ()
    success_criteria: tuple[str, ...] = ()
    checklist: tuple[str, ...] = ()


@dataclass(frozen=True)
class RiskAssessment(DictMixin):
    data_availability_risk: RiskLevel = RiskLevel.MEDIUM
    complexity_risk: RiskLevel = RiskLevel.MEDIUM
    timeline_risk: RiskLevel = RiskLevel.LOW
    mitigation_strategy: str = ""


@dataclass(frozen=True)
class ScopePlan(DictMixin):
    """Output of the lead_manager stage."""

    project_title: str
    execution_strategy: ExecutionStrategy
    sections: tuple[Section, ...]
    risk_assessment: RiskAssessment = field(default_factory=RiskAssessment)

    @property
    def total_sections(self) -> int:
        return len(self.sections)

    def section(self, section_id: str) -> Section | None:
        """Look up a section by id."""
        for section in self.sections:
            if section.id == section_id:
                return section
        return None


# ---------------------------------------------------------------------------
# data_source_manager / data_connector
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RankedSource(DictMixin):
    id: str
    name: str
    url: str
    description: str
    trust_level: TrustLevel
    access: AccessLevel
    match_score: float
    matched_on: tuple[str, ...] = ()
    requires_auth: bool = False


@dataclass(frozen=True)
class ExcludedSource(DictMixin):
    id: str
    name: str
    trust_level: TrustLevel
    reason: str


@dataclass(frozen=True)
class SourceSelection(DictMixin):
    """Output of the data_source_manager stage."""

    sector: str
    function: str
    geography: str
    trusted_sources_only: bool
    recommended: tuple[RankedSource, ...] = ()
    supplementary: tuple[RankedSource, ...] = ()
    excluded: tuple[ExcludedSource, ...] = ()
    notes: tuple[str, ...] = ()


@dataclass(frozen=True)
class DatasetDescriptor(DictMixin):
    title: str
    description: str
    retrieval_method: RetrievalMethod
    url: str | None = None


@dataclass(frozen=True)
class DataConnection(DictMixin):
    source_id: str
    name: str
    access: AccessLevel
    trust_level: TrustLevel
    status: ConnectionStatus
    notes: str = ""
    url: str = ""
    datasets: tuple[DatasetDescriptor, ...] = ()


@dataclass(frozen=True)
class ConnectionContext(DictMixin):
    sector: str
    function: str
    geography: str
    timeframe: str | None = None
    keywords: tuple[str, ...] = ()


@dataclass(frozen=True)
class ConnectionSummary(DictMixin):
    """Output of the data_connector stage."""

    context: ConnectionContext
    connections: tuple[DataConnection, ...] = ()

    def preferred_connection(self) -> DataConnection | None:
        """Warehouse share first, then ready sources, then credentialed ones."""
        for connection in self.connections:
            if connection.datasets and any(
                d.retrieval_method is RetrievalMethod.DATA_SHARE for d in connection.datasets
            ):
                return connection
        for status in (ConnectionStatus.READY, ConnectionStatus.REQUIRES_CREDENTIALS):
            for connection in self.connections:
                if connection.status is status:
                    return connection
        return None


# ---------------------------------------------------------------------------
# Evidence items (data_searcher)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WebSource(DictMixin):
    title: str
    url: str
    publisher: str = ""


@dataclass(frozen=True)
class WebEvidence(DictMixin):
    """Result of one deduplicated web query for a section."""

    section_id: str
    query: str
    summary: str
    confidence: Confidence
    snippets: tuple[str, ...] = ()
    sources: tuple[WebSource, ...] = ()
    retrieved_at: datetime = field(default_factory=utc_now)
    error: str | None = None

    @property
    def has_content(self) -> bool:
        return bool(self.sources) and self.error is None


@dataclass(frozen=True)
class ProprietaryEvidence(DictMixin):
    """Access plan for a proprietary dataset."""

    section_id: str
    source_id: str
    dataset_name: str
    summary: str
    availability: Availability
    next_steps: str


@dataclass(frozen=True)
class WarehouseProbe(DictMixin):
    """Result of one SQL probe against the warehouse."""

    section_id: str
    section_title: str
    requirement: str
    sql: str
    rows: tuple[dict[str, Any], ...] = ()
    retrieved_at: datetime = field(default_factory=utc_now)
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class UserFileInsight(DictMixin):
    section_id: str
    filename: str
    summary: str
    key_metrics: tuple[str, ...] = ()


@dataclass(frozen=True)
class SearchTask(DictMixin):
    id: str
    section_id: str
    channel: SearchChannel
    target: str
    query: str
    rationale: str
    expected_output: str


@dataclass(frozen=True)
class SectionCoverage(DictMixin):
    section_id: str
    section_title: str
    planned_tasks: tuple[str, ...] = ()
    unmet_requirements: tuple[str, ...] = ()

    @property
    def complete(self) -> bool:
        return not self.unmet_requirements


@dataclass(frozen=True)
class WarehouseSummary(DictMixin):
    status: CapabilityStatus
    message: str | None = None
    results: tuple[WarehouseProbe, ...] = ()


@dataclass(frozen=True)
class SearchPlanSummary(DictMixin):
    """Output of the data_searcher stage."""

    tasks: tuple[SearchTask, ...] = ()
    coverage: tuple[SectionCoverage, ...] = ()
    warehouse: WarehouseSummary = field(
        default_factory=lambda: WarehouseSummary(status=CapabilityStatus.DISABLED)
    )
    web: tuple[WebEvidence, ...] = ()
    proprietary: tuple[ProprietaryEvidence, ...] = ()
    user_files: tuple[UserFileInsight, ...] = ()

    def web_for(self, section_id: str) -> list[WebEvidence]:
        return [item for item in self.web if item.section_id == section_id]

    def probes_for(self, section_id: str) -> list[WarehouseProbe]:
        return [item for item in self.warehouse.results if item.section_id == section_id]

    def files_for(self, section_id: str) -> list[UserFileInsight]:
        return [item for item in self.user_files if item.section_id == section_id]

    def coverage_for(self, section_id: str) -> SectionCoverage | None:
        for item in self.coverage:
            if item.section_id == section_id:
                return item
        return None


# ---------------------------------------------------------------------------
# expert_input / data_analyzer / data_presenter / reviewer
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DataGap(DictMixin):
    id: str
    section_id: str
    description: str
    recommended_action: str
    priority: Priority = Priority.HIGH


@dataclass(frozen=True)
class DataGapSummary(DictMixin):
    """Output of the expert_input stage."""

    gaps: tuple[DataGap, ...] = ()
    notes: tuple[str, ...] = ()


@dataclass(frozen=True)
class AnalysisComponent(DictMixin):
    """Analysis of one section.

    `caveats` carries failures observed while gathering (e.g. a failed
    warehouse probe) so later stages report them instead of hiding them.
    """

    section_id: str
    title: str
    approach: str
    inputs: tuple[str, ...]
    findings: tuple[str, ...]
    narrative: str
    visualization: str
    evidence_count: int = 0
    caveats: tuple[str, ...] = ()


@dataclass(frozen=True)
class AnalysisSummary(DictMixin):
    """Output of the data_analyzer stage."""

    components: tuple[AnalysisComponent, ...] = ()
    notes: tuple[str, ...] = ()

    def component_for(self, section_id: str) -> AnalysisComponent | None:
        for component in self.components:
            if component.section_id == section_id:
                return component
        return None


@dataclass(frozen=True)
class PresentationSection(DictMixin):
    section_id: str
    title: str
    key_findings: tuple[str, ...] = ()
    supporting_data: tuple[str, ...] = ()
    next_steps: str = ""


@dataclass(frozen=True)
class PresentationPayload(DictMixin):
    """Output of the data_presenter stage."""

    executive_summary: str
    sections: tuple[PresentationSection, ...] = ()
    appendices: tuple[str, ...] = ()


@dataclass(frozen=True)
class ReviewResult(DictMixin):
    """Output of the reviewer stage."""

    checklist_completion: float
    data_gaps_identified: bool
    trusted_sources_used: bool
    format_correct: bool
    quality_score: float
    revisions_needed: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Citations and deliverable (render_packager)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CitationEntry(DictMixin):
    """A numbered bibliography entry (C1, C2, ...)."""

    id: str
    key: str
    title: str
    url: str
    publisher: str
    access: str
    trust_level: str
    retrieved_at: datetime


@dataclass(frozen=True)
class CitationAnchor(DictMixin):
    id: str
    section_id: str
    label: str
    target: str


@dataclass(frozen=True)
class Citations(DictMixin):
    anchors: tuple[CitationAnchor, ...] = ()
    bibliography: tuple[CitationEntry, ...] = ()


@dataclass(frozen=True)
class RenderedVisual(DictMixin):
    id: str
    type: str  # "chart" | "table"
    title: str
    description: str
    source: str
    cached: bool = True


@dataclass(frozen=True)
class RenderedSection(DictMixin):
    id: str
    title: str
    density: DeliverableMode
    status: SectionStatus
    summary: tuple[str, ...] = ()
    data_highlights: tuple[str, ...] = ()
    visuals: tuple[RenderedVisual, ...] = ()
    narrative: str = ""


@dataclass(frozen=True)
class DeliverableExport(DictMixin):
    format: str  # "pdf" | "pptx" | "docx" | "csv"
    filename: str
    status: ExportStatus
    includes: tuple[str, ...] = ()


@dataclass(frozen=True)
class VersionEntry(DictMixin):
    version: int
    summary: str
    timestamp: datetime


@dataclass(frozen=True)
class ExecutiveSummary(DictMixin):
    headline: str
    body: tuple[str, ...] = ()
    highlights: tuple[str, ...] = ()


@dataclass(frozen=True)
class Accessibility(DictMixin):
    status: str  # "pending" | "ready"
    checklist: tuple[str, ...] = ()


@dataclass(frozen=True)
class Deliverable(DictMixin):
    """The terminal artifact of a run. Never mutated after creation."""

    template: str
    version: int
    history: tuple[VersionEntry, ...]
    mode: DeliverableMode
    locale: str
    number_format: str
    date_format: str
    timezone: str
    executive_summary: ExecutiveSummary
    sections: tuple[RenderedSection, ...]
    appendices: tuple[str, ...]
    exports: tuple[DeliverableExport, ...]
    citations: Citations
    accessibility: Accessibility
    visual_cache: tuple[RenderedVisual, ...] = ()
    deliverable_id: str = field(default_factory=lambda: generate_id("dlv"))
    created_at: datetime = field(default_factory=utc_now)

    def section(self, section_id: str) -> RenderedSection | None:
        for section in self.sections:
            if section.id == section_id:
                return section
        return None

    def to_markdown(self) -> str:
        """Render the deliverable as Markdown with numbered references."""
        anchors = {anchor.section_id: anchor for anchor in self.citations.anchors}
        lines = [f"# {self.executive_summary.headline}", ""]
        lines.extend(self.executive_summary.body)
        if self.executive_summary.highlights:
            lines.append("")
            lines.extend(f"- {h}" for h in self.executive_summary.highlights)

        for section in self.sections:
            anchor = anchors.get(section.id)
            suffix = f" {anchor.label}" if anchor else ""
            lines.extend(["", f"## {section.title}{suffix}", "", section.narrative])
            if section.summary:
                lines.append("")
                lines.extend(f"- {bullet}" for bullet in section.summary)

        if self.appendices:
            lines.extend(["", "## Appendices", ""])
            lines.extend(f"- {appendix}" for appendix in self.appendices)

        if self.citations.bibliography:
            lines.extend(["", "## References", ""])
            for entry in self.citations.bibliography:
                lines.append(f"[{entry.id}] {entry.title}. {entry.publisher}. {entry.url}")

        return "\n".join(lines) + "\n"


# Stage name -> output type accepted by the run-state merge.
STAGE_OUTPUT_TYPES: dict[StageName, type] = {
    StageName.PROMPT_ENHANCER: EnhancedPrompt,
    StageName.LEAD_MANAGER: ScopePlan,
    StageName.DATA_SOURCE_MANAGER: SourceSelection,
    StageName.DATA_CONNECTOR: ConnectionSummary,
    StageName.DATA_SEARCHER: SearchPlanSummary,
    StageName.EXPERT_INPUT: DataGapSummary,
    StageName.DATA_ANALYZER: AnalysisSummary,
    StageName.DATA_PRESENTER: PresentationPayload,
    StageName.REVIEWER: ReviewResult,
    StageName.RENDER_PACKAGER: Deliverable,
}
