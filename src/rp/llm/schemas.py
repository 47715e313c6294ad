"""
Pydantic schemas requested from the structured generation capability.

These are drafts: stages validate them and convert them into the frozen
stage-output types in rp.types.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class TriageDraft(BaseModel):
    sector: str = Field(description="Business sector derived from the query")
    function: str = Field(description="Business function, e.g. Market Analysis")


class FrameworkComponentDraft(BaseModel):
    component: str
    description: str
    required_data: list[str] = Field(default_factory=list)
    analysis_approach: str = ""


class SmartDraft(BaseModel):
    specific: list[str] = Field(default_factory=list)
    measurable: list[str] = Field(default_factory=list)
    attainable: list[str] = Field(default_factory=list)
    relevant: list[str] = Field(default_factory=list)
    time_bound: list[str] = Field(default_factory=list)


class OutputSectionDraft(BaseModel):
    section_title: str
    section_order: int
    components_included: list[str] = Field(default_factory=list)
    content_requirements: str = ""


class EnhancedPromptDraft(BaseModel):
    """Structured enhancement of the user's question."""

    triage: TriageDraft
    geographic_reference: str | None = Field(
        default=None, description="Geographic reference preserved from the query"
    )
    timeframe: str | None = Field(default=None, description="Timeframe preserved from the query")
    specific_factors_mentioned: list[str] = Field(default_factory=list)
    analysis_type: str
    recommended_framework: str
    framework_components: list[FrameworkComponentDraft]
    smart_requirements: SmartDraft = Field(default_factory=SmartDraft)
    output_sections: list[OutputSectionDraft] = Field(default_factory=list)
    grouping_logic: str = ""
    enhanced_prompt: str


class SectionDraft(BaseModel):
    title: str
    description: str
    priority: str = "medium"
    dependencies: list[str] = Field(default_factory=list, description="Titles of prerequisite sections")
    data_requirements: list[str] = Field(default_factory=list)
    success_criteria: list[str] = Field(default_factory=list)


class ScopeDraft(BaseModel):
    """Decomposition of the enhanced prompt into analytical sections."""

    project_title: str
    execution_strategy: str = "hybrid"
    sections: list[SectionDraft] = Field(min_length=1)
    mitigation_strategy: str = ""


class WarehouseQueryDraft(BaseModel):
    """A single read-only SQL statement."""

    sql: str = Field(description="One SELECT statement without commentary or markdown fences")


class SectionNarrativeDraft(BaseModel):
    """Narrative for one section written only from the supplied evidence."""

    findings: list[str] = Field(default_factory=list, max_length=5)
    narrative: str
