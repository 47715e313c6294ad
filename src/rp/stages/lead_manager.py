"""
Lead Manager (Stage 2).

Decomposes the enhanced prompt into analytical sections with priorities,
dependencies, data requirements and a checklist.
"""

from __future__ import annotations

from rp.llm.schemas import ScopeDraft
from rp.stages.base import Stage, StageContext
from rp.state import RunState, StageUpdate
from rp.types import (
    EnhancedPrompt,
    ExecutionStrategy,
    Priority,
    RiskAssessment,
    RiskLevel,
    ScopePlan,
    Section,
    StageName,
)
from rp.utils.text import dedupe, extract_keywords, truncate, unique_slug

SCOPE_PROMPT = """You are the lead manager of a consulting research engagement.

ENHANCED BRIEF: {brief}
FRAMEWORK: {framework}
COMPONENTS:
{components}

Split the work into 3 to 8 analytical sections. For each give a title, a description,
a priority (critical, high, medium, low), prerequisite section titles, the data
requirements and measurable success criteria."""

DEFAULT_SUCCESS_CRITERIA = (
    "Every data requirement backed by quantified evidence",
    "Every claim linked to a cited source",
)


def _priority(value: str) -> Priority:
    try:
        return Priority(value.strip().lower())
    except ValueError:
        return Priority.MEDIUM


def _strategy(value: str) -> ExecutionStrategy:
    try:
        return ExecutionStrategy(value.strip().lower())
    except ValueError:
        return ExecutionStrategy.HYBRID


def _complexity(section_count: int) -> RiskLevel:
    if section_count > 6:
        return RiskLevel.HIGH
    if section_count > 3:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def scope_from_draft(draft: ScopeDraft) -> ScopePlan:
    """Convert a generated scope, resolving dependency titles to section ids."""
    taken: set[str] = set()
    ids = [unique_slug(s.title, taken) for s in draft.sections]
    by_title = {s.title.casefold(): section_id for s, section_id in zip(draft.sections, ids)}

    sections = []
    for draft_section, section_id in zip(draft.sections, ids):
        dependencies = tuple(
            dedupe(
                by_title[d.casefold()]
                for d in draft_section.dependencies
                if d.casefold() in by_title and by_title[d.casefold()] != section_id
            )
        )
        requirements = tuple(dedupe(draft_section.data_requirements))
        sections.append(
            Section(
                id=section_id,
                title=draft_section.title,
                description=draft_section.description,
                priority=_priority(draft_section.priority),
                dependencies=dependencies,
                data_requirements=requirements,
                success_criteria=tuple(draft_section.success_criteria) or DEFAULT_SUCCESS_CRITERIA,
                checklist=requirements,
            )
        )

    return ScopePlan(
        project_title=draft.project_title,
        execution_strategy=_strategy(draft.execution_strategy),
        sections=tuple(sections),
        risk_assessment=RiskAssessment(
            complexity_risk=_complexity(len(sections)),
            mitigation_strategy=draft.mitigation_strategy,
        ),
    )


def scope_from_prompt(enhanced: EnhancedPrompt) -> ScopePlan:
    """One section per framework component."""
    taken: set[str] = set()
    sections = []
    for index, component in enumerate(enhanced.components):
        requirements = tuple(dedupe(component.required_data))
        sections.append(
            Section(
                id=unique_slug(component.component, taken),
                title=component.component,
                description=component.description,
                priority=Priority.HIGH if index < 2 else Priority.MEDIUM,
                data_requirements=requirements,
                success_criteria=DEFAULT_SUCCESS_CRITERIA,
                checklist=requirements,
            )
        )
    where = f" ({enhanced.geography})" if enhanced.geography else ""
    return ScopePlan(
        project_title=f"{enhanced.framework}: {enhanced.analysis_type}{where}",
        execution_strategy=ExecutionStrategy.FULLY_PARALLEL,
        sections=tuple(sections),
        risk_assessment=RiskAssessment(
            complexity_risk=_complexity(len(sections)),
            mitigation_strategy="Prioritise high-priority sections and escalate unmet data requirements.",
        ),
    )


def scope_from_question(question: str) -> ScopePlan:
    """Single overview section when no enhanced prompt is available."""
    keywords = extract_keywords(question, limit=3)
    topic = " ".join(keywords)
    requirements = (
        f"Market size and growth for {topic}" if topic else "Market size and growth",
        "Leading players and market share",
    )
    section = Section(
        id="market-overview",
        title="Market overview",
        description=truncate(question, 160),
        priority=Priority.HIGH,
        data_requirements=requirements,
        success_criteria=DEFAULT_SUCCESS_CRITERIA,
        checklist=requirements,
    )
    return ScopePlan(
        project_title=truncate(question, 80),
        execution_strategy=ExecutionStrategy.FULLY_SEQUENTIAL,
        sections=(section,),
        risk_assessment=RiskAssessment(
            data_availability_risk=RiskLevel.HIGH,
            complexity_risk=RiskLevel.LOW,
            mitigation_strategy="Scope was derived without an enhanced brief; refine before sign-off.",
        ),
    )


class LeadManagerStage(Stage):
    """Stage 2: Scope planning.

    Responsible for:
    1. Splitting the brief into sections with stable ids
    2. Resolving section dependencies
    3. Assessing delivery risk
    """

    name = StageName.LEAD_MANAGER
    reads = (StageName.PROMPT_ENHANCER,)

    async def run(self, state: RunState, ctx: StageContext) -> StageUpdate:
        enhanced = state.enhanced_prompt
        if enhanced is None:
            self.log_warning("Enhanced prompt missing, scoping from the raw question")
            plan = scope_from_question(state.input.question)
        else:
            plan = scope_from_prompt(enhanced) if enhanced.components else scope_from_question(state.input.question)
            generator = ctx.capabilities.generator
            if generator.available:
                components = "\n".join(
                    f"- {c.component}: {', '.join(c.required_data)}" for c in enhanced.components
                )
                prompt = SCOPE_PROMPT.format(
                    brief=enhanced.enhanced_prompt,
                    framework=enhanced.framework,
                    components=components or "- none",
                )
                result = await generator.generate(prompt, ScopeDraft)
                if result.ok:
                    plan = scope_from_draft(result.value)
                elif result.error is not None:
                    self.log_warning("Generation unavailable, using framework scope", error=result.error.message)

        self.log_info("Scope planned", sections=plan.total_sections, strategy=plan.execution_strategy.value)
        return self.complete(plan, f"Execution scope organised into {plan.total_sections} section(s).")
