"""
Prompt Enhancer (Stage 1).

Turns the raw question into an enhanced prompt: sector/function triage, an
analytical framework with its components, SMART requirements and the
output structure. Uses structured generation when available and a keyword
heuristic otherwise.
"""

from __future__ import annotations

from rp.exceptions import StageError
from rp.llm.schemas import EnhancedPromptDraft
from rp.stages.base import Stage, StageContext
from rp.state import RunState, StageUpdate
from rp.types import (
    EnhancedPrompt,
    FrameworkComponent,
    OutputSection,
    SmartRequirements,
    StageName,
    TriageResult,
)
from rp.utils.text import dedupe, detect_geography, detect_timeframe, extract_keywords

SWOT = "SWOT Analysis"
PORTER = "Porter's Five Forces"
PESTLE = "PESTLE Analysis"
COMBINED = "Combined SWOT & Porter's"

FRAMEWORKS: dict[str, tuple[str, ...]] = {
    SWOT: ("Strengths", "Weaknesses", "Opportunities", "Threats"),
    PORTER: (
        "Competitive Rivalry",
        "Threat of New Entrants",
        "Threat of Substitutes",
        "Bargaining Power of Buyers",
        "Bargaining Power of Suppliers",
    ),
    PESTLE: ("Political", "Economic", "Social", "Technological", "Legal", "Environmental"),
}
FRAMEWORKS[COMBINED] = FRAMEWORKS[SWOT] + FRAMEWORKS[PORTER]

# Component -> (description, required data).
COMPONENT_DATA: dict[str, tuple[str, tuple[str, ...]]] = {
    "Strengths": (
        "Internal advantages of the players in scope",
        ("Market share of leading players", "Cost position and margins"),
    ),
    "Weaknesses": (
        "Internal limitations that constrain growth",
        ("Operational bottlenecks and capacity constraints", "Customer satisfaction gaps"),
    ),
    "Opportunities": (
        "External developments that can be captured",
        ("Market size and growth forecasts", "Unserved segments and demand drivers"),
    ),
    "Threats": (
        "External developments that put value at risk",
        ("Regulatory and policy risks", "Competitive and technology threats"),
    ),
    "Competitive Rivalry": (
        "Intensity of competition among existing players",
        ("Market share of leading players", "Number of competitors and capacity additions"),
    ),
    "Threat of New Entrants": (
        "Ease with which new players can enter the market",
        ("Capital requirements and barriers to entry", "Recent market entrants and funding"),
    ),
    "Threat of Substitutes": (
        "Availability of alternative products or technologies",
        ("Alternative technologies and adoption rates", "Price-performance of substitutes"),
    ),
    "Bargaining Power of Buyers": (
        "Leverage customers hold over pricing and terms",
        ("Customer concentration and switching costs", "Price sensitivity of key buyers"),
    ),
    "Bargaining Power of Suppliers": (
        "Leverage suppliers hold over input costs",
        ("Supplier concentration for key inputs", "Raw material price trends"),
    ),
    "Political": (
        "Government action shaping the market",
        ("Government policy and subsidies", "Trade policy and tariffs"),
    ),
    "Economic": (
        "Macroeconomic conditions affecting demand",
        ("Market size and growth rate", "GDP growth and inflation"),
    ),
    "Social": (
        "Demographic and behavioural trends",
        ("Consumer adoption trends", "Demographic shifts"),
    ),
    "Technological": (
        "Technology changes and innovation pace",
        ("Technology roadmap and R&D investment", "Patent activity"),
    ),
    "Legal": (
        "Laws and standards the market must comply with",
        ("Regulatory requirements and standards", "Compliance obligations"),
    ),
    "Environmental": (
        "Environmental constraints and sustainability pressure",
        ("Environmental regulation", "Sustainability and emissions targets"),
    ),
}

# Lowercase keyword -> sector, first match wins.
SECTOR_KEYWORDS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("electric vehicle", " ev ", "evs", "automotive", "car ", "cars", "vehicle"), "Automotive"),
    (("bank", "fintech", "insurance", "payments", "lending"), "Financial Services"),
    (("energy", "solar", "wind", "battery", "batteries", "oil", "gas", "hydrogen"), "Energy"),
    (("software", "saas", "cloud", "semiconductor", " ai ", "artificial intelligence", "technology"), "Technology"),
    (("pharma", "biotech", "healthcare", "medical", "hospital"), "Healthcare"),
    (("retail", "e-commerce", "ecommerce", "consumer goods", "grocery"), "Retail"),
    (("telecom", "5g", "broadband"), "Telecommunications"),
)

FUNCTION_KEYWORDS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("competitor", "competitive", "rivalry", "porter"), "Competitive Analysis"),
    (("invest", "valuation", "acquisition", "m&a"), "Investment Analysis"),
    (("risk",), "Risk Assessment"),
    (("strategy", "strategic", "enter", "entry", "expansion"), "Strategic Planning"),
)

FACTOR_TERMS = (
    "regulation", "pricing", "competition", "demand", "supply chain", "subsidies",
    "infrastructure", "technology", "growth", "market share", "costs", "adoption",
)

ENHANCE_PROMPT = """You are a senior strategy consultant preparing a research brief.

QUESTION: {question}
{profile}
Pick the most suitable framework among: {frameworks}.
Preserve any geography ("{geography}") and timeframe ("{timeframe}") mentioned in the question.
List the framework components with the data each one requires, SMART requirements,
and the output sections of the final report."""


def _contains(text: str, terms: tuple[str, ...]) -> bool:
    return any(term in text for term in terms)


def triage(question: str) -> TriageResult:
    """Keyword triage of sector and function."""
    lowered = f" {question.casefold()} "
    sector = next((s for terms, s in SECTOR_KEYWORDS if _contains(lowered, terms)), "General")
    function = next((f for terms, f in FUNCTION_KEYWORDS if _contains(lowered, terms)), "Market Analysis")
    matched = (sector != "General") + (function != "Market Analysis")
    return TriageResult(
        sector=sector,
        function=function,
        category="market_research",
        confidence=round(0.4 + 0.2 * matched, 2),
    )


def select_framework(question: str) -> str:
    """Framework named or implied by the question."""
    lowered = question.casefold()
    porter = _contains(lowered, ("porter", "five forces", "5 forces"))
    swot = "swot" in lowered
    if porter and swot:
        return COMBINED
    if porter:
        return PORTER
    if swot:
        return SWOT
    if _contains(lowered, ("pestle", "pestel", "macro", "regulatory environment")):
        return PESTLE
    if _contains(lowered, ("market entry", "enter the", "should we launch", "expand into")):
        return COMBINED
    return SWOT


def heuristic_prompt(question: str, profile_company: str | None = None) -> EnhancedPrompt:
    """Deterministic enhanced prompt built from keyword rules."""
    triage_result = triage(question)
    framework = select_framework(question)
    geography = detect_geography(question)
    timeframe = detect_timeframe(question)
    lowered = question.casefold()
    factors = tuple(term for term in FACTOR_TERMS if term in lowered)

    components = tuple(
        FrameworkComponent(
            component=name,
            description=COMPONENT_DATA[name][0],
            required_data=COMPONENT_DATA[name][1],
            analysis_approach="Combine quantitative indicators with qualitative evidence",
        )
        for name in FRAMEWORKS[framework]
    )
    output_structure = tuple(
        OutputSection(
            section_title=c.component,
            section_order=i + 1,
            components_included=(c.component,),
            content_requirements=f"{c.description}, supported by cited data.",
        )
        for i, c in enumerate(components)
    )

    scope = " ".join(extract_keywords(question, limit=4)) or triage_result.sector.lower()
    where = geography or "the relevant markets"
    horizon = timeframe or "the latest 24 months"
    subject = f"{profile_company} " if profile_company else ""
    smart = SmartRequirements(
        specific=(f"Apply {framework} to {scope} in {where}",),
        measurable=("Quantify market size, growth rate and share for each component",),
        attainable=("Rely on curated data sources and retrieved web evidence",),
        relevant=(f"Support {subject}{triage_result.function.lower()} decisions",),
        time_bound=(f"Cover {horizon}",),
    )
    enhanced = (
        f"Apply {framework} to assess {scope} in {where} over {horizon}. "
        f"Cover {', '.join(FRAMEWORKS[framework])} with quantified, cited evidence."
    )
    return EnhancedPrompt(
        triage=triage_result,
        analysis_type=triage_result.function,
        framework=framework,
        components=components,
        smart=smart,
        output_structure=output_structure,
        enhanced_prompt=enhanced,
        geography=geography,
        timeframe=timeframe,
        factors=factors,
        grouping_logic="One section per framework component",
        generated=False,
    )


def from_draft(draft: EnhancedPromptDraft, question: str) -> EnhancedPrompt:
    """Convert a generated draft, preserving detected geography and timeframe."""
    components = tuple(
        FrameworkComponent(
            component=c.component,
            description=c.description,
            required_data=tuple(dedupe(c.required_data)),
            analysis_approach=c.analysis_approach,
        )
        for c in draft.framework_components
    )
    sections = draft.output_sections or []
    output_structure = tuple(
        OutputSection(
            section_title=s.section_title,
            section_order=s.section_order,
            components_included=tuple(s.components_included),
            content_requirements=s.content_requirements,
        )
        for s in sorted(sections, key=lambda s: s.section_order)
    ) or tuple(
        OutputSection(
            section_title=c.component,
            section_order=i + 1,
            components_included=(c.component,),
            content_requirements=c.description,
        )
        for i, c in enumerate(components)
    )
    smart = draft.smart_requirements
    return EnhancedPrompt(
        triage=TriageResult(
            sector=draft.triage.sector or "General",
            function=draft.triage.function or "Market Analysis",
            category="market_research",
            confidence=0.8,
        ),
        analysis_type=draft.analysis_type,
        framework=draft.recommended_framework,
        components=components,
        smart=SmartRequirements(
            specific=tuple(smart.specific),
            measurable=tuple(smart.measurable),
            attainable=tuple(smart.attainable),
            relevant=tuple(smart.relevant),
            time_bound=tuple(smart.time_bound),
        ),
        output_structure=output_structure,
        enhanced_prompt=draft.enhanced_prompt,
        geography=draft.geographic_reference or detect_geography(question),
        timeframe=draft.timeframe or detect_timeframe(question),
        factors=tuple(draft.specific_factors_mentioned),
        grouping_logic=draft.grouping_logic,
        generated=True,
    )


class PromptEnhancerStage(Stage):
    """Stage 1: Prompt enhancement.

    Responsible for:
    1. Triage of sector and function
    2. Framework selection and component breakdown
    3. SMART requirements and output structure
    """

    name = StageName.PROMPT_ENHANCER

    async def run(self, state: RunState, ctx: StageContext) -> StageUpdate:
        question = state.input.question.strip()
        if not question:
            raise StageError("No message content found", context={"stage": self.name.value})

        profile = state.input.profile
        company = profile.company if profile else None
        fallback = heuristic_prompt(question, company)

        generator = ctx.capabilities.generator
        enhanced = fallback
        if generator.available:
            profile_line = ""
            if profile and (profile.role or company):
                profile_line = f"ASKED BY: {profile.role or 'analyst'} at {company or 'an undisclosed company'}\n"
            prompt = ENHANCE_PROMPT.format(
                question=question,
                profile=profile_line,
                frameworks=", ".join(FRAMEWORKS),
                geography=fallback.geography or "none",
                timeframe=fallback.timeframe or "none",
            )
            result = await generator.generate(prompt, EnhancedPromptDraft)
            if result.ok and result.value.framework_components:
                enhanced = from_draft(result.value, question)
            elif result.error is not None:
                self.log_warning("Generation unavailable, using heuristic prompt", error=result.error.message)

        self.log_info(
            "Prompt enhanced",
            framework=enhanced.framework,
            components=len(enhanced.components),
            generated=enhanced.generated,
        )
        return self.complete(enhanced, f"Enhanced prompt prepared using {enhanced.framework}.")
