"""Pipeline stages, one module per stage."""

from rp.stages.base import Stage, StageContext
from rp.stages.data_analyzer import DataAnalyzerStage
from rp.stages.data_connector import DataConnectorStage
from rp.stages.data_presenter import DataPresenterStage
from rp.stages.data_searcher import DataSearcherStage
from rp.stages.data_source_manager import DataSourceManagerStage
from rp.stages.expert_input import ExpertInputStage
from rp.stages.lead_manager import LeadManagerStage
from rp.stages.prompt_enhancer import PromptEnhancerStage
from rp.stages.render_packager import RenderPackagerStage
from rp.stages.reviewer import ReviewerStage


def default_stages() -> list[Stage]:
    """Fresh instances of every stage, in pipeline order."""
    return [
        PromptEnhancerStage(),
        LeadManagerStage(),
        DataSourceManagerStage(),
        DataConnectorStage(),
        DataSearcherStage(),
        ExpertInputStage(),
        DataAnalyzerStage(),
        DataPresenterStage(),
        ReviewerStage(),
        RenderPackagerStage(),
    ]


__all__ = [
    "DataAnalyzerStage",
    "DataConnectorStage",
    "DataPresenterStage",
    "DataSearcherStage",
    "DataSourceManagerStage",
    "ExpertInputStage",
    "LeadManagerStage",
    "PromptEnhancerStage",
    "RenderPackagerStage",
    "ReviewerStage",
    "Stage",
    "StageContext",
    "default_stages",
]
