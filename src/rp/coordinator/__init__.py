"""Pipeline orchestration and progress protocol."""

from rp.coordinator.pipeline import (
    Orchestrator,
    PipelineConfig,
    PipelineDefinition,
    PipelineResult,
    build_run_input,
    run_pipeline,
    stream_pipeline,
)
from rp.coordinator.progress import STAGE_TITLES, TimelineEmitter, TimelineStep, build_timeline

__all__ = [
    "STAGE_TITLES",
    "Orchestrator",
    "PipelineConfig",
    "PipelineDefinition",
    "PipelineResult",
    "TimelineEmitter",
    "TimelineStep",
    "build_run_input",
    "build_timeline",
    "run_pipeline",
    "stream_pipeline",
]
