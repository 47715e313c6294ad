"""Evidence gathering: bounded fan-out to external capabilities."""

from rp.gathering.gatherer import (
    EvidenceGatherer,
    GatherContext,
    WarehouseGathering,
    WarehouseOutcome,
    WarehouseSlot,
    build_query,
    fold_web_results,
)
from rp.gathering.limits import GatherLimits, ProbeBudget, QuerySignatures

__all__ = [
    "EvidenceGatherer",
    "GatherContext",
    "GatherLimits",
    "ProbeBudget",
    "QuerySignatures",
    "WarehouseGathering",
    "WarehouseOutcome",
    "WarehouseSlot",
    "build_query",
    "fold_web_results",
]
