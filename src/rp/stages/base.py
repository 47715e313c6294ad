"""
Base classes for pipeline stages.

This module implements:
- Stage: Abstract base class for all stages
- StageContext: Per-run context with shared resources

A stage is a function of the accumulated run state to a StageUpdate. The
`execute` wrapper guarantees the stage never raises past its boundary:
internal failures become `StageUpdate.failed(...)`. Only cancellation
propagates.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from rp.exceptions import StageError
from rp.gathering import EvidenceGatherer, GatherLimits, ProbeBudget, QuerySignatures
from rp.logging import get_logger
from rp.state import StageUpdate
from rp.types import StageName

if TYPE_CHECKING:
    from rp.capabilities import Capabilities
    from rp.config import Settings
    from rp.retrieval import SourceCatalog
    from rp.state import RunState

logger = get_logger(__name__)


@dataclass
class StageContext:
    """Runtime context for one run.

    Holds the injected capability clients plus the run-scoped dedup and
    probe trackers. A new context is created for every run.
    """

    settings: Settings
    capabilities: Capabilities
    catalog: SourceCatalog
    limits: GatherLimits
    signatures: QuerySignatures = field(default_factory=QuerySignatures)
    budget: ProbeBudget = field(default_factory=lambda: ProbeBudget(0))

    @classmethod
    def for_run(
        cls,
        settings: Settings,
        capabilities: Capabilities,
        catalog: SourceCatalog,
    ) -> StageContext:
        """Create a context with fresh run-scoped trackers."""
        limits = GatherLimits.from_settings(settings)
        return cls(
            settings=settings,
            capabilities=capabilities,
            catalog=catalog,
            limits=limits,
            signatures=QuerySignatures(include_locale=limits.dedup_include_locale),
            budget=ProbeBudget(limits.max_warehouse_probes),
        )

    def gatherer(self) -> EvidenceGatherer:
        """Evidence gatherer bound to this run's trackers."""
        return EvidenceGatherer(
            capabilities=self.capabilities,
            limits=self.limits,
            signatures=self.signatures,
            budget=self.budget,
        )


class Stage(ABC):
    """Abstract base class for pipeline stages.

    Subclasses set `name` and `reads` and implement `run`. Every upstream
    slot in `reads` may be absent; stages degrade instead of crashing.
    """

    name: StageName
    reads: tuple[StageName, ...] = ()

    def __init__(self) -> None:
        self._logger = get_logger(f"stage.{self.name.value}")

    @abstractmethod
    async def run(self, state: RunState, ctx: StageContext) -> StageUpdate:
        """Execute the stage's main task.

        Args:
            state: Snapshot of the run state (read-only).
            ctx: Run context with capabilities and limits.

        Returns:
            StageUpdate carrying this stage's output.

        Raises:
            StageError: When the stage cannot produce its output.
        """
        ...

    async def execute(self, state: RunState, ctx: StageContext) -> StageUpdate:
        """Run the stage, converting failures into an error update."""
        try:
            return await self.run(state, ctx)
        except StageError as e:
            self.log_warning("Stage failed", error=str(e))
            return StageUpdate.failed(self.name, e)
        except Exception as e:
            self._logger.exception("Stage crashed", error=str(e))
            return StageUpdate.failed(
                self.name,
                StageError(
                    f"{type(e).__name__}: {e}",
                    context={"stage": self.name.value},
                ),
            )

    def complete(self, output: Any, summary: str) -> StageUpdate:
        """Build the update for this stage's own slot."""
        return StageUpdate.completed(self.name, output, summary=summary)

    def missing(self, *slots: StageName) -> StageError:
        """Error for required upstream slots that are absent."""
        names = [s.value for s in slots]
        return StageError(
            f"Required upstream output missing: {', '.join(names)}",
            context={"stage": self.name.value, "missing": names},
        )

    def log_info(self, message: str, **kwargs: Any) -> None:
        """Log info message with stage context."""
        self._logger.info(message, stage=self.name.value, **kwargs)

    def log_warning(self, message: str, **kwargs: Any) -> None:
        """Log warning message with stage context."""
        self._logger.warning(message, stage=self.name.value, **kwargs)
