"""
Exception hierarchy for the research pipeline.

All exceptions inherit from RPError, which carries optional structured
context for logging. The orchestrator relies on the split below:

- InputError: rejected before any stage runs.
- StageError / StageContractError: recorded in the execution log, run continues.
- CapabilityError: contained inside evidence gatherers, never aborts a stage.
- PipelineError: fatal, terminates the run with a marked partial state.
"""

from __future__ import annotations

from typing import Any


class RPError(Exception):
    """Base exception for all research pipeline errors.

    Attributes:
        message: Human-readable error message.
        context: Optional structured context for logging/debugging.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx_str})"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context!r})"


class ConfigurationError(RPError):
    """Raised when configuration is invalid.

    Examples:
        - Unreadable source catalog file
        - Warehouse path pointing at a directory
    """

    pass


class InputError(RPError):
    """Raised when the question or user profile is malformed.

    Context should include:
        - field: The offending input field
        - value: The rejected value (truncated)
    """

    pass


class StageError(RPError):
    """Raised inside a stage when it cannot produce its output.

    Context should include:
        - stage: Name of the stage
        - missing: Upstream slots that were required but absent
    """

    pass


class StageContractError(StageError):
    """Raised by the run-state merge when an update breaks the stage contract.

    Examples:
        - A stage writes another stage's output slot
        - An output does not match the type registered for its slot
    """

    pass


class CapabilityError(RPError):
    """Raised by an external capability adapter (generation, search, warehouse).

    Context should include:
        - capability: The capability name
        - reason: Short machine-readable reason (not_configured, timeout, ...)
    """

    pass


class GenerationError(CapabilityError):
    """Raised when structured generation fails or returns an invalid payload."""

    pass


class SearchError(CapabilityError):
    """Raised when the web search provider fails."""

    pass


class WarehouseError(CapabilityError):
    """Raised when a warehouse query is rejected or fails."""

    pass


class PipelineError(RPError):
    """Raised when the orchestrator must terminate a run.

    Context should include:
        - run_id: The run ID
        - stage: The stage in flight when the run terminated
    """

    pass


class RunCancelledError(PipelineError):
    """Raised when a run is cancelled or times out."""

    pass


class RecursionLimitError(PipelineError):
    """Raised when a run exceeds its maximum number of stage executions."""

    pass
