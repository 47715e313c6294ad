"""
Base classes and interfaces for structured generation.

This module defines:
- GenerationResult: explicit success/failure result of one generation call
- StructuredGenerator: Protocol for all generation providers
- UnavailableGenerator: adapter used when no provider is configured

Call sites never catch provider exceptions. They receive a GenerationResult
and pick their documented fallback with `unwrap_or`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Protocol, TypeVar, runtime_checkable

from pydantic import BaseModel

from rp.exceptions import GenerationError

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)


@dataclass(frozen=True)
class GenerationResult(Generic[T]):
    """Result of a structured generation call."""

    value: T | None = None
    error: GenerationError | None = None
    model: str | None = None
    latency_ms: int = 0

    @classmethod
    def success(cls, value: T, model: str | None = None, latency_ms: int = 0) -> GenerationResult[T]:
        return cls(value=value, model=model, latency_ms=latency_ms)

    @classmethod
    def failure(cls, error: GenerationError) -> GenerationResult[T]:
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None and self.value is not None

    def unwrap_or(self, fallback: T) -> T:
        """Return the generated value, or `fallback` when generation failed."""
        if self.ok:
            return self.value  # type: ignore[return-value]
        return fallback


@runtime_checkable
class StructuredGenerator(Protocol):
    """Protocol for structured generation providers.

    Implementations own model selection, retries, and token accounting.
    They must not raise for provider failures; failures are returned as
    GenerationResult.failure.
    """

    @property
    def available(self) -> bool:
        """Whether the provider is configured."""
        ...

    async def generate(self, prompt: str, schema: type[M]) -> GenerationResult[M]:
        """Generate a value matching `schema` for `prompt`.

        Args:
            prompt: Prompt text.
            schema: Pydantic model the output must validate against.

        Returns:
            GenerationResult wrapping a validated `schema` instance.
        """
        ...

    async def close(self) -> None:
        """Close any open connections."""
        ...


class UnavailableGenerator:
    """Generator used when no provider is configured. Every call fails."""

    def __init__(self, reason: str = "not_configured") -> None:
        self._reason = reason

    @property
    def available(self) -> bool:
        return False

    async def generate(self, prompt: str, schema: type[M]) -> GenerationResult[M]:
        return GenerationResult.failure(
            GenerationError(
                "Structured generation is not available",
                context={"capability": "generation", "reason": self._reason, "schema": schema.__name__},
            )
        )

    async def close(self) -> None:
        return None
