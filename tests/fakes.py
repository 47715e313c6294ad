"""
Fakes for every external capability plus misbehaving stages.

Tests build a Capabilities bundle out of these instead of patching clients.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Sequence

from pydantic import BaseModel

from rp.capabilities import Capabilities
from rp.capabilities.search import SearchResult
from rp.exceptions import GenerationError, WarehouseError
from rp.llm.base import GenerationResult
from rp.stages import Stage, StageContext
from rp.state import RunState, StageUpdate
from rp.types import CapabilityStatus, ReviewResult, StageName


class FakeGenerator:
    """Structured generator answering from per-schema handlers.

    A handler receives the prompt and returns a model instance, or None to
    simulate a failed generation. Schemas without a handler always fail.
    """

    def __init__(
        self,
        handlers: dict[type[BaseModel], Callable[[str], BaseModel | None]] | None = None,
        available: bool = True,
    ) -> None:
        self.handlers = handlers or {}
        self._available = available
        self.calls: list[tuple[str, str]] = []
        self.closed = False

    @property
    def available(self) -> bool:
        return self._available

    async def generate(self, prompt: str, schema: type[Any]) -> GenerationResult[Any]:
        self.calls.append((schema.__name__, prompt))
        handler = self.handlers.get(schema)
        value = handler(prompt) if handler else None
        if value is None:
            return GenerationResult.failure(
                GenerationError("Fake generation failure", context={"schema": schema.__name__})
            )
        return GenerationResult.success(value, model="fake-model")

    def calls_for(self, schema: type[Any]) -> list[str]:
        return [prompt for name, prompt in self.calls if name == schema.__name__]

    async def close(self) -> None:
        self.closed = True


class FakeSearch:
    """Web search returning canned results for queries containing a term."""

    def __init__(
        self,
        results: dict[str, list[SearchResult]] | None = None,
        errors: dict[str, Exception] | None = None,
    ) -> None:
        self.results = results or {}
        self.errors = errors or {}
        self.queries: list[str] = []
        self.closed = False

    @property
    def available(self) -> bool:
        return True

    async def search(self, query: str, geo_hint: str | None = None) -> list[SearchResult]:
        self.queries.append(query)
        lowered = query.casefold()
        for term, error in self.errors.items():
            if term.casefold() in lowered:
                raise error
        for term, items in self.results.items():
            if term.casefold() in lowered:
                return list(items)
        return []

    async def close(self) -> None:
        self.closed = True


class FakeWarehouse:
    """Warehouse returning fixed rows, or raising a fixed error."""

    def __init__(
        self,
        status: CapabilityStatus = CapabilityStatus.CONNECTED,
        rows: Sequence[dict[str, Any]] = (),
        error: str | None = None,
    ) -> None:
        self._status = status
        self.rows = list(rows)
        self.error = error
        self.executed: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    @property
    def status(self) -> CapabilityStatus:
        return self._status

    @property
    def message(self) -> str | None:
        return None if self._status is CapabilityStatus.CONNECTED else "Fake warehouse offline"

    async def connect(self) -> CapabilityStatus:
        return self._status

    async def execute(
        self,
        sql: str,
        params: Sequence[Any] = (),
        row_limit: int = 25,
    ) -> list[dict[str, Any]]:
        self.executed.append(sql)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0.01)
            if self.error:
                raise WarehouseError(self.error, context={"capability": "warehouse", "reason": "query_failed"})
            return self.rows[:row_limit]
        finally:
            self.in_flight -= 1

    async def close(self) -> None:
        self.closed = True


def make_capabilities(
    generator: FakeGenerator | None = None,
    search: FakeSearch | None = None,
    warehouse: FakeWarehouse | None = None,
) -> Capabilities:
    """Capabilities bundle with unavailable defaults for omitted clients."""
    base = Capabilities.unavailable()
    return Capabilities(
        generator=generator or base.generator,
        search=search or base.search,
        warehouse=warehouse or base.warehouse,
    )


def result(title: str, url: str, snippet: str = "") -> SearchResult:
    return SearchResult(title=title, url=url, snippet=snippet, source=url.split("/")[2])


class AlwaysErrorStage(Stage):
    """Stage that crashes every time it runs."""

    def __init__(self, name: StageName) -> None:
        self.name = name
        self.runs = 0
        super().__init__()

    async def run(self, state: RunState, ctx: StageContext) -> StageUpdate:
        self.runs += 1
        raise RuntimeError(f"{self.name.value} exploded")


class SlowStage(Stage):
    """Stage that sleeps until cancelled."""

    def __init__(self, name: StageName, delay: float = 30.0) -> None:
        self.name = name
        self.delay = delay
        self.started = asyncio.Event()
        self.cancelled = False
        super().__init__()

    async def run(self, state: RunState, ctx: StageContext) -> StageUpdate:
        self.started.set()
        try:
            await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        raise AssertionError("SlowStage was expected to be cancelled")


class ForeignSlotStage(Stage):
    """Stage that tries to write another stage's output slot."""

    def __init__(self, name: StageName, target: StageName) -> None:
        self.name = name
        self.target = target
        super().__init__()

    async def run(self, state: RunState, ctx: StageContext) -> StageUpdate:
        return StageUpdate(stage=self.name, outputs={self.target: object()}, summary="Wrote a foreign slot.")


class ImpersonatingStage(Stage):
    """Stage that returns a completed update under another stage's name."""

    def __init__(self, name: StageName, claimed: StageName, output: Any) -> None:
        self.name = name
        self.claimed = claimed
        self.output = output
        super().__init__()

    async def run(self, state: RunState, ctx: StageContext) -> StageUpdate:
        return StageUpdate.completed(self.claimed, self.output, summary="forged")


class FixedReviewer(Stage):
    """Reviewer reporting a fixed quality score."""

    name = StageName.REVIEWER

    def __init__(self, score: float) -> None:
        self.score = score
        self.runs = 0
        super().__init__()

    async def run(self, state: RunState, ctx: StageContext) -> StageUpdate:
        self.runs += 1
        review = ReviewResult(
            checklist_completion=self.score,
            data_gaps_identified=False,
            trusted_sources_used=True,
            format_correct=True,
            quality_score=self.score,
        )
        return self.complete(review, f"Quality score: {round(self.score * 100)}%.")
