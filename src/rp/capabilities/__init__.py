"""
External capability clients.

Capabilities bundles the three clients the core calls (structured generation,
web search, warehouse). It is created once per process and injected into the
orchestrator; nothing in the core looks a client up globally.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from rp.capabilities.search import (
    NullSearchClient,
    SearchResult,
    TavilySearchClient,
    WebSearchClient,
)
from rp.capabilities.warehouse import (
    DisabledWarehouse,
    SqliteWarehouse,
    WarehouseClient,
)
from rp.llm.base import StructuredGenerator, UnavailableGenerator
from rp.logging import get_logger

if TYPE_CHECKING:
    from rp.config import Settings

logger = get_logger(__name__)


@dataclass
class Capabilities:
    """Process-scoped bundle of capability clients."""

    generator: StructuredGenerator
    search: WebSearchClient
    warehouse: WarehouseClient

    @classmethod
    def unavailable(cls) -> Capabilities:
        """Bundle where every capability is unavailable."""
        return cls(
            generator=UnavailableGenerator(),
            search=NullSearchClient(),
            warehouse=DisabledWarehouse(),
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> Capabilities:
        """Build clients from settings, degrading missing credentials to unavailable."""
        generator: StructuredGenerator
        if settings.openai_api_key:
            from rp.llm.openai_client import OpenAIStructuredGenerator

            generator = OpenAIStructuredGenerator(
                api_key=settings.openai_api_key,
                model=settings.MODEL_WORKHORSE,
                base_url=settings.OPENAI_BASE_URL,
                timeout=settings.GENERATION_TIMEOUT_SECONDS,
            )
        else:
            generator = UnavailableGenerator()

        search: WebSearchClient
        if settings.search_api_key:
            search = TavilySearchClient(
                api_key=settings.search_api_key,
                base_url=settings.SEARCH_API_URL,
                max_results=settings.SEARCH_RESULTS_PER_QUERY,
            )
        else:
            search = NullSearchClient()

        warehouse: WarehouseClient
        if settings.WAREHOUSE_PATH:
            warehouse = SqliteWarehouse(settings.WAREHOUSE_PATH)
        else:
            warehouse = DisabledWarehouse()

        logger.debug(
            "Capabilities configured",
            generation=generator.available,
            web_search=search.available,
            warehouse=settings.WAREHOUSE_PATH is not None,
        )
        return cls(generator=generator, search=search, warehouse=warehouse)

    async def aclose(self) -> None:
        """Close every client."""
        await self.generator.close()
        await self.search.close()
        await self.warehouse.close()


__all__ = [
    "Capabilities",
    "DisabledWarehouse",
    "NullSearchClient",
    "SearchResult",
    "SqliteWarehouse",
    "TavilySearchClient",
    "WarehouseClient",
    "WebSearchClient",
]
