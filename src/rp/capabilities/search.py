"""
Web search capability.

Returns only titles, URLs and snippets, never full page content. An empty
list means "no evidence"; provider failures raise SearchError and are
contained by the evidence gatherer.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol, runtime_checkable
from urllib.parse import urlparse

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from rp.exceptions import SearchError
from rp.logging import get_logger

logger = get_logger(__name__)

USER_AGENT = "ResearchPipeline/0.3 (+https://example.invalid/research-pipeline)"

REQUEST_TIMEOUT = 20.0


def _domain(url: str) -> str:
    netloc = urlparse(url).netloc.lower()
    return netloc[4:] if netloc.startswith("www.") else netloc


@dataclass
class SearchResult:
    """A single search result (URL + metadata, NOT full content)."""

    title: str
    url: str
    snippet: str
    source: str = ""  # Domain or source name
    published_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "title": self.title,
            "url": self.url,
            "snippet": self.snippet,
            "source": self.source,
            "published_at": self.published_at.isoformat() if self.published_at else None,
        }


@runtime_checkable
class WebSearchClient(Protocol):
    """Protocol for web search providers."""

    @property
    def available(self) -> bool:
        """Whether the provider is configured."""
        ...

    async def search(self, query: str, geo_hint: str | None = None) -> list[SearchResult]:
        """Search the web.

        Args:
            query: Search query string.
            geo_hint: Optional geography used to scope results.

        Returns:
            List of results, empty when nothing was found.

        Raises:
            SearchError: If the provider call fails.
        """
        ...

    async def close(self) -> None:
        ...


class NullSearchClient:
    """Search client used when no provider is configured."""

    @property
    def available(self) -> bool:
        return False

    async def search(self, query: str, geo_hint: str | None = None) -> list[SearchResult]:
        return []

    async def close(self) -> None:
        return None


class _RetryableSearchError(SearchError):
    pass


class TavilySearchClient:
    """Web search via the Tavily search API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.tavily.com/search",
        max_results: int = 5,
        search_depth: str = "basic",
        timeout: float = REQUEST_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_key: Tavily API key.
            base_url: Search endpoint.
            max_results: Results requested per query.
            search_depth: "basic" or "advanced".
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (used by tests).
        """
        self.api_key = api_key
        self.base_url = base_url
        self.max_results = max_results
        self.search_depth = search_depth
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def available(self) -> bool:
        return True

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"User-Agent": USER_AGENT},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @retry(
        retry=retry_if_exception_type(_RetryableSearchError),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=8),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        client = await self._get_client()
        try:
            response = await client.post(self.base_url, json=payload)
        except httpx.TimeoutException as e:
            raise _RetryableSearchError(
                "Search request timed out",
                context={"capability": "web_search", "reason": "timeout"},
            ) from e
        except httpx.TransportError as e:
            raise _RetryableSearchError(
                f"Search transport error: {e}",
                context={"capability": "web_search", "reason": "transport"},
            ) from e

        if response.status_code == 429 or response.status_code >= 500:
            raise _RetryableSearchError(
                f"Search provider returned HTTP {response.status_code}",
                context={"capability": "web_search", "reason": "http_status"},
            )
        if response.status_code >= 400:
            raise SearchError(
                f"Search provider rejected the request (HTTP {response.status_code})",
                context={"capability": "web_search", "reason": "http_status"},
            )
        try:
            return response.json()
        except ValueError as e:
            raise SearchError(
                "Search provider returned invalid JSON",
                context={"capability": "web_search", "reason": "invalid_json"},
            ) from e

    async def search(self, query: str, geo_hint: str | None = None) -> list[SearchResult]:
        """Search the web via Tavily."""
        scoped = query
        if geo_hint and geo_hint.casefold() not in query.casefold():
            scoped = f"{query} {geo_hint}"

        payload = {
            "api_key": self.api_key,
            "query": scoped,
            "max_results": self.max_results,
            "search_depth": self.search_depth,
            "include_raw_content": False,
        }
        data = await self._post(payload)

        results: list[SearchResult] = []
        for item in data.get("results", []) or []:
            url = item.get("url") or ""
            if not url:
                continue
            results.append(
                SearchResult(
                    title=(item.get("title") or url).strip(),
                    url=url,
                    snippet=(item.get("content") or "").strip(),
                    source=_domain(url),
                )
            )

        logger.debug("Web search complete", query=scoped, results=len(results))
        return results
