"""
Tests for the Tavily web search adapter.
"""

from __future__ import annotations

import json

import httpx
import pytest

from rp.capabilities.search import NullSearchClient, TavilySearchClient
from rp.exceptions import SearchError


def _client(handler) -> TavilySearchClient:
    return TavilySearchClient(api_key="tvly-test", transport=httpx.MockTransport(handler))


class TestTavilySearchClient:
    """Tests for TavilySearchClient."""

    @pytest.mark.asyncio
    async def test_parses_results(self) -> None:
        requests: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(json.loads(request.content))
            return httpx.Response(
                200,
                json={
                    "results": [
                        {"title": " EV demand ", "url": "https://www.iea.org/ev", "content": " Sales rose 35% "},
                        {"title": "", "url": "https://acea.auto/data", "content": None},
                        {"title": "No url", "url": ""},
                    ]
                },
            )

        client = _client(handler)
        try:
            results = await client.search("EV demand", geo_hint="Europe")
        finally:
            await client.close()

        assert requests[0]["query"] == "EV demand Europe"
        assert requests[0]["api_key"] == "tvly-test"
        assert requests[0]["include_raw_content"] is False
        assert [r.url for r in results] == ["https://www.iea.org/ev", "https://acea.auto/data"]
        assert results[0].title == "EV demand"
        assert results[0].snippet == "Sales rose 35%"
        assert results[0].source == "iea.org"
        assert results[1].title == "https://acea.auto/data"
        assert results[1].snippet == ""

    @pytest.mark.asyncio
    async def test_geo_hint_not_repeated(self) -> None:
        queries: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            queries.append(json.loads(request.content)["query"])
            return httpx.Response(200, json={"results": []})

        client = _client(handler)
        assert await client.search("battery market europe", geo_hint="Europe") == []
        await client.close()

        assert queries == ["battery market europe"]

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(401, json={"detail": "bad key"})

        client = _client(handler)
        with pytest.raises(SearchError) as exc_info:
            await client.search("ev")
        await client.close()

        assert calls == 1
        assert exc_info.value.message == "Search provider rejected the request (HTTP 401)"

    @pytest.mark.asyncio
    async def test_server_error_retried_then_raised(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(503)

        client = _client(handler)
        with pytest.raises(SearchError):
            await client.search("ev")
        await client.close()

        assert calls == 3

    @pytest.mark.asyncio
    async def test_recovers_after_rate_limit(self) -> None:
        responses = iter([httpx.Response(429), httpx.Response(200, json={"results": [{"url": "https://a.example"}]})])

        client = _client(lambda request: next(responses))
        results = await client.search("ev")
        await client.close()

        assert [r.url for r in results] == ["https://a.example"]

    @pytest.mark.asyncio
    async def test_invalid_json(self) -> None:
        client = _client(lambda request: httpx.Response(200, content=b"<html>"))

        with pytest.raises(SearchError) as exc_info:
            await client.search("ev")
        await client.close()

        assert exc_info.value.context["reason"] == "invalid_json"


class TestNullSearchClient:
    @pytest.mark.asyncio
    async def test_returns_nothing(self) -> None:
        client = NullSearchClient()

        assert not client.available
        assert await client.search("anything") == []
