"""
Unit tests for the web search client (Serper primary, Brave fallback).
"""
import json
from typing import Any, Dict, List

import httpx
import pytest

from multimodal.core.config import WebSearchSettings
from multimodal.core.errors import ErrorCode, ProviderError
from multimodal.models.responses import SearchResult
from multimodal.services.search.web import WebSearchClient, format_search_results


def serper_payload(count: int) -> Dict[str, Any]:
    return {
        "organic": [
            {
                "title": f"Result {i}",
                "link": f"https://news{i}.example.com/wind/{i}",
                "snippet": f"Snippet {i}",
                "date": "2 days ago",
            }
            for i in range(count)
        ]
    }


def brave_payload(count: int) -> Dict[str, Any]:
    return {
        "web": {
            "results": [
                {
                    "title": f"Brave {i}",
                    "url": f"https://brave{i}.example.org/page",
                    "description": f"Description {i}",
                    "age": "1 day ago",
                }
                for i in range(count)
            ]
        }
    }


class ProviderRouter:
    """Routes MockTransport requests by host and records them."""

    def __init__(self, serper=None, brave=None):
        self.serper = serper
        self.brave = brave
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.serper if request.url.host == "google.serper.dev" else self.brave
        return httpx.Response(response.status_code, headers=response.headers, content=response.content)

    def hosts(self) -> List[str]:
        return [request.url.host for request in self.requests]


def make_client(router: ProviderRouter, **overrides) -> WebSearchClient:
    options = {"serper_api_key": "serper-key"}
    options.update(overrides)
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(router))
    return WebSearchClient(WebSearchSettings(**options), http_client=http_client)


@pytest.mark.asyncio
async def test_serper_search_maps_results():
    router = ProviderRouter(serper=httpx.Response(200, json=serper_payload(2)))
    client = make_client(router)

    results = await client.search("wind turbines")

    assert client.provider == "serper"
    assert [r.title for r in results] == ["Result 0", "Result 1"]
    assert results[0].url == "https://news0.example.com/wind/0"
    assert results[0].source == "news0.example.com"
    assert results[0].snippet == "Snippet 0"
    assert results[0].published_date == "2 days ago"

    request = router.requests[0]
    assert request.method == "POST"
    assert request.headers["X-API-KEY"] == "serper-key"
    assert json.loads(request.content) == {"q": "wind turbines", "num": 3}
    await client.aclose()


@pytest.mark.asyncio
@pytest.mark.parametrize("upstream_count", [0, 1, 3, 5, 20])
async def test_result_count_never_exceeds_cap(upstream_count):
    router = ProviderRouter(serper=httpx.Response(200, json=serper_payload(upstream_count)))
    client = make_client(router, max_results=3)

    fresh = await client.search("wind turbines", max_results=10)
    cached = await client.search("wind turbines", max_results=10)

    assert len(fresh) == min(upstream_count, 3)
    assert len(cached) == len(fresh)
    await client.aclose()


@pytest.mark.asyncio
async def test_smaller_requested_count_is_honoured():
    router = ProviderRouter(serper=httpx.Response(200, json=serper_payload(5)))
    client = make_client(router)

    results = await client.search("wind turbines", max_results=1)

    assert len(results) == 1
    assert json.loads(router.requests[0].content)["num"] == 1
    await client.aclose()


@pytest.mark.asyncio
@pytest.mark.parametrize("requested", [-1, -5])
async def test_negative_requested_count_is_clamped(requested):
    router = ProviderRouter(serper=httpx.Response(200, json=serper_payload(20)))
    client = make_client(router)

    results = await client.search("wind turbines", max_results=requested)

    assert len(results) == 1
    assert json.loads(router.requests[0].content)["num"] == 1
    await client.aclose()


@pytest.mark.asyncio
async def test_empty_results_are_cached():
    router = ProviderRouter(serper=httpx.Response(200, json={"organic": []}))
    client = make_client(router)

    assert await client.search("obscure query") == []
    assert await client.search("obscure query") == []

    assert len(router.requests) == 1
    stats = client.get_usage_stats()
    assert stats.cache_hits == 1
    assert stats.cache_misses == 1
    assert stats.total_searches == 1
    assert stats.estimated_cost == pytest.approx(0.001)
    await client.aclose()


@pytest.mark.asyncio
async def test_get_cached_result():
    router = ProviderRouter(serper=httpx.Response(200, json=serper_payload(2)))
    client = make_client(router)

    assert client.get_cached_result("wind turbines") is None
    await client.search("wind turbines")

    cached = client.get_cached_result("wind turbines")
    assert cached is not None
    assert len(cached) == 2

    client.clear_cache()
    assert client.get_cached_result("wind turbines") is None
    await client.aclose()


@pytest.mark.asyncio
async def test_serper_failure_falls_back_to_brave_uncached():
    router = ProviderRouter(
        serper=httpx.Response(500, json={"message": "internal"}),
        brave=httpx.Response(200, json=brave_payload(5)),
    )
    client = make_client(router, brave_api_key="brave-key")

    results = await client.search("wind turbines")
    await client.search("wind turbines")

    assert [r.title for r in results] == ["Brave 0", "Brave 1", "Brave 2"]
    assert results[0].source == "brave0.example.org"
    assert router.hosts() == [
        "google.serper.dev",
        "api.search.brave.com",
        "google.serper.dev",
        "api.search.brave.com",
    ]
    assert router.requests[1].headers["X-Subscription-Token"] == "brave-key"
    assert client.get_usage_stats().fallback_searches == 2
    await client.aclose()


@pytest.mark.asyncio
async def test_serper_failure_without_fallback_propagates():
    router = ProviderRouter(serper=httpx.Response(503, json={"message": "unavailable"}))
    client = make_client(router)

    with pytest.raises(ProviderError) as exc_info:
        await client.search("wind turbines")

    assert exc_info.value.code == ErrorCode.SERPER_API_ERROR
    assert exc_info.value.retryable is True
    assert exc_info.value.message == "unavailable"
    assert len(router.requests) == 1
    await client.aclose()


@pytest.mark.asyncio
async def test_client_error_is_not_retryable():
    router = ProviderRouter(serper=httpx.Response(403, json={}))
    client = make_client(router)

    with pytest.raises(ProviderError) as exc_info:
        await client.search("wind turbines")

    assert exc_info.value.retryable is False
    assert "403" in exc_info.value.message
    await client.aclose()


@pytest.mark.asyncio
async def test_brave_primary_sends_freshness():
    router = ProviderRouter(brave=httpx.Response(200, json=brave_payload(1)))
    client = make_client(router, serper_api_key=None, brave_api_key="brave-key")

    results = await client.search("election results", freshness="pd")

    assert client.provider == "brave"
    assert client.fallback_provider is None
    assert len(results) == 1
    params = router.requests[0].url.params
    assert params["q"] == "election results"
    assert params["count"] == "3"
    assert params["freshness"] == "pd"
    await client.aclose()


def test_missing_credentials_raise_service_unavailable():
    with pytest.raises(ProviderError) as exc_info:
        WebSearchClient(WebSearchSettings())

    assert exc_info.value.code == ErrorCode.SERVICE_UNAVAILABLE


def test_unsupported_provider():
    with pytest.raises(ProviderError) as exc_info:
        WebSearchClient(WebSearchSettings(serper_api_key="key"), provider="bing")

    assert exc_info.value.code == ErrorCode.UNSUPPORTED_PROVIDER
    assert exc_info.value.retryable is False


def test_format_search_results():
    results = [
        SearchResult(
            title="Wind power",
            url="https://en.wikipedia.org/wiki/Wind_power",
            snippet="Wind power is the use of wind energy.",
            source="en.wikipedia.org",
        )
    ]

    text = format_search_results(results)

    assert text.startswith("Web Search Results:\n\n1. Wind power\n")
    assert "   Source: en.wikipedia.org\n" in text
    assert "   URL: https://en.wikipedia.org/wiki/Wind_power" in text
    assert format_search_results([]) == ""
