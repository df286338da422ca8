"""
Web search client.

Providers:
- Serper (primary when its key is configured): POST JSON, results in `organic`
- Brave: GET query string, results in `web.results`

When Serper fails and a Brave key exists, the same query is retried once
against Brave; fallback results are not cached. The configured result cap is
enforced at the boundary for fresh and cached results alike, and empty
result sets are cached too.
"""
import time
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlparse

import httpx

from multimodal.core.cache import TTLCache, make_cache_key
from multimodal.core.config import WebSearchSettings
from multimodal.core.errors import ErrorCode, ProviderError, is_retryable_status, service_unavailable
from multimodal.core.logging import get_logger
from multimodal.core.metrics import (
    record_cache_hit,
    record_cache_miss,
    record_provider_cost,
    record_provider_request,
)
from multimodal.core.tracing import get_tracer
from multimodal.models.responses import SearchResult
from multimodal.services.ai.schema import WebSearchUsageStats

logger = get_logger(__name__)

PROVIDER_SERPER = "serper"
PROVIDER_BRAVE = "brave"
SUPPORTED_PROVIDERS = (PROVIDER_SERPER, PROVIDER_BRAVE)

SERPER_ENDPOINT = "https://google.serper.dev/search"
BRAVE_ENDPOINT = "https://api.search.brave.com/res/v1/web/search"


def _hostname(url: str) -> str:
    return urlparse(url).hostname or ""


def format_search_results(results: List[SearchResult]) -> str:
    """
    Render results as a numbered citation block for prompt context.

    Example:
        Web Search Results:

        1. Wind power
           Source: en.wikipedia.org
           Wind power is the use of wind energy...
           URL: https://en.wikipedia.org/wiki/Wind_power
    """
    if not results:
        return ""

    lines = ["Web Search Results:", ""]
    for index, result in enumerate(results, start=1):
        lines.append(f"{index}. {result.title}")
        lines.append(f"   Source: {result.source}")
        lines.append(f"   {result.snippet}")
        lines.append(f"   URL: {result.url}")
        lines.append("")
    return "\n".join(lines)


class WebSearchClient:
    """Cached web search with a fixed result cap and provider fallback."""

    def __init__(
        self,
        settings: WebSearchSettings,
        provider: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if provider is None:
            if settings.serper_api_key:
                provider = PROVIDER_SERPER
            elif settings.brave_api_key:
                provider = PROVIDER_BRAVE
            else:
                raise service_unavailable("Web search")

        if provider not in SUPPORTED_PROVIDERS:
            raise ProviderError(
                ErrorCode.UNSUPPORTED_PROVIDER,
                f"Unsupported search provider: {provider}",
                retryable=False,
            )

        self.settings = settings
        self.provider = provider
        self.max_results = settings.max_results
        self.cache_enabled = settings.cache_enabled

        self._http = http_client or httpx.AsyncClient(timeout=settings.timeout_seconds)
        self._cache: TTLCache[List[SearchResult]] = TTLCache(
            default_ttl=settings.cache_ttl_seconds,
            name="web_search",
            clock=clock,
        )
        self._usage = WebSearchUsageStats()

    @property
    def cache(self) -> TTLCache:
        return self._cache

    @property
    def fallback_provider(self) -> Optional[str]:
        """Brave backs up Serper when its key is configured."""
        if self.provider == PROVIDER_SERPER and self.settings.brave_api_key:
            return PROVIDER_BRAVE
        return None

    def _effective_cap(self, max_results: Optional[int]) -> int:
        return max(1, min(max_results or self.max_results, self.max_results))

    def _cache_key(self, query: str, cap: int, freshness: Optional[str]) -> str:
        return make_cache_key("search", self.provider, query, cap, freshness or "any")

    def get_cached_result(
        self,
        query: str,
        max_results: Optional[int] = None,
        freshness: Optional[str] = None,
    ) -> Optional[List[SearchResult]]:
        """Cached results for a query, or None on miss (counts as a cache hit when found)."""
        if not self.cache_enabled:
            return None

        cap = self._effective_cap(max_results)
        cached = self._cache.get(self._cache_key(query, cap, freshness))
        if cached is None:
            return None

        self._usage.cache_hits += 1
        record_cache_hit("web_search")
        return list(cached[:cap])

    async def _send(
        self,
        provider: str,
        error_code: str,
        request: Callable[[], Any],
    ) -> Dict[str, Any]:
        start = time.perf_counter()
        outcome = "error"
        try:
            try:
                response = await request()
            except httpx.HTTPError as exc:
                raise ProviderError(
                    ErrorCode.NETWORK_ERROR,
                    f"{provider} request failed: {exc}",
                    retryable=True,
                ) from exc

            if response.status_code >= 400:
                try:
                    detail = response.json().get("message")
                except (ValueError, AttributeError):
                    detail = None
                raise ProviderError(
                    error_code,
                    detail or f"{provider} API error: {response.status_code}",
                    retryable=is_retryable_status(response.status_code),
                    status_code=response.status_code,
                )

            try:
                data = response.json()
            except ValueError as exc:
                raise ProviderError(
                    error_code,
                    f"{provider} returned invalid JSON",
                    retryable=False,
                    status_code=response.status_code,
                ) from exc

            outcome = "success"
            return data if isinstance(data, dict) else {}
        finally:
            record_provider_request(provider, outcome, time.perf_counter() - start)

    async def _search_serper(self, query: str, cap: int) -> List[SearchResult]:
        headers = {"X-API-KEY": self.settings.serper_api_key or "", "Content-Type": "application/json"}
        data = await self._send(
            PROVIDER_SERPER,
            ErrorCode.SERPER_API_ERROR,
            lambda: self._http.post(SERPER_ENDPOINT, headers=headers, json={"q": query, "num": cap}),
        )
        return [
            SearchResult(
                title=item.get("title") or "",
                url=item.get("link") or "",
                snippet=item.get("snippet") or "",
                source=_hostname(item.get("link") or ""),
                published_date=item.get("date"),
            )
            for item in (data.get("organic") or [])[:cap]
        ]

    async def _search_brave(self, query: str, cap: int, freshness: Optional[str]) -> List[SearchResult]:
        headers = {"X-Subscription-Token": self.settings.brave_api_key or "", "Accept": "application/json"}
        params: Dict[str, Any] = {"q": query, "count": cap}
        if freshness:
            params["freshness"] = freshness

        data = await self._send(
            PROVIDER_BRAVE,
            ErrorCode.BRAVE_API_ERROR,
            lambda: self._http.get(BRAVE_ENDPOINT, headers=headers, params=params),
        )
        items = (data.get("web") or {}).get("results") or []
        return [
            SearchResult(
                title=item.get("title") or "",
                url=item.get("url") or "",
                snippet=item.get("description") or "",
                source=_hostname(item.get("url") or ""),
                published_date=item.get("age"),
            )
            for item in items[:cap]
        ]

    async def _search_provider(
        self,
        provider: str,
        query: str,
        cap: int,
        freshness: Optional[str],
    ) -> List[SearchResult]:
        if provider == PROVIDER_SERPER:
            return await self._search_serper(query, cap)
        return await self._search_brave(query, cap, freshness)

    async def search(
        self,
        query: str,
        max_results: Optional[int] = None,
        freshness: Optional[str] = None,
    ) -> List[SearchResult]:
        """
        Search the web.

        Args:
            query: Search text
            max_results: Requested count; never exceeds the configured cap
            freshness: Recency filter (Brave only, e.g. "pd", "pw")

        Returns:
            At most the configured number of SearchResult items (may be empty)

        Raises:
            ProviderError: when the primary (and fallback, if any) provider fails
        """
        cap = self._effective_cap(max_results)

        cached = self.get_cached_result(query, max_results, freshness)
        if cached is not None:
            logger.debug("web_search_cache_hit", provider=self.provider, results=len(cached))
            return cached

        self._usage.cache_misses += 1
        self._usage.total_searches += 1
        self._usage.estimated_cost += self.settings.cost_per_search
        record_cache_miss("web_search")
        record_provider_cost(self.provider, self.settings.cost_per_search)

        with get_tracer().start_as_current_span("web_search.search") as span:
            span.set_attribute("search.provider", self.provider)
            span.set_attribute("search.max_results", cap)

            try:
                results = await self._search_provider(self.provider, query, cap, freshness)
            except ProviderError as exc:
                fallback = self.fallback_provider
                if fallback is None:
                    logger.warning(
                        "web_search_failed",
                        provider=self.provider,
                        error_code=exc.code,
                        error=exc.message,
                    )
                    raise

                logger.warning(
                    "web_search_fallback",
                    provider=self.provider,
                    fallback_provider=fallback,
                    error_code=exc.code,
                    error=exc.message,
                )
                self._usage.fallback_searches += 1
                results = await self._search_provider(fallback, query, cap, freshness)
                return results[:cap]

            results = results[:cap]
            span.set_attribute("search.results", len(results))

        if self.cache_enabled:
            self._cache.set(self._cache_key(query, cap, freshness), results)

        return list(results)

    def get_usage_stats(self) -> WebSearchUsageStats:
        return self._usage.model_copy()

    def reset_usage_stats(self) -> None:
        self._usage = WebSearchUsageStats()

    def clear_cache(self) -> None:
        self._cache.clear()

    async def aclose(self) -> None:
        await self._http.aclose()
