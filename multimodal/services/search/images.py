"""
Stock-photo search client (Unsplash).

Same cache and result-cap discipline as the web search client, against a
single provider with no fallback. Retrieval is free, so usage stats track
only search counts and cache hits/misses.
"""
import time
from typing import Any, Callable, Dict, List, Optional

import httpx

from multimodal.core.cache import TTLCache, make_cache_key
from multimodal.core.config import ImageSearchSettings
from multimodal.core.errors import ErrorCode, ProviderError, is_retryable_status, service_unavailable
from multimodal.core.logging import get_logger
from multimodal.core.metrics import record_cache_hit, record_cache_miss, record_provider_request
from multimodal.core.tracing import get_tracer
from multimodal.models.responses import RetrievedImage
from multimodal.services.ai.schema import ImageSearchUsageStats

logger = get_logger(__name__)

PROVIDER = "unsplash"
UNSPLASH_ENDPOINT = "https://api.unsplash.com/search/photos"


def _to_image(item: Dict[str, Any]) -> RetrievedImage:
    urls = item.get("urls") or {}
    user = item.get("user") or {}
    return RetrievedImage(
        id=str(item.get("id", "")),
        url=urls.get("regular") or "",
        thumbnail_url=urls.get("thumb") or "",
        description=item.get("description") or item.get("alt_description") or "",
        photographer=user.get("name") or "",
        photographer_url=(user.get("links") or {}).get("html") or "",
        source_page_url=(item.get("links") or {}).get("html") or "",
        width=int(item.get("width") or 0),
        height=int(item.get("height") or 0),
    )


def _error_detail(response: httpx.Response) -> Optional[str]:
    try:
        errors = response.json().get("errors")
    except (ValueError, AttributeError):
        return None
    if isinstance(errors, list) and errors:
        return str(errors[0])
    return None


class ImageSearchClient:
    """Cached stock-photo search with a fixed result cap."""

    def __init__(
        self,
        settings: ImageSearchSettings,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not settings.access_key:
            raise service_unavailable("Image search")

        self.settings = settings
        self.max_results = settings.max_results
        self.cache_enabled = settings.cache_enabled

        self._http = http_client or httpx.AsyncClient(timeout=settings.timeout_seconds)
        self._cache: TTLCache[List[RetrievedImage]] = TTLCache(
            default_ttl=settings.cache_ttl_seconds,
            name="image_search",
            clock=clock,
        )
        self._usage = ImageSearchUsageStats()

    @property
    def cache(self) -> TTLCache:
        return self._cache

    def _effective_cap(self, max_results: Optional[int]) -> int:
        return max(1, min(max_results or self.max_results, self.max_results))

    def _cache_key(self, query: str, cap: int, orientation: Optional[str]) -> str:
        return make_cache_key("images", query, cap, orientation or "any")

    def get_cached_result(
        self,
        query: str,
        max_results: Optional[int] = None,
        orientation: Optional[str] = None,
    ) -> Optional[List[RetrievedImage]]:
        if not self.cache_enabled:
            return None

        cap = self._effective_cap(max_results)
        cached = self._cache.get(self._cache_key(query, cap, orientation))
        if cached is None:
            return None

        self._usage.cache_hits += 1
        record_cache_hit("image_search")
        return list(cached[:cap])

    async def search_images(
        self,
        query: str,
        max_results: Optional[int] = None,
        orientation: Optional[str] = None,
    ) -> List[RetrievedImage]:
        """
        Search stock photos.

        Args:
            query: Search text
            max_results: Requested count; never exceeds the configured cap
            orientation: landscape | portrait | squarish

        Returns:
            At most the configured number of RetrievedImage items (may be empty)

        Raises:
            ProviderError: UNSPLASH_API_ERROR or NETWORK_ERROR
        """
        cap = self._effective_cap(max_results)

        cached = self.get_cached_result(query, max_results, orientation)
        if cached is not None:
            logger.debug("image_search_cache_hit", results=len(cached))
            return cached

        self._usage.cache_misses += 1
        self._usage.total_searches += 1
        record_cache_miss("image_search")

        params: Dict[str, Any] = {"query": query, "per_page": cap}
        if orientation:
            params["orientation"] = orientation
        headers = {
            "Authorization": f"Client-ID {self.settings.access_key}",
            "Accept-Version": "v1",
        }

        start = time.perf_counter()
        outcome = "error"
        with get_tracer().start_as_current_span("image_search.search") as span:
            span.set_attribute("image_search.max_results", cap)
            try:
                try:
                    response = await self._http.get(UNSPLASH_ENDPOINT, headers=headers, params=params)
                except httpx.HTTPError as exc:
                    raise ProviderError(
                        ErrorCode.NETWORK_ERROR,
                        f"Failed to search images: {exc}",
                        retryable=True,
                    ) from exc

                if response.status_code >= 400:
                    raise ProviderError(
                        ErrorCode.UNSPLASH_API_ERROR,
                        _error_detail(response) or f"Unsplash API error: {response.status_code}",
                        retryable=is_retryable_status(response.status_code),
                        status_code=response.status_code,
                    )

                try:
                    items = response.json().get("results") or []
                except (ValueError, AttributeError) as exc:
                    raise ProviderError(
                        ErrorCode.UNSPLASH_API_ERROR,
                        "Unsplash returned invalid JSON",
                        retryable=False,
                        status_code=response.status_code,
                    ) from exc

                results = [_to_image(item) for item in items[:cap]]
                outcome = "success"
            except ProviderError as exc:
                logger.warning("image_search_failed", error_code=exc.code, error=exc.message)
                raise
            finally:
                record_provider_request(PROVIDER, outcome, time.perf_counter() - start)

            span.set_attribute("image_search.results", len(results))

        if self.cache_enabled:
            self._cache.set(self._cache_key(query, cap, orientation), results)

        return list(results)

    def get_usage_stats(self) -> ImageSearchUsageStats:
        return self._usage.model_copy()

    def reset_usage_stats(self) -> None:
        self._usage = ImageSearchUsageStats()

    def clear_cache(self) -> None:
        self._cache.clear()

    async def aclose(self) -> None:
        await self._http.aclose()
