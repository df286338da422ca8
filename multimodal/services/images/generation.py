"""
Image generation client (OpenAI-compatible /images/generations).

Every uncached call races the upstream request against a fixed timeout.
On timeout the caller gets a retryable GENERATION_TIMEOUT while the upstream
request keeps running in the background (it is shielded, not cancelled);
abandoned requests are tracked and only cancelled by `aclose()`.

Cost model (USD per image):
- dall-e-2: 0.02
- dall-e-3: 0.04 standard, 0.08 hd
"""
import asyncio
import time
from typing import Any, Callable, Dict, Optional, Set

import httpx

from multimodal.core.cache import TTLCache, make_cache_key
from multimodal.core.config import ImageGenerationSettings
from multimodal.core.errors import ErrorCode, ProviderError, is_retryable_status, service_unavailable
from multimodal.core.logging import get_logger
from multimodal.core.metrics import (
    record_cache_hit,
    record_cache_miss,
    record_generation_timeout,
    record_provider_cost,
    record_provider_request,
)
from multimodal.core.tracing import get_tracer
from multimodal.models.responses import GeneratedImage
from multimodal.services.ai.schema import ImageGenUsageStats
from multimodal.services.images.compression import CompressionError, compress_image_url

logger = get_logger(__name__)

PROVIDER = "image_generation"

MODEL_DALLE_2 = "dall-e-2"
MODEL_DALLE_3 = "dall-e-3"

COST_PER_IMAGE = {
    MODEL_DALLE_2: {"standard": 0.02, "hd": 0.02},
    MODEL_DALLE_3: {"standard": 0.04, "hd": 0.08},
}


def calculate_cost(model: str, quality: Optional[str] = None) -> float:
    """Per-image USD estimate for a model and quality tier."""
    tiers = COST_PER_IMAGE.get(model, COST_PER_IMAGE[MODEL_DALLE_2])
    return tiers["hd"] if quality == "hd" else tiers["standard"]


def _consume_result(task: "asyncio.Task") -> None:
    # Abandoned requests may fail after their caller has gone.
    if not task.cancelled() and task.exception() is not None:
        logger.debug("image_generation_abandoned_request_failed", error=str(task.exception()))


class ImageGenerationClient:
    """Generates images with timeout racing, caching and optional compression."""

    def __init__(
        self,
        settings: ImageGenerationSettings,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not settings.api_key:
            raise service_unavailable("Image generation")
        if settings.model not in COST_PER_IMAGE:
            raise ProviderError(
                ErrorCode.UNSUPPORTED_PROVIDER,
                f"Unsupported image generation model: {settings.model}",
                retryable=False,
            )

        self.settings = settings
        self.model = settings.model
        self.api_base = settings.api_base.rstrip("/")
        self.default_size = settings.default_size
        self.timeout_seconds = settings.timeout_seconds

        # The race timeout is enforced separately; the transport only guards against hangs.
        self._http = http_client or httpx.AsyncClient(timeout=max(settings.timeout_seconds * 4, 120.0))
        self._cache: TTLCache[GeneratedImage] = TTLCache(
            default_ttl=float("inf"),
            name="image_generation",
            clock=clock,
        )
        self._usage = ImageGenUsageStats()
        self._completed = 0
        self._pending: Set[asyncio.Task] = set()

    @property
    def cache(self) -> TTLCache:
        return self._cache

    @property
    def pending_requests(self) -> int:
        """Upstream requests still running, including ones abandoned after a timeout."""
        return len(self._pending)

    def _cache_key(self, prompt: str, size: str, quality: Optional[str]) -> str:
        return make_cache_key("generation", self.model, prompt, size, quality or "standard")

    def _build_body(self, prompt: str, size: str, quality: Optional[str], n: int) -> Dict[str, Any]:
        body: Dict[str, Any] = {"model": self.model, "prompt": prompt, "n": n, "size": size}
        if self.model == MODEL_DALLE_3:
            body["quality"] = quality or "standard"
        return body

    async def _request(self, body: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.api_base}/images/generations"
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.settings.api_key}",
        }

        start = time.perf_counter()
        outcome = "error"
        try:
            try:
                response = await self._http.post(url, headers=headers, json=body)
            except httpx.HTTPError as exc:
                raise ProviderError(
                    ErrorCode.NETWORK_ERROR,
                    f"Failed to generate image: {exc}",
                    retryable=True,
                ) from exc

            if response.status_code >= 400:
                try:
                    detail = (response.json().get("error") or {}).get("message")
                except (ValueError, AttributeError):
                    detail = None
                raise ProviderError(
                    ErrorCode.IMAGE_GENERATION_API_ERROR,
                    detail or f"Image generation API error: {response.status_code}",
                    retryable=is_retryable_status(response.status_code),
                    status_code=response.status_code,
                )

            try:
                data = response.json()
            except ValueError as exc:
                raise ProviderError(
                    ErrorCode.IMAGE_GENERATION_API_ERROR,
                    "Image generation returned invalid JSON",
                    retryable=False,
                    status_code=response.status_code,
                ) from exc

            outcome = "success"
            return data if isinstance(data, dict) else {}
        finally:
            record_provider_request(PROVIDER, outcome, time.perf_counter() - start)

    async def _compress(self, url: str) -> Optional[str]:
        if not self.settings.compression_enabled:
            return None
        try:
            return await compress_image_url(self._http, url, self.settings.compression_quality)
        except CompressionError as exc:
            logger.warning("image_compression_failed", error=str(exc))
            return None

    async def generate_image(
        self,
        prompt: str,
        size: Optional[str] = None,
        quality: Optional[str] = None,
        n: int = 1,
    ) -> GeneratedImage:
        """
        Generate one image.

        Args:
            prompt: Text prompt
            size: e.g. "512x512" (defaults to the configured size)
            quality: "standard" | "hd" (dall-e-3 only)
            n: Images requested upstream; only the first is returned

        Returns:
            GeneratedImage; identical (prompt, size, quality) requests are served
            from the cache without cost or another race.

        Raises:
            ProviderError: GENERATION_TIMEOUT, IMAGE_GENERATION_API_ERROR,
            NETWORK_ERROR or NO_IMAGE_GENERATED
        """
        size = size or self.default_size
        cache_key = self._cache_key(prompt, size, quality)

        cached = self._cache.get(cache_key)
        if cached is not None:
            self._usage.cache_hits += 1
            record_cache_hit("image_generation")
            logger.debug("image_generation_cache_hit", model=self.model, size=size)
            # A cached image was already paid for.
            return cached.model_copy(update={"cost": 0.0})
        record_cache_miss("image_generation")

        self._usage.total_generations += 1
        body = self._build_body(prompt, size, quality, n)

        with get_tracer().start_as_current_span("image_generation.generate") as span:
            span.set_attribute("image_generation.model", self.model)
            span.set_attribute("image_generation.size", size)

            start = time.perf_counter()
            task = asyncio.create_task(self._request(body))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            task.add_done_callback(_consume_result)

            try:
                data = await asyncio.wait_for(asyncio.shield(task), timeout=self.timeout_seconds)
            except asyncio.TimeoutError:
                elapsed = time.perf_counter() - start
                self._usage.timeouts += 1
                record_generation_timeout()
                logger.warning(
                    "image_generation_timeout",
                    model=self.model,
                    timeout_seconds=self.timeout_seconds,
                    elapsed_seconds=round(elapsed, 3),
                )
                raise ProviderError(
                    ErrorCode.GENERATION_TIMEOUT,
                    f"Image generation timed out after {self.timeout_seconds:g} seconds",
                    retryable=True,
                ) from None
            except ProviderError as exc:
                logger.warning("image_generation_failed", error_code=exc.code, error=exc.message)
                raise

            items = data.get("data") or []
            if not items:
                raise ProviderError(
                    ErrorCode.NO_IMAGE_GENERATED,
                    "Image generation did not return any images",
                    retryable=False,
                )

            elapsed_ms = (time.perf_counter() - start) * 1000
            self._completed += 1
            self._usage.average_generation_time_ms = (
                self._usage.average_generation_time_ms * (self._completed - 1) + elapsed_ms
            ) / self._completed

            cost = calculate_cost(self.model, quality) * len(items)
            self._usage.estimated_cost += cost
            record_provider_cost(PROVIDER, cost)

            first = items[0]
            url = first.get("url") or ""
            image = GeneratedImage(
                url=url,
                compressed_url=await self._compress(url) if url else None,
                revised_prompt=first.get("revised_prompt"),
                size=size,
                cost=cost,
            )
            span.set_attribute("image_generation.cost_usd", cost)

        self._cache.set(cache_key, image)
        return image

    def get_usage_stats(self) -> ImageGenUsageStats:
        return self._usage.model_copy()

    def reset_usage_stats(self) -> None:
        self._usage = ImageGenUsageStats()
        self._completed = 0

    def clear_cache(self) -> None:
        self._cache.clear()

    async def aclose(self) -> None:
        """Cancel abandoned upstream requests and close the transport."""
        pending = list(self._pending)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        await self._http.aclose()
