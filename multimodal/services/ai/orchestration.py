"""
Multimodal orchestration layer.

Responsibilities:
- Decide which providers a request needs (keyword intent detection)
- Run web search before the chat call and inject its results as citations
- Always obtain the chat response before deciding on images, since image
  relevance also inspects the generated text
- Run optional provider branches with independent failure isolation
- Compose a single cost-annotated MultimodalResult
- Enforce a global concurrency cap with an in-memory FIFO queue
- Keep rolling performance and cost statistics

NON-responsibilities:
- Does NOT retry or rate-limit providers (each client owns that)
- Does NOT re-rank search results or images

Only the chat step is mandatory: its failure is raised to the caller as
ORCHESTRATION_ERROR. Every other branch degrades to an empty contribution.
"""
import asyncio
import time
from collections import deque
from typing import Any, Awaitable, Deque, Dict, List, Optional, Set, Tuple

from multimodal.core.cache import CacheSweeper, TTLCache, make_cache_key
from multimodal.core.config import OrchestratorSettings, Settings, load_settings
from multimodal.core.errors import ErrorCode, ProviderError, service_unavailable
from multimodal.core.logging import configure_logging, get_logger, request_context
from multimodal.core.metrics import (
    record_cache_hit,
    record_cache_miss,
    record_orchestrator_request,
    update_orchestrator_load,
)
from multimodal.core.tracing import get_tracer, record_exception
from multimodal.models.responses import (
    CostBreakdown,
    GeneratedImage,
    ImageSource,
    MultimodalResult,
    ResultMetadata,
    RetrievedImage,
    SearchResult,
)
from multimodal.services.ai.agents.intent import IntentDetector
from multimodal.services.ai.llm_client import ChatCompletionClient
from multimodal.services.ai.schema import (
    IntentDetectionResult,
    Message,
    MultimodalRequest,
    PerformanceMetrics,
    QueueStatus,
    usage_report,
)
from multimodal.services.images.generation import ImageGenerationClient
from multimodal.services.search.images import ImageSearchClient
from multimodal.services.search.web import WebSearchClient, format_search_results

logger = get_logger(__name__)

CITATION_INSTRUCTION = (
    "Please use the above search results to provide an accurate and up-to-date answer. "
    "Include source citations in your response."
)

BRANCH_IMAGE_SEARCH = "image_search"
BRANCH_GENERATION = "image_generation"


def _image_source(retrieved: int, generated: int) -> ImageSource:
    if retrieved and generated:
        return "both"
    if retrieved:
        return "unsplash"
    if generated:
        return "generated"
    return "none"


def _with_citations(messages: List[Message], results: List[SearchResult]) -> List[Message]:
    """Copy of messages whose last user turn carries the search context."""
    if not results:
        return messages

    context = format_search_results(results)
    enriched = list(messages)
    for index in range(len(enriched) - 1, -1, -1):
        if enriched[index].role == "user":
            original = enriched[index]
            enriched[index] = original.model_copy(
                update={"content": f"{original.content}\n\n{context}\n{CITATION_INSTRUCTION}"}
            )
            break
    return enriched


class MultimodalOrchestrator:
    """
    Composes chat, web search, image search and image generation.

    Missing optional clients (None) simply disable their branch.
    """

    def __init__(
        self,
        chat_client: ChatCompletionClient,
        web_search_client: Optional[WebSearchClient] = None,
        image_search_client: Optional[ImageSearchClient] = None,
        image_generation_client: Optional[ImageGenerationClient] = None,
        settings: Optional[OrchestratorSettings] = None,
        clock=time.monotonic,
    ):
        self.settings = settings or OrchestratorSettings()
        self.chat_client = chat_client
        self.web_search_client = web_search_client
        self.image_search_client = image_search_client
        self.image_generation_client = image_generation_client

        self.max_concurrent_requests = self.settings.max_concurrent_requests
        self.intent_detector = IntentDetector(
            max_images=self.settings.max_images,
            prefer_unsplash=self.settings.prefer_unsplash,
            image_search_available=image_search_client is not None,
        )

        self._cache: TTLCache[MultimodalResult] = TTLCache(
            default_ttl=self.settings.cache_ttl_seconds,
            name="multimodal",
            clock=clock,
        )
        self._sweeper = CacheSweeper([self._cache], self.settings.cache_sweep_interval_seconds)
        self._queue: Deque[Tuple[MultimodalRequest, asyncio.Future]] = deque()
        self._active_requests = 0
        self._dispatched: Set[asyncio.Task] = set()
        self._metrics = PerformanceMetrics()
        self._completed = 0

    async def __aenter__(self) -> "MultimodalOrchestrator":
        self.start_cache_sweeper()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def start_cache_sweeper(self) -> None:
        """Evict expired results periodically (requires a running event loop)."""
        self._sweeper.start()

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def process_request(self, request: MultimodalRequest) -> MultimodalResult:
        """
        Process one request, queueing FIFO while the concurrency cap is reached.

        Raises:
            ProviderError(ORCHESTRATION_ERROR) when the chat step fails.
        """
        if self._active_requests >= self.max_concurrent_requests:
            future: asyncio.Future = asyncio.get_running_loop().create_future()
            self._queue.append((request, future))
            self._publish_load()
            logger.info(
                "orchestrator_request_queued",
                queue_length=len(self._queue),
                active_requests=self._active_requests,
            )
            return await future

        self._active_requests += 1
        self._publish_load()
        try:
            return await self._process(request)
        finally:
            self._active_requests -= 1
            self._dispatch_next()

    def _dispatch_next(self) -> None:
        """Promote queued requests while capacity remains."""
        while self._queue and self._active_requests < self.max_concurrent_requests:
            request, future = self._queue.popleft()
            if future.done():
                continue
            self._active_requests += 1
            task = asyncio.create_task(self._process_queued(request, future))
            self._dispatched.add(task)
            task.add_done_callback(self._dispatched.discard)
        self._publish_load()

    async def _process_queued(self, request: MultimodalRequest, future: asyncio.Future) -> None:
        try:
            result = await self._process(request)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            if not future.done():
                future.set_exception(exc)
        else:
            if not future.done():
                future.set_result(result)
        finally:
            self._active_requests -= 1
            self._dispatch_next()

    def _publish_load(self) -> None:
        update_orchestrator_load(self._active_requests, len(self._queue))

    # ------------------------------------------------------------------
    # Request processing
    # ------------------------------------------------------------------

    def _cache_key(self, request: MultimodalRequest) -> str:
        history = [[m.role, m.content] for m in request.conversation_history]
        flags = {
            "force_web_search": request.force_web_search,
            "force_image_search": request.force_image_search,
            "force_image_gen": request.force_image_gen,
            "enable_proactive_images": request.enable_proactive_images,
        }
        return make_cache_key("multimodal", history, request.user_message, flags)

    async def _process(self, request: MultimodalRequest) -> MultimodalResult:
        start = time.perf_counter()
        with request_context() as request_id, get_tracer().start_as_current_span(
            "orchestrator.process_request"
        ) as span:
            span.set_attribute("orchestrator.request_id", request_id)

            cache_key = self._cache_key(request)
            cached = self._cache.get(cache_key)
            if cached is not None:
                record_cache_hit("multimodal")
                # Callers never share lists with the stored entry.
                result = cached.model_copy(
                    update={
                        "metadata": cached.metadata.model_copy(
                            update={"cache_hits": cached.metadata.cache_hits + 1}
                        )
                    },
                    deep=True,
                )
                self._metrics.cache_hits += 1
                self._record_success((time.perf_counter() - start) * 1000, 0.0, result.image_source)
                record_orchestrator_request("cache_hit")
                logger.info("orchestrator_cache_hit", cache_hits=result.metadata.cache_hits)
                return result
            record_cache_miss("multimodal")

            try:
                result = await self._compose(request, start)
            except Exception as exc:
                self._record_failure()
                record_orchestrator_request("error")
                record_exception(exc)
                logger.error(
                    "orchestrator_request_failed",
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                retryable = exc.retryable if isinstance(exc, ProviderError) else True
                raise ProviderError(
                    ErrorCode.ORCHESTRATION_ERROR,
                    f"Failed to process multimodal request: {exc}",
                    retryable=retryable,
                ) from exc

            self._cache.set(cache_key, result.model_copy(deep=True))
            self._record_success(result.processing_time_ms, result.cost.total, result.image_source)
            record_orchestrator_request("success")
            self._check_cost_warning(result.cost.total)

            span.set_attribute("orchestrator.image_source", result.image_source)
            span.set_attribute("orchestrator.cost_usd", result.cost.total)
            logger.info(
                "orchestrator_request_completed",
                processing_time_ms=round(result.processing_time_ms, 2),
                image_source=result.image_source,
                search_results=len(result.search_results),
                images=len(result.images),
                cost_usd=round(result.cost.total, 6),
            )
            return result

    def _detect(self, message: str, ai_response: Optional[str] = None) -> IntentDetectionResult:
        if not self.settings.enable_smart_detection:
            return IntentDetectionResult()
        return self.intent_detector.detect(message, ai_response)

    async def _compose(self, request: MultimodalRequest, start: float) -> MultimodalResult:
        messages = list(request.conversation_history) + [
            Message(role="user", content=request.user_message)
        ]

        intent = self._detect(request.user_message)
        logger.info(
            "orchestrator_intent_detected",
            needs_web_search=intent.needs_web_search or request.force_web_search,
            needs_images=intent.needs_images or request.force_image_search,
            needs_image_generation=intent.needs_image_generation or request.force_image_gen,
            confidence=intent.confidence,
        )

        # Web search precedes the chat call so results can be cited.
        search_results: List[SearchResult] = []
        search_queries = 0
        if intent.needs_web_search or request.force_web_search:
            search_queries, search_results = await self._run_web_search(request.user_message)

        chat_response = await self.chat_client.send_message(
            _with_citations(messages, search_results),
            use_cache=True,
        )
        text = chat_response.text

        enhanced = self._detect(request.user_message, text)
        image_query = enhanced.image_queries[0] if enhanced.image_queries else request.user_message

        branches: Dict[str, Awaitable[List[Any]]] = {}
        proactive_allowed = request.enable_proactive_images and self.settings.enable_proactive_images
        if enhanced.needs_image_generation or request.force_image_gen:
            branches[BRANCH_GENERATION] = self._generate(image_query)
        elif request.force_image_search or (enhanced.needs_images and proactive_allowed):
            if self.settings.prefer_unsplash and self.image_search_client is not None:
                branches[BRANCH_IMAGE_SEARCH] = self._search_images_with_fallback(image_query)
            else:
                branches[BRANCH_GENERATION] = self._generate(image_query)

        outcomes = await self._settle(branches)
        images = [image for items in outcomes.values() for image in items][: self.settings.max_images]

        retrieved = [image for image in images if isinstance(image, RetrievedImage)]
        generated = [image for image in images if isinstance(image, GeneratedImage)]

        search_cost = 0.0
        if self.web_search_client is not None:
            search_cost = search_queries * self.web_search_client.settings.cost_per_search

        return MultimodalResult(
            text_response=text,
            images=images,
            search_results=search_results,
            processing_time_ms=(time.perf_counter() - start) * 1000,
            cost=CostBreakdown(
                text=self.chat_client.estimate_cost(chat_response),
                images=sum(image.cost for image in generated),
                search=search_cost,
            ),
            image_source=_image_source(len(retrieved), len(generated)),
            metadata=ResultMetadata(
                text_tokens=chat_response.usage.total_tokens,
                image_generations=len(generated),
                search_queries=search_queries,
                cache_hits=0,
            ),
        )

    async def _run_web_search(self, user_message: str) -> Tuple[int, List[SearchResult]]:
        """Returns (queries issued, results); failures degrade to no results."""
        if self.web_search_client is None:
            logger.warning("orchestrator_web_search_skipped", error=service_unavailable("Web search").message)
            return 0, []

        query = self.intent_detector.extract_search_query(user_message)
        try:
            results = await self.web_search_client.search(query, max_results=self.settings.max_search_results)
        except Exception as exc:
            logger.warning(
                "orchestrator_web_search_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return 1, []
        return 1, results[: self.settings.max_search_results]

    async def _generate(self, prompt: str) -> List[GeneratedImage]:
        if self.image_generation_client is None:
            raise service_unavailable("Image generation")
        image = await self.image_generation_client.generate_image(prompt, size=self.settings.generation_size)
        return [image]

    async def _search_images_with_fallback(self, query: str) -> List[Any]:
        """Stock photos first; generate only when none are found."""
        try:
            images = await self.image_search_client.search_images(query, max_results=self.settings.max_images)
        except Exception as exc:
            logger.warning(
                "orchestrator_image_search_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            images = []

        if images:
            return list(images)

        if self.image_generation_client is None:
            return []

        logger.info("orchestrator_image_fallback_generation", query=query)
        return await self._generate(query)

    async def _settle(self, branches: Dict[str, Awaitable[List[Any]]]) -> Dict[str, List[Any]]:
        """Await branches concurrently; a failed branch contributes nothing."""
        if not branches:
            return {}

        names = list(branches)
        results = await asyncio.gather(*branches.values(), return_exceptions=True)

        outcomes: Dict[str, List[Any]] = {}
        for name, outcome in zip(names, results):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                logger.warning(
                    "orchestrator_branch_failed",
                    branch=name,
                    error=str(outcome),
                    error_type=type(outcome).__name__,
                    retryable=getattr(outcome, "retryable", None),
                )
                outcomes[name] = []
            else:
                outcomes[name] = outcome
        return outcomes

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def _record_success(self, processing_time_ms: float, cost: float, image_source: ImageSource) -> None:
        metrics = self._metrics
        metrics.total_requests += 1
        self._completed += 1
        n = self._completed

        unsplash_share, generated_share = {
            "unsplash": (100.0, 0.0),
            "generated": (0.0, 100.0),
            "both": (50.0, 50.0),
        }.get(image_source, (0.0, 0.0))

        metrics.average_response_time_ms = (metrics.average_response_time_ms * (n - 1) + processing_time_ms) / n
        metrics.average_cost = (metrics.average_cost * (n - 1) + cost) / n
        metrics.unsplash_usage_percent = (metrics.unsplash_usage_percent * (n - 1) + unsplash_share) / n
        metrics.generated_usage_percent = (metrics.generated_usage_percent * (n - 1) + generated_share) / n
        metrics.cumulative_cost += cost
        self._update_success_rate()

    def _record_failure(self) -> None:
        self._metrics.total_requests += 1
        self._metrics.failed_requests += 1
        self._update_success_rate()

    def _update_success_rate(self) -> None:
        metrics = self._metrics
        if metrics.total_requests:
            metrics.success_rate = (metrics.total_requests - metrics.failed_requests) / metrics.total_requests * 100

    def _check_cost_warning(self, cost: float) -> None:
        if cost > self.settings.cost_warning_per_request:
            logger.warning(
                "orchestrator_cost_warning",
                scope="request",
                cost_usd=round(cost, 4),
                threshold_usd=self.settings.cost_warning_per_request,
            )
        if self._metrics.cumulative_cost > self.settings.cost_warning_cumulative:
            logger.warning(
                "orchestrator_cost_warning",
                scope="cumulative",
                cost_usd=round(self._metrics.cumulative_cost, 2),
                threshold_usd=self.settings.cost_warning_cumulative,
            )

    def get_performance_metrics(self) -> PerformanceMetrics:
        return self._metrics.model_copy()

    def reset_performance_metrics(self) -> None:
        self._metrics = PerformanceMetrics()
        self._completed = 0

    def get_queue_status(self) -> QueueStatus:
        return QueueStatus(
            queue_length=len(self._queue),
            active_requests=self._active_requests,
            max_concurrent_requests=self.max_concurrent_requests,
        )

    def get_usage_report(self) -> Dict[str, Any]:
        """Per-client usage stats plus orchestrator performance metrics."""
        report = usage_report(
            chat=self.chat_client.get_usage_stats(),
            web_search=self.web_search_client.get_usage_stats() if self.web_search_client else None,
            image_search=self.image_search_client.get_usage_stats() if self.image_search_client else None,
            image_generation=(
                self.image_generation_client.get_usage_stats() if self.image_generation_client else None
            ),
        )
        report["orchestrator"] = self._metrics.model_dump()
        return report

    def clear_cache(self) -> None:
        self._cache.clear()

    async def aclose(self) -> None:
        """Stop background work, fail queued requests and close every client."""
        await self._sweeper.stop()

        while self._queue:
            _, future = self._queue.popleft()
            if not future.done():
                future.set_exception(service_unavailable("Orchestrator"))

        for task in list(self._dispatched):
            task.cancel()
        if self._dispatched:
            await asyncio.gather(*self._dispatched, return_exceptions=True)

        clients = [
            self.chat_client,
            self.web_search_client,
            self.image_search_client,
            self.image_generation_client,
        ]
        for client in clients:
            if client is not None:
                await client.aclose()


def create_orchestrator(settings: Optional[Settings] = None) -> MultimodalOrchestrator:
    """
    Build an orchestrator from settings (the environment when omitted).

    The chat client is mandatory; optional clients whose credentials are
    missing are logged and left out.

    Raises:
        ProviderError(SERVICE_UNAVAILABLE) when no chat credentials exist.
    """
    settings = settings or load_settings()
    configure_logging(log_level=settings.log_level, json_output=settings.log_json)

    if not settings.chat.api_key:
        raise service_unavailable("Chat")
    chat_client = ChatCompletionClient(settings.chat)

    optional = {
        "web_search": lambda: WebSearchClient(settings.web_search),
        "image_search": lambda: ImageSearchClient(settings.image_search),
        "image_generation": lambda: ImageGenerationClient(settings.image_generation),
    }
    clients: Dict[str, Any] = {}
    for name, factory in optional.items():
        try:
            clients[name] = factory()
        except ProviderError as exc:
            logger.warning("orchestrator_client_unavailable", client=name, error_code=exc.code, error=exc.message)
            clients[name] = None

    return MultimodalOrchestrator(
        chat_client=chat_client,
        web_search_client=clients["web_search"],
        image_search_client=clients["image_search"],
        image_generation_client=clients["image_generation"],
        settings=settings.orchestrator,
    )
