"""
Async chat completion client.

Design constraints:
- No vendor SDKs; httpx against an OpenAI-compatible /chat/completions API
- Client-side sliding-window rate limit (fails fast, no network call)
- Response cache for non-streaming requests
- Retry with exponential backoff for retryable failures (429 / 5xx / network)

A fixed system prompt describing the assistant's capabilities is always the
first message: it is prepended when absent and replaces any other leading
system message.
"""
import asyncio
import inspect
import json
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

import httpx
from pydantic import ValidationError

from multimodal.core.cache import TTLCache, make_cache_key
from multimodal.core.config import ChatSettings
from multimodal.core.errors import ErrorCode, ProviderError, is_retryable_status
from multimodal.core.logging import get_logger
from multimodal.core.metrics import (
    record_cache_hit,
    record_cache_miss,
    record_provider_cost,
    record_provider_request,
)
from multimodal.core.rate_limit import SlidingWindowRateLimiter
from multimodal.core.tracing import get_tracer, record_exception
from multimodal.services.ai.schema import ChatResponse, ChatUsageStats, Message

logger = get_logger(__name__)

PROVIDER = "openai_chat"
STREAM_DONE = "[DONE]"

SYSTEM_PROMPT = (
    "You are an AI teaching assistant in a virtual classroom. You have access to:\n"
    "1. Web search - for current information and facts\n"
    "2. Unsplash image search - for finding relevant stock photos and images\n"
    "3. DALL-E image generation - for creating custom images\n\n"
    "When answering questions, proactively use images when they would enhance "
    "understanding. For educational topics, scientific concepts, historical events, "
    "geographic locations, or visual subjects, automatically search for or generate "
    "relevant images without waiting for explicit requests.\n\n"
    "Always mention when you're searching for or generating images to help "
    "illustrate your explanations."
)

ChatInput = Union[Message, Dict[str, str]]
ChunkCallback = Callable[[str], Union[None, Awaitable[None]]]


def _as_payload(message: ChatInput) -> Dict[str, str]:
    if isinstance(message, Message):
        return message.to_payload()
    return {"role": message["role"], "content": message["content"]}


def _error_message(response: httpx.Response) -> str:
    """Best-effort provider error message from a failed response."""
    try:
        data = response.json()
    except ValueError:
        data = {}
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return f"HTTP {response.status_code}: {response.reason_phrase}"


class ChatCompletionClient:
    """Async HTTP client for chat completions."""

    def __init__(
        self,
        settings: ChatSettings,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.settings = settings
        self.api_base = settings.api_base.rstrip("/")
        self.model = settings.model
        self.max_retries = settings.max_retries
        self.retry_delay = settings.retry_delay_seconds

        self._http = http_client or httpx.AsyncClient(timeout=settings.timeout_seconds)
        self._sleep = sleep
        self._cache: TTLCache[ChatResponse] = TTLCache(
            default_ttl=settings.cache_ttl_seconds,
            name="chat",
            clock=clock,
        )
        self.rate_limiter = SlidingWindowRateLimiter(
            max_requests=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window_seconds,
            name=PROVIDER,
            clock=clock,
        )
        self._usage = ChatUsageStats()

    @property
    def cache(self) -> TTLCache:
        return self._cache

    def get_system_prompt(self) -> str:
        return SYSTEM_PROMPT

    def _with_system_prompt(self, messages: Sequence[ChatInput]) -> List[Dict[str, str]]:
        """Prepend the capabilities prompt, replacing any leading system message."""
        payload = [_as_payload(m) for m in messages]
        if payload and payload[0]["role"] == "system":
            payload = payload[1:]
        return [{"role": "system", "content": SYSTEM_PROMPT}] + payload

    def _cache_key(self, messages: List[Dict[str, str]], options: Dict[str, Any]) -> str:
        pairs = [[m["role"], m["content"]] for m in messages]
        return make_cache_key("chat", self.model, pairs, options)

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.settings.api_key:
            headers["Authorization"] = f"Bearer {self.settings.api_key}"
        return headers

    def _build_payload(
        self,
        messages: List[Dict[str, str]],
        stream: bool,
        temperature: Optional[float],
        max_tokens: Optional[int],
    ) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": messages,
            "stream": stream,
            "temperature": temperature if temperature is not None else 0.7,
            "max_tokens": max_tokens or 2000,
        }

    def estimate_cost(self, response: ChatResponse) -> float:
        """USD estimate from total tokens; cached responses cost nothing."""
        if response.from_cache:
            return 0.0
        return (response.usage.total_tokens / 1000.0) * self.settings.cost_per_1k_tokens

    def _parse(self, data: Any) -> ChatResponse:
        try:
            return ChatResponse.model_validate(data)
        except ValidationError as exc:
            raise ProviderError(
                ErrorCode.CHAT_API_ERROR,
                f"Chat response did not match the expected shape: {exc.error_count()} error(s)",
                retryable=False,
            ) from exc

    async def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """One rate-limited attempt; raises ProviderError on any failure."""
        self.rate_limiter.acquire()
        self._usage.total_requests += 1

        url = f"{self.api_base}/chat/completions"
        start = time.perf_counter()
        outcome = "error"
        try:
            try:
                response = await self._http.post(url, headers=self._headers(), json=payload)
            except httpx.HTTPError as exc:
                raise ProviderError(
                    ErrorCode.NETWORK_ERROR,
                    f"Chat request failed: {exc}",
                    retryable=True,
                ) from exc

            if response.status_code >= 400:
                raise ProviderError(
                    ErrorCode.CHAT_API_ERROR,
                    _error_message(response),
                    retryable=is_retryable_status(response.status_code),
                    status_code=response.status_code,
                )

            try:
                data = response.json()
            except ValueError as exc:
                raise ProviderError(
                    ErrorCode.CHAT_API_ERROR,
                    "Chat response was not valid JSON",
                    retryable=False,
                    status_code=response.status_code,
                ) from exc

            outcome = "success"
            return data
        finally:
            record_provider_request(PROVIDER, outcome, time.perf_counter() - start)

    async def send_message(
        self,
        messages: Sequence[ChatInput],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        use_cache: bool = True,
    ) -> ChatResponse:
        """
        Send a chat completion request with caching and retries.

        Args:
            messages: Conversation, oldest first (Message objects or role/content dicts)
            temperature: Sampling temperature (default 0.7)
            max_tokens: Completion cap (default 2000)
            use_cache: Look up and store the response in the client cache

        Returns:
            ChatResponse (from_cache=True when served from the cache)

        Raises:
            ProviderError: RATE_LIMIT_EXCEEDED immediately; CHAT_API_ERROR or
            NETWORK_ERROR once retries are exhausted or the error is not retryable.
        """
        prepared = self._with_system_prompt(messages)
        options = {"temperature": temperature, "max_tokens": max_tokens}
        cache_key = self._cache_key(prepared, options)

        if use_cache:
            cached = self._cache.get(cache_key)
            if cached is not None:
                self._usage.cache_hits += 1
                record_cache_hit("chat")
                logger.debug("chat_cache_hit", model=self.model)
                return cached.model_copy(update={"from_cache": True}, deep=True)
            self._usage.cache_misses += 1
            record_cache_miss("chat")

        payload = self._build_payload(prepared, False, temperature, max_tokens)
        tracer = get_tracer()
        last_error: Optional[ProviderError] = None

        with tracer.start_as_current_span("chat.send_message") as span:
            span.set_attribute("chat.model", self.model)
            span.set_attribute("chat.message_count", len(prepared))

            for attempt in range(self.max_retries):
                try:
                    data = await self._post(payload)
                    response = self._parse(data)
                except ProviderError as exc:
                    last_error = exc
                    self._usage.failed_requests += 1
                    logger.warning(
                        "chat_request_failed",
                        attempt=attempt + 1,
                        max_retries=self.max_retries,
                        model=self.model,
                        error_code=exc.code,
                        retryable=exc.retryable,
                        error=exc.message,
                    )
                    if not exc.retryable:
                        record_exception(exc)
                        raise

                    if attempt < self.max_retries - 1:
                        delay = self.retry_delay * (2 ** attempt)
                        logger.info("chat_request_retrying", attempt=attempt + 1, delay_seconds=delay)
                        await self._sleep(delay)
                    continue

                cost = self.estimate_cost(response)
                self._usage.total_tokens += response.usage.total_tokens
                self._usage.estimated_cost += cost
                record_provider_cost(PROVIDER, cost)
                span.set_attribute("chat.total_tokens", response.usage.total_tokens)

                if use_cache:
                    self._cache.set(cache_key, response)

                return response

            logger.error(
                "chat_request_exhausted_retries",
                model=self.model,
                max_retries=self.max_retries,
                error_code=last_error.code if last_error else None,
            )
            if last_error is None:
                raise ProviderError(ErrorCode.CHAT_API_ERROR, "Request failed after all retries")
            record_exception(last_error)
            raise last_error

    async def send_message_stream(
        self,
        messages: Sequence[ChatInput],
        on_chunk: ChunkCallback,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """
        Stream a chat completion, invoking on_chunk for every content delta.

        Frames are `data: {...}` lines terminated by `data: [DONE]`. Malformed
        frames are logged and skipped. Streaming is never cached or retried.

        Returns:
            The concatenated streamed text.
        """
        payload = self._build_payload(self._with_system_prompt(messages), True, temperature, max_tokens)
        self.rate_limiter.acquire()
        self._usage.total_requests += 1

        url = f"{self.api_base}/chat/completions"
        parts: List[str] = []
        start = time.perf_counter()
        outcome = "error"
        try:
            async with self._http.stream("POST", url, headers=self._headers(), json=payload) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise ProviderError(
                        ErrorCode.CHAT_API_ERROR,
                        _error_message(response),
                        retryable=is_retryable_status(response.status_code),
                        status_code=response.status_code,
                    )

                async for line in response.aiter_lines():
                    line = line.strip()
                    if not line.startswith("data:"):
                        continue
                    data = line[len("data:"):].strip()
                    if data == STREAM_DONE:
                        break

                    try:
                        delta = json.loads(data)["choices"][0].get("delta", {})
                    except (ValueError, KeyError, IndexError, TypeError, AttributeError) as exc:
                        logger.warning("chat_stream_frame_malformed", error=str(exc), frame=data[:200])
                        continue

                    content = delta.get("content") if isinstance(delta, dict) else None
                    if content:
                        parts.append(content)
                        result = on_chunk(content)
                        if inspect.isawaitable(result):
                            await result
            outcome = "success"
        except httpx.HTTPError as exc:
            self._usage.failed_requests += 1
            raise ProviderError(
                ErrorCode.NETWORK_ERROR,
                f"Chat stream failed: {exc}",
                retryable=True,
            ) from exc
        except ProviderError:
            self._usage.failed_requests += 1
            raise
        finally:
            record_provider_request(PROVIDER, outcome, time.perf_counter() - start)

        return "".join(parts)

    def get_rate_limit_status(self) -> Dict[str, float]:
        return self.rate_limiter.status()

    def get_usage_stats(self) -> ChatUsageStats:
        return self._usage.model_copy()

    def reset_usage_stats(self) -> None:
        self._usage = ChatUsageStats()

    def clear_cache(self) -> None:
        self._cache.clear()

    async def aclose(self) -> None:
        await self._http.aclose()
