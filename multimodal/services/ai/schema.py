"""
Pydantic models for requests, provider responses and usage statistics.

The chat response mirrors the OpenAI-style contract:
{
  "choices": [{"message": {"role": "assistant", "content": "..."}}],
  "usage": {"prompt_tokens": 10, "completion_tokens": 20, "total_tokens": 30}
}
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

MessageRole = Literal["user", "assistant", "system"]


class Message(BaseModel):
    """One turn of conversation history."""

    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_payload(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


class ChatMessage(BaseModel):
    role: str = "assistant"
    content: Optional[str] = ""


class ChatChoice(BaseModel):
    index: int = 0
    message: ChatMessage = Field(default_factory=ChatMessage)
    finish_reason: Optional[str] = None


class ChatUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatResponse(BaseModel):
    """Non-streaming chat completion response."""

    id: Optional[str] = None
    model: Optional[str] = None
    choices: List[ChatChoice] = Field(default_factory=list)
    usage: ChatUsage = Field(default_factory=ChatUsage)
    from_cache: bool = False

    @property
    def text(self) -> str:
        """Content of the first choice, or an empty string."""
        if not self.choices:
            return ""
        return self.choices[0].message.content or ""


class MultimodalRequest(BaseModel):
    """
    Caller request to the orchestrator.

    The force flags override intent detection; enable_proactive_images=False
    suppresses unrequested illustrations for this request only.
    """

    user_message: str
    conversation_history: List[Message] = Field(default_factory=list)
    force_web_search: bool = False
    force_image_search: bool = False
    force_image_gen: bool = False
    enable_proactive_images: bool = True


class IntentDetectionResult(BaseModel):
    """
    Output of keyword intent detection.

    confidence is an additive heuristic exposed for observability only;
    nothing branches on it.
    """

    needs_web_search: bool = False
    needs_images: bool = False
    needs_image_generation: bool = False
    image_queries: List[str] = Field(default_factory=list)
    should_use_unsplash: bool = False
    should_use_generation: bool = False
    confidence: float = Field(0.0, ge=0.0, le=1.0)


class ChatUsageStats(BaseModel):
    total_requests: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    failed_requests: int = 0
    total_tokens: int = 0
    estimated_cost: float = 0.0


class WebSearchUsageStats(BaseModel):
    total_searches: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    fallback_searches: int = 0
    estimated_cost: float = 0.0


class ImageSearchUsageStats(BaseModel):
    total_searches: int = 0
    cache_hits: int = 0
    cache_misses: int = 0


class ImageGenUsageStats(BaseModel):
    total_generations: int = 0
    cache_hits: int = 0
    estimated_cost: float = 0.0
    average_generation_time_ms: float = 0.0
    timeouts: int = 0


class PerformanceMetrics(BaseModel):
    """Rolling orchestrator statistics (percentages are 0-100)."""

    average_response_time_ms: float = 0.0
    average_cost: float = 0.0
    success_rate: float = 100.0
    unsplash_usage_percent: float = 0.0
    generated_usage_percent: float = 0.0
    total_requests: int = 0
    failed_requests: int = 0
    cache_hits: int = 0
    cumulative_cost: float = 0.0


class QueueStatus(BaseModel):
    queue_length: int = 0
    active_requests: int = 0
    max_concurrent_requests: int = 0


def usage_report(**stats: Optional[BaseModel]) -> Dict[str, Any]:
    """Dump a named set of usage stats models, skipping absent clients."""
    return {name: value.model_dump() for name, value in stats.items() if value is not None}
