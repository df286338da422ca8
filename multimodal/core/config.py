"""
Configuration objects for provider clients and the orchestrator.

Every client receives its settings through its constructor; nothing below
reads ambient state except `load_settings`, which is the single place where
the process environment (and an optional .env file) is consulted.

Environment configuration:
- OPENAI_API_KEY: Chat completion and image generation key
- OPENAI_API_BASE: Base URL (default: https://api.openai.com/v1)
- OPENAI_CHAT_MODEL: Chat model (default: gpt-3.5-turbo)
- SERPER_API_KEY / BRAVE_API_KEY: Web search keys (Serper preferred)
- UNSPLASH_ACCESS_KEY: Stock-photo search key
- IMAGE_GEN_MODEL: dall-e-2 | dall-e-3 (default: dall-e-2)
- IMAGE_GEN_TIMEOUT_SECONDS: Generation timeout (default: 30)
- ORCHESTRATOR_MAX_CONCURRENT: Global concurrency cap (default: 3)
- LOG_LEVEL / LOG_JSON: Logging configuration
"""
import os
from pathlib import Path
from typing import Optional, Union

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from multimodal.core.logging import get_logger

logger = get_logger(__name__)


class ChatSettings(BaseModel):
    """Chat completion client settings."""

    api_key: Optional[str] = Field(None, description="Bearer token; client is disabled when missing")
    api_base: str = Field("https://api.openai.com/v1", description="OpenAI-compatible base URL")
    model: str = Field("gpt-3.5-turbo", description="Chat model name")
    max_retries: int = Field(3, ge=1, description="Total attempts per request, including the first")
    retry_delay_seconds: float = Field(1.0, ge=0.0, description="Base delay, doubled per attempt")
    rate_limit_requests: int = Field(20, ge=1, description="Requests allowed per rate-limit window")
    rate_limit_window_seconds: float = Field(60.0, gt=0.0, description="Sliding window length")
    cache_ttl_seconds: float = Field(600.0, gt=0.0, description="Response cache TTL")
    cost_per_1k_tokens: float = Field(0.002, ge=0.0, description="Estimated USD per 1k total tokens")
    timeout_seconds: float = Field(60.0, gt=0.0, description="HTTP transport timeout")


class WebSearchSettings(BaseModel):
    """Web search client settings."""

    serper_api_key: Optional[str] = Field(None, description="Primary provider key")
    brave_api_key: Optional[str] = Field(None, description="Secondary provider key (fallback)")
    max_results: int = Field(3, ge=1, description="Hard cap on returned results")
    cache_enabled: bool = Field(True, description="Cache results, including empty ones")
    cache_ttl_seconds: float = Field(300.0, gt=0.0, description="Result cache TTL")
    cost_per_search: float = Field(0.001, ge=0.0, description="Estimated USD per uncached search")
    timeout_seconds: float = Field(15.0, gt=0.0, description="HTTP transport timeout")


class ImageSearchSettings(BaseModel):
    """Stock-photo search client settings."""

    access_key: Optional[str] = Field(None, description="Unsplash access key")
    max_results: int = Field(3, ge=1, description="Hard cap on returned images")
    cache_enabled: bool = Field(True, description="Cache results, including empty ones")
    cache_ttl_seconds: float = Field(600.0, gt=0.0, description="Result cache TTL")
    timeout_seconds: float = Field(15.0, gt=0.0, description="HTTP transport timeout")


class ImageGenerationSettings(BaseModel):
    """Image generation client settings."""

    api_key: Optional[str] = Field(None, description="Bearer token; client is disabled when missing")
    api_base: str = Field("https://api.openai.com/v1", description="OpenAI-compatible base URL")
    model: str = Field("dall-e-2", description="dall-e-2 | dall-e-3")
    default_size: str = Field("512x512", description="Size used when a request omits one")
    timeout_seconds: float = Field(30.0, gt=0.0, description="Race timeout for one generation")
    compression_enabled: bool = Field(True, description="Re-encode generated images client-side")
    compression_quality: float = Field(0.8, gt=0.0, le=1.0, description="JPEG quality in (0, 1]")


class OrchestratorSettings(BaseModel):
    """Multimodal orchestrator settings."""

    max_concurrent_requests: int = Field(3, ge=1, description="Global dispatch cap; extra requests queue FIFO")
    cache_ttl_seconds: float = Field(300.0, gt=0.0, description="Composed-result cache TTL")
    cache_sweep_interval_seconds: float = Field(300.0, gt=0.0, description="Background sweep period")
    max_search_results: int = Field(3, ge=1, description="Search results requested per query")
    max_images: int = Field(3, ge=1, description="Per-request image cap")
    enable_smart_detection: bool = Field(True, description="Run keyword intent detection")
    enable_proactive_images: bool = Field(True, description="Attach illustrative images unprompted")
    prefer_unsplash: bool = Field(
        True,
        description="Prefer the free stock-photo provider over the paid generator for proactive images",
    )
    generation_size: str = Field("512x512", description="Size for orchestrated generations")
    cost_warning_per_request: float = Field(0.10, ge=0.0, description="USD; warn above this per request")
    cost_warning_cumulative: float = Field(10.0, ge=0.0, description="USD; warn above this in total")


class Settings(BaseModel):
    """Aggregate configuration."""

    chat: ChatSettings = Field(default_factory=ChatSettings)
    web_search: WebSearchSettings = Field(default_factory=WebSearchSettings)
    image_search: ImageSearchSettings = Field(default_factory=ImageSearchSettings)
    image_generation: ImageGenerationSettings = Field(default_factory=ImageGenerationSettings)
    orchestrator: OrchestratorSettings = Field(default_factory=OrchestratorSettings)
    log_level: str = "INFO"
    log_json: bool = True


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)) or default)


def load_settings(env_file: Optional[Union[str, Path]] = None) -> Settings:
    """
    Build settings from the environment.

    Args:
        env_file: Optional path to a .env file loaded before reading variables.

    Returns:
        Settings with credentials set to None where not provided.
    """
    if env_file is not None:
        env_path = Path(env_file)
        if env_path.exists():
            load_dotenv(env_path)
            logger.info("env_loaded", env_path=str(env_path))
        else:
            logger.warning("env_file_not_found", expected_path=str(env_path))

    openai_key = os.getenv("OPENAI_API_KEY") or None
    api_base = os.getenv("OPENAI_API_BASE", "https://api.openai.com/v1")

    return Settings(
        chat=ChatSettings(
            api_key=openai_key,
            api_base=api_base,
            model=os.getenv("OPENAI_CHAT_MODEL", "gpt-3.5-turbo"),
        ),
        web_search=WebSearchSettings(
            serper_api_key=os.getenv("SERPER_API_KEY") or None,
            brave_api_key=os.getenv("BRAVE_API_KEY") or None,
        ),
        image_search=ImageSearchSettings(
            access_key=os.getenv("UNSPLASH_ACCESS_KEY") or None,
        ),
        image_generation=ImageGenerationSettings(
            api_key=openai_key,
            api_base=api_base,
            model=os.getenv("IMAGE_GEN_MODEL", "dall-e-2"),
            timeout_seconds=_env_float("IMAGE_GEN_TIMEOUT_SECONDS", 30.0),
        ),
        orchestrator=OrchestratorSettings(
            max_concurrent_requests=int(os.getenv("ORCHESTRATOR_MAX_CONCURRENT", "3") or "3"),
        ),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_json=os.getenv("LOG_JSON", "true").lower() == "true",
    )
