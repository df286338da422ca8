"""
Externally visible result models.

Everything here is frozen once constructed: provider clients return these
objects and the orchestrator composes them without re-ranking or mutating.
"""
from datetime import datetime, timezone
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class SearchResult(BaseModel):
    """One web search hit."""

    model_config = ConfigDict(frozen=True)

    title: str
    url: str
    snippet: str
    source: str
    published_date: Optional[str] = None


class RetrievedImage(BaseModel):
    """Stock photo from the image search provider (free of generation cost)."""

    model_config = ConfigDict(frozen=True)

    source: Literal["unsplash"] = "unsplash"
    id: str
    url: str
    thumbnail_url: str
    description: str = ""
    photographer: str = ""
    photographer_url: str = ""
    source_page_url: str = ""
    width: int = 0
    height: int = 0


class GeneratedImage(BaseModel):
    """Image synthesized by the generation provider."""

    model_config = ConfigDict(frozen=True)

    source: Literal["generated"] = "generated"
    url: str
    compressed_url: Optional[str] = None
    revised_prompt: Optional[str] = None
    size: str
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    cost: float = Field(0.0, ge=0.0, description="Estimated USD for this image")

    @property
    def display_url(self) -> str:
        """Compressed URL when available, otherwise the original."""
        return self.compressed_url or self.url


Image = Annotated[Union[RetrievedImage, GeneratedImage], Field(discriminator="source")]

ImageSource = Literal["unsplash", "generated", "both", "none"]


class CostBreakdown(BaseModel):
    """Per-request cost in USD; total is always the sum of its parts."""

    model_config = ConfigDict(frozen=True)

    text: float = Field(0.0, ge=0.0)
    images: float = Field(0.0, ge=0.0)
    search: float = Field(0.0, ge=0.0)
    total: float = Field(0.0, ge=0.0)

    @model_validator(mode="before")
    @classmethod
    def fill_total(cls, data):
        if isinstance(data, dict):
            data = dict(data)
            data["total"] = (
                float(data.get("text", 0.0))
                + float(data.get("images", 0.0))
                + float(data.get("search", 0.0))
            )
        return data


class ResultMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    text_tokens: int = 0
    image_generations: int = 0
    search_queries: int = 0
    cache_hits: int = 0


class MultimodalResult(BaseModel):
    """Composed answer returned by the orchestrator."""

    model_config = ConfigDict(frozen=True)

    text_response: str
    images: List[Image] = Field(default_factory=list)
    search_results: List[SearchResult] = Field(default_factory=list)
    processing_time_ms: float = 0.0
    cost: CostBreakdown = Field(default_factory=CostBreakdown)
    image_source: ImageSource = "none"
    metadata: ResultMetadata = Field(default_factory=ResultMetadata)
