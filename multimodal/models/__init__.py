"""Pydantic models for composed results."""

from .responses import (
    CostBreakdown,
    GeneratedImage,
    Image,
    ImageSource,
    MultimodalResult,
    ResultMetadata,
    RetrievedImage,
    SearchResult,
)

__all__ = [
    "CostBreakdown",
    "GeneratedImage",
    "Image",
    "ImageSource",
    "MultimodalResult",
    "ResultMetadata",
    "RetrievedImage",
    "SearchResult",
]
