"""Image generation and compression services."""

from .generation import ImageGenerationClient

__all__ = ["ImageGenerationClient"]
