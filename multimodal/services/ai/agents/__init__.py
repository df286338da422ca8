"""Intent detection agents."""

from .intent import IntentDetector

__all__ = ["IntentDetector"]
