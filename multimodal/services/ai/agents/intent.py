"""
Keyword intent detection.

Responsibilities:
- Decide which providers a query needs (web search, image search, image generation)
- Derive image and search queries from the user message and generated answer
- Never call a provider

Detection is a deliberately simple, auditable keyword heuristic: plain
lowercase substring matching against fixed keyword sets.
"""
import re
from typing import Dict, List, Optional

from multimodal.core.logging import get_logger
from multimodal.services.ai.schema import IntentDetectionResult

logger = get_logger(__name__)

# Current-information keywords
SEARCH_KEYWORDS = (
    "search", "find", "look up", "what is", "who is", "when did", "where is",
    "current", "latest", "recent", "news", "today", "now", "happening",
    "price of", "weather", "stock", "score", "result",
)

# Explicit image generation requests
GENERATION_KEYWORDS = (
    "generate", "create", "draw", "make", "design", "imagine",
    "visualize", "render", "produce", "paint", "sketch", "illustrate",
    "generate an image", "generate a picture", "generate image",
    "create an image", "create a picture", "create image",
    "draw me", "draw an", "draw a",
)

# Proactive image enhancement triggers (user message only)
IMAGE_KEYWORDS = (
    "show", "photo", "visual", "look like", "appearance",
    "diagram", "illustration", "example of", "what does", "how does",
)

# Visual subjects (user message or generated answer)
VISUAL_CONCEPTS = (
    "animal", "plant", "building", "landscape", "person", "object",
    "place", "location", "city", "country", "monument", "artwork",
    "scientific", "historical", "geographic", "educational",
    "species", "architecture", "nature", "culture", "technology",
)

# Abstract subjects that suppress proactive images
SKIP_IMAGE_CONCEPTS = (
    "code", "programming", "function", "algorithm", "math", "equation",
    "formula", "abstract", "concept", "theory", "philosophy",
    "calculate", "compute", "solve", "debug",
)

CONFIDENCE_WEB = 0.3
CONFIDENCE_GENERATION = 0.4
CONFIDENCE_IMAGES = 0.3

MAX_RESPONSE_CONCEPTS = 2

_IMAGE_PREFIX_RE = re.compile(
    r"^(what is|what are|who is|who are|tell me about|show me|explain|describe)\s+",
    re.IGNORECASE,
)
_ARTICLE_PREFIX_RE = re.compile(r"^(a|an|the)\s+", re.IGNORECASE)
_SEARCH_PREFIX_RE = re.compile(
    r"^(what is|who is|when did|where is|how to|can you|please|search for|find|look up)\s*",
    re.IGNORECASE,
)
_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")
_NON_ALPHA_RE = re.compile(r"[^a-zA-Z]")
_CAPITALIZED_RE = re.compile(r"^[A-Z][a-z]+$")


def _contains_any(text: str, keywords) -> bool:
    return any(keyword in text for keyword in keywords)


def extract_capitalized_concepts(text: str, limit: int = MAX_RESPONSE_CONCEPTS) -> List[str]:
    """
    Capitalised words that do not start a sentence, in order of appearance.

    Example:
        "It stands in Paris. Gustave Eiffel built it." -> ["Paris", "Eiffel"]
    """
    concepts: Dict[str, None] = {}
    for sentence in _SENTENCE_SPLIT_RE.split(text):
        words = sentence.strip().split()
        for word in words[1:]:
            cleaned = _NON_ALPHA_RE.sub("", word)
            if len(cleaned) > 3 and _CAPITALIZED_RE.match(cleaned):
                concepts.setdefault(cleaned, None)
    return list(concepts)[:limit]


class IntentDetector:
    """Keyword-based intent detector."""

    def __init__(
        self,
        max_images: int = 3,
        prefer_unsplash: bool = True,
        image_search_available: bool = True,
    ):
        self.max_images = max_images
        self.prefer_unsplash = prefer_unsplash
        self.image_search_available = image_search_available

    def extract_image_queries(self, message: str, ai_response: Optional[str] = None) -> List[str]:
        """
        Image queries: the cleaned user message, then up to two concepts
        from the generated answer, capped at max_images.
        """
        cleaned = _IMAGE_PREFIX_RE.sub("", message.lower().strip())
        cleaned = _ARTICLE_PREFIX_RE.sub("", cleaned).strip()

        queries = [cleaned if len(cleaned) > 2 else message[:100]]
        if ai_response:
            queries.extend(extract_capitalized_concepts(ai_response))
        return queries[: self.max_images]

    def extract_search_query(self, message: str) -> str:
        """Strip leading question phrasing; fall back to the full message."""
        query = _SEARCH_PREFIX_RE.sub("", message.strip()).strip()
        if len(query) < 3:
            return message.strip()
        return query

    def detect(self, message: str, ai_response: Optional[str] = None) -> IntentDetectionResult:
        """
        Detect which providers a query needs.

        Args:
            message: The user message
            ai_response: Generated answer text, when already available; it only
                influences image relevance (visual and skip concepts)

        Returns:
            IntentDetectionResult (confidence is informational only)
        """
        lower_message = message.lower()
        lower_response = (ai_response or "").lower()

        needs_web_search = _contains_any(lower_message, SEARCH_KEYWORDS)
        needs_image_generation = _contains_any(lower_message, GENERATION_KEYWORDS)

        has_skip_concept = _contains_any(lower_message, SKIP_IMAGE_CONCEPTS) or _contains_any(
            lower_response, SKIP_IMAGE_CONCEPTS
        )
        has_image_keyword = _contains_any(lower_message, IMAGE_KEYWORDS)
        has_visual_concept = _contains_any(lower_message, VISUAL_CONCEPTS) or _contains_any(
            lower_response, VISUAL_CONCEPTS
        )

        needs_images = (
            not needs_image_generation
            and not has_skip_concept
            and (has_image_keyword or has_visual_concept)
        )

        image_queries: List[str] = []
        if needs_images or needs_image_generation:
            image_queries = self.extract_image_queries(message, ai_response)

        should_use_unsplash = needs_images and self.prefer_unsplash and self.image_search_available
        should_use_generation = needs_image_generation or (needs_images and not should_use_unsplash)

        confidence = 0.0
        if needs_web_search:
            confidence += CONFIDENCE_WEB
        if needs_image_generation:
            confidence += CONFIDENCE_GENERATION
        if needs_images:
            confidence += CONFIDENCE_IMAGES

        return IntentDetectionResult(
            needs_web_search=needs_web_search,
            needs_images=needs_images,
            needs_image_generation=needs_image_generation,
            image_queries=image_queries,
            should_use_unsplash=should_use_unsplash,
            should_use_generation=should_use_generation,
            confidence=min(round(confidence, 2), 1.0),
        )

    def should_enhance_with_images(self, message: str, ai_response: str) -> bool:
        """True when proactive images apply (and no explicit generation was asked for)."""
        intent = self.detect(message, ai_response)
        return intent.needs_images and not intent.needs_image_generation
