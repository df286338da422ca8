"""
Unit tests for keyword intent detection.
"""
import pytest

from multimodal.services.ai.agents.intent import IntentDetector, extract_capitalized_concepts


@pytest.fixture
def detector():
    return IntentDetector()


def test_current_information_query_needs_web_search(detector):
    message = "What is the latest news about wind turbines?"

    intent = detector.detect(message)

    assert intent.needs_web_search is True
    assert intent.needs_images is False
    assert intent.needs_image_generation is False
    assert intent.image_queries == []
    assert intent.confidence == pytest.approx(0.3)
    assert detector.extract_search_query(message) == "the latest news about wind turbines?"


def test_explicit_generation_request(detector):
    intent = detector.detect("draw a cat astronaut")

    assert intent.needs_image_generation is True
    assert intent.needs_images is False
    assert intent.needs_web_search is False
    assert intent.should_use_generation is True
    assert intent.should_use_unsplash is False
    assert intent.image_queries == ["draw a cat astronaut"]
    assert intent.confidence == pytest.approx(0.4)


def test_visual_request_prefers_stock_photos(detector):
    intent = detector.detect("show me the Eiffel Tower")

    assert intent.needs_images is True
    assert intent.needs_image_generation is False
    assert intent.should_use_unsplash is True
    assert intent.should_use_generation is False
    assert intent.image_queries == ["eiffel tower"]
    assert intent.confidence == pytest.approx(0.3)


def test_visual_request_without_image_search_uses_generation():
    detector = IntentDetector(image_search_available=False)

    intent = detector.detect("show me the Eiffel Tower")

    assert intent.needs_images is True
    assert intent.should_use_unsplash is False
    assert intent.should_use_generation is True


def test_abstract_subjects_suppress_images(detector):
    intent = detector.detect("explain the algorithm for sorting animals")

    assert intent.needs_images is False
    assert intent.image_queries == []


def test_answer_text_can_trigger_images(detector):
    intent = detector.detect("tell me about giraffes", "Giraffes are an African animal species.")

    assert intent.needs_images is True
    assert intent.image_queries == ["giraffes", "African"]


def test_answer_text_skip_concept_suppresses_images(detector):
    intent = detector.detect("show me the result", "Here is the function you asked for.")

    assert intent.needs_images is False


def test_image_queries_respect_max_images():
    detector = IntentDetector(max_images=1)

    queries = detector.extract_image_queries("tell me about giraffes", "Giraffes are an African animal species.")

    assert queries == ["giraffes"]


def test_short_cleaned_query_falls_back_to_message(detector):
    assert detector.extract_image_queries("show me ox") == ["show me ox"]


def test_extract_capitalized_concepts_skips_sentence_starts():
    text = "The Eiffel Tower is in Paris. It was designed by Gustave Eiffel."

    assert extract_capitalized_concepts(text) == ["Eiffel", "Tower"]
    assert extract_capitalized_concepts(text, limit=5) == ["Eiffel", "Tower", "Paris", "Gustave"]


@pytest.mark.parametrize(
    "message,expected",
    [
        ("search for hiking boots", "hiking boots"),
        ("Who is the current prime minister?", "the current prime minister?"),
        ("find", "find"),
        ("weather in Oslo", "weather in Oslo"),
    ],
)
def test_extract_search_query(detector, message, expected):
    assert detector.extract_search_query(message) == expected


def test_should_enhance_with_images(detector):
    assert detector.should_enhance_with_images("show me the Eiffel Tower", "It is a wrought-iron tower.")
    assert not detector.should_enhance_with_images("draw a tower", "Here is a tower.")
    assert not detector.should_enhance_with_images("how do I debug this?", "Add a breakpoint.")
