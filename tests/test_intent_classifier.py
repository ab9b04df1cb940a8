import pytest

from conftest import PROMPTS_DIR
from shopguide.errors import ClassifierOutputError, GenerationError
from shopguide.intent_classifier import IntentClassifier, parse_classification


def test_parse_fenced_json_and_coerce_fields():
    raw = """Sure!
```json
{"intent_id": "travel_vlogging", "confidence": 1.7, "missing_info": "budget",
 "cart_action": "ADD", "product_index": "1", "intent_status": "Known"}
```"""
    result = parse_classification(raw)
    assert result.intent_id == "travel_vlogging"
    assert result.confidence == 1.0
    assert result.missing_info == ["budget"]
    assert result.cart_action == "add"
    assert result.product_index == 1
    assert result.intent_status == "known"


def test_parse_drops_unknown_cart_action_and_bad_index():
    result = parse_classification('{"intent_id": null, "confidence": "x", "cart_action": "refund", "product_index": "two"}')
    assert result.intent_id is None
    assert result.confidence == 0.0
    assert result.cart_action is None
    assert result.product_index is None


def test_parse_without_json_raises_with_raw_text():
    with pytest.raises(ClassifierOutputError) as excinfo:
        parse_classification("I am not sure what you mean")
    assert excinfo.value.raw == "I am not sure what you mean"


def test_classify_renders_intents_history_and_products(gemini, cache):
    gemini.reply("classify", {"intent_id": "travel_vlogging", "confidence": 0.8})
    classifier = IntentClassifier(gemini, cache, PROMPTS_DIR)
    history = [{"role": "user", "content": f"turn {i}"} for i in range(12)]
    result = classifier.classify(
        "for my trip",
        history,
        persona="delegator",
        last_products=[{"title": "Cam One"}],
    )
    assert result.confidence == pytest.approx(0.8)
    prompt = gemini.prompts[-1]
    assert "travel_vlogging: Filming trips and events" in prompt
    assert "0: Cam One" in prompt
    assert "binary/forced choice" in prompt
    assert "turn 1\n" not in prompt
    assert "turn 2" in prompt and "turn 11" in prompt


def test_classify_wraps_model_errors(gemini, cache):
    gemini.reply("classify", RuntimeError("quota"))
    with pytest.raises(GenerationError):
        IntentClassifier(gemini, cache, PROMPTS_DIR).classify("hello", [])
