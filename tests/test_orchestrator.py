import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from conftest import commerce_response
from shopguide.errors import ClassifierOutputError
from shopguide.image_generator import OutcomeImageGenerator, placeholder_images
from shopguide.models import ChatRequest
from shopguide.orchestrator import detect_cart_action

LAST_PRODUCTS = [
    {"product_id": "p1", "variant_id": "var-p1", "title": "Cam One"},
    {"product_id": "p2", "variant_id": "var-p2", "title": "Cam Two"},
]


def _turn(orchestrator, message, **fields):
    return orchestrator.handle(ChatRequest(session_id="s1", current_message=message, **fields))


def _ids(items):
    return [item["id"] for item in items]


def test_low_confidence_with_question_clarifies(orchestrator, gemini):
    gemini.reply(
        "classify",
        {
            "intent_id": "travel_vlogging",
            "confidence": 0.55,
            "acknowledgement": "A trip, nice.",
            "clarifying_question": "Will you film mostly indoors or outdoors?",
            "missing_info": ["environment"],
        },
    )
    context = _turn(orchestrator, "a camera for my trip", clarification_count=1)
    response = context.response
    assert response.response_type == "clarification"
    assert response.clarification_count == 2
    assert response.clarifying_question == "Will you film mostly indoors or outdoors?"
    assert response.conversation_state["clarification_attempts"] == 2
    assert response.conversation_state["conversation_phase"] == "clarification"
    assert response.conversation_state["turn_count"] == 1


def test_clarification_defaults_when_classifier_is_terse(orchestrator, gemini):
    gemini.reply("classify", {"intent_id": None, "confidence": 0.2})
    response = _turn(orchestrator, "hi").response
    assert response.acknowledgement == "I understood that."
    assert response.clarifying_question == "Could you tell me more?"


def test_question_budget_forces_recommendation(orchestrator, gemini):
    gemini.reply(
        "classify",
        {"intent_id": "travel_vlogging", "confidence": 0.4, "clarifying_question": "What will you film?"},
    )
    state = None
    for expected in (1, 2, 3):
        response = _turn(orchestrator, "not sure yet", conversation_state=state).response
        assert response.response_type == "clarification"
        assert response.clarification_count == expected
        state = response.conversation_state

    response = _turn(orchestrator, "still not sure", conversation_state=state).response
    assert response.response_type == "recommendation"
    assert response.primary_recommendation["id"] == "p1"
    assert response.conversation_state["clarification_attempts"] == 0
    assert response.conversation_state["turn_count"] == 4


def test_question_budget_with_nothing_to_show_recovers(orchestrator, gemini):
    gemini.reply("classify", {"intent_id": "wildlife_hunting", "confidence": 0.3})
    response = _turn(orchestrator, "hmm", conversation_state={"clarification_attempts": 3}).response
    assert response.response_type == "recommendation"
    assert response.recovery_scenario == "out_of_stock"
    assert response.alternatives
    assert response.next_page_offset is None


def test_confident_turn_recommends_first_page(orchestrator, gemini):
    gemini.reply("classify", {"intent_id": "travel_vlogging", "confidence": 0.9, "explanation": "Trips need light kit."})
    context = _turn(orchestrator, "vlogging my trip around Japan")
    response = context.response
    assert response.response_type == "recommendation"
    assert response.primary_recommendation["id"] == "p1"
    assert _ids(response.secondary_recommendations) == ["p2", "p3"]
    assert response.next_page_offset == 3
    assert response.explanation == "Trips need light kit."
    assert response.acknowledgement == "Here are the best matches I found."
    assert response.conversation_state["conversation_phase"] == "recommendation"
    assert "classify" in [entry["event"] for entry in response.thinking_logs]


def test_explicit_intent_paginates_without_classifying(orchestrator, gemini):
    response = _turn(orchestrator, "show me more", intent_id="travel_vlogging", offset=3).response
    assert "classify" not in gemini.calls
    assert response.response_type == "recommendation"
    assert response.confidence == 1.0
    assert response.primary_recommendation is None
    assert _ids(response.secondary_recommendations) == ["p4"]
    assert response.next_page_offset is None


def test_persona_shapes_decision_frame(orchestrator, gemini):
    gemini.reply("classify", {"intent_id": "travel_vlogging", "confidence": 0.9})
    response = _turn(orchestrator, "What if I make the wrong choice for my trip?").response
    assert response.conversation_state["inferred_persona"] == "anxiety_prone"
    assert response.decision_frame == "This is a safe, reversible decision"


def test_classifier_cart_action_adds_indexed_product(orchestrator, gemini):
    gemini.reply("classify", {"intent_id": None, "confidence": 0.9, "cart_action": "add", "product_index": 0})
    response = _turn(orchestrator, "add the first one", last_products=LAST_PRODUCTS).response
    assert response.response_type == "cart_action"
    assert response.product_id == "p1"
    assert response.variant_id == "var-p1"
    assert _ids(response.suggested_addons) == ["acc1", "acc2"]
    assert response.addon_message.startswith("To complete your setup")
    assert response.conversation_state["conversation_phase"] == "cart_action"


def test_keyword_cart_add_uses_ordinal(orchestrator, gemini):
    gemini.reply("classify", {"intent_id": "travel_vlogging", "confidence": 0.9})
    response = _turn(orchestrator, "add the second one to my cart", last_products=LAST_PRODUCTS).response
    assert response.response_type == "cart_action"
    assert response.product_id == "p2"


def test_ambiguous_cart_add_asks_which_product(orchestrator, gemini):
    gemini.reply("classify", {"intent_id": None, "confidence": 0.9, "cart_action": "add"})
    response = _turn(orchestrator, "add it", last_products=LAST_PRODUCTS).response
    assert response.response_type == "clarification"
    assert "Which of the products" in response.clarifying_question
    assert response.conversation_state["clarification_attempts"] == 0


def test_cart_summary_button_creates_draft_order(orchestrator, gemini, commerce_session):
    commerce_session.request.return_value = commerce_response(
        201,
        {"draft_order": {"id": 77, "subtotal_price": "1999.00", "total_tax": "0.00", "total_price": "1999.00", "currency": "USD"}},
    )
    response = _turn(
        orchestrator,
        "checkout",
        action="cart_summary",
        cart_items=[{"variant_id": "4411", "title": "Cam One", "quantity": 1, "price": "1999.00"}],
    ).response
    assert gemini.calls == []
    assert response.response_type == "cart_summary"
    assert response.total == "1999.00"
    assert response.draft_order_id == "77"
    assert response.items[0]["title"] == "Cam One"


def test_empty_cart_summary_asks_to_shop(orchestrator):
    response = _turn(orchestrator, "checkout", action="cart_summary").response
    assert response.response_type == "clarification"
    assert response.acknowledgement == "Your cart is empty right now."


def test_place_order_completes_draft(orchestrator, commerce_session):
    commerce_session.request.return_value = commerce_response(
        200, {"draft_order": {"order_id": 5001, "name": "#1001", "total_price": "1999.00", "currency": "USD"}}
    )
    response = _turn(orchestrator, "place my order", action="place_order", draft_order_id="77").response
    assert response.response_type == "order_placed"
    assert response.order_number == "#1001"
    assert response.conversation_state["conversation_phase"] == "order_placed"


def test_place_order_failure_offers_retry(orchestrator, commerce_session):
    commerce_session.request.return_value = commerce_response(500, {"errors": "down"})
    response = _turn(orchestrator, "place my order", action="place_order", draft_order_id="77").response
    assert response.response_type == "clarification"
    assert "try placing it again" in response.clarifying_question


def test_post_checkout_sends_closing_message(orchestrator, gemini):
    gemini.reply("classify", {"intent_id": None, "confidence": 0.9, "post_checkout": True})
    gemini.reply("closing", "Have a wonderful trip!")
    response = _turn(orchestrator, "thanks so much").response
    assert response.response_type == "clarification"
    assert response.acknowledgement == "Have a wonderful trip!"
    assert response.conversation_state["conversation_phase"] == "post_checkout"


def test_outcome_images_with_prefetched_products(orchestrator, gemini):
    gemini.reply(
        "classify",
        {
            "intent_id": "travel_vlogging",
            "confidence": 0.9,
            "ready_for_image_generation": True,
            "outcome_context": {"use_case": "wedding", "desired_outcome": "candid shots in a dim hall"},
        },
    )
    response = _turn(orchestrator, "filming my sister's wedding").response
    assert response.response_type == "image_generation"
    assert [image["variant_id"] for image in response.images] == ["a", "b", "c"]
    assert _ids(response.cached_products) == ["p1", "p2", "p3"]
    assert response.outcome_description == "candid shots in a dim hall"


def test_image_failure_falls_through_to_recommendation(make_orchestrator, gemini):
    orchestrator = make_orchestrator(images=OutcomeImageGenerator([]))
    gemini.reply(
        "classify",
        {
            "intent_id": "travel_vlogging",
            "confidence": 0.9,
            "ready_for_image_generation": True,
            "outcome_context": {"desired_outcome": "candid shots"},
        },
    )
    context = _turn(orchestrator, "filming my sister's wedding")
    assert context.response.response_type == "recommendation"
    assert context.response.primary_recommendation["id"] == "p1"
    assert any(entry["status"] == "warning" for entry in context.thinking_logs)


def test_unknown_capability_searches_by_capability(orchestrator, gemini):
    gemini.reply(
        "classify",
        {
            "intent_id": None,
            "intent_status": "unknown_capability",
            "confidence": 0.8,
            "explanation": "Low light concert shooting",
        },
    )
    gemini.reply(
        "capabilities",
        [{"capability_key": "low_light", "weight": 1.0}, {"capability_key": "autofocus_reliability", "weight": 0.8}],
    )
    response = _turn(orchestrator, "I shoot bands in dark clubs").response
    assert response.response_type == "recommendation"
    assert response.intent_id == "dynamic_low_light_concert_shooting"
    assert response.primary_recommendation["source"] == "capability"
    assert _ids(response.secondary_recommendations) == ["p3"]
    assert response.next_page_offset is None


def test_semantic_fallback_reroutes_to_capability_search(orchestrator, gemini):
    gemini.reply("classify", {"intent_id": "travel_vlogging", "confidence": 0.8})
    gemini.reply(
        "validate",
        {"inferred_need": "bakery inventory", "match_confidence": 0.2, "should_use_fallback": True},
    )
    response = _turn(orchestrator, "I run a bakery and count loaves").response
    assert response.response_type == "recommendation"
    assert response.intent_id == "dynamic_bakery_inventory"
    assert response.primary_recommendation["source"] == "capability"


def test_empty_ranking_triggers_recovery(orchestrator, gemini):
    gemini.reply("classify", {"intent_id": "wildlife_hunting", "confidence": 0.9})
    response = _turn(orchestrator, "photographing birds and wildlife").response
    assert response.response_type == "recommendation"
    assert response.recovery_scenario == "out_of_stock"
    assert len(response.alternatives) == 3
    assert response.exit_options
    assert response.primary_recommendation is None


def test_unparseable_classifier_output_is_fatal(orchestrator, gemini):
    gemini.reply("classify", "sorry, I cannot help")
    with pytest.raises(ClassifierOutputError):
        _turn(orchestrator, "hello")


@pytest.mark.parametrize(
    "message",
    ["I want to buy the best camera for my travel vlog", "I need a travel camera, and I'd add a mic if you have one"],
)
def test_shopping_wording_is_not_a_cart_add(orchestrator, gemini, message):
    gemini.reply("classify", {"intent_id": "travel_vlogging", "confidence": 0.9})
    response = _turn(orchestrator, message).response
    assert response.response_type == "recommendation"
    assert response.primary_recommendation["id"] == "p1"


def test_cart_keywords_need_something_to_act_on():
    assert detect_cart_action("add the second one to my cart") is None
    assert detect_cart_action("add the second one to my cart", has_products=True) == "add"
    assert detect_cart_action("I'll take the first one", has_products=True) == "add"
    assert detect_cart_action("I'd add a mic if you have one", has_products=True) is None
    assert detect_cart_action("I want to buy the best camera", has_products=True) is None
    assert detect_cart_action("checkout", has_cart=False) is None
    assert detect_cart_action("checkout", has_cart=True) == "summary"
    assert detect_cart_action("check out this lens for me", has_cart=True) is None
    assert detect_cart_action("please place my order", has_cart=True) == "place_order"


def test_slow_images_do_not_hold_later_turns(make_orchestrator, gemini):
    release = threading.Event()

    def slow_remote(context):
        release.wait(3)
        raise RuntimeError("too slow")

    orchestrator = make_orchestrator(
        images=OutcomeImageGenerator([("remote", slow_remote), ("placeholder", placeholder_images)]),
        image_timeout_sec=0.2,
        executor=ThreadPoolExecutor(max_workers=1),
    )
    gemini.reply(
        "classify",
        {
            "intent_id": "travel_vlogging",
            "confidence": 0.9,
            "ready_for_image_generation": True,
            "outcome_context": {"desired_outcome": "candid shots"},
        },
    )
    durations = []
    try:
        for _ in range(4):
            started = time.monotonic()
            response = _turn(orchestrator, "filming my sister's wedding").response
            durations.append(time.monotonic() - started)
            assert response.response_type == "image_generation"
            assert [image["variant_id"] for image in response.images] == ["a", "b", "c"]
            assert _ids(response.cached_products) == ["p1", "p2", "p3"]
    finally:
        release.set()
    assert max(durations) < 1.5
