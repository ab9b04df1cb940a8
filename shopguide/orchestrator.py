"""Per-turn conversation orchestration.

Role:
    Composes persona inference, classification, semantic validation, ranking,
    capability fallback, outcome images, and No-Product Recovery into one decision
    per request. The server is stateless: ConversationState arrives with the request
    and the updated copy leaves with the response.

Step order (first step to set `context.response` ends the turn):
    prepare              restore state, advance turn, infer persona (always runs)
    ui_action            explicit cart buttons (action=add_to_cart|cart_summary|place_order)
    explicit_intent      pagination bypass: intent_id supplied, confidence fixed at 1.0
    classify             one classifier call; malformed output is request-fatal
    post_checkout        closing message, turn ends
    side_channel         cart add / summary / place order from classifier or keywords
    unknown_capability   classifier says no intent fits and it is ready: capability search
    semantic_validation  confidence >= 0.5: confirm, correct, or reroute to dynamic_*
    strategy_switch      question budget spent: show best guesses or recover
    outcome_images       high/medium confidence and classifier ready: images + prefetch
    clarify              confidence < 0.7 or a clarifying question exists
    recommend            ranked page with presentation copy, or recovery when empty
    finalize             log the outcome (always runs)
"""

from __future__ import annotations

import logging
import re
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .addon_suggestions import addon_message, relevant_addons
from .capability_matcher import CapabilityMatcher
from .catalog_store import Product
from .commerce_client import CartItem, CommerceClient
from .confidence import ConfidenceLevel, assess_confidence, needs_clarification, ready_for_outcome_images
from .conversation_state import (
    ConversationState,
    advance_turn,
    increment_clarification_attempts,
    reset_clarification_attempts,
    restore_state,
    should_switch_strategy,
    update_intent,
    update_persona,
    update_phase,
)
from .errors import CommerceError
from .image_generator import OutcomeContext, OutcomeImageGenerator
from .intent_classifier import Classification, IntentClassifier
from .models import (
    CartActionResponse,
    CartSummaryResponse,
    ChatRequest,
    ClarificationResponse,
    ImageGenerationResponse,
    OrderPlacedResponse,
    RecommendationResponse,
)
from .no_product_handler import NoProductHandler
from .persona_inference import decision_frame_for_persona, infer_persona
from .presentation import Presenter
from .product_service import ProductService, has_next_page
from .semantic_validator import SemanticValidator, dynamic_intent_for
from .step_runtime import TurnRunner, TurnStep
from .utils import humanize_intent

logger = logging.getLogger("shopguide.orchestrator")

PLACE_ORDER_RE = re.compile(
    r"\b(place|confirm|complete|finali[sz]e)\s+(the\s+|my\s+)?(order|purchase)\b",
    re.IGNORECASE,
)
CART_SUMMARY_RE = re.compile(
    r"\b((go\s+to|proceed\s+to|ready\s+to)\s+check\s?out|check\s?out\s*(now|please)?\s*[.!?]*\s*$"
    r"|(view|show|see|review)\s+(me\s+)?(my\s+|the\s+)?cart|cart\s+summary|what'?s\s+in\s+my\s+cart)",
    re.IGNORECASE,
)
ORDINALS = {
    "first": 0, "1st": 0, "second": 1, "2nd": 1, "third": 2, "3rd": 2, "last": -1,
}
ORDINAL_WORDS = "|".join(ORDINALS)
CART_ADD_RE = re.compile(
    r"\b(add|put)\b[^.!?]*\b(to|in|into)\s+(my\s+|the\s+)?(cart|basket)\b"
    r"|\b(add|take|buy|get)\s+(me\s+)?the\s+(" + ORDINAL_WORDS + r")(\s+one)?\b"
    r"|\bi'?ll\s+take\s+(it|this\s+one|that\s+one|the\s+(" + ORDINAL_WORDS + r")(\s+one)?)\b",
    re.IGNORECASE,
)
ORDINAL_RE = re.compile(r"\b(" + ORDINAL_WORDS + r")\b", re.IGNORECASE)

UI_ACTIONS = {"add_to_cart": "add", "cart_summary": "summary", "place_order": "place_order"}
POST_CHECKOUT_QUESTION = "Is there anything else I can help you find today?"


def detect_cart_action(message: str, has_products: bool = False, has_cart: bool = False) -> Optional[str]:
    """Keyword fallback for cart intents the classifier did not flag.

    Adding needs products already shown; summary and ordering need something in the cart.
    """
    text = message or ""
    if has_cart and PLACE_ORDER_RE.search(text):
        return "place_order"
    if has_cart and CART_SUMMARY_RE.search(text):
        return "summary"
    if has_products and CART_ADD_RE.search(text):
        return "add"
    return None


def ordinal_index(message: str) -> Optional[int]:
    match = ORDINAL_RE.search(message or "")
    return ORDINALS[match.group(1).lower()] if match else None


@dataclass
class TurnContext:
    """Mutable context passed through each orchestration step."""
    session_id: str
    message: str
    history: List[dict]
    request: ChatRequest
    state: ConversationState
    offset: int = 0
    persona: Optional[str] = None
    classification: Optional[Classification] = None
    intent_id: Optional[str] = None
    confidence: float = 0.0
    level: Optional[ConfidenceLevel] = None
    prefetched: Optional[List[Product]] = None
    response: Optional[Any] = None
    thinking_logs: List[Dict[str, str]] = field(default_factory=list)

    def log(self, event: str, detail: str, status: str = "success") -> None:
        """Append a structured trace entry returned with the response."""
        self.thinking_logs.append({"event": event, "detail": detail, "status": status})

    @property
    def would_clarify(self) -> bool:
        question = self.classification.clarifying_question if self.classification else ""
        return needs_clarification(self.confidence, question)


class ShoppingOrchestrator:
    """Turn-level decision engine for the shopping assistant."""

    def __init__(
        self,
        classifier: IntentClassifier,
        validator: SemanticValidator,
        products: ProductService,
        matcher: CapabilityMatcher,
        recovery: NoProductHandler,
        presenter: Presenter,
        images: OutcomeImageGenerator,
        commerce: CommerceClient,
        page_size: int = 3,
        max_clarification_attempts: int = 3,
        image_timeout_sec: float = 20.0,
        executor: Optional[ThreadPoolExecutor] = None,
    ) -> None:
        """Purpose: Wire collaborators and build the ordered step list.
        Inputs/Outputs: Inputs are the collaborators and turn limits; no return value.
        Side Effects / State: Creates a thread pool for outcome-image jobs
            unless one is injected.
        Dependencies: TurnRunner/TurnStep and the step methods on this class.
        Failure Modes: None at init; runtime errors surface from step functions.
        If Removed: The chat endpoint has nothing to call.
        Testing Notes: Build with fakes (tests/conftest.py) and drive handle().
        """
        # Store collaborators and register the step order.
        self._classifier = classifier
        self._validator = validator
        self._products = products
        self._matcher = matcher
        self._recovery = recovery
        self._presenter = presenter
        self._images = images
        self._commerce = commerce
        self._page_size = page_size
        self._max_attempts = max_clarification_attempts
        self._image_timeout = image_timeout_sec
        self._executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix="shopguide-turn")
        self._runner = TurnRunner(
            steps=[
                TurnStep("prepare", self._step_prepare, always_run=True),
                TurnStep("ui_action", self._step_ui_action, skip_if=lambda c: not c.request.action),
                TurnStep("explicit_intent", self._step_explicit_intent, skip_if=lambda c: not c.request.intent_id),
                TurnStep("classify", self._step_classify),
                TurnStep("post_checkout", self._step_post_checkout, skip_if=lambda c: not c.classification.post_checkout),
                TurnStep("side_channel", self._step_side_channel),
                TurnStep("unknown_capability", self._step_unknown_capability),
                TurnStep("semantic_validation", self._step_semantic_validation),
                TurnStep("strategy_switch", self._step_strategy_switch),
                TurnStep("outcome_images", self._step_outcome_images),
                TurnStep("clarify", self._step_clarify, skip_if=lambda c: not c.would_clarify),
                TurnStep("recommend", self._step_recommend),
                TurnStep("finalize", self._step_finalize, always_run=True),
            ]
        )

    @property
    def step_names(self) -> List[str]:
        return self._runner.step_names

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)

    def handle(self, request: ChatRequest) -> TurnContext:
        """Run every step for one request and return the populated context."""
        session_id = request.session_id or uuid.uuid4().hex
        context = TurnContext(
            session_id=session_id,
            message=request.current_message,
            history=[entry.model_dump() for entry in request.chat_history],
            request=request,
            state=restore_state(session_id, request.conversation_state, request.clarification_count),
            offset=request.offset,
        )
        logger.info("session=%s turn_start message=%s", session_id, request.current_message)
        self._runner.run(context)
        return context

    # Steps -------------------------------------------------------------------

    def _step_prepare(self, context: TurnContext) -> None:
        # Advance the turn and re-infer persona with hysteresis.
        context.state = advance_turn(context.state)
        persona = infer_persona(context.message, context.history, context.state.inferred_persona)
        context.persona = persona
        context.state = update_persona(context.state, persona)
        context.log("prepare", f"turn={context.state.turn_count} persona={persona or 'none'}")

    def _step_ui_action(self, context: TurnContext) -> None:
        action = UI_ACTIONS[context.request.action]
        context.log("ui_action", action)
        self._run_cart_action(context, action, context.request.product_index)

    def _step_explicit_intent(self, context: TurnContext) -> None:
        # Pagination bypass: trust the client's intent and skip classification.
        context.intent_id = context.request.intent_id
        context.confidence = 1.0
        context.level = assess_confidence(1.0)
        context.state = update_intent(context.state, context.intent_id, 1.0)
        context.log("explicit_intent", f"intent={context.intent_id} offset={context.offset}")
        self._recommend(context)

    def _step_classify(self, context: TurnContext) -> None:
        classification = self._classifier.classify(
            context.message,
            context.history,
            persona=context.persona,
            last_products=context.request.last_products,
        )
        context.classification = classification
        context.intent_id = classification.intent_id
        context.confidence = classification.confidence
        context.state = update_intent(context.state, context.intent_id, context.confidence)
        context.log(
            "classify",
            f"intent={classification.intent_id} confidence={classification.confidence:.2f} "
            f"status={classification.intent_status}",
        )
        logger.info(
            "session=%s intent=%s confidence=%.2f status=%s cart=%s",
            context.session_id,
            classification.intent_id,
            classification.confidence,
            classification.intent_status,
            classification.cart_action,
        )

    def _step_post_checkout(self, context: TurnContext) -> None:
        closing = self._presenter.closing_message(context.message, context.history, context.persona)
        context.log("post_checkout", "closing message")
        self._respond(
            context,
            "post_checkout",
            ClarificationResponse(
                intent_id=context.intent_id,
                confidence=context.confidence,
                acknowledgement=closing,
                clarifying_question=POST_CHECKOUT_QUESTION,
                explanation="Your order is complete.",
            ),
        )

    def _step_side_channel(self, context: TurnContext) -> None:
        # Classifier signal first, keyword triggers second.
        classification = context.classification
        request = context.request
        action = classification.cart_action or detect_cart_action(
            context.message,
            has_products=bool(request.last_products),
            has_cart=bool(request.cart_items or request.draft_order_id),
        )
        if not action:
            return
        index = classification.product_index
        if index is None:
            index = ordinal_index(context.message)
        context.log("side_channel", f"action={action} index={index}")
        self._run_cart_action(context, action, index)

    def _step_unknown_capability(self, context: TurnContext) -> None:
        classification = context.classification
        if classification.intent_status != "unknown_capability" or context.would_clarify:
            return
        need = classification.explanation or context.message
        found = self._matcher.search(context.message, context=need, offset=context.offset, limit=self._page_size)
        context.log("unknown_capability", f"results={len(found)}")
        if not found:
            return
        context.intent_id = dynamic_intent_for(need)
        context.state = update_intent(context.state, context.intent_id, context.confidence)
        self._present(context, found, explanation=classification.explanation)

    def _step_semantic_validation(self, context: TurnContext) -> None:
        outcome = self._validator.validate(context.intent_id, context.confidence, context.message, context.history)
        if outcome.action in ("corrected", "fallback"):
            context.intent_id = outcome.intent_id
            context.confidence = outcome.confidence
            context.state = update_intent(context.state, context.intent_id, context.confidence)
        context.log("semantic_validation", f"action={outcome.action} intent={context.intent_id}")

    def _step_strategy_switch(self, context: TurnContext) -> None:
        context.level = assess_confidence(context.confidence)
        if not should_switch_strategy(context.state, self._max_attempts):
            return
        if context.level.level == "high" and not context.would_clarify:
            return
        logger.info(
            "session=%s strategy_switch attempts=%s intent=%s",
            context.session_id,
            context.state.clarification_attempts,
            context.intent_id,
        )
        context.log("strategy_switch", f"attempts={context.state.clarification_attempts}")
        context.state = reset_clarification_attempts(context.state)
        found = self._fetch_products(context)
        if not found:
            self._respond_recovery(context)
            return
        self._present(
            context,
            found,
            explanation="Based on what you've shared so far, these are my best picks. Tell me if anything feels off.",
        )

    def _step_outcome_images(self, context: TurnContext) -> None:
        classification = context.classification
        if not ready_for_outcome_images(context.level, classification.ready_for_image_generation):
            return
        outcome = OutcomeContext.from_dict(classification.outcome_context)
        # Images run on the pool while products are fetched on this thread; either may fail.
        deadline = time.monotonic() + self._image_timeout
        image_future = self._executor.submit(self._images.generate, outcome)
        try:
            context.prefetched = self._fetch_products(context)
        except Exception as exc:
            logger.warning("session=%s prefetch failed error=%s", context.session_id, exc)
            context.prefetched = None
        images = None
        try:
            images = image_future.result(timeout=max(0.0, deadline - time.monotonic()))
        except FutureTimeout:
            image_future.cancel()
            logger.warning("session=%s outcome_images timeout", context.session_id)
            images = self._images.local_images(outcome)
        except Exception as exc:
            logger.warning("session=%s outcome_images failed error=%s", context.session_id, exc)

        if not images:
            context.log("outcome_images", "unavailable, continuing with products", status="warning")
            return
        context.log("outcome_images", f"images={len(images)} prefetched={len(context.prefetched or [])}")
        self._respond(
            context,
            "image_generation",
            ImageGenerationResponse(
                intent_id=context.intent_id,
                outcome_description=outcome.desired_outcome,
                images=[image.to_dict() for image in images],
                cached_products=[p.to_dict() for p in context.prefetched] if context.prefetched else None,
                acknowledgement=classification.acknowledgement or "Here's how that could look.",
                explanation=classification.explanation or "Pick the picture closest to what you have in mind.",
                inferred_persona=context.persona,
            ),
        )

    def _step_clarify(self, context: TurnContext) -> None:
        classification = context.classification
        context.state = increment_clarification_attempts(context.state)
        attempts = context.state.clarification_attempts
        context.log("clarify", f"attempts={attempts}")
        self._respond(
            context,
            "clarification",
            ClarificationResponse(
                intent_id=context.intent_id,
                confidence=context.confidence,
                missing_info=classification.missing_info,
                acknowledgement=classification.acknowledgement or "I understood that.",
                clarifying_question=classification.clarifying_question or "Could you tell me more?",
                explanation=classification.explanation or "I need a bit more detail to help you best.",
                clarification_count=attempts,
            ),
        )

    def _step_recommend(self, context: TurnContext) -> None:
        self._recommend(context)

    def _step_finalize(self, context: TurnContext) -> None:
        response_type = getattr(context.response, "response_type", None)
        logger.info(
            "session=%s turn_end response=%s phase=%s attempts=%s persona=%s",
            context.session_id,
            response_type,
            context.state.conversation_phase,
            context.state.clarification_attempts,
            context.persona,
        )

    # Shared helpers ----------------------------------------------------------

    def _fetch_products(self, context: TurnContext) -> List[Product]:
        if context.intent_id:
            return self._products.get_top_products(
                context.intent_id, context.offset, self._page_size, user_message=context.message
            )
        return self._matcher.search(context.message, offset=context.offset, limit=self._page_size)

    def _recommend(self, context: TurnContext) -> None:
        found = context.prefetched if context.prefetched is not None else self._fetch_products(context)
        context.log("recommend", f"intent={context.intent_id} results={len(found)} offset={context.offset}")
        if not found:
            self._respond_recovery(context)
            return
        explanation = context.classification.explanation if context.classification else ""
        self._present(context, found, explanation=explanation)

    def _present(self, context: TurnContext, found: List[Product], explanation: str = "") -> None:
        frame = decision_frame_for_persona(context.persona)
        presentation = self._presenter.present(context.intent_id or "", context.message, found, frame)
        if context.offset == 0:
            primary = presentation.primary
            secondary = presentation.secondary
        else:
            primary = None
            secondary = [item for item in [presentation.primary, *presentation.secondary] if item]
        next_offset = context.offset + self._page_size if has_next_page(found, self._page_size) else None
        context.state = reset_clarification_attempts(context.state)
        self._respond(
            context,
            "recommendation",
            RecommendationResponse(
                intent_id=context.intent_id,
                confidence=context.confidence,
                primary_recommendation=primary,
                secondary_recommendations=secondary,
                decision_frame=frame,
                acknowledgement=presentation.acknowledgement,
                explanation=explanation,
                next_page_offset=next_offset,
            ),
        )

    def _respond_recovery(self, context: TurnContext) -> None:
        recovery = self._recovery.handle(context.intent_id, context.message, context.persona)
        context.log("no_product_recovery", f"scenario={recovery.scenario} alternatives={len(recovery.alternatives)}")
        context.state = reset_clarification_attempts(context.state)
        self._respond(
            context,
            "recommendation",
            RecommendationResponse(
                intent_id=context.intent_id,
                confidence=context.confidence,
                decision_frame=decision_frame_for_persona(context.persona),
                acknowledgement=recovery.message,
                explanation=f"No products found for {humanize_intent(context.intent_id or 'this request')}.",
                next_page_offset=None,
                alternatives=recovery.alternatives,
                exit_options=recovery.exit_options,
                recovery_scenario=recovery.scenario,
            ),
        )

    def _run_cart_action(self, context: TurnContext, action: str, index: Optional[int]) -> None:
        if action == "add":
            self._cart_add(context, index)
        elif action == "summary":
            self._cart_summary(context)
        else:
            self._place_order(context)

    def _cart_add(self, context: TurnContext, index: Optional[int]) -> None:
        last_products = context.request.last_products
        if index is None and len(last_products) == 1:
            index = 0
        product = None
        if index is not None and last_products and -len(last_products) <= index < len(last_products):
            product = last_products[index]
        if not product:
            self._clarify_side_channel(
                context,
                "I'd be happy to add that for you.",
                "Which of the products I showed would you like to add to your cart?",
                "I couldn't tell which product you meant.",
            )
            return
        product_id = str(product.get("product_id") or product.get("id") or "")
        title = str(product.get("title") or "that item")
        addons = relevant_addons(self._products, product_id)
        context.log("cart_add", f"product={product_id} addons={len(addons)}")
        self._respond(
            context,
            "cart_action",
            CartActionResponse(
                product_id=product_id,
                variant_id=str(product.get("variant_id") or ""),
                product_title=title,
                acknowledgement=f"I've added the {title} to your cart.",
                suggested_addons=addons,
                addon_message=addon_message(addons) or None,
            ),
        )

    def _cart_items(self, context: TurnContext) -> List[CartItem]:
        return [CartItem.from_dict(item.model_dump()) for item in context.request.cart_items]

    def _cart_summary(self, context: TurnContext) -> None:
        items = self._cart_items(context)
        if not items:
            self._clarify_side_channel(
                context,
                "Your cart is empty right now.",
                "Would you like me to recommend something to add?",
                "There is nothing to summarize yet.",
            )
            return
        try:
            draft = self._commerce.create_draft_order(items, context.request.address)
        except CommerceError as exc:
            logger.warning("session=%s cart_summary failed error=%s", context.session_id, exc)
            self._clarify_side_channel(
                context,
                "I couldn't prepare your order summary just now.",
                "Would you like me to try again?",
                "The store did not respond as expected.",
            )
            return
        context.log("cart_summary", f"draft={draft.draft_order_id} total={draft.total}")
        self._respond(
            context,
            "cart_summary",
            CartSummaryResponse(
                items=[item.to_dict() for item in items],
                subtotal=draft.subtotal,
                shipping=draft.shipping,
                tax=draft.tax,
                total=draft.total,
                currency=draft.currency,
                acknowledgement="Here's your order summary. Shall I place the order? Payment is cash on delivery.",
                draft_order_id=draft.draft_order_id or None,
            ),
        )

    def _place_order(self, context: TurnContext) -> None:
        draft_id = context.request.draft_order_id
        try:
            if not draft_id:
                items = self._cart_items(context)
                if not items:
                    self._clarify_side_channel(
                        context,
                        "There's nothing in your cart to order yet.",
                        "Would you like me to recommend something?",
                        "An order needs at least one item.",
                    )
                    return
                draft_id = self._commerce.create_draft_order(items, context.request.address).draft_order_id
            order = self._commerce.complete_draft_order(draft_id)
        except CommerceError as exc:
            logger.warning("session=%s place_order failed error=%s", context.session_id, exc)
            self._clarify_side_channel(
                context,
                "I wasn't able to place your order just now.",
                "Would you like me to try placing it again?",
                "The store did not confirm the order.",
            )
            return
        context.log("order_placed", f"order={order.order_id}")
        self._respond(
            context,
            "order_placed",
            OrderPlacedResponse(
                order_id=order.order_id,
                order_number=order.order_number,
                total=order.total,
                currency=order.currency,
                acknowledgement=f"Your order {order.order_number} has been placed. Thank you!",
            ),
        )

    def _clarify_side_channel(self, context: TurnContext, ack: str, question: str, explanation: str) -> None:
        # Side-channel problems ask the user to retry; they do not spend the question budget.
        self._respond(
            context,
            "clarification",
            ClarificationResponse(
                intent_id=context.intent_id,
                confidence=context.confidence,
                acknowledgement=ack,
                clarifying_question=question,
                explanation=explanation,
                clarification_count=context.state.clarification_attempts,
            ),
        )

    def _respond(self, context: TurnContext, phase: str, response: Any) -> None:
        context.state = update_phase(context.state, phase)
        response.conversation_state = context.state.to_dict()
        response.thinking_logs = context.thinking_logs
        context.response = response
