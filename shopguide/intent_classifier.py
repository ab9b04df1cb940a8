from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .catalog_cache import CatalogCache
from .errors import ClassifierOutputError, GenerationError
from .gemini_client import GeminiClient
from .persona_inference import question_style_for_persona
from .prompt_loader import render_prompt
from .utils import coerce_float, safe_json_loads

logger = logging.getLogger("shopguide.classifier")

HISTORY_LIMIT = 10
CART_ACTIONS = {"add", "summary", "place_order"}


@dataclass
class Classification:
    """Structured classifier verdict for one turn."""
    intent_id: Optional[str]
    confidence: float
    missing_info: List[str] = field(default_factory=list)
    acknowledgement: str = ""
    clarifying_question: str = ""
    explanation: str = ""
    intent_status: str = "known"
    ready_for_image_generation: bool = False
    outcome_context: Dict[str, Any] = field(default_factory=dict)
    cart_action: Optional[str] = None
    product_index: Optional[int] = None
    post_checkout: bool = False


def parse_classification(raw: str) -> Classification:
    """Purpose: Convert raw classifier text into a Classification.
    Inputs/Outputs: Input is the model's text; output is a Classification.
    Side Effects / State: None.
    Dependencies: safe_json_loads (fenced block first, then outermost braces).
    Failure Modes: Raises ClassifierOutputError carrying the raw text when no JSON object
        can be parsed; this is the only request-fatal parse in a turn.
    If Removed: The orchestrator has no intent, confidence, or cart signal.
    Testing Notes: Fenced JSON parses; prose without braces raises.
    """
    # Parse strictly, then coerce each field to its expected type.
    data = safe_json_loads(raw)
    if data is None:
        raise ClassifierOutputError("Invalid JSON response from classifier", raw=raw)

    missing = data.get("missing_info") or []
    if isinstance(missing, str):
        missing = [missing]
    cart_action = data.get("cart_action")
    if isinstance(cart_action, str):
        cart_action = cart_action.strip().lower() or None
    if cart_action not in CART_ACTIONS:
        cart_action = None
    product_index = data.get("product_index")
    try:
        product_index = int(product_index) if product_index is not None else None
    except (TypeError, ValueError):
        product_index = None
    outcome = data.get("outcome_context")
    intent_id = data.get("intent_id")
    return Classification(
        intent_id=str(intent_id).strip() if intent_id else None,
        confidence=min(1.0, max(0.0, coerce_float(data.get("confidence")))),
        missing_info=[str(item) for item in missing if item],
        acknowledgement=str(data.get("acknowledgement") or "").strip(),
        clarifying_question=str(data.get("clarifying_question") or "").strip(),
        explanation=str(data.get("explanation") or "").strip(),
        intent_status=str(data.get("intent_status") or "known").strip().lower(),
        ready_for_image_generation=bool(data.get("ready_for_image_generation")),
        outcome_context=outcome if isinstance(outcome, dict) else {},
        cart_action=cart_action,
        product_index=product_index,
        post_checkout=bool(data.get("post_checkout")),
    )


class IntentClassifier:
    """Single classification call per turn against the catalog's intent list."""

    def __init__(
        self,
        gemini: GeminiClient,
        cache: CatalogCache,
        prompts_dir: Path,
        model: Optional[str] = None,
    ) -> None:
        self._gemini = gemini
        self._cache = cache
        self._prompts_dir = prompts_dir
        self._model = model

    def classify(
        self,
        message: str,
        history: Sequence[dict],
        persona: Optional[str] = None,
        last_products: Sequence[dict] = (),
    ) -> Classification:
        intents = self._cache.intents()
        recent = [entry for entry in history if isinstance(entry, dict)][-HISTORY_LIMIT:]
        prompt = render_prompt(
            self._prompts_dir / "intent_classification.txt",
            {
                "INTENTS": "\n".join(f"{i.intent_id}: {i.label}" for i in intents),
                "QUESTION_STYLE": question_style_for_persona(persona),
                "LAST_PRODUCTS": "\n".join(
                    f"{index}: {item.get('title', '')}" for index, item in enumerate(last_products)
                )
                or "(none)",
                "HISTORY": "\n".join(f"{entry.get('role')}: {entry.get('content')}" for entry in recent) or "(none)",
                "MESSAGE": message,
            },
        )
        try:
            raw = self._gemini.generate_text(prompt, model=self._model, temperature=0.1, json_mode=True)
        except Exception as exc:
            raise GenerationError(f"classifier call failed: {exc}") from exc
        classification = parse_classification(raw)
        logger.debug("classification=%s", json.dumps(classification.__dict__, ensure_ascii=True, default=str))
        return classification
