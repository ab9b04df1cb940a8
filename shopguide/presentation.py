from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .catalog_store import Product
from .errors import GenerationError
from .fallbacks import Strategy, try_in_order
from .gemini_client import GeminiClient
from .prompt_loader import render_prompt
from .utils import safe_json_loads

logger = logging.getLogger("shopguide.presentation")

FALLBACK_ACK = "Here are the best matches I found."
CLOSING_FALLBACK = "Thank you for your purchase! We hope you enjoy your new gear."


@dataclass
class Presentation:
    """Copy wrapped around an already-ranked product page."""
    acknowledgement: str
    primary: Optional[Dict[str, Any]]
    secondary: List[Dict[str, Any]] = field(default_factory=list)


def fallback_presentation(products: Sequence[Product]) -> Presentation:
    if not products:
        return Presentation(acknowledgement=FALLBACK_ACK, primary=None, secondary=[])
    primary = products[0].to_dict()
    primary.update({"description": "Top match", "reasoning": "Best fit for your needs.", "features": []})
    secondary = []
    for product in products[1:]:
        item = product.to_dict()
        item["description"] = "Good alternative"
        secondary.append(item)
    return Presentation(acknowledgement=FALLBACK_ACK, primary=primary, secondary=secondary)


def merge_presentation(data: Dict[str, Any], products: Sequence[Product]) -> Presentation:
    """Overlay model copy onto our own product dicts; ranking and ids never come from the model."""
    if not products:
        raise GenerationError("nothing to present")
    by_id: Dict[str, Dict[str, Any]] = {}
    primary_copy = data.get("primary") if isinstance(data.get("primary"), dict) else {}
    if primary_copy.get("product_id"):
        by_id[str(primary_copy["product_id"])] = primary_copy
    for item in data.get("secondary") or []:
        if isinstance(item, dict) and item.get("product_id"):
            by_id[str(item["product_id"])] = item

    primary = products[0].to_dict()
    copy = by_id.get(primary["id"], primary_copy)
    features = copy.get("features") if isinstance(copy.get("features"), list) else []
    primary.update(
        {
            "description": str(copy.get("description") or "Top match"),
            "reasoning": str(copy.get("reasoning") or "Best fit for your needs."),
            "features": [str(f) for f in features],
        }
    )
    secondary = []
    for product in products[1:]:
        item = product.to_dict()
        item["description"] = str(by_id.get(product.id, {}).get("description") or "Good alternative")
        secondary.append(item)
    return Presentation(
        acknowledgement=str(data.get("acknowledgement") or FALLBACK_ACK),
        primary=primary,
        secondary=secondary,
    )


class Presenter:
    """Generation-service copy for recommendation and closing turns."""

    def __init__(self, gemini: GeminiClient, prompts_dir: Path, model: Optional[str] = None) -> None:
        self._gemini = gemini
        self._prompts_dir = prompts_dir
        self._model = model

    def present(
        self,
        intent_id: str,
        message: str,
        products: Sequence[Product],
        decision_frame: str = "",
    ) -> Presentation:
        """Purpose: Describe a ranked page without changing its order.
        Inputs/Outputs: Inputs are the intent, user message, ranked products, and the
            persona decision frame; output is a Presentation.
        Side Effects / State: One generation call.
        Dependencies: presentation.txt, merge_presentation, fallback_presentation.
        Failure Modes: Any call or parse failure yields the deterministic fallback copy.
        If Removed: Recommendation turns have no acknowledgement or descriptions.
        Testing Notes: Raise from the fake client and expect "Here are the best matches".
        """
        # Model copy first, deterministic copy second.
        result = try_in_order(
            [
                Strategy("model", lambda: self._present_with_model(intent_id, message, products, decision_frame)),
                Strategy("deterministic", lambda: fallback_presentation(products)),
            ],
            label="presentation",
        )
        return result.unwrap_or(fallback_presentation(products))

    def _present_with_model(
        self, intent_id: str, message: str, products: Sequence[Product], decision_frame: str
    ) -> Presentation:
        prompt = render_prompt(
            self._prompts_dir / "presentation.txt",
            {
                "INTENT": intent_id,
                "MESSAGE": message,
                "DECISION_FRAME": decision_frame or "Here's what fits your needs",
                "PRODUCTS_JSON": json.dumps([p.to_dict() for p in products], ensure_ascii=False),
            },
        )
        raw = self._gemini.generate_text(prompt, model=self._model, temperature=0.4, json_mode=True)
        data = safe_json_loads(raw)
        if data is None:
            raise GenerationError("presentation returned no JSON object")
        return merge_presentation(data, products)

    def closing_message(self, message: str, history: Sequence[dict], persona: Optional[str]) -> str:
        """One warm sentence after checkout; static text if the model is unavailable."""
        user_turns = " ".join(
            str(entry.get("content") or "") for entry in history if isinstance(entry, dict) and entry.get("role") == "user"
        )
        prompt = render_prompt(
            self._prompts_dir / "closing_message.txt",
            {"MESSAGE": message, "PERSONA": persona or "unknown", "CONTEXT": user_turns[-1500:]},
        )
        result = try_in_order(
            [
                Strategy(
                    "model",
                    lambda: self._gemini.generate_text(
                        prompt, model=self._model, temperature=0.7, max_output_tokens=100
                    ).strip(),
                    accept=lambda text: bool(text),
                ),
                Strategy("static", lambda: CLOSING_FALLBACK),
            ],
            label="closing_message",
        )
        return result.unwrap_or(CLOSING_FALLBACK)
