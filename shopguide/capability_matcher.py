from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from .catalog_cache import CatalogCache
from .catalog_store import CatalogStore, Product, ProductSource
from .errors import CatalogStoreError, GenerationError
from .fallbacks import Strategy, try_in_order
from .gemini_client import GeminiClient
from .prompt_loader import render_prompt
from .utils import coerce_float, safe_json_array

logger = logging.getLogger("shopguide.capability")

MAX_CAPABILITIES = 5
MISSING_WEIGHT = 0.5


@dataclass(frozen=True)
class CapabilityWeight:
    """How much one capability matters for this request, in [0, 1]."""
    capability_key: str
    weight: float


DEFAULT_CAPABILITY_TABLE: List[Tuple[Tuple[str, ...], List[CapabilityWeight]]] = [
    (
        ("wedding", "event", "party"),
        [
            CapabilityWeight("low_light", 1.0),
            CapabilityWeight("autofocus_reliability", 0.9),
            CapabilityWeight("video_quality", 0.8),
            CapabilityWeight("audio_quality", 0.7),
        ],
    ),
    (
        ("travel", "vlog"),
        [
            CapabilityWeight("portability", 1.0),
            CapabilityWeight("video_stability", 0.9),
            CapabilityWeight("battery_life", 0.8),
            CapabilityWeight("ease_of_use", 0.7),
        ],
    ),
    (
        ("sport", "action"),
        [
            CapabilityWeight("subject_tracking", 1.0),
            CapabilityWeight("burst_performance", 0.9),
            CapabilityWeight("durability", 0.8),
            CapabilityWeight("frame_rate", 0.7),
        ],
    ),
]

GENERIC_CAPABILITIES = [
    CapabilityWeight("video_quality", 1.0),
    CapabilityWeight("ease_of_use", 0.8),
    CapabilityWeight("portability", 0.6),
]


def default_capabilities(text: str) -> List[CapabilityWeight]:
    """Keyword-keyed fail-safe weights; the first matching row wins."""
    lowered = (text or "").lower()
    for keywords, weights in DEFAULT_CAPABILITY_TABLE:
        if any(keyword in lowered for keyword in keywords):
            return list(weights)
    return list(GENERIC_CAPABILITIES)


def parse_capability_weights(raw: str) -> List[CapabilityWeight]:
    """Parse the model's JSON array, clamping weights and dropping empty keys."""
    items = safe_json_array(raw)
    if items is None:
        raise GenerationError("capability inference returned no JSON array")
    weights: List[CapabilityWeight] = []
    seen = set()
    for item in items:
        if not isinstance(item, dict):
            continue
        key = str(item.get("capability_key") or "").strip()
        if not key or key in seen:
            continue
        seen.add(key)
        weight = min(1.0, max(0.0, coerce_float(item.get("weight"), MISSING_WEIGHT)))
        weights.append(CapabilityWeight(key, weight))
    return weights[:MAX_CAPABILITIES]


def rank_by_capabilities(
    weights: Sequence[CapabilityWeight],
    rows: Sequence[Tuple[str, str, float]],
) -> List[Tuple[str, float]]:
    """Purpose: Rank products by weighted-average capability score.
    Inputs/Outputs: Inputs are capability weights and (product_id, capability_key, value)
        rows; output is (product_id, score) pairs, best first.
    Side Effects / State: None; pure function.
    Dependencies: None.
    Failure Modes: None. A row whose key has no weight counts at MISSING_WEIGHT.
    If Removed: Capability fallback has no ordering.
    Testing Notes: Two products with different matched-row counts; the average, not the
        sum, must decide the order.
    """
    # Accumulate sum(value * weight) and matched-row count per product.
    weight_by_key: Dict[str, float] = {w.capability_key: w.weight for w in weights}
    totals: Dict[str, float] = {}
    counts: Dict[str, int] = {}
    for product_id, capability_key, value in rows:
        weight = weight_by_key.get(capability_key, MISSING_WEIGHT)
        totals[product_id] = totals.get(product_id, 0.0) + value * weight
        counts[product_id] = counts.get(product_id, 0) + 1

    ranked = [(product_id, totals[product_id] / counts[product_id]) for product_id in totals]
    ranked.sort(key=lambda item: (-item[1], item[0]))
    return ranked


class CapabilityMatcher:
    """Capability-vector search used when no catalog intent applies."""

    def __init__(
        self,
        gemini: GeminiClient,
        store: CatalogStore,
        cache: CatalogCache,
        prompts_dir: Path,
        model: Optional[str] = None,
    ) -> None:
        self._gemini = gemini
        self._store = store
        self._cache = cache
        self._prompts_dir = prompts_dir
        self._model = model

    def infer_capabilities(self, message: str, context: str = "") -> List[CapabilityWeight]:
        """Weights from the buyer's own words, falling back to the keyword table."""
        result = try_in_order(
            [
                Strategy(
                    "model",
                    lambda: self._infer_with_model(message, context),
                    accept=lambda weights: bool(weights),
                ),
                Strategy("keyword_defaults", lambda: default_capabilities(f"{context} {message}")),
            ],
            label="capability_inference",
        )
        weights = result.unwrap_or(list(GENERIC_CAPABILITIES))
        logger.info(
            "capabilities strategy=%s weights=%s",
            result.strategy,
            ", ".join(f"{w.capability_key}:{w.weight:.2f}" for w in weights),
        )
        return weights

    def _infer_with_model(self, message: str, context: str) -> List[CapabilityWeight]:
        keys = self._cache.capability_keys()
        prompt = render_prompt(
            self._prompts_dir / "capability_inference.txt",
            {
                "MESSAGE": message,
                "CONTEXT": f'Context: "{context}"' if context else "",
                "KEYS": "\n".join(f"- {key}" for key in keys),
            },
        )
        raw = self._gemini.generate_text(prompt, model=self._model, temperature=0.3, max_output_tokens=500)
        return parse_capability_weights(raw)

    def search(
        self,
        message: str,
        context: str = "",
        offset: int = 0,
        limit: int = 3,
        weights: Optional[Sequence[CapabilityWeight]] = None,
    ) -> List[Product]:
        """Purpose: Find products by capability scores for a free-form need.
        Inputs/Outputs: Inputs are the user's words, optional context, a page window,
            and optional pre-computed weights; output is up to `limit` Products tagged
            ProductSource.CAPABILITY, best first.
        Side Effects / State: One generation call unless weights are supplied.
        Dependencies: CatalogStore capability rows and hydration; infer_capabilities.
        Failure Modes: Never raises. Store errors and empty matches return [].
        If Removed: Unknown needs and empty intents dead-end in No-Product Recovery.
        Testing Notes: Scenario with two products matching low_light/autofocus.
        """
        # Infer weights, score rows, then hydrate the requested window.
        chosen = list(weights) if weights else self.infer_capabilities(message, context)
        if not chosen:
            return []
        try:
            rows = self._store.capability_scores([w.capability_key for w in chosen])
        except CatalogStoreError as exc:
            logger.warning("capability_rows_failed error=%s", exc)
            return []
        ranked = rank_by_capabilities(
            chosen, [(row.product_id, row.capability_key, row.value) for row in rows]
        )
        window = ranked[max(0, offset) : max(0, offset) + max(0, limit)]
        if not window:
            logger.info("capability_search_empty keys=%s", [w.capability_key for w in chosen])
            return []
        try:
            products = self._store.hydrate_products(
                [(product_id, score, None) for product_id, score in window],
                ProductSource.CAPABILITY,
            )
        except CatalogStoreError as exc:
            logger.warning("capability_hydrate_failed error=%s", exc)
            return []
        logger.info("capability_search results=%s", len(products))
        return products
