from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .catalog_store import Product
from .product_service import ProductService

logger = logging.getLogger("shopguide.recovery")

SPECIFIC_PRODUCT_PATTERNS = [
    re.compile(r"canon\s+(eos\s+)?r\d+", re.IGNORECASE),
    re.compile(r"sony\s+a\d+", re.IGNORECASE),
    re.compile(r"nikon\s+z\d+", re.IGNORECASE),
    re.compile(r"fuji(film)?\s+x-?\w+", re.IGNORECASE),
    re.compile(r"gopro\s+hero\s*\d*", re.IGNORECASE),
    re.compile(r"dji\s+\w+", re.IGNORECASE),
]

EXIT_OPTIONS = [
    "Browse our popular products",
    "Talk to a specialist",
    "Start a new search",
]


@dataclass
class RecoveryResult:
    """Decline copy plus whatever the user can do next."""
    scenario: str
    message: str
    alternatives: List[Dict[str, Any]] = field(default_factory=list)
    exit_options: List[str] = field(default_factory=lambda: list(EXIT_OPTIONS))


def detect_specific_product(message: str) -> Optional[str]:
    for pattern in SPECIFIC_PRODUCT_PATTERNS:
        match = pattern.search(message or "")
        if match:
            return match.group(0)
    return None


def polite_decline(scenario: str, product_name: Optional[str] = None, persona: Optional[str] = None) -> str:
    if scenario == "specific_product":
        return (
            f"I understand you're looking for {product_name or 'that specific product'}. "
            "We don't currently have it in our catalog, but I can suggest some excellent "
            "alternatives that might work for your needs."
        )
    if scenario == "intent_mismatch":
        if persona == "anxiety_prone":
            return (
                "I want to be upfront with you - I don't have products that directly match "
                "what you're looking for. But let me show you some accessories that might help."
            )
        return (
            "I don't currently have products that directly match this need. However, these "
            "accessories might be helpful for your situation."
        )
    if scenario == "out_of_stock":
        return (
            "That product is currently out of stock. Would you like me to suggest similar "
            "alternatives, or shall I notify you when it's back?"
        )
    return "I couldn't find exact matches, but let me show you what we have that might help."


def _as_alternative(product: Product, relevance: str) -> Dict[str, Any]:
    data = product.to_dict()
    data["relevance"] = relevance
    return data


class NoProductHandler:
    """Builds the recovery turn when ranking comes back empty."""

    def __init__(self, products: ProductService) -> None:
        self._products = products

    def handle(
        self,
        intent_id: Optional[str],
        message: str,
        persona: Optional[str],
    ) -> RecoveryResult:
        """Purpose: Classify why nothing was found and offer next steps.
        Inputs/Outputs: Inputs are the resolved intent, the user message, and persona;
            output is a RecoveryResult with decline copy, alternatives, exit options.
        Side Effects / State: Catalog reads only.
        Dependencies: ProductService.get_alternatives/get_accessories/has_score_rows.
        Failure Modes: Never raises; lookups degrade to no alternatives.
        If Removed: Empty searches end the conversation with nothing to click.
        Testing Notes: "Do you have the Sony A7?" must yield specific_product.
        """
        # Pick the scenario, then the matching alternative source.
        specific = detect_specific_product(message)
        if specific:
            scenario = "specific_product"
        elif intent_id and self._products.has_score_rows(intent_id):
            scenario = "out_of_stock"
        else:
            scenario = "intent_mismatch"

        if scenario == "intent_mismatch":
            found = self._products.get_accessories(limit=2)
            alternatives = [_as_alternative(p, "Helpful accessory") for p in found]
        else:
            found = self._products.get_alternatives(limit=3)
            alternatives = [_as_alternative(p, "Popular choice") for p in found]

        logger.info(
            "no_product scenario=%s intent=%s alternatives=%s persona=%s",
            scenario,
            intent_id,
            len(alternatives),
            persona,
        )
        return RecoveryResult(
            scenario=scenario,
            message=polite_decline(scenario, specific, persona),
            alternatives=alternatives,
        )
