from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from .catalog_cache import CatalogCache
from .config import SEMANTIC_VALIDATION_FLOOR
from .gemini_client import GeminiClient
from .prompt_loader import render_prompt
from .utils import coerce_float, safe_json_loads, slugify

logger = logging.getLogger("shopguide.semantic")

MATCH_CONFIDENCE_FLOOR = 0.7
DYNAMIC_PREFIX = "dynamic_"

INTENT_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "travel_vlogging": (
        "travel", "vlog", "trip", "vacation", "memory", "memories",
        "wedding", "birthday", "event", "party", "celebration", "milestone",
    ),
    "home_security": ("home", "security", "monitor", "surveillance", "burglar", "theft", "protect"),
    "sports_action_outdoor": ("sport", "action", "outdoor", "adventure", "extreme", "bike", "ski", "surf", "hike"),
    "desk_streaming": ("stream", "youtube", "twitch", "desk", "webcam", "content creator", "podcast", "interview"),
    "wildlife_hunting": ("wildlife", "bird", "nature", "animal", "hunting", "trail", "outdoor"),
    "dashcam": ("car", "drive", "driving", "vehicle", "road", "dashcam", "dash cam"),
    "classroom_meetings": ("class", "classroom", "lecture", "meeting", "conference", "training", "presentation"),
    "child_elder_monitoring": ("baby", "child", "kid", "elder", "parent", "nanny", "monitor", "home care"),
}


@dataclass(frozen=True)
class SemanticMatch:
    """Parsed verdict from the escalation call."""
    inferred_need: str
    matched_intent_id: Optional[str]
    match_confidence: float
    match_reason: str
    should_use_fallback: bool


@dataclass(frozen=True)
class ValidationOutcome:
    """Intent/confidence to carry forward after validation."""
    intent_id: Optional[str]
    confidence: float
    action: str  # kept | quick_pass | corrected | fallback | skipped
    inferred_need: str = ""
    reason: str = ""

    @property
    def is_dynamic(self) -> bool:
        return is_dynamic_intent(self.intent_id)


def is_dynamic_intent(intent_id: Optional[str]) -> bool:
    return bool(intent_id) and str(intent_id).startswith(DYNAMIC_PREFIX)


def dynamic_intent_for(need: str) -> str:
    return DYNAMIC_PREFIX + slugify(need)


def quick_semantic_check(intent_id: Optional[str], message: str) -> bool:
    """True iff the message contains at least one keyword expected for the intent."""
    if not intent_id:
        return False
    lowered = (message or "").lower()
    keywords = INTENT_KEYWORDS.get(intent_id, ())
    matched = any(keyword in lowered for keyword in keywords)
    if not matched:
        logger.info("quick_check_miss intent=%s", intent_id)
    return matched


def parse_semantic_match(raw: str) -> Optional[SemanticMatch]:
    data = safe_json_loads(raw)
    if data is None:
        return None
    confidence = min(1.0, max(0.0, coerce_float(data.get("match_confidence"))))
    matched = data.get("best_matching_intent_id")
    if matched in ("", "null", "None"):
        matched = None
    fallback = data.get("should_use_fallback")
    if not isinstance(fallback, bool):
        fallback = confidence < MATCH_CONFIDENCE_FLOOR
    return SemanticMatch(
        inferred_need=str(data.get("inferred_need") or "").strip(),
        matched_intent_id=str(matched) if matched else None,
        match_confidence=confidence,
        match_reason=str(data.get("match_reason") or ""),
        should_use_fallback=fallback,
    )


class SemanticValidator:
    """Two-tier check that the classifier's intent fits what the user asked for."""

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

    def validate(
        self,
        intent_id: Optional[str],
        confidence: float,
        message: str,
        history: Sequence[dict] = (),
    ) -> ValidationOutcome:
        """Purpose: Confirm, correct, or reroute the classifier's intent.
        Inputs/Outputs: Inputs are the classified intent, its confidence, the message,
            and chat history; output is a ValidationOutcome.
        Side Effects / State: At most one generation call, only when the keyword check
            misses and confidence >= 0.5.
        Dependencies: quick_semantic_check, CatalogCache intents, semantic_validation.txt.
        Failure Modes: Call errors and unparseable replies keep the original intent and
            never trigger the fallback.
        If Removed: Plausible-but-wrong intents reach ranking unchecked.
        Testing Notes: Fake a reply with should_use_fallback=true and expect dynamic_*.
        """
        # Tier 1 is free; Tier 2 only runs on a miss above the confidence floor.
        if confidence < SEMANTIC_VALIDATION_FLOOR:
            return ValidationOutcome(intent_id, confidence, "skipped")
        if quick_semantic_check(intent_id, message):
            return ValidationOutcome(intent_id, confidence, "quick_pass")

        match = self.validate_intent_match(intent_id, message, history)
        if match is None:
            return ValidationOutcome(intent_id, confidence, "kept", reason="validation unavailable")

        logger.info(
            "semantic_validation original=%s matched=%s confidence=%.2f fallback=%s",
            intent_id,
            match.matched_intent_id,
            match.match_confidence,
            match.should_use_fallback,
        )
        if match.should_use_fallback:
            need = match.inferred_need or message
            return ValidationOutcome(
                dynamic_intent_for(need),
                confidence,
                "fallback",
                inferred_need=need,
                reason=match.match_reason,
            )
        known = set(self._safe_intent_ids())
        if match.matched_intent_id and match.matched_intent_id != intent_id and match.matched_intent_id in known:
            return ValidationOutcome(
                match.matched_intent_id,
                match.match_confidence,
                "corrected",
                inferred_need=match.inferred_need,
                reason=match.match_reason,
            )
        return ValidationOutcome(intent_id, confidence, "kept", inferred_need=match.inferred_need)

    def _safe_intent_ids(self) -> List[str]:
        try:
            return self._cache.intent_ids()
        except Exception as exc:
            logger.warning("intent_ids_unavailable error=%s", exc)
            return []

    def validate_intent_match(
        self, intent_id: Optional[str], message: str, history: Sequence[dict] = ()
    ) -> Optional[SemanticMatch]:
        recent = [entry for entry in history if isinstance(entry, dict)][-4:]
        context = " | ".join(f"{entry.get('role')}: {entry.get('content')}" for entry in recent)
        try:
            intents = self._cache.intents()
            prompt = render_prompt(
                self._prompts_dir / "semantic_validation.txt",
                {
                    "MESSAGE": message,
                    "CONTEXT": f"Conversation context: {context}" if context else "",
                    "CLASSIFIED": intent_id or "null",
                    "INTENTS": "\n".join(f"- {i.intent_id}: {i.label}" for i in intents),
                },
            )
            raw = self._gemini.generate_text(prompt, model=self._model, temperature=0.2, max_output_tokens=500)
        except Exception as exc:
            logger.warning("semantic_validation_failed intent=%s error=%s", intent_id, exc)
            return None
        match = parse_semantic_match(raw)
        if match is None:
            logger.warning("semantic_validation_unparsed intent=%s", intent_id)
        return match
