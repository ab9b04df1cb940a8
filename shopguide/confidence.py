from __future__ import annotations

from dataclasses import dataclass

from .config import HIGH_CONFIDENCE, MEDIUM_CONFIDENCE, RECOMMEND_THRESHOLD
from .utils import coerce_float


@dataclass(frozen=True)
class ConfidenceLevel:
    """Discrete confidence band plus the clarification budget it implies."""
    score: float
    level: str
    clarification_turns_needed: int


def assess_confidence(score: float) -> ConfidenceLevel:
    """Purpose: Map a classifier score onto high/medium/low.
    Inputs/Outputs: Input is a float in [0, 1]; output is a ConfidenceLevel.
    Side Effects / State: None; pure and total.
    Dependencies: HIGH_CONFIDENCE / MEDIUM_CONFIDENCE from config.
    Failure Modes: None. Non-numeric or NaN input is treated as 0.0.
    If Removed: Clarification and image-readiness gates lose their input.
    Testing Notes: Check boundaries 0.85 and 0.60 exactly, plus monotonicity.
    """
    # Bucket the score; higher bands need fewer clarification turns.
    value = coerce_float(score)
    if value >= HIGH_CONFIDENCE:
        return ConfidenceLevel(score=value, level="high", clarification_turns_needed=0)
    if value >= MEDIUM_CONFIDENCE:
        return ConfidenceLevel(score=value, level="medium", clarification_turns_needed=1)
    return ConfidenceLevel(score=value, level="low", clarification_turns_needed=2)


def needs_clarification(score: float, clarifying_question: str = "") -> bool:
    return coerce_float(score) < RECOMMEND_THRESHOLD or bool((clarifying_question or "").strip())


def ready_for_outcome_images(level: ConfidenceLevel, classifier_ready: bool) -> bool:
    return classifier_ready and level.level in {"high", "medium"}
