"""Heuristic buyer-persona inference.

Signals live in one declarative table (PERSONA_SIGNALS) and are consumed by a single
pure scorer. The inferred persona tunes question style, decision framing and the
No-Product Recovery decline copy; it never changes which products are ranked.

Scoring per persona, with w = the persona weight:
    0.5 * w  for each keyword found in the current message
    1.0 * w  for each pattern matching the current message
    0.2      for each keyword found in a user turn among the last 3 history entries

Hysteresis: an existing persona is only replaced when the new top score is at least
1.5x the existing persona's own score for the same turn.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Pattern, Sequence, Tuple

logger = logging.getLogger("shopguide.persona")

MIN_PERSONA_SCORE = 1.0
SWITCH_RATIO = 1.5
HISTORY_WINDOW = 3
HISTORY_KEYWORD_SCORE = 0.2


@dataclass(frozen=True)
class PersonaSignals:
    """Keyword/pattern signal set for one persona."""
    keywords: Tuple[str, ...]
    patterns: Tuple[Pattern[str], ...]
    weight: float


def _compile(*patterns: str) -> Tuple[Pattern[str], ...]:
    return tuple(re.compile(pattern, re.IGNORECASE) for pattern in patterns)


PERSONA_SIGNALS: Dict[str, PersonaSignals] = {
    "occasion_driven": PersonaSignals(
        keywords=(
            "wedding", "birthday", "graduation", "proposal", "anniversary",
            "event", "party", "ceremony", "celebration",
        ),
        patterns=_compile(
            r"need (it|this|that) to work",
            r"one.?time",
            r"special (day|moment|occasion)",
            r"can't mess (this|it) up",
            r"don't want to (miss|regret)",
        ),
        weight=1.5,
    ),
    "aspiring_hobbyist": PersonaSignals(
        keywords=("learn", "beginner", "start", "hobby", "practice", "improve", "skill"),
        patterns=_compile(
            r"(want to|trying to) learn",
            r"(new to|beginner at) photography",
            r"get (into|started)",
            r"practice",
        ),
        weight=1.0,
    ),
    "social_proof": PersonaSignals(
        keywords=("popular", "reviews", "others", "recommend", "youtuber", "influencer", "everyone"),
        patterns=_compile(
            r"(what are|what do) (others|people) (using|buying)",
            r"I (saw|heard) (about|that)",
            r"(friend|someone) recommended",
            r"popular",
        ),
        weight=1.0,
    ),
    "budget_constrained": PersonaSignals(
        keywords=("budget", "cheap", "affordable", "price", "cost", "expensive", "overspend", "save", "money"),
        patterns=_compile(
            r"under \$?\d+",
            r"how much",
            r"can't (afford|spend)",
            r"too expensive",
            r"best value",
        ),
        weight=1.3,
    ),
    "delegator": PersonaSignals(
        keywords=("recommend", "suggest", "tell me", "just", "simple", "easy"),
        patterns=_compile(
            r"just (tell|show) me",
            r"what should I",
            r"don't know (much|anything)",
            r"you decide",
            r"recommend",
        ),
        weight=1.2,
    ),
    "anxiety_prone": PersonaSignals(
        keywords=("worried", "afraid", "scared", "regret", "wrong", "sure", "certain", "mistake"),
        patterns=_compile(
            r"what if",
            r"worried (about|that)",
            r"scared (of|that)",
            r"make (the|a) (right|wrong) (choice|decision)",
            r"are you sure",
        ),
        weight=1.1,
    ),
}

DISPLAY_NAMES = {
    "occasion_driven": "Occasion-Driven Buyer",
    "aspiring_hobbyist": "Aspiring Hobbyist",
    "social_proof": "Social Proof-Driven",
    "budget_constrained": "Budget-Constrained",
    "delegator": "Delegator",
    "anxiety_prone": "Anxiety-Prone",
}

QUESTION_STYLES = {
    "occasion_driven": "event-focused, reassuring",
    "aspiring_hobbyist": "learning-oriented, encouraging",
    "social_proof": "reference-anchored, confident",
    "budget_constrained": "constraint-first, respectful",
    "delegator": "binary/forced choice, direct",
    "anxiety_prone": "safety-oriented, calm",
}

DECISION_FRAMES = {
    "occasion_driven": "This will reliably capture your special moment",
    "aspiring_hobbyist": "This setup grows with your skills",
    "social_proof": "People like you often choose this",
    "budget_constrained": "Best value for your budget without compromises",
    "delegator": "This is the simplest good choice",
    "anxiety_prone": "This is a safe, reversible decision",
}


def score_personas(
    message: str,
    history: Sequence[dict],
    signals: Optional[Dict[str, PersonaSignals]] = None,
) -> Dict[str, float]:
    """Purpose: Score every persona against a message and its recent history.
    Inputs/Outputs: Inputs are the current message, chat history entries
        ({role, content}), and an optional signal table; output maps persona -> score
        and only contains personas that scored above zero.
    Side Effects / State: None; pure function.
    Dependencies: PERSONA_SIGNALS by default.
    Failure Modes: Non-dict history entries are ignored.
    If Removed: infer_persona has nothing to decide on.
    Testing Notes: Score "what if I make the wrong choice" and check anxiety_prone wins.
    """
    # Current message: keyword substrings at half weight, patterns at full weight.
    table = signals if signals is not None else PERSONA_SIGNALS
    lowered = (message or "").lower()
    scores: Dict[str, float] = {}
    for persona, signal in table.items():
        score = 0.0
        for keyword in signal.keywords:
            if keyword in lowered:
                score += 0.5 * signal.weight
        for pattern in signal.patterns:
            if pattern.search(message or ""):
                score += 1.0 * signal.weight
        if score > 0:
            scores[persona] = score

    # Recent user turns add a flat, unweighted bonus per keyword hit.
    for entry in list(history or [])[-HISTORY_WINDOW:]:
        if not isinstance(entry, dict) or entry.get("role") != "user":
            continue
        past = str(entry.get("content") or "").lower()
        for persona, signal in table.items():
            for keyword in signal.keywords:
                if keyword in past:
                    scores[persona] = scores.get(persona, 0.0) + HISTORY_KEYWORD_SCORE
    return scores


def infer_persona(
    message: str,
    history: Sequence[dict],
    current: Optional[str],
    signals: Optional[Dict[str, PersonaSignals]] = None,
) -> Optional[str]:
    """Pick the persona for this turn, keeping `current` unless the evidence is strong."""
    scores = score_personas(message, history, signals)
    if not scores:
        return current

    ranked: List[Tuple[str, float]] = sorted(scores.items(), key=lambda item: item[1], reverse=True)
    top_persona, top_score = ranked[0]
    if top_score < MIN_PERSONA_SCORE:
        return current

    if current and current != top_persona:
        current_score = scores.get(current, 0.0)
        if top_score < current_score * SWITCH_RATIO:
            return current
        logger.info("persona_shift from=%s to=%s score=%.2f", current, top_persona, top_score)
    elif not current:
        logger.info("persona_inferred persona=%s score=%.2f", top_persona, top_score)
    return top_persona


def persona_display_name(persona: Optional[str]) -> str:
    return DISPLAY_NAMES.get(persona or "", "Unknown")


def question_style_for_persona(persona: Optional[str]) -> str:
    return QUESTION_STYLES.get(persona or "", "neutral, open-ended")


def decision_frame_for_persona(persona: Optional[str]) -> str:
    return DECISION_FRAMES.get(persona or "", "Here's what fits your needs")
