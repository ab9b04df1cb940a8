"""Client-held conversation state.

The server keeps no session store: every request carries the last ConversationState
the client received and every response returns the updated copy.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, Optional

from .utils import coerce_float

TURN_PHASES = (
    "greeting",
    "clarification",
    "recommendation",
    "cart_action",
    "cart_summary",
    "order_placed",
    "image_generation",
    "post_checkout",
)
# Accepted from clients on restore; no step enters them.
RESERVED_PHASES = ("framing", "commitment")
PHASES = TURN_PHASES + RESERVED_PHASES

PERSONAS = (
    "occasion_driven",
    "aspiring_hobbyist",
    "social_proof",
    "budget_constrained",
    "delegator",
    "anxiety_prone",
)


@dataclass(frozen=True)
class ConversationState:
    """Snapshot of one session's progress, round-tripped through the client."""
    session_id: str
    turn_count: int = 0
    conversation_phase: str = "greeting"
    inferred_persona: Optional[str] = None
    clarification_attempts: int = 0
    intent_id: Optional[str] = None
    confidence: float = 0.0
    is_returning_user: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def init_conversation_state(session_id: str, is_returning_user: bool = False) -> ConversationState:
    return ConversationState(session_id=session_id, is_returning_user=is_returning_user)


def restore_state(
    session_id: str,
    payload: Optional[Dict[str, Any]],
    legacy_attempts: Optional[int] = None,
) -> ConversationState:
    """Purpose: Rebuild a ConversationState from a client payload.
    Inputs/Outputs: Inputs are the session id, the raw state dict (or None) and the
        legacy clarification_count field; output is a sanitized ConversationState.
    Side Effects / State: None; pure function.
    Dependencies: Uses PHASES/PERSONAS to discard unknown values.
    Failure Modes: Unknown phase/persona values are reset, negative counters clamp to 0.
    If Removed: The orchestrator cannot resume counters across turns.
    Testing Notes: Pass garbage values and verify they are normalized.
    """
    # Start from a fresh state and overlay only well-formed client values.
    state = init_conversation_state(session_id)
    if not payload:
        if legacy_attempts:
            state = replace(state, clarification_attempts=max(0, int(legacy_attempts)))
        return state

    phase = payload.get("conversation_phase")
    persona = payload.get("inferred_persona")
    attempts = payload.get("clarification_attempts")
    if attempts is None:
        attempts = legacy_attempts or 0
    intent_id = payload.get("intent_id")
    return ConversationState(
        session_id=session_id,
        turn_count=max(0, int(payload.get("turn_count") or 0)),
        conversation_phase=phase if phase in PHASES else "greeting",
        inferred_persona=persona if persona in PERSONAS else None,
        clarification_attempts=max(0, int(attempts or 0)),
        intent_id=str(intent_id) if intent_id else None,
        confidence=min(1.0, max(0.0, coerce_float(payload.get("confidence")))),
        is_returning_user=bool(payload.get("is_returning_user", False)),
    )


def advance_turn(state: ConversationState) -> ConversationState:
    return replace(state, turn_count=state.turn_count + 1)


def update_phase(state: ConversationState, phase: str) -> ConversationState:
    if phase not in TURN_PHASES:
        raise ValueError(f"unknown conversation phase: {phase}")
    return replace(state, conversation_phase=phase)


def increment_clarification_attempts(state: ConversationState) -> ConversationState:
    return replace(state, clarification_attempts=state.clarification_attempts + 1)


def reset_clarification_attempts(state: ConversationState) -> ConversationState:
    return replace(state, clarification_attempts=0)


def update_persona(state: ConversationState, persona: Optional[str]) -> ConversationState:
    return replace(state, inferred_persona=persona)


def update_intent(state: ConversationState, intent_id: Optional[str], confidence: float) -> ConversationState:
    return replace(state, intent_id=intent_id, confidence=confidence)


def should_switch_strategy(state: ConversationState, max_attempts: int = 3) -> bool:
    """Strategy switch fires once the question budget is spent."""
    return state.clarification_attempts >= max_attempts
