import re

from shopguide.persona_inference import (
    PersonaSignals,
    decision_frame_for_persona,
    infer_persona,
    persona_display_name,
    question_style_for_persona,
    score_personas,
)


def _table():
    return {
        "alpha": PersonaSignals(keywords=("alpha", "apple"), patterns=(), weight=2.0),
        "beta": PersonaSignals(keywords=("beta", "banana", "berry"), patterns=(), weight=2.0),
        "gamma": PersonaSignals(keywords=("gamma",), patterns=(re.compile(r"grape\s+juice"),), weight=1.0),
    }


def test_anxious_wording_scores_anxiety_prone_highest():
    scores = score_personas("What if I make the wrong choice?", [])
    assert max(scores, key=scores.get) == "anxiety_prone"


def test_keywords_score_half_weight_and_patterns_full_weight():
    scores = score_personas("gamma and grape juice", [], _table())
    assert scores == {"gamma": 1.5}


def test_history_adds_flat_bonus_for_recent_user_turns_only():
    history = [
        {"role": "user", "content": "banana"},
        {"role": "user", "content": "alpha"},
        {"role": "assistant", "content": "alpha"},
        {"role": "user", "content": "alpha"},
    ]
    scores = score_personas("nothing here", history, _table())
    # The oldest entry falls outside the 3-entry window; assistant turns never count.
    assert scores == {"alpha": 0.4}


def test_no_signal_keeps_current_persona():
    assert infer_persona("hello there", [], "delegator") == "delegator"
    assert infer_persona("hello there", [], None) is None


def test_weak_signal_does_not_set_persona():
    table = {"alpha": PersonaSignals(keywords=("alpha",), patterns=(), weight=1.0)}
    assert infer_persona("alpha", [], None, table) is None


def test_first_strong_signal_sets_persona():
    assert infer_persona("alpha apple", [], None, _table()) == "alpha"


def test_hysteresis_keeps_current_below_ratio():
    table = _table()
    table["beta"] = PersonaSignals(keywords=("beta", "banana"), patterns=(), weight=2.5)
    # beta scores 2.5, alpha 2.0: 2.5 < 1.5 * 2.0
    assert infer_persona("alpha apple beta banana", [], "alpha", table) == "alpha"


def test_hysteresis_switches_at_ratio():
    # beta scores 3.0, alpha 2.0: exactly 1.5x
    assert infer_persona("alpha apple beta banana berry", [], "alpha", _table()) == "beta"


def test_switch_from_persona_with_no_score_this_turn():
    assert infer_persona("beta banana", [], "alpha", _table()) == "beta"


def test_persona_copy_lookups_have_defaults():
    assert persona_display_name("budget_constrained") == "Budget-Constrained"
    assert persona_display_name(None) == "Unknown"
    assert question_style_for_persona("delegator").startswith("binary")
    assert question_style_for_persona(None) == "neutral, open-ended"
    assert decision_frame_for_persona(None) == "Here's what fits your needs"
