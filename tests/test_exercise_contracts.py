"""
Unit tests for exercise contracts and session snapshots

Tests the tagged-union invariant, the smart constructors and the
Session JSON round-trip
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from language_coach.contracts import (
    Blank,
    Exercise,
    ExerciseShapeError,
    FillInBlank,
    FreeResponse,
    ObjectiveGrade,
    Poll,
    ProblemType,
    Proposal,
    Translation,
)
from language_coach.session import ConversationMode, Session


# ========================
# Test Data
# ========================

def fill_in_blank_dict(proposal_id="p_fib"):
    return {
        "enabled": 1,
        "proposal_id": proposal_id,
        "problem_type": "fill_in_blank",
        "translation": None,
        "fill_in_blank": {
            "prompt": "Complete the sentence",
            "blanks": [
                {"id": "b1", "text_with_placeholder": "Yo ____ estudiante", "expected_answers": ["soy"]}
            ]
        },
        "multiple_choice": None,
        "free_response": None
    }


def multiple_choice_dict(proposal_id="p_mc"):
    return {
        "enabled": 1,
        "proposal_id": proposal_id,
        "problem_type": "multiple_choice",
        "multiple_choice": {
            "prompt": "Pick the greeting",
            "options": [{"id": "a", "text": "Hola"}, {"id": "b", "text": "Adios"}],
            "allow_multiple": False,
            "correct_option_ids": ["a"]
        }
    }


# ========================
# Proposal / Exercise shape
# ========================

def test_disabled_proposal_has_all_fields_null():
    data = Proposal.disabled().to_dict()

    assert data == {
        "enabled": 0,
        "proposal_id": None,
        "problem_type": None,
        "translation": None,
        "fill_in_blank": None,
        "multiple_choice": None,
        "free_response": None
    }


def test_from_dict_collapses_not_enabled_to_disabled():
    """Junk fields are ignored when enabled is not exactly 1"""
    proposal = Proposal.from_dict({"enabled": 0, "problem_type": "translation", "translation": {"text": "x"}})
    assert proposal == Proposal.disabled()

    # true is not 1 here
    proposal = Proposal.from_dict(dict(fill_in_blank_dict(), enabled=True))
    assert not proposal.is_enabled


def test_from_dict_enabled_fill_in_blank():
    proposal = Proposal.from_dict(fill_in_blank_dict())

    assert proposal.is_enabled
    assert proposal.problem_type == ProblemType.FILL_IN_BLANK
    assert proposal.proposal_id == "p_fib"
    assert proposal.payload.blanks[0].expected_answers == ("soy",)
    assert proposal.to_dict()["fill_in_blank"]["blanks"][0]["id"] == "b1"


def test_from_dict_rejects_mismatched_payload():
    data = fill_in_blank_dict()
    data["translation"] = {"direction": "es->en", "text": "Hola"}

    with pytest.raises(ExerciseShapeError):
        Proposal.from_dict(data)


def test_from_dict_rejects_missing_payload():
    data = fill_in_blank_dict()
    data["fill_in_blank"] = None

    with pytest.raises(ExerciseShapeError):
        Proposal.from_dict(data)


def test_from_dict_rejects_unknown_problem_type():
    data = fill_in_blank_dict()
    data["problem_type"] = "essay"

    with pytest.raises(ExerciseShapeError):
        Proposal.from_dict(data)


def test_duplicate_blank_ids_rejected():
    data = fill_in_blank_dict()
    data["fill_in_blank"]["blanks"].append(
        {"id": "b1", "text_with_placeholder": "Tu ____", "expected_answers": ["eres"]}
    )

    with pytest.raises(ExerciseShapeError):
        Proposal.from_dict(data)


def test_constructor_rejects_two_payloads():
    with pytest.raises(ExerciseShapeError):
        Exercise(
            enabled=1,
            exercise_id="e1",
            problem_type=ProblemType.TRANSLATION,
            translation=Translation("en->es", "Good morning"),
            free_response=FreeResponse("Spanish", "Describe your city")
        )


def test_constructor_rejects_disabled_with_payload():
    with pytest.raises(ExerciseShapeError):
        Proposal(enabled=0, translation=Translation("en->es", "Hello"))


def test_constructor_rejects_wrong_payload_class():
    with pytest.raises(ExerciseShapeError):
        Exercise(
            enabled=1,
            exercise_id="e1",
            problem_type=ProblemType.FILL_IN_BLANK,
            fill_in_blank=Blank("b1", "____")
        )


def test_is_objective():
    fib = Exercise(
        enabled=1,
        exercise_id="e1",
        problem_type=ProblemType.FILL_IN_BLANK,
        fill_in_blank=FillInBlank("Fill", (Blank("b1", "____", ("soy",)),))
    )
    free = Exercise(
        enabled=1,
        exercise_id="e2",
        problem_type=ProblemType.FREE_RESPONSE,
        free_response=FreeResponse("Spanish", "Write about your weekend")
    )

    assert fib.is_objective
    assert not free.is_objective


# ========================
# Poll
# ========================

def test_poll_from_dict_enabled():
    poll = Poll.from_dict({
        "enabled": 1,
        "poll_id": "next",
        "question": "What next?",
        "options": [{"id": "a", "text": "Grammar"}, {"id": "b", "text": "Vocab"}]
    })

    assert poll.is_enabled
    assert poll.find_option("b").text == "Vocab"
    assert poll.find_option("z") is None


def test_poll_enabled_without_options_rejected():
    with pytest.raises(ExerciseShapeError):
        Poll.from_dict({"enabled": 1, "question": "What next?", "options": []})


def test_disabled_poll_with_question_rejected():
    with pytest.raises(ExerciseShapeError):
        Poll(enabled=0, question="Hmm?")


# ========================
# Objective grade
# ========================

def test_objective_grade_round_trip():
    data = {"kind": "fill_in_blank", "all_correct": False, "results": [{"id": "b1", "correct": False}]}
    assert ObjectiveGrade.from_dict(data).to_dict() == data


# ========================
# Session snapshot
# ========================

def test_session_json_preserves_exercise_state():
    proposal = Proposal.from_dict(fill_in_blank_dict("p1"))
    active = Exercise.from_dict(dict(fill_in_blank_dict(), exercise_id="p1"))

    session = Session(
        conversation_mode=ConversationMode.MODE_CHAT,
        onboarding_step=2,
        messages=[{"role": "assistant", "content": "Hola"}],
        active=active,
        attempt={"b1": "soy"},
        pending_proposal=proposal
    )

    restored = Session.from_json(session.to_json())

    assert restored.active == active
    assert restored.attempt == {"b1": "soy"}
    assert restored.pending_proposal == proposal
    assert restored.conversation_mode == ConversationMode.MODE_CHAT
    assert restored.messages == session.messages


def test_session_without_mode_and_with_messages_is_chat():
    restored = Session.from_json({"messages": [{"role": "user", "content": "hola"}]})

    assert restored.conversation_mode == ConversationMode.MODE_CHAT
    assert restored.onboarding_step == 2


def test_session_from_json_rejects_non_dict():
    with pytest.raises(ValueError):
        Session.from_json(["not", "a", "session"])


def test_session_from_json_rejects_corrupt_active():
    data = Session().to_json()
    data["active"] = {"enabled": 1, "problem_type": "translation", "translation": None}

    with pytest.raises(ValueError):
        Session.from_json(data)


def test_session_copy_is_independent():
    session = Session(messages=[{"role": "user", "content": "hola"}])
    copied = session.copy()
    copied.messages.append({"role": "assistant", "content": "hola!"})

    assert len(session.messages) == 1
