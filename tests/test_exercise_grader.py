"""
Unit tests for the Exercise Grader

Activation, attempt coercion, option toggling and objective grading
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from language_coach.contracts import (
    Blank,
    Exercise,
    FillInBlank,
    FreeResponse,
    MultipleChoice,
    Option,
    ProblemType,
    Proposal,
)
from language_coach.core.exercise_grader import (
    activate_proposal,
    coerce_attempt,
    default_attempt,
    grade_objective,
    toggle_choice,
)


# ========================
# Test Data
# ========================

def make_fib():
    return Exercise(
        enabled=1,
        exercise_id="fib1",
        problem_type=ProblemType.FILL_IN_BLANK,
        fill_in_blank=FillInBlank(
            prompt="Complete",
            blanks=(
                Blank("b1", "Yo ____ de Madrid", ("soy",)),
                Blank("b2", "Ella ____ cansada", ("está", "esta")),
            )
        )
    )


def make_mc(allow_multiple=False, correct=("a",)):
    return Exercise(
        enabled=1,
        exercise_id="mc1",
        problem_type=ProblemType.MULTIPLE_CHOICE,
        multiple_choice=MultipleChoice(
            prompt="Pick",
            options=(Option("a", "Hola"), Option("b", "Adios"), Option("c", "Gracias")),
            allow_multiple=allow_multiple,
            correct_option_ids=correct
        )
    )


def make_free():
    return Exercise(
        enabled=1,
        exercise_id="fr1",
        problem_type=ProblemType.FREE_RESPONSE,
        free_response=FreeResponse("Spanish", "Describe your weekend")
    )


# ========================
# Activation / attempts
# ========================

def test_activate_proposal_copies_id_and_payload():
    proposal = Proposal(
        enabled=1,
        proposal_id="p9",
        problem_type=ProblemType.FREE_RESPONSE,
        free_response=FreeResponse("Spanish", "Describe your weekend")
    )

    exercise = activate_proposal(proposal)

    assert exercise.exercise_id == "p9"
    assert exercise.free_response == proposal.free_response
    assert activate_proposal(Proposal.disabled()) is None


def test_default_attempt_per_kind():
    assert default_attempt(make_fib()) == {"b1": "", "b2": ""}
    assert default_attempt(make_mc()) == []
    assert default_attempt(make_free()) == ""
    assert default_attempt(None) is None


def test_coerce_fill_in_blank_attempt():
    attempt = coerce_attempt(make_fib(), {"b1": "soy", "zz": "ignored", "b2": None})
    assert attempt == {"b1": "soy", "b2": ""}


def test_coerce_multiple_choice_attempt():
    assert coerce_attempt(make_mc(allow_multiple=True), ["a", "x", "a", "c"]) == ["a", "c"]
    # Single choice keeps the last selection
    assert coerce_attempt(make_mc(), ["a", "b"]) == ["b"]
    assert coerce_attempt(make_mc(), "a") == []


def test_coerce_text_attempt():
    assert coerce_attempt(make_free(), "Fui al cine") == "Fui al cine"
    assert coerce_attempt(make_free(), None) == ""


def test_toggle_single_choice_replaces():
    assert toggle_choice(make_mc(), ["a"], "b") == ["b"]


def test_toggle_multi_choice_toggles():
    exercise = make_mc(allow_multiple=True)
    selected = toggle_choice(exercise, [], "a")
    selected = toggle_choice(exercise, selected, "c")
    assert selected == ["a", "c"]
    assert toggle_choice(exercise, selected, "a") == ["c"]


def test_toggle_rejects_unknown_option_and_wrong_kind():
    with pytest.raises(ValueError):
        toggle_choice(make_mc(), [], "z")
    with pytest.raises(ValueError):
        toggle_choice(make_fib(), {}, "a")


# ========================
# Grading
# ========================

def test_grade_fill_in_blank_trims_and_ignores_case():
    grade = grade_objective(make_fib(), {"b1": "  SOY ", "b2": "Esta"})

    assert grade.kind == ProblemType.FILL_IN_BLANK
    assert grade.all_correct
    assert [r.correct for r in grade.results] == [True, True]


def test_grade_fill_in_blank_per_blank_results():
    grade = grade_objective(make_fib(), {"b1": "soy", "b2": "es"})

    assert not grade.all_correct
    assert grade.to_dict()["results"] == [{"id": "b1", "correct": True}, {"id": "b2", "correct": False}]


def test_grade_missing_blank_is_wrong():
    grade = grade_objective(make_fib(), {"b1": "soy"})
    assert not grade.all_correct


def test_grade_multiple_choice_is_set_equality():
    exercise = make_mc(allow_multiple=True, correct=("a", "c"))

    assert grade_objective(exercise, ["c", "a", "a"]).all_correct
    assert not grade_objective(exercise, ["a"]).all_correct
    assert grade_objective(exercise, ["a"]).results is None


def test_grade_subjective_returns_none():
    assert grade_objective(make_free(), "Fui al cine") is None
