"""
Exercise Grader - Objective grading and attempt bookkeeping

Responsibilities:
- Activate a proposal into an exercise
- Seed and coerce the user's attempt for the exercise kind
- Grade fill-in-blank and multiple-choice attempts locally

NOT responsible for:
- Grading translation / free-response (model feedback via help mode)
- Deciding what happens after a grade (Conversation Controller)

All functions are pure: explicit inputs, no state, no logging side effects
beyond debug output.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from language_coach.contracts import (
    BlankResult,
    Exercise,
    ObjectiveGrade,
    ProblemType,
    Proposal,
)

logger = logging.getLogger(__name__)

# Type alias: str (translation/free_response), dict (fill_in_blank), list (multiple_choice)
Attempt = Union[str, Dict[str, str], List[str]]


def normalize_text(value: Any) -> str:
    """Trim and lower-case for answer comparison"""
    if value is None:
        return ""
    return str(value).strip().lower()


def activate_proposal(proposal: Proposal) -> Optional[Exercise]:
    """
    Turn a proposal into the active exercise.

    Returns:
        Exercise with exercise_id copied from proposal_id, or None if the
        proposal is disabled
    """
    if proposal is None or not proposal.is_enabled:
        return None

    return Exercise(
        enabled=1,
        exercise_id=proposal.proposal_id,
        problem_type=proposal.problem_type,
        translation=proposal.translation,
        fill_in_blank=proposal.fill_in_blank,
        multiple_choice=proposal.multiple_choice,
        free_response=proposal.free_response
    )


def default_attempt(exercise: Optional[Exercise]) -> Optional[Attempt]:
    """
    Empty attempt for a freshly activated exercise.

    Returns:
        {blank_id: ''} for fill_in_blank, [] for multiple_choice, '' otherwise,
        None when there is no enabled exercise
    """
    if exercise is None or not exercise.is_enabled:
        return None

    if exercise.problem_type == ProblemType.FILL_IN_BLANK:
        return {blank.id: "" for blank in exercise.fill_in_blank.blanks}

    if exercise.problem_type == ProblemType.MULTIPLE_CHOICE:
        return []

    return ""


def coerce_attempt(exercise: Optional[Exercise], raw: Any) -> Optional[Attempt]:
    """
    Coerce a caller-supplied attempt to the shape the exercise expects.

    - fill_in_blank: unknown blank ids dropped, missing ones filled with ''
    - multiple_choice: ids stringified, unknown ids dropped, duplicates
      removed; single-choice keeps only the last selection
    - translation / free_response: stringified text
    """
    if exercise is None or not exercise.is_enabled:
        return None

    if exercise.problem_type == ProblemType.FILL_IN_BLANK:
        submitted = raw if isinstance(raw, dict) else {}
        coerced = {}
        for blank in exercise.fill_in_blank.blanks:
            value = submitted.get(blank.id, "")
            coerced[blank.id] = "" if value is None else str(value)
        return coerced

    if exercise.problem_type == ProblemType.MULTIPLE_CHOICE:
        submitted = raw if isinstance(raw, list) else []
        known = set(exercise.multiple_choice.option_ids)
        selected = []
        for option_id in submitted:
            option_id = str(option_id)
            if option_id in known and option_id not in selected:
                selected.append(option_id)
        if not exercise.multiple_choice.allow_multiple:
            selected = selected[-1:]
        return selected

    if raw is None:
        return ""
    return raw if isinstance(raw, str) else str(raw)


def toggle_choice(exercise: Exercise, attempt: Any, option_id: str) -> List[str]:
    """
    Apply a click on a multiple-choice option.

    Single-choice replaces the selection; multi-choice toggles membership.

    Raises:
        ValueError: If the exercise is not multiple-choice or the option is unknown
    """
    if exercise is None or exercise.problem_type != ProblemType.MULTIPLE_CHOICE:
        raise ValueError("toggle_choice requires an active multiple_choice exercise")

    option_id = str(option_id)
    if option_id not in exercise.multiple_choice.option_ids:
        raise ValueError(f"Unknown option id: {option_id}")

    if not exercise.multiple_choice.allow_multiple:
        return [option_id]

    selected = [str(item) for item in attempt] if isinstance(attempt, list) else []
    if option_id in selected:
        return [item for item in selected if item != option_id]
    return selected + [option_id]


def grade_objective(exercise: Optional[Exercise], attempt: Any) -> Optional[ObjectiveGrade]:
    """
    Grade an attempt for an objectively gradable exercise.

    Fill-in-blank: each blank is correct iff the trimmed, lower-cased
    submission equals one of the trimmed, lower-cased accepted answers.
    Multiple-choice: de-duplicated sorted selection equals de-duplicated
    sorted answer key.

    Args:
        exercise: Active exercise
        attempt: User's attempt (shape depends on problem_type)

    Returns:
        ObjectiveGrade, or None if the exercise is disabled or not objective

    Examples:
        >>> grade_objective(fib_exercise, {'b1': ' Hola '}).all_correct   # accepts 'hola'
        True
        >>> grade_objective(mc_exercise, ['b', 'a', 'a']).all_correct    # key ['a', 'b']
        True
    """
    if exercise is None or not exercise.is_enabled:
        return None

    if exercise.problem_type == ProblemType.FILL_IN_BLANK:
        submitted = attempt if isinstance(attempt, dict) else {}
        results = []
        for blank in exercise.fill_in_blank.blanks:
            user_value = normalize_text(submitted.get(blank.id, ""))
            accepted = {normalize_text(answer) for answer in blank.expected_answers}
            results.append(BlankResult(id=blank.id, correct=user_value in accepted))

        all_correct = all(result.correct for result in results)
        logger.debug(
            f"Graded fill_in_blank: {sum(r.correct for r in results)}/{len(results)} correct"
        )
        return ObjectiveGrade(
            kind=ProblemType.FILL_IN_BLANK,
            all_correct=all_correct,
            results=tuple(results)
        )

    if exercise.problem_type == ProblemType.MULTIPLE_CHOICE:
        selected = [str(item) for item in attempt] if isinstance(attempt, list) else []
        correct = [str(item) for item in exercise.multiple_choice.correct_option_ids]
        all_correct = sorted(set(selected)) == sorted(set(correct))
        logger.debug(f"Graded multiple_choice: all_correct={all_correct}")
        return ObjectiveGrade(kind=ProblemType.MULTIPLE_CHOICE, all_correct=all_correct)

    return None
