"""
Onboarding script and placement request.

The two placement questions are asked locally (no model call). The answers
are turned into a single chat-mode request asking the model for one
free_response placement exercise.
"""

import re
import time
from typing import Any, Dict, List, Optional

from language_coach.contracts import FreeResponse, ProblemType, Proposal

CEFR_PATTERN = re.compile(r"\b(a1|a2|b1|b2|c1|c2)\b", re.IGNORECASE)

# Checked in order; first keyword found wins
LEVEL_KEYWORDS = (
    ("beginner", "A1"),
    ("intermediate", "B1"),
    ("advanced", "C1"),
)

DEFAULT_LEVEL = "B1"

FOCUS_QUESTION = (
    "2) What do you want to focus on right now? "
    "(speaking, writing, grammar, vocab, travel, work, etc.)"
)


def greeting_messages(target_language: str) -> List[Dict[str, Any]]:
    """Scripted assistant messages that open every new conversation"""
    return [
        {"role": "assistant", "content": f"Hi! I'm your {target_language} practice coach."},
        {
            "role": "assistant",
            "content": "Before we start, I have two quick questions to estimate your current level."
        },
        {
            "role": "assistant",
            "content": (
                f"1) Roughly what level are you in {target_language}? "
                f"(beginner / intermediate / advanced, or A1-C2)"
            )
        },
    ]


def focus_question_message() -> Dict[str, Any]:
    return {"role": "assistant", "content": FOCUS_QUESTION}


def infer_approx_level(level_text: Optional[str]) -> str:
    """
    Map a self-reported level to a coarse CEFR code.

    Examples:
        >>> infer_approx_level("I think b2")
        'B2'
        >>> infer_approx_level("Intermediate-ish")
        'B1'
        >>> infer_approx_level("no idea")
        'B1'
    """
    text = str(level_text or "").lower()

    match = CEFR_PATTERN.search(text)
    if match:
        return match.group(1).upper()

    for keyword, level in LEVEL_KEYWORDS:
        if keyword in text:
            return level

    return DEFAULT_LEVEL


def build_placement_request(level_text: str, focus_text: str) -> str:
    """User content for the placement turn (sent in chat mode)"""
    approx_level = infer_approx_level(level_text)
    return "\n".join([
        "We are starting a new conversation and need a placement exercise.",
        f"User self-reported level: {level_text}",
        f"Approx level (coarse): {approx_level}",
        f"User focus: {focus_text}",
        "Task: Propose exactly one placement exercise as proposal.enabled=1 "
        "with proposal.problem_type=free_response.",
        "Do not propose any other exercise types.",
        "In response, briefly acknowledge the info and instruct the user to click Start exercise.",
    ])


def placement_fallback_proposal(level: str, focus_text: str, target_language: str) -> Proposal:
    """
    Locally built placement exercise, used when the model's placement reply
    carries no enabled proposal.
    """
    focus = str(focus_text or "").strip()

    if level in ("A1", "A2"):
        prompt = (
            f"In {target_language}, write 2-4 short sentences introducing yourself "
            f"(name, where you're from, and one hobby)."
        )
        rubric = "Short, simple sentences; correct basic word order; understandable meaning."
    elif level in ("B2", "C1", "C2"):
        prompt = (
            f"In {target_language}, write a short paragraph (5-8 sentences) giving an opinion "
            f"on a topic you care about. Include one example."
        )
        if focus:
            prompt += f" Try to relate it to: {focus}."
        rubric = "Clear opinion; cohesive paragraph; varied vocabulary; mostly correct grammar."
    else:
        prompt = (
            f"In {target_language}, write 4-6 sentences about your last weekend "
            f"(what you did, where you went, and how you felt)."
        )
        if focus:
            prompt += f" Try to include vocabulary related to: {focus}."
        rubric = "Past tense narration; clear sequence; understandable meaning; some variety in vocabulary."

    return Proposal(
        enabled=1,
        proposal_id=f"placement_{int(time.time() * 1000)}",
        problem_type=ProblemType.FREE_RESPONSE,
        free_response=FreeResponse(language=target_language, prompt=prompt, rubric=rubric)
    )
