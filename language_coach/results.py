"""
Result types returned by ConversationController.handle()

These are the ONLY return types from the command handler.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from language_coach.contracts import ObjectiveGrade
from language_coach.session import Session


@dataclass(frozen=True)
class TurnResult:
    """
    Processed command.

    Attributes:
        session: Session after the command (a new object; input untouched)
        new_messages: Messages appended during this command, in order
        grade: Objective grade computed by this command (kept here even when
            the session nulls it because the exercise was cleared)
        error: User-facing error text when a collaborator call failed
        debug: Effective modes, normalization audit, clear outcome, etc.
        model_calls: Number of LLM calls made (0, 1 or 2)
        discarded: True when the turn was cancelled and its result dropped
    """
    session: Session
    new_messages: Tuple[Dict[str, Any], ...] = ()
    grade: Optional[ObjectiveGrade] = None
    error: Optional[str] = None
    debug: Dict[str, Any] = field(default_factory=dict)
    model_calls: int = 0
    discarded: bool = False


@dataclass(frozen=True)
class IllegalCommand:
    """
    Command rejected by the controller (invalid for the current state).

    Examples:
    - StartProposal with an unknown proposal id
    - SubmitExercise with no active exercise
    - Any user command while another turn is in flight

    Attributes:
        reason: Human-readable explanation
        command_type: Name of rejected command type
    """
    reason: str
    command_type: str
