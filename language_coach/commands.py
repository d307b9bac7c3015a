"""
Command types for ConversationController control flow.

Commands are the ONLY public interface to ConversationController.
No direct method calls. No state inspection. Commands only.
"""

from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class StartConversation:
    """
    Create a fresh session at onboarding step 0.

    No session parameter - the controller creates it.
    Languages default to English / Spanish when not given.
    """
    native_language: Optional[str] = None
    target_language: Optional[str] = None


@dataclass(frozen=True)
class NewConversation:
    """Reset the current session to onboarding, keeping its config"""
    pass


@dataclass(frozen=True)
class UpdateConfig:
    """Replace native / target language (None keeps the current value)"""
    native_language: Optional[str] = None
    target_language: Optional[str] = None


@dataclass(frozen=True)
class SendText:
    """
    User typed a message.

    Routed to onboarding, chat or help depending on session state.
    """
    text: str


@dataclass(frozen=True)
class StartProposal:
    """Activate a proposal (pending, or carried by an earlier message)"""
    proposal_id: str


@dataclass(frozen=True)
class UpdateAttempt:
    """Replace the in-progress answer (coerced to the exercise's shape)"""
    attempt: Any


@dataclass(frozen=True)
class ToggleChoice:
    """Click on a multiple-choice option"""
    option_id: str


@dataclass(frozen=True)
class SubmitExercise:
    """
    Submit the attempt.

    Objective exercises are graded locally; translation / free_response
    are sent to the model for review.
    """
    pass


@dataclass(frozen=True)
class ClearActive:
    """User abandons the active exercise"""
    pass


@dataclass(frozen=True)
class AcceptHelpOffer:
    """User accepts the help offer carried by messages[message_index]"""
    message_index: int


@dataclass(frozen=True)
class AnswerPoll:
    """User picks option_id from the poll carried by messages[message_index]"""
    message_index: int
    option_id: str


# Command union type for type hints
Command = (
    StartConversation | NewConversation | UpdateConfig | SendText | StartProposal
    | UpdateAttempt | ToggleChoice | SubmitExercise | ClearActive
    | AcceptHelpOffer | AnswerPoll
)
