"""
Session State - Persisted aggregate for one learner conversation

Responsibilities:
- Hold config, onboarding progress, message history and exercise state
- Serialize to / from a JSON-safe snapshot

Design principles:
- Dumb container: no business logic (Conversation Controller owns transitions)
- copy() gives the controller a private working copy per turn
- from_json() is tolerant of missing keys (older snapshots) but rejects
  non-dict input
"""

import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from language_coach.contracts import (
    Exercise,
    ExerciseShapeError,
    ObjectiveGrade,
    Proposal,
)

logger = logging.getLogger(__name__)

DEFAULT_NATIVE_LANGUAGE = "English"
DEFAULT_TARGET_LANGUAGE = "Spanish"


class ConversationMode(str, Enum):
    """
    Conversation mode for the session.

    MODE_ONBOARDING:
        Scripted placement questions intercept user input.
        Exit: second placement answer processed -> MODE_CHAT

    MODE_CHAT:
        Free conversation; an active exercise turns chat into help.
        Entry: placement complete, or snapshot without a mode
    """
    MODE_ONBOARDING = "onboarding"
    MODE_CHAT = "chat"


VALID_MODES = {mode.value for mode in ConversationMode}


@dataclass
class LanguageConfig:
    native_language: str = DEFAULT_NATIVE_LANGUAGE
    target_language: str = DEFAULT_TARGET_LANGUAGE

    def to_json(self) -> Dict[str, str]:
        return {"native_language": self.native_language, "target_language": self.target_language}


@dataclass
class Placement:
    level_text: str = ""
    focus_text: str = ""

    def to_json(self) -> Dict[str, str]:
        return {"level_text": self.level_text, "focus_text": self.focus_text}


@dataclass
class Session:
    """
    Everything the controller needs to process the next command.

    Attributes:
        config: Native / target language
        conversation_mode: onboarding or chat
        onboarding_step: 0 (level pending), 1 (focus pending), 2 (done)
        placement: Raw onboarding answers
        messages: Chat history dicts {role, content, ...}
        active: Exercise being worked on (None if idle)
        attempt: User's in-progress answer (None iff no active exercise)
        pending_proposal: Proposal shown but not yet started
        grade: Last objective grade for the active exercise
    """
    config: LanguageConfig = field(default_factory=LanguageConfig)
    conversation_mode: ConversationMode = ConversationMode.MODE_ONBOARDING
    onboarding_step: int = 0
    placement: Placement = field(default_factory=Placement)
    messages: List[Dict[str, Any]] = field(default_factory=list)
    active: Optional[Exercise] = None
    attempt: Any = None
    pending_proposal: Optional[Proposal] = None
    grade: Optional[ObjectiveGrade] = None

    @property
    def has_active(self) -> bool:
        return self.active is not None and self.active.is_enabled

    def copy(self) -> "Session":
        """Deep copy (exercise shapes are frozen and shared safely)"""
        return copy.deepcopy(self)

    def clear_exercise(self) -> Optional[Exercise]:
        """
        Null active, attempt and grade together.

        Returns:
            The exercise that was cleared (None if there was none)
        """
        cleared = self.active
        self.active = None
        self.attempt = None
        self.grade = None
        return cleared

    def to_json(self) -> Dict[str, Any]:
        return {
            "config": self.config.to_json(),
            "conversation_mode": self.conversation_mode.value,
            "onboarding_step": self.onboarding_step,
            "placement": self.placement.to_json(),
            "messages": copy.deepcopy(self.messages),
            "active": self.active.to_dict() if self.active is not None else None,
            "attempt": copy.deepcopy(self.attempt),
            "pending_proposal": self.pending_proposal.to_dict() if self.pending_proposal is not None else None,
            "grade": self.grade.to_dict() if self.grade is not None else None
        }

    @staticmethod
    def from_json(data: Dict[str, Any]) -> "Session":
        """
        Rebuild a session from a snapshot.

        Missing keys fall back to defaults. A snapshot with messages but no
        mode is treated as a finished onboarding (chat, step 2).

        Raises:
            ValueError: If data is not a dict, a field has the wrong JSON type,
                or an exercise shape is corrupt
        """
        if not isinstance(data, dict):
            raise ValueError(f"Session snapshot must be dict, got {type(data).__name__}")

        raw_config = data.get("config") if isinstance(data.get("config"), dict) else {}
        config = LanguageConfig(
            native_language=_str_or(raw_config.get("native_language"), DEFAULT_NATIVE_LANGUAGE),
            target_language=_str_or(raw_config.get("target_language"), DEFAULT_TARGET_LANGUAGE)
        )

        raw_messages = data.get("messages") or []
        if not isinstance(raw_messages, list):
            raise ValueError(f"Snapshot messages must be list, got {type(raw_messages).__name__}")
        messages = [copy.deepcopy(m) for m in raw_messages if isinstance(m, dict)]

        raw_mode = data.get("conversation_mode")
        if isinstance(raw_mode, str) and raw_mode in VALID_MODES:
            mode = ConversationMode(raw_mode)
        else:
            mode = ConversationMode.MODE_CHAT if messages else ConversationMode.MODE_ONBOARDING

        step = data.get("onboarding_step")
        if not isinstance(step, int) or isinstance(step, bool):
            step = 2 if mode == ConversationMode.MODE_CHAT else 0

        raw_placement = data.get("placement") if isinstance(data.get("placement"), dict) else {}
        placement = Placement(
            level_text=_str_or(raw_placement.get("level_text"), ""),
            focus_text=_str_or(raw_placement.get("focus_text"), "")
        )

        for key in ("active", "pending_proposal", "grade"):
            if data.get(key) and not isinstance(data[key], dict):
                raise ValueError(f"Snapshot {key} must be dict, got {type(data[key]).__name__}")

        try:
            active = Exercise.from_dict(data["active"]) if data.get("active") else None
            pending = Proposal.from_dict(data["pending_proposal"]) if data.get("pending_proposal") else None
            grade = ObjectiveGrade.from_dict(data["grade"]) if data.get("grade") else None
        except (ExerciseShapeError, KeyError, TypeError, AttributeError) as e:
            raise ValueError(f"Corrupt exercise state in snapshot: {e}") from e

        if active is not None and not active.is_enabled:
            active = None
        if pending is not None and not pending.is_enabled:
            pending = None

        return Session(
            config=config,
            conversation_mode=mode,
            onboarding_step=step,
            placement=placement,
            messages=messages,
            active=active,
            attempt=copy.deepcopy(data.get("attempt")) if active is not None else None,
            pending_proposal=pending,
            grade=grade if active is not None else None
        )


def _str_or(value: Any, default: str) -> str:
    return value if isinstance(value, str) and value.strip() else default
