"""
Semantic contracts for the language coach.

This module defines the immutable data structures that travel between
modules: the exercise shapes proposed by the model, the poll shape, the
normalized model response and the objective grade.

Design principles:
- Frozen dataclasses (immutable after creation)
- Tagged union: `enabled` + `problem_type` select exactly one payload
- Constructors enforce the enabled/payload nullity invariant (fail-fast)
- from_dict() is the smart constructor for untrusted JSON (model output,
  persisted snapshots); to_dict() produces the JSON wire shape
- No dependencies on other modules

Contents:
- ProblemType: the four exercise kinds
- Translation, FillInBlank, MultipleChoice, FreeResponse: payload variants
- Proposal / Exercise: the same shape in its two lifecycle phases
- Poll: a quick multiple-choice question asked inside the chat
- ResponseFlags, StructuredResponse: normalized model output
- BlankResult, ObjectiveGrade: local grading result

Usage:
    from language_coach.contracts import Proposal, Exercise, ProblemType
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class ExerciseShapeError(ValueError):
    """Raised when an exercise, proposal or poll violates its shape invariant"""
    pass


class ProblemType(str, Enum):
    """
    Exercise kinds the model may propose.

    Values double as the names of the payload fields, so a proposal with
    problem_type 'fill_in_blank' carries its payload in `fill_in_blank`.
    """
    TRANSLATION = "translation"
    FILL_IN_BLANK = "fill_in_blank"
    MULTIPLE_CHOICE = "multiple_choice"
    FREE_RESPONSE = "free_response"


# Single source of truth for payload field names (ordered)
PAYLOAD_FIELDS = tuple(problem_type.value for problem_type in ProblemType)

# Kinds that can be graded locally without model judgement
OBJECTIVE_TYPES = {ProblemType.FILL_IN_BLANK, ProblemType.MULTIPLE_CHOICE}


def _is_one(value: Any) -> bool:
    """JSON-style `=== 1` check (booleans are not numbers here)"""
    return not isinstance(value, bool) and isinstance(value, (int, float)) and value == 1


def _require_mapping(data: Any, context: str) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise ExerciseShapeError(f"{context} must be an object, got {type(data).__name__}")
    return data


def _require_str(data: Dict[str, Any], key: str, context: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ExerciseShapeError(f"{context}.{key} must be a non-empty string")
    return value


def _optional_str(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    return value if isinstance(value, str) else ""


def _str_tuple(data: Dict[str, Any], key: str, context: str) -> Tuple[str, ...]:
    value = data.get(key)
    if value is None:
        return ()
    if not isinstance(value, list):
        raise ExerciseShapeError(f"{context}.{key} must be a list")
    return tuple(str(item) for item in value)


def _object_list(data: Dict[str, Any], key: str, context: str) -> List[Dict[str, Any]]:
    value = data.get(key)
    if not isinstance(value, list) or not value:
        raise ExerciseShapeError(f"{context}.{key} must be a non-empty list")
    return [_require_mapping(item, f"{context}.{key}[]") for item in value]


# ========================
# Payload variants
# ========================

@dataclass(frozen=True)
class Translation:
    direction: str
    text: str

    @classmethod
    def from_dict(cls, data: Any) -> "Translation":
        data = _require_mapping(data, "translation")
        return cls(
            direction=_optional_str(data, "direction"),
            text=_require_str(data, "text", "translation")
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"direction": self.direction, "text": self.text}


@dataclass(frozen=True)
class Blank:
    """
    One blank of a fill-in-blank exercise.

    Attributes:
        id: Blank identifier, key of the user's attempt mapping
        text_with_placeholder: Display line containing the placeholder run
        expected_answers: Accepted answers (answer key, redacted during help)
    """
    id: str
    text_with_placeholder: str
    expected_answers: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Any) -> "Blank":
        data = _require_mapping(data, "blank")
        return cls(
            id=str(_require_str(data, "id", "blank")),
            text_with_placeholder=_require_str(data, "text_with_placeholder", "blank"),
            expected_answers=_str_tuple(data, "expected_answers", "blank")
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "text_with_placeholder": self.text_with_placeholder,
            "expected_answers": list(self.expected_answers)
        }


@dataclass(frozen=True)
class FillInBlank:
    prompt: str
    blanks: Tuple[Blank, ...]

    @classmethod
    def from_dict(cls, data: Any) -> "FillInBlank":
        data = _require_mapping(data, "fill_in_blank")
        blanks = tuple(Blank.from_dict(item) for item in _object_list(data, "blanks", "fill_in_blank"))
        ids = [blank.id for blank in blanks]
        if len(set(ids)) != len(ids):
            raise ExerciseShapeError(f"fill_in_blank.blanks has duplicate ids: {ids}")
        return cls(prompt=_optional_str(data, "prompt"), blanks=blanks)

    def to_dict(self) -> Dict[str, Any]:
        return {"prompt": self.prompt, "blanks": [blank.to_dict() for blank in self.blanks]}


@dataclass(frozen=True)
class Option:
    """Choice shown to the user (multiple-choice exercises and polls)"""
    id: str
    text: str

    @classmethod
    def from_dict(cls, data: Any) -> "Option":
        data = _require_mapping(data, "option")
        option_id = data.get("id")
        if option_id is None or str(option_id).strip() == "":
            raise ExerciseShapeError("option.id must be present")
        return cls(id=str(option_id), text=_require_str(data, "text", "option"))

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "text": self.text}


@dataclass(frozen=True)
class MultipleChoice:
    prompt: str
    options: Tuple[Option, ...]
    allow_multiple: bool = False
    correct_option_ids: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Any) -> "MultipleChoice":
        data = _require_mapping(data, "multiple_choice")
        options = tuple(Option.from_dict(item) for item in _object_list(data, "options", "multiple_choice"))
        return cls(
            prompt=_optional_str(data, "prompt"),
            options=options,
            allow_multiple=bool(data.get("allow_multiple", False)),
            correct_option_ids=_str_tuple(data, "correct_option_ids", "multiple_choice")
        )

    @property
    def option_ids(self) -> Tuple[str, ...]:
        return tuple(option.id for option in self.options)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "prompt": self.prompt,
            "options": [option.to_dict() for option in self.options],
            "allow_multiple": self.allow_multiple,
            "correct_option_ids": list(self.correct_option_ids)
        }


@dataclass(frozen=True)
class FreeResponse:
    language: str
    prompt: str
    rubric: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "FreeResponse":
        data = _require_mapping(data, "free_response")
        return cls(
            language=_optional_str(data, "language"),
            prompt=_require_str(data, "prompt", "free_response"),
            rubric=_optional_str(data, "rubric")
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"language": self.language, "prompt": self.prompt, "rubric": self.rubric}


PAYLOAD_CLASSES = {
    ProblemType.TRANSLATION: Translation,
    ProblemType.FILL_IN_BLANK: FillInBlank,
    ProblemType.MULTIPLE_CHOICE: MultipleChoice,
    ProblemType.FREE_RESPONSE: FreeResponse,
}


# ========================
# Exercise shapes
# ========================

@dataclass(frozen=True)
class _ExerciseShape:
    """
    Tagged union shared by Proposal and Exercise.

    Invariant (checked on construction):
    - enabled=0: problem_type, identifier and all four payloads are None
    - enabled=1: problem_type is set and exactly the matching payload is
      populated; the other three are None

    Subclasses add their identifier field and name it in ID_FIELD.
    """
    enabled: int = 0
    problem_type: Optional[ProblemType] = None
    translation: Optional[Translation] = None
    fill_in_blank: Optional[FillInBlank] = None
    multiple_choice: Optional[MultipleChoice] = None
    free_response: Optional[FreeResponse] = None

    ID_FIELD = "id"

    def __post_init__(self):
        """Validate the enabled/payload invariant. Fail-fast on any violation."""
        kind = type(self).__name__

        if isinstance(self.enabled, bool) or self.enabled not in (0, 1):
            raise ExerciseShapeError(f"{kind}.enabled must be 0 or 1, got {self.enabled!r}")

        populated = [name for name in PAYLOAD_FIELDS if getattr(self, name) is not None]

        if self.enabled == 0:
            if self.problem_type is not None or populated or self.identifier is not None:
                raise ExerciseShapeError(
                    f"Disabled {kind} must have all payload fields null, got {populated}"
                )
            return

        if not isinstance(self.problem_type, ProblemType):
            raise ExerciseShapeError(f"Enabled {kind} requires a problem_type")

        if populated != [self.problem_type.value]:
            raise ExerciseShapeError(
                f"{kind} with problem_type '{self.problem_type.value}' must populate "
                f"exactly that payload, got {populated}"
            )

        payload_class = PAYLOAD_CLASSES[self.problem_type]
        if not isinstance(self.payload, payload_class):
            raise ExerciseShapeError(
                f"{kind}.{self.problem_type.value} must be {payload_class.__name__}"
            )

    @property
    def identifier(self) -> Optional[str]:
        return getattr(self, self.ID_FIELD)

    @property
    def is_enabled(self) -> bool:
        return self.enabled == 1

    @property
    def payload(self):
        """The populated payload (None when disabled)"""
        if self.problem_type is None:
            return None
        return getattr(self, self.problem_type.value)

    @classmethod
    def disabled(cls):
        """Canonical disabled shape (every field null)"""
        return cls()

    @classmethod
    def from_dict(cls, data: Any):
        """
        Smart constructor for untrusted JSON.

        Anything without enabled == 1 collapses to the disabled shape.
        An enabled shape must be complete and consistent.

        Raises:
            ExerciseShapeError: If an enabled shape is malformed
        """
        data = _require_mapping(data, cls.__name__)

        if not _is_one(data.get("enabled")):
            return cls.disabled()

        raw_type = data.get("problem_type")
        if raw_type not in PAYLOAD_FIELDS:
            raise ExerciseShapeError(f"Unknown problem_type: {raw_type!r}")
        problem_type = ProblemType(raw_type)

        payloads = {}
        for name in PAYLOAD_FIELDS:
            raw_payload = data.get(name)
            if raw_payload is None:
                continue
            if name != problem_type.value:
                raise ExerciseShapeError(
                    f"Payload '{name}' populated for problem_type '{raw_type}'"
                )
            payloads[name] = PAYLOAD_CLASSES[problem_type].from_dict(raw_payload)

        identifier = data.get(cls.ID_FIELD)
        fields = dict(payloads)
        fields[cls.ID_FIELD] = str(identifier) if identifier is not None else None

        return cls(enabled=1, problem_type=problem_type, **fields)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "enabled": self.enabled,
            self.ID_FIELD: self.identifier,
            "problem_type": self.problem_type.value if self.problem_type else None,
        }
        for name in PAYLOAD_FIELDS:
            payload = getattr(self, name)
            data[name] = payload.to_dict() if payload is not None else None
        return data


@dataclass(frozen=True)
class Proposal(_ExerciseShape):
    """
    Exercise suggested by the model, waiting for the user to start it.

    Examples:
        >>> Proposal.disabled().to_dict()['enabled']
        0
        >>> p = Proposal(enabled=1, proposal_id='p1',
        ...              problem_type=ProblemType.FREE_RESPONSE,
        ...              free_response=FreeResponse('Spanish', 'Describe your day'))
        >>> p.payload.prompt
        'Describe your day'
    """
    proposal_id: Optional[str] = None

    ID_FIELD = "proposal_id"


@dataclass(frozen=True)
class Exercise(_ExerciseShape):
    """
    Exercise the user is currently working on.

    exercise_id is copied from the proposal_id at activation time.
    """
    exercise_id: Optional[str] = None

    ID_FIELD = "exercise_id"

    @property
    def is_objective(self) -> bool:
        return self.problem_type in OBJECTIVE_TYPES


# ========================
# Poll
# ========================

@dataclass(frozen=True)
class Poll:
    """
    Quick question with clickable options, asked inside a chat turn.

    Same invariant as the exercise shapes: disabled means every field is
    None; enabled means a question and at least one option.
    """
    enabled: int = 0
    poll_id: Optional[str] = None
    question: Optional[str] = None
    options: Optional[Tuple[Option, ...]] = None

    def __post_init__(self):
        if isinstance(self.enabled, bool) or self.enabled not in (0, 1):
            raise ExerciseShapeError(f"Poll.enabled must be 0 or 1, got {self.enabled!r}")

        if self.enabled == 0:
            if self.poll_id is not None or self.question is not None or self.options is not None:
                raise ExerciseShapeError("Disabled Poll must have all fields null")
            return

        if not isinstance(self.question, str) or not self.question.strip():
            raise ExerciseShapeError("Enabled Poll requires a question")
        if not self.options:
            raise ExerciseShapeError("Enabled Poll requires at least one option")

    @property
    def is_enabled(self) -> bool:
        return self.enabled == 1

    def find_option(self, option_id: str) -> Optional[Option]:
        for option in self.options or ():
            if option.id == str(option_id):
                return option
        return None

    @classmethod
    def disabled(cls) -> "Poll":
        return cls()

    @classmethod
    def from_dict(cls, data: Any) -> "Poll":
        data = _require_mapping(data, "Poll")

        if not _is_one(data.get("enabled")):
            return cls.disabled()

        options = tuple(Option.from_dict(item) for item in _object_list(data, "options", "poll"))
        poll_id = data.get("poll_id")

        return cls(
            enabled=1,
            poll_id=str(poll_id) if poll_id is not None else None,
            question=data.get("question"),
            options=options
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "poll_id": self.poll_id,
            "question": self.question,
            "options": [option.to_dict() for option in self.options] if self.options is not None else None
        }


# ========================
# Model response
# ========================

@dataclass(frozen=True)
class ResponseFlags:
    is_help: bool = False
    is_post_clear: bool = False

    def to_dict(self) -> Dict[str, bool]:
        return {"is_help": self.is_help, "is_post_clear": self.is_post_clear}


@dataclass(frozen=True)
class StructuredResponse:
    """
    Model output after normalization.

    Always internally consistent: proposal and poll are valid shapes,
    clear_active is exactly 0 or 1, and the signal conflicts have been
    resolved for the mode the request ran in.

    Attributes:
        response: Assistant text (None when the model returned no string)
        flags: Model self-report of help / post-clear turns
        clear_active: 1 asks the controller to end the active exercise
        proposal: New exercise suggestion (disabled shape when absent)
        poll: Quick question (disabled shape when absent)
        normalization_applied: Audit trail of coercions, not part of the
            wire shape
    """
    response: Optional[str]
    flags: ResponseFlags
    clear_active: int
    proposal: Proposal
    poll: Poll
    normalization_applied: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "response": self.response,
            "flags": self.flags.to_dict(),
            "clear_active": self.clear_active,
            "proposal": self.proposal.to_dict(),
            "poll": self.poll.to_dict()
        }


# ========================
# Objective grading
# ========================

@dataclass(frozen=True)
class BlankResult:
    id: str
    correct: bool


@dataclass(frozen=True)
class ObjectiveGrade:
    """
    Result of grading a fill-in-blank or multiple-choice attempt.

    results is per-blank for fill_in_blank and None for multiple_choice
    (no partial credit there).
    """
    kind: ProblemType
    all_correct: bool
    results: Optional[Tuple[BlankResult, ...]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"kind": self.kind.value, "all_correct": self.all_correct}
        if self.results is not None:
            data["results"] = [{"id": r.id, "correct": r.correct} for r in self.results]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ObjectiveGrade":
        results = data.get("results")
        return cls(
            kind=ProblemType(data["kind"]),
            all_correct=bool(data["all_correct"]),
            results=tuple(BlankResult(id=str(r["id"]), correct=bool(r["correct"])) for r in results)
            if results is not None else None
        )
