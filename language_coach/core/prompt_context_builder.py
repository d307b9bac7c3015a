"""
Prompt Context Builder - System instruction and per-turn user content

Responsibilities:
- Render the system prompt from the configured template lines
- Resolve the effective request mode (an active exercise forces help)
- Build user content for chat, help and post_clear turns
- Redact answer keys before the active exercise is shown to the model
- Project session messages into model history

NOT responsible for:
- Calling the model
- Interpreting the model's reply
- Mutating session state

Design principles:
- Fail-fast validation (InvalidRequest / ConfigError before any model call)
- Templates come from the prompt bundle; unknown placeholders render empty
- Redaction on every path that exposes the active exercise
"""

import copy
import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from language_coach.contracts import Exercise
from language_coach.errors import ConfigError, InvalidRequest
from language_coach.session import Session

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"{{\s*([a-zA-Z0-9_]+)\s*}}")

# Prompt bundle keys
SYSTEM_LINES_KEY = "system_lines"
HELP_TEMPLATE_KEY = "help_user_message_with_active"
HELP_TEMPLATE_FALLBACK_KEY = "help_user_message"
POST_CLEAR_TEMPLATE_KEY = "post_clear_user_message"


class RequestMode(str, Enum):
    """
    Request mode for a single model call.

    CHAT: free conversation, raw user text
    HELP: active exercise context + user text (forced while an exercise is active)
    POST_CLEAR: controller-issued follow-up after an exercise is cleared
    """
    CHAT = "chat"
    HELP = "help"
    POST_CLEAR = "post_clear"


class ClearOutcome(str, Enum):
    """Why the active exercise was cleared"""
    USER_CLEARED = "user_cleared"
    OBJECTIVE_CORRECT = "objective_correct"
    MODEL_CLEAR = "model_clear"


@dataclass(frozen=True)
class PromptTurn:
    """
    Everything the LLM collaborator needs besides history and schema.

    Attributes:
        system_prompt: Rendered system instruction
        user_content: Final user message for this call
        effective_mode: Mode after resolution (may differ from requested)
    """
    system_prompt: str
    user_content: str
    effective_mode: RequestMode


def render_template(template: str, variables: Dict[str, Any]) -> str:
    """
    Substitute {{ name }} placeholders.

    Unknown names render as empty strings (never raise).

    Examples:
        >>> render_template("Learn {{targetLanguage}}!{{missing}}", {"targetLanguage": "French"})
        'Learn French!'
    """
    def _replace(match):
        key = match.group(1)
        if key not in variables or variables[key] is None:
            return ""
        return str(variables[key])

    return PLACEHOLDER_PATTERN.sub(_replace, str(template))


def redact_for_model(exercise: Optional[Exercise]) -> Optional[Dict[str, Any]]:
    """
    JSON view of an exercise with the answer key removed.

    Strips fill_in_blank.blanks[*].expected_answers and
    multiple_choice.correct_option_ids from a deep copy.
    """
    if exercise is None:
        return None

    redacted = copy.deepcopy(exercise.to_dict())

    fill_in_blank = redacted.get("fill_in_blank")
    if isinstance(fill_in_blank, dict):
        for blank in fill_in_blank.get("blanks") or []:
            if isinstance(blank, dict):
                blank.pop("expected_answers", None)

    multiple_choice = redacted.get("multiple_choice")
    if isinstance(multiple_choice, dict):
        multiple_choice.pop("correct_option_ids", None)

    return redacted


def resolve_mode(requested_mode: Any, session: Session) -> RequestMode:
    """
    Effective mode for a request.

    Anything other than help / post_clear is chat. An active exercise turns
    every non-post_clear request into help.
    """
    value = requested_mode.value if isinstance(requested_mode, RequestMode) else requested_mode

    if value == RequestMode.POST_CLEAR.value:
        return RequestMode.POST_CLEAR

    if session.has_active:
        return RequestMode.HELP

    if value == RequestMode.HELP.value:
        return RequestMode.HELP

    return RequestMode.CHAT


def history_for_model(messages: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    """
    Project session messages into model history.

    Keeps user/assistant messages with string content; drops error messages
    and every UI-only key (flags, proposal, poll, help_offer, ...).
    """
    history = []
    for message in messages:
        if not isinstance(message, dict) or message.get("error"):
            continue
        role = message.get("role")
        content = message.get("content")
        if role in ("user", "assistant") and isinstance(content, str):
            history.append({"role": role, "content": content})
    return history


class PromptContextBuilder:
    """Builds system prompt and user content for each request mode"""

    def __init__(self, prompt_bundle: Dict[str, Any]):
        """
        Args:
            prompt_bundle: Parsed prompts.json (system_lines, help and
                post-clear templates). Treated as immutable.

        Raises:
            TypeError: If prompt_bundle is not a dict
        """
        if not isinstance(prompt_bundle, dict):
            raise TypeError(f"prompt_bundle must be dict, got {type(prompt_bundle).__name__}")

        self.prompts = prompt_bundle

    def build_system_prompt(self, session: Session) -> str:
        """
        Raises:
            ConfigError: If system_lines is missing or not a list
        """
        lines = self.prompts.get(SYSTEM_LINES_KEY)
        if not isinstance(lines, list):
            raise ConfigError(f"Prompt bundle is missing {SYSTEM_LINES_KEY}[]")

        variables = {
            "nativeLanguage": session.config.native_language,
            "targetLanguage": session.config.target_language,
        }
        return "\n".join(render_template(str(line), variables) for line in lines)

    def build_turn(
        self,
        mode: Any,
        session: Session,
        user_text: Optional[str] = None,
        cleared: Optional[Exercise] = None,
        cleared_outcome: Optional[ClearOutcome] = None
    ) -> PromptTurn:
        """
        Build the prompt for one model call.

        Args:
            mode: Requested mode (RequestMode or its string value)
            session: Current session (read only)
            user_text: User's literal text (not needed for post_clear)
            cleared: Exercise just cleared (post_clear only)
            cleared_outcome: Why it was cleared (post_clear only)

        Returns:
            PromptTurn with system prompt, user content and effective mode

        Raises:
            InvalidRequest: Help without active exercise or text, chat without
                text, post_clear without cleared record / outcome
            ConfigError: Required template missing from the bundle
        """
        effective_mode = resolve_mode(mode, session)
        text = user_text if isinstance(user_text, str) else ""
        has_text = bool(text.strip())

        system_prompt = self.build_system_prompt(session)

        if effective_mode == RequestMode.POST_CLEAR:
            user_content = self._build_post_clear_content(cleared, cleared_outcome)

        elif effective_mode == RequestMode.HELP:
            if not session.has_active:
                raise InvalidRequest("No active exercise to help with.")
            if not has_text:
                raise InvalidRequest("Missing userText")
            user_content = self._build_help_content(session, text)

        else:
            if not has_text:
                raise InvalidRequest("Missing userText")
            user_content = text

        logger.debug(
            f"Built {effective_mode.value} turn (requested={getattr(mode, 'value', mode)}, "
            f"content={len(user_content)} chars)"
        )

        return PromptTurn(
            system_prompt=system_prompt,
            user_content=user_content,
            effective_mode=effective_mode
        )

    def _build_help_content(self, session: Session, user_text: str) -> str:
        template = self.prompts.get(HELP_TEMPLATE_KEY) or self.prompts.get(HELP_TEMPLATE_FALLBACK_KEY)
        if not template:
            raise ConfigError(f"Prompt bundle is missing {HELP_TEMPLATE_KEY}")

        redacted = redact_for_model(session.active)

        return render_template(template, {
            "userText": user_text,
            "activeContextJson": json.dumps(redacted, ensure_ascii=False),
            "attemptJson": json.dumps(session.attempt, ensure_ascii=False),
            "helpContextJson": json.dumps({"problem": redacted}, ensure_ascii=False),
        })

    def _build_post_clear_content(
        self,
        cleared: Optional[Exercise],
        cleared_outcome: Optional[ClearOutcome]
    ) -> str:
        if cleared is None or cleared_outcome is None:
            raise InvalidRequest("post_clear requires the cleared exercise and its outcome")

        template = self.prompts.get(POST_CLEAR_TEMPLATE_KEY)
        if not template:
            raise ConfigError(f"Prompt bundle is missing {POST_CLEAR_TEMPLATE_KEY}")

        outcome = ClearOutcome(cleared_outcome)

        return render_template(template, {
            "clearedJson": json.dumps(cleared.to_dict(), ensure_ascii=False),
            "clearedOutcomeJson": json.dumps({"kind": outcome.value}),
        })
