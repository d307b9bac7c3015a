"""
Conversation Controller - Request-mode state machine (Functional Core)

Responsibilities:
- Route every command to onboarding, chat, help or exercise handling
- Build prompts, call the LLM collaborator, normalize its reply
- Apply exercise lifecycle transitions (activate, grade, clear)
- Chain exactly one post_clear call after any clear
- Turn collaborator failures into visible error messages

Design principles:
- Ephemeral per command (no session held between commands)
- Functional core: session in, new session out; the input is never mutated
- Failures roll back to the last committed checkpoint (the pre-command
  session unless a clear was already committed)
- Thin orchestration (prompting, normalization, grading in their own modules)

States:
    Onboarding(step 0) --text--> Onboarding(step 1) --text+model--> Chat
    Chat --StartProposal--> ExerciseActive
    ExerciseActive --clear (user / objective_correct / model)--> post_clear call --> Chat
"""

import logging
import re
import threading
from typing import Any, Dict, List, Optional, Tuple

from language_coach.commands import (
    AcceptHelpOffer,
    AnswerPoll,
    ClearActive,
    NewConversation,
    SendText,
    StartConversation,
    StartProposal,
    SubmitExercise,
    ToggleChoice,
    UpdateAttempt,
    UpdateConfig,
)
from language_coach.contracts import (
    Exercise,
    ExerciseShapeError,
    ObjectiveGrade,
    Poll,
    Proposal,
    StructuredResponse,
)
from language_coach.core.exercise_grader import (
    activate_proposal,
    coerce_attempt,
    default_attempt,
    grade_objective,
    toggle_choice,
)
from language_coach.core.onboarding import (
    build_placement_request,
    focus_question_message,
    greeting_messages,
    infer_approx_level,
    placement_fallback_proposal,
)
from language_coach.core.prompt_context_builder import (
    ClearOutcome,
    RequestMode,
    history_for_model,
)
from language_coach.errors import LanguageCoachError, ModelError
from language_coach.results import IllegalCommand, TurnResult
from language_coach.session import ConversationMode, LanguageConfig, Session

logger = logging.getLogger(__name__)


class CancellationToken:
    """
    Cancellation signal for an in-flight command.

    Checked after every LLM call; a cancelled command discards its result.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class _TurnCancelled(Exception):
    """Internal: cancellation observed after a model call"""
    pass


class _IllegalTransition(Exception):
    """Internal: command not valid for the current session state"""
    pass


class _TurnContext:
    """Mutable working state for one command"""

    def __init__(self, session: Session, cancel_token: Optional[CancellationToken]):
        self.session = session
        self.cancel_token = cancel_token
        self.new_messages: List[Dict[str, Any]] = []
        self.debug: Dict[str, Any] = {'calls': []}
        self.grade: Optional[ObjectiveGrade] = None
        self.model_calls = 0
        self.checkpoint: Optional[Tuple[Session, List[Dict[str, Any]]]] = None

    @property
    def cancelled(self) -> bool:
        return self.cancel_token is not None and self.cancel_token.cancelled

    def append(self, message: Dict[str, Any]) -> None:
        self.session.messages.append(message)
        self.new_messages.append(message)

    def commit(self) -> None:
        """Mark the current state as surviving a later collaborator failure"""
        self.checkpoint = (self.session.copy(), list(self.new_messages))


class ConversationController:
    """
    Orchestrates the learner conversation.

    Functional core design:
    - Collaborators cached at construction (stateless, safe to share)
    - handle() transforms a session deterministically given model replies
    - No implicit state accumulation
    """

    HELP_OFFER_TEXT = "It looks like that answer isn't fully correct. Want help?"
    HELP_REQUEST_TEXT = "Yes, please help me with this exercise."
    REVIEW_REQUEST_TEXT = "Please review my attempt and help me improve."

    # Poll option ids this simple are sent back verbatim, others as option text
    POLL_REPLY_ID_PATTERN = re.compile(r"^[a-z0-9_\-]{1,32}$", re.IGNORECASE)

    def __init__(self, llm_client, prompt_builder, normalizer, response_schema: Dict[str, Any]):
        """
        Args:
            llm_client: Collaborator with generate(system_prompt, history,
                user_content, schema) -> dict
            prompt_builder: PromptContextBuilder instance
            normalizer: ResponseNormalizer instance
            response_schema: JSON schema sent with every model call

        Raises:
            TypeError: If any collaborator is missing its interface
        """
        self._validate_modules(llm_client, prompt_builder, normalizer, response_schema)

        self.llm_client = llm_client
        self.prompt_builder = prompt_builder
        self.normalizer = normalizer
        self.response_schema = response_schema

        self._handlers = {
            NewConversation: self._handle_new_conversation,
            UpdateConfig: self._handle_update_config,
            SendText: self._handle_send_text,
            StartProposal: self._handle_start_proposal,
            UpdateAttempt: self._handle_update_attempt,
            ToggleChoice: self._handle_toggle_choice,
            SubmitExercise: self._handle_submit_exercise,
            ClearActive: self._handle_clear_active,
            AcceptHelpOffer: self._handle_accept_help_offer,
            AnswerPoll: self._handle_answer_poll,
        }

        logger.info("Conversation Controller initialized (functional core)")

    def _validate_modules(self, llm_client, prompt_builder, normalizer, response_schema):
        """Validate collaborator interfaces"""
        if not callable(getattr(llm_client, 'generate', None)):
            raise TypeError("llm_client must have callable generate() method")

        if not callable(getattr(prompt_builder, 'build_turn', None)):
            raise TypeError("prompt_builder must have callable build_turn() method")

        if not callable(getattr(normalizer, 'normalize', None)):
            raise TypeError("normalizer must have callable normalize() method")

        if not isinstance(response_schema, dict):
            raise TypeError("response_schema must be dict")

    # ========================
    # Public entry point
    # ========================

    def handle(
        self,
        command,
        session: Optional[Session] = None,
        cancel_token: Optional[CancellationToken] = None
    ):
        """
        Process one command.

        Args:
            command: One of the language_coach.commands types
            session: Current session (None only for StartConversation)
            cancel_token: Optional cancellation signal for this command

        Returns:
            TurnResult on success or recovered failure,
            IllegalCommand if the command is invalid for the session
        """
        command_type = type(command).__name__

        if isinstance(command, StartConversation):
            return self._start_conversation(command)

        if session is None:
            return IllegalCommand(reason="No session to apply command to", command_type=command_type)

        handler = self._handlers.get(type(command))
        if handler is None:
            return IllegalCommand(reason=f"Unknown command: {command_type}", command_type=command_type)

        ctx = _TurnContext(session.copy(), cancel_token)
        ctx.debug['command'] = command_type

        try:
            handler(command, ctx)

        except _IllegalTransition as e:
            logger.info(f"Rejected {command_type}: {e}")
            return IllegalCommand(reason=str(e), command_type=command_type)

        except _TurnCancelled:
            logger.info(f"{command_type} cancelled; discarding model response")
            return TurnResult(
                session=session,
                debug={'command': command_type, 'cancelled': True},
                model_calls=ctx.model_calls,
                discarded=True
            )

        except LanguageCoachError as e:
            logger.error(f"{command_type} failed: {type(e).__name__} - {e}")
            return self._build_failure_result(session, ctx, e)

        return TurnResult(
            session=ctx.session,
            new_messages=tuple(ctx.new_messages),
            grade=ctx.grade,
            debug=ctx.debug,
            model_calls=ctx.model_calls
        )

    def _build_failure_result(self, session: Session, ctx: _TurnContext, error: Exception) -> TurnResult:
        """Roll back to the last checkpoint and append a visible error message"""
        if ctx.checkpoint is not None:
            recovered, new_messages = ctx.checkpoint
        else:
            recovered, new_messages = session.copy(), []

        error_message = {'role': 'assistant', 'content': f"Error: {error}", 'error': True}
        recovered.messages.append(error_message)
        new_messages = new_messages + [error_message]

        ctx.debug['error'] = str(error)
        ctx.debug['error_type'] = type(error).__name__

        return TurnResult(
            session=recovered,
            new_messages=tuple(new_messages),
            grade=ctx.grade if ctx.checkpoint is not None else None,
            error=str(error),
            debug=ctx.debug,
            model_calls=ctx.model_calls
        )

    # ========================
    # Conversation lifecycle
    # ========================

    def _start_conversation(self, command: StartConversation) -> TurnResult:
        config = LanguageConfig()
        if _non_empty(command.native_language):
            config.native_language = command.native_language.strip()
        if _non_empty(command.target_language):
            config.target_language = command.target_language.strip()

        session = self._fresh_session(config)
        logger.info(f"Started conversation ({config.native_language} -> {config.target_language})")

        return TurnResult(
            session=session,
            new_messages=tuple(session.messages),
            debug={'command': 'StartConversation'}
        )

    def _fresh_session(self, config: LanguageConfig) -> Session:
        session = Session(config=LanguageConfig(config.native_language, config.target_language))
        session.messages = greeting_messages(config.target_language)
        return session

    def _handle_new_conversation(self, command: NewConversation, ctx: _TurnContext) -> None:
        ctx.session = self._fresh_session(ctx.session.config)
        ctx.new_messages = list(ctx.session.messages)
        logger.info("New conversation: reset to onboarding step 0")

    def _handle_update_config(self, command: UpdateConfig, ctx: _TurnContext) -> None:
        if not _non_empty(command.native_language) and not _non_empty(command.target_language):
            raise _IllegalTransition("UpdateConfig needs a native or target language")

        if _non_empty(command.native_language):
            ctx.session.config.native_language = command.native_language.strip()
        if _non_empty(command.target_language):
            ctx.session.config.target_language = command.target_language.strip()

        logger.info(
            f"Config updated: {ctx.session.config.native_language} -> "
            f"{ctx.session.config.target_language}"
        )

    # ========================
    # Text turns
    # ========================

    def _handle_send_text(self, command: SendText, ctx: _TurnContext) -> None:
        self._send_text(ctx, command.text)

    def _send_text(self, ctx: _TurnContext, text: Any) -> None:
        cleaned = str(text or "").strip()
        if not cleaned:
            raise _IllegalTransition("Message is empty")

        session = ctx.session

        if session.conversation_mode == ConversationMode.MODE_ONBOARDING:
            if session.onboarding_step == 0:
                self._process_level_answer(ctx, cleaned)
                return
            if session.onboarding_step == 1:
                self._process_focus_answer(ctx, cleaned)
                return

        history = list(session.messages)
        ctx.append({'role': 'user', 'content': cleaned})

        requested_mode = RequestMode.HELP if session.has_active else RequestMode.CHAT
        self._process_model_turn(ctx, requested_mode, cleaned, history)

    def _process_level_answer(self, ctx: _TurnContext, text: str) -> None:
        """Onboarding step 0: capture level, ask the focus question locally"""
        ctx.session.placement.level_text = text
        ctx.append({'role': 'user', 'content': text})
        ctx.append(focus_question_message())
        ctx.session.onboarding_step = 1
        ctx.debug['onboarding_step'] = 1

    def _process_focus_answer(self, ctx: _TurnContext, text: str) -> None:
        """Onboarding step 1: capture focus, ask the model for a placement exercise"""
        session = ctx.session
        history = list(session.messages)

        session.placement.focus_text = text
        ctx.append({'role': 'user', 'content': text})

        level = infer_approx_level(session.placement.level_text)
        request = build_placement_request(session.placement.level_text, text)
        ctx.debug['placement_level'] = level

        _, result = self._call_model(ctx, RequestMode.CHAT, request, history)

        session.conversation_mode = ConversationMode.MODE_CHAT
        session.onboarding_step = 2

        message = self._append_assistant(ctx, result)

        proposal = result.proposal
        if not proposal.is_enabled:
            proposal = placement_fallback_proposal(level, text, session.config.target_language)
            ctx.debug['placement_fallback'] = True
            logger.warning("Placement reply had no proposal; using local placement exercise")
            if message is not None:
                message['proposal'] = proposal.to_dict()

        session.pending_proposal = proposal
        logger.info(f"Onboarding complete (level={level}); placement proposal pending")

    def _process_model_turn(
        self,
        ctx: _TurnContext,
        requested_mode: RequestMode,
        user_text: str,
        history: List[Dict[str, Any]]
    ) -> None:
        """Chat or help call, with the model-issued clear chain"""
        effective_mode, result = self._call_model(ctx, requested_mode, user_text, history)

        self._append_assistant(ctx, result)
        self._apply_proposal(ctx, result)

        if result.clear_active != 1:
            return

        if not ctx.session.has_active:
            logger.warning(
                f"Model set clear_active=1 with no active exercise ({effective_mode.value}); ignoring"
            )
            ctx.debug['ignored_clear_active'] = True
            return

        cleared = ctx.session.clear_exercise()
        logger.info(f"Model cleared exercise {cleared.exercise_id}")
        ctx.commit()
        self._post_clear(ctx, cleared, ClearOutcome.MODEL_CLEAR)

        # Clearing reply's proposal outranks the follow-up's
        self._apply_proposal(ctx, result)

    # ========================
    # Exercise lifecycle
    # ========================

    def _handle_start_proposal(self, command: StartProposal, ctx: _TurnContext) -> None:
        session = ctx.session
        proposal = self._find_proposal(session, command.proposal_id)
        if proposal is None:
            raise _IllegalTransition(f"No proposal with id {command.proposal_id}")

        if session.has_active:
            logger.info(f"Replacing active exercise {session.active.exercise_id}")

        exercise = activate_proposal(proposal)
        session.active = exercise
        session.attempt = default_attempt(exercise)
        session.grade = None

        if session.pending_proposal is not None and session.pending_proposal.proposal_id == proposal.proposal_id:
            session.pending_proposal = None

        ctx.debug['activated'] = exercise.exercise_id
        logger.info(f"Activated {exercise.problem_type.value} exercise {exercise.exercise_id}")

    def _find_proposal(self, session: Session, proposal_id: Any) -> Optional[Proposal]:
        """Pending proposal first, then the newest message carrying that id"""
        proposal_id = str(proposal_id)

        pending = session.pending_proposal
        if pending is not None and pending.is_enabled and pending.proposal_id == proposal_id:
            return pending

        for message in reversed(session.messages):
            raw = message.get('proposal')
            if not isinstance(raw, dict) or str(raw.get('proposal_id')) != proposal_id:
                continue
            try:
                proposal = Proposal.from_dict(raw)
            except ExerciseShapeError as e:
                logger.warning(f"Stored proposal {proposal_id} is malformed: {e}")
                return None
            return proposal if proposal.is_enabled else None

        return None

    def _require_active(self, ctx: _TurnContext) -> Exercise:
        if not ctx.session.has_active:
            raise _IllegalTransition("No active exercise")
        return ctx.session.active

    def _handle_update_attempt(self, command: UpdateAttempt, ctx: _TurnContext) -> None:
        exercise = self._require_active(ctx)
        ctx.session.attempt = coerce_attempt(exercise, command.attempt)

    def _handle_toggle_choice(self, command: ToggleChoice, ctx: _TurnContext) -> None:
        exercise = self._require_active(ctx)
        try:
            ctx.session.attempt = toggle_choice(exercise, ctx.session.attempt, command.option_id)
        except ValueError as e:
            raise _IllegalTransition(str(e))

    def _handle_submit_exercise(self, command: SubmitExercise, ctx: _TurnContext) -> None:
        exercise = self._require_active(ctx)
        session = ctx.session

        if not exercise.is_objective:
            # Translation / free response: the model reviews the attempt
            self._process_model_turn(
                ctx, RequestMode.HELP, self.REVIEW_REQUEST_TEXT, list(session.messages)
            )
            return

        grade = grade_objective(exercise, session.attempt)
        ctx.grade = grade
        session.grade = grade
        ctx.debug['grade'] = grade.to_dict()

        if grade.all_correct:
            cleared = session.clear_exercise()
            logger.info(f"Exercise {cleared.exercise_id} answered correctly")
            ctx.commit()
            self._post_clear(ctx, cleared, ClearOutcome.OBJECTIVE_CORRECT)
            return

        if self._has_open_help_offer(session, exercise.exercise_id):
            return

        ctx.append({
            'role': 'assistant',
            'content': self.HELP_OFFER_TEXT,
            'help_offer': {'enabled': 1, 'exercise_id': exercise.exercise_id}
        })

    def _has_open_help_offer(self, session: Session, exercise_id: Optional[str]) -> bool:
        """True if the last message is an unaccepted offer for this exercise"""
        if not session.messages:
            return False
        last = session.messages[-1]
        offer = last.get('help_offer')
        return (
            isinstance(offer, dict)
            and offer.get('enabled') == 1
            and offer.get('exercise_id') == exercise_id
            and last.get('help_offer_accepted') != 1
        )

    def _handle_clear_active(self, command: ClearActive, ctx: _TurnContext) -> None:
        self._require_active(ctx)
        cleared = ctx.session.clear_exercise()
        logger.info(f"User cleared exercise {cleared.exercise_id}")
        ctx.commit()
        self._post_clear(ctx, cleared, ClearOutcome.USER_CLEARED)

    def _handle_accept_help_offer(self, command: AcceptHelpOffer, ctx: _TurnContext) -> None:
        message = self._message_at(ctx.session, command.message_index)
        offer = message.get('help_offer')
        if not isinstance(offer, dict) or offer.get('enabled') != 1:
            raise _IllegalTransition("Message has no help offer")
        if message.get('help_offer_accepted') == 1:
            raise _IllegalTransition("Help offer already accepted")

        message['help_offer_accepted'] = 1
        self._send_text(ctx, self.HELP_REQUEST_TEXT)

    def _handle_answer_poll(self, command: AnswerPoll, ctx: _TurnContext) -> None:
        message = self._message_at(ctx.session, command.message_index)

        try:
            poll = Poll.from_dict(message.get('poll') or {})
        except ExerciseShapeError:
            poll = Poll.disabled()
        if not poll.is_enabled:
            raise _IllegalTransition("Message has no poll")
        if message.get('poll_answer') is not None:
            raise _IllegalTransition("Poll already answered")

        option = poll.find_option(command.option_id)
        if option is None:
            raise _IllegalTransition(f"Unknown poll option: {command.option_id}")

        message['poll_answer'] = {'option_id': option.id}

        reply = option.id if self.POLL_REPLY_ID_PATTERN.match(option.id) else option.text
        self._send_text(ctx, reply)

    def _message_at(self, session: Session, index: Any) -> Dict[str, Any]:
        if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < len(session.messages):
            raise _IllegalTransition(f"No message at index {index}")
        return session.messages[index]

    # ========================
    # Model calls
    # ========================

    def _post_clear(self, ctx: _TurnContext, cleared: Exercise, outcome: ClearOutcome) -> None:
        """Exactly one follow-up call after an exercise is cleared"""
        ctx.debug['cleared_outcome'] = outcome.value

        _, result = self._call_model(
            ctx,
            RequestMode.POST_CLEAR,
            None,
            list(ctx.session.messages),
            cleared=cleared,
            cleared_outcome=outcome
        )

        self._append_assistant(ctx, result)
        self._apply_proposal(ctx, result)

        if result.clear_active == 1:
            logger.warning("Model set clear_active=1 on post_clear turn; ignoring")
            ctx.debug['ignored_clear_active'] = True

    def _call_model(
        self,
        ctx: _TurnContext,
        requested_mode: RequestMode,
        user_text: Optional[str],
        history: List[Dict[str, Any]],
        cleared: Optional[Exercise] = None,
        cleared_outcome: Optional[ClearOutcome] = None
    ) -> Tuple[RequestMode, StructuredResponse]:
        """
        Build, call, normalize.

        Raises:
            InvalidRequest / ConfigError: From the prompt builder (no call made)
            ModelError: Collaborator failed
            _TurnCancelled: Token cancelled while the call was in flight
        """
        turn = self.prompt_builder.build_turn(
            requested_mode, ctx.session, user_text,
            cleared=cleared, cleared_outcome=cleared_outcome
        )
        model_history = history_for_model(history)

        logger.info(
            f"Calling model: mode={turn.effective_mode.value}, "
            f"history={len(model_history)} messages"
        )

        try:
            raw = self.llm_client.generate(
                system_prompt=turn.system_prompt,
                history=model_history,
                user_content=turn.user_content,
                schema=self.response_schema
            )
        except LanguageCoachError:
            raise
        except Exception as e:
            raise ModelError(f"LLM call failed: {type(e).__name__} - {e}") from e

        ctx.model_calls += 1

        if ctx.cancelled:
            raise _TurnCancelled()

        result = self.normalizer.normalize(raw, turn.effective_mode)

        ctx.debug['calls'].append({
            'effective_mode': turn.effective_mode.value,
            'normalization_applied': list(result.normalization_applied),
            'clear_active': result.clear_active,
            'proposal_enabled': result.proposal.is_enabled,
            'poll_enabled': result.poll.is_enabled
        })

        return turn.effective_mode, result

    def _append_assistant(self, ctx: _TurnContext, result: StructuredResponse) -> Optional[Dict[str, Any]]:
        """Append the model's reply (skipped when it returned no text)"""
        if result.response is None:
            logger.warning("Model returned no response text; nothing appended")
            return None

        message = {
            'role': 'assistant',
            'content': result.response,
            'flags': result.flags.to_dict()
        }
        if result.proposal.is_enabled:
            message['proposal'] = result.proposal.to_dict()
        if result.poll.is_enabled:
            message['poll'] = result.poll.to_dict()

        ctx.append(message)
        return message

    def _apply_proposal(self, ctx: _TurnContext, result: StructuredResponse) -> None:
        if result.proposal.is_enabled:
            ctx.session.pending_proposal = result.proposal
            logger.info(f"Pending proposal: {result.proposal.proposal_id}")


def _non_empty(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())
