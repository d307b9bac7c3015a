"""
Conversation Service - Imperative shell around the Conversation Controller

Responsibilities:
- Load the session for a session id (fresh onboarding if none / corrupt)
- Serialize turns per session (one command in flight per session)
- Cancel the in-flight turn when the conversation is reset
- Save the session after every applied turn

NOT responsible for:
- Any conversation logic (ConversationController)
- Transport concerns (app.py / main.py)
"""

import logging
import threading
from typing import Dict

from language_coach.commands import NewConversation, StartConversation
from language_coach.core.conversation_controller import CancellationToken
from language_coach.persistence import SessionRepository
from language_coach.results import IllegalCommand, TurnResult
from language_coach.session import Session

logger = logging.getLogger(__name__)

# Seconds a reset waits for a cancelled turn to unwind
RESET_WAIT_SECONDS = 120.0


class ConversationService:
    """
    Per-session command runner.

    Concurrency:
    - One threading.Lock per session id
    - User commands never queue: a busy session refuses with IllegalCommand
    - NewConversation / StartConversation cancel the in-flight turn, then
      wait for its lock
    """

    def __init__(self, controller, repository: SessionRepository, reset_wait: float = RESET_WAIT_SECONDS):
        if not callable(getattr(controller, 'handle', None)):
            raise TypeError("controller must have callable handle() method")
        if not isinstance(repository, SessionRepository):
            raise TypeError("repository must be a SessionRepository")

        self.controller = controller
        self.repository = repository
        self.reset_wait = reset_wait

        self._registry_lock = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._tokens: Dict[str, CancellationToken] = {}

    def _lock_for(self, session_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[session_id] = lock
            return lock

    def is_busy(self, session_id: str) -> bool:
        return self._lock_for(session_id).locked()

    def get_session(self, session_id: str) -> Session:
        """Current session, creating (and saving) a fresh one if needed"""
        session = self.repository.load(session_id)
        if session is not None:
            return session
        return self._start_fresh(session_id, StartConversation())

    def _start_fresh(self, session_id: str, command: StartConversation) -> Session:
        result = self.controller.handle(command)
        self.repository.save(session_id, result.session)
        logger.info(f"Created fresh session {session_id}")
        return result.session

    def handle(self, session_id: str, command):
        """
        Run one command for a session.

        Returns:
            TurnResult or IllegalCommand (busy session, invalid command)
        """
        if isinstance(command, (NewConversation, StartConversation)):
            return self._reset(session_id, command)

        command_type = type(command).__name__
        lock = self._lock_for(session_id)

        if not lock.acquire(blocking=False):
            logger.info(f"Refused {command_type} for {session_id}: turn in progress")
            return IllegalCommand(reason="Another request is still in progress", command_type=command_type)

        token = CancellationToken()
        with self._registry_lock:
            self._tokens[session_id] = token

        try:
            session = self.get_session(session_id)
            result = self.controller.handle(command, session, token)
            self._save_result(session_id, result)
            return result
        finally:
            with self._registry_lock:
                if self._tokens.get(session_id) is token:
                    del self._tokens[session_id]
            lock.release()

    def _reset(self, session_id: str, command):
        command_type = type(command).__name__

        if self.cancel(session_id):
            logger.info(f"Cancelled in-flight turn for {session_id}")

        lock = self._lock_for(session_id)
        if not lock.acquire(timeout=self.reset_wait):
            logger.error(f"Reset of {session_id} timed out waiting for in-flight turn")
            return IllegalCommand(reason="Previous request did not finish", command_type=command_type)

        try:
            if isinstance(command, StartConversation):
                result = self.controller.handle(command)
            else:
                session = self.get_session(session_id)
                result = self.controller.handle(command, session)
            self._save_result(session_id, result)
            return result
        finally:
            lock.release()

    def _save_result(self, session_id: str, result) -> None:
        if not isinstance(result, TurnResult):
            return
        if result.discarded:
            logger.info(f"Discarded turn for {session_id}; nothing saved")
            return
        self.repository.save(session_id, result.session)

    def cancel(self, session_id: str) -> bool:
        """Cancel the in-flight turn, if any. Returns True if one was cancelled."""
        with self._registry_lock:
            token = self._tokens.get(session_id)
        if token is None:
            return False
        token.cancel()
        return True
