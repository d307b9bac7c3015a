"""
Response Normalizer - Coerce model output into a consistent StructuredResponse

Responsibilities:
- Replace missing or malformed proposal / poll with the disabled shape
- Coerce clear_active to exactly 0 or 1
- Suppress polls during help turns
- Resolve simultaneous poll / proposal / clear signals

Design principles:
- Never raises: malformed output degrades to the safest disabled state
- Deterministic and total: every combination of signals maps to one output
- Every coercion recorded in normalization_applied (auditability)
"""

import dataclasses
import logging
import uuid
from typing import Any, List, Tuple

from language_coach.contracts import (
    ExerciseShapeError,
    Poll,
    Proposal,
    ResponseFlags,
    StructuredResponse,
)
from language_coach.core.prompt_context_builder import RequestMode

logger = logging.getLogger(__name__)

# normalization_applied entries
NORM_RAW_NOT_OBJECT = "raw_not_object"
NORM_RESPONSE_NOT_STRING = "response_not_string"
NORM_PROPOSAL_MALFORMED = "proposal_malformed"
NORM_PROPOSAL_DISABLED = "proposal_disabled"
NORM_POLL_MALFORMED = "poll_malformed"
NORM_POLL_DISABLED = "poll_disabled"
NORM_CLEAR_ACTIVE_COERCED = "clear_active_coerced"
NORM_HELP_POLL_SUPPRESSED = "help_poll_suppressed"
NORM_POLL_DROPPED_FOR_CLEAR = "poll_dropped_for_clear"
NORM_PROPOSAL_DROPPED_FOR_POLL = "proposal_dropped_for_poll"
NORM_CLEAR_DROPPED_FOR_POLL = "clear_dropped_for_poll"
NORM_PROPOSAL_ID_ASSIGNED = "proposal_id_assigned"


class ResponseNormalizer:
    """Validate and coerce raw model output"""

    def normalize(self, raw: Any, effective_mode: Any) -> StructuredResponse:
        """
        Normalize one model response.

        Args:
            raw: Parsed JSON from the model (any type)
            effective_mode: Mode the request ran in (RequestMode or string)

        Returns:
            StructuredResponse (always valid, never raises)

        Examples:
            >>> r = ResponseNormalizer().normalize({}, 'chat')
            >>> (r.proposal.enabled, r.poll.enabled, r.clear_active)
            (0, 0, 0)
        """
        applied: List[str] = []

        if not isinstance(raw, dict):
            applied.append(NORM_RAW_NOT_OBJECT)
            raw = {}

        response = raw.get("response")
        if response is not None and not isinstance(response, str):
            applied.append(NORM_RESPONSE_NOT_STRING)
            response = None

        flags = self._normalize_flags(raw.get("flags"))
        proposal = self._normalize_proposal(raw.get("proposal"), applied)
        poll = self._normalize_poll(raw.get("poll"), applied)

        clear_active = raw.get("clear_active")
        if isinstance(clear_active, bool) or clear_active != 1:
            if isinstance(clear_active, bool) or clear_active not in (0, None):
                applied.append(NORM_CLEAR_ACTIVE_COERCED)
            clear_active = 0
        else:
            clear_active = 1

        mode = effective_mode.value if isinstance(effective_mode, RequestMode) else effective_mode

        if mode == RequestMode.HELP.value:
            if poll.is_enabled:
                applied.append(NORM_HELP_POLL_SUPPRESSED)
            poll = Poll.disabled()
        else:
            poll, proposal, clear_active = self._resolve_conflicts(
                poll, proposal, clear_active, applied
            )

        if applied:
            logger.warning(f"Model output normalized ({mode}): {applied}")

        return StructuredResponse(
            response=response,
            flags=flags,
            clear_active=clear_active,
            proposal=proposal,
            poll=poll,
            normalization_applied=tuple(applied)
        )

    def _resolve_conflicts(
        self,
        poll: Poll,
        proposal: Proposal,
        clear_active: int,
        applied: List[str]
    ) -> Tuple[Poll, Proposal, int]:
        """
        Priority order (chat / post_clear):
        1. poll + clear_active -> poll dropped (nothing else changes)
        2. poll + proposal -> proposal dropped
        3. poll -> clear_active forced to 0
        """
        if poll.is_enabled and clear_active == 1:
            applied.append(NORM_POLL_DROPPED_FOR_CLEAR)
            return Poll.disabled(), proposal, clear_active

        if poll.is_enabled and proposal.is_enabled:
            applied.append(NORM_PROPOSAL_DROPPED_FOR_POLL)
            proposal = Proposal.disabled()

        if poll.is_enabled and clear_active != 0:
            applied.append(NORM_CLEAR_DROPPED_FOR_POLL)
            clear_active = 0

        return poll, proposal, clear_active

    def _normalize_flags(self, raw: Any) -> ResponseFlags:
        if not isinstance(raw, dict):
            return ResponseFlags()
        return ResponseFlags(
            is_help=bool(raw.get("is_help", False)),
            is_post_clear=bool(raw.get("is_post_clear", False))
        )

    def _normalize_proposal(self, raw: Any, applied: List[str]) -> Proposal:
        if not isinstance(raw, dict):
            if raw is not None:
                applied.append(NORM_PROPOSAL_MALFORMED)
            return Proposal.disabled()

        try:
            proposal = Proposal.from_dict(raw)
        except ExerciseShapeError as e:
            logger.warning(f"Malformed proposal replaced with disabled shape: {e}")
            applied.append(NORM_PROPOSAL_MALFORMED)
            return Proposal.disabled()

        if not proposal.is_enabled and raw.get("enabled") not in (0, None):
            applied.append(NORM_PROPOSAL_DISABLED)

        # Proposals are started by id
        if proposal.is_enabled and not (proposal.proposal_id or "").strip():
            proposal = dataclasses.replace(proposal, proposal_id=f"proposal_{uuid.uuid4().hex[:8]}")
            applied.append(NORM_PROPOSAL_ID_ASSIGNED)

        return proposal

    def _normalize_poll(self, raw: Any, applied: List[str]) -> Poll:
        if not isinstance(raw, dict):
            if raw is not None:
                applied.append(NORM_POLL_MALFORMED)
            return Poll.disabled()

        try:
            poll = Poll.from_dict(raw)
        except ExerciseShapeError as e:
            logger.warning(f"Malformed poll replaced with disabled shape: {e}")
            applied.append(NORM_POLL_MALFORMED)
            return Poll.disabled()

        if not poll.is_enabled and raw.get("enabled") not in (0, None):
            applied.append(NORM_POLL_DISABLED)

        return poll
