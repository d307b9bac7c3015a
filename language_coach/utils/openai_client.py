"""
OpenAI Client - Responses API wrapper with schema-constrained output

Responsibilities:
- Send system prompt + history + user content in one request
- Request strict JSON-schema output
- Extract output text and parse it

Design principles:
- Dependency injection (an OpenAI client can be passed in for tests)
- Every failure surfaces as ModelError with a readable reason
- No retries (the user retries the action)
"""

import json
import logging
import time
from typing import Any, Dict, List, Optional

from openai import OpenAI, OpenAIError

from language_coach.errors import ConfigError, ModelError

logger = logging.getLogger(__name__)

SCHEMA_NAME = "language_response"


class OpenAIResponsesClient:
    """LLM collaborator backed by the OpenAI Responses API"""

    def __init__(self, model: str, api_key: Optional[str] = None, client: Optional[OpenAI] = None):
        """
        Args:
            model: Model name (e.g. "gpt-5.2")
            api_key: Secret key; required unless client is given
            client: Pre-built OpenAI client (tests inject a fake here)
        """
        self.model = model
        self._client = client

        if self._client is None and api_key:
            self._client = OpenAI(api_key=api_key)

        logger.info(f"OpenAI Responses client ready (model={model}, configured={self._client is not None})")

    def is_configured(self) -> bool:
        return self._client is not None

    def generate(
        self,
        system_prompt: str,
        history: List[Dict[str, str]],
        user_content: str,
        schema: Dict[str, Any]
    ) -> Dict[str, Any]:
        """
        One schema-constrained completion.

        Returns:
            dict: Parsed JSON object (not yet normalized)

        Raises:
            ConfigError: No API key configured
            ModelError: Transport failure, incomplete status, no output text,
                or output that is not a JSON object
        """
        if self._client is None:
            raise ConfigError("Missing OPENAI_API_KEY")

        request_input = (
            [{"role": "system", "content": system_prompt}]
            + [{"role": m["role"], "content": m["content"]} for m in history]
            + [{"role": "user", "content": user_content}]
        )

        start_time = time.time()

        try:
            response = self._client.responses.create(
                model=self.model,
                input=request_input,
                text={
                    "format": {
                        "type": "json_schema",
                        "name": SCHEMA_NAME,
                        "strict": True,
                        "schema": schema
                    }
                }
            )
        except OpenAIError as e:
            logger.error(f"OpenAI request failed: {type(e).__name__} - {e}")
            raise ModelError(f"Model request failed: {e}") from e

        elapsed_ms = (time.time() - start_time) * 1000
        logger.info(f"OpenAI response in {elapsed_ms:.0f}ms (status={getattr(response, 'status', None)})")

        if getattr(response, "status", None) == "incomplete":
            details = getattr(response, "incomplete_details", None)
            reason = getattr(details, "reason", None) or "unknown"
            raise ModelError(f"Incomplete model response: {reason}")

        raw = self._output_text(response)
        if not raw:
            raise ModelError("No output_text returned by model")

        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error(f"Model output is not JSON: {raw[:200]}")
            raise ModelError(f"Model returned invalid JSON: {e}") from e

        if not isinstance(parsed, dict):
            raise ModelError(f"Model returned {type(parsed).__name__}, expected JSON object")

        return parsed

    def _output_text(self, response) -> str:
        """Aggregate output_text, else the first output_text part of a message item"""
        text = getattr(response, "output_text", None)
        if isinstance(text, str) and text.strip():
            return text

        for item in getattr(response, "output", None) or []:
            if getattr(item, "type", None) != "message":
                continue
            for part in getattr(item, "content", None) or []:
                part_text = getattr(part, "text", None)
                if getattr(part, "type", None) == "output_text" and isinstance(part_text, str):
                    return part_text

        return ""
