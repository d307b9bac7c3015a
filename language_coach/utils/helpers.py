"""
Utility helpers for the language coach

Model-output cleanup for the local LLM client.
"""

import logging

logger = logging.getLogger(__name__)


def repair_json_text(text):
    """
    Strip markdown fences and surrounding chatter from a JSON object reply.

    Only handles object output (not arrays). Brace balancing is naive and
    does not look inside strings.

    Args:
        text (str): Raw model output

    Returns:
        str: Cleaned JSON string (may still fail to parse)

    Examples:
        >>> repair_json_text('```json\\n{"response": "hola"}\\n```')
        '{"response": "hola"}'
    """
    text = (text or "").strip()
    if text.startswith("```json"):
        text = text[7:]
    if text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]

    text = text.strip()

    first_brace = text.find('{')
    last_brace = text.rfind('}')

    if first_brace == -1:
        logger.warning("No braces found in JSON repair")
        return text

    if last_brace < first_brace:
        text = text[first_brace:]
    else:
        text = text[first_brace:last_brace + 1]

    open_count = text.count('{')
    close_count = text.count('}')

    if open_count > close_count:
        missing = open_count - close_count
        text += '}' * missing
        logger.debug(f"Added {missing} closing braces")

    elif close_count > open_count:
        diff = close_count - open_count
        for _ in range(diff):
            last_close = text.rfind('}')
            if last_close != -1:
                text = text[:last_close] + text[last_close + 1:]
        logger.debug(f"Removed {diff} extra closing braces")

    return text
