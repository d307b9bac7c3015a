"""
Error taxonomy for the language coach.

- ConfigError: prompt bundle or schema is missing something a turn needs
- ModelError: LLM collaborator failed (transport, incomplete, unparsable)
- InvalidRequest: turn rejected before any collaborator call

All three are recovered at the turn boundary by the Conversation Controller.
"""


class LanguageCoachError(Exception):
    """Base class for errors surfaced to the user as an error message"""
    pass


class ConfigError(LanguageCoachError):
    """Raised when a required prompt template or config file is missing"""
    pass


class ModelError(LanguageCoachError):
    """Raised when the LLM collaborator fails to return a usable response"""
    pass


class InvalidRequest(LanguageCoachError):
    """Raised when a request cannot be built (no active exercise, no text)"""
    pass
