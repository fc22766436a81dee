"""
Error types for tapir-agent.

Every failure the agent can surface derives from TapirError so the turn loop
can report it and return to the prompt without crashing the process.
"""

RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 529})


class TapirError(Exception):
    """Base class for all agent errors."""


class MissingCredentialError(TapirError):
    """No API key was found in the environment or config file."""

    def __init__(self, message: str = "ANTHROPIC_API_KEY not set"):
        super().__init__(message)


class TransportError(TapirError):
    """The HTTP request failed before a response status was received."""


class APIError(TapirError):
    """The service answered with a non-200 status."""

    def __init__(self, status: int, message: str, retry_after: int | None = None):
        self.status = status
        self.message = message
        self.retry_after = retry_after
        super().__init__(f"API error ({status}): {message}")

    @property
    def retryable(self) -> bool:
        return self.status in RETRYABLE_STATUSES


class ProtocolError(TapirError):
    """A streamed payload could not be decoded."""


class ToolError(TapirError):
    """A named tool failed; local to one tool call."""

    def __init__(self, name: str, message: str):
        self.name = name
        self.message = message
        super().__init__(f"tool {name}: {message}")


class SecurityError(TapirError):
    """A tool tried to reach outside the working directory."""

    def __init__(self, message: str):
        super().__init__(f"security: {message}")


class CompactionError(TapirError):
    """Summarizing the conversation prefix failed."""
