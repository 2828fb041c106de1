"""
Error types for the miniui agent.

Handlers express failures by raising an AgentError (or a subclass). The
dispatcher turns these into error replies carrying ``code``, ``message`` and
``details``; nothing else about a failure crosses the bus.

Codes:
- invalid_argument: malformed or disallowed request field (nothing spawned)
- execution_failed: external program could not be spawned or failed
- method_not_found: the object has no such method
- object_not_found: the request addressed an unknown object
- internal: unexpected handler failure
"""

from __future__ import annotations

from typing import Any


class AgentError(Exception):
    """
    Base exception for errors reported back to a bus caller.

    Attributes:
        code: Error code string (e.g. "invalid_argument").
        message: Human-readable error message.
        details: Structured error details.

    Example:
        >>> raise AgentError(
        ...     code="invalid_argument",
        ...     message="ipaddr is required",
        ...     details={"field": "ipaddr"},
        ... )
    """

    code = "internal"

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        *,
        code: str | None = None,
    ) -> None:
        """Initialize an agent error."""
        super().__init__(message)
        if code is not None:
            self.code = code
        self.message = message
        self.details = details or {}

    def __repr__(self) -> str:
        """Return a detailed string representation."""
        return (
            f"{self.__class__.__name__}("
            f"code={self.code!r}, "
            f"message={self.message!r}, "
            f"details={self.details!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert the error to a dictionary for serialization."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class InvalidArgumentError(AgentError):
    """A request field is missing, mistyped or not allowed."""

    code = "invalid_argument"


class ExecutionFailedError(AgentError):
    """
    An external program could not be spawned or did not succeed.

    Raised after the program has run (or failed to start); the agent never
    retries.
    """

    code = "execution_failed"


class MethodNotFoundError(AgentError):
    """The addressed object does not expose the requested method."""

    code = "method_not_found"


class ObjectNotFoundError(AgentError):
    """The request addressed an object this agent does not publish."""

    code = "object_not_found"


class InternalError(AgentError):
    """Unexpected failure inside a handler."""

    code = "internal"
