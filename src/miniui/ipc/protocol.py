"""
Bus protocol definitions for talking to the miniui agent.

This module defines the message formats, framing and error classes used on
the local bus socket between clients (the web UI bridge, ``miniui-call``)
and the agent publishing the ``miniui`` object.

Protocol Format:
- Transport: Unix domain socket
- Message format: Length-prefixed JSON (4-byte big-endian length + JSON payload)
- Request: {"id": "...", "object": "miniui", "method": "status", "params": {...}}
- Response: {"id": "...", "status": "ok"|"error", "data": {...}, "error": {...}}
"""

from __future__ import annotations

import asyncio
import json
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from miniui import OBJECT_NAME

# =============================================================================
# Bus Exceptions
# =============================================================================


class BusError(Exception):
    """Base exception for bus errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a bus error."""
        super().__init__(message)
        self.message = message
        self.details = details or {}


class BusTimeoutError(BusError):
    """Raised when a call does not get a reply in time."""

    pass


class BusUnavailableError(BusError):
    """Raised when the agent socket cannot be reached."""

    pass


class BusProtocolError(BusError):
    """Raised when there's a framing or message format violation."""

    pass


class BusConnectionError(BusError):
    """Raised when the connection is not usable."""

    pass


class BusCallError(BusError):
    """
    Raised on the client side when the agent answered with an error reply.

    Attributes:
        code: Error code from the reply (e.g. "invalid_argument").
    """

    def __init__(
        self,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize a call error."""
        super().__init__(message, details)
        self.code = code


# =============================================================================
# Protocol Constants
# =============================================================================

# Maximum message size: 1 MB
MAX_MESSAGE_SIZE = 1024 * 1024

# Default client-side timeout for a call; sync programs may run for a while
DEFAULT_TIMEOUT = 120.0

# Default socket path
DEFAULT_SOCKET_PATH = "/var/run/miniui/bus.sock"

LENGTH_PREFIX_SIZE = 4

# Reserved method name answered by the bus endpoint itself with the object's
# method signatures; "$" never appears in a real method name
LIST_METHODS = "$list"


# =============================================================================
# Bus Message Models
# =============================================================================


@dataclass
class BusRequest:
    """
    A call of one method on one bus object.

    Attributes:
        id: Unique request identifier.
        object: Name of the addressed object.
        method: Method to invoke on the object.
        params: Method-specific named fields.
        timestamp: ISO 8601 timestamp when the request was created.
    """

    id: str
    method: str
    object: str = OBJECT_NAME
    params: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    @classmethod
    def create(
        cls,
        method: str,
        params: dict[str, Any] | None = None,
        request_id: str | None = None,
        object_name: str = OBJECT_NAME,
    ) -> BusRequest:
        """
        Create a new request.

        Args:
            method: Method to invoke.
            params: Method parameters.
            request_id: Optional request ID (generated if not provided).
            object_name: Addressed object.

        Returns:
            A new BusRequest instance.
        """
        if request_id is None:
            request_id = uuid.uuid4().hex

        return cls(
            id=request_id,
            method=method,
            object=object_name,
            params=params or {},
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "object": self.object,
            "method": self.method,
            "params": self.params,
            "timestamp": self.timestamp,
        }

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BusRequest:
        """
        Create from dictionary.

        Raises:
            BusProtocolError: If required fields are missing or mistyped.
        """
        if not isinstance(data, dict):
            raise BusProtocolError("Request must be a JSON object")

        request_id = data.get("id")
        method = data.get("method")
        if not isinstance(request_id, str) or not isinstance(method, str):
            raise BusProtocolError(
                "Request requires string 'id' and 'method' fields",
                details={"fields": sorted(data)},
            )

        params = data.get("params")
        if params is None:
            params = {}
        if not isinstance(params, dict):
            raise BusProtocolError(
                "Request 'params' must be a JSON object",
                details={"request_id": request_id},
            )

        return cls(
            id=request_id,
            method=method,
            object=data.get("object", OBJECT_NAME),
            params=params,
            timestamp=data.get("timestamp", datetime.now(UTC).isoformat()),
        )

    @classmethod
    def from_json(cls, json_str: str) -> BusRequest:
        """Deserialize from JSON string."""
        return cls.from_dict(json.loads(json_str))


@dataclass
class BusErrorDetail:
    """
    Error details in a response.

    Attributes:
        code: Error code string (e.g., "invalid_argument").
        message: Human-readable error message.
        details: Optional structured error details.
    """

    code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BusErrorDetail:
        """Create from dictionary."""
        return cls(
            code=data.get("code", "internal"),
            message=data.get("message", "Unknown error"),
            details=data.get("details", {}),
        )


@dataclass
class BusResponse:
    """
    Reply to a BusRequest.

    Attributes:
        id: Request ID (must match the request).
        status: Status ("ok" or "error").
        data: Method reply on success.
        error: Error details on failure.
    """

    id: str
    status: str
    data: dict[str, Any] | None = None
    error: BusErrorDetail | None = None

    @classmethod
    def success(
        cls, request_id: str, data: dict[str, Any] | None = None
    ) -> BusResponse:
        """Create a success response."""
        return cls(id=request_id, status="ok", data=data or {}, error=None)

    @classmethod
    def create_error(
        cls,
        request_id: str,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> BusResponse:
        """Create an error response."""
        return cls(
            id=request_id,
            status="error",
            data=None,
            error=BusErrorDetail(code=code, message=message, details=details or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "status": self.status,
            "data": self.data,
            "error": self.error.to_dict() if self.error else None,
        }

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BusResponse:
        """Create from dictionary."""
        error = None
        if data.get("error"):
            error = BusErrorDetail.from_dict(data["error"])

        return cls(
            id=data["id"],
            status=data["status"],
            data=data.get("data"),
            error=error,
        )

    @classmethod
    def from_json(cls, json_str: str) -> BusResponse:
        """Deserialize from JSON string."""
        return cls.from_dict(json.loads(json_str))

    @property
    def is_success(self) -> bool:
        """Check if response indicates success."""
        return self.status == "ok"

    @property
    def is_error(self) -> bool:
        """Check if response indicates an error."""
        return self.status == "error"


# =============================================================================
# Framing
# =============================================================================


def encode_frame(message: str) -> bytes:
    """
    Encode a JSON message as a length-prefixed frame.

    Raises:
        BusProtocolError: If the message exceeds MAX_MESSAGE_SIZE.
    """
    message_bytes = message.encode("utf-8")
    if len(message_bytes) > MAX_MESSAGE_SIZE:
        raise BusProtocolError(
            f"Message too large: {len(message_bytes)} bytes",
            details={"max_size": MAX_MESSAGE_SIZE},
        )
    return len(message_bytes).to_bytes(LENGTH_PREFIX_SIZE, byteorder="big") + message_bytes


async def read_frame(reader: asyncio.StreamReader) -> str | None:
    """
    Read one length-prefixed frame.

    Returns:
        The decoded message, or None when the peer closed the connection.

    Raises:
        BusProtocolError: If the frame is empty or too large.
    """
    try:
        length_bytes = await reader.readexactly(LENGTH_PREFIX_SIZE)
    except asyncio.IncompleteReadError:
        return None

    length = int.from_bytes(length_bytes, byteorder="big")
    if length > MAX_MESSAGE_SIZE:
        raise BusProtocolError(
            f"Message too large: {length} bytes",
            details={"max_size": MAX_MESSAGE_SIZE},
        )
    if length == 0:
        raise BusProtocolError("Empty message")

    try:
        message_bytes = await reader.readexactly(length)
    except asyncio.IncompleteReadError:
        return None

    try:
        return message_bytes.decode("utf-8")
    except UnicodeDecodeError as e:
        raise BusProtocolError(f"Message is not valid UTF-8: {e}") from e
