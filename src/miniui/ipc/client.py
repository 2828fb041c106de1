"""
Bus client for calling the miniui agent.

This module implements BusClient, used by ``miniui-call`` and by local
automation to invoke methods on the ``miniui`` object over the agent's Unix
domain socket.

Calls on one client are sent one at a time; the agent answers them in order.
"""

from __future__ import annotations

import asyncio
import json
from enum import Enum
from typing import TYPE_CHECKING, Any

from miniui import OBJECT_NAME
from miniui.ipc.protocol import (
    DEFAULT_SOCKET_PATH,
    DEFAULT_TIMEOUT,
    LIST_METHODS,
    BusCallError,
    BusConnectionError,
    BusProtocolError,
    BusRequest,
    BusResponse,
    BusTimeoutError,
    BusUnavailableError,
    encode_frame,
    read_frame,
)
from miniui.logging import get_logger

if TYPE_CHECKING:
    from miniui.config import BusConfig

logger = get_logger(__name__)


class BusConnectionState(Enum):
    """Client connection states."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"


class BusClient:
    """
    Client for the agent's bus socket.

    Attributes:
        socket_path: Path to the Unix domain socket.
        object_name: Object the calls are addressed to.
        state: Current connection state.

    Example:
        >>> async with BusClient("/var/run/miniui/bus.sock") as client:
        ...     info = await client.call("status")
        >>> info["hostname"]
        'router'
    """

    def __init__(
        self,
        socket_path: str | None = None,
        timeout: float | None = None,
        object_name: str = OBJECT_NAME,
    ) -> None:
        """
        Initialize the client.

        Args:
            socket_path: Path to the Unix domain socket.
            timeout: Default call timeout in seconds.
            object_name: Object the calls are addressed to.
        """
        self.socket_path = socket_path or DEFAULT_SOCKET_PATH
        self.default_timeout = timeout or DEFAULT_TIMEOUT
        self.object_name = object_name
        self.state = BusConnectionState.DISCONNECTED

        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._call_lock = asyncio.Lock()
        self._counter = 0

    @classmethod
    def from_config(cls, config: BusConfig) -> BusClient:
        """Create a client from the bus configuration."""
        return cls(
            socket_path=config.socket_path,
            timeout=config.request_timeout_seconds,
        )

    async def connect(self) -> None:
        """
        Connect to the agent.

        Raises:
            BusUnavailableError: If the socket cannot be reached.
        """
        if self.state == BusConnectionState.CONNECTED:
            return

        try:
            self._reader, self._writer = await asyncio.open_unix_connection(
                self.socket_path
            )
        except (FileNotFoundError, ConnectionRefusedError, PermissionError) as e:
            logger.error(
                "Bus socket unreachable",
                extra={"socket_path": self.socket_path, "error": str(e)},
            )
            raise BusUnavailableError(
                f"Agent unavailable: {e}",
                details={"socket_path": self.socket_path},
            ) from e

        self.state = BusConnectionState.CONNECTED
        logger.debug("Connected to bus", extra={"socket_path": self.socket_path})

    def _next_request_id(self) -> str:
        self._counter += 1
        return f"{id(self):x}-{self._counter}"

    async def call(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """
        Invoke a method on the object.

        Args:
            method: Method name (e.g. "status", "apply_lan").
            params: Named fields of the call.
            timeout: Call timeout in seconds (uses default if not provided).

        Returns:
            The method's reply mapping.

        Raises:
            BusCallError: The agent replied with an error.
            BusTimeoutError: No reply in time.
            BusUnavailableError: The connection was lost.
            BusProtocolError: The reply could not be decoded.
        """
        request = BusRequest.create(
            method=method,
            params=params,
            request_id=self._next_request_id(),
            object_name=self.object_name,
        )
        response = await self._roundtrip(request, timeout or self.default_timeout)

        if response.is_success:
            return response.data or {}

        error = response.error
        if error is None:
            raise BusProtocolError("Error reply without error details")
        raise BusCallError(error.code, error.message, error.details)

    async def list_methods(self) -> dict[str, dict[str, str]]:
        """
        Return the methods published by the object.

        Returns:
            Mapping of method name to its field signature, e.g.
            ``{"apply_lan": {"ipaddr": "string", "netmask": "string"}}``.
        """
        return await self.call(LIST_METHODS)

    async def _roundtrip(self, request: BusRequest, timeout: float) -> BusResponse:
        async with self._call_lock:
            await self.connect()

            try:
                await self._send(request)
                return await asyncio.wait_for(
                    self._receive(request.id), timeout=timeout
                )
            except TimeoutError:
                logger.error(
                    "Bus call timeout",
                    extra={
                        "method": request.method,
                        "request_id": request.id,
                        "timeout": timeout,
                    },
                )
                await self._close()
                raise BusTimeoutError(
                    f"Call to {request.method} timed out after {timeout}s",
                    details={"method": request.method, "request_id": request.id},
                ) from None
            except BusProtocolError:
                # The stream position is unknown after a bad reply
                await self._close()
                raise
            except (ConnectionError, OSError) as e:
                logger.warning("Bus connection lost", extra={"error": str(e)})
                await self._close()
                raise BusUnavailableError(
                    "Agent connection lost",
                    details={"socket_path": self.socket_path},
                ) from e

    async def _send(self, request: BusRequest) -> None:
        if self._writer is None:
            raise BusConnectionError("Not connected to agent")

        self._writer.write(encode_frame(request.to_json()))
        await self._writer.drain()

        logger.debug(
            "Bus request sent",
            extra={"request_id": request.id, "method": request.method},
        )

    async def _receive(self, request_id: str) -> BusResponse:
        if self._reader is None:
            raise BusConnectionError("Not connected to agent")

        message = await read_frame(self._reader)
        if message is None:
            raise ConnectionResetError("Agent closed the connection")

        try:
            response = BusResponse.from_json(message)
        except (json.JSONDecodeError, KeyError) as e:
            raise BusProtocolError(
                f"Invalid reply: {e}",
                details={"raw": message[:100]},
            ) from e

        if response.id != request_id:
            raise BusProtocolError(
                f"Response ID mismatch: expected {request_id}, got {response.id}"
            )

        return response

    async def _close(self) -> None:
        self.state = BusConnectionState.DISCONNECTED
        writer, self._writer, self._reader = self._writer, None, None
        if writer is None:
            return
        try:
            writer.close()
            await writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.debug("Error closing bus connection", extra={"error": str(e)})

    async def disconnect(self) -> None:
        """Close the connection to the agent."""
        await self._close()

    async def __aenter__(self) -> BusClient:
        """Context manager entry."""
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: Exception | None,
        exc_tb: Any,
    ) -> None:
        """Context manager exit."""
        await self.disconnect()
