"""
Server-side bus protocol handling for the agent.

Reads requests from and writes replies to one client connection over the
Unix domain socket using length-prefixed JSON frames.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

from miniui.ipc.protocol import (
    BusProtocolError,
    BusRequest,
    BusResponse,
    encode_frame,
    read_frame,
)
from miniui.logging import get_logger

logger = get_logger(__name__)


class BusServerProtocol:
    """Server-side protocol handler for one client connection."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """
        Initialize the protocol handler.

        Args:
            reader: Stream reader for incoming data.
            writer: Stream writer for outgoing data.
        """
        self.reader = reader
        self.writer = writer
        self._closed = False

    @property
    def closed(self) -> bool:
        """Whether the connection has been closed."""
        return self._closed

    async def read_request(self) -> BusRequest | None:
        """
        Read a request from the client.

        Returns:
            The parsed request, or None if the connection closed.

        Raises:
            BusProtocolError: If the frame or the request is invalid.
        """
        try:
            message = await read_frame(self.reader)
        except ConnectionResetError:
            return None

        if message is None:
            return None

        try:
            request = BusRequest.from_json(message)
        except json.JSONDecodeError as e:
            raise BusProtocolError(
                f"Invalid JSON request: {e}",
                details={"raw": message[:100]},
            ) from e

        logger.debug(
            "Bus request received",
            extra={
                "request_id": request.id,
                "object": request.object,
                "method": request.method,
            },
        )

        return request

    async def write_response(self, response: BusResponse) -> None:
        """
        Write a response to the client.

        Raises:
            BusProtocolError: If the response is too large.
        """
        if self._closed:
            return

        frame = encode_frame(response.to_json())

        try:
            self.writer.write(frame)
            await self.writer.drain()

            logger.debug(
                "Bus response sent",
                extra={
                    "request_id": response.id,
                    "status": response.status,
                    "size": len(frame),
                },
            )
        except (ConnectionResetError, BrokenPipeError):
            self._closed = True

    async def write_error_response(
        self,
        request_id: str,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Write an error response."""
        await self.write_response(
            BusResponse.create_error(
                request_id=request_id,
                code=code,
                message=message,
                details=details,
            )
        )

    async def write_success_response(
        self,
        request_id: str,
        data: dict[str, Any] | None = None,
    ) -> None:
        """Write a success response."""
        await self.write_response(BusResponse.success(request_id=request_id, data=data))

    async def close(self) -> None:
        """Close the connection."""
        if self._closed:
            return

        self._closed = True
        try:
            self.writer.close()
            await self.writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.debug("Error closing connection", extra={"error": str(e)})
