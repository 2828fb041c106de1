"""
Tests for the bus agent.

Tests BusServerProtocol framing against mocked streams and BusAgent against
a real Unix socket.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import stat
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest

from miniui.config import BusConfig
from miniui.errors import InvalidArgumentError
from miniui.ipc.protocol import (
    LIST_METHODS,
    BusProtocolError,
    BusRequest,
    BusResponse,
    encode_frame,
)
from miniui_ops.agent import (
    EXIT_STARTUP_FAILED,
    AgentStartupError,
    BusAgent,
    main,
)
from miniui_ops.handlers_core import HandlerRegistry
from miniui_ops.ipc_protocol import BusServerProtocol

# =============================================================================
# Helpers
# =============================================================================


def _echo_registry() -> HandlerRegistry:
    registry = HandlerRegistry()

    async def handle_echo(request: BusRequest) -> dict[str, Any]:
        return {"echo": request.params.get("message", "")}

    async def handle_reject(_request: BusRequest) -> dict[str, Any]:
        raise InvalidArgumentError("rejected", details={"field": "x"})

    registry.register("echo", handle_echo, {"message": "string"})
    registry.register("reject", handle_reject)
    return registry


async def _send_raw(writer: asyncio.StreamWriter, payload: bytes) -> None:
    writer.write(len(payload).to_bytes(4, byteorder="big") + payload)
    await writer.drain()


async def _read_response(reader: asyncio.StreamReader) -> BusResponse:
    length = int.from_bytes(await reader.readexactly(4), byteorder="big")
    return BusResponse.from_json((await reader.readexactly(length)).decode("utf-8"))


@pytest.fixture
async def running_agent(socket_path: str) -> AsyncIterator[BusAgent]:
    """Agent serving the echo registry on a temporary socket."""
    agent = BusAgent(socket_path=socket_path, registry=_echo_registry())
    start_task = asyncio.create_task(agent.start())

    for _ in range(100):
        if agent.running:
            break
        await asyncio.sleep(0.01)

    yield agent

    await agent.stop()
    with contextlib.suppress(asyncio.CancelledError):
        await asyncio.wait_for(start_task, timeout=1.0)


# =============================================================================
# BusServerProtocol Tests
# =============================================================================


class TestBusServerProtocol:
    """Tests for BusServerProtocol."""

    async def test_read_request_success(self) -> None:
        """Test successful request reading."""
        mock_reader = AsyncMock()
        mock_writer = AsyncMock()

        request = BusRequest.create("apply_lan", params={"ipaddr": "10.0.0.1"})
        request_bytes = request.to_json().encode("utf-8")
        length_prefix = len(request_bytes).to_bytes(4, byteorder="big")

        mock_reader.readexactly = AsyncMock(side_effect=[length_prefix, request_bytes])

        protocol = BusServerProtocol(mock_reader, mock_writer)
        result = await protocol.read_request()

        assert result is not None
        assert result.id == request.id
        assert result.method == "apply_lan"
        assert result.params == {"ipaddr": "10.0.0.1"}

    async def test_read_request_connection_closed(self) -> None:
        """Test read when connection is closed."""
        mock_reader = AsyncMock()
        mock_writer = AsyncMock()

        mock_reader.readexactly = AsyncMock(
            side_effect=asyncio.IncompleteReadError(b"", 4)
        )

        protocol = BusServerProtocol(mock_reader, mock_writer)
        assert await protocol.read_request() is None

    async def test_read_request_invalid_json(self) -> None:
        """Test garbage is a protocol error."""
        mock_reader = AsyncMock()
        payload = b"{not json"
        mock_reader.readexactly = AsyncMock(
            side_effect=[len(payload).to_bytes(4, byteorder="big"), payload]
        )

        protocol = BusServerProtocol(mock_reader, AsyncMock())
        with pytest.raises(BusProtocolError):
            await protocol.read_request()

    async def test_write_error_response(self) -> None:
        """Test writing an error response."""
        mock_writer = AsyncMock()

        protocol = BusServerProtocol(AsyncMock(), mock_writer)
        await protocol.write_error_response(
            request_id="req-456",
            code="invalid_argument",
            message="Bad field",
            details={"field": "ipaddr"},
        )

        written_data = mock_writer.write.call_args[0][0]
        response = BusResponse.from_json(written_data[4:].decode("utf-8"))

        assert response.id == "req-456"
        assert response.status == "error"
        assert response.error is not None
        assert response.error.code == "invalid_argument"
        assert response.error.details == {"field": "ipaddr"}

    async def test_write_after_close_is_dropped(self) -> None:
        """Test nothing is written once the connection is closed."""
        mock_writer = AsyncMock()

        protocol = BusServerProtocol(AsyncMock(), mock_writer)
        await protocol.close()
        await protocol.write_success_response("req-1", {"status": "ok"})

        assert protocol.closed is True
        mock_writer.write.assert_not_called()
        mock_writer.close.assert_called_once()


# =============================================================================
# BusAgent Tests
# =============================================================================


class TestBusAgent:
    """Tests for BusAgent construction."""

    def test_from_config(self, socket_path: str) -> None:
        """Test agent settings come from the bus configuration."""
        config = BusConfig(socket_path=socket_path, socket_mode=0o600)
        agent = BusAgent.from_config(config, registry=_echo_registry())

        assert agent.socket_path == socket_path
        assert agent.socket_mode == 0o600

    def test_get_stats(self, socket_path: str) -> None:
        """Test stats before start."""
        agent = BusAgent(socket_path=socket_path, registry=_echo_registry())

        stats = agent.get_stats()

        assert stats["running"] is False
        assert stats["object"] == "miniui"
        assert stats["active_connections"] == 0
        assert sorted(stats["methods"]) == ["echo", "reject"]

    def test_default_registry(self, socket_path: str) -> None:
        """Test the default object publishes the four miniui methods."""
        agent = BusAgent(socket_path=socket_path)

        assert sorted(agent.registry.get_methods()) == [
            "apply_lan",
            "reload_network",
            "status",
            "sysupgrade",
        ]

    async def test_empty_registry_fails(self, socket_path: str) -> None:
        """Test an object without methods is not published."""
        agent = BusAgent(socket_path=socket_path, registry=HandlerRegistry())

        with pytest.raises(AgentStartupError):
            await agent.open()

        assert not Path(socket_path).exists()

    async def test_unbindable_path_fails(self, tmp_path: Path) -> None:
        """Test a socket path that cannot be created fails startup."""
        blocker = tmp_path / "file"
        blocker.write_text("")
        agent = BusAgent(
            socket_path=str(blocker / "bus.sock"), registry=_echo_registry()
        )

        with pytest.raises(AgentStartupError):
            await agent.open()

        assert agent.running is False


@pytest.mark.integration
class TestBusAgentSocket:
    """Tests for BusAgent on a real socket."""

    async def test_start_and_stop(self, running_agent: BusAgent) -> None:
        """Test the socket exists while running and is removed on stop."""
        socket_file = Path(running_agent.socket_path)

        assert running_agent.running is True
        assert socket_file.exists()
        assert stat.S_IMODE(os.stat(socket_file).st_mode) == 0o660

        await running_agent.stop()

        assert running_agent.running is False
        assert not socket_file.exists()

    async def test_call_and_reply(self, running_agent: BusAgent) -> None:
        """Test a request is answered on the same connection."""
        reader, writer = await asyncio.open_unix_connection(running_agent.socket_path)
        try:
            request = BusRequest.create("echo", params={"message": "hi"})
            writer.write(encode_frame(request.to_json()))
            await writer.drain()

            response = await _read_response(reader)

            assert response.id == request.id
            assert response.is_success
            assert response.data == {"echo": "hi"}
        finally:
            writer.close()
            await writer.wait_closed()

    async def test_replies_in_request_order(self, running_agent: BusAgent) -> None:
        """Test pipelined requests are answered in order."""
        reader, writer = await asyncio.open_unix_connection(running_agent.socket_path)
        try:
            requests = [
                BusRequest.create("echo", params={"message": str(i)}) for i in range(5)
            ]
            for request in requests:
                writer.write(encode_frame(request.to_json()))
            await writer.drain()

            ids = [(await _read_response(reader)).id for _ in requests]

            assert ids == [request.id for request in requests]
        finally:
            writer.close()
            await writer.wait_closed()

    async def test_error_reply(self, running_agent: BusAgent) -> None:
        """Test handler errors come back as error replies."""
        reader, writer = await asyncio.open_unix_connection(running_agent.socket_path)
        try:
            request = BusRequest.create("reject")
            writer.write(encode_frame(request.to_json()))
            await writer.drain()

            response = await _read_response(reader)

            assert response.is_error
            assert response.error is not None
            assert response.error.code == "invalid_argument"
            assert response.error.details == {"field": "x"}
        finally:
            writer.close()
            await writer.wait_closed()

    @pytest.mark.parametrize(
        ("method", "object_name", "code"),
        [
            ("nope", "miniui", "method_not_found"),
            ("echo", "other", "object_not_found"),
        ],
    )
    async def test_unknown_target(
        self,
        running_agent: BusAgent,
        method: str,
        object_name: str,
        code: str,
    ) -> None:
        """Test unknown methods and objects are reported."""
        reader, writer = await asyncio.open_unix_connection(running_agent.socket_path)
        try:
            request = BusRequest.create(method, object_name=object_name)
            writer.write(encode_frame(request.to_json()))
            await writer.drain()

            response = await _read_response(reader)

            assert response.error is not None
            assert response.error.code == code
        finally:
            writer.close()
            await writer.wait_closed()

    async def test_list_methods(self, running_agent: BusAgent) -> None:
        """Test the object answers method listing."""
        reader, writer = await asyncio.open_unix_connection(running_agent.socket_path)
        try:
            request = BusRequest.create(LIST_METHODS)
            writer.write(encode_frame(request.to_json()))
            await writer.drain()

            response = await _read_response(reader)

            assert response.data == {"echo": {"message": "string"}, "reject": {}}
        finally:
            writer.close()
            await writer.wait_closed()

    async def test_oversized_reply_replaced(self, running_agent: BusAgent) -> None:
        """Test a reply too large for a frame becomes a short internal error."""
        reader, writer = await asyncio.open_unix_connection(running_agent.socket_path)
        try:
            request = BusRequest.create("echo", object_name="x" * 600_000)
            writer.write(encode_frame(request.to_json()))
            await writer.drain()

            response = await _read_response(reader)

            assert response.id == request.id
            assert response.error is not None
            assert response.error.code == "internal"

            followup = BusRequest.create("echo", params={"message": "next"})
            writer.write(encode_frame(followup.to_json()))
            await writer.drain()

            assert (await _read_response(reader)).data == {"echo": "next"}
        finally:
            writer.close()
            await writer.wait_closed()

    async def test_protocol_error_closes_connection(
        self, running_agent: BusAgent
    ) -> None:
        """Test a malformed frame gets a protocol_error reply and a hang-up."""
        reader, writer = await asyncio.open_unix_connection(running_agent.socket_path)
        try:
            await _send_raw(writer, b"[1, 2, 3]")

            response = await _read_response(reader)

            assert response.id == ""
            assert response.error is not None
            assert response.error.code == "protocol_error"
            assert await reader.read() == b""
        finally:
            writer.close()
            await writer.wait_closed()

    async def test_agent_survives_bad_client(self, running_agent: BusAgent) -> None:
        """Test other clients are served after a protocol error."""
        _, bad_writer = await asyncio.open_unix_connection(running_agent.socket_path)
        await _send_raw(bad_writer, b"garbage")
        bad_writer.close()
        await bad_writer.wait_closed()

        reader, writer = await asyncio.open_unix_connection(running_agent.socket_path)
        try:
            request = BusRequest.create("echo", params={"message": "still here"})
            writer.write(encode_frame(request.to_json()))
            await writer.drain()

            response = await _read_response(reader)

            assert response.data == {"echo": "still here"}
        finally:
            writer.close()
            await writer.wait_closed()


# =============================================================================
# Entry Point Tests
# =============================================================================


class TestMain:
    """Tests for the miniui-agent entry point."""

    def test_missing_config_file(self, tmp_path: Path) -> None:
        """Test a missing configuration file is a startup failure."""
        assert main(["--config", str(tmp_path / "missing.yml")]) == EXIT_STARTUP_FAILED

    def test_invalid_config(self, tmp_path: Path) -> None:
        """Test an invalid configuration is a startup failure."""
        config_file = tmp_path / "config.yml"
        config_file.write_text("programs:\n  network: relative/path\n")

        assert main(["--config", str(config_file)]) == EXIT_STARTUP_FAILED

    def test_bind_failure(self, tmp_path: Path) -> None:
        """Test an unusable socket path is a startup failure."""
        blocker = tmp_path / "file"
        blocker.write_text("")
        config_file = tmp_path / "config.yml"
        config_file.write_text("logging:\n  level: error\n")

        result = main(
            ["--config", str(config_file), "--socket", str(blocker / "bus.sock")]
        )

        assert result == EXIT_STARTUP_FAILED
