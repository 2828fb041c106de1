"""
miniui management agent.

The agent owns the bus endpoint: it listens on a Unix domain socket,
publishes the ``miniui`` object and feeds incoming calls to its registry.
Replies go back on the same connection in request order.

Example:
    >>> agent = BusAgent("/var/run/miniui/bus.sock")
    >>> await agent.start()
"""

from __future__ import annotations

import asyncio
import contextlib
import grp
import os
import pwd
import signal
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml
from pydantic import ValidationError

from miniui.config import AppConfig, load_config
from miniui.errors import AgentError, InternalError
from miniui.ipc.protocol import (
    DEFAULT_SOCKET_PATH,
    LIST_METHODS,
    BusProtocolError,
    BusResponse,
)
from miniui.logging import get_logger, setup_logging
from miniui_ops.handlers_core import HandlerRegistry, get_default_registry
from miniui_ops.ipc_protocol import BusServerProtocol

if TYPE_CHECKING:
    from miniui.config import BusConfig
    from miniui.ipc.protocol import BusRequest

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_STARTUP_FAILED = 1

# Request IDs longer than this are cut when echoed in an oversize-reply error
MAX_ECHOED_ID = 256


class AgentStartupError(Exception):
    """The bus endpoint could not be opened or the object not published."""


class BusAgent:
    """
    Bus endpoint publishing one object.

    Attributes:
        socket_path: Path to the Unix domain socket.
        registry: Registry implementing the published object.
        running: Whether the agent is currently serving.
    """

    def __init__(
        self,
        socket_path: str | None = None,
        registry: HandlerRegistry | None = None,
        socket_owner: str | None = None,
        socket_group: str | None = None,
        socket_mode: int = 0o660,
    ) -> None:
        """
        Initialize the agent.

        Args:
            socket_path: Path to the Unix domain socket.
            registry: Object registry (the default miniui object if omitted).
            socket_owner: Optional socket file owner username.
            socket_group: Optional socket file group name.
            socket_mode: Socket file permissions (default 0o660).
        """
        self.socket_path = socket_path or DEFAULT_SOCKET_PATH
        self.registry = registry if registry is not None else get_default_registry()
        self.socket_owner = socket_owner
        self.socket_group = socket_group
        self.socket_mode = socket_mode

        self.running = False
        self._server: asyncio.AbstractServer | None = None
        self._active_connections: set[BusServerProtocol] = set()

    @classmethod
    def from_config(
        cls,
        config: BusConfig,
        registry: HandlerRegistry | None = None,
    ) -> BusAgent:
        """Create an agent from the bus configuration."""
        return cls(
            socket_path=config.socket_path,
            registry=registry,
            socket_owner=config.socket_owner,
            socket_group=config.socket_group,
            socket_mode=config.socket_mode,
        )

    async def open(self) -> None:
        """
        Bind the socket and publish the object.

        Raises:
            AgentStartupError: If the socket cannot be bound or the object
                has nothing to publish.
        """
        if not self.registry.get_methods():
            raise AgentStartupError(
                f"Object {self.registry.object_name} has no methods to publish"
            )

        socket_file = Path(self.socket_path)
        try:
            socket_file.parent.mkdir(parents=True, exist_ok=True)
            if socket_file.exists() or socket_file.is_symlink():
                socket_file.unlink()

            self._server = await asyncio.start_unix_server(
                self._handle_connection,
                path=self.socket_path,
            )
        except OSError as e:
            raise AgentStartupError(f"Cannot listen on {self.socket_path}: {e}") from e

        self._set_socket_permissions()

        self.running = True
        logger.info(
            "Agent started",
            extra={
                "socket_path": self.socket_path,
                "object": self.registry.object_name,
                "methods": self.registry.get_methods(),
            },
        )

    async def start(self) -> None:
        """
        Open the endpoint and serve until stop() is called.

        Raises:
            AgentStartupError: If the endpoint cannot be opened.
        """
        await self.open()
        server = self._server
        if server is None:
            raise AgentStartupError(f"Cannot listen on {self.socket_path}")

        try:
            async with server:
                await server.serve_forever()
        except asyncio.CancelledError:
            pass
        finally:
            self.running = False
            logger.info("Agent stopped")

    def _set_socket_permissions(self) -> None:
        """Set socket file ownership and permissions."""
        try:
            os.chmod(self.socket_path, self.socket_mode)

            uid = -1
            gid = -1

            if self.socket_owner:
                try:
                    uid = pwd.getpwnam(self.socket_owner).pw_uid
                except KeyError:
                    logger.warning(
                        "Socket owner user not found",
                        extra={"user": self.socket_owner},
                    )

            if self.socket_group:
                try:
                    gid = grp.getgrnam(self.socket_group).gr_gid
                except KeyError:
                    logger.warning(
                        "Socket owner group not found",
                        extra={"group": self.socket_group},
                    )

            if uid != -1 or gid != -1:
                os.chown(self.socket_path, uid, gid)

            logger.debug(
                "Socket permissions set",
                extra={
                    "mode": oct(self.socket_mode),
                    "owner": self.socket_owner,
                    "group": self.socket_group,
                },
            )

        except OSError as e:
            logger.warning(
                "Failed to set socket permissions",
                extra={"error": str(e)},
            )

    async def _handle_request(
        self,
        protocol: BusServerProtocol,
        request: BusRequest,
    ) -> None:
        """Dispatch one request and write its reply."""
        if request.method == LIST_METHODS and request.object == self.registry.object_name:
            await self._send_reply(
                protocol, BusResponse.success(request.id, self.registry.list_methods())
            )
            return

        try:
            result = await self.registry.dispatch(request)
        except AgentError as e:
            logger.warning(
                "Request failed",
                extra={
                    "request_id": request.id,
                    "method": request.method,
                    "code": e.code,
                    "error_message": e.message,
                },
            )
            await self._send_reply(
                protocol,
                BusResponse.create_error(
                    request_id=request.id,
                    code=e.code,
                    message=e.message,
                    details=e.details,
                ),
            )
            return

        await self._send_reply(protocol, BusResponse.success(request.id, result))

    async def _send_reply(self, protocol: BusServerProtocol, response: BusResponse) -> None:
        """Write a reply, replacing one that does not fit in a frame."""
        try:
            await protocol.write_response(response)
        except BusProtocolError as e:
            logger.error(
                "Reply could not be encoded",
                extra={"request_id": response.id, "error": e.message},
            )
            await protocol.write_error_response(
                request_id=response.id[:MAX_ECHOED_ID],
                code=InternalError.code,
                message="Reply too large to send",
                details=e.details,
            )

    async def _handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """
        Serve one client connection.

        Requests on a connection are handled strictly one after another.
        """
        protocol = BusServerProtocol(reader, writer)
        self._active_connections.add(protocol)
        logger.info("Client connected")

        try:
            while self.running and not protocol.closed:
                try:
                    request = await protocol.read_request()
                except BusProtocolError as e:
                    # Framing cannot be trusted any more; report and hang up
                    logger.error(
                        "Protocol error",
                        extra={"error": e.message, "details": e.details},
                    )
                    await protocol.write_error_response(
                        request_id="",
                        code="protocol_error",
                        message=e.message,
                        details=e.details,
                    )
                    break

                if request is None:
                    break

                await self._handle_request(protocol, request)

        except Exception as e:
            logger.exception(
                "Connection error",
                extra={"error": str(e)},
            )

        finally:
            self._active_connections.discard(protocol)
            await protocol.close()
            logger.info("Client disconnected")

    async def stop(self) -> None:
        """Stop the agent gracefully."""
        if not self.running:
            return

        self.running = False

        for protocol in list(self._active_connections):
            await protocol.close()
        self._active_connections.clear()

        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

        socket_file = Path(self.socket_path)
        if socket_file.exists():
            with contextlib.suppress(OSError):
                socket_file.unlink()

        logger.info("Agent shut down")

    def get_stats(self) -> dict[str, Any]:
        """Get agent statistics."""
        return {
            "running": self.running,
            "socket_path": self.socket_path,
            "active_connections": len(self._active_connections),
            "object": self.registry.object_name,
            "methods": self.registry.get_methods(),
        }


async def run_agent(
    config: AppConfig | None = None,
    registry: HandlerRegistry | None = None,
) -> None:
    """
    Run the agent until SIGTERM or SIGINT.

    Args:
        config: Application configuration (defaults when omitted).
        registry: Optional registry replacing the default miniui object.

    Raises:
        AgentStartupError: If the endpoint cannot be opened.
    """
    config = config or AppConfig()
    if registry is None:
        registry = get_default_registry(config)
    agent = BusAgent.from_config(config.bus, registry=registry)

    loop = asyncio.get_running_loop()

    def signal_handler() -> None:
        logger.info("Received shutdown signal")
        loop.create_task(agent.stop())

    for sig in (signal.SIGTERM, signal.SIGINT):
        with contextlib.suppress(ValueError, NotImplementedError):
            loop.add_signal_handler(sig, signal_handler)

    await agent.start()


def main(argv: list[str] | None = None) -> int:
    """
    Entry point of ``miniui-agent``.

    Returns:
        0 after a normal shutdown, 1 if the configuration is unusable or the
        bus endpoint cannot be established.
    """
    try:
        config = load_config(cli_args=argv)
    except (FileNotFoundError, ValidationError, yaml.YAMLError) as e:
        print(f"miniui-agent: invalid configuration: {e}", file=sys.stderr)
        return EXIT_STARTUP_FAILED

    setup_logging(config.logging)

    try:
        asyncio.run(run_agent(config))
    except AgentStartupError as e:
        logger.error("Agent failed to start", extra={"error": str(e)})
        return EXIT_STARTUP_FAILED

    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
