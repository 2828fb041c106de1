"""
Method registry for the miniui bus object.

The registry is the object published on the bus: it maps method names to
async handlers, runs one call at a time and turns every failure into an
AgentError that the transport can send back as an error reply.

Handler Registration:
- Handlers are registered by method name (e.g. "status", "apply_lan")
- Each handler receives the full BusRequest and returns a dict reply
- Handlers raise AgentError subclasses for errors
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from miniui import OBJECT_NAME
from miniui.errors import (
    AgentError,
    InternalError,
    MethodNotFoundError,
    ObjectNotFoundError,
)
from miniui.ipc.protocol import BusRequest
from miniui.logging import get_logger

if TYPE_CHECKING:
    from miniui.config import AppConfig
    from miniui_ops.executor import ProcessExecutor
    from miniui_ops.facts import FactCollector

logger = get_logger(__name__)

# Handler type: takes request, returns reply dict
HandlerFunc = Callable[[BusRequest], Awaitable[dict[str, Any]]]


class HandlerRegistry:
    """
    Registry of the methods of one bus object.

    Calls are serialized: a second call waits until the first one has fully
    completed, including any synchronous external program it runs.

    Attributes:
        object_name: Name the object is published under.

    Example:
        >>> registry = HandlerRegistry()
        >>> registry.register("status", handle_status)
        >>> reply = await registry.dispatch(request)
    """

    def __init__(self, object_name: str = OBJECT_NAME) -> None:
        """Initialize the handler registry."""
        self.object_name = object_name
        self._handlers: dict[str, HandlerFunc] = {}
        self._signatures: dict[str, dict[str, str]] = {}
        self._slot = asyncio.Lock()

    def register(
        self,
        method: str,
        handler: HandlerFunc,
        signature: dict[str, str] | None = None,
    ) -> None:
        """
        Register a handler for a method.

        Args:
            method: Method name.
            handler: Async handler function.
            signature: Field name to type name, as shown by method listing.
        """
        if method in self._handlers:
            logger.warning(
                "Overwriting existing handler",
                extra={"method": method},
            )
        self._handlers[method] = handler
        self._signatures[method] = dict(signature or {})
        logger.debug("Handler registered", extra={"method": method})

    def unregister(self, method: str) -> None:
        """Unregister the handler for a method, if any."""
        self._handlers.pop(method, None)
        self._signatures.pop(method, None)

    def has_handler(self, method: str) -> bool:
        """Check if a handler is registered for a method."""
        return method in self._handlers

    def get_methods(self) -> list[str]:
        """Get the list of registered method names."""
        return list(self._handlers.keys())

    def list_methods(self) -> dict[str, dict[str, str]]:
        """Get every method with its field signature."""
        return {method: dict(fields) for method, fields in self._signatures.items()}

    async def dispatch(self, request: BusRequest) -> dict[str, Any]:
        """
        Dispatch a request to its handler.

        Args:
            request: The bus request.

        Returns:
            Handler reply dictionary.

        Raises:
            AgentError: If the object or method is unknown or the handler
                fails. Unexpected exceptions are wrapped in InternalError.
        """
        if request.object != self.object_name:
            raise ObjectNotFoundError(
                f"Unknown object: {request.object}",
                details={"object": request.object},
            )

        handler = self._handlers.get(request.method)
        if handler is None:
            raise MethodNotFoundError(
                f"Unknown method: {request.method}",
                details={"method": request.method, "available": self.get_methods()},
            )

        async with self._slot:
            logger.info(
                "Dispatching request",
                extra={"method": request.method, "request_id": request.id},
            )

            try:
                return await handler(request)

            except AgentError:
                raise

            except Exception as e:
                logger.exception(
                    "Handler error",
                    extra={
                        "method": request.method,
                        "request_id": request.id,
                        "error": str(e),
                    },
                )
                raise InternalError(
                    f"Handler failed: {type(e).__name__}: {e}",
                    details={"method": request.method},
                ) from e


def get_default_registry(
    config: AppConfig | None = None,
    executor: ProcessExecutor | None = None,
    collector: FactCollector | None = None,
) -> HandlerRegistry:
    """
    Build the ``miniui`` object with all of its methods.

    Args:
        config: Application configuration (defaults when omitted).
        executor: Process executor (a fresh one when omitted).
        collector: Fact collector (built from config when omitted).

    Returns:
        Registry with status, apply_lan, reload_network and sysupgrade.
    """
    from miniui.config import AppConfig
    from miniui_ops.executor import ProcessExecutor
    from miniui_ops.facts import FactCollector
    from miniui_ops.handlers import (
        register_network_handlers,
        register_status_handlers,
        register_upgrade_handlers,
    )

    config = config or AppConfig()
    executor = executor or ProcessExecutor()
    collector = collector or FactCollector.from_config(config.facts)

    registry = HandlerRegistry()
    register_status_handlers(registry, collector)
    register_network_handlers(registry, executor, config.programs)
    register_upgrade_handlers(
        registry, executor, config.programs, scratch_dir=config.upgrade.scratch_dir
    )
    return registry
