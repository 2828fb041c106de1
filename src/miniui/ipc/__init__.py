"""
Bus module for reaching the miniui agent.

Provides the message models, framing and the async client used to call
methods on the ``miniui`` object over the agent's Unix domain socket.
"""

from miniui.ipc.client import BusClient, BusConnectionState
from miniui.ipc.protocol import (
    BusCallError,
    BusError,
    BusProtocolError,
    BusRequest,
    BusResponse,
    BusTimeoutError,
    BusUnavailableError,
)

__all__ = [
    "BusClient",
    "BusConnectionState",
    "BusCallError",
    "BusError",
    "BusProtocolError",
    "BusRequest",
    "BusResponse",
    "BusTimeoutError",
    "BusUnavailableError",
]
