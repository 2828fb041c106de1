"""
miniui - Local device management agent.

This package holds the pieces shared between the agent process and its local
clients: configuration, structured logging, error types and the bus protocol
used to reach the ``miniui`` RPC object.
"""

__version__ = "0.1.0"

# Name of the single RPC object published on the bus
OBJECT_NAME = "miniui"
