"""
miniui management agent.

This package implements the agent process publishing the ``miniui`` object
on the local bus: the method registry and handlers, request validation,
system fact collection and external program execution.
"""

# No imports here: miniui_ops.detach runs as its own short-lived process
__version__ = "0.1.0"
