"""
Status handler for the miniui object.

- status: snapshot of load, uptime, host identity, time and memory
"""

from __future__ import annotations

import functools
from typing import Any

from miniui.ipc.protocol import BusRequest
from miniui.logging import get_logger
from miniui_ops.facts import FactCollector
from miniui_ops.handlers_core import HandlerRegistry
from miniui_ops.validation import METHOD_SIGNATURES

logger = get_logger(__name__)


async def handle_status(
    request: BusRequest,
    *,
    collector: FactCollector,
) -> dict[str, Any]:
    """
    Handle the status method.

    Never fails: facts whose source is unavailable are left out.

    Args:
        request: The bus request (takes no fields).
        collector: Fact collector to read from.

    Returns:
        The fact payload.
    """
    payload = collector.collect()
    logger.debug(
        "Status collected",
        extra={"request_id": request.id, "fields": sorted(payload)},
    )
    return payload


def register_status_handlers(registry: HandlerRegistry, collector: FactCollector) -> None:
    """Register the status method."""
    registry.register(
        "status",
        functools.partial(handle_status, collector=collector),
        METHOD_SIGNATURES["status"],
    )
    logger.debug("Registered status handlers")
