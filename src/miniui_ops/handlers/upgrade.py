"""
Firmware upgrade handler for the miniui object.

- sysupgrade: start the upgrade script detached with (keep, source)

The upgrade outlives the call and possibly the agent itself, so the reply
only says that it is running.
"""

from __future__ import annotations

import functools
from typing import TYPE_CHECKING, Any

from miniui.errors import ExecutionFailedError
from miniui.ipc.protocol import BusRequest
from miniui.logging import get_logger
from miniui_ops.executor import ProcessExecutor, SpawnFailedError
from miniui_ops.handlers_core import HandlerRegistry
from miniui_ops.validation import (
    DEFAULT_SCRATCH_DIR,
    METHOD_SIGNATURES,
    validate_sysupgrade,
)

if TYPE_CHECKING:
    from miniui.config import ProgramsConfig

logger = get_logger(__name__)


def keep_flag(keep: bool) -> str:
    """Render the keep-settings flag the upgrade script expects."""
    return "1" if keep else "0"


async def handle_sysupgrade(
    request: BusRequest,
    *,
    executor: ProcessExecutor,
    programs: ProgramsConfig,
    scratch_dir: str = DEFAULT_SCRATCH_DIR,
) -> dict[str, Any]:
    """
    Handle the sysupgrade method.

    Args:
        request: Bus request with params:
            - source: http(s) URL or scratch-directory path (required)
            - keep: keep settings (optional, default True)
        executor: Process executor.
        programs: Configured program paths.
        scratch_dir: Directory local images must live in.

    Returns:
        {"status": "running"}

    Raises:
        InvalidArgumentError: If source is missing or not allowed.
        ExecutionFailedError: If the upgrade could not be started.
    """
    params = validate_sysupgrade(request.params, scratch_dir=scratch_dir)

    logger.warning(
        "Starting firmware upgrade",
        extra={
            "request_id": request.id,
            "source": params.source,
            "keep": params.keep,
        },
    )

    try:
        await executor.run_detached(
            programs.sysupgrade,
            (keep_flag(params.keep), params.source),
        )
    except SpawnFailedError as e:
        raise ExecutionFailedError(
            f"sysupgrade: {e.message}",
            details={
                "method": "sysupgrade",
                "path": programs.sysupgrade,
                "reason": "spawn_failed",
            },
        ) from e

    return {"status": "running"}


def register_upgrade_handlers(
    registry: HandlerRegistry,
    executor: ProcessExecutor,
    programs: ProgramsConfig,
    scratch_dir: str = DEFAULT_SCRATCH_DIR,
) -> None:
    """Register the sysupgrade method."""
    registry.register(
        "sysupgrade",
        functools.partial(
            handle_sysupgrade,
            executor=executor,
            programs=programs,
            scratch_dir=scratch_dir,
        ),
        METHOD_SIGNATURES["sysupgrade"],
    )
    logger.debug("Registered upgrade handlers")
