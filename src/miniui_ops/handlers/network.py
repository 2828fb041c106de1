"""
Network handlers for the miniui object.

- apply_lan: run the LAN apply script with (ipaddr, netmask)
- reload_network: run the network init script with "reload"

Both wait for their program to exit. A non-zero exit, a signal or a failure
to start the program is reported as execution_failed.
"""

from __future__ import annotations

import functools
from typing import TYPE_CHECKING, Any

from miniui.errors import ExecutionFailedError
from miniui.ipc.protocol import BusRequest
from miniui.logging import get_logger
from miniui_ops.executor import (
    AbnormalTerminationError,
    ProcessExecutor,
    SpawnFailedError,
)
from miniui_ops.handlers_core import HandlerRegistry
from miniui_ops.validation import METHOD_SIGNATURES, validate_apply_lan

if TYPE_CHECKING:
    from miniui.config import ProgramsConfig

logger = get_logger(__name__)

RELOAD_ARGS = ("reload",)


async def run_checked(
    executor: ProcessExecutor,
    path: str,
    args: tuple[str, ...],
    method: str,
) -> None:
    """
    Run a program synchronously and require a zero exit status.

    Raises:
        ExecutionFailedError: If the program cannot be started, is killed
            by a signal or exits non-zero.
    """
    try:
        returncode = await executor.run_sync(path, args)
    except SpawnFailedError as e:
        raise ExecutionFailedError(
            f"{method}: {e.message}",
            details={"method": method, "path": path, "reason": "spawn_failed"},
        ) from e
    except AbnormalTerminationError as e:
        raise ExecutionFailedError(
            f"{method}: {e.message}",
            details={
                "method": method,
                "path": path,
                "reason": "abnormal_termination",
                "signal": e.signal_number,
            },
        ) from e

    if returncode != 0:
        logger.warning(
            "Program failed",
            extra={"method": method, "path": path, "returncode": returncode},
        )
        raise ExecutionFailedError(
            f"{method}: {path} exited with status {returncode}",
            details={
                "method": method,
                "path": path,
                "reason": "non_zero_exit",
                "returncode": returncode,
            },
        )


async def handle_apply_lan(
    request: BusRequest,
    *,
    executor: ProcessExecutor,
    programs: ProgramsConfig,
) -> dict[str, Any]:
    """
    Handle the apply_lan method.

    Args:
        request: Bus request with params:
            - ipaddr: LAN address (required)
            - netmask: LAN netmask (optional, empty when absent)
        executor: Process executor.
        programs: Configured program paths.

    Returns:
        {"status": "ok"}

    Raises:
        InvalidArgumentError: If ipaddr is missing or fields are mistyped.
        ExecutionFailedError: If the apply script fails.
    """
    params = validate_apply_lan(request.params)

    logger.info(
        "Applying LAN settings",
        extra={
            "request_id": request.id,
            "ipaddr": params.ipaddr,
            "netmask": params.netmask,
        },
    )

    await run_checked(
        executor,
        programs.apply_lan,
        (params.ipaddr, params.netmask),
        "apply_lan",
    )
    return {"status": "ok"}


async def handle_reload_network(
    request: BusRequest,
    *,
    executor: ProcessExecutor,
    programs: ProgramsConfig,
) -> dict[str, Any]:
    """
    Handle the reload_network method.

    Returns:
        {"status": "ok"}

    Raises:
        ExecutionFailedError: If the reload fails.
    """
    logger.info("Reloading network", extra={"request_id": request.id})
    await run_checked(executor, programs.network, RELOAD_ARGS, "reload_network")
    return {"status": "ok"}


def register_network_handlers(
    registry: HandlerRegistry,
    executor: ProcessExecutor,
    programs: ProgramsConfig,
) -> None:
    """Register the apply_lan and reload_network methods."""
    registry.register(
        "apply_lan",
        functools.partial(handle_apply_lan, executor=executor, programs=programs),
        METHOD_SIGNATURES["apply_lan"],
    )
    registry.register(
        "reload_network",
        functools.partial(handle_reload_network, executor=executor, programs=programs),
        METHOD_SIGNATURES["reload_network"],
    )
    logger.debug("Registered network handlers")
