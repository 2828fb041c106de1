"""
External program execution for the miniui agent.

Two strategies are provided:

- Synchronous: the program is started and awaited. The calling handler is
  suspended until the child exits and gets its exit status back; the event
  loop itself keeps running.
- Detached: an intermediary process (``python -m miniui_ops.detach``) starts
  the real program in a new session and exits straight away. The agent only
  waits for, and reaps, the intermediary. The real program is orphaned and
  re-parented to the process supervisor, so it leaves no zombie behind in the
  agent and survives an agent restart or crash.

Paths and arguments reaching this module must already be validated; nothing
here inspects or rewrites them. Programs are executed directly, never through
a shell.
"""

from __future__ import annotations

import asyncio
import signal
import sys
from dataclasses import dataclass
from enum import Enum

from miniui.logging import get_logger
from miniui_ops.detach import EXIT_EXEC_FAILED

logger = get_logger(__name__)


class ExecutionMode(Enum):
    """How a program invocation is run."""

    SYNCHRONOUS = "synchronous"
    DETACHED = "detached"


@dataclass(frozen=True)
class ProgramInvocation:
    """
    A fully validated external program call.

    Attributes:
        path: Absolute path of the executable (also used as argv[0]).
        args: Arguments following argv[0].
        mode: Execution strategy.
    """

    path: str
    args: tuple[str, ...] = ()
    mode: ExecutionMode = ExecutionMode.SYNCHRONOUS

    @property
    def argv(self) -> tuple[str, ...]:
        """Full argument vector including argv[0]."""
        return (self.path, *self.args)


# =============================================================================
# Executor Errors
# =============================================================================


class ExecutorError(Exception):
    """Base class for execution failures."""

    def __init__(self, message: str, path: str) -> None:
        super().__init__(message)
        self.message = message
        self.path = path


class SpawnFailedError(ExecutorError):
    """The program (or the detach intermediary) could not be started."""


class AbnormalTerminationError(ExecutorError):
    """
    The program did not exit normally.

    Attributes:
        signal_number: Number of the signal that terminated the child.
    """

    def __init__(self, message: str, path: str, signal_number: int) -> None:
        super().__init__(message, path)
        self.signal_number = signal_number


# =============================================================================
# Executor
# =============================================================================


def _describe(error: Exception) -> str:
    return getattr(error, "strerror", None) or str(error)


def _signal_name(signal_number: int) -> str:
    try:
        return signal.Signals(signal_number).name
    except ValueError:
        return str(signal_number)


class ProcessExecutor:
    """
    Spawns external programs on behalf of the request handlers.

    Attributes:
        python: Interpreter used to run the detach intermediary.

    Example:
        >>> executor = ProcessExecutor()
        >>> await executor.run_sync("/etc/init.d/network", ("reload",))
        0
    """

    def __init__(self, python: str | None = None) -> None:
        """
        Initialize the executor.

        Args:
            python: Interpreter for the detach intermediary (defaults to the
                interpreter running the agent).
        """
        self.python = python or sys.executable

    async def execute(self, invocation: ProgramInvocation) -> int:
        """
        Run an invocation according to its mode.

        Returns:
            The exit status for synchronous runs, 0 for detached runs.
        """
        if invocation.mode is ExecutionMode.DETACHED:
            await self.run_detached(invocation.path, invocation.args)
            return 0
        return await self.run_sync(invocation.path, invocation.args)

    async def run_sync(self, path: str, args: tuple[str, ...] = ()) -> int:
        """
        Run a program and wait for it to exit.

        Args:
            path: Executable path (also argv[0]).
            args: Remaining arguments.

        Returns:
            The child's exit status. Non-zero statuses are returned, not
            raised; the caller decides what they mean.

        Raises:
            SpawnFailedError: If the program could not be started.
            AbnormalTerminationError: If the child was killed by a signal.
        """
        logger.info("Running program", extra={"path": path, "argv": list(args)})

        try:
            process = await asyncio.create_subprocess_exec(
                path,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
            )
        except (OSError, ValueError) as e:
            # ValueError: an argument the OS cannot take, e.g. an embedded NUL
            logger.error(
                "Failed to start program",
                extra={"path": path, "error": str(e)},
            )
            raise SpawnFailedError(f"Cannot start {path}: {_describe(e)}", path) from e

        returncode = await process.wait()

        if returncode < 0:
            signal_number = -returncode
            logger.error(
                "Program terminated abnormally",
                extra={
                    "path": path,
                    "pid": process.pid,
                    "signal": _signal_name(signal_number),
                },
            )
            raise AbnormalTerminationError(
                f"{path} was terminated by signal {_signal_name(signal_number)}",
                path,
                signal_number,
            )

        logger.info(
            "Program exited",
            extra={"path": path, "pid": process.pid, "returncode": returncode},
        )
        return returncode

    async def run_detached(self, path: str, args: tuple[str, ...] = ()) -> None:
        """
        Start a program that outlives the agent, without waiting for it.

        Only the short-lived intermediary is awaited. Its exit status tells
        whether the target program could be started.

        Args:
            path: Executable path (also argv[0]).
            args: Remaining arguments.

        Raises:
            SpawnFailedError: If the intermediary or the target program could
                not be started.
        """
        logger.info(
            "Starting detached program",
            extra={"path": path, "argv": list(args)},
        )

        try:
            intermediary = await asyncio.create_subprocess_exec(
                self.python,
                "-m",
                "miniui_ops.detach",
                path,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
            )
        except (OSError, ValueError) as e:
            logger.error(
                "Failed to start detach intermediary",
                extra={"path": path, "python": self.python, "error": str(e)},
            )
            raise SpawnFailedError(
                f"Cannot start detach intermediary: {_describe(e)}", path
            ) from e

        returncode = await intermediary.wait()

        if returncode == EXIT_EXEC_FAILED:
            logger.error("Detached program could not be started", extra={"path": path})
            raise SpawnFailedError(f"Cannot start {path}", path)

        if returncode != 0:
            logger.error(
                "Detach intermediary failed",
                extra={"path": path, "returncode": returncode},
            )
            raise SpawnFailedError(
                f"Detach intermediary for {path} exited with {returncode}", path
            )

        logger.info(
            "Detached program started",
            extra={"path": path, "intermediary_pid": intermediary.pid},
        )
