"""
Detach intermediary.

Run as ``python -m miniui_ops.detach PATH [ARG...]`` by the agent. Starts
PATH as the leader of a new session with its standard streams on /dev/null,
then exits without waiting for it. Once this process is gone the target has
no parent in the agent's process tree and is adopted by the supervisor.

Exit status:
    0   target started
    2   usage error
    127 target could not be executed
"""

from __future__ import annotations

import subprocess
import sys

EXIT_STARTED = 0
EXIT_USAGE = 2
EXIT_EXEC_FAILED = 127


def main(argv: list[str] | None = None) -> int:
    """Start the target program and return without waiting for it."""
    argv = sys.argv[1:] if argv is None else argv
    if not argv:
        print("usage: python -m miniui_ops.detach PATH [ARG...]", file=sys.stderr)
        return EXIT_USAGE

    try:
        subprocess.Popen(
            argv,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            close_fds=True,
            start_new_session=True,
        )
    except OSError as e:
        print(f"detach: cannot execute {argv[0]}: {e}", file=sys.stderr)
        return EXIT_EXEC_FAILED

    return EXIT_STARTED


if __name__ == "__main__":
    sys.exit(main())
