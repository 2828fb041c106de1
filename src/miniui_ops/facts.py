"""
System fact collection for the ``status`` method.

Every fact is best effort: a source that cannot be read or parsed simply
leaves its fields out of the payload. Collection as a whole never fails.

Payload fields:
- load1, load5, load15: load averages (float)
- uptime: seconds since boot (float)
- hostname: configured host name
- kernel, machine: kernel release and machine architecture
- time: seconds since the epoch at collection (int)
- memory: {total, free, available} in bytes (int), from kB values
"""

from __future__ import annotations

import platform
import socket
import time
from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING, Any

from miniui.logging import get_logger

if TYPE_CHECKING:
    from miniui.config import FactsConfig

logger = get_logger(__name__)

# meminfo key -> payload field
MEMINFO_FIELDS = {
    "MemTotal:": "total",
    "MemFree:": "free",
    "MemAvailable:": "available",
}


# =============================================================================
# Parsers
# =============================================================================


def parse_loadavg(text: str) -> dict[str, float] | None:
    """Parse the three load averages at the start of a loadavg line."""
    fields = text.split()
    if len(fields) < 3:
        return None
    try:
        load1, load5, load15 = (float(value) for value in fields[:3])
    except ValueError:
        return None
    return {"load1": load1, "load5": load5, "load15": load15}


def parse_uptime(text: str) -> float | None:
    """Parse the first number of an uptime line."""
    fields = text.split()
    if not fields:
        return None
    try:
        return float(fields[0])
    except ValueError:
        return None


def parse_meminfo(lines: Iterable[str]) -> dict[str, int]:
    """
    Extract total/free/available memory in bytes.

    Lines are ``KEY VALUE UNIT`` with values in kB. Short or malformed lines
    are skipped; keys that never show up are left out.

    Example:
        >>> parse_meminfo(["MemTotal: 1024 kB", "MemFree: 512 kB"])
        {'total': 1048576, 'free': 524288}
    """
    memory: dict[str, int] = {}

    for line in lines:
        fields = line.split()
        if len(fields) < 3:
            continue

        key = MEMINFO_FIELDS.get(fields[0])
        if key is None:
            continue

        try:
            value = int(fields[1])
        except ValueError:
            continue
        if value < 0:
            continue

        memory[key] = value * 1024

    return memory


# =============================================================================
# Collector
# =============================================================================


class FactCollector:
    """
    Reads ephemeral system state.

    Attributes:
        loadavg_path: Load average source.
        uptime_path: Uptime source.
        meminfo_path: Memory statistics source.
    """

    def __init__(
        self,
        loadavg_path: str | Path = "/proc/loadavg",
        uptime_path: str | Path = "/proc/uptime",
        meminfo_path: str | Path = "/proc/meminfo",
    ) -> None:
        self.loadavg_path = Path(loadavg_path)
        self.uptime_path = Path(uptime_path)
        self.meminfo_path = Path(meminfo_path)

    @classmethod
    def from_config(cls, config: FactsConfig) -> FactCollector:
        """Create a collector from the facts configuration."""
        return cls(
            loadavg_path=config.loadavg_path,
            uptime_path=config.uptime_path,
            meminfo_path=config.meminfo_path,
        )

    def _read_first_line(self, path: Path) -> str | None:
        try:
            with open(path) as f:
                return f.readline()
        except (OSError, UnicodeDecodeError) as e:
            logger.debug("Fact source unreadable", extra={"path": str(path), "error": str(e)})
            return None

    def _collect_memory(self) -> dict[str, int] | None:
        try:
            with open(self.meminfo_path) as f:
                return parse_meminfo(f)
        except (OSError, UnicodeDecodeError) as e:
            logger.debug(
                "Fact source unreadable",
                extra={"path": str(self.meminfo_path), "error": str(e)},
            )
            return None

    def collect(self) -> dict[str, Any]:
        """
        Take a snapshot of the system facts.

        Returns:
            The fact payload; fields whose source failed are absent.
        """
        payload: dict[str, Any] = {}

        line = self._read_first_line(self.loadavg_path)
        if line is not None:
            loads = parse_loadavg(line)
            if loads is not None:
                payload.update(loads)

        line = self._read_first_line(self.uptime_path)
        if line is not None:
            uptime = parse_uptime(line)
            if uptime is not None:
                payload["uptime"] = uptime

        try:
            payload["hostname"] = socket.gethostname()
        except OSError as e:
            logger.debug("Host name unavailable", extra={"error": str(e)})

        uname = platform.uname()
        if uname.release:
            payload["kernel"] = uname.release
        if uname.machine:
            payload["machine"] = uname.machine

        now = int(time.time())
        if now > 0:
            payload["time"] = now

        memory = self._collect_memory()
        if memory is not None:
            payload["memory"] = memory

        return payload
