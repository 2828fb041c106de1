"""
Pytest configuration for the miniui agent tests.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import stat
import tempfile
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from miniui.config import AppConfig, FactsConfig, ProgramsConfig
from miniui.logging import setup_logging

# Configure pytest-asyncio mode
pytest_plugins = ["pytest_asyncio"]


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (deselect with '-m \"not integration\"')",
    )


class SpyExecutor:
    """
    Executor double that records invocations instead of spawning programs.

    Attributes:
        calls: (mode, path, args) tuples in call order.
        events: ("start"|"end", path) markers, for ordering checks.
        returncode: Exit status returned by run_sync.
        delay: Seconds each call takes.
        error: Exception raised instead of returning, if set.
    """

    def __init__(
        self,
        returncode: int = 0,
        delay: float = 0.0,
        error: Exception | None = None,
    ) -> None:
        self.calls: list[tuple[str, str, tuple[str, ...]]] = []
        self.events: list[tuple[str, str]] = []
        self.returncode = returncode
        self.delay = delay
        self.error = error

    async def _run(self, mode: str, path: str, args: tuple[str, ...]) -> None:
        self.calls.append((mode, path, tuple(args)))
        self.events.append(("start", path))
        if self.delay:
            await asyncio.sleep(self.delay)
        self.events.append(("end", path))
        if self.error is not None:
            raise self.error

    async def run_sync(self, path: str, args: tuple[str, ...] = ()) -> int:
        await self._run("sync", path, args)
        return self.returncode

    async def run_detached(self, path: str, args: tuple[str, ...] = ()) -> None:
        await self._run("detached", path, args)


@pytest.fixture
def spy_executor() -> SpyExecutor:
    """Executor double that never spawns anything."""
    return SpyExecutor()


@pytest.fixture
def make_script(tmp_path: Path) -> Callable[[str, str], Path]:
    """Factory writing executable /bin/sh scripts into tmp_path."""

    def _make(name: str, body: str) -> Path:
        script = tmp_path / name
        script.write_text(f"#!/bin/sh\n{body}\n")
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return script

    return _make


@pytest.fixture
def fact_sources(tmp_path: Path) -> FactsConfig:
    """Synthetic /proc sources."""
    loadavg = tmp_path / "loadavg"
    loadavg.write_text("0.52 0.34 0.21 1/123 4567\n")
    uptime = tmp_path / "uptime"
    uptime.write_text("12345.67 45678.90\n")
    meminfo = tmp_path / "meminfo"
    meminfo.write_text(
        "MemTotal:        1024 kB\n"
        "MemFree:          512 kB\n"
        "MemAvailable:     700 kB\n"
        "Buffers:           16 kB\n"
    )
    return FactsConfig(
        loadavg_path=str(loadavg),
        uptime_path=str(uptime),
        meminfo_path=str(meminfo),
    )


@pytest.fixture
def app_config(
    tmp_path: Path, socket_path: str, fact_sources: FactsConfig
) -> AppConfig:
    """Configuration pointing every external dependency into tmp_path."""
    return AppConfig(
        bus={"socket_path": socket_path},
        programs=ProgramsConfig(
            apply_lan=str(tmp_path / "apply_lan.sh"),
            network=str(tmp_path / "network"),
            sysupgrade=str(tmp_path / "sysupgrade.sh"),
        ),
        facts=fact_sources,
    )


@pytest.fixture(autouse=True)
def _agent_logging() -> Iterator[None]:
    """Log at INFO as miniui-agent does by default, then reset the logger."""
    setup_logging(level="INFO", log_to_stdout=False)
    yield
    logger = logging.getLogger("miniui")
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


@pytest.fixture
def make_spy() -> Callable[..., SpyExecutor]:
    """Factory for configured executor doubles."""
    return SpyExecutor


@pytest.fixture
def socket_path() -> Iterator[str]:
    """Short socket path; tmp_path can exceed the AF_UNIX path limit."""
    directory = tempfile.mkdtemp(prefix="miniui-")
    yield str(Path(directory) / "bus.sock")
    shutil.rmtree(directory, ignore_errors=True)
