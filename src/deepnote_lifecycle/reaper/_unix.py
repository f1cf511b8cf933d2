"""Process inspection on Linux and macOS."""

from __future__ import annotations

import os
import re
import signal
from typing import TYPE_CHECKING, final

from ._inspection import INSPECTION_TIMEOUT, ProcessEntry

if TYPE_CHECKING:
    from deepnote_lifecycle.protocols import ProcessRunner

_SS_PID_PATTERN = re.compile(r"pid=(\d+)")


def parse_lsof_pids(output: str) -> list[int]:
    """Parse the output of `lsof -t`, one pid per line."""
    return sorted({int(line) for line in output.split() if line.isdigit()})


def parse_ss_pids(output: str) -> list[int]:
    """Parse pids from the `users:((...,pid=N,...))` column of `ss -p`."""
    return sorted({int(match) for match in _SS_PID_PATTERN.findall(output)})


def parse_ps_listing(output: str) -> list[ProcessEntry]:
    """Parse `ps -eo pid=,ppid=,args=` output."""
    entries: list[ProcessEntry] = []
    for line in output.splitlines():
        parts = line.strip().split(None, 2)
        if len(parts) < 2 or not (parts[0].isdigit() and parts[1].isdigit()):
            continue
        command_line = parts[2] if len(parts) == 3 else ""
        entries.append(ProcessEntry(pid=int(parts[0]), ppid=int(parts[1]), command_line=command_line))
    return entries


@final
class UnixProcessInspector:
    """ProcessInspector for Unix-like systems."""

    __slots__ = ("_runner",)

    def __init__(self, runner: ProcessRunner) -> None:
        self._runner = runner

    @property
    def init_pids(self) -> frozenset[int]:
        """Return the pids an orphaned process gets re-parented to."""
        return frozenset({1})

    async def find_listening_pids(self, port: int) -> list[int]:
        """Return the pids listening on a local TCP port.

        Uses `lsof` and falls back to `ss` where lsof is not installed.
        """
        try:
            result = await self._runner.exec_once(
                ["lsof", "-nP", f"-iTCP:{port}", "-sTCP:LISTEN", "-t"],
                timeout=INSPECTION_TIMEOUT,
            )
        except FileNotFoundError:
            result = await self._runner.exec_once(
                ["ss", "-ltnpH", f"sport = :{port}"],
                timeout=INSPECTION_TIMEOUT,
            )
            return parse_ss_pids(result.stdout)
        # lsof exits with 1 when nothing matches
        return parse_lsof_pids(result.stdout)

    async def get_command_line(self, pid: int) -> str | None:
        """Return the full command line of a process, or None if unknown."""
        result = await self._runner.exec_once(
            ["ps", "-o", "args=", "-p", str(pid)], timeout=INSPECTION_TIMEOUT
        )
        command_line = result.stdout.strip()
        return command_line if result.ok and command_line else None

    async def get_parent_pid(self, pid: int) -> int | None:
        """Return the parent pid of a process, or None if unknown."""
        result = await self._runner.exec_once(
            ["ps", "-o", "ppid=", "-p", str(pid)], timeout=INSPECTION_TIMEOUT
        )
        raw = result.stdout.strip()
        return int(raw) if result.ok and raw.isdigit() else None

    async def is_alive(self, pid: int) -> bool:
        """Return True if a process with this pid exists."""
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            # Exists but belongs to another user
            return True
        return True

    async def list_processes(self) -> list[ProcessEntry]:
        """Return every process visible to the current user."""
        result = await self._runner.exec_once(
            ["ps", "-eo", "pid=,ppid=,args="], timeout=INSPECTION_TIMEOUT
        )
        return parse_ps_listing(result.stdout) if result.ok else []

    async def kill(self, pid: int, *, force: bool = False) -> bool:
        """Send SIGTERM, or SIGKILL when ``force`` is set."""
        try:
            os.kill(pid, signal.SIGKILL if force else signal.SIGTERM)
        except ProcessLookupError:
            return False
        return True
