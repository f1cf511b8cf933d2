"""Process inspection capability used by the orphan reaper.

The reaper's decisions are platform independent. Everything that talks to
the OS goes through a ProcessInspector, with one implementation for Unix
(`ps`, `lsof`, `ss`, signals) and one for Windows (`netstat`, CIM queries
via PowerShell, `tasklist`, `taskkill`).
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from deepnote_lifecycle.protocols import ProcessRunner

INSPECTION_TIMEOUT = 10.0


@dataclass(frozen=True, slots=True)
class ProcessEntry:
    """One row of a process listing."""

    pid: int
    ppid: int | None
    command_line: str


@runtime_checkable
class ProcessInspector(Protocol):
    """OS process queries and signals.

    Query methods may raise OSError or TimeoutError when the underlying tool
    cannot be run; callers treat that as "unknown".
    """

    @property
    def init_pids(self) -> frozenset[int]:
        """Return the pids an orphaned process gets re-parented to."""
        ...

    async def find_listening_pids(self, port: int) -> list[int]:
        """Return the pids listening on a local TCP port."""
        ...

    async def get_command_line(self, pid: int) -> str | None:
        """Return the full command line of a process, or None if unknown."""
        ...

    async def get_parent_pid(self, pid: int) -> int | None:
        """Return the parent pid of a process, or None if unknown."""
        ...

    async def is_alive(self, pid: int) -> bool:
        """Return True if a process with this pid exists."""
        ...

    async def list_processes(self) -> list[ProcessEntry]:
        """Return every process visible to the current user."""
        ...

    async def kill(self, pid: int, *, force: bool = False) -> bool:
        """Ask a process to exit, or kill it outright when ``force`` is set.

        Returns:
            True if the signal was delivered.
        """
        ...


def create_process_inspector(
    runner: ProcessRunner,
    *,
    platform: str | None = None,
) -> ProcessInspector:
    """Return the inspector for the running (or given) platform."""
    if (platform or sys.platform) == "win32":
        from ._windows import WindowsProcessInspector  # noqa: PLC0415

        return WindowsProcessInspector(runner)

    from ._unix import UnixProcessInspector  # noqa: PLC0415

    return UnixProcessInspector(runner)
