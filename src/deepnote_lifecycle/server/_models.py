"""Data models for server lifecycle tracking.

This module defines:
- ServerState: Lifecycle states of a per-environment server
- OutputBuffer: Bounded buffer keeping the tail of a process output stream
- ServerProcessHandle: A spawned server process and its buffered output
- ServerRecord: One entry of the live-server table
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

import anyio

if TYPE_CHECKING:
    from deepnote_lifecycle.models import ServerInfo
    from deepnote_lifecycle.protocols import ServerProcess


class ServerState(StrEnum):
    """Server lifecycle states.

    - STOPPED: No process is tracked
    - STARTING: Ports are reserved and the process is being started
    - RUNNING: The server passed its health check
    - STOPPING: The process is being terminated
    - FAILED: The last start attempt failed
    """

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    FAILED = "failed"


@dataclass(slots=True)
class OutputBuffer:
    """Keeps the last ``max_chars`` characters written to it."""

    max_chars: int = 5000
    _text: str = ""

    def append(self, chunk: str) -> None:
        """Append text, dropping the oldest characters past the bound."""
        if self.max_chars <= 0:
            return
        combined = self._text + chunk
        self._text = combined[-self.max_chars :]

    @property
    def text(self) -> str:
        """Return the buffered text."""
        return self._text

    def clear(self) -> None:
        """Drop all buffered text."""
        self._text = ""


@dataclass(slots=True)
class ServerProcessHandle:
    """A spawned server process owned by the lifecycle manager.

    Attributes:
        environment_id: Environment the server belongs to.
        process: The spawned process.
        stdout: Tail of the process standard output.
        stderr: Tail of the process standard error.
        output_scope: Cancel scope of the tasks pumping the output streams.
    """

    environment_id: str
    process: ServerProcess
    stdout: OutputBuffer = field(default_factory=OutputBuffer)
    stderr: OutputBuffer = field(default_factory=OutputBuffer)
    output_scope: anyio.CancelScope = field(default_factory=anyio.CancelScope)

    @property
    def pid(self) -> int:
        """Return the OS process id."""
        return self.process.pid

    @property
    def exited(self) -> bool:
        """Return True if the process has exited."""
        return self.process.returncode is not None


@dataclass(slots=True)
class ServerRecord:
    """Live-server table entry for one environment.

    The entry exists from port reservation until the server is stopped or
    its start fails, so its ports stay excluded from allocation throughout.
    """

    environment_id: str
    jupyter_port: int
    lsp_port: int
    state: ServerState = ServerState.STARTING
    info: ServerInfo | None = None
    handle: ServerProcessHandle | None = None

    @property
    def ports(self) -> tuple[int, int]:
        """Return the reserved (jupyter, lsp) port pair."""
        return self.jupyter_port, self.lsp_port
