"""Protocols for the collaborators the lifecycle core depends on.

Each protocol has a production implementation in this package and a fake
in `deepnote_lifecycle.testing`:
- ProcessRunner / ServerProcess: subprocess spawning and one-shot execution
- HttpProbe: server health checks
- PortProbe: OS-level free port checks
- IntegrationEnvVarsProvider: extra variables for the server environment
- OutputSink: consumer of server output lines
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from pathlib import Path

    from anyio.abc import AnyByteReceiveStream

    from .cancellation import CancellationToken
    from .models import ExecResult

OutputStream = Literal["stdout", "stderr"]


@runtime_checkable
class ServerProcess(Protocol):
    """Handle of a spawned long-running process.

    `anyio.abc.Process` satisfies this protocol.
    """

    @property
    def pid(self) -> int:
        """Return the OS process id."""
        ...

    @property
    def returncode(self) -> int | None:
        """Return the exit code, or None while the process is running."""
        ...

    @property
    def stdout(self) -> AnyByteReceiveStream | None:
        """Return the process standard output stream."""
        ...

    @property
    def stderr(self) -> AnyByteReceiveStream | None:
        """Return the process standard error stream."""
        ...

    def terminate(self) -> None:
        """Request graceful termination."""
        ...

    def kill(self) -> None:
        """Forcefully kill the process."""
        ...

    async def wait(self) -> int:
        """Wait for the process to exit and return its exit code."""
        ...


@runtime_checkable
class ProcessRunner(Protocol):
    """Spawns subprocesses."""

    async def spawn(
        self,
        command: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        cwd: Path | None = None,
    ) -> ServerProcess:
        """Spawn a long-running process with piped stdout and stderr.

        Raises:
            OSError: If the executable cannot be started.
        """
        ...

    async def exec_once(
        self,
        command: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        cwd: Path | None = None,
        timeout: float | None = None,
    ) -> ExecResult:
        """Run a command to completion and capture its output.

        Raises:
            OSError: If the executable cannot be started.
            TimeoutError: If the command outlives ``timeout`` seconds.
        """
        ...


@runtime_checkable
class HttpProbe(Protocol):
    """Checks whether an HTTP endpoint answers."""

    async def exists(self, url: str) -> bool:
        """Return True if a GET against ``url`` succeeds.

        Transport errors are reported as False, never raised.
        """
        ...


@runtime_checkable
class PortProbe(Protocol):
    """Checks whether TCP ports are free on the host."""

    async def find_free(self, port: int) -> int:
        """Return ``port`` if it is free, otherwise some other free port."""
        ...


@runtime_checkable
class IntegrationEnvVarsProvider(Protocol):
    """Supplies integration credentials as environment variables."""

    async def get_environment_variables(
        self,
        environment_id: str,
        token: CancellationToken,
    ) -> Mapping[str, str]:
        """Return variables to inject into the environment's server process."""
        ...


@runtime_checkable
class OutputSink(Protocol):
    """Consumes server output lines."""

    async def write_line(
        self,
        environment_id: str,
        pid: int,
        stream: OutputStream,
        line: str,
    ) -> None:
        """Write a line of server output.

        Args:
            environment_id: Environment whose server produced the output.
            pid: Process ID of the server.
            stream: Which output stream the line came from.
            line: The output line (without trailing newline).
        """
        ...
