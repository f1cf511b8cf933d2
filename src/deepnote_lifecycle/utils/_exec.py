"""Subprocess execution backed by anyio."""

from __future__ import annotations

import subprocess
from typing import TYPE_CHECKING, final

import anyio

from deepnote_lifecycle.models import ExecResult

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from pathlib import Path

    import anyio.abc

MAX_OUTPUT_SIZE = 10000


def truncate_output(output: str, max_size: int = MAX_OUTPUT_SIZE) -> str:
    """Keep the tail of ``output`` if it exceeds ``max_size`` characters."""
    if len(output) <= max_size:
        return output
    return "...[truncated]\n" + output[-max_size:]


def _decode(data: bytes | None) -> str:
    return data.decode("utf-8", errors="replace") if data else ""


@final
class AnyioProcessRunner:
    """ProcessRunner implementation using anyio subprocesses."""

    __slots__ = ()

    async def spawn(
        self,
        command: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        cwd: Path | None = None,
    ) -> anyio.abc.Process:
        """Spawn a long-running process with piped stdout and stderr.

        Raises:
            OSError: If the executable cannot be started.
        """
        return await anyio.open_process(
            list(command),
            cwd=cwd,
            env=dict(env) if env is not None else None,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )

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
        with anyio.fail_after(timeout):
            completed = await anyio.run_process(
                list(command),
                cwd=cwd,
                env=dict(env) if env is not None else None,
                check=False,
            )
        return ExecResult(
            exit_code=completed.returncode,
            stdout=truncate_output(_decode(completed.stdout)),
            stderr=truncate_output(_decode(completed.stderr)),
        )
