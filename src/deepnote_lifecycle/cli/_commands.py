# pyright: reportUnusedCallResult=false
# ruff: noqa: TC003  # Path needed at runtime for cyclopts parameter parsing
"""Commands of the `deepnote-lifecycle` CLI."""

import signal
import sys
from pathlib import Path
from typing import Annotated

import anyio
from cyclopts import App, Parameter
from rich.table import Table

from deepnote_lifecycle.exceptions import (
    InstallError,
    LifecycleError,
    OperationCancelledError,
)
from deepnote_lifecycle.locks import LockFileRecord
from deepnote_lifecycle.models import Environment
from deepnote_lifecycle.runtime import DeepnoteRuntime
from deepnote_lifecycle.server import ConsoleOutputSink
from deepnote_lifecycle.utils import dump_json

from ._shared import CLIContext, ExitCode, OutputFormat, exit_with_lifecycle_error


def _exit_code_for(error: LifecycleError) -> ExitCode:
    match error:
        case OperationCancelledError():
            return ExitCode.CANCELLED
        case InstallError():
            return ExitCode.INSTALL_ERROR
        case _:
            return ExitCode.SERVER_ERROR


def register_commands(app: App) -> None:
    """Register every command on ``app``."""
    app.command(install)
    app.command(serve)
    app.command(reap)
    app.command(locks)


def install(
    *,
    python: Annotated[Path, Parameter(help="Base Python interpreter.")],
    venv: Annotated[Path, Parameter(help="Virtual environment directory.")],
    package: Annotated[
        list[str] | None,
        Parameter(help="Additional package to install. Repeatable."),
    ] = None,
) -> None:
    """Create a venv and install the Deepnote toolkit into it."""
    ctx = CLIContext.get_current()
    runtime = DeepnoteRuntime(ctx.config, logger=ctx.logger)

    async def _run() -> str:
        result = await runtime.installer.ensure(python, venv)
        if package:
            await runtime.installer.install_additional_packages(venv, package)
        return result.toolkit_version

    try:
        version = anyio.run(_run)
    except LifecycleError as e:
        exit_with_lifecycle_error(e, _exit_code_for(e), console=ctx.error_console)

    ctx.console.print(f"[green]deepnote-toolkit {version}[/green] ready in {venv}")


def serve(
    *,
    python: Annotated[Path, Parameter(help="Base Python interpreter.")],
    venv: Annotated[Path, Parameter(help="Virtual environment directory.")],
    environment_id: Annotated[
        str, Parameter(help="Identifier of the environment.")
    ] = "default",
    package: Annotated[
        list[str] | None,
        Parameter(help="Additional package to install. Repeatable."),
    ] = None,
) -> None:
    """Start the environment's server and keep it running until interrupted."""
    ctx = CLIContext.get_current()
    environment = Environment(
        id=environment_id,
        name=environment_id,
        base_interpreter=python,
        venv_path=venv,
        packages=tuple(package or ()),
    )

    async def _run() -> None:
        runtime = DeepnoteRuntime(
            ctx.config,
            logger=ctx.logger,
            output_sink=ConsoleOutputSink(ctx.console),
        )
        async with runtime:
            info = await runtime.controller.start_environment(environment)
            ctx.console.print(
                f"[green]Server ready[/green] at {info.url} "
                f"(jupyter port {info.jupyter_port}, lsp port {info.lsp_port})"
            )
            await _wait_for_shutdown()
            ctx.console.print("Stopping server...")

    try:
        anyio.run(_run)
    except LifecycleError as e:
        exit_with_lifecycle_error(e, _exit_code_for(e), console=ctx.error_console)


async def _wait_for_shutdown() -> None:
    if sys.platform == "win32":
        await anyio.sleep_forever()
        return
    with anyio.open_signal_receiver(signal.SIGINT, signal.SIGTERM) as signals:
        async for _ in signals:
            return


def reap(
    *,
    dry_run: Annotated[
        bool, Parameter(help="Only list the processes that would be killed.")
    ] = False,
) -> None:
    """Kill Deepnote server processes orphaned by earlier sessions."""
    ctx = CLIContext.get_current()
    runtime = DeepnoteRuntime(ctx.config, logger=ctx.logger)

    if dry_run:
        orphans = anyio.run(runtime.reaper.find_orphans)
        if not orphans:
            ctx.console.print("No orphaned processes found")
            return
        table = Table("PID", "Found by", "Command line")
        for orphan in orphans:
            table.add_row(str(orphan.pid), orphan.source, orphan.command_line)
        ctx.console.print(table)
        return

    report = anyio.run(runtime.reaper.cleanup_on_activation)
    ctx.console.print(
        f"Killed {len(report.killed)} orphaned process(es), "
        f"removed {len(report.stale_locks_removed)} stale lock file(s)"
    )
    for pid in report.failed:
        ctx.error_console.print(f"[yellow]Could not kill process {pid}[/yellow]")
    if report.errors:
        raise SystemExit(ExitCode.INTERNAL_ERROR)


def locks(
    *,
    output_format: Annotated[
        OutputFormat, Parameter(name="--format", help="Output format.")
    ] = OutputFormat.TABLE,
) -> None:
    """List server lock files in the shared lock directory."""
    ctx = CLIContext.get_current()
    runtime = DeepnoteRuntime(ctx.config, logger=ctx.logger)
    registry = runtime.locks

    async def _collect() -> list[LockFileRecord]:
        records: list[LockFileRecord] = []
        for pid in await registry.list_pids():
            record = await registry.read(pid)
            if record is not None:
                records.append(record)
        return records

    records = anyio.run(_collect)

    if output_format is OutputFormat.JSON:
        payload = [record.model_dump(by_alias=True) for record in records]
        ctx.console.print_json(dump_json(payload).decode())
        return

    if not records:
        ctx.console.print(f"No lock files in {registry.directory}")
        return
    table = Table("PID", "Session", "Created (epoch ms)")
    for record in records:
        table.add_row(str(record.pid), record.session_id, str(record.timestamp))
    ctx.console.print(table)
