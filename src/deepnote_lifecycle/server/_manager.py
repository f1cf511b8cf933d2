"""Per-environment server lifecycle.

The ServerLifecycleManager starts one toolkit server per environment,
health-checks it, and stops it again. Start and stop requests for the same
environment are serialized through a pending-operation table; a second start
for an environment that is already running returns the existing connection
details without spawning anything.
"""

from __future__ import annotations

import os
from contextlib import AsyncExitStack, suppress
from typing import TYPE_CHECKING, Self, final

import anyio
from anyio.streams.text import TextReceiveStream

from deepnote_lifecycle.cancellation import CancellationToken
from deepnote_lifecycle.config import LifecycleConfig
from deepnote_lifecycle.exceptions import (
    LifecycleError,
    OperationCancelledError,
    ServerStartupError,
    ServerTimeoutError,
    StartupFailureReason,
)
from deepnote_lifecycle.models import ServerInfo
from deepnote_lifecycle.pending import PendingOperations
from deepnote_lifecycle.ports import PortAllocator
from deepnote_lifecycle.utils import create_lifecycle_logger

from ._health import HttpxProbe
from ._models import OutputBuffer, ServerProcessHandle, ServerRecord, ServerState
from ._state import ServerStateStore

if TYPE_CHECKING:
    from pathlib import Path
    from types import TracebackType

    from anyio.abc import AnyByteReceiveStream, TaskGroup
    from structlog.typing import FilteringBoundLogger

    from deepnote_lifecycle.locks import LockFileRegistry
    from deepnote_lifecycle.protocols import (
        HttpProbe,
        IntegrationEnvVarsProvider,
        OutputSink,
        OutputStream,
        ProcessRunner,
    )
    from deepnote_lifecycle.venv import VenvInstaller

DETACHED_MODE_VAR = "DEEPNOTE_RUNTIME__RUNNING_IN_DETACHED_MODE"
ENFORCE_CONSTRAINTS_VAR = "DEEPNOTE_ENFORCE_PIP_CONSTRAINTS"
SHADOWING_VARS = ("PYTHONHOME",)


@final
class ServerLifecycleManager:
    """Starts, tracks and stops per-environment toolkit servers.

    The manager must be entered with ``async with`` before servers are
    started: it owns the task group that pumps server output. Leaving the
    context disposes every tracked server.

    Example:
        >>> async with ServerLifecycleManager(runner, installer, locks) as manager:
        ...     info = await manager.start_server(python, venv, "env-1")
    """

    __slots__ = (
        "_config",
        "_disposed",
        "_env_provider",
        "_exit_stack",
        "_installer",
        "_locks",
        "_logger",
        "_output_sink",
        "_pending",
        "_ports",
        "_probe",
        "_runner",
        "_start_scopes",
        "_store",
        "_task_group",
    )

    def __init__(  # noqa: PLR0913
        self,
        runner: ProcessRunner,
        installer: VenvInstaller,
        locks: LockFileRegistry,
        *,
        config: LifecycleConfig | None = None,
        store: ServerStateStore | None = None,
        ports: PortAllocator | None = None,
        probe: HttpProbe | None = None,
        env_provider: IntegrationEnvVarsProvider | None = None,
        output_sink: OutputSink | None = None,
        pending: PendingOperations | None = None,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            runner: Spawns the server processes.
            installer: Makes sure the venv and toolkit exist before a start.
            locks: Lock file registry of the current session.
            config: Lifecycle configuration.
            store: Live-server table. A custom ``ports`` allocator must share it.
            ports: Port allocator. Defaults to one backed by ``store``.
            probe: Health probe. Defaults to an httpx probe.
            env_provider: Optional source of integration environment variables.
            output_sink: Optional consumer of server output lines.
            pending: Pending-operation table keyed by environment id.
            logger: Logger for lifecycle events.
        """
        self._config = config or LifecycleConfig()
        if logger is None:
            logger = create_lifecycle_logger(component="server")
        self._logger = logger
        self._runner = runner
        self._installer = installer
        self._locks = locks
        self._store = store or ServerStateStore()
        self._ports = ports or PortAllocator(
            self._store, config=self._config.ports, logger=logger
        )
        self._probe = probe or HttpxProbe(timeout=self._config.server.probe_timeout)
        self._env_provider = env_provider
        self._output_sink = output_sink
        self._pending = pending or PendingOperations()
        self._task_group: TaskGroup | None = None
        self._exit_stack: AsyncExitStack | None = None
        self._disposed = False
        self._start_scopes: set[anyio.CancelScope] = set()

    async def __aenter__(self) -> Self:
        async with AsyncExitStack() as stack:
            self._task_group = await stack.enter_async_context(anyio.create_task_group())
            stack.push_async_callback(self._shutdown)
            self._exit_stack = stack.pop_all()
        self._disposed = False
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool | None:
        stack, self._exit_stack = self._exit_stack, None
        if stack is None:
            return None
        return await stack.__aexit__(exc_type, exc_val, exc_tb)

    async def _shutdown(self) -> None:
        with anyio.CancelScope(shield=True):
            await self.dispose()
        if self._task_group is not None:
            self._task_group.cancel_scope.cancel()
            self._task_group = None

    # =========================================================================
    # Queries
    # =========================================================================

    @property
    def store(self) -> ServerStateStore:
        """Return the live-server table."""
        return self._store

    def get_state(self, environment_id: str) -> ServerState:
        """Return the lifecycle state of an environment's server."""
        record = self._store.get(environment_id)
        return record.state if record is not None else ServerState.STOPPED

    def get_server_info(self, environment_id: str) -> ServerInfo | None:
        """Return connection details if the environment's server is running."""
        record = self._store.get(environment_id)
        if record is None or record.state is not ServerState.RUNNING:
            return None
        return record.info

    def get_output(self, environment_id: str) -> tuple[str, str] | None:
        """Return the buffered (stdout, stderr) of an environment's server."""
        record = self._store.get(environment_id)
        if record is None or record.handle is None:
            return None
        return record.handle.stdout.text, record.handle.stderr.text

    async def is_healthy(self, info: ServerInfo) -> bool:
        """Return True if the server behind ``info`` answers its health check."""
        return await self._probe.exists(f"{info.url}{self._config.server.health_path}")

    # =========================================================================
    # Operations
    # =========================================================================

    async def start_server(
        self,
        interpreter: Path,
        venv_path: Path,
        environment_id: str,
        token: CancellationToken | None = None,
    ) -> ServerInfo:
        """Start the server of an environment, or return the running one.

        Args:
            interpreter: Base interpreter used to create the venv if needed.
            venv_path: The environment's venv directory.
            environment_id: Environment identifier.
            token: Cancellation token checked before every step.

        Returns:
            Connection details of the healthy server.

        Raises:
            ServerStartupError: If the server could not be spawned or exited early.
            ServerTimeoutError: If the server never became healthy.
            PortExhaustionError: If no ports could be allocated.
            InstallError: If the venv or toolkit could not be installed.
            OperationCancelledError: If the token was cancelled or the manager
                was disposed before the server became ready.
        """
        if token is None:
            token = CancellationToken()

        async def _run() -> ServerInfo:
            with anyio.CancelScope() as scope:
                self._start_scopes.add(scope)
                try:
                    return await self._start(interpreter, venv_path, environment_id, token)
                finally:
                    self._start_scopes.discard(scope)
            # Only reached when dispose() cancelled the start
            raise OperationCancelledError(operation="start server")

        return await self._pending.run(environment_id, "start", _run)

    async def stop_server(self, environment_id: str) -> None:
        """Stop the server of an environment, waiting for any in-flight start."""

        async def _run() -> None:
            await self._stop(environment_id)

        await self._pending.run(environment_id, "stop", _run)

    async def restart_server(
        self,
        interpreter: Path,
        venv_path: Path,
        environment_id: str,
        token: CancellationToken | None = None,
    ) -> ServerInfo:
        """Stop the environment's server and start a new one.

        Returns:
            Connection details of the new server, superseding the old ones.
        """
        await self.stop_server(environment_id)
        return await self.start_server(interpreter, venv_path, environment_id, token)

    async def dispose(self) -> None:
        """Stop every tracked server and clear all state.

        Waits a bounded time for in-flight operations first. Starts still
        running after that are cancelled and given the same bound again to
        tear down whatever they spawned. Safe to call with no servers and more
        than once.
        """
        if self._disposed:
            return
        self._disposed = True

        timeout = self._config.server.dispose_pending_timeout
        if not await self._pending.wait_all(timeout):
            self._logger.warning(
                "Timed out waiting for pending operations, cancelling starts",
                pending=len(self._pending),
                starts=len(self._start_scopes),
            )
            for scope in list(self._start_scopes):
                scope.cancel()
            if not await self._pending.wait_all(timeout):
                self._logger.warning(
                    "Pending operations still running after cancellation",
                    pending=len(self._pending),
                )

        with anyio.CancelScope(shield=True):
            async with anyio.create_task_group() as tg:
                for record in self._store:
                    tg.start_soon(self._teardown, record.environment_id)
        self._store.clear()
        self._logger.debug("Lifecycle manager disposed")

    # =========================================================================
    # Start
    # =========================================================================

    async def _start(
        self,
        interpreter: Path,
        venv_path: Path,
        environment_id: str,
        token: CancellationToken,
    ) -> ServerInfo:
        if self._task_group is None or self._disposed:
            msg = "ServerLifecycleManager must be entered with 'async with' before use"
            raise RuntimeError(msg)

        existing = self._store.get(environment_id)
        if existing is not None:
            if (
                existing.state is ServerState.RUNNING
                and existing.info is not None
                and (existing.handle is None or not existing.handle.exited)
                and await self.is_healthy(existing.info)
            ):
                self._logger.debug(
                    "Server already running",
                    environment_id=environment_id,
                    url=existing.info.url,
                )
                return existing.info

            self._logger.warning(
                "Replacing unhealthy server",
                environment_id=environment_id,
                state=existing.state.value,
            )
            await self._teardown(environment_id)

        token.raise_if_cancelled("install toolkit")
        install = await self._installer.ensure(interpreter, venv_path, token)

        token.raise_if_cancelled("allocate ports")
        self._raise_if_disposed("allocate ports")
        jupyter_port, _ = await self._ports.allocate_pair(environment_id)
        record = self._store.get(environment_id)
        if record is None:
            msg = f"Port reservation for environment '{environment_id}' disappeared"
            raise RuntimeError(msg)

        try:
            return await self._spawn_and_wait(record, install.interpreter_path, venv_path, token)
        except LifecycleError as e:
            self._logger.error(
                "Server failed to start",
                environment_id=environment_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            await self._release(record, failed=True)
            raise
        except Exception as e:
            stdout, stderr = _captured_output(record)
            await self._release(record, failed=True)
            msg = f"Unexpected error while starting server: {e}"
            raise ServerStartupError(
                msg,
                interpreter_path=install.interpreter_path,
                port=jupyter_port,
                reason=StartupFailureReason.UNKNOWN,
                stdout=stdout,
                stderr=stderr,
                cause=e,
            ) from e
        except BaseException:
            await self._release(record, failed=True)
            raise

    def _raise_if_disposed(self, operation: str) -> None:
        if self._disposed:
            raise OperationCancelledError(
                f"Lifecycle manager disposed before: {operation}", operation=operation
            )

    async def _spawn_and_wait(
        self,
        record: ServerRecord,
        interpreter: Path,
        venv_path: Path,
        token: CancellationToken,
    ) -> ServerInfo:
        environment_id = record.environment_id
        env = await self._build_environment(interpreter, venv_path, environment_id, token)

        token.raise_if_cancelled("spawn server")
        self._raise_if_disposed("spawn server")
        command = [
            str(interpreter),
            "-m",
            self._config.toolkit.module,
            "server",
            "--jupyter-port",
            str(record.jupyter_port),
            "--ls-port",
            str(record.lsp_port),
        ]
        try:
            process = await self._runner.spawn(command, env=env)
        except OSError as e:
            msg = f"Failed to spawn server process: {e}"
            raise ServerStartupError(
                msg,
                interpreter_path=interpreter,
                port=record.jupyter_port,
                reason=StartupFailureReason.PROCESS_FAILED,
                cause=e,
            ) from e

        buffer_size = self._config.server.output_buffer_chars
        handle = ServerProcessHandle(
            environment_id=environment_id,
            process=process,
            stdout=OutputBuffer(buffer_size),
            stderr=OutputBuffer(buffer_size),
        )
        record.handle = handle
        if self._store.get(environment_id) is not record:
            # dispose() cleared the table while the process was being spawned
            raise OperationCancelledError(operation="spawn server")
        if self._task_group is not None:
            self._task_group.start_soon(self._pump_output, handle)

        self._logger.info(
            "Spawned server",
            environment_id=environment_id,
            pid=handle.pid,
            jupyter_port=record.jupyter_port,
            lsp_port=record.lsp_port,
        )
        _ = await self._locks.write(handle.pid)

        info = ServerInfo(
            url=f"http://{self._config.server.url_host}:{record.jupyter_port}",
            jupyter_port=record.jupyter_port,
            lsp_port=record.lsp_port,
        )
        await self._wait_until_healthy(info, handle, interpreter, token)

        record.info = info
        record.state = ServerState.RUNNING
        self._logger.info("Server ready", environment_id=environment_id, url=info.url)
        return info

    async def _wait_until_healthy(
        self,
        info: ServerInfo,
        handle: ServerProcessHandle,
        interpreter: Path,
        token: CancellationToken,
    ) -> None:
        timeout = self._config.server.startup_timeout

        with anyio.move_on_after(timeout):
            while True:
                token.raise_if_cancelled("wait for server")
                if handle.exited:
                    msg = (
                        f"Server process exited with code {handle.process.returncode} "
                        "before becoming ready"
                    )
                    raise ServerStartupError(
                        msg,
                        interpreter_path=interpreter,
                        port=info.jupyter_port,
                        reason=StartupFailureReason.PROCESS_EXITED,
                        stdout=handle.stdout.text,
                        stderr=handle.stderr.text,
                    )
                if await self.is_healthy(info):
                    return
                await anyio.sleep(self._config.server.poll_interval)

        msg = f"Server at {info.url} did not become ready within {timeout:g} seconds"
        raise ServerTimeoutError(
            msg,
            server_url=info.url,
            timeout=timeout,
            last_error=handle.stderr.text,
        )

    async def _build_environment(
        self,
        interpreter: Path,
        venv_path: Path,
        environment_id: str,
        token: CancellationToken,
    ) -> dict[str, str]:
        env = dict(os.environ)
        for name in SHADOWING_VARS:
            _ = env.pop(name, None)

        bin_dir = str(interpreter.parent)
        current_path = env.get("PATH", "")
        env["PATH"] = f"{bin_dir}{os.pathsep}{current_path}" if current_path else bin_dir
        env["VIRTUAL_ENV"] = str(venv_path)
        env[DETACHED_MODE_VAR] = "true"
        env[ENFORCE_CONSTRAINTS_VAR] = "true"

        if self._env_provider is not None:
            try:
                extra = await self._env_provider.get_environment_variables(environment_id, token)
            except OperationCancelledError:
                raise
            except Exception as e:  # noqa: BLE001
                self._logger.warning(
                    "Failed to get integration environment variables",
                    environment_id=environment_id,
                    error=str(e),
                )
            else:
                env.update(extra)

        return env

    # =========================================================================
    # Output
    # =========================================================================

    async def _pump_output(self, handle: ServerProcessHandle) -> None:
        with handle.output_scope:
            async with anyio.create_task_group() as tg:
                if handle.process.stdout is not None:
                    tg.start_soon(self._pump_stream, handle, handle.process.stdout, "stdout")
                if handle.process.stderr is not None:
                    tg.start_soon(self._pump_stream, handle, handle.process.stderr, "stderr")

    async def _pump_stream(
        self,
        handle: ServerProcessHandle,
        stream: AnyByteReceiveStream,
        stream_name: OutputStream,
    ) -> None:
        buffer = handle.stdout if stream_name == "stdout" else handle.stderr
        partial = ""
        try:
            async for chunk in TextReceiveStream(stream, errors="replace"):
                buffer.append(chunk)
                *lines, partial = (partial + chunk).split("\n")
                for line in lines:
                    await self._emit_line(handle, stream_name, line.removesuffix("\r"))
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            # Stream closed, which is expected on process exit
            pass

        # Last line without a trailing newline
        if partial:
            await self._emit_line(handle, stream_name, partial.removesuffix("\r"))

    async def _emit_line(
        self,
        handle: ServerProcessHandle,
        stream_name: OutputStream,
        line: str,
    ) -> None:
        if stream_name == "stderr":
            self._logger.warning("Server stderr", environment_id=handle.environment_id, line=line)
        else:
            self._logger.debug("Server stdout", environment_id=handle.environment_id, line=line)

        if self._output_sink is None:
            return
        try:
            await self._output_sink.write_line(handle.environment_id, handle.pid, stream_name, line)
        except Exception as e:  # noqa: BLE001
            # Output sink errors should not crash streaming
            self._logger.debug("Output sink failed", error=str(e))

    # =========================================================================
    # Stop
    # =========================================================================

    async def _stop(self, environment_id: str) -> None:
        record = self._store.get(environment_id)
        if record is None:
            return
        record.state = ServerState.STOPPING
        await self._teardown(environment_id)
        self._logger.info("Server stopped", environment_id=environment_id)

    async def _teardown(self, environment_id: str, *, failed: bool = False) -> None:
        """Terminate the environment's process and drop every trace of it."""
        record = self._store.get(environment_id)
        if record is not None:
            await self._release(record, failed=failed)

    async def _release(self, record: ServerRecord, *, failed: bool = False) -> None:
        with anyio.CancelScope(shield=True):
            if failed:
                record.state = ServerState.FAILED

            handle = record.handle
            if handle is not None:
                await self._terminate(handle)
                handle.output_scope.cancel()
                await _close_output(handle)
                handle.stdout.clear()
                handle.stderr.clear()
                _ = await self._locks.delete(handle.pid)

            if self._store.get(record.environment_id) is record:
                _ = self._store.remove(record.environment_id)

    async def _terminate(self, handle: ServerProcessHandle) -> None:
        process = handle.process
        grace_period = self._config.server.stop_grace_period
        if process.returncode is not None:
            return

        try:
            process.terminate()
            with anyio.move_on_after(grace_period):
                _ = await process.wait()
                return

            self._logger.warning(
                "Server did not exit after terminate, killing",
                environment_id=handle.environment_id,
                pid=handle.pid,
            )
            process.kill()
            with anyio.move_on_after(grace_period):
                _ = await process.wait()
        except ProcessLookupError:
            # Process already exited
            return
        except OSError as e:
            self._logger.error(
                "Failed to terminate server",
                environment_id=handle.environment_id,
                pid=handle.pid,
                error=str(e),
            )


def _captured_output(record: ServerRecord) -> tuple[str, str]:
    if record.handle is None:
        return "", ""
    return record.handle.stdout.text, record.handle.stderr.text


async def _close_output(handle: ServerProcessHandle) -> None:
    for stream in (handle.process.stdout, handle.process.stderr):
        if stream is None:
            continue
        with suppress(OSError, anyio.BrokenResourceError):
            await stream.aclose()
