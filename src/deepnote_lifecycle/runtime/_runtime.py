"""Composition root wiring the lifecycle components together."""

from __future__ import annotations

from contextlib import AsyncExitStack
from pathlib import Path
from typing import TYPE_CHECKING, Self, final

import anyio

from deepnote_lifecycle.config import LifecycleConfig
from deepnote_lifecycle.locks import LockFileRegistry
from deepnote_lifecycle.pending import PendingOperations
from deepnote_lifecycle.ports import PortAllocator, SocketPortProbe
from deepnote_lifecycle.reaper import OrphanReaper, create_process_inspector
from deepnote_lifecycle.server import HttpxProbe, ServerLifecycleManager, ServerStateStore
from deepnote_lifecycle.utils import AnyioProcessRunner, create_logger_from_config
from deepnote_lifecycle.venv import VenvInstaller

from ._controller import EnvironmentController

if TYPE_CHECKING:
    from types import TracebackType

    from anyio.abc import TaskGroup
    from structlog.typing import FilteringBoundLogger

    from deepnote_lifecycle.protocols import (
        HttpProbe,
        IntegrationEnvVarsProvider,
        OutputSink,
        PortProbe,
        ProcessRunner,
    )
    from deepnote_lifecycle.reaper import ProcessInspector, ReapReport


@final
class DeepnoteRuntime:
    """One instance per host process, owning every lifecycle component.

    Entering the runtime starts the lifecycle manager and launches an orphan
    cleanup pass in the background. Leaving it waits a bounded time for that
    pass, then disposes every server.

    Attributes:
        config: Loaded configuration.
        logger: Root logger for the runtime.
        locks: Lock file registry of this session.
        store: Live-server table.
        installer: Venv and toolkit installer.
        manager: Server lifecycle manager.
        reaper: Orphan reaper.
        controller: Environment-level orchestration.
    """

    __slots__ = (
        "_exit_stack",
        "_reap_done",
        "_reap_report",
        "_task_group",
        "config",
        "controller",
        "installer",
        "locks",
        "logger",
        "manager",
        "reaper",
        "store",
    )

    def __init__(  # noqa: PLR0913
        self,
        config: LifecycleConfig | None = None,
        *,
        runner: ProcessRunner | None = None,
        probe: HttpProbe | None = None,
        port_probe: PortProbe | None = None,
        inspector: ProcessInspector | None = None,
        env_provider: IntegrationEnvVarsProvider | None = None,
        output_sink: OutputSink | None = None,
        logger: FilteringBoundLogger | None = None,
        session_id: str | None = None,
    ) -> None:
        self.config = config or LifecycleConfig()
        if logger is None:
            logger = create_logger_from_config(self.config.logging)
        self.logger = logger
        runner = runner or AnyioProcessRunner()

        lock_dir = Path(self.config.locks.directory) if self.config.locks.directory else None
        self.locks = LockFileRegistry(
            lock_dir, session_id=session_id, logger=logger.bind(component="locks")
        )
        self.store = ServerStateStore()
        pending = PendingOperations()
        self.installer = VenvInstaller(
            runner,
            config=self.config.toolkit,
            pending=pending,
            logger=logger.bind(component="venv"),
        )
        ports = PortAllocator(
            self.store,
            probe=port_probe or SocketPortProbe(self.config.ports.host),
            config=self.config.ports,
            logger=logger.bind(component="ports"),
        )
        self.manager = ServerLifecycleManager(
            runner,
            self.installer,
            self.locks,
            config=self.config,
            store=self.store,
            ports=ports,
            probe=probe or HttpxProbe(timeout=self.config.server.probe_timeout),
            env_provider=env_provider,
            output_sink=output_sink,
            pending=pending,
            logger=logger.bind(component="server"),
        )
        self.reaper = OrphanReaper(
            inspector or create_process_inspector(runner),
            self.locks,
            config=self.config.reaper,
            ports=self.config.ports,
            logger=logger.bind(component="reaper"),
        )
        self.controller = EnvironmentController(
            self.installer, self.manager, logger=logger.bind(component="environments")
        )
        self._task_group: TaskGroup | None = None
        self._exit_stack: AsyncExitStack | None = None
        self._reap_done: anyio.Event | None = None
        self._reap_report: ReapReport | None = None

    @property
    def reap_report(self) -> ReapReport | None:
        """Return the report of the startup cleanup pass once it finished."""
        return self._reap_report

    async def __aenter__(self) -> Self:
        async with AsyncExitStack() as stack:
            _ = await stack.enter_async_context(self.manager)
            self._task_group = await stack.enter_async_context(anyio.create_task_group())
            stack.push_async_callback(self._join_background)
            if self.config.reaper.enabled:
                self._reap_done = anyio.Event()
                self._task_group.start_soon(self._reap_in_background, self._reap_done)
            self._exit_stack = stack.pop_all()
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

    async def _reap_in_background(self, done: anyio.Event) -> None:
        try:
            self._reap_report = await self.reaper.cleanup_on_activation()
        finally:
            done.set()

    async def _join_background(self) -> None:
        if self._reap_done is not None:
            with anyio.CancelScope(shield=True), anyio.move_on_after(
                self.config.reaper.join_timeout
            ) as scope:
                await self._reap_done.wait()
            if scope.cancelled_caught:
                self.logger.warning("Orphan cleanup still running at shutdown, cancelling")
        if self._task_group is not None:
            self._task_group.cancel_scope.cancel()
            self._task_group = None
