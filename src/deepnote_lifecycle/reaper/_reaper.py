"""Detection and cleanup of orphaned Deepnote server processes.

A process is killed only if all of the following hold:
- its command line carries a toolkit or managed-venv marker
- it has no lock file written by the current session
- its parent is the init process or no longer exists

Any uncertainty along the way (a command that cannot be run, an unreadable
command line or parent pid) leaves the process alone.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, final

import anyio

from deepnote_lifecycle.config import PortConfig, ReaperConfig
from deepnote_lifecycle.utils import create_lifecycle_logger

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

    from deepnote_lifecycle.locks import LockFileRegistry

    from ._inspection import ProcessInspector

_EXIT_POLL_INTERVAL = 0.1


@dataclass(frozen=True, slots=True)
class OrphanCandidate:
    """A process the reaper decided to kill.

    Attributes:
        pid: OS process id.
        command_line: Command line that matched a marker.
        source: How the process was found ("port 8888", "process scan").
        lock_session_id: Session id of its lock file, if it has one.
    """

    pid: int
    command_line: str
    source: str
    lock_session_id: str | None = None


@dataclass(slots=True)
class ReapReport:
    """Outcome of one cleanup pass."""

    killed: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)
    stale_locks_removed: list[int] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@final
class OrphanReaper:
    """Finds and kills Deepnote processes left behind by earlier sessions."""

    __slots__ = (
        "_config",
        "_inspector",
        "_logger",
        "_ports",
        "_protected_pids",
        "_registry",
    )

    def __init__(  # noqa: PLR0913
        self,
        inspector: ProcessInspector,
        registry: LockFileRegistry,
        *,
        config: ReaperConfig | None = None,
        ports: PortConfig | None = None,
        logger: FilteringBoundLogger | None = None,
        protected_pids: frozenset[int] | None = None,
    ) -> None:
        """Initialize the reaper.

        Args:
            inspector: OS process queries and signals.
            registry: Lock file registry of the current session.
            config: Reaper settings.
            ports: Port settings, used for the well-known ports to scan.
            logger: Logger for cleanup progress and failures.
            protected_pids: Pids never to kill. Defaults to this process and its parent.
        """
        self._inspector = inspector
        self._registry = registry
        self._config = config or ReaperConfig()
        self._ports = ports or PortConfig()
        if protected_pids is None:
            protected_pids = frozenset({os.getpid(), os.getppid()})
        self._protected_pids = protected_pids
        if logger is None:
            logger = create_lifecycle_logger(component="reaper")
        self._logger = logger

    def well_known_ports(self) -> list[int]:
        """Return the LSP port followed by the scanned Jupyter port range."""
        base = self._ports.jupyter_base
        ports = [self._ports.lsp_port]
        ports.extend(port for port in range(base, base + self._ports.scan_range) if port not in ports)
        return ports

    def is_deepnote_related(self, command_line: str) -> bool:
        """Return True if a command line carries a toolkit or venv marker."""
        markers = (*self._config.toolkit_markers, *self._config.venv_markers)
        return any(marker in command_line for marker in markers)

    async def is_orphaned(self, pid: int) -> bool:
        """Return True only if the process's parent is init or gone."""
        try:
            ppid = await self._inspector.get_parent_pid(pid)
            if ppid is None:
                return False
            if ppid in self._inspector.init_pids:
                return True
            return not await self._inspector.is_alive(ppid)
        except (OSError, TimeoutError) as e:
            self._logger.debug("Could not determine parent process", pid=pid, error=str(e))
            return False

    async def find_orphans(self) -> list[OrphanCandidate]:
        """Return the processes a cleanup pass would kill, without killing them."""
        candidates: dict[int, OrphanCandidate] = {}
        seen: set[int] = set(self._protected_pids)

        for port in self.well_known_ports():
            try:
                pids = await self._inspector.find_listening_pids(port)
            except (OSError, TimeoutError) as e:
                self._logger.warning("Failed to list port listeners", port=port, error=str(e))
                continue

            for pid in pids:
                if pid in seen:
                    continue
                seen.add(pid)
                try:
                    command_line = await self._inspector.get_command_line(pid)
                except (OSError, TimeoutError) as e:
                    self._logger.debug("Could not read command line", pid=pid, error=str(e))
                    continue
                if command_line is None:
                    continue
                candidate = await self._evaluate(pid, command_line, f"port {port}")
                if candidate is not None:
                    candidates[pid] = candidate

        try:
            processes = await self._inspector.list_processes()
        except (OSError, TimeoutError) as e:
            self._logger.warning("Failed to list processes", error=str(e))
            processes = []

        for entry in processes:
            if entry.pid in seen:
                continue
            seen.add(entry.pid)
            candidate = await self._evaluate(entry.pid, entry.command_line, "process scan")
            if candidate is not None:
                candidates[entry.pid] = candidate

        return list(candidates.values())

    async def cleanup_on_activation(self) -> ReapReport:
        """Remove stale lock files and kill orphaned processes.

        Never raises; failures are logged and recorded in the report.
        """
        report = ReapReport()
        try:
            await self._remove_stale_locks(report)
            orphans = await self.find_orphans()
        except Exception as e:  # noqa: BLE001
            self._logger.error("Orphan cleanup failed", error=str(e))
            report.errors.append(str(e))
            return report

        for orphan in orphans:
            try:
                killed = await self._terminate(orphan.pid)
            except Exception as e:  # noqa: BLE001
                self._logger.error("Failed to kill orphaned process", pid=orphan.pid, error=str(e))
                report.errors.append(f"{orphan.pid}: {e}")
                killed = False

            if killed:
                report.killed.append(orphan.pid)
                _ = await self._registry.delete(orphan.pid)
                self._logger.info(
                    "Killed orphaned process",
                    pid=orphan.pid,
                    source=orphan.source,
                    command_line=orphan.command_line,
                )
            else:
                report.failed.append(orphan.pid)

        if report.killed or report.stale_locks_removed:
            self._logger.info(
                "Orphan cleanup finished",
                killed=len(report.killed),
                failed=len(report.failed),
                stale_locks_removed=len(report.stale_locks_removed),
            )
        return report

    async def _evaluate(self, pid: int, command_line: str, source: str) -> OrphanCandidate | None:
        if not self.is_deepnote_related(command_line):
            return None

        record = await self._registry.read(pid)
        if record is not None and self._registry.is_current_session(record):
            return None

        if not await self.is_orphaned(pid):
            return None

        return OrphanCandidate(
            pid=pid,
            command_line=command_line,
            source=source,
            lock_session_id=record.session_id if record is not None else None,
        )

    async def _remove_stale_locks(self, report: ReapReport) -> None:
        for pid in await self._registry.list_pids():
            try:
                alive = await self._inspector.is_alive(pid)
            except (OSError, TimeoutError) as e:
                self._logger.debug("Could not check lock file owner", pid=pid, error=str(e))
                continue
            if not alive and await self._registry.delete(pid):
                report.stale_locks_removed.append(pid)

    async def _terminate(self, pid: int) -> bool:
        if not await self._inspector.kill(pid):
            return not await self._inspector.is_alive(pid)

        with anyio.move_on_after(self._config.kill_grace_period):
            while await self._inspector.is_alive(pid):
                await anyio.sleep(_EXIT_POLL_INTERVAL)
            return True

        self._logger.warning("Process ignored termination, killing", pid=pid)
        return await self._inspector.kill(pid, force=True)
