"""Process inspection on Windows."""

from __future__ import annotations

from typing import TYPE_CHECKING, final

from deepnote_lifecycle.utils import load_json

from ._inspection import INSPECTION_TIMEOUT, ProcessEntry

if TYPE_CHECKING:
    from deepnote_lifecycle.protocols import ProcessRunner

_CIM_SELECT = "Select-Object ProcessId,ParentProcessId,CommandLine | ConvertTo-Json -Compress"


def parse_netstat_listeners(output: str, port: int) -> list[int]:
    """Parse `netstat -ano` output for pids listening on ``port``."""
    pids: set[int] = set()
    for line in output.splitlines():
        parts = line.split()
        # Proto  Local Address  Foreign Address  State  PID
        if len(parts) != 5 or parts[0].upper() != "TCP":
            continue
        local_address, state, raw_pid = parts[1], parts[3], parts[4]
        if state.upper() != "LISTENING" or not raw_pid.isdigit():
            continue
        if local_address.rsplit(":", 1)[-1] == str(port):
            pids.add(int(raw_pid))
    return sorted(pids)


def parse_cim_processes(output: str) -> list[ProcessEntry]:
    """Parse `Get-CimInstance Win32_Process | ConvertTo-Json` output.

    PowerShell emits a bare object instead of a list for a single result.
    """
    data = load_json(output) if output.strip() else None
    rows = [data] if isinstance(data, dict) else data or []

    entries: list[ProcessEntry] = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        pid = row.get("ProcessId")
        ppid = row.get("ParentProcessId")
        if not isinstance(pid, int):
            continue
        command_line = row.get("CommandLine")
        entries.append(
            ProcessEntry(
                pid=pid,
                ppid=ppid if isinstance(ppid, int) else None,
                command_line=command_line if isinstance(command_line, str) else "",
            )
        )
    return entries


@final
class WindowsProcessInspector:
    """ProcessInspector for Windows."""

    __slots__ = ("_runner",)

    def __init__(self, runner: ProcessRunner) -> None:
        self._runner = runner

    @property
    def init_pids(self) -> frozenset[int]:
        """Return the pids an orphaned process gets re-parented to."""
        return frozenset({0})

    async def _powershell(self, script: str) -> str:
        result = await self._runner.exec_once(
            ["powershell", "-NoProfile", "-NonInteractive", "-Command", script],
            timeout=INSPECTION_TIMEOUT,
        )
        return result.stdout if result.ok else ""

    async def _query_process(self, pid: int) -> ProcessEntry | None:
        output = await self._powershell(
            f'Get-CimInstance Win32_Process -Filter "ProcessId={pid}" | {_CIM_SELECT}'
        )
        entries = parse_cim_processes(output)
        return entries[0] if entries else None

    async def find_listening_pids(self, port: int) -> list[int]:
        """Return the pids listening on a local TCP port."""
        result = await self._runner.exec_once(
            ["netstat", "-ano", "-p", "tcp"], timeout=INSPECTION_TIMEOUT
        )
        return parse_netstat_listeners(result.stdout, port) if result.ok else []

    async def get_command_line(self, pid: int) -> str | None:
        """Return the full command line of a process, or None if unknown."""
        entry = await self._query_process(pid)
        if entry is None or not entry.command_line:
            return None
        return entry.command_line

    async def get_parent_pid(self, pid: int) -> int | None:
        """Return the parent pid of a process, or None if unknown."""
        entry = await self._query_process(pid)
        return entry.ppid if entry is not None else None

    async def is_alive(self, pid: int) -> bool:
        """Return True if a process with this pid exists."""
        result = await self._runner.exec_once(
            ["tasklist", "/FI", f"PID eq {pid}", "/NH", "/FO", "CSV"],
            timeout=INSPECTION_TIMEOUT,
        )
        return f'"{pid}"' in result.stdout

    async def list_processes(self) -> list[ProcessEntry]:
        """Return every process visible to the current user."""
        return parse_cim_processes(
            await self._powershell(f"Get-CimInstance Win32_Process | {_CIM_SELECT}")
        )

    async def kill(self, pid: int, *, force: bool = False) -> bool:
        """Run taskkill, adding /T /F when ``force`` is set."""
        command = ["taskkill", "/PID", str(pid)]
        if force:
            command.extend(["/T", "/F"])
        result = await self._runner.exec_once(command, timeout=INSPECTION_TIMEOUT)
        return result.ok
