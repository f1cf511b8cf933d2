"""Detection and cleanup of orphaned server processes."""

from ._inspection import ProcessEntry, ProcessInspector, create_process_inspector
from ._reaper import OrphanCandidate, OrphanReaper, ReapReport
from ._unix import UnixProcessInspector
from ._windows import WindowsProcessInspector

__all__ = [
    "OrphanCandidate",
    "OrphanReaper",
    "ProcessEntry",
    "ProcessInspector",
    "ReapReport",
    "UnixProcessInspector",
    "WindowsProcessInspector",
    "create_process_inspector",
]
