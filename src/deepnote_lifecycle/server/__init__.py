"""Per-environment server lifecycle management."""

from ._health import HttpxProbe
from ._manager import (
    DETACHED_MODE_VAR,
    ENFORCE_CONSTRAINTS_VAR,
    ServerLifecycleManager,
)
from ._models import (
    OutputBuffer,
    ServerProcessHandle,
    ServerRecord,
    ServerState,
)
from ._output import ConsoleOutputSink
from ._state import ServerStateStore

__all__ = [
    "DETACHED_MODE_VAR",
    "ENFORCE_CONSTRAINTS_VAR",
    "ConsoleOutputSink",
    "HttpxProbe",
    "OutputBuffer",
    "ServerLifecycleManager",
    "ServerProcessHandle",
    "ServerRecord",
    "ServerState",
    "ServerStateStore",
]
