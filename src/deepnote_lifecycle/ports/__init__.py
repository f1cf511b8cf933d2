"""Port allocation for server processes."""

from ._allocator import PortAllocator
from ._probe import SocketPortProbe

__all__ = ["PortAllocator", "SocketPortProbe"]
