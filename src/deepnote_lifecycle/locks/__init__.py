"""Cross-restart ownership records for server processes."""

from ._registry import LockFileRecord, LockFileRegistry

__all__ = ["LockFileRecord", "LockFileRegistry"]
