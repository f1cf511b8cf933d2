"""Per-key serialization of in-flight operations.

At most one operation runs per key. A caller arriving while an operation is
in flight waits for it to settle before running its own, or, when it asks
for coalescing and the in-flight operation is of the same kind, reuses that
operation's result. A failed operation is never reused: the waiter observes
the failure and runs again.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, TypeVar, cast, final

import anyio

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")


@dataclass(slots=True)
class _Operation:
    kind: str
    done: anyio.Event = field(default_factory=anyio.Event)
    result: object = None
    failed: bool = False


@final
class PendingOperations:
    """Table of in-flight operations keyed by environment id or venv path."""

    __slots__ = ("_operations",)

    def __init__(self) -> None:
        self._operations: dict[str, _Operation] = {}

    def __contains__(self, key: object) -> bool:
        return key in self._operations

    def __len__(self) -> int:
        return len(self._operations)

    def kind(self, key: str) -> str | None:
        """Return the kind of the operation in flight for ``key``, if any."""
        operation = self._operations.get(key)
        return operation.kind if operation is not None else None

    async def run(
        self,
        key: str,
        kind: str,
        func: Callable[[], Awaitable[T]],
        *,
        coalesce: bool = False,
    ) -> T:
        """Run ``func`` once no other operation for ``key`` is in flight.

        Args:
            key: Serialization key.
            kind: Operation kind, such as "start" or "install".
            func: Zero-argument coroutine function performing the operation.
            coalesce: Reuse the result of an in-flight operation of the same
                kind instead of running ``func`` again, provided it succeeded.

        Returns:
            The result of ``func`` or of the coalesced operation.
        """
        while (current := self._operations.get(key)) is not None:
            await current.done.wait()
            if coalesce and current.kind == kind and not current.failed:
                return cast("T", current.result)

        # No checkpoint between the loop exit and registration.
        operation = _Operation(kind=kind)
        self._operations[key] = operation
        try:
            result = await func()
        except BaseException:
            operation.failed = True
            raise
        else:
            operation.result = result
            return result
        finally:
            if self._operations.get(key) is operation:
                del self._operations[key]
            operation.done.set()

    async def wait_all(self, timeout: float) -> bool:
        """Wait for every in-flight operation to settle.

        Args:
            timeout: Upper bound in seconds.

        Returns:
            True if all operations settled, False if the timeout elapsed.
        """
        with anyio.move_on_after(timeout):
            while self._operations:
                operation = next(iter(self._operations.values()))
                await operation.done.wait()
            return True
        return False
