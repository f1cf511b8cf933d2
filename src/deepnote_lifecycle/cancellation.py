"""Cooperative cancellation for long-running lifecycle operations."""

from typing import final

from deepnote_lifecycle.exceptions import OperationCancelledError


@final
class CancellationToken:
    """A flag checked by install and start operations at step boundaries.

    Cancellation through the token is cooperative: an operation only stops at
    its next checkpoint. Host code that owns an anyio cancel scope may cancel
    that scope instead; both paths tear down spawned processes.
    """

    __slots__ = ("_cancelled",)

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def is_cancelled(self) -> bool:
        """Return True once cancel() has been called."""
        return self._cancelled

    def cancel(self) -> None:
        """Request cancellation."""
        self._cancelled = True

    def raise_if_cancelled(self, operation: str = "") -> None:
        """Raise if cancellation was requested.

        Args:
            operation: Name of the step about to run, used in the error.

        Raises:
            OperationCancelledError: If the token was cancelled.
        """
        if self._cancelled:
            raise OperationCancelledError(operation=operation)
