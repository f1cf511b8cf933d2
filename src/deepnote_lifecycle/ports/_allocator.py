"""Serialized allocation of server port pairs."""

from __future__ import annotations

from typing import TYPE_CHECKING, final

import anyio

from deepnote_lifecycle.config import PortConfig
from deepnote_lifecycle.exceptions import PortExhaustionError
from deepnote_lifecycle.utils import create_lifecycle_logger

from ._probe import SocketPortProbe

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

    from deepnote_lifecycle.protocols import PortProbe
    from deepnote_lifecycle.server import ServerStateStore

MAX_PORT = 65535


@final
class PortAllocator:
    """Hands out (jupyter, lsp) port pairs that never overlap.

    All allocations pass through a single lock. Ports held by any server in
    the state store, including servers that have not bound them yet, are
    excluded, and a new pair is recorded in the store before the lock is
    released.
    """

    __slots__ = ("_config", "_lock", "_logger", "_probe", "_store")

    def __init__(
        self,
        store: ServerStateStore,
        *,
        probe: PortProbe | None = None,
        config: PortConfig | None = None,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        """Initialize the allocator.

        Args:
            store: Live server table whose entries hold port reservations.
            probe: OS-level port probe. Defaults to socket binding.
            config: Port settings.
            logger: Logger for allocation events.
        """
        self._config = config or PortConfig()
        self._store = store
        self._probe = probe or SocketPortProbe(self._config.host)
        self._lock = anyio.Lock()
        if logger is None:
            logger = create_lifecycle_logger(component="ports")
        self._logger = logger

    async def allocate_pair(
        self,
        environment_id: str,
        preferred_base: int | None = None,
    ) -> tuple[int, int]:
        """Allocate and reserve a (jupyter, lsp) port pair for an environment.

        Args:
            environment_id: Environment the ports are reserved for.
            preferred_base: First port tried for the Jupyter server.
                Defaults to the configured base.

        Returns:
            The reserved (jupyter_port, lsp_port) pair.

        Raises:
            PortExhaustionError: If no free port is found within the attempt bound.
        """
        base = preferred_base if preferred_base is not None else self._config.jupyter_base

        async with self._lock:
            reserved = self._store.reserved_ports()
            jupyter_port = await self._find_port(base, reserved)
            lsp_port = await self._find_port(jupyter_port + 1, reserved | {jupyter_port})
            self._store.reserve(environment_id, jupyter_port, lsp_port)

        self._logger.info(
            "Allocated ports",
            environment_id=environment_id,
            jupyter_port=jupyter_port,
            lsp_port=lsp_port,
        )
        return jupyter_port, lsp_port

    async def _find_port(self, start: int, excluded: set[int]) -> int:
        candidate = start
        for _ in range(self._config.max_attempts):
            if candidate > MAX_PORT:
                break
            if candidate in excluded:
                candidate += 1
                continue

            suggested = await self._probe.find_free(candidate)
            if suggested == candidate or suggested not in excluded:
                return suggested

            candidate += 1

        msg = (
            f"No free port found starting at {start} after "
            f"{self._config.max_attempts} attempts"
        )
        raise PortExhaustionError(
            msg,
            preferred_base=start,
            excluded=excluded,
            attempts=self._config.max_attempts,
        )
