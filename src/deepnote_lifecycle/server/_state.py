"""Live-server table."""

from __future__ import annotations

from typing import TYPE_CHECKING, final

from ._models import ServerRecord, ServerState

if TYPE_CHECKING:
    from collections.abc import Iterator


@final
class ServerStateStore:
    """Per-environment server records owned by one lifecycle manager.

    Mutations are serialized by the manager's pending-operation table and,
    for reservations, by the port allocator's lock.
    """

    __slots__ = ("_records",)

    def __init__(self) -> None:
        self._records: dict[str, ServerRecord] = {}

    def __contains__(self, environment_id: object) -> bool:
        return environment_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[ServerRecord]:
        return iter(list(self._records.values()))

    def get(self, environment_id: str) -> ServerRecord | None:
        """Return the record for an environment, if tracked."""
        return self._records.get(environment_id)

    def reserve(self, environment_id: str, jupyter_port: int, lsp_port: int) -> ServerRecord:
        """Create the record for an environment that is starting.

        Any previous record for the environment is replaced.
        """
        record = ServerRecord(
            environment_id=environment_id,
            jupyter_port=jupyter_port,
            lsp_port=lsp_port,
            state=ServerState.STARTING,
        )
        self._records[environment_id] = record
        return record

    def reserved_ports(self) -> set[int]:
        """Return every port held by a tracked server."""
        ports: set[int] = set()
        for record in self._records.values():
            ports.update(record.ports)
        return ports

    def remove(self, environment_id: str) -> ServerRecord | None:
        """Stop tracking an environment and return its last record."""
        return self._records.pop(environment_id, None)

    def clear(self) -> None:
        """Drop every record."""
        self._records.clear()
