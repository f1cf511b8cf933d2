"""File-based ownership records for spawned server processes.

Each spawned server gets one JSON file named after its process id in a
directory shared by every host process on the machine. The session id in
the file tells a later session whether the process belongs to a live host
(same session) or to one that may have exited (different session).

The records are a best-effort oracle for orphan detection, not a lock:
none of the operations here raise, failures are logged.
"""

from __future__ import annotations

import uuid
from pathlib import Path
from typing import TYPE_CHECKING, ClassVar, final

import anyio
import pendulum
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from deepnote_lifecycle.utils import (
    create_lifecycle_logger,
    default_lock_dir,
    dump_json,
    load_json,
    lock_file_path,
    pid_from_lock_file,
)

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger


class LockFileRecord(BaseModel):
    """Persisted ownership record.

    Attributes:
        session_id: Session of the host process that spawned the server.
        pid: OS process id of the server.
        timestamp: Creation time in epoch milliseconds.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(
        frozen=True, extra="ignore", populate_by_name=True
    )

    session_id: str = Field(alias="sessionId")
    pid: int
    timestamp: int


def _epoch_ms() -> int:
    return int(pendulum.now("UTC").float_timestamp * 1000)


@final
class LockFileRegistry:
    """Reads and writes lock files for the current session."""

    __slots__ = ("_directory", "_logger", "_session_id")

    def __init__(
        self,
        directory: Path | None = None,
        *,
        session_id: str | None = None,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        """Initialize the registry.

        Args:
            directory: Lock file directory. Defaults to the shared temp location.
            session_id: Session identifier. A random UUID is generated when
                omitted; one registry should exist per host process.
            logger: Logger for lock file failures.
        """
        self._directory = directory or default_lock_dir()
        self._session_id = session_id or str(uuid.uuid4())
        if logger is None:
            logger = create_lifecycle_logger(component="locks")
        self._logger = logger

    @property
    def session_id(self) -> str:
        """Return the session id written into this registry's lock files."""
        return self._session_id

    @property
    def directory(self) -> Path:
        """Return the lock file directory."""
        return self._directory

    def path_for(self, pid: int) -> Path:
        """Return the lock file path for a process id."""
        return lock_file_path(self._directory, pid)

    def is_current_session(self, record: LockFileRecord) -> bool:
        """Return True if ``record`` was written by this session."""
        return record.session_id == self._session_id

    async def write(self, pid: int) -> LockFileRecord | None:
        """Write the lock file for a process spawned by this session.

        Returns:
            The written record, or None if writing failed.
        """
        record = LockFileRecord(session_id=self._session_id, pid=pid, timestamp=_epoch_ms())
        path = anyio.Path(self.path_for(pid))
        try:
            await path.parent.mkdir(parents=True, exist_ok=True)
            await path.write_bytes(dump_json(record.model_dump(by_alias=True)))
        except OSError as e:
            self._logger.warning("Failed to write lock file", pid=pid, path=str(path), error=str(e))
            return None

        self._logger.debug("Wrote lock file", pid=pid, path=str(path))
        return record

    async def read(self, pid: int) -> LockFileRecord | None:
        """Read the lock file for a process id.

        Returns:
            The record, or None if the file is missing or unreadable.
        """
        path = anyio.Path(self.path_for(pid))
        try:
            raw = await path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            self._logger.warning("Failed to read lock file", pid=pid, path=str(path), error=str(e))
            return None

        data = load_json(raw)
        if not isinstance(data, dict):
            self._logger.warning("Lock file is not a JSON object", pid=pid, path=str(path))
            return None

        try:
            return LockFileRecord.model_validate(data)
        except ValidationError as e:
            self._logger.warning("Invalid lock file", pid=pid, path=str(path), error=str(e))
            return None

    async def delete(self, pid: int) -> bool:
        """Delete the lock file for a process id.

        Returns:
            True if a file was deleted.
        """
        path = anyio.Path(self.path_for(pid))
        try:
            await path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            self._logger.warning("Failed to delete lock file", pid=pid, path=str(path), error=str(e))
            return False

        self._logger.debug("Deleted lock file", pid=pid, path=str(path))
        return True

    async def list_pids(self) -> list[int]:
        """Return the process ids that currently have a lock file."""
        directory = anyio.Path(self._directory)
        pids: list[int] = []
        try:
            async for entry in directory.iterdir():
                pid = pid_from_lock_file(Path(entry))
                if pid is not None:
                    pids.append(pid)
        except FileNotFoundError:
            return []
        except OSError as e:
            self._logger.warning("Failed to list lock files", path=str(directory), error=str(e))
        return sorted(pids)
