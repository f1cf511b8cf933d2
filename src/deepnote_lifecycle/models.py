"""Core data types shared across the lifecycle components."""

from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path  # noqa: TC003 - Used in runtime type annotations

import pendulum


class EnvironmentStatus(StrEnum):
    """Coarse status of an environment as shown to users."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class Environment:
    """A named interpreter, venv and package set that can run one server.

    Environments are owned by an external registry. The lifecycle core only
    reads them.

    Attributes:
        id: Opaque environment identifier.
        name: Display name.
        base_interpreter: Interpreter used to create the venv.
        venv_path: Directory of the environment's virtual environment.
        packages: Extra packages installed after the toolkit.
        created_at: Creation time.
        last_used_at: Last time a server was started for the environment.
        toolkit_version: Toolkit version once installed.
    """

    id: str
    name: str
    base_interpreter: Path
    venv_path: Path
    packages: tuple[str, ...] = ()
    created_at: pendulum.DateTime = field(default_factory=lambda: pendulum.now("UTC"))
    last_used_at: pendulum.DateTime = field(
        default_factory=lambda: pendulum.now("UTC")
    )
    toolkit_version: str | None = None


@dataclass(frozen=True, slots=True)
class ServerInfo:
    """Connection details of a healthy server.

    A restart produces a new instance; existing instances are never mutated.
    """

    url: str
    jupyter_port: int
    lsp_port: int
    token: str | None = None


@dataclass(frozen=True, slots=True)
class InstallResult:
    """Outcome of a successful venv and toolkit installation."""

    interpreter_path: Path
    toolkit_version: str


@dataclass(frozen=True, slots=True)
class ExecResult:
    """Captured result of a short-lived subprocess.

    Attributes:
        exit_code: Process exit code.
        stdout: Decoded standard output.
        stderr: Decoded standard error.
    """

    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        """Return True if the process exited with status 0."""
        return self.exit_code == 0
