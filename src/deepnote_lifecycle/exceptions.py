"""Deepnote lifecycle exceptions."""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path


class LifecycleError(Exception):
    """Base exception for environment and server lifecycle errors."""


# =============================================================================
# Configuration Exceptions
# =============================================================================


class ConfigError(LifecycleError):
    """Base exception for configuration errors."""


class ConfigLoadError(ConfigError):
    """Raised when configuration cannot be loaded or parsed."""

    def __init__(
        self,
        message: str,
        *,
        path: Path | None = None,
        line: int | None = None,
        column: int | None = None,
    ) -> None:
        """Initialize with error message and optional location context."""
        super().__init__(message)
        self.path: Path | None = path
        self.line: int | None = line
        self.column: int | None = column


class ConfigValidationError(ConfigError):
    """Raised when configuration fails validation."""

    def __init__(
        self,
        message: str,
        *,
        key: str,
        value: Any,  # pyright: ignore[reportAny,reportExplicitAny]
        expected: str,
    ) -> None:
        """Initialize with error message and validation context."""
        super().__init__(message)
        self.key: str = key
        self.value: Any = value  # pyright: ignore[reportExplicitAny]
        self.expected: str = expected


# =============================================================================
# Installation Exceptions
# =============================================================================


class InstallError(LifecycleError):
    """Base exception for virtual environment and package installation."""


class PythonNotFoundError(InstallError):
    """Raised when the base interpreter used to create a venv does not exist."""

    def __init__(self, message: str, *, attempted_path: Path | None = None) -> None:
        """Initialize with the interpreter path that was tried."""
        super().__init__(message)
        self.attempted_path: Path | None = attempted_path


class VenvCreationError(InstallError):
    """Raised when `python -m venv` fails or leaves no interpreter behind."""

    def __init__(
        self,
        message: str,
        *,
        interpreter_path: Path,
        venv_path: Path,
        stderr: str = "",
        cause: Exception | None = None,
    ) -> None:
        """Initialize with interpreter, target path and captured stderr."""
        super().__init__(message)
        self.interpreter_path: Path = interpreter_path
        self.venv_path: Path = venv_path
        self.stderr: str = stderr
        self.cause: Exception | None = cause


class ToolkitInstallError(InstallError):
    """Raised when the toolkit could not be installed or verified."""

    def __init__(  # noqa: PLR0913
        self,
        message: str,
        *,
        interpreter_path: Path,
        venv_path: Path,
        package_source: str,
        stdout: str = "",
        stderr: str = "",
        cause: Exception | None = None,
    ) -> None:
        """Initialize with install context and captured output."""
        super().__init__(message)
        self.interpreter_path: Path = interpreter_path
        self.venv_path: Path = venv_path
        self.package_source: str = package_source
        self.stdout: str = stdout
        self.stderr: str = stderr
        self.cause: Exception | None = cause


class VenvNotFoundError(InstallError):
    """Raised when an operation needs a venv interpreter that does not exist."""

    def __init__(self, message: str, *, venv_path: Path) -> None:
        """Initialize with the missing venv path."""
        super().__init__(message)
        self.venv_path: Path = venv_path


class PackageInstallError(InstallError):
    """Raised when installing additional user packages fails."""

    def __init__(
        self,
        message: str,
        *,
        venv_path: Path,
        packages: Sequence[str],
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        """Initialize with the requested packages and captured output."""
        super().__init__(message)
        self.venv_path: Path = venv_path
        self.packages: tuple[str, ...] = tuple(packages)
        self.stdout: str = stdout
        self.stderr: str = stderr


# =============================================================================
# Server Exceptions
# =============================================================================


class StartupFailureReason(StrEnum):
    """Why a server start did not reach the running state."""

    PROCESS_FAILED = "process_failed"
    PROCESS_EXITED = "process_exited"
    HEALTH_CHECK_FAILED = "health_check_failed"
    UNKNOWN = "unknown"


class ServerError(LifecycleError):
    """Base exception for server lifecycle errors."""


class ServerStartupError(ServerError):
    """Raised when a server could not be started."""

    def __init__(  # noqa: PLR0913
        self,
        message: str,
        *,
        interpreter_path: Path,
        port: int,
        reason: StartupFailureReason = StartupFailureReason.UNKNOWN,
        stdout: str = "",
        stderr: str = "",
        cause: BaseException | None = None,
    ) -> None:
        """Initialize with startup context and captured output."""
        super().__init__(message)
        self.interpreter_path: Path = interpreter_path
        self.port: int = port
        self.reason: StartupFailureReason = reason
        self.stdout: str = stdout
        self.stderr: str = stderr
        self.cause: BaseException | None = cause


class ServerTimeoutError(ServerError):
    """Raised when a spawned server never answers its health check in time."""

    def __init__(
        self,
        message: str,
        *,
        server_url: str,
        timeout: float,
        last_error: str = "",
    ) -> None:
        """Initialize with the probed URL, timeout in seconds and last stderr."""
        super().__init__(message)
        self.server_url: str = server_url
        self.timeout: float = timeout
        self.last_error: str = last_error


class PortExhaustionError(ServerError):
    """Raised when no free port could be found within the attempt bound."""

    def __init__(
        self,
        message: str,
        *,
        preferred_base: int,
        excluded: Sequence[int],
        attempts: int,
    ) -> None:
        """Initialize with the search start and the ports that were skipped."""
        super().__init__(message)
        self.preferred_base: int = preferred_base
        self.excluded: tuple[int, ...] = tuple(sorted(excluded))
        self.attempts: int = attempts


class OperationCancelledError(LifecycleError):
    """Raised at a checkpoint when the caller cancelled the operation."""

    def __init__(self, message: str = "", *, operation: str = "") -> None:
        """Initialize with the name of the interrupted operation."""
        super().__init__(message or f"Operation cancelled: {operation}")
        self.operation: str = operation
