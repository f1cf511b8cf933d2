"""User-facing diagnostics for lifecycle errors.

Errors carry only diagnostic data. This module maps each error variant to
the fields a UI needs to present it: a short message, technical details and
an ordered list of troubleshooting steps tailored to the failure signature
found in captured output.
"""

from __future__ import annotations

from dataclasses import dataclass

from deepnote_lifecycle.exceptions import (
    OperationCancelledError,
    PackageInstallError,
    PortExhaustionError,
    PythonNotFoundError,
    ServerStartupError,
    ServerTimeoutError,
    ToolkitInstallError,
    VenvCreationError,
    VenvNotFoundError,
)

REPORT_HEADER = "=== Deepnote Kernel Error Report ==="

_NETWORK_SIGNATURES = (
    "could not find a version",
    "connection",
    "timeout",
    "ssl",
    "certificate",
)
_PERMISSION_SIGNATURES = ("permission denied", "access is denied")
_DEPENDENCY_SIGNATURES = (
    "no matching distribution",
    "could not find a version that satisfies",
)
_MISSING_MODULE_SIGNATURES = ("no module named", "modulenotfounderror", "importerror")

_RELOAD_STEP = "Reload the editor window to restart the Deepnote environment"
_REPORT_STEP = "If the issue persists, report it with the error details"


@dataclass(frozen=True, slots=True)
class ErrorPresentation:
    """Presentation fields for a lifecycle error.

    Attributes:
        kind: Stable name of the error variant.
        user_message: One-line message suitable for a notification.
        technical_details: Multi-line details including captured output.
        troubleshooting: Ordered troubleshooting steps, most specific first.
    """

    kind: str
    user_message: str
    technical_details: str
    troubleshooting: tuple[str, ...]


def _contains_any(text: str, signatures: tuple[str, ...]) -> bool:
    lowered = text.lower()
    return any(signature in lowered for signature in signatures)


def _is_port_in_use(stderr: str) -> bool:
    lowered = stderr.lower()
    return "address already in use" in lowered or (
        "port" in lowered and "in use" in lowered
    )


def _join_details(*parts: str) -> str:
    return "\n".join(part for part in parts if part)


def _cause_line(cause: BaseException | None) -> str:
    return f"Underlying error: {cause}" if cause is not None else ""


def _stderr_block(stderr: str, label: str = "Error output") -> str:
    return f"{label}:\n{stderr}" if stderr else "No error output available"


def _present_venv_creation(error: VenvCreationError) -> ErrorPresentation:
    return ErrorPresentation(
        kind="venv_creation",
        user_message="Failed to create virtual environment for Deepnote toolkit",
        technical_details=_join_details(
            f"Python interpreter: {error.interpreter_path}",
            f"Target venv path: {error.venv_path}",
            _stderr_block(error.stderr),
            _cause_line(error.cause),
        ),
        troubleshooting=(
            "Ensure Python is correctly installed and accessible",
            'Check that the interpreter has the "venv" module '
            "(try: python -m venv --help)",
            "Verify you have write permissions to the venv directory",
            "Check available disk space",
            "Try selecting a different Python interpreter",
        ),
    )


def _present_toolkit_install(error: ToolkitInstallError) -> ErrorPresentation:
    steps: list[str] = []
    if _contains_any(error.stderr, _NETWORK_SIGNATURES):
        steps.extend(
            [
                "Check your internet connection",
                "If behind a corporate firewall or proxy, configure pip proxy settings",
                "Try disabling VPN temporarily",
            ]
        )
    if _contains_any(error.stderr, _PERMISSION_SIGNATURES):
        steps.extend(
            [
                "Check file permissions of the venv directory",
                "Try running the editor with appropriate permissions",
            ]
        )
    if _contains_any(error.stderr, _DEPENDENCY_SIGNATURES):
        steps.extend(
            [
                "Verify your Python version is compatible (Python 3.8+ required)",
                "Try upgrading pip: python -m pip install --upgrade pip",
            ]
        )
    steps.extend(
        [
            "Ensure pip is working correctly: python -m pip --version",
            "Check that you can access the package URL in a browser",
            "Try manually installing: pip install deepnote-toolkit",
            _REPORT_STEP,
        ]
    )
    return ErrorPresentation(
        kind="toolkit_install",
        user_message="Failed to install deepnote-toolkit package",
        technical_details=_join_details(
            f"Python interpreter: {error.interpreter_path}",
            f"Venv path: {error.venv_path}",
            f"Package: {error.package_source}",
            f"Installation output:\n{error.stdout}" if error.stdout else "",
            _stderr_block(error.stderr),
            _cause_line(error.cause),
        ),
        troubleshooting=tuple(steps),
    )


def _present_package_install(error: PackageInstallError) -> ErrorPresentation:
    steps: list[str] = []
    if _contains_any(error.stderr, _NETWORK_SIGNATURES):
        steps.append("Check your internet connection and pip proxy settings")
    if _contains_any(error.stderr, _DEPENDENCY_SIGNATURES):
        steps.append("Check the package names and version constraints for typos")
    steps.append("Try installing the packages manually inside the venv")
    return ErrorPresentation(
        kind="package_install",
        user_message="Failed to install additional packages",
        technical_details=_join_details(
            f"Venv path: {error.venv_path}",
            f"Packages: {' '.join(error.packages)}",
            _stderr_block(error.stderr),
        ),
        troubleshooting=tuple(steps),
    )


def _present_server_startup(error: ServerStartupError) -> ErrorPresentation:
    steps: list[str] = []
    if _is_port_in_use(error.stderr):
        steps.extend(
            [
                f"Port {error.port} is already in use by another application",
                "Close other Jupyter servers or applications using that port",
                "Restart the editor to clean up orphaned server processes",
            ]
        )
    if _contains_any(error.stderr, _MISSING_MODULE_SIGNATURES):
        steps.extend(
            [
                "The deepnote-toolkit package may not be correctly installed",
                "Delete the environment's venv to trigger reinstallation",
            ]
        )
    if _contains_any(error.stderr, ("permission denied",)):
        steps.extend(
            [
                "Check that the server has permission to bind to the port",
                "Verify firewall settings are not blocking local connections",
            ]
        )
    steps.extend(
        [
            "Ensure no antivirus software is blocking Python",
            _RELOAD_STEP,
            _REPORT_STEP,
        ]
    )
    return ErrorPresentation(
        kind="server_startup",
        user_message="Deepnote server failed to start",
        technical_details=_join_details(
            f"Python interpreter: {error.interpreter_path}",
            f"Port: {error.port}",
            f"Reason: {error.reason}",
            f"Server output:\n{error.stdout}" if error.stdout else "",
            _stderr_block(error.stderr, "Server errors"),
            _cause_line(error.cause),
        ),
        troubleshooting=tuple(steps),
    )


def _present_server_timeout(error: ServerTimeoutError) -> ErrorPresentation:
    return ErrorPresentation(
        kind="server_timeout",
        user_message=f"Deepnote server failed to start within {error.timeout:g} seconds",
        technical_details=_join_details(
            f"Server URL: {error.server_url}",
            f"Timeout: {error.timeout:g}s",
            f"Last server error output:\n{error.last_error}"
            if error.last_error
            else "Server process started but health check failed",
            "The server process may still be starting or may have crashed silently",
        ),
        troubleshooting=(
            "The server may be slow to start, try waiting a bit longer and reloading",
            "Ensure no firewall is blocking localhost connections",
            "Check that the port is not being blocked by security software",
            "Verify Python and deepnote-toolkit are correctly installed",
            "Try closing other resource-intensive applications",
            _RELOAD_STEP,
            _REPORT_STEP,
        ),
    )


def present_error(error: BaseException) -> ErrorPresentation:  # noqa: PLR0911
    """Map a lifecycle error to its presentation fields.

    Args:
        error: The error raised by an install or server operation.

    Returns:
        The presentation for the error. Errors outside the lifecycle taxonomy
        get a generic presentation built from their string form.
    """
    match error:
        case VenvCreationError():
            return _present_venv_creation(error)
        case ToolkitInstallError():
            return _present_toolkit_install(error)
        case PackageInstallError():
            return _present_package_install(error)
        case ServerStartupError():
            return _present_server_startup(error)
        case ServerTimeoutError():
            return _present_server_timeout(error)
        case PortExhaustionError():
            excluded = ", ".join(str(port) for port in error.excluded) or "none"
            return ErrorPresentation(
                kind="port_exhaustion",
                user_message="No free port available for the Deepnote server",
                technical_details=_join_details(
                    f"Search started at: {error.preferred_base}",
                    f"Attempts: {error.attempts}",
                    f"Excluded ports: {excluded}",
                ),
                troubleshooting=(
                    "Stop other Deepnote environments or local servers",
                    "Restart the editor to clean up orphaned server processes",
                ),
            )
        case PythonNotFoundError():
            return ErrorPresentation(
                kind="python_not_found",
                user_message="No Python interpreter found for Deepnote kernel",
                technical_details=f"Attempted path: {error.attempted_path}"
                if error.attempted_path is not None
                else "No Python interpreter is selected",
                troubleshooting=(
                    "Install Python from python.org (Python 3.8 or later required)",
                    "Select a Python interpreter for the environment",
                    "Ensure the selected interpreter is accessible",
                ),
            )
        case VenvNotFoundError():
            return ErrorPresentation(
                kind="venv_not_found",
                user_message="Virtual environment not found",
                technical_details=f"Venv path: {error.venv_path}",
                troubleshooting=("Start the environment once to create its venv",),
            )
        case OperationCancelledError():
            return ErrorPresentation(
                kind="cancelled",
                user_message="Operation cancelled",
                technical_details=str(error),
                troubleshooting=(),
            )
        case _:
            return ErrorPresentation(
                kind="unknown",
                user_message=str(error) or type(error).__name__,
                technical_details=f"{type(error).__name__}: {error}",
                troubleshooting=(_REPORT_STEP,),
            )


def format_error_report(error: BaseException) -> str:
    """Render a plain-text error report suitable for copying into a bug report.

    Args:
        error: The error to describe.

    Returns:
        The report text, including numbered troubleshooting steps.
    """
    presentation = present_error(error)
    lines = [
        REPORT_HEADER,
        "",
        f"Error Type: {type(error).__name__}",
        f"Message: {presentation.user_message}",
        "",
        "Technical Details:",
        presentation.technical_details,
        "",
        "Troubleshooting Steps:",
    ]
    lines.extend(
        f"{index}. {step}"
        for index, step in enumerate(presentation.troubleshooting, start=1)
    )
    return "\n".join(lines)
