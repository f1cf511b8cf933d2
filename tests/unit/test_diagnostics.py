from pathlib import Path

import pytest

from deepnote_lifecycle.diagnostics import REPORT_HEADER, format_error_report, present_error
from deepnote_lifecycle.exceptions import (
    InstallError,
    LifecycleError,
    OperationCancelledError,
    PortExhaustionError,
    PythonNotFoundError,
    ServerError,
    ServerStartupError,
    ServerTimeoutError,
    StartupFailureReason,
    ToolkitInstallError,
    VenvCreationError,
)

PYTHON = Path("/usr/bin/python3")
VENV = Path("/tmp/venvs/env-1")


class TestExceptionHierarchy:
    @pytest.mark.parametrize(
        "error",
        [
            PythonNotFoundError("missing", attempted_path=PYTHON),
            VenvCreationError("failed", interpreter_path=PYTHON, venv_path=VENV),
            ToolkitInstallError(
                "failed", interpreter_path=PYTHON, venv_path=VENV, package_source="url"
            ),
        ],
    )
    def test_install_errors_share_base(self, error: LifecycleError) -> None:
        assert isinstance(error, InstallError)
        assert isinstance(error, LifecycleError)

    def test_server_errors_share_base(self) -> None:
        error = ServerTimeoutError("slow", server_url="http://localhost:8888", timeout=120)

        assert isinstance(error, ServerError)

    def test_cancelled_error_names_operation(self) -> None:
        error = OperationCancelledError(operation="install toolkit")

        assert error.operation == "install toolkit"
        assert "install toolkit" in str(error)

    def test_port_exhaustion_sorts_excluded_ports(self) -> None:
        error = PortExhaustionError("none", preferred_base=8888, excluded={8890, 8888}, attempts=3)

        assert error.excluded == (8888, 8890)


class TestPresentError:
    def test_toolkit_install_network_failure_suggests_connection_checks(self) -> None:
        error = ToolkitInstallError(
            "pip failed",
            interpreter_path=PYTHON,
            venv_path=VENV,
            package_source="https://example.com/toolkit.whl",
            stderr="ERROR: Could not find a version that satisfies the requirement",
        )

        presentation = present_error(error)

        assert presentation.kind == "toolkit_install"
        assert presentation.troubleshooting[0] == "Check your internet connection"
        assert "https://example.com/toolkit.whl" in presentation.technical_details

    def test_toolkit_install_permission_failure(self) -> None:
        error = ToolkitInstallError(
            "pip failed",
            interpreter_path=PYTHON,
            venv_path=VENV,
            package_source="url",
            stderr="PermissionError: [Errno 13] Permission denied",
        )

        steps = present_error(error).troubleshooting

        assert "Check file permissions of the venv directory" in steps

    def test_server_startup_port_in_use_names_port(self) -> None:
        error = ServerStartupError(
            "exited",
            interpreter_path=PYTHON,
            port=8888,
            reason=StartupFailureReason.PROCESS_EXITED,
            stderr="OSError: [Errno 98] Address already in use",
        )

        presentation = present_error(error)

        assert presentation.troubleshooting[0] == (
            "Port 8888 is already in use by another application"
        )
        assert "Reason: process_exited" in presentation.technical_details

    def test_server_startup_missing_module(self) -> None:
        error = ServerStartupError(
            "exited",
            interpreter_path=PYTHON,
            port=8888,
            stderr="ModuleNotFoundError: No module named 'deepnote_toolkit'",
        )

        steps = present_error(error).troubleshooting

        assert "The deepnote-toolkit package may not be correctly installed" in steps

    def test_server_timeout_includes_url_and_last_error(self) -> None:
        error = ServerTimeoutError(
            "slow",
            server_url="http://localhost:8888",
            timeout=120,
            last_error="Traceback: boom",
        )

        presentation = present_error(error)

        assert presentation.user_message == (
            "Deepnote server failed to start within 120 seconds"
        )
        assert "http://localhost:8888" in presentation.technical_details
        assert "Traceback: boom" in presentation.technical_details

    def test_server_timeout_without_output(self) -> None:
        error = ServerTimeoutError("slow", server_url="http://localhost:8888", timeout=1.5)

        details = present_error(error).technical_details

        assert "health check failed" in details
        assert "Timeout: 1.5s" in details

    def test_venv_creation_mentions_paths(self) -> None:
        error = VenvCreationError(
            "failed",
            interpreter_path=PYTHON,
            venv_path=VENV,
            stderr="Error: No module named venv",
        )

        presentation = present_error(error)

        assert str(VENV) in presentation.technical_details
        assert len(presentation.troubleshooting) == 5

    def test_python_not_found_without_path(self) -> None:
        presentation = present_error(PythonNotFoundError("missing"))

        assert presentation.technical_details == "No Python interpreter is selected"

    def test_unknown_error_falls_back_to_string(self) -> None:
        presentation = present_error(RuntimeError("boom"))

        assert presentation.kind == "unknown"
        assert presentation.user_message == "boom"
        assert presentation.technical_details == "RuntimeError: boom"


class TestFormatErrorReport:
    def test_report_layout(self) -> None:
        error = ServerTimeoutError("slow", server_url="http://localhost:8888", timeout=120)

        report = format_error_report(error)
        lines = report.splitlines()

        assert lines[0] == REPORT_HEADER
        assert "Error Type: ServerTimeoutError" in lines
        assert "Troubleshooting Steps:" in lines
        assert lines[lines.index("Troubleshooting Steps:") + 1].startswith("1. ")

    def test_cancelled_report_has_no_steps(self) -> None:
        report = format_error_report(OperationCancelledError(operation="start"))

        assert report.endswith("Troubleshooting Steps:")
