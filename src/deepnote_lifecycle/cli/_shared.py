"""Shared CLI utilities for commands.

This module provides:
- Standardized exit codes
- Console helpers for errors and lifecycle error reports
- The context object holding loaded configuration
"""

from __future__ import annotations

import contextvars
from dataclasses import dataclass
from enum import IntEnum, StrEnum
from typing import TYPE_CHECKING, Never

from rich.console import Console
from rich.panel import Panel

from deepnote_lifecycle.diagnostics import present_error

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

    from deepnote_lifecycle.config import LifecycleConfig
    from deepnote_lifecycle.exceptions import LifecycleError


class ExitCode(IntEnum):
    """Exit codes of the `deepnote-lifecycle` CLI."""

    SUCCESS = 0
    CONFIG_ERROR = 1
    INSTALL_ERROR = 2
    SERVER_ERROR = 3
    CANCELLED = 4
    INTERNAL_ERROR = 5


class OutputFormat(StrEnum):
    """Supported output formats for listing commands."""

    TABLE = "table"
    JSON = "json"


_current_cli_context: contextvars.ContextVar[CLIContext | None] = contextvars.ContextVar(
    "cli_context", default=None
)


@dataclass(frozen=True, slots=True)
class CLIContext:
    """Global CLI context with configuration and consoles.

    Attributes:
        config: Loaded configuration.
        logger: Structured logger for lifecycle components.
        console: Console for regular output.
        error_console: Console for errors.
    """

    config: LifecycleConfig
    logger: FilteringBoundLogger
    console: Console
    error_console: Console

    @classmethod
    def get_current(cls) -> CLIContext:
        """Return the active context.

        Raises:
            RuntimeError: If no context was set.
        """
        ctx = _current_cli_context.get()
        if ctx is None:
            msg = "CLIContext not initialized"
            raise RuntimeError(msg)
        return ctx

    @classmethod
    def set_current(cls, ctx: CLIContext) -> None:
        """Set the active context."""
        _ = _current_cli_context.set(ctx)

    @classmethod
    def reset(cls) -> None:
        """Clear the active context."""
        _ = _current_cli_context.set(None)


def get_error_console() -> Console:
    """Get a Rich console configured for error output to stderr."""
    return Console(stderr=True)


def exit_with_error(
    message: str,
    code: ExitCode = ExitCode.INTERNAL_ERROR,
    *,
    console: Console | None = None,
) -> Never:
    """Print an error message and exit with the specified code.

    Raises:
        SystemExit: Always raised with the specified exit code.
    """
    if console is None:
        console = get_error_console()

    console.print(f"[red]Error:[/red] {message}")
    raise SystemExit(code)


def exit_with_lifecycle_error(
    error: LifecycleError,
    code: ExitCode,
    *,
    console: Console | None = None,
) -> Never:
    """Print a lifecycle error with its troubleshooting steps and exit.

    Raises:
        SystemExit: Always raised with the specified exit code.
    """
    if console is None:
        console = get_error_console()

    presentation = present_error(error)
    body = presentation.technical_details
    if presentation.troubleshooting:
        steps = "\n".join(
            f"{index}. {step}"
            for index, step in enumerate(presentation.troubleshooting, start=1)
        )
        body = f"{body}\n\n[bold]Troubleshooting:[/bold]\n{steps}"
    console.print(Panel(body, title=f"[red]{presentation.user_message}[/red]", expand=False))
    raise SystemExit(code)
