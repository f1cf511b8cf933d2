"""Command-line interface for deepnote-lifecycle."""

from ._app import create_app, main
from ._shared import CLIContext, ExitCode

__all__ = ["CLIContext", "ExitCode", "create_app", "main"]
