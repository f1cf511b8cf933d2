"""The command-line interface for deepnote-lifecycle."""
# ruff: noqa: TC003  # Path needed at runtime for cyclopts parameter parsing

from pathlib import Path
from typing import Annotated

from cyclopts import App, Parameter
from rich.console import Console

from deepnote_lifecycle.config import LogFormat, LogLevel, load_config
from deepnote_lifecycle.exceptions import ConfigError
from deepnote_lifecycle.utils import create_logger_from_config

from ._commands import register_commands
from ._shared import CLIContext, ExitCode, exit_with_error

HELP = "Manage Deepnote toolkit environments and their local servers."


def create_app(
    console: Console | None = None,
    error_console: Console | None = None,
    *,
    exit_on_error: bool = True,
) -> App:
    """Create the CLI application.

    Args:
        console: Console for regular output.
        error_console: Console for errors.
        exit_on_error: Whether cyclopts exits on parse errors.

    Returns:
        The configured cyclopts App.
    """
    if console is None:
        console = Console()
    if error_console is None:
        error_console = Console(stderr=True)
    app = App(
        name="deepnote-lifecycle",
        help=HELP,
        help_on_error=True,
        console=console,
        error_console=error_console,
        exit_on_error=exit_on_error,
    )

    @app.meta.default
    def _default(  # pyright: ignore[reportUnusedFunction]
        *tokens: Annotated[str, Parameter(show=False, allow_leading_hyphen=True)],
        config: Annotated[
            Path | None, Parameter(name="--config", help="Path to a TOML config file")
        ] = None,
        verbose: Annotated[bool, Parameter(help="Log at debug level")] = False,
        log_file: Annotated[
            str | None, Parameter(name="--log-file", help="Write logs to this file")
        ] = None,
    ) -> None:
        """Launch the CLI with global options.

        Args:
            tokens: Command tokens to pass to subcommands.
            config: Explicit path to a config file.
            verbose: Log at debug level.
            log_file: Log file path; logs go to stderr by default.
        """
        overrides: dict[str, object] = {}
        logging_overrides: dict[str, object] = {}
        if verbose:
            logging_overrides["level"] = LogLevel.DEBUG.value
        if log_file is not None:
            logging_overrides["file"] = log_file
        else:
            logging_overrides["format"] = LogFormat.TEXT.value
        overrides["logging"] = logging_overrides

        try:
            loaded = load_config(config, overrides=overrides)
        except ConfigError as e:
            exit_with_error(str(e), ExitCode.CONFIG_ERROR, console=error_console)

        ctx = CLIContext(
            config=loaded,
            logger=create_logger_from_config(loaded.logging),
            console=console,
            error_console=error_console,
        )
        CLIContext.set_current(ctx)

        try:
            app(tokens)
        finally:
            CLIContext.reset()

    register_commands(app)
    return app


def main() -> None:
    """Default entrypoint for the `deepnote-lifecycle` CLI."""
    app = create_app()
    app.meta()


if __name__ == "__main__":
    main()
