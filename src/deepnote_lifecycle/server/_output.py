"""Output sink implementations for server output."""

from __future__ import annotations

from typing import TYPE_CHECKING, final

from rich.console import Console
from rich.style import Style
from rich.text import Text

if TYPE_CHECKING:
    from deepnote_lifecycle.protocols import OutputStream


@final
class ConsoleOutputSink:
    """Output sink that prints server output with an `[environment:pid]` prefix.

    stderr lines are dimmed red.
    """

    __slots__ = ("_console", "_prefix_style", "_stderr_style", "_stdout_style")

    def __init__(self, console: Console | None = None) -> None:
        """Initialize the output sink.

        Args:
            console: Rich Console instance for output. If None, creates a new one.
        """
        self._console = console or Console()
        self._prefix_style = Style(color="blue", bold=True)
        self._stdout_style = Style()
        self._stderr_style = Style(color="red", dim=True)

    async def write_line(
        self,
        environment_id: str,
        pid: int,
        stream: OutputStream,
        line: str,
    ) -> None:
        """Print a line of server output with its prefix."""
        text = Text()
        _ = text.append(f"[{environment_id}:{pid}]", style=self._prefix_style)
        _ = text.append(" ")
        _ = text.append(line, style=self._stderr_style if stream == "stderr" else self._stdout_style)
        self._console.print(text)
