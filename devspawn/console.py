"""Console view: a boxed status footer redrawn below a scrolling log area.

``render_footer`` is a pure function of the registry contents that renders a
rich table into plain lines; ``ConsoleView`` is the thin terminal adapter that
remembers how many lines it drew last time and erases exactly that many before
printing new log lines and a new footer.
"""

from __future__ import annotations

import io
import logging
import shutil
import sys
import time
from collections.abc import Callable, Iterable
from typing import IO, TYPE_CHECKING

import click
from rich import box
from rich.console import Console, Group, RenderableType
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .types import Color

if TYPE_CHECKING:  # pragma: no cover - import for typing only
    from .registry import Backend, BackendRegistry

CURSOR_UP_AND_HOME = "\r\x1b[1A"
CLEAR_LINE = "\x1b[2K"

DEFAULT_FOOTER_WIDTH = 200
IMAGE_ID_DISPLAY_LENGTH = 7


def colorize(text: str, color: Color | str | None) -> str:
    if color is None:
        return text
    return click.style(text, fg=Color(color).value)


def visible_length(text: str) -> int:
    return len(click.unstyle(text))


def format_elapsed(seconds: float) -> str:
    """Human distance such as ``"3 minutes"`` or ``"about 2 hours"``."""
    seconds = max(0.0, seconds)
    minutes = round(seconds / 60)
    if minutes < 1:
        return "less than a minute"
    if minutes == 1:
        return "1 minute"
    if minutes < 45:
        return f"{minutes} minutes"
    hours = round(minutes / 60)
    if minutes < 90:
        return "about 1 hour"
    if hours < 24:
        return f"about {hours} hours"
    days = round(hours / 24)
    if days == 1:
        return "1 day"
    return f"{days} days"


def backend_table(backends: Iterable[Backend], now: float) -> Table:
    table = Table(box=box.SIMPLE_HEAD, show_edge=False, pad_edge=False, header_style="bold")
    for column in ("Name", "Status", "Spawn time", "Image ID", "Lock"):
        table.add_column(column, no_wrap=True)
    for backend in backends:
        style = Color(backend.color).value
        table.add_row(
            Text(backend.name, style=style),
            Text(backend.last_status or "-", style=style),
            Text(f"{format_elapsed(now - backend.spawn_time)} ago", style=style),
            Text(backend.image_id[:IMAGE_ID_DISPLAY_LENGTH], style=style),
            Text(backend.lock or "-", style=style),
        )
    return table


def render_lines(renderable: RenderableType, *, width: int = DEFAULT_FOOTER_WIDTH) -> list[str]:
    """Render ``renderable`` to ANSI-styled lines without touching the terminal."""
    buffer = io.StringIO()
    console = Console(
        file=buffer,
        width=width,
        force_terminal=True,
        color_system="standard",
        highlight=False,
        emoji=False,
        legacy_windows=False,
    )
    console.print(renderable)
    return buffer.getvalue().splitlines()


def render_footer(backends: Iterable[Backend], now: float, *, width: int = DEFAULT_FOOTER_WIDTH) -> list[str]:
    """Render the footer block for the given backends."""
    backends = list(backends)
    if backends:
        body: RenderableType = backend_table(backends, now)
    else:
        body = Text(" No running backends", style="bold")

    keys = Text.assemble(
        " ",
        ("[b]", "underline"),
        " Build ",
        ("[t]", "underline"),
        " Terminate backends ",
        ("[ctrl-c]", "underline"),
        " Stop",
        style="bold italic",
    )
    panel = Panel(Group(body, Text(), keys), box=box.DOUBLE, expand=False, padding=(1, 2))
    return render_lines(panel, width=width)


class ConsoleView:
    """Writes log lines above a footer that is redrawn on every update."""

    def __init__(
        self,
        registry: BackendRegistry,
        *,
        file: IO[str] | None = None,
        color: bool | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._registry = registry
        self._file = file
        self._color = color
        self._clock = clock
        self.footer_length = 0

    @staticmethod
    def colorize(text: str, color: Color | str | None) -> str:
        return colorize(text, color)

    def _write(self, text: str, *, nl: bool = True) -> None:
        click.echo(text, file=self._file or sys.stdout, nl=nl, color=self._color)

    def clear(self) -> None:
        """Erase the footer drawn by the previous update."""
        for _ in range(self.footer_length):
            self._write(CURSOR_UP_AND_HOME + CLEAR_LINE, nl=False)
        self.footer_length = 0

    def update(self, lines: Iterable[str] = ()) -> None:
        """Print ``lines`` into the log area and redraw the footer below them."""
        self.clear()
        for line in lines:
            self._write(line)
        width = shutil.get_terminal_size((DEFAULT_FOOTER_WIDTH, 24)).columns
        footer = render_footer(self._registry.all(), self._clock(), width=width)
        for line in footer:
            self._write(line)
        self.footer_length = len(footer)

    def log(self, *lines: str) -> None:
        """Print ``lines`` with the footer cleared and leave it cleared."""
        self.update(lines)
        self.clear()


class ConsoleLogHandler(logging.Handler):
    """Route log records into the console's scrolling area."""

    def __init__(self, console: ConsoleView, level: int = logging.NOTSET) -> None:
        super().__init__(level)
        self.console = console

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = self.format(record)
            if record.levelno >= logging.WARNING:
                message = click.style(message, fg="red")
            self.console.update([message])
        except Exception:
            self.handleError(record)


__all__ = [
    "ConsoleLogHandler",
    "ConsoleView",
    "backend_table",
    "colorize",
    "format_elapsed",
    "render_footer",
    "render_lines",
    "visible_length",
]
