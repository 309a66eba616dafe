"""Console feedback for the CLI: export spinner, playback bar, error panel."""

from __future__ import annotations

import os
import sys
import traceback
from contextlib import contextmanager
from typing import IO, Iterator

from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, TaskID, TextColumn
from rich.status import Status
from rich.text import Text
from rich.traceback import Traceback

from .logging_utils import DEBUG_ENV, get_log_path


def _is_enabled(stream: IO[str], enabled: bool | None) -> bool:
    return stream.isatty() if enabled is None else enabled


class Spinner:
    """Status spinner for work without a known length; silent off a TTY."""

    def __init__(
        self,
        message: str,
        *,
        spinner: str = "dots",
        stream: IO[str] | None = None,
        enabled: bool | None = None,
    ) -> None:
        self._message = message
        self._spinner = spinner
        stream = stream or sys.stderr
        self._console = Console(file=stream) if _is_enabled(stream, enabled) else None
        self._live: Status | None = None

    @property
    def message(self) -> str:
        return self._message

    def start(self) -> None:
        if self._console is None or self._live is not None:
            return
        self._live = self._console.status(self._message, spinner=self._spinner)
        self._live.start()

    def update(self, message: str) -> None:
        self._message = message
        if self._live is not None:
            self._live.update(message)

    def stop(self) -> None:
        if self._live is not None:
            self._live.stop()
            self._live = None

    def __enter__(self) -> "Spinner":
        self.start()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.stop()


class PlaybackProgress:
    """Seconds played out of a plan's total length, clamped to the bar."""

    def __init__(
        self,
        label: str,
        total: float,
        *,
        stream: IO[str] | None = None,
        enabled: bool | None = None,
    ) -> None:
        self.label = label
        self.total = max(total, 0.0)
        self.position = 0.0
        stream = stream or sys.stderr
        self._console = Console(file=stream) if _is_enabled(stream, enabled) else None
        self._bar: Progress | None = None
        self._task: TaskID | None = None

    def start(self) -> None:
        if self._console is None or self._bar is not None:
            return
        self._bar = Progress(
            TextColumn("{task.description}"),
            BarColumn(),
            TextColumn("{task.completed:.1f}/{task.total:.1f}s"),
            console=self._console,
            transient=True,
        )
        self._bar.start()
        self._task = self._bar.add_task(self.label, total=self.total)

    def update(self, elapsed: float) -> None:
        self.position = min(max(elapsed, 0.0), self.total)
        if self._bar is not None and self._task is not None:
            self._bar.update(self._task, completed=self.position)

    def stop(self) -> None:
        if self._bar is not None:
            self._bar.stop()
            self._bar = None
            self._task = None

    def __enter__(self) -> "PlaybackProgress":
        self.start()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.stop()


@contextmanager
def spinner(
    message: str,
    *,
    stream: IO[str] | None = None,
    enabled: bool | None = None,
) -> Iterator[Spinner]:
    with Spinner(message, stream=stream, enabled=enabled) as handle:
        yield handle


def render_error(context: str, exc: BaseException, *, stream: IO[str] | None = None) -> None:
    """Panel on a TTY, one plain line otherwise; traces only with NOTETRAIL_DEBUG."""

    out = stream or sys.stderr
    headline = f"{context} failed: {type(exc).__name__}: {exc}"
    trace = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    show_trace = bool(os.environ.get(DEBUG_ENV))
    if not out.isatty():
        out.write(f"{headline} (logs: {get_log_path()})\n")
        if show_trace:
            out.write(trace)
        return

    message = Text(headline, style="bold red")
    message.append(f"\nLogs: {get_log_path()}", style="dim")
    if not show_trace:
        message.append(f"\nSet {DEBUG_ENV}=1 for a console trace.", style="dim")
    panel_console = Console(file=out)
    panel_console.print(Panel(message, title="notetrail", border_style="red"))
    if show_trace:
        panel_console.print(Traceback.from_exception(type(exc), exc, exc.__traceback__))
