"""
Manages a Rich Live display for a sync run.
Shows one progress task per phase (setup, chapters, images) under a session
header with elapsed time and page counters.
"""

import asyncio
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table
from rich.text import Text

log = logging.getLogger("comick_offline")

PHASES = ("setup", "chapters", "images")

PHASE_LABELS = {
    "setup": "Setup",
    "chapters": "Chapters",
    "images": "Pages",
}


class ProgressManager:
    """
    Renders the (completed, total, status, phase) reports of the sync engine.

    An instance is itself a valid progress callback.
    """

    def __init__(self, console: Console, title: str = "comick-offline"):
        self.console = console
        self.title = title

        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.fields[label]:<9}"),
            BarColumn(bar_width=30),
            MofNCompleteColumn(),
            TextColumn("[dim]{task.description}"),
            TimeElapsedColumn(),
            console=console,
            transient=False,
        )

        self._live: Live | None = None
        self._tasks: dict[str, TaskID] = {}
        self._start_time: datetime | None = None
        self._stats = {
            "chapters_done": 0,
            "chapters_total": 0,
            "pages_done": 0,
            "last_status": "",
        }

    def __call__(self, completed: int, total: int, status: str, phase: str) -> None:
        self.update(completed, total, status, phase)

    def _task_for(self, phase: str) -> TaskID:
        if phase not in self._tasks:
            self._tasks[phase] = self.progress.add_task(
                "", total=None, label=PHASE_LABELS.get(phase, phase)
            )
        return self._tasks[phase]

    def update(self, completed: int, total: int, status: str, phase: str) -> None:
        if phase not in PHASES:
            log.debug(f"Ignoring progress for unknown phase '{phase}'")
            return

        task_id = self._task_for(phase)
        self.progress.update(
            task_id, completed=completed, total=total or None, description=status
        )

        if phase == "chapters":
            self._stats["chapters_done"] = completed
            self._stats["chapters_total"] = total
            # A new chapter restarts the page bar.
            if "images" in self._tasks:
                self.progress.reset(self._tasks["images"], total=None, description="")
        elif phase == "images" and completed > 0:
            self._stats["pages_done"] += 1
        self._stats["last_status"] = status
        self._refresh()

    def _generate_header(self) -> Panel:
        if self._start_time:
            elapsed = int((datetime.now() - self._start_time).total_seconds())
            elapsed_str = (
                f"{elapsed // 3600:02d}:{(elapsed % 3600) // 60:02d}:{elapsed % 60:02d}"
            )
        else:
            elapsed_str = "00:00:00"
        header_text = Text()
        header_text.append(f"📚 {self.title} ", style="bold cyan")
        header_text.append("│ ", style="dim")
        header_text.append(f"Session: {elapsed_str}", style="yellow")
        header_text.append(" │ ", style="dim")
        header_text.append(
            f"Chapters {self._stats['chapters_done']}/{self._stats['chapters_total']}",
            style="green",
        )
        header_text.append(" │ ", style="dim")
        header_text.append(f"Pages {self._stats['pages_done']}", style="magenta")
        return Panel(header_text, border_style="cyan")

    def _render(self) -> Group:
        body = Table.grid()
        body.add_row(self.progress)
        return Group(
            self._generate_header(),
            Panel(body, title="[bold]📥 Progress[/bold]", border_style="green"),
        )

    def _refresh(self) -> None:
        if self._live is not None:
            self._live.update(self._render())

    @contextmanager
    def paused(self) -> Iterator[None]:
        """Stops the live display while the user is prompted."""
        if self._live is None:
            yield
            return
        self._live.stop()
        try:
            yield
        finally:
            self._live.start()

    def get_statistics(self) -> dict:
        return self._stats.copy()

    async def __aenter__(self):
        self._start_time = datetime.now()
        self._live = Live(
            self._render(),
            console=self.console,
            refresh_per_second=8,
            vertical_overflow="visible",
        )
        self._live.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._live:
            await asyncio.sleep(0.1)
            self._live.update(self._render())
            self._live.stop()
            self._live = None
