"""Rich live timeline for a pipeline run."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from rp.coordinator.progress import STAGE_TITLES, TimelineStep
from rp.types import StageName, StageStatus


@dataclass
class StageInfo:
    """Display state of one stage."""

    number: int
    name: str
    status: str = "pending"  # pending, running, complete, error, cancelled
    detail: str = ""
    started_at: float | None = None
    completed_at: float | None = None

    @property
    def duration_str(self) -> str:
        """Get formatted duration string."""
        if self.started_at is None:
            return ""
        d = (self.completed_at or time.time()) - self.started_at
        if d < 60:
            return f"{d:.1f}s"
        return f"{int(d // 60)}m {int(d % 60)}s"


class TimelineProgress:
    """Live progress display fed with timeline steps."""

    STATUS_ICONS = {
        "pending": "[dim]...[/dim]",
        "running": "[yellow]...[/yellow]",
        "complete": "[green]OK[/green]",
        "error": "[red]ERR[/red]",
        "cancelled": "[magenta]STOP[/magenta]",
    }

    _STATUS_MAP = {
        StageStatus.STARTED: "running",
        StageStatus.COMPLETED: "complete",
        StageStatus.ERROR: "error",
        StageStatus.CANCELLED: "cancelled",
    }

    def __init__(self, console: Console, question: str) -> None:
        """Initialize progress display.

        Args:
            console: Rich console to write to.
            question: Question being researched, shown in the title.
        """
        self.console = console
        self.question = question
        self.started_at = time.time()
        self.stages: dict[StageName, StageInfo] = {
            name: StageInfo(number=i + 1, name=title)
            for i, (name, title) in enumerate(STAGE_TITLES.items())
        }
        self.revision = 0
        self.is_complete = False
        self.error_message: str | None = None
        self._live: Live | None = None

    def _build_display(self) -> Panel:
        table = Table(show_header=False, box=None, padding=(0, 1))
        table.add_column("Stage", width=3, justify="right")
        table.add_column("Status", width=5)
        table.add_column("Name", width=22)
        table.add_column("Detail", style="dim")
        table.add_column("Time", width=8, justify="right", style="dim")

        styles = {"running": "bold yellow", "complete": "green", "error": "red", "cancelled": "magenta"}
        for stage in self.stages.values():
            detail = stage.detail[:60] + "..." if len(stage.detail) > 60 else stage.detail
            table.add_row(
                f"{stage.number}.",
                self.STATUS_ICONS.get(stage.status, ""),
                Text(stage.name, style=styles.get(stage.status, "dim")),
                detail,
                stage.duration_str,
            )

        footer = Text()
        footer.append("Elapsed: ", style="dim")
        footer.append(f"{time.time() - self.started_at:.0f}s", style="cyan")
        if self.revision:
            footer.append("  |  ", style="dim")
            footer.append(f"Revision {self.revision}", style="yellow")

        subject = self.question if len(self.question) <= 50 else self.question[:47] + "..."
        if self.is_complete:
            title = "[bold green]Research complete[/bold green]"
            border_style = "green"
        elif self.error_message:
            title = "[bold red]Research stopped[/bold red]"
            border_style = "red"
        else:
            title = f"[bold cyan]Researching: {subject}[/bold cyan]"
            border_style = "cyan"
        return Panel(Group(table, Text(""), footer), title=title, border_style=border_style)

    def update(self, step: TimelineStep) -> None:
        """Apply one timeline step."""
        info = self.stages[step.stage]
        info.status = self._STATUS_MAP[step.status]
        info.detail = step.summary
        self.revision = max(self.revision, step.revision)
        if step.status.is_terminal:
            info.completed_at = time.time()
        else:
            info.started_at = time.time()
            info.completed_at = None
        if self._live:
            self._live.update(self._build_display())

    def mark_complete(self) -> None:
        self.is_complete = True
        if self._live:
            self._live.update(self._build_display())

    def mark_error(self, message: str) -> None:
        self.error_message = message
        if self._live:
            self._live.update(self._build_display())

    def __enter__(self) -> TimelineProgress:
        self._live = Live(
            self._build_display(),
            console=self.console,
            refresh_per_second=4,
            transient=False,
            auto_refresh=True,
            get_renderable=self._build_display,
        )
        self._live.__enter__()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._live:
            self._live.update(self._build_display())
            self._live.__exit__(exc_type, exc_val, exc_tb)
            self._live = None
