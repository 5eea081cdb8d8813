"""
Manages a Rich Live display of the jobs tracked by a download session,
refreshed from the snapshots the download manager publishes.
"""

import asyncio
from datetime import datetime
from typing import Dict, Iterable, Optional, Union

from rich.console import Console, Group
from rich.live import Live
from rich.markup import escape
from rich.panel import Panel
from rich.progress_bar import ProgressBar
from rich.table import Table
from rich.text import Text

from rd_downloader.models.job import Job, JobSnapshot, Phase
from rd_downloader.utils.formatting import format_duration, format_phase, format_size

PHASE_STYLES = {
    Phase.PENDING: "dim",
    Phase.AWAITING_SELECTION: "yellow",
    Phase.PROCESSING: "cyan",
    Phase.DOWNLOADING: "blue",
    Phase.SUBTITLES: "magenta",
    Phase.COMPLETE: "green",
    Phase.ERROR: "red",
}

JobState = Union[Job, JobSnapshot]


class ProgressManager:
    """
    Keeps the latest known state of each tracked job and renders it as a table.
    """

    def __init__(self, console: Console, select_all: bool = False):
        self.console = console
        self.select_all = select_all
        self._jobs: Dict[int, JobState] = {}
        self._selection_handled: set[int] = set()
        self._live: Optional[Live] = None
        self._start_time = datetime.now()

    @property
    def tracked_ids(self) -> list[int]:
        return list(self._jobs)

    def track(self, jobs: Iterable[JobState]) -> None:
        for job in jobs:
            if job.id is not None:
                self._jobs[job.id] = job
        self._update_display()

    def update(self, state: JobState) -> bool:
        """Records a newer state for a tracked job. Returns False for untracked jobs."""
        if state.id not in self._jobs:
            return False
        current = self._jobs[state.id]
        if state.updated_at < current.updated_at:
            return True
        self._jobs[state.id] = state
        self._update_display()
        return True

    def forget(self, job_id: int) -> None:
        self._jobs.pop(job_id, None)
        self._update_display()

    def awaiting_selection(self) -> list[JobState]:
        """Tracked jobs waiting for a file selection that nobody has made yet."""
        return [
            job
            for job in self._jobs.values()
            if job.phase == Phase.AWAITING_SELECTION
            and job.id not in self._selection_handled
        ]

    def mark_selection_handled(self, job_id: int) -> None:
        self._selection_handled.add(job_id)

    def is_settled(self) -> bool:
        """True once no tracked job can make progress without the user."""
        for job in self._jobs.values():
            if job.phase.is_terminal:
                continue
            if job.phase == Phase.AWAITING_SELECTION and (
                not self.select_all or job.id in self._selection_handled
            ):
                continue
            return False
        return True

    def counts(self) -> Dict[Phase, int]:
        result: Dict[Phase, int] = {}
        for job in self._jobs.values():
            result[job.phase] = result.get(job.phase, 0) + 1
        return result

    def _generate_table(self) -> Table:
        table = Table(expand=True, show_edge=False, pad_edge=False)
        table.add_column("ID", style="dim", justify="right", width=5)
        table.add_column("Name", ratio=3, no_wrap=True, overflow="ellipsis")
        table.add_column("Phase", width=20)
        table.add_column("Progress", width=30)
        table.add_column("Size", justify="right", width=20)
        table.add_column("Details", ratio=2, overflow="fold")

        for job_id in sorted(self._jobs):
            job = self._jobs[job_id]
            style = PHASE_STYLES.get(job.phase, "white")
            bar = Table.grid(padding=(0, 1))
            bar.add_row(
                ProgressBar(total=100, completed=job.progress, width=20),
                f"{job.progress:5.1f}%",
            )
            if job.phase == Phase.DOWNLOADING and job.total_bytes:
                size = f"{format_size(job.downloaded_bytes)} / {format_size(job.total_bytes)}"
            else:
                size = format_size(job.total_bytes) if job.total_bytes else "-"
            details = job.error_detail or job.subtitle_outcome
            if job.phase == Phase.AWAITING_SELECTION:
                details = f"{len(job.available_files)} file(s) to choose from"
            table.add_row(
                str(job_id),
                escape(job.name),
                f"[{style}]{format_phase(job.phase.value)}[/{style}]",
                bar,
                size,
                escape(details),
            )
        return table

    def _render(self) -> Panel:
        elapsed = (datetime.now() - self._start_time).total_seconds()
        header = Text()
        header.append("Real-Debrid Downloader ", style="bold cyan")
        header.append("│ ", style="dim")
        header.append(f"Session: {format_duration(elapsed)}", style="yellow")
        for phase, count in self.counts().items():
            header.append(" │ ", style="dim")
            header.append(f"{format_phase(phase.value)}: {count}", style=PHASE_STYLES[phase])
        return Panel(
            Group(header, Text(), self._generate_table()),
            title="[bold]📥 Downloads[/bold]",
            border_style="cyan",
        )

    def _update_display(self) -> None:
        if self._live:
            self._live.update(self._render())

    async def __aenter__(self):
        self._live = Live(
            self._render(),
            console=self.console,
            refresh_per_second=4,
            vertical_overflow="visible",
        )
        self._live.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._live:
            await asyncio.sleep(0.2)
            self._live.update(self._render())
            self._live.stop()
            self._live = None
