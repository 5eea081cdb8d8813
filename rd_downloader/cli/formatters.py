"""
Functions for formatting and displaying data in the console using Rich.
"""

from pathlib import Path
from typing import Any, Iterable

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from rd_downloader.models.config import AppConfig
from rd_downloader.models.job import Job, TorrentFile
from rd_downloader.utils.formatting import format_phase, format_size

from .progress_manager import PHASE_STYLES


def format_error_with_suggestions(
    error: Exception, context: dict | None = None
) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_type = type(error).__name__
    error_msg = str(error)

    suggestions_map = {
        "ConfigurationError": [
            "• Run `rd-downloader init <API_KEY>` to create a configuration.",
            "• Or export REALDEBRID_API_KEY before running a command.",
        ],
        "RemoteApiError": [
            "• Your API key may be invalid. Get a new one from real-debrid.com/apitoken.",
            "• Check that your Real-Debrid subscription is active.",
        ],
        "SubmissionError": [
            "• Check that the magnet link or .torrent file is valid.",
            "• Real-Debrid may not support this torrent.",
        ],
        "InvalidJobStateError": [
            "• Use `rd-downloader list` to see the current phase of each job.",
            "• Files can only be selected once, while a job awaits selection.",
        ],
        "JobNotFoundError": [
            "• Use `rd-downloader list` to see the ids of known jobs.",
        ],
        "PersistenceError": [
            "• The job database could not be read or written.",
            "• Check disk space and permissions of the configuration directory.",
        ],
        "CircuitBreakerError": [
            "• The app has detected too many API failures and is cooling down.",
            "• Check your internet connection.",
            "• Real-Debrid may be temporarily unavailable.",
        ],
        "ClientConnectorError": [
            "• A network connection issue occurred.",
            "• Please try again in a few minutes.",
        ],
    }

    suggestions = suggestions_map.get(
        error_type, ["• Run the command with -vv for detailed logs."]
    )

    error_text = Text()
    error_text.append(f"{error_type}: ", style="bold red")
    error_text.append(error_msg)

    suggestion_text = Text("\n".join(suggestions))

    content = Table.grid(padding=(1, 0))
    content.add_row(error_text)
    content.add_row()
    content.add_row(Text("Suggestions", style="bold yellow"))
    content.add_row(suggestion_text)

    if context:
        content.add_row()
        content.add_row(Text(f"Context: {context}", style="dim"))

    return Panel(
        content,
        title="[bold red]An Error Occurred[/bold red]",
        border_style="red",
        expand=False,
    )


def print_config(config_path: Path, config_data: dict[str, Any]):
    """Displays the current configuration, hiding sensitive data."""
    console = Console()
    content = ""
    for key, value in sorted(config_data.items()):
        if key == "api_key" and value:
            value = "[hidden]"
        content += f"{key} = {escape(str(value))}\n"

    console.print(
        Panel(
            content.strip(),
            title=f"Configuration ([dim]{config_path}[/dim])",
            border_style="cyan",
        )
    )


def print_validation_table(config: AppConfig, subliminal: str | None = None):
    """Displays a summary of the current settings."""
    console = Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()

    table.add_row("API Key:", "[green]✓ Configured[/green]")
    table.add_row("Library Path:", f"[dim]{escape(config.library_path)}[/dim]")
    table.add_row("Max Workers:", str(config.max_workers))
    table.add_row("Queue Size:", str(config.queue_size))
    table.add_row(
        "Rate Limit:",
        f"{config.rate_limit_per_minute}/min (burst {config.rate_limit_burst})",
    )
    table.add_row("Poll Interval:", f"{config.poll_interval:g}s")
    table.add_row(
        "Subtitles:", "✓ Enabled" if config.fetch_subtitles else "✗ Disabled"
    )
    if config.fetch_subtitles:
        table.add_row(
            "subliminal:",
            f"[green]{escape(subliminal)}[/green]"
            if subliminal
            else "[yellow]not installed[/yellow]",
        )
    table.add_row("Database:", f"[dim]{config.db_path}[/dim]")

    console.print(
        Panel(
            table,
            title="[bold green]✓ Validated Settings[/bold green]",
            border_style="green",
        )
    )


def print_jobs_table(jobs: Iterable[Job]):
    """Displays the known jobs, newest first."""
    console = Console()
    jobs = list(jobs)
    if not jobs:
        console.print("[dim]No downloads yet.[/dim]")
        return

    table = Table(title="Downloads")
    table.add_column("ID", style="dim", justify="right")
    table.add_column("Name", style="cyan", overflow="fold")
    table.add_column("Phase")
    table.add_column("Progress", justify="right")
    table.add_column("Size", justify="right")
    table.add_column("Details", overflow="fold")
    table.add_column("Updated", style="dim")

    for job in jobs:
        style = PHASE_STYLES.get(job.phase, "white")
        table.add_row(
            str(job.id),
            escape(job.name),
            f"[{style}]{format_phase(job.phase.value)}[/{style}]",
            f"{job.progress:.1f}%",
            format_size(job.total_bytes) if job.total_bytes else "-",
            escape(job.error_detail or job.subtitle_outcome),
            job.updated_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


def print_files_table(job: Job, files: Iterable[TorrentFile]):
    """Displays the files of a torrent so the user can pick ids to select."""
    console = Console()
    files = list(files)
    if not files:
        console.print(
            f"[yellow]No files are known for job {job.id} yet. "
            "Files are listed once Real-Debrid has read the torrent.[/yellow]"
        )
        return

    table = Table(title=f"Files of '{escape(job.name)}'")
    table.add_column("File ID", style="bold magenta", justify="right")
    table.add_column("Path", overflow="fold")
    table.add_column("Size", justify="right", style="green")
    table.add_column("Selected", justify="center")

    selected = set(job.selected_file_ids)
    for f in files:
        table.add_row(
            str(f.id),
            escape(f.path),
            format_size(f.bytes),
            "✓" if f.id in selected or f.is_selected else "",
        )
    console.print(table)
