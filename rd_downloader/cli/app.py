"""
Defines the command-line interface for the application using Typer.
Supports magnet links, .torrent files and stdin input.
"""

import asyncio
import logging
import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Iterable, List, Optional, Tuple

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from rd_downloader import __version__
from rd_downloader.api import RealDebridClient, TokenBucketRateLimiter
from rd_downloader.core import DownloadManager, DownloadService
from rd_downloader.core.download_service import SELECT_ALL
from rd_downloader.exceptions import (
    InvalidJobStateError,
    JobNotFoundError,
    RdDownloaderError,
    SubmissionError,
)
from rd_downloader.media import SubtitleFetcher
from rd_downloader.models.config import AppConfig
from rd_downloader.models.job import RESUMABLE_PHASES, Job, Phase
from rd_downloader.storage import ConfigManager, JobRepository
from rd_downloader.utils.path import create_dir

from .formatters import (
    print_config,
    print_files_table,
    print_jobs_table,
    print_validation_table,
)
from .progress_manager import ProgressManager

console = Console()

logging.basicConfig(
    level="WARNING",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            markup=True,
        )
    ],
)
log = logging.getLogger("rd_downloader")

app = typer.Typer(
    name="rd-downloader",
    help=(
        "Download torrents through Real-Debrid with live progress. Use "
        "'rd-downloader <command> --help' for more info."
    ),
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)

# Seconds without an update before tracked jobs are re-read from the database.
REFRESH_INTERVAL = 2.0


def get_config_dir() -> Path:
    if os.name == "nt":
        base_dir = Path(os.getenv("APPDATA", "~\\AppData\\Roaming"))
    else:
        base_dir = Path(os.getenv("XDG_CONFIG_HOME", "~/.config"))
    return base_dir.expanduser() / "rd-downloader"


CONFIG_DIR = get_config_dir()
CONFIG_FILE = CONFIG_DIR / "config.ini"


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (-v for progress messages, -vv for debug).",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit.", is_eager=True
    ),
    show_config: bool = typer.Option(
        False, "--show-config", help="Display the current configuration."
    ),
):
    """Real-Debrid Downloader CLI"""
    if version:
        console.print(f"[bold]rd-downloader[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    log_level = "WARNING"
    if verbose == 1:
        log_level = "INFO"
    elif verbose >= 2:
        log_level = "DEBUG"
    log.setLevel(log_level)

    if show_config:
        if not CONFIG_FILE.is_file():
            console.print(
                "[red]✗ Config file not found.[/] Run [cyan]rd-downloader init[/cyan]"
                " first."
            )
            raise typer.Exit(code=1)
        config_manager = ConfigManager(CONFIG_FILE)
        print_config(CONFIG_FILE, config_manager.get_config_as_dict())
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@app.command()
def init(
    api_key: str = typer.Argument(
        ..., help="Private API token from https://real-debrid.com/apitoken."
    ),
    library_path: Path = typer.Option(  # noqa: B008
        Path("~/Movies"),
        "--library",
        "-l",
        help="Directory where downloaded files are saved.",
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite an existing configuration without asking."
    ),
):
    """Initialize configuration with a Real-Debrid API key."""
    if (
        CONFIG_FILE.exists()
        and not force
        and not typer.confirm("Configuration file already exists. Overwrite it?")
    ):
        raise typer.Abort()

    library = library_path.expanduser().resolve()
    config_manager = ConfigManager(CONFIG_FILE)
    config_manager.save_new_config(
        {"api_key": api_key.strip(), "library_path": str(library)}
    )
    console.print(f"\n[bold green]✓ Configuration saved to '{CONFIG_FILE}'[/bold green]")
    console.print(f"Files will be saved to [dim]{escape(str(library))}[/dim]")
    console.print(
        "Ready to download! Try: [cyan]rd-downloader download '<MAGNET>'[/cyan]"
    )


@asynccontextmanager
async def _open_session(
    cli_options: Optional[dict] = None,
) -> AsyncIterator[Tuple[AppConfig, DownloadService, DownloadManager]]:
    """Builds the client, repository, service and manager for one command."""
    config = ConfigManager(CONFIG_FILE).load_config(cli_options)
    create_dir(Path(config.config_path))

    rate_limiter = TokenBucketRateLimiter(
        config.rate_limit_per_minute, config.rate_limit_burst
    )
    client = RealDebridClient(config.api_key, rate_limiter, max_workers=config.max_workers)
    repository = JobRepository(config.db_path)
    service = DownloadService(client, repository)
    manager = DownloadManager(config, client, repository)
    try:
        yield config, service, manager
    finally:
        await manager.close()
        await client.close()


async def _auto_select(
    service: DownloadService,
    manager: DownloadManager,
    progress: ProgressManager,
    job: Job,
) -> None:
    progress.mark_selection_handled(job.id)
    try:
        selected = await service.select_files(job.id, SELECT_ALL)
    except (SubmissionError, InvalidJobStateError, JobNotFoundError) as e:
        log.error(f"[red]✗ Could not select files for job {job.id}: {e}[/red]")
        return
    progress.update(selected)
    manager.enqueue(selected)


async def _watch(
    service: DownloadService,
    manager: DownloadManager,
    progress: ProgressManager,
    updates: asyncio.Queue,
) -> None:
    """Follows the tracked jobs until none of them can move on unattended."""
    while True:
        if progress.select_all:
            for job in progress.awaiting_selection():
                await _auto_select(service, manager, progress, job)
        if progress.is_settled():
            return

        try:
            snapshot = await asyncio.wait_for(updates.get(), timeout=REFRESH_INTERVAL)
        except asyncio.TimeoutError:
            # Updates can be dropped under load; the database is authoritative.
            for job_id in progress.tracked_ids:
                try:
                    progress.update(await service.get_job(job_id))
                except JobNotFoundError:
                    progress.forget(job_id)
        else:
            progress.update(snapshot)


async def _run_jobs(
    service: DownloadService,
    manager: DownloadManager,
    jobs: Iterable[Job],
    select_all: bool,
    updates: asyncio.Queue,
) -> ProgressManager:
    async with ProgressManager(console, select_all=select_all) as progress:
        progress.track(jobs)
        await _watch(service, manager, progress, updates)
    return progress


def _print_session_summary(progress: ProgressManager) -> None:
    counts = progress.counts()
    complete = counts.get(Phase.COMPLETE, 0)
    failed = counts.get(Phase.ERROR, 0)
    waiting = counts.get(Phase.AWAITING_SELECTION, 0)

    console.print(f"\n[bold green]✓ Complete:[/bold green] {complete}", end="")
    if failed:
        console.print(f"   [bold red]✗ Failed:[/bold red] {failed}", end="")
    console.print()
    if waiting:
        console.print(
            f"[yellow]{waiting} download(s) are waiting for a file selection.[/yellow] "
            "Use [cyan]rd-downloader files <ID>[/cyan] and "
            "[cyan]rd-downloader select <ID> <FILE_IDS>[/cyan]."
        )


def _read_sources_from_stdin() -> list[str]:
    """Reads magnet links or .torrent paths from stdin, one per line."""
    if sys.stdin.isatty():
        console.print(
            "[yellow]⚠️  No input detected on stdin. Please pipe magnet links or"
            " redirect a file.[/yellow]"
        )
        console.print(
            "[dim]Examples:[/dim]\n"
            "  [cyan]cat magnets.txt | rd-downloader download --stdin[/cyan]\n"
            "  [cyan]rd-downloader download --stdin < magnets.txt[/cyan]"
        )
        raise typer.Exit(code=1)

    sources = []
    try:
        for line in sys.stdin:
            line = line.strip()
            if line and not line.startswith("#"):
                sources.append(line)
    except KeyboardInterrupt:
        console.print("\n[yellow]⚠️  Input interrupted.[/yellow]")
        raise typer.Exit(code=1) from None

    if not sources:
        console.print("[yellow]⚠️  No magnet links found in stdin.[/yellow]")
        raise typer.Exit(code=1)

    console.print(f"[green]✓ Read {len(sources)} source(s) from stdin.[/green]")
    return sources


async def _submit(
    service: DownloadService, source: str, fetch_subtitles: bool
) -> Optional[Job]:
    path = Path(source).expanduser()
    try:
        if source.startswith("magnet:"):
            return await service.add_magnet(source, fetch_subtitles)
        if path.suffix.lower() == ".torrent" and path.is_file():
            return await service.add_torrent_file(
                path.name, path.read_bytes(), fetch_subtitles
            )
    except SubmissionError as e:
        log.error(f"[red]✗ {escape(str(e))}[/red]")
        return None
    except OSError as e:
        log.error(f"[red]✗ Could not read {escape(source)}: {e}[/red]")
        return None
    log.error(
        f"[red]✗ Not a magnet link or .torrent file: {escape(source)}[/red]"
    )
    return None


@app.command(name="download")
def download_command(
    sources: Optional[List[str]] = typer.Argument(  # noqa: B008
        None, help="Magnet links or paths to .torrent files."
    ),
    select_all: bool = typer.Option(
        False,
        "--select-all",
        "-a",
        help="Download every file of each torrent without asking.",
    ),
    subs: Optional[bool] = typer.Option(
        None, "--subs/--no-subs", help="Fetch subtitles for downloaded videos."
    ),
    workers: Optional[int] = typer.Option(
        None, "-w", "--workers", help="Number of jobs processed at the same time."
    ),
    stdin: bool = typer.Option(
        False, "--stdin", help="Read sources from standard input, one per line."
    ),
):
    """Add magnet links or .torrent files and download them."""
    if stdin:
        if sources:
            console.print(
                "[yellow]⚠️  Both sources and --stdin provided. Using --stdin only.[/yellow]"
            )
        sources = _read_sources_from_stdin()
    elif not sources:
        console.print(
            "[red]✗ Nothing to download.[/red] "
            "Use: [cyan]rd-downloader download <MAGNET>[/cyan] or [cyan]--stdin[/cyan]"
        )
        raise typer.Exit(code=1)

    cli_options = {}
    if workers is not None:
        cli_options["max_workers"] = workers

    async def _download_async():
        async with _open_session(cli_options) as (config, service, manager):
            fetch_subtitles = config.fetch_subtitles if subs is None else subs
            await manager.start()
            async with manager.subscription() as updates:
                jobs = []
                for source in dict.fromkeys(sources):
                    job = await _submit(service, source, fetch_subtitles)
                    if job and manager.enqueue(job):
                        jobs.append(job)
                if not jobs:
                    console.print("[yellow]No downloads were added.[/yellow]")
                    raise typer.Exit(code=1)
                progress = await _run_jobs(service, manager, jobs, select_all, updates)
        _print_session_summary(progress)

    asyncio.run(_download_async())


@app.command()
def resume(
    select_all: bool = typer.Option(
        False,
        "--select-all",
        "-a",
        help="Also download every file of jobs waiting for a selection.",
    ),
):
    """Continue downloads left unfinished by a previous run."""

    async def _resume_async():
        async with _open_session() as (_, service, manager):
            await manager.start()
            async with manager.subscription() as updates:
                queued = await manager.resume_on_startup()
                active = await service.list_active()
                tracked = [
                    job
                    for job in active
                    if job.phase in RESUMABLE_PHASES
                    or (select_all and job.phase == Phase.AWAITING_SELECTION)
                ]
                if not tracked:
                    console.print("[green]✓ Nothing to resume.[/green]")
                    return
                console.print(f"[cyan]Resuming {queued} download(s)...[/cyan]")
                progress = await _run_jobs(service, manager, tracked, select_all, updates)
        _print_session_summary(progress)

    asyncio.run(_resume_async())


@app.command(name="list")
def list_command(
    active: bool = typer.Option(
        False, "--active", help="Only show downloads that are not finished."
    ),
):
    """List known downloads."""

    async def _list_async():
        async with _open_session() as (_, service, _manager):
            jobs = await (service.list_active() if active else service.list_jobs())
        print_jobs_table(jobs)

    asyncio.run(_list_async())


@app.command()
def files(job_id: int = typer.Argument(..., help="Download ID.")):
    """Show the files of a torrent that is waiting for a selection."""

    async def _files_async():
        async with _open_session() as (_, service, _manager):
            job = await service.get_job(job_id)
            torrent_files = await service.get_files(job_id)
        print_files_table(job, torrent_files)

    asyncio.run(_files_async())


@app.command()
def select(
    job_id: int = typer.Argument(..., help="Download ID."),
    file_ids: List[str] = typer.Argument(  # noqa: B008
        ..., help="File IDs to download (see 'files'), or 'all'."
    ),
    wait: bool = typer.Option(
        True, "--wait/--no-wait", help="Stay and download the selected files now."
    ),
):
    """Choose which files of a torrent to download."""
    if len(file_ids) == 1 and file_ids[0].lower() == SELECT_ALL:
        selection = SELECT_ALL
    else:
        try:
            selection = [int(i) for raw in file_ids for i in raw.split(",") if i]
        except ValueError:
            console.print("[red]✗ File IDs must be numbers or 'all'.[/red]")
            raise typer.Exit(code=1) from None

    async def _select_async():
        async with _open_session() as (_, service, manager):
            job = await service.select_files(job_id, selection)
            console.print(
                f"[green]✓ Selected {len(job.selected_file_ids)} file(s) "
                f"for '{escape(job.name)}'.[/green]"
            )
            if not wait:
                console.print(
                    "Run [cyan]rd-downloader resume[/cyan] to download it later."
                )
                return
            await manager.start()
            async with manager.subscription() as updates:
                manager.enqueue(job)
                progress = await _run_jobs(service, manager, [job], False, updates)
        _print_session_summary(progress)

    asyncio.run(_select_async())


@app.command()
def delete(
    job_id: int = typer.Argument(..., help="Download ID."),
    force: bool = typer.Option(
        False, "--force", "-f", help="Bypass the confirmation prompt."
    ),
):
    """Delete a download record and its torrent on Real-Debrid."""
    if not force and not typer.confirm(
        f"Delete download {job_id}? Downloaded files are kept."
    ):
        console.print("[yellow]Operation cancelled.[/yellow]")
        raise typer.Abort()

    async def _delete_async():
        async with _open_session() as (_, service, _manager):
            await service.delete_job(job_id)
        console.print(f"[green]✓ Download {job_id} deleted.[/green]")

    asyncio.run(_delete_async())


@app.command()
def validate():
    """Validate the current configuration."""
    try:
        config_manager = ConfigManager(CONFIG_FILE)
        config = config_manager.load_config()
    except RdDownloaderError as e:
        console.print(f"[red]✗ Configuration is invalid: {e}[/red]")
        raise typer.Exit(code=1) from e

    fetcher = SubtitleFetcher(executable=config.subliminal_path)
    print_validation_table(config, fetcher.executable)
