"""
Drives a single job through its lifecycle: waiting for Real-Debrid, pulling
the finished files to the library and fetching subtitles.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import Awaitable, Callable

import aiohttp
from pydantic import ValidationError
from rich.markup import escape

from rd_downloader.api.client import RealDebridClient
from rd_downloader.core.event_hub import EventHub
from rd_downloader.exceptions import (
    JobTimeoutError,
    PersistenceError,
    PollError,
    RemoteApiError,
    RemoteFatalStatus,
    SubtitleError,
    TransferError,
)
from rd_downloader.media import Downloader, ProgressTracker, SubtitleFetcher
from rd_downloader.models.config import AppConfig
from rd_downloader.models.job import (
    FATAL_REMOTE_STATUSES,
    PLACEHOLDER_NAME,
    Job,
    Phase,
    RemoteStatus,
    TorrentInfo,
)
from rd_downloader.storage.repository import JobRepository
from rd_downloader.utils.circuit_breaker import CircuitBreakerError
from rd_downloader.utils.path import create_dir, destination_path, is_video_file

log = logging.getLogger(__name__)

# Failures of a single remote call that are worth waiting out.
_REMOTE_ERRORS = (
    RemoteApiError,
    CircuitBreakerError,
    aiohttp.ClientError,
    asyncio.TimeoutError,
    ValidationError,
)

READY_TIMEOUT_MESSAGE = "Timeout waiting for torrent to be ready"
DOWNLOAD_TIMEOUT_MESSAGE = "Timeout waiting for torrent download"
NO_LINKS_MESSAGE = "No links to download"

SUBTITLES_RUNNING = "Downloading subtitles..."
SUBTITLES_UNAVAILABLE = "Skipped (subliminal not installed)"
SUBTITLES_DISABLED = "Disabled"
SUBTITLES_NO_VIDEO = "No video files"

StatusHandler = Callable[[Job, TorrentInfo], Awaitable[bool]]


class JobProcessor:
    """
    The job state machine. A job is handed to exactly one processor call at a
    time, which owns the working copy and publishes snapshots of it.
    """

    def __init__(
        self,
        config: AppConfig,
        client: RealDebridClient,
        repository: JobRepository,
        hub: EventHub,
        downloader: Downloader,
        subtitles: SubtitleFetcher,
    ):
        self.config = config
        self.client = client
        self.repository = repository
        self.hub = hub
        self.downloader = downloader
        self.subtitles = subtitles
        # Jobs whose last full-record write failed. Their progress ticks are
        # full writes until one succeeds.
        self._unsaved: set[int] = set()

    async def process(self, job: Job) -> None:
        """Advances `job` from its current phase as far as it can go unattended."""
        log.info(f"Processing job {job.id}: {escape(job.name)} ({job.phase.value})")
        try:
            if job.phase == Phase.PENDING:
                await self._wait_until_ready(job)
            elif job.phase == Phase.PROCESSING:
                await self._wait_until_downloaded(job)
            elif job.phase == Phase.DOWNLOADING:
                await self._download_files(job)
            elif job.phase == Phase.AWAITING_SELECTION:
                log.info(f"Job {job.id} is waiting for a file selection.")
            else:
                log.debug(f"Job {job.id} needs no processing in phase {job.phase.value}.")
        except (RemoteFatalStatus, JobTimeoutError) as e:
            await self._fail(job, str(e))
        finally:
            self._unsaved.discard(job.id)

    # Persistence & publishing

    async def _save(self, job: Job) -> bool:
        """Persists the full record, then publishes it. Nothing is published if the write fails."""
        job.touch()
        try:
            await self.repository.update(job)
        except PersistenceError as e:
            log.error(f"[red]Could not save job {job.id}: {e}[/red]")
            self._unsaved.add(job.id)
            return False
        self._unsaved.discard(job.id)
        self.hub.broadcast(job.snapshot())
        return True

    async def _fail(self, job: Job, message: str) -> None:
        log.error(f"[red]✗ Download error for {escape(job.name)}: {escape(message)}[/red]")
        job.phase = Phase.ERROR
        job.error_detail = message
        await self._save(job)

    def _progress_recorder(self, job: Job) -> Callable[[float, int], Awaitable[None]]:
        async def record(progress: float, downloaded_bytes: int) -> None:
            job.progress = max(job.progress, progress)
            job.downloaded_bytes = downloaded_bytes
            if job.id in self._unsaved:
                await self._save(job)
                return
            job.touch()
            await self.repository.update_progress(
                job.id, job.progress, job.downloaded_bytes
            )
            self.hub.broadcast(job.snapshot())

        return record

    # Polling

    async def _fetch_status(self, job: Job, remaining: float) -> TorrentInfo:
        try:
            return await asyncio.wait_for(
                self.client.get_torrent_info(job.external_id), timeout=remaining
            )
        except _REMOTE_ERRORS as e:
            raise PollError(f"Status request for torrent {job.external_id} failed: {e}") from e

    async def _poll(
        self,
        job: Job,
        timeout: float,
        timeout_message: str,
        on_status: StatusHandler,
    ) -> None:
        """
        Polls the torrent every `poll_interval` seconds until `on_status`
        returns True.

        Raises:
            RemoteFatalStatus: if Real-Debrid reports an unrecoverable status.
            JobTimeoutError: if `timeout` seconds pass first.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise JobTimeoutError(timeout_message)
            await asyncio.sleep(min(self.config.poll_interval, remaining))

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise JobTimeoutError(timeout_message)

            try:
                info = await self._fetch_status(job, remaining)
            except PollError as e:
                log.warning(f"[yellow]{escape(str(e))}[/yellow]")
                continue

            if info.status in FATAL_REMOTE_STATUSES:
                raise RemoteFatalStatus(info.status)
            if await on_status(job, info):
                return

    async def _adopt_remote_name(self, job: Job, info: TorrentInfo) -> None:
        if info.filename and job.name == PLACEHOLDER_NAME:
            job.name = info.filename
            await self._save(job)

    # Phases

    async def _wait_until_ready(self, job: Job) -> None:
        await self._poll(
            job, self.config.ready_timeout, READY_TIMEOUT_MESSAGE, self._on_ready_status
        )

    async def _on_ready_status(self, job: Job, info: TorrentInfo) -> bool:
        await self._adopt_remote_name(job, info)

        if info.status == RemoteStatus.WAITING_FILES_SELECTION:
            job.available_files = info.files
            job.total_bytes = info.bytes
            job.phase = Phase.AWAITING_SELECTION
            await self._save(job)
            log.info(f"Torrent {escape(job.name)} ready for file selection.")
            return True

        if info.status == RemoteStatus.MAGNET_CONVERSION:
            log.debug(f"Torrent {job.external_id}: converting magnet...")
        return False

    async def _wait_until_downloaded(self, job: Job) -> None:
        await self._poll(
            job,
            self.config.download_timeout,
            DOWNLOAD_TIMEOUT_MESSAGE,
            self._on_download_status,
        )
        await self._download_files(job)

    async def _on_download_status(self, job: Job, info: TorrentInfo) -> bool:
        await self._adopt_remote_name(job, info)

        if info.status == RemoteStatus.DOWNLOADED:
            job.resource_links = info.links
            if info.bytes > 0:
                job.total_bytes = info.bytes
            job.phase = Phase.DOWNLOADING
            job.progress = 0.0
            job.downloaded_bytes = 0
            await self._save(job)
            log.info(
                f"Torrent {escape(job.name)} is ready on Real-Debrid, starting file download."
            )
            return True

        job.progress = max(job.progress, info.progress)
        await self._save(job)
        if info.status == RemoteStatus.QUEUED:
            log.debug(f"Torrent {job.external_id}: queued on Real-Debrid.")
        elif info.status == RemoteStatus.DOWNLOADING:
            log.debug(f"Torrent {job.external_id}: downloading {info.progress:.1f}%")
        return False

    async def _download_files(self, job: Job) -> None:
        links = list(job.resource_links)
        if not links:
            await self._fail(job, NO_LINKS_MESSAGE)
            return

        library = Path(self.config.library_path)
        try:
            create_dir(library)
        except OSError as e:
            await self._fail(job, f"Cannot create library directory: {e}")
            return

        # Always the whole loop: partial files are never resumed.
        if job.local_paths or job.downloaded_bytes or job.progress:
            job.local_paths = []
            job.downloaded_bytes = 0
            job.progress = 0.0
            await self._save(job)

        record = self._progress_recorder(job)
        completed_bytes = 0
        for index, link in enumerate(links):
            try:
                resolved = await self.client.unrestrict_link(link)
            except _REMOTE_ERRORS as e:
                log.warning(f"[yellow]Failed to resolve link {escape(link)}: {e}[/yellow]")
                continue

            target = destination_path(library, resolved.filename)
            tracker = ProgressTracker(
                record,
                item_index=index,
                item_count=len(links),
                total=resolved.filesize,
                bytes_offset=completed_bytes,
                min_interval=self.config.progress_interval,
            )
            log.info(f"Downloading {escape(resolved.filename)} to [dim]{escape(str(target))}[/dim]")
            try:
                await self.downloader.fetch(
                    resolved.download, str(target), resolved.filesize, tracker
                )
            except TransferError as e:
                log.warning(
                    f"[yellow]Failed to download {escape(resolved.filename)}: {e}[/yellow]"
                )
                continue

            await tracker.finish()
            completed_bytes += tracker.written
            job.local_paths = [*job.local_paths, str(target)]
            await self._save(job)

        await self._fetch_subtitles(job)

        job.phase = Phase.COMPLETE
        job.progress = 100.0
        await self._save(job)
        log.info(f"[green]✓ Download complete: {escape(job.name)}[/green]")

    async def _fetch_subtitles(self, job: Job) -> None:
        videos = [path for path in job.local_paths if is_video_file(path)]

        if not job.fetch_subtitles:
            job.subtitle_outcome = SUBTITLES_DISABLED
            return
        if not self.subtitles.is_available():
            job.subtitle_outcome = SUBTITLES_UNAVAILABLE
            return
        if not videos:
            job.subtitle_outcome = SUBTITLES_NO_VIDEO
            return

        job.phase = Phase.SUBTITLES
        job.progress = 100.0
        job.subtitle_outcome = SUBTITLES_RUNNING
        await self._save(job)

        results = []
        for video in videos:
            name = os.path.basename(video)
            log.info(f"Downloading subtitles for {escape(name)}")
            try:
                await self.subtitles.fetch(video)
            except SubtitleError as e:
                log.warning(f"[yellow]Failed to download subtitles for {escape(name)}: {e}[/yellow]")
                results.append(f"{name}: failed")
            else:
                results.append(f"{name}: ok")
        job.subtitle_outcome = ", ".join(results)
