"""
The orchestrator: a bounded job queue, a fixed pool of worker tasks and the
event hub that carries their updates to subscribers.
"""

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import AsyncIterator, List, Optional

from rich.markup import escape

from rd_downloader.api.client import RealDebridClient
from rd_downloader.media import Downloader, SubtitleFetcher
from rd_downloader.models.config import AppConfig
from rd_downloader.models.job import Job
from rd_downloader.storage.repository import JobRepository

from .event_hub import EventHub
from .job_processor import JobProcessor

log = logging.getLogger(__name__)


class DownloadManager:
    """Owns the worker pool and the process-wide lifecycle of job processing."""

    def __init__(
        self,
        config: AppConfig,
        client: RealDebridClient,
        repository: JobRepository,
        downloader: Optional[Downloader] = None,
        subtitles: Optional[SubtitleFetcher] = None,
        hub: Optional[EventHub] = None,
    ):
        self.config = config
        self.client = client
        self.repository = repository
        self.downloader = downloader or Downloader()
        self.subtitles = subtitles or SubtitleFetcher(
            language=config.subtitle_language,
            timeout=config.subtitle_timeout,
            executable=config.subliminal_path,
        )
        self.hub = hub or EventHub()
        self.processor = JobProcessor(
            config, client, repository, self.hub, self.downloader, self.subtitles
        )

        self._queue: asyncio.Queue = asyncio.Queue(maxsize=config.queue_size)
        self._workers: List[asyncio.Task] = []
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Launches the relay task and `max_workers` worker tasks."""
        if self._running:
            return
        self._running = True
        self.hub.start()
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"download-worker-{i}")
            for i in range(self.config.max_workers)
        ]
        log.info(f"Started {len(self._workers)} download workers.")

    async def stop(self) -> None:
        """Stops accepting work, cancels in-flight jobs and shuts the hub down."""
        if not self._running:
            return
        self._running = False
        for task in self._workers:
            task.cancel()
        for task in self._workers:
            with suppress(asyncio.CancelledError):
                await task
        self._workers = []
        await self.hub.stop()
        log.info("Download workers stopped.")

    def enqueue(self, job: Job) -> bool:
        """Queues a job without waiting. Returns False if it had to be dropped."""
        if not self._running:
            log.warning(f"[yellow]Manager is stopped, job {job.id} not queued.[/yellow]")
            return False
        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            log.warning(
                f"[yellow]Download queue full, dropping job {job.id} "
                f"({escape(job.name)}).[/yellow]"
            )
            return False
        log.debug(f"Queued job {job.id} ({job.phase.value}).")
        return True

    async def join(self) -> None:
        """Waits until every queued job has been processed."""
        await self._queue.join()

    async def resume_on_startup(self) -> int:
        """Re-queues jobs left unfinished by a previous run. Returns how many were queued."""
        jobs = await self.repository.list_resumable()
        queued = sum(1 for job in jobs if self.enqueue(job))
        if queued:
            log.info(f"Resuming {queued} unfinished download(s).")
        return queued

    def subscribe(self, maxsize: int = 10) -> asyncio.Queue:
        return self.hub.subscribe(maxsize)

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self.hub.unsubscribe(queue)

    @asynccontextmanager
    async def subscription(self, maxsize: int = 10) -> AsyncIterator[asyncio.Queue]:
        async with self.hub.subscription(maxsize) as queue:
            yield queue

    async def close(self) -> None:
        """Stops the workers and releases network resources."""
        await self.stop()
        await self.downloader.close()

    async def _worker(self, worker_id: int) -> None:
        log.debug(f"Worker {worker_id} started.")
        while True:
            job = await self._queue.get()
            try:
                await self.processor.process(job)
            except Exception as e:
                log.error(
                    f"[red]Worker {worker_id} failed on job {job.id}: {e}[/red]",
                    exc_info=True,
                )
            finally:
                self._queue.task_done()
