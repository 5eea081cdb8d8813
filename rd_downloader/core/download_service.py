"""
User-facing operations on jobs: submitting magnets and torrent files,
selecting files, listing and deleting.
"""

import asyncio
import logging
from typing import Iterable, List, Union

import aiohttp
from rich.markup import escape

from rd_downloader.api.client import RealDebridClient
from rd_downloader.exceptions import (
    InvalidJobStateError,
    JobNotFoundError,
    PersistenceError,
    RemoteApiError,
    SubmissionError,
)
from rd_downloader.models.job import PLACEHOLDER_NAME, Job, Phase, TorrentFile
from rd_downloader.storage.repository import JobRepository
from rd_downloader.utils.circuit_breaker import CircuitBreakerError
from rd_downloader.utils.path import extract_name_from_magnet

log = logging.getLogger(__name__)

_REMOTE_ERRORS = (
    RemoteApiError,
    CircuitBreakerError,
    aiohttp.ClientError,
    asyncio.TimeoutError,
)

SELECT_ALL = "all"


class DownloadService:
    """Creates and manages job records. Queueing is left to the caller."""

    def __init__(self, client: RealDebridClient, repository: JobRepository):
        self.client = client
        self.repository = repository

    async def add_magnet(self, magnet: str, fetch_subtitles: bool = True) -> Job:
        """
        Submits a magnet link to Real-Debrid and records it as a pending job.

        Raises:
            SubmissionError: if Real-Debrid rejects the magnet.
            PersistenceError: if the job record cannot be created.
        """
        name = extract_name_from_magnet(magnet) or PLACEHOLDER_NAME
        try:
            external_id = await self.client.add_magnet(magnet)
        except _REMOTE_ERRORS as e:
            raise SubmissionError(f"Failed to add magnet to Real-Debrid: {e}") from e
        return await self._create(external_id, name, fetch_subtitles)

    async def add_torrent_file(
        self, filename: str, data: bytes, fetch_subtitles: bool = True
    ) -> Job:
        """Uploads a .torrent file to Real-Debrid and records it as a pending job."""
        try:
            external_id = await self.client.add_torrent(filename, data)
        except _REMOTE_ERRORS as e:
            raise SubmissionError(f"Failed to add torrent to Real-Debrid: {e}") from e
        return await self._create(external_id, filename, fetch_subtitles)

    async def _create(self, external_id: str, name: str, fetch_subtitles: bool) -> Job:
        job = Job(
            external_id=external_id,
            name=name,
            phase=Phase.PENDING,
            fetch_subtitles=fetch_subtitles,
        )
        try:
            job = await self.repository.create(job)
        except PersistenceError:
            await self._delete_remote(external_id)
            raise
        log.info(f"Added job {job.id}: {escape(job.name)}")
        return job

    async def select_files(
        self, job_id: int, file_ids: Union[str, Iterable[int]]
    ) -> Job:
        """
        Chooses which files of a torrent to download and moves the job to processing.

        `file_ids` is either "all" or an iterable of file ids from `get_files`.

        Raises:
            JobNotFoundError: if the job does not exist.
            InvalidJobStateError: if the job is not waiting for a selection,
                already has one, or the ids are not files of the torrent.
            SubmissionError: if Real-Debrid rejects the selection.
        """
        job = await self.get_job(job_id)
        if job.phase != Phase.AWAITING_SELECTION:
            raise InvalidJobStateError(
                f"Job {job_id} is not awaiting file selection (phase: {job.phase.value})."
            )
        if job.selected_file_ids:
            raise InvalidJobStateError(f"Files for job {job_id} were already selected.")

        available = [f.id for f in job.available_files]
        if isinstance(file_ids, str):
            if file_ids.strip().lower() != SELECT_ALL:
                raise InvalidJobStateError(f"Unknown file selection '{file_ids}'.")
            remote_value = SELECT_ALL
            selected = available
        else:
            selected = list(dict.fromkeys(int(i) for i in file_ids))
            if not selected:
                raise InvalidJobStateError("At least one file must be selected.")
            unknown = [i for i in selected if i not in available]
            if unknown:
                raise InvalidJobStateError(
                    f"File id(s) {', '.join(map(str, unknown))} are not part of job {job_id}."
                )
            remote_value = ",".join(map(str, selected))

        try:
            await self.client.select_files(job.external_id, remote_value)
        except _REMOTE_ERRORS as e:
            raise SubmissionError(f"Failed to select files: {e}") from e

        job.selected_file_ids = selected
        job.phase = Phase.PROCESSING
        job.touch()
        await self.repository.update(job)
        log.info(f"Selected {len(selected)} file(s) for job {job_id}.")
        return job

    async def get_job(self, job_id: int) -> Job:
        job = await self.repository.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found.")
        return job

    async def list_jobs(self) -> List[Job]:
        return await self.repository.list_all()

    async def list_active(self) -> List[Job]:
        return await self.repository.list_active()

    async def get_files(self, job_id: int) -> List[TorrentFile]:
        """Returns the torrent's files as listed when it became ready for selection."""
        job = await self.get_job(job_id)
        return list(job.available_files)

    async def delete_job(self, job_id: int) -> None:
        """Removes the job record and, best-effort, the torrent on Real-Debrid."""
        job = await self.get_job(job_id)
        if job.external_id:
            await self._delete_remote(job.external_id)
        await self.repository.delete(job_id)
        log.info(f"Deleted job {job_id}: {escape(job.name)}")

    async def _delete_remote(self, external_id: str) -> None:
        try:
            await self.client.delete_torrent(external_id)
        except _REMOTE_ERRORS as e:
            log.warning(
                f"[yellow]Could not delete torrent {external_id} on Real-Debrid: {e}[/yellow]"
            )
